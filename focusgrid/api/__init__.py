"""HTTP API for focusgrid."""
