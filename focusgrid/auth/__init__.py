"""Authentication module for focusgrid."""
