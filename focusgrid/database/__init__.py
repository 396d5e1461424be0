"""Remote store persistence for focusgrid."""
