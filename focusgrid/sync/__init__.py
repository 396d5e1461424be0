"""Sync engine: remote store contract, change feed, coordinator and triggers."""
