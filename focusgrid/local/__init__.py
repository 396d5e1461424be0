"""Device-side persistence: local task store, outbox queue and one-off data tools."""
