"""SQLite persistence for the durable job store."""
