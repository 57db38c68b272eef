"""SQLite-to-target SQL translation engine."""
