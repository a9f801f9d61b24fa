"""SQLite storage primitives shared by catalog and pipeline repositories."""
