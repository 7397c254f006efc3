"""Replication of local data to an external spreadsheet document."""
