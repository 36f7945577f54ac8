"""Ingestion subsystems: records, bans and quarantine."""
