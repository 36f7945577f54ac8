"""
kzsync - KZ records ingestion core.

Keeps a local relational copy of a remote, rate-limited records authority,
derives player ban status from ingested bans, and quarantines suspect
performance records through operator-defined rules.
"""

__version__ = "1.0.0"
