"""
Database Models Package
=======================

All tables kzsync reads and writes, grouped by subsystem:

- players: Player, KzMap, KzServer reference entities
- records: Record and its archive twin
- bans: authoritative Ban mirror
- caches: PlayerMapBest / MapWorldRecord derived caches
- jumpstats: per-variant jumpstat and quarantine Core tables
- cleanup_log: quarantine run audit trail

Importing this package registers every table on the shared metadata.
"""

from .bans import Ban
from .caches import RUN_TYPE_PRO, RUN_TYPE_TP, MapWorldRecord, PlayerMapBest
from .cleanup_log import CleanupLog
from .jumpstats import (
    JUMPSTAT_TABLES,
    JUMPSTAT_VALUE_COLUMNS,
    QUARANTINE_PROVENANCE_COLUMNS,
)
from .players import KzMap, KzServer, Player
from .records import RECORD_COLUMNS, ArchivedRecord, Record

__all__ = [
    "Ban",
    "CleanupLog",
    "KzMap",
    "KzServer",
    "Player",
    "Record",
    "ArchivedRecord",
    "RECORD_COLUMNS",
    "PlayerMapBest",
    "MapWorldRecord",
    "RUN_TYPE_PRO",
    "RUN_TYPE_TP",
    "JUMPSTAT_TABLES",
    "JUMPSTAT_VALUE_COLUMNS",
    "QUARANTINE_PROVENANCE_COLUMNS",
]
