"""Ban mirroring, banned-flag reconciliation and record archiving."""

from kzsync.modules.bans.ingest import BanIngestService, normalize_ban
from kzsync.modules.bans.policy import PERMANENT_BAN_SENTINEL, is_active, is_permanent
from kzsync.modules.bans.reconciler import BanStatusReconciler

__all__ = [
    "BanIngestService",
    "BanStatusReconciler",
    "PERMANENT_BAN_SENTINEL",
    "is_active",
    "is_permanent",
    "normalize_ban",
]
