"""Record scraping: remote id walk, idempotent ingest, best-time caches."""

from kzsync.modules.records.ban_sync import BanSyncTask
from kzsync.modules.records.lookup_cache import LookupCache
from kzsync.modules.records.normalize import NormalizedRecord, normalize_record
from kzsync.modules.records.scraper import BatchOutcome, RecordScraper
from kzsync.modules.records.stats import ScraperStats

__all__ = [
    "BanSyncTask",
    "BatchOutcome",
    "LookupCache",
    "NormalizedRecord",
    "RecordScraper",
    "ScraperStats",
    "normalize_record",
]
