"""Run statistics owned by one RecordScraper instance."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from kzsync.core.database.base import utc_now

# Counters persisted in the checkpoint document
PERSISTED_COUNTERS = ("processed", "inserted", "skipped", "not_found", "errors", "throttled")


@dataclass
class ScraperStats:
    """
    Cumulative scraper counters.

    Attributes:
        processed: Records fetched successfully (inserted + skipped)
        inserted: New rows written
        skipped: Duplicates absorbed by insert-if-absent
        not_found: IDs the authority does not know (yet)
        errors: IDs lost to errors, malformed payloads and failed batches
        throttled: IDs abandoned after every throttle cooldown
    """

    processed: int = 0
    inserted: int = 0
    skipped: int = 0
    not_found: int = 0
    errors: int = 0
    throttled: int = 0
    batches: int = 0
    last_successful_id: int = 0
    started_at: datetime = field(default_factory=utc_now)
    _started_monotonic: float = field(default_factory=time.monotonic, repr=False)
    _baseline_processed: int = field(default=0, repr=False)

    def restore(self, counters: Mapping[str, int]) -> None:
        for name in PERSISTED_COUNTERS:
            if name in counters:
                setattr(self, name, int(counters[name]))
        self._baseline_processed = self.processed

    def counters(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in PERSISTED_COUNTERS}

    def records_per_second(self) -> float:
        elapsed = time.monotonic() - self._started_monotonic
        if elapsed <= 0:
            return 0.0
        return round((self.processed - self._baseline_processed) / elapsed, 3)

    def to_dict(self, cache_sizes: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
        data: Dict[str, Any] = self.counters()
        data.update(
            {
                "batches": self.batches,
                "last_successful_id": self.last_successful_id,
                "started_at": self.started_at.isoformat(),
                "records_per_second": self.records_per_second(),
            }
        )
        if cache_sizes is not None:
            data["cache_sizes"] = cache_sizes
        return data
