"""
Operator control surface.

The only contract kzsync exposes outward: the admin HTTP layer calls these
coroutines and renders their dict results. Operator mistakes (unknown game
variant, bad record id, bad paging) come back as `{"success": False,
"error": ...}` instead of raising.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, TypeVar

from kzsync.core.logging.logger import get_logger
from kzsync.modules.bans.reconciler import BanStatusReconciler
from kzsync.modules.quarantine.engine import QuarantineEngine
from kzsync.modules.records.scraper import RecordScraper
from kzsync.modules.shared.exceptions import KzSyncDomainException

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Awaitable[Dict[str, Any]]])


def _operator_errors(func: F) -> F:
    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Dict[str, Any]:
        try:
            return await func(*args, **kwargs)
        except KzSyncDomainException as exc:
            logger.info(
                "Control request rejected",
                extra={"action": func.__name__, "error_code": exc.error_code},
            )
            return {"success": False, "error": exc.message, "error_code": exc.error_code}

    return wrapper  # type: ignore[return-value]


class ControlSurface:
    """
    Operator actions over the running subsystems.

    Any subsystem may be None when it did not start (for example after a
    failed storage bootstrap); its actions then report it as unavailable.
    """

    def __init__(
        self,
        *,
        scraper: Optional[RecordScraper] = None,
        reconciler: Optional[BanStatusReconciler] = None,
        quarantine: Optional[QuarantineEngine] = None,
    ) -> None:
        self._scraper = scraper
        self._reconciler = reconciler
        self._quarantine = quarantine

    @staticmethod
    def _unavailable(name: str) -> Dict[str, Any]:
        return {"success": False, "error": f"{name} is not running"}

    # Quarantine ----------------------------------------------------------

    @_operator_errors
    async def trigger_run(
        self,
        dry_run: bool = True,
        game: str = "all",
        filter_id: Optional[str] = None,
        executed_by: str = "system",
    ) -> Dict[str, Any]:
        if self._quarantine is None:
            return self._unavailable("quarantine engine")
        return await self._quarantine.run(
            dry_run=dry_run, game=game, filter_id=filter_id, executed_by=executed_by
        )

    @_operator_errors
    async def list_quarantined(
        self,
        game: str,
        page: int = 1,
        limit: int = 50,
        filter_id: Optional[str] = None,
        player_id: Optional[Any] = None,
    ) -> Dict[str, Any]:
        if self._quarantine is None:
            return self._unavailable("quarantine engine")
        result = await self._quarantine.list_quarantined(
            game, page=page, limit=limit, filter_id=filter_id, player_id=player_id
        )
        return {"success": True, **result}

    @_operator_errors
    async def restore_one(self, record_id: Any, game: str) -> Dict[str, Any]:
        if self._quarantine is None:
            return self._unavailable("quarantine engine")
        return await self._quarantine.restore_one(record_id, game)

    @_operator_errors
    async def restore_all(self, game: str = "all", filter_id: Optional[str] = None) -> Dict[str, Any]:
        if self._quarantine is None:
            return self._unavailable("quarantine engine")
        return await self._quarantine.restore_all(game, filter_id=filter_id)

    @_operator_errors
    async def get_filters(self) -> Dict[str, Any]:
        if self._quarantine is None:
            return self._unavailable("quarantine engine")
        return {"success": True, **self._quarantine.get_filters()}

    # Bans ----------------------------------------------------------------

    @_operator_errors
    async def trigger_ban_update(self, steamids: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        if self._reconciler is None:
            return self._unavailable("ban reconciler")
        result = await self._reconciler.manual_update(steamids)
        return {"success": not result.get("skipped", False), **result}

    # Stats ---------------------------------------------------------------

    async def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            "scraper": self._scraper.get_stats() if self._scraper else None,
            "bans": None,
        }
        if self._reconciler is not None:
            try:
                stats["bans"] = await self._reconciler.get_stats()
            except Exception as exc:
                logger.warning("Ban stats unavailable", extra={"error": str(exc)})
                stats["bans"] = {"error": str(exc)}
        return stats
