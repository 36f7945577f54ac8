"""
Quarantine Filter Engine

Purpose
-------
Apply operator-defined rules to the jumpstat partitions: count matches in
dry-run mode, or move every match into the variant's quarantine table with
full provenance. Restores reverse a move exactly.

Responsibilities
----------------
- Load rules fresh on every call (no caching across runs)
- Run rules in descending priority across the targeted variants
- Relocate matches atomically (copy + delete in one transaction per rule
  per variant), retried on lock contention
- Restore one record, or everything (optionally for one rule)
- Write one audit row per rule per variant (best-effort)
- Report invalid enabled rules as configuration errors

Architecture Notes
------------------
**All-or-nothing**: a live rule run is one `relocate_rows` call in one
transaction. If the copy or the delete fails, or their row counts differ,
the transaction rolls back and the active table is untouched.

**Round trip**: quarantine tables carry every original column, and a
restore copies back only those columns, so a rule run followed by a
restore-all returns the partition to its prior state.

Configuration
-------------
- QUARANTINE_FILTERS_FILE
"""

from __future__ import annotations

import math
from logging import Logger
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import and_, desc, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from kzsync.core.config.config import Config
from kzsync.core.database.base import utc_now
from kzsync.core.database.retry_policy import DatabaseRetryPolicy
from kzsync.core.database.service import DatabaseService
from kzsync.core.database.upsert import column_mapping, count_rows, relocate_rows
from kzsync.core.logging.logger import LogContext
from kzsync.database.models import CleanupLog
from kzsync.modules.quarantine.filters import FilterSet, QuarantineFilter, load_filters
from kzsync.modules.quarantine.predicates import build_where
from kzsync.modules.quarantine.variants import (
    GameVariant,
    filter_applies,
    get_variant,
    resolve_variants,
)
from kzsync.modules.shared.base_service import BaseService
from kzsync.modules.shared.exceptions import FilterValidationError

MAX_PAGE_SIZE = 500


class QuarantineEngine(BaseService):
    """
    Rule evaluation and reversible relocation for jumpstat partitions.

    Public API
    ----------
    - run(dry_run, game, filter_id, executed_by) -> run report
    - list_quarantined(game, page, limit, filter_id, player_id) -> page
    - restore_one(record_id, game) -> result
    - restore_all(game, filter_id) -> result
    - get_filters() -> every rule with its validation state
    """

    def __init__(
        self,
        filters_file: Optional[Union[str, Path]] = None,
        retry_policy: Optional[DatabaseRetryPolicy] = None,
        *,
        logger: Optional[Logger] = None,
    ) -> None:
        super().__init__(logger)
        self._filters_file = Path(filters_file or Config.QUARANTINE_FILTERS_FILE)
        self._retry = retry_policy or DatabaseRetryPolicy.from_config()

    @property
    def filters_file(self) -> Path:
        return self._filters_file

    def load_filters(self) -> FilterSet:
        return load_filters(self._filters_file)

    # ========================================================================
    # Rule runs
    # ========================================================================

    async def run(
        self,
        dry_run: bool = True,
        game: str = "all",
        filter_id: Optional[str] = None,
        executed_by: str = "system",
    ) -> Dict[str, Any]:
        """
        Evaluate enabled rules against the targeted variants.

        Raises
        ------
        UnknownVariantError
            If `game` names no variant.
        """
        variants = resolve_variants(game)
        filter_set = self.load_filters()
        filters = filter_set.enabled()
        if filter_id is not None:
            filters = [f for f in filters if f.id == filter_id]
            if not filters:
                return {
                    "success": False,
                    "dry_run": dry_run,
                    "error": f"filter {filter_id!r} not found or not enabled",
                    "config_errors": filter_set.config_errors(),
                }

        summary = {"total_matched": 0, "total_quarantined": 0, "filters_processed": 0, "errors": 0}
        results: List[Dict[str, Any]] = []

        with LogContext(component="quarantine", operation="quarantine.run"):
            for flt in filters:
                applicable = [v for v in variants if filter_applies(flt.game, v)]
                if not applicable:
                    continue
                summary["filters_processed"] += 1
                for variant in applicable:
                    result = await self._run_filter(flt, variant, dry_run, executed_by)
                    results.append(result)
                    summary["total_matched"] += result["matched"]
                    summary["total_quarantined"] += result["quarantined"]
                    if result["error"]:
                        summary["errors"] += 1
                    await self._write_audit(result, executed_by)

        self.log.info(
            "Quarantine run complete",
            extra={"dry_run": dry_run, "game": game, **summary},
        )
        return {
            "success": summary["errors"] == 0,
            "dry_run": dry_run,
            "summary": summary,
            "results": results,
            "config_errors": filter_set.config_errors(),
        }

    async def _run_filter(
        self,
        flt: QuarantineFilter,
        variant: GameVariant,
        dry_run: bool,
        executed_by: str,
    ) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "filter_id": flt.id,
            "filter_name": flt.name,
            "game": variant.name,
            "dry_run": dry_run,
            "matched": 0,
            "quarantined": 0,
            "error": None,
        }
        try:
            where = build_where(variant, flt)
            async with DatabaseService.get_session() as session:
                result["matched"] = await count_rows(session, variant.table, where)

            if dry_run or result["matched"] == 0:
                return result

            columns = column_mapping(
                variant.table,
                variant.quarantine_table,
                extra={
                    "filter_id": flt.id,
                    "filter_name": flt.name,
                    "filter_conditions": flt.serialized_conditions(),
                    "quarantined_by": executed_by,
                    "quarantined_at": utc_now(),
                },
            )
            result["quarantined"] = await self._retry.run_in_transaction(
                lambda session: relocate_rows(
                    session,
                    source=variant.table,
                    target=variant.quarantine_table,
                    where=where,
                    columns=columns,
                ),
                operation_name="quarantine.apply_filter",
                context={"filter_id": flt.id, "game": variant.name},
            )
        except FilterValidationError as exc:
            result["error"] = "; ".join(exc.problems)
            self.log.warning(
                "Filter not applicable to variant",
                extra={"filter_id": flt.id, "game": variant.name, "problems": exc.problems},
            )
        except Exception as exc:
            result["error"] = str(exc)
            self.log_error("quarantine.apply_filter", exc, filter_id=flt.id, game=variant.name)
        return result

    async def _write_audit(self, result: Dict[str, Any], executed_by: str) -> None:
        entry = CleanupLog(
            game=result["game"],
            filter_id=result["filter_id"],
            filter_name=result["filter_name"],
            records_matched=result["matched"],
            records_quarantined=result["quarantined"],
            dry_run=result["dry_run"],
            executed_by=executed_by,
            error_message=result["error"],
            created_at=utc_now(),
        )
        try:
            async with DatabaseService.get_transaction() as session:
                session.add(entry)
        except Exception as exc:
            self.log.warning(
                "Failed to write quarantine audit row",
                extra={"filter_id": result["filter_id"], "game": result["game"], "error": str(exc)},
            )

    # ========================================================================
    # Inspection
    # ========================================================================

    async def list_quarantined(
        self,
        game: str,
        page: int = 1,
        limit: int = 50,
        filter_id: Optional[str] = None,
        player_id: Optional[Any] = None,
    ) -> Dict[str, Any]:
        variant = get_variant(game)
        self.validate_positive_int(page, "page")
        self.validate_range(limit, "limit", 1, MAX_PAGE_SIZE)

        table = variant.quarantine_table
        conditions = []
        if filter_id is not None:
            conditions.append(table.c.filter_id == filter_id)
        if player_id is not None:
            conditions.append(table.c[variant.player_column] == variant.coerce_player(player_id))
        where = and_(*conditions) if conditions else true()

        async with DatabaseService.get_session() as session:
            total = await count_rows(session, table, where)
            rows = (
                await session.execute(
                    select(table)
                    .where(where)
                    .order_by(desc(table.c.quarantined_at), table.c[variant.id_column])
                    .offset((page - 1) * limit)
                    .limit(limit)
                )
            ).mappings().all()

        return {
            "game": variant.name,
            "records": [dict(row) for row in rows],
            "total": total,
            "page": page,
            "limit": limit,
            "pages": math.ceil(total / limit) if total else 0,
        }

    def get_filters(self) -> Dict[str, Any]:
        """Every rule in the document, disabled and invalid ones included."""
        filter_set = self.load_filters()
        entries: List[Dict[str, Any]] = []
        for flt in sorted(filter_set.filters, key=lambda f: f.priority, reverse=True):
            entries.append({**flt.to_dict(), "valid": True, "problems": []})
        for item in filter_set.invalid:
            raw = item.raw if isinstance(item.raw, dict) else {}
            entries.append(
                {
                    "id": item.filter_id,
                    "name": raw.get("name"),
                    "game": raw.get("game") or "all",
                    "enabled": item.enabled,
                    "priority": raw.get("priority", 0),
                    "valid": False,
                    "problems": item.problems,
                }
            )
        return {
            "filters_file": str(self._filters_file),
            "filters": entries,
            "config_errors": filter_set.config_errors(),
        }

    # ========================================================================
    # Restoration
    # ========================================================================

    async def restore_one(self, record_id: Any, game: str) -> Dict[str, Any]:
        variant = get_variant(game)
        key = variant.coerce_id(record_id)
        where = variant.quarantine_table.c[variant.id_column] == key

        restored = await self._restore(variant, where, operation_name="quarantine.restore_one")
        if restored == 0:
            return {"success": False, "game": variant.name, "record_id": key, "error": "not found"}

        self.log.info("Quarantined record restored", extra={"game": variant.name, "record_id": str(key)})
        return {"success": True, "game": variant.name, "record_id": key, "restored": restored}

    async def restore_all(self, game: str = "all", filter_id: Optional[str] = None) -> Dict[str, Any]:
        variants = resolve_variants(game)
        restored: Dict[str, int] = {}
        errors: Dict[str, str] = {}

        for variant in variants:
            table = variant.quarantine_table
            where = table.c.filter_id == filter_id if filter_id is not None else true()
            try:
                restored[variant.name] = await self._restore(
                    variant, where, operation_name="quarantine.restore_all"
                )
            except Exception as exc:
                errors[variant.name] = str(exc)
                self.log_error("quarantine.restore_all", exc, game=variant.name, filter_id=filter_id)

        total = sum(restored.values())
        self.log.info(
            "Quarantine restore complete",
            extra={"game": game, "filter_id": filter_id, "restored": total},
        )
        return {
            "success": not errors,
            "filter_id": filter_id,
            "restored": restored,
            "total": total,
            "errors": errors,
        }

    async def _restore(self, variant: GameVariant, where, *, operation_name: str) -> int:
        # Provenance columns have no counterpart in the active table and drop out here
        columns = column_mapping(variant.quarantine_table, variant.table)

        async def work(session: AsyncSession) -> int:
            return await relocate_rows(
                session,
                source=variant.quarantine_table,
                target=variant.table,
                where=where,
                columns=columns,
            )

        return await self._retry.run_in_transaction(
            work, operation_name=operation_name, context={"game": variant.name}
        )
