"""
Integration Tests for DatabaseService and write primitives
===========================================================

Purpose
-------
Test storage behavior against a real database: lifecycle, transaction
management, insert-if-absent, insert-or-refresh and relocation.

Test Coverage
-------------
- Initialization, health check and schema creation
- Transaction commit and rollback
- insert_ignore idempotency
- upsert_rows refresh semantics
- relocate_rows atomicity and renamed keys

Testing Strategy
----------------
- In-memory SQLite by default, PostgreSQL testcontainer on request
- Each test gets a freshly created schema
"""

import pytest
from sqlalchemy import func, inspect, select, text

from kzsync.core.config.config import Config
from kzsync.core.database import (
    DatabaseInitializationError,
    DatabaseService,
    RelocationMismatchError,
    column_mapping,
    initialize_database_subsystem,
    insert_ignore,
    relocate_rows,
    upsert_rows,
)
from kzsync.core.database.base import utc_now
from kzsync.database.models import ArchivedRecord, Ban, Player, Record
from kzsync.modules.bans.policy import PERMANENT_BAN_SENTINEL, permanent_ban_clause


def _record(original_id: int, steamid64: str = "76561198000000001") -> dict:
    return {
        "original_id": original_id,
        "player_id": 1,
        "steamid64": steamid64,
        "map_id": 1,
        "server_id": 1,
        "mode": "kz_timer",
        "stage": 0,
        "time": 42.123,
        "teleports": 0,
        "points": 900,
        "tickrate": 128,
        "record_filter_id": 0,
        "replay_id": 0,
        "updated_by": 0,
        "inserted_at": utc_now(),
    }


async def _count(model) -> int:
    async with DatabaseService.get_session() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


# ============================================================================
# LIFECYCLE
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestDatabaseLifecycle:
    """Engine lifecycle and connectivity."""

    async def test_database_connection(self, database):
        async with DatabaseService.get_session() as session:
            row = (await session.execute(text("SELECT 1 AS value"))).fetchone()

        assert row.value == 1

    async def test_health_check(self, database):
        assert await DatabaseService.health_check() is True

    async def test_schema_created(self, database):
        async with DatabaseService.get_engine().connect() as conn:
            tables = await conn.run_sync(
                lambda sync_conn: set(inspect(sync_conn).get_table_names())
            )

        assert {
            "kz_players",
            "kz_records",
            "kz_records_archive",
            "kz_bans",
            "kz_player_map_bests",
            "kz_map_world_records",
            "cs2_jumpstats",
            "csgo64_jumpstats_quarantine",
            "jumpstat_cleanup_log",
        } <= tables

    async def test_initialize_is_idempotent(self, database):
        engine = DatabaseService.get_engine()

        await DatabaseService.initialize()

        assert DatabaseService.get_engine() is engine

    async def test_bootstrap_rejects_unusable_url(self, database_url):
        """A bad URL is a fatal initialization error, not a crash."""
        await DatabaseService.shutdown()
        Config.DATABASE_URL = "nosuchdriver://nowhere"
        try:
            with pytest.raises(DatabaseInitializationError):
                await initialize_database_subsystem()
        finally:
            Config.DATABASE_URL = database_url
            await DatabaseService.shutdown()


# ============================================================================
# TRANSACTIONS
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestDatabaseTransactions:
    """Transaction management and isolation."""

    async def test_transaction_commit(self, database):
        async with DatabaseService.get_transaction() as session:
            session.add(Player(steamid64="76561198000000001", created_at=utc_now(), updated_at=utc_now()))

        assert await _count(Player) == 1

    async def test_transaction_rollback_on_error(self, database):
        """An exception inside the block leaves nothing behind."""
        with pytest.raises(RuntimeError):
            async with DatabaseService.get_transaction() as session:
                session.add(
                    Player(steamid64="76561198000000001", created_at=utc_now(), updated_at=utc_now())
                )
                await session.flush()
                raise RuntimeError("abort")

        assert await _count(Player) == 0


@pytest.mark.integration
@pytest.mark.database
class TestTimestamps:
    """Naive UTC values are written and read back unchanged."""

    async def test_orm_round_trip_keeps_sentinel_expiry(self, database):
        # Arrange
        created = utc_now()
        async with DatabaseService.get_transaction() as session:
            session.add(
                Ban(
                    id=1,
                    ban_type="bhop_hack",
                    steamid64="76561198000000001",
                    expires_on=PERMANENT_BAN_SENTINEL,
                    created_at=created,
                    updated_at=created,
                )
            )

        # Act
        async with DatabaseService.get_session() as session:
            ban = (await session.execute(select(Ban))).scalar_one()
            permanent = (
                await session.execute(select(func.count()).select_from(Ban).where(permanent_ban_clause()))
            ).scalar_one()

        # Assert
        assert ban.expires_on == PERMANENT_BAN_SENTINEL
        assert ban.created_at.tzinfo is None
        assert permanent == 1

    async def test_core_insert_fills_required_timestamps(self, database):
        async with DatabaseService.get_transaction() as session:
            await insert_ignore(
                session,
                Player,
                {"steamid64": "76561198000000001", "player_name": "p", "is_banned": False},
            )

        async with DatabaseService.get_session() as session:
            player = (await session.execute(select(Player))).scalar_one()
        assert player.created_at is not None
        assert player.updated_at is not None


# ============================================================================
# WRITE PRIMITIVES
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestInsertIgnore:
    async def test_second_insert_is_a_no_op(self, database):
        async with DatabaseService.get_transaction() as session:
            first = await insert_ignore(session, Record, _record(10), conflict_columns=["original_id"])
            second = await insert_ignore(session, Record, _record(10), conflict_columns=["original_id"])

        assert (first, second) == (True, False)
        assert await _count(Record) == 1


@pytest.mark.integration
@pytest.mark.database
class TestUpsertRows:
    async def test_refreshes_selected_columns_only(self, database):
        created = utc_now()
        row = {
            "id": 1,
            "ban_type": "bhop_hack",
            "steamid64": "76561198000000001",
            "created_at": created,
            "updated_at": created,
        }
        async with DatabaseService.get_transaction() as session:
            await upsert_rows(session, Ban, [row], conflict_columns=["id"])

        refreshed = {**row, "ban_type": "macro", "created_at": utc_now(), "updated_at": utc_now()}
        async with DatabaseService.get_transaction() as session:
            await upsert_rows(
                session, Ban, [refreshed], conflict_columns=["id"], update_columns=["ban_type"]
            )

        async with DatabaseService.get_session() as session:
            ban = (await session.execute(select(Ban))).scalar_one()
        assert ban.ban_type == "macro"
        assert ban.created_at == created

    async def test_empty_page_is_a_no_op(self, database):
        async with DatabaseService.get_transaction() as session:
            assert await upsert_rows(session, Ban, [], conflict_columns=["id"]) == 0


@pytest.mark.integration
@pytest.mark.database
class TestRelocateRows:
    async def test_moves_rows_with_renamed_key(self, database):
        # Arrange
        async with DatabaseService.get_transaction() as session:
            for original_id in (1, 2, 3):
                steamid64 = "76561198000000002" if original_id == 3 else "76561198000000001"
                await insert_ignore(session, Record, _record(original_id, steamid64))

        # Act
        async with DatabaseService.get_transaction() as session:
            moved = await relocate_rows(
                session,
                source=Record,
                target=ArchivedRecord,
                where=Record.steamid64 == "76561198000000001",
                columns=column_mapping(
                    Record,
                    ArchivedRecord,
                    rename={"record_id": "id"},
                    extra={"ban_id": 5, "archived_at": utc_now(), "archived_reason": "test"},
                ),
            )

        # Assert
        assert moved == 2
        assert await _count(Record) == 1
        async with DatabaseService.get_session() as session:
            archived = (await session.execute(select(ArchivedRecord))).scalars().all()
        assert sorted(a.original_id for a in archived) == [1, 2]
        assert {a.ban_id for a in archived} == {5}

    async def test_failed_copy_leaves_source_untouched(self, database):
        """A conflicting target row aborts the whole relocation."""
        async with DatabaseService.get_transaction() as session:
            await insert_ignore(session, Record, _record(1))
        async with DatabaseService.get_transaction() as session:
            archived = _record(1)
            archived.update(record_id=1, archived_at=utc_now(), archived_reason="stale")
            await insert_ignore(session, ArchivedRecord, archived)

        with pytest.raises(Exception):
            async with DatabaseService.get_transaction() as session:
                await relocate_rows(
                    session,
                    source=Record,
                    target=ArchivedRecord,
                    where=Record.original_id == 1,
                    columns=column_mapping(Record, ArchivedRecord, rename={"record_id": "id"}),
                )

        assert await _count(Record) == 1
        assert await _count(ArchivedRecord) == 1

    def test_mismatch_error_message(self):
        error = RelocationMismatchError("kz_records", "kz_records_archive", 3, 2)

        assert error.copied == 3
        assert error.deleted == 2
        assert "copied 3" in str(error)
