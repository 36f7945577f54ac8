"""
Integration Tests for ban synchronization and reconciliation
============================================================

Purpose
-------
Verify that `is_banned` equals "has an active ban" after every pass and that
records are archived exactly while an active permanent ban exists.

Test Coverage
-------------
- Ban page upsert (insert, refresh, duplicate ids)
- Flag derivation for permanent, temporary, expired and open-ended bans
- Archive on permanent ban, restore on unban, idempotent re-archive
- Periodic sweep clears naturally expired bans
- Player rows created for banned identities never seen in a record
- BanSyncTask scheduling and failure reporting
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from kzsync.core.database.base import utc_now
from kzsync.core.database.service import DatabaseService
from kzsync.core.remote import Throttled
from kzsync.database.models import ArchivedRecord, Ban, Player, Record
from kzsync.modules.bans import BanStatusReconciler
from kzsync.modules.records import RecordScraper
from kzsync.modules.records.ban_sync import BanSyncTask
from tests.conftest import (
    FakeApiClient,
    expired,
    in_future,
    make_ban_payload,
    make_record_payload,
)

PERMANENT = "76561198000000001"
TEMPORARY = "76561198000000002"
EXPIRED = "76561198000000003"
CLEAN = "76561198000000004"


class Clock:
    """Adjustable clock for reconcilers and sync tasks."""

    def __init__(self) -> None:
        self.now = utc_now()

    def __call__(self):
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


async def _seed_records(retry_policy, owners):
    """Ingest two records per owner through the real scraper path."""
    payloads = {}
    record_id = 1
    for steamid64 in owners:
        for time in (50.0, 60.0):
            payloads[record_id] = make_record_payload(record_id, steamid64=steamid64, time=time)
            record_id += 1
    scraper = RecordScraper(
        FakeApiClient(payloads),
        retry_policy=retry_policy,
        batch_size=len(payloads),
        active_interval=0,
        idle_interval=0,
    )
    await scraper.run_batch()


async def _flags():
    async with DatabaseService.get_session() as session:
        rows = (await session.execute(select(Player.steamid64, Player.is_banned))).all()
    return {steamid64: banned for steamid64, banned in rows}


async def _records_of(model, steamid64):
    async with DatabaseService.get_session() as session:
        return (
            await session.execute(
                select(func.count()).select_from(model).where(model.steamid64 == steamid64)
            )
        ).scalar_one()


async def _active_snapshot():
    async with DatabaseService.get_session() as session:
        rows = (await session.execute(select(Record.__table__).order_by(Record.id))).mappings().all()
    return [dict(row) for row in rows]


def _sync_task(client, reconciler, retry_policy, clock=None) -> BanSyncTask:
    return BanSyncTask(
        client,
        reconciler,
        retry_policy,
        interval_seconds=600,
        page_size=250,
        clock=clock or utc_now,
    )


# ============================================================================
# BAN SYNC -> RECONCILE
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestBanFlags:
    """Flags and archive state after a ban page is processed."""

    async def test_flags_follow_active_bans(self, database, retry_policy):
        # Arrange
        await _seed_records(retry_policy, [PERMANENT, TEMPORARY, EXPIRED, CLEAN])
        client = FakeApiClient(
            ban_pages=[
                [
                    make_ban_payload(1, PERMANENT),
                    make_ban_payload(2, TEMPORARY, expires_on=in_future(30)),
                    make_ban_payload(3, EXPIRED, expires_on=expired(1)),
                ]
            ]
        )
        reconciler = BanStatusReconciler(retry_policy)

        # Act
        summary = await _sync_task(client, reconciler, retry_policy).maybe_run()

        # Assert
        assert summary["upserted"] == 3
        assert await _flags() == {
            PERMANENT: True,
            TEMPORARY: True,
            EXPIRED: False,
            CLEAN: False,
        }
        assert await _records_of(Record, PERMANENT) == 0
        assert await _records_of(ArchivedRecord, PERMANENT) == 2
        assert await _records_of(Record, TEMPORARY) == 2
        assert summary["reconciled"]["archived_records"] == 2
        assert summary["reconciled"]["newly_banned"] == 2

    async def test_archive_rows_carry_the_causing_ban(self, database, retry_policy):
        await _seed_records(retry_policy, [PERMANENT])
        client = FakeApiClient(ban_pages=[[make_ban_payload(77, PERMANENT)]])

        await _sync_task(client, BanStatusReconciler(retry_policy), retry_policy).maybe_run()

        async with DatabaseService.get_session() as session:
            archived = (await session.execute(select(ArchivedRecord))).scalars().all()
        assert {row.ban_id for row in archived} == {77}
        assert {row.archived_reason for row in archived} == {"permanent_ban"}

    async def test_open_ended_ban_flags_without_archiving(self, database, retry_policy):
        """A ban with no expiry is active but not permanent."""
        await _seed_records(retry_policy, [TEMPORARY])
        client = FakeApiClient(ban_pages=[[make_ban_payload(5, TEMPORARY, expires_on=None)]])

        await _sync_task(client, BanStatusReconciler(retry_policy), retry_policy).maybe_run()

        assert (await _flags())[TEMPORARY] is True
        assert await _records_of(Record, TEMPORARY) == 2
        assert await _records_of(ArchivedRecord, TEMPORARY) == 0

    async def test_permanent_ban_outweighs_expired_temporary_bans(self, database, retry_policy):
        """One permanent ban plus expired temporary bans keeps records archived."""
        # Arrange
        await _seed_records(retry_policy, [PERMANENT])
        client = FakeApiClient(
            ban_pages=[
                [
                    make_ban_payload(10, PERMANENT, expires_on=expired(200)),
                    make_ban_payload(11, PERMANENT),
                    make_ban_payload(12, PERMANENT, expires_on=expired(5)),
                ]
            ]
        )
        reconciler = BanStatusReconciler(retry_policy)
        await _sync_task(client, reconciler, retry_policy).maybe_run()

        # Act
        counters = await reconciler.reconcile_players([PERMANENT])

        # Assert
        assert (await _flags())[PERMANENT] is True
        assert await _records_of(ArchivedRecord, PERMANENT) == 2
        assert counters["restored_records"] == 0
        assert counters["already_archived"] == 1

    async def test_permanent_ban_outlives_temporary_bans_that_lapse(self, database, retry_policy):
        """Temporary bans active at archive time expire; the permanent one keeps records archived."""
        # Arrange
        clock = Clock()
        await _seed_records(retry_policy, [PERMANENT])
        client = FakeApiClient(
            ban_pages=[
                [
                    make_ban_payload(10, PERMANENT, expires_on=clock.now + timedelta(days=1)),
                    make_ban_payload(11, PERMANENT),
                    make_ban_payload(12, PERMANENT, expires_on=clock.now + timedelta(days=3)),
                ]
            ]
        )
        reconciler = BanStatusReconciler(retry_policy, clock=clock, sweep_interval_seconds=3600)
        await _sync_task(client, reconciler, retry_policy, clock=clock).maybe_run()
        assert await _records_of(ArchivedRecord, PERMANENT) == 2

        # Act
        clock.advance(days=7)
        counters = await reconciler.run_periodic_sweep(force=True)

        # Assert
        assert (await _flags())[PERMANENT] is True
        assert await _records_of(ArchivedRecord, PERMANENT) == 2
        assert await _records_of(Record, PERMANENT) == 0
        assert counters["newly_unbanned"] == 0
        assert counters["restored_records"] == 0
        assert counters["already_archived"] == 1

    async def test_banned_identity_without_records_gets_a_player_row(self, database, retry_policy):
        client = FakeApiClient(ban_pages=[[make_ban_payload(1, CLEAN)]])

        await _sync_task(client, BanStatusReconciler(retry_policy), retry_policy).maybe_run()

        assert await _flags() == {CLEAN: True}

    async def test_refreshed_ban_updates_existing_row(self, database, retry_policy):
        client = FakeApiClient(
            ban_pages=[
                [make_ban_payload(1, TEMPORARY, ban_type="strafe_hack", expires_on=in_future(1))],
                [make_ban_payload(1, TEMPORARY, ban_type="macro", expires_on=in_future(2))],
            ]
        )
        task = _sync_task(client, BanStatusReconciler(retry_policy), retry_policy)

        await task.maybe_run()
        await task.maybe_run(force=True)

        async with DatabaseService.get_session() as session:
            bans = (await session.execute(select(Ban))).scalars().all()
        assert [(b.id, b.ban_type) for b in bans] == [(1, "macro")]


# ============================================================================
# ARCHIVE ROUND TRIP
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestArchiveRoundTrip:
    async def test_unban_restores_records_unchanged(self, database, retry_policy):
        """Archive then restore returns every record with its original columns."""
        # Arrange
        await _seed_records(retry_policy, [PERMANENT, CLEAN])
        before = await _active_snapshot()
        client = FakeApiClient(
            ban_pages=[
                [make_ban_payload(1, PERMANENT)],
                [make_ban_payload(1, PERMANENT, expires_on=expired(1))],
            ]
        )
        reconciler = BanStatusReconciler(retry_policy)
        task = _sync_task(client, reconciler, retry_policy)
        await task.maybe_run()
        assert await _records_of(Record, PERMANENT) == 0

        # Act
        summary = await task.maybe_run(force=True)

        # Assert
        assert summary["reconciled"]["restored_records"] == 2
        assert summary["reconciled"]["newly_unbanned"] == 1
        assert await _records_of(ArchivedRecord, PERMANENT) == 0
        assert await _active_snapshot() == before
        assert (await _flags())[PERMANENT] is False

    async def test_restore_after_new_records_were_ingested(self, database, retry_policy):
        """Ids freed by archiving are not handed to later records."""
        # Arrange
        await _seed_records(retry_policy, [CLEAN, PERMANENT])
        reconciler = BanStatusReconciler(retry_policy)
        client = FakeApiClient(ban_pages=[[make_ban_payload(1, PERMANENT)]])
        await _sync_task(client, reconciler, retry_policy).maybe_run()
        assert await _records_of(ArchivedRecord, PERMANENT) == 2

        scraper = RecordScraper(
            FakeApiClient({5: make_record_payload(5, steamid64=CLEAN)}),
            retry_policy=retry_policy,
            batch_size=5,
            active_interval=0,
            idle_interval=0,
        )
        assert (await scraper.run_batch()).inserted == 1
        async with DatabaseService.get_transaction() as session:
            await session.execute(Ban.__table__.delete())

        # Act
        counters = await reconciler.reconcile_players([PERMANENT])

        # Assert
        assert counters["errors"] == 0
        assert counters["restored_records"] == 2
        assert counters["newly_unbanned"] == 1
        assert await _records_of(ArchivedRecord, PERMANENT) == 0
        assert [(row["id"], row["original_id"]) for row in await _active_snapshot()] == [
            (1, 1),
            (2, 2),
            (3, 3),
            (4, 4),
            (5, 5),
        ]
        assert (await _flags())[PERMANENT] is False

    async def test_second_pass_is_a_no_op(self, database, retry_policy):
        await _seed_records(retry_policy, [PERMANENT])
        client = FakeApiClient(ban_pages=[[make_ban_payload(1, PERMANENT)]])
        reconciler = BanStatusReconciler(retry_policy)
        await _sync_task(client, reconciler, retry_policy).maybe_run()

        counters = await reconciler.reconcile_players([PERMANENT])

        assert counters["newly_banned"] == 0
        assert counters["archived_records"] == 0
        assert counters["already_archived"] == 1


# ============================================================================
# SWEEP
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestSweep:
    async def test_sweep_clears_expired_temporary_ban(self, database, retry_policy):
        """A temporary ban lapses without any new ban event."""
        # Arrange
        clock = Clock()
        await _seed_records(retry_policy, [TEMPORARY])
        client = FakeApiClient(
            ban_pages=[[make_ban_payload(1, TEMPORARY, expires_on=clock.now + timedelta(hours=1))]]
        )
        reconciler = BanStatusReconciler(retry_policy, clock=clock, sweep_interval_seconds=3600)
        await _sync_task(client, reconciler, retry_policy, clock=clock).maybe_run()
        assert (await _flags())[TEMPORARY] is True

        # Act
        clock.advance(hours=2)
        counters = await reconciler.run_periodic_sweep()

        # Assert
        assert counters["newly_unbanned"] == 1
        assert (await _flags())[TEMPORARY] is False

    async def test_sweep_respects_interval(self, database, retry_policy):
        clock = Clock()
        reconciler = BanStatusReconciler(retry_policy, clock=clock, sweep_interval_seconds=3600)

        assert await reconciler.run_periodic_sweep() is not None
        assert await reconciler.run_periodic_sweep() is None
        clock.advance(hours=1)
        assert await reconciler.run_periodic_sweep() is not None

    async def test_sweep_restores_orphaned_archive(self, database, retry_policy):
        """Archived records whose ban row vanished are restored by the sweep."""
        await _seed_records(retry_policy, [PERMANENT])
        client = FakeApiClient(ban_pages=[[make_ban_payload(1, PERMANENT)]])
        reconciler = BanStatusReconciler(retry_policy)
        await _sync_task(client, reconciler, retry_policy).maybe_run()
        async with DatabaseService.get_transaction() as session:
            await session.execute(Ban.__table__.delete())

        counters = await reconciler.run_periodic_sweep(force=True)

        assert counters["restored_records"] == 2
        assert (await _flags())[PERMANENT] is False

    async def test_manual_update_skips_while_sweep_running(self, database, retry_policy):
        reconciler = BanStatusReconciler(retry_policy)
        reconciler._sweep_running = True

        result = await reconciler.manual_update()

        assert result["skipped"] is True

    async def test_manual_update_for_named_players(self, database, retry_policy):
        await _seed_records(retry_policy, [TEMPORARY])
        async with DatabaseService.get_transaction() as session:
            session.add(
                Ban(
                    id=9,
                    ban_type="manual",
                    steamid64=TEMPORARY,
                    expires_on=in_future(1),
                    created_at=utc_now(),
                    updated_at=utc_now(),
                )
            )

        counters = await BanStatusReconciler(retry_policy).manual_update([TEMPORARY])

        assert counters["newly_banned"] == 1

    async def test_stats(self, database, retry_policy):
        await _seed_records(retry_policy, [PERMANENT])
        client = FakeApiClient(ban_pages=[[make_ban_payload(1, PERMANENT)]])
        reconciler = BanStatusReconciler(retry_policy)
        await _sync_task(client, reconciler, retry_policy).maybe_run()

        stats = await reconciler.get_stats()

        assert stats["flagged_players"] == 1
        assert stats["archived_records"] == 2
        assert stats["active_bans"] == 1
        assert stats["passes"] == 1
        assert stats["totals"]["archived_players"] == 1


# ============================================================================
# BAN SYNC TASK
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestBanSyncTask:
    async def test_interval_gates_runs(self, database, retry_policy):
        clock = Clock()
        client = FakeApiClient()
        task = _sync_task(client, BanStatusReconciler(retry_policy), retry_policy, clock=clock)

        assert await task.maybe_run() is not None
        assert await task.maybe_run() is None
        clock.advance(minutes=10)
        assert task.is_due() is True

    async def test_failed_fetch_is_reported_and_counts_as_a_run(self, database, retry_policy):
        client = FakeApiClient(ban_pages=[Throttled(attempts=3)])
        task = _sync_task(client, BanStatusReconciler(retry_policy), retry_policy)

        summary = await task.maybe_run()

        assert summary["error"] == "Throttled"
        assert task.last_run is not None
        assert task.is_due() is False

    async def test_page_size_is_capped(self, database, retry_policy):
        client = FakeApiClient()
        task = BanSyncTask(client, BanStatusReconciler(retry_policy), retry_policy, page_size=5000)

        await task.maybe_run()

        assert client.ban_requests == [{"limit": 1000, "offset": 0}]

    async def test_malformed_entries_are_counted(self, database, retry_policy):
        client = FakeApiClient(ban_pages=[[make_ban_payload(1, CLEAN), {"steamid64": CLEAN}]])
        task = _sync_task(client, BanStatusReconciler(retry_policy), retry_policy)

        summary = await task.maybe_run()

        assert summary["fetched"] == 2
        assert summary["invalid"] == 1
        assert summary["upserted"] == 1
