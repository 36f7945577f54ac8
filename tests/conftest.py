"""
Pytest Configuration and Fixtures for kzsync Tests
===================================================

Purpose
-------
Centralized fixtures for the kzsync test suite: storage lifecycle, retry
policies that never sleep, a scripted remote authority, and row factories.

Responsibilities
----------------
- Point Config at a throwaway database before kzsync is imported
- Create and drop the schema around every integration test
- Optional PostgreSQL testcontainer (KZSYNC_TEST_POSTGRES=1)
- Scripted FakeApiClient returning FetchResult variants
- Factories for record payloads, ban payloads and jumpstat rows

Non-Responsibilities
--------------------
- Test implementation (delegated to test files)
- Production configuration (test-specific only)

Architecture Notes
------------------
- Unit tests use mocks (fast, isolated)
- Integration tests run on in-memory SQLite unless the PostgreSQL
  container is requested
- Database fixtures provide a clean schema per test
"""

from __future__ import annotations

import os

# Must be set before kzsync.core.config is imported anywhere
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("LOG_COLORS", "false")
os.environ.setdefault("GLOBAL_API_REQUEST_DELAY_MS", "0")

import uuid
from datetime import datetime, timedelta
from typing import Any, AsyncGenerator, Dict, Generator, Iterable, List, Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from kzsync.core.config.config import Config
from kzsync.core.database.base import utc_now
from kzsync.core.database.retry_policy import DatabaseRetryPolicy
from kzsync.core.database.service import DatabaseService
from kzsync.core.logging.logger import get_logger
from kzsync.core.remote import Found, NotFound, Throttled, TransientError
from kzsync.core.exceptions import RemoteApiError

logger = get_logger(__name__)

# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================


def _use_postgres() -> bool:
    return os.environ.get("KZSYNC_TEST_POSTGRES", "").lower() in ("1", "true", "yes")


# ============================================================================
# TESTCONTAINERS FIXTURES (Integration Tests)
# ============================================================================


@pytest.fixture(scope="session")
def database_url() -> Generator[str, None, None]:
    """
    Database URL for integration tests.

    Scope: session
    Uses: in-memory SQLite, or a PostgreSQL testcontainer when
    KZSYNC_TEST_POSTGRES is set
    """
    if not _use_postgres():
        yield "sqlite+aiosqlite:///:memory:"
        return

    from testcontainers.postgres import PostgresContainer

    logger.info("Starting PostgreSQL testcontainer...")
    container = PostgresContainer(image="postgres:17-alpine", driver="asyncpg")
    container.start()
    logger.info("PostgreSQL testcontainer started: %s", container.get_connection_url())

    yield container.get_connection_url()

    logger.info("Stopping PostgreSQL testcontainer...")
    container.stop()


# ============================================================================
# DATABASE FIXTURES (Integration Tests)
# ============================================================================


@pytest_asyncio.fixture
async def database(database_url: str) -> AsyncGenerator[None, None]:
    """
    Initialized DatabaseService with a fresh schema.

    Scope: function (schema created and dropped per test)
    """
    await DatabaseService.shutdown()
    Config.DATABASE_URL = database_url
    await DatabaseService.initialize()
    await DatabaseService.create_schema()

    yield

    await DatabaseService.drop_schema()
    await DatabaseService.shutdown()


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Replacement for asyncio.sleep inside retry policies."""
    return AsyncMock()


@pytest.fixture
def retry_policy(no_sleep: AsyncMock) -> DatabaseRetryPolicy:
    """Lock-retry policy that never actually waits."""
    return DatabaseRetryPolicy.from_config(sleep=no_sleep)


# ============================================================================
# REMOTE AUTHORITY FIXTURES
# ============================================================================


class FakeApiClient:
    """
    Scripted stand-in for GlobalApiClient.

    `records` maps record id -> payload or FetchResult; ids absent from the
    map answer NotFound. `ban_pages` is consumed one page per fetch_bans call.
    """

    def __init__(
        self,
        records: Optional[Dict[int, Any]] = None,
        ban_pages: Optional[List[Any]] = None,
    ) -> None:
        self.records: Dict[int, Any] = dict(records or {})
        self.ban_pages: List[Any] = list(ban_pages or [])
        self.requested_ids: List[int] = []
        self.ban_requests: List[Dict[str, int]] = []

    async def fetch_record(self, record_id: int):
        self.requested_ids.append(record_id)
        value = self.records.get(record_id)
        if value is None:
            return NotFound()
        if isinstance(value, (Found, NotFound, Throttled, TransientError)):
            return value
        return Found(value)

    async def fetch_bans(self, limit: int = 250, offset: int = 0):
        self.ban_requests.append({"limit": limit, "offset": offset})
        if not self.ban_pages:
            return NotFound()
        page = self.ban_pages.pop(0)
        if isinstance(page, (Found, NotFound, Throttled, TransientError)):
            return page
        return Found(page)

    async def aclose(self) -> None:
        return None


@pytest.fixture
def fake_client() -> FakeApiClient:
    return FakeApiClient()


def transient(message: str = "HTTP 503") -> TransientError:
    return TransientError(RemoteApiError("/records", message, status_code=503))


# ============================================================================
# FACTORIES
# ============================================================================


def make_record_payload(
    record_id: int,
    *,
    steamid64: str = "76561198000000001",
    player_name: str = "runner",
    map_id: int = 200,
    map_name: str = "kz_beginnerblock_go",
    server_id: Optional[int] = 1,
    mode: str = "kz_timer",
    stage: int = 0,
    time: float = 60.0,
    teleports: int = 0,
    **overrides: Any,
) -> Dict[str, Any]:
    """A `GET /records/{id}` body."""
    payload: Dict[str, Any] = {
        "id": record_id,
        "steamid64": steamid64,
        "player_name": player_name,
        "steam_id": "STEAM_1:1:1",
        "map_id": map_id,
        "map_name": map_name,
        "server_id": server_id,
        "server_name": f"Server {server_id}",
        "mode": mode,
        "stage": stage,
        "time": time,
        "teleports": teleports,
        "points": 1000,
        "tickrate": 128,
        "record_filter_id": 0,
        "replay_id": 0,
        "updated_by": 0,
        "created_on": "2024-01-01T12:00:00",
        "updated_on": "2024-01-01T12:00:00",
    }
    payload.update(overrides)
    return payload


def make_ban_payload(
    ban_id: int,
    steamid64: str,
    *,
    expires_on: Optional[Any] = "9999-12-31T23:59:59",
    ban_type: str = "bhop_hack",
    **overrides: Any,
) -> Dict[str, Any]:
    """A `GET /bans` entry; the default expiry is the permanent sentinel."""
    if isinstance(expires_on, datetime):
        expires_on = expires_on.isoformat()
    payload: Dict[str, Any] = {
        "id": ban_id,
        "ban_type": ban_type,
        "expires_on": expires_on,
        "steamid64": steamid64,
        "player_name": f"player-{steamid64[-4:]}",
        "steam_id": "STEAM_1:0:42",
        "notes": "",
        "stats": {"strafes": 10},
        "server_id": 1,
        "updated_by_id": "0",
        "created_on": "2024-01-01T00:00:00",
        "updated_on": "2024-01-01T00:00:00",
    }
    payload.update(overrides)
    return payload


def expired(days: int = 1) -> datetime:
    return utc_now() - timedelta(days=days)


def in_future(days: int = 30) -> datetime:
    return utc_now() + timedelta(days=days)


def make_jumpstat_row(game: str, *, key: Any = None, player: Any = None, **values: Any) -> Dict[str, Any]:
    """One jumpstat row in stored (scaled) units for the given variant."""
    row: Dict[str, Any] = {
        "JumpType": 0,
        "Mode": 2,
        "Distance": 2500000,
        "IsBlockJump": 0,
        "Block": 0,
        "Strafes": 6,
        "Sync": 8000,
        "Pre": 27600,
        "Max": 34000,
        "Airtime": 80,
        "Created": datetime(2024, 1, 1, 12, 0, 0),
    }
    if game == "cs2":
        row["ID"] = key if key is not None else str(uuid.uuid4())
        row["SteamID64"] = player if player is not None else "76561198000000001"
    else:
        row["JumpID"] = key if key is not None else 1
        row["SteamID32"] = player if player is not None else 39734273
    row.update(values)
    return row


def steamids(count: int, start: int = 1) -> Iterable[str]:
    return [f"7656119800000{n:04d}" for n in range(start, start + count)]
