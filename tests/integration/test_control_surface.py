"""
Integration Tests for ControlSurface
====================================

Test Coverage
-------------
- Operator mistakes come back as error dicts, never exceptions
- Unavailable subsystems are reported, not raised
- Combined stats from scraper and reconciler
"""

import pytest
import yaml

from kzsync.control import ControlSurface
from kzsync.modules.bans import BanStatusReconciler
from kzsync.modules.quarantine import QuarantineEngine
from kzsync.modules.records import RecordScraper
from tests.conftest import FakeApiClient, make_record_payload


@pytest.fixture
def rules_path(tmp_path):
    path = tmp_path / "rules.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "filters": [
                    {
                        "id": "far",
                        "name": "Far",
                        "conditions": [{"field": "distance", "operator": ">", "value": 300}],
                    }
                ]
            }
        )
    )
    return path


@pytest.fixture
def control(database, retry_policy, rules_path):
    scraper = RecordScraper(
        FakeApiClient({1: make_record_payload(1)}),
        retry_policy=retry_policy,
        batch_size=3,
        active_interval=0,
        idle_interval=0,
    )
    return ControlSurface(
        scraper=scraper,
        reconciler=BanStatusReconciler(retry_policy),
        quarantine=QuarantineEngine(rules_path, retry_policy),
    )


@pytest.mark.integration
@pytest.mark.database
class TestOperatorErrors:
    """Bad operator input is reported in the result."""

    async def test_unknown_game(self, control):
        result = await control.list_quarantined("cs16")

        assert result["success"] is False
        assert result["error_code"] == "UNKNOWN_VARIANT"

    async def test_bad_record_id_for_variant(self, control):
        result = await control.restore_one("not-a-number", "csgo128")

        assert result["success"] is False
        assert result["error_code"] == "VALIDATION_ERROR"

    async def test_bad_paging(self, control):
        result = await control.list_quarantined("cs2", page=0)

        assert result["success"] is False
        assert "page" in result["error"]

    async def test_trigger_run_unknown_game(self, control):
        result = await control.trigger_run(game="quake")

        assert result["success"] is False

    async def test_restore_missing_record(self, control):
        result = await control.restore_one("missing", "cs2")

        assert result["success"] is False
        assert result["error"] == "not found"


@pytest.mark.integration
@pytest.mark.database
class TestOperatorActions:
    async def test_trigger_dry_run(self, control):
        result = await control.trigger_run(dry_run=True)

        assert result["success"] is True
        assert result["summary"]["total_matched"] == 0

    async def test_get_filters(self, control, rules_path):
        result = await control.get_filters()

        assert result["success"] is True
        assert result["filters_file"] == str(rules_path)
        assert [f["id"] for f in result["filters"]] == ["far"]

    async def test_trigger_ban_update_forces_sweep(self, control):
        result = await control.trigger_ban_update()

        assert result["success"] is True
        assert result["checked"] == 0

    async def test_get_stats(self, control):
        await control._scraper.run_batch()

        stats = await control.get_stats()

        assert stats["scraper"]["inserted"] == 1
        assert stats["scraper"]["next_id"] == 4
        assert stats["bans"]["flagged_players"] == 0


class TestUnavailableSubsystems:
    """A surface built after a failed storage bootstrap."""

    async def test_actions_report_not_running(self):
        control = ControlSurface()

        assert (await control.trigger_run())["success"] is False
        assert (await control.restore_all())["error"] == "quarantine engine is not running"
        assert (await control.trigger_ban_update())["error"] == "ban reconciler is not running"

    async def test_stats_are_empty(self):
        assert await ControlSurface().get_stats() == {"scraper": None, "bans": None}
