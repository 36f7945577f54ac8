"""
Unit Tests for quarantine rules
===============================

Purpose
-------
Validate rule parsing, rule-document loading, game variant resolution and
SQL predicate construction without touching storage.

Test Coverage
-------------
- validate_filter / parse_filter problems
- load_filters: missing file, bad YAML, invalid and duplicate entries
- Priority ordering of enabled filters
- Variant resolution and game tags
- Unit scaling of bound values (single, IN list, null test, LIKE)
"""

import json

import pytest
import yaml

from kzsync.modules.quarantine.filters import (
    Condition,
    QuarantineFilter,
    load_filters,
    parse_filter,
    validate_filter,
)
from kzsync.modules.quarantine.predicates import build_where, scale_value
from kzsync.modules.quarantine.variants import (
    VARIANTS,
    filter_applies,
    get_variant,
    resolve_variants,
)
from kzsync.modules.shared.exceptions import FilterValidationError, UnknownVariantError


def _filter(**overrides):
    raw = {
        "id": "too-far",
        "name": "Too far",
        "conditions": [{"field": "distance", "operator": ">", "value": 300}],
    }
    raw.update(overrides)
    return raw


def _write(tmp_path, document) -> str:
    path = tmp_path / "filters.yaml"
    path.write_text(yaml.safe_dump(document))
    return str(path)


def _params(clause) -> list:
    return list(clause.compile().params.values())


# ============================================================================
# VALIDATION
# ============================================================================


class TestValidateFilter:
    """Problems reported for raw rule definitions."""

    def test_valid_filter_has_no_problems(self):
        assert validate_filter(_filter()) == []

    def test_missing_required_keys(self):
        problems = validate_filter({"enabled": True})

        assert len(problems) == 3

    def test_unknown_field_and_operator(self):
        problems = validate_filter(
            _filter(conditions=[{"field": "speed", "operator": "~=", "value": 1}])
        )

        assert any("unknown field" in p for p in problems)
        assert any("unsupported operator" in p for p in problems)

    def test_value_required_unless_null_test(self):
        assert validate_filter(_filter(conditions=[{"field": "block", "operator": "is null"}])) == []
        problems = validate_filter(_filter(conditions=[{"field": "block", "operator": "="}]))

        assert any("needs a value" in p for p in problems)

    def test_in_requires_non_empty_list(self):
        problems = validate_filter(
            _filter(conditions=[{"field": "strafes", "operator": "IN", "value": []}])
        )

        assert any("non-empty list" in p for p in problems)

    def test_unknown_game_and_non_integer_discriminator(self):
        problems = validate_filter(_filter(game="quake", jump_type="longjump"))

        assert any("unknown game" in p for p in problems)
        assert any("jump_type" in p for p in problems)

    def test_parse_normalizes_operator_and_lists(self):
        flt = parse_filter(
            _filter(conditions=[{"field": "strafes", "operator": "not in", "value": [1, 2]}])
        )

        assert flt.conditions == (Condition("strafes", "NOT IN", (1, 2)),)
        assert flt.enabled is True
        assert flt.priority == 0

    def test_parse_raises_with_every_problem(self):
        with pytest.raises(FilterValidationError) as exc_info:
            parse_filter(_filter(name=None, game="quake"))

        assert exc_info.value.filter_id == "too-far"
        assert len(exc_info.value.problems) == 2

    def test_serialized_conditions_snapshot(self):
        flt = parse_filter(_filter(jump_type=0))

        snapshot = json.loads(flt.serialized_conditions())

        assert snapshot == {
            "conditions": [{"field": "distance", "operator": ">", "value": 300}],
            "jump_type": 0,
        }


# ============================================================================
# LOADING
# ============================================================================


class TestLoadFilters:
    """Rule document loading never raises."""

    def test_missing_file_is_a_config_error(self, tmp_path):
        filter_set = load_filters(tmp_path / "absent.yaml")

        assert filter_set.filters == []
        assert filter_set.config_errors()[0]["filter_id"] is None

    def test_malformed_yaml_is_a_config_error(self, tmp_path):
        path = tmp_path / "filters.yaml"
        path.write_text("filters: [unclosed")

        filter_set = load_filters(path)

        assert filter_set.filters == []
        assert filter_set.document_error

    def test_invalid_enabled_filter_is_reported_and_excluded(self, tmp_path):
        """An invalid enabled rule is excluded and surfaced as a config error."""
        path = _write(
            tmp_path,
            {
                "version": 1,
                "filters": [
                    _filter(),
                    _filter(id="broken", conditions=[{"field": "speed", "operator": ">", "value": 1}]),
                    _filter(id="broken-off", enabled=False, conditions=[]),
                ],
            },
        )

        filter_set = load_filters(path)

        assert [f.id for f in filter_set.filters] == ["too-far"]
        assert [e["filter_id"] for e in filter_set.config_errors()] == ["broken"]

    def test_duplicate_ids_keep_the_first(self, tmp_path):
        path = _write(tmp_path, [_filter(name="first"), _filter(name="second")])

        filter_set = load_filters(path)

        assert [f.name for f in filter_set.filters] == ["first"]
        assert "duplicate" in filter_set.invalid[0].problems[0]

    def test_enabled_sorted_by_priority(self, tmp_path):
        path = _write(
            tmp_path,
            [
                _filter(id="low", priority=1),
                _filter(id="high", priority=50),
                _filter(id="off", priority=99, enabled=False),
                _filter(id="mid", priority=10),
            ],
        )

        filter_set = load_filters(path)

        assert [f.id for f in filter_set.enabled()] == ["high", "mid", "low"]

    def test_sample_rule_file_is_valid(self):
        """The shipped sample document loads without configuration errors."""
        from kzsync.core.config.config import Config

        filter_set = load_filters(Config.PROJECT_ROOT / "config" / "quarantine_filters.yaml")

        assert filter_set.config_errors() == []
        assert len(filter_set.filters) == 3


# ============================================================================
# VARIANTS
# ============================================================================


class TestVariants:
    def test_resolve_all(self):
        assert [v.name for v in resolve_variants("all")] == ["cs2", "csgo128", "csgo64"]
        assert len(resolve_variants(None)) == 3

    def test_resolve_csgo_family(self):
        assert [v.name for v in resolve_variants("csgo")] == ["csgo128", "csgo64"]

    def test_unknown_variant(self):
        with pytest.raises(UnknownVariantError):
            get_variant("cs16")

    @pytest.mark.parametrize(
        "tag, variant, expected",
        [
            (None, "cs2", True),
            ("all", "csgo64", True),
            ("csgo", "csgo128", True),
            ("csgo", "cs2", False),
            ("csgo64", "csgo128", False),
        ],
    )
    def test_filter_applies(self, tag, variant, expected):
        assert filter_applies(tag, VARIANTS[variant]) is expected

    def test_id_coercion_per_family(self):
        assert get_variant("cs2").coerce_id(12) == "12"
        assert get_variant("csgo128").coerce_id("12") == 12


# ============================================================================
# PREDICATES
# ============================================================================


class TestPredicates:
    """Bound values are scaled to stored units."""

    def test_scale_value(self):
        assert scale_value("distance", 300) == 3000000
        assert scale_value("sync", 92.4) == 9240
        assert scale_value("strafes", 7) == 7

    def test_comparison_is_scaled(self):
        flt = parse_filter(_filter())

        clause = build_where(get_variant("cs2"), flt)

        assert _params(clause) == [3000000]
        assert "Distance" in str(clause)

    def test_in_list_members_are_scaled(self):
        flt = parse_filter(
            _filter(conditions=[{"field": "pre", "operator": "IN", "value": [276, 280.5]}])
        )

        clause = build_where(get_variant("csgo128"), flt)

        assert _params(clause) == [[27600, 28050]]

    def test_null_test_binds_nothing(self):
        flt = parse_filter(_filter(conditions=[{"field": "distance", "operator": "IS NOT NULL"}]))

        clause = build_where(get_variant("csgo64"), flt)

        assert _params(clause) == []

    def test_like_is_not_scaled(self):
        flt = parse_filter(
            _filter(conditions=[{"field": "steamid64", "operator": "LIKE", "value": "7656%"}])
        )

        clause = build_where(get_variant("cs2"), flt)

        assert _params(clause) == ["7656%"]

    def test_discriminators_come_first(self):
        flt = parse_filter(_filter(jump_type=0, mode=2))

        clause = build_where(get_variant("cs2"), flt)

        assert _params(clause) == [0, 2, 3000000]

    def test_field_missing_from_variant(self):
        """A player field of one family is rejected on the other."""
        flt = parse_filter(
            _filter(conditions=[{"field": "steamid64", "operator": "=", "value": "7656"}])
        )

        with pytest.raises(FilterValidationError) as exc_info:
            build_where(get_variant("csgo128"), flt)

        assert exc_info.value.filter_id == "too-far"

    def test_unconvertible_value(self):
        flt = QuarantineFilter(
            id="bad",
            name="bad",
            conditions=(Condition("distance", ">", "far"),),
        )

        with pytest.raises(FilterValidationError):
            build_where(get_variant("cs2"), flt)
