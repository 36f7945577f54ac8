"""
Game variant partitions and their field maps.

Rule authors use variant-agnostic field names; each variant maps them onto
its own columns. This table is the only place column names are chosen.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import Column, Table

from kzsync.database.models.jumpstats import JUMPSTAT_TABLES
from kzsync.modules.shared.exceptions import UnknownVariantError, ValidationError

GAME_ALL = "all"
FAMILY_CSGO = "csgo"

_SHARED_FIELDS: Dict[str, str] = {
    "jump_type": "JumpType",
    "mode": "Mode",
    "distance": "Distance",
    "is_block": "IsBlockJump",
    "block": "Block",
    "strafes": "Strafes",
    "sync": "Sync",
    "pre": "Pre",
    "max": "Max",
    "airtime": "Airtime",
    "created": "Created",
}

# Stored value = natural value * factor
SCALE_FACTORS: Dict[str, int] = {
    "distance": 10000,
    "sync": 100,
    "pre": 100,
    "max": 100,
}


@dataclass(frozen=True)
class GameVariant:
    name: str
    family: str
    table: Table
    quarantine_table: Table
    id_column: str
    player_column: str
    field_map: Mapping[str, str]

    def column(self, field: str) -> Column:
        return self.table.c[self.field_map[field]]

    def quarantine_column(self, field: str) -> Column:
        return self.quarantine_table.c[self.field_map[field]]

    def coerce_id(self, value: Any) -> Any:
        """Record ids are uuid text on cs2 and integers on csgo."""
        if self.family == "cs2":
            return str(value)
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError("record_id", f"{self.name} record ids are integers, got {value!r}") from exc

    def coerce_player(self, value: Any) -> Any:
        if self.family == "cs2":
            return str(value)
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError("player_id", f"{self.name} player ids are SteamID32 integers, got {value!r}") from exc


def _variant(name: str, family: str, id_column: str, player_column: str, player_field: str) -> GameVariant:
    table, quarantine = JUMPSTAT_TABLES[name]
    field_map = {"id": id_column, player_field: player_column, **_SHARED_FIELDS}
    return GameVariant(
        name=name,
        family=family,
        table=table,
        quarantine_table=quarantine,
        id_column=id_column,
        player_column=player_column,
        field_map=field_map,
    )


VARIANTS: Dict[str, GameVariant] = {
    "cs2": _variant("cs2", "cs2", "ID", "SteamID64", "steamid64"),
    "csgo128": _variant("csgo128", FAMILY_CSGO, "JumpID", "SteamID32", "steamid32"),
    "csgo64": _variant("csgo64", FAMILY_CSGO, "JumpID", "SteamID32", "steamid32"),
}

# Every logical field some variant understands
KNOWN_FIELDS = frozenset(field for variant in VARIANTS.values() for field in variant.field_map)

# Accepted values of a filter's `game` tag
GAME_TAGS = frozenset({GAME_ALL, FAMILY_CSGO, *VARIANTS})


def get_variant(game: str) -> GameVariant:
    """A single variant by name."""
    try:
        return VARIANTS[game]
    except KeyError:
        raise UnknownVariantError(game, sorted(VARIANTS)) from None


def resolve_variants(game: Optional[str]) -> List[GameVariant]:
    """Variants targeted by an invocation: one name, the csgo family, or all."""
    if game in (None, "", GAME_ALL):
        return list(VARIANTS.values())
    if game == FAMILY_CSGO:
        return [v for v in VARIANTS.values() if v.family == FAMILY_CSGO]
    return [get_variant(game)]


def filter_applies(tag: Optional[str], variant: GameVariant) -> bool:
    """Does a filter's `game` tag cover this variant? Missing tag means all."""
    if tag in (None, "", GAME_ALL):
        return True
    if tag == variant.name:
        return True
    return tag == FAMILY_CSGO and variant.family == FAMILY_CSGO
