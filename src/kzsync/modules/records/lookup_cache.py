"""
In-memory lookup cache for player, map and server surrogate ids.

Append-only for the process lifetime: a key is written once, after the
transaction that created or found its row has committed. Two tasks racing
on the same key both hit the database and both store the same id, so no
lock is needed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

MapKey = Tuple[int, str]


@dataclass
class LookupCache:
    players: Dict[str, int] = field(default_factory=dict)
    maps: Dict[MapKey, int] = field(default_factory=dict)
    servers: Dict[int, int] = field(default_factory=dict)

    def player(self, steamid64: str) -> Optional[int]:
        return self.players.get(steamid64)

    def map(self, map_id: int, map_name: str) -> Optional[int]:
        return self.maps.get((map_id, map_name))

    def server(self, server_id: int) -> Optional[int]:
        return self.servers.get(server_id)

    def merge(self, other: "LookupCache") -> None:
        """Adopt ids resolved by a committed transaction."""
        for key, value in other.players.items():
            self.players.setdefault(key, value)
        for map_key, value in other.maps.items():
            self.maps.setdefault(map_key, value)
        for server_key, value in other.servers.items():
            self.servers.setdefault(server_key, value)

    def sizes(self) -> Dict[str, int]:
        return {
            "players": len(self.players),
            "maps": len(self.maps),
            "servers": len(self.servers),
        }
