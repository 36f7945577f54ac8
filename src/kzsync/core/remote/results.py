"""
Fetch outcomes returned by the remote client.

"Not found" is the steady-state signal that the scraper has caught up, so it
is a value, never an exception. Callers branch on the variant type:

    result = await client.fetch_record(101)
    if isinstance(result, Found):
        ...
"""

from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class Found:
    data: Any


@dataclass(frozen=True)
class NotFound:
    pass


@dataclass(frozen=True)
class Throttled:
    """Still throttled after every cooldown attempt."""

    attempts: int


@dataclass(frozen=True)
class TransientError:
    """Timeout, transport or server error that outlasted the retry budget."""

    error: Exception

    @property
    def message(self) -> str:
        return str(self.error)


FetchResult = Union[Found, NotFound, Throttled, TransientError]
