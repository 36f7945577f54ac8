"""Client for the remote records authority."""

from kzsync.core.remote.client import GlobalApiClient
from kzsync.core.remote.results import (
    FetchResult,
    Found,
    NotFound,
    Throttled,
    TransientError,
)

__all__ = [
    "GlobalApiClient",
    "FetchResult",
    "Found",
    "NotFound",
    "Throttled",
    "TransientError",
]
