"""Result provider client module."""

from furlong.services.results_provider.client import (
    FetchOutcome,
    FetchStatus,
    ResultProviderClient,
    classify_response,
)
from furlong.services.results_provider.throttle import IntervalThrottle

__all__ = [
    "FetchOutcome",
    "FetchStatus",
    "IntervalThrottle",
    "ResultProviderClient",
    "classify_response",
]
