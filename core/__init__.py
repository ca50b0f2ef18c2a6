"""Core domain layer for the pricer client.

This package provides the typed payload models, the error normaliser,
and the token-bucket request scheduler. Nothing here performs network
I/O; the transports live in :mod:`infra`.
"""

from core.errors import (
    ApiError,
    ServiceRejectionError,
    TransportFailureError,
    raise_api_error,
)
from core.models import (
    APIResponse,
    Currency,
    FailureResponse,
    Listing,
    ListingRequest,
    ListingResponse,
    Price,
    Rate,
    RemoveListingsResult,
    RequestPriceResult,
    Snapshot,
    SnapshotListing,
    SuccessResponse,
    UserPrice,
    parse_envelope,
)
from core.scheduler import RequestScheduler, SchedulerConfig, SchedulerStats

__all__: list[str] = [
    "APIResponse",
    "ApiError",
    "Currency",
    "FailureResponse",
    "Listing",
    "ListingRequest",
    "ListingResponse",
    "Price",
    "Rate",
    "RemoveListingsResult",
    "RequestPriceResult",
    "RequestScheduler",
    "SchedulerConfig",
    "SchedulerStats",
    "ServiceRejectionError",
    "Snapshot",
    "SnapshotListing",
    "SuccessResponse",
    "TransportFailureError",
    "UserPrice",
    "parse_envelope",
    "raise_api_error",
]
