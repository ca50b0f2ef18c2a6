"""Typed payload models for the pricer REST API and realtime feed.

This module defines the domain types that the HTTP client returns and
the socket layer delivers to listeners. All models are Pydantic-based
with ``frozen=True`` for immutability.

Wire naming:
    The service speaks camelCase JSON (``buyOrders``, ``belongsTo``).
    Models expose snake_case attributes and accept either spelling on
    input via a camelCase alias generator with ``populate_by_name``.
    Serialise with ``model_dump(by_alias=True)`` to get wire names back.

Extra fields:
    Unknown fields are ignored rather than rejected. The service adds
    fields over time and a client library should not break on that.

Envelope:
    Every REST response is wrapped in an envelope that is either
    ``{"success": 1, "result": ...}`` or ``{"success": 0, "message": ...}``.
    :func:`parse_envelope` maps a decoded body to exactly one of
    :class:`SuccessResponse` or :class:`FailureResponse`.

Example:
    >>> from core.models import Price, parse_envelope
    >>> envelope = parse_envelope({"success": 1, "result": {"sku": "5021;6"}})
    >>> envelope.success
    1
    >>> price = Price.model_validate({
    ...     "sku": "5021;6",
    ...     "time": 1700000000,
    ...     "buy": {"keys": 0, "metal": 60.11},
    ...     "sell": {"keys": 0, "metal": 60.22},
    ... })
    >>> price.buy.metal
    60.11
"""

from enum import IntEnum
from typing import Any, Generic, Literal, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")
"""Type variable for the ``result`` carried by a successful envelope."""

_MALFORMED_ENVELOPE_MESSAGE: str = "Malformed response envelope"


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class WireModel(BaseModel):
    """Frozen base model using camelCase wire aliases."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ListingResponse(IntEnum):
    """Per-sku outcome returned by ``POST /listings``.

    Attributes:
        UPDATED: An existing listing for the sku was updated.
        CREATED: A new listing was created.
        EXCEEDED_LIMIT: The account's listing limit was reached.
    """

    UPDATED = 0
    CREATED = 1
    EXCEEDED_LIMIT = 2


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------


class Currency(WireModel):
    """A price expressed in keys and refined metal.

    No normalisation is performed (``metal`` may exceed the key price).

    Attributes:
        keys: Whole keys. Non-negative.
        metal: Refined metal. Non-negative.
    """

    keys: int = Field(default=0, ge=0, description="Whole keys")
    metal: float = Field(default=0.0, ge=0.0, description="Refined metal")


class Price(WireModel):
    """Point-in-time market price for one item.

    Attributes:
        sku: Item definition identifier (e.g. ``"5021;6"``).
        time: Unix timestamp (seconds) of the price.
        buy: Buy side price.
        sell: Sell side price.
    """

    sku: str = Field(min_length=1, description="Item sku")
    time: int = Field(ge=0, description="Unix timestamp in seconds")
    buy: Currency
    sell: Currency


class UserPrice(Price):
    """Price scoped to one owner (``belongsTo``)."""

    belongs_to: str = Field(description="Owner identity (steam id)")


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class ListingAttribute(WireModel):
    """Raw item attribute attached to a snapshot listing."""

    value: Any = None
    defindex: int | None = None


class SnapshotListing(WireModel):
    """One listing observed when a snapshot was taken.

    Attributes:
        listing_id: Listing identifier.
        steam_id: Lister's steam id.
        attributes: Optional raw item attributes.
        quantity: Number of items offered. Non-negative.
        currencies: Listed price.
        created_at: Listing creation time (unix seconds).
        bumped_at: Last bump time (unix seconds).
        automatic: Whether the listing is managed by a bot.
        offers: Whether the lister accepts trade offers.
    """

    listing_id: str
    steam_id: str
    attributes: list[ListingAttribute] | None = None
    quantity: int = Field(default=1, ge=0)
    currencies: Currency
    created_at: int
    bumped_at: int
    automatic: bool
    offers: bool


class Snapshot(WireModel):
    """Order book view of one item at one instant.

    ``buy_orders`` and ``sell_orders`` carry no ordering guarantee.
    """

    sku: str = Field(min_length=1)
    buy_orders: list[SnapshotListing] = Field(default_factory=list)
    sell_orders: list[SnapshotListing] = Field(default_factory=list)
    time: int


# ---------------------------------------------------------------------------
# REST results
# ---------------------------------------------------------------------------


class Listing(WireModel):
    """Price bounds registered for a sku by the authenticated user."""

    sku: str
    min: Currency
    max: Currency
    time: int
    belongs_to: str


class ListingRequest(WireModel):
    """Request body item for ``POST /listings``."""

    sku: str = Field(min_length=1)
    max: Currency | None = None
    min: Currency | None = None


class RequestPriceResult(WireModel):
    """Result of queueing a price check for a sku."""

    queued: bool
    info: str = ""


class RemoveListingsResult(WireModel):
    """Result of ``DELETE /listings``."""

    deleted_amount: int = Field(ge=0)


class Rate(WireModel):
    """Key to refined metal exchange rate."""

    buy: float
    sell: float
    time: int


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class SuccessResponse(BaseModel, Generic[T]):
    """Success case of the response envelope."""

    model_config = ConfigDict(frozen=True)

    success: Literal[1] = 1
    result: T


class FailureResponse(BaseModel):
    """Failure case of the response envelope."""

    model_config = ConfigDict(frozen=True)

    success: Literal[0] = 0
    message: str


APIResponse = Union[SuccessResponse[Any], FailureResponse]
"""Tagged union over the two envelope cases, discriminated by ``success``."""


def parse_envelope(body: Any) -> APIResponse:
    """Map a decoded response body to exactly one envelope case.

    Success is decided by the envelope content only: a truthy
    ``success`` field produces :class:`SuccessResponse`. Everything
    else, including bodies that are not JSON objects, produces
    :class:`FailureResponse`.

    Args:
        body: Decoded JSON body of a 2xx response.

    Returns:
        The envelope case the body represents.
    """
    if not isinstance(body, dict):
        return FailureResponse(message=_MALFORMED_ENVELOPE_MESSAGE)

    if body.get("success"):
        return SuccessResponse[Any](result=body.get("result"))

    message: Any = body.get("message")
    if not message:
        message = _MALFORMED_ENVELOPE_MESSAGE
    return FailureResponse(message=str(message))
