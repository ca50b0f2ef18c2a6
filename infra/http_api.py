"""Rate-limited REST client for the pricer HTTP API.

This module provides :class:`PricerHttpClient`, which issues typed
requests against the pricer REST API through a
:class:`core.scheduler.RequestScheduler`, unwraps the service's
``{success, result | message}`` envelope, and normalises every failure
into :class:`core.errors.ApiError`.

Authentication:
    The two known deployments of the pricer disagree on how the API key
    is sent, so both strategies are supported via
    :class:`AuthStrategy`:

    - ``BEARER_HEADER``: ``Authorization: Bearer <key>``
    - ``QUERY_KEY``: ``?key=<key>`` appended to every request

Success semantics:
    A non-2xx response is a transport failure with a response and is
    normalised from its body (``errors`` or ``message``). A 2xx response
    is only a success if its envelope says so; ``success: 0`` at HTTP
    200 is a service rejection carrying status 200.

Error guarantee:
    :meth:`PricerHttpClient.request` either returns the envelope's
    ``result`` (validated to ``result_type`` when given) or raises
    :class:`core.errors.ApiError`. No ``httpx`` exception escapes.

Example::

    config = HttpApiConfig(api_key="my-key")
    async with PricerHttpClient(config=config) as client:
        price = await client.get_price("5021;6")
        print(price.buy.metal)
"""

import functools
import logging
from enum import Enum
from typing import Any, Literal, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, Field, TypeAdapter

from core.errors import EnvelopeRejection, raise_api_error
from core.models import (
    FailureResponse,
    Listing,
    ListingRequest,
    ListingResponse,
    Price,
    Rate,
    RemoveListingsResult,
    RequestPriceResult,
    Snapshot,
    parse_envelope,
)
from core.scheduler import RequestScheduler, SchedulerConfig, SchedulerStats

logger: logging.Logger = logging.getLogger(__name__)

T = TypeVar("T")

Method = Literal["GET", "POST", "DELETE"]
"""HTTP methods used by the pricer API."""

_ALLOWED_METHODS: frozenset[str] = frozenset({"GET", "POST", "DELETE"})


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class AuthStrategy(str, Enum):
    """How the API key is attached to each request.

    States:
        BEARER_HEADER: ``Authorization: Bearer <key>`` header.
        QUERY_KEY: ``key=<key>`` query parameter.
    """

    BEARER_HEADER = "bearer_header"
    QUERY_KEY = "query_key"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class HttpApiConfig(BaseModel):
    """Configuration for :class:`PricerHttpClient`.

    Attributes:
        pricer_instance_url: Base location of the pricer instance.
        api_path: Path prefix of the REST API on that instance.
        api_key: API key. Required.
        rate_limit: ``True`` paces requests with the default bucket
            profile, ``False`` uses the unrestricted profile.
        auth_strategy: How the key is attached to requests.
        timeout_seconds: httpx timeout applied to every request.
        scheduler: Explicit scheduler profile. Overrides ``rate_limit``
            when set.
    """

    pricer_instance_url: str = Field(
        default="https://trader.tf",
        min_length=1,
        description="Base URL of the pricer instance",
    )
    api_path: str = Field(
        default="/api/bptf",
        description="REST API path prefix on the instance",
    )
    api_key: str = Field(min_length=1, description="Pricer API key")
    rate_limit: bool = Field(
        default=True,
        description="Pace requests with the default token bucket",
    )
    auth_strategy: AuthStrategy = Field(
        default=AuthStrategy.BEARER_HEADER,
        description="Where the API key is sent",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Per-request timeout in seconds",
    )
    scheduler: SchedulerConfig | None = Field(
        default=None,
        description="Explicit scheduler profile (overrides rate_limit)",
    )

    @property
    def base_url(self) -> str:
        """Full base URL of the REST API."""
        return self.pricer_instance_url.rstrip("/") + "/" + self.api_path.strip("/")

    def scheduler_config(self) -> SchedulerConfig:
        """Return the scheduler profile implied by this configuration."""
        if self.scheduler is not None:
            return self.scheduler
        if self.rate_limit:
            return SchedulerConfig()
        return SchedulerConfig.unrestricted()


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class PricerHttpClient:
    """Typed, rate-limited client for the pricer REST API.

    Concurrent calls on one instance are independent apart from the
    shared scheduler bucket.

    Args:
        config: Client configuration.
        transport: Optional httpx transport, e.g. ``httpx.MockTransport``
            in tests.
    """

    def __init__(
        self,
        config: HttpApiConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config: HttpApiConfig = config
        self._scheduler: RequestScheduler = RequestScheduler(
            config=config.scheduler_config(),
        )
        self._client: httpx.AsyncClient = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            transport=transport,
        )

        self._requests_sent: int = 0
        self._requests_failed: int = 0

    async def __aenter__(self) -> "PricerHttpClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    @property
    def scheduler(self) -> RequestScheduler:
        """The admission scheduler shared by all requests."""
        return self._scheduler

    # ------------------------------------------------------------------
    # Core request
    # ------------------------------------------------------------------

    async def request(
        self,
        method: Method,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        data: Any = None,
        result_type: type[T] | Any = None,
    ) -> T | Any:
        """Perform one API call and return the unwrapped ``result``.

        Args:
            method: ``"GET"``, ``"POST"`` or ``"DELETE"``.
            path: Pre-built resource path relative to the API base.
            params: Query parameters.
            data: JSON body. Omitted from the request when empty.
            result_type: Type the envelope ``result`` is validated into.
                ``None`` returns the decoded JSON unchanged.

        Returns:
            The envelope's ``result``.

        Raises:
            ValueError: If ``method`` is not supported. This is a
                caller precondition checked before the call is
                scheduled, not a dispatch failure, so it is not
                normalised into ``ApiError`` and consumes no token.
            ApiError: For any failure during scheduling, transport,
                or unwrapping.
        """
        method_upper: str = method.upper()
        if method_upper not in _ALLOWED_METHODS:
            raise ValueError(f"Unsupported method: {method}")

        query: dict[str, Any] = dict(params or {})
        headers: dict[str, str] = {}
        if self._config.auth_strategy is AuthStrategy.QUERY_KEY:
            query["key"] = self._config.api_key
        else:
            headers["Authorization"] = f"Bearer {self._config.api_key}"

        async def send() -> httpx.Response:
            return await self._client.request(
                method_upper,
                path,
                params=query,
                json=data if data else None,
                headers=headers,
            )

        self._requests_sent += 1
        logger.debug("%s %s", method_upper, path)

        try:
            response: httpx.Response = await self._scheduler.schedule(send)
            response.raise_for_status()

            envelope = parse_envelope(response.json())
            if isinstance(envelope, FailureResponse):
                raise EnvelopeRejection(envelope.message, response.status_code)

            if result_type is None:
                return envelope.result
            return _adapter(result_type).validate_python(envelope.result)
        except Exception as exc:
            self._requests_failed += 1
            logger.warning("%s %s failed: %s", method_upper, path, exc)
            raise_api_error(method_upper, path, exc)

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------

    async def get_price(self, sku: str) -> Price:
        """Return the current price of ``sku``."""
        return await self.request("GET", f"/prices/{_quote(sku)}", result_type=Price)

    async def request_price(self, sku: str) -> RequestPriceResult:
        """Queue a price check for ``sku``."""
        return await self.request(
            "POST",
            f"/prices/{_quote(sku)}",
            result_type=RequestPriceResult,
        )

    async def get_price_history(self, sku: str) -> list[Price]:
        """Return the recorded price history of ``sku``."""
        return await self.request(
            "GET",
            f"/prices/{_quote(sku)}/history",
            result_type=list[Price],
        )

    async def get_pricelist(self) -> list[Price]:
        """Return every current price."""
        return await self.request("GET", "/prices", result_type=list[Price])

    async def get_snapshot(self, sku: str) -> Snapshot:
        """Return the latest order book snapshot of ``sku``."""
        return await self.request(
            "GET",
            f"/snapshots/{_quote(sku)}",
            result_type=Snapshot,
        )

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def add_listings(
        self,
        listings: list[ListingRequest],
    ) -> dict[str, ListingResponse]:
        """Register price bounds for several skus.

        Returns:
            Outcome per sku.
        """
        body: list[dict[str, Any]] = [
            listing.model_dump(by_alias=True, exclude_none=True)
            for listing in listings
        ]
        return await self.request(
            "POST",
            "/listings",
            data=body,
            result_type=dict[str, ListingResponse],
        )

    async def get_listing(self, sku: str) -> Listing:
        return await self.request(
            "GET",
            f"/listings/{_quote(sku)}",
            result_type=Listing,
        )

    async def get_listings(self) -> list[Listing]:
        return await self.request("GET", "/listings", result_type=list[Listing])

    async def remove_listings(self, skus: list[str]) -> RemoveListingsResult:
        """Remove the listings registered for ``skus``."""
        return await self.request(
            "DELETE",
            "/listings",
            data=list(skus),
            result_type=RemoveListingsResult,
        )

    # ------------------------------------------------------------------
    # Key rate
    # ------------------------------------------------------------------

    async def get_rate(self) -> Rate:
        """Return the current key to metal rate."""
        return await self.request("GET", "/rate", result_type=Rate)

    async def get_rate_history(self) -> list[Rate]:
        return await self.request("GET", "/rate/history", result_type=list[Rate])

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def stats(self) -> dict[str, int | SchedulerStats]:
        """Return request counters and the scheduler snapshot."""
        return {
            "requests_sent": self._requests_sent,
            "requests_failed": self._requests_failed,
            "scheduler": self._scheduler.stats(),
        }


def _quote(sku: str) -> str:
    """URL-quote a sku for use as a path segment (``;`` is kept)."""
    return quote(sku, safe=";")


@functools.lru_cache(maxsize=None)
def _adapter(result_type: Any) -> TypeAdapter[Any]:
    """Return the cached validator for ``result_type``."""
    return TypeAdapter(result_type)
