"""Unit tests for infra.http_api module.

The HTTP transport is replaced with ``httpx.MockTransport`` so that no
network access is needed. Covers configuration, authentication
strategies, envelope unwrapping, error normalisation, the endpoint
catalog, and scheduler integration.
"""

import json
from typing import Callable

import httpx
import pytest
from pydantic import ValidationError

from core.errors import ApiError, ServiceRejectionError, TransportFailureError
from core.models import (
    Currency,
    ListingRequest,
    ListingResponse,
    Price,
    RemoveListingsResult,
    Snapshot,
)
from core.scheduler import SchedulerConfig
from infra.http_api import AuthStrategy, HttpApiConfig, PricerHttpClient, _adapter

Handler = Callable[[httpx.Request], httpx.Response]

_PRICE: dict = {
    "sku": "5021;6",
    "time": 1700000000,
    "buy": {"keys": 0, "metal": 60.11},
    "sell": {"keys": 0, "metal": 60.22},
}


def _ok(result: object, status: int = 200) -> httpx.Response:
    return httpx.Response(status, json={"success": 1, "result": result})


def _make_client(handler: Handler, **overrides: object) -> PricerHttpClient:
    config: HttpApiConfig = HttpApiConfig(api_key="test-key", **overrides)
    return PricerHttpClient(config=config, transport=httpx.MockTransport(handler))


class _Recorder:
    """MockTransport handler that records requests and replays a response."""

    def __init__(self, response: httpx.Response) -> None:
        self.response: httpx.Response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


# ---------------------------------------------------------------------------
# Configuration Tests
# ---------------------------------------------------------------------------


class TestHttpApiConfig:
    """Tests for HttpApiConfig Pydantic model."""

    def test_defaults(self) -> None:
        config: HttpApiConfig = HttpApiConfig(api_key="k")
        assert config.pricer_instance_url == "https://trader.tf"
        assert config.rate_limit is True
        assert config.auth_strategy is AuthStrategy.BEARER_HEADER
        assert config.base_url == "https://trader.tf/api/bptf"

    def test_api_key_required(self) -> None:
        with pytest.raises(ValidationError):
            HttpApiConfig()  # type: ignore[call-arg]

    def test_empty_api_key_rejected(self) -> None:
        with pytest.raises(ValidationError):
            HttpApiConfig(api_key="")

    def test_base_url_normalises_slashes(self) -> None:
        config: HttpApiConfig = HttpApiConfig(
            api_key="k",
            pricer_instance_url="https://pricer.example.com/",
            api_path="api/",
        )
        assert config.base_url == "https://pricer.example.com/api"

    def test_rate_limited_scheduler_profile(self) -> None:
        assert HttpApiConfig(api_key="k").scheduler_config() == SchedulerConfig()

    def test_unrestricted_scheduler_profile(self) -> None:
        config: HttpApiConfig = HttpApiConfig(api_key="k", rate_limit=False)
        assert config.scheduler_config().rate_limited is False

    def test_explicit_scheduler_overrides_rate_limit(self) -> None:
        profile: SchedulerConfig = SchedulerConfig(bucket_size=10)
        config: HttpApiConfig = HttpApiConfig(
            api_key="k",
            rate_limit=False,
            scheduler=profile,
        )
        assert config.scheduler_config() is profile


# ---------------------------------------------------------------------------
# Authentication Tests
# ---------------------------------------------------------------------------


class TestAuthentication:
    """Both key placement strategies are supported."""

    @pytest.mark.asyncio
    async def test_bearer_header(self) -> None:
        recorder: _Recorder = _Recorder(_ok({}))
        async with _make_client(recorder) as client:
            await client.request("GET", "/rate")
        assert recorder.last.headers["Authorization"] == "Bearer test-key"
        assert "key" not in recorder.last.url.params

    @pytest.mark.asyncio
    async def test_query_key(self) -> None:
        recorder: _Recorder = _Recorder(_ok({}))
        async with _make_client(
            recorder,
            auth_strategy=AuthStrategy.QUERY_KEY,
        ) as client:
            await client.request("GET", "/rate", params={"page": 2})
        assert recorder.last.url.params["key"] == "test-key"
        assert recorder.last.url.params["page"] == "2"
        assert "Authorization" not in recorder.last.headers


# ---------------------------------------------------------------------------
# Request Tests
# ---------------------------------------------------------------------------


class TestRequest:
    """Tests for the core request operation."""

    @pytest.mark.asyncio
    async def test_success_envelope_unwrapped(self) -> None:
        result: dict = {"anything": [1, 2, 3]}
        async with _make_client(_Recorder(_ok(result))) as client:
            assert await client.request("GET", "/rate") == result

    @pytest.mark.asyncio
    async def test_result_validated_to_type(self) -> None:
        async with _make_client(_Recorder(_ok(_PRICE))) as client:
            price = await client.request("GET", "/prices/x", result_type=Price)
        assert isinstance(price, Price)
        assert price.sell.metal == 60.22

    @pytest.mark.asyncio
    async def test_path_joined_to_base_url(self) -> None:
        recorder: _Recorder = _Recorder(_ok({}))
        async with _make_client(recorder) as client:
            await client.request("GET", "/rate/history")
        assert str(recorder.last.url).startswith("https://trader.tf/api/bptf/rate/history")

    @pytest.mark.asyncio
    async def test_empty_data_sends_no_body(self) -> None:
        recorder: _Recorder = _Recorder(_ok({}))
        async with _make_client(recorder) as client:
            await client.request("GET", "/rate")
        assert recorder.last.content == b""

    @pytest.mark.asyncio
    async def test_data_sent_as_json(self) -> None:
        recorder: _Recorder = _Recorder(_ok({}))
        async with _make_client(recorder) as client:
            await client.request("POST", "/listings", data={"sku": "5021;6"})
        assert json.loads(recorder.last.content) == {"sku": "5021;6"}

    @pytest.mark.asyncio
    async def test_unsupported_method_rejected(self) -> None:
        recorder: _Recorder = _Recorder(_ok({}))
        async with _make_client(recorder) as client:
            with pytest.raises(ValueError) as excinfo:
                await client.request("PUT", "/rate")  # type: ignore[arg-type]
            assert not isinstance(excinfo.value, ApiError)
            assert client.scheduler.stats().total_scheduled == 0
            assert client.stats()["requests_failed"] == 0
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_result_validator_reused_across_calls(self) -> None:
        async with _make_client(lambda request: _ok(_PRICE)) as client:
            _adapter.cache_clear()
            await client.request("GET", "/prices/5021;6", result_type=Price)
            await client.request("GET", "/prices/5021;6", result_type=Price)
        info = _adapter.cache_info()
        assert info.misses == 1
        assert info.hits == 1

    @pytest.mark.asyncio
    async def test_request_goes_through_scheduler(self) -> None:
        async with _make_client(_Recorder(_ok({}))) as client:
            await client.request("GET", "/rate")
            assert client.scheduler.stats().total_admitted == 1
            assert client.scheduler.stats().tokens_available == 999

    @pytest.mark.asyncio
    async def test_stats_count_failures(self) -> None:
        async with _make_client(
            _Recorder(httpx.Response(200, json={"success": 0, "message": "m"})),
        ) as client:
            with pytest.raises(ApiError):
                await client.request("GET", "/rate")
            stats = client.stats()
        assert stats["requests_sent"] == 1
        assert stats["requests_failed"] == 1


# ---------------------------------------------------------------------------
# Error Normalisation Tests
# ---------------------------------------------------------------------------


class TestRequestErrors:
    """Every failure surfaces as ApiError."""

    @pytest.mark.asyncio
    async def test_failure_envelope_at_200(self) -> None:
        response: httpx.Response = httpx.Response(
            200,
            json={"success": 0, "message": "m"},
        )
        async with _make_client(_Recorder(response)) as client:
            with pytest.raises(ApiError) as excinfo:
                await client.request("GET", "/prices/x")
        err: ApiError = excinfo.value
        assert isinstance(err, ServiceRejectionError)
        assert err.status == 200
        assert "m" in err.message
        assert err.message == "GET /prices/x: m"

    @pytest.mark.asyncio
    async def test_error_list_at_429(self) -> None:
        response: httpx.Response = httpx.Response(429, json={"errors": ["a", "b"]})
        async with _make_client(_Recorder(response)) as client:
            with pytest.raises(ApiError) as excinfo:
                await client.request("GET", "/rate")
        assert excinfo.value.status == 429
        assert "a. b" in excinfo.value.message

    @pytest.mark.asyncio
    async def test_non_2xx_envelope_message(self) -> None:
        response: httpx.Response = httpx.Response(
            404,
            json={"success": 0, "message": "Item not found"},
        )
        async with _make_client(_Recorder(response)) as client:
            with pytest.raises(ApiError) as excinfo:
                await client.request("GET", "/prices/x")
        assert excinfo.value.status == 404
        assert excinfo.value.message == "GET /prices/x: Item not found"

    @pytest.mark.asyncio
    async def test_no_response(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        async with _make_client(handler) as client:
            with pytest.raises(ApiError) as excinfo:
                await client.request("GET", "/rate")
        err: ApiError = excinfo.value
        assert isinstance(err, TransportFailureError)
        assert err.status == 0
        assert err.detail == "connection refused"
        assert err.message == "GET /rate: connection refused"

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out")

        async with _make_client(handler) as client:
            with pytest.raises(TransportFailureError) as excinfo:
                await client.request("POST", "/prices/x")
        assert excinfo.value.status == 0

    @pytest.mark.asyncio
    async def test_invalid_result_normalised(self) -> None:
        async with _make_client(_Recorder(_ok({"sku": ""}))) as client:
            with pytest.raises(ApiError) as excinfo:
                await client.get_price("5021;6")
        assert excinfo.value.message.startswith("GET /prices/5021;6: ")

    @pytest.mark.asyncio
    async def test_non_json_success_body_normalised(self) -> None:
        async with _make_client(_Recorder(httpx.Response(200, text="<html>"))) as client:
            with pytest.raises(ApiError):
                await client.request("GET", "/rate")


# ---------------------------------------------------------------------------
# Endpoint Catalog Tests
# ---------------------------------------------------------------------------


class TestEndpoints:
    """Tests for the typed endpoint helpers."""

    @pytest.mark.asyncio
    async def test_get_price(self) -> None:
        recorder: _Recorder = _Recorder(_ok(_PRICE))
        async with _make_client(recorder) as client:
            price: Price = await client.get_price("5021;6")
        assert recorder.last.method == "GET"
        assert recorder.last.url.path == "/api/bptf/prices/5021;6"
        assert price.sku == "5021;6"

    @pytest.mark.asyncio
    async def test_request_price(self) -> None:
        recorder: _Recorder = _Recorder(_ok({"queued": True, "info": "queued"}))
        async with _make_client(recorder) as client:
            result = await client.request_price("5021;6")
        assert recorder.last.method == "POST"
        assert result.queued is True

    @pytest.mark.asyncio
    async def test_get_price_history(self) -> None:
        recorder: _Recorder = _Recorder(_ok([_PRICE, _PRICE]))
        async with _make_client(recorder) as client:
            history: list[Price] = await client.get_price_history("5021;6")
        assert recorder.last.url.path == "/api/bptf/prices/5021;6/history"
        assert len(history) == 2

    @pytest.mark.asyncio
    async def test_get_pricelist(self) -> None:
        async with _make_client(_Recorder(_ok([_PRICE]))) as client:
            prices: list[Price] = await client.get_pricelist()
        assert prices[0].buy.metal == 60.11

    @pytest.mark.asyncio
    async def test_get_snapshot(self) -> None:
        recorder: _Recorder = _Recorder(
            _ok({"sku": "5021;6", "buyOrders": [], "sellOrders": [], "time": 1}),
        )
        async with _make_client(recorder) as client:
            snapshot: Snapshot = await client.get_snapshot("5021;6")
        assert recorder.last.url.path == "/api/bptf/snapshots/5021;6"
        assert snapshot.sku == "5021;6"

    @pytest.mark.asyncio
    async def test_add_listings(self) -> None:
        recorder: _Recorder = _Recorder(_ok({"5021;6": 1, "5002;6": 2}))
        async with _make_client(recorder) as client:
            result = await client.add_listings(
                [
                    ListingRequest(sku="5021;6", max=Currency(metal=60)),
                    ListingRequest(sku="5002;6"),
                ],
            )
        assert recorder.last.method == "POST"
        assert json.loads(recorder.last.content) == [
            {"sku": "5021;6", "max": {"keys": 0, "metal": 60.0}},
            {"sku": "5002;6"},
        ]
        assert result == {
            "5021;6": ListingResponse.CREATED,
            "5002;6": ListingResponse.EXCEEDED_LIMIT,
        }

    @pytest.mark.asyncio
    async def test_get_listing_and_listings(self) -> None:
        listing: dict = {
            "sku": "5021;6",
            "min": {"keys": 0, "metal": 50},
            "max": {"keys": 0, "metal": 60},
            "time": 1,
            "belongsTo": "owner",
        }
        async with _make_client(_Recorder(_ok(listing))) as client:
            single = await client.get_listing("5021;6")
        async with _make_client(_Recorder(_ok([listing]))) as client:
            many = await client.get_listings()
        assert single.belongs_to == "owner"
        assert many[0].max.metal == 60

    @pytest.mark.asyncio
    async def test_remove_listings_uses_delete(self) -> None:
        recorder: _Recorder = _Recorder(_ok({"deletedAmount": 2}))
        async with _make_client(recorder) as client:
            result: RemoveListingsResult = await client.remove_listings(
                ["5021;6", "5002;6"],
            )
        assert recorder.last.method == "DELETE"
        assert recorder.last.url.path == "/api/bptf/listings"
        assert json.loads(recorder.last.content) == ["5021;6", "5002;6"]
        assert result.deleted_amount == 2

    @pytest.mark.asyncio
    async def test_rates(self) -> None:
        rate: dict = {"buy": 60.11, "sell": 60.22, "time": 1}
        async with _make_client(_Recorder(_ok(rate))) as client:
            current = await client.get_rate()
        async with _make_client(_Recorder(_ok([rate, rate]))) as client:
            history = await client.get_rate_history()
        assert current.sell == 60.22
        assert len(history) == 2

    @pytest.mark.asyncio
    async def test_sku_is_quoted(self) -> None:
        recorder: _Recorder = _Recorder(_ok(_PRICE))
        async with _make_client(recorder) as client:
            await client.get_price("5021;6;uncraftable spaced")
        assert recorder.last.url.raw_path.startswith(
            b"/api/bptf/prices/5021;6;uncraftable%20spaced",
        )
