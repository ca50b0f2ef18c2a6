"""Realtime price feed over a Socket.IO connection.

This module provides :class:`PricerSocket`, which owns one Socket.IO
connection to the pricer and routes inbound events to listeners
registered per topic.

Topics:
    A topic is either a category (``"price"``, ``"snapshot"``,
    ``"user-price"``) or a category scoped to one sku
    (``"price/5021;6"``). Listeners fire only for events published on
    the exact topic they registered for. Publishing on ``"price/X"``
    does not reach ``"price"`` listeners and vice versa; any fan-out is
    the publisher's job.

Connection semantics:
    Construction does not open the connection. :meth:`PricerSocket.connect`
    opens it with the API key in the handshake query and resolves on the
    first "connected" signal or rejects with the underlying error on the
    first "connection failed" signal. A single-use guard settles each
    call exactly once, so a transport that fires both signals cannot
    resolve and reject the same call. Reconnection after a drop is left
    to the Socket.IO library; replacing the connection means building a
    new :class:`PricerSocket`.

Listener contract:
    Listeners may be plain functions or coroutine functions. They run on
    the event loop in registration order. A listener that raises is
    logged and counted; the remaining listeners still run.

Example::

    socket = PricerSocket(config=SocketConfig(api_key="my-key"))
    socket.on_price(lambda price: print(price.sku, price.sell))
    socket.on_snapshot(handle_snapshot, sku="5021;6")
    await socket.connect()
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, NamedTuple, Union
from urllib.parse import urlencode

import socketio
from pydantic import BaseModel, Field, ValidationError
from socketio.exceptions import ConnectionError as SocketConnectionError

from core.models import Price, Snapshot, UserPrice

logger: logging.Logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

Listener = Callable[..., Union[Awaitable[None], None]]
"""Listener signature: ``(payload) -> None`` or ``async (payload) -> None``."""

PriceListener = Callable[[Price], Union[Awaitable[None], None]]
SnapshotListener = Callable[[Snapshot], Union[Awaitable[None], None]]
UserPriceListener = Callable[[UserPrice], Union[Awaitable[None], None]]

# ---------------------------------------------------------------------------
# Topic catalog
# ---------------------------------------------------------------------------

PRICE_TOPIC: str = "price"
SNAPSHOT_TOPIC: str = "snapshot"
USER_PRICE_TOPIC: str = "user-price"

_TOPIC_SEPARATOR: str = "/"

# Rate-limited logging thresholds
_LOG_FIRST_N: int = 10
_LOG_EVERY_N: int = 1000


def scoped_topic(category: str, sku: str | None = None) -> str:
    """Build the topic for ``category``, optionally scoped to ``sku``.

    Example:
        >>> scoped_topic("price")
        'price'
        >>> scoped_topic("price", "5021;6")
        'price/5021;6'
    """
    if sku is None:
        return category
    if not sku:
        raise ValueError("sku must be non-empty")
    return f"{category}{_TOPIC_SEPARATOR}{sku}"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ConnectionState(str, Enum):
    """Connection state machine for :class:`PricerSocket`.

    States:
        DISCONNECTED: Created, ``connect()`` not yet called.
        CONNECTING: ``connect()`` called, waiting for a signal.
        CONNECTED: The transport reported a successful connection.
        CONNECT_FAILED: The transport reported a failure while
            connecting. Terminal.
        CLOSED: ``disconnect()`` called. Terminal.
    """

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    CONNECT_FAILED = "CONNECT_FAILED"
    CLOSED = "CLOSED"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class SocketConfig(BaseModel):
    """Configuration for :class:`PricerSocket`.

    Attributes:
        pricer_instance_url: Socket.IO endpoint of the pricer instance.
        api_key: API key, sent as the ``key`` handshake query parameter.
        socketio_path: Socket.IO endpoint path on the server.
        transports: Allowed Engine.IO transports.
        wait_timeout_seconds: How long the transport waits for the
            namespace handshake before giving up.
        reconnection: Let the Socket.IO library reconnect after an
            established connection drops.
    """

    pricer_instance_url: str = Field(
        default="https://trader.tf/",
        min_length=1,
        description="Socket.IO endpoint of the pricer instance",
    )
    api_key: str = Field(min_length=1, description="Pricer API key")
    socketio_path: str = Field(
        default="socket.io",
        description="Socket.IO endpoint path",
    )
    transports: list[str] = Field(
        default_factory=lambda: ["websocket"],
        min_length=1,
        description="Allowed Engine.IO transports",
    )
    wait_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="Seconds to wait for the namespace handshake",
    )
    reconnection: bool = Field(
        default=True,
        description="Allow the Socket.IO library to reconnect after a drop",
    )


# ---------------------------------------------------------------------------
# Listener registry
# ---------------------------------------------------------------------------


class ListenerHandle(NamedTuple):
    """One registration on a topic.

    ``model`` is ``None`` for raw listeners, which receive the payload
    unchanged.
    """

    callback: Listener
    model: type[BaseModel] | None


# ---------------------------------------------------------------------------
# Socket
# ---------------------------------------------------------------------------


class PricerSocket:
    """Topic-routed Socket.IO subscription manager.

    Args:
        config: Socket configuration.
        client: Optional pre-built ``socketio.AsyncClient``. By default
            a new client is created per instance.
    """

    def __init__(
        self,
        config: SocketConfig,
        client: socketio.AsyncClient | None = None,
    ) -> None:
        self._config: SocketConfig = config
        self._client: socketio.AsyncClient = client or socketio.AsyncClient(
            reconnection=config.reconnection,
        )

        self._state: ConnectionState = ConnectionState.DISCONNECTED
        self._pending_connect: asyncio.Future[None] | None = None
        self._transport_up: bool = False

        # Topic registry: topic → listeners in registration order
        self._listeners: dict[str, list[ListenerHandle]] = {}

        self._events_received: int = 0
        self._parse_errors: int = 0
        self._listener_errors: int = 0

        self._client.on("connect", handler=self._on_connect)
        self._client.on("connect_error", handler=self._on_connect_error)
        self._client.on("disconnect", handler=self._on_disconnect)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def client(self) -> socketio.AsyncClient:
        """The underlying Socket.IO client (owned by this instance)."""
        return self._client

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def connected(self) -> bool:
        """Whether the connection is established and the transport is up.

        ``False`` after a transport drop until the Socket.IO library
        reconnects.
        """
        return self._state == ConnectionState.CONNECTED and self._transport_up

    async def connect(self) -> None:
        """Open the connection and wait for the outcome.

        Raises:
            RuntimeError: If ``connect()`` was already called.
            Exception: The underlying transport error if the connection
                could not be established.
        """
        if self._state != ConnectionState.DISCONNECTED:
            raise RuntimeError(f"Cannot connect: socket is in {self._state} state")

        self._state = ConnectionState.CONNECTING
        pending: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._pending_connect = pending
        logger.info("Connecting to pricer socket at %s", self._config.pricer_instance_url)

        try:
            await self._client.connect(
                self._connect_url(),
                transports=self._config.transports,
                socketio_path=self._config.socketio_path,
                wait_timeout=self._config.wait_timeout_seconds,
            )
        except Exception as exc:
            self._settle_failure(exc)
        else:
            if self._state == ConnectionState.CLOSED:
                await self._close_late_transport()
            else:
                self._settle_success()

        await pending

    async def disconnect(self) -> None:
        """Close the connection. Idempotent.

        A ``connect()`` still waiting for its outcome is rejected with
        :class:`socketio.exceptions.ConnectionError`. ``CLOSED`` is
        terminal: connection signals arriving afterwards do not change
        the state.
        """
        if self._state == ConnectionState.CLOSED:
            return
        self._state = ConnectionState.CLOSED
        self._transport_up = False

        pending: asyncio.Future[None] | None = self._pending_connect
        if pending is not None and not pending.done():
            self._pending_connect = None
            pending.set_exception(
                SocketConnectionError("disconnected while connecting"),
            )

        await self._client.disconnect()
        logger.info(
            "Pricer socket closed (events=%d, parse_errors=%d, listener_errors=%d)",
            self._events_received,
            self._parse_errors,
            self._listener_errors,
        )

    def on(self, topic: str, listener: Listener) -> None:
        """Register a raw listener for an exact topic.

        The listener receives the event payload as delivered by the
        transport.

        Args:
            topic: Event name, e.g. ``"price"`` or ``"price/5021;6"``.
            listener: Function or coroutine function.
        """
        self._register(topic, ListenerHandle(callback=listener, model=None))

    def on_price(self, listener: PriceListener, sku: str | None = None) -> None:
        """Register for price updates, all skus or one ``sku``."""
        self._register(
            scoped_topic(PRICE_TOPIC, sku),
            ListenerHandle(callback=listener, model=Price),
        )

    def on_snapshot(self, listener: SnapshotListener, sku: str | None = None) -> None:
        """Register for snapshot updates, all skus or one ``sku``."""
        self._register(
            scoped_topic(SNAPSHOT_TOPIC, sku),
            ListenerHandle(callback=listener, model=Snapshot),
        )

    def on_user_price(
        self,
        listener: UserPriceListener,
        sku: str | None = None,
    ) -> None:
        """Register for the authenticated user's price updates."""
        self._register(
            scoped_topic(USER_PRICE_TOPIC, sku),
            ListenerHandle(callback=listener, model=UserPrice),
        )

    @property
    def topics(self) -> frozenset[str]:
        """Topics with at least one registered listener."""
        return frozenset(self._listeners)

    def stats(self) -> dict[str, object]:
        """Return connection state, counters and registered topics."""
        return {
            "state": self._state.value,
            "connected": self.connected,
            "events_received": self._events_received,
            "parse_errors": self._parse_errors,
            "listener_errors": self._listener_errors,
            "topics": sorted(self._listeners),
        }

    # ------------------------------------------------------------------
    # Connection signals
    # ------------------------------------------------------------------

    def _connect_url(self) -> str:
        """Endpoint URL with the API key embedded in the query."""
        url: str = self._config.pricer_instance_url
        separator: str = "&" if "?" in url else "?"
        return f"{url}{separator}{urlencode({'key': self._config.api_key})}"

    async def _on_connect(self) -> None:
        if self._state == ConnectionState.CLOSED:
            await self._close_late_transport()
            return
        if self._state == ConnectionState.CONNECTED:
            # Reconnected by the Socket.IO library after a drop
            self._transport_up = True
            logger.info("Pricer socket reconnected")
            return
        self._settle_success()

    async def _on_connect_error(self, data: Any = None) -> None:
        if isinstance(data, BaseException):
            error: BaseException = data
        else:
            error = SocketConnectionError(data)
        self._settle_failure(error)

    async def _on_disconnect(self, *args: Any) -> None:
        self._transport_up = False
        logger.warning("Pricer socket disconnected (state=%s)", self._state.value)

    async def _close_late_transport(self) -> None:
        """Tear down a transport that came up after ``disconnect()``."""
        logger.warning("Connect signal after disconnect(), closing transport")
        await self._client.disconnect()

    def _settle_success(self) -> None:
        """Resolve the pending ``connect()`` call, at most once."""
        pending: asyncio.Future[None] | None = self._pending_connect
        if (
            pending is None
            or pending.done()
            or self._state == ConnectionState.CLOSED
        ):
            logger.debug("Ignoring connect signal (state=%s)", self._state.value)
            return
        self._pending_connect = None
        self._state = ConnectionState.CONNECTED
        self._transport_up = True
        logger.info("Connected to pricer socket")
        pending.set_result(None)

    def _settle_failure(self, error: BaseException) -> None:
        """Reject the pending ``connect()`` call, at most once."""
        pending: asyncio.Future[None] | None = self._pending_connect
        if (
            pending is None
            or pending.done()
            or self._state == ConnectionState.CLOSED
        ):
            if self._state == ConnectionState.CONNECTED:
                logger.warning("Ignoring connection failure after connect: %s", error)
            else:
                logger.debug(
                    "Ignoring connection failure (state=%s): %s",
                    self._state.value,
                    error,
                )
            return
        self._pending_connect = None
        self._state = ConnectionState.CONNECT_FAILED
        logger.error("Pricer socket connection failed: %s", error)
        pending.set_exception(error)

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def _register(self, topic: str, handle: ListenerHandle) -> None:
        """Append ``handle`` to ``topic``, installing the transport handler once."""
        if not topic:
            raise ValueError("topic must be non-empty")

        handles: list[ListenerHandle] | None = self._listeners.get(topic)
        if handles is None:
            handles = []
            self._listeners[topic] = handles
            self._client.on(topic, handler=self._make_handler(topic))
            logger.debug("Routing topic %s", topic)
        handles.append(handle)

    def _make_handler(self, topic: str) -> Callable[..., Awaitable[None]]:
        async def handler(*args: Any) -> None:
            await self._dispatch(topic, *args)

        return handler

    async def _dispatch(self, topic: str, *args: Any) -> None:
        """Deliver one event to every listener on ``topic``."""
        self._events_received += 1
        handles: list[ListenerHandle] = list(self._listeners.get(topic, ()))
        payload: Any = args[0] if len(args) == 1 else args
        parsed: dict[type[BaseModel], BaseModel | None] = {}

        for handle in handles:
            if handle.model is None:
                value: Any = payload
            else:
                if handle.model not in parsed:
                    parsed[handle.model] = self._parse(topic, handle.model, payload)
                value = parsed[handle.model]
                if value is None:
                    continue

            try:
                result: Any = handle.callback(value)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                self._listener_errors += 1
                self._log_listener_error(topic)

    def _parse(
        self,
        topic: str,
        model: type[BaseModel],
        payload: Any,
    ) -> BaseModel | None:
        try:
            return model.model_validate(payload)
        except ValidationError:
            self._parse_errors += 1
            self._log_parse_error(topic)
            return None

    # ------------------------------------------------------------------
    # Rate-Limited Logging
    # ------------------------------------------------------------------

    def _log_parse_error(self, topic: str) -> None:
        count: int = self._parse_errors
        if count <= _LOG_FIRST_N:
            logger.exception(
                "Failed to parse payload on %s (%d/%d)",
                topic,
                count,
                _LOG_FIRST_N,
            )
        elif count % _LOG_EVERY_N == 0:
            logger.error("Parse errors ongoing: %d total (topic=%s)", count, topic)

    def _log_listener_error(self, topic: str) -> None:
        count: int = self._listener_errors
        if count <= _LOG_FIRST_N:
            logger.exception(
                "Listener error for %s (%d/%d)",
                topic,
                count,
                _LOG_FIRST_N,
            )
        elif count % _LOG_EVERY_N == 0:
            logger.error("Listener errors ongoing: %d total (topic=%s)", count, topic)
