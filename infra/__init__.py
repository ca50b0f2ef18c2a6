"""Infrastructure layer for the pricer client.

This package provides the transports: the rate-limited REST client,
the Socket.IO subscription manager, and the environment settings that
configure both.
"""

from infra.http_api import AuthStrategy, HttpApiConfig, PricerHttpClient
from infra.settings import PricerSettings
from infra.socket_api import ConnectionState, PricerSocket, SocketConfig

__all__: list[str] = [
    "AuthStrategy",
    "ConnectionState",
    "HttpApiConfig",
    "PricerHttpClient",
    "PricerSettings",
    "PricerSocket",
    "SocketConfig",
]
