"""Environment-backed settings for the pricer clients.

Reads ``PRICER_*`` variables (and an optional ``.env`` file) and
derives the component configurations from them.

Variables:
    PRICER_INSTANCE_URL: Base URL of the pricer (default ``https://trader.tf``).
    PRICER_API_KEY: API key. Required.
    PRICER_RATE_LIMIT: Pace REST calls with the token bucket (default ``true``).
    PRICER_AUTH_STRATEGY: ``bearer_header`` (default) or ``query_key``.

Example::

    settings = PricerSettings()
    client = PricerHttpClient(config=settings.http_config())
    socket = PricerSocket(config=settings.socket_config())
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from infra.http_api import AuthStrategy, HttpApiConfig
from infra.socket_api import SocketConfig


class PricerSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PRICER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    instance_url: str = Field(default="https://trader.tf", min_length=1)
    api_key: str = Field(min_length=1)
    rate_limit: bool = True
    auth_strategy: AuthStrategy = AuthStrategy.BEARER_HEADER

    def http_config(self) -> HttpApiConfig:
        """Return the REST client configuration."""
        return HttpApiConfig(
            pricer_instance_url=self.instance_url,
            api_key=self.api_key,
            rate_limit=self.rate_limit,
            auth_strategy=self.auth_strategy,
        )

    def socket_config(self) -> SocketConfig:
        """Return the socket configuration (trailing slash kept)."""
        url: str = self.instance_url
        if not url.endswith("/"):
            url += "/"
        return SocketConfig(pricer_instance_url=url, api_key=self.api_key)
