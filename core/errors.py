"""Error normalisation for the pricer REST client.

Every failure that leaves :meth:`infra.http_api.PricerHttpClient.request`
is an :class:`ApiError`. Three failure shapes collapse into it:

1. A well-formed envelope with ``success: 0``
   (:class:`EnvelopeRejection`, raised internally by the client).
2. A transport failure that carries a response (non-2xx with a body,
   ``httpx.HTTPStatusError``).
3. A transport failure with no response at all (network error,
   timeout, refused connection, ``httpx.RequestError``).

The message of the raised error is always prefixed with the method and
URL of the originating call (``"GET /prices/5021;6: Not found"``) so a
failure is traceable without a stack trace. The un-prefixed message is
kept on :attr:`ApiError.detail`.

Taxonomy:
    - :class:`ServiceRejectionError`: the service answered and said no.
      ``status`` is the HTTP status of that answer.
    - :class:`TransportFailureError`: nothing interpretable came back.
      ``status`` is ``0``.

Both subclass :class:`ApiError`, so callers only ever need to catch one
type.

Example:
    >>> try:
    ...     raise_api_error("GET", "/rate", EnvelopeRejection("Nope", 200))
    ... except ApiError as err:
    ...     err.get_response()
    {'status': 200, 'message': 'GET /rate: Nope'}
"""

import json
import logging
from typing import Any, NoReturn

import httpx

logger: logging.Logger = logging.getLogger(__name__)

_ERROR_JOINER: str = ". "
"""Separator used when the service returns a list of error strings."""


# ---------------------------------------------------------------------------
# Error types
# ---------------------------------------------------------------------------


class ApiError(Exception):
    """The single error type surfaced by the REST client.

    Args:
        message: Full, method/URL-prefixed message.
        status: Originating HTTP status, or ``0`` when no response
            was received.
        detail: Underlying message without the method/URL prefix.
            Defaults to ``message``.
    """

    def __init__(self, message: str, status: int, detail: str | None = None) -> None:
        super().__init__(message)
        self.message: str = message
        self.status: int = status
        self.detail: str = detail if detail is not None else message

    def get_response(self) -> dict[str, Any]:
        """Return the error as a plain ``{"status", "message"}`` dict."""
        return {"status": self.status, "message": self.message}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status}, message={self.message!r})"


class ServiceRejectionError(ApiError):
    """The service processed the request and reported failure."""


class TransportFailureError(ApiError):
    """No interpretable response reached the client."""


class EnvelopeRejection(Exception):
    """A 2xx response whose envelope carried ``success: 0``.

    Internal signal between the client and :func:`raise_api_error`;
    never escapes the client.

    Args:
        message: The envelope's ``message``.
        status: HTTP status of the (successful-transport) response.
    """

    def __init__(self, message: str, status: int) -> None:
        super().__init__(message)
        self.message: str = message
        self.status: int = status


# ---------------------------------------------------------------------------
# Normaliser
# ---------------------------------------------------------------------------


def raise_api_error(method: str, url: str, exc: BaseException) -> NoReturn:
    """Convert any failure into an :class:`ApiError` and raise it.

    Args:
        method: HTTP method of the originating call.
        url: Path or URL of the originating call.
        exc: The failure to normalise.

    Raises:
        ApiError: Always. The original exception is chained as
            ``__cause__``.
    """
    if isinstance(exc, ApiError):
        raise exc

    error_cls: type[ApiError] = ApiError
    status: int = 0

    if isinstance(exc, EnvelopeRejection):
        error_cls = ServiceRejectionError
        message: str = exc.message
        status = exc.status
    elif isinstance(exc, httpx.HTTPStatusError):
        error_cls = ServiceRejectionError
        message = _message_from_response(exc.response)
        status = exc.response.status_code
    elif isinstance(exc, httpx.RequestError):
        error_cls = TransportFailureError
        message = str(exc)
    else:
        message = str(exc)

    if not message:
        message = type(exc).__name__

    raise error_cls(f"{method} {url}: {message}", status, detail=message) from exc


def _message_from_response(response: httpx.Response) -> str:
    """Extract a human-readable message from an error response body.

    Prefers ``errors`` over ``message``. A list of errors is joined
    with ``". "``. Falls back to the raw body, then the reason phrase.
    """
    try:
        body: Any = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        body = None

    if isinstance(body, dict):
        errors_or_message: Any = body.get("errors") or body.get("message")
        if isinstance(errors_or_message, (list, tuple)):
            return _ERROR_JOINER.join(str(item) for item in errors_or_message)
        if errors_or_message:
            return str(errors_or_message)

    text: str = response.text.strip()
    if text:
        return text
    return response.reason_phrase
