"""Health-data provider client (poll source).

Queries a health-data HTTP API for the number of steps recorded within a
time window::

    GET {base_url}/v1/steps?start=<iso>&end=<iso>
    Authorization: Bearer <token>

The response is either ``{"cumulative": n}`` or
``{"samples": [{"value": n}, ...]}``, in which case the sample values are
summed. The tracker polls the window "start of local day -> now", so the
value behaves as a cumulative counter that restarts every midnight; the
reconciler treats that restart as a counter reset.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

import httpx

from stepkeeper import __version__
from stepkeeper.errors import AuthorizationDeniedError, SourceUnavailableError
from stepkeeper.models import DEFAULT_SERIES

if TYPE_CHECKING:
    from datetime import datetime

    from stepkeeper.config.schema import ProviderConfig

logger = logging.getLogger(__name__)

TOKEN_ENV_VAR = "STEPKEEPER_PROVIDER_TOKEN"
STEPS_PATH = "/v1/steps"


def get_provider_token() -> str | None:
    """Get the provider token from the environment, if set."""
    token = os.environ.get(TOKEN_ENV_VAR, "").strip()
    return token or None


def parse_step_payload(payload: Any) -> int:
    """Extract the step count from a provider response body.

    Args:
        payload: Decoded JSON body

    Returns:
        Cumulative step count

    Raises:
        SourceUnavailableError: If the body has neither supported shape
    """
    if isinstance(payload, dict):
        if "cumulative" in payload:
            value = payload["cumulative"]
            if isinstance(value, int | float) and not isinstance(value, bool) and value >= 0:
                return int(value)
        elif isinstance(payload.get("samples"), list):
            total = 0
            for sample in payload["samples"]:
                value = sample.get("value") if isinstance(sample, dict) else None
                if not isinstance(value, int | float) or isinstance(value, bool) or value < 0:
                    msg = f"Malformed step sample: {sample!r}"
                    raise SourceUnavailableError(msg, source="provider")
                total += int(value)
            return total

    msg = "Unrecognized step payload from provider"
    raise SourceUnavailableError(msg, source="provider")


class HealthProviderClient:
    """Async client for the health-data provider.

    Supports context manager and standalone usage; a standalone client
    creates its httpx client lazily and must be closed with ``aclose``.

    Args:
        base_url: Provider API root
        token: Bearer token. If None, reads $STEPKEEPER_PROVIDER_TOKEN.
        timeout: HTTP timeout in seconds
        series: Counter series the provider reports
        client: Optional httpx client (for testing)
    """

    name = "provider"

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        *,
        timeout: float = 10.0,
        series: str = DEFAULT_SERIES,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.series = series
        self._base_url = base_url.rstrip("/")
        self._token = token if token is not None else get_provider_token()
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_config(cls, config: ProviderConfig) -> HealthProviderClient:
        """Build a client from the provider config section."""
        return cls(config.base_url, config.token, timeout=config.timeout, series=config.series)

    @property
    def headers(self) -> dict[str, str]:
        """Get default request headers."""
        headers = {
            "Accept": "application/json",
            "User-Agent": f"stepkeeper/{__version__}",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def __aenter__(self) -> HealthProviderClient:
        """Enter async context."""
        self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context."""
        await self.aclose()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=self.headers,
                timeout=self._timeout,
            )
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        """Close the underlying httpx client if this object created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def is_available(self) -> bool:
        """Whether a provider is configured.

        Reachability and authorization are only known after a query.
        """
        return bool(self._base_url)

    async def query_cumulative(self, window_start: datetime, window_end: datetime) -> int:
        """Query the steps recorded between ``window_start`` and ``window_end``.

        Args:
            window_start: Window start (inclusive)
            window_end: Window end

        Returns:
            Step count within the window

        Raises:
            AuthorizationDeniedError: On 401/403
            SourceUnavailableError: On 5xx, network errors, timeouts or an
                                    unreadable body
        """
        client = self._ensure_client()
        params = {"start": window_start.isoformat(), "end": window_end.isoformat()}

        try:
            response = await client.get(STEPS_PATH, params=params, headers=self.headers)
        except httpx.TimeoutException as e:
            msg = f"Provider request timed out: {e}"
            raise SourceUnavailableError(msg, source=self.name) from e
        except httpx.HTTPError as e:
            msg = f"Provider request failed: {e}"
            raise SourceUnavailableError(msg, source=self.name) from e

        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> int:
        if response.status_code in (401, 403):
            msg = f"Provider denied access to step data ({response.status_code})"
            raise AuthorizationDeniedError(
                msg,
                source=self.name,
                status_code=response.status_code,
            )

        if response.status_code >= 500:
            msg = f"Provider server error: {response.status_code}"
            raise SourceUnavailableError(msg, source=self.name)

        if response.status_code != 200:
            msg = f"Unexpected provider response: {response.status_code}"
            raise SourceUnavailableError(msg, source=self.name)

        try:
            payload = response.json()
        except ValueError as e:
            msg = "Provider returned invalid JSON"
            raise SourceUnavailableError(msg, source=self.name) from e

        steps = parse_step_payload(payload)
        logger.debug("Provider reported %d steps", steps)
        return steps
