"""HTTP transport adapter.

Implements TransportPort by posting registration payloads to the
authority's REST endpoint. Normalizes HTTP-level results into the
core's response/error taxonomy.
"""

import logging
from typing import Any

import httpx

from fiscalsync.core.errors import ConnectivityError, MalformedResponseError
from fiscalsync.core.models import AuthorityResponse
from fiscalsync.core.ports import TransportPort

logger = logging.getLogger(__name__)

REGISTRATION_PATH = "/api/v1/registrations"

# Client errors that signal a transient condition rather than a refusal
_TRANSIENT_STATUS_CODES = {408, 429}


class HttpTransport(TransportPort):
    """Authority transport over HTTP via httpx."""

    def __init__(
        self,
        api_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize HTTP transport.

        Args:
            api_url: Base URL of the authority API (e.g., https://ekasa.example)
            api_key: Optional API key sent as a bearer token
            timeout: Default request timeout in seconds
            client: Preconfigured client (tests inject a MockTransport here)
        """
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.client = client or httpx.AsyncClient(
            base_url=self.api_url,
            headers=self._get_headers(),
            timeout=timeout,
        )

    def _get_headers(self) -> dict[str, str]:
        """Build request headers."""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.client.aclose()

    async def close(self) -> None:
        """Close the httpx client and clean up resources.

        Must be called when done using the adapter if not using it as a context manager.
        """
        await self.client.aclose()

    async def send(self, payload: str, timeout: float) -> AuthorityResponse:
        """Post a payload and classify the authority's answer."""
        try:
            response = await self.client.post(
                REGISTRATION_PATH,
                content=payload.encode("utf-8"),
                headers=self._get_headers(),
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise ConnectivityError(f"Authority request timed out: {e}") from e
        except httpx.TransportError as e:
            raise ConnectivityError(f"Authority unreachable: {e}") from e
        except httpx.HTTPError as e:
            raise MalformedResponseError(f"Unreadable authority response: {e}") from e

        status = response.status_code
        if status >= 500 or status in _TRANSIENT_STATUS_CODES:
            raise ConnectivityError(f"Authority temporarily unavailable (HTTP {status})")

        data = self._parse_json(response)

        if response.is_success:
            authority_id = data.get("id")
            if not authority_id or not isinstance(authority_id, str):
                raise MalformedResponseError(
                    f"Authority accepted request without an identifier (HTTP {status})"
                )
            return AuthorityResponse.success(authority_id)

        if 400 <= status < 500:
            return self._parse_rejection(data, status)

        raise MalformedResponseError(f"Unexpected HTTP status {status} from authority")

    @staticmethod
    def _parse_json(response: httpx.Response) -> dict[str, Any]:
        """Decode a JSON object body or raise MalformedResponseError."""
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"Authority returned non-JSON body (HTTP {response.status_code})"
            ) from e
        if not isinstance(data, dict):
            raise MalformedResponseError(
                f"Authority returned {type(data).__name__} instead of an object"
            )
        return data

    @staticmethod
    def _parse_rejection(data: dict[str, Any], status: int) -> AuthorityResponse:
        """Extract a structured refusal from an error body."""
        error = data.get("error")
        if not isinstance(error, dict):
            raise MalformedResponseError(
                f"Authority refused request without error details (HTTP {status})"
            )
        code = error.get("code")
        if isinstance(code, bool) or not isinstance(code, int):
            raise MalformedResponseError(f"Invalid error code in refusal: {code!r}")
        message = error.get("message")
        if not isinstance(message, str):
            message = ""
        logger.debug(f"Authority refusal #{code} (HTTP {status}): {message}")
        return AuthorityResponse.rejection(code, message)
