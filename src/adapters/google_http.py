"""
Shared HTTP client for the Google REST APIs.

Authenticates with an OAuth bearer token and converts failed responses into
the provisioning error taxonomy:

- 429, or 403 with a rate-limit reason -> RateLimitError
- 400 "Unable to parse range" (sheet does not exist) -> ConfigurationError
- anything else -> RemoteOperationError
"""

import logging
from typing import Optional

import httpx

from src.grants.errors import (
    ConfigurationError,
    ProvisioningError,
    RateLimitError,
    RemoteOperationError,
)


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
USER_AGENT = "RosterGrants/1.0"

RATE_LIMIT_REASONS = frozenset({
    "rateLimitExceeded",
    "userRateLimitExceeded",
    "sharingRateLimitExceeded",
    "quotaExceeded",
})


def _error_details(response: httpx.Response) -> tuple[str, set]:
    """Extract (message, reasons) from a Google error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200], set()

    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return response.text[:200], set()

    reasons = {
        item.get("reason")
        for item in error.get("errors", [])
        if isinstance(item, dict) and item.get("reason")
    }
    return error.get("message", "") or response.text[:200], reasons


def classify_error(response: httpx.Response) -> ProvisioningError:
    """Map a failed response to a provisioning error."""
    message, reasons = _error_details(response)
    status = response.status_code
    text = f"HTTP {status}: {message}"

    if status == 429 or (status == 403 and reasons & RATE_LIMIT_REASONS):
        retry_after = response.headers.get("Retry-After")
        try:
            retry_seconds = float(retry_after) if retry_after else None
        except ValueError:
            retry_seconds = None
        return RateLimitError(text, retry_after=retry_seconds)

    if status == 400 and "Unable to parse range" in message:
        return ConfigurationError(f"Sheet not found ({message})")

    return RemoteOperationError(text, status_code=status)


class GoogleApiClient:
    """
    Thin synchronous wrapper around httpx.Client.

    Usage:
        with GoogleApiClient(token) as client:
            data = client.request("GET", url, params={...})
    """

    def __init__(
        self,
        access_token: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Args:
            access_token: OAuth bearer token
            timeout: Request timeout in seconds
            transport: Custom transport (tests pass httpx.MockTransport)
        """
        if not access_token:
            raise ConfigurationError("Google access token not configured (GOOGLE_ACCESS_TOKEN)")

        self._client = httpx.Client(
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {access_token}",
                "User-Agent": USER_AGENT,
            },
        )

    def request(self, method: str, url: str, **kwargs) -> dict:
        """
        Send a request and decode the JSON response.

        Raises:
            RateLimitError: Quota rejection
            ConfigurationError: Sheet does not exist
            RemoteOperationError: Any other failure, including transport errors
        """
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException:
            raise RemoteOperationError(f"{method} {url}: request timed out")
        except httpx.RequestError as e:
            raise RemoteOperationError(f"{method} {url}: {e}")

        if response.is_success:
            if not response.content:
                return {}
            return response.json()

        error = classify_error(response)
        logger.debug(f"{method} {url} failed: {error}")
        raise error

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "GoogleApiClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
