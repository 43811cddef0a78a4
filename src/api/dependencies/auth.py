"""
X-API-Key check for the job control endpoints.

API_AUTH_ENABLED=true turns the check on. Accepted keys are API_KEY plus
the comma-separated API_KEYS, so an operator key can be rotated by adding
the new one before removing the old. /health stays open.

Settings are read at import; src.api.main binds the dependency at import
as well.
"""

import logging
import os
import secrets
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from src.infra.config import get_env_bool, get_env_list


logger = logging.getLogger(__name__)

API_KEY_HEADER_NAME = "X-API-Key"


@dataclass(frozen=True)
class ApiKeySettings:
    """Whether job control needs a key, and which keys are accepted."""

    enabled: bool = False
    keys: tuple = ()

    def accepts(self, candidate: str) -> bool:
        matched = False
        for key in self.keys:
            matched |= secrets.compare_digest(candidate.encode(), key.encode())
        return matched


def load_api_key_settings() -> ApiKeySettings:
    keys = [os.getenv("API_KEY", "").strip(), *get_env_list("API_KEYS", [])]
    return ApiKeySettings(
        enabled=get_env_bool("API_AUTH_ENABLED", False),
        keys=tuple(dict.fromkeys(k for k in keys if k)),
    )


API_KEY_SETTINGS = load_api_key_settings()
API_AUTH_ENABLED = API_KEY_SETTINGS.enabled

if API_AUTH_ENABLED and not API_KEY_SETTINGS.keys:
    logger.warning("API_AUTH_ENABLED is set but no API_KEY/API_KEYS configured; all job requests will be rejected")

api_key_header = APIKeyHeader(
    name=API_KEY_HEADER_NAME,
    auto_error=False,
    description="Operator key for run/start/stop/status (required when API_AUTH_ENABLED=true)",
)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "ApiKey"},
    )


async def verify_api_key(
    request: Request,
    api_key: Optional[str] = Security(api_key_header),
) -> Optional[str]:
    """
    Reject job control requests without an accepted key.

    Returns:
        The key that was accepted, or None when auth is disabled
    """
    if not API_KEY_SETTINGS.enabled:
        return None

    if not api_key:
        raise _unauthorized(f"Missing API key. Provide {API_KEY_HEADER_NAME} header.")

    if not API_KEY_SETTINGS.accepts(api_key):
        client = request.client.host if request.client else "unknown"
        logger.warning(f"Rejected API key for {request.method} {request.url.path} from {client}")
        raise _unauthorized("Invalid API key")

    return api_key
