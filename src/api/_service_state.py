"""
Grant service state management for API integration.

Provides singleton access to the GrantJobService instance.
Initialized during FastAPI lifespan.

Usage:
    from ._service_state import get_grant_service, init_grant_service

    # In lifespan:
    init_grant_service(db_path, access_token)

    # In routers:
    service = get_grant_service()
"""

from pathlib import Path
from typing import Optional

from src.grants.service import GrantJobService


# Global service instance
_grant_service: Optional[GrantJobService] = None


def init_grant_service(
    db_path: str | Path,
    access_token: str,
    job_names: Optional[list[str]] = None,
) -> GrantJobService:
    """
    Initialize the grant service singleton.

    Called during FastAPI lifespan startup. A service already set (e.g. by
    set_grant_service in tests) is kept.
    """
    global _grant_service

    if _grant_service is not None:
        return _grant_service

    _grant_service = GrantJobService.create(
        db_path=db_path,
        access_token=access_token,
        job_names=job_names,
    )
    return _grant_service


def set_grant_service(service: Optional[GrantJobService]) -> None:
    """Replace the singleton (None resets it)."""
    global _grant_service
    _grant_service = service


def get_grant_service() -> GrantJobService:
    """
    Get the grant service singleton.

    Raises:
        RuntimeError: If the service is not initialized
    """
    if _grant_service is None:
        raise RuntimeError(
            "Grant service not initialized. "
            "Ensure init_grant_service() is called during startup."
        )

    return _grant_service


def shutdown_grant_service() -> None:
    """Called during FastAPI lifespan shutdown."""
    global _grant_service
    _grant_service = None
