"""
API dependencies: X-API-Key authentication for the job control endpoints.
"""

from .auth import verify_api_key, API_AUTH_ENABLED

__all__ = ["verify_api_key", "API_AUTH_ENABLED"]
