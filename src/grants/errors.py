"""
Provisioning exceptions.

Taxonomy used by the batch executor:
- ConfigurationError: fatal, raised before any row is touched
- RateLimitError: transient, drives the quota-backoff state machine
- RemoteOperationError: recorded per row, job continues
"""

from typing import Optional


class ProvisioningError(Exception):
    """Base exception for all provisioning errors."""
    pass


class ConfigurationError(ProvisioningError):
    """
    Raised when a job cannot run with its current configuration.

    Examples:
    - Required header (principal or container column) not found
    - Sheet/table does not exist
    - Invalid batch size or grant level
    """
    pass


class RateLimitError(ProvisioningError):
    """Raised by adapters when the remote service rejects a call for quota reasons."""

    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(message)


class RemoteOperationError(ProvisioningError):
    """
    Raised for remote failures unrelated to quota.

    Examples:
    - Handle not found (404)
    - Permission API rejection (403 without a rate-limit reason)
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class JobNotFoundError(ProvisioningError):
    """Raised when a requested job has no configuration."""

    def __init__(self, job_name: str):
        self.job_name = job_name
        super().__init__(f"Job not configured: {job_name}")
