"""Error kinds raised by the packaging and transfer pipeline."""

from __future__ import annotations

from typing import Any, Optional


class DeployError(Exception):
    """Base class for every failure surfaced by the deploy pipeline.

    Carries enough context (HTTP status, backend error code) for a caller to
    diagnose the failure without retrying.
    """

    error_type = "DeployError"

    def __init__(self, message: str, *, status: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.code = code

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": {
                "type": self.error_type,
                "message": str(self),
                "status": self.status,
                "code": self.code,
            }
        }


class ConfigurationError(DeployError):
    error_type = "ConfigurationError"


class FilterIOError(DeployError):
    """Raised when the deploy folder cannot be walked."""

    error_type = "FilterIOError"


class ArchiveError(DeployError):
    """Raised when the file set cannot be represented in a plain (non-ZIP64) archive."""

    error_type = "ArchiveError"


class EncodeIOError(ArchiveError):
    """Raised when a file cannot be read while building the archive."""

    error_type = "EncodeIOError"


class AzureError(DeployError):
    """Non-2xx response from the Azure Resource Manager API."""

    error_type = "AzureError"


class IngestionError(AzureError):
    """The deployment-control endpoint rejected or failed the zip deploy."""

    error_type = "IngestionError"


class BlobError(DeployError):
    error_type = "BlobError"


class UploadError(BlobError):
    error_type = "UploadError"


class BlobDeleteError(BlobError):
    error_type = "BlobDeleteError"


class SignError(DeployError):
    """Delegation key issuance or SAS signing failed; no URL is produced."""

    error_type = "SignError"


class CleanupWarning(DeployError):
    """Temporary object could not be removed. Logged, never raised to callers."""

    error_type = "CleanupWarning"


__all__ = [
    "ArchiveError",
    "AzureError",
    "BlobDeleteError",
    "BlobError",
    "CleanupWarning",
    "ConfigurationError",
    "DeployError",
    "EncodeIOError",
    "FilterIOError",
    "IngestionError",
    "SignError",
    "UploadError",
]
