"""Package a deploy folder and hand it to Azure Static Web Apps via a temporary blob.

Sequence for one invocation::

    START -> UPLOADED -> SIGNED -> REMOTE_DEPLOY_REQUESTED -> SUCCEEDED | FAILED -> CLEANED_UP

The archive is uploaded to a per-invocation blob, a read-only SAS URL is
minted for it, and the ARM zipdeploy endpoint is asked to pull from that URL.
The temporary blob is deleted on every exit path once the upload has been
attempted; a failed delete is logged and never replaces the real outcome.
"""

from __future__ import annotations

import os
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional

import httpx
import structlog

from .archive import create_zip_buffer
from .azure.blob import delete_blob, upload_blob
from .azure.sas import generate_blob_sas_url, redact_sas_url
from .azure.static_web_apps import request_zip_deploy
from .config import Settings, get_settings
from .deny_list import collect_files
from .errors import CleanupWarning, ConfigurationError

_logger = structlog.get_logger(__name__)


class TransferStage(str, Enum):
    START = "start"
    UPLOADED = "uploaded"
    SIGNED = "signed"
    REMOTE_DEPLOY_REQUESTED = "remote_deploy_requested"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CLEANED_UP = "cleaned_up"


@dataclass(slots=True, frozen=True)
class Credentials:
    """Bearer tokens for blob storage and for the ARM deployment-control API."""

    storage_token: str
    arm_token: str

    def __repr__(self) -> str:
        return "Credentials(storage_token=***, arm_token=***)"

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "Credentials":
        settings = settings or get_settings()
        missing = [
            name
            for name, value in (
                ("DEPLOY_AGENT_STORAGE_TOKEN", settings.storage_token),
                ("DEPLOY_AGENT_ARM_TOKEN", settings.arm_token),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing credentials: set {', '.join(missing)}.")
        return cls(storage_token=settings.storage_token, arm_token=settings.arm_token)


@dataclass(slots=True, frozen=True)
class TransferResult:
    slug: str
    blob_path: str
    file_count: int
    archive_size: int


def temp_blob_path(now_ms: Optional[int] = None) -> str:
    """Time-derived object name, unique per invocation at millisecond resolution."""
    prefix = get_settings().storage.temp_prefix
    stamp = now_ms if now_ms is not None else time.time_ns() // 1_000_000
    return f"{prefix}/{stamp}.zip"


async def _cleanup(client: httpx.AsyncClient, token: str, blob_path: str) -> bool:
    try:
        await delete_blob(client, token, blob_path)
    except Exception as exc:  # best-effort: never mask the deploy outcome
        warning = CleanupWarning(
            f"Temporary blob {blob_path} was not deleted: {exc}",
            status=getattr(exc, "status", None),
            code=getattr(exc, "code", None),
        )
        _logger.warning("transfer.cleanup_failed", blob_path=blob_path, error=str(warning), status=warning.status)
        return False
    _logger.debug("transfer.cleaned_up", blob_path=blob_path, stage=TransferStage.CLEANED_UP.value)
    return True


@asynccontextmanager
async def temporary_blob(
    client: httpx.AsyncClient,
    token: str,
    blob_path: str,
    content: bytes,
) -> AsyncIterator[str]:
    """Upload *content* to *blob_path* for the duration of the block, then delete it."""
    try:
        await upload_blob(client, token, blob_path, content)
        _logger.info("transfer.uploaded", blob_path=blob_path, size=len(content))
        yield blob_path
    finally:
        await _cleanup(client, token, blob_path)


async def deploy_swa_zip(
    client: httpx.AsyncClient,
    credentials: Credentials,
    slug: str,
    archive: bytes,
    *,
    blob_path: Optional[str] = None,
) -> str:
    """Deploy *archive* to Static Web App *slug*; returns the temporary blob path used."""
    settings = get_settings()
    if not settings.storage.account:
        raise ConfigurationError("DEPLOY_AGENT_STORAGE_ACCOUNT is not configured.")
    path = blob_path or temp_blob_path()
    log = _logger.bind(slug=slug, blob_path=path)
    stage = TransferStage.START
    try:
        async with temporary_blob(client, credentials.storage_token, path, archive):
            stage = TransferStage.UPLOADED
            sas_url = await generate_blob_sas_url(client, credentials.storage_token, path)
            stage = TransferStage.SIGNED
            log.debug("transfer.signed", url=redact_sas_url(sas_url))
            await request_zip_deploy(client, credentials.arm_token, slug, sas_url)
            stage = TransferStage.REMOTE_DEPLOY_REQUESTED
            log.info("transfer.ingestion_requested", stage=stage.value)
    except Exception as exc:
        log.warning(
            "transfer.failed",
            stage=TransferStage.FAILED.value,
            last_stage=stage.value,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise
    log.info("transfer.succeeded", stage=TransferStage.SUCCEEDED.value, last_stage=stage.value)
    return path


async def package_and_transfer(
    root_dir: str | os.PathLike[str],
    credentials: Credentials,
    *,
    slug: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> TransferResult:
    """Filter, archive and deploy *root_dir*; raises a ``DeployError`` on any failure."""
    settings = get_settings()
    target = slug or settings.swa_slug
    files = collect_files(root_dir)
    archive = await create_zip_buffer(root_dir, files)

    if client is None:
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as owned:
            path = await deploy_swa_zip(owned, credentials, target, archive)
    else:
        path = await deploy_swa_zip(client, credentials, target, archive)

    return TransferResult(slug=target, blob_path=path, file_count=len(files), archive_size=len(archive))


__all__ = [
    "Credentials",
    "TransferResult",
    "TransferStage",
    "deploy_swa_zip",
    "package_and_transfer",
    "temp_blob_path",
    "temporary_blob",
]
