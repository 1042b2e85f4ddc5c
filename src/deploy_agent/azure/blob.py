"""Blob storage REST calls authorized with an Entra bearer token."""

from __future__ import annotations

import asyncio
import re
from typing import Optional
from urllib.parse import quote

import httpx
import structlog

from ..config import get_settings
from ..errors import BlobDeleteError, BlobError, UploadError

_logger = structlog.get_logger(__name__)

_NAME_RE = re.compile(r"<Name>([^<]+)</Name>")


def blob_url(blob_path: str) -> str:
    storage = get_settings().storage
    return f"{storage.endpoint}/{storage.container}/{quote(blob_path, safe='/~')}"


def container_url() -> str:
    storage = get_settings().storage
    return f"{storage.endpoint}/{storage.container}"


def auth_headers(token: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "x-ms-version": get_settings().storage.api_version,
    }


def _failure(prefix: str, response: httpx.Response, error_cls: type[BlobError] = BlobError) -> BlobError:
    code = response.headers.get("x-ms-error-code")
    return error_cls(f"{prefix}: {response.status_code} {response.text}".rstrip(), status=response.status_code, code=code)


async def upload_blob(client: httpx.AsyncClient, token: str, blob_path: str, content: bytes) -> None:
    headers = {
        **auth_headers(token),
        "x-ms-blob-type": "BlockBlob",
        "Content-Type": "application/octet-stream",
    }
    try:
        response = await client.put(blob_url(blob_path), headers=headers, content=content)
    except httpx.HTTPError as exc:
        raise UploadError(f"Blob upload failed: {exc}") from exc
    if not response.is_success:
        raise _failure("Blob upload failed", response, UploadError)


async def download_blob(client: httpx.AsyncClient, token: str, blob_path: str) -> Optional[bytes]:
    """Return the blob's bytes, or ``None`` when it does not exist."""
    try:
        response = await client.get(blob_url(blob_path), headers=auth_headers(token))
    except httpx.HTTPError as exc:
        raise BlobError(f"Blob download failed: {exc}") from exc
    if response.status_code == 404:
        return None
    if not response.is_success:
        raise _failure("Blob download failed", response)
    return response.content


async def delete_blob(client: httpx.AsyncClient, token: str, blob_path: str) -> None:
    """Delete a blob; a missing blob counts as deleted."""
    try:
        response = await client.delete(blob_url(blob_path), headers=auth_headers(token))
    except httpx.HTTPError as exc:
        raise BlobDeleteError(f"Blob delete failed: {exc}") from exc
    if not response.is_success and response.status_code != 404:
        raise _failure("Blob delete failed", response, BlobDeleteError)


async def list_blobs(client: httpx.AsyncClient, token: str, prefix: Optional[str] = None) -> list[str]:
    params = {"restype": "container", "comp": "list"}
    if prefix:
        params["prefix"] = prefix
    try:
        response = await client.get(container_url(), params=params, headers=auth_headers(token))
    except httpx.HTTPError as exc:
        raise BlobError(f"Blob list failed: {exc}") from exc
    if not response.is_success:
        raise _failure("Blob list failed", response)
    # TODO: follow <NextMarker> once a container holds more than 5000 blobs.
    return _NAME_RE.findall(response.text)


async def delete_blobs_by_prefix(client: httpx.AsyncClient, token: str, prefix: str) -> int:
    names = await list_blobs(client, token, prefix)
    await asyncio.gather(*(delete_blob(client, token, name) for name in names))
    _logger.info("blob.deleted_prefix", prefix=prefix, count=len(names))
    return len(names)


__all__ = [
    "auth_headers",
    "blob_url",
    "container_url",
    "delete_blob",
    "delete_blobs_by_prefix",
    "download_blob",
    "list_blobs",
    "upload_blob",
]
