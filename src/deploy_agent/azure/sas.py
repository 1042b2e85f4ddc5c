"""User delegation SAS for a single blob.

A user delegation key is requested with the caller's bearer token and used
once to sign a read-only, time-boxed URL for one blob. The storage service
recomputes the string-to-sign from the query parameters and compares
signatures, so the field order in ``string_to_sign_fields`` must match the
service's canonical order for ``sv`` 2020-12-06 and later exactly.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import quote, urlencode
from xml.etree import ElementTree

import httpx
import structlog

from ..config import get_settings
from ..errors import SignError
from .blob import auth_headers, blob_url

_logger = structlog.get_logger(__name__)

READ_PERMISSION = "r"
RESOURCE_BLOB = "b"
PROTOCOL_HTTPS = "https"


@dataclass(slots=True, frozen=True)
class UserDelegationKey:
    signed_oid: str
    signed_tid: str
    signed_start: str
    signed_expiry: str
    signed_service: str
    signed_version: str
    value: str = field(repr=False)


_KEY_ELEMENTS: tuple[tuple[str, str], ...] = (
    ("signed_oid", "SignedOid"),
    ("signed_tid", "SignedTid"),
    ("signed_start", "SignedStart"),
    ("signed_expiry", "SignedExpiry"),
    ("signed_service", "SignedService"),
    ("signed_version", "SignedVersion"),
    ("value", "Value"),
)


def format_sas_time(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_user_delegation_key(xml_text: str) -> UserDelegationKey:
    try:
        root = ElementTree.fromstring(xml_text.lstrip("\ufeff").strip())
    except ElementTree.ParseError as exc:
        raise SignError(f"Malformed user delegation key response: {exc}") from exc
    values: dict[str, str] = {}
    for attr, tag in _KEY_ELEMENTS:
        node = root.find(tag)
        if node is None or not (node.text or "").strip():
            raise SignError(f"User delegation key response is missing <{tag}>.")
        values[attr] = (node.text or "").strip()
    return UserDelegationKey(**values)


async def get_user_delegation_key(
    client: httpx.AsyncClient,
    token: str,
    start: datetime,
    expiry: datetime,
) -> UserDelegationKey:
    """Ask the blob service for a delegation key valid from *start* to *expiry*."""
    storage = get_settings().storage
    body = (
        '<?xml version="1.0" encoding="utf-8"?>'
        f"<KeyInfo><Start>{format_sas_time(start)}</Start><Expiry>{format_sas_time(expiry)}</Expiry></KeyInfo>"
    )
    try:
        response = await client.post(
            f"{storage.endpoint}/",
            params={"restype": "service", "comp": "userdelegationkey"},
            headers={**auth_headers(token), "Content-Type": "application/xml"},
            content=body.encode("utf-8"),
        )
    except httpx.HTTPError as exc:
        raise SignError(f"User delegation key request failed: {exc}") from exc
    if not response.is_success:
        raise SignError(
            f"User delegation key request failed: {response.status_code} {response.text}".rstrip(),
            status=response.status_code,
            code=response.headers.get("x-ms-error-code"),
        )
    key = parse_user_delegation_key(response.text)
    _logger.debug("sas.key_issued", signed_oid=key.signed_oid, signed_expiry=key.signed_expiry)
    return key


def canonicalized_resource(account: str, container: str, blob_path: str) -> str:
    return f"/blob/{account}/{container}/{blob_path}"


def string_to_sign_fields(
    *,
    permissions: str,
    start: str,
    expiry: str,
    resource_path: str,
    key: UserDelegationKey,
    version: str,
    protocol: str = PROTOCOL_HTTPS,
    resource: str = RESOURCE_BLOB,
    snapshot_time: str = "",
    encryption_scope: str = "",
) -> list[tuple[str, str]]:
    """Return the 24 ordered (name, value) pairs joined by ``\\n`` for signing."""
    return [
        ("signedPermissions", permissions),
        ("signedStart", start),
        ("signedExpiry", expiry),
        ("canonicalizedResource", resource_path),
        ("signedKeyObjectId", key.signed_oid),
        ("signedKeyTenantId", key.signed_tid),
        ("signedKeyStart", key.signed_start),
        ("signedKeyExpiry", key.signed_expiry),
        ("signedKeyService", key.signed_service),
        ("signedKeyVersion", key.signed_version),
        ("signedAuthorizedUserObjectId", ""),
        ("signedUnauthorizedUserObjectId", ""),
        ("signedCorrelationId", ""),
        ("signedIP", ""),
        ("signedProtocol", protocol),
        ("signedVersion", version),
        ("signedResource", resource),
        ("signedSnapshotTime", snapshot_time),
        ("signedEncryptionScope", encryption_scope),
        ("rscc", ""),
        ("rscd", ""),
        ("rsce", ""),
        ("rscl", ""),
        ("rsct", ""),
    ]


def build_string_to_sign(fields: list[tuple[str, str]]) -> str:
    return "\n".join(value for _, value in fields)


def compute_signature(string_to_sign: str, key_value: str) -> str:
    """HMAC-SHA256 over the UTF-8 string, keyed with the base64-decoded key value."""
    try:
        secret = base64.b64decode(key_value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise SignError("User delegation key value is not valid base64.") from exc
    digest = hmac.new(secret, string_to_sign.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def build_sas_query(
    *,
    permissions: str,
    start: str,
    expiry: str,
    key: UserDelegationKey,
    version: str,
    signature: str,
    protocol: str = PROTOCOL_HTTPS,
    resource: str = RESOURCE_BLOB,
) -> str:
    params = [
        ("sp", permissions),
        ("st", start),
        ("se", expiry),
        ("spr", protocol),
        ("sv", version),
        ("sr", resource),
        ("skoid", key.signed_oid),
        ("sktid", key.signed_tid),
        ("skt", key.signed_start),
        ("ske", key.signed_expiry),
        ("sks", key.signed_service),
        ("skv", key.signed_version),
        ("sig", signature),
    ]
    return urlencode(params, quote_via=quote)


def sign_blob_url(
    blob_path: str,
    key: UserDelegationKey,
    *,
    start: datetime,
    expiry: datetime,
    permissions: str = READ_PERMISSION,
) -> str:
    """Compose the read-only SAS URL for *blob_path* from an already-issued key."""
    storage = get_settings().storage
    st = format_sas_time(start)
    se = format_sas_time(expiry)
    fields = string_to_sign_fields(
        permissions=permissions,
        start=st,
        expiry=se,
        resource_path=canonicalized_resource(storage.account, storage.container, blob_path),
        key=key,
        version=storage.api_version,
    )
    signature = compute_signature(build_string_to_sign(fields), key.value)
    query = build_sas_query(
        permissions=permissions,
        start=st,
        expiry=se,
        key=key,
        version=storage.api_version,
        signature=signature,
    )
    return f"{blob_url(blob_path)}?{query}"


async def generate_blob_sas_url(
    client: httpx.AsyncClient,
    token: str,
    blob_path: str,
    *,
    now: Optional[datetime] = None,
) -> str:
    """Issue a delegation key and return a URL granting read access to one blob."""
    storage = get_settings().storage
    start = (now or datetime.now(timezone.utc)).replace(microsecond=0)
    expiry = start + timedelta(seconds=storage.sas_ttl_seconds)
    key = await get_user_delegation_key(client, token, start, expiry)
    return sign_blob_url(blob_path, key, start=start, expiry=expiry)


def redact_sas_url(url: str) -> str:
    return url.split("?", 1)[0]


__all__ = [
    "UserDelegationKey",
    "build_sas_query",
    "build_string_to_sign",
    "canonicalized_resource",
    "compute_signature",
    "format_sas_time",
    "generate_blob_sas_url",
    "get_user_delegation_key",
    "parse_user_delegation_key",
    "redact_sas_url",
    "sign_blob_url",
    "string_to_sign_fields",
]
