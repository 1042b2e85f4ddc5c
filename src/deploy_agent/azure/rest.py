"""Thin async wrapper over the Azure Resource Manager REST API."""

from __future__ import annotations

import json
from typing import Any, Optional

import httpx

from ..config import get_settings
from ..errors import AzureError


def _error_from_response(response: httpx.Response) -> AzureError:
    try:
        body: Any = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        body = None
    envelope = body.get("error") if isinstance(body, dict) else None
    code = "UnknownError"
    message = response.text or response.reason_phrase
    if isinstance(envelope, dict):
        code = str(envelope.get("code") or code)
        message = str(envelope.get("message") or json.dumps(body))
    elif body is not None:
        message = json.dumps(body)
    return AzureError(message, status=response.status_code, code=code)


async def azure_fetch(
    client: httpx.AsyncClient,
    path: str,
    *,
    token: str,
    method: str = "GET",
    body: Any = None,
    api_version: Optional[str] = None,
    expect_json: bool = True,
) -> Optional[dict[str, Any]]:
    """Call ``{arm_base_url}{path}`` with bearer auth.

    Returns the decoded JSON body, or ``None`` for 202/204 responses, empty
    bodies, and any 2xx when *expect_json* is false. Raises ``AzureError``
    with the ARM error envelope's code and message on non-2xx, on transport
    failures, and on a 2xx body that is not JSON when JSON was expected.
    """
    settings = get_settings()
    url = f"{settings.azure.arm_base_url}{path}"
    params = {"api-version": api_version} if api_version else None
    headers = {"Authorization": f"Bearer {token}"}
    content: Optional[bytes] = None
    if body is not None:
        headers["Content-Type"] = "application/json"
        content = json.dumps(body).encode("utf-8")

    try:
        response = await client.request(method, url, params=params, headers=headers, content=content)
    except httpx.HTTPError as exc:
        raise AzureError(f"{method} {path} failed: {exc}") from exc

    if not response.is_success:
        raise _error_from_response(response)
    if not expect_json or response.status_code in (202, 204) or not response.content:
        return None
    try:
        return response.json()
    except ValueError as exc:
        raise AzureError(
            f"{method} {path} returned a non-JSON body: {response.text[:200]}",
            status=response.status_code,
            code="InvalidResponse",
        ) from exc


__all__ = ["azure_fetch"]
