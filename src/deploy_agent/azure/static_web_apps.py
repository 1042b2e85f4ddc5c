"""Azure Static Web Apps operations on the ARM API."""

from __future__ import annotations

from typing import Any, Optional

import httpx

from ..config import get_settings
from ..errors import AzureError, IngestionError
from .rest import azure_fetch


def swa_list_path() -> str:
    azure = get_settings().azure
    return (
        f"/subscriptions/{azure.subscription_id}/resourceGroups/{azure.resource_group}"
        "/providers/Microsoft.Web/staticSites"
    )


def swa_path(slug: str) -> str:
    return f"{swa_list_path()}/{slug}"


async def create_static_web_app(
    client: httpx.AsyncClient,
    token: str,
    slug: str,
    *,
    app_name: str,
    app_description: str,
) -> dict[str, Any]:
    azure = get_settings().azure
    result = await azure_fetch(
        client,
        swa_path(slug),
        token=token,
        method="PUT",
        api_version=azure.swa_api_version,
        body={
            "location": azure.location,
            "sku": {"name": azure.swa_sku_name, "tier": azure.swa_sku_tier},
            "properties": {},
            "tags": {"appName": app_name, "appDescription": app_description},
        },
    )
    return result or {}


async def get_static_web_app(client: httpx.AsyncClient, token: str, slug: str) -> dict[str, Any]:
    result = await azure_fetch(client, swa_path(slug), token=token, api_version=get_settings().azure.swa_api_version)
    return result or {}


async def list_static_web_apps(client: httpx.AsyncClient, token: str) -> list[dict[str, Any]]:
    result = await azure_fetch(client, swa_list_path(), token=token, api_version=get_settings().azure.swa_api_version)
    return list((result or {}).get("value", []))


async def delete_static_web_app(client: httpx.AsyncClient, token: str, slug: str) -> None:
    await azure_fetch(
        client,
        swa_path(slug),
        token=token,
        method="DELETE",
        api_version=get_settings().azure.swa_api_version,
    )


async def update_tags(client: httpx.AsyncClient, token: str, slug: str, tags: dict[str, str]) -> dict[str, Any]:
    result = await azure_fetch(
        client,
        swa_path(slug),
        token=token,
        method="PATCH",
        api_version=get_settings().azure.swa_api_version,
        body={"tags": tags},
    )
    return result or {}


async def request_zip_deploy(
    client: httpx.AsyncClient,
    token: str,
    slug: str,
    source_url: str,
    *,
    provider: Optional[str] = None,
) -> None:
    """Tell the site to pull its content from *source_url*.

    Both 200 (applied) and 202 (accepted for async processing) count as
    success; any other outcome raises ``IngestionError``.
    """
    settings = get_settings()
    path = f"{swa_path(slug)}/zipdeploy"
    try:
        await azure_fetch(
            client,
            path,
            token=token,
            method="POST",
            api_version=settings.azure.zipdeploy_api_version,
            expect_json=False,
            body={
                "properties": {
                    "appZipUrl": source_url,
                    "provider": provider or settings.deployment_provider,
                }
            },
        )
    except AzureError as exc:
        raise IngestionError(f"Zip deploy to {slug} failed: {exc}", status=exc.status, code=exc.code) from exc


__all__ = [
    "create_static_web_app",
    "delete_static_web_app",
    "get_static_web_app",
    "list_static_web_apps",
    "request_zip_deploy",
    "swa_list_path",
    "swa_path",
    "update_tags",
]
