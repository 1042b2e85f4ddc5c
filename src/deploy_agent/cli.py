"""Command-line interface for packaging and deploying static site folders."""

from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Annotated, Any, Optional

import httpx
import typer
from rich.console import Console
from rich.table import Table

from .archive import write_zip_file
from .azure.sas import generate_blob_sas_url
from .azure.static_web_apps import list_static_web_apps
from .config import get_settings
from .deny_list import collect_files, matching_rule
from .errors import ConfigurationError, DeployError
from .logs import configure_logging
from .transfer import Credentials, package_and_transfer

console = Console()

app = typer.Typer(help="Package static site folders and deploy them to Azure Static Web Apps.", no_args_is_help=True)


@app.callback()
def _app_callback() -> None:
    configure_logging(get_settings())


def _resolve_path(raw: str) -> Path:
    return Path(raw).expanduser().resolve()


def _fail(exc: DeployError) -> typer.Exit:
    console.print(f"[red]{exc.error_type}:[/] {exc}")
    console.print_json(json.dumps(exc.to_payload()))
    return typer.Exit(code=1)


def _credentials(storage_token: Optional[str], arm_token: Optional[str]) -> Credentials:
    settings = get_settings()
    credentials = Credentials(
        storage_token=storage_token or settings.storage_token,
        arm_token=arm_token or settings.arm_token,
    )
    if not credentials.storage_token or not credentials.arm_token:
        raise ConfigurationError("Both a storage token and an ARM token are required (--storage-token/--arm-token).")
    return credentials


async def _with_client(func: Any, *args: Any) -> Any:
    async with httpx.AsyncClient(timeout=get_settings().http_timeout_seconds) as client:
        return await func(client, *args)


@app.command("files")
def files(
    folder: Annotated[str, typer.Argument(help="Folder to inspect.")],
    show_excluded: Annotated[bool, typer.Option("--show-excluded", help="Also list excluded top-level entries.")] = False,
) -> None:
    """List the files that a deploy of FOLDER would include."""
    root = _resolve_path(folder)
    try:
        included = collect_files(root)
    except DeployError as exc:
        raise _fail(exc) from exc

    table = Table(title=f"Deployable files in {root}")
    table.add_column("Path", style="cyan")
    table.add_column("Bytes", justify="right")
    for rel in included:
        table.add_row(rel, str((root / rel).stat().st_size))
    console.print(table)
    console.print(f"[green]{len(included)} file(s) included.[/]")

    if show_excluded:
        for name in sorted(os.listdir(root)):
            rule = matching_rule(name + "/x") if (root / name).is_dir() else matching_rule(name)
            if rule is not None:
                console.print(f"[yellow]excluded[/] {name} ({rule.pattern})")


@app.command("pack")
def pack(
    folder: Annotated[str, typer.Argument(help="Folder to archive.")],
    output: Annotated[str, typer.Option("--output", "-o", help="Destination .zip path (must not exist).")],
) -> None:
    """Write the deployable files of FOLDER to a ZIP archive."""
    try:
        dest = asyncio.run(write_zip_file(_resolve_path(folder), _resolve_path(output)))
    except DeployError as exc:
        raise _fail(exc) from exc
    console.print(f"[green]✓ Wrote {dest}[/] ({dest.stat().st_size} bytes)")


@app.command("deploy")
def deploy(
    folder: Annotated[str, typer.Argument(help="Folder to deploy.")],
    slug: Annotated[Optional[str], typer.Option("--slug", help="Static Web App name; defaults to DEPLOY_AGENT_SWA_SLUG.")] = None,
    storage_token: Annotated[
        Optional[str],
        typer.Option("--storage-token", envvar="DEPLOY_AGENT_STORAGE_TOKEN", help="Bearer token for blob storage."),
    ] = None,
    arm_token: Annotated[
        Optional[str],
        typer.Option("--arm-token", envvar="DEPLOY_AGENT_ARM_TOKEN", help="Bearer token for Azure Resource Manager."),
    ] = None,
) -> None:
    """Package FOLDER and deploy it through a temporary signed blob URL."""
    root = _resolve_path(folder)
    try:
        credentials = _credentials(storage_token, arm_token)
        result = asyncio.run(package_and_transfer(root, credentials, slug=slug))
    except DeployError as exc:
        raise _fail(exc) from exc
    console.print(
        f"[green]✓ Deployed {result.file_count} file(s)[/] ({result.archive_size} bytes) to [bold]{result.slug}[/]"
    )


@app.command("sign-url")
def sign_url(
    blob_path: Annotated[str, typer.Argument(help="Blob path inside the configured container.")],
    storage_token: Annotated[
        Optional[str],
        typer.Option("--storage-token", envvar="DEPLOY_AGENT_STORAGE_TOKEN", help="Bearer token for blob storage."),
    ] = None,
) -> None:
    """Print a one-hour, read-only SAS URL for BLOB_PATH."""
    settings = get_settings()
    token = storage_token or settings.storage_token
    if not token:
        console.print("[red]A storage token is required (--storage-token or DEPLOY_AGENT_STORAGE_TOKEN).[/]")
        raise typer.Exit(code=1)
    if not settings.storage.account:
        console.print("[red]DEPLOY_AGENT_STORAGE_ACCOUNT is not configured.[/]")
        raise typer.Exit(code=1)
    try:
        url = asyncio.run(_with_client(generate_blob_sas_url, token, blob_path))
    except DeployError as exc:
        raise _fail(exc) from exc
    # Plain print keeps the URL on one unwrapped line
    print(url)


@app.command("apps")
def apps(
    arm_token: Annotated[
        Optional[str],
        typer.Option("--arm-token", envvar="DEPLOY_AGENT_ARM_TOKEN", help="Bearer token for Azure Resource Manager."),
    ] = None,
) -> None:
    """List Static Web Apps in the configured resource group."""
    token = arm_token or get_settings().arm_token
    if not token:
        console.print("[red]An ARM token is required (--arm-token or DEPLOY_AGENT_ARM_TOKEN).[/]")
        raise typer.Exit(code=1)
    try:
        sites = asyncio.run(_with_client(list_static_web_apps, token))
    except DeployError as exc:
        raise _fail(exc) from exc

    table = Table(title="Static Web Apps")
    table.add_column("Name", style="cyan")
    table.add_column("App")
    table.add_column("Hostname")
    for site in sites:
        tags = site.get("tags") or {}
        props = site.get("properties") or {}
        table.add_row(str(site.get("name", "")), str(tags.get("appName", "")), str(props.get("defaultHostname", "")))
    console.print(table)


@app.command("serve-stdio")
def serve_stdio() -> None:
    """Run the MCP server over stdio transport.

    All logging goes to stderr; stdout carries the MCP protocol.
    """
    import dataclasses
    import logging

    from .app import build_mcp_server
    from .logs import reset_logging

    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)
    reset_logging()
    configure_logging(dataclasses.replace(get_settings(), log_rich_enabled=False), stream=sys.stderr)

    print("deploy-agent - Starting stdio transport...", file=sys.stderr)
    server = build_mcp_server()
    server.run(transport="stdio")


__all__ = ["app"]
