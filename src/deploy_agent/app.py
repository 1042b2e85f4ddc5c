"""FastMCP server exposing folder packaging and zip deploy as tools."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import structlog
from fastmcp import Context, FastMCP
from fastmcp.exceptions import ToolError

from .archive import write_zip_file
from .config import Settings, get_settings
from .deny_list import collect_files
from .errors import DeployError
from .transfer import Credentials, package_and_transfer

_logger = structlog.get_logger(__name__)


def _tool_error(tool_name: str, exc: DeployError) -> ToolError:
    _logger.warning("tool_error", tool=tool_name, error=exc.error_type, error_message=str(exc))
    return ToolError(json.dumps(exc.to_payload()))


def _resolve_folder(folder: str) -> Path:
    return Path(folder).expanduser().resolve()


def build_mcp_server() -> FastMCP:
    """Create and configure the FastMCP server instance."""
    settings: Settings = get_settings()

    instructions = (
        "You are the deploy agent. Package static site folders (secrets such as .env files, "
        "private keys, .git and node_modules are never included) and deploy them to Azure Static Web Apps."
    )
    mcp = FastMCP(name="deploy-agent", instructions=instructions)

    @mcp.tool(name="app_files", description="List the files of a folder that would be included in a deploy.")
    async def app_files(folder: str) -> dict[str, Any]:
        root = _resolve_folder(folder)
        try:
            files = collect_files(root)
        except DeployError as exc:
            raise _tool_error("app_files", exc) from exc
        return {"folder": str(root), "files": files, "count": len(files)}

    @mcp.tool(name="app_pack", description="Write the deployable files of a folder to a new ZIP archive.")
    async def app_pack(folder: str, output: str) -> dict[str, Any]:
        try:
            dest = await write_zip_file(_resolve_folder(folder), Path(output).expanduser())
        except DeployError as exc:
            raise _tool_error("app_pack", exc) from exc
        return {"archive": str(dest), "size": dest.stat().st_size}

    @mcp.tool(
        name="app_deploy_zip",
        description="Package a folder and deploy it to an Azure Static Web App through a temporary signed blob URL.",
    )
    async def app_deploy_zip(ctx: Context, folder: str, slug: Optional[str] = None) -> dict[str, Any]:
        root = _resolve_folder(folder)
        target = slug or settings.swa_slug
        await ctx.info(f"Deploying {root} to {target}.")
        try:
            result = await package_and_transfer(root, Credentials.from_settings(), slug=target)
        except DeployError as exc:
            raise _tool_error("app_deploy_zip", exc) from exc
        return {
            "status": "deployed",
            "slug": result.slug,
            "files": result.file_count,
            "archive_size": result.archive_size,
        }

    return mcp


__all__ = ["build_mcp_server"]
