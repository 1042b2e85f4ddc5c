import base64
import json
from typing import Any, Optional

import httpx
import pytest

from deploy_agent.config import clear_settings_cache
from deploy_agent.logs import reset_logging

STORAGE_ACCOUNT = "acct"
STORAGE_HOST = f"{STORAGE_ACCOUNT}.blob.core.windows.net"
ARM_HOST = "management.azure.com"
KEY_VALUE = base64.b64encode(b"0123456789abcdef0123456789abcdef").decode("ascii")


def delegation_key_xml(value: str = KEY_VALUE) -> str:
    return (
        '\ufeff<?xml version="1.0" encoding="utf-8"?>'
        "<UserDelegationKey>"
        "<SignedOid>11111111-1111-1111-1111-111111111111</SignedOid>"
        "<SignedTid>22222222-2222-2222-2222-222222222222</SignedTid>"
        "<SignedStart>2025-01-01T00:00:00Z</SignedStart>"
        "<SignedExpiry>2025-01-01T01:00:00Z</SignedExpiry>"
        "<SignedService>b</SignedService>"
        "<SignedVersion>2024-11-04</SignedVersion>"
        f"<Value>{value}</Value>"
        "</UserDelegationKey>"
    )


class FakeAzure:
    """Answers like blob storage and the ARM API, recording every request."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.upload_status = 201
        self.key_status = 200
        self.key_body = delegation_key_xml()
        self.zipdeploy_status = 200
        self.zipdeploy_text = ""
        self.delete_status = 202
        self.blobs: dict[str, bytes] = {}
        self.sites: list[dict[str, Any]] = []
        # op name -> exception raised instead of answering
        self.errors: dict[str, Exception] = {}

    @staticmethod
    def classify(request: httpx.Request) -> str:
        if request.url.host == STORAGE_HOST:
            params = request.url.params
            if request.method == "PUT":
                return "upload"
            if request.method == "POST" and params.get("comp") == "userdelegationkey":
                return "key"
            if request.method == "DELETE":
                return "delete"
            if request.method == "GET" and params.get("comp") == "list":
                return "list"
            return "download"
        if request.url.host == ARM_HOST:
            if request.method == "POST" and request.url.path.endswith("/zipdeploy"):
                return "zipdeploy"
            return "arm"
        return "unknown"

    @property
    def ops(self) -> list[str]:
        return [self.classify(request) for request in self.requests]

    def requests_for(self, op: str) -> list[httpx.Request]:
        return [request for request in self.requests if self.classify(request) == op]

    def _blob_name(self, request: httpx.Request) -> str:
        # /{container}/{blob path}
        return request.url.path.split("/", 2)[2]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        op = self.classify(request)
        if op in self.errors:
            raise self.errors[op]
        if op == "upload":
            if self.upload_status >= 400:
                return httpx.Response(
                    self.upload_status,
                    text="AuthorizationPermissionMismatch",
                    headers={"x-ms-error-code": "AuthorizationPermissionMismatch"},
                )
            self.blobs[self._blob_name(request)] = request.content
            return httpx.Response(self.upload_status)
        if op == "key":
            if self.key_status >= 400:
                return httpx.Response(
                    self.key_status,
                    text="<Error><Code>AuthorizationFailure</Code></Error>",
                    headers={"x-ms-error-code": "AuthorizationFailure"},
                )
            return httpx.Response(self.key_status, text=self.key_body, headers={"Content-Type": "application/xml"})
        if op == "delete":
            self.blobs.pop(self._blob_name(request), None)
            if self.delete_status >= 400:
                return httpx.Response(self.delete_status, headers={"x-ms-error-code": "BlobNotFound"})
            return httpx.Response(self.delete_status)
        if op == "list":
            prefix = request.url.params.get("prefix", "")
            names = "".join(
                f"<Blob><Name>{name}</Name></Blob>" for name in sorted(self.blobs) if name.startswith(prefix)
            )
            return httpx.Response(200, text=f"<EnumerationResults><Blobs>{names}</Blobs></EnumerationResults>")
        if op == "download":
            name = self._blob_name(request)
            if name not in self.blobs:
                return httpx.Response(404, headers={"x-ms-error-code": "BlobNotFound"})
            return httpx.Response(200, content=self.blobs[name])
        if op == "zipdeploy":
            if self.zipdeploy_status >= 400:
                return httpx.Response(
                    self.zipdeploy_status,
                    json={"error": {"code": "BadRequest", "message": "The zip could not be ingested."}},
                )
            return httpx.Response(self.zipdeploy_status, text=self.zipdeploy_text)
        if op == "arm":
            if request.method == "GET" and request.url.path.endswith("/staticSites"):
                return httpx.Response(200, json={"value": self.sites})
            if request.method == "DELETE":
                return httpx.Response(204)
            body: Optional[dict[str, Any]] = json.loads(request.content) if request.content else None
            return httpx.Response(200, json={"name": request.url.path.rsplit("/", 1)[-1], **(body or {})})
        return httpx.Response(404)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def isolated_env(tmp_path, monkeypatch):
    """Point settings at a fake storage account and subscription and reset caches."""
    monkeypatch.setenv("APP_ENVIRONMENT", "test")
    monkeypatch.setenv("DEPLOY_AGENT_SUBSCRIPTION_ID", "sub-123")
    monkeypatch.setenv("DEPLOY_AGENT_RESOURCE_GROUP", "rg-test")
    monkeypatch.setenv("DEPLOY_AGENT_STORAGE_ACCOUNT", STORAGE_ACCOUNT)
    monkeypatch.setenv("DEPLOY_AGENT_STORAGE_TOKEN", "storage-token")
    monkeypatch.setenv("DEPLOY_AGENT_ARM_TOKEN", "arm-token")
    for name in (
        "DEPLOY_AGENT_ARM_BASE_URL",
        "DEPLOY_AGENT_CONTAINER_NAME",
        "DEPLOY_AGENT_STORAGE_ENDPOINT",
        "DEPLOY_AGENT_STORAGE_API_VERSION",
        "DEPLOY_AGENT_SWA_SLUG",
        "DEPLOY_AGENT_TEMP_PREFIX",
        "DEPLOY_AGENT_SAS_TTL_SECONDS",
        "DEPLOY_AGENT_DEPLOYMENT_PROVIDER",
    ):
        monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    try:
        yield
    finally:
        clear_settings_cache()


@pytest.fixture
def fake_azure(isolated_env) -> FakeAzure:
    return FakeAzure()


@pytest.fixture
def site_dir(tmp_path):
    """A small static site with a secret next to it."""
    root = tmp_path / "site"
    (root / "css").mkdir(parents=True)
    (root / "index.html").write_bytes(b"<h1>Hello</h1>")
    (root / "css" / "style.css").write_text("body { color: red; }\n")
    (root / ".env").write_text("SECRET=1\n")
    return root


@pytest.fixture(autouse=True)
def _reset_global_state():
    yield
    clear_settings_cache()
    reset_logging()
