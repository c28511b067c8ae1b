import json
import os
from pathlib import Path

import httpx
import pytest

DIGEST_A = "sha256:" + "a" * 64
DIGEST_B = "sha256:" + "b" * 64
DIGEST_C = "sha256:" + "c" * 64
TOKEN = "registry-token"
CHALLENGE = (
    'Bearer realm="https://ghcr.io/token",'
    'service="ghcr.io",scope="repository:org/app:pull"'
)


class SpyTransport(httpx.MockTransport):
    """MockTransport that records every request it handles"""

    def __init__(self, handler=None):
        self.requests: list[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            if handler is None:
                return httpx.Response(404)
            return handler(request)

        super().__init__(record)

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]


@pytest.fixture
def spy():
    """Return a factory for request recording transports"""
    return SpyTransport


def unauthorized() -> httpx.Response:
    return httpx.Response(401, headers={"WWW-Authenticate": CHALLENGE})


def manifest_response(request: httpx.Request, digest: str, body: dict | None = None):
    """Successful manifest response, with a body for GET requests only"""
    headers = {"Docker-Content-Digest": digest}
    if request.method == "HEAD":
        return httpx.Response(200, headers=headers)
    content = json.dumps(
        body
        if body is not None
        else {
            "schemaVersion": 2,
            "mediaType": "application/vnd.oci.image.manifest.v1+json",
        }
    ).encode("utf-8")
    return httpx.Response(200, headers=headers, content=content)


def token_response(request: httpx.Request) -> httpx.Response | None:
    """Answer token requests, None for any other request"""
    if request.url.path == "/token":
        return httpx.Response(200, json={"token": TOKEN})
    return None


def authorized(request: httpx.Request) -> bool:
    return request.headers.get("Authorization") == f"Bearer {TOKEN}"


@pytest.fixture
def build_info_file(tmp_path: Path) -> Path:
    path = tmp_path / "build-info.json"
    path.write_text(
        json.dumps(
            {"version": "v1.2.3", "commit": "abc123", "created": "2025-08-20T12:34:56Z"}
        )
    )
    return path


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the host environment out of Settings"""
    for name in list(os.environ):
        if name.startswith("BUILDINFO_") or name in (
            "DOCKER_IMAGE_DIGEST",
            "EXPECTED_IMAGE_DIGEST",
        ):
            monkeypatch.delenv(name)
