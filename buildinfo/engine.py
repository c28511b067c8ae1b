"""Inspect the container this process runs in through the engine API

ref: https://docs.docker.com/engine/api/
"""
from __future__ import annotations

import logging
import socket
from collections.abc import Callable
from typing import Any
from urllib.parse import quote

import httpx

from buildinfo.oci.client import GHCR
from buildinfo.oci.reference import ImageReference

logger = logging.getLogger(__name__)

DEFAULT_ENGINE_URL = "http://localhost:2375"
TIMEOUT = httpx.Timeout(1.5)


def extract_tag_from_image_reference(reference: str | None) -> str | None:
    """Return the tag of an image reference

    - `None` for digest pinned references, `repo@sha256:...`
    - "latest" when the reference has no tag
    """
    if not reference or "@" in reference:
        return None
    last_slash = reference.rfind("/")
    last_colon = reference.rfind(":")
    if last_colon > last_slash:
        return reference[last_colon + 1 :]
    return "latest"


def container_hostname() -> str | None:
    """The engine sets the hostname of a container to its (short) id"""
    try:
        return socket.gethostname().strip() or None
    except OSError as e:
        logger.warning("Could not resolve hostname: %r", e)
        return None


def _short(container_id: str | None) -> str:
    if not container_id:
        return ""
    return container_id[:12] + ("…" if len(container_id) > 12 else "")


def _split_engine_url(engine_url: str) -> tuple[str, str | None]:
    """Return the base url and, for `unix://` urls, the socket path"""
    if engine_url.startswith("unix://"):
        return "http://localhost", engine_url.removeprefix("unix://")
    return engine_url.rstrip("/"), None


class RunningContainerResolver:
    """Resolve the image the current container was started from"""

    def __init__(
        self,
        engine_url: str = DEFAULT_ENGINE_URL,
        registry_host: str = GHCR,
        enabled: bool = True,
        transport: httpx.BaseTransport | None = None,
        container_id: Callable[[], str | None] = container_hostname,
        logger: logging.Logger = logger,
    ):
        self.base_url, self.uds = _split_engine_url(engine_url)
        self.transport = transport
        self.registry_host = registry_host
        self.enabled = enabled
        self.container_id = container_id
        self.logger = logger

    def _transport(self) -> httpx.BaseTransport | None:
        if self.transport is None and self.uds:
            return httpx.HTTPTransport(uds=self.uds)
        return self.transport

    def get_json(self, path: str) -> Any:
        """GET `path` from the engine API, None when that fails"""
        url = f"{self.base_url}/{path.lstrip('/')}"
        self.logger.debug("GET %s", url)
        try:
            with httpx.Client(timeout=TIMEOUT, transport=self._transport()) as client:
                response = client.get(url)
            if not response.is_success:
                self.logger.debug("GET %s returned %s", url, response.status_code)
                return None
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            self.logger.warning(
                "Engine request %s failed: %s %s", path, type(e).__name__, e
            )
            return None

    def inspect_container(self) -> dict | None:
        container_id = self.container_id()
        self.logger.debug("Container id: %s", _short(container_id))
        if not container_id:
            return None
        container = self.get_json(f"/containers/{quote(container_id, safe='')}/json")
        if not isinstance(container, dict):
            return None
        return container

    @staticmethod
    def _config_image(container: dict) -> str | None:
        config = container.get("Config")
        if not isinstance(config, dict):
            return None
        image = config.get("Image")
        return str(image) if image else None

    def resolve(self) -> ImageReference | None:
        """Digest reference of the running image, e.g. `ghcr.io/org/app@sha256:...`"""
        if not self.enabled:
            self.logger.debug("Engine lookup disabled, skipping")
            return None
        try:
            container = self.inspect_container()
            if container is None:
                return None

            image_ref = container.get("Image") or self._config_image(container)
            self.logger.debug("Container image: '%s'", image_ref)
            if not image_ref:
                return None

            image = self.get_json(f"/images/{quote(str(image_ref), safe='')}/json")
            if not isinstance(image, dict):
                return None

            repo_digests = image.get("RepoDigests")
            if not isinstance(repo_digests, list) or not repo_digests:
                self.logger.debug("Image %s has no RepoDigests", image_ref)
                return None
            preferred = next(
                (
                    digest
                    for digest in repo_digests
                    if str(digest).startswith(f"{self.registry_host}/")
                ),
                repo_digests[0],
            )
            return ImageReference(str(preferred))
        except Exception as e:
            self.logger.warning(
                "Resolving running image failed: %s %s", type(e).__name__, e
            )
            return None

    def image_tag(self) -> str | None:
        """The tag the container was started with

        None when the container was started from a digest reference.
        """
        if not self.enabled:
            return None
        try:
            container = self.inspect_container()
            if container is None:
                return None
            return extract_tag_from_image_reference(self._config_image(container))
        except Exception as e:
            self.logger.warning(
                "Resolving image tag failed: %s %s", type(e).__name__, e
            )
            return None

    def image_start_reference(self) -> str | None:
        """The image reference exactly as the container was started with"""
        if not self.enabled:
            return None
        try:
            container = self.inspect_container()
            if container is None:
                return None
            return self._config_image(container)
        except Exception as e:
            self.logger.warning(
                "Resolving start reference failed: %s %s", type(e).__name__, e
            )
            return None
