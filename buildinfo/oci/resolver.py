from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

import httpx
from pydantic import ValidationError

from buildinfo.oci.client import GHCR, Client
from buildinfo.oci.index import Index, Platform
from buildinfo.oci.reference import ImageReference

logger = logging.getLogger(__name__)

DIGEST_HEADER = "Docker-Content-Digest"


def clean_tags(tags: Iterable[str | None] | str | None) -> list[str]:
    """Drop blank tags and duplicates, keeping the first occurrence

    A single tag may be given as a plain string.
    """
    if tags is None or isinstance(tags, str):
        tags = [tags]
    result = []
    for tag in tags:
        tag = (tag or "").strip()
        if tag and tag not in result:
            result.append(tag)
    return result


def _header_digest(response: httpx.Response) -> str | None:
    # httpx headers are case-insensitive
    return response.headers.get(DIGEST_HEADER, "").strip() or None


class ExpectedDigestResolver:
    """Resolve the digest a registry serves for a repository

    Candidate tags are tried in order, the first tag that resolves wins.
    """

    def __init__(
        self,
        repository: str,
        candidate_tags: Iterable[str | None] | str,
        registry_host: str = GHCR,
        platform: Platform | None = None,
        enabled: bool = True,
        transport: httpx.BaseTransport | None = None,
        logger: logging.Logger = logger,
    ):
        self.repository = repository
        self.candidate_tags = clean_tags(candidate_tags)
        self.registry_host = registry_host
        self.platform = platform or Platform.current()
        self.enabled = enabled
        self.transport = transport
        self.logger = logger

    def resolve(self) -> ImageReference | None:
        if not self.enabled:
            self.logger.debug("Registry lookup disabled, skipping")
            return None
        if not self.candidate_tags:
            return None
        try:
            return next(
                (reference for reference in self._attempts() if reference), None
            )
        except Exception as e:
            self.logger.warning(
                "Resolving %s failed: %s %s", self.repository, type(e).__name__, e
            )
            return None

    def _attempts(self) -> Iterator[ImageReference | None]:
        for tag in self.candidate_tags:
            digest = self.fetch_registry_digest(tag)
            if digest:
                self.logger.debug("Found digest for %s:%s", self.repository, tag)
                yield ImageReference(f"{self.repository}@{digest}")
            else:
                self.logger.warning("No digest for %s:%s", self.repository, tag)
                yield None

    def fetch_registry_digest(self, tag: str) -> str | None:
        """Registry digest for `repository:tag`, e.g. 'sha256:abcd'"""
        host, _, path = self.repository.partition("/")
        if host != self.registry_host or not path:
            return None
        try:
            with Client(
                path, registry_host=self.registry_host, transport=self.transport
            ) as client:
                return self._fetch_digest(client, tag)
        except Exception as e:
            self.logger.warning(
                "Fetching digest for %s:%s failed: %s %s",
                self.repository,
                tag,
                type(e).__name__,
                e,
            )
            return None

    def _fetch_digest(self, client: Client, tag: str) -> str | None:
        token = None
        response = client.head_manifest(tag)
        header_digest = _header_digest(response) if response.is_success else None

        if response.status_code == 401:
            token = self._authenticate(client, response)
            if token:
                response = client.head_manifest(tag, token=token)
                if response.is_success:
                    header_digest = _header_digest(response)

        response = client.get_manifest(tag, token=token)
        if response.status_code == 401 and not token:
            token = self._authenticate(client, response)
            if not token:
                return None
            response = client.get_manifest(tag, token=token)

        if not response.is_success:
            self.logger.debug(
                "GET manifest %s:%s returned %s",
                self.repository,
                tag,
                response.status_code,
            )
            return None
        return (
            self.digest_from_manifest(response)
            or _header_digest(response)
            or header_digest
        )

    def _authenticate(self, client: Client, response: httpx.Response) -> str | None:
        challenge = client.parse_bearer_challenge(
            response.headers.get("WWW-Authenticate")
        )
        return client.fetch_bearer_token(challenge)

    def digest_from_manifest(self, response: httpx.Response) -> str | None:
        """Pick the digest for the host platform from a manifest list"""
        try:
            body = response.json()
        except ValueError:
            return None
        if not isinstance(body, dict) or not isinstance(body.get("manifests"), list):
            return None
        try:
            index = Index.model_validate(body)
        except ValidationError as e:
            self.logger.debug("Unexpected manifest list: %s", e)
            return None
        descriptor = index.find(self.platform)
        if descriptor is None:
            self.logger.debug("No manifest for %s", self.platform)
            return None
        return descriptor.digest.strip() or None
