"""Build identity verification

Compares the image the running container was started from with the image
the registry currently serves for the deployed tag.
"""
import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path

import httpx
from pydantic import BaseModel

from buildinfo.config import BUILD_INFO_PATH, Settings
from buildinfo.engine import RunningContainerResolver
from buildinfo.oci.index import Platform
from buildinfo.oci.reference import ImageReference
from buildinfo.oci.resolver import ExpectedDigestResolver, clean_tags

logger = logging.getLogger(__name__)

_DIGEST = re.compile(r"[a-z0-9]+(?:[+._-][a-z0-9]+)*:[a-f0-9]{32,}")


class BuildInfoError(Exception):
    """Raised when the build info file is required but unusable."""


def read_first_existing_file(paths: list[Path]) -> str | None:
    """Return the stripped content of the first non-empty file in `paths`"""
    for path in paths:
        if not path.is_file():
            continue
        content = path.read_text().strip()
        if content:
            return content
    return None


def digest_of(value: str | None) -> str | None:
    """Digest of `repo@digest` or of a bare digest"""
    if not value:
        return None
    digest = ImageReference(value).digest
    if digest:
        return digest
    if _DIGEST.fullmatch(value):
        return value
    return None


class Verification(BaseModel):
    version: str
    commit: str
    created: str
    running: str | None = None
    expected: str | None = None
    image_tag: str | None = None
    start_reference: str | None = None
    matches: bool | None = None


class BuildInfo(BaseModel):
    """Build metadata baked into the image at build time"""

    version: str
    commit: str = ""
    created: str = ""

    @classmethod
    def load(
        cls, path: Path = BUILD_INFO_PATH, require_file: bool = True
    ) -> "BuildInfo":
        """Load the build info json file at `path`

        When the file is missing or invalid, raise `BuildInfoError` if
        `require_file`, otherwise return development defaults.
        """
        data = None
        if path.is_file():
            try:
                data = json.loads(path.read_text())
            except ValueError:
                logger.warning("Invalid build info file: %s", path)
        if not isinstance(data, dict):
            if require_file:
                raise BuildInfoError(f"Build info file missing at {path}")
            return cls(
                version="development",
                commit="",
                created=datetime.now(timezone.utc).isoformat(timespec="seconds"),
            )
        return cls(
            version=str(data.get("version") or ""),
            commit=str(data.get("commit") or ""),
            created=str(data.get("created") or ""),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "BuildInfo":
        return cls.load(
            path=settings.build_info_path, require_file=settings.require_file
        )

    def image_digest(self, settings: Settings) -> str | None:
        """Digest provided by the deployment for the running image"""
        return (
            read_first_existing_file(settings.image_digest_paths)
            or settings.docker_image_digest
        )

    def expected_image_digest(self, settings: Settings) -> str | None:
        """Digest provided by the deployment for the intended image"""
        return (
            read_first_existing_file(settings.expected_image_digest_paths)
            or settings.expected_image_digest
        )

    def candidate_tags(self, settings: Settings, image_tag: str | None) -> list[str]:
        if settings.candidate_tags:
            return clean_tags(settings.candidate_tags)
        version = self.version if self.version != "development" else None
        return clean_tags([image_tag, version, "latest"])

    def verify(
        self,
        settings: Settings,
        engine_transport: httpx.BaseTransport | None = None,
        registry_transport: httpx.BaseTransport | None = None,
        platform: Platform | None = None,
    ) -> Verification:
        """Compare the running image with the image the registry serves"""
        running_resolver = RunningContainerResolver(
            engine_url=settings.engine_url,
            registry_host=settings.registry_host,
            enabled=settings.enabled,
            transport=engine_transport,
        )
        running = running_resolver.resolve()
        image_tag = running_resolver.image_tag()
        start_reference = running_resolver.image_start_reference()

        expected = None
        if settings.repository:
            expected = ExpectedDigestResolver(
                repository=settings.repository,
                candidate_tags=self.candidate_tags(settings, image_tag),
                registry_host=settings.registry_host,
                platform=platform,
                enabled=settings.enabled,
                transport=registry_transport,
            ).resolve()

        verification = Verification(
            version=self.version,
            commit=self.commit,
            created=self.created,
            running=str(running) if running else self.image_digest(settings),
            expected=(
                str(expected) if expected else self.expected_image_digest(settings)
            ),
            image_tag=image_tag,
            start_reference=start_reference,
        )
        running_digest = digest_of(verification.running)
        expected_digest = digest_of(verification.expected)
        if running_digest and expected_digest:
            verification.matches = running_digest == expected_digest
            if not verification.matches:
                logger.warning(
                    "Running image %s does not match expected image %s",
                    verification.running,
                    verification.expected,
                )
        else:
            logger.info(
                "Image verification incomplete, running=%s expected=%s",
                verification.running,
                verification.expected,
            )
        return verification
