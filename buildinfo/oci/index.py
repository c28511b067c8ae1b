import platform as _platform
import sys

from pydantic import BaseModel

OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"


def _normalize_os(value: str) -> str:
    value = value.lower()
    if "linux" in value:
        return "linux"
    if "darwin" in value:
        return "darwin"
    return "linux"


def _normalize_architecture(value: str) -> str:
    value = value.lower()
    if value in ("x86_64", "amd64"):
        return "amd64"
    if value in ("aarch64", "arm64"):
        return "arm64"
    if value.startswith("arm"):
        return "arm"
    return "amd64"


class Platform(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/image-index.md
    """

    architecture: str = ""
    os: str = ""
    osVersion: str | None = None
    osFeatures: list[str] | None = None
    variant: str | None = None

    @classmethod
    def current(cls, os: str | None = None, machine: str | None = None) -> "Platform":
        """Return the platform of the host, as named in image indexes.

        Unrecognized values fall back to linux/amd64.
        """
        return cls(
            os=_normalize_os(sys.platform if os is None else os),
            architecture=_normalize_architecture(
                _platform.machine() if machine is None else machine
            ),
        )

    def matches(self, other: "Platform | None") -> bool:
        if other is None:
            return False
        return self.os == other.os and self.architecture == other.architecture

    def __str__(self):
        return f"{self.os}/{self.architecture}"


class PlatformDescriptor(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/image-index.md
    """

    digest: str = ""
    mediaType: str = OCI_MANIFEST
    size: int | None = None
    platform: Platform | None = None


class Index(BaseModel):
    """Image index or Docker manifest list

    ref: https://github.com/opencontainers/image-spec/blob/main/image-index.md
    """

    manifests: list[PlatformDescriptor]
    schemaVersion: int = 2
    mediaType: str = OCI_INDEX

    def find(self, platform: Platform) -> PlatformDescriptor | None:
        """Return the first manifest built for `platform`"""
        for descriptor in self.manifests:
            if platform.matches(descriptor.platform):
                return descriptor
        return None
