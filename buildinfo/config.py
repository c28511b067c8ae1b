from pathlib import Path
from typing import Annotated

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from buildinfo.engine import DEFAULT_ENGINE_URL
from buildinfo.oci.client import GHCR

BUILD_INFO_PATH = Path("/usr/share/buildinfo/build-info.json")
IMAGE_DIGEST_PATHS = [
    Path("/run/image-digest"),
    Path("/run/secrets/image-digest"),
    Path("/var/run/secrets/image-digest"),
]
EXPECTED_IMAGE_DIGEST_PATHS = [
    Path("/run/expected-image-digest"),
    Path("/run/secrets/expected-image-digest"),
    Path("/var/run/secrets/expected-image-digest"),
]


class Settings(BaseSettings):
    """Runtime configuration, read from `BUILDINFO_*` environment variables"""

    model_config = SettingsConfigDict(env_prefix="BUILDINFO_")

    build_info_path: Path = BUILD_INFO_PATH
    require_file: bool = True

    engine_url: str = DEFAULT_ENGINE_URL
    registry_host: str = GHCR
    repository: str | None = None
    # Comma separated in the environment, e.g. BUILDINFO_CANDIDATE_TAGS=v2,latest
    candidate_tags: Annotated[list[str], NoDecode] = []
    enabled: bool = True

    image_digest_paths: Annotated[list[Path], NoDecode] = IMAGE_DIGEST_PATHS
    expected_image_digest_paths: Annotated[
        list[Path], NoDecode
    ] = EXPECTED_IMAGE_DIGEST_PATHS

    docker_image_digest: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DOCKER_IMAGE_DIGEST", "docker_image_digest"),
    )
    expected_image_digest: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "EXPECTED_IMAGE_DIGEST", "expected_image_digest"
        ),
    )

    @field_validator(
        "candidate_tags",
        "image_digest_paths",
        "expected_image_digest_paths",
        mode="before",
    )
    @classmethod
    def _split(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value
