import httpx
import pytest
from conftest import DIGEST_A, DIGEST_B

from buildinfo.engine import RunningContainerResolver, extract_tag_from_image_reference

CONTAINER_ID = "0123456789abcdef"
IMAGE_ID = "sha256:" + "f" * 64


@pytest.mark.parametrize(
    "reference,expected",
    [
        ("ghcr.io/org/app@sha256:abcd", None),
        ("ghcr.io/org/app:v3@sha256:abcd", None),
        ("ghcr.io/org/app", "latest"),
        ("ghcr.io/org/app:v3", "v3"),
        ("app:1.2.3-alpine", "1.2.3-alpine"),
        ("localhost:5000/app", "latest"),
        ("localhost:5000/app:dev", "dev"),
        ("", None),
        (None, None),
    ],
)
def test_extract_tag_from_image_reference(reference, expected):
    assert extract_tag_from_image_reference(reference) == expected


def engine(container=None, image=None):
    """Engine API double serving one container and one image"""
    container = container if container is not None else {
        "Id": CONTAINER_ID,
        "Image": IMAGE_ID,
        "Config": {"Image": "ghcr.io/org/app:v3"},
    }
    image = image if image is not None else {
        "Id": IMAGE_ID,
        "RepoDigests": [f"docker.io/org/app@{DIGEST_B}", f"ghcr.io/org/app@{DIGEST_A}"],
    }

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == f"/containers/{CONTAINER_ID}/json":
            return httpx.Response(200, json=container)
        if request.url.path == f"/images/{IMAGE_ID}/json":
            return httpx.Response(200, json=image)
        if request.url.path == "/images/ghcr.io/org/app:v3/json":
            return httpx.Response(200, json=image)
        return httpx.Response(404, json={"message": "not found"})

    return handler


def resolver(transport, **kwargs) -> RunningContainerResolver:
    kwargs.setdefault("container_id", lambda: CONTAINER_ID)
    return RunningContainerResolver(
        engine_url="http://docker-proxy:2375", transport=transport, **kwargs
    )


def test_resolve(spy):
    transport = spy(engine())
    result = resolver(transport).resolve()

    assert result == f"ghcr.io/org/app@{DIGEST_A}"
    assert result.digest == DIGEST_A
    assert [request.url.host for request in transport.requests] == [
        "docker-proxy",
        "docker-proxy",
    ]
    assert transport.requests[1].url.raw_path == (
        b"/images/" + IMAGE_ID.replace(":", "%3A").encode() + b"/json"
    )


def test_resolve_falls_back_to_config_image(spy):
    container = {"Id": CONTAINER_ID, "Config": {"Image": "ghcr.io/org/app:v3"}}
    result = resolver(spy(engine(container=container))).resolve()
    assert result.digest == DIGEST_A


def test_resolve_prefers_registry_host(spy):
    image = {"RepoDigests": [f"docker.io/org/app@{DIGEST_B}"]}
    result = resolver(spy(engine(image=image))).resolve()
    assert result == f"docker.io/org/app@{DIGEST_B}"


@pytest.mark.parametrize(
    "container,image",
    [
        ({"Id": CONTAINER_ID}, None),
        ({"Id": CONTAINER_ID, "Image": "", "Config": None}, None),
        (None, {"Id": IMAGE_ID}),
        (None, {"Id": IMAGE_ID, "RepoDigests": []}),
        (None, {"Id": IMAGE_ID, "RepoDigests": None}),
        ([], None),
    ],
)
def test_resolve_missing_fields(spy, container, image):
    assert resolver(spy(engine(container=container, image=image))).resolve() is None


def test_resolve_unknown_container(spy):
    transport = spy(engine())
    assert resolver(transport, container_id=lambda: "other").resolve() is None
    assert len(transport.requests) == 1


def test_resolve_without_container_id(spy):
    transport = spy(engine())
    assert resolver(transport, container_id=lambda: None).resolve() is None
    assert transport.requests == []


def test_resolve_invalid_json(spy):
    transport = spy(lambda request: httpx.Response(200, content=b"{not json"))
    assert resolver(transport).resolve() is None


def test_resolve_engine_unreachable(spy, caplog):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    assert resolver(spy(handler)).resolve() is None
    assert "ConnectError" in caplog.text


def test_image_tag(spy):
    assert resolver(spy(engine())).image_tag() == "v3"


@pytest.mark.parametrize(
    "reference,expected",
    [
        (f"ghcr.io/org/app@{DIGEST_A}", None),
        ("ghcr.io/org/app", "latest"),
    ],
)
def test_image_tag_from_start_reference(spy, reference, expected):
    container = {"Id": CONTAINER_ID, "Config": {"Image": reference}}
    assert resolver(spy(engine(container=container))).image_tag() == expected


def test_image_start_reference(spy):
    assert resolver(spy(engine())).image_start_reference() == "ghcr.io/org/app:v3"


def test_image_start_reference_missing(spy):
    container = {"Id": CONTAINER_ID, "Image": IMAGE_ID}
    assert resolver(spy(engine(container=container))).image_start_reference() is None


def test_disabled(spy):
    transport = spy(engine())
    running = resolver(transport, enabled=False)
    assert running.resolve() is None
    assert running.image_tag() is None
    assert running.image_start_reference() is None
    assert transport.requests == []


def test_unix_socket_engine_url():
    running = RunningContainerResolver(engine_url="unix:///var/run/docker.sock")
    assert running.base_url == "http://localhost"
    assert running.uds == "/var/run/docker.sock"
    assert isinstance(running._transport(), httpx.HTTPTransport)


def test_requests_use_short_timeouts(spy):
    transport = spy(engine())
    resolver(transport).resolve()
    assert [request.extensions["timeout"] for request in transport.requests] == [
        {"connect": 1.5, "read": 1.5, "write": 1.5, "pool": 1.5}
    ] * 2
