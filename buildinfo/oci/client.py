from __future__ import annotations

import logging
import re
from urllib.parse import quote

import httpx

from buildinfo.oci.index import (
    DOCKER_MANIFEST,
    DOCKER_MANIFEST_LIST,
    OCI_INDEX,
    OCI_MANIFEST,
)

logger = logging.getLogger(__name__)

GHCR = "ghcr.io"

# Order is the preference order, most specific first
ACCEPT_HEADER = ", ".join(
    [OCI_MANIFEST, DOCKER_MANIFEST, OCI_INDEX, DOCKER_MANIFEST_LIST]
)

TIMEOUT = httpx.Timeout(2.0)

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


def parse_bearer_challenge(www_authenticate: str | None) -> dict[str, str]:
    """Parse the WWW-Authenticate header

    `Bearer realm="...",service="...",scope="..."` becomes
    {"realm": ..., "service": ..., "scope": ...}.
    """
    if not www_authenticate or not www_authenticate.strip():
        return {}
    value = www_authenticate.strip()
    scheme, _, params = value.partition(" ")
    if not params:
        params = scheme
    return dict(_CHALLENGE_PARAM.findall(params))


class BearerAuth(httpx.Auth):
    """Attaches HTTP Bearer Authentication to the given Request object."""

    def __init__(self, token: str):
        self.token = token

    def auth_flow(self, request):
        request.headers["Authorization"] = f"Bearer {self.token}"
        yield request


class Client:
    """Client for the manifest endpoints of one repository on an OCI registry.

    ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md
    """

    def __init__(
        self,
        repository_path: str,
        registry_host: str = GHCR,
        transport: httpx.BaseTransport | None = None,
    ):
        self.repository_path = repository_path
        self.registry_url = f"https://{registry_host}"
        self.transport = transport
        self._session = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def session(self) -> httpx.Client:
        if self._session is None:
            self._session = httpx.Client(
                timeout=TIMEOUT,
                follow_redirects=True,
                max_redirects=2,
                transport=self.transport,
            )
        return self._session

    def close(self):
        if self._session is not None:
            self._session.close()
            self._session = None

    def manifest_url(self, tag: str) -> str:
        return (
            f"{self.registry_url}/v2/{self.repository_path}"
            f"/manifests/{quote(tag, safe='')}"
        )

    def _manifest_request(
        self, method: str, tag: str, token: str | None = None
    ) -> httpx.Response:
        auth = BearerAuth(token) if token else None
        logger.debug("%s %s", method, self.manifest_url(tag))
        return self.session.request(
            method,
            self.manifest_url(tag),
            headers={"Accept": ACCEPT_HEADER},
            auth=auth,
        )

    def head_manifest(self, tag: str, token: str | None = None) -> httpx.Response:
        return self._manifest_request("HEAD", tag, token=token)

    def get_manifest(self, tag: str, token: str | None = None) -> httpx.Response:
        """GET the manifest, or manifest list, for `tag`"""
        return self._manifest_request("GET", tag, token=token)

    def fetch_bearer_token(self, challenge: dict[str, str]) -> str | None:
        """Exchange a bearer challenge for an anonymous token

        Returns None when the token could not be obtained.

        ref: https://distribution.github.io/distribution/spec/auth/token/
        """
        realm = challenge.get("realm")
        if not realm:
            return None
        params = {
            key: challenge[key]
            for key in ("service", "scope")
            if challenge.get(key)
        }
        try:
            response = self.session.get(realm, params=params)
            if not response.is_success:
                logger.debug(
                    "Token request to %s failed: %s", realm, response.status_code
                )
                return None
            body = response.json()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            logger.debug("Token request to %s failed: %r", realm, e)
            return None
        if not isinstance(body, dict):
            return None
        token = body.get("token") or body.get("access_token")
        return str(token) if token else None

    def parse_bearer_challenge(self, www_authenticate: str | None) -> dict[str, str]:
        return parse_bearer_challenge(www_authenticate)
