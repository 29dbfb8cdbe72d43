"""Mock out the Docker registry API for tests."""

from __future__ import annotations

import os
from base64 import b64decode
from urllib.parse import parse_qsl

import respx
from httpx import Request, Response

from podrefresh.models.domain.docker import DockerCredentials, Platform

__all__ = ["MockDockerRegistry", "register_mock_docker"]

_INDEX_MEDIA_TYPE = "application/vnd.oci.image.index.v1+json"
_MANIFEST_MEDIA_TYPE = "application/vnd.docker.distribution.manifest.v2+json"


class MockDockerRegistry:
    """Mock Docker registry that returns image digests.

    Parameters
    ----------
    images
        Map of repositories to maps of tags to image digests.
    realm
        Realm for authentication challenge.
    credentials
        Credentials to expect for authentication, or `None` to allow
        anonymous access.
    require_auth
        Whether to require authentication at all.
    require_bearer
        Whether to require bearer token authentication, which requires another
        round trip to exchange the username and password for a bearer token.
    platforms
        If given, repositories are served as multi-platform manifest lists
        containing images for these platforms.

    Attributes
    ----------
    images
        Map of repositories to maps of tags to image digests.
    manifest_requests
        Number of manifest ``HEAD`` requests seen per repository and tag,
        including ones rejected with an authentication challenge.
    """

    def __init__(
        self,
        images: dict[str, dict[str, str]],
        realm: str,
        credentials: DockerCredentials | None,
        *,
        require_auth: bool = True,
        require_bearer: bool = False,
        platforms: list[Platform] | None = None,
    ) -> None:
        self.images = images
        self.manifest_requests: dict[str, int] = {}
        self._credentials = credentials
        self._require_auth = require_auth
        self._require_bearer = require_bearer
        self._platforms = platforms
        self._token = os.urandom(16).hex()

        # The token authentication protocol for the Docker API returns
        # parameters in the WWW-Authenticate header that should be passed into
        # the authentication route, except for the realm.
        self._challenge = {
            "realm": realm,
            "service": "registry.example.com",
            "scope": "repository:pull",
        }

    def authenticate(self, request: Request) -> Response:
        """Simulate authentication URL for a Docker registry.

        Parameters
        ----------
        request
            Incoming request.

        Returns
        -------
        httpx.Response
            Returns 200 with an authentication token in the body, or 401 if
            the credentials are wrong.
        """
        params = parse_qsl(request.url.query.decode())
        expected = {k: v for k, v in self._challenge.items() if k != "realm"}
        assert sorted(params) == sorted(expected.items())
        if self._credentials:
            if not self._check_basic(request):
                return Response(401)
        return Response(200, json={"token": self._token})

    def get_digest(
        self, request: Request, repository: str, reference: str
    ) -> Response:
        """Simulate the image manifest route for a Docker Registry.

        ``HEAD`` requests return the image digest in the
        ``Docker-Content-Digest`` HTTP header. ``GET`` requests are only
        supported for manifest lists and return the list of platforms.

        Parameters
        ----------
        request
            Incoming request.
        repository
            Repository, extracted from the URL.
        reference
            The tag for which the digest is requested, extracted from the URL.

        Returns
        -------
        httpx.Response
            Returns 200 if the tag is known, 404 if it is not or if the
            Accept header does not specify an appropriate media type, and 401
            with an authentication challenge if not authenticated.
        """
        if request.method == "HEAD":
            key = f"{repository}:{reference}"
            count = self.manifest_requests.get(key, 0)
            self.manifest_requests[key] = count + 1
        if not self._check_auth(request):
            return self._make_auth_challenge()
        if _INDEX_MEDIA_TYPE not in request.headers.get("Accept", ""):
            return Response(404)
        tags = self.images.get(repository, {})
        if reference not in tags:
            return Response(404)
        headers = {"Docker-Content-Digest": tags[reference]}
        if self._platforms is None:
            headers["Content-Type"] = _MANIFEST_MEDIA_TYPE
            return Response(200, headers=headers)
        headers["Content-Type"] = _INDEX_MEDIA_TYPE
        if request.method == "HEAD":
            return Response(200, headers=headers)
        manifests = [
            {
                "mediaType": _MANIFEST_MEDIA_TYPE,
                "digest": "sha256:" + os.urandom(32).hex(),
                "platform": {"architecture": p.architecture, "os": p.os},
            }
            for p in self._platforms
        ]
        body = {"schemaVersion": 2, "manifests": manifests}
        return Response(200, json=body, headers=headers)

    def _check_auth(self, request: Request) -> bool:
        """Check whether the request is authenticated."""
        if not self._require_auth:
            return True
        if "Authorization" not in request.headers:
            return False
        auth_type, auth_data = request.headers["Authorization"].split(None, 1)
        if self._require_bearer:
            if auth_type.lower() != "bearer":
                return False
            return auth_data == self._token
        else:
            return self._check_basic(request)

    def _check_basic(self, request: Request) -> bool:
        if not self._credentials or "Authorization" not in request.headers:
            return False
        auth_type, auth_data = request.headers["Authorization"].split(None, 1)
        if auth_type.lower() != "basic":
            return False
        username, password = b64decode(auth_data).decode().split(":", 1)
        return (
            username == self._credentials.username
            and password == self._credentials.password
        )

    def _make_auth_challenge(self) -> Response:
        """Construct an authentication challenge."""
        if self._require_bearer:
            challenge = "Bearer " + ",".join(
                f'{k}="{v}"' for k, v in self._challenge.items()
            )
        else:
            challenge = f'Basic realm="{self._challenge["realm"]}"'
        return Response(401, headers={"WWW-Authenticate": challenge})


def register_mock_docker(
    respx_mock: respx.Router,
    *,
    host: str,
    images: dict[str, dict[str, str]],
    credentials: DockerCredentials | None = None,
    require_auth: bool = True,
    require_bearer: bool = False,
    platforms: list[Platform] | None = None,
) -> MockDockerRegistry:
    """Mock out a Docker registry.

    Parameters
    ----------
    respx_mock
        Mock router.
    host
        The hostname on which the mock API should appear to listen.
    images
        A mapping of repositories (like ``library/nginx``) to mappings of tags
        to image digests that should appear on that registry.
    credentials
        Credentials the registry accepts, or `None` for anonymous access.
    require_auth
        Whether to require authentication.
    require_bearer
        Whether to require bearer token authentication.
    platforms
        Platforms of multi-platform manifest lists, if the registry should
        return them.

    Returns
    -------
    MockDockerRegistry
        The mock Docker API object.
    """
    base_url = f"https://{host}"
    auth_url = f"{base_url}/auth"
    digest_url = (
        rf"{base_url}/v2/(?P<repository>.+)/manifests/(?P<reference>[^/]+)$"
    )
    mock = MockDockerRegistry(
        images,
        auth_url,
        credentials,
        require_auth=require_auth,
        require_bearer=require_bearer,
        platforms=platforms,
    )
    respx_mock.get(auth_url).mock(side_effect=mock.authenticate)
    respx_mock.head(url__regex=digest_url).mock(side_effect=mock.get_digest)
    respx_mock.get(url__regex=digest_url).mock(side_effect=mock.get_digest)
    return mock
