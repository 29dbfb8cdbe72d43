"""Tests for the Docker API client."""

from __future__ import annotations

import json
import os

import pytest
import respx
from httpx import AsyncClient, Response
from structlog.stdlib import BoundLogger

from podrefresh.exceptions import DockerRegistryError
from podrefresh.models.domain.docker import (
    DockerCredentials,
    DockerReference,
    Platform,
    RegistryResource,
)
from podrefresh.storage.docker import (
    DockerCredentialStore,
    DockerRegistryClient,
)

from ..support.constants import TEST_REGISTRY, TEST_REPOSITORY
from ..support.docker import register_mock_docker


class StaticKeychain:
    """Keychain that always returns the same credentials."""

    def __init__(self, credentials: DockerCredentials | None) -> None:
        self.credentials = credentials
        self.resources: list[RegistryResource] = []

    async def resolve(
        self, resource: RegistryResource
    ) -> DockerCredentials | None:
        self.resources.append(resource)
        return self.credentials


def make_reference(tag: str = "latest") -> DockerReference:
    return DockerReference.from_str(f"{TEST_REGISTRY}/{TEST_REPOSITORY}:{tag}")


def make_resource() -> RegistryResource:
    repository = f"{TEST_REGISTRY}/{TEST_REPOSITORY}"
    return RegistryResource(registry=TEST_REGISTRY, repository=repository)


def test_credential_store() -> None:
    credentials = DockerCredentials(username="foo", password="blahblah")
    other = DockerCredentials(username="u", password="p")
    hub = DockerCredentials(username="hub", password="hubpass")
    config = {
        "auths": {
            "example.com": {"auth": credentials.credentials},
            "https://registry.example.org/v1/": {
                "username": other.username,
                "password": other.password,
            },
            "https://index.docker.io/v1/": {"auth": hub.credentials},
            "nothing.example.com": {"email": "foo@example.com"},
        }
    }
    store = DockerCredentialStore.from_dockerconfigjson(json.dumps(config))
    assert len(store) == 3
    assert store.get("example.com") == credentials
    assert store.get("example.com:5000") == credentials
    assert store.get("registry.example.org") == other
    assert store.get("docker.io") == hub
    assert store.get("registry-1.docker.io") == hub
    assert store.get("nothing.example.com") is None
    assert store.get("foo.example.com") is None


def test_credential_store_invalid() -> None:
    with pytest.raises(ValueError, match="JSON"):
        DockerCredentialStore.from_dockerconfigjson("[]")
    with pytest.raises(ValueError, match="auths"):
        DockerCredentialStore.from_dockerconfigjson('{"credsStore": "x"}')
    with pytest.raises(ValueError):
        DockerCredentialStore.from_dockerconfigjson("{not json")
    with pytest.raises(ValueError):
        DockerCredentialStore.from_dockerconfigjson(
            '{"auths": {"example.com": {"auth": "bm9jb2xvbg=="}}}'
        )


@pytest.mark.asyncio
async def test_anonymous(
    http_client: AsyncClient, logger: BoundLogger, respx_mock: respx.Router
) -> None:
    digest = "sha256:" + os.urandom(32).hex()
    register_mock_docker(
        respx_mock,
        host=TEST_REGISTRY,
        images={TEST_REPOSITORY: {"latest": digest}},
        require_auth=False,
    )
    docker = DockerRegistryClient(http_client, logger)
    keychain = StaticKeychain(None)
    result = await docker.get_image_digest(
        make_reference(),
        resource=make_resource(),
        keychain=keychain,
        platform=Platform(),
    )
    assert result == digest
    assert keychain.resources == [make_resource()]


@pytest.mark.asyncio
async def test_basic_auth(
    http_client: AsyncClient, logger: BoundLogger, respx_mock: respx.Router
) -> None:
    digest = "sha256:" + os.urandom(32).hex()
    credentials = DockerCredentials(username="user", password="secret")
    mock = register_mock_docker(
        respx_mock,
        host=TEST_REGISTRY,
        images={TEST_REPOSITORY: {"latest": digest}},
        credentials=credentials,
    )
    docker = DockerRegistryClient(http_client, logger)
    result = await docker.get_image_digest(
        make_reference(),
        resource=make_resource(),
        keychain=StaticKeychain(credentials),
        platform=Platform(),
    )
    assert result == digest
    assert mock.manifest_requests == {f"{TEST_REPOSITORY}:latest": 2}

    # Without credentials, basic auth cannot succeed.
    with pytest.raises(DockerRegistryError, match="No Docker API credentials"):
        await docker.get_image_digest(
            make_reference(),
            resource=make_resource(),
            keychain=StaticKeychain(None),
            platform=Platform(),
        )

    # Wrong credentials are rejected by the registry.
    wrong = DockerCredentials(username="user", password="wrong")
    with pytest.raises(DockerRegistryError) as excinfo:
        await docker.get_image_digest(
            make_reference(),
            resource=make_resource(),
            keychain=StaticKeychain(wrong),
            platform=Platform(),
        )
    assert excinfo.value.status == 401


@pytest.mark.asyncio
async def test_bearer_auth(
    http_client: AsyncClient, logger: BoundLogger, respx_mock: respx.Router
) -> None:
    digest = "sha256:" + os.urandom(32).hex()
    credentials = DockerCredentials(username="user", password="secret")
    register_mock_docker(
        respx_mock,
        host=TEST_REGISTRY,
        images={TEST_REPOSITORY: {"v1": digest}},
        credentials=credentials,
        require_bearer=True,
    )
    docker = DockerRegistryClient(http_client, logger)
    result = await docker.get_image_digest(
        make_reference("v1"),
        resource=make_resource(),
        keychain=StaticKeychain(credentials),
        platform=Platform(),
    )
    assert result == digest


@pytest.mark.asyncio
async def test_anonymous_bearer(
    http_client: AsyncClient, logger: BoundLogger, respx_mock: respx.Router
) -> None:
    digest = "sha256:" + os.urandom(32).hex()
    register_mock_docker(
        respx_mock,
        host=TEST_REGISTRY,
        images={TEST_REPOSITORY: {"latest": digest}},
        require_bearer=True,
    )
    docker = DockerRegistryClient(http_client, logger)
    result = await docker.get_image_digest(
        make_reference(),
        resource=make_resource(),
        keychain=StaticKeychain(None),
        platform=Platform(),
    )
    assert result == digest


@pytest.mark.asyncio
async def test_manifest_list(
    http_client: AsyncClient, logger: BoundLogger, respx_mock: respx.Router
) -> None:
    digest = "sha256:" + os.urandom(32).hex()
    register_mock_docker(
        respx_mock,
        host=TEST_REGISTRY,
        images={TEST_REPOSITORY: {"latest": digest}},
        require_auth=False,
        platforms=[Platform(architecture="arm64"), Platform()],
    )
    docker = DockerRegistryClient(http_client, logger)
    result = await docker.get_image_digest(
        make_reference(),
        resource=make_resource(),
        keychain=StaticKeychain(None),
        platform=Platform(),
    )
    assert result == digest

    with pytest.raises(DockerRegistryError, match="No image for platform"):
        await docker.get_image_digest(
            make_reference(),
            resource=make_resource(),
            keychain=StaticKeychain(None),
            platform=Platform(architecture="s390x"),
        )


@pytest.mark.asyncio
async def test_errors(
    http_client: AsyncClient, logger: BoundLogger, respx_mock: respx.Router
) -> None:
    register_mock_docker(
        respx_mock,
        host=TEST_REGISTRY,
        images={TEST_REPOSITORY: {}},
        require_auth=False,
    )
    docker = DockerRegistryClient(http_client, logger)
    with pytest.raises(DockerRegistryError) as excinfo:
        await docker.get_image_digest(
            make_reference("missing"),
            resource=make_resource(),
            keychain=StaticKeychain(None),
            platform=Platform(),
        )
    assert excinfo.value.status == 404

    # Unknown challenge types are rejected.
    url = "https://other.example.com/v2/app/manifests/latest"
    challenge = {"WWW-Authenticate": 'Negotiate realm="foo"'}
    respx_mock.head(url).mock(return_value=Response(401, headers=challenge))
    reference = DockerReference.from_str("other.example.com/app")
    with pytest.raises(DockerRegistryError, match="Unknown Docker"):
        await docker.get_image_digest(
            reference,
            resource=make_resource(),
            keychain=StaticKeychain(None),
            platform=Platform(),
        )
