"""Test fixtures for podrefresh tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator

import pytest
import pytest_asyncio
import respx
import structlog
from httpx import AsyncClient
from pydantic import SecretStr
from safir.testing.slack import MockSlackWebhook, mock_slack_webhook
from structlog.stdlib import BoundLogger

from podrefresh.config import Config
from podrefresh.constants import ROOT_LOGGER
from podrefresh.factory import Factory

from .support.kubernetes import MockRefreshKubernetesApi, patch_kubernetes


@pytest.fixture
def config() -> Config:
    """Construct default configuration for tests.

    Uses small pages and a small queue so that pagination and backpressure
    are exercised by even small numbers of pods.
    """
    return Config(page_size=2, queue_size=2)


@pytest.fixture
def logger() -> BoundLogger:
    return structlog.get_logger(ROOT_LOGGER)


@pytest.fixture
def mock_kubernetes() -> Iterator[MockRefreshKubernetesApi]:
    yield from patch_kubernetes()


@pytest.fixture
def mock_slack(
    config: Config, respx_mock: respx.Router
) -> Iterator[MockSlackWebhook]:
    config.alert_hook = SecretStr("https://slack.example.com/webhook")
    yield mock_slack_webhook(config.alert_hook, respx_mock)
    config.alert_hook = None


@pytest_asyncio.fixture
async def factory(
    config: Config,
    mock_kubernetes: MockRefreshKubernetesApi,
    mock_slack: MockSlackWebhook,
) -> AsyncIterator[Factory]:
    async with Factory.standalone(config) as factory:
        yield factory


@pytest_asyncio.fixture
async def http_client() -> AsyncIterator[AsyncClient]:
    async with AsyncClient() as client:
        yield client
