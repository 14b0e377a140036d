"""Shared test fixtures and configuration."""

from __future__ import annotations

import pytest

from fal_media_mcp.config import RequestConfig, ServerSettings
from fal_media_mcp.dispatcher import Dispatcher
from fal_media_mcp.protocol import Protocol

from tests.helpers import FakeGateway


@pytest.fixture
def settings():
    """Settings with every post-processing side effect switched off."""
    return ServerSettings(download_path=None, enable_data_urls=False, autoopen=False)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def dispatcher(settings, gateway):
    return Dispatcher(settings, gateway=gateway)


@pytest.fixture
def protocol(dispatcher):
    return Protocol(dispatcher)


@pytest.fixture
def config():
    return RequestConfig(fal_key="test-key")
