"""测试共享 fixture"""

from __future__ import annotations

import pytest
from helpers import FakeTransport

from pinset.core.config import Config, reset_config


@pytest.fixture(autouse=True)
def _isolated_config():
    """每个测试都从默认全局配置开始"""
    reset_config()
    yield
    reset_config()


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def config() -> Config:
    return Config(cache_dir="cache", max_workers=4)
