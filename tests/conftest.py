"""Shared fixtures for semstore tests."""

from __future__ import annotations

import pytest
import pytest_asyncio
from helpers import KeywordEmbedder

from semstore.config.settings import Settings
from semstore.engine import StorageEngine


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(_env_file=None, data_dir=tmp_path / "store", capacity=1000)


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest_asyncio.fixture
async def engine(settings, embedder):
    eng = StorageEngine(settings, embedder=embedder, index_seed=7)
    await eng.open()
    yield eng
    await eng.close()
