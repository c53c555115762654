"""Shared fixtures for vecnotes tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from fakes import ConceptProvider, HashProvider

from vecnotes.config import StoreConfig
from vecnotes.store import KnowledgeStore
from vecnotes.table import VectorTableManager

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture
def config(tmp_path: Path) -> StoreConfig:
    return StoreConfig(data_dir=tmp_path / "appdata")


@pytest.fixture
def provider() -> HashProvider:
    return HashProvider()


@pytest.fixture
async def tables(config: StoreConfig) -> AsyncIterator[VectorTableManager]:
    """Table manager over a temporary directory, disposed after the test."""
    manager = VectorTableManager(
        config.table_dir,
        dimension=config.dimension,
        model_name="fake-hash",
    )
    yield manager
    await manager.close()


@pytest.fixture
async def store(config: StoreConfig, provider: HashProvider) -> AsyncIterator[KnowledgeStore]:
    """Initialized store backed by the hash provider."""
    kb = KnowledgeStore(config, embedding_provider=provider)
    await kb.initialize()
    yield kb
    await kb.close()


@pytest.fixture
async def concept_store(config: StoreConfig) -> AsyncIterator[KnowledgeStore]:
    """Initialized store backed by the concept provider."""
    kb = KnowledgeStore(config, embedding_provider=ConceptProvider())
    await kb.initialize()
    yield kb
    await kb.close()
