"""Tests for KnowledgeBase — the synchronous wrapper."""

from __future__ import annotations

import pytest
from fakes import ConceptProvider, HashProvider

from vecnotes import KnowledgeBase, StoreConfig
from vecnotes.exceptions import ModelLoadError, NotInitializedError
from vecnotes.types import TextEntry


class TestKnowledgeBase:
    def test_round_trip(self, config: StoreConfig):
        with KnowledgeBase(config, embedding_provider=ConceptProvider()) as kb:
            assert kb.is_initialized
            kb.index("note1", "Patient exhibited signs of hypoglycemia during clinical rotation")
            kb.index("note2", "Weather was clear during the site visit")
            results = kb.search("low blood sugar symptoms", k=2)
            assert results[0].id == "note1"
            assert kb.count() == 2

    def test_batch_delete_reset(self, config: StoreConfig):
        with KnowledgeBase(config, embedding_provider=HashProvider()) as kb:
            kb.index_batch([TextEntry(id="a", text="alpha"), TextEntry(id="b", text="beta")])
            assert kb.delete("a") == 1
            assert kb.count() == 1
            kb.reset()
            assert kb.count() == 0

    def test_deferred_initialize(self, config: StoreConfig):
        kb = KnowledgeBase(config, embedding_provider=HashProvider(), initialize=False)
        try:
            with pytest.raises(NotInitializedError):
                kb.search("x")
            kb.initialize()
            assert kb.search("x") == []
        finally:
            kb.close()

    def test_failed_initialize_stops_loop(self, config: StoreConfig):
        with pytest.raises(ModelLoadError):
            KnowledgeBase(config, embedding_provider=HashProvider(dim=8))

    def test_close_is_idempotent(self, config: StoreConfig):
        kb = KnowledgeBase(config, embedding_provider=HashProvider())
        kb.close()
        kb.close()
        assert not kb.is_initialized
