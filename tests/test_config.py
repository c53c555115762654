"""Tests for StoreConfig."""

from __future__ import annotations

from pathlib import Path

import pytest

from vecnotes.config import DB_FILENAME, EMBEDDING_DIMENSION, StoreConfig


class TestStoreConfig:
    def test_defaults(self):
        cfg = StoreConfig()
        assert cfg.model_name == "all-MiniLM-L6-v2"
        assert cfg.dimension == EMBEDDING_DIMENSION == 384
        assert cfg.metric == "cosine"
        assert cfg.exact is True
        assert cfg.default_k == 5
        assert cfg.data_dir == Path.home() / ".vecnotes"

    def test_data_dir_coerced_to_path(self, tmp_path: Path):
        cfg = StoreConfig(data_dir=str(tmp_path))  # type: ignore[arg-type]
        assert isinstance(cfg.data_dir, Path)
        assert cfg.table_dir == tmp_path / "vectors"
        assert cfg.db_path == tmp_path / "vectors" / DB_FILENAME

    def test_data_dir_expands_user(self):
        cfg = StoreConfig(data_dir=Path("~/notes"))
        assert "~" not in str(cfg.data_dir)

    def test_rejects_non_positive_dimension(self):
        with pytest.raises(ValueError, match="dimension"):
            StoreConfig(dimension=0)

    def test_rejects_non_positive_default_k(self):
        with pytest.raises(ValueError, match="default_k"):
            StoreConfig(default_k=0)

    def test_rejects_unknown_metric(self):
        with pytest.raises(ValueError, match="Unsupported metric"):
            StoreConfig(metric="manhattan")
