"""Tests for settings loading."""

from pathlib import Path

import pytest

from knowledge_hub.core.config import Settings
from knowledge_hub.core.errors import ConfigurationError
from knowledge_hub.pipeline.messages import Lane
from knowledge_hub.pipeline.queue import lanes_from_settings


def test_yaml_sections_map_to_fields(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "config.yaml"
    config.write_text(
        "chunking:\n"
        "  max_chars: 800\n"
        "  overlap_chars: 80\n"
        "queues:\n"
        "  large_files:\n"
        "    workers: 3\n"
        "    max_attempts: 5\n"
        "retrieval:\n"
        "  top_k: 9\n"
    )
    monkeypatch.delenv("KH_EMBEDDING_DIMENSIONS")
    settings = Settings.from_yaml(config)
    assert settings.chunk_max_chars == 800
    assert settings.chunk_overlap_chars == 80
    assert settings.large_lane_workers == 3
    assert settings.query_top_k == 9
    lanes = lanes_from_settings(settings)
    assert lanes[Lane.LARGE_FILES].max_attempts == 5
    assert lanes[Lane.DEFAULT].max_attempts == 3


def test_environment_overrides_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "config.yaml"
    config.write_text("embeddings:\n  batch_size: 50\n")
    monkeypatch.setenv("KH_CONFIG", str(config))
    monkeypatch.setenv("KH_EMBEDDING_BATCH_SIZE", "7")
    settings = Settings.from_yaml()
    assert settings.embedding_batch_size == 7
    assert settings.embedding_dimensions == 64
    assert settings.queue_mode == "inline"


def test_file_thresholds_must_be_ordered() -> None:
    with pytest.raises(ConfigurationError):
        Settings(small_file_max_bytes=10, large_file_max_bytes=5)
