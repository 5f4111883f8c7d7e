"""Tests for chunker."""

import pytest

from knowledge_hub.core.errors import ChunkingConfigError
from knowledge_hub.ingest.chunker import (
    estimate_tokens,
    paragraph_segments,
    split_segments,
    split_with_overlap,
)

TEXTS = [
    "short",
    "x" * 250,
    ("Title\n\nPara1.\n\nPara2 is longer..." * 5).strip(),
    "  leading and trailing whitespace is preserved  \n\n" * 7,
    "ünïcödé ✓ " * 40,
]
WINDOWS = [(10, 0), (10, 3), (50, 10), (120, 20), (7, 6)]


def _rebuild(windows, overlap: int) -> str:
    if not windows:
        return ""
    return windows[0].text + "".join(window.text[overlap:] for window in windows[1:])


@pytest.mark.parametrize("text", TEXTS)
@pytest.mark.parametrize("max_chars,overlap", WINDOWS)
def test_fixed_windows_cover_text(text: str, max_chars: int, overlap: int) -> None:
    windows = split_with_overlap(text, max_chars, overlap)
    assert _rebuild(windows, overlap) == text
    assert all(len(window.text) <= max_chars for window in windows)
    assert all(text[w.char_start : w.char_end] == w.text for w in windows)
    for previous, current in zip(windows, windows[1:]):
        assert previous.char_end - current.char_start == overlap


@pytest.mark.parametrize("text", TEXTS)
@pytest.mark.parametrize("max_chars,overlap", WINDOWS)
def test_paragraph_windows_cover_text(text: str, max_chars: int, overlap: int) -> None:
    segments = paragraph_segments(text)
    assert "".join(segments) == text
    windows = split_segments(segments, max_chars, overlap)
    assert _rebuild(windows, overlap) == text
    assert all(len(window.text) <= max_chars for window in windows)
    for previous, current in zip(windows, windows[1:]):
        assert previous.char_end - current.char_start == overlap


def test_paragraph_windows_prefer_boundaries() -> None:
    text = "alpha alpha\n\nbeta beta beta\n\ngamma"
    windows = split_segments(paragraph_segments(text), max_chars=20, overlap_chars=0)
    assert windows[0].text == "alpha alpha\n\n"


def test_blank_text_yields_no_windows() -> None:
    assert split_with_overlap("", 10, 2) == []
    assert split_with_overlap(" \n\t ", 10, 2) == []
    assert split_segments(paragraph_segments("\n\n"), 10, 2) == []


@pytest.mark.parametrize("max_chars,overlap", [(10, 10), (10, 12), (0, 0), (10, -1)])
def test_invalid_window_config(max_chars: int, overlap: int) -> None:
    with pytest.raises(ChunkingConfigError):
        split_with_overlap("some text", max_chars, overlap)


def test_settings_reject_overlap_at_startup(tmp_path) -> None:
    from knowledge_hub.core.config import Settings

    with pytest.raises(ChunkingConfigError):
        Settings(db_path=tmp_path / "x.db", chunk_max_chars=100, chunk_overlap_chars=100)


def test_estimate_tokens() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("one") == 1
    assert estimate_tokens("one two  three") == 3
