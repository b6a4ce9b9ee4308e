from __future__ import annotations

import asyncio
import io
import time
import urllib.request
from pathlib import Path

import numpy as np
import pytest

from scaplog.errors import SummarizerExecutionFailed, SummarizerTimeout
from scaplog.ocr import (
    MAX_CHARS,
    NO_TEXT_DETECTED,
    OCRSummarizer,
    ctc_greedy_decode,
    fetch_model_files,
    summarize_text,
)


class FakeRecognizer:
    def __init__(self, text: str = "", *, error: Exception | None = None, delay: float = 0.0) -> None:
        self.text = text
        self.error = error
        self.delay = delay
        self.calls: list[Path] = []

    def recognize(self, image_path: Path) -> str:
        self.calls.append(image_path)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.text


def test_summarize_text_keeps_first_twenty_lines() -> None:
    text = "\n".join(f"line {i}" for i in range(30))
    summary = summarize_text(text)
    assert summary.splitlines() == [f"line {i}" for i in range(20)]


def test_summarize_text_drops_blank_lines_and_whitespace() -> None:
    assert summarize_text("  a  \n\n   \n b\n") == "a\nb"


def test_summarize_text_truncates_long_output() -> None:
    summary = summarize_text("x" * 1500)
    assert len(summary) == MAX_CHARS + 3
    assert summary.endswith("...")


def test_summarize_text_without_text() -> None:
    assert summarize_text("   \n\n") == NO_TEXT_DETECTED


def test_ocr_summarizer_uses_recognizer(tmp_path: Path) -> None:
    recognizer = FakeRecognizer("Inbox\n\nReply to Alice\n")
    summarizer = OCRSummarizer(recognizer)
    image = tmp_path / "shot.png"
    assert asyncio.run(summarizer.summarize(image)) == "Inbox\nReply to Alice"
    assert recognizer.calls == [image]
    assert summarizer.name == "OCR"


def test_ocr_summarizer_ignores_prompt(tmp_path: Path) -> None:
    summarizer = OCRSummarizer(FakeRecognizer(""))
    assert asyncio.run(summarizer.summarize(tmp_path / "shot.png", "describe")) == NO_TEXT_DETECTED


def test_ocr_summarizer_wraps_recognizer_errors(tmp_path: Path) -> None:
    summarizer = OCRSummarizer(FakeRecognizer(error=OSError("cannot read image")))
    with pytest.raises(SummarizerExecutionFailed, match="cannot read image"):
        asyncio.run(summarizer.summarize(tmp_path / "shot.png"))


def test_ocr_summarizer_times_out(tmp_path: Path) -> None:
    summarizer = OCRSummarizer(FakeRecognizer("late", delay=0.5), timeout=0.05)
    with pytest.raises(SummarizerTimeout):
        asyncio.run(summarizer.summarize(tmp_path / "shot.png"))


def test_ctc_greedy_decode_merges_repeats_and_drops_blanks() -> None:
    logits = np.eye(4)[[1, 1, 0, 1, 2, 2, 0, 0, 3]]
    assert ctc_greedy_decode(logits, "abc") == "aabc"
    assert ctc_greedy_decode(logits[:, np.newaxis, :], "abc") == "aabc"
    assert ctc_greedy_decode(np.zeros((0, 4)), "abc") == ""
    with pytest.raises(ValueError):
        ctc_greedy_decode(np.zeros(4), "abc")


def test_ctc_greedy_decode_with_last_class_blank() -> None:
    logits = np.eye(4)[[0, 1, 3, 3, 2, 2]]
    assert ctc_greedy_decode(logits, "abc", blank_id=3) == "abc"


def test_fetch_model_files_skips_existing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    xml = tmp_path / "model.xml"
    xml.write_text("<net/>")
    xml.with_suffix(".bin").write_bytes(b"\x00")

    def no_network(url, timeout=None):
        raise AssertionError(f"unexpected download of {url}")

    monkeypatch.setattr(urllib.request, "urlopen", no_network)
    fetch_model_files(xml)


def test_fetch_model_files_downloads_pair(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    urls: list[str] = []

    def fake_urlopen(url, timeout=None):
        urls.append(url)
        return io.BytesIO(url.encode())

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    xml = tmp_path / "models" / "model.xml"
    fetch_model_files(xml, base_url="https://models.example/model")
    assert urls == ["https://models.example/model.xml", "https://models.example/model.bin"]
    assert xml.read_bytes() == b"https://models.example/model.xml"
    assert xml.with_suffix(".bin").read_bytes() == b"https://models.example/model.bin"
    assert not list(xml.parent.glob("*.part"))


def test_fetch_model_files_rejects_empty_download(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(urllib.request, "urlopen", lambda url, timeout=None: io.BytesIO(b""))
    xml = tmp_path / "model.xml"
    with pytest.raises(RuntimeError, match="empty download"):
        fetch_model_files(xml)
    assert list(tmp_path.iterdir()) == []
