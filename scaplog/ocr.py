"""On-device OCR summarizer backed by an OpenVINO text recognition model."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import threading
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import numpy as np
from PIL import Image

from .errors import SummarizerError, SummarizerExecutionFailed, SummarizerTimeout

try:  # pragma: no cover - optional dependency
    import openvino as ov  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    ov = None  # type: ignore

logger = logging.getLogger(__name__)

NO_TEXT_DETECTED = "(no text detected)"
MAX_LINES = 20
MAX_CHARS = 1000
TRUNCATION_MARKER = "..."

_MODEL_NAME = "text-recognition-0014"
_MODEL_BASE_URL = (
    "https://storage.openvinotoolkit.org/repositories/open_model_zoo/2023.2/models_bin/1/"
    f"{_MODEL_NAME}/FP16/{_MODEL_NAME}"
)
_DEFAULT_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


class TextRecognizer(Protocol):
    def recognize(self, image_path: Path) -> str:
        """Return the text found in the image, one line per text line."""


def summarize_text(text: str, *, max_lines: int = MAX_LINES, max_chars: int = MAX_CHARS) -> str:
    """Bound recognized text to ``max_lines`` non-empty lines and ``max_chars``."""

    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        return NO_TEXT_DETECTED
    summary = "\n".join(lines[:max_lines])
    if len(summary) > max_chars:
        return summary[:max_chars] + TRUNCATION_MARKER
    return summary


@dataclass(slots=True)
class OpenVINOConfig:
    """Location and runtime options for the recognition model."""

    model_xml: Path
    device: str = "CPU"
    alphabet: str = _DEFAULT_ALPHABET
    blank_id: int = 0
    line_height: int = 32

    @classmethod
    def for_directory(cls, model_dir: Path | None, device: str = "CPU") -> "OpenVINOConfig":
        root = model_dir or Path(os.getenv("SCAPLOG_MODEL_DIR", Path.home() / ".scaplog" / "models"))
        return cls(model_xml=Path(root).expanduser() / "ocr" / f"{_MODEL_NAME}.xml", device=device)


class OpenVINOTextRecognizer:
    """Line-by-line CTC text recognition with an Open Model Zoo network.

    The screenshot is cut into horizontal bands at blank rows, and each band
    is run through the recognition network separately.
    """

    def __init__(self, config: OpenVINOConfig) -> None:
        if ov is None:
            raise RuntimeError("OpenVINO runtime is not installed (pip install scaplog[ocr])")
        fetch_model_files(config.model_xml)
        self._config = config
        core = ov.Core()
        model = core.read_model(str(config.model_xml))
        self._compiled = core.compile_model(model, config.device)
        self._input = self._compiled.input(0)
        self._output = self._compiled.output(0)
        shape = list(self._input.shape)
        if len(shape) != 4:
            raise ValueError(f"Unsupported recognition model input shape: {shape}")
        _, self._channels, self._height, self._width = (int(dim) for dim in shape)

    def recognize(self, image_path: Path) -> str:
        with Image.open(image_path) as image:
            gray = image.convert("L")
        lines: list[str] = []
        for band in _text_bands(np.asarray(gray, dtype=np.uint8), self._config.line_height):
            text = self._recognize_band(Image.fromarray(band)).strip()
            if text:
                lines.append(text)
        return "\n".join(lines)

    def _recognize_band(self, band: Image.Image) -> str:
        resized = band.resize((self._width, self._height))
        array = np.asarray(resized, dtype=np.float32)
        if self._channels == 1:
            array = array[np.newaxis, :, :]
        else:
            array = np.repeat(array[np.newaxis, :, :], self._channels, axis=0)
        outputs = self._compiled({self._input: (array / 255.0)[np.newaxis, ...]})
        return ctc_greedy_decode(outputs[self._output], self._config.alphabet, self._config.blank_id)


def ctc_greedy_decode(logits: np.ndarray, alphabet: str, blank_id: int = 0) -> str:
    """Best-path CTC decoding: merge repeated tokens, then drop blanks."""

    if logits.ndim not in (2, 3):
        raise ValueError(f"Unsupported logits shape: {logits.shape}")
    # Batch axis has size one for both (T, N, C) and (N, T, C) layouts.
    best = logits.argmax(axis=-1).reshape(-1)
    if best.size == 0:
        return ""
    keep = np.ones(best.shape, dtype=bool)
    keep[1:] = best[1:] != best[:-1]
    keep &= best != blank_id
    offset = 1 if blank_id == 0 else 0
    indices = [int(token) - offset for token in best[keep]]
    return "".join(alphabet[i] for i in indices if 0 <= i < len(alphabet))


def _text_bands(pixels: np.ndarray, min_height: int) -> list[np.ndarray]:
    """Split a grayscale image into bands separated by uniform rows."""

    if pixels.size == 0:
        return []
    row_ink = pixels.std(axis=1) > 8.0
    bands: list[np.ndarray] = []
    start: Optional[int] = None
    for index, has_ink in enumerate(row_ink):
        if has_ink and start is None:
            start = index
        elif not has_ink and start is not None:
            if index - start >= min_height // 4:
                bands.append(pixels[start:index])
            start = None
    if start is not None:
        bands.append(pixels[start:])
    return bands


def fetch_model_files(xml_path: Path, base_url: str = _MODEL_BASE_URL) -> None:
    """Download the IR ``.xml``/``.bin`` pair beside ``xml_path`` if missing.

    Each file is streamed into a ``.part`` sibling and renamed into place,
    so an interrupted download never leaves a truncated model behind.
    """

    xml_path.parent.mkdir(parents=True, exist_ok=True)
    for suffix in (".xml", ".bin"):
        target = xml_path.with_suffix(suffix)
        if target.exists():
            continue
        partial = target.with_name(target.name + ".part")
        logger.info("Downloading OCR model file %s", target.name)
        try:
            with urllib.request.urlopen(base_url + suffix, timeout=60) as response, partial.open("wb") as out:
                shutil.copyfileobj(response, out)
            if partial.stat().st_size == 0:
                raise RuntimeError(f"empty download for {target.name}")
            os.replace(partial, target)
        finally:
            partial.unlink(missing_ok=True)


class OCRSummarizer:
    """Summarizer that extracts text from the screenshot itself."""

    name = "OCR"

    def __init__(
        self,
        recognizer: TextRecognizer | None = None,
        *,
        config: OpenVINOConfig | None = None,
        timeout: float = 60.0,
    ) -> None:
        self._recognizer = recognizer
        self._config = config
        self._lock = threading.Lock()
        self.timeout = timeout

    def _get_recognizer(self) -> TextRecognizer:
        with self._lock:
            if self._recognizer is None:
                config = self._config or OpenVINOConfig.for_directory(None)
                self._recognizer = OpenVINOTextRecognizer(config)
                logger.info("Loaded OCR model from %s", config.model_xml)
            return self._recognizer

    def _extract(self, image_path: Path) -> str:
        return self._get_recognizer().recognize(image_path)

    async def summarize(self, image_path: str | Path, prompt: Optional[str] = None) -> str:
        path = Path(image_path)
        try:
            text = await asyncio.wait_for(asyncio.to_thread(self._extract, path), self.timeout)
        except asyncio.TimeoutError:
            raise SummarizerTimeout(f"OCR timed out ({self.timeout:g}s)") from None
        except SummarizerError:
            raise
        except Exception as exc:
            raise SummarizerExecutionFailed(f"OCR failed: {exc}") from exc
        return summarize_text(text)
