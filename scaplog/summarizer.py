"""Summarizer capability and construction from configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol

from .command import CommandSummarizer
from .config import CommandSummarizerChoice, OCRSummarizerChoice, ScapLogConfig, SummarizerChoice
from .ocr import OCRSummarizer, OpenVINOConfig


class Summarizer(Protocol):
    """Turns a screenshot into descriptive text.

    ``summarize`` returns non-empty text or raises ``SummarizerError``. It is
    bounded by the implementation's timeout and honours task cancellation.
    """

    name: str

    async def summarize(self, image_path: str | Path, prompt: Optional[str] = None) -> str:
        ...


def build_summarizer(choice: Optional[SummarizerChoice], config: ScapLogConfig) -> Optional[Summarizer]:
    if choice is None:
        return None
    if isinstance(choice, OCRSummarizerChoice):
        return OCRSummarizer(config=OpenVINOConfig.for_directory(config.ocr_model_dir, config.ocr_device))
    if isinstance(choice, CommandSummarizerChoice):
        return CommandSummarizer(
            choice.template,
            default_prompt=choice.default_prompt,
            timeout=config.command_timeout,
            shell=config.shell,
            name=choice.name,
        )
    raise TypeError(f"Unknown summarizer choice: {choice!r}")
