"""Capture feedback cues."""

from __future__ import annotations

import logging
import sys
from typing import Protocol, TextIO

logger = logging.getLogger(__name__)


class Feedback(Protocol):
    def cue(self) -> None:
        """Signal that a capture is about to happen. Must return quickly."""


class TerminalBellFeedback:
    """Rings the terminal bell before each capture."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream or sys.stderr

    def cue(self) -> None:
        self.stream.write("\a")
        self.stream.flush()
