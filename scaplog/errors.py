"""Exception hierarchy for ScapLog."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ScapLogError(RuntimeError):
    """Base class for ScapLog errors."""


class PreconditionError(ScapLogError):
    """Raised when the capture scheduler cannot start."""


class AcquisitionErrorKind(Enum):
    NOT_AUTHORIZED = "not_authorized"
    NO_DISPLAY = "no_display"
    NO_WINDOW = "no_window"
    FAILED = "failed"


class AcquisitionError(ScapLogError):
    """Raised when the screen image could not be acquired."""

    def __init__(self, kind: AcquisitionErrorKind, message: str = "") -> None:
        self.kind = kind
        super().__init__(message or kind.value.replace("_", " "))


class SummarizerError(ScapLogError):
    """Base class for summarizer failures."""


class SummarizerTimeout(SummarizerError):
    """The summarizer did not finish within its time limit."""


class SummarizerExecutionFailed(SummarizerError):
    """The summarizer backend could not be started or crashed."""


class SummarizerCommandFailed(SummarizerError):
    """The external command ran but reported a failure."""


class StoreError(ScapLogError):
    """Raised when the capture store cannot complete an operation."""


class StoreValidationError(StoreError):
    """Raised for invalid store arguments, before storage is touched."""


@dataclass(slots=True)
class CycleFailure:
    """A per-cycle failure together with the stage that produced it."""

    stage: str
    error: BaseException

    @property
    def message(self) -> str:
        return f"{self.stage}: {self.error}"

    def __str__(self) -> str:
        return self.message
