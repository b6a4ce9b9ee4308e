"""ScapLog: periodic screen capture with privacy filtering and searchable summaries."""

from .config import CommandSummarizerChoice, OCRSummarizerChoice, ScapLogConfig
from .errors import (
    AcquisitionError,
    PreconditionError,
    ScapLogError,
    StoreError,
    SummarizerError,
)
from .models import CaptureRecord, CycleResult, CycleStatus, PrivacyVerdict, RuleSet, StoreStatistics
from .orchestrator import CaptureOrchestrator
from .privacy import evaluate
from .store import CaptureStore
from .summarizer import Summarizer, build_summarizer

__all__ = [
    "CaptureOrchestrator",
    "CaptureStore",
    "ScapLogConfig",
    "OCRSummarizerChoice",
    "CommandSummarizerChoice",
    "Summarizer",
    "build_summarizer",
    "evaluate",
    "CaptureRecord",
    "CycleResult",
    "CycleStatus",
    "PrivacyVerdict",
    "RuleSet",
    "StoreStatistics",
    "ScapLogError",
    "PreconditionError",
    "AcquisitionError",
    "SummarizerError",
    "StoreError",
]
