"""Data models shared by the capture pipeline and the capture store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Tuple

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from .errors import CycleFailure
    from .privacy import BrowserType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class CaptureRecord:
    """One observation of the screen at a point in time."""

    summary_text: str
    observed_at: datetime = field(default_factory=utcnow)
    screenshot_path: Optional[Path] = None
    application_name: Optional[str] = None
    window_title: Optional[str] = None
    recorded_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None


class PrivacyVerdict(Enum):
    """Outcome of the privacy decision engine for one capture attempt."""

    ALLOW = "allow"
    EXCLUDE = "exclude"
    MASK = "mask"


@dataclass(frozen=True, slots=True)
class BrowserProfile:
    """A browser profile as reported by the profile data source."""

    browser: "BrowserType"
    profile_id: str
    name: str

    @property
    def key(self) -> str:
        return f"{self.browser.value}:{self.profile_id}"


@dataclass(frozen=True, slots=True)
class RuleSet:
    """Read-only snapshot of the privacy rules used for one cycle."""

    exclude_keywords: Tuple[str, ...] = ()
    mask_keywords: Tuple[str, ...] = ()
    excluded_profiles: frozenset[str] = frozenset()
    known_profiles: Tuple[BrowserProfile, ...] = ()
    foreground_only: bool = True

    def profile(self, key: str) -> Optional[BrowserProfile]:
        for candidate in self.known_profiles:
            if candidate.key == key:
                return candidate
        return None


@dataclass(slots=True)
class ActiveContext:
    """What the window inspector reports about the foreground window."""

    application_name: Optional[str] = None
    window_title: Optional[str] = None
    application_identifier: Optional[str] = None
    rect: Optional[Tuple[int, int, int, int]] = None


@dataclass(slots=True)
class StoreStatistics:
    total_count: int = 0
    today_count: int = 0
    per_application: List[Tuple[str, int]] = field(default_factory=list)
    first_recorded_at: Optional[datetime] = None
    last_recorded_at: Optional[datetime] = None

    def days_since_first(self, now: datetime | None = None) -> int:
        if self.first_recorded_at is None:
            return 0
        now = now or utcnow()
        return max((now - self.first_recorded_at).days, 0)

    def average_per_day(self, now: datetime | None = None) -> float:
        days = self.days_since_first(now)
        if days <= 0:
            return float(self.total_count)
        return self.total_count / days


class SchedulerState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    PAUSED_FOR_SLEEP = "paused_for_sleep"


@dataclass(slots=True)
class CaptureSessionState:
    """Observable state of the capture orchestrator."""

    running: bool = False
    paused_for_sleep: bool = False
    in_flight: bool = False
    capture_count: int = 0
    last_error: Optional["CycleFailure"] = None
    last_summary: Optional[str] = None


class CycleStatus(Enum):
    CAPTURED = "captured"
    SKIPPED = "skipped"
    DROPPED = "dropped"
    FAILED = "failed"


@dataclass(slots=True)
class CycleResult:
    """Outcome of one capture cycle."""

    status: CycleStatus
    reason: str = ""
    record: Optional[CaptureRecord] = None

    @property
    def captured(self) -> bool:
        return self.status is CycleStatus.CAPTURED
