"""Capture scheduler: periodic, single-flight capture cycles."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Set

from . import privacy
from .active_window import WindowInspector
from .config import ScapLogConfig
from .errors import CycleFailure, PreconditionError, SummarizerError
from .feedback import Feedback
from .models import (
    CaptureRecord,
    CaptureSessionState,
    CycleResult,
    CycleStatus,
    PrivacyVerdict,
    SchedulerState,
    utcnow,
)
from .screen_capture import CaptureProvider
from .store import CaptureStore
from .summarizer import Summarizer, build_summarizer

logger = logging.getLogger(__name__)

PrivateBrowsingDetector = Callable[[Optional[str], Optional[str]], bool]
SummarizerFactory = Callable[[ScapLogConfig], Optional[Summarizer]]

RETENTION_SWEEP_INTERVAL = timedelta(hours=24)


def _default_summarizer_factory(config: ScapLogConfig) -> Optional[Summarizer]:
    return build_summarizer(config.summarizer, config)


class CaptureOrchestrator:
    """Drives the capture → privacy → summarize → persist pipeline.

    The timer and the manual trigger share one cycle function guarded by an
    in-flight flag: a trigger arriving while a cycle runs is dropped, never
    queued. Configuration is snapshotted when a cycle starts, so
    ``apply_config`` only affects later cycles.
    """

    def __init__(
        self,
        config: ScapLogConfig,
        *,
        store: CaptureStore,
        capture_provider: CaptureProvider,
        window_inspector: WindowInspector,
        summarizer: Optional[Summarizer] = None,
        summarizer_factory: SummarizerFactory = _default_summarizer_factory,
        private_browsing_detector: PrivateBrowsingDetector = privacy.is_private_browsing,
        feedback: Optional[Feedback] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config
        self._store = store
        self._capture_provider = capture_provider
        self._window_inspector = window_inspector
        self._summarizer_factory = summarizer_factory
        self._summarizer = summarizer if summarizer is not None else summarizer_factory(config)
        self._is_private = private_browsing_detector
        self._feedback = feedback
        self._clock = clock
        self._scheduler_state = SchedulerState.STOPPED
        self._session = CaptureSessionState()
        self._timer: Optional[asyncio.Task] = None
        self._cycles: Set[asyncio.Task] = set()
        self._last_retention: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def scheduler_state(self) -> SchedulerState:
        return self._scheduler_state

    @property
    def state(self) -> CaptureSessionState:
        return replace(self._session)

    @property
    def config(self) -> ScapLogConfig:
        return self._config

    @property
    def running(self) -> bool:
        return self._session.running

    @property
    def capture_count(self) -> int:
        return self._session.capture_count

    @property
    def last_error(self) -> Optional[CycleFailure]:
        return self._session.last_error

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._scheduler_state is not SchedulerState.STOPPED:
            return
        self._scheduler_state = SchedulerState.STARTING
        try:
            self._check_preconditions()
        except PreconditionError as exc:
            self._scheduler_state = SchedulerState.STOPPED
            self._session.last_error = CycleFailure("start", exc)
            logger.error("Cannot start capturing: %s", exc)
            raise
        self._session.running = True
        self._session.last_error = None
        self._scheduler_state = (
            SchedulerState.PAUSED_FOR_SLEEP if self._session.paused_for_sleep else SchedulerState.RUNNING
        )
        logger.info("Capturing every %ss", self._config.capture_interval)
        await self._maybe_run_retention()
        if self._scheduler_state is SchedulerState.STOPPED or self._timer is not None:
            # stop(), or a restart, ran while the retention sweep was pending.
            return
        self._timer = asyncio.create_task(self._tick_loop(immediate=True))

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._session.running:
            logger.info("Capturing stopped")
        self._session.running = False
        self._scheduler_state = SchedulerState.STOPPED

    async def shutdown(self) -> None:
        """Stop the timer and wait for a cycle that is still running."""

        self.stop()
        if self._cycles:
            await asyncio.gather(*self._cycles, return_exceptions=True)

    def _check_preconditions(self) -> None:
        if not self._capture_provider.is_authorized():
            raise PreconditionError("screen recording permission is not granted")
        if self._summarizer is None:
            raise PreconditionError("no summarizer is configured")

    def notify_sleep(self) -> None:
        if not self._config.pause_on_sleep:
            return
        self._session.paused_for_sleep = True
        if self._scheduler_state is SchedulerState.RUNNING:
            self._scheduler_state = SchedulerState.PAUSED_FOR_SLEEP
        logger.info("Capturing paused: system going to sleep")

    def notify_wake(self) -> None:
        self._session.paused_for_sleep = False
        if self._scheduler_state is SchedulerState.PAUSED_FOR_SLEEP:
            self._scheduler_state = SchedulerState.RUNNING
        logger.info("Capturing resumed: system woke up")

    def apply_config(self, config: ScapLogConfig, *, summarizer: Optional[Summarizer] = None) -> None:
        """Install a new configuration; the next cycle picks it up."""

        interval_changed = config.capture_interval != self._config.capture_interval
        self._config = config
        self._summarizer = summarizer if summarizer is not None else self._summarizer_factory(config)
        if interval_changed and self._timer is not None:
            self._timer.cancel()
            self._timer = asyncio.create_task(self._tick_loop(immediate=False))
        logger.debug("Configuration applied")

    async def _tick_loop(self, *, immediate: bool) -> None:
        if not immediate:
            await asyncio.sleep(self._config.capture_interval)
        while True:
            # Ticks do not wait for the cycle; overlapping ticks get dropped.
            task = asyncio.create_task(self.run_cycle(trigger="timer"))
            self._cycles.add(task)
            task.add_done_callback(self._cycles.discard)
            await self._maybe_run_retention()
            await asyncio.sleep(self._config.capture_interval)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def capture_now(self) -> CycleResult:
        return await self.run_cycle(trigger="manual")

    async def run_cycle(self, trigger: str = "timer") -> CycleResult:
        if self._session.in_flight:
            logger.debug("Capture (%s) dropped: a cycle is already running", trigger)
            return CycleResult(CycleStatus.DROPPED, "cycle already in progress")
        self._session.in_flight = True
        try:
            return await self._cycle(self._config, self._summarizer)
        finally:
            self._session.in_flight = False

    async def _cycle(self, config: ScapLogConfig, summarizer: Optional[Summarizer]) -> CycleResult:
        if self._session.paused_for_sleep:
            return self._skip("paused for sleep")

        try:
            context = self._window_inspector.active_context()
        except Exception as exc:
            return self._fail("context", exc)
        identifier = context.application_identifier

        if config.is_app_excluded(identifier):
            return self._skip(f"app excluded: {identifier}")

        if not config.exclude_only_when_foreground and not config.capture_frontmost_window_only:
            try:
                running = self._excluded_running(config)
            except Exception as exc:
                return self._fail("context", exc)
            if running:
                return self._skip(f"excluded app running in background: {running}")

        if config.skip_private_browsing:
            try:
                private = self._is_private(identifier, context.window_title)
            except Exception as exc:
                return self._fail("context", exc)
            if private:
                return self._skip("private browsing detected")

        decision = privacy.explain(context.window_title, identifier, config.rule_set())
        if decision.verdict is PrivacyVerdict.EXCLUDE:
            return self._skip(f"privacy filter ({decision.matched})")

        if config.capture_feedback and self._feedback is not None:
            asyncio.get_running_loop().call_soon(self._cue_feedback)

        observed_at = self._clock()
        try:
            screenshot = await self._capture_provider.capture(context)
        except Exception as exc:
            return self._fail("acquire", exc)

        if decision.verdict is PrivacyVerdict.MASK:
            logger.debug("Using masked summary (%s)", decision.matched)
            summary = privacy.MASKED_SUMMARY
        elif summarizer is None:
            return self._fail("summarize", PreconditionError("no summarizer is configured"))
        else:
            try:
                summary = await summarizer.summarize(screenshot, config.prompt_override())
            except Exception as exc:
                return self._fail("summarize", exc)
            if not summary.strip():
                return self._fail("summarize", SummarizerError("summarizer returned no text"))

        try:
            screenshot = await asyncio.to_thread(self._capture_provider.convert_to_final_format, screenshot)
        except Exception as exc:
            return self._fail("convert", exc)

        record = CaptureRecord(
            summary_text=summary,
            observed_at=observed_at,
            screenshot_path=screenshot,
            application_name=context.application_name,
            window_title=context.window_title,
            recorded_at=self._clock(),
        )
        try:
            record.id = await self._store.insert(record)
        except Exception as exc:
            return self._fail("persist", exc)

        self._session.capture_count += 1
        self._session.last_error = None
        self._session.last_summary = summary
        logger.info("Saved capture %s (%s)", record.id, context.application_name or "unknown app")
        return CycleResult(CycleStatus.CAPTURED, record=record)

    def _excluded_running(self, config: ScapLogConfig) -> Optional[str]:
        running = {name.lower() for name in self._window_inspector.running_identifiers()}
        for app in config.excluded_apps:
            if app.lower() in running:
                return app
        for browser in privacy.browsers_with_excluded_profiles(config.rule_set()):
            if browser.identifiers & running:
                return browser.value
        return None

    def _cue_feedback(self) -> None:
        try:
            self._feedback.cue()
        except Exception:
            logger.warning("Capture feedback failed", exc_info=True)

    @staticmethod
    def _skip(reason: str) -> CycleResult:
        logger.debug("Capture skipped: %s", reason)
        return CycleResult(CycleStatus.SKIPPED, reason)

    def _fail(self, stage: str, error: BaseException) -> CycleResult:
        failure = CycleFailure(stage, error)
        self._session.last_error = failure
        logger.warning("Capture failed at %s: %s", stage, error)
        return CycleResult(CycleStatus.FAILED, failure.message)

    # ------------------------------------------------------------------
    # Record deletion and retention
    # ------------------------------------------------------------------

    async def delete_record(self, record_id: int) -> bool:
        removed = await self._store.delete(record_id)
        if removed is None:
            return False
        await self._remove_screenshots([removed])
        return True

    async def delete_records(self, record_ids: Iterable[int]) -> int:
        removed = await self._store.delete_many(record_ids)
        await self._remove_screenshots(removed)
        return len(removed)

    async def purge_older_than(self, cutoff: datetime) -> int:
        removed = await self._store.delete_older_than(cutoff)
        await self._remove_screenshots(removed)
        return len(removed)

    async def run_retention(self, now: Optional[datetime] = None) -> int:
        days = self._config.auto_delete_days
        if days <= 0:
            return 0
        now = now or self._clock()
        self._last_retention = now
        count = await self.purge_older_than(now - timedelta(days=days))
        logger.info("Retention sweep removed %d captures older than %d days", count, days)
        return count

    async def _maybe_run_retention(self) -> None:
        if self._config.auto_delete_days <= 0:
            return
        now = self._clock()
        if self._last_retention is not None and now - self._last_retention < RETENTION_SWEEP_INTERVAL:
            return
        try:
            await self.run_retention(now)
        except Exception:
            logger.exception("Retention sweep failed")

    async def _remove_screenshots(self, records: List[CaptureRecord]) -> None:
        paths = [record.screenshot_path for record in records if record.screenshot_path]
        if paths:
            await asyncio.to_thread(_unlink_all, paths)


def _unlink_all(paths: List[Path]) -> None:
    for path in paths:
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not delete screenshot %s: %s", path, exc)
