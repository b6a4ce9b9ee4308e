"""ScapLog command line: run the capture loop and query stored captures."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from scaplog.active_window import ActiveWindowInspector
from scaplog.config import COMMAND_PRESETS, CommandSummarizerChoice, OCRSummarizerChoice, ScapLogConfig
from scaplog.errors import PreconditionError, ScapLogError
from scaplog.feedback import TerminalBellFeedback
from scaplog.models import CycleStatus, utcnow
from scaplog.orchestrator import CaptureOrchestrator
from scaplog.reporting import records_report, statistics_report
from scaplog.screen_capture import ScreenCapturer
from scaplog.store import CaptureStore

logger = logging.getLogger(__name__)


def build_config(args: argparse.Namespace) -> ScapLogConfig:
    config = ScapLogConfig.from_env()
    if args.data_dir:
        config.data_dir = Path(args.data_dir).expanduser()
    interval = getattr(args, "interval", None)
    if interval:
        config.capture_interval = max(1.0, interval)
    summarizer = getattr(args, "summarizer", None)
    if summarizer == "ocr":
        config.summarizer = OCRSummarizerChoice()
    elif summarizer in COMMAND_PRESETS:
        config.summarizer = COMMAND_PRESETS[summarizer]
    template = getattr(args, "command", None)
    if template:
        config.summarizer = CommandSummarizerChoice(template=template)
    return config


def build_orchestrator(config: ScapLogConfig, store: CaptureStore) -> CaptureOrchestrator:
    capturer = ScreenCapturer(
        output_dir=config.screenshots_dir,
        image_format=config.screenshot_format,
        jpeg_quality=config.jpeg_quality,
        frontmost_window_only=config.capture_frontmost_window_only,
        analyze_as_png=config.analyze_as_png_then_convert,
    )
    return CaptureOrchestrator(
        config,
        store=store,
        capture_provider=capturer,
        window_inspector=ActiveWindowInspector(),
        feedback=TerminalBellFeedback(),
    )


def parse_when(value: str) -> datetime:
    """Parse an ISO date or datetime; naive values are local time."""

    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not an ISO date or datetime: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


async def run_loop(config: ScapLogConfig, store: CaptureStore) -> int:
    orchestrator = build_orchestrator(config, store)
    stopped = asyncio.Event()
    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        loop.add_signal_handler(signal.SIGINT, stopped.set)
        loop.add_signal_handler(signal.SIGTERM, stopped.set)
        # Power management hooks can send these around suspend and resume.
        loop.add_signal_handler(signal.SIGUSR1, orchestrator.notify_sleep)
        loop.add_signal_handler(signal.SIGUSR2, orchestrator.notify_wake)
    try:
        await orchestrator.start()
    except PreconditionError as exc:
        sys.stderr.write(f"Cannot start capturing: {exc}\n")
        return 1
    print(f"Capturing every {config.capture_interval:g}s into {config.data_dir}. Press Ctrl+C to stop.")
    try:
        await stopped.wait()
    finally:
        await orchestrator.shutdown()
    state = orchestrator.state
    print(f"\nStopped capturing. {state.capture_count} capture(s) saved this session.")
    return 0


async def capture_once(config: ScapLogConfig, store: CaptureStore) -> int:
    orchestrator = build_orchestrator(config, store)
    result = await orchestrator.capture_now()
    if result.record is not None:
        print(records_report("Captured", [result.record]).render_text())
        return 0
    print(f"{result.status.value}: {result.reason}")
    return 0 if result.status is CycleStatus.SKIPPED else 1


async def dispatch(args: argparse.Namespace) -> int:
    config = build_config(args)
    store = CaptureStore(config.database_path)
    try:
        if args.command_name == "run":
            return await run_loop(config, store)
        if args.command_name == "capture":
            return await capture_once(config, store)
        if args.command_name == "recent":
            records = await store.fetch_recent(args.limit, args.offset)
            print(records_report("Recent captures", records).render_text())
        elif args.command_name == "today":
            records = await store.fetch_today()
            print(records_report("Today's captures", records).render_text())
        elif args.command_name == "search":
            records = await store.search(" ".join(args.query), args.limit)
            print(records_report(f"Search: {' '.join(args.query)}", records).render_text())
        elif args.command_name == "range":
            records = await store.fetch_in_range(args.start, args.end)
            print(records_report(f"{args.start:%Y-%m-%d %H:%M} - {args.end:%Y-%m-%d %H:%M}", records).render_text())
        elif args.command_name == "stats":
            print(statistics_report(await store.statistics()).render_text())
        elif args.command_name == "delete":
            orchestrator = build_orchestrator(config, store)
            removed = await orchestrator.delete_records(args.ids)
            print(f"Deleted {removed} capture(s).")
        elif args.command_name == "purge":
            orchestrator = build_orchestrator(config, store)
            removed = await orchestrator.purge_older_than(utcnow() - timedelta(days=args.days))
            print(f"Deleted {removed} capture(s) older than {args.days} day(s).")
        return 0
    finally:
        await store.aclose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ScapLog screen capture log")
    parser.add_argument("--data-dir", help="Directory for the database and screenshots")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command_name", required=True)

    for name, help_text in (("run", "Capture periodically until interrupted"), ("capture", "Capture once now")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--interval", type=float, help="Capture interval in seconds")
        cmd.add_argument(
            "--summarizer",
            choices=["ocr", *COMMAND_PRESETS],
            help="Summarizer to use (default: SCAPLOG_SUMMARIZER or ocr)",
        )
        cmd.add_argument(
            "--command",
            help="Custom command template with {image_path}, {image_dir}, {image_name} and {prompt}",
        )

    recent = sub.add_parser("recent", help="Show the most recent captures")
    recent.add_argument("--limit", type=int, default=20)
    recent.add_argument("--offset", type=int, default=0)

    sub.add_parser("today", help="Show captures recorded today")

    search = sub.add_parser("search", help="Full-text search over summaries, apps and titles")
    search.add_argument("query", nargs="+")
    search.add_argument("--limit", type=int, default=50)

    date_range = sub.add_parser("range", help="Show captures recorded between two times")
    date_range.add_argument("start", type=parse_when)
    date_range.add_argument("end", type=parse_when)

    sub.add_parser("stats", help="Show capture statistics")

    delete = sub.add_parser("delete", help="Delete captures and their screenshots")
    delete.add_argument("ids", type=int, nargs="+")

    purge = sub.add_parser("purge", help="Delete captures older than a number of days")
    purge.add_argument("--days", type=int, required=True)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(dispatch(args))
    except (ScapLogError, ValueError) as exc:
        sys.stderr.write(f"error: {exc}\n")
        return 1


if __name__ == "__main__":
    sys.exit(main())
