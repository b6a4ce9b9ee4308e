"""Runtime configuration for ScapLog."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional, Tuple, Union

from .models import BrowserProfile, RuleSet
from .privacy import parse_profile_key

logger = logging.getLogger(__name__)

DEFAULT_PROMPT = (
    "Look at this screenshot and briefly summarize what the user is doing."
)

DEFAULT_MASK_KEYWORDS: Tuple[str, ...] = (
    "password",
    "パスワード",
    "credit card",
    "クレジット",
    "カード番号",
    "暗証番号",
    "PIN",
    "セキュリティコード",
    "CVV",
    "CVC",
    "口座番号",
    "銀行",
    "Bank",
    "社会保険",
    "マイナンバー",
    "個人番号",
    "ID",
    "ログイン",
    "Login",
    "signin",
    "サインイン",
)


@dataclass(frozen=True, slots=True)
class OCRSummarizerChoice:
    """Summarize captures with on-device text recognition."""

    name: str = "OCR"


@dataclass(frozen=True, slots=True)
class CommandSummarizerChoice:
    """Summarize captures by running an external command template."""

    template: str
    default_prompt: str = DEFAULT_PROMPT
    name: str = "command"


SummarizerChoice = Union[OCRSummarizerChoice, CommandSummarizerChoice]

COMMAND_PRESETS: Mapping[str, CommandSummarizerChoice] = {
    "gemini": CommandSummarizerChoice(
        name="Gemini",
        template='cd "{image_dir}" && gemini "{prompt} File: {image_name}" -o text -y',
    ),
    "claude": CommandSummarizerChoice(
        name="Claude",
        template='cat "{image_path}" | base64 | xargs -I {} claude -p "{prompt}" --no-session-persistence',
    ),
    "llm": CommandSummarizerChoice(
        name="llm (GPT-4o)",
        template='llm -m gpt-4o "{prompt}" -a "{image_path}"',
    ),
}


def _env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{key} must be a boolean, got {raw!r}")


def _env_list(env: Mapping[str, str], key: str) -> Optional[Tuple[str, ...]]:
    raw = env.get(key)
    if raw is None:
        return None
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def parse_profile_entries(entries: Tuple[str, ...]) -> Tuple[BrowserProfile, ...]:
    """Parse ``chrome:Profile 1=Work`` entries into browser profiles."""

    profiles: list[BrowserProfile] = []
    for entry in entries:
        key, sep, name = entry.partition("=")
        parsed = parse_profile_key(key.strip())
        if parsed is None:
            logger.warning("Ignoring malformed browser profile entry: %s", entry)
            continue
        browser, profile_id = parsed
        profiles.append(BrowserProfile(browser, profile_id, name.strip() if sep else profile_id))
    return tuple(profiles)


@dataclass(slots=True)
class ScapLogConfig:
    """Configuration snapshot read by the capture orchestrator."""

    data_dir: Path = field(default_factory=lambda: Path.home() / ".scaplog")
    capture_interval: float = 60.0
    summarizer: Optional[SummarizerChoice] = field(default_factory=OCRSummarizerChoice)
    custom_prompt: str = ""
    command_timeout: float = 120.0
    shell: str = "/bin/sh"
    capture_frontmost_window_only: bool = True
    excluded_apps: Tuple[str, ...] = ()
    exclude_keywords: Tuple[str, ...] = ()
    mask_keywords: Tuple[str, ...] = DEFAULT_MASK_KEYWORDS
    excluded_profiles: Tuple[str, ...] = ()
    known_profiles: Tuple[BrowserProfile, ...] = ()
    exclude_only_when_foreground: bool = True
    skip_private_browsing: bool = True
    pause_on_sleep: bool = True
    auto_delete_days: int = 0
    screenshot_format: str = "jpeg"
    jpeg_quality: float = 0.7
    analyze_as_png_then_convert: bool = True
    capture_feedback: bool = True
    ocr_model_dir: Optional[Path] = None
    ocr_device: str = "CPU"

    @property
    def database_path(self) -> Path:
        return self.data_dir / "scaplog.sqlite"

    @property
    def screenshots_dir(self) -> Path:
        return self.data_dir / "screenshots"

    def rule_set(self) -> RuleSet:
        return RuleSet(
            exclude_keywords=tuple(self.exclude_keywords),
            mask_keywords=tuple(self.mask_keywords),
            excluded_profiles=frozenset(self.excluded_profiles),
            known_profiles=tuple(self.known_profiles),
            foreground_only=self.exclude_only_when_foreground,
        )

    def is_app_excluded(self, application_identifier: Optional[str]) -> bool:
        if not application_identifier:
            return False
        needle = application_identifier.lower()
        return any(app.lower() == needle for app in self.excluded_apps)

    def prompt_override(self) -> Optional[str]:
        return self.custom_prompt or None

    def with_changes(self, **changes) -> "ScapLogConfig":
        return replace(self, **changes)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "ScapLogConfig":
        env = os.environ if env is None else env
        config = cls()
        data_dir = env.get("SCAPLOG_DATA_DIR")
        if data_dir:
            config.data_dir = Path(data_dir).expanduser()
        interval = env.get("SCAPLOG_CAPTURE_INTERVAL")
        if interval:
            config.capture_interval = float(interval)
            if config.capture_interval <= 0:
                raise ValueError("SCAPLOG_CAPTURE_INTERVAL must be positive")
        config.summarizer = _summarizer_from_env(env, config.summarizer)
        config.custom_prompt = env.get("SCAPLOG_PROMPT", config.custom_prompt)
        timeout = env.get("SCAPLOG_COMMAND_TIMEOUT")
        if timeout:
            config.command_timeout = float(timeout)
        config.shell = env.get("SCAPLOG_SHELL", config.shell)
        config.capture_frontmost_window_only = _env_bool(
            env, "SCAPLOG_FRONTMOST_ONLY", config.capture_frontmost_window_only
        )
        for attr, key in (
            ("excluded_apps", "SCAPLOG_EXCLUDED_APPS"),
            ("exclude_keywords", "SCAPLOG_EXCLUDE_KEYWORDS"),
            ("mask_keywords", "SCAPLOG_MASK_KEYWORDS"),
            ("excluded_profiles", "SCAPLOG_EXCLUDED_PROFILES"),
        ):
            values = _env_list(env, key)
            if values is not None:
                setattr(config, attr, values)
        profile_entries = _env_list(env, "SCAPLOG_BROWSER_PROFILES")
        if profile_entries:
            config.known_profiles = parse_profile_entries(profile_entries)
        config.exclude_only_when_foreground = _env_bool(
            env, "SCAPLOG_EXCLUDE_ONLY_FOREGROUND", config.exclude_only_when_foreground
        )
        config.skip_private_browsing = _env_bool(
            env, "SCAPLOG_SKIP_PRIVATE_BROWSING", config.skip_private_browsing
        )
        config.pause_on_sleep = _env_bool(env, "SCAPLOG_PAUSE_ON_SLEEP", config.pause_on_sleep)
        days = env.get("SCAPLOG_AUTO_DELETE_DAYS")
        if days:
            config.auto_delete_days = max(int(days), 0)
        fmt = env.get("SCAPLOG_SCREENSHOT_FORMAT")
        if fmt:
            fmt = fmt.strip().lower()
            if fmt not in {"png", "jpeg"}:
                raise ValueError("SCAPLOG_SCREENSHOT_FORMAT must be png or jpeg")
            config.screenshot_format = fmt
        quality = env.get("SCAPLOG_JPEG_QUALITY")
        if quality:
            config.jpeg_quality = min(max(float(quality), 0.5), 1.0)
        config.analyze_as_png_then_convert = _env_bool(
            env, "SCAPLOG_ANALYZE_AS_PNG", config.analyze_as_png_then_convert
        )
        config.capture_feedback = _env_bool(env, "SCAPLOG_CAPTURE_FEEDBACK", config.capture_feedback)
        model_dir = env.get("SCAPLOG_OCR_MODEL_DIR")
        if model_dir:
            config.ocr_model_dir = Path(model_dir).expanduser()
        config.ocr_device = env.get("SCAPLOG_OCR_DEVICE", config.ocr_device)
        return config


def _summarizer_from_env(
    env: Mapping[str, str], default: Optional[SummarizerChoice]
) -> Optional[SummarizerChoice]:
    template = env.get("SCAPLOG_COMMAND_TEMPLATE")
    selected = (env.get("SCAPLOG_SUMMARIZER") or "").strip().lower()
    if template:
        return CommandSummarizerChoice(template=template)
    if not selected:
        return default
    if selected == "ocr":
        return OCRSummarizerChoice()
    if selected == "none":
        return None
    if selected in COMMAND_PRESETS:
        return COMMAND_PRESETS[selected]
    raise ValueError(
        f"SCAPLOG_SUMMARIZER must be one of ocr, none, {', '.join(COMMAND_PRESETS)}; got {selected!r}"
    )
