"""Active window inspection and running-application listing."""

from __future__ import annotations

import logging
import sys
from typing import Optional, Protocol

import psutil

from .models import ActiveContext

logger = logging.getLogger(__name__)


class WindowInspector(Protocol):
    def active_context(self) -> ActiveContext:
        ...

    def running_identifiers(self) -> set[str]:
        ...


def running_process_names() -> set[str]:
    """Lower-cased names of every process visible to this user."""

    names: set[str] = set()
    for proc in psutil.process_iter(["name"]):
        name = proc.info.get("name")
        if name:
            names.add(name.lower())
    return names


class ActiveWindowInspector:
    """Reports the foreground window; Win32 only, empty context elsewhere."""

    def __init__(self) -> None:
        self._supported = False
        self._warned = False
        if sys.platform.startswith("win"):
            self._init_win32()

    def _init_win32(self) -> None:
        try:
            import ctypes
            from ctypes import wintypes

            self._ctypes = ctypes
            self._wintypes = wintypes
            self._user32 = ctypes.windll.user32
        except (ImportError, AttributeError, OSError) as exc:  # pragma: no cover - platform specific
            logger.warning("Win32 window inspection unavailable: %s", exc)
            return
        self._supported = True

    def is_supported(self) -> bool:
        return self._supported

    def running_identifiers(self) -> set[str]:
        return running_process_names()

    def active_context(self) -> ActiveContext:
        if not self._supported:
            if not self._warned:
                logger.warning("Active window inspection is not supported on %s", sys.platform)
                self._warned = True
            return ActiveContext()
        hwnd = self._user32.GetForegroundWindow()  # pragma: no cover - platform specific
        if not hwnd:
            return ActiveContext()
        name = self._process_name(self._window_process_id(hwnd))
        return ActiveContext(
            application_name=name.rsplit(".", 1)[0] if name else None,
            window_title=self._window_title(hwnd) or None,
            application_identifier=name.lower() if name else None,
            rect=self._window_rect(hwnd),
        )

    # ------------------------------------------------------------------
    # Win32 helpers
    # ------------------------------------------------------------------

    def _window_title(self, hwnd: int) -> str:
        length = self._user32.GetWindowTextLengthW(hwnd)
        if length == 0:
            # Console and UWP windows can report zero length with a title set.
            length = 1024
        buffer = self._ctypes.create_unicode_buffer(length + 1)
        self._user32.GetWindowTextW(hwnd, buffer, length + 1)
        return buffer.value.strip()

    def _window_process_id(self, hwnd: int) -> int:
        pid = self._wintypes.DWORD()
        self._user32.GetWindowThreadProcessId(hwnd, self._ctypes.byref(pid))
        return int(pid.value)

    def _window_rect(self, hwnd: int) -> Optional[tuple[int, int, int, int]]:
        rect = self._wintypes.RECT()
        if self._user32.GetWindowRect(hwnd, self._ctypes.byref(rect)) == 0:
            return None
        return (rect.left, rect.top, rect.right, rect.bottom)

    @staticmethod
    def _process_name(pid: int) -> str:
        if pid <= 0:
            return ""
        try:
            return psutil.Process(pid).name()
        except (psutil.AccessDenied, psutil.NoSuchProcess, psutil.ZombieProcess):
            return ""
