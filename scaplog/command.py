"""External command summarizer: template rendering and async execution."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .errors import (
    SummarizerCommandFailed,
    SummarizerExecutionFailed,
    SummarizerTimeout,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0
NO_OUTPUT = "(no output)"

PLACEHOLDERS = ("image_path", "image_dir", "image_name", "prompt")

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}

_NOISE_PREFIXES = ("YOLO mode", "Session cleanup", "Loaded cached")
_NOISE_MARKERS = ("[STARTUP]", "Recording metric", "Authentication timed out")

AUTH_TIMEOUT_MESSAGE = (
    "Gemini authentication error: run 'gemini hello' in a terminal to sign in"
)
NOT_FOUND_MESSAGE = "Command not found. Check that the AI tool is installed"


_PLACEHOLDER_RE = re.compile(
    r'"\{(%s)\}"|\{(%s)\}' % ("|".join(PLACEHOLDERS), "|".join(PLACEHOLDERS))
)


def shell_quote(value: str) -> str:
    """Wrap ``value`` in single quotes; ``'`` becomes ``'\\''``."""

    return "'" + value.replace("'", "'\\''") + "'"


def _open_quote(template: str, end: int) -> Optional[str]:
    """Return the quote character still open at ``template[end]``, if any."""

    state: Optional[str] = None
    index = 0
    while index < end:
        char = template[index]
        if state == "'":
            if char == "'":
                state = None
        elif char == "\\":
            index += 1
        elif char == '"':
            state = None if state == '"' else '"'
        elif char == "'":
            state = "'"
        index += 1
    return state


def _splice(quoted: str, open_quote: Optional[str]) -> str:
    # Close the surrounding quote, append the single-quoted word, reopen it.
    if open_quote is None:
        return quoted
    return open_quote + quoted + open_quote


def render_command(template: str, image_path: str | Path, prompt: str) -> str:
    """Substitute placeholders in ``template`` with shell-escaped values.

    Substitution is a single pass over the template, so placeholder names
    inside substituted values are never expanded. A placeholder that is a
    whole double-quoted word loses those quotes; one embedded in a longer
    quoted string is spliced in by closing and reopening the quote.
    """

    path = Path(image_path)
    values = {
        "image_path": str(path),
        "image_dir": str(path.parent),
        "image_name": path.name,
        "prompt": prompt,
    }

    def substitute(match: re.Match) -> str:
        name = match.group(1) or match.group(2)
        quoted = shell_quote(values[name])
        if match.group(2):
            return _splice(quoted, _open_quote(template, match.start()))
        if _open_quote(template, match.start()) is None:
            return quoted
        # The leading '"' closes an earlier quoted span; both quotes stay in place.
        return '"' + _splice(quoted, _open_quote(template, match.start() + 1)) + '"'

    return _PLACEHOLDER_RE.sub(substitute, template)


def command_environment(
    base: Mapping[str, str] | None = None, home: Path | None = None
) -> dict[str, str]:
    """Return the environment for summarizer commands.

    Common tool locations are prepended to PATH and the config roots are
    pinned so CLI tools can find their credentials when run headless.
    """

    env = dict(os.environ if base is None else base)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    home = home or Path.home()
    extra_paths = [
        str(home / ".local" / "share" / "mise" / "shims"),
        str(home / ".local" / "bin"),
        "/opt/homebrew/bin",
        "/usr/local/bin",
    ]
    current = env.get("PATH")
    env["PATH"] = os.pathsep.join(extra_paths + ([current] if current else []))
    env["TERM"] = "dumb"
    env["HOME"] = str(home)
    env["XDG_CONFIG_HOME"] = str(home / ".config")
    env["GEMINI_HOME"] = str(home / ".gemini")
    return env


def _is_noise(line: str) -> bool:
    return line.startswith(_NOISE_PREFIXES) or any(marker in line for marker in _NOISE_MARKERS)


def clean_output(output: str) -> str:
    """Strip CLI noise lines from stdout."""

    if "Authentication timed out" in output or "timed out after" in output:
        return ""
    lines = []
    for line in output.splitlines():
        if _is_noise(line):
            continue
        # Gemini echoes "`file` の内容を確認します。" before answering.
        if line.startswith("`") and line.endswith("` の内容を確認します。"):
            continue
        lines.append(line)
    return "\n".join(lines).strip()


def classify_error(stderr: str) -> str:
    """Turn raw stderr into a user-actionable message."""

    if "Authentication timed out" in stderr:
        return AUTH_TIMEOUT_MESSAGE
    if "not found" in stderr:
        return NOT_FOUND_MESSAGE
    lines = [line for line in stderr.splitlines() if not _is_noise(line)]
    return "\n".join(lines).strip()


@dataclass(slots=True)
class CommandResult:
    command: str
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandSummarizer:
    """Summarize an image by running a shell command template."""

    def __init__(
        self,
        template: str,
        *,
        default_prompt: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        shell: str = "/bin/sh",
        env: Mapping[str, str] | None = None,
        name: str = "command",
    ) -> None:
        if not template.strip():
            raise ValueError("command template must not be empty")
        self.template = template
        self.default_prompt = default_prompt
        self.timeout = timeout
        self.shell = shell
        self.name = name
        self._env = dict(env) if env is not None else None

    def build(self, image_path: str | Path, prompt: Optional[str] = None) -> str:
        return render_command(self.template, image_path, prompt or self.default_prompt)

    async def summarize(self, image_path: str | Path, prompt: Optional[str] = None) -> str:
        command = self.build(image_path, prompt)
        logger.debug("Running summarizer command: %s", command)
        result = await self.run(command)
        logger.debug(
            "Summarizer command exited with %s (stdout %d chars, stderr %d chars)",
            result.returncode,
            len(result.stdout),
            len(result.stderr),
        )
        if result.ok:
            cleaned = clean_output(result.stdout)
            if cleaned:
                return cleaned
            error = classify_error(result.stderr)
            if error:
                raise SummarizerCommandFailed(error)
            return NO_OUTPUT
        error = classify_error(result.stderr)
        raise SummarizerCommandFailed(
            error or f"command failed (exit code: {result.returncode})"
        )

    async def run(self, command: str) -> CommandResult:
        env = self._env if self._env is not None else command_environment()
        try:
            process = await asyncio.create_subprocess_exec(
                self.shell,
                "-c",
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                start_new_session=os.name == "posix",
            )
        except OSError as exc:
            raise SummarizerExecutionFailed(f"could not start {self.shell}: {exc}") from exc
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Summarizer command timed out after %ss; killing it", self.timeout)
            await _terminate(process)
            raise SummarizerTimeout(f"timed out ({self.timeout:g}s)") from None
        except asyncio.CancelledError:
            await _terminate(process)
            raise
        return CommandResult(
            command=command,
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout_bytes.decode("utf-8", errors="replace").strip(),
            stderr=stderr_bytes.decode("utf-8", errors="replace").strip(),
        )


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        if os.name == "posix":
            # The shell runs in its own session; take its children down too.
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except ProcessLookupError:
        return
    await process.wait()
