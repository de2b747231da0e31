"""
Command executor shared by every backend.

Runs one external program to completion with an explicit argument vector
(never through a shell), captures its output and classifies the result.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Callable, Sequence

from blockdev.core.errors import CommandFailed, ExecError, NoOutput, SpawnFailed
from blockdev.core.logging import get_logger

if TYPE_CHECKING:
    from blockdev.utils.global_config import GlobalConfigStore

logger = get_logger(__name__)

LogFunc = Callable[[int, str], None]

_log_func: LogFunc | None = None
_child_locale = "C"
_diagnostic_limit = 500


class ExecErrorKind(Enum):
    """Why an invocation is considered failed."""

    NON_ZERO_EXIT = auto()
    NO_OUTPUT = auto()
    SPAWN_FAILED = auto()


@dataclass
class ExecOutcome:
    """Result of one external command invocation."""

    command: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    error: ExecErrorKind | None = None
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def diagnostic(self) -> str:
        return (self.stderr or self.stdout).strip()

    def __repr__(self) -> str:
        cmd = shlex.join(self.command)
        return f"ExecOutcome(rc={self.returncode}, cmd='{cmd[:50]}...')"


def set_log_func(func: LogFunc | None) -> None:
    """Install a callback receiving ``(level, message)`` for each invocation."""
    global _log_func
    _log_func = func


def configure(locale: str = "C", diagnostic_limit: int = 500) -> None:
    """Apply executor settings from ExecConfig."""
    global _child_locale, _diagnostic_limit
    _child_locale = locale
    _diagnostic_limit = diagnostic_limit


def _emit(level: int, message: str) -> None:
    if _log_func is not None:
        _log_func(level, message)


def _child_env() -> dict[str, str]:
    env = dict(os.environ)
    env["LC_ALL"] = _child_locale
    env["LANG"] = _child_locale
    return env


def run_command(argv: Sequence[str], input: str | None = None) -> ExecOutcome:
    """
    Run ``argv`` and wait for it to exit.

    Never raises; spawn problems and non-zero exits are reported through
    ``ExecOutcome.error``. Empty stdout is not classified here. Bytes that
    are not valid UTF-8 come back as U+FFFD.
    """
    command = list(argv)
    logger.debug("Running command", command=command)
    _emit(logging.INFO, f"Running [{shlex.join(command)}]")
    start_time = time.time()

    try:
        result = subprocess.run(
            command,
            input=input,
            capture_output=True,
            text=True,
            errors="replace",
            env=_child_env(),
        )
    except OSError as e:
        logger.error("Failed to spawn command", command=command, error=str(e))
        _emit(logging.ERROR, f"Failed to run [{shlex.join(command)}]: {e}")
        return ExecOutcome(
            command=command,
            returncode=-1,
            stderr=str(e),
            error=ExecErrorKind.SPAWN_FAILED,
            duration_seconds=time.time() - start_time,
        )

    outcome = ExecOutcome(
        command=command,
        returncode=result.returncode,
        stdout=result.stdout or "",
        stderr=result.stderr or "",
        duration_seconds=time.time() - start_time,
    )

    if result.returncode != 0:
        outcome.error = ExecErrorKind.NON_ZERO_EXIT
        logger.warning(
            "Command failed",
            command=command,
            returncode=result.returncode,
            stderr=outcome.diagnostic[:_diagnostic_limit],
        )
        _emit(logging.WARNING, f"Command [{shlex.join(command)}] exited with {result.returncode}")
    else:
        _emit(logging.INFO, f"Command [{shlex.join(command)}] finished successfully")

    return outcome


def _raise_for_outcome(outcome: ExecOutcome) -> None:
    if outcome.error is None:
        return

    error_class: type[ExecError]
    if outcome.error is ExecErrorKind.SPAWN_FAILED:
        error_class, message = SpawnFailed, f"Failed to execute {outcome.command[0]}"
    elif outcome.error is ExecErrorKind.NO_OUTPUT:
        error_class, message = NoOutput, f"{outcome.command[0]} produced no output"
    else:
        error_class, message = CommandFailed, f"{outcome.command[0]} failed"

    raise error_class(
        message,
        argv=outcome.command,
        returncode=outcome.returncode,
        stdout=outcome.stdout,
        stderr=outcome.stderr,
    )


def _run(
    argv: Sequence[str],
    input: str | None,
    global_config: GlobalConfigStore | None,
) -> ExecOutcome:
    if not argv:
        raise ValueError("Empty argument vector")

    if global_config is None:
        return run_command(argv, input=input)

    # the store stays locked until the tool has exited
    with global_config.locked() as value:
        extra = global_config.format_argument(value)
        full_argv = [*argv, extra] if extra else list(argv)
        return run_command(full_argv, input=input)


def exec_and_report_error(
    argv: Sequence[str],
    input: str | None = None,
    global_config: GlobalConfigStore | None = None,
) -> bool:
    """
    Run ``argv``; return True on success.

    Raises CommandFailed (non-zero exit, carrying the tool's diagnostic
    output) or SpawnFailed.
    """
    outcome = _run(argv, input, global_config)
    _raise_for_outcome(outcome)
    return True


def exec_and_capture_output(
    argv: Sequence[str],
    input: str | None = None,
    global_config: GlobalConfigStore | None = None,
) -> str:
    """
    Run ``argv`` and return its standard output.

    Raises NoOutput when the tool succeeded but printed nothing, so callers
    can tell "no records" apart from a real failure.
    """
    outcome = _run(argv, input, global_config)
    if outcome.success and not outcome.stdout.strip():
        outcome.error = ExecErrorKind.NO_OUTPUT
    _raise_for_outcome(outcome)
    return outcome.stdout
