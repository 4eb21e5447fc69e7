"""Process launching and wall-clock timing for phase commands.

Every prepare, run and cleanup phase goes through :class:`Launcher`.
Commands given as a tuple are executed directly; strings are handed to
the shell.  Each child runs in its own session so a timeout or a
session cancellation can kill the whole process group.
"""

from __future__ import annotations

import os
import shlex
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO

from benchify.errors import LaunchError
from benchify.logging import get_logger

log = get_logger("process")

# Seconds between checks for timeout and cancellation while a child runs.
POLL_INTERVAL_S = 0.1


# ---------------------------------------------------------------------------
# Invocation / LaunchResult
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Invocation:
    """A fully resolved command, ready to launch."""

    command: str | tuple[str, ...]
    cwd: Path | None = None
    stdin_command: str | None = None
    timeout: float | None = None

    @property
    def shell(self) -> bool:
        return isinstance(self.command, str)

    def describe(self) -> str:
        """Human-readable command line for logs."""
        cmd = self.command if isinstance(self.command, str) else shlex.join(self.command)
        if self.stdin_command:
            return f"{self.stdin_command} | {cmd}"
        return cmd


@dataclass
class LaunchResult:
    """Outcome of a process that was successfully started."""

    exit_code: int
    stdout: str
    stderr: str
    elapsed_s: float
    timed_out: bool = False
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled


# ---------------------------------------------------------------------------
# Launcher
# ---------------------------------------------------------------------------


class Launcher:
    """Starts phase commands and tracks them for cancellation.

    Thread-safe: many pairs launch through one instance concurrently.
    """

    def __init__(self, cancel_event: threading.Event | None = None) -> None:
        self.cancel_event = cancel_event or threading.Event()
        self._live: set[subprocess.Popen[str]] = set()
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        """Kill every running child and refuse further launches."""
        self.cancel_event.set()
        with self._lock:
            live = list(self._live)
        for proc in live:
            _kill_process_group(proc)

    def launch(self, invocation: Invocation) -> LaunchResult:
        """Run *invocation* to completion, timeout or cancellation.

        Returns:
            LaunchResult with exit status, captured output and the
            wall-clock time from launch to exit.

        Raises:
            LaunchError: If the program could not be started at all.
        """
        if self.cancelled:
            return LaunchResult(-1, "", "", 0.0, cancelled=True)

        cwd = str(invocation.cwd) if invocation.cwd else None
        log.debug("Launching `%s`", invocation.describe())

        feeder: subprocess.Popen[str] | None = None
        stdin: int | IO[str] = subprocess.DEVNULL
        if invocation.stdin_command:
            try:
                feeder = subprocess.Popen(
                    invocation.stdin_command,
                    shell=True,
                    cwd=cwd,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.DEVNULL,
                    encoding="utf-8",
                    errors="replace",
                    start_new_session=True,
                )
            except OSError as exc:
                raise LaunchError(
                    f"Could not start stdin command `{invocation.stdin_command}`: {exc}"
                ) from exc
            assert feeder.stdout is not None
            stdin = feeder.stdout
            self._track(feeder)

        wall_start = time.monotonic()
        try:
            proc = subprocess.Popen(
                invocation.command if invocation.shell else list(invocation.command),
                shell=invocation.shell,
                cwd=cwd,
                stdin=stdin,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                encoding="utf-8",
                errors="replace",
                start_new_session=True,
            )
        except OSError as exc:
            if feeder is not None:
                self._reap(feeder)
            raise LaunchError(f"Could not start `{invocation.describe()}`: {exc}") from exc

        self._track(proc)
        if feeder is not None and feeder.stdout is not None:
            # The child holds its own copy; ours would keep the pipe open.
            feeder.stdout.close()

        try:
            stdout, stderr, timed_out, cancelled = self._wait(proc, invocation.timeout, wall_start)
            # Waiting for the stdin command below is not part of the run.
            wall_time = time.monotonic() - wall_start
        finally:
            self._untrack(proc)
            if feeder is not None:
                self._reap(feeder)

        return LaunchResult(
            exit_code=-1 if (timed_out or cancelled) else proc.returncode,
            stdout=stdout,
            stderr=stderr,
            elapsed_s=round(wall_time, 6),
            timed_out=timed_out,
            cancelled=cancelled,
        )

    def _wait(
        self,
        proc: subprocess.Popen[str],
        timeout: float | None,
        wall_start: float,
    ) -> tuple[str, str, bool, bool]:
        deadline = None if timeout is None else wall_start + timeout
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=POLL_INTERVAL_S)
                return stdout, stderr, False, False
            except subprocess.TimeoutExpired:
                pass
            if self.cancelled:
                log.debug("Cancelling pid %d", proc.pid)
                stdout, stderr = _kill_and_collect(proc)
                return stdout, stderr, False, True
            if deadline is not None and time.monotonic() >= deadline:
                log.debug("Timeout after %ss, killing pid %d", timeout, proc.pid)
                stdout, stderr = _kill_and_collect(proc)
                return stdout, stderr, True, False

    def _reap(self, proc: subprocess.Popen[str]) -> None:
        """Make sure a helper process is gone."""
        try:
            proc.wait(timeout=1)
        except subprocess.TimeoutExpired:
            _kill_process_group(proc)
            proc.wait()
        self._untrack(proc)

    def _track(self, proc: subprocess.Popen[str]) -> None:
        with self._lock:
            self._live.add(proc)

    def _untrack(self, proc: subprocess.Popen[str]) -> None:
        with self._lock:
            self._live.discard(proc)


def _kill_and_collect(proc: subprocess.Popen[str]) -> tuple[str, str]:
    _kill_process_group(proc)
    try:
        stdout, stderr = proc.communicate(timeout=5)
    except subprocess.TimeoutExpired:
        proc.kill()
        stdout, stderr = proc.communicate()
    return stdout or "", stderr or ""


def _kill_process_group(proc: subprocess.Popen[str]) -> None:
    """Attempt to kill the entire process group of *proc*."""
    try:
        os.killpg(os.getpgid(proc.pid), signal.SIGKILL)
    except (ProcessLookupError, PermissionError, OSError):
        pass
