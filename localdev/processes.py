"""Background process bookkeeping.

Port-forwards and the Cloudflare tunnel run as detached child processes whose
PIDs are written to plain text files, one per line, so a later invocation can
signal them. Termination is SIGTERM, a grace period, then SIGKILL.
"""

from __future__ import annotations

import contextlib
import os
import signal
import subprocess
import time
import typing as typ

from localdev.logging import get_logger, log_debug, log_warning

if typ.TYPE_CHECKING:
    from pathlib import Path

logger = get_logger(__name__)

_PKILL_TIMEOUT = 10


class PidFile:
    """A file holding one PID per line."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def touch(self) -> None:
        """Create the file if it does not exist."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.touch(exist_ok=True)

    def append(self, pid: int) -> None:
        """Record ``pid`` after any existing entries."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(f"{pid}\n")

    def write(self, pid: int) -> None:
        """Replace the contents with a single ``pid``."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(f"{pid}\n", encoding="utf-8")

    def read(self) -> list[int]:
        """Return recorded PIDs, skipping blank or malformed lines."""
        if not self.path.exists():
            return []
        pids: list[int] = []
        for line in self.path.read_text(encoding="utf-8").splitlines():
            text = line.strip()
            if not text:
                continue
            try:
                pids.append(int(text))
            except ValueError:
                log_warning(logger, "Ignoring malformed PID entry %r in %s", text, self.path)
        return pids

    def first(self) -> int | None:
        """Return the first recorded PID, if any."""
        pids = self.read()
        return pids[0] if pids else None

    def exists(self) -> bool:
        """Return True when the file is present."""
        return self.path.exists()

    def remove(self) -> None:
        """Delete the file; a missing file is fine."""
        self.path.unlink(missing_ok=True)


def _reap(pid: int) -> bool:
    """Collect ``pid`` if it is an exited child of this process."""
    try:
        reaped, _status = os.waitpid(pid, os.WNOHANG)
    except ChildProcessError:
        # Not our child; a previous invocation started it.
        return False
    return reaped == pid


def is_alive(pid: int) -> bool:
    """Return True when a process with ``pid`` exists.

    Exited children are reaped first, since a zombie still answers signal 0.
    """
    if pid <= 0:
        return False
    if _reap(pid):
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to another user.
        return True
    return True


def send_signal(pid: int, sig: signal.Signals = signal.SIGTERM) -> bool:
    """Signal ``pid``; return False when it had already exited."""
    try:
        os.kill(pid, sig)
    except ProcessLookupError:
        return False
    log_debug(logger, "Sent %s to %d", sig.name, pid)
    return True


def terminate(pid: int, *, grace: float = 3.0, poll: float = 0.2) -> bool:
    """Stop ``pid`` with SIGTERM, escalating to SIGKILL after ``grace`` seconds.

    Returns
    -------
    bool
        True when the process was running when called.

    """
    if not send_signal(pid, signal.SIGTERM):
        return False
    deadline = time.monotonic() + grace
    while time.monotonic() < deadline:
        if not is_alive(pid):
            return True
        time.sleep(poll)
    with contextlib.suppress(ProcessLookupError):
        os.kill(pid, signal.SIGKILL)
        log_warning(logger, "Process %d ignored SIGTERM, sent SIGKILL", pid)
    return True


def spawn_background(args: list[str], log_path: Path | None = None) -> subprocess.Popen[bytes]:
    """Start ``args`` detached from the terminal.

    Output goes to ``log_path`` (truncated first) or is discarded. The child
    gets its own session so Ctrl+C in the invoking shell does not reach it.
    """
    log_debug(logger, "Spawning %s", " ".join(args))
    if log_path is None:
        # S603: arguments are built internally from configuration
        return subprocess.Popen(  # noqa: S603
            args,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("wb") as log_handle:
        return subprocess.Popen(  # noqa: S603
            args,
            stdin=subprocess.DEVNULL,
            stdout=log_handle,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )


def pkill(pattern: str, *, force: bool = False) -> bool:
    """Signal every process whose command line matches ``pattern``.

    Returns
    -------
    bool
        True when at least one process matched.

    """
    args = ["pkill"]
    if force:
        args.append("-9")
    args.extend(["-f", pattern])
    try:
        # S603/S607: pkill via PATH is standard; pattern from configuration
        result = subprocess.run(  # noqa: S603
            args,
            capture_output=True,
            text=True,
            check=False,
            timeout=_PKILL_TIMEOUT,
        )
    except FileNotFoundError:
        log_warning(logger, "pkill is not available; cannot match %r", pattern)
        return False
    return result.returncode == 0


def pgrep(pattern: str) -> list[int]:
    """Return PIDs of processes whose command line matches ``pattern``."""
    try:
        result = subprocess.run(  # noqa: S603
            ["pgrep", "-f", pattern],  # noqa: S607
            capture_output=True,
            text=True,
            check=False,
            timeout=_PKILL_TIMEOUT,
        )
    except FileNotFoundError:
        log_warning(logger, "pgrep is not available; cannot match %r", pattern)
        return []
    if result.returncode != 0:
        return []
    return [int(line) for line in result.stdout.split() if line.strip().isdigit()]
