"""Shared fixtures for localdev tests.

External tools are never executed. ``subprocess.run`` is replaced by a
:class:`CommandRecorder` answering from a rule table, ``subprocess.Popen`` by
:class:`FakePopen`, ``os.kill`` by a fake process table and ``time.sleep`` by
a recorder. The cmd-mox plugin is registered globally via pyproject.toml for
tests that prefer real command shims.
"""

from __future__ import annotations

import dataclasses
import itertools
import signal
import subprocess
import typing as typ

import pytest

from localdev.config import (
    CertConfig,
    DomainConfig,
    DynamoDBConfig,
    PortForwardConfig,
    TunnelConfig,
)

if typ.TYPE_CHECKING:
    from pathlib import Path


@dataclasses.dataclass(slots=True)
class RecordedCall:
    """One captured ``subprocess.run`` invocation."""

    args: tuple[str, ...]
    input: str | None
    env: dict[str, str] | None
    cwd: object


Effect = typ.Callable[[tuple[str, ...]], None]


@dataclasses.dataclass(slots=True)
class _Rule:
    prefix: tuple[str, ...]
    returncodes: list[int]
    stdout: str
    stderr: str
    effect: Effect | None


class CommandRecorder:
    """``subprocess.run`` double that records calls.

    Responses are configured per argument prefix with :meth:`on`; the most
    recently registered matching rule wins. Unmatched commands succeed with
    empty output.
    """

    def __init__(self) -> None:
        """Initialize with no rules and no calls."""
        self.calls: list[RecordedCall] = []
        self._rules: list[_Rule] = []

    def on(
        self,
        *prefix: str,
        returncode: int | list[int] = 0,
        stdout: str = "",
        stderr: str = "",
        effect: Effect | None = None,
    ) -> None:
        """Answer commands starting with ``prefix``.

        A list of return codes is consumed one per call; the last value
        repeats once the list is exhausted. ``effect`` runs with the
        arguments before the result is returned, e.g. to create output files.
        """
        codes = list(returncode) if isinstance(returncode, list) else [returncode]
        self._rules.append(_Rule(prefix, codes, stdout, stderr, effect))

    def _match(self, args: tuple[str, ...]) -> tuple[int, str, str]:
        for rule in reversed(self._rules):
            if args[: len(rule.prefix)] == rule.prefix:
                code = rule.returncodes.pop(0) if len(rule.returncodes) > 1 else rule.returncodes[0]
                if rule.effect is not None:
                    rule.effect(args)
                return code, rule.stdout, rule.stderr
        return 0, "", ""

    def __call__(self, args: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        """Handle a subprocess.run call."""
        recorded = tuple(str(arg) for arg in args)
        self.calls.append(
            RecordedCall(
                args=recorded,
                input=typ.cast("str | None", kwargs.get("input")),
                env=typ.cast("dict[str, str] | None", kwargs.get("env")),
                cwd=kwargs.get("cwd"),
            )
        )
        returncode, stdout, stderr = self._match(recorded)
        if kwargs.get("check") and returncode != 0:
            raise subprocess.CalledProcessError(returncode, args, stdout, stderr)
        return subprocess.CompletedProcess(
            args=args, returncode=returncode, stdout=stdout, stderr=stderr
        )

    def commands(self, *prefix: str) -> list[tuple[str, ...]]:
        """Return recorded argument tuples starting with ``prefix``."""
        return [call.args for call in self.calls if call.args[: len(prefix)] == prefix]

    def ran(self, *prefix: str) -> bool:
        """Return True when any recorded command starts with ``prefix``."""
        return bool(self.commands(*prefix))

    def inputs(self, *prefix: str) -> list[str]:
        """Return stdin passed to commands starting with ``prefix``."""
        return [
            call.input
            for call in self.calls
            if call.args[: len(prefix)] == prefix and call.input is not None
        ]


class ProcessTable:
    """Fake ``os.kill`` tracking which PIDs are alive."""

    def __init__(self) -> None:
        """Start with no live processes."""
        self.alive: set[int] = set()
        self.stubborn: set[int] = set()
        self.signals: list[tuple[int, int]] = []

    def kill(self, pid: int, sig: int) -> None:
        """Apply ``sig`` to ``pid`` like ``os.kill`` would."""
        if pid not in self.alive:
            raise ProcessLookupError(pid)
        if sig == 0:
            return
        self.signals.append((pid, sig))
        if sig == signal.SIGKILL or pid not in self.stubborn:
            self.alive.discard(pid)

    def signalled(self, sig: int) -> list[int]:
        """Return PIDs that received ``sig``."""
        return [pid for pid, sent in self.signals if sent == sig]


class FakePopen:
    """Stand-in for a background ``subprocess.Popen`` child."""

    def __init__(self, pid: int, args: list[str], *, exits_with: int | None) -> None:
        """Record the command; ``exits_with`` marks a child that already died."""
        self.pid = pid
        self.args = args
        self.returncode = exits_with

    def poll(self) -> int | None:
        """Return the exit status, or None while running."""
        return self.returncode


StartHook = typ.Callable[[list[str], dict[str, object]], None]


class PopenRecorder:
    """``subprocess.Popen`` double creating :class:`FakePopen` children."""

    def __init__(self, table: ProcessTable) -> None:
        """Bind to the fake process table."""
        self.table = table
        self.started: list[FakePopen] = []
        self.failing: set[str] = set()
        self.on_start: StartHook | None = None
        self._pids = itertools.count(40_000)

    def __call__(self, args: list[str], **kwargs: object) -> FakePopen:
        """Start a fake child; commands containing a ``failing`` token exit at once."""
        if self.on_start is not None:
            self.on_start(args, kwargs)
        fails = any(token in args for token in self.failing)
        child = FakePopen(next(self._pids), args, exits_with=1 if fails else None)
        if not fails:
            self.table.alive.add(child.pid)
        self.started.append(child)
        return child


@pytest.fixture
def run_recorder(monkeypatch: pytest.MonkeyPatch) -> CommandRecorder:
    """Replace ``subprocess.run`` with a :class:`CommandRecorder`."""
    recorder = CommandRecorder()
    monkeypatch.setattr("subprocess.run", recorder)
    return recorder


@pytest.fixture
def process_table(monkeypatch: pytest.MonkeyPatch) -> ProcessTable:
    """Replace ``os.kill`` with a :class:`ProcessTable`."""
    table = ProcessTable()
    monkeypatch.setattr("os.kill", table.kill)
    return table


@pytest.fixture
def popen_recorder(
    monkeypatch: pytest.MonkeyPatch, process_table: ProcessTable
) -> PopenRecorder:
    """Replace ``subprocess.Popen`` with a :class:`PopenRecorder`."""
    recorder = PopenRecorder(process_table)
    monkeypatch.setattr("subprocess.Popen", recorder)
    return recorder


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Make ``time.sleep`` return immediately and record requested delays."""
    recorded: list[float] = []
    monkeypatch.setattr("time.sleep", recorded.append)
    return recorded


@pytest.fixture
def all_tools(monkeypatch: pytest.MonkeyPatch) -> None:
    """Pretend every executable is on PATH."""
    monkeypatch.setattr("shutil.which", lambda name: f"/usr/bin/{name}")


@pytest.fixture
def tunnel_config(tmp_path: Path) -> TunnelConfig:
    """Tunnel configuration writing only below ``tmp_path``."""
    return TunnelConfig(
        config_dir=tmp_path / "config",
        pid_file=tmp_path / "cloudflared.pid",
        log_file=tmp_path / "cloudflared.log",
        cert_dir=tmp_path / "certs",
    )


@pytest.fixture
def port_forward_config(tmp_path: Path) -> PortForwardConfig:
    """Port-forward configuration with a temporary PID file."""
    return PortForwardConfig(pid_file=tmp_path / "port-forwards.pids")


@pytest.fixture
def cert_config(tmp_path: Path) -> CertConfig:
    """Certificate configuration with a temporary certificate directory."""
    return CertConfig(cert_dir=tmp_path / "certs")


@pytest.fixture
def domain_config(tmp_path: Path) -> DomainConfig:
    """Domain configuration editing a temporary hosts file."""
    hosts_file = tmp_path / "hosts"
    hosts_file.write_text("127.0.0.1 localhost\n", encoding="utf-8")
    return DomainConfig(hosts_file=hosts_file)


@pytest.fixture
def dynamodb_config() -> DynamoDBConfig:
    """Default DynamoDB configuration."""
    return DynamoDBConfig()
