"""Telepresence and mirrord wrappers.

These commands attach to the terminal: output is streamed and the exit code
of the tool is returned unchanged.
"""

from __future__ import annotations

import subprocess
import typing as typ

from localdev import console
from localdev.logging import get_logger, log_debug
from localdev.validation import require_exe

if typ.TYPE_CHECKING:
    from localdev.config import InterceptConfig

logger = get_logger(__name__)

_CONNECT_TIMEOUT = 300


def _run_tool(args: list[str], *, timeout: float | None) -> int:
    require_exe(args[0])
    log_debug(logger, "%s", " ".join(args))
    # S603: args built from CLI options of this tool
    result = subprocess.run(args, check=False, timeout=timeout)  # noqa: S603
    return result.returncode


def telepresence_connect() -> int:
    """Connect Telepresence to the current cluster."""
    console.info("Connecting Telepresence...")
    return _run_tool(["telepresence", "connect"], timeout=_CONNECT_TIMEOUT)


def telepresence_quit() -> int:
    """Disconnect Telepresence."""
    console.info("Disconnecting Telepresence...")
    return _run_tool(["telepresence", "quit"], timeout=_CONNECT_TIMEOUT)


def intercept_command(service: str, port: int, cfg: InterceptConfig) -> list[str]:
    """Build ``telepresence intercept`` for ``service`` on local ``port``."""
    return [
        "telepresence",
        "intercept",
        service,
        "--namespace",
        cfg.namespace,
        "--port",
        str(port),
    ]


def telepresence_intercept(service: str, port: int, cfg: InterceptConfig) -> int:
    """Route cluster traffic for ``service`` to ``localhost:port``."""
    console.info(f"Intercepting {service} in {cfg.namespace} to local port {port}...")
    return _run_tool(intercept_command(service, port, cfg), timeout=_CONNECT_TIMEOUT)


def mirrord_command(deployment: str, namespace: str, command: typ.Sequence[str]) -> list[str]:
    """Build ``mirrord exec`` targeting ``deployment``."""
    return [
        "mirrord",
        "exec",
        "--target",
        f"deployment/{deployment}",
        "-n",
        namespace,
        "--",
        *command,
    ]


def mirrord_exec(deployment: str, namespace: str, command: typ.Sequence[str]) -> int:
    """Run ``command`` locally with the deployment's network and environment.

    The process runs in the foreground until it exits, so no timeout applies.
    """
    if not command:
        msg = "mirrord exec needs a command to run"
        raise ValueError(msg)
    return _run_tool(mirrord_command(deployment, namespace, command), timeout=None)
