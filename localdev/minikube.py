"""minikube cluster lifecycle operations.

Wraps the minikube CLI to detect a running or stopped cluster, apply the
resource configuration, start it, enable addons and delete it. All calls are
plain subprocess invocations with timeouts.
"""

from __future__ import annotations

import subprocess
import typing as typ

from localdev import console
from localdev.logging import get_logger, log_debug

if typ.TYPE_CHECKING:
    from localdev.config import MinikubeConfig

logger = get_logger(__name__)

_STATUS_TIMEOUT = 60
_START_TIMEOUT = 900
_DELETE_TIMEOUT = 300


def _minikube(
    *args: str, check: bool = True, capture: bool = False, timeout: float = _STATUS_TIMEOUT
) -> subprocess.CompletedProcess[str]:
    log_debug(logger, "minikube %s", " ".join(args))
    # S603/S607: minikube via PATH is standard; args from configuration
    return subprocess.run(  # noqa: S603
        ["minikube", *args],  # noqa: S607
        capture_output=capture,
        text=True,
        check=check,
        timeout=timeout,
    )


def is_running() -> bool:
    """Return True when both the host and the kubelet report Running."""
    result = _minikube("status", check=False, capture=True)
    return "host: Running" in result.stdout and "kubelet: Running" in result.stdout


def profile_exists(profile: str = "minikube") -> bool:
    """Return True when ``minikube profile list`` mentions ``profile``."""
    result = _minikube("profile", "list", check=False, capture=True)
    return result.returncode == 0 and profile in result.stdout


def apply_settings(cfg: MinikubeConfig) -> None:
    """Persist CPU, memory and driver settings for new clusters."""
    _minikube("config", "set", "cpus", str(cfg.cpus))
    _minikube("config", "set", "memory", str(cfg.memory_mb))
    _minikube("config", "set", "driver", cfg.driver)


def start() -> None:
    """Start (or resume) the cluster."""
    _minikube("start", timeout=_START_TIMEOUT)


def enable_addons(addons: typ.Iterable[str]) -> None:
    """Enable each addon in turn."""
    for addon in addons:
        _minikube("addons", "enable", addon, timeout=_START_TIMEOUT)


def delete() -> None:
    """Delete the cluster and its state."""
    _minikube("delete", timeout=_DELETE_TIMEOUT)


def configure_minikube(cfg: MinikubeConfig) -> str:
    """Bring the cluster up, reusing an existing one when possible.

    Returns
    -------
    str
        ``"running"`` when nothing was done, ``"started"`` when a stopped
        cluster was resumed, or ``"created"`` for a fresh cluster.

    """
    console.header("CONFIGURING MINIKUBE")

    if is_running():
        console.info("Minikube is already running")
        return "running"

    if profile_exists(cfg.profile):
        console.info("Minikube exists but is stopped. Starting minikube...")
        start()
        console.success("Minikube started successfully!")
        return "started"

    console.info(
        f"Configuring minikube with {cfg.cpus} CPUs and {cfg.memory_mb // 1024}GB memory..."
    )
    apply_settings(cfg)

    console.info("Starting minikube...")
    start()

    console.info("Enabling minikube addons...")
    enable_addons(cfg.addons)

    console.success("Minikube configured and started successfully!")
    return "created"
