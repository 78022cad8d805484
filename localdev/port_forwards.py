"""Background ``kubectl port-forward`` supervision.

Port-forwards are started detached and their PIDs recorded in a PID file.
Cleanup signals the recorded PIDs, then sweeps any stray
``kubectl port-forward`` processes by pattern, first politely and then with
SIGKILL.
"""

from __future__ import annotations

import signal
import time
import typing as typ

from localdev import console
from localdev.argocd import admin_password_or_hint
from localdev.config import ArgoCDConfig, PortForwardConfig, PortForwardSpec
from localdev.k8s import wait_for_condition
from localdev.logging import get_logger, log_info, log_warning
from localdev.processes import (
    PidFile,
    is_alive,
    pgrep,
    pkill,
    send_signal,
    spawn_background,
)
from localdev.validation import port_in_use, require_exe

if typ.TYPE_CHECKING:
    import types

logger = get_logger(__name__)

SERVICE_URLS: tuple[tuple[str, str], ...] = (
    ("Web App", "http://raidhelper.local:8086"),
    ("ArgoCD", "http://localhost:8081"),
    ("Prometheus", "http://localhost:9091"),
    ("Grafana", "http://localhost:3000"),
    ("Tempo", "http://localhost:3200"),
    ("Loki", "http://localhost:3100"),
    ("NATS", "nats://localhost:4222"),
    ("LocalStack", "http://localhost:8000"),
    ("Traefik UI", "http://localhost:8085"),
    ("Linkerd", "http://localhost:50750"),
)


def port_forward_command(spec: PortForwardSpec) -> list[str]:
    """Return the kubectl invocation forwarding ``spec``."""
    return [
        "kubectl",
        "port-forward",
        f"svc/{spec.service}",
        f"{spec.local_port}:{spec.remote_port}",
        "-n",
        spec.namespace,
    ]


def start_port_forward(spec: PortForwardSpec, cfg: PortForwardConfig) -> int | None:
    """Start one port-forward in the background.

    Returns
    -------
    int | None
        The recorded PID, or None when the port was busy or the process
        exited during the startup grace period.

    """
    console.info(
        f"Starting port-forward for {spec.description} "
        f"({spec.local_port}:{spec.remote_port})..."
    )
    if port_in_use(spec.local_port):
        console.warn(f"Port {spec.local_port} is already in use, skipping {spec.description}")
        return None

    process = spawn_background(port_forward_command(spec))
    time.sleep(cfg.startup_grace)
    if process.poll() is not None or not is_alive(process.pid):
        console.error(f"Failed to start port-forward for {spec.description}")
        log_warning(
            logger,
            "port-forward for %s exited with %s",
            spec.description,
            process.returncode,
        )
        return None

    PidFile(cfg.pid_file).append(process.pid)
    console.success(f"Port-forward started for {spec.description} (PID: {process.pid})")
    return process.pid


def wait_for_services(cfg: PortForwardConfig) -> None:
    """Wait for the forwarded workloads; unready ones are only logged."""
    console.info("Waiting for services to be ready...")
    for check in cfg.readiness_checks:
        wait_for_condition(
            check.resource,
            check.namespace,
            check.condition,
            timeout=cfg.readiness_timeout,
            check=False,
        )
    console.success("Services are ready")


def _report_survivors(cfg: PortForwardConfig, *, as_error: bool) -> bool:
    survivors = pgrep(cfg.process_pattern)
    if not survivors:
        return True
    if as_error:
        console.error(
            "Some processes are still running. "
            "You may need to restart your terminal or reboot."
        )
        console.info(f"Running processes: {' '.join(str(pid) for pid in survivors)}")
    else:
        console.warn("Some kubectl port-forward processes may still be running")
        console.info(
            f"You can manually stop them with: pkill -9 -f '{cfg.process_pattern}'"
        )
    return False


def cleanup_port_forwards(cfg: PortForwardConfig) -> bool:
    """Stop recorded and stray port-forwards and delete the PID file.

    Returns
    -------
    bool
        True when no matching process survived.

    """
    console.info("Cleaning up existing port forwards...")
    for pid in PidFile(cfg.pid_file).read():
        if is_alive(pid):
            console.info(f"Stopping port-forward process {pid}...")
            send_signal(pid, signal.SIGTERM)

    console.info("Stopping any remaining kubectl port-forward processes...")
    pkill(cfg.process_pattern)
    time.sleep(cfg.term_grace)
    pkill(cfg.process_pattern, force=True)
    PidFile(cfg.pid_file).remove()
    time.sleep(1)

    if _report_survivors(cfg, as_error=False):
        console.success("All port-forward processes stopped successfully")
        return True
    return False


def force_cleanup_port_forwards(cfg: PortForwardConfig) -> bool:
    """Kill every ``kubectl port-forward`` process regardless of the PID file."""
    console.info("Performing aggressive cleanup of all kubectl port-forward processes...")
    pkill(cfg.process_pattern)
    time.sleep(2)
    pkill(cfg.process_pattern, force=True)
    time.sleep(1)
    PidFile(cfg.pid_file).remove()

    if _report_survivors(cfg, as_error=True):
        console.success("All kubectl port-forward processes have been terminated")
        return True
    return False


def show_services(argocd: ArgoCDConfig | None = None) -> None:
    """Print forwarded service URLs and default credentials."""
    password = admin_password_or_hint(argocd or ArgoCDConfig(), "<check argocd-config.env>")
    width = max(len(name) for name, _ in SERVICE_URLS)
    print()
    print(console.paint("🌐 Available Services:", console.Style.BLUE))
    for name, url in SERVICE_URLS:
        print(f"  {name.ljust(width)}  {url}")
    print()
    print(console.paint("🔑 Default Credentials:", console.Style.BLUE))
    print("  - Grafana: admin/admin123")
    print(f"  - ArgoCD: admin/{password}")
    print()


def dead_pids(cfg: PortForwardConfig) -> list[int]:
    """Return recorded PIDs whose process has exited."""
    return [pid for pid in PidFile(cfg.pid_file).read() if not is_alive(pid)]


class _Shutdown(Exception):  # noqa: N818
    """Raised from the SIGTERM handler to leave the monitor loop."""


def _raise_shutdown(signum: int, frame: types.FrameType | None) -> None:
    del signum, frame
    raise _Shutdown


def monitor_port_forwards(cfg: PortForwardConfig, *, max_iterations: int | None = None) -> None:
    """Stay in the foreground reporting dead port-forwards until interrupted.

    Ctrl+C or SIGTERM stops every port-forward before returning.
    ``max_iterations`` bounds the loop for callers that need it to end.
    """
    console.info("Press Ctrl+C to stop all port forwards and exit...")
    previous = signal.signal(signal.SIGTERM, _raise_shutdown)
    iterations = 0
    try:
        while max_iterations is None or iterations < max_iterations:
            time.sleep(cfg.monitor_interval)
            iterations += 1
            for pid in dead_pids(cfg):
                console.warn(f"Port-forward process {pid} died, you may need to restart")
    except (KeyboardInterrupt, _Shutdown):
        print()
        console.info("Received interrupt signal, stopping port forwards...")
        cleanup_port_forwards(cfg)
        console.success("Cleanup completed. Goodbye!")
    finally:
        signal.signal(signal.SIGTERM, previous)


def start_all_port_forwards(cfg: PortForwardConfig, *, monitor: bool) -> list[int]:
    """Replace any running port-forwards with the configured set.

    Returns
    -------
    list[int]
        PIDs of the port-forwards that started.

    """
    require_exe("kubectl")
    PidFile(cfg.pid_file).touch()
    cleanup_port_forwards(cfg)
    wait_for_services(cfg)

    console.info("Starting port forwards...")
    started = [
        pid for spec in cfg.forwards if (pid := start_port_forward(spec, cfg)) is not None
    ]
    log_info(logger, "Started %d of %d port-forwards", len(started), len(cfg.forwards))

    print()
    console.success("Port forwards started successfully!")
    show_services()
    console.info("Port forwards are running in the background.")
    console.info("To stop all port forwards: localdev port-forwards cleanup")
    console.info("For aggressive cleanup: localdev port-forwards force-cleanup")
    console.info("To view this information again: localdev port-forwards show")

    if monitor:
        print()
        monitor_port_forwards(cfg)
    return started
