"""Ephemeral Cloudflare Tunnel management.

``cloudflared tunnel --url`` publishes the local Traefik web entry point on a
random ``*.trycloudflare.com`` hostname that changes on every start. The
hostname only appears in cloudflared's log output, so startup polls the log
file until a URL shows up. The hostname is then written to a dotenv file,
loaded into a ConfigMap, routed by a Traefik IngressRoute and injected into
the application deployments.

Cloudflare terminates TLS at its edge, so the route uses the plain ``web``
entry point.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import json
import re
import subprocess
import tempfile
import time
import typing as typ
from pathlib import Path

from localdev import console
from localdev.k8s import (
    apply_configmap_from_env_file,
    apply_manifest,
    apply_tls_secret,
    delete_resource,
    ensure_cluster_access,
    patch_deployment_env_from,
)
from localdev.logging import get_logger, log_info, log_warning
from localdev.processes import PidFile, is_alive, pkill, spawn_background, terminate
from localdev.validation import (
    TunnelConfigMissingError,
    TunnelStartError,
    require_exe,
)

if typ.TYPE_CHECKING:
    from localdev.config import TunnelConfig

logger = get_logger(__name__)

TUNNEL_URL_PATTERN = re.compile(rb"https://[a-z0-9-]*\.trycloudflare\.com")

_OPENSSL_TIMEOUT = 60


@dataclasses.dataclass(frozen=True, slots=True)
class TunnelSession:
    """A started tunnel."""

    url: str
    pid: int

    @property
    def hostname(self) -> str:
        """Tunnel URL without the scheme."""
        return hostname_from_url(self.url)


def hostname_from_url(url: str) -> str:
    """Strip the ``https://`` scheme from a tunnel URL."""
    return url.removeprefix("https://").removeprefix("http://").rstrip("/")


def oauth_redirect_uri(hostname: str) -> str:
    """Twitch OAuth callback served through the tunnel."""
    return f"https://{hostname}/oauth/twitch"


def check_prerequisites(cfg: TunnelConfig) -> None:
    """Verify cloudflared, kubectl, cluster access and the target namespace."""
    require_exe("cloudflared", hint="brew install cloudflared")
    console.success("cloudflared is installed")
    ensure_cluster_access(cfg.namespace)
    console.success(f"Connected to Kubernetes cluster, namespace '{cfg.namespace}' exists")


def find_tunnel_url(log_file: Path) -> str | None:
    """Return the first trycloudflare URL in ``log_file``.

    The log is read as bytes since cloudflared may emit control characters
    that are not valid UTF-8.
    """
    if not log_file.exists():
        return None
    match = TUNNEL_URL_PATTERN.search(log_file.read_bytes())
    if match is None:
        return None
    return match.group(0).decode("ascii")


def _log_tail(log_file: Path, lines: int = 3) -> list[str]:
    if not log_file.exists():
        return []
    text = log_file.read_bytes().decode("utf-8", errors="replace")
    return text.splitlines()[-lines:]


def _report_progress(cfg: TunnelConfig, attempt: int) -> None:
    console.info(f"Still waiting for tunnel URL... (attempt {attempt}/{cfg.url_attempts})")
    if not cfg.log_file.exists():
        return
    text = cfg.log_file.read_bytes().decode("utf-8", errors="replace")
    console.info(f"Log file size: {len(text.splitlines())} lines")
    console.info("Last few lines of log:")
    for line in _log_tail(cfg.log_file):
        console.detail(line)


def wait_for_tunnel_url(cfg: TunnelConfig, process: subprocess.Popen[bytes]) -> str | None:
    """Poll the cloudflared log until a tunnel URL appears.

    Waits ``startup_delay`` seconds, then checks the log up to
    ``url_attempts`` times, ``url_interval`` seconds apart. Progress is
    reported every ``progress_every`` attempts.

    Returns
    -------
    str | None
        The tunnel URL, or None when none appeared in time or cloudflared
        exited first.

    """
    time.sleep(cfg.startup_delay)
    for attempt in range(1, cfg.url_attempts + 1):
        time.sleep(cfg.url_interval)
        url = find_tunnel_url(cfg.log_file)
        if url:
            console.info(f"Found tunnel URL: {url}")
            return url
        if process.poll() is not None:
            log_warning(logger, "cloudflared exited with %s before publishing a URL", process.returncode)
            return None
        if attempt % cfg.progress_every == 0:
            _report_progress(cfg, attempt)
    return None


def _report_start_failure(cfg: TunnelConfig) -> None:
    console.error(
        f"Failed to extract tunnel URL from cloudflared output after {cfg.url_attempts} attempts"
    )
    console.info("This could be due to:")
    console.detail("• Network connectivity issues")
    console.detail("• Cloudflare service being unavailable")
    console.detail(f"• {cfg.origin_url} not being accessible (make sure Traefik is running)")
    print()
    console.info("Log file contents:")
    if cfg.log_file.exists() and cfg.log_file.stat().st_size:
        print(cfg.log_file.read_bytes().decode("utf-8", errors="replace"))
    else:
        console.info("Log file not found or empty")


def start_tunnel(cfg: TunnelConfig) -> TunnelSession:
    """Launch cloudflared and wait for its public URL.

    Raises
    ------
    TunnelStartError
        If no URL appears; the cloudflared process is stopped first.

    """
    console.info(
        f"Starting ephemeral Cloudflare tunnel (connecting to Traefik web endpoint at {cfg.origin_url})..."
    )
    # spawn_background truncates the log before cloudflared writes to it
    process = spawn_background(
        ["cloudflared", "tunnel", "--url", cfg.origin_url], log_path=cfg.log_file
    )

    console.info("Waiting for tunnel to start...")
    url = wait_for_tunnel_url(cfg, process)
    if url is None:
        _report_start_failure(cfg)
        console.info("Stopping tunnel process...")
        terminate(process.pid, grace=cfg.stop_grace)
        msg = "cloudflared did not report a tunnel URL"
        raise TunnelStartError(msg)

    PidFile(cfg.pid_file).write(process.pid)
    session = TunnelSession(url=url, pid=process.pid)
    console.success(f"Ephemeral tunnel started: {url}")
    console.info(f"Tunnel PID: {process.pid}")
    log_info(logger, "Tunnel %s running as PID %d", url, process.pid)
    return session


def render_tunnel_env(cfg: TunnelConfig, hostname: str, generated_at: dt.datetime) -> str:
    """Render the dotenv file describing the current tunnel."""
    stamp = generated_at.strftime("%a %b %d %H:%M:%S %Z %Y")
    return f"""\
# Ephemeral Tunnel Configuration
# This file is generated by localdev
# WARNING: This URL will change when the tunnel restarts!

# Tunnel URL (ephemeral - changes on restart)
TUNNEL_URL={hostname}
TWITCH_REDIRECT_URI={oauth_redirect_uri(hostname)}
HOST={hostname}

# API and WebSocket URLs for Next.js
NEXT_PUBLIC_API_URL={cfg.api_url}
NEXT_PUBLIC_WS_URL={cfg.ws_url}

# Twitch OAuth configuration
TWITCH_CLIENT_ID={cfg.twitch_client_id}

# Generated on: {stamp}
# Tunnel URL: https://{hostname}
# WARNING: This is an ephemeral tunnel - URL will change on restart!
"""


def write_tunnel_env(cfg: TunnelConfig, hostname: str) -> Path:
    """Overwrite the tunnel env file and return its path."""
    console.info("Creating tunnel environment configuration...")
    cfg.config_dir.mkdir(parents=True, exist_ok=True)
    now = dt.datetime.now(dt.UTC).astimezone()
    cfg.env_file.write_text(render_tunnel_env(cfg, hostname, now), encoding="utf-8")
    console.success(f"Tunnel environment file created: {cfg.env_file}")
    return cfg.env_file


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse ``KEY=value`` lines, ignoring blanks and comments."""
    values: dict[str, str] = {}
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip()
    return values


def read_tunnel_hostname(cfg: TunnelConfig) -> str | None:
    """Return ``TUNNEL_URL`` from the env file, or None when unavailable."""
    if not cfg.env_file.exists():
        return None
    return parse_env_file(cfg.env_file).get("TUNNEL_URL") or None


def _require_hostname(cfg: TunnelConfig, hostname: str | None) -> str:
    resolved = hostname or read_tunnel_hostname(cfg)
    if not resolved:
        msg = f"Tunnel hostname not set and cannot be read from {cfg.env_file}"
        raise TunnelConfigMissingError(msg)
    return resolved


def tunnel_ingress_manifest(cfg: TunnelConfig, hostname: str) -> dict[str, typ.Any]:
    """Traefik IngressRoute sending the tunnel host to the web service."""
    return {
        "apiVersion": "traefik.io/v1alpha1",
        "kind": "IngressRoute",
        "metadata": {
            "name": cfg.ingress_name,
            "namespace": cfg.namespace,
            "labels": {"environment": "local", "tunnel": "ephemeral"},
        },
        "spec": {
            "entryPoints": ["web"],
            "routes": [
                {
                    "kind": "Rule",
                    "match": f"Host(`{hostname}`)",
                    "services": [
                        {"name": cfg.web_service, "port": cfg.web_service_port}
                    ],
                }
            ],
        },
    }


def create_tunnel_ingress(cfg: TunnelConfig, hostname: str | None = None) -> None:
    """Apply the IngressRoute for the tunnel hostname."""
    host = _require_hostname(cfg, hostname)
    console.info(f"Creating tunnel ingress route for host: {host}")
    apply_manifest(json.dumps(tunnel_ingress_manifest(cfg, host)))
    console.success(
        f"Tunnel ingress route created for {host} (HTTP - Cloudflare handles TLS)"
    )


def apply_tunnel_config(cfg: TunnelConfig, hostname: str | None = None) -> list[str]:
    """Publish the env file to the cluster and wire it into the deployments.

    Returns
    -------
    list[str]
        Deployments that were patched. Missing deployments are skipped with a
        warning.

    """
    console.info("Applying tunnel configuration to Kubernetes...")
    apply_configmap_from_env_file(cfg.configmap_name, cfg.env_file, cfg.namespace)
    console.success(f"ConfigMap '{cfg.configmap_name}' created/updated")

    create_tunnel_ingress(cfg, hostname)

    patched: list[str] = []
    for deployment in cfg.deployments:
        console.info(f"Patching deployment '{deployment}'...")
        if patch_deployment_env_from(deployment, cfg.configmap_name, cfg.namespace):
            console.success(f"Deployment '{deployment}' patched")
            patched.append(deployment)
        else:
            console.warn(f"Failed to patch deployment '{deployment}' - it may not exist yet")
    return patched


def cleanup_tunnel_ingress(cfg: TunnelConfig) -> None:
    """Delete the tunnel IngressRoute if present."""
    console.info("Cleaning up old tunnel ingress route...")
    if not delete_resource("ingressroute", cfg.ingress_name, cfg.namespace):
        console.info("No existing tunnel ingress route to clean up")


def stop_tunnel(cfg: TunnelConfig) -> None:
    """Stop the recorded tunnel and any stray cloudflared tunnel processes."""
    pid_file = PidFile(cfg.pid_file)
    if pid_file.exists():
        pid = pid_file.first()
        if pid is not None and is_alive(pid):
            console.info(f"Stopping tunnel (PID: {pid})...")
            terminate(pid, grace=cfg.stop_grace)
            console.success("Tunnel stopped")
        else:
            console.warn("Tunnel process not running")
        pid_file.remove()
    else:
        console.warn("No tunnel PID file found")

    pkill(cfg.process_pattern)
    console.success("All cloudflared tunnel processes stopped")

    cleanup_tunnel_ingress(cfg)


def tunnel_running(cfg: TunnelConfig) -> int | None:
    """Return the PID of the running tunnel, if any."""
    pid = PidFile(cfg.pid_file).first()
    if pid is not None and is_alive(pid):
        return pid
    return None


def show_status(cfg: TunnelConfig) -> bool:
    """Print whether the tunnel runs and where; return True when it does."""
    console.banner("🚇 Cloudflare Tunnel Status")
    running = False
    if PidFile(cfg.pid_file).exists():
        pid = tunnel_running(cfg)
        if pid is not None:
            running = True
            console.success(f"Tunnel is running (PID: {pid})")
            hostname = read_tunnel_hostname(cfg)
            if hostname:
                print(f"• Tunnel URL: https://{hostname}")
                print(f"• Twitch OAuth URL: {oauth_redirect_uri(hostname)}")
        else:
            console.warn("Tunnel PID file exists but process is not running")
    else:
        console.warn("No tunnel is currently running")

    print()
    print("Available commands:")
    print("  localdev tunnel start    - Start ephemeral tunnel")
    print("  localdev tunnel restart  - Restart tunnel with new URL")
    print("  localdev tunnel stop     - Stop tunnel")
    print("  localdev tunnel status   - Show tunnel status")
    print("  localdev tunnel apply    - Apply tunnel config to Kubernetes")
    return running


def show_oauth_instructions(cfg: TunnelConfig, session: TunnelSession) -> None:
    """Explain the ephemeral URL and the Twitch redirect update it requires."""
    print()
    console.banner("🔄 TUNNEL MANAGEMENT:")
    print(f"• Tunnel URL: {session.url}")
    print(f"• Tunnel PID: {session.pid} (saved in {cfg.pid_file})")
    print()
    print("To restart tunnel with new URL:")
    print("  localdev tunnel restart")
    print()
    print("To stop tunnel:")
    print("  localdev tunnel stop")
    print()
    print("⚠️  WARNING: This is an ephemeral tunnel!")
    print("   • URL changes every time you restart the tunnel")
    print("   • You'll need to update Twitch OAuth settings each time")
    print("   • For production, use a permanent tunnel instead")
    print()
    console.banner("🔧 TWITCH OAUTH SETUP REQUIRED:")
    print("⚠️  IMPORTANT: You need to update your Twitch OAuth application:")
    print()
    print("1. Go to: https://dev.twitch.tv/console/apps")
    print("2. Find your RaidHelper application")
    print("3. Update the 'OAuth Redirect URLs' to include:")
    print(f"   {oauth_redirect_uri(session.hostname)}")
    print()
    print("4. Save the changes")
    print()


def _bring_up(cfg: TunnelConfig) -> TunnelSession:
    session = start_tunnel(cfg)
    write_tunnel_env(cfg, session.hostname)
    apply_tunnel_config(cfg, session.hostname)
    show_oauth_instructions(cfg, session)
    return session


def start_tunnel_setup(cfg: TunnelConfig) -> TunnelSession:
    """Check prerequisites, start the tunnel and configure the cluster."""
    console.banner("🚇 Ephemeral Cloudflare Tunnel Setup for RaidHelper Development")
    check_prerequisites(cfg)
    session = _bring_up(cfg)
    console.success("Ephemeral tunnel setup complete!")
    console.warn("Remember to update your Twitch OAuth redirect URL!")
    return session


def restart_tunnel(cfg: TunnelConfig) -> TunnelSession:
    """Stop the current tunnel and start one with a fresh URL."""
    console.banner("🔄 Restarting Ephemeral Cloudflare Tunnel")
    stop_tunnel(cfg)
    session = _bring_up(cfg)
    console.success("Tunnel restart complete!")
    console.warn("Don't forget to update your Twitch OAuth redirect URL!")
    return session


def apply_config_only(cfg: TunnelConfig) -> list[str]:
    """Re-apply the existing env file, e.g. after an ArgoCD sync.

    Raises
    ------
    TunnelConfigMissingError
        If no tunnel has been started yet.

    """
    if not cfg.env_file.exists():
        msg = "No tunnel environment file found. Start a tunnel first: localdev tunnel start"
        raise TunnelConfigMissingError(msg)
    patched = apply_tunnel_config(cfg)
    console.success("Configuration applied successfully!")
    return patched


def create_tunnel_certificate(cfg: TunnelConfig, hostname: str | None = None) -> Path:
    """Create a self-signed certificate for the tunnel host and store it as a secret.

    A copy of the certificate is kept in ``cfg.cert_dir`` for manual browser
    trust. Returns the path of that copy.
    """
    host = _require_hostname(cfg, hostname)
    require_exe("openssl")
    console.info(f"Creating self-signed certificate for tunnel host: {host}")

    with tempfile.TemporaryDirectory(prefix="tunnel-certs-") as tmp:
        key_file = Path(tmp) / "tls.key"
        cert_file = Path(tmp) / "tls.crt"
        # S603/S607: openssl via PATH is standard; host from the env file
        subprocess.run(  # noqa: S603
            [  # noqa: S607
                "openssl",
                "req",
                "-x509",
                "-nodes",
                "-days",
                "365",
                "-newkey",
                "rsa:2048",
                "-keyout",
                str(key_file),
                "-out",
                str(cert_file),
                "-subj",
                f"/CN={host}",
                "-addext",
                f"subjectAltName=DNS:{host},DNS:*.trycloudflare.com",
            ],
            capture_output=True,
            check=True,
            timeout=_OPENSSL_TIMEOUT,
        )
        apply_tls_secret(cfg.tls_secret_name, cert_file, key_file, cfg.namespace)

        cfg.cert_dir.mkdir(parents=True, exist_ok=True)
        saved = cfg.cert_dir / f"tunnel-{int(time.time())}.crt"
        saved.write_bytes(cert_file.read_bytes())

    console.success(f"Self-signed certificate created for {host}")
    console.info(f"Certificate saved to: {saved} for manual browser trust")
    console.warn("Browser will show security warnings - this is normal for self-signed certificates")
    return saved
