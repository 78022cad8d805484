"""ArgoCD admin access for the local cluster.

After Helmfile installs ArgoCD, the admin password is read from the initial
admin secret, the CLI logs in through a temporary port-forward and an API
token is generated. The results are written to a dotenv file the developer
can source.
"""

from __future__ import annotations

import subprocess
import time
import typing as typ

from localdev import console
from localdev.k8s import read_secret_field, resource_exists
from localdev.logging import get_logger, log_debug, log_warning
from localdev.processes import spawn_background, terminate
from localdev.validation import LocalDevError

if typ.TYPE_CHECKING:
    from pathlib import Path

    from localdev.config import ArgoCDConfig

logger = get_logger(__name__)

_ARGOCD_TIMEOUT = 60
_MANUAL_TOKEN_HINT = "argocd account generate-token --account admin"


def wait_for_admin_secret(cfg: ArgoCDConfig) -> None:
    """Poll until the initial admin secret exists.

    Raises
    ------
    LocalDevError
        If the secret does not appear within the configured attempts.

    """
    console.info("Waiting for ArgoCD admin secret...")
    for attempt in range(1, cfg.secret_attempts + 1):
        if resource_exists("secret", cfg.admin_secret, cfg.namespace):
            return
        log_debug(logger, "Admin secret not present (attempt %d)", attempt)
        time.sleep(cfg.secret_interval)
    msg = (
        f"Secret '{cfg.admin_secret}' did not appear in namespace "
        f"'{cfg.namespace}' after {cfg.secret_attempts} attempts"
    )
    raise LocalDevError(msg)


def read_admin_password(cfg: ArgoCDConfig) -> str:
    """Decode the admin password from the initial admin secret."""
    return read_secret_field(cfg.admin_secret, "password", cfg.namespace)


def admin_password_or_hint(cfg: ArgoCDConfig, fallback: str) -> str:
    """Return the admin password, or ``fallback`` when it cannot be read."""
    try:
        if not resource_exists("secret", cfg.admin_secret, cfg.namespace):
            return fallback
        return read_admin_password(cfg)
    except (subprocess.SubprocessError, OSError, ValueError, LocalDevError) as exc:
        log_debug(logger, "Could not read ArgoCD password: %s", exc)
        return fallback


def login(cfg: ArgoCDConfig, password: str) -> bool:
    """Attempt ``argocd login`` with retries.

    Returns
    -------
    bool
        True once a login succeeds, False after all attempts failed.

    """
    console.info("Logging into ArgoCD...")
    for attempt in range(1, cfg.login_attempts + 1):
        try:
            # S603/S607: argocd via PATH is standard; args from configuration
            result = subprocess.run(  # noqa: S603
                [  # noqa: S607
                    "argocd",
                    "login",
                    cfg.server_address,
                    "--username",
                    "admin",
                    "--password",
                    password,
                    "--insecure",
                ],
                input="y\n",
                capture_output=True,
                text=True,
                check=False,
                timeout=_ARGOCD_TIMEOUT,
            )
        except subprocess.TimeoutExpired:
            log_warning(logger, "argocd login timed out (attempt %d)", attempt)
        else:
            if result.returncode == 0:
                console.success("Successfully logged into ArgoCD")
                return True
        console.info(
            f"ArgoCD not ready yet, waiting {cfg.login_interval:g} seconds... "
            f"(attempt {attempt}/{cfg.login_attempts})"
        )
        time.sleep(cfg.login_interval)
    return False


def generate_token() -> str | None:
    """Generate an API token for the admin account, or None on failure."""
    try:
        result = subprocess.run(
            ["argocd", "account", "generate-token", "--account", "admin"],  # noqa: S607
            capture_output=True,
            text=True,
            check=True,
            timeout=_ARGOCD_TIMEOUT,
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as exc:
        log_warning(logger, "Token generation failed: %s", exc)
        return None
    token = result.stdout.strip()
    return token or None


def render_env_file(cfg: ArgoCDConfig, password: str, token: str | None) -> str:
    """Render the ArgoCD dotenv file contents."""
    lines = [f"ARGOCD_SERVER=http://{cfg.server_address}"]
    if token:
        lines.append(f"ARGOCD_TOKEN={token}")
    lines.append("ARGOCD_INSECURE=true")
    lines.append(f"ARGOCD_ADMIN_PASSWORD={password}")
    if not token:
        lines.append(f"# Generate token manually: {_MANUAL_TOKEN_HINT}")
    return "\n".join(lines) + "\n"


def write_env_file(cfg: ArgoCDConfig, password: str, token: str | None) -> Path:
    """Write the dotenv file and return its path."""
    cfg.env_file.write_text(render_env_file(cfg, password, token), encoding="utf-8")
    return cfg.env_file


def _print_manual_login(cfg: ArgoCDConfig, password: str) -> None:
    console.warn("Could not connect to ArgoCD for token generation, but basic setup is complete")
    console.info("You can manually generate a token later with:")
    console.detail(
        f"kubectl port-forward svc/{cfg.service} -n {cfg.namespace} "
        f"{cfg.local_port}:{cfg.remote_port} &"
    )
    console.detail(
        f"argocd login {cfg.server_address} --username admin --password {password} --insecure"
    )
    console.detail(_MANUAL_TOKEN_HINT)


def configure_argocd(cfg: ArgoCDConfig) -> str | None:
    """Log into ArgoCD, generate a token and write the config file.

    Returns
    -------
    str | None
        The generated token, or None when only the basic config was written.

    """
    console.header("CONFIGURING ARGOCD")
    wait_for_admin_secret(cfg)
    password = read_admin_password(cfg)
    console.success(f"ArgoCD admin password: {password}")

    console.info("Setting up port-forward for ArgoCD...")
    forward = spawn_background(
        [
            "kubectl",
            "port-forward",
            f"svc/{cfg.service}",
            "-n",
            cfg.namespace,
            f"{cfg.local_port}:{cfg.remote_port}",
        ]
    )
    try:
        time.sleep(cfg.port_forward_settle)
        if not login(cfg, password):
            _print_manual_login(cfg, password)
            write_env_file(cfg, password, None)
            return None

        console.info("Generating ArgoCD API token...")
        token = generate_token()
        if token:
            console.success("ArgoCD API token generated successfully!")
        else:
            console.warn("Could not generate API token, but ArgoCD is running")
        path = write_env_file(cfg, password, token)
        console.success(f"ArgoCD configuration saved to {path}")
        return token
    finally:
        terminate(forward.pid, grace=2.0)
