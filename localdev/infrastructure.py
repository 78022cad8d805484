"""Infrastructure deployment: Linkerd, Helmfile releases and applications.

Linkerd is installed with its own CLI, rendering manifests that are piped
into ``kubectl apply``. Everything else (ArgoCD, Traefik, the observability
stack, NATS, LocalStack, Telepresence's traffic manager) is declared in the
Helmfile under ``infrastructure/`` and applied in one go.
"""

from __future__ import annotations

import subprocess
import typing as typ

from localdev import console
from localdev.k8s import apply_manifest, apply_path, wait_for_condition
from localdev.logging import get_logger, log_debug
from localdev.validation import InfrastructureError, require_exe

if typ.TYPE_CHECKING:
    from pathlib import Path

    from localdev.config import SetupConfig

logger = get_logger(__name__)

_LINKERD_RENDER_TIMEOUT = 120
_LINKERD_CHECK_TIMEOUT = 900
_HELMFILE_TIMEOUT = 1800


def _linkerd(*args: str, capture: bool) -> str:
    log_debug(logger, "linkerd %s", " ".join(args))
    timeout = _LINKERD_RENDER_TIMEOUT if capture else _LINKERD_CHECK_TIMEOUT
    # S603/S607: linkerd via PATH is standard; args are fixed
    result = subprocess.run(  # noqa: S603
        ["linkerd", *args],  # noqa: S607
        capture_output=capture,
        text=True,
        check=True,
        timeout=timeout,
    )
    return result.stdout if capture else ""


def _step(description: str, action: typ.Callable[[], object]) -> None:
    """Run ``action``; wrap subprocess failures in InfrastructureError."""
    try:
        action()
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
        msg = f"Failed to {description}: {e}"
        raise InfrastructureError(msg) from e


def install_linkerd() -> None:
    """Install the Linkerd CRDs, control plane and Viz extension, verifying each.

    Raises
    ------
    ExecutableNotFoundError
        If the linkerd CLI is missing.
    InfrastructureError
        If rendering, applying or a health check fails.

    """
    require_exe("linkerd", hint="localdev setup (installs missing tools)")

    console.info("Installing Linkerd CRDs...")
    _step(
        "install Linkerd CRDs",
        lambda: apply_manifest(_linkerd("install", "--crds", capture=True)),
    )

    console.info("Installing Linkerd control plane...")
    _step(
        "install Linkerd control plane",
        lambda: apply_manifest(
            _linkerd("install", "--set", "proxyInit.runAsRoot=true", capture=True)
        ),
    )

    console.info("Waiting for Linkerd control plane to be ready...")
    _step("verify Linkerd control plane health", lambda: _linkerd("check", capture=False))

    console.info("Installing Linkerd Viz extension...")
    _step(
        "install Linkerd Viz extension",
        lambda: apply_manifest(_linkerd("viz", "install", capture=True)),
    )

    console.info("Waiting for Linkerd Viz to be ready...")
    _step("verify Linkerd Viz health", lambda: _linkerd("check", "--proxy", capture=False))

    console.success("Linkerd installed and verified successfully!")


def helmfile_apply(infrastructure_dir: Path) -> None:
    """Run ``helmfile apply`` inside ``infrastructure_dir``.

    Raises
    ------
    InfrastructureError
        If the directory is missing or helmfile fails.

    """
    if not infrastructure_dir.is_dir():
        msg = f"Infrastructure directory not found at {infrastructure_dir}"
        raise InfrastructureError(msg)

    def _apply() -> None:
        # S603/S607: helmfile via PATH is standard; no user input
        subprocess.run(  # noqa: S603
            ["helmfile", "apply"],  # noqa: S607
            cwd=infrastructure_dir,
            check=True,
            timeout=_HELMFILE_TIMEOUT,
        )

    _step("deploy infrastructure with helmfile", _apply)


def deploy_infrastructure(cfg: SetupConfig) -> None:
    """Deploy Linkerd and the Helmfile stack, then wait for ArgoCD."""
    console.header("DEPLOYING INFRASTRUCTURE")
    console.info("Deploying full infrastructure stack with Helmfile...")
    console.info(
        "This includes: ArgoCD, Traefik, Linkerd, Prometheus, Grafana, Tempo, Loki, Telepresence"
    )

    install_linkerd()

    console.info("Deploying remaining infrastructure with helmfile...")
    helmfile_apply(cfg.infrastructure_dir)

    console.info("Waiting for ArgoCD server to be ready...")
    argocd = cfg.argocd
    _step(
        "wait for the ArgoCD server",
        lambda: wait_for_condition(
            f"deployment/{argocd.service}",
            argocd.namespace,
            "available",
            timeout=cfg.argocd_ready_timeout,
        ),
    )

    console.success("Infrastructure deployed successfully!")


def deploy_applications(cfg: SetupConfig) -> bool:
    """Apply the ArgoCD Application manifests when the repository is checked out.

    Returns
    -------
    bool
        False when the manifests repository is absent and nothing was applied.

    """
    console.header("DEPLOYING RAIDHELPER APPLICATIONS")

    if not cfg.manifests_dir.is_dir():
        console.warn(
            f"{cfg.manifests_dir.name} directory not found. Skipping application deployment."
        )
        console.info(
            "You can deploy applications manually after creating the manifests repository."
        )
        return False

    console.info("Deploying RaidHelper applications via ArgoCD...")
    apply_path(cfg.applications_dir)
    console.success("RaidHelper applications deployed!")
    return True
