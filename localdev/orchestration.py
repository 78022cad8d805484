"""High-level orchestration for the ``setup`` and ``delete`` commands."""

from __future__ import annotations

import typing as typ

from localdev import console, minikube
from localdev.argocd import admin_password_or_hint, configure_argocd
from localdev.infrastructure import deploy_applications, deploy_infrastructure
from localdev.logging import get_logger, log_info
from localdev.requirements import check_requirements, detect_os
from localdev.validation import require_exe

if typ.TYPE_CHECKING:
    from localdev.config import SetupConfig

logger = get_logger(__name__)


def show_next_steps(cfg: SetupConfig) -> None:
    """Print the success banner with follow-up commands."""
    console.header("SETUP COMPLETE")
    password = admin_password_or_hint(cfg.argocd, f"check {cfg.argocd.env_file}")

    print()
    console.success("🎉 Local development environment is ready!")
    print()
    print(console.paint("📋 Next Steps:", console.Style.BLUE))
    print("  1. Start port-forwards: localdev port-forwards start")
    print(f"  2. Access ArgoCD: http://localhost:8081 (admin/{password})")
    print("  3. Access Grafana: http://localhost:3000 (admin/admin123)")
    print("  4. Connect Telepresence: localdev telepresence connect")
    print(
        "  5. Intercept a service: localdev telepresence intercept <service-name> "
        "--port <local-port>"
    )
    print()
    print(console.paint("🔧 Common Commands:", console.Style.BLUE))
    print("  - localdev port-forwards show     # Show service URLs")
    print("  - localdev port-forwards cleanup  # Stop all port-forwards")
    print("  - localdev tunnel start           # Expose the web app publicly")
    print("  - localdev certs create           # HTTPS for raidhelper.local")
    print("  - localdev dynamodb init          # Create the LocalStack table")
    print()
    if cfg.argocd.env_file.exists():
        print(console.paint("🔑 ArgoCD Configuration:", console.Style.BLUE))
        print(f"  Source the configuration: source {cfg.argocd.env_file}")
        print()


def run_setup(cfg: SetupConfig, *, assume_yes: bool = False) -> int:
    """Bring up the complete local environment.

    Args:
        cfg: Setup configuration.
        assume_yes: Skip interactive confirmations.

    Returns:
        Exit code (0 for success or when the user cancels).

    Raises:
        RequirementsError: If prerequisite tools are missing.
        InfrastructureError: If deploying the infrastructure fails.

    """
    print(console.paint("🚀 RaidHelper Local Development Environment Setup", console.Style.BLUE))
    print(console.paint(console.RULE, console.Style.BLUE))

    os_name = detect_os()
    console.info(f"Detected OS: {os_name}")
    print()
    if not console.confirm("Ready to begin setup?", assume_yes=assume_yes):
        console.info("Setup cancelled by user.")
        return 0

    check_requirements(assume_yes=assume_yes, os_name=os_name)
    outcome = minikube.configure_minikube(cfg.minikube)
    log_info(logger, "minikube: %s", outcome)
    deploy_infrastructure(cfg)
    configure_argocd(cfg.argocd)
    deploy_applications(cfg)
    show_next_steps(cfg)

    console.success("Setup completed successfully! 🎉")
    return 0


def delete_cluster() -> int:
    """Delete the minikube cluster.

    Returns:
        Exit code (0 for success).

    """
    require_exe("minikube")
    print("💥 Deleting minikube cluster...")
    minikube.delete()
    console.success("Minikube cluster deleted")
    return 0
