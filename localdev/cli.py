"""Command-line interface for the RaidHelper local development environment.

Usage:
    localdev setup                    # Create the full environment
    localdev delete                   # Delete the minikube cluster
    localdev port-forwards start      # Forward cluster services to localhost
    localdev tunnel start             # Expose the web app via Cloudflare
    localdev certs create             # HTTPS certificate for raidhelper.local
    localdev domains add              # Add local domains to /etc/hosts
    localdev dynamodb init            # Create the LocalStack DynamoDB table

Environment variables:
    LOCALDEV_LOG_LEVEL   - Diagnostic log level (default: INFO)
    LOCALSTACK_ENDPOINT  - LocalStack endpoint (default: http://localhost:8000)
    AWS_REGION           - AWS region (default: us-east-1)
    TABLE_NAME           - DynamoDB table name (default: raidhelper)
    LOCAL_DOMAIN         - Local domain suffix (default: local)
    PROJECT_NAME         - Project name (default: raidhelper)
    SERVICES             - Comma-separated name:port list (default: web:8086,api:8086,ws:8086)
"""

from __future__ import annotations

import os
import subprocess
import sys
import typing as typ
from pathlib import Path

from cyclopts import App, Parameter

from localdev import certs, console, devtools, dynamodb, hosts, tunnel
from localdev import port_forwards as pf
from localdev.config import (
    CertConfig,
    DomainConfig,
    DynamoDBConfig,
    InterceptConfig,
    PortForwardConfig,
    SetupConfig,
    TunnelConfig,
)
from localdev.logging import (
    LOG_LEVEL_ENV_VAR,
    configure_logging,
    get_logger,
    log_error,
    log_exception,
    log_warning,
)
from localdev.orchestration import delete_cluster, run_setup
from localdev.validation import LocalDevError

logger = get_logger(__name__)

app = App(
    name="localdev",
    help="RaidHelper local Kubernetes development environment",
    version="0.1.0",
)

port_forwards_app = App(name="port-forwards", help="Forward cluster services to localhost.")
tunnel_app = App(name="tunnel", help="Manage the ephemeral Cloudflare tunnel.")
certs_app = App(name="certs", help="Manage the local HTTPS certificate.")
domains_app = App(name="domains", help="Manage local domains in /etc/hosts.")
dynamodb_app = App(name="dynamodb", help="Initialise the LocalStack DynamoDB table.")
telepresence_app = App(name="telepresence", help="Telepresence shortcuts.")
mirrord_app = App(name="mirrord", help="mirrord shortcuts.")

for _sub_app in (
    port_forwards_app,
    tunnel_app,
    certs_app,
    domains_app,
    dynamodb_app,
    telepresence_app,
    mirrord_app,
):
    app.command(_sub_app)

TunnelConfigDir = typ.Annotated[Path, Parameter(env_var="LOCALDEV_TUNNEL_CONFIG_DIR")]
LocalDomain = typ.Annotated[str, Parameter(env_var="LOCAL_DOMAIN")]
ProjectName = typ.Annotated[str, Parameter(env_var="PROJECT_NAME")]
Services = typ.Annotated[str, Parameter(env_var="SERVICES")]

DEFAULT_SERVICES = "web:8086,api:8086,ws:8086"
INTERCEPT_NAMESPACE = "raidhelper-prod"


# =============================================================================
# Cluster lifecycle
# =============================================================================


@app.command
def setup(
    *,
    yes: bool = False,
    infrastructure_dir: Path = Path("infrastructure"),
    manifests_dir: Path = Path("../manifests-microservices"),
) -> int:
    """Run the complete setup: tools, minikube, infrastructure and apps.

    Args:
        yes: Answer yes to every confirmation prompt.
        infrastructure_dir: Directory holding the Helmfile.
        manifests_dir: Checkout of the manifests-microservices repository.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    cfg = SetupConfig(infrastructure_dir=infrastructure_dir, manifests_dir=manifests_dir)
    return run_setup(cfg, assume_yes=yes)


@app.command
def delete() -> int:
    """Delete the minikube cluster."""
    return delete_cluster()


# =============================================================================
# Port-forwards
# =============================================================================


@port_forwards_app.default
@port_forwards_app.command(name="start")
def port_forwards_start(*, no_monitor: bool = False) -> int:
    """Start all port-forwards, replacing existing ones.

    Stays in the foreground monitoring them when attached to a terminal.

    Args:
        no_monitor: Return immediately instead of monitoring.

    """
    monitor = sys.stdin.isatty() and not no_monitor
    pf.start_all_port_forwards(PortForwardConfig(), monitor=monitor)
    return 0


@port_forwards_app.command(name="cleanup")
def port_forwards_cleanup() -> int:
    """Stop recorded and stray port-forwards."""
    return 0 if pf.cleanup_port_forwards(PortForwardConfig()) else 1


@port_forwards_app.command(name="force-cleanup")
def port_forwards_force_cleanup() -> int:
    """Kill every kubectl port-forward process."""
    return 0 if pf.force_cleanup_port_forwards(PortForwardConfig()) else 1


@port_forwards_app.command(name="show")
def port_forwards_show() -> int:
    """Show forwarded service URLs and credentials."""
    pf.show_services()
    return 0


# =============================================================================
# Cloudflare tunnel
# =============================================================================


@tunnel_app.command(name="start")
def tunnel_start(*, config_dir: TunnelConfigDir = Path("config")) -> int:
    """Start the tunnel and apply its configuration to the cluster."""
    tunnel.start_tunnel_setup(TunnelConfig(config_dir=config_dir))
    return 0


@tunnel_app.command(name="restart")
def tunnel_restart(*, config_dir: TunnelConfigDir = Path("config")) -> int:
    """Restart the tunnel with a new URL."""
    tunnel.restart_tunnel(TunnelConfig(config_dir=config_dir))
    return 0


@tunnel_app.command(name="stop")
def tunnel_stop(*, config_dir: TunnelConfigDir = Path("config")) -> int:
    """Stop the tunnel and remove its ingress route."""
    console.banner("🛑 Stopping Ephemeral Cloudflare Tunnel")
    tunnel.stop_tunnel(TunnelConfig(config_dir=config_dir))
    return 0


@tunnel_app.default
@tunnel_app.command(name="status")
def tunnel_status(*, config_dir: TunnelConfigDir = Path("config")) -> int:
    """Show whether the tunnel is running and its URL."""
    tunnel.show_status(TunnelConfig(config_dir=config_dir))
    return 0


@tunnel_app.command(name="apply")
def tunnel_apply(*, config_dir: TunnelConfigDir = Path("config")) -> int:
    """Re-apply the tunnel configuration to running deployments."""
    console.banner("🔧 Applying Tunnel Configuration to Kubernetes")
    tunnel.apply_config_only(TunnelConfig(config_dir=config_dir))
    return 0


@tunnel_app.command(name="cert")
def tunnel_cert(
    *, hostname: str | None = None, config_dir: TunnelConfigDir = Path("config")
) -> int:
    """Create a self-signed certificate for the tunnel hostname.

    Args:
        hostname: Tunnel hostname; read from the tunnel env file when omitted.
        config_dir: Directory holding the tunnel env file.

    """
    tunnel.create_tunnel_certificate(TunnelConfig(config_dir=config_dir), hostname)
    return 0


# =============================================================================
# Local certificates
# =============================================================================


@certs_app.command(name="create")
def certs_create() -> int:
    """Create and install the raidhelper.local certificate."""
    certs.create_certificate(CertConfig())
    return 0


@certs_app.command(name="cleanup")
def certs_cleanup() -> int:
    """Remove the certificate from the cluster and this machine."""
    certs.cleanup_certificates(CertConfig())
    console.success("Cleanup complete!")
    return 0


@certs_app.default
@certs_app.command(name="status")
def certs_status() -> int:
    """Show certificate, secret and ingress route status."""
    certs.show_status(CertConfig())
    return 0


# =============================================================================
# /etc/hosts domains
# =============================================================================


def _domain_config(local_domain: str, project_name: str, services: str) -> DomainConfig:
    return DomainConfig(
        local_domain=local_domain,
        project_name=project_name,
        services=services or DEFAULT_SERVICES,
    )


@domains_app.command(name="add")
def domains_add(
    *,
    local_domain: LocalDomain = "local",
    project_name: ProjectName = "raidhelper",
    services: Services = DEFAULT_SERVICES,
) -> int:
    """Add the project domains to /etc/hosts."""
    hosts.add_domains(_domain_config(local_domain, project_name, services))
    return 0


@domains_app.command(name="remove")
def domains_remove(
    *,
    local_domain: LocalDomain = "local",
    project_name: ProjectName = "raidhelper",
    services: Services = DEFAULT_SERVICES,
) -> int:
    """Remove the project domains from /etc/hosts."""
    hosts.remove_domains(_domain_config(local_domain, project_name, services))
    return 0


@domains_app.default
@domains_app.command(name="show")
def domains_show(
    *,
    local_domain: LocalDomain = "local",
    project_name: ProjectName = "raidhelper",
    services: Services = DEFAULT_SERVICES,
) -> int:
    """Show the domain configuration."""
    hosts.show_domains(_domain_config(local_domain, project_name, services))
    return 0


# =============================================================================
# LocalStack DynamoDB
# =============================================================================


@dynamodb_app.default
@dynamodb_app.command(name="init")
def dynamodb_init(
    *,
    endpoint: typ.Annotated[
        str, Parameter(env_var="LOCALSTACK_ENDPOINT")
    ] = "http://localhost:8000",
    region: typ.Annotated[str, Parameter(env_var="AWS_REGION")] = "us-east-1",
    table_name: typ.Annotated[str, Parameter(env_var="TABLE_NAME")] = "raidhelper",
) -> int:
    """Create the DynamoDB table in LocalStack unless it already exists.

    Args:
        endpoint: LocalStack endpoint URL.
        region: AWS region passed to the AWS CLI.
        table_name: Name of the table to create.

    """
    cfg = DynamoDBConfig(endpoint=endpoint, region=region, table_name=table_name)
    dynamodb.init_table(cfg)
    return 0


# =============================================================================
# Telepresence and mirrord
# =============================================================================


@telepresence_app.command(name="connect")
def telepresence_connect() -> int:
    """Connect Telepresence to the cluster."""
    return devtools.telepresence_connect()


@telepresence_app.command(name="quit")
def telepresence_quit() -> int:
    """Disconnect Telepresence."""
    return devtools.telepresence_quit()


@telepresence_app.command(name="intercept")
def telepresence_intercept(
    service: str, *, port: int, namespace: str = INTERCEPT_NAMESPACE
) -> int:
    """Intercept a service and route its traffic to a local port.

    Args:
        service: Name of the service to intercept.
        port: Local port receiving the traffic.
        namespace: Namespace of the service.

    """
    return devtools.telepresence_intercept(service, port, InterceptConfig(namespace=namespace))


@mirrord_app.command(name="exec")
def mirrord_exec(
    deployment: str, *command: str, namespace: str = INTERCEPT_NAMESPACE
) -> int:
    """Run a local command in the context of a deployment.

    Args:
        deployment: Deployment to mirror.
        command: Command to run, given after ``--``.
        namespace: Namespace of the deployment.

    """
    return devtools.mirrord_exec(deployment, namespace, command)


def main(argv: typ.Sequence[str] | None = None) -> int:
    """Entry point for the CLI."""
    _, invalid_level = configure_logging(os.environ.get(LOG_LEVEL_ENV_VAR))
    if invalid_level:
        log_warning(logger, "Invalid %s; using INFO", LOG_LEVEL_ENV_VAR)
    try:
        result = app(list(argv) if argv is not None else None)
    except (LocalDevError, ValueError) as exc:
        console.error(str(exc))
        log_exception(logger, "Command failed", exc)
        return 1
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as exc:
        console.error(f"Command failed: {' '.join(map(str, exc.cmd))}")
        if exc.stderr:
            stderr = exc.stderr.decode() if isinstance(exc.stderr, bytes) else exc.stderr
            console.detail(stderr.strip())
        log_exception(logger, "External command failed", exc)
        return 1
    except FileNotFoundError as exc:
        console.error(f"{exc.strerror or 'Not found'}: {exc.filename}")
        log_error(logger, "Missing program or file: %s", exc.filename)
        return 1
    except KeyboardInterrupt:
        print()
        console.error("Interrupted. You can run the command again to retry.")
        return 130
    except SystemExit as exc:
        if exc.code is None or isinstance(exc.code, int):
            return exc.code or 0
        return 1
    return result if isinstance(result, int) else 0
