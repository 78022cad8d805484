"""Configuration for the local development environment.

All paths are relative to the current working directory unless absolute.
Environment variable overrides are applied by the CLI layer.
"""

from __future__ import annotations

import dataclasses
from pathlib import Path

# Namespace the RaidHelper applications are deployed into.
APPS_NAMESPACE = "apps"

# Directory holding locally generated certificates.
DEFAULT_CERT_DIR = Path.home() / ".local" / "share" / "raidhelper-certs"


@dataclasses.dataclass(frozen=True, slots=True)
class MinikubeConfig:
    """Resources and addons for the minikube cluster.

    Attributes:
        profile: minikube profile name looked up in ``minikube profile list``.
        memory_mb: Memory for the VM in MiB.

    """

    profile: str = "minikube"
    cpus: int = 6
    memory_mb: int = 8192
    driver: str = "docker"
    addons: tuple[str, ...] = ("ingress", "metrics-server")


@dataclasses.dataclass(frozen=True, slots=True)
class SetupConfig:
    """Configuration for the full ``setup`` workflow."""

    minikube: MinikubeConfig = dataclasses.field(default_factory=MinikubeConfig)
    infrastructure_dir: Path = dataclasses.field(
        default_factory=lambda: Path("infrastructure")
    )
    manifests_dir: Path = dataclasses.field(
        default_factory=lambda: Path("../manifests-microservices")
    )
    applications_subdir: Path = dataclasses.field(
        default_factory=lambda: Path("applications/production")
    )
    argocd_ready_timeout: int = 600
    argocd: ArgoCDConfig = dataclasses.field(default_factory=lambda: ArgoCDConfig())

    @property
    def applications_dir(self) -> Path:
        """Directory of ArgoCD Application manifests to apply."""
        return self.manifests_dir / self.applications_subdir


@dataclasses.dataclass(frozen=True, slots=True)
class ArgoCDConfig:
    """ArgoCD admin access settings.

    Attributes:
        local_port: Port the API server is forwarded to during login.
        secret_attempts: Polls of the initial admin secret before giving up.

    """

    namespace: str = "argocd"
    service: str = "argo-argocd-server"
    admin_secret: str = "argocd-initial-admin-secret"  # noqa: S105
    local_port: int = 8080
    remote_port: int = 80
    port_forward_settle: float = 10.0
    secret_attempts: int = 120
    secret_interval: float = 5.0
    login_attempts: int = 5
    login_interval: float = 10.0
    env_file: Path = dataclasses.field(
        default_factory=lambda: Path("argocd-config.env")
    )

    @property
    def server_address(self) -> str:
        """``host:port`` passed to ``argocd login``."""
        return f"localhost:{self.local_port}"


@dataclasses.dataclass(frozen=True, slots=True)
class PortForwardSpec:
    """A single ``kubectl port-forward`` to a Service."""

    service: str
    namespace: str
    local_port: int
    remote_port: int

    @property
    def description(self) -> str:
        """Human readable name used in status lines."""
        return f"{self.service} in {self.namespace}"


DEFAULT_PORT_FORWARDS: tuple[PortForwardSpec, ...] = (
    # Traefik must come first: local domains resolve through it.
    PortForwardSpec("traefik", "traefik", 8086, 80),
    PortForwardSpec("traefik", "traefik", 8085, 8081),
    PortForwardSpec("argo-argocd-server", "argocd", 8081, 80),
    PortForwardSpec("prometheus-server", "monitoring", 9091, 80),
    PortForwardSpec("grafana", "monitoring", 3000, 80),
    PortForwardSpec("tempo", "monitoring", 3200, 3100),
    PortForwardSpec("loki", "monitoring", 3100, 3100),
    PortForwardSpec("nats", "nats", 4222, 4222),
    PortForwardSpec("localstack", "storage", 8000, 4566),
    PortForwardSpec("web", "linkerd-viz", 50750, 8084),
)


@dataclasses.dataclass(frozen=True, slots=True)
class ReadinessCheck:
    """A ``kubectl wait`` target checked before port-forwarding."""

    resource: str
    namespace: str
    condition: str = "available"


DEFAULT_READINESS_CHECKS: tuple[ReadinessCheck, ...] = (
    ReadinessCheck("deployment/argo-argocd-server", "argocd"),
    ReadinessCheck("deployment/prometheus-server", "monitoring"),
    ReadinessCheck("deployment/grafana", "monitoring"),
    ReadinessCheck("deployment/traefik", "traefik"),
    ReadinessCheck("deployment/linkerd-identity", "linkerd"),
    ReadinessCheck("pod/nats-0", "nats", condition="ready"),
)


@dataclasses.dataclass(frozen=True, slots=True)
class PortForwardConfig:
    """Bookkeeping and timing for background port-forwards."""

    forwards: tuple[PortForwardSpec, ...] = DEFAULT_PORT_FORWARDS
    readiness_checks: tuple[ReadinessCheck, ...] = DEFAULT_READINESS_CHECKS
    pid_file: Path = dataclasses.field(
        default_factory=lambda: Path("/tmp/localdev-port-forwards.pids")  # noqa: S108
    )
    process_pattern: str = "kubectl port-forward"
    readiness_timeout: int = 300
    startup_grace: float = 2.0
    term_grace: float = 3.0
    monitor_interval: float = 5.0


@dataclasses.dataclass(frozen=True, slots=True)
class TunnelConfig:
    """Ephemeral Cloudflare Tunnel settings.

    Attributes:
        origin_url: Traefik web entry point the tunnel forwards to.
        url_attempts: Log scans before giving up on the tunnel URL.
        deployments: Deployments that receive the tunnel ConfigMap.

    """

    config_dir: Path = dataclasses.field(default_factory=lambda: Path("config"))
    namespace: str = APPS_NAMESPACE
    configmap_name: str = "tunnel-config"
    pid_file: Path = dataclasses.field(
        default_factory=lambda: Path("/tmp/cloudflared.pid")  # noqa: S108
    )
    log_file: Path = dataclasses.field(
        default_factory=lambda: Path("/tmp/cloudflared.log")  # noqa: S108
    )
    origin_url: str = "http://localhost:8080"
    process_pattern: str = "cloudflared tunnel"
    ingress_name: str = "raidhelper-tunnel-ingress"
    web_service: str = "raidhelper-web-service"
    web_service_port: int = 80
    deployments: tuple[str, ...] = (
        "raidhelper-api",
        "raidhelper-realtime",
        "raidhelper-web",
    )
    api_url: str = "http://localhost:8082"
    ws_url: str = "ws://localhost:8083"
    twitch_client_id: str = "5svgsqtpx6xa538w6mz0lzev46btb9"
    startup_delay: float = 3.0
    url_attempts: int = 30
    url_interval: float = 2.0
    progress_every: int = 5
    stop_grace: float = 2.0
    tls_secret_name: str = "tunnel-tls"  # noqa: S105
    cert_dir: Path = dataclasses.field(default_factory=lambda: DEFAULT_CERT_DIR)

    @property
    def env_file(self) -> Path:
        """Generated dotenv file describing the current tunnel."""
        return self.config_dir / "tunnel.env"


@dataclasses.dataclass(frozen=True, slots=True)
class CertConfig:
    """Local HTTPS certificate settings."""

    domain: str = "raidhelper.local"
    namespace: str = APPS_NAMESPACE
    cert_dir: Path = dataclasses.field(default_factory=lambda: DEFAULT_CERT_DIR)
    secret_name: str = "raidhelper-local-tls"  # noqa: S105
    ingress_name: str = "raidhelper-local-ingress"
    web_service: str = "raidhelper-web-service"
    web_service_port: int = 80
    ip_addresses: tuple[str, ...] = ("127.0.0.1", "10.0.0.1")
    key_bits: int = 2048
    valid_days: int = 365
    linux_ca_path: Path = dataclasses.field(
        default_factory=lambda: Path("/usr/local/share/ca-certificates/raidhelper-local.crt")
    )
    macos_keychain: str = "/Library/Keychains/System.keychain"

    @property
    def key_file(self) -> Path:
        """Private key path."""
        return self.cert_dir / f"{self.domain}.key"

    @property
    def cert_file(self) -> Path:
        """Certificate path."""
        return self.cert_dir / f"{self.domain}.crt"

    @property
    def csr_file(self) -> Path:
        """Signing request path, removed after signing."""
        return self.cert_dir / f"{self.domain}.csr"


@dataclasses.dataclass(frozen=True, slots=True)
class DomainConfig:
    """Local ``/etc/hosts`` domain settings.

    ``services`` uses the ``name:port[,name:port...]`` format of the
    ``SERVICES`` environment variable.
    """

    local_domain: str = "local"
    project_name: str = "raidhelper"
    services: str = "web:8086,api:8086,ws:8086"
    ip_address: str = "127.0.0.1"
    hosts_file: Path = dataclasses.field(default_factory=lambda: Path("/etc/hosts"))

    @property
    def main_domain(self) -> str:
        """Domain of the main application."""
        return f"{self.project_name}.{self.local_domain}"


@dataclasses.dataclass(frozen=True, slots=True)
class DynamoDBConfig:
    """LocalStack DynamoDB table settings."""

    endpoint: str = "http://localhost:8000"
    region: str = "us-east-1"
    table_name: str = "raidhelper"
    ready_attempts: int = 30
    ready_interval: float = 5.0
    local_secondary_indexes: int = 5
    read_capacity: int = 10
    write_capacity: int = 10


@dataclasses.dataclass(frozen=True, slots=True)
class InterceptConfig:
    """Defaults for Telepresence intercepts."""

    namespace: str = "raidhelper-prod"
