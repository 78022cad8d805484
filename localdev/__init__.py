"""RaidHelper local Kubernetes development environment.

This package drives minikube, kubectl, Helmfile and a handful of developer
tools to provide a complete local environment. The primary entrypoints are:

- run_setup: Create the cluster, infrastructure and applications
- delete_cluster: Delete the minikube cluster
- start_tunnel_setup: Expose the web app through an ephemeral Cloudflare tunnel
- init_table: Create the LocalStack DynamoDB table

For lower-level operations, import directly from submodules:

- localdev.k8s: kubectl helpers (idempotent apply, waits, patches)
- localdev.port_forwards: background port-forward supervision
- localdev.processes: PID files and signal-based termination
- localdev.certs: local HTTPS certificates
- localdev.hosts: ``/etc/hosts`` domains

"""

from __future__ import annotations

from localdev.config import (
    CertConfig,
    DomainConfig,
    DynamoDBConfig,
    PortForwardConfig,
    SetupConfig,
    TunnelConfig,
)
from localdev.dynamodb import init_table
from localdev.orchestration import delete_cluster, run_setup
from localdev.tunnel import start_tunnel_setup
from localdev.validation import (
    ExecutableNotFoundError,
    LocalDevError,
    TunnelStartError,
)

__all__ = [
    "CertConfig",
    "DomainConfig",
    "DynamoDBConfig",
    "ExecutableNotFoundError",
    "LocalDevError",
    "PortForwardConfig",
    "SetupConfig",
    "TunnelConfig",
    "TunnelStartError",
    "delete_cluster",
    "init_table",
    "run_setup",
    "start_tunnel_setup",
]
