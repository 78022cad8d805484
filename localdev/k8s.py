"""Kubernetes operations through kubectl.

Every helper shells out to ``kubectl`` against the current context (the
minikube cluster after ``setup``). Creation goes through the dry-run + apply
pattern so repeated runs upsert instead of failing, and deletions treat a
missing object as success.

Examples
--------
Create or update a TLS secret from files on disk:

    apply_tls_secret("raidhelper-local-tls", cert, key, "apps")

Wait for a deployment, tolerating failure:

    wait_for_condition("deployment/grafana", "monitoring", "available",
                       timeout=300, check=False)

"""

from __future__ import annotations

import json
import re
import subprocess
import typing as typ

from localdev.logging import get_logger, log_debug, log_warning
from localdev.validation import (
    ClusterUnavailableError,
    NamespaceMissingError,
    b64decode_k8s_secret_field,
    require_exe,
)

if typ.TYPE_CHECKING:
    from pathlib import Path

logger = get_logger(__name__)

# Kubernetes secret keys must contain only alphanumeric, dot, underscore, or hyphen
_SECRET_KEY_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")

_MIN_WAIT_TIMEOUT = 1
_MAX_WAIT_TIMEOUT = 3600

_KUBECTL_TIMEOUT = 30
_APPLY_TIMEOUT = 60


def kubectl(
    *args: str,
    input_text: str | None = None,
    check: bool = True,
    capture: bool = True,
    timeout: float = _KUBECTL_TIMEOUT,
) -> subprocess.CompletedProcess[str]:
    """Run ``kubectl`` with ``args`` and return the completed process."""
    log_debug(logger, "kubectl %s", " ".join(args))
    # S603/S607: kubectl via PATH is standard; args built internally
    return subprocess.run(  # noqa: S603
        ["kubectl", *args],  # noqa: S607
        input=input_text,
        capture_output=capture,
        text=True,
        check=check,
        timeout=timeout,
    )


def cluster_reachable() -> bool:
    """Return True when ``kubectl cluster-info`` succeeds."""
    try:
        result = kubectl("cluster-info", check=False)
    except subprocess.TimeoutExpired:
        return False
    return result.returncode == 0


def namespace_exists(namespace: str) -> bool:
    """Check if a Kubernetes namespace exists."""
    result = kubectl("get", "namespace", namespace, check=False)
    return result.returncode == 0


def resource_exists(kind: str, name: str, namespace: str) -> bool:
    """Check if ``kind/name`` exists in ``namespace``."""
    result = kubectl("get", kind, name, "-n", namespace, check=False)
    return result.returncode == 0


def ensure_cluster_access(namespace: str) -> None:
    """Verify kubectl is installed, the cluster answers and ``namespace`` exists.

    Raises
    ------
    ExecutableNotFoundError
        If kubectl is not on PATH.
    ClusterUnavailableError
        If the API server cannot be reached.
    NamespaceMissingError
        If the namespace has not been created by ``setup`` yet.

    """
    require_exe("kubectl")
    if not cluster_reachable():
        msg = (
            "Cannot connect to Kubernetes cluster. "
            "Make sure minikube is running: minikube start"
        )
        raise ClusterUnavailableError(msg)
    if not namespace_exists(namespace):
        msg = f"Namespace '{namespace}' does not exist. Please run setup first: make setup"
        raise NamespaceMissingError(msg)


def apply_manifest(manifest: str) -> None:
    """Apply a YAML or JSON manifest read from stdin."""
    kubectl("apply", "-f", "-", input_text=manifest, timeout=_APPLY_TIMEOUT)


def apply_path(path: Path) -> None:
    """Apply every manifest in a file or directory."""
    kubectl("apply", "-f", str(path), timeout=_APPLY_TIMEOUT)


def _render_and_apply(*create_args: str) -> None:
    """Render ``kubectl create ...`` client-side and apply the result."""
    rendered = kubectl(*create_args, "--dry-run=client", "-o", "yaml")
    apply_manifest(rendered.stdout)


def apply_tls_secret(name: str, cert_file: Path, key_file: Path, namespace: str) -> None:
    """Create or update a ``kubernetes.io/tls`` secret from files."""
    _render_and_apply(
        "create",
        "secret",
        "tls",
        name,
        f"--cert={cert_file}",
        f"--key={key_file}",
        "-n",
        namespace,
    )


def apply_configmap_from_env_file(name: str, env_file: Path, namespace: str) -> None:
    """Create or update a ConfigMap whose keys come from a dotenv file."""
    _render_and_apply(
        "create",
        "configmap",
        name,
        "-n",
        namespace,
        f"--from-env-file={env_file}",
    )


def delete_resource(kind: str, name: str, namespace: str) -> bool:
    """Delete ``kind/name``; return False when it did not exist."""
    result = kubectl("delete", kind, name, "-n", namespace, check=False)
    if result.returncode != 0:
        log_debug(logger, "delete %s/%s failed: %s", kind, name, result.stderr.strip())
        return False
    return True


def wait_for_condition(
    resource: str,
    namespace: str,
    condition: str,
    *,
    timeout: int = 300,
    check: bool = True,
) -> bool:
    """Block until ``resource`` reports ``condition``.

    Parameters
    ----------
    resource : str
        Resource reference such as ``deployment/grafana`` or ``pod/nats-0``.
    namespace : str
        Namespace of the resource.
    condition : str
        Condition name passed to ``--for=condition=``.
    timeout : int, default 300
        Seconds kubectl waits. Must be between 1 and 3600.
    check : bool, default True
        Raise on failure instead of returning False.

    Returns
    -------
    bool
        True when the condition was met.

    Raises
    ------
    ValueError
        If timeout is outside the valid range.

    """
    if not _MIN_WAIT_TIMEOUT <= timeout <= _MAX_WAIT_TIMEOUT:
        msg = (
            f"timeout must be between {_MIN_WAIT_TIMEOUT} and "
            f"{_MAX_WAIT_TIMEOUT} seconds, got {timeout}"
        )
        raise ValueError(msg)

    # Buffer the subprocess timeout beyond kubectl's own --timeout
    try:
        result = kubectl(
            "wait",
            f"--for=condition={condition}",
            f"--timeout={timeout}s",
            resource,
            "-n",
            namespace,
            check=check,
            timeout=timeout + 30,
        )
    except subprocess.TimeoutExpired:
        if check:
            raise
        log_warning(logger, "Timed out waiting for %s in %s", resource, namespace)
        return False
    if result.returncode != 0:
        log_warning(logger, "%s in %s is not %s", resource, namespace, condition)
        return False
    return True


def read_secret_field(secret_name: str, field: str, namespace: str) -> str:
    """Read and decode a field from a Kubernetes secret.

    Raises
    ------
    ValueError
        If field is empty, contains invalid characters, or the value is
        empty or missing.

    """
    if not field:
        msg = "field cannot be empty"
        raise ValueError(msg)
    if not _SECRET_KEY_PATTERN.match(field):
        msg = (
            f"field '{field}' contains invalid characters; "
            "only alphanumeric, dot, underscore, and hyphen are allowed"
        )
        raise ValueError(msg)

    # Quote the field name to support dotted keys like "ca.crt"
    jsonpath = f"jsonpath={{.data['{field}']}}"
    result = kubectl("get", "secret", secret_name, "-n", namespace, "-o", jsonpath)

    output = result.stdout.strip()
    if not output:
        msg = (
            f"Secret '{secret_name}' field '{field}' is empty or missing "
            f"in namespace '{namespace}'"
        )
        raise ValueError(msg)

    return b64decode_k8s_secret_field(output)


def _env_from_patch(op: str, configmap_name: str) -> str:
    ref = {"configMapRef": {"name": configmap_name}}
    if op == "add":
        patch = [
            {
                "op": "add",
                "path": "/spec/template/spec/containers/0/envFrom/-",
                "value": ref,
            }
        ]
    else:
        patch = [
            {
                "op": "replace",
                "path": "/spec/template/spec/containers/0/envFrom",
                "value": [ref],
            }
        ]
    return json.dumps(patch)


def patch_deployment_env_from(deployment: str, configmap_name: str, namespace: str) -> bool:
    """Attach a ConfigMap to the first container's ``envFrom``.

    Appends a ``configMapRef``; when the deployment has no ``envFrom`` list
    the append fails and the whole list is replaced instead.

    Returns
    -------
    bool
        False when both patches failed, typically because the deployment
        does not exist yet.

    """
    for op in ("add", "replace"):
        result = kubectl(
            "patch",
            "deployment",
            deployment,
            "-n",
            namespace,
            "--type=json",
            f"-p={_env_from_patch(op, configmap_name)}",
            check=False,
        )
        if result.returncode == 0:
            return True
        log_debug(
            logger,
            "%s patch of %s failed: %s",
            op,
            deployment,
            (result.stderr or "").strip(),
        )
    return False
