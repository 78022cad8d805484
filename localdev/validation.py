"""Exceptions and small validation helpers shared across localdev.

Custom Exceptions
-----------------
- ``LocalDevError``: Base exception for all package errors
- ``ExecutableNotFoundError``: A required CLI tool is missing from PATH
- ``ClusterUnavailableError``: ``kubectl cluster-info`` failed
- ``NamespaceMissingError``: A namespace the command depends on is absent
- ``SecretDecodeError``: A Kubernetes secret value could not be decoded
- ``RequirementsError``: Prerequisite tools could not be installed
- ``InfrastructureError``: A step of the infrastructure deployment failed
- ``TunnelStartError``: cloudflared never published a tunnel URL
- ``TunnelConfigMissingError``: The tunnel environment file does not exist
- ``LocalStackUnavailableError``: LocalStack DynamoDB never became ready

Utilities
---------
- ``require_exe``: Verifies a CLI tool is available on PATH
- ``port_in_use``: Reports whether something listens on a loopback port
- ``b64decode_k8s_secret_field``: Decodes base64-encoded secret values

"""

from __future__ import annotations

import base64
import shutil
import socket

_MIN_PORT = 1
_MAX_PORT = 65535


class LocalDevError(Exception):
    """Base exception for all localdev errors."""


class ExecutableNotFoundError(LocalDevError):
    """Required CLI tool is not installed."""


class ClusterUnavailableError(LocalDevError):
    """The Kubernetes API server cannot be reached."""


class NamespaceMissingError(LocalDevError):
    """A required Kubernetes namespace does not exist."""


class SecretDecodeError(LocalDevError):
    """Failed to decode a Kubernetes secret field."""


class RequirementsError(LocalDevError):
    """Prerequisite tools are missing and were not installed."""


class InfrastructureError(LocalDevError):
    """An infrastructure deployment step failed."""


class TunnelStartError(LocalDevError):
    """cloudflared did not report a tunnel URL in time."""


class TunnelConfigMissingError(LocalDevError):
    """No tunnel environment file has been generated yet."""


class LocalStackUnavailableError(LocalDevError):
    """LocalStack did not answer DynamoDB requests in time."""


def require_exe(name: str, hint: str | None = None) -> None:
    """Verify a CLI tool is available in PATH.

    Parameters
    ----------
    name : str
        Name of the executable to check for.
    hint : str | None, optional
        Install instructions appended to the error message.

    Raises
    ------
    ExecutableNotFoundError
        If the executable is not found in PATH.

    """
    if shutil.which(name) is None:
        msg = f"Required executable '{name}' not found in PATH"
        if hint:
            msg = f"{msg}. Install it with: {hint}"
        raise ExecutableNotFoundError(msg)


def port_in_use(port: int, host: str = "127.0.0.1") -> bool:
    """Return True when a TCP listener accepts connections on ``host:port``.

    Raises
    ------
    ValueError
        If ``port`` is outside 1-65535.

    """
    if not _MIN_PORT <= port <= _MAX_PORT:
        msg = f"port must be between {_MIN_PORT} and {_MAX_PORT}, got {port}"
        raise ValueError(msg)

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(0.5)
        return sock.connect_ex((host, port)) == 0


def b64decode_k8s_secret_field(b64_text: str) -> str:
    """Decode a base64-encoded Kubernetes secret value.

    Raises
    ------
    SecretDecodeError
        If the input is not valid base64 or not UTF-8 text.

    """
    try:
        return base64.b64decode(b64_text, validate=True).decode("utf-8")
    except (ValueError, UnicodeDecodeError) as e:
        msg = f"Failed to decode secret field: {e}"
        raise SecretDecodeError(msg) from e
