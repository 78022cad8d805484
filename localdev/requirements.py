"""Prerequisite CLI tools: detection, install hints and installation.

On macOS tools come from Homebrew. On Linux each tool has a fixed shell
recipe that downloads a release binary into ``/usr/local/bin`` with ``sudo``.
Tools without an automated route (Docker Desktop on macOS, Go on Linux) have
to be installed by hand.
"""

from __future__ import annotations

import os
import platform
import shutil
import subprocess

from localdev import console
from localdev.logging import get_logger, log_warning
from localdev.validation import RequirementsError

logger = get_logger(__name__)

REQUIRED_TOOLS: tuple[str, ...] = (
    "docker",
    "minikube",
    "kubectl",
    "helm",
    "helmfile",
    "argocd",
    "telepresence",
    "linkerd",
    "go",
    "curl",
)

_INSTALL_TIMEOUT = 1800

_HOMEBREW_INSTALL = (
    '/bin/bash -c "$(curl -fsSL '
    'https://raw.githubusercontent.com/Homebrew/install/HEAD/install.sh)"'
)

_BREW_FORMULAE: dict[str, str] = {
    "minikube": "minikube",
    "kubectl": "kubectl",
    "helm": "helm",
    "helmfile": "helmfile",
    "argocd": "argocd",
    "telepresence": "datawire/blackbird/telepresence",
    "linkerd": "linkerd",
    "go": "go",
    "curl": "curl",
}

_KUBECTL_URL = (
    "https://dl.k8s.io/release/$(curl -L -s https://dl.k8s.io/release/stable.txt)"
    "/bin/linux/amd64/kubectl"
)

_LINUX_HINTS: dict[str, str] = {
    "docker": "curl -fsSL https://get.docker.com | sh",
    "minikube": (
        "curl -LO https://storage.googleapis.com/minikube/releases/latest/minikube-linux-amd64"
        " && sudo install minikube-linux-amd64 /usr/local/bin/minikube"
    ),
    "kubectl": f"curl -LO {_KUBECTL_URL} && sudo install kubectl /usr/local/bin/",
    "helm": (
        "curl https://get.helm.sh/helm-v3.13.0-linux-amd64.tar.gz"
        " | tar -xzO linux-amd64/helm | sudo tee /usr/local/bin/helm > /dev/null"
        " && sudo chmod +x /usr/local/bin/helm"
    ),
    "helmfile": (
        "curl -L https://github.com/helmfile/helmfile/releases/download/v0.158.0/"
        "helmfile_0.158.0_linux_amd64.tar.gz"
        " | tar -xzO helmfile | sudo tee /usr/local/bin/helmfile > /dev/null"
        " && sudo chmod +x /usr/local/bin/helmfile"
    ),
    "argocd": (
        "curl -sSL https://github.com/argoproj/argo-cd/releases/latest/download/"
        "argocd-linux-amd64 -o argocd && sudo install argocd /usr/local/bin/"
    ),
    "telepresence": (
        "sudo curl -fL https://app.getambassador.io/download/tel2oss/releases/download/"
        "v2.18.0/telepresence-linux-amd64 -o /usr/local/bin/telepresence"
        " && sudo chmod +x /usr/local/bin/telepresence"
    ),
    "linkerd": "curl -sSL https://run.linkerd.io/install | sh",
    "go": "Visit https://golang.org/dl/ to download and install Go",
    "curl": "sudo apt-get install -y curl",
}

# Scripts run by ``bash -c``; tools missing here need manual installation.
_LINUX_SCRIPTS: dict[str, str] = {
    "docker": "curl -fsSL https://get.docker.com | sh && sudo usermod -aG docker \"$USER\"",
    "minikube": _LINUX_HINTS["minikube"] + " && rm -f minikube-linux-amd64",
    "kubectl": _LINUX_HINTS["kubectl"] + " && rm -f kubectl",
    "helm": _LINUX_HINTS["helm"],
    "helmfile": _LINUX_HINTS["helmfile"],
    "argocd": _LINUX_HINTS["argocd"] + " && rm -f argocd",
    "telepresence": _LINUX_HINTS["telepresence"],
    "linkerd": _LINUX_HINTS["linkerd"],
}

_MANUAL_ONLY: dict[tuple[str, str], str] = {
    ("macos", "docker"): "Docker Desktop must be installed manually from "
    "https://docs.docker.com/desktop/mac/install/",
    ("linux", "go"): "Go must be installed manually from https://golang.org/dl/",
}


def detect_os() -> str:
    """Return ``"macos"``, ``"linux"`` or ``"unknown"``."""
    match platform.system():
        case "Darwin":
            return "macos"
        case "Linux":
            return "linux"
        case _:
            return "unknown"


def command_exists(name: str) -> bool:
    """Return True when ``name`` resolves on PATH."""
    return shutil.which(name) is not None


def missing_tools(tools: tuple[str, ...] = REQUIRED_TOOLS) -> list[str]:
    """Report each tool's presence and return those not on PATH."""
    missing: list[str] = []
    for tool in tools:
        if command_exists(tool):
            console.success(f"{tool} is installed")
        else:
            console.warn(f"{tool} is not installed")
            missing.append(tool)
    return missing


def install_hint(tool: str, os_name: str) -> str:
    """Return a human-readable install command for ``tool`` on ``os_name``."""
    if tool == "docker":
        if os_name == "macos":
            return "Install Docker Desktop from https://docs.docker.com/desktop/mac/install/"
        if os_name == "linux":
            return _LINUX_HINTS["docker"]
        return "Visit https://docs.docker.com/get-docker/"
    if tool not in _BREW_FORMULAE:
        return f"Unknown tool: {tool}"
    if os_name == "macos":
        return f"brew install {_BREW_FORMULAE[tool]}"
    if os_name == "linux":
        return _LINUX_HINTS[tool]
    return f"Install {tool} using your system package manager"


def _run_install(args: list[str]) -> bool:
    try:
        # S603: install commands are fixed recipes, not user input
        result = subprocess.run(  # noqa: S603
            args, check=False, timeout=_INSTALL_TIMEOUT
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        log_warning(logger, "Install command %s failed: %s", args[0], exc)
        return False
    return result.returncode == 0


def _ensure_linkerd_on_path() -> None:
    linkerd_bin = os.path.expanduser("~/.linkerd2/bin")
    path = os.environ.get("PATH", "")
    if linkerd_bin not in path.split(os.pathsep):
        os.environ["PATH"] = f"{path}{os.pathsep}{linkerd_bin}"
        console.info(f"Added {linkerd_bin} to PATH for this run.")
        console.info("Add it to your shell profile to keep it after restarting your terminal.")


def install_tool(tool: str, os_name: str) -> bool:
    """Install ``tool`` and verify it is now on PATH.

    Returns
    -------
    bool
        True when the tool is available afterwards.

    """
    console.info(f"Installing {tool}...")
    if (os_name, tool) in _MANUAL_ONLY:
        console.error(_MANUAL_ONLY[os_name, tool])
        return False

    if os_name == "macos":
        if not command_exists("brew"):
            console.error(f"Homebrew is required to install {tool} on macOS")
            return False
        ok = _run_install(["brew", "install", _BREW_FORMULAE[tool]])
    elif os_name == "linux" and tool in _LINUX_SCRIPTS:
        ok = _run_install(["bash", "-c", _LINUX_SCRIPTS[tool]])
        if ok and tool == "docker":
            console.warn("Please log out and back in for Docker group membership to take effect")
        if ok and tool == "linkerd":
            _ensure_linkerd_on_path()
    else:
        console.error(f"Don't know how to install {tool} on {os_name}")
        return False

    if ok and command_exists(tool):
        console.success(f"{tool} installed successfully")
        return True
    console.error(f"Failed to install {tool}")
    return False


def _offer_homebrew(assume_yes: bool) -> None:
    console.warn("Homebrew is not installed. Most tools require Homebrew on macOS.")
    if not console.confirm("Would you like to install Homebrew first?", assume_yes=assume_yes):
        return
    console.info("Installing Homebrew...")
    if not _run_install(["bash", "-c", _HOMEBREW_INSTALL]) or not command_exists("brew"):
        msg = "Failed to install Homebrew. Please install it manually and run setup again."
        raise RequirementsError(msg)
    console.success("Homebrew installed successfully!")


def _format_hints(tools: list[str], os_name: str) -> str:
    return "\n".join(f"  • {tool}: {install_hint(tool, os_name)}" for tool in tools)


def check_requirements(*, assume_yes: bool = False, os_name: str | None = None) -> None:
    """Ensure every required tool is installed, offering to install missing ones.

    Raises
    ------
    RequirementsError
        If the user declines installation or any installation fails. The
        message lists the manual install hints.

    """
    console.header("CHECKING REQUIREMENTS")
    os_name = os_name or detect_os()
    missing = missing_tools()
    if not missing:
        console.success("All required tools are available!")
        return

    print()
    console.warn(f"Found {len(missing)} missing tools:")
    print(_format_hints(missing, os_name))
    print()

    if os_name == "macos" and not command_exists("brew"):
        _offer_homebrew(assume_yes)

    if not console.confirm(
        "Would you like localdev to automatically install the missing tools?",
        assume_yes=assume_yes,
    ):
        msg = "Please install the missing tools manually and run setup again:\n" + _format_hints(
            missing, os_name
        )
        raise RequirementsError(msg)

    console.header("INSTALLING MISSING TOOLS")
    failed = [tool for tool in missing if not install_tool(tool, os_name)]
    if failed:
        msg = "Failed to install the following tools:\n" + _format_hints(failed, os_name)
        raise RequirementsError(msg)

    console.success("All missing tools installed successfully!")
    if os_name == "macos":
        console.info(
            "You may need to restart your terminal or run 'source ~/.zshrc' to update your PATH"
        )
    console.success("All required tools are available!")
