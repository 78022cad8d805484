"""Unit tests for minikube lifecycle operations."""

from __future__ import annotations

import typing as typ

from localdev import minikube
from localdev.config import MinikubeConfig

if typ.TYPE_CHECKING:
    from cmd_mox import CmdMox

    from tests.conftest import CommandRecorder


def test_is_running_when_host_and_kubelet_run(cmd_mox: CmdMox) -> None:
    """Both components must report Running."""
    cmd_mox.mock("minikube").with_args("status").returns(
        exit_code=0,
        stdout="minikube\ntype: Control Plane\nhost: Running\nkubelet: Running\n",
    )
    assert minikube.is_running()


def test_stopped_host_is_not_running(cmd_mox: CmdMox) -> None:
    """minikube status exits non-zero for a stopped cluster."""
    cmd_mox.mock("minikube").with_args("status").returns(
        exit_code=7, stdout="host: Stopped\nkubelet: Stopped\n"
    )
    assert not minikube.is_running()


class TestConfigureMinikube:
    """Tests for configure_minikube."""

    def test_running_cluster_is_left_alone(self, run_recorder: CommandRecorder) -> None:
        """Nothing else runs when the cluster is already up."""
        run_recorder.on("minikube", "status", stdout="host: Running\nkubelet: Running\n")

        assert minikube.configure_minikube(MinikubeConfig()) == "running"
        assert [call.args for call in run_recorder.calls] == [("minikube", "status")]

    def test_stopped_cluster_is_started(self, run_recorder: CommandRecorder) -> None:
        """An existing profile is started without reconfiguring."""
        run_recorder.on("minikube", "status", returncode=7, stdout="host: Stopped\n")
        run_recorder.on("minikube", "profile", "list", stdout="| minikube | docker |\n")

        assert minikube.configure_minikube(MinikubeConfig()) == "started"
        assert run_recorder.ran("minikube", "start")
        assert not run_recorder.ran("minikube", "config")

    def test_fresh_cluster_is_configured(self, run_recorder: CommandRecorder) -> None:
        """A new cluster gets resources, a start and its addons."""
        run_recorder.on("minikube", "status", returncode=85)
        run_recorder.on("minikube", "profile", "list", returncode=0, stdout="")

        assert minikube.configure_minikube(MinikubeConfig(cpus=4, memory_mb=4096)) == "created"
        assert [call.args[1:] for call in run_recorder.calls[2:]] == [
            ("config", "set", "cpus", "4"),
            ("config", "set", "memory", "4096"),
            ("config", "set", "driver", "docker"),
            ("start",),
            ("addons", "enable", "ingress"),
            ("addons", "enable", "metrics-server"),
        ]
