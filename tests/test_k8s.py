"""Unit tests for localdev Kubernetes operations."""

from __future__ import annotations

import json
import typing as typ
from pathlib import Path

import pytest

from localdev.k8s import (
    apply_configmap_from_env_file,
    apply_tls_secret,
    delete_resource,
    ensure_cluster_access,
    namespace_exists,
    patch_deployment_env_from,
    read_secret_field,
    wait_for_condition,
)
from localdev.validation import ClusterUnavailableError, NamespaceMissingError

if typ.TYPE_CHECKING:
    from cmd_mox import CmdMox

    from tests.conftest import CommandRecorder


class TestReadSecretField:
    """Tests for read_secret_field validation and decoding."""

    def test_decodes_base64_secret(self, cmd_mox: CmdMox) -> None:
        """Should decode the base64-encoded value."""
        # "secretvalue" base64 encoded
        cmd_mox.mock("kubectl").with_args(
            "get",
            "secret",
            "argocd-initial-admin-secret",
            "-n",
            "argocd",
            "-o",
            "jsonpath={.data['password']}",
        ).returns(exit_code=0, stdout="c2VjcmV0dmFsdWU=")

        result = read_secret_field("argocd-initial-admin-secret", "password", "argocd")

        assert result == "secretvalue"

    def test_raises_on_empty_field(self) -> None:
        """Should raise ValueError when field is empty."""
        with pytest.raises(ValueError, match="field cannot be empty"):
            read_secret_field("my-secret", "", "apps")

    @pytest.mark.parametrize("field", ["password'", "field]name", "has space"])
    def test_raises_on_invalid_field_characters(self, field: str) -> None:
        """Should raise ValueError when field contains invalid characters."""
        with pytest.raises(ValueError, match="invalid characters"):
            read_secret_field("my-secret", field, "apps")

    def test_raises_on_empty_output(self, run_recorder: CommandRecorder) -> None:
        """Should raise ValueError when kubectl prints nothing."""
        run_recorder.on("kubectl", "get", "secret", stdout="\n")
        with pytest.raises(ValueError, match="empty or missing"):
            read_secret_field("my-secret", "password", "apps")


class TestNamespaceExists:
    """Tests for namespace_exists."""

    def test_returns_true_when_found(self, cmd_mox: CmdMox) -> None:
        """Should return True when kubectl finds the namespace."""
        cmd_mox.mock("kubectl").with_args("get", "namespace", "apps").returns(
            exit_code=0, stdout="apps   Active   1d"
        )
        assert namespace_exists("apps")

    def test_returns_false_when_missing(self, cmd_mox: CmdMox) -> None:
        """Should return False when kubectl exits non-zero."""
        cmd_mox.mock("kubectl").with_args("get", "namespace", "apps").returns(exit_code=1)
        assert not namespace_exists("apps")


class TestEnsureClusterAccess:
    """Tests for ensure_cluster_access."""

    def test_raises_when_cluster_unreachable(
        self, run_recorder: CommandRecorder, all_tools: None
    ) -> None:
        """Should raise ClusterUnavailableError when cluster-info fails."""
        run_recorder.on("kubectl", "cluster-info", returncode=1)
        with pytest.raises(ClusterUnavailableError, match="minikube start"):
            ensure_cluster_access("apps")

    def test_raises_when_namespace_missing(
        self, run_recorder: CommandRecorder, all_tools: None
    ) -> None:
        """Should raise NamespaceMissingError naming the namespace."""
        run_recorder.on("kubectl", "get", "namespace", returncode=1)
        with pytest.raises(NamespaceMissingError, match="'apps'"):
            ensure_cluster_access("apps")


class TestIdempotentApply:
    """Secrets and ConfigMaps are rendered client-side and applied."""

    def test_tls_secret_is_rendered_then_applied(
        self, run_recorder: CommandRecorder
    ) -> None:
        """Should pipe the dry-run output into kubectl apply."""
        run_recorder.on("kubectl", "create", stdout="kind: Secret\n")

        apply_tls_secret("raidhelper-local-tls", Path("c.crt"), Path("c.key"), "apps")

        assert run_recorder.commands("kubectl", "create") == [
            (
                "kubectl",
                "create",
                "secret",
                "tls",
                "raidhelper-local-tls",
                "--cert=c.crt",
                "--key=c.key",
                "-n",
                "apps",
                "--dry-run=client",
                "-o",
                "yaml",
            )
        ]
        assert run_recorder.inputs("kubectl", "apply") == ["kind: Secret\n"]

    def test_configmap_from_env_file(self, run_recorder: CommandRecorder) -> None:
        """Should create the ConfigMap from the dotenv file."""
        apply_configmap_from_env_file("tunnel-config", Path("config/tunnel.env"), "apps")

        create = run_recorder.commands("kubectl", "create", "configmap")[0]
        assert "--from-env-file=config/tunnel.env" in create
        assert run_recorder.ran("kubectl", "apply", "-f", "-")


def test_delete_missing_resource_is_not_an_error(run_recorder: CommandRecorder) -> None:
    """Deleting an absent object should return False instead of raising."""
    run_recorder.on("kubectl", "delete", returncode=1, stderr="NotFound")
    assert delete_resource("ingressroute", "raidhelper-tunnel-ingress", "apps") is False


class TestWaitForCondition:
    """Tests for wait_for_condition."""

    def test_builds_wait_command(self, run_recorder: CommandRecorder) -> None:
        """Should pass condition, timeout and namespace to kubectl wait."""
        assert wait_for_condition("pod/nats-0", "nats", "ready", timeout=300)
        assert run_recorder.commands("kubectl", "wait") == [
            (
                "kubectl",
                "wait",
                "--for=condition=ready",
                "--timeout=300s",
                "pod/nats-0",
                "-n",
                "nats",
            )
        ]

    def test_tolerates_failure_when_unchecked(self, run_recorder: CommandRecorder) -> None:
        """Should return False instead of raising when check=False."""
        run_recorder.on("kubectl", "wait", returncode=1)
        assert not wait_for_condition(
            "deployment/grafana", "monitoring", "available", check=False
        )

    @pytest.mark.parametrize("timeout", [0, 3601])
    def test_rejects_invalid_timeout(self, timeout: int) -> None:
        """Should validate the timeout range."""
        with pytest.raises(ValueError, match="timeout must be between"):
            wait_for_condition("deployment/x", "ns", "available", timeout=timeout)


class TestPatchDeploymentEnvFrom:
    """Tests for patch_deployment_env_from."""

    def test_add_succeeds(self, run_recorder: CommandRecorder) -> None:
        """Should stop after a successful add patch."""
        assert patch_deployment_env_from("raidhelper-api", "tunnel-config", "apps")
        patches = run_recorder.commands("kubectl", "patch")
        assert len(patches) == 1
        payload = json.loads(patches[0][-1].removeprefix("-p="))
        assert payload[0]["op"] == "add"
        assert payload[0]["value"] == {"configMapRef": {"name": "tunnel-config"}}

    def test_falls_back_to_replace(self, run_recorder: CommandRecorder) -> None:
        """Should replace envFrom when appending fails."""
        run_recorder.on("kubectl", "patch", returncode=[1, 0])
        assert patch_deployment_env_from("raidhelper-web", "tunnel-config", "apps")
        ops = [
            json.loads(call[-1].removeprefix("-p="))[0]["op"]
            for call in run_recorder.commands("kubectl", "patch")
        ]
        assert ops == ["add", "replace"]

    def test_reports_failure(self, run_recorder: CommandRecorder) -> None:
        """Should return False when both patches fail."""
        run_recorder.on("kubectl", "patch", returncode=1)
        assert not patch_deployment_env_from("missing", "tunnel-config", "apps")
