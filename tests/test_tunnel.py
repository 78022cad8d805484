"""Unit tests for the ephemeral Cloudflare tunnel."""

from __future__ import annotations

import datetime as dt
import json
import signal
import typing as typ
from pathlib import Path

import pytest

from localdev import tunnel
from localdev.processes import PidFile
from localdev.validation import TunnelConfigMissingError, TunnelStartError

if typ.TYPE_CHECKING:
    from localdev.config import TunnelConfig
    from tests.conftest import CommandRecorder, PopenRecorder, ProcessTable

TUNNEL_URL = "https://quiet-river-1234.trycloudflare.com"


def _cloudflared_writes(*chunks: bytes) -> typ.Callable[[list[str], dict[str, object]], None]:
    def _write(_args: list[str], kwargs: dict[str, object]) -> None:
        handle = typ.cast("typ.BinaryIO", kwargs["stdout"])
        for chunk in chunks:
            handle.write(chunk)

    return _write


class TestFindTunnelUrl:
    """Tests for find_tunnel_url."""

    def test_finds_first_url_among_binary_noise(self, tmp_path: Path) -> None:
        """The scan should tolerate bytes that are not valid UTF-8."""
        log = tmp_path / "cloudflared.log"
        log.write_bytes(
            b"\x1b[90m2024 INF\xff\xfe Requesting new quick Tunnel\n"
            b"|  " + TUNNEL_URL.encode() + b"  |\n"
            b"|  https://second-one.trycloudflare.com  |\n"
        )
        assert tunnel.find_tunnel_url(log) == TUNNEL_URL

    def test_missing_log(self, tmp_path: Path) -> None:
        """A missing log means no URL yet."""
        assert tunnel.find_tunnel_url(tmp_path / "absent.log") is None

    def test_ignores_other_hosts(self, tmp_path: Path) -> None:
        """Only trycloudflare.com URLs count."""
        log = tmp_path / "cloudflared.log"
        log.write_text("see https://developers.cloudflare.com/docs\n", encoding="utf-8")
        assert tunnel.find_tunnel_url(log) is None


def test_hostname_strips_scheme() -> None:
    """The hostname is the URL without https://."""
    assert tunnel.hostname_from_url(TUNNEL_URL) == "quiet-river-1234.trycloudflare.com"


class TestTunnelEnvFile:
    """Tests for rendering and reading the tunnel env file."""

    def test_render_contains_expected_keys(self, tunnel_config: TunnelConfig) -> None:
        """Every consumer key should be present with derived values."""
        host = "quiet-river-1234.trycloudflare.com"
        text = tunnel.render_tunnel_env(
            tunnel_config, host, dt.datetime(2024, 5, 1, 12, 0, tzinfo=dt.UTC)
        )
        values = {
            key: value
            for key, _, value in (
                line.partition("=") for line in text.splitlines() if line and not line.startswith("#")
            )
        }
        assert values == {
            "TUNNEL_URL": host,
            "TWITCH_REDIRECT_URI": f"https://{host}/oauth/twitch",
            "HOST": host,
            "NEXT_PUBLIC_API_URL": "http://localhost:8082",
            "NEXT_PUBLIC_WS_URL": "ws://localhost:8083",
            "TWITCH_CLIENT_ID": tunnel_config.twitch_client_id,
        }
        assert f"# Tunnel URL: https://{host}" in text
        assert text.endswith("# WARNING: This is an ephemeral tunnel - URL will change on restart!\n")

    def test_write_then_read_hostname(self, tunnel_config: TunnelConfig) -> None:
        """The hostname written should be read back."""
        tunnel.write_tunnel_env(tunnel_config, "abc.trycloudflare.com")
        assert tunnel.read_tunnel_hostname(tunnel_config) == "abc.trycloudflare.com"

    def test_read_without_file(self, tunnel_config: TunnelConfig) -> None:
        """No env file means no hostname."""
        assert tunnel.read_tunnel_hostname(tunnel_config) is None

    def test_parse_ignores_comments_and_blanks(self, tmp_path: Path) -> None:
        """Comments and blank lines are skipped."""
        env = tmp_path / "x.env"
        env.write_text("# c\n\nA=1\nB = two\nnot a pair\n", encoding="utf-8")
        assert tunnel.parse_env_file(env) == {"A": "1", "B": "two"}


class TestStartTunnel:
    """Tests for start_tunnel."""

    def test_discovers_url_and_records_pid(
        self,
        tunnel_config: TunnelConfig,
        popen_recorder: PopenRecorder,
        sleeps: list[float],
    ) -> None:
        """The URL from the log should be returned and the PID saved."""
        popen_recorder.on_start = _cloudflared_writes(
            b"INF Thank you for trying Cloudflare Tunnel\n",
            f"INF |  {TUNNEL_URL}  |\n".encode(),
        )

        session = tunnel.start_tunnel(tunnel_config)

        assert session.url == TUNNEL_URL
        assert session.hostname == "quiet-river-1234.trycloudflare.com"
        assert PidFile(tunnel_config.pid_file).read() == [session.pid]
        assert popen_recorder.started[0].args == [
            "cloudflared",
            "tunnel",
            "--url",
            "http://localhost:8080",
        ]
        assert sleeps[:2] == [tunnel_config.startup_delay, tunnel_config.url_interval]

    def test_gives_up_and_stops_process(
        self,
        tunnel_config: TunnelConfig,
        popen_recorder: PopenRecorder,
        process_table: ProcessTable,
        sleeps: list[float],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Without a URL the process is terminated and no PID file is left."""
        popen_recorder.on_start = _cloudflared_writes(b"ERR failed to connect\n")

        with pytest.raises(TunnelStartError):
            tunnel.start_tunnel(tunnel_config)

        child = popen_recorder.started[0]
        assert process_table.signalled(signal.SIGTERM) == [child.pid]
        assert not tunnel_config.pid_file.exists()
        assert sleeps.count(tunnel_config.url_interval) == tunnel_config.url_attempts
        out = capsys.readouterr().out
        assert f"after {tunnel_config.url_attempts} attempts" in out
        assert "ERR failed to connect" in out

    def test_reports_progress_every_fifth_attempt(
        self,
        tunnel_config: TunnelConfig,
        popen_recorder: PopenRecorder,
        sleeps: list[float],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Progress lines should appear at attempts 5, 10, ... only."""
        popen_recorder.on_start = _cloudflared_writes(b"line one\nline two\n")

        with pytest.raises(TunnelStartError):
            tunnel.start_tunnel(tunnel_config)

        out = capsys.readouterr().out
        expected = tunnel_config.url_attempts // tunnel_config.progress_every
        assert out.count("Still waiting for tunnel URL") == expected
        assert "(attempt 5/30)" in out
        assert "(attempt 4/30)" not in out
        assert "Log file size: 2 lines" in out


class TestStopTunnel:
    """Tests for stop_tunnel."""

    def test_stops_recorded_process(
        self,
        tunnel_config: TunnelConfig,
        run_recorder: CommandRecorder,
        process_table: ProcessTable,
        sleeps: list[float],
    ) -> None:
        """The recorded PID is signalled, stray tunnels swept and the route deleted."""
        process_table.alive.add(4242)
        PidFile(tunnel_config.pid_file).write(4242)

        tunnel.stop_tunnel(tunnel_config)

        assert process_table.signalled(signal.SIGTERM) == [4242]
        assert not tunnel_config.pid_file.exists()
        assert run_recorder.commands("pkill") == [("pkill", "-f", "cloudflared tunnel")]
        assert run_recorder.ran(
            "kubectl", "delete", "ingressroute", "raidhelper-tunnel-ingress"
        )

    def test_missing_route_is_logged(
        self,
        tunnel_config: TunnelConfig,
        run_recorder: CommandRecorder,
        process_table: ProcessTable,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Stopping with nothing running should warn but not fail."""
        run_recorder.on("kubectl", "delete", returncode=1)

        tunnel.stop_tunnel(tunnel_config)

        out = capsys.readouterr().out
        assert "No tunnel PID file found" in out
        assert "No existing tunnel ingress route to clean up" in out

    def test_dead_pid_warns(
        self,
        tunnel_config: TunnelConfig,
        run_recorder: CommandRecorder,
        process_table: ProcessTable,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """A stale PID file is removed with a warning."""
        PidFile(tunnel_config.pid_file).write(999)

        tunnel.stop_tunnel(tunnel_config)

        assert "Tunnel process not running" in capsys.readouterr().out
        assert not tunnel_config.pid_file.exists()
        assert process_table.signals == []


def test_restart_replaces_tunnel_without_prerequisite_checks(
    tunnel_config: TunnelConfig,
    run_recorder: CommandRecorder,
    popen_recorder: PopenRecorder,
    process_table: ProcessTable,
    sleeps: list[float],
) -> None:
    """Restart stops the old PID and records a new tunnel and env file."""
    process_table.alive.add(4242)
    PidFile(tunnel_config.pid_file).write(4242)
    popen_recorder.on_start = _cloudflared_writes(f"INF |  {TUNNEL_URL}  |\n".encode())

    session = tunnel.restart_tunnel(tunnel_config)

    assert process_table.signalled(signal.SIGTERM) == [4242]
    assert not run_recorder.ran("kubectl", "cluster-info")
    assert not run_recorder.ran("kubectl", "get", "namespace")
    (child,) = popen_recorder.started
    assert session.pid == child.pid
    assert PidFile(tunnel_config.pid_file).read() == [child.pid]
    assert tunnel.read_tunnel_hostname(tunnel_config) == "quiet-river-1234.trycloudflare.com"


class TestApplyTunnelConfig:
    """Tests for applying the tunnel configuration."""

    def test_apply_requires_env_file(self, tunnel_config: TunnelConfig) -> None:
        """apply without a started tunnel is an error."""
        with pytest.raises(TunnelConfigMissingError, match="tunnel start"):
            tunnel.apply_config_only(tunnel_config)

    def test_patches_each_deployment_and_warns_on_failure(
        self,
        tunnel_config: TunnelConfig,
        run_recorder: CommandRecorder,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """A missing deployment is skipped with a warning."""
        tunnel.write_tunnel_env(tunnel_config, "abc.trycloudflare.com")
        run_recorder.on("kubectl", "patch", "deployment", "raidhelper-realtime", returncode=1)

        patched = tunnel.apply_config_only(tunnel_config)

        assert patched == ["raidhelper-api", "raidhelper-web"]
        assert "Failed to patch deployment 'raidhelper-realtime'" in capsys.readouterr().out
        assert run_recorder.ran("kubectl", "create", "configmap", "tunnel-config")

    def test_ingress_route_targets_web_entry_point(
        self, tunnel_config: TunnelConfig, run_recorder: CommandRecorder
    ) -> None:
        """The route matches the tunnel host on the plain web entry point."""
        tunnel.create_tunnel_ingress(tunnel_config, "abc.trycloudflare.com")

        manifest = json.loads(run_recorder.inputs("kubectl", "apply")[0])
        assert manifest["kind"] == "IngressRoute"
        assert manifest["spec"]["entryPoints"] == ["web"]
        route = manifest["spec"]["routes"][0]
        assert route["match"] == "Host(`abc.trycloudflare.com`)"
        assert route["services"] == [{"name": "raidhelper-web-service", "port": 80}]
        assert "tls" not in manifest["spec"]


class TestTunnelStatus:
    """Tests for show_status."""

    def test_running(
        self,
        tunnel_config: TunnelConfig,
        process_table: ProcessTable,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """A live PID shows the URLs from the env file."""
        process_table.alive.add(77)
        PidFile(tunnel_config.pid_file).write(77)
        tunnel.write_tunnel_env(tunnel_config, "abc.trycloudflare.com")

        assert tunnel.show_status(tunnel_config)

        out = capsys.readouterr().out
        assert "Tunnel is running (PID: 77)" in out
        assert "https://abc.trycloudflare.com/oauth/twitch" in out

    def test_not_running(
        self,
        tunnel_config: TunnelConfig,
        process_table: ProcessTable,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """No PID file means no tunnel."""
        assert not tunnel.show_status(tunnel_config)
        assert "No tunnel is currently running" in capsys.readouterr().out


def test_tunnel_certificate(
    tunnel_config: TunnelConfig, run_recorder: CommandRecorder, all_tools: None
) -> None:
    """A self-signed certificate is stored as a secret and copied locally."""

    def _write_pem(args: tuple[str, ...]) -> None:
        Path(args[args.index("-out") + 1]).write_text("CERT", encoding="utf-8")
        Path(args[args.index("-keyout") + 1]).write_text("KEY", encoding="utf-8")

    run_recorder.on("openssl", effect=_write_pem)

    saved = tunnel.create_tunnel_certificate(tunnel_config, "abc.trycloudflare.com")

    req = run_recorder.commands("openssl")[0]
    assert req[:8] == ("openssl", "req", "-x509", "-nodes", "-days", "365", "-newkey", "rsa:2048")
    assert "subjectAltName=DNS:abc.trycloudflare.com,DNS:*.trycloudflare.com" in req
    assert run_recorder.ran("kubectl", "create", "secret", "tls", "tunnel-tls")
    assert saved.parent == tunnel_config.cert_dir
    assert saved.name.startswith("tunnel-")
    assert saved.read_text(encoding="utf-8") == "CERT"
