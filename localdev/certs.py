"""Self-signed HTTPS certificates for ``raidhelper.local``.

The certificate is generated with the host ``openssl`` binary, stored as a
TLS secret in the cluster, trusted by the local machine and served by a
Traefik IngressRoute on the ``websecure`` entry point.
"""

from __future__ import annotations

import json
import shutil
import subprocess
import tempfile
import typing as typ
from pathlib import Path

from localdev import console
from localdev.k8s import (
    apply_manifest,
    apply_tls_secret,
    delete_resource,
    ensure_cluster_access,
    resource_exists,
)
from localdev.logging import get_logger, log_debug
from localdev.requirements import detect_os
from localdev.validation import require_exe

if typ.TYPE_CHECKING:
    from localdev.config import CertConfig

logger = get_logger(__name__)

_OPENSSL_TIMEOUT = 60
_SUDO_TIMEOUT = 120


def _openssl(*args: str) -> str:
    log_debug(logger, "openssl %s", " ".join(args))
    # S603/S607: openssl via PATH is standard; args from configuration
    result = subprocess.run(  # noqa: S603
        ["openssl", *args],  # noqa: S607
        capture_output=True,
        text=True,
        check=True,
        timeout=_OPENSSL_TIMEOUT,
    )
    return result.stdout


def _sudo(*args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
    log_debug(logger, "sudo %s", " ".join(args))
    # S603/S607: sudo via PATH is standard; args are fixed paths
    return subprocess.run(  # noqa: S603
        ["sudo", *args],  # noqa: S607
        capture_output=True,
        text=True,
        check=check,
        timeout=_SUDO_TIMEOUT,
    )


def subject_alt_names(cfg: CertConfig) -> list[str]:
    """Return SAN entries: the domain, its wildcard and the configured IPs."""
    names = [f"DNS:{cfg.domain}", f"DNS:*.{cfg.domain}"]
    names.extend(f"IP:{ip}" for ip in cfg.ip_addresses)
    return names


def v3_extension_config(cfg: CertConfig) -> str:
    """Render the ``v3_req`` extension section used when self-signing."""
    lines = ["[v3_req]", "subjectAltName = @alt_names", "[alt_names]"]
    lines.append(f"DNS.1 = {cfg.domain}")
    lines.append(f"DNS.2 = *.{cfg.domain}")
    lines.extend(f"IP.{index} = {ip}" for index, ip in enumerate(cfg.ip_addresses, start=1))
    return "\n".join(lines) + "\n"


def check_prerequisites(cfg: CertConfig) -> None:
    """Verify openssl, kubectl, cluster access and the namespace."""
    require_exe("openssl", hint="brew install openssl")
    console.success("openssl is available")
    ensure_cluster_access(cfg.namespace)
    console.success(f"Connected to Kubernetes cluster, namespace '{cfg.namespace}' exists")


def generate_certificate(cfg: CertConfig) -> tuple[Path, Path]:
    """Create the key and a self-signed certificate in ``cfg.cert_dir``.

    Existing files are overwritten. The signing request is removed once the
    certificate is written.

    Returns
    -------
    tuple[Path, Path]
        The key and certificate paths.

    """
    console.info(f"Creating certificate directory: {cfg.cert_dir}")
    cfg.cert_dir.mkdir(parents=True, exist_ok=True)

    console.info(f"Generating self-signed certificate for {cfg.domain}...")
    _openssl("genrsa", "-out", str(cfg.key_file), str(cfg.key_bits))
    _openssl(
        "req",
        "-new",
        "-key",
        str(cfg.key_file),
        "-out",
        str(cfg.csr_file),
        "-subj",
        f"/CN={cfg.domain}",
        "-addext",
        f"subjectAltName={','.join(subject_alt_names(cfg))}",
    )

    with tempfile.NamedTemporaryFile("w", suffix=".cnf", encoding="utf-8") as extfile:
        extfile.write(v3_extension_config(cfg))
        extfile.flush()
        _openssl(
            "x509",
            "-req",
            "-in",
            str(cfg.csr_file),
            "-signkey",
            str(cfg.key_file),
            "-out",
            str(cfg.cert_file),
            "-days",
            str(cfg.valid_days),
            "-extensions",
            "v3_req",
            "-extfile",
            extfile.name,
        )

    cfg.csr_file.unlink(missing_ok=True)
    console.success(f"Certificate generated: {cfg.cert_file}")
    console.success(f"Private key generated: {cfg.key_file}")
    return cfg.key_file, cfg.cert_file


def install_cluster_certificate(cfg: CertConfig) -> None:
    """Create or update the TLS secret from the generated files."""
    console.info("Installing certificate in Kubernetes cluster...")
    apply_tls_secret(cfg.secret_name, cfg.cert_file, cfg.key_file, cfg.namespace)
    console.success(f"Certificate installed in cluster as secret: {cfg.secret_name}")


def install_local_certificate(cfg: CertConfig, os_name: str | None = None) -> bool:
    """Trust the certificate on this machine.

    Returns
    -------
    bool
        False on an unsupported OS, where the user must install it manually.

    """
    console.info("Installing certificate on local machine...")
    os_name = os_name or detect_os()
    if os_name == "macos":
        console.info("Installing certificate in macOS keychain...")
        _sudo(
            "security",
            "add-trusted-cert",
            "-d",
            "-r",
            "trustRoot",
            "-k",
            cfg.macos_keychain,
            str(cfg.cert_file),
        )
        console.success("Certificate installed in macOS system keychain")
        return True
    if os_name == "linux":
        console.info("Installing certificate in Linux certificate store...")
        _sudo("cp", str(cfg.cert_file), str(cfg.linux_ca_path))
        _sudo("update-ca-certificates")
        console.success("Certificate installed in Linux certificate store")
        return True
    console.warn(f"Unknown OS: {os_name}. Please install certificate manually:")
    console.detail(f"Certificate file: {cfg.cert_file}")
    return False


def local_ingress_manifest(cfg: CertConfig) -> dict[str, typ.Any]:
    """Traefik IngressRoute serving the domain over HTTPS."""
    return {
        "apiVersion": "traefik.io/v1alpha1",
        "kind": "IngressRoute",
        "metadata": {
            "name": cfg.ingress_name,
            "namespace": cfg.namespace,
            "labels": {"environment": "local", "domain": "local"},
        },
        "spec": {
            "entryPoints": ["websecure"],
            "routes": [
                {
                    "kind": "Rule",
                    "match": f"Host(`{cfg.domain}`)",
                    "services": [
                        {"name": cfg.web_service, "port": cfg.web_service_port}
                    ],
                }
            ],
            "tls": {"secretName": cfg.secret_name},
        },
    }


def create_local_ingress(cfg: CertConfig) -> None:
    """Apply the HTTPS IngressRoute for the local domain."""
    console.info(f"Creating local ingress route for {cfg.domain}...")
    apply_manifest(json.dumps(local_ingress_manifest(cfg)))
    console.success(f"Local ingress route created for {cfg.domain}")


def show_setup_instructions(cfg: CertConfig) -> None:
    """Print where everything lives and how to reach the site."""
    print()
    console.banner("🏠 LOCAL HTTPS SETUP COMPLETE")
    print(f"• Domain: https://{cfg.domain}")
    print(f"• Certificate: {cfg.cert_file}")
    print(f"• Private Key: {cfg.key_file}")
    print(f"• Cluster Secret: {cfg.secret_name}")
    print()
    console.banner("🔧 NEXT STEPS:")
    print("1. Add to /etc/hosts (if not already done):")
    print(f"   127.0.0.1 {cfg.domain}")
    print("   or run: localdev domains add")
    print()
    print("2. Access your application:")
    print(f"   https://{cfg.domain}")
    print()
    print("3. If you see certificate warnings, restart your browser")
    print()
    print("4. For other devices on your network, add:")
    print(f"   <your-ip> {cfg.domain}")
    print()


def create_certificate(cfg: CertConfig) -> Path:
    """Generate, install and route the local certificate; return its path."""
    console.banner("🏠 Creating Local HTTPS Certificate for RaidHelper Development")
    check_prerequisites(cfg)
    generate_certificate(cfg)
    install_cluster_certificate(cfg)
    install_local_certificate(cfg)
    create_local_ingress(cfg)
    show_setup_instructions(cfg)
    console.success("Local HTTPS setup complete!")
    return cfg.cert_file


def cleanup_certificates(cfg: CertConfig, os_name: str | None = None) -> None:
    """Remove the secret, the route, local files and the macOS keychain entry."""
    console.banner("🧹 Cleaning Up Local HTTPS Certificate")
    console.info("Cleaning up certificates...")
    if not delete_resource("secret", cfg.secret_name, cfg.namespace):
        console.info("No cluster certificate to clean up")
    if not delete_resource("ingressroute", cfg.ingress_name, cfg.namespace):
        console.info("No local ingress to clean up")

    if cfg.cert_dir.is_dir():
        shutil.rmtree(cfg.cert_dir)
        console.success("Local certificate files removed")

    if (os_name or detect_os()) == "macos":
        console.info("Removing certificate from macOS keychain...")
        result = _sudo(
            "security", "delete-certificate", "-c", cfg.domain, cfg.macos_keychain, check=False
        )
        if result.returncode != 0:
            console.info("No certificate found in keychain")

    console.success("Certificate cleanup complete")


def certificate_details(cert_file: Path) -> dict[str, str]:
    """Return the subject, expiry and SAN of ``cert_file``."""
    subject = _openssl("x509", "-in", str(cert_file), "-noout", "-subject").strip()
    enddate = _openssl("x509", "-in", str(cert_file), "-noout", "-enddate").strip()
    text = _openssl("x509", "-in", str(cert_file), "-noout", "-text")

    san = ""
    lines = text.splitlines()
    for index, line in enumerate(lines):
        if "Subject Alternative Name" in line and index + 1 < len(lines):
            san = lines[index + 1].strip()
            break

    return {
        "subject": subject.removeprefix("subject=").strip(),
        "valid_until": enddate.removeprefix("notAfter=").strip(),
        "san": san,
    }


def show_status(cfg: CertConfig) -> bool:
    """Report the certificate, secret and route; True when all three exist."""
    console.banner("🏠 Local Certificate Status")
    healthy = True
    if cfg.cert_file.exists():
        console.success(f"Certificate exists: {cfg.cert_file}")
        details = certificate_details(cfg.cert_file)
        print(f"• Subject: {details['subject']}")
        print(f"• Valid until: {details['valid_until']}")
        print(f"• SAN: {details['san']}")
    else:
        console.warn("No certificate found")
        healthy = False

    if resource_exists("secret", cfg.secret_name, cfg.namespace):
        console.success("Certificate installed in cluster")
    else:
        console.warn("Certificate not installed in cluster")
        healthy = False

    if resource_exists("ingressroute", cfg.ingress_name, cfg.namespace):
        console.success("Local ingress route exists")
    else:
        console.warn("No local ingress route found")
        healthy = False
    return healthy
