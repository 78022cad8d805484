"""``/etc/hosts`` entries for the local project domains.

The main domain is ``<project>.<suffix>`` and each service adds
``<name>.<project>.<suffix>``. Lines are matched on whole hostname tokens so
``raidhelper.local`` never matches ``api.raidhelper.local``.
"""

from __future__ import annotations

import dataclasses
import os
import subprocess
import typing as typ

from localdev import console
from localdev.logging import get_logger, log_debug

if typ.TYPE_CHECKING:
    from pathlib import Path

    from localdev.config import DomainConfig

logger = get_logger(__name__)

_SUDO_TIMEOUT = 120


@dataclasses.dataclass(frozen=True, slots=True)
class Service:
    """One ``name:port`` entry of the services list."""

    name: str
    port: int | None


def parse_services(services: str) -> list[Service]:
    """Parse ``"web:8086,api:8086"`` into services.

    Blank entries are skipped; a missing or non-numeric port becomes None.

    Examples
    --------
    >>> parse_services("web:8086, api")
    [Service(name='web', port=8086), Service(name='api', port=None)]

    """
    parsed: list[Service] = []
    for raw in services.split(","):
        entry = raw.strip()
        if not entry:
            continue
        name, _, port = entry.partition(":")
        parsed.append(Service(name.strip(), int(port) if port.strip().isdigit() else None))
    return parsed


def service_domain(cfg: DomainConfig, service: Service) -> str:
    """Return ``<service>.<project>.<suffix>``."""
    return f"{service.name}.{cfg.main_domain}"


def domains_for(cfg: DomainConfig) -> list[str]:
    """Return the main domain followed by one domain per service."""
    return [cfg.main_domain, *(service_domain(cfg, svc) for svc in parse_services(cfg.services))]


def _maps_domain(line: str, domain: str) -> bool:
    content = line.split("#", 1)[0].split()
    return len(content) >= 2 and domain in content[1:]  # noqa: PLR2004


def domain_present(hosts_text: str, domain: str) -> bool:
    """Return True when any hosts line maps ``domain``."""
    return any(_maps_domain(line, domain) for line in hosts_text.splitlines())


def without_domain(hosts_text: str, domain: str) -> str:
    """Return ``hosts_text`` with lines mapping ``domain`` removed."""
    kept = [line for line in hosts_text.splitlines(keepends=True) if not _maps_domain(line, domain)]
    return "".join(kept)


def _writable(path: Path) -> bool:
    """Return True when ``path`` can be written, or created, without sudo."""
    if path.exists():
        return os.access(path, os.W_OK)
    return os.access(path.parent, os.W_OK)


def _write_hosts(path: Path, content: str, *, append: bool) -> None:
    if _writable(path):
        with path.open("a" if append else "w", encoding="utf-8") as handle:
            handle.write(content)
        return
    args = ["sudo", "tee"]
    if append:
        args.append("-a")
    args.append(str(path))
    log_debug(logger, "Writing %s through sudo tee", path)
    # S603/S607: sudo via PATH is standard; path from configuration
    subprocess.run(  # noqa: S603
        args,
        input=content,
        stdout=subprocess.DEVNULL,
        text=True,
        check=True,
        timeout=_SUDO_TIMEOUT,
    )


def add_domain(cfg: DomainConfig, domain: str) -> bool:
    """Append ``ip domain`` unless the domain is already mapped.

    Returns
    -------
    bool
        True when a line was added.

    """
    current = cfg.hosts_file.read_text(encoding="utf-8")
    if domain_present(current, domain):
        console.info(f"Domain {domain} already exists in {cfg.hosts_file}")
        return False
    console.info(f"Adding {domain} to {cfg.hosts_file}")
    prefix = "" if not current or current.endswith("\n") else "\n"
    _write_hosts(cfg.hosts_file, f"{prefix}{cfg.ip_address} {domain}\n", append=True)
    console.success(f"Added {domain} to {cfg.hosts_file}")
    return True


def remove_domain(cfg: DomainConfig, domain: str) -> bool:
    """Delete lines mapping ``domain``, keeping a ``.bak`` copy of the file.

    Returns
    -------
    bool
        True when the file changed.

    """
    current = cfg.hosts_file.read_text(encoding="utf-8")
    if not domain_present(current, domain):
        console.info(f"Domain {domain} not found in {cfg.hosts_file}")
        return False
    console.info(f"Removing {domain} from {cfg.hosts_file}")
    backup = cfg.hosts_file.with_name(cfg.hosts_file.name + ".bak")
    _write_hosts(backup, current, append=False)
    _write_hosts(cfg.hosts_file, without_domain(current, domain), append=False)
    console.success(f"Removed {domain} from {cfg.hosts_file}")
    return True


def add_domains(cfg: DomainConfig) -> list[str]:
    """Add every project domain; return the ones that were added."""
    console.info(f"Setting up local domains for project: {cfg.project_name}")
    console.info(f"Domain suffix: {cfg.local_domain}")
    console.info(f"Services: {cfg.services}")
    print()
    added = [domain for domain in domains_for(cfg) if add_domain(cfg, domain)]
    print()
    console.success("Local domains setup complete!")
    print()
    console.info("You can now access:")
    print(f"  Main app: http://{cfg.main_domain}")
    for service in parse_services(cfg.services):
        print(f"  {service.name}: http://{service_domain(cfg, service)}")
    return added


def remove_domains(cfg: DomainConfig) -> list[str]:
    """Remove every project domain; return the ones that were removed."""
    console.info(f"Removing local domains for project: {cfg.project_name}")
    removed = [domain for domain in domains_for(cfg) if remove_domain(cfg, domain)]
    console.success("Local domains removed!")
    return removed


def show_domains(cfg: DomainConfig) -> None:
    """Print the configuration and the domains ``add`` would create."""
    print("Current configuration:")
    print(f"  Project: {cfg.project_name}")
    print(f"  Domain: {cfg.local_domain}")
    print(f"  Services: {cfg.services}")
    print()
    print("Domains that would be created:")
    print(f"  Main: {cfg.main_domain}")
    for service in parse_services(cfg.services):
        print(f"  {service.name}: {service_domain(cfg, service)}")
