"""Desired zone state computed from the resource directory and the topology."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from topo_dns.directory import ResourceDirectory, first_field
from topo_dns.models import DesiredCnamePair, LogSink, ResourceTarget, TopologyMapping

logger = logging.getLogger(__name__)

WEB_PROTOCOLS = ("http", "https")
HTTPS_PORTS = (443, 8006)
DEFAULT_TARGET_PORT = 443


def full_domain(domain: str, base_domain: str) -> str:
    """Append the base domain unless ``domain`` already ends with it."""
    domain = domain.strip().rstrip(".")
    if not base_domain or domain == base_domain or domain.endswith(f".{base_domain}"):
        return domain
    return f"{domain}.{base_domain}"


def subdomain_of(domain: str, base_domain: str) -> str:
    if domain == base_domain:
        return ""
    suffix = f".{base_domain}"
    if base_domain and domain.endswith(suffix):
        return domain[: -len(suffix)]
    return domain


def resolve_protocol(target_method: Any, resource_protocol: Any, port: int) -> str:
    """Pick the protocol of a target.

    Precedence: target method, resource protocol, then a port heuristic.
    """
    method = str(target_method or "").lower()
    if method in WEB_PROTOCOLS:
        return method
    res_proto = str(resource_protocol or "").lower()
    if res_proto in WEB_PROTOCOLS:
        return res_proto
    if port in HTTPS_PORTS:
        return "https"
    if port == 80:
        return "http"
    return "tcp"


def _as_port(value: Any) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        return DEFAULT_TARGET_PORT
    return port if port > 0 else DEFAULT_TARGET_PORT


def select_target(
    resource: Dict[str, Any], domain: str, targets: List[Dict[str, Any]]
) -> Optional[ResourceTarget]:
    """Choose the first enabled target, or the first one when none is flagged."""
    candidates = [t for t in targets if isinstance(t, dict)]
    if not candidates:
        return None
    target = next((t for t in candidates if t.get("enabled") is not False), candidates[0])

    port = _as_port(target.get("port"))
    return ResourceTarget(
        resource_id=str(first_field(resource, ("resourceId", "id")) or ""),
        name=str(resource.get("name") or "Unknown"),
        domain=domain,
        target_ip=str(target.get("ip") or "").strip(),
        target_port=port,
        protocol_hint=resolve_protocol(target.get("method"), resource.get("protocol"), port),
        enabled=target.get("enabled") is not False,
    )


class DesiredStateBuilder:
    """Joins directory resources with the topology into desired CNAME pairs."""

    def __init__(
        self,
        directory: ResourceDirectory,
        base_domain: str,
        *,
        org_id: str = "",
        log: LogSink = logger,
    ):
        self.directory = directory
        self.base_domain = base_domain
        self.org_id = org_id
        self._log = log

    def build(self, topology: TopologyMapping) -> List[DesiredCnamePair]:
        if not topology:
            self._log.warning("No host-to-subnet mapping available")
            return []

        org_id = self.directory.resolve_org_id(self.org_id)
        if not org_id:
            self._log.error(f"Failed to get {self.directory.name} org ID, cannot continue")
            return []

        resources = self.directory.list_resources(org_id)
        if not resources:
            self._log.warning(f"No resources found in {self.directory.name}")
            return []

        pairs: Dict[str, DesiredCnamePair] = {}
        for index, resource in enumerate(resources, start=1):
            pair = self._pair_for(resource, topology, index, len(resources))
            if pair is None:
                continue
            previous = pairs.get(pair.subdomain)
            if previous is not None:
                # Last processed resource wins.
                self._log.warning(
                    f"Subdomain '{pair.subdomain}' claimed by both '{previous.resource_name}' "
                    f"and '{pair.resource_name}'; using '{pair.resource_name}'"
                )
            pairs[pair.subdomain] = pair

        self._log.info(f"Total pairs created: {len(pairs)}")
        return list(pairs.values())

    def _pair_for(
        self, resource: Dict[str, Any], topology: TopologyMapping, index: int, total: int
    ) -> Optional[DesiredCnamePair]:
        resource_id = first_field(resource, ("resourceId", "id"))
        resource_name = str(resource.get("name") or "Unknown")
        self._log.debug(f"Processing resource {index}/{total}: {resource_name} (ID: {resource_id})")

        raw_domain = first_field(resource, ("fullDomain", "domain", "subdomain"))
        if not raw_domain:
            self._log.debug(f"Resource {resource_name} has no domain field, skipping")
            return None
        domain = full_domain(str(raw_domain), self.base_domain)

        targets: List[Dict[str, Any]] = []
        if resource_id:
            targets = self.directory.list_targets(str(resource_id))
        if not targets:
            embedded = resource.get("targets")
            targets = embedded if isinstance(embedded, list) else []
            self._log.debug(f"No targets from API, using {len(targets)} embedded targets")

        selected = select_target(resource, domain, targets)
        if selected is None:
            self._log.debug(f"Resource {resource_name} has no targets, skipping")
            return None
        if not selected.target_ip:
            self._log.debug(f"Resource {resource_name} target has no IP, skipping")
            return None

        cname = topology.lookup(selected.target_ip)
        if not cname:
            self._log.warning(f"No subnet match for {resource_name} with IP {selected.target_ip}")
            return None

        subdomain = subdomain_of(domain, self.base_domain)
        cname_full = f"{cname}.{self.base_domain}"
        self._log.info(
            f"Mapped {domain} -> {cname_full} "
            f"(IP: {selected.target_ip}, Proto: {selected.protocol_hint})"
        )
        return DesiredCnamePair(
            subdomain=subdomain,
            domain=domain,
            cname=cname,
            cname_full=cname_full,
            is_root=subdomain in ("", self.base_domain),
            resource_name=resource_name,
            target=selected.target_ip,
            port=selected.target_port,
            protocol=selected.protocol_hint,
        )
