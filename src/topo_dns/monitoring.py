"""Gatus endpoint generation.

Endpoints come from two sources: resources mapped to topology hosts (their
protocol and port are already known) and leftover zone records (probed live
over TCP to find out what they serve).
"""

from __future__ import annotations

import logging
import os
import socket
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import yaml

from topo_dns.config import Config
from topo_dns.models import (
    TOPOLOGY_PREFIX,
    TUNNEL_PREFIX,
    LogSink,
    MonitoringConfig,
    MonitoringEndpoint,
    TopologyMapping,
)
from topo_dns.netutil import ip_in_subnet

logger = logging.getLogger(__name__)

PORT_PROTOCOLS: Dict[int, str] = {
    8443: "https",  # alt HTTPS
    8006: "https",  # alt admin HTTPS
    8080: "http",  # alt HTTP
    21: "tcp",  # FTP
    443: "https",
    80: "http",
    587: "starttls",  # SMTP submission
    465: "tls",  # SMTPS
    993: "tls",  # IMAPS
    123: "udp",  # NTP
    53: "dns",
}

# Web-facing ports first.
PROBE_ORDER: Sequence[int] = (8443, 8006, 8080, 21, 443, 80, 587, 465, 993, 123, 53)

PROBE_TIMEOUT_SECONDS = 2.0
DEFAULT_GROUP = "other"

PortChecker = Callable[[str, int, float], bool]


def check_port(host: str, port: int, timeout: float = PROBE_TIMEOUT_SECONDS) -> bool:
    """Return True when a TCP connection to host:port succeeds."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


# =============================================================================
# Protocol Detection
# =============================================================================


class ProbeState(Enum):
    TRYING_OVERRIDE = "trying-override"
    PROBING = "probing"
    FALLBACK_ICMP = "fallback-icmp"
    DONE = "done"


@dataclass(frozen=True)
class Detection:
    protocol: str
    port: int


@dataclass
class _ProbeRun:
    target: str
    subdomain: str
    state: ProbeState = ProbeState.TRYING_OVERRIDE
    index: int = 0


class ProtocolDetector:
    """Small state machine deciding the protocol and port of a target.

    TRYING_OVERRIDE -> DONE when the subdomain has a port override,
    otherwise PROBING over ``PROBE_ORDER`` until one port accepts a
    connection (-> DONE), or FALLBACK_ICMP -> DONE when none does.
    Each transition into DONE carries the detection.
    """

    def __init__(
        self,
        port_overrides: Optional[Mapping[str, int]] = None,
        *,
        checker: PortChecker = check_port,
        timeout: float = PROBE_TIMEOUT_SECONDS,
        log: LogSink = logger,
    ):
        self.port_overrides = dict(port_overrides or {})
        self._checker = checker
        self._timeout = timeout
        self._log = log

    def detect(self, target: str, subdomain: str = "") -> Detection:
        run = _ProbeRun(target=target, subdomain=subdomain)
        while True:
            run.state, result = self._step(run)
            if result is not None:
                return result

    def _step(self, run: _ProbeRun) -> Tuple[ProbeState, Optional[Detection]]:
        if run.state is ProbeState.TRYING_OVERRIDE:
            if run.subdomain and run.subdomain in self.port_overrides:
                port = self.port_overrides[run.subdomain]
                self._log.debug(f"Port override for {run.subdomain}: {port}")
                return ProbeState.DONE, Detection(PORT_PROTOCOLS.get(port, "tcp"), port)
            return ProbeState.PROBING, None

        if run.state is ProbeState.PROBING:
            if run.index >= len(PROBE_ORDER):
                return ProbeState.FALLBACK_ICMP, None
            port = PROBE_ORDER[run.index]
            run.index += 1
            if self._checker(run.target, port, self._timeout):
                detection = Detection(PORT_PROTOCOLS.get(port, "tcp"), port)
                self._log.debug(f"Detected {detection.protocol} on {run.target}:{port}")
                return ProbeState.DONE, detection
            return ProbeState.PROBING, None

        self._log.debug(f"No open port found on {run.target}, falling back to ICMP")
        return ProbeState.DONE, Detection("icmp", 0)


# =============================================================================
# Generator
# =============================================================================


@dataclass(frozen=True)
class ResourceEntry:
    name: str
    domain: str
    target: str
    port: int = 443
    protocol: str = "https"


@dataclass(frozen=True)
class ZoneEntry:
    name: str
    type: str
    value: str


class GatusConfigGenerator:
    def __init__(
        self,
        base_domain: str,
        *,
        defaults: Optional[Mapping[str, Any]] = None,
        name_overrides: Optional[Mapping[str, str]] = None,
        allowed_http_codes: Sequence[int] = (200,),
        subdomain_http_codes: Optional[Mapping[int, Sequence[str]]] = None,
        ignore_subdomains: Sequence[str] = (),
        keep_subdomains: Sequence[str] = (),
        skip_technical_cnames: bool = True,
        aggressive_host_filtering: bool = False,
        detector: Optional[ProtocolDetector] = None,
        log: LogSink = logger,
    ):
        self.base_domain = base_domain
        self.defaults = dict(defaults or {})
        self.name_overrides = dict(name_overrides or {})
        self.allowed_http_codes = list(allowed_http_codes)
        self.subdomain_http_codes = {int(k): list(v) for k, v in (subdomain_http_codes or {}).items()}
        self.ignore_subdomains = list(ignore_subdomains)
        self.keep_subdomains = list(keep_subdomains)
        self.skip_technical_cnames = skip_technical_cnames
        self.aggressive_host_filtering = aggressive_host_filtering
        self.detector = detector or ProtocolDetector(log=log)
        self._log = log
        self.subnet_to_hostname: Dict[str, str] = {}
        self.hostnames: List[str] = []

    @classmethod
    def from_config(
        cls, config: Config, *, checker: PortChecker = check_port, log: LogSink = logger
    ) -> "GatusConfigGenerator":
        return cls(
            config.domain,
            defaults=config.gatus_defaults,
            name_overrides=config.name_overrides,
            allowed_http_codes=config.gatus_allowed_http_codes,
            subdomain_http_codes=config.gatus_subdomain_http_codes,
            ignore_subdomains=config.ignore_subdomains,
            keep_subdomains=config.keep_subdomains,
            skip_technical_cnames=config.gatus_skip_technical_cnames,
            aggressive_host_filtering=config.gatus_aggressive_host_filtering,
            detector=ProtocolDetector(config.gatus_subdomain_port_overrides, checker=checker, log=log),
            log=log,
        )

    def update_host_mapping(self, topology: TopologyMapping) -> None:
        self.subnet_to_hostname = topology.subnet_to_hostname
        self.hostnames = topology.hostnames

    def display_name(self, subdomain: str, default: str) -> str:
        return self.name_overrides.get(subdomain) or default

    def group_for_target(self, target_ip: str, domain: str) -> str:
        for subnet, hostname in self.subnet_to_hostname.items():
            if ip_in_subnet(target_ip, subnet):
                return hostname
        return self._group_for_domain(domain)

    def _group_for_domain(self, domain: str) -> str:
        domain_lower = domain.lower()
        for hostname in self.hostnames:
            if hostname.lower() in domain_lower:
                return hostname
        return DEFAULT_GROUP

    def should_skip_endpoint(self, name: str) -> bool:
        for ignored in self.ignore_subdomains:
            if ignored == name or (ignored and ignored in name):
                return True

        if self.skip_technical_cnames:
            for hostname in self.hostnames:
                if f"{TOPOLOGY_PREFIX}{hostname}" in name or f"{TUNNEL_PREFIX}{hostname}" in name:
                    return True

        if self.aggressive_host_filtering:
            for hostname in self.hostnames:
                if hostname in name:
                    return True

        return False

    def allowed_codes_for(self, subdomain: str, name: str) -> List[int]:
        codes = list(self.allowed_http_codes)
        subdomain_lower = subdomain.lower()
        name_lower = name.lower()
        for code, patterns in self.subdomain_http_codes.items():
            if code in self.allowed_http_codes:
                continue
            for pattern in patterns:
                pattern_lower = pattern.lower()
                if (
                    pattern_lower in subdomain_lower
                    or pattern_lower in name_lower
                    or pattern_lower == subdomain_lower
                    or pattern_lower == name_lower
                ):
                    codes.append(code)
                    break
        return sorted(set(codes))

    def build_endpoint(
        self,
        name: str,
        host: str,
        port: int,
        protocol: str,
        *,
        group: str = "",
        conditions: Optional[List[str]] = None,
        insecure_tls: bool = False,
        subdomain: str = "",
    ) -> MonitoringEndpoint:
        if protocol == "icmp":
            url = f"icmp://{host}"
        elif protocol == "dns":
            url = f"dns://{host}"
        else:
            url = f"{protocol}://{host}:{port}"

        if conditions is None:
            if protocol in ("http", "https"):
                codes = self.allowed_codes_for(subdomain or name, name)
                if len(codes) == 1:
                    conditions = [f"[STATUS] == {codes[0]}"]
                else:
                    conditions = [f"[STATUS] == any({', '.join(str(c) for c in codes)})"]
            else:
                conditions = ["[CONNECTED] == true"]

        insecure = insecure_tls or protocol == "https"
        client: Optional[Dict[str, Any]] = None
        if self.defaults.get("client") or insecure:
            client = dict(self.defaults.get("client") or {})
            if insecure:
                client["insecure"] = True

        return MonitoringEndpoint(
            name=name,
            url=url,
            conditions=list(conditions),
            group=group,
            interval=self.defaults.get("interval") or None,
            client=client,
            alerts=self.defaults.get("alerts") or None,
        )

    def generate(
        self, resource_entries: Iterable[ResourceEntry], zone_entries: Iterable[ZoneEntry]
    ) -> MonitoringConfig:
        endpoints: List[MonitoringEndpoint] = []
        claimed: Set[str] = set()

        for entry in resource_entries:
            name = entry.name or entry.domain or "Unknown"
            domain = entry.domain
            subdomain = _strip_domain(domain, self.base_domain)
            claimed.add(subdomain)
            claimed.add(domain)

            if self.should_skip_endpoint(name) or self.should_skip_endpoint(domain):
                self._log.debug(f"Skipping filtered endpoint: {name}")
                continue
            if not entry.target:
                continue

            endpoints.append(
                self.build_endpoint(
                    name,
                    entry.target,
                    entry.port or 443,
                    entry.protocol or "https",
                    group=self.group_for_target(entry.target, domain),
                    insecure_tls=entry.protocol == "https",
                    subdomain=subdomain,
                )
            )

        for entry in zone_entries:
            endpoint = self._zone_endpoint(entry, claimed)
            if endpoint is not None:
                endpoints.append(endpoint)

        return MonitoringConfig(endpoints=endpoints)

    def _zone_endpoint(self, entry: ZoneEntry, claimed: Set[str]) -> Optional[MonitoringEndpoint]:
        """Endpoint for one A/CNAME zone record, or None when filtered out.

        Names claimed by a resource and ``on.*`` topology aliases are skipped,
        except for names in ``keep_subdomains``: those are always monitored
        from the zone as well, even alongside their resource endpoint.
        """
        record_name = entry.name
        target = entry.value.rstrip(".")
        is_kept = record_name in self.keep_subdomains

        if not is_kept and (record_name.startswith(TOPOLOGY_PREFIX) or target.startswith(TOPOLOGY_PREFIX)):
            return None
        if entry.type not in ("A", "CNAME"):
            return None

        fqdn = self.base_domain if record_name == "@" else f"{record_name}.{self.base_domain}"
        if not is_kept and (record_name in claimed or fqdn in claimed):
            return None
        if self.should_skip_endpoint(record_name) or self.should_skip_endpoint(fqdn):
            return None

        subdomain = "" if record_name == "@" else record_name
        display = self.display_name(subdomain, fqdn)
        detect_target = target if entry.type == "CNAME" else fqdn
        detection = self.detector.detect(detect_target, record_name)

        group = DEFAULT_GROUP
        for hostname in self.hostnames:
            if f"{TOPOLOGY_PREFIX}{hostname}" in target:
                group = hostname
                break
        else:
            group = self._group_for_domain(fqdn)

        return self.build_endpoint(
            display,
            fqdn,
            detection.port,
            detection.protocol,
            group=group,
            subdomain=record_name,
        )


def _strip_domain(domain: str, base_domain: str) -> str:
    suffix = f".{base_domain}"
    if base_domain and domain.endswith(suffix):
        return domain[: -len(suffix)]
    return domain


# =============================================================================
# Output
# =============================================================================


def render_config(config: MonitoringConfig) -> str:
    return yaml.safe_dump(
        config.to_dict(), sort_keys=False, default_flow_style=False, allow_unicode=True
    )


def write_if_changed(config: MonitoringConfig, path: str, log: LogSink = logger) -> bool:
    """Write ``config`` atomically, only when the rendered content differs."""
    output = Path(path)
    new_content = render_config(config).encode("utf-8")

    try:
        if output.read_bytes() == new_content:
            log.info("Gatus configuration unchanged, skipping write")
            return False
    except FileNotFoundError:
        pass
    except OSError as e:
        log.warning(f"Could not read existing Gatus configuration {output}: {e}")

    tmp_name: Optional[str] = None
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(output.parent), prefix=".gatus-", suffix=".yaml.tmp")
        with os.fdopen(fd, "wb") as f:
            f.write(new_content)
            f.flush()
            os.fsync(f.fileno())
        # mkstemp creates 0600 files.
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, output)
        tmp_name = None
    except OSError as e:
        log.error(f"Failed to write Gatus configuration: {e}")
        return False
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass

    log.info(f"Wrote Gatus configuration to {output}")
    return True
