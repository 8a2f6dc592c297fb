"""Data classes shared across the reconciliation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Protocol

from topo_dns.netutil import ip_in_subnet

# Prefix put in front of every discovered host to form its CNAME target label.
TOPOLOGY_PREFIX = "on."
# Prefix of tunnel-scoped aliases, also considered technical records.
TUNNEL_PREFIX = "via."


class LogSink(Protocol):
    """Leveled logging capability injected into every component.

    ``logging.Logger`` satisfies this protocol.
    """

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None: ...


class TopologyMapping:
    """Ordered mapping of topology hostname keys ("on.<host>") to /24 subnets."""

    def __init__(self, entries: Optional[Dict[str, str]] = None):
        self._entries: Dict[str, str] = dict(entries or {})

    def __setitem__(self, key: str, subnet: str) -> None:
        self._entries[key] = subnet

    def __getitem__(self, key: str) -> str:
        return self._entries[key]

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, TopologyMapping):
            return self._entries == other._entries
        if isinstance(other, dict):
            return self._entries == other
        return NotImplemented

    def __repr__(self) -> str:
        return f"TopologyMapping({self._entries!r})"

    def items(self):
        return self._entries.items()

    def as_dict(self) -> Dict[str, str]:
        return dict(self._entries)

    def lookup(self, ip: str) -> Optional[str]:
        """Return the key of the first subnet containing ``ip``."""
        for key, subnet in self._entries.items():
            if ip_in_subnet(ip, subnet):
                return key
        return None

    @property
    def hostnames(self) -> List[str]:
        """Bare host names, without the topology prefix."""
        return [_strip_prefix(key) for key in self._entries]

    @property
    def subnet_to_hostname(self) -> Dict[str, str]:
        return {subnet: _strip_prefix(key) for key, subnet in self._entries.items()}


def _strip_prefix(key: str) -> str:
    return key[len(TOPOLOGY_PREFIX) :] if key.startswith(TOPOLOGY_PREFIX) else key


@dataclass(frozen=True)
class ResourceTarget:
    """A resource from the directory with its selected network target."""

    resource_id: str
    name: str
    domain: str
    target_ip: str
    target_port: int = 443
    protocol_hint: str = ""
    enabled: bool = True


@dataclass(frozen=True)
class DesiredCnamePair:
    """Desired zone state for a single resource domain."""

    subdomain: str
    domain: str
    cname: str
    cname_full: str
    is_root: bool
    resource_name: str
    target: str
    port: int
    protocol: str

    @property
    def record_name(self) -> str:
        return "@" if self.is_root else self.subdomain


@dataclass(frozen=True)
class ZoneRecord:
    """A flattened zone record (one value of a record set)."""

    id: str
    name: str
    type: str
    value: str
    ttl: int = 3600
    zone_id: str = ""

    @property
    def clean_value(self) -> str:
        return self.value.rstrip(".")

    @property
    def is_managed(self) -> bool:
        """True for CNAMEs whose value references a topology hostname."""
        if self.type != "CNAME":
            return False
        value = self.clean_value
        return value.startswith(TOPOLOGY_PREFIX) or f".{TOPOLOGY_PREFIX}" in value


@dataclass
class MonitoringEndpoint:
    """A single monitoring endpoint in the generated configuration."""

    name: str
    url: str
    conditions: List[str]
    group: str = ""
    interval: Optional[str] = None
    client: Optional[Dict[str, Any]] = None
    alerts: Optional[List[Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "url": self.url}
        if self.group:
            data["group"] = self.group
        data["conditions"] = list(self.conditions)
        if self.interval:
            data["interval"] = self.interval
        if self.client is not None:
            data["client"] = dict(self.client)
        if self.alerts:
            data["alerts"] = list(self.alerts)
        return data


@dataclass
class MonitoringConfig:
    endpoints: List[MonitoringEndpoint] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"endpoints": [e.to_dict() for e in self.endpoints]}


@dataclass
class SyncSummary:
    """Counts and errors reported by one reconciliation cycle."""

    pairs_found: int = 0
    dns_records: int = 0
    endpoints_generated: int = 0
    config_written: bool = False
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pairs_found": self.pairs_found,
            "dns_records": self.dns_records,
            "endpoints_generated": self.endpoints_generated,
            "config_written": self.config_written,
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class CycleResult:
    success: bool
    summary: SyncSummary
