"""Shared in-memory providers for reconciliation tests."""

from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

from topo_dns.directory import ResourceDirectory
from topo_dns.models import ZoneRecord
from topo_dns.zone import ZoneProvider

# =============================================================================
# Mock Zone Provider
# =============================================================================


class MockZone(ZoneProvider):
    """In-memory zone keyed by (name, type) with call tracking."""

    def __init__(self, records: Optional[Dict[Tuple[str, str], str]] = None, zone_id: str = "z1"):
        self._records: Dict[Tuple[str, str], str] = dict(records or {})
        self._zone_id = zone_id
        self.create_calls: List[Tuple[str, str, str]] = []
        self.update_calls: List[Tuple[str, str, str]] = []
        self.delete_calls: List[str] = []
        self.failing_names: Set[str] = set()

    @property
    def name(self) -> str:
        return "MockZone"

    @property
    def mutation_count(self) -> int:
        return len(self.create_calls) + len(self.update_calls) + len(self.delete_calls)

    def test_connection(self) -> bool:
        return True

    def resolve_zone_id(self, domain: str) -> Optional[str]:
        return self._zone_id

    def list_records(self, zone_id: str) -> List[ZoneRecord]:
        return [
            ZoneRecord(id=f"{n}:{t}", name=n, type=t, value=v, zone_id=zone_id)
            for (n, t), v in self._records.items()
        ]

    def create_record(self, zone_id, name, record_type, value, ttl=3600) -> bool:
        self.create_calls.append((name, record_type, value))
        if name in self.failing_names:
            return False
        self._records[(name, record_type)] = value if value.endswith(".") else f"{value}."
        return True

    def update_record(self, zone_id, name, record_type, value, ttl=3600, old_value="") -> bool:
        self.update_calls.append((name, record_type, value))
        if name in self.failing_names:
            return False
        self._records[(name, record_type)] = value if value.endswith(".") else f"{value}."
        return True

    def delete_record(self, zone_id, record_id) -> bool:
        self.delete_calls.append(record_id)
        name, _, record_type = record_id.rpartition(":")
        if name in self.failing_names:
            return False
        return self._records.pop((name, record_type), None) is not None

    def value_of(self, name: str, record_type: str = "CNAME") -> Optional[str]:
        return self._records.get((name, record_type))


# =============================================================================
# Mock Resource Directory
# =============================================================================


class MockDirectory(ResourceDirectory):
    def __init__(
        self,
        resources: Optional[List[Dict[str, Any]]] = None,
        targets: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        org_id: Optional[str] = "org1",
    ):
        self.resources = resources or []
        self.targets = targets or {}
        self._org_id = org_id
        self.target_calls: List[str] = []

    @property
    def name(self) -> str:
        return "MockDirectory"

    def test_connection(self) -> bool:
        return True

    def resolve_org_id(self, configured_id: str = "") -> Optional[str]:
        return configured_id or self._org_id

    def list_resources(self, org_id: str) -> List[Dict[str, Any]]:
        return list(self.resources)

    def list_targets(self, resource_id: str) -> List[Dict[str, Any]]:
        self.target_calls.append(resource_id)
        return list(self.targets.get(resource_id, []))


class StaticTopology:
    """Stands in for TopologyResolver."""

    def __init__(self, mapping):
        self.mapping = mapping
        self.calls = 0

    def resolve(self):
        self.calls += 1
        return self.mapping


class RecordingChecker:
    """Port checker answering from a fixed set of open ports."""

    def __init__(self, open_ports: Optional[Dict[str, Set[int]]] = None):
        self.open_ports = open_ports or {}
        self.calls: List[Tuple[str, int]] = []

    def __call__(self, host: str, port: int, timeout: float) -> bool:
        self.calls.append((host, port))
        return port in self.open_ports.get(host, set())


@pytest.fixture
def base_config() -> Dict[str, Any]:
    return {
        "general": {
            "domain": "example.com",
            "topology_source": "_topology.example.com",
            "resolver_ip": "9.9.9.9",
            "keep_subdomains": [],
            "ignore_subdomains": [],
        },
        "apis": {
            "pangolin": {"base_url": "https://pangolin.example.com/v1", "auth_token": "ptoken"},
            "hetzner": {"auth_token": "htoken", "zone_id": "z1"},
        },
        "gatus_defaults": {"interval": "60s", "allowed_http_codes": [200]},
    }
