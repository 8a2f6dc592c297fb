"""DNS zone providers.

Zone APIs group values into record sets (one name+type carrying one or more
values). Internally each value is handled as its own ``ZoneRecord``; writes
re-aggregate values into a record set payload.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import requests

from topo_dns.models import LogSink, ZoneRecord

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600
PER_PAGE = 100


def normalize_value(record_type: str, value: str) -> str:
    """CNAME targets are sent fully qualified, with a trailing dot."""
    if record_type == "CNAME" and value and not value.endswith("."):
        return f"{value}."
    return value


def flatten_rrsets(rrsets: Sequence[Dict[str, Any]], zone_id: str) -> List[ZoneRecord]:
    """Flatten record sets into one record per value."""
    records: List[ZoneRecord] = []
    for rrset in rrsets:
        if not isinstance(rrset, dict):
            continue
        name = str(rrset.get("name") or "")
        record_type = str(rrset.get("type") or "")
        ttl = rrset.get("ttl") or DEFAULT_TTL
        for record in rrset.get("records") or []:
            if not isinstance(record, dict) or "value" not in record:
                continue
            records.append(
                ZoneRecord(
                    id=f"{name}:{record_type}",
                    name=name,
                    type=record_type,
                    value=str(record["value"]),
                    ttl=int(ttl),
                    zone_id=zone_id,
                )
            )
    return records


# =============================================================================
# Zone Provider Interface and Implementations
# =============================================================================


class ZoneProvider(ABC):
    """Abstract base class for DNS zone providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name for logging."""
        pass

    @abstractmethod
    def test_connection(self) -> bool:
        """Test connection to the zone provider."""
        pass

    @abstractmethod
    def resolve_zone_id(self, domain: str) -> Optional[str]:
        """Return the id of the zone serving ``domain``."""
        pass

    @abstractmethod
    def list_records(self, zone_id: str) -> List[ZoneRecord]:
        """Get all records of a zone, one per value."""
        pass

    @abstractmethod
    def create_record(
        self, zone_id: str, name: str, record_type: str, value: str, ttl: int = DEFAULT_TTL
    ) -> bool:
        """Create a record set holding a single value."""
        pass

    @abstractmethod
    def update_record(
        self,
        zone_id: str,
        name: str,
        record_type: str,
        value: str,
        ttl: int = DEFAULT_TTL,
        old_value: str = "",
    ) -> bool:
        """Replace the full value set of an existing record set."""
        pass

    @abstractmethod
    def delete_record(self, zone_id: str, record_id: str) -> bool:
        """Delete a record set identified by "name:type"."""
        pass


class HetznerZone(ZoneProvider):
    """Hetzner Cloud DNS (RRSet API) provider implementation."""

    BASE_URL = "https://api.hetzner.cloud/v1"

    def __init__(
        self,
        auth_token: str,
        zone_id: str = "",
        *,
        base_url: str = BASE_URL,
        timeout: float = 10.0,
        log: LogSink = logger,
    ):
        self._url = base_url.rstrip("/")
        self._zone_id = zone_id
        self._timeout = timeout
        self._log = log
        self._session = requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {auth_token}",
                "Content-Type": "application/json",
            }
        )

    @property
    def name(self) -> str:
        return "Hetzner DNS"

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._session.request(method, f"{self._url}{path}", timeout=self._timeout, **kwargs)
        response.raise_for_status()
        content_type = response.headers.get("content-type", "")
        if response.content and "application/json" in content_type:
            return response.json()
        return {}

    def test_connection(self) -> bool:
        try:
            self._request("GET", "/zones", params={"per_page": 1})
            self._log.info(f"{self.name} connection successful")
            return True
        except (requests.exceptions.RequestException, ValueError) as e:
            self._log.error(f"Failed to connect to {self.name}: {e}")
            return False

    def resolve_zone_id(self, domain: str) -> Optional[str]:
        if self._zone_id:
            return self._zone_id

        try:
            data = self._request("GET", "/zones", params={"name": domain})
        except (requests.exceptions.RequestException, ValueError) as e:
            self._log.error(f"Failed to get zone ID: {e}")
            return None

        zones = data.get("zones") if isinstance(data, dict) else None
        if not isinstance(zones, list) or not zones:
            self._log.error(f"No zone found for domain {domain}")
            return None

        zone = zones[0]
        zone_id = zone.get("id") if isinstance(zone, dict) else None
        if zone_id in (None, ""):
            self._log.error(f"Zone entry for {domain} has no id: {zone!r}")
            return None

        self._log.info(f"Found zone ID {zone_id} for domain {domain}")
        return str(zone_id)

    def list_records(self, zone_id: str) -> List[ZoneRecord]:
        records: List[ZoneRecord] = []
        page = 1
        try:
            while True:
                data = self._request(
                    "GET",
                    f"/zones/{zone_id}/rrsets",
                    params={"page": page, "per_page": PER_PAGE},
                )
                if not isinstance(data, dict):
                    break
                records.extend(flatten_rrsets(data.get("rrsets") or [], zone_id))

                pagination = (data.get("meta") or {}).get("pagination") or {}
                last_page = pagination.get("last_page") or 1
                if page >= last_page:
                    break
                page += 1
        except (requests.exceptions.RequestException, ValueError) as e:
            self._log.error(f"Failed to list records: {e}")
            return []
        return records

    def create_record(
        self, zone_id: str, name: str, record_type: str, value: str, ttl: int = DEFAULT_TTL
    ) -> bool:
        payload = {
            "name": name,
            "type": record_type,
            "ttl": ttl,
            "records": [{"value": normalize_value(record_type, value)}],
        }
        try:
            self._request("POST", f"/zones/{zone_id}/rrsets", json=payload)
        except (requests.exceptions.RequestException, ValueError) as e:
            self._log.error(f"Failed to create record {name}: {e}")
            return False
        self._log.info(f"Created {record_type} record: {name} -> {value}")
        return True

    def update_record(
        self,
        zone_id: str,
        name: str,
        record_type: str,
        value: str,
        ttl: int = DEFAULT_TTL,
        old_value: str = "",
    ) -> bool:
        payload = {"records": [{"value": normalize_value(record_type, value)}]}
        try:
            self._request(
                "POST",
                f"/zones/{zone_id}/rrsets/{name}/{record_type}/actions/set_records",
                json=payload,
            )
        except (requests.exceptions.RequestException, ValueError) as e:
            self._log.error(f"Failed to update record {name}: {e}")
            return False
        self._log.info(f"Updated {record_type} record: {name} ({old_value or '?'} -> {value})")
        return True

    def delete_record(self, zone_id: str, record_id: str) -> bool:
        name, _, record_type = record_id.rpartition(":")
        if not name or not record_type:
            self._log.error(f"Invalid record id {record_id!r}, expected 'name:type'")
            return False
        try:
            self._request("DELETE", f"/zones/{zone_id or self._zone_id}/rrsets/{name}/{record_type}")
        except (requests.exceptions.RequestException, ValueError) as e:
            self._log.error(f"Failed to delete record {record_id}: {e}")
            return False
        self._log.info(f"Deleted {record_type} record: {name}")
        return True
