"""Resource directory clients.

The directory lists organizations, their resources (named services with a
public domain) and the live network targets behind each resource.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import requests

from topo_dns.models import LogSink

logger = logging.getLogger(__name__)

ORG_ID_FIELDS = ("orgId", "id", "org_id")

# =============================================================================
# Response shape resolution
# =============================================================================

Strategy = Callable[[Any, str], Optional[List[Any]]]


def _bare_list(payload: Any, key: str) -> Optional[List[Any]]:
    return payload if isinstance(payload, list) else None


def _nested_under_data(payload: Any, key: str) -> Optional[List[Any]]:
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if isinstance(data, dict) and isinstance(data.get(key), list):
        return data[key]
    return None


def _data_is_list(payload: Any, key: str) -> Optional[List[Any]]:
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        return payload["data"]
    return None


def _direct_key(payload: Any, key: str) -> Optional[List[Any]]:
    if isinstance(payload, dict) and isinstance(payload.get(key), list):
        return payload[key]
    return None


# Order matters: the first strategy whose shape matches wins.
SHAPE_STRATEGIES: Sequence[Tuple[str, Strategy]] = (
    ("bare-list", _bare_list),
    ("data.<key>", _nested_under_data),
    ("data-list", _data_is_list),
    ("<key>", _direct_key),
)


def extract_items(payload: Any, key: str) -> List[Any]:
    """Extract the list stored under ``key`` from any supported envelope."""
    for _name, strategy in SHAPE_STRATEGIES:
        items = strategy(payload, key)
        if items is not None:
            return items
    return []


def first_field(item: Dict[str, Any], fields: Sequence[str]) -> Optional[Any]:
    for field_name in fields:
        value = item.get(field_name)
        if value:
            return value
    return None


# =============================================================================
# Directory Interface and Implementations
# =============================================================================


class ResourceDirectory(ABC):
    """Abstract base class for resource directories."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the directory name for logging."""
        pass

    @abstractmethod
    def test_connection(self) -> bool:
        """Test connection to the directory."""
        pass

    @abstractmethod
    def resolve_org_id(self, configured_id: str = "") -> Optional[str]:
        """Return the organization to read resources from."""
        pass

    @abstractmethod
    def list_resources(self, org_id: str) -> List[Dict[str, Any]]:
        """List resources of an organization."""
        pass

    @abstractmethod
    def list_targets(self, resource_id: str) -> List[Dict[str, Any]]:
        """List live network targets of a resource."""
        pass


class PangolinDirectory(ResourceDirectory):
    """Pangolin integration API client."""

    def __init__(self, base_url: str, auth_token: str, *, timeout: float = 10.0, log: LogSink = logger):
        self._url = base_url.rstrip("/")
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
        return "Pangolin"

    def _get(self, path: str) -> Any:
        response = self._session.get(f"{self._url}{path}", timeout=self._timeout)
        response.raise_for_status()
        return response.json()

    def test_connection(self) -> bool:
        try:
            self._get("/orgs")
            self._log.info(f"{self.name} connection successful")
            return True
        except (requests.exceptions.RequestException, ValueError) as e:
            self._log.error(f"Failed to connect to {self.name}: {e}")
            return False

    def list_orgs(self) -> List[Dict[str, Any]]:
        self._log.info(f"Fetching organizations from {self._url}/orgs")
        try:
            data = self._get("/orgs")
        except (requests.exceptions.RequestException, ValueError) as e:
            self._log.error(f"Failed to list organizations: {e}")
            return []

        orgs = [o for o in extract_items(data, "orgs") if isinstance(o, dict)]
        self._log.info(f"Found {len(orgs)} organization(s)")
        for org in orgs:
            org_id = first_field(org, ORG_ID_FIELDS) or "unknown"
            self._log.debug(f"  Org: {org_id} - {org.get('name') or 'unnamed'}")
        return orgs

    def resolve_org_id(self, configured_id: str = "") -> Optional[str]:
        if configured_id:
            self._log.info(f"Using specified org_id: {configured_id}")
            return configured_id

        self._log.info("No org_id specified, listing organizations...")
        orgs = self.list_orgs()
        if not orgs:
            self._log.error("No organizations found")
            return None

        org_id = first_field(orgs[0], ORG_ID_FIELDS)
        if not org_id:
            self._log.error(f"Could not extract org ID from org data: {orgs[0]}")
            return None

        self._log.info(f"Using first organization: {org_id}")
        return str(org_id)

    def list_resources(self, org_id: str) -> List[Dict[str, Any]]:
        path = f"/org/{org_id}/resources"
        self._log.info(f"Fetching resources from {self._url}{path}")
        try:
            data = self._get(path)
        except (requests.exceptions.RequestException, ValueError) as e:
            self._log.error(f"Failed to list resources for org {org_id}: {e}")
            return []

        resources = [r for r in extract_items(data, "resources") if isinstance(r, dict)]
        self._log.info(f"Found {len(resources)} resource(s)")
        return resources

    def list_targets(self, resource_id: str) -> List[Dict[str, Any]]:
        try:
            data = self._get(f"/resource/{resource_id}/targets")
        except (requests.exceptions.RequestException, ValueError) as e:
            self._log.error(f"Failed to get targets for resource {resource_id}: {e}")
            return []
        return [t for t in extract_items(data, "targets") if isinstance(t, dict)]
