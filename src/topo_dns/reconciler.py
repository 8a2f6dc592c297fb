"""Zone convergence: diff managed CNAME records against desired pairs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence, Tuple

from topo_dns.models import DesiredCnamePair, LogSink, ZoneRecord
from topo_dns.zone import DEFAULT_TTL, ZoneProvider

logger = logging.getLogger(__name__)

ROOT_NAME = "@"


@dataclass
class ZonePlan:
    """Partition of the zone diff, in execution order."""

    delete: List[ZoneRecord] = field(default_factory=list)
    retained: List[ZoneRecord] = field(default_factory=list)
    update: List[Tuple[ZoneRecord, str]] = field(default_factory=list)
    create: List[Tuple[str, str]] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)

    @property
    def mutation_count(self) -> int:
        return len(self.delete) + len(self.update) + len(self.create)


def managed_records(records: Iterable[ZoneRecord]) -> Dict[str, ZoneRecord]:
    """Current CNAME records pointing at a topology hostname, keyed by name."""
    return {r.name: r for r in records if r.is_managed}


class ZoneReconciler:
    """Converges the zone's managed CNAME records to the desired pairs.

    Deletions run strictly before creates and updates. A record moving to a
    different owner in the same cycle is therefore briefly absent.
    """

    def __init__(
        self,
        zone: ZoneProvider,
        base_domain: str,
        *,
        keep_subdomains: Sequence[str] = (),
        ignore_subdomains: Sequence[str] = (),
        ttl: int = DEFAULT_TTL,
        log: LogSink = logger,
    ):
        self.zone = zone
        self.base_domain = base_domain
        self.keep_subdomains = list(keep_subdomains)
        self.ignore_subdomains = list(ignore_subdomains)
        self.ttl = ttl
        self._log = log

    def _root_ignored(self) -> bool:
        return any(alias in self.ignore_subdomains for alias in (ROOT_NAME, "", self.base_domain))

    def expected_records(self, pairs: Iterable[DesiredCnamePair]) -> Dict[str, str]:
        expected: Dict[str, str] = {}
        for pair in pairs:
            if pair.subdomain in self.ignore_subdomains:
                self._log.info(f"Skipping ignored subdomain: {pair.subdomain}")
                continue
            if pair.is_root and self._root_ignored():
                self._log.info("Skipping root domain (ignored)")
                continue
            expected[pair.record_name] = pair.cname_full
        return expected

    def plan(self, current: Dict[str, ZoneRecord], expected: Dict[str, str]) -> ZonePlan:
        plan = ZonePlan()
        for name, record in current.items():
            if name in expected:
                continue
            if name in self.keep_subdomains:
                plan.retained.append(record)
            else:
                plan.delete.append(record)

        for name, target in expected.items():
            record = current.get(name)
            target_clean = target.rstrip(".")
            if record is None:
                plan.create.append((name, target))
            elif record.clean_value != target_clean:
                plan.update.append((record, target))
            else:
                plan.unchanged.append(name)
        return plan

    def reconcile(self, pairs: Sequence[DesiredCnamePair]) -> List[ZoneRecord]:
        """Apply the diff and return the refreshed record listing."""
        zone_id = self.zone.resolve_zone_id(self.base_domain)
        if not zone_id:
            self._log.error(f"Cannot resolve zone for {self.base_domain}, skipping DNS sync")
            return []

        records = self.zone.list_records(zone_id)
        self._log.info(f"Found {len(records)} existing DNS records")
        current = managed_records(records)
        self._log.info(f"Found {len(current)} existing managed CNAME records")

        plan = self.plan(current, self.expected_records(pairs))

        for record in plan.retained:
            self._log.info(f"Skipping deletion of explicitly kept subdomain: {record.name}")

        for record in plan.delete:
            self._log.info(f"Deleting orphaned CNAME: {record.name} -> {record.clean_value}")
            self.zone.delete_record(zone_id, record.id)

        for record, target in plan.update:
            target_clean = target.rstrip(".")
            self._log.info(f"Updating CNAME: {record.name} ({record.clean_value} -> {target_clean})")
            self.zone.update_record(
                zone_id, record.name, "CNAME", target, ttl=self.ttl, old_value=record.clean_value
            )

        for name in plan.unchanged:
            self._log.debug(f"CNAME unchanged: {name}")

        for name, target in plan.create:
            self._log.info(f"Creating new CNAME: {name} -> {target.rstrip('.')}")
            self.zone.create_record(zone_id, name, "CNAME", target, ttl=self.ttl)

        if plan.mutation_count == 0:
            self._log.info("DNS zone already converged")

        return self.zone.list_records(zone_id)
