"""Reconciliation cycle orchestration."""

from __future__ import annotations

import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from topo_dns.config import Config
from topo_dns.desired import DesiredStateBuilder
from topo_dns.directory import PangolinDirectory, ResourceDirectory
from topo_dns.models import (
    CycleResult,
    DesiredCnamePair,
    LogSink,
    SyncSummary,
    ZoneRecord,
)
from topo_dns.monitoring import (
    GatusConfigGenerator,
    PortChecker,
    ResourceEntry,
    ZoneEntry,
    check_port,
    write_if_changed,
)
from topo_dns.reconciler import ZoneReconciler
from topo_dns.topology import TopologyResolver
from topo_dns.zone import HetznerZone, ZoneProvider

logger = logging.getLogger(__name__)


def resource_entries(pairs: Iterable[DesiredCnamePair]) -> List[ResourceEntry]:
    return [
        ResourceEntry(
            name=p.resource_name,
            domain=p.domain,
            target=p.target,
            port=p.port,
            protocol=p.protocol,
        )
        for p in pairs
    ]


def zone_entries(records: Iterable[ZoneRecord]) -> List[ZoneEntry]:
    """Zone records as generator input; filtering happens in the generator."""
    return [ZoneEntry(name=r.name, type=r.type, value=r.clean_value) for r in records]


class DNSSyncer:
    """Runs one reconciliation cycle: topology, desired state, zone, monitoring."""

    def __init__(
        self,
        *,
        topology: TopologyResolver,
        builder: DesiredStateBuilder,
        reconciler: ZoneReconciler,
        generator: GatusConfigGenerator,
        output_path: str,
        log: LogSink = logger,
    ):
        self.topology = topology
        self.builder = builder
        self.reconciler = reconciler
        self.generator = generator
        self.output_path = output_path
        self._log = log

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        directory: Optional[ResourceDirectory] = None,
        zone: Optional[ZoneProvider] = None,
        topology: Optional[TopologyResolver] = None,
        checker: PortChecker = check_port,
        log: LogSink = logger,
    ) -> "DNSSyncer":
        directory = directory or PangolinDirectory(
            config.pangolin_base_url, config.pangolin_auth_token, log=log
        )
        zone = zone or HetznerZone(config.hetzner_auth_token, config.hetzner_zone_id, log=log)
        return cls(
            topology=topology or TopologyResolver(config.topology_source, config.resolver_ip, log=log),
            builder=DesiredStateBuilder(
                directory, config.domain, org_id=config.pangolin_org_id, log=log
            ),
            reconciler=ZoneReconciler(
                zone,
                config.domain,
                keep_subdomains=config.keep_subdomains,
                ignore_subdomains=config.ignore_subdomains,
                log=log,
            ),
            generator=GatusConfigGenerator.from_config(config, checker=checker, log=log),
            output_path=config.gatus_output_path,
            log=log,
        )

    def run_cycle(self) -> CycleResult:
        """Run one cycle. Never raises; failures are reported in the summary."""
        summary = SyncSummary()
        try:
            self._log.info("Starting DNS sync cycle")

            self._log.info("Step 1: Resolving topology and desired CNAME pairs...")
            mapping = self.topology.resolve()
            self.generator.update_host_mapping(mapping)
            pairs = self.builder.build(mapping)
            summary.pairs_found = len(pairs)
            for pair in pairs:
                self._log.debug(f"  - {pair.domain} -> {pair.cname_full} (resource: {pair.resource_name})")

            self._log.info("Step 2: Synchronizing DNS zone...")
            records = self.reconciler.reconcile(pairs)
            summary.dns_records = len(records)
            self._log.info(f"DNS sync complete, {len(records)} total records")

            self._log.info("Step 3: Generating Gatus configuration...")
            config = self.generator.generate(
                resource_entries(pairs), zone_entries(records)
            )
            summary.endpoints_generated = len(config.endpoints)
            self._log.info(f"Generated {summary.endpoints_generated} Gatus endpoints")
            summary.config_written = write_if_changed(config, self.output_path, self._log)

            self._log.info("DNS sync cycle completed successfully")
            return CycleResult(success=True, summary=summary)
        except Exception as e:
            self._log.error(f"DNS sync cycle failed: {e}", exc_info=True)
            summary.errors.append(str(e))
            return CycleResult(success=False, summary=summary)


# =============================================================================
# Cycle Runner
# =============================================================================


class SyncState(Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    ERROR = "ERROR"


@dataclass
class RunRecord:
    success: bool
    run_id: str
    summary: Dict[str, Any] = field(default_factory=dict)
    duration: str = ""
    error: str = ""


class CycleRunner:
    """Owns the running flag: one cycle at a time, extra triggers are rejected."""

    def __init__(self, syncer: DNSSyncer, *, log: LogSink = logger, clock=time.monotonic):
        self.syncer = syncer
        self.state = SyncState.IDLE
        self.last_run: Optional[str] = None
        self.last_result: Optional[RunRecord] = None
        self.current_run_id: Optional[str] = None
        self._lock = threading.Lock()
        self._log = log
        self._clock = clock

    @property
    def running(self) -> bool:
        return self.state is SyncState.RUNNING

    def trigger(self, manual: bool = False) -> Dict[str, Any]:
        with self._lock:
            if self.state is SyncState.RUNNING:
                self._log.warning("Sync already running, rejecting trigger")
                return {"success": False, "run_id": None, "error": "Sync already running"}
            run_id = secrets.token_hex(8)
            self.current_run_id = run_id
            self.state = SyncState.RUNNING

        started = self._clock()
        try:
            self._log.info(f"Starting sync cycle {run_id} ({'manual' if manual else 'scheduled'})")
            result = self.syncer.run_cycle()
            duration = f"{self._clock() - started:.2f}s"
            self.last_result = RunRecord(
                success=result.success,
                run_id=run_id,
                summary=result.summary.to_dict(),
                duration=duration,
                error="; ".join(result.summary.errors),
            )
            self.state = SyncState.IDLE if result.success else SyncState.ERROR
            self._log.info(
                f"Sync cycle {run_id} finished in {duration}: "
                f"{result.summary.pairs_found} pairs, {result.summary.dns_records} records, "
                f"{result.summary.endpoints_generated} endpoints"
            )
            return {"success": result.success, "run_id": run_id}
        finally:
            self.last_run = datetime.now(timezone.utc).isoformat()
            self.current_run_id = None
            if self.state is SyncState.RUNNING:
                self.state = SyncState.ERROR
