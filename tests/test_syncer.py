"""End-to-end tests for the reconciliation cycle.

Every external collaborator (TXT query, directory, zone, TCP probes) is
replaced by an in-memory double; the monitoring file is written to tmp_path.
"""

import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from conftest import MockDirectory, MockZone, RecordingChecker, StaticTopology

from topo_dns.config import Config
from topo_dns.models import CycleResult, SyncSummary, TopologyMapping, ZoneRecord
from topo_dns.syncer import CycleRunner, DNSSyncer, SyncState, zone_entries
from topo_dns.topology import TopologyResolver

# =============================================================================
# Test Helpers
# =============================================================================


def create_test_syncer(
    tmp_path: Path,
    base_config: Dict[str, Any],
    *,
    zone_records: Optional[Dict] = None,
    resources: Optional[List[Dict[str, Any]]] = None,
    targets: Optional[Dict[str, List[Dict[str, Any]]]] = None,
    topology_txt: str = "alpha:10.0.4.5",
    checker: Optional[RecordingChecker] = None,
) -> tuple:
    """Create a syncer wired to in-memory providers and a fixed TXT answer."""
    base_config["general"]["gatus_output_path"] = str(tmp_path / "endpoints.yaml")
    config = Config.from_dict(base_config)
    zone = MockZone(zone_records)
    directory = MockDirectory(resources, targets)
    topology = TopologyResolver(
        config.topology_source, config.resolver_ip, query=lambda name, ip, timeout: topology_txt
    )
    syncer = DNSSyncer.from_config(
        config,
        directory=directory,
        zone=zone,
        topology=topology,
        checker=checker or RecordingChecker(),
    )
    return syncer, zone, directory


def read_endpoints(tmp_path: Path) -> List[Dict[str, Any]]:
    return yaml.safe_load((tmp_path / "endpoints.yaml").read_text(encoding="utf-8"))["endpoints"]


APP_RESOURCE = [{"resourceId": 1, "name": "App", "fullDomain": "app.example.com", "protocol": "https"}]
APP_TARGETS = {"1": [{"ip": "10.0.4.17", "port": 443}]}


# =============================================================================
# Cycle Scenarios
# =============================================================================


class TestRunCycle:
    def test_end_to_end_single_resource(self, tmp_path: Path, base_config: Dict[str, Any]) -> None:
        """One mapped resource yields one CNAME and one endpoint."""
        syncer, zone, _ = create_test_syncer(
            tmp_path, base_config, resources=APP_RESOURCE, targets=APP_TARGETS
        )

        result = syncer.run_cycle()

        assert result.success is True
        assert zone.create_calls == [("app", "CNAME", "on.alpha.example.com")]
        assert zone.value_of("app") == "on.alpha.example.com."
        assert read_endpoints(tmp_path) == [
            {
                "name": "App",
                "url": "https://10.0.4.17:443",
                "group": "alpha",
                "conditions": ["[STATUS] == 200"],
                "interval": "60s",
                "client": {"insecure": True},
            }
        ]
        assert result.summary.to_dict() == {
            "pairs_found": 1,
            "dns_records": 1,
            "endpoints_generated": 1,
            "config_written": True,
            "errors": [],
        }

    def test_second_cycle_is_idempotent(self, tmp_path: Path, base_config: Dict[str, Any]) -> None:
        """An unchanged world causes no zone mutations and no file write."""
        checker = RecordingChecker({"www.example.com": {443}})
        syncer, zone, _ = create_test_syncer(
            tmp_path,
            base_config,
            zone_records={
                ("www", "A"): "203.0.113.10",
                ("stale", "CNAME"): "on.alpha.example.com.",
            },
            resources=APP_RESOURCE,
            targets=APP_TARGETS,
            checker=checker,
        )

        first = syncer.run_cycle()
        mutations = zone.mutation_count
        content = (tmp_path / "endpoints.yaml").read_bytes()

        second = syncer.run_cycle()

        assert first.success and second.success
        assert mutations == 2
        assert zone.mutation_count == mutations
        assert second.summary.config_written is False
        assert (tmp_path / "endpoints.yaml").read_bytes() == content

    def test_zone_records_feed_monitoring(self, tmp_path: Path, base_config: Dict[str, Any]) -> None:
        """Unclaimed A records are detected and monitored; TXT records are not."""
        base_config["general"]["name_overrides"] = {"www": "Website"}
        checker = RecordingChecker({"www.example.com": {80}})
        syncer, _, _ = create_test_syncer(
            tmp_path,
            base_config,
            zone_records={("www", "A"): "203.0.113.10", ("_dmarc", "TXT"): "v=DMARC1"},
            resources=APP_RESOURCE,
            targets=APP_TARGETS,
            checker=checker,
        )

        result = syncer.run_cycle()

        endpoints = read_endpoints(tmp_path)
        assert [e["name"] for e in endpoints] == ["App", "Website"]
        assert endpoints[1]["url"] == "http://www.example.com:80"
        assert result.summary.endpoints_generated == 2

    def test_kept_resource_name_is_monitored_twice(self, tmp_path: Path, base_config: Dict[str, Any]) -> None:
        """A kept name claimed by a resource also gets its zone endpoint."""
        base_config["general"]["keep_subdomains"] = ["app"]
        syncer, _, _ = create_test_syncer(
            tmp_path, base_config, resources=APP_RESOURCE, targets=APP_TARGETS
        )

        result = syncer.run_cycle()

        endpoints = read_endpoints(tmp_path)
        assert result.success is True
        assert [e["name"] for e in endpoints] == ["App", "app.example.com"]
        assert endpoints[1]["group"] == "alpha"

    def test_bad_topology_entry_does_not_fail_cycle(self, tmp_path: Path, base_config: Dict[str, Any]) -> None:
        """A malformed TXT entry is skipped and the cycle still succeeds."""
        syncer, zone, _ = create_test_syncer(
            tmp_path,
            base_config,
            resources=APP_RESOURCE,
            targets=APP_TARGETS,
            topology_txt="alpha:10.0.4.5,bad:10.0.5.²",
        )

        result = syncer.run_cycle()

        assert result.success is True
        assert result.summary.errors == []
        assert zone.value_of("app") == "on.alpha.example.com."

    def test_unavailable_topology_degrades_to_empty_cycle(
        self, tmp_path: Path, base_config: Dict[str, Any]
    ) -> None:
        """No topology means no desired pairs; the cycle still completes."""
        syncer, zone, directory = create_test_syncer(
            tmp_path,
            base_config,
            zone_records={("app", "CNAME"): "on.alpha.example.com."},
            resources=APP_RESOURCE,
            targets=APP_TARGETS,
            topology_txt="",
        )

        result = syncer.run_cycle()

        assert result.success is True
        assert result.summary.pairs_found == 0
        assert directory.target_calls == []
        assert zone.delete_calls == ["app:CNAME"]

    def test_unexpected_error_is_reported_not_raised(self, tmp_path: Path, base_config: Dict[str, Any]) -> None:
        """An exception inside a step becomes a failed result with the message."""
        syncer, _, _ = create_test_syncer(tmp_path, base_config, resources=APP_RESOURCE, targets=APP_TARGETS)

        class ExplodingZone(MockZone):
            def list_records(self, zone_id):
                raise RuntimeError("boom")

        syncer.reconciler.zone = ExplodingZone()

        result = syncer.run_cycle()

        assert result.success is False
        assert result.summary.pairs_found == 1
        assert result.summary.errors == ["boom"]


def test_zone_entries_converts_every_record() -> None:
    """Records are passed through unfiltered, values without trailing dot."""
    records = [
        ZoneRecord("app:CNAME", "app", "CNAME", "on.alpha.example.com."),
        ZoneRecord("_dmarc:TXT", "_dmarc", "TXT", "v=DMARC1"),
    ]

    entries = zone_entries(records)

    assert [(e.name, e.type, e.value) for e in entries] == [
        ("app", "CNAME", "on.alpha.example.com"),
        ("_dmarc", "TXT", "v=DMARC1"),
    ]


# =============================================================================
# Cycle Runner
# =============================================================================


class _BlockingSyncer:
    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def run_cycle(self):
        self.calls += 1
        self.started.set()
        self.release.wait(timeout=5)
        return CycleResult(success=True, summary=SyncSummary())


class TestCycleRunner:
    def test_rejects_concurrent_trigger(self) -> None:
        """A trigger during a running cycle is rejected, not queued."""
        syncer = _BlockingSyncer()
        runner = CycleRunner(syncer)  # type: ignore[arg-type]
        results: List[Dict[str, Any]] = []

        worker = threading.Thread(target=lambda: results.append(runner.trigger()))
        worker.start()
        assert syncer.started.wait(timeout=5)

        rejected = runner.trigger(manual=True)
        syncer.release.set()
        worker.join(timeout=5)

        assert rejected == {"success": False, "run_id": None, "error": "Sync already running"}
        assert results[0]["success"] is True
        assert syncer.calls == 1
        assert runner.state is SyncState.IDLE

    def test_records_failed_cycle(self, tmp_path: Path, base_config: Dict[str, Any]) -> None:
        """A failed cycle is recorded and does not block the next trigger."""
        syncer, _, _ = create_test_syncer(tmp_path, base_config)
        syncer.topology = StaticTopology(TopologyMapping({"on.alpha": "10.0.4.0/24"}))

        class ExplodingGenerator:
            def update_host_mapping(self, mapping):
                raise ValueError("bad mapping")

        syncer.generator = ExplodingGenerator()  # type: ignore[assignment]
        runner = CycleRunner(syncer)

        outcome = runner.trigger()

        assert outcome["success"] is False
        assert runner.state is SyncState.ERROR
        assert runner.last_result is not None
        assert runner.last_result.error == "bad mapping"
        assert runner.last_run is not None
        assert runner.trigger()["run_id"] is not None
