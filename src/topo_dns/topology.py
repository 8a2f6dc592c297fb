"""Topology resolution via a TXT record.

The topology source publishes a single TXT record of the form
``host1:ip1,host2:ip2,...``. Each host becomes a topology hostname key
("on.<host>") mapped to the /24 subnet containing its address.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import dns.exception
import dns.resolver

from topo_dns.models import TOPOLOGY_PREFIX, LogSink, TopologyMapping
from topo_dns.netutil import ip_to_subnet

logger = logging.getLogger(__name__)

DEFAULT_RESOLVER = "9.9.9.9"
QUERY_TIMEOUT_SECONDS = 5.0
QUERY_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 2.0

TxtQuery = Callable[[str, str, float], str]


def query_txt(name: str, resolver_ip: str = DEFAULT_RESOLVER, timeout: float = QUERY_TIMEOUT_SECONDS) -> str:
    """Query TXT records for ``name`` directly against ``resolver_ip``.

    The system resolver configuration is bypassed to avoid split-horizon
    answers. All TXT strings of all answers are concatenated.
    """
    resolver = dns.resolver.Resolver(configure=False)
    resolver.nameservers = [resolver_ip]
    resolver.timeout = timeout
    resolver.lifetime = timeout

    answer = resolver.resolve(name, "TXT")
    chunks = []
    for rdata in answer:
        for chunk in rdata.strings:
            chunks.append(chunk.decode("utf-8", errors="replace"))
    return "".join(chunks)


def parse_topology(txt_data: str, log: LogSink = logger) -> TopologyMapping:
    """Parse ``host:ip`` pairs, skipping malformed entries."""
    mapping = TopologyMapping()
    for raw_entry in (txt_data or "").split(","):
        entry = raw_entry.strip()
        if not entry:
            continue
        if ":" not in entry:
            log.warning(f"Skipping malformed topology entry (missing ':'): {entry!r}")
            continue

        hostname, ip = entry.split(":", 1)
        hostname = hostname.strip()
        ip = ip.strip()
        if not hostname:
            log.warning(f"Skipping topology entry without hostname: {entry!r}")
            continue

        subnet = ip_to_subnet(ip)
        if not subnet:
            log.warning(f"Invalid IP address {ip} for host {hostname}")
            continue

        key = f"{TOPOLOGY_PREFIX}{hostname}"
        mapping[key] = subnet
        log.debug(f"Mapped {key} -> {subnet}")
    return mapping


class TopologyResolver:
    """Resolves the host-to-subnet topology from a TXT record."""

    def __init__(
        self,
        topology_source: str,
        resolver_ip: str = DEFAULT_RESOLVER,
        *,
        log: LogSink = logger,
        query: Optional[TxtQuery] = None,
        attempts: int = QUERY_ATTEMPTS,
        retry_delay: float = RETRY_DELAY_SECONDS,
        timeout: float = QUERY_TIMEOUT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.topology_source = topology_source
        self.resolver_ip = resolver_ip or DEFAULT_RESOLVER
        self._log = log
        self._query = query or query_txt
        self._attempts = max(1, attempts)
        self._retry_delay = retry_delay
        self._timeout = timeout
        self._sleep = sleep

    def _fetch(self) -> Optional[str]:
        for attempt in range(1, self._attempts + 1):
            try:
                return self._query(self.topology_source, self.resolver_ip, self._timeout)
            except (dns.exception.DNSException, OSError, ValueError) as e:
                self._log.warning(
                    f"Topology query for {self.topology_source} failed "
                    f"(attempt {attempt}/{self._attempts}): {e}"
                )
            if attempt < self._attempts:
                self._sleep(self._retry_delay)
        return None

    def resolve(self) -> TopologyMapping:
        """Return the current mapping; empty when the source is unavailable."""
        if not self.topology_source:
            self._log.error("No topology source configured")
            return TopologyMapping()

        self._log.info(f"Querying TXT record for {self.topology_source} via {self.resolver_ip}")
        txt_data = self._fetch()
        if txt_data is None:
            self._log.error(
                f"Error querying topology: no answer for {self.topology_source} "
                f"after {self._attempts} attempts"
            )
            return TopologyMapping()

        self._log.info(f"Received topology data: {txt_data}")
        mapping = parse_topology(txt_data, self._log)
        self._log.info(f"Resolved {len(mapping)} host-to-subnet mappings")
        return mapping
