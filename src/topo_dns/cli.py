#!/usr/bin/env python3
"""topo-dns-sync - Topology-aware DNS and monitoring synchronization

Keeps a DNS zone and a Gatus endpoint file in line with the resources
published by a resource directory, pointing every resource domain at the
topology host serving its target.

Supported Resource Directories:
    - pangolin: Pangolin integration API

Supported DNS Zones:
    - hetzner: Hetzner Cloud DNS (RRSet API)

Environment variables:

    Configuration:
        CONFIG_PATH            YAML configuration file (default: config.yml)
        PANGOLIN_AUTH_TOKEN    Overrides apis.pangolin.auth_token
        HETZNER_AUTH_TOKEN     Overrides apis.hetzner.auth_token

    Runtime:
        SYNC_MODE              "once" or "watch" (polling loop) (default: watch)
        POLL_INTERVAL_SECONDS  Poll interval in watch mode
                               (default: general.loop_interval from the config file)
        LOG_LEVEL              DEBUG, INFO, WARNING, ERROR (default: INFO)

    The configuration file is re-read when its modification time changes.
"""

from __future__ import annotations

import logging
import os
import sys
import time
from typing import Optional

from topo_dns.config import Config, ConfigError, validate_config
from topo_dns.directory import PangolinDirectory
from topo_dns.syncer import CycleRunner, DNSSyncer
from topo_dns.zone import HetznerZone

# =============================================================================
# Configuration
# =============================================================================

CONFIG_PATH = os.getenv("CONFIG_PATH", "config.yml")
SYNC_MODE = os.getenv("SYNC_MODE", "watch")
POLL_INTERVAL_SECONDS = os.getenv("POLL_INTERVAL_SECONDS", "").strip()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

MIN_SLEEP_SECONDS = 5

# =============================================================================
# Logging Setup
# =============================================================================

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def get_config_file_mtime(config_path: str) -> float:
    """Get modification time of config file, returns 0 if file doesn't exist."""
    try:
        return os.path.getmtime(config_path) if os.path.exists(config_path) else 0.0
    except OSError:
        return 0.0


def poll_interval(config: Config, override: str = POLL_INTERVAL_SECONDS) -> int:
    if override:
        try:
            return max(MIN_SLEEP_SECONDS, int(override))
        except ValueError:
            logger.warning(f"Invalid POLL_INTERVAL_SECONDS={override!r}, using config value")
    return max(MIN_SLEEP_SECONDS, config.loop_interval)


def load_config(path: str) -> Optional[Config]:
    """Load and validate the configuration, logging every problem found."""
    try:
        config = Config.from_file(path)
    except ConfigError as e:
        logger.error(str(e))
        return None

    errors = validate_config(config)
    if errors:
        for error in errors:
            logger.error(error)
        return None

    logger.debug(f"Loaded configuration: {config.to_dict(mask_sensitive=True)}")
    return config


def build_runner(config: Config) -> CycleRunner:
    directory = PangolinDirectory(config.pangolin_base_url, config.pangolin_auth_token)
    zone = HetznerZone(config.hetzner_auth_token, config.hetzner_zone_id)

    # Connectivity problems are not fatal: every cycle degrades gracefully.
    if not directory.test_connection():
        logger.warning(f"Cannot reach {directory.name} at startup, will retry every cycle")
    if not zone.test_connection():
        logger.warning(f"Cannot reach {zone.name} at startup, will retry every cycle")

    syncer = DNSSyncer.from_config(config, directory=directory, zone=zone)
    return CycleRunner(syncer)


# =============================================================================
# Main
# =============================================================================


def main():
    """Main entry point."""
    logger.info(f"topo-dns-sync: config {CONFIG_PATH}")

    config = load_config(CONFIG_PATH)
    if config is None:
        logger.error("Configuration validation failed")
        sys.exit(1)

    logger.info(f"Domain: {config.domain}")
    logger.info(f"Topology source: {config.topology_source} via {config.resolver_ip}")
    logger.info(f"Gatus output: {config.gatus_output_path}")
    logger.info(f"Sync mode: {SYNC_MODE}")

    runner = build_runner(config)

    try:
        if SYNC_MODE == "once":
            result = runner.trigger(manual=True)
            if not result["success"]:
                sys.exit(1)
            return

        if SYNC_MODE != "watch":
            logger.error(f"Invalid SYNC_MODE: {SYNC_MODE}. Use 'once' or 'watch'")
            sys.exit(1)

        interval = poll_interval(config)
        logger.info(f"Poll interval: {interval}s")
        last_mtime = get_config_file_mtime(CONFIG_PATH)

        while True:
            runner.trigger()

            current_mtime = get_config_file_mtime(CONFIG_PATH)
            if current_mtime != last_mtime:
                last_mtime = current_mtime
                logger.info(f"Config change detected in: {CONFIG_PATH}")
                reloaded = load_config(CONFIG_PATH)
                if reloaded is None:
                    logger.warning("Continuing with previous configuration")
                else:
                    try:
                        runner = build_runner(reloaded)
                        config = reloaded
                        interval = poll_interval(config)
                        logger.info("Triggering immediate sync after config reload")
                        runner.trigger(manual=True)
                    except Exception as e:
                        logger.error(f"Failed to reload configuration: {e}", exc_info=True)
                        logger.warning("Continuing with previous configuration")

            time.sleep(interval)

    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
