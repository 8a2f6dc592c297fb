"""Configuration accessor for the sync service.

The configuration is a YAML document:

    general:
      domain: example.com
      topology_source: _topology.example.com
      resolver_ip: 9.9.9.9
      gatus_output_path: /gatus/endpoints.yaml
      loop_interval: 300
      name_overrides: {nas: "Storage"}
      keep_subdomains: [legacy]
      ignore_subdomains: [www]
    apis:
      pangolin: {base_url: "https://pangolin/api/v1", auth_token: "...", org_id: ""}
      hetzner: {auth_token: "...", zone_id: ""}
    gatus_defaults:
      interval: 60s
      allowed_http_codes: [200]
      subdomain_http_codes: {401: [auth, vault]}
      subdomain_port_overrides: {mail: 587}
      skip_technical_cnames: true
      aggressive_host_filtering: false

Secrets may be supplied through PANGOLIN_AUTH_TOKEN and HETZNER_AUTH_TOKEN,
which take precedence over values in the file.
"""

from __future__ import annotations

import copy
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse

import yaml

from topo_dns.netutil import ip_to_int

MASK = "••••••••••••"

DOMAIN_RE = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
MIN_LOOP_INTERVAL = 30


class ConfigError(ValueError):
    """Raised when the configuration file cannot be loaded."""


def _parse_bool(value: Any, *, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _section(data: Mapping[str, Any], *keys: str) -> Dict[str, Any]:
    current: Any = data
    for key in keys:
        if not isinstance(current, Mapping):
            return {}
        current = current.get(key)
    return dict(current) if isinstance(current, Mapping) else {}


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value if v is not None]
    return [str(value)]


class Config:
    """Read-only view over the loaded configuration document."""

    def __init__(self, data: Optional[Mapping[str, Any]] = None, env: Optional[Mapping[str, str]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(dict(data or {}))
        self._env = os.environ if env is None else env

    @classmethod
    def from_file(cls, path: str, env: Optional[Mapping[str, str]] = None) -> "Config":
        config_path = Path(path)
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigError(f"Configuration file not found: {config_path}") from None
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Error parsing configuration file {config_path}: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration file {config_path} must contain a mapping")
        return cls(data, env=env)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], env: Optional[Mapping[str, str]] = None) -> "Config":
        return cls(data, env=env if env is not None else {})

    # -- general ------------------------------------------------------------

    @property
    def _general(self) -> Dict[str, Any]:
        return _section(self._data, "general")

    @property
    def domain(self) -> str:
        return str(self._general.get("domain") or "").strip().rstrip(".")

    @property
    def topology_source(self) -> str:
        return str(self._general.get("topology_source") or "").strip()

    @property
    def resolver_ip(self) -> str:
        return str(self._general.get("resolver_ip") or "9.9.9.9").strip()

    @property
    def gatus_output_path(self) -> str:
        return str(self._general.get("gatus_output_path") or "/gatus/endpoints.yaml")

    @property
    def loop_interval(self) -> int:
        try:
            return int(self._general.get("loop_interval") or 300)
        except (TypeError, ValueError):
            return 300

    @property
    def name_overrides(self) -> Dict[str, str]:
        raw = self._general.get("name_overrides") or {}
        if not isinstance(raw, Mapping):
            return {}
        return {str(k): str(v) for k, v in raw.items() if v}

    @property
    def keep_subdomains(self) -> List[str]:
        return _as_list(self._general.get("keep_subdomains"))

    @property
    def ignore_subdomains(self) -> List[str]:
        return _as_list(self._general.get("ignore_subdomains"))

    # -- apis ---------------------------------------------------------------

    @property
    def pangolin_base_url(self) -> str:
        return str(_section(self._data, "apis", "pangolin").get("base_url") or "").strip()

    @property
    def pangolin_auth_token(self) -> str:
        return self._env.get("PANGOLIN_AUTH_TOKEN") or str(
            _section(self._data, "apis", "pangolin").get("auth_token") or ""
        )

    @property
    def pangolin_org_id(self) -> str:
        return str(_section(self._data, "apis", "pangolin").get("org_id") or "").strip()

    @property
    def hetzner_auth_token(self) -> str:
        return self._env.get("HETZNER_AUTH_TOKEN") or str(
            _section(self._data, "apis", "hetzner").get("auth_token") or ""
        )

    @property
    def hetzner_zone_id(self) -> str:
        return str(_section(self._data, "apis", "hetzner").get("zone_id") or "").strip()

    # -- monitoring ---------------------------------------------------------

    @property
    def gatus_defaults(self) -> Dict[str, Any]:
        return _section(self._data, "gatus_defaults")

    @property
    def gatus_allowed_http_codes(self) -> List[int]:
        raw = self.gatus_defaults.get("allowed_http_codes")
        if raw is None:
            return [200]
        if not isinstance(raw, (list, tuple)):
            raw = [raw]
        codes: List[int] = []
        for code in raw:
            try:
                codes.append(int(code))
            except (TypeError, ValueError):
                continue
        return codes

    @property
    def gatus_subdomain_http_codes(self) -> Dict[int, List[str]]:
        raw = self.gatus_defaults.get("subdomain_http_codes") or {}
        if not isinstance(raw, Mapping):
            return {}
        result: Dict[int, List[str]] = {}
        for code, patterns in raw.items():
            try:
                result[int(code)] = _as_list(patterns)
            except (TypeError, ValueError):
                continue
        return result

    @property
    def gatus_subdomain_port_overrides(self) -> Dict[str, int]:
        raw = self.gatus_defaults.get("subdomain_port_overrides") or {}
        if not isinstance(raw, Mapping):
            return {}
        result: Dict[str, int] = {}
        for subdomain, port in raw.items():
            try:
                result[str(subdomain)] = int(port)
            except (TypeError, ValueError):
                continue
        return result

    @property
    def gatus_skip_technical_cnames(self) -> bool:
        return _parse_bool(self.gatus_defaults.get("skip_technical_cnames"), default=True)

    @property
    def gatus_aggressive_host_filtering(self) -> bool:
        return _parse_bool(self.gatus_defaults.get("aggressive_host_filtering"), default=False)

    def to_dict(self, mask_sensitive: bool = True) -> Dict[str, Any]:
        data = copy.deepcopy(self._data)
        if mask_sensitive:
            for api in ("pangolin", "hetzner"):
                section = data.get("apis", {}).get(api) if isinstance(data.get("apis"), dict) else None
                if isinstance(section, dict) and section.get("auth_token"):
                    section["auth_token"] = MASK
        return data


# =============================================================================
# Validation
# =============================================================================


def is_valid_ip(ip: str) -> bool:
    return ip_to_int(ip) is not None


def is_valid_domain(domain: str) -> bool:
    return bool(domain) and len(domain) <= 253 and bool(DOMAIN_RE.match(domain))


def is_valid_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_config(config: Config) -> List[str]:
    """Return a list of human readable problems, empty when valid."""
    errors: List[str] = []

    if not config.domain:
        errors.append("general.domain is required")
    elif not is_valid_domain(config.domain):
        errors.append(f"Invalid domain format: {config.domain}")

    if not config.topology_source:
        errors.append("general.topology_source is required")

    if not is_valid_ip(config.resolver_ip):
        errors.append(f"Invalid resolver IP address: {config.resolver_ip}")

    if config.loop_interval < MIN_LOOP_INTERVAL:
        errors.append(f"Loop interval must be at least {MIN_LOOP_INTERVAL} seconds")

    if not config.pangolin_base_url:
        errors.append("apis.pangolin.base_url is required")
    elif not is_valid_url(config.pangolin_base_url):
        errors.append(f"Invalid Pangolin base URL: {config.pangolin_base_url}")

    if not config.pangolin_auth_token:
        errors.append("apis.pangolin.auth_token (or PANGOLIN_AUTH_TOKEN) is required")
    if not config.hetzner_auth_token:
        errors.append("apis.hetzner.auth_token (or HETZNER_AUTH_TOKEN) is required")

    return errors
