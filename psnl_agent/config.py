"""
Agent configuration loading.

Defines the configuration dataclasses and builds them from a JSON or YAML
file (JSON is read through the YAML parser). Supports environment overrides
(PSNL_CONFIG, PSNL_TIMEZONE). Everything is validated here, once, so that a
broken entry stops the agent before any trigger is registered.
"""
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from psnl_agent.errors import ConfigLoadError, MalformedScheduleError
from psnl_agent.scheduler import TimeOfDay, parse_time_of_day

DEFAULT_CONFIG_PATH = "config.json"
GUEST_TYPES = ("lxc", "qemu")

Rate = Union[int, float]


@dataclass(frozen=True)
class ScheduleEntry:
    """Interface rates (MB/s, 0 = unlimited) that take effect at ``time``."""
    time: TimeOfDay
    rates: Dict[str, Rate] = field(default_factory=dict)


@dataclass(frozen=True)
class GuestConfig:
    """A container (lxc) or virtual machine (qemu) on a node."""
    node: str
    type: str
    id: int
    schedule: List[ScheduleEntry] = field(default_factory=list)

    @property
    def path(self) -> str:
        return f"{self.node}/{self.type}/{self.id}"


@dataclass(frozen=True)
class NodeConfig:
    name: str
    guests: List[GuestConfig] = field(default_factory=list)


@dataclass(frozen=True)
class ServerConfig:
    """Proxmox API endpoint and its API token."""
    url: str
    token_id: str
    secret: str = field(repr=False)
    verify_ssl: bool = True
    nodes: List[NodeConfig] = field(default_factory=list)


@dataclass
class AppConfig:
    """Top level configuration."""
    timezone: str = "UTC"
    servers: List[ServerConfig] = field(default_factory=list)
    request_timeout: float = 30.0  # seconds, per HTTP request
    apply_on_start: bool = False

    @property
    def zone(self) -> ZoneInfo:
        return load_zone(self.timezone)

    def guests(self) -> List[GuestConfig]:
        return [g for srv in self.servers for node in srv.nodes for g in node.guests]


class ConfigLoader(yaml.SafeLoader):
    """SafeLoader that keeps ``7:30`` a string instead of the base-60 int 450."""


_INT_TAG = "tag:yaml.org,2002:int"

ConfigLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != _INT_TAG]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
# YAML 1.1 int forms without the sexagesimal one
ConfigLoader.add_implicit_resolver(
    _INT_TAG,
    re.compile(r"""^(?:[-+]?0b[0-1_]+
                |[-+]?0[0-7_]+
                |[-+]?(?:0|[1-9][0-9_]*)
                |[-+]?0x[0-9a-fA-F_]+)$""", re.X),
    list("-+0123456789"),
)


def load_zone(name: str) -> ZoneInfo:
    """Resolve an IANA zone name, raising ConfigLoadError for unknown names."""
    if not isinstance(name, str):
        raise ConfigLoadError(f"timezone must be an IANA zone name, got {name!r}")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigLoadError(f"Unknown timezone: {name!r}", detail=str(e)) from e


def _require_mapping(value, where: str) -> dict:
    if not isinstance(value, dict):
        raise ConfigLoadError(f"{where} must be a mapping, got {type(value).__name__}")
    return value


def _parse_bool(value, where: str) -> bool:
    # "false" as a JSON string would otherwise be truthy
    if not isinstance(value, bool):
        raise ConfigLoadError(f"{where} must be true or false, got {value!r}")
    return value


def _parse_rate(value, where: str) -> Rate:
    # bool is an int subclass; "true" is never a bandwidth
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigLoadError(f"{where}: rate must be a number, got {value!r}")
    if value < 0:
        raise ConfigLoadError(f"{where}: rate must not be negative, got {value!r}")
    return value


def _parse_guest(node_name: str, raw, where: str) -> GuestConfig:
    raw = _require_mapping(raw, where)
    guest_type = raw.get("type")
    if guest_type not in GUEST_TYPES:
        raise ConfigLoadError(f"{where}: type must be one of {', '.join(GUEST_TYPES)}, got {guest_type!r}")

    guest_id = raw.get("id")
    if isinstance(guest_id, str) and guest_id.isdigit():
        guest_id = int(guest_id)
    if isinstance(guest_id, bool) or not isinstance(guest_id, int):
        raise ConfigLoadError(f"{where}: id must be an integer, got {guest_id!r}")

    where = f"{node_name}/{guest_type}/{guest_id}"
    entries: Dict[TimeOfDay, ScheduleEntry] = {}
    for time_str, rates in _require_mapping(raw.get("sched", {}), f"{where} sched").items():
        if not isinstance(time_str, str):
            raise MalformedScheduleError(f"{where}: invalid schedule time {time_str!r}, expected HH:MM")
        tod = parse_time_of_day(time_str)
        rates = _require_mapping(rates or {}, f"{where} sched {time_str}")
        parsed = {str(iface): _parse_rate(rate, f"{where} {time_str} {iface}") for iface, rate in rates.items()}
        if tod in entries:
            raise ConfigLoadError(f"{where}: schedule time {tod} is listed more than once")
        entries[tod] = ScheduleEntry(time=tod, rates=parsed)

    schedule = [entries[t] for t in sorted(entries)]
    return GuestConfig(node=node_name, type=guest_type, id=guest_id, schedule=schedule)


def _parse_server(url: str, raw) -> ServerConfig:
    raw = _require_mapping(raw, f"server {url}")
    token_id = raw.get("id", "")
    secret = raw.get("secret", "")
    if not token_id or not secret:
        raise ConfigLoadError(f"server {url}: both id and secret are required")

    nodes = []
    for node_name, guests in _require_mapping(raw.get("nodes", {}), f"server {url} nodes").items():
        if not isinstance(guests, list):
            raise ConfigLoadError(f"server {url} node {node_name}: expected a list of guests")
        parsed = [
            _parse_guest(str(node_name), g, f"{node_name}[{i}]")
            for i, g in enumerate(guests)
        ]
        nodes.append(NodeConfig(name=str(node_name), guests=parsed))

    return ServerConfig(
        url=str(url).rstrip("/"),
        token_id=str(token_id),
        secret=str(secret),
        verify_ssl=_parse_bool(raw.get("verify_ssl", True), f"server {url} verify_ssl"),
        nodes=nodes,
    )


def parse_config(data: dict) -> AppConfig:
    """Build an AppConfig from an already parsed document."""
    data = _require_mapping(data, "config")
    cfg = AppConfig()

    # Timezone, overridable from the environment
    cfg.timezone = os.environ.get("PSNL_TIMEZONE") or data.get("timezone") or cfg.timezone
    load_zone(cfg.timezone)

    timeout = data.get("request_timeout", cfg.request_timeout)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConfigLoadError(f"request_timeout must be a positive number, got {timeout!r}")
    cfg.request_timeout = float(timeout)
    cfg.apply_on_start = _parse_bool(data.get("apply_on_start", False), "apply_on_start")

    for url, srv in _require_mapping(data.get("servers", {}), "servers").items():
        cfg.servers.append(_parse_server(url, srv))

    return cfg


def resolve_config_path(path: str = "") -> str:
    return path or os.environ.get("PSNL_CONFIG") or DEFAULT_CONFIG_PATH


def load_config(path: str = "") -> AppConfig:
    """Load agent configuration from a JSON or YAML file.

    Args:
        path: Config file path. Falls back to PSNL_CONFIG, then config.json.

    Returns:
        The validated AppConfig.

    Raises:
        ConfigLoadError: the file is missing, unparsable or invalid.
        MalformedScheduleError: a schedule time is not HH:MM.
    """
    p = Path(resolve_config_path(path))
    if not p.exists():
        raise ConfigLoadError(f"Config file not found: {p}")

    try:
        with open(p, encoding="utf-8") as f:
            data = yaml.load(f, Loader=ConfigLoader) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigLoadError(f"Failed to read config {p}", detail=str(e)) from e

    return parse_config(data)
