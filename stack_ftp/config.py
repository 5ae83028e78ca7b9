"""
Configuration management for stack-ftp.

Settings resolution (highest → lowest):
  1. CLI arguments (port, bind address, flags)
  2. ~/.config/stack-ftp/config.json (or --config PATH)
  3. Built-in defaults
"""

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Optional

from .binder import DEFAULT_URL_TEMPLATE

log = logging.getLogger(__name__)


@dataclass
class BridgeConfig:
    """Full stack-ftp configuration."""
    # FTP listener
    port: int = 21
    bind_address: str = "127.0.0.1"
    passive_ports: tuple[int, int] = (10000, 10100)  # inclusive
    masquerade_address: Optional[str] = None
    idle_timeout: int = 300
    max_connections: int = 256
    max_connections_per_ip: int = 16
    banner: str = "STACK FTP bridge ready."
    # STACK API
    http_timeout: float = 30.0
    url_template: str = DEFAULT_URL_TEMPLATE
    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def passive_port_range(self) -> range:
        low, high = self.passive_ports
        return range(low, high + 1)


# --- Path helpers ---

def get_config_dir() -> Path:
    """Get stack-ftp config directory (~/.config/stack-ftp/)."""
    xdg_config = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return Path(xdg_config) / "stack-ftp"

def get_config_path() -> Path:
    """Get path to the default config file."""
    return get_config_dir() / "config.json"


# --- Parsing ---

def parse_port_range(value: Any) -> tuple[int, int]:
    """Parse a passive port range from ``"min-max"`` or ``[min, max]``."""
    if isinstance(value, str):
        low_str, sep, high_str = value.partition("-")
        if not sep:
            raise ValueError(f"Invalid port range {value!r}, expected MIN-MAX")
        low, high = int(low_str), int(high_str)
    elif isinstance(value, (list, tuple)) and len(value) == 2:
        low, high = int(value[0]), int(value[1])
    else:
        raise ValueError(f"Invalid port range {value!r}")

    if not (0 < low <= high <= 65535):
        raise ValueError(f"Invalid port range {low}-{high}")
    return low, high


def read_config_file(path: Optional[Path] = None) -> Optional[dict]:
    """Read the JSON config file. Returns None if missing or unreadable."""
    path = path or get_config_path()
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError) as e:
        log.warning(f"Could not read config at {path}: {e}")
        return None
    if not isinstance(data, dict):
        log.warning(f"Ignoring config at {path}: top level must be an object")
        return None
    return data


def config_from_dict(data: dict, base: Optional[BridgeConfig] = None) -> BridgeConfig:
    """Apply known keys from ``data`` on top of ``base`` (defaults when None)."""
    config = base or BridgeConfig()
    known = {f.name for f in fields(BridgeConfig)}
    updates = {}
    for key, value in data.items():
        if key not in known:
            log.warning(f"Ignoring unknown config key: {key}")
            continue
        if key == "passive_ports":
            value = parse_port_range(value)
        updates[key] = value
    return replace(config, **updates)


def load_config(config_path: Optional[str] = None, overrides: Optional[dict] = None) -> BridgeConfig:
    """Build the effective config: defaults ← config file ← overrides.

    Args:
        config_path: Explicit config file (default: ~/.config/stack-ftp/config.json)
        overrides: Values from the command line; None entries are skipped
    """
    path = Path(config_path).expanduser() if config_path else None
    if path is not None and not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    config = BridgeConfig()
    file_data = read_config_file(path)
    if file_data:
        config = config_from_dict(file_data, config)

    if overrides:
        cli_values = {k: v for k, v in overrides.items() if v is not None}
        config = config_from_dict(cli_values, config)

    return config
