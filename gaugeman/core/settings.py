"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from gaugeman.core.errors import ConfigError
from gaugeman.core.subscription import DEFAULT_INTERFACE, DEFAULT_OBJECT_PATH, DEFAULT_SERVICE


@dataclass(frozen=True)
class GaugeSettings:
    default_config_path: Path
    overlay_config_path: Path
    encrypt: bool = False
    data_key: str | None = None
    key_method: str | None = None
    bus_service: str = DEFAULT_SERVICE
    bus_object_path: str = DEFAULT_OBJECT_PATH
    bus_interface: str = DEFAULT_INTERFACE
    log_level: str = "INFO"


def _config_dirs(environ: Mapping[str, str]) -> tuple[Path, Path]:
    xdg_config = Path(environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "gaugeman", xdg_data / "gaugeman"


def _normalize_bool(value: str, *, context: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off", ""}:
        return False
    raise ConfigError(f"{context} must be boolean true/false, got {value!r}")


def load_settings(environ: Mapping[str, str] | None = None) -> GaugeSettings:
    env = os.environ if environ is None else environ
    config_dir, data_dir = _config_dirs(env)
    return GaugeSettings(
        default_config_path=Path(env.get("GAUGEMAN_DEFAULT_CONFIG", config_dir / "gaugeConfig.json")),
        overlay_config_path=Path(env.get("GAUGEMAN_OVERLAY_CONFIG", data_dir / "modifiedConfig.json")),
        encrypt=_normalize_bool(env.get("GAUGEMAN_ENCRYPT", "false"), context="GAUGEMAN_ENCRYPT"),
        data_key=env.get("GAUGEMAN_DATA_KEY") or None,
        key_method=env.get("GAUGEMAN_KEY_METHOD") or None,
        bus_service=env.get("GAUGEMAN_BUS_SERVICE", DEFAULT_SERVICE),
        bus_object_path=env.get("GAUGEMAN_BUS_PATH", DEFAULT_OBJECT_PATH),
        bus_interface=env.get("GAUGEMAN_BUS_INTERFACE", DEFAULT_INTERFACE),
        log_level=env.get("GAUGEMAN_LOG_LEVEL", "INFO").upper(),
    )
