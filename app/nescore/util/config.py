from __future__ import annotations

import tomllib
from copy import deepcopy
from pathlib import Path
from typing import Any, Final, Mapping, MutableMapping, Optional, TypedDict, Union

from nescore.logger import log as _log

config_file: Final[Path] = Path("config.toml").resolve()


class GeneralConfig(TypedDict):
    debug: bool
    log_to_file: bool


class CartridgeConfig(TypedDict):
    save_extension: str
    force: bool


class CpuConfig(TypedDict):
    trace: bool
    max_steps: int


class Config(TypedDict):
    general: GeneralConfig
    cartridge: CartridgeConfig
    cpu: CpuConfig


DEFAULT_CONFIG: Final[Config] = {
    "general": {"debug": False, "log_to_file": False},
    "cartridge": {"save_extension": "sav", "force": False},
    "cpu": {"trace": False, "max_steps": 0},
}


def _deep_merge(
    target: MutableMapping[str, Any],
    overrides: Mapping[str, Any],
) -> MutableMapping[str, Any]:
    for key, value in overrides.items():
        if isinstance(target.get(key), dict) and isinstance(value, dict):
            _deep_merge(target[key], value)
        else:
            target[key] = value
    return target


def _validate_config(cfg: Config) -> None:
    """Light validation of the merged config."""
    for key in ("debug", "log_to_file"):
        if not isinstance(cfg["general"][key], bool):
            raise ValueError(f"general.{key} must be a boolean")

    extension = cfg["cartridge"]["save_extension"]
    if not isinstance(extension, str) or not extension.strip(".") or "/" in extension:
        raise ValueError("cartridge.save_extension must be a non-empty file extension")

    if not isinstance(cfg["cartridge"]["force"], bool):
        raise ValueError("cartridge.force must be a boolean")

    if not isinstance(cfg["cpu"]["trace"], bool):
        raise ValueError("cpu.trace must be a boolean")

    max_steps = cfg["cpu"]["max_steps"]
    if isinstance(max_steps, bool) or not isinstance(max_steps, int) or max_steps < 0:
        raise ValueError("cpu.max_steps must be a non-negative integer (0 = unlimited)")


def load_config(path: Optional[Union[str, Path]] = None) -> Config:
    """
    Load ``config.toml`` over the defaults.

    A missing file gives the defaults. A file that fails to parse or
    validate is logged and the defaults are used instead.
    """
    path = Path(path) if path is not None else config_file
    config = deepcopy(DEFAULT_CONFIG)

    if not path.exists():
        return config

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)

        if not isinstance(data, dict):
            raise ValueError("Config file root must be a table (dict).")

        _deep_merge(config, data)  # type: ignore[arg-type]
        _validate_config(config)

    except (OSError, ValueError, TypeError, KeyError) as e:
        _log.error(f"Failed to load config {path}: {e}", exc_info=(type(e), e, e.__traceback__))
        return deepcopy(DEFAULT_CONFIG)

    return config
