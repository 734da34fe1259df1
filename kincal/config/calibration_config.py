"""
Central configuration for kinematic calibration runs.

One process-wide CalibrationConfig holds solver settings, DH priors, report
and validation thresholds.  Values come from DEFAULTS, overlaid with the JSON
file named by the KINCAL_CONFIG environment variable (a .env file in the
working directory is honoured) or data/calibration_config.json.

Only keys that exist in DEFAULTS are accepted, so a misspelt solver option
fails loudly instead of being ignored.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from kincal.exceptions import DomainError

logger = logging.getLogger(__name__)

load_dotenv()

CONFIG_ENV_VAR = "KINCAL_CONFIG"
_DEFAULT_CONFIG_FILE = Path(__file__).resolve().parent.parent.parent / "data" / "calibration_config.json"
# Set to pin the config file regardless of the environment
_CONFIG_FILE: Optional[Path] = None

DEFAULTS: dict[str, dict[str, Any]] = {
    "solver": {
        "max_iterations": 500,
        "ftol": 1e-10,
        "xtol": 1e-10,
        "gtol": 1e-10,
        "method": "trf",
        "jac": "2-point",
        "num_threads": 1,
        "verbose": 0,
        "check_rank": False,
    },
    "priors": {
        "camera_chain_offset_stdev": 0.001,
        "target_chain_offset_stdev": 0.005,
        "uncertainty_scale": 1.0,
    },
    "report": {
        "correlation_threshold": 0.5,
    },
    "validation": {
        "pos_tolerance": 0.001,  # m
        "ang_tolerance": 0.001,  # rad
    },
}


def config_path() -> Path:
    if _CONFIG_FILE is not None:
        return Path(_CONFIG_FILE)
    return Path(os.getenv(CONFIG_ENV_VAR, str(_DEFAULT_CONFIG_FILE)))


def _check_overlay(overlay: dict) -> None:
    for section, values in overlay.items():
        if section not in DEFAULTS:
            raise DomainError(f"Unknown config section '{section}'")
        if not isinstance(values, dict):
            raise DomainError(f"Config section '{section}' must be an object")
        unknown = sorted(set(values) - set(DEFAULTS[section]))
        if unknown:
            raise DomainError(f"Unknown keys in config section '{section}': {unknown}")


def _apply(data: dict, overlay: dict) -> None:
    for section, values in overlay.items():
        data[section].update(copy.deepcopy(values))


def _changed(data: dict) -> dict:
    out: dict[str, dict[str, Any]] = {}
    for section, values in data.items():
        changed = {k: v for k, v in values.items() if DEFAULTS[section].get(k) != v}
        if changed:
            out[section] = changed
    return out


class CalibrationConfig:
    """Process-wide calibration settings.  Thread-safe; every change is saved."""

    _instance: Optional[CalibrationConfig] = None
    _lock = threading.Lock()

    def __new__(cls) -> CalibrationConfig:
        with cls._lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._path = config_path()
                instance._data = copy.deepcopy(DEFAULTS)
                instance._read()
                cls._instance = instance
            return cls._instance

    @property
    def path(self) -> Path:
        return self._path

    def _read(self):
        if not self._path.exists():
            return
        try:
            overlay = json.loads(self._path.read_text())
            if not isinstance(overlay, dict):
                raise DomainError("top level must be an object")
            _check_overlay(overlay)
        except (OSError, json.JSONDecodeError, DomainError) as e:
            logger.warning("Ignoring calibration config %s: %s", self._path, e)
            return
        _apply(self._data, overlay)
        logger.info("Loaded calibration config from %s", self._path)

    def _write(self):
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(self._data, indent=2))
        except OSError as e:
            logger.warning("Could not save calibration config to %s: %s", self._path, e)

    def get(self, section: str, key: Optional[str] = None) -> Any:
        """A copy of one section, or of one value when ``key`` is given."""
        with self._lock:
            if section not in self._data:
                raise DomainError(f"Unknown config section '{section}'")
            values = self._data[section]
            if key is None:
                return copy.deepcopy(values)
            if key not in values:
                raise DomainError(f"Unknown key '{key}' in config section '{section}'")
            return copy.deepcopy(values[key])

    def set(self, section: str, key: str, value: Any):
        self.update({section: {key: value}})

    def update(self, overlay: dict[str, dict[str, Any]]):
        """Apply several values at once; nothing changes if any key is unknown."""
        _check_overlay(overlay)
        with self._lock:
            _apply(self._data, overlay)
            self._write()

    def reset(self):
        with self._lock:
            self._data = copy.deepcopy(DEFAULTS)
            self._write()

    def get_all(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._data)

    def diff(self) -> dict[str, dict[str, Any]]:
        """Values that differ from DEFAULTS, by section."""
        with self._lock:
            return _changed(self._data)


def get_calibration_config() -> CalibrationConfig:
    return CalibrationConfig()
