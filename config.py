import json
import logging
import os
import re
import tomllib
from dataclasses import dataclass, field, asdict, fields
from typing import Any, List, Mapping, Optional

from errors import ConfigError

log = logging.getLogger(__name__)


@dataclass
class FuzzConfig:
    # traversal
    max_depth: int = 10
    iterations_per_batch: int = 30
    throttle_ms: float = 10.0

    # scheduler
    interval_ms: float = 5.0
    operation_roster: List[str] = field(default_factory=list)  # empty = everything the adapter offers
    max_in_flight: int = 16
    race_descendants: bool = False

    # value pool
    seed: Optional[int] = None
    random_strings: int = 100
    random_string_length: int = 10

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "FuzzConfig":
        cfg = cls(**_strip_unknown(data or {}))
        cfg.clamp()
        return cfg

    def merged(self, overrides: Optional[Mapping[str, Any]]) -> "FuzzConfig":
        acc = self.as_dict()
        acc.update(_strip_unknown(overrides or {}))
        return FuzzConfig.from_mapping(acc)

    def as_dict(self) -> dict:
        return asdict(self)

    def clamp(self) -> None:
        self.max_depth = _clamp_int("max_depth", self.max_depth, 0, 64, 10)
        self.iterations_per_batch = _clamp_int("iterations_per_batch", self.iterations_per_batch, 0, 10000, 30)
        self.max_in_flight = _clamp_int("max_in_flight", self.max_in_flight, 1, 4096, 16)
        self.random_strings = _clamp_int("random_strings", self.random_strings, 0, 100000, 100)
        self.random_string_length = _clamp_int("random_string_length", self.random_string_length, 0, 4096, 10)
        self.interval_ms = _clamp_float("interval_ms", self.interval_ms, 0.1, 10000.0, 5.0)
        self.throttle_ms = _clamp_float("throttle_ms", self.throttle_ms, 0.0, 10000.0, 10.0)
        self.race_descendants = bool(self.race_descendants)
        if isinstance(self.operation_roster, str):
            self.operation_roster = [x.strip() for x in self.operation_roster.split(",") if x.strip()]
        else:
            self.operation_roster = [str(x) for x in (self.operation_roster or [])]
        if self.seed is not None:
            try:
                self.seed = int(self.seed)
            except (TypeError, ValueError):
                log.warning("[config] invalid seed %r, ignoring", self.seed)
                self.seed = None


ALLOW_KEYS = {f.name for f in fields(FuzzConfig)}


def _strip_unknown(d: Mapping[str, Any]) -> dict:
    clean = {}
    for k, v in d.items():
        if k in ALLOW_KEYS:
            clean[k] = v
        else:
            log.warning("[config] unknown key '%s' (ignored)", k)
    return clean


def _clamp_int(name: str, value, lo: int, hi: int, default: int) -> int:
    try:
        v = int(value)
    except (TypeError, ValueError):
        log.warning("[config] invalid %s %r, using %d", name, value, default)
        return default
    if not lo <= v <= hi:
        log.warning("[config] clamped %s to %d..%d", name, lo, hi)
        v = max(lo, min(hi, v))
    return v


def _clamp_float(name: str, value, lo: float, hi: float, default: float) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        log.warning("[config] invalid %s %r, using %s", name, value, default)
        return default
    if v != v or not lo <= v <= hi:
        log.warning("[config] clamped %s to %s..%s", name, lo, hi)
        v = default if v != v else max(lo, min(hi, v))
    return v


def read_config_file(path: str) -> dict:
    if not path:
        return {}
    if not os.path.exists(path):
        raise ConfigError(f"config file not found: {path}")
    try:
        with open(path, "rb") as f:
            data = f.read()
        if path.lower().endswith((".toml", ".tml")):
            blob = tomllib.loads(data.decode("utf-8", "ignore"))
        else:
            # JSON with // and /* */ comments
            txt = re.sub(r"/\*.*?\*/|//[^\n]*", "", data.decode("utf-8", "ignore"), flags=re.S)
            blob = json.loads(txt or "{}")
    except (OSError, ValueError) as e:
        raise ConfigError(f"failed to parse {path}: {e}") from e
    if not isinstance(blob, dict):
        raise ConfigError(f"{path}: top level must be a table/object")
    # [racefuzz] table in a shared TOML file
    if isinstance(blob.get("racefuzz"), dict):
        blob = blob["racefuzz"]
    return blob


def load_config(path: Optional[str] = None, overrides: Optional[Mapping[str, Any]] = None) -> FuzzConfig:
    """defaults -> file (JSON or TOML) -> overrides"""
    acc = FuzzConfig().as_dict()
    acc.update(_strip_unknown(read_config_file(path)))
    if overrides:
        acc.update(_strip_unknown({k: v for k, v in overrides.items() if v is not None}))
    cfg = FuzzConfig.from_mapping(acc)
    log.debug("[config] effective: %s", cfg.as_dict())
    return cfg
