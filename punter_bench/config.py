from __future__ import annotations

import copy
import json
import shutil
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from punter_bench.utils import unique

ALL_MAPS = "ALL"

DEFAULT_CFG: dict[str, Any] = {
    "maps": [ALL_MAPS],
    "rounds": 10,
    "parallel": 2,
    "avoid_eager": False,
    "loose_dir": None,
    "punter_name": "skobochka",
    "eager_name": "eager punter",
    "status": {
        "url": "http://punter.inf.ed.ac.uk/status.html",
        "maps_base_url": "http://punter.inf.ed.ac.uk/maps/",
        "user_agent": "PunterBenchmarkBot/1.0.0",
        "timeout": 10.0,
        "retries": 10,
        "backoff_sec": 2.0,
    },
    "poll_interval_sec": 5.0,
    "flush_interval_sec": 0.0,
    "solver": {
        "path": None,
        "args": [],
        "env": {},
        "quiet": True,
        "tmp_dir": None,
    },
    "report_json": None,
}


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class BenchmarkRun:
    solver: str
    maps: tuple[str, ...] = (ALL_MAPS,)
    rounds: int = 10
    parallel: int = 2
    avoid_eager: bool = False
    loose_dir: str | None = None
    punter_name: str = "skobochka"
    eager_name: str = "eager punter"
    status_url: str = "http://punter.inf.ed.ac.uk/status.html"
    maps_base_url: str = "http://punter.inf.ed.ac.uk/maps/"
    user_agent: str = "PunterBenchmarkBot/1.0.0"
    http_timeout: float = 10.0
    fetch_retries: int = 10
    fetch_backoff_sec: float = 2.0
    poll_interval_sec: float = 5.0
    flush_interval_sec: float = 0.0
    solver_args: tuple[str, ...] = ()
    solver_env: dict[str, str] = field(default_factory=dict)
    solver_quiet: bool = True
    tmp_dir: str | None = None
    report_json: str | None = None

    @property
    def wants_all_maps(self) -> bool:
        return ALL_MAPS in self.maps

    def with_maps(self, maps: list[str]) -> BenchmarkRun:
        """Return a copy with the map list pinned (used once "ALL" is resolved)."""
        return replace(self, maps=tuple(unique(maps)))


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for key, val in override.items():
        if isinstance(val, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], val)
        else:
            out[key] = val
    return out


def load_config(path: str | Path | None) -> dict[str, Any]:
    cfg = copy.deepcopy(DEFAULT_CFG)
    if not path:
        return cfg
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"config file not found: {p}")
    text = p.read_text(encoding="utf-8")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        try:
            payload = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"failed to parse config: {p}") from exc
    if payload is None:
        return cfg
    if not isinstance(payload, dict):
        raise ConfigError(f"config root must be a mapping: {p}")
    return _deep_merge(cfg, payload)


def _as_maps(raw: Any) -> list[str]:
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, (list, tuple)):
        raise ConfigError(f"maps must be a list or comma separated string, got {type(raw).__name__}")
    return unique([str(m).strip() for m in raw if str(m).strip()])


def build_run(cfg: dict[str, Any], overrides: dict[str, Any] | None = None) -> BenchmarkRun:
    """Validate a merged config mapping into a BenchmarkRun.

    ``overrides`` holds command-line values; ``None`` entries are ignored so
    unset flags never mask the config file.
    """
    if overrides:
        flat = {k: v for k, v in overrides.items() if v is not None}
        solver_override = flat.pop("solver", None)
        cfg = _deep_merge(cfg, flat)
        if solver_override is not None:
            cfg = _deep_merge(cfg, {"solver": {"path": solver_override}})

    status = cfg.get("status") or {}
    solver = cfg.get("solver") or {}

    solver_path = solver.get("path")
    if not solver_path:
        raise ConfigError("solver binary path is required")
    maps = _as_maps(cfg.get("maps", [ALL_MAPS]))
    if not maps:
        raise ConfigError("at least one map (or ALL) is required")

    try:
        run = BenchmarkRun(
            solver=str(solver_path),
            maps=tuple(maps),
            rounds=int(cfg.get("rounds", 10)),
            parallel=int(cfg.get("parallel", 2)),
            avoid_eager=bool(cfg.get("avoid_eager", False)),
            loose_dir=str(cfg["loose_dir"]) if cfg.get("loose_dir") else None,
            punter_name=str(cfg.get("punter_name", "skobochka")),
            eager_name=str(cfg.get("eager_name", "eager punter")),
            status_url=str(status.get("url")),
            maps_base_url=str(status.get("maps_base_url")),
            user_agent=str(status.get("user_agent")),
            http_timeout=float(status.get("timeout", 10.0)),
            fetch_retries=int(status.get("retries", 10)),
            fetch_backoff_sec=float(status.get("backoff_sec", 2.0)),
            poll_interval_sec=float(cfg.get("poll_interval_sec", 5.0)),
            flush_interval_sec=float(cfg.get("flush_interval_sec") or 0.0),
            solver_args=tuple(str(a) for a in solver.get("args") or []),
            solver_env={str(k): str(v) for k, v in (solver.get("env") or {}).items()},
            solver_quiet=bool(solver.get("quiet", True)),
            tmp_dir=str(solver["tmp_dir"]) if solver.get("tmp_dir") else None,
            report_json=str(cfg["report_json"]) if cfg.get("report_json") else None,
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid config value: {exc}") from exc

    validate_run(run)
    return run


def validate_run(run: BenchmarkRun) -> None:
    if run.rounds <= 0:
        raise ConfigError("rounds must be >= 1")
    if run.parallel <= 0:
        raise ConfigError("parallel must be >= 1")
    if run.fetch_retries <= 0:
        raise ConfigError("status retries must be >= 1")
    if run.fetch_backoff_sec < 0:
        raise ConfigError("status backoff must be >= 0")
    if run.poll_interval_sec <= 0:
        raise ConfigError("poll interval must be > 0")
    if run.flush_interval_sec < 0:
        raise ConfigError("flush interval must be >= 0")
    if not run.punter_name:
        raise ConfigError("punter name must not be empty")
    if not (Path(run.solver).exists() or shutil.which(run.solver)):
        raise ConfigError(f"solver binary not found: {run.solver}")
