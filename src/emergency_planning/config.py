from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Optional

try:
    import yaml as _yaml  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    _yaml = None


@dataclass(slots=True)
class RunConfig:
    max_iterations: int = 50
    # Convergence gap between master recourse and the recourse certified by the last cuts
    tolerance: float = 0.01
    time_limit_s: int = 3600
    log_level: str = "INFO"
    seed: int = 42
    # Stagnation stopping (0 disables)
    stall_max_no_improve_iters: int = 3
    stall_min_abs_improve: float = 1e-6
    # Branch-and-bound node cap (Integer L-shaped)
    max_search_iterations: int = 25
    # Lower bound on the scenario worker pool; the pool never has fewer workers than scenarios
    workers: int = 0
    verbose: bool = False


@dataclass(slots=True)
class SolverConfig:
    solver: str = "appsi_highs"
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class PathsConfig:
    inputs: str = "inputs"
    outputs: str = "outputs"


@dataclass(slots=True)
class PlanningConfig:
    run: RunConfig = field(default_factory=RunConfig)
    master: SolverConfig = field(default_factory=SolverConfig)
    subproblem: SolverConfig = field(default_factory=SolverConfig)
    callback: SolverConfig = field(default_factory=lambda: SolverConfig(solver="cplex_persistent"))
    paths: PathsConfig = field(default_factory=PathsConfig)


def _as_dict(m: Mapping[str, Any] | None) -> dict[str, Any]:
    return dict(m) if m else {}


def _load_yaml(path: Path) -> dict[str, Any]:
    if _yaml is None:
        raise RuntimeError(
            "YAML config requested but PyYAML is not installed. Install with 'pip install pyyaml'."
        )
    with path.open("r", encoding="utf-8") as f:
        data = _yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError("Top-level YAML document must be a mapping")
        return data


def _solver_config(raw: Mapping[str, Any], default: SolverConfig) -> SolverConfig:
    return SolverConfig(
        solver=str(raw.get("solver", default.solver)),
        options=_as_dict(raw.get("options")) or dict(default.options),
    )


def load_config(path: str | Path | None) -> PlanningConfig:
    """Load configuration from a YAML file or return defaults.

    The schema is minimal and forgiving; unknown keys are ignored. Only YAML is supported.
    """
    if path is None:
        return PlanningConfig()
    p = Path(path)
    if not p.exists():
        return PlanningConfig()

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ValueError(f"Unsupported config format '{p.suffix}'. Please provide a YAML file.")
    raw = _load_yaml(p)
    run = _as_dict(raw.get("run"))
    paths = _as_dict(raw.get("paths"))
    defaults = PlanningConfig()

    run_cfg = RunConfig(
        max_iterations=int(run.get("max_iterations", 50)),
        tolerance=float(run.get("tolerance", 0.01)),
        time_limit_s=int(run.get("time_limit_s", 3600)),
        log_level=str(run.get("log_level", "INFO")),
        seed=int(run.get("seed", 42)),
        stall_max_no_improve_iters=int(run.get("stall_max_no_improve_iters", 3) or 0),
        stall_min_abs_improve=float(run.get("stall_min_abs_improve", 1e-6) or 0.0),
        max_search_iterations=int(run.get("max_search_iterations", 25)),
        workers=int(run.get("workers", 0) or 0),
        verbose=bool(run.get("verbose", False)),
    )
    return PlanningConfig(
        run=run_cfg,
        master=_solver_config(_as_dict(raw.get("master")), defaults.master),
        subproblem=_solver_config(_as_dict(raw.get("subproblem")), defaults.subproblem),
        callback=_solver_config(_as_dict(raw.get("callback")), defaults.callback),
        paths=PathsConfig(
            inputs=str(paths.get("inputs", defaults.paths.inputs)),
            outputs=str(paths.get("outputs", defaults.paths.outputs)),
        ),
    )


def with_overrides(cfg: PlanningConfig, time_limit_s: Optional[int] = None, verbose: Optional[bool] = None) -> PlanningConfig:
    """Copy of ``cfg`` with command-line overrides applied to the run section."""
    changes: dict[str, Any] = {}
    if time_limit_s is not None:
        changes["time_limit_s"] = int(time_limit_s)
    if verbose is not None:
        changes["verbose"] = bool(verbose)
    return replace(cfg, run=replace(cfg.run, **changes))


__all__ = ["RunConfig", "SolverConfig", "PathsConfig", "PlanningConfig", "load_config", "with_overrides"]
