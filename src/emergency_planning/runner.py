from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from pyomo.common.errors import ApplicationError

from .benders.callback import CallbackLShaped
from .benders.integer import IntegerLShaped
from .benders.solver import IterativeLShaped
from .benders.types import Method, Usage
from .config import PlanningConfig, load_config, with_overrides
from .errors import PlanningError, UnrecognizedModel
from .extensive import ExtensiveForm
from .instances import Instance, load_instance
from .logging_config import setup_logging
from .solutions import Solution, export_solution, method_key, record

log = logging.getLogger(__name__)


def _default_config_path() -> Path:
    """Best-effort discovery of the default YAML config.

    Tries these, in order:
    1) CWD `configs/default.yaml`
    2) Repo root relative to this file
    Falls back to `configs/default.yaml` in CWD regardless.
    """
    cwd_path = Path("configs/default.yaml")
    if cwd_path.exists():
        return cwd_path
    here = Path(__file__).resolve()
    repo_path = here.parents[2] / "configs" / "default.yaml"
    if repo_path.exists():
        return repo_path
    return cwd_path


def parse_method(model_name: str | Method) -> Method:
    if isinstance(model_name, Method):
        return model_name
    try:
        return Method(model_name)
    except ValueError:
        raise UnrecognizedModel(model_name) from None


def parse_usage(usage: str | Usage | None) -> Optional[Usage]:
    if usage is None or isinstance(usage, Usage):
        return usage
    try:
        return Usage(str(usage).lower())
    except ValueError:
        raise ValueError(f"Usage {usage!r} not registered") from None


def get_driver(method: Method, instance: Instance, cfg: PlanningConfig, usage: Optional[Usage] = None):
    if method is Method.BASE:
        return ExtensiveForm(instance, cfg)
    if method is Method.LSHAPED:
        if usage is Usage.CALLBACK:
            return CallbackLShaped(instance, cfg)
        return IterativeLShaped(instance, cfg)
    if method is Method.INTEGER_LSHAPED:
        return IntegerLShaped(instance, cfg)
    raise UnrecognizedModel(str(method))


def optimize(
    model_name: str | Method,
    instance: Instance,
    cfg: Optional[PlanningConfig] = None,
    usage: str | Usage | None = None,
) -> Optional[Solution]:
    """Solve ``instance`` with the named method.

    Unknown model names raise :class:`UnrecognizedModel`. Failures while
    solving are logged and reported as ``None``.
    """
    cfg = cfg or PlanningConfig()
    method = parse_method(model_name)
    usage = parse_usage(usage)
    key = method_key(method, usage)
    driver = get_driver(method, instance, cfg, usage)
    log.info("%s | %s", key, instance)
    try:
        return driver.solve()
    except (PlanningError, RuntimeError, ValueError, ApplicationError) as exc:
        log.error("%s | Error while solving %s with %s | Error: %s", key, instance.name, method.value, exc)
        return None


def execute(
    filename: str,
    model: str | Method,
    cfg: Optional[PlanningConfig] = None,
    usage: str | Usage | None = None,
    limit: Optional[int] = None,
    verbose: Optional[bool] = None,
    benchmark: bool = True,
) -> Optional[Solution]:
    """Load an instance, solve it, export the solution and append a ledger row."""
    cfg = with_overrides(cfg or PlanningConfig(), time_limit_s=limit, verbose=verbose)
    instance = load_instance(filename, cfg.paths.inputs)
    solution = optimize(model, instance, cfg, usage)
    if solution is None:
        return None

    outputs = Path(cfg.paths.outputs)
    export_solution(outputs / "solutions" / f"{instance.name}_{solution.key}", instance, solution)
    if benchmark:
        record(outputs / "benchmark.csv", instance, solution)
    return solution


def run(
    config_path: str | Path | None = None,
    filename: Optional[str] = None,
    model: str = Method.LSHAPED.value,
    usage: str | None = None,
) -> Optional[Solution]:
    """Run one instance with options read from YAML (``configs/default.yaml`` by default)."""
    cfg_path = Path(config_path) if config_path is not None else _default_config_path()
    cfg = load_config(cfg_path)
    setup_logging(cfg.run.log_level, Path(cfg.paths.outputs) / "logs")
    if filename is None:
        raise ValueError("An instance file name is required")
    return execute(filename, model, cfg, usage=usage)


__all__ = ["parse_method", "parse_usage", "get_driver", "optimize", "execute", "run"]
