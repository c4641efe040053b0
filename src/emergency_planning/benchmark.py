from __future__ import annotations

import logging
import math
import random
from pathlib import Path
from typing import Mapping, Optional, Sequence

from .config import PlanningConfig
from .runner import execute
from .solutions import Solution

log = logging.getLogger(__name__)

# Absolute tolerance when comparing objectives against expected results
RESULT_ATOL: float = 1e-2


def list_instances(inputs: str | Path) -> list[str]:
    return sorted(p.stem for p in Path(inputs).glob("*.json"))


def benchmark(
    model_names: Sequence[str],
    instance_names: Optional[Sequence[str]] = None,
    cfg: Optional[PlanningConfig] = None,
    sample_size: int = 0,
    usages: Optional[Mapping[str, str]] = None,
    seed: Optional[int] = None,
) -> list[Optional[Solution]]:
    """Run every model on every instance, appending one ledger row per solved run.

    Without ``instance_names`` the instances under the inputs directory are used;
    ``sample_size > 1`` draws that many of them at random.
    """
    cfg = cfg or PlanningConfig()
    usages = usages or {}
    if instance_names is None:
        instance_names = list_instances(cfg.paths.inputs)
        if sample_size > 1:
            rng = random.Random(cfg.run.seed if seed is None else seed)
            instance_names = rng.sample(instance_names, min(sample_size, len(instance_names)))
    results: list[Optional[Solution]] = []
    for instance_name in instance_names:
        for model_name in model_names:
            results.append(execute(instance_name, model_name, cfg, usage=usages.get(model_name)))
    return results


def check_results(
    model_names: Sequence[str],
    expected: Mapping[str, float],
    cfg: Optional[PlanningConfig] = None,
    usages: Optional[Mapping[str, str]] = None,
) -> list[tuple[str, str]]:
    """(instance, model) pairs whose objective misses the expected value."""
    cfg = cfg or PlanningConfig()
    usages = usages or {}
    errors: list[tuple[str, str]] = []
    for instance_name, expected_value in expected.items():
        for model_name in model_names:
            solution = execute(instance_name, model_name, cfg, usage=usages.get(model_name), benchmark=False)
            if solution is not None and math.isclose(
                solution.objective_value, float(expected_value), rel_tol=0.0, abs_tol=RESULT_ATOL
            ):
                continue
            log.warning("%s | %s does not match expected %s", instance_name, model_name, expected_value)
            errors.append((instance_name, model_name))
    return errors


__all__ = ["RESULT_ATOL", "list_instances", "benchmark", "check_results"]
