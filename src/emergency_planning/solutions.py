from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, asdict
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Sequence

import numpy as np
import pandas as pd

from .benders.types import Method, Usage
from .errors import NoAllocationFound
from .instances import Instance, Site, Team

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Allocation:
    team: Team
    site: Site


@dataclass(frozen=True, slots=True)
class Assignment:
    scenario: str
    allocation: Allocation
    nb_rescues: float


@dataclass(slots=True)
class Metrics:
    objective_value: float = math.nan
    execution_time: float = math.nan
    expected_recourse: float = 0.0

    def copy(self) -> "Metrics":
        return Metrics(self.objective_value, self.execution_time, self.expected_recourse)

    def __str__(self) -> str:
        return ", ".join(f"{k}: {v}" for k, v in asdict(self).items())


@dataclass(slots=True)
class Solution:
    method: Method
    allocations: list[Allocation]
    assignments: list[Assignment] = field(default_factory=list)
    metrics: Metrics = field(default_factory=Metrics)
    usage: Optional[Usage] = None

    @property
    def objective_value(self) -> float:
        return self.metrics.objective_value

    @property
    def execution_time(self) -> float:
        return self.metrics.execution_time

    @property
    def key(self) -> str:
        return method_key(self.method, self.usage)

    def by_scenario(self, scenario: str) -> list[Assignment]:
        return [a for a in self.assignments if a.scenario == scenario]

    def validate(self, instance: Instance) -> None:
        if not self.allocations:
            raise NoAllocationFound(f"{self.key} allocated no team on {instance.name}")
        cost = sum(a.team.cost for a in self.allocations)
        if cost > instance.budget + 1e-6:
            raise ValueError(f"Allocation cost {cost} exceeds budget {instance.budget}")
        sites = [a.site.ID for a in self.allocations]
        if len(sites) != len(set(sites)):
            raise ValueError("More than one team allocated to a site")
        log.info("%s | Solution is valid", self.key)


def method_key(method: Method | str, usage: Usage | str | None = None) -> str:
    name = method.value if isinstance(method, Method) else str(method)
    if usage is None:
        return name
    return f"{name}-{usage.value if isinstance(usage, Usage) else usage}"


def allocations_from_matrix(instance: Instance, allocated: np.ndarray) -> list[Allocation]:
    """Allocations for every (site, team) cell set in a boolean sites x teams matrix."""
    return [
        Allocation(instance.teams[t], instance.sites[s])
        for s, t in zip(*np.nonzero(allocated))
    ]


def build_solution(
    method: Method,
    instance: Instance,
    allocated: np.ndarray,
    rescues: np.ndarray,
    execution_time: float,
    usage: Optional[Usage] = None,
    expected_recourse: float = 0.0,
) -> Solution:
    """Assemble a validated :class:`Solution`.

    ``rescues`` is a sites x scenarios matrix with the people rescued by the
    team allocated at each site; the objective is the probability-weighted
    total.
    """
    allocations = allocations_from_matrix(instance, allocated)
    by_site = {instance.sites.index(a.site): a for a in allocations}
    assignments: list[Assignment] = []
    for k in range(instance.nb_scenarios):
        for s, allocation in sorted(by_site.items()):
            value = float(rescues[s, k])
            if value > 1e-6:
                assignments.append(Assignment(instance.scenario_id(k), allocation, round(value, 6)))
    objective = float(instance.probabilities() @ rescues.sum(axis=0))
    solution = Solution(
        method=method,
        allocations=allocations,
        assignments=assignments,
        metrics=Metrics(objective, execution_time, expected_recourse),
        usage=usage,
    )
    solution.validate(instance)
    return solution


def _frame(rows: Iterable[Sequence], columns: list[str]) -> pd.DataFrame:
    return pd.DataFrame(list(rows), columns=columns)


def export_solution(path: str | Path, instance: Instance, solution: Solution) -> None:
    """Write ``<path>_allocations.csv``, ``<path>_rescues.csv`` and ``<path>_metrics.csv``."""
    base = Path(path)
    base.parent.mkdir(parents=True, exist_ok=True)

    allocations = _frame(((a.team.ID, a.site.ID) for a in solution.allocations), ["team", "site"])
    allocations.to_csv(f"{base}_allocations.csv", index=False)

    rescues = _frame(
        (
            (a.scenario, a.allocation.team.ID, a.allocation.site.ID, a.nb_rescues)
            for a in solution.assignments
        ),
        ["scenario", "team", "site", "nb_rescues"],
    )
    rescues.to_csv(f"{base}_rescues.csv", index=False)

    metrics = pd.DataFrame(
        {"objective_value": [solution.objective_value], "execution_time": [solution.execution_time]}
    )
    metrics.to_csv(f"{base}_metrics.csv", index=False)
    log.info("%s | %s | %s", instance, solution.key, solution.metrics)


LEDGER_COLUMNS = ["timestamp", "instance_name", "model_name", "solution_value", "execution_time"]


def read_ledger(path: str | Path) -> pd.DataFrame:
    """Benchmark ledger at ``path``; empty when missing or written with other columns."""
    p = Path(path)
    if p.is_file():
        data = pd.read_csv(p)
        if all(c in data.columns for c in LEDGER_COLUMNS):
            return data
        log.warning("Ignoring ledger %s with unexpected columns %s", p, list(data.columns))
    return pd.DataFrame(columns=LEDGER_COLUMNS)


def record(path: str | Path, instance: Instance, solution: Solution) -> pd.DataFrame:
    """Append one row for ``solution`` to the benchmark ledger and write it back."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    row = pd.DataFrame(
        [[datetime.now().isoformat(), instance.name, solution.key, solution.objective_value, solution.execution_time]],
        columns=LEDGER_COLUMNS,
    )
    history = read_ledger(p)
    history = row if history.empty else pd.concat([history, row], ignore_index=True)
    history.to_csv(p, index=False)
    log.info("Solution recorded in benchmark file %s", p)
    return history


__all__ = [
    "Allocation",
    "Assignment",
    "Metrics",
    "Solution",
    "method_key",
    "allocations_from_matrix",
    "build_solution",
    "export_solution",
    "LEDGER_COLUMNS",
    "read_ledger",
    "record",
]
