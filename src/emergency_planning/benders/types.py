from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, NamedTuple, Optional, Tuple

import numpy as np


class SolveStatus(str, Enum):
    OPTIMAL = "OPTIMAL"
    FEASIBLE = "FEASIBLE"
    INFEASIBLE_OR_UNBOUNDED = "INFEASIBLE_OR_UNBOUNDED"
    UNKNOWN = "UNKNOWN"


class CutType(str, Enum):
    OPTIMALITY = "OPTIMALITY"
    FEASIBILITY = "FEASIBILITY"


class Method(str, Enum):
    BASE = "Base"
    LSHAPED = "LShaped"
    INTEGER_LSHAPED = "IntegerLShaped"


class Usage(str, Enum):
    ITERATIVE = "iterative"
    CALLBACK = "callback"


# (site index, team index) of an allocation variable
AllocationKey = Tuple[int, int]
# ("allocation", site, team) or ("theta", scenario)
VarKey = Tuple


class Bound(NamedTuple):
    """Extra bound on one master variable, added when branching."""

    key: VarKey
    lower: float = -math.inf
    upper: float = math.inf


@dataclass(frozen=True, slots=True)
class Cut:
    """Linear cut over master variables.

    Represents: constant + sum(coeffs[(s, t)] * allocation[s, t]) + weight * theta[scenario] <= 0

    Feasibility cuts carry ``weight == 0`` and a NaN ``objective_value``.
    For optimality cuts ``objective_value`` is the recourse (rescues) the
    subproblem certified at the allocation the cut was derived from.
    """

    name: str
    cut_type: CutType
    scenario: int
    coeffs: Mapping[AllocationKey, float] = field(default_factory=dict)
    constant: float = 0.0
    weight: float = 0.0
    objective_value: float = math.nan

    def lhs(self, allocations: np.ndarray, theta: Optional[np.ndarray] = None) -> float:
        value = self.constant + sum(c * float(allocations[s, t]) for (s, t), c in self.coeffs.items())
        if self.weight and theta is not None:
            value += self.weight * float(theta[self.scenario])
        return float(value)

    def is_satisfied(self, allocations: np.ndarray, theta: Optional[np.ndarray] = None, tol: float = 1e-6) -> bool:
        return self.lhs(allocations, theta) <= tol


__all__ = [
    "SolveStatus",
    "CutType",
    "Method",
    "Usage",
    "AllocationKey",
    "VarKey",
    "Bound",
    "Cut",
]
