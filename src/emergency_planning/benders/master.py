from __future__ import annotations

import logging
import math
import time
from typing import Iterable, Optional

import numpy as np
import pyomo.environ as pyo

from ..config import PlanningConfig, SolverConfig
from ..errors import MasterInfeasible
from ..instances import Instance
from ..solutions import Metrics
from .backend import SolverHandle, to_status, value_of
from .types import Bound, Cut, CutType, SolveStatus, VarKey

log = logging.getLogger(__name__)


class MasterProblem:
    """First-stage allocation model with one recourse variable per scenario.

    minimize    -sum_k p_k theta_k
    subject to  sum_t x[s, t] <= 1                (exclusive allocation)
                sum_{s,t} cost_t x[s, t] <= budget
                0 <= theta_k <= total demand of k
                Benders cuts

    ``theta`` starts at its upper bound and is pulled down by optimality cuts.
    """

    def __init__(
        self,
        instance: Instance,
        cfg: PlanningConfig,
        relax: bool = False,
        solver_cfg: Optional[SolverConfig] = None,
    ):
        self.instance = instance
        self.cfg = cfg
        self.relaxed = relax
        self.model = self._build()
        nb_sites, nb_teams, nb_scenarios = instance.nb_sites, instance.nb_teams, instance.nb_scenarios
        self.values = np.zeros((nb_sites, nb_teams))
        self.allocations = np.zeros((nb_sites, nb_teams), dtype=bool)
        self.theta = np.zeros(nb_scenarios)
        self.metrics = Metrics()
        self.history: list[Metrics] = []
        # Pending cuts, one bucket per scenario
        self.cuts: list[list[Cut]] = [[] for _ in range(nb_scenarios)]
        self.status = SolveStatus.UNKNOWN
        self.nb_cuts = 0
        self._bounded: set = set()
        solver_cfg = solver_cfg or cfg.master
        self.solver = SolverHandle(
            solver_cfg.solver, cfg.run.time_limit_s, solver_cfg.options, tee=cfg.run.verbose
        )
        self.solver.set_instance(self.model)

    def _build(self) -> pyo.ConcreteModel:
        instance = self.instance
        probabilities = instance.probabilities()

        m = pyo.ConcreteModel(name="master")
        m.SITES = pyo.Set(initialize=range(instance.nb_sites))
        m.TEAMS = pyo.Set(initialize=range(instance.nb_teams))
        m.SCENARIOS = pyo.Set(initialize=range(instance.nb_scenarios))

        domain = pyo.UnitInterval if self.relaxed else pyo.Binary
        m.is_allocated = pyo.Var(m.SITES, m.TEAMS, within=domain)
        m.theta = pyo.Var(
            m.SCENARIOS,
            within=pyo.NonNegativeReals,
            bounds=lambda m, k: (0, instance.total_demand(k)),
        )

        m.obj = pyo.Objective(
            expr=-sum(float(probabilities[k]) * m.theta[k] for k in m.SCENARIOS),
            sense=pyo.minimize,
        )
        m.exclusive_allocation = pyo.Constraint(
            m.SITES, rule=lambda m, s: sum(m.is_allocated[s, t] for t in m.TEAMS) <= 1
        )
        m.budget_limit = pyo.Constraint(
            expr=sum(instance.cost(t) * m.is_allocated[s, t] for s in m.SITES for t in m.TEAMS)
            <= instance.budget
        )
        m.benders_cuts = pyo.ConstraintList()
        # Cuts handed to the solver during its own search (not registered as model rows)
        m.lazy_cuts = pyo.ConstraintList()
        return m

    # --- state -----------------------------------------------------------------

    @property
    def point(self) -> np.ndarray:
        """First-stage point handed to the subproblems (read-only copy)."""
        point = (self.values if self.relaxed else self.allocations.astype(float)).copy()
        point.setflags(write=False)
        return point

    @property
    def objective(self) -> float:
        """Objective of the underlying model (minimization sense)."""
        return float(-np.dot(self.instance.probabilities(), self.theta))

    def reset_metrics(self) -> None:
        self.metrics = Metrics()

    def _snapshot(self, execution_time: float) -> None:
        self.metrics = Metrics(float(self.theta.sum()), execution_time, 0.0)
        self.history.append(self.metrics.copy())

    def solve(self) -> SolveStatus:
        t0 = time.perf_counter()
        results = self.solver.solve(self.model)
        elapsed = time.perf_counter() - t0
        self.status = to_status(results)
        if self.status is SolveStatus.INFEASIBLE_OR_UNBOUNDED:
            raise MasterInfeasible(f"Master problem of {self.instance.name} is infeasible or unbounded")
        if self.status is not SolveStatus.OPTIMAL:
            log.warning("Master problem not optimal: %s", self.status.value)

        m = self.model
        for s in m.SITES:
            for t in m.TEAMS:
                self.values[s, t] = value_of(m.is_allocated[s, t])
        for k in m.SCENARIOS:
            self.theta[k] = value_of(m.theta[k])
        self.allocations = self.values > 0.5
        self._snapshot(elapsed)
        self.clear_cuts()
        return self.status

    def load_candidate(self, values: np.ndarray, theta: np.ndarray) -> None:
        """Adopt a candidate reported by the solver during its own search."""
        self.values = np.asarray(values, dtype=float).reshape(self.values.shape)
        self.theta = np.asarray(theta, dtype=float).reshape(self.theta.shape)
        self.allocations = self.values > 0.5
        self._snapshot(math.nan)

    def has_converged(self, gap: float) -> bool:
        return self.metrics.objective_value - self.metrics.expected_recourse < gap

    # --- cuts ------------------------------------------------------------------

    def clear_cuts(self) -> None:
        self.cuts = [[] for _ in range(self.instance.nb_scenarios)]

    def cut_expression(self, cut: Cut):
        """Left-hand side of ``cut`` over the model variables (the cut reads ``lhs <= 0``)."""
        m = self.model
        expr = cut.constant + sum(c * m.is_allocated[s, t] for (s, t), c in cut.coeffs.items())
        if cut.cut_type is CutType.OPTIMALITY:
            expr = expr + cut.weight * m.theta[cut.scenario]
        return expr

    def _is_constant(self, cut: Cut) -> bool:
        if cut.cut_type is CutType.OPTIMALITY or cut.coeffs:
            return False
        if cut.constant > 0:
            raise MasterInfeasible(f"{self.instance.scenario_id(cut.scenario)} is infeasible for every allocation")
        return True

    def add_cut(self, cut: Cut):
        if self._is_constant(cut):
            return None
        con = self.model.benders_cuts.add(self.cut_expression(cut) <= 0)
        self.solver.add_constraint(con)
        self.nb_cuts += 1
        log.debug("Added %s as cut #%d (const=%.6g nnz=%d)", cut.name, self.nb_cuts, cut.constant, len(cut.coeffs))
        return con

    def add_lazy_cut(self, cut: Cut):
        """Record ``cut`` on the model without registering it with the solver."""
        if self._is_constant(cut):
            return None
        con = self.model.lazy_cuts.add(self.cut_expression(cut) <= 0)
        self.nb_cuts += 1
        return con

    def apply_cuts(self) -> int:
        """Add every pending cut; expected recourse becomes the sum certified by the optimality cuts."""
        applied = 0
        for bucket in self.cuts:
            for cut in bucket:
                if cut.cut_type is CutType.OPTIMALITY:
                    self.metrics.expected_recourse += cut.objective_value
                self.add_cut(cut)
                applied += 1
        self.clear_cuts()
        return applied

    # --- branching -------------------------------------------------------------

    def variable(self, key: VarKey):
        kind, *index = key
        if kind == "allocation":
            return self.model.is_allocated[index[0], index[1]]
        if kind == "theta":
            return self.model.theta[index[0]]
        raise KeyError(key)

    def default_bounds(self, key: VarKey) -> tuple[float, float]:
        if key[0] == "theta":
            return 0.0, float(self.instance.total_demand(key[1]))
        return 0.0, 1.0

    def branching_values(self) -> dict[VarKey, float]:
        values: dict[VarKey, float] = {
            ("allocation", s, t): float(self.values[s, t])
            for s in range(self.instance.nb_sites)
            for t in range(self.instance.nb_teams)
        }
        values.update({("theta", k): float(self.theta[k]) for k in range(self.instance.nb_scenarios)})
        return values

    def apply_bounds(self, bounds: Iterable[Bound]) -> None:
        """Replace the branching bounds currently on the model with ``bounds``."""
        wanted: dict[VarKey, tuple[float, float]] = {}
        for bound in bounds:
            lb, ub = wanted.get(bound.key, self.default_bounds(bound.key))
            wanted[bound.key] = (max(lb, bound.lower), min(ub, bound.upper))
        empty = [key for key, (lb, ub) in wanted.items() if lb > ub]
        if empty:
            raise MasterInfeasible(f"Empty domain for {empty}")
        for key in self._bounded - wanted.keys():
            self._set_bounds(key, *self.default_bounds(key))
        for key, (lb, ub) in wanted.items():
            self._set_bounds(key, lb, ub)
        self._bounded = set(wanted)

    def _set_bounds(self, key: VarKey, lb: float, ub: float) -> None:
        var = self.variable(key)
        var.setlb(lb)
        var.setub(ub)
        self.solver.update_var(var)


__all__ = ["MasterProblem"]
