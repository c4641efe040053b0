from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import pyomo.environ as pyo

from .types import SolveStatus

log = logging.getLogger(__name__)

# Per-family option carrying a wall-clock limit when the solver takes options
_TIME_LIMIT_OPTIONS = {
    "gurobi": "TimeLimit",
    "cplex": "timelimit",
    "glpk": "tmlim",
    "cbc": "sec",
}


def is_persistent(solver_name: str) -> bool:
    return solver_name.lower().endswith("_persistent")


def _family(solver_name: str) -> str:
    name = solver_name.lower()
    if name.startswith("appsi_"):
        return "appsi"
    return name.split("_")[0]


class SolverHandle:
    """Thin wrapper around a pyomo solver plugin.

    Keeps the plugin for the lifetime of a model so appsi and persistent
    interfaces can reuse their state between solves, and applies the
    configured time limit and options once.
    """

    def __init__(
        self,
        solver_name: str,
        time_limit: Optional[float] = None,
        options: Mapping[str, Any] | None = None,
        tee: bool = False,
    ):
        self.name = solver_name
        self.tee = bool(tee)
        self.time_limit = time_limit
        self.solver = pyo.SolverFactory(solver_name)
        self.persistent = is_persistent(solver_name)
        self._instance: pyo.ConcreteModel | None = None
        family = _family(solver_name)
        if family != "appsi":
            opts = dict(options or {})
            option = _TIME_LIMIT_OPTIONS.get(family)
            if time_limit is not None and option is not None:
                opts.setdefault(option, time_limit)
            for k, v in opts.items():
                self.solver.options[k] = v
        elif options:
            log.debug("Ignoring options %s for %s", dict(options), solver_name)

    def set_instance(self, model: pyo.ConcreteModel) -> None:
        if self.persistent:
            self.solver.set_instance(model)
        self._instance = model

    def add_constraint(self, con) -> None:
        if self.persistent and self._instance is not None:
            self.solver.add_constraint(con)

    def update_var(self, var) -> None:
        if self.persistent and self._instance is not None:
            self.solver.update_var(var)

    def solve(self, model: pyo.ConcreteModel):
        if self.persistent:
            if self._instance is not model:
                self.set_instance(model)
            return self.solver.solve(tee=self.tee)
        if _family(self.name) == "appsi":
            # Infeasible models have nothing to load; status is reported instead
            results = self.solver.solve(model, tee=self.tee, load_solutions=False, timelimit=self.time_limit)
            if to_status(results) in (SolveStatus.OPTIMAL, SolveStatus.FEASIBLE):
                self._load_appsi(model)
            return results
        return self.solver.solve(model, tee=self.tee)

    def _load_appsi(self, model: pyo.ConcreteModel) -> None:
        self.solver.load_vars()
        dual = getattr(model, "dual", None)
        if isinstance(dual, pyo.Suffix) and dual.import_enabled():
            for con, value in self.solver.get_duals().items():
                dual[con] = value


def to_status(results) -> SolveStatus:
    term = getattr(results.solver, "termination_condition", None)
    if term == pyo.TerminationCondition.optimal:
        return SolveStatus.OPTIMAL
    if term in (
        pyo.TerminationCondition.feasible,
        pyo.TerminationCondition.maxTimeLimit,
        pyo.TerminationCondition.maxIterations,
    ):
        return SolveStatus.FEASIBLE
    if term in (
        pyo.TerminationCondition.infeasible,
        pyo.TerminationCondition.infeasibleOrUnbounded,
        pyo.TerminationCondition.unbounded,
    ):
        return SolveStatus.INFEASIBLE_OR_UNBOUNDED
    return SolveStatus.UNKNOWN


def value_of(var) -> float:
    """Primal value of a solved variable; raises when the solver loaded none."""
    v = pyo.value(var, exception=False)
    if v is None:
        raise RuntimeError(f"No value loaded for {var.name}; the solver returned no solution")
    return float(v)


__all__ = ["SolverHandle", "is_persistent", "to_status", "value_of"]
