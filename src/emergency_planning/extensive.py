from __future__ import annotations

import logging
import time

import numpy as np
import pyomo.environ as pyo

from .benders.backend import SolverHandle, to_status, value_of
from .benders.types import Method, SolveStatus
from .config import PlanningConfig
from .errors import MasterInfeasible
from .instances import Instance
from .solutions import Solution, build_solution

log = logging.getLogger(__name__)


def build_model(instance: Instance) -> pyo.ConcreteModel:
    """Deterministic equivalent over every scenario at once."""
    probabilities = instance.probabilities()
    arcs = instance.arcs()
    M = instance.maximum_capacity

    m = pyo.ConcreteModel(name=f"extensive_{instance.name}")
    m.SITES = pyo.Set(initialize=range(instance.nb_sites))
    m.TEAMS = pyo.Set(initialize=range(instance.nb_teams))
    m.SCENARIOS = pyo.Set(initialize=range(instance.nb_scenarios))
    m.ARCS = pyo.Set(initialize=arcs, dimen=2)

    m.is_allocated = pyo.Var(m.SITES, m.TEAMS, within=pyo.Binary)
    m.is_assigned = pyo.Var(m.ARCS, m.SCENARIOS, within=pyo.Binary)
    m.nb_rescues = pyo.Var(m.ARCS, m.SCENARIOS, within=pyo.NonNegativeReals)

    # Maximize the expected number of people rescued
    m.obj = pyo.Objective(
        expr=-sum(float(probabilities[k]) * m.nb_rescues[i, j, k] for (i, j) in m.ARCS for k in m.SCENARIOS),
        sense=pyo.minimize,
    )

    m.exclusive_allocation = pyo.Constraint(
        m.SITES, rule=lambda m, s: sum(m.is_allocated[s, t] for t in m.TEAMS) <= 1
    )
    m.budget_limit = pyo.Constraint(
        expr=sum(instance.cost(t) * m.is_allocated[s, t] for s in m.SITES for t in m.TEAMS) <= instance.budget
    )

    incoming = {j: [i for (i, jj) in arcs if jj == j] for j in m.SITES}
    outgoing = {i: [j for (ii, j) in arcs if ii == i] for i in m.SITES}

    def exclusive_assignment(m, j, k):
        if not incoming[j]:
            return pyo.Constraint.Skip
        return sum(m.is_assigned[i, j, k] for i in incoming[j]) <= 1

    def demand_satisfaction(m, j, k):
        if not incoming[j]:
            return pyo.Constraint.Skip
        return sum(m.nb_rescues[i, j, k] for i in incoming[j]) <= instance.demand(k, j)

    def rescue_capacity(m, i, k):
        if not outgoing[i]:
            return pyo.Constraint.Skip
        return sum(m.nb_rescues[i, j, k] for j in outgoing[i]) <= sum(
            instance.capacity(t) * m.is_allocated[i, t] for t in m.TEAMS
        )

    m.exclusive_assignment = pyo.Constraint(m.SITES, m.SCENARIOS, rule=exclusive_assignment)
    m.demand_satisfaction = pyo.Constraint(m.SITES, m.SCENARIOS, rule=demand_satisfaction)
    m.rescue_capacity = pyo.Constraint(m.SITES, m.SCENARIOS, rule=rescue_capacity)
    m.only_assigned_rescue = pyo.Constraint(
        m.ARCS, m.SCENARIOS, rule=lambda m, i, j, k: m.nb_rescues[i, j, k] <= M * m.is_assigned[i, j, k]
    )
    return m


class ExtensiveForm:
    """The "Base" method: solve the deterministic equivalent as one MIP."""

    def __init__(self, instance: Instance, cfg: PlanningConfig):
        self.instance = instance
        self.cfg = cfg

    def solve(self) -> Solution:
        instance = self.instance
        started = time.perf_counter()
        m = build_model(instance)
        handle = SolverHandle(
            self.cfg.master.solver, self.cfg.run.time_limit_s, self.cfg.master.options, tee=self.cfg.run.verbose
        )
        status = to_status(handle.solve(m))
        if status is SolveStatus.INFEASIBLE_OR_UNBOUNDED:
            raise MasterInfeasible(f"Extensive model of {instance.name} is infeasible or unbounded")
        if status is not SolveStatus.OPTIMAL:
            log.warning("Extensive model not optimal: %s", status.value)

        allocated = np.array(
            [[value_of(m.is_allocated[s, t]) > 0.5 for t in m.TEAMS] for s in m.SITES], dtype=bool
        ).reshape(instance.nb_sites, instance.nb_teams)
        rescues = np.zeros((instance.nb_sites, instance.nb_scenarios))
        for (i, j) in m.ARCS:
            for k in m.SCENARIOS:
                rescues[i, k] += value_of(m.nb_rescues[i, j, k])
        log.info("Extensive model solved: objective=%.6g", -pyo.value(m.obj))
        return build_solution(Method.BASE, instance, allocated, rescues, time.perf_counter() - started)


__all__ = ["build_model", "ExtensiveForm"]
