"""Scenario recourse subproblems and the cuts derived from their duals.

For a fixed first-stage point x (sites x teams, possibly fractional) the
capacity available at site i is C_i(x) = sum_t cap_t * x[i, t]. The recourse
LP of scenario k routes rescues along the arcs (i, j), j in N(i), and returns:

- optimality: the most people that can be rescued, R_k(x), as the minimum of
  ``-sum rescue``;
- feasibility: the total deficit/surplus slack needed to satisfy every row.

Only the capacity rows depend on x, so their duals give the slope of the
recourse value in C(x), from which linear cuts in x are built.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import NamedTuple, Optional

import numpy as np
import pyomo.environ as pyo

from ..config import RunConfig, SolverConfig
from ..instances import Instance
from ..solutions import Metrics
from .backend import SolverHandle, to_status, value_of
from .types import Cut, CutType, SolveStatus

log = logging.getLogger(__name__)

# Slack sums below this are treated as zero (scenario feasible)
FEASIBILITY_TOL: float = 1e-6
# Capacity duals below this magnitude are dropped from cut expressions
COEFF_ZERO_TOL: float = 1e-9

_ROW_FAMILIES = ("exclusive_assignment", "demand_satisfaction", "rescue_capacity", "only_assigned_rescue")


@dataclass(slots=True)
class SubProblem:
    cut_type: CutType
    cut: Cut
    scenario: int
    model: pyo.ConcreteModel
    metrics: Metrics


class _RecourseSolution(NamedTuple):
    model: pyo.ConcreteModel
    objective: float
    gains: np.ndarray
    rescues: np.ndarray
    elapsed: float


def team_capacities(instance: Instance) -> np.ndarray:
    return np.array([team.capacity for team in instance.teams], dtype=float)


def site_capacities(instance: Instance, point: np.ndarray) -> np.ndarray:
    """Capacity C_i(x) available at every site for the first-stage point ``point``."""
    return np.asarray(point, dtype=float) @ team_capacities(instance)


def build_recourse_model(
    instance: Instance,
    scenario: int,
    capacity: np.ndarray,
    with_slack: bool = False,
) -> pyo.ConcreteModel:
    sites = range(instance.nb_sites)
    arcs = instance.arcs()
    outgoing: dict[int, list[int]] = {i: [] for i in sites}
    incoming: dict[int, list[int]] = {j: [] for j in sites}
    for i, j in arcs:
        outgoing[i].append(j)
        incoming[j].append(i)
    M = instance.maximum_capacity

    m = pyo.ConcreteModel(name=f"recourse_{instance.scenario_id(scenario)}")
    m.SITES = pyo.Set(initialize=list(sites))
    m.ARCS = pyo.Set(initialize=arcs, dimen=2)

    # Assignment is relaxed so that every row exposes a dual
    m.is_assigned = pyo.Var(m.ARCS, within=pyo.NonNegativeReals)
    m.nb_rescues = pyo.Var(m.ARCS, within=pyo.NonNegativeReals)

    if with_slack:
        for family in _ROW_FAMILIES:
            index = m.ARCS if family == "only_assigned_rescue" else m.SITES
            setattr(m, f"deficit_{family}", pyo.Var(index, within=pyo.NonNegativeReals))
            setattr(m, f"surplus_{family}", pyo.Var(index, within=pyo.NonNegativeReals))

    def slack(family: str, idx):
        if not with_slack:
            return 0
        return getattr(m, f"deficit_{family}")[idx] - getattr(m, f"surplus_{family}")[idx]

    def exclusive_assignment(m, j):
        if not incoming[j] and not with_slack:
            return pyo.Constraint.Skip
        return sum(m.is_assigned[i, j] for i in incoming[j]) + slack("exclusive_assignment", j) <= 1

    def demand_satisfaction(m, j):
        if not incoming[j] and not with_slack:
            return pyo.Constraint.Skip
        return (
            sum(m.nb_rescues[i, j] for i in incoming[j]) + slack("demand_satisfaction", j)
            <= instance.demand(scenario, j)
        )

    def rescue_capacity(m, i):
        if not outgoing[i] and not with_slack:
            return pyo.Constraint.Skip
        return sum(m.nb_rescues[i, j] for j in outgoing[i]) + slack("rescue_capacity", i) <= float(capacity[i])

    def only_assigned_rescue(m, i, j):
        return m.nb_rescues[i, j] + slack("only_assigned_rescue", (i, j)) <= M * m.is_assigned[i, j]

    m.exclusive_assignment = pyo.Constraint(m.SITES, rule=exclusive_assignment)
    m.demand_satisfaction = pyo.Constraint(m.SITES, rule=demand_satisfaction)
    m.rescue_capacity = pyo.Constraint(m.SITES, rule=rescue_capacity)
    m.only_assigned_rescue = pyo.Constraint(m.ARCS, rule=only_assigned_rescue)

    if with_slack:
        m.obj = pyo.Objective(
            expr=sum(
                sum(getattr(m, f"deficit_{family}")[idx] + getattr(m, f"surplus_{family}")[idx]
                    for idx in getattr(m, f"deficit_{family}"))
                for family in _ROW_FAMILIES
            ),
            sense=pyo.minimize,
        )
    else:
        # Maximize the number of people rescued
        m.obj = pyo.Objective(expr=-sum(m.nb_rescues[a] for a in m.ARCS), sense=pyo.minimize)

    m.dual = pyo.Suffix(direction=pyo.Suffix.IMPORT)
    return m


def _solve_recourse(
    instance: Instance,
    scenario: int,
    point: np.ndarray,
    solver_cfg: SolverConfig,
    run: RunConfig,
    with_slack: bool,
) -> _RecourseSolution:
    capacity = site_capacities(instance, point)
    m = build_recourse_model(instance, scenario, capacity, with_slack=with_slack)
    handle = SolverHandle(solver_cfg.solver, run.time_limit_s, solver_cfg.options, tee=run.verbose)
    t0 = time.perf_counter()
    results = handle.solve(m)
    elapsed = time.perf_counter() - t0
    status = to_status(results)
    if status is not SolveStatus.OPTIMAL:
        raise RuntimeError(
            f"Recourse LP of {instance.scenario_id(scenario)} ended with status {status.value}"
        )
    # Capacity rows only ever bind from above; the magnitude of their dual is the
    # recourse change per unit of capacity
    gains = np.array(
        [abs(float(m.dual.get(m.rescue_capacity[i], 0.0))) if i in m.rescue_capacity else 0.0
         for i in range(instance.nb_sites)]
    )
    rescues = np.zeros(instance.nb_sites)
    for i, j in m.ARCS:
        rescues[i] += value_of(m.nb_rescues[i, j])
    return _RecourseSolution(m, float(pyo.value(m.obj)), gains, rescues, elapsed)


def derive_cut(
    cut_type: CutType,
    instance: Instance,
    scenario: int,
    point: np.ndarray,
    objective_value: float,
    gains: np.ndarray,
) -> Cut:
    """Benders cut anchored at ``point``.

    With g_i the capacity gains of the solved LP and v its objective:

    - optimality: theta_k <= -v + sum_i g_i (C_i(x) - C_i(point)), stored
      scaled by the scenario probability p_k as
      p_k (v + g.C(point)) - p_k sum g_i C_i(x) + p_k theta_k <= 0
    - feasibility: v + g.C(point) - sum g_i C_i(x) <= 0
    """
    caps = team_capacities(instance)
    anchor = float(np.dot(gains, site_capacities(instance, point)))
    scale = instance.probability(scenario) if cut_type is CutType.OPTIMALITY else 1.0
    coeffs = {
        (s, t): -scale * float(gains[s]) * float(caps[t])
        for s in range(instance.nb_sites)
        if gains[s] > COEFF_ZERO_TOL
        for t in range(instance.nb_teams)
    }
    name = f"{cut_type.value.lower()}[{instance.scenario_id(scenario)}]"
    if cut_type is CutType.OPTIMALITY:
        return Cut(
            name=name,
            cut_type=cut_type,
            scenario=scenario,
            coeffs=coeffs,
            constant=scale * (objective_value + anchor),
            weight=scale,
            objective_value=-objective_value,
        )
    return Cut(name=name, cut_type=cut_type, scenario=scenario, coeffs=coeffs, constant=objective_value + anchor)


def solve_optimality(
    instance: Instance,
    scenario: int,
    point: np.ndarray,
    solver_cfg: SolverConfig,
    run: RunConfig,
) -> SubProblem:
    sol = _solve_recourse(instance, scenario, point, solver_cfg, run, with_slack=False)
    cut = derive_cut(CutType.OPTIMALITY, instance, scenario, point, sol.objective, sol.gains)
    log.debug(
        "%s rescues=%.6g const=%.6g nnz=%d", cut.name, cut.objective_value, cut.constant, len(cut.coeffs)
    )
    return SubProblem(CutType.OPTIMALITY, cut, scenario, sol.model, Metrics(sol.objective, sol.elapsed))


def solve_feasibility(
    instance: Instance,
    scenario: int,
    point: np.ndarray,
    solver_cfg: SolverConfig,
    run: RunConfig,
) -> Optional[SubProblem]:
    """Slack subproblem; ``None`` when the scenario is feasible for ``point``."""
    sol = _solve_recourse(instance, scenario, point, solver_cfg, run, with_slack=True)
    if abs(sol.objective) <= FEASIBILITY_TOL:
        return None
    cut = derive_cut(CutType.FEASIBILITY, instance, scenario, point, sol.objective, sol.gains)
    log.info("%s infeasible: slack=%.6g", instance.scenario_id(scenario), sol.objective)
    return SubProblem(CutType.FEASIBILITY, cut, scenario, sol.model, Metrics(sol.objective, sol.elapsed))


def solve_subproblem(
    cut_type: CutType,
    instance: Instance,
    scenario: int,
    point: np.ndarray,
    solver_cfg: SolverConfig,
    run: RunConfig,
) -> Optional[SubProblem]:
    if cut_type is CutType.OPTIMALITY:
        return solve_optimality(instance, scenario, point, solver_cfg, run)
    if cut_type is CutType.FEASIBILITY:
        return solve_feasibility(instance, scenario, point, solver_cfg, run)
    raise ValueError(f"Unsupported cut type {cut_type!r}")


def scenario_rescues(
    instance: Instance,
    allocated: np.ndarray,
    solver_cfg: SolverConfig,
    run: RunConfig,
) -> np.ndarray:
    """People rescued by the team at each site, per scenario (sites x scenarios)."""
    point = np.asarray(allocated, dtype=float)
    rescues = np.zeros((instance.nb_sites, instance.nb_scenarios))
    for k in range(instance.nb_scenarios):
        rescues[:, k] = _solve_recourse(instance, k, point, solver_cfg, run, with_slack=False).rescues
    return rescues


__all__ = [
    "SubProblem",
    "FEASIBILITY_TOL",
    "team_capacities",
    "site_capacities",
    "build_recourse_model",
    "derive_cut",
    "solve_optimality",
    "solve_feasibility",
    "solve_subproblem",
    "scenario_rescues",
]
