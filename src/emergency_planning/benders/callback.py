"""L-shaped method with cuts injected as lazy constraints.

The master MIP is solved once by a persistent solver; each integer candidate
it finds is checked against every scenario inside the solver callback and
rejected through violated Benders cuts. Supported hosts:

- ``cplex_persistent``: legacy ``LazyConstraintCallback`` registered on the
  underlying ``cplex.Cplex`` object;
- ``gurobi_persistent``: pyomo's ``set_callback`` / ``cbGetSolution`` /
  ``cbLazy`` on ``MIPSOL``.

Subproblems are solved sequentially inside the callback. Every feasibility
cut is submitted; an optimality cut is submitted only when the candidate
violates it, since a satisfied cut cannot reject the candidate and would only
grow the solver's lazy pool.
"""

from __future__ import annotations

import logging
import time
from typing import Iterator

import numpy as np
import pyomo.environ as pyo

from ..config import PlanningConfig
from ..instances import Instance
from ..solutions import Solution
from .master import MasterProblem
from .solver import AcceptancePolicy, accept_all, decomposition_solution
from .subproblem import solve_feasibility, solve_optimality
from .types import Cut, CutType, Method, Usage

try:  # Optional import for CPLEX lazy callbacks
    import cplex  # type: ignore
    from cplex.callbacks import LazyConstraintCallback  # type: ignore
except ImportError:  # pragma: no cover - optional dependency
    cplex = None
    LazyConstraintCallback = None

try:  # Optional import for Gurobi lazy callbacks
    from gurobipy import GRB  # type: ignore
except ImportError:  # pragma: no cover - optional dependency
    GRB = None

log = logging.getLogger(__name__)


class LazyCutGenerator:
    """Cuts violated by a candidate (allocation values, theta) reported by the solver."""

    def __init__(self, master: MasterProblem, cfg: PlanningConfig, accept: AcceptancePolicy = accept_all):
        self.master = master
        self.cfg = cfg
        self.accept = accept
        self.calls = 0
        self.submitted = 0

    def __call__(self, values: np.ndarray, theta: np.ndarray) -> Iterator[Cut]:
        master = self.master
        instance = master.instance
        self.calls += 1
        master.load_candidate(values, theta)
        point = master.point
        theta = master.theta.copy()
        for k in range(instance.nb_scenarios):
            feasibility = solve_feasibility(instance, k, point, self.cfg.subproblem, self.cfg.run)
            if feasibility is not None:
                self.submitted += 1
                yield feasibility.cut
            optimality = solve_optimality(instance, k, point, self.cfg.subproblem, self.cfg.run)
            cut = optimality.cut
            if not self.accept(optimality, float(theta[k])):
                continue
            if cut.is_satisfied(point, theta):
                log.debug("%s satisfied by candidate #%d", cut.name, self.calls)
                continue
            self.submitted += 1
            yield cut
        log.info(
            "candidate=%d theta=%.6g cuts_submitted=%d",
            self.calls,
            master.metrics.objective_value,
            self.submitted,
        )


def _install_cplex(master: MasterProblem, generator: LazyCutGenerator) -> None:
    opt = master.solver.solver
    cpx = opt._solver_model
    var_map = opt._pyomo_var_to_solver_var_map
    m = master.model
    keys = [(s, t) for s in m.SITES for t in m.TEAMS]
    alloc_idx = cpx.variables.get_indices([var_map[m.is_allocated[s, t]] for s, t in keys])
    theta_idx = cpx.variables.get_indices([var_map[m.theta[k]] for k in m.SCENARIOS])
    index = dict(zip(keys, alloc_idx))
    shape = master.values.shape

    class _LazyCutCallback(LazyConstraintCallback):  # type: ignore[misc, valid-type]
        def __call__(self):
            values = np.array(self.get_values(alloc_idx), dtype=float).reshape(shape)
            theta = np.array(self.get_values(theta_idx), dtype=float)
            for cut in generator(values, theta):
                ind = [index[key] for key in cut.coeffs]
                val = [float(c) for c in cut.coeffs.values()]
                if cut.cut_type is CutType.OPTIMALITY:
                    ind.append(theta_idx[cut.scenario])
                    val.append(float(cut.weight))
                self.add(constraint=cplex.SparsePair(ind=ind, val=val), sense="L", rhs=-float(cut.constant))

    cpx.register_callback(_LazyCutCallback)
    log.info("Installed CPLEX lazy constraint callback for Benders cuts")


def _install_gurobi(master: MasterProblem, generator: LazyCutGenerator) -> None:
    opt = master.solver.solver
    m = master.model
    alloc_vars = [m.is_allocated[s, t] for s in m.SITES for t in m.TEAMS]
    theta_vars = [m.theta[k] for k in m.SCENARIOS]
    shape = master.values.shape

    def _callback(cb_m, cb_opt, cb_where):
        if cb_where != GRB.Callback.MIPSOL:
            return
        cb_opt.cbGetSolution(vars=alloc_vars + theta_vars)
        values = np.array([pyo.value(v) for v in alloc_vars], dtype=float).reshape(shape)
        theta = np.array([pyo.value(v) for v in theta_vars], dtype=float)
        for cut in generator(values, theta):
            con = master.add_lazy_cut(cut)
            if con is not None:
                cb_opt.cbLazy(con)

    opt.set_gurobi_param("LazyConstraints", 1)
    opt.set_callback(_callback)
    log.info("Installed Gurobi lazy constraint callback for Benders cuts")


def check_host(solver_name: str) -> None:
    """Raise unless ``solver_name`` is a lazy-cut host whose Python API is installed."""
    name = solver_name.lower()
    if name == "cplex_persistent":
        if cplex is None:
            raise RuntimeError("Lazy cuts with cplex_persistent need the CPLEX Python API ('pip install cplex').")
    elif name == "gurobi_persistent":
        if GRB is None:
            raise RuntimeError("Lazy cuts with gurobi_persistent need gurobipy ('pip install gurobipy').")
    else:
        raise ValueError(f"Lazy cuts need cplex_persistent or gurobi_persistent; got {solver_name!r}")


def install_lazy_callback(master: MasterProblem, generator: LazyCutGenerator) -> None:
    check_host(master.solver.name)
    if master.solver.name.lower() == "cplex_persistent":
        _install_cplex(master, generator)
    else:
        _install_gurobi(master, generator)


class CallbackLShaped:
    """L-shaped method driven by the master solver's lazy constraint callback."""

    def __init__(self, instance: Instance, cfg: PlanningConfig, accept: AcceptancePolicy = accept_all):
        self.instance = instance
        self.cfg = cfg
        self.accept = accept

    def solve(self) -> Solution:
        started = time.perf_counter()
        check_host(self.cfg.callback.solver)
        master = MasterProblem(self.instance, self.cfg, solver_cfg=self.cfg.callback)
        generator = LazyCutGenerator(master, self.cfg, self.accept)
        install_lazy_callback(master, generator)
        master.solve()
        log.info(
            "Callback search finished: %d candidate(s), %d lazy cut(s)", generator.calls, generator.submitted
        )
        return decomposition_solution(Method.LSHAPED, master, master.allocations, self.cfg, started, Usage.CALLBACK)


__all__ = ["LazyCutGenerator", "check_host", "install_lazy_callback", "CallbackLShaped"]
