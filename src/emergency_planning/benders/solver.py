from __future__ import annotations

import logging
import multiprocessing
import time
from concurrent.futures import Executor, ProcessPoolExecutor
from typing import Callable, Optional, Sequence

import numpy as np

from ..config import PlanningConfig, RunConfig
from ..instances import Instance
from ..solutions import Metrics, Solution, build_solution
from .master import MasterProblem
from .subproblem import SubProblem, scenario_rescues, solve_feasibility, solve_optimality
from .types import Cut, Method, Usage

log = logging.getLogger(__name__)

# Decides whether an optimality cut is worth adding, given the master's current theta
AcceptancePolicy = Callable[[SubProblem, float], bool]


def accept_all(subproblem: SubProblem, theta: float) -> bool:
    return True


def accept_if_improving(subproblem: SubProblem, theta: float, tol: float = 1e-6) -> bool:
    """Keep a cut only when the master overestimates the recourse of its scenario.

    Rejected cuts do not count towards the expected recourse, so a run using this
    policy usually stops on stagnation rather than on the convergence gap.
    """
    return subproblem.cut.objective_value < theta - tol


def is_stalled(history: Sequence[Metrics], run: RunConfig) -> bool:
    window = int(run.stall_max_no_improve_iters)
    if window <= 0 or len(history) <= window:
        return False
    recent = [m.objective_value for m in history[-(window + 1):]]
    return all(abs(b - a) < run.stall_min_abs_improve for a, b in zip(recent, recent[1:]))


def should_continue(
    iteration: int,
    master: MasterProblem,
    run: RunConfig,
    history: Optional[Sequence[Metrics]] = None,
) -> bool:
    history = master.history if history is None else history
    if iteration > run.max_iterations:
        log.info("Stopping: iteration cap %d reached", run.max_iterations)
        return False
    if is_stalled(history, run):
        log.info("Stopping: no improvement over the last %d iterations", run.stall_max_no_improve_iters)
        return False
    if master.has_converged(run.tolerance):
        log.info(
            "Stopping: converged (objective=%.6g expected_recourse=%.6g)",
            master.metrics.objective_value,
            master.metrics.expected_recourse,
        )
        return False
    return True


def generate_cuts(
    instance: Instance,
    scenario: int,
    point: np.ndarray,
    theta: float,
    cfg: PlanningConfig,
    accept: AcceptancePolicy = accept_all,
) -> list[Cut]:
    """Feasibility then optimality cut of one scenario at ``point``."""
    cuts: list[Cut] = []
    feasibility = solve_feasibility(instance, scenario, point, cfg.subproblem, cfg.run)
    if feasibility is not None:
        cuts.append(feasibility.cut)
    optimality = solve_optimality(instance, scenario, point, cfg.subproblem, cfg.run)
    if accept(optimality, theta):
        cuts.append(optimality.cut)
    return cuts


def register_cuts(
    master: MasterProblem,
    cfg: PlanningConfig,
    pool: Executor,
    accept: AcceptancePolicy = accept_all,
) -> int:
    """Solve every scenario against a snapshot of the master and queue the resulting cuts.

    The master is not touched until all scenario tasks have been joined.
    """
    instance = master.instance
    point = master.point
    theta = master.theta.copy()
    futures = [
        pool.submit(generate_cuts, instance, k, point, float(theta[k]), cfg, accept)
        for k in range(instance.nb_scenarios)
    ]
    results = [f.result() for f in futures]
    for k, cuts in enumerate(results):
        master.cuts[k].extend(cuts)
    return sum(len(cuts) for cuts in results)


def pool_size(instance: Instance, run: RunConfig) -> int:
    return max(instance.nb_scenarios, int(run.workers or 0), 1)


def scenario_pool(instance: Instance, run: RunConfig) -> ProcessPoolExecutor:
    """Worker processes for the scenario subproblems.

    Solver interfaces redirect the process-wide stdout/stderr while they solve,
    so concurrent subproblems need one process each. Workers are spawned rather
    than forked: the parent already holds solver threads.
    """
    return ProcessPoolExecutor(
        max_workers=pool_size(instance, run),
        mp_context=multiprocessing.get_context("spawn"),
    )


def decomposition_solution(
    method: Method,
    master: MasterProblem,
    allocated: np.ndarray,
    cfg: PlanningConfig,
    started: float,
    usage: Optional[Usage] = None,
) -> Solution:
    """Evaluate ``allocated`` on every scenario and build the solution.

    The objective is the expected number of people rescued by that allocation,
    measured with the recourse LP (continuous assignment). Several teams may
    then share one destination, so the value is an upper bound on what the
    allocation rescues with one team per destination.
    The master's own estimate is kept as expected recourse.
    """
    instance = master.instance
    rescues = scenario_rescues(instance, allocated, cfg.subproblem, cfg.run)
    estimate = float(np.dot(instance.probabilities(), master.theta))
    return build_solution(
        method,
        instance,
        allocated,
        rescues,
        execution_time=time.perf_counter() - started,
        usage=usage,
        expected_recourse=estimate,
    )


class IterativeLShaped:
    """L-shaped method with an explicit master / subproblem loop."""

    def __init__(self, instance: Instance, cfg: PlanningConfig, accept: AcceptancePolicy = accept_all):
        self.instance = instance
        self.cfg = cfg
        self.accept = accept

    def decompose(self, master: MasterProblem, pool: Optional[Executor] = None) -> int:
        """Run the cut loop on ``master`` and finish with one more master solve.

        Scenarios are solved on ``pool``; without one, a :func:`scenario_pool`
        is started for this call and shut down afterwards.
        Returns the number of iterations performed.
        """
        if pool is None:
            with scenario_pool(self.instance, self.cfg.run) as own:
                return self.decompose(master, own)

        run = self.cfg.run
        master.reset_metrics()
        start = len(master.history)
        iteration = 1
        while should_continue(iteration, master, run, master.history[start:]):
            master.solve()
            generated = register_cuts(master, self.cfg, pool, self.accept)
            master.apply_cuts()
            log.info(
                "iter=%d objective=%.6g expected_recourse=%.6g cuts=%d total_cuts=%d",
                iteration,
                master.metrics.objective_value,
                master.metrics.expected_recourse,
                generated,
                master.nb_cuts,
            )
            iteration += 1
        master.solve()
        return iteration - 1

    def solve(self) -> Solution:
        started = time.perf_counter()
        master = MasterProblem(self.instance, self.cfg)
        iterations = self.decompose(master)
        log.info("Decomposition finished after %d iteration(s), %d cut(s)", iterations, master.nb_cuts)
        return decomposition_solution(Method.LSHAPED, master, master.allocations, self.cfg, started, Usage.ITERATIVE)


__all__ = [
    "AcceptancePolicy",
    "accept_all",
    "accept_if_improving",
    "is_stalled",
    "should_continue",
    "generate_cuts",
    "register_cuts",
    "pool_size",
    "scenario_pool",
    "decomposition_solution",
    "IterativeLShaped",
]
