"""Integer L-shaped method: branch-and-bound over the relaxed decomposition.

Every node shares one relaxed master. A node only carries the list of bounds
added by branching on its path from the root; before a node is solved its
bounds replace the previous node's and the L-shaped loop runs again. Cuts are
globally valid and stay on the master for every later node.
"""

from __future__ import annotations

import logging
import math
import random
import time
from concurrent.futures import Executor
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np

from ..config import PlanningConfig
from ..errors import MasterInfeasible
from ..instances import Instance
from ..solutions import Metrics, Solution
from .master import MasterProblem
from .solver import AcceptancePolicy, IterativeLShaped, accept_all, decomposition_solution, scenario_pool
from .types import Bound, Method, SolveStatus, VarKey

log = logging.getLogger(__name__)

INTEGRALITY_TOL: float = 1e-6


class PruneReason(str, Enum):
    INFEASIBILITY = "infeasibility"
    INTEGRALITY = "integrality"
    BOUND = "bound"


@dataclass(slots=True)
class Node:
    ID: int
    bounds: tuple[Bound, ...] = ()
    status: SolveStatus = SolveStatus.UNKNOWN
    objective: float = math.inf  # master objective, minimization sense
    values: dict[VarKey, float] = field(default_factory=dict)
    metrics: Metrics = field(default_factory=Metrics)

    @property
    def fractional(self) -> list[VarKey]:
        return sorted(k for k, v in self.values.items() if not is_integral(v))

    @property
    def is_integral(self) -> bool:
        return self.status is not SolveStatus.INFEASIBLE_OR_UNBOUNDED and not self.fractional

    def allocations(self, shape: tuple[int, int]) -> np.ndarray:
        allocated = np.zeros(shape, dtype=bool)
        for key, value in self.values.items():
            if key[0] == "allocation" and value > 0.5:
                allocated[key[1], key[2]] = True
        return allocated


def is_integral(value: float, tol: float = INTEGRALITY_TOL) -> bool:
    return abs(value - round(value)) <= tol


class IntegerLShaped:
    """Best-bound branch-and-bound with infeasibility, integrality and bound pruning."""

    def __init__(
        self,
        instance: Instance,
        cfg: PlanningConfig,
        rng: Optional[random.Random] = None,
        accept: AcceptancePolicy = accept_all,
    ):
        self.instance = instance
        self.cfg = cfg
        self.rng = rng if rng is not None else random.Random(cfg.run.seed)
        self.driver = IterativeLShaped(instance, cfg, accept)
        self.master: MasterProblem | None = None
        # Scenario workers shared by every node of one search
        self.pool: Executor | None = None
        self.pendant_nodes: list[Node] = []
        self.historical_nodes: list[Node] = []
        self.pruned: list[tuple[Node, PruneReason]] = []
        self._next_id = 1

    # --- nodes -----------------------------------------------------------------

    def _new_id(self) -> int:
        node_id = self._next_id
        self._next_id += 1
        return node_id

    def solve_node(self, node: Node) -> Node:
        """Apply the node's bounds, run the L-shaped loop and record the outcome on ``node``."""
        master = self.master
        assert master is not None
        try:
            master.apply_bounds(node.bounds)
            self.driver.decompose(master, self.pool)
        except MasterInfeasible as exc:
            log.debug("node=%d infeasible: %s", node.ID, exc)
            node.status = SolveStatus.INFEASIBLE_OR_UNBOUNDED
            node.objective = math.inf
            node.values = {}
            return node
        node.status = master.status
        node.objective = master.objective
        node.values = master.branching_values()
        node.metrics = master.metrics.copy()
        return node

    def incumbent(self) -> Optional[Node]:
        """Best integral node seen so far."""
        integral = [n for n in self.historical_nodes if n.is_integral]
        return min(integral, key=lambda n: (n.objective, n.ID)) if integral else None

    def incumbent_value(self) -> float:
        best = self.incumbent()
        return best.objective if best is not None else math.inf

    def prune_reason(self, node: Node, incumbent: float) -> Optional[PruneReason]:
        if node.status is SolveStatus.INFEASIBLE_OR_UNBOUNDED:
            return PruneReason.INFEASIBILITY
        if node.is_integral:
            return PruneReason.INTEGRALITY
        if node.objective > incumbent + INTEGRALITY_TOL:
            return PruneReason.BOUND
        return None

    def should_prune(self, node: Node, incumbent: float) -> bool:
        return self.prune_reason(node, incumbent) is not None

    def _prune(self, node: Node, reason: PruneReason) -> None:
        self.pruned.append((node, reason))
        log.info("node=%d pruned by %s (objective=%.6g)", node.ID, reason.value, node.objective)

    def should_continue(self, iteration: int) -> bool:
        return iteration <= self.cfg.run.max_search_iterations and bool(self.pendant_nodes)

    def select(self) -> Node:
        return min(self.pendant_nodes, key=lambda n: (n.objective, n.ID))

    def branch(self, node: Node) -> list[Node]:
        key = self.rng.choice(node.fractional)
        value = node.values[key]
        log.info("node=%d branching on %s=%.6g", node.ID, key, value)
        return [
            Node(self._new_id(), node.bounds + (Bound(key, upper=float(math.floor(value))),)),
            Node(self._new_id(), node.bounds + (Bound(key, lower=float(math.ceil(value))),)),
        ]

    def _explore(self, child: Node) -> None:
        try:
            self.solve_node(child)
        except Exception:
            log.exception("node=%d solve failed; dropping it", child.ID)
            return
        reason = self.prune_reason(child, self.incumbent_value())
        log.info("node=%d status=%s objective=%.6g", child.ID, child.status.value, child.objective)
        if reason is PruneReason.INTEGRALITY:
            self.historical_nodes.append(child)
            log.info("node=%d integral; incumbent=%.6g", child.ID, self.incumbent_value())
            return
        if reason is not None:
            self._prune(child, reason)
            return
        self.pendant_nodes.append(child)
        self.historical_nodes.append(child)

    # --- driver ----------------------------------------------------------------

    def search(self) -> Node:
        """Solve the root relaxation and explore the tree; return the best node."""
        self.master = MasterProblem(self.instance, self.cfg, relax=True)
        root = self.solve_node(Node(self._new_id()))
        if root.status is SolveStatus.INFEASIBLE_OR_UNBOUNDED:
            raise MasterInfeasible(f"Relaxed master of {self.instance.name} is infeasible")
        self.historical_nodes = [root]
        if root.is_integral:
            log.info("Root relaxation is integral (objective=%.6g)", root.objective)
            return root
        self.pendant_nodes = [root]

        iteration = 1
        while self.should_continue(iteration):
            current = self.select()
            incumbent = self.incumbent_value()
            reason = self.prune_reason(current, incumbent)
            if reason is not None:
                self.pendant_nodes.remove(current)
                self._prune(current, reason)
                continue
            self.pendant_nodes.remove(current)
            for child in self.branch(current):
                self._explore(child)
            log.info(
                "search iter=%d pendant=%d explored=%d incumbent=%.6g",
                iteration,
                len(self.pendant_nodes),
                len(self.historical_nodes),
                self.incumbent_value(),
            )
            iteration += 1

        best = self.incumbent()
        if best is None:
            best = min(self.historical_nodes, key=lambda n: (n.objective, n.ID))
            log.warning("No integral node found; reporting node=%d rounded", best.ID)
        return best

    def within_budget(self, node: Node) -> np.ndarray:
        """Allocation of ``node`` rounded at 0.5, dropping the least-allocated teams over budget."""
        assert self.master is not None
        shape = self.master.values.shape
        allocated = node.allocations(shape)
        cells = sorted(
            zip(*np.nonzero(allocated)),
            key=lambda st: (-node.values[("allocation", int(st[0]), int(st[1]))], int(st[0]), int(st[1])),
        )
        kept = np.zeros(shape, dtype=bool)
        spent = 0.0
        for s, t in cells:
            cost = self.instance.cost(int(t))
            if spent + cost > self.instance.budget + 1e-6:
                log.warning(
                    "node=%d rounding drops %s at %s (over budget)",
                    node.ID,
                    self.instance.teams[t].ID,
                    self.instance.sites[s].ID,
                )
                continue
            kept[s, t] = True
            spent += cost
        return kept

    def solve(self) -> Solution:
        started = time.perf_counter()
        with scenario_pool(self.instance, self.cfg.run) as pool:
            self.pool = pool
            try:
                best = self.search()
            finally:
                self.pool = None
        master = self.master
        assert master is not None
        # Refresh the master on the best node with every cut found during the search
        master.apply_bounds(best.bounds)
        master.solve()
        log.info(
            "Best node=%d objective=%.6g (re-solved %.6g) nodes=%d",
            best.ID,
            best.objective,
            master.objective,
            len(self.historical_nodes),
        )
        allocated = best.allocations(master.values.shape) if best.is_integral else self.within_budget(best)
        return decomposition_solution(Method.INTEGER_LSHAPED, master, allocated, self.cfg, started)


__all__ = ["INTEGRALITY_TOL", "PruneReason", "Node", "is_integral", "IntegerLShaped"]
