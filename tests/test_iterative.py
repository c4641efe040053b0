from concurrent.futures import ProcessPoolExecutor
from dataclasses import replace

import pytest

from emergency_planning.benders.master import MasterProblem
from emergency_planning.benders.solver import (
    IterativeLShaped,
    accept_if_improving,
    generate_cuts,
    is_stalled,
    pool_size,
    register_cuts,
    scenario_pool,
    should_continue,
)
from emergency_planning.benders.types import Method, Usage
from emergency_planning.config import PlanningConfig, RunConfig
from emergency_planning.extensive import ExtensiveForm
from emergency_planning.solutions import Metrics

# The capacity-3 team rescues everyone in both scenarios
OPTIMUM = 3.0


def _history(*values):
    return [Metrics(objective_value=v) for v in values]


def test_stall_detection():
    run = RunConfig(stall_max_no_improve_iters=2, stall_min_abs_improve=1e-3)
    assert not is_stalled(_history(5.0, 5.0), run)
    assert is_stalled(_history(6.0, 5.0, 5.0, 5.0), run)
    assert not is_stalled(_history(5.0, 5.0, 4.0), run)
    assert not is_stalled(_history(5.0, 5.0, 5.0), RunConfig(stall_max_no_improve_iters=0))


def test_pool_has_one_worker_per_scenario(instance):
    assert pool_size(instance, RunConfig()) == 2
    assert pool_size(instance, RunConfig(workers=8)) == 8


def test_iteration_cap(highs, instance, cfg):
    master = MasterProblem(instance, cfg)
    assert should_continue(1, master, cfg.run)
    assert not should_continue(cfg.run.max_iterations + 1, master, cfg.run)


def test_matches_extensive_form(highs, instance, cfg):
    base = ExtensiveForm(instance, cfg).solve()
    lshaped = IterativeLShaped(instance, cfg).solve()
    assert base.method is Method.BASE
    assert lshaped.method is Method.LSHAPED
    assert lshaped.usage is Usage.ITERATIVE
    assert lshaped.key == "LShaped-iterative"
    assert base.objective_value == pytest.approx(OPTIMUM, abs=1e-2)
    assert lshaped.objective_value == pytest.approx(base.objective_value, abs=1e-2)
    for solution in (base, lshaped):
        assert sum(a.team.cost for a in solution.allocations) <= instance.budget + 1e-6
        sites = [a.site.ID for a in solution.allocations]
        assert len(sites) == len(set(sites))


def test_master_bound_never_increases(highs, instance, cfg):
    driver = IterativeLShaped(instance, cfg)
    master = MasterProblem(instance, cfg)
    iterations = driver.decompose(master)
    assert 1 <= iterations <= cfg.run.max_iterations
    values = [h.objective_value for h in master.history]
    assert all(b <= a + 1e-3 for a, b in zip(values, values[1:]))
    assert master.nb_cuts > 0


def test_single_iteration_run_terminates(highs, instance, cfg):
    cfg = replace(cfg, run=replace(cfg.run, max_iterations=1))
    master = MasterProblem(instance, cfg)
    assert IterativeLShaped(instance, cfg).decompose(master) == 1
    # one solve inside the loop and the final one
    assert len(master.history) == 2


def test_repeated_runs_agree(highs, instance, cfg):
    first = IterativeLShaped(instance, cfg).solve()
    second = IterativeLShaped(instance, cfg).solve()
    assert first.objective_value == pytest.approx(second.objective_value, abs=1e-6)
    assert [(a.team.ID, a.site.ID) for a in first.allocations] == [
        (a.team.ID, a.site.ID) for a in second.allocations
    ]


def test_improving_cuts_only(highs, instance, cfg):
    solution = IterativeLShaped(instance, cfg, accept=accept_if_improving).solve()
    assert solution.objective_value == pytest.approx(OPTIMUM, abs=1e-2)


def test_scenario_pool_runs_worker_processes(instance):
    with scenario_pool(instance, RunConfig(workers=3)) as pool:
        assert isinstance(pool, ProcessPoolExecutor)
        assert pool._max_workers == 3


def test_concurrent_scenarios_match_sequential(highs, instance):
    # Default solvers everywhere: the in-process HiGHS interface redirects
    # stdout/stderr during each solve
    cfg = PlanningConfig()
    master = MasterProblem(instance, cfg)
    with scenario_pool(instance, cfg.run) as pool:
        for _ in range(3):
            master.solve()
            point, theta = master.point, master.theta.copy()
            expected = [
                generate_cuts(instance, k, point, float(theta[k]), cfg) for k in range(instance.nb_scenarios)
            ]
            generated = register_cuts(master, cfg, pool)
            assert generated == sum(len(cuts) for cuts in expected) >= instance.nb_scenarios
            for bucket, cuts in zip(master.cuts, expected):
                assert [c.name for c in bucket] == [c.name for c in cuts]
                assert [c.objective_value for c in bucket] == pytest.approx(
                    [c.objective_value for c in cuts], nan_ok=True
                )
            master.apply_cuts()


def test_default_config_full_run(highs, instance):
    solution = IterativeLShaped(instance, PlanningConfig()).solve()
    assert solution.objective_value == pytest.approx(OPTIMUM, abs=1e-2)
    assert [a.team.ID for a in solution.allocations] == ["TEAM-2"]
