import math

import numpy as np
import pytest

from emergency_planning.benders.subproblem import (
    build_recourse_model,
    derive_cut,
    site_capacities,
    solve_feasibility,
    solve_optimality,
    solve_subproblem,
)
from emergency_planning.benders.types import Cut, CutType


def _point(instance, *cells):
    point = np.zeros((instance.nb_sites, instance.nb_teams))
    for s, t in cells:
        point[s, t] = 1.0
    return point


def test_site_capacities(instance):
    point = _point(instance, (0, 1), (2, 0))
    np.testing.assert_allclose(site_capacities(instance, point), [3.0, 0.0, 1.0])
    point[1, 1] = 0.5
    np.testing.assert_allclose(site_capacities(instance, point), [3.0, 1.5, 1.0])


def test_optimality_cut_from_binding_capacity(instance):
    cut = derive_cut(CutType.OPTIMALITY, instance, 0, _point(instance), -0.0, np.ones(3))
    assert cut.cut_type is CutType.OPTIMALITY
    assert cut.scenario == 0
    assert cut.weight == pytest.approx(0.5)
    assert cut.constant == pytest.approx(0.0)
    assert cut.objective_value == pytest.approx(0.0)
    assert cut.coeffs[(0, 0)] == pytest.approx(-0.5)
    assert cut.coeffs[(2, 1)] == pytest.approx(-1.5)
    assert len(cut.coeffs) == 6

    # theta_0 <= 3 with the capacity-3 team on site 1
    x = _point(instance, (0, 1))
    assert cut.is_satisfied(x, np.array([3.0, 3.0]))
    assert not cut.is_satisfied(x, np.array([3.5, 3.0]))
    # nothing allocated: theta_0 <= 0
    assert not cut.is_satisfied(_point(instance), np.array([1.0, 0.0]))
    assert cut.is_satisfied(_point(instance), np.array([0.0, 3.0]))


def test_optimality_cut_anchored_at_point(instance):
    point = _point(instance, (0, 1))
    # Demand binds: no capacity gain, the cut caps theta at the rescues found
    cut = derive_cut(CutType.OPTIMALITY, instance, 1, point, -3.0, np.zeros(3))
    assert cut.coeffs == {}
    assert cut.objective_value == pytest.approx(3.0)
    assert cut.lhs(point, np.array([0.0, 3.0])) == pytest.approx(0.0)
    assert cut.lhs(point, np.array([0.0, 2.0])) == pytest.approx(-0.5)


def test_anchor_keeps_cut_tight_at_point(instance):
    point = _point(instance, (0, 0))
    gains = np.array([1.0, 0.0, 0.0])
    cut = derive_cut(CutType.OPTIMALITY, instance, 0, point, -1.0, gains)
    # recourse value at the anchor point is exactly theta = 1
    assert cut.lhs(point, np.array([1.0, 0.0])) == pytest.approx(0.0)
    # moving the bigger team to the same site adds its extra capacity
    bigger = _point(instance, (0, 1))
    assert cut.lhs(bigger, np.array([3.0, 0.0])) == pytest.approx(0.0)


def test_feasibility_cut_unscaled(instance):
    cut = derive_cut(CutType.FEASIBILITY, instance, 1, _point(instance), 2.0, np.array([1.0, 0.0, 0.0]))
    assert cut.weight == 0.0
    assert math.isnan(cut.objective_value)
    assert cut.constant == pytest.approx(2.0)
    assert cut.coeffs == {(0, 0): pytest.approx(-1.0), (0, 1): pytest.approx(-3.0)}
    assert not cut.is_satisfied(_point(instance))
    assert cut.is_satisfied(_point(instance, (0, 1)))


def test_cut_lhs_ignores_theta_for_feasibility():
    cut = Cut("f", CutType.FEASIBILITY, 0, {(0, 0): -1.0}, constant=1.0)
    x = np.array([[1.0]])
    assert cut.lhs(x, np.array([100.0])) == pytest.approx(0.0)


def test_recourse_model_rows(instance):
    m = build_recourse_model(instance, 0, np.array([3.0, 0.0, 0.0]))
    assert len(m.ARCS) == 9
    assert len(m.rescue_capacity) == 3
    assert len(m.only_assigned_rescue) == 9
    assert not hasattr(m, "deficit_rescue_capacity")
    slack = build_recourse_model(instance, 0, np.zeros(3), with_slack=True)
    assert len(slack.deficit_only_assigned_rescue) == 9


def test_optimality_subproblem(highs, instance, cfg):
    sub = solve_optimality(instance, 0, _point(instance), cfg.subproblem, cfg.run)
    assert sub.cut_type is CutType.OPTIMALITY
    assert sub.cut.objective_value == pytest.approx(0.0, abs=1e-6)
    # Any capacity helps when nothing is allocated
    assert sub.cut.coeffs
    assert not sub.cut.is_satisfied(_point(instance), np.array([3.0, 3.0]))

    point = _point(instance, (1, 1))
    sub = solve_subproblem(CutType.OPTIMALITY, instance, 0, point, cfg.subproblem, cfg.run)
    assert sub.cut.objective_value == pytest.approx(3.0, abs=1e-6)
    assert sub.cut.is_satisfied(point, np.array([3.0, 3.0]))
    assert sub.metrics.objective_value == pytest.approx(-3.0, abs=1e-6)


def test_feasible_scenarios_produce_no_feasibility_cut(highs, instance, cfg):
    for k in range(instance.nb_scenarios):
        assert solve_feasibility(instance, k, _point(instance), cfg.subproblem, cfg.run) is None
        assert solve_feasibility(instance, k, _point(instance, (0, 1)), cfg.subproblem, cfg.run) is None


def test_unknown_cut_type(instance, cfg):
    with pytest.raises(ValueError):
        solve_subproblem("other", instance, 0, _point(instance), cfg.subproblem, cfg.run)


def test_cuts_never_exclude_true_recourse(highs, instance, cfg):
    points = [_point(instance), _point(instance, (0, 0)), _point(instance, (1, 1)), _point(instance, (2, 1))]
    for k in range(instance.nb_scenarios):
        cuts = [solve_optimality(instance, k, p, cfg.subproblem, cfg.run).cut for p in points]
        for p in points:
            rescued = solve_optimality(instance, k, p, cfg.subproblem, cfg.run).cut.objective_value
            theta = np.zeros(instance.nb_scenarios)
            theta[k] = rescued
            assert all(cut.is_satisfied(p, theta) for cut in cuts)
