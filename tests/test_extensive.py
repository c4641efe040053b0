import pytest

from emergency_planning.benders.types import Method
from emergency_planning.extensive import ExtensiveForm, build_model
from emergency_planning.instances import build_instance


def test_model_size(instance):
    m = build_model(instance)
    assert len(m.is_allocated) == 6
    assert len(m.is_assigned) == 9 * 2
    assert len(m.nb_rescues) == 9 * 2
    assert len(m.rescue_capacity) == 3 * 2
    assert len(m.only_assigned_rescue) == 9 * 2


def test_skips_rows_of_unreachable_sites(three_sites_data):
    three_sites_data["neighbors"] = [[0], [0], []]
    m = build_model(build_instance("sparse", three_sites_data))
    # only site 1 receives rescues and only sites 1 and 2 send them
    assert len(m.demand_satisfaction) == 1 * 2
    assert len(m.rescue_capacity) == 2 * 2


def test_solves_three_sites(highs, instance, cfg):
    solution = ExtensiveForm(instance, cfg).solve()
    assert solution.method is Method.BASE
    assert solution.key == "Base"
    assert solution.objective_value == pytest.approx(3.0, abs=1e-2)
    assert [a.team.capacity for a in solution.allocations] == [3]
    for k in range(instance.nb_scenarios):
        rescued = sum(a.nb_rescues for a in solution.by_scenario(instance.scenario_id(k)))
        assert rescued == pytest.approx(3.0, abs=1e-6)
    assert solution.execution_time >= 0.0
