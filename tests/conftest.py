import json
from pathlib import Path

import pytest
import pyomo.environ as pyo

from emergency_planning.config import PathsConfig, PlanningConfig, RunConfig
from emergency_planning.instances import build_instance

THREE_SITES = {
    "coordinates": [[45.0, 5.0], [45.01, 5.0], [45.02, 5.0]],
    "demands": [[2, 0, 1], [0, 2, 1]],
    "teamCapacities": [1, 3],
    "teamCost": [1, 2],
    "neighbors": [[0, 1, 2], [0, 1, 2], [0, 1, 2]],
    "radius": 10.0,
    "budget": 2,
    "load_factor": 0.75,
}


def _highs_available() -> bool:
    try:
        return bool(pyo.SolverFactory("appsi_highs").available(exception_flag=False))
    except Exception:
        return False

HIGHS_AVAILABLE = _highs_available()

@pytest.fixture
def highs():
    if not HIGHS_AVAILABLE:
        pytest.skip("HiGHS (highspy) not installed")

@pytest.fixture
def three_sites_data():
    return json.loads(json.dumps(THREE_SITES))

@pytest.fixture
def instance(three_sites_data):
    return build_instance("three_sites", three_sites_data)

@pytest.fixture
def inputs_dir(tmp_path: Path, three_sites_data) -> Path:
    d = tmp_path / "inputs"
    d.mkdir()
    (d / "three_sites.json").write_text(json.dumps(three_sites_data), encoding="utf-8")
    return d

@pytest.fixture
def cfg(tmp_path: Path, inputs_dir: Path) -> PlanningConfig:
    return PlanningConfig(
        run=RunConfig(time_limit_s=60, max_iterations=30),
        paths=PathsConfig(inputs=str(inputs_dir), outputs=str(tmp_path / "outputs")),
    )
