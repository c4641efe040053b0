from pathlib import Path

import pandas as pd
import pytest

from emergency_planning import cli
from emergency_planning.benchmark import benchmark, check_results, list_instances
from emergency_planning.benders.callback import CallbackLShaped
from emergency_planning.benders.integer import IntegerLShaped
from emergency_planning.benders.solver import IterativeLShaped
from emergency_planning.benders.types import Method, Usage
from emergency_planning.errors import MasterInfeasible, UnrecognizedModel
from emergency_planning.extensive import ExtensiveForm
from emergency_planning.runner import execute, get_driver, optimize, parse_method, parse_usage


def _write_config(tmp_path: Path, cfg) -> Path:
    path = tmp_path / "cfg.yaml"
    path.write_text(
        "run:\n"
        "  time_limit_s: 60\n"
        "paths:\n"
        f"  inputs: {cfg.paths.inputs}\n"
        f"  outputs: {cfg.paths.outputs}\n",
        encoding="utf-8",
    )
    return path


def test_parse_names():
    assert parse_method("IntegerLShaped") is Method.INTEGER_LSHAPED
    assert parse_usage("CALLBACK") is Usage.CALLBACK
    assert parse_usage(None) is None
    with pytest.raises(UnrecognizedModel) as err:
        parse_method("Simplex")
    assert err.value.model_name == "Simplex"
    assert "not registered" in str(err.value)
    with pytest.raises(ValueError):
        parse_usage("batch")


def test_dispatch(instance, cfg):
    assert isinstance(get_driver(Method.BASE, instance, cfg), ExtensiveForm)
    assert isinstance(get_driver(Method.LSHAPED, instance, cfg), IterativeLShaped)
    assert isinstance(get_driver(Method.LSHAPED, instance, cfg, Usage.ITERATIVE), IterativeLShaped)
    assert isinstance(get_driver(Method.LSHAPED, instance, cfg, Usage.CALLBACK), CallbackLShaped)
    assert isinstance(get_driver(Method.INTEGER_LSHAPED, instance, cfg), IntegerLShaped)


def test_unknown_model_is_fatal(instance, cfg):
    with pytest.raises(UnrecognizedModel):
        optimize("Simplex", instance, cfg)


def test_solver_failure_yields_no_solution(instance, cfg, monkeypatch):
    def infeasible(self):
        raise MasterInfeasible("no allocation satisfies the cuts")

    monkeypatch.setattr(IterativeLShaped, "solve", infeasible)
    assert optimize("LShaped", instance, cfg) is None


def test_execute_exports_and_records(highs, cfg):
    solution = execute("three_sites", "LShaped", cfg, usage="iterative", limit=30)
    assert solution is not None
    assert solution.objective_value == pytest.approx(3.0, abs=1e-2)
    outputs = Path(cfg.paths.outputs)
    assert (outputs / "solutions" / "three_sites_LShaped-iterative_allocations.csv").is_file()
    assert (outputs / "solutions" / "three_sites_LShaped-iterative_metrics.csv").is_file()
    ledger = pd.read_csv(outputs / "benchmark.csv")
    assert ledger["model_name"].tolist() == ["LShaped-iterative"]

    execute("three_sites", "Base", cfg, benchmark=False)
    assert len(pd.read_csv(outputs / "benchmark.csv")) == 1


def test_benchmark_and_check(highs, cfg):
    assert list_instances(cfg.paths.inputs) == ["three_sites"]
    results = benchmark(["Base", "LShaped"], cfg=cfg)
    assert all(r is not None for r in results)
    assert len(pd.read_csv(Path(cfg.paths.outputs) / "benchmark.csv")) == 2
    assert check_results(["Base", "LShaped"], {"three_sites": 3.0}, cfg) == []
    assert check_results(["Base"], {"three_sites": 2.0}, cfg) == [("three_sites", "Base")]


def test_cli_info(tmp_path, cfg, capsys):
    assert cli.main(["--config", str(_write_config(tmp_path, cfg)), "info"]) == 0
    assert "PlanningConfig" in capsys.readouterr().out


def test_cli_without_command_prints_help(capsys):
    assert cli.main([]) == 2
    assert "emergency-planning" in capsys.readouterr().out


def test_cli_unknown_model(tmp_path, cfg, capsys):
    config = _write_config(tmp_path, cfg)
    assert cli.main(["--config", str(config), "run", "--filename", "three_sites", "--model", "Simplex"]) == 2
    assert "Available models" in capsys.readouterr().out


def test_cli_run(highs, tmp_path, cfg, capsys):
    config = _write_config(tmp_path, cfg)
    code = cli.main(
        ["--config", str(config), "run", "--filename", "three_sites", "--model", "Base", "--no-benchmark"]
    )
    assert code == 0
    out = capsys.readouterr().out
    assert "model=Base" in out
    assert not (Path(cfg.paths.outputs) / "benchmark.csv").exists()
