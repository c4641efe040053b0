import argparse
import sys
from pathlib import Path

from .benchmark import benchmark
from .benders.types import Method, Usage
from .config import load_config
from .errors import UnrecognizedModel
from .logging_config import setup_logging
from .runner import execute

_MODELS = [m.value for m in Method]
_USAGES = [u.value for u in Usage]


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="emergency-planning",
        description="Two-stage stochastic rescue team allocation (extensive form and L-shaped methods)",
    )
    p.add_argument(
        "--config",
        type=Path,
        default=Path("configs/default.yaml"),
        help="Path to YAML config. Default: configs/default.yaml",
    )
    sub = p.add_subparsers(dest="cmd")
    sub.required = False

    run_p = sub.add_parser("run", help="Solve one instance with one model")
    run_p.add_argument("--filename", required=True, help="Instance name under the inputs directory (without .json)")
    run_p.add_argument("--model", default=Method.LSHAPED.value, help=f"One of {', '.join(_MODELS)}")
    run_p.add_argument(
        "--usage",
        choices=_USAGES,
        default=None,
        help="LShaped variant: iterative master re-solves or lazy cuts from a solver callback",
    )
    run_p.add_argument("--limit", type=int, default=None, help="Solver time limit in seconds")
    run_p.add_argument("--verbose", action="store_true", default=None, help="Print solver output")
    run_p.add_argument(
        "--no-benchmark",
        dest="benchmark",
        action="store_false",
        help="Do not append the run to outputs/benchmark.csv",
    )

    bench_p = sub.add_parser("benchmark", help="Run several models over several instances")
    bench_p.add_argument("--models", nargs="+", default=list(_MODELS), help="Models to run")
    group = bench_p.add_mutually_exclusive_group()
    group.add_argument("--instances", nargs="+", default=None, help="Instance names under the inputs directory")
    group.add_argument("--sample", type=int, default=0, help="Run on N instances drawn at random from the inputs")
    bench_p.add_argument("--usage", choices=_USAGES, default=None, help="Variant used for LShaped")

    sub.add_parser("info", help="Show current configuration")
    return p


def _print_solution(filename: str, solution) -> None:
    print(f"\nResult: instance={filename} model={solution.key}")
    print(f"  objective={solution.objective_value:.6g} time={solution.execution_time:.3f}s")
    for allocation in solution.allocations:
        print(f"  {allocation.team.ID} (capacity={allocation.team.capacity}) -> {allocation.site.ID}")


def cmd_run(args) -> int:
    cfg = load_config(args.config)
    setup_logging(cfg.run.log_level, Path(cfg.paths.outputs) / "logs")
    try:
        solution = execute(
            args.filename,
            args.model,
            cfg,
            usage=args.usage,
            limit=args.limit,
            verbose=args.verbose,
            benchmark=args.benchmark,
        )
    except UnrecognizedModel as exc:
        print(f"{exc}. Available models: {', '.join(_MODELS)}")
        return 2
    if solution is None:
        print(f"\nNo solution found for {args.filename} with {args.model}")
        return 1
    _print_solution(args.filename, solution)
    return 0


def cmd_benchmark(args) -> int:
    cfg = load_config(args.config)
    setup_logging(cfg.run.log_level, Path(cfg.paths.outputs) / "logs")
    usages = {Method.LSHAPED.value: args.usage} if args.usage else None
    try:
        results = benchmark(args.models, args.instances, cfg, sample_size=args.sample, usages=usages)
    except UnrecognizedModel as exc:
        print(f"{exc}. Available models: {', '.join(_MODELS)}")
        return 2
    solved = sum(1 for r in results if r is not None)
    print(f"\nBenchmark: {solved}/{len(results)} runs solved")
    return 0 if solved == len(results) else 1


def cmd_info(args) -> int:
    cfg = load_config(args.config)
    print(cfg)
    return 0


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.cmd == "run":
        return cmd_run(args)
    if args.cmd == "benchmark":
        return cmd_benchmark(args)
    if args.cmd == "info":
        return cmd_info(args)
    parser.print_help()
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
