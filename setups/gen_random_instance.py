#!/usr/bin/env python3
"""
Generate a random rescue-planning instance.

Inputs:
  - n: number of sites
  - m: number of rescue teams
  - s: number of demand scenarios
  - radius: neighborhood radius in kilometres (sites within it can be served)

Sites are placed uniformly at random in a box around (lat, lon). Team
capacities are drawn so that the fleet covers ``load_factor`` times the mean
scenario demand, costs grow with capacity and the budget is a fraction of the
fleet cost. Output is a JSON file in the format read by
`emergency_planning.instances.load_instance`.

Examples:
  python setups/gen_random_instance.py -n 20 -m 6 -s 10 --radius 5 -o inputs/random_20.json
  python setups/gen_random_instance.py -n 50 -m 12 -s 25 --seed 7
"""

from __future__ import annotations

import argparse
import json
import math
import random
from pathlib import Path
from typing import Any, Dict, List

EARTH_RADIUS_KM = 6371.0


def haversine(a: List[float], b: List[float]) -> float:
    lat1, lon1, lat2, lon2 = map(math.radians, (a[0], a[1], b[0], b[1]))
    h = math.sin((lat2 - lat1) / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin((lon2 - lon1) / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


def build_instance(
    n: int,
    m: int,
    s: int,
    radius: float,
    load_factor: float = 0.8,
    budget_ratio: float = 0.5,
    max_demand: int = 10,
    center: tuple[float, float] = (45.0, 5.0),
    spread: float = 0.1,
    seed: int | None = None,
) -> Dict[str, Any]:
    rng = random.Random(seed)
    coordinates = [
        [round(center[0] + rng.uniform(-spread, spread), 6), round(center[1] + rng.uniform(-spread, spread), 6)]
        for _ in range(n)
    ]
    demands = [[rng.randint(0, max_demand) for _ in range(n)] for _ in range(s)]
    neighbors = [
        [j for j in range(n) if haversine(coordinates[i], coordinates[j]) <= radius] for i in range(n)
    ]

    mean_demand = sum(sum(d) for d in demands) / float(s)
    target = max(m, int(round(load_factor * mean_demand)))
    # Random split of the target capacity into m positive parts
    bounds = [0] + sorted(rng.sample(range(1, target), m - 1)) + [target]
    capacities = [hi - lo for lo, hi in zip(bounds, bounds[1:])]
    costs = [round(c * rng.uniform(0.8, 1.2), 2) for c in capacities]
    budget = round(budget_ratio * sum(costs), 2)

    return {
        "coordinates": coordinates,
        "demands": demands,
        "teamCapacities": capacities,
        "teamCost": costs,
        "neighbors": neighbors,
        "radius": radius,
        "budget": budget,
        "load_factor": load_factor,
    }


def write_output(path: Path, data: Dict[str, Any]) -> None:
    path = path.with_suffix(".json")
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    print(f"Wrote instance to: {path}")


def default_out_path(n: int, m: int, s: int) -> Path:
    return Path(f"inputs/random_n{n}_m{m}_s{s}.json")


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Generate a random rescue team allocation instance")
    p.add_argument("-n", "--sites", type=int, required=True, help="Number of sites (n >= 1)")
    p.add_argument("-m", "--teams", type=int, required=True, help="Number of rescue teams (m >= 1)")
    p.add_argument("-s", "--scenarios", type=int, required=True, help="Number of demand scenarios (s >= 1)")
    p.add_argument("--radius", type=float, default=5.0, help="Neighborhood radius in km")
    p.add_argument("--load-factor", dest="load_factor", type=float, default=0.8, help="Fleet capacity / mean demand")
    p.add_argument("--budget-ratio", dest="budget_ratio", type=float, default=0.5, help="Budget / total fleet cost")
    p.add_argument("--max-demand", dest="max_demand", type=int, default=10, help="Largest demand at one site")
    p.add_argument("--seed", type=int, default=None, help="Random seed for reproducibility")
    p.add_argument("-o", "--output", type=Path, default=None, help="Output file path. Default auto-named under inputs/")
    return p.parse_args()


def main() -> int:
    args = parse_args()
    if args.sites <= 0 or args.teams <= 0 or args.scenarios <= 0:
        raise SystemExit("n, m and s must be >= 1")
    if args.radius < 0:
        raise SystemExit("radius must be >= 0")

    data = build_instance(
        args.sites,
        args.teams,
        args.scenarios,
        args.radius,
        load_factor=args.load_factor,
        budget_ratio=args.budget_ratio,
        max_demand=args.max_demand,
        seed=args.seed,
    )
    out_path = args.output if args.output is not None else default_out_path(args.sites, args.teams, args.scenarios)
    write_output(out_path, data)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
