"""Problem instances: sites, rescue teams, demand scenarios and neighborhoods.

Instances are read from JSON files with the keys

  coordinates      [[lat, lon], ...] one pair per site
  demands          [[d_site1, d_site2, ...], ...] one list per scenario
  teamCapacities   [c_1, c_2, ...]
  teamCost         [cost_1, cost_2, ...]
  neighbors        [[j, ...], ...] 0-based neighbor indices per site
  radius           neighborhood radius shared by every site
  budget           allocation budget
  load_factor      load factor of the generator (kept for reporting)
  probabilities    optional scenario weights (equiprobable when absent)

Sites, teams and scenarios are addressed with 0-based indices in the models and
with the 1-based IDs ``SITE-<i>``, ``TEAM-<i>``, ``SCENARIO-<k>`` in exports.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

import numpy as np

log = logging.getLogger(__name__)

TEAM_PREFIX = "TEAM-"
SITE_PREFIX = "SITE-"
SCENARIO_PREFIX = "SCENARIO-"


@dataclass(frozen=True, slots=True)
class Site:
    ID: str
    latitude: float
    longitude: float


@dataclass(frozen=True, slots=True)
class Team:
    ID: str
    capacity: int
    cost: float


@dataclass(frozen=True, slots=True)
class Neighborhood:
    sites: tuple[Site, ...]
    radius: float


@dataclass(frozen=True, slots=True, eq=False)
class Instance:
    name: str
    sites: tuple[Site, ...]
    demands: np.ndarray  # sites x scenarios
    teams: tuple[Team, ...]
    neighborhoods: Mapping[str, Neighborhood]
    budget: float
    load_factor: float = 1.0
    weights: Optional[tuple[float, ...]] = None
    _site_index: dict[str, int] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.demands.ndim != 2 or self.demands.shape[0] != len(self.sites):
            raise ValueError(
                f"Demand matrix must be sites x scenarios; got {self.demands.shape} for {len(self.sites)} sites"
            )
        if self.weights is not None and len(self.weights) != self.demands.shape[1]:
            raise ValueError("One probability per scenario is required")
        self.demands.setflags(write=False)
        self._site_index.update({site.ID: idx for idx, site in enumerate(self.sites)})

    @property
    def nb_sites(self) -> int:
        return len(self.sites)

    @property
    def nb_teams(self) -> int:
        return len(self.teams)

    @property
    def nb_scenarios(self) -> int:
        return int(self.demands.shape[1])

    def scenario_id(self, scenario: int) -> str:
        return f"{SCENARIO_PREFIX}{scenario + 1}"

    def demand(self, scenario: int, site: int | None = None):
        if site is None:
            return self.demands[:, scenario]
        return int(self.demands[site, scenario])

    def total_demand(self, scenario: int) -> int:
        return int(self.demands[:, scenario].sum())

    def capacity(self, team: int) -> int:
        return self.teams[team].capacity

    def cost(self, team: int) -> float:
        return self.teams[team].cost

    @property
    def maximum_capacity(self) -> int:
        return max(team.capacity for team in self.teams)

    @property
    def total_capacity(self) -> int:
        return sum(team.capacity for team in self.teams)

    @property
    def total_cost(self) -> float:
        return sum(team.cost for team in self.teams)

    @property
    def maximum_rescues(self) -> int:
        return self.maximum_capacity * self.nb_sites

    @property
    def maximum_radius(self) -> float:
        return max(n.radius for n in self.neighborhoods.values())

    def neighbor_idxs(self, site: int) -> list[int]:
        """Sites a team allocated at ``site`` can rescue at."""
        neighborhood = self.neighborhoods[self.sites[site].ID]
        return [self._site_index[s.ID] for s in neighborhood.sites]

    def arcs(self) -> list[tuple[int, int]]:
        """(origin, destination) pairs along which rescues can flow."""
        return [(i, j) for i in range(self.nb_sites) for j in self.neighbor_idxs(i)]

    def probabilities(self) -> np.ndarray:
        if self.weights is None:
            return np.full(self.nb_scenarios, 1.0 / self.nb_scenarios)
        return np.asarray(self.weights, dtype=float)

    def probability(self, scenario: int) -> float:
        return float(self.probabilities()[scenario])

    def __str__(self) -> str:
        return (
            f"Instance {self.name} | Sites {self.nb_sites} | Teams {self.nb_teams} "
            f"| Scenarios {self.nb_scenarios}"
        )


def build_instance(name: str, data: Mapping[str, Any]) -> Instance:
    """Build an :class:`Instance` from a decoded JSON document."""
    sites = tuple(
        Site(f"{SITE_PREFIX}{idx}", float(coords[0]), float(coords[1]))
        for idx, coords in enumerate(data["coordinates"], start=1)
    )
    demands = np.array(data["demands"], dtype=np.int64).T
    teams = [
        Team(f"{TEAM_PREFIX}{idx}", int(capacity), float(cost))
        for idx, (capacity, cost) in enumerate(zip(data["teamCapacities"], data["teamCost"]), start=1)
    ]
    teams.sort(key=lambda team: team.capacity)
    radius = float(data.get("radius", 0.0))
    neighbors: Sequence[Sequence[int]] = data["neighbors"]
    if len(neighbors) != len(sites):
        raise ValueError(f"Expected {len(sites)} neighbor lists, got {len(neighbors)}")
    neighborhoods = {
        site.ID: Neighborhood(tuple(sites[int(j)] for j in neighborhood), radius)
        for site, neighborhood in zip(sites, neighbors)
    }
    weights = data.get("probabilities")
    if weights is not None:
        total = float(sum(weights))
        if total <= 0:
            raise ValueError("Scenario probabilities must sum to a positive value")
        weights = tuple(float(w) / total for w in weights)
    return Instance(
        name=name,
        sites=sites,
        demands=demands,
        teams=tuple(teams),
        neighborhoods=neighborhoods,
        budget=float(data["budget"]),
        load_factor=float(data.get("load_factor", 1.0)),
        weights=weights,
    )


def load_instance(filename: str, inputs: str | Path = "inputs") -> Instance:
    """Load ``<inputs>/<filename>.json``; a path to an existing file is used as is."""
    path = Path(filename)
    if not path.is_file():
        path = Path(inputs) / f"{filename}.json"
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    instance = build_instance(path.stem, data)
    log.info("Loaded %s", instance)
    return instance


__all__ = [
    "TEAM_PREFIX",
    "SITE_PREFIX",
    "SCENARIO_PREFIX",
    "Site",
    "Team",
    "Neighborhood",
    "Instance",
    "build_instance",
    "load_instance",
]
