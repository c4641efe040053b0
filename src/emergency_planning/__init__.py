"""emergency_planning

Allocation of rescue teams to sites under uncertain demand, modelled as a
two-stage stochastic program. The package provides:

- The deterministic equivalent ("Base") solved as one MIP
- The L-shaped method, iterative or with lazy cuts from a solver callback
- The integer L-shaped method (branch-and-bound over the relaxed master)
- A small CLI, YAML-based configuration and CSV exports of solutions
"""

from .runner import execute, optimize, run

__all__ = [
    "__version__",
    "execute",
    "optimize",
    "run",
]

__version__ = "0.1.0"
