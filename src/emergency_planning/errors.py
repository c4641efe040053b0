from __future__ import annotations


class PlanningError(Exception):
    """Base class for errors raised by the planning drivers."""


class MasterInfeasible(PlanningError):
    """The master problem is infeasible or unbounded."""


class NoAllocationFound(PlanningError):
    """A solution was about to be built without any allocated team."""


class UnrecognizedModel(PlanningError):
    """No method is registered under the requested model name."""

    def __init__(self, model_name: str):
        super().__init__(f"Model {model_name!r} not registered")
        self.model_name = model_name


__all__ = ["PlanningError", "MasterInfeasible", "NoAllocationFound", "UnrecognizedModel"]
