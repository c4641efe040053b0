from .types import Bound, Cut, CutType, Method, SolveStatus, Usage
from .master import MasterProblem
from .subproblem import SubProblem
from .solver import IterativeLShaped
from .callback import CallbackLShaped
from .integer import IntegerLShaped, Node

__all__ = [
    "Bound",
    "Cut",
    "CutType",
    "Method",
    "SolveStatus",
    "Usage",
    "MasterProblem",
    "SubProblem",
    "IterativeLShaped",
    "CallbackLShaped",
    "IntegerLShaped",
    "Node",
]
