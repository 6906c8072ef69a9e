import logging

from . import iterations, linsys, ortho, parameters, solvers, status, utils
from .__about__ import __version__
from ._convenience import block_cg
from .linsys import LinearProblem
from .parameters import Parameters
from .solvers import BlockCgSolver, ReturnType

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "iterations",
    "linsys",
    "ortho",
    "parameters",
    "solvers",
    "status",
    "utils",
    "block_cg",
    "BlockCgSolver",
    "LinearProblem",
    "Parameters",
    "ReturnType",
    "__version__",
]
