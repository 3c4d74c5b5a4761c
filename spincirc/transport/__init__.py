"""Spin/charge circuit transport: conductance matrices and boundary-value solves."""

from .boundary import BoundaryCondition, normalize_boundary_conditions, two_terminal_bias
from .conductance import ConductanceMatrix, ConductanceMatrixBuilder, spin_rotation
from .solver import TransportSolution, TransportSolver, magnetoresistance_ratio

__all__ = [
    "BoundaryCondition",
    "normalize_boundary_conditions",
    "two_terminal_bias",
    "ConductanceMatrix",
    "ConductanceMatrixBuilder",
    "spin_rotation",
    "TransportSolution",
    "TransportSolver",
    "magnetoresistance_ratio",
]
