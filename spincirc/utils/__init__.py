"""Utility functions and helpers."""

from .random import make_rng, random_unit_vectors
from .constants import PHYSICAL_CONSTANTS, SPIN_CURRENT_TO_TORQUE

__all__ = [
    "make_rng",
    "random_unit_vectors",
    "PHYSICAL_CONSTANTS",
    "SPIN_CURRENT_TO_TORQUE",
]
