"""
spincirc: coupled spin-circuit transport and magnetization dynamics.

Solves the 4-component (charge + spin) circuit of ferromagnet/normal-metal
multilayers and integrates the LLG equation of their magnetic layers,
coupled through spin-transfer torque.
"""

__version__ = "0.1.0"

from . import core
from . import transport
from . import dynamics
from . import coupling
from . import utils

from .config import SimulationConfig
from .core import Material, MaterialRegistry, default_registry, LayerGeometry, Layer, MultilayerStack
from .transport import (
    BoundaryCondition,
    ConductanceMatrix,
    ConductanceMatrixBuilder,
    TransportSolution,
    TransportSolver,
)
from .dynamics import EffectiveField, IntegrationInfo, MagnetizationIntegrator, ThermalNoise
from .coupling import CoupledResult, CouplingOrchestrator
from .exceptions import (
    SpinCircError,
    ConfigurationError,
    SingularSystemError,
    NumericalInstabilityError,
    ConvergenceError,
    NormDriftError,
)
from .logging_config import setup_logging

__all__ = [
    "SimulationConfig",
    "Material",
    "MaterialRegistry",
    "default_registry",
    "LayerGeometry",
    "Layer",
    "MultilayerStack",
    "BoundaryCondition",
    "ConductanceMatrix",
    "ConductanceMatrixBuilder",
    "TransportSolution",
    "TransportSolver",
    "EffectiveField",
    "IntegrationInfo",
    "MagnetizationIntegrator",
    "ThermalNoise",
    "CoupledResult",
    "CouplingOrchestrator",
    "SpinCircError",
    "ConfigurationError",
    "SingularSystemError",
    "NumericalInstabilityError",
    "ConvergenceError",
    "NormDriftError",
    "setup_logging",
    "core",
    "transport",
    "dynamics",
    "coupling",
    "utils",
]
