"""Macrospin LLG dynamics: field terms, integrators and the integration driver."""

from .fields import (
    DemagnetizingField,
    EffectiveField,
    FieldTerm,
    SpinOrbitTorqueField,
    SpinTransferTorqueField,
    ThermalNoise,
    UniaxialAnisotropyField,
    ZeemanField,
)
from .integrators import AdaptiveIntegrator, HeunIntegrator, RK4Integrator, TABLEAUS
from .llg_solver import (
    IntegrationInfo,
    IntegratorState,
    LLGEquation,
    MagnetizationIntegrator,
    integrate,
)

__all__ = [
    "DemagnetizingField",
    "EffectiveField",
    "FieldTerm",
    "SpinOrbitTorqueField",
    "SpinTransferTorqueField",
    "ThermalNoise",
    "UniaxialAnisotropyField",
    "ZeemanField",
    "AdaptiveIntegrator",
    "HeunIntegrator",
    "RK4Integrator",
    "TABLEAUS",
    "IntegrationInfo",
    "IntegratorState",
    "LLGEquation",
    "MagnetizationIntegrator",
    "integrate",
]
