"""
Material parameters and the read-only material registry.
"""

import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple

import numpy as np

from ..exceptions import ConfigurationError
from ..utils.constants import PHYSICAL_CONSTANTS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Material:
    """
    Immutable transport and magnetic parameters of one material (SI units).

    Normal metals have ``polarization == 0`` and ``saturation_magnetization == 0``.
    Temperature-dependent quantities are given at ``reference_temperature``
    and evaluated elsewhere through :meth:`at_temperature`.
    """

    name: str
    resistivity: float  # Ω·m
    spin_diffusion_length: float  # m
    polarization: float = 0.0
    saturation_magnetization: float = 0.0  # A/m
    damping: float = 0.0
    gyromagnetic_ratio: float = PHYSICAL_CONSTANTS['gamma_e']  # rad/(s·T)

    reference_temperature: float = 300.0  # K
    resistivity_temperature_coefficient: float = 0.0  # 1/K
    spin_diffusion_exponent: float = 0.0
    curie_temperature: Optional[float] = None  # K

    interface_resistance_area: float = 1e-15  # Ω·m², towards a normal metal
    interface_polarization: Optional[float] = None
    mixing_conductance: float = 5e14  # S/m², real part
    mixing_conductance_imag: float = 0.0  # S/m²
    dephasing_length: float = 1e-9  # m, transverse spin coherence in ferromagnets

    anisotropy_constant: float = 0.0  # J/m³
    anisotropy_axis: Tuple[float, float, float] = (0.0, 0.0, 1.0)

    def __post_init__(self):
        if not self.resistivity > 0:
            raise ConfigurationError(f"{self.name}: resistivity must be positive",
                                     value=self.resistivity)
        if self.spin_diffusion_length < 0:
            raise ConfigurationError(f"{self.name}: spin-diffusion length must be >= 0",
                                     value=self.spin_diffusion_length)
        if self.dephasing_length < 0:
            raise ConfigurationError(f"{self.name}: dephasing length must be >= 0",
                                     value=self.dephasing_length)
        for attr in ("polarization", "interface_polarization"):
            value = getattr(self, attr)
            if value is not None and not -1 < value < 1:
                raise ConfigurationError(f"{self.name}: {attr} must lie in (-1, 1)",
                                         value=value)
        if self.saturation_magnetization < 0 or self.damping < 0:
            raise ConfigurationError(f"{self.name}: M_s and damping must be >= 0")
        if not self.gyromagnetic_ratio > 0:
            raise ConfigurationError(f"{self.name}: gyromagnetic ratio must be positive")
        if not self.interface_resistance_area > 0:
            raise ConfigurationError(f"{self.name}: interface resistance-area must be positive",
                                     value=self.interface_resistance_area)
        axis = np.asarray(self.anisotropy_axis, dtype=float)
        if axis.shape != (3,) or not np.linalg.norm(axis) > 0:
            raise ConfigurationError(f"{self.name}: anisotropy axis must be a nonzero 3-vector")

    @property
    def is_magnetic(self) -> bool:
        return self.saturation_magnetization > 0 or self.polarization != 0

    @property
    def easy_axis(self) -> np.ndarray:
        axis = np.asarray(self.anisotropy_axis, dtype=float)
        return axis / np.linalg.norm(axis)

    @property
    def effective_interface_polarization(self) -> float:
        if self.interface_polarization is None:
            return self.polarization
        return self.interface_polarization

    def at_temperature(self, temperature: float) -> "Material":
        """
        Evaluate the temperature-dependent parameters at ``temperature``.

        Resistivity follows a linear law, the spin-diffusion length a power
        law (T0/T)^n, and polarization and M_s the Bloch law 1 - (T/Tc)^(3/2).
        """
        if not temperature > 0:
            raise ConfigurationError(f"{self.name}: temperature must be positive",
                                     value=temperature)
        if temperature == self.reference_temperature:
            return self

        dT = temperature - self.reference_temperature
        resistivity = self.resistivity * (1.0 + self.resistivity_temperature_coefficient * dT)
        if not resistivity > 0:
            raise ConfigurationError(f"{self.name}: resistivity non-positive at {temperature} K",
                                     value=resistivity)

        ratio = self.reference_temperature / temperature
        spin_diffusion_length = self.spin_diffusion_length * ratio ** self.spin_diffusion_exponent

        polarization = self.polarization
        saturation_magnetization = self.saturation_magnetization
        if self.curie_temperature is not None:
            scale = _bloch_factor(temperature, self.curie_temperature)
            scale_ref = _bloch_factor(self.reference_temperature, self.curie_temperature)
            factor = scale / scale_ref if scale_ref > 0 else 0.0
            if factor == 0.0:
                logger.warning("%s evaluated at %.1f K, at or above its Curie temperature "
                               "(%.1f K): polarization and M_s vanish",
                               self.name, temperature, self.curie_temperature)
            polarization *= factor
            saturation_magnetization *= factor

        return replace(
            self,
            resistivity=resistivity,
            spin_diffusion_length=spin_diffusion_length,
            polarization=polarization,
            saturation_magnetization=saturation_magnetization,
            reference_temperature=temperature,
        )


def _bloch_factor(temperature: float, curie_temperature: float) -> float:
    if temperature >= curie_temperature:
        return 0.0
    return 1.0 - (temperature / curie_temperature) ** 1.5


@dataclass(frozen=True)
class MaterialRegistry:
    """
    Explicitly constructed, read-only name -> Material lookup.

    Components that need material data receive a registry instance; there is
    no module-level database.
    """

    _materials: Mapping[str, Material] = field(default_factory=dict)

    def __post_init__(self):
        frozen = MappingProxyType(dict(self._materials))
        object.__setattr__(self, "_materials", frozen)

    @classmethod
    def from_materials(cls, materials: Iterable[Material]) -> "MaterialRegistry":
        table: Dict[str, Material] = {}
        for material in materials:
            if material.name in table:
                raise ConfigurationError(f"Duplicate material name: {material.name}")
            table[material.name] = material
        return cls(table)

    def get(self, name: str, temperature: Optional[float] = None) -> Material:
        """
        Look up a material by name, optionally evaluated at a temperature.
        """
        try:
            material = self._materials[name]
        except KeyError:
            raise ConfigurationError(f"Unknown material: {name}",
                                     available=sorted(self._materials)) from None
        if temperature is not None:
            return material.at_temperature(temperature)
        return material

    def __getitem__(self, name: str) -> Material:
        return self.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._materials

    def __len__(self) -> int:
        return len(self._materials)

    def names(self) -> Tuple[str, ...]:
        return tuple(sorted(self._materials))

    def with_material(self, material: Material) -> "MaterialRegistry":
        """Return a new registry with ``material`` added or replaced."""
        table = dict(self._materials)
        table[material.name] = material
        return MaterialRegistry(table)


def default_registry() -> MaterialRegistry:
    """
    Build a registry of common room-temperature spintronic materials.
    """
    return MaterialRegistry.from_materials([
        Material("Cu", resistivity=1.7e-8, spin_diffusion_length=350e-9,
                 resistivity_temperature_coefficient=3.9e-3, spin_diffusion_exponent=1.0),
        Material("Al", resistivity=2.7e-8, spin_diffusion_length=400e-9,
                 resistivity_temperature_coefficient=4.0e-3, spin_diffusion_exponent=1.0),
        Material("Pt", resistivity=2.0e-7, spin_diffusion_length=1.4e-9,
                 resistivity_temperature_coefficient=3.9e-3),
        Material("CoFeB", resistivity=1.6e-6, spin_diffusion_length=12e-9,
                 polarization=0.56, saturation_magnetization=1.1e6, damping=0.01,
                 curie_temperature=1100.0, interface_resistance_area=1e-15,
                 interface_polarization=0.7, anisotropy_constant=0.0),
        Material("Co", resistivity=2.1e-7, spin_diffusion_length=38e-9,
                 polarization=0.46, saturation_magnetization=1.4e6, damping=0.011,
                 curie_temperature=1388.0, interface_resistance_area=5.2e-16,
                 interface_polarization=0.77, anisotropy_constant=4.5e5,
                 resistivity_temperature_coefficient=6.0e-3),
        Material("NiFe", resistivity=2.9e-7, spin_diffusion_length=5.5e-9,
                 polarization=0.73, saturation_magnetization=8.0e5, damping=0.008,
                 curie_temperature=870.0, interface_resistance_area=1e-15,
                 interface_polarization=0.7),
        Material("Fe", resistivity=1.0e-7, spin_diffusion_length=8.5e-9,
                 polarization=0.62, saturation_magnetization=1.7e6, damping=0.002,
                 curie_temperature=1043.0, interface_resistance_area=1e-15,
                 anisotropy_constant=4.8e4, anisotropy_axis=(1.0, 0.0, 0.0),
                 resistivity_temperature_coefficient=6.5e-3),
    ])
