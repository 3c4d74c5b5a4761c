"""
Effective-field contributions for macrospin layers.

Every contribution is a callable ``term(t, m) -> H`` returning an (n, 3)
field in Tesla for an (n, 3) magnetization. Conservative terms also
provide ``energy(t, m)``, the reduced energy (Tesla per unit moment) whose
negative gradient is the field.
"""

from typing import Callable, Optional, Sequence, Union

import numpy as np

from ..core.structure import MultilayerStack
from ..exceptions import ConfigurationError
from ..utils.constants import PHYSICAL_CONSTANTS, SPIN_CURRENT_TO_TORQUE

FieldSource = Union[Sequence[float], np.ndarray, Callable[[float], np.ndarray]]


def _per_layer(values, n: Optional[int] = None) -> np.ndarray:
    array = np.atleast_1d(np.asarray(values, dtype=float))
    if n is not None and array.shape == (1,):
        array = np.full(n, array[0])
    return array


def _torque_prefactor(saturation_magnetization: np.ndarray, volume: np.ndarray) -> np.ndarray:
    """ħ/(2e M_s V) per layer; zero for layers without moment."""
    moment = saturation_magnetization * volume
    prefactor = np.zeros_like(moment)
    mask = moment > 0
    prefactor[mask] = SPIN_CURRENT_TO_TORQUE / moment[mask]
    return prefactor


class FieldTerm:
    """Base class for effective-field contributions."""

    conservative = True
    is_time_dependent = False

    def __call__(self, t: float, m: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def energy(self, t: float, m: np.ndarray) -> float:
        return 0.0


class ZeemanField(FieldTerm):
    """Applied field, constant or a function of time."""

    def __init__(self, field: FieldSource):
        self.field = field
        self.is_time_dependent = callable(field)
        if not self.is_time_dependent:
            self.field = np.asarray(field, dtype=float)

    def __call__(self, t, m):
        value = self.field(t) if self.is_time_dependent else self.field
        return np.broadcast_to(np.asarray(value, dtype=float), np.shape(m)).copy()

    def energy(self, t, m):
        return float(-np.sum(m * self(t, m)))


class UniaxialAnisotropyField(FieldTerm):
    """H = (2 K_u / M_s) (m·u) u."""

    def __init__(self, anisotropy_constant, saturation_magnetization, axes):
        K = _per_layer(anisotropy_constant)
        Ms = _per_layer(saturation_magnetization, len(K))
        u = np.atleast_2d(np.asarray(axes, dtype=float))
        u = u / np.linalg.norm(u, axis=1, keepdims=True)
        self.axes = u
        self.strength = np.divide(2.0 * K, Ms, out=np.zeros_like(K), where=Ms > 0)

    def __call__(self, t, m):
        projection = np.sum(m * self.axes, axis=-1, keepdims=True)
        return self.strength[:, None] * projection * self.axes

    def energy(self, t, m):
        return float(-0.5 * np.sum(m * self(t, m)))


class DemagnetizingField(FieldTerm):
    """
    Shape anisotropy H = -μ0 M_s N·m with a diagonal demagnetizing tensor.

    The default tensor (0, 0, 1) is an infinite thin film in the xy plane.
    """

    def __init__(self, saturation_magnetization, factors=(0.0, 0.0, 1.0)):
        Ms = _per_layer(saturation_magnetization)
        N = np.atleast_2d(np.asarray(factors, dtype=float))
        if N.shape[-1] != 3 or np.any(N < 0):
            raise ConfigurationError("Demagnetizing factors must be non-negative 3-vectors",
                                     factors=factors)
        self.scale = PHYSICAL_CONSTANTS['mu_0'] * Ms[:, None] * N

    def __call__(self, t, m):
        return -self.scale * m

    def energy(self, t, m):
        return float(-0.5 * np.sum(m * self(t, m)))


class SpinTransferTorqueField(FieldTerm):
    """
    Slonczewski torque of an absorbed transverse spin current as a field.

    I_s is the absorbed spin current in charge units (A), as the circuit
    reports it. Electrons carry negative charge, so the deposited electron
    spin points along -I_s and H = -ħ/(2e M_s V) (m × I_s) drives m towards
    it. ``spin_currents`` is either a fixed (n, 3) array or a callable
    ``(t, m) -> (n, 3)``.
    """

    conservative = False

    def __init__(self, saturation_magnetization, volume, spin_currents):
        self.prefactor = _torque_prefactor(_per_layer(saturation_magnetization),
                                           _per_layer(volume))
        self.spin_currents = spin_currents
        self.is_time_dependent = callable(spin_currents)

    def __call__(self, t, m):
        if callable(self.spin_currents):
            currents = self.spin_currents(t, m)
        else:
            currents = self.spin_currents
        currents = np.asarray(currents, dtype=float).reshape(np.shape(m))
        return -self.prefactor[:, None] * np.cross(m, currents)

    @classmethod
    def for_stack(cls, stack: MultilayerStack, spin_currents) -> "SpinTransferTorqueField":
        return cls(stack.magnetic_parameter("saturation_magnetization"),
                   stack.magnetic_volumes(), spin_currents)


class SpinOrbitTorqueField(FieldTerm):
    """
    Damping-like spin-orbit torque from a spin-Hall current in an adjacent
    heavy metal: H = ħ θ_SH J / (2 e M_s t) (m × σ).
    """

    conservative = False

    def __init__(self, spin_hall_angle, current_density, polarization,
                 saturation_magnetization, thickness):
        sigma = np.atleast_2d(np.asarray(polarization, dtype=float))
        self.polarization = sigma / np.linalg.norm(sigma, axis=1, keepdims=True)
        self.current_density = current_density
        self.is_time_dependent = callable(current_density)
        self.efficiency = _torque_prefactor(_per_layer(saturation_magnetization),
                                            _per_layer(thickness)) * spin_hall_angle

    def __call__(self, t, m):
        J = self.current_density(t) if callable(self.current_density) else self.current_density
        return (self.efficiency * J)[:, None] * np.cross(m, self.polarization)


class EffectiveField(FieldTerm):
    """
    Sum of field contributions, a pure function of (t, m).
    """

    def __init__(self, terms: Sequence[Callable] = ()):
        self.terms = tuple(terms)

    @property
    def is_time_dependent(self) -> bool:
        return any(getattr(term, "is_time_dependent", True) for term in self.terms)

    @property
    def conservative(self) -> bool:
        return all(getattr(term, "conservative", False) for term in self.terms)

    def __call__(self, t, m):
        field = np.zeros(np.shape(m))
        for term in self.terms:
            field += term(t, m)
        return field

    def energy(self, t, m):
        """Energy of the conservative contributions."""
        return float(sum(term.energy(t, m) for term in self.terms
                         if getattr(term, "conservative", False)))

    def with_term(self, term: Callable) -> "EffectiveField":
        return EffectiveField(self.terms + (term,))

    @classmethod
    def for_stack(
        cls,
        stack: MultilayerStack,
        applied_field: Optional[FieldSource] = None,
        demagnetizing_factors=(0.0, 0.0, 1.0),
    ) -> "EffectiveField":
        """
        Applied, uniaxial-anisotropy and demagnetizing fields of a stack's
        magnetic layers, from their material parameters.
        """
        indices = stack.magnetic_indices
        Ms = stack.magnetic_parameter("saturation_magnetization")
        terms = []
        if applied_field is not None:
            terms.append(ZeemanField(applied_field))
        K = stack.magnetic_parameter("anisotropy_constant")
        if np.any(K != 0):
            axes = [stack.layers[i].material.easy_axis for i in indices]
            terms.append(UniaxialAnisotropyField(K, Ms, axes))
        if demagnetizing_factors is not None and len(indices):
            terms.append(DemagnetizingField(Ms, demagnetizing_factors))
        return cls(terms)


class ThermalNoise:
    """
    Brown thermal field, σ = sqrt(2 α k_B T / (γ M_s V Δt)) per component.

    Draws come from the generator supplied by the caller, so runs are
    reproducible from their seed.
    """

    def __init__(self, temperature: float, saturation_magnetization, volume,
                 rng: np.random.Generator):
        if temperature < 0:
            raise ConfigurationError("Temperature must be non-negative", value=temperature)
        self.temperature = temperature
        self.moment = _per_layer(saturation_magnetization) * _per_layer(volume)
        self.rng = rng

    def sample(self, dt: float, damping: np.ndarray, gamma: np.ndarray) -> np.ndarray:
        """Thermal field (n, 3) held constant over one step of length dt."""
        variance = np.divide(
            2.0 * damping * PHYSICAL_CONSTANTS['kB'] * self.temperature,
            gamma * self.moment * dt,
            out=np.zeros_like(self.moment),
            where=self.moment > 0,
        )
        return np.sqrt(variance)[:, None] * self.rng.standard_normal((len(self.moment), 3))
