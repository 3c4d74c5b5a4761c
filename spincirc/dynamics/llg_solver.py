"""
Landau-Lifshitz-Gilbert (LLG) magnetization integrator.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

import numpy as np
from tqdm import tqdm

from .fields import ThermalNoise
from .integrators import (
    AdaptiveIntegrator, HeunIntegrator, RK4Integrator, TABLEAUS, Integrator
)
from ..config import SCHEMES, SimulationConfig
from ..core.fast_ops import llg_rhs, normalize_magnetization, zeeman_energy
from ..exceptions import ConfigurationError, NormDriftError, NumericalInstabilityError

logger = logging.getLogger(__name__)

FieldFunction = Callable[[float, np.ndarray], np.ndarray]


class IntegratorState(Enum):
    INITIALIZED = "initialized"
    STEPPING = "stepping"
    COMPLETED = "completed"
    DIVERGED = "diverged"


@dataclass
class IntegrationInfo:
    """
    Diagnostics of one integration run.

    Not used for control flow beyond the configured thresholds.
    """

    scheme: str = ""
    steps: int = 0
    rejected_steps: int = 0
    function_evaluations: int = 0
    norm_residual: float = 0.0
    max_norm_drift: float = 0.0
    energy_residual: float = 0.0
    energy_conserved: Optional[bool] = None
    initial_energy: float = float("nan")
    final_energy: float = float("nan")
    energies: np.ndarray = field(default_factory=lambda: np.zeros(0))
    budget_exceeded: bool = False
    status: IntegratorState = IntegratorState.INITIALIZED
    termination_reason: Optional[str] = None
    error: Optional[Exception] = None
    wall_time: float = 0.0
    warnings: List[NormDriftError] = field(default_factory=list)

    @property
    def diverged(self) -> bool:
        return self.status is IntegratorState.DIVERGED

    def merge(self, other: "IntegrationInfo") -> "IntegrationInfo":
        """Combine the diagnostics of a later run segment into this one."""
        energies = other.energies
        if len(self.energies) and len(energies):
            energies = energies[1:]
        return IntegrationInfo(
            scheme=other.scheme or self.scheme,
            steps=self.steps + other.steps,
            rejected_steps=self.rejected_steps + other.rejected_steps,
            function_evaluations=self.function_evaluations + other.function_evaluations,
            norm_residual=max(self.norm_residual, other.norm_residual),
            max_norm_drift=max(self.max_norm_drift, other.max_norm_drift),
            energy_residual=max(self.energy_residual, other.energy_residual),
            energy_conserved=_combine_flags(self.energy_conserved, other.energy_conserved),
            initial_energy=self.initial_energy if len(self.energies) else other.initial_energy,
            final_energy=other.final_energy,
            energies=np.concatenate([self.energies, energies]),
            budget_exceeded=self.budget_exceeded or other.budget_exceeded,
            status=other.status,
            termination_reason=other.termination_reason or self.termination_reason,
            error=other.error or self.error,
            wall_time=self.wall_time + other.wall_time,
            warnings=self.warnings + other.warnings,
        )


def _combine_flags(a: Optional[bool], b: Optional[bool]) -> Optional[bool]:
    if a is None:
        return b
    if b is None:
        return a
    return a and b


class LLGEquation:
    """
    Right-hand side of the LLG equation for one run.

    dm/dt = -γ/(1+α²) [ m × H_eff + α m × (m × H_eff) ]

    H_eff is obtained from the injected field function at every evaluation.
    """

    def __init__(self, field_fn: FieldFunction, damping: np.ndarray, gamma: np.ndarray):
        self.field_fn = field_fn
        self.damping = damping
        self.gamma = gamma
        self.evaluations = 0

    def effective_field(self, t: float, m: np.ndarray) -> np.ndarray:
        H = np.asarray(self.field_fn(t, m), dtype=float)
        return np.ascontiguousarray(np.broadcast_to(H, m.shape), dtype=np.float64)

    def calculate_llg_rhs(self, t: float, m: np.ndarray,
                          extra_field: Optional[np.ndarray] = None) -> np.ndarray:
        self.evaluations += 1
        H = self.effective_field(t, m)
        if extra_field is not None:
            H = H + extra_field
        return llg_rhs(np.ascontiguousarray(m, dtype=np.float64), H, self.gamma, self.damping)


class MagnetizationIntegrator:
    """
    Integrator of the LLG equation for one or more macrospins.

    Advances unit-norm magnetization vectors under an externally supplied
    effective-field function, renormalizing after every accepted step and
    tracking energy. The field function is injected per call, so transport
    coupling (or anything else) enters only through it.

    Lifecycle of a run: initialized -> stepping -> completed | diverged.
    A run diverges when its step or wall-clock budget is exhausted (partial
    trajectory, ``budget_exceeded`` set) or when the adaptive step size
    underflows or the state stops being finite (``error`` set).
    """

    def __init__(
        self,
        scheme: str = "dormand_prince",
        dt: float = 1e-12,
        tolerance: float = 1e-6,
        max_dt: Optional[float] = None,
        max_steps: Optional[int] = None,
        max_wall_time: Optional[float] = None,
        norm_drift_threshold: float = 1e-6,
        energy_tolerance: float = 1e-6,
        safety_factor: float = 0.9,
        verbose: bool = False,
    ):
        """
        Initialize the integrator.

        Args:
            scheme: "rk4", "heun", "rk45" (Fehlberg) or "dormand_prince"
            dt: Fixed step, or initial step of adaptive schemes (seconds)
            tolerance: Local error tolerance of adaptive schemes
            max_dt: Upper bound on adaptive steps
            max_steps: Accepted-step budget
            max_wall_time: Wall-clock budget in seconds
            norm_drift_threshold: Per-step drift recorded as NormDriftError
            energy_tolerance: Relative energy change allowed in validation mode
            safety_factor: Step-size controller safety factor
            verbose: Show a progress bar over simulated time
        """
        if scheme not in SCHEMES:
            raise ConfigurationError(f"Unknown integrator: {scheme}", valid=SCHEMES)
        if not dt > 0 or not tolerance > 0:
            raise ConfigurationError("dt and tolerance must be positive",
                                     dt=dt, tolerance=tolerance)
        self.scheme = scheme
        self.dt = dt
        self.tolerance = tolerance
        self.max_dt = max_dt
        self.max_steps = max_steps
        self.max_wall_time = max_wall_time
        self.norm_drift_threshold = norm_drift_threshold
        self.energy_tolerance = energy_tolerance
        self.safety_factor = safety_factor
        self.verbose = verbose

    @classmethod
    def from_config(cls, config: SimulationConfig, verbose: bool = False) -> "MagnetizationIntegrator":
        return cls(
            scheme=config.scheme,
            dt=config.dt,
            tolerance=config.tolerance,
            max_dt=config.max_dt,
            max_steps=config.max_steps,
            max_wall_time=config.max_wall_time,
            norm_drift_threshold=config.norm_drift_threshold,
            energy_tolerance=config.energy_tolerance,
            verbose=verbose,
        )

    def _create_integrator(self, scheme: str, equation: LLGEquation, span: float) -> Integrator:
        """Create the specified integrator."""
        if scheme == "heun":
            return HeunIntegrator(equation)
        if scheme == "rk4":
            return RK4Integrator(equation)
        return AdaptiveIntegrator(
            equation,
            tableau=TABLEAUS[scheme],
            tolerance=self.tolerance,
            safety_factor=self.safety_factor,
            max_dt=self.max_dt,
            min_dt=span * 1e-14,
        )

    def integrate(
        self,
        initial_state,
        field_fn: FieldFunction,
        damping,
        gyromagnetic_ratio,
        time_span: Tuple[float, float],
        scheme: Optional[str] = None,
        thermal_noise: Optional[ThermalNoise] = None,
        energy_fn: Optional[Callable[[float, np.ndarray], float]] = None,
        time_dependent: Optional[bool] = None,
        max_steps: Optional[int] = None,
        max_wall_time: Optional[float] = None,
    ) -> Tuple[np.ndarray, np.ndarray, IntegrationInfo]:
        """
        Integrate the LLG equation over ``time_span``.

        Args:
            initial_state: Unit vector (3,) or (n, 3) array of unit vectors
            field_fn: Effective field H(t, m) in Tesla, called with (n, 3) arrays
            damping: Gilbert damping α, scalar or per layer
            gyromagnetic_ratio: γ in rad/(s·T), scalar or per layer
            time_span: (t0, tf) in seconds
            scheme: Override of the configured scheme for this run
            thermal_noise: Stochastic thermal field; forces a fixed-step scheme
            energy_fn: Energy E(t, m) in field units (T) to track
                (default: field_fn.energy or -Σ m·H)
            time_dependent: Whether field_fn depends explicitly on time
                (default: field_fn.is_time_dependent, else assumed True)
            max_steps: Override of the step budget for this run
            max_wall_time: Override of the wall-clock budget for this run

        Returns:
            Tuple of (trajectory, times, IntegrationInfo); trajectory has
            shape (n_times, 3) for a single vector input, else (n_times, n, 3)
        """
        start_wall = time.perf_counter()
        scheme = scheme or self.scheme
        if scheme not in SCHEMES:
            raise ConfigurationError(f"Unknown integrator: {scheme}", valid=SCHEMES)
        max_steps = self.max_steps if max_steps is None else max_steps
        max_wall_time = self.max_wall_time if max_wall_time is None else max_wall_time

        m0 = np.asarray(initial_state, dtype=float)
        single = m0.ndim == 1
        m = np.ascontiguousarray(m0.reshape(-1, 3), dtype=np.float64)
        n = m.shape[0]
        norms = np.linalg.norm(m, axis=1)
        if not np.all(np.isfinite(m)) or np.any(np.abs(norms - 1.0) > 1e-6):
            raise ConfigurationError("Initial magnetization must be finite unit vectors",
                                     norms=norms.tolist())
        m, _ = normalize_magnetization(m)

        alpha = self._broadcast(damping, n, "damping")
        gamma = self._broadcast(gyromagnetic_ratio, n, "gyromagnetic_ratio")
        if np.any(alpha < 0) or np.any(gamma <= 0):
            raise ConfigurationError("Damping must be >= 0 and gyromagnetic ratio > 0")

        t0, tf = (float(v) for v in time_span)
        span = tf - t0
        if not span > 0:
            raise ConfigurationError("Time span must be increasing", time_span=time_span)

        if thermal_noise is not None and scheme in TABLEAUS:
            logger.warning("Thermal noise is incompatible with adaptive scheme '%s'; "
                           "using fixed-step stochastic Heun with dt=%.3g s", scheme, self.dt)
            scheme = "heun"

        equation = LLGEquation(field_fn, alpha, gamma)
        integrator = self._create_integrator(scheme, equation, span)

        if time_dependent is None:
            time_dependent = getattr(field_fn, "is_time_dependent", True)
        validation_mode = (np.all(alpha == 0) and not time_dependent
                           and thermal_noise is None)
        if energy_fn is None:
            energy_fn = getattr(field_fn, "energy", None) or \
                (lambda t, state: zeeman_energy(state, equation.effective_field(t, state)))

        info = IntegrationInfo(scheme=scheme, status=IntegratorState.STEPPING)
        times = [t0]
        trajectory = [m.copy()]
        energies = [float(energy_fn(t0, m))]
        # |m·H| <= |H| bounds the energy of each layer
        energy_scale = float(np.sum(np.linalg.norm(equation.effective_field(t0, m), axis=1)))

        t = t0
        dt = min(self.dt, span)
        pbar = tqdm(total=span, desc="LLG integration", unit="s", disable=not self.verbose)

        while tf - t > span * 1e-12:
            if max_steps is not None and info.steps >= max_steps:
                self._truncate(info, "budget_exceeded", f"step budget of {max_steps} exhausted", t)
                break
            if max_wall_time is not None and time.perf_counter() - start_wall > max_wall_time:
                self._truncate(info, "budget_exceeded",
                               f"wall-clock budget of {max_wall_time} s exhausted", t)
                break

            try:
                if integrator.adaptive:
                    m_new, dt_taken, dt = integrator.step(t, m, min(dt, tf - t))
                else:
                    dt_taken = min(dt, tf - t)
                    thermal = None
                    if thermal_noise is not None:
                        thermal = thermal_noise.sample(dt_taken, alpha, gamma)
                    m_new = integrator.step(t, m, dt_taken, thermal)
            except NumericalInstabilityError as exc:
                info.error = exc
                self._truncate(info, "step_size_underflow", str(exc), t)
                break

            if not np.all(np.isfinite(m_new)):
                info.error = NumericalInstabilityError("Magnetization became non-finite",
                                                       time=t, dt=dt_taken, step=info.steps)
                self._truncate(info, "non_finite_state", str(info.error), t)
                break

            # Accepted step: renormalize and record the drift
            m, drift = normalize_magnetization(np.ascontiguousarray(m_new))
            t += dt_taken
            info.steps += 1
            step_drift = float(np.max(drift))
            info.max_norm_drift = max(info.max_norm_drift, step_drift)
            if step_drift > self.norm_drift_threshold:
                self._record_drift(info, step_drift, drift, t)

            times.append(t)
            trajectory.append(m.copy())
            energies.append(float(energy_fn(t, m)))
            pbar.update(dt_taken)

        pbar.close()

        if info.status is IntegratorState.STEPPING:
            info.status = IntegratorState.COMPLETED

        if hasattr(integrator, "rejected_steps"):
            info.rejected_steps = integrator.rejected_steps
        info.function_evaluations = equation.evaluations
        info.norm_residual = float(np.max(np.abs(np.linalg.norm(np.array(trajectory), axis=-1) - 1.0)))
        info.energies = np.array(energies)
        info.initial_energy = energies[0]
        info.final_energy = energies[-1]
        self._check_energy(info, validation_mode, energy_scale)
        info.wall_time = time.perf_counter() - start_wall

        trajectory = np.array(trajectory)
        if single:
            trajectory = trajectory[:, 0, :]
        return trajectory, np.array(times), info

    @staticmethod
    def _broadcast(value, n: int, name: str) -> np.ndarray:
        array = np.atleast_1d(np.asarray(value, dtype=np.float64))
        if array.shape == (1,):
            array = np.full(n, array[0])
        if array.shape != (n,):
            raise ConfigurationError(f"{name} must be a scalar or one value per layer",
                                     shape=array.shape, n_layers=n)
        return np.ascontiguousarray(array)

    @staticmethod
    def _truncate(info: IntegrationInfo, reason: str, message: str, t: float) -> None:
        info.status = IntegratorState.DIVERGED
        info.termination_reason = reason
        info.budget_exceeded = reason == "budget_exceeded"
        logger.warning("Integration stopped at t=%.6g s: %s", t, message)

    def _record_drift(self, info: IntegrationInfo, step_drift: float,
                      drift: np.ndarray, t: float) -> None:
        layers = [int(i) for i in np.flatnonzero(drift > self.norm_drift_threshold)]
        info.warnings.append(NormDriftError("Magnetization norm drift above threshold",
                                            step=info.steps, time=t, drift=step_drift,
                                            layers=layers,
                                            threshold=self.norm_drift_threshold))
        if len(info.warnings) == 1:
            logger.warning("Norm drift %.3g exceeds %.3g at step %d (t=%.6g s); "
                           "renormalized, further occurrences logged at DEBUG",
                           step_drift, self.norm_drift_threshold, info.steps, t)
        else:
            logger.debug("Norm drift %.3g at step %d", step_drift, info.steps)

    def _check_energy(self, info: IntegrationInfo, validation_mode: bool,
                      energy_scale: float = 0.0) -> None:
        energies = info.energies
        change = np.max(np.abs(energies - energies[0]))
        scale = np.nanmax([np.max(np.abs(energies)), energy_scale, np.finfo(float).eps])
        info.energy_residual = float(change / scale)
        if not validation_mode:
            logger.debug("Energy changed from %.6g to %.6g over the run (damped or driven)",
                         info.initial_energy, info.final_energy)
            return
        info.energy_conserved = info.energy_residual <= self.energy_tolerance
        if not info.energy_conserved:
            logger.warning("Undamped, undriven run did not conserve energy: "
                           "relative residual %.3g > %.3g",
                           info.energy_residual, self.energy_tolerance)

    def __repr__(self) -> str:
        return (f"MagnetizationIntegrator(scheme={self.scheme!r}, dt={self.dt:.2e}, "
                f"tolerance={self.tolerance:.1e})")


def integrate(
    initial_state,
    field_fn: FieldFunction,
    damping,
    gyromagnetic_ratio,
    time_span: Tuple[float, float],
    scheme: str = "dormand_prince",
    **options,
) -> Tuple[np.ndarray, np.ndarray, IntegrationInfo]:
    """
    Functional form of MagnetizationIntegrator.integrate.

    Remaining keyword options go to the MagnetizationIntegrator constructor
    (dt, tolerance, max_steps, ...) or to ``integrate`` (thermal_noise,
    energy_fn, time_dependent).
    """
    run_options = {key: options.pop(key) for key in
                   ("thermal_noise", "energy_fn", "time_dependent") if key in options}
    integrator = MagnetizationIntegrator(scheme=scheme, **options)
    return integrator.integrate(initial_state, field_fn, damping, gyromagnetic_ratio,
                                time_span, **run_options)
