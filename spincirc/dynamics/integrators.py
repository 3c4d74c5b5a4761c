"""
Numerical integrators for the LLG equation.
"""

import numpy as np
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional, Tuple

from ..exceptions import NumericalInstabilityError

if TYPE_CHECKING:
    from .llg_solver import LLGEquation


class Integrator(ABC):
    """Abstract base class for LLG integrators."""

    adaptive = False

    def __init__(self, equation: 'LLGEquation'):
        """Initialize integrator with reference to the equation being solved."""
        self.equation = equation


class FixedStepIntegrator(Integrator):
    """Integrator advancing by exactly the requested step."""

    @abstractmethod
    def step(self, t: float, m: np.ndarray, dt: float,
             thermal_field: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Perform one integration step.

        Args:
            t: Current time
            m: Current (n, 3) magnetization
            dt: Time step
            thermal_field: Stochastic field held constant over the step

        Returns:
            Updated (not yet renormalized) magnetization
        """


class HeunIntegrator(FixedStepIntegrator):
    """
    Heun's method (improved Euler) for LLG integration.

    With a thermal field held fixed over the step this is the stochastic
    Heun scheme, which converges to the Stratonovich solution of the
    stochastic LLG equation.
    """

    def step(self, t, m, dt, thermal_field=None):
        # Predictor: Euler step
        k1 = self.equation.calculate_llg_rhs(t, m, thermal_field)
        m_pred = m + dt * k1

        # Corrector: average of slopes
        k2 = self.equation.calculate_llg_rhs(t + dt, m_pred, thermal_field)
        return m + dt * 0.5 * (k1 + k2)


class RK4Integrator(FixedStepIntegrator):
    """
    Classical fourth-order Runge-Kutta integrator.

    Used for reproducible fixed-step runs.
    """

    def step(self, t, m, dt, thermal_field=None):
        rhs = self.equation.calculate_llg_rhs
        k1 = rhs(t, m, thermal_field)
        k2 = rhs(t + 0.5 * dt, m + 0.5 * dt * k1, thermal_field)
        k3 = rhs(t + 0.5 * dt, m + 0.5 * dt * k2, thermal_field)
        k4 = rhs(t + dt, m + dt * k3, thermal_field)
        return m + (dt / 6.0) * (k1 + 2 * k2 + 2 * k3 + k4)


class ButcherTableau:
    """Coefficients of an embedded Runge-Kutta pair."""

    def __init__(self, name, c, a, b_high, b_low, order):
        self.name = name
        self.c = np.array(c, dtype=float)
        self.a = [np.array(row, dtype=float) for row in a]
        self.b_high = np.array(b_high, dtype=float)
        self.b_low = np.array(b_low, dtype=float)
        self.order = order
        self.stages = len(self.c)


FEHLBERG45 = ButcherTableau(
    "rk45",
    c=[0, 1/4, 3/8, 12/13, 1, 1/2],
    a=[
        [],
        [1/4],
        [3/32, 9/32],
        [1932/2197, -7200/2197, 7296/2197],
        [439/216, -8, 3680/513, -845/4104],
        [-8/27, 2, -3544/2565, 1859/4104, -11/40],
    ],
    b_high=[16/135, 0, 6656/12825, 28561/56430, -9/50, 2/55],
    b_low=[25/216, 0, 1408/2565, 2197/4104, -1/5, 0],
    order=4,
)

DORMAND_PRINCE54 = ButcherTableau(
    "dormand_prince",
    c=[0, 1/5, 3/10, 4/5, 8/9, 1, 1],
    a=[
        [],
        [1/5],
        [3/40, 9/40],
        [44/45, -56/15, 32/9],
        [19372/6561, -25360/2187, 64448/6561, -212/729],
        [9017/3168, -355/33, 46732/5247, 49/176, -5103/18656],
        [35/384, 0, 500/1113, 125/192, -2187/6784, 11/84],
    ],
    b_high=[35/384, 0, 500/1113, 125/192, -2187/6784, 11/84, 0],
    b_low=[5179/57600, 0, 7571/16695, 393/640, -92097/339200, 187/2100, 1/40],
    order=4,
)


class AdaptiveIntegrator(Integrator):
    """
    Adaptive time-stepping integrator using embedded RK methods.

    Automatically adjusts time step based on local error estimation
    to maintain accuracy while maximizing efficiency. The higher-order
    solution is propagated.
    """

    adaptive = True

    def __init__(
        self,
        equation: 'LLGEquation',
        tableau: ButcherTableau = DORMAND_PRINCE54,
        tolerance: float = 1e-6,
        safety_factor: float = 0.9,
        max_factor: float = 5.0,
        min_factor: float = 0.2,
        max_dt: Optional[float] = None,
        min_dt: float = 0.0,
    ):
        """
        Initialize adaptive integrator.

        Args:
            equation: LLG equation instance
            tableau: Embedded Runge-Kutta pair
            tolerance: Absolute and relative local error tolerance
            safety_factor: Safety factor for step size adjustment
            max_factor: Maximum factor for step size increase
            min_factor: Minimum factor for step size decrease
            max_dt: Upper bound on the step size
            min_dt: Step size below which the step is abandoned
        """
        super().__init__(equation)
        self.tableau = tableau
        self.tolerance = tolerance
        self.safety_factor = safety_factor
        self.max_factor = max_factor
        self.min_factor = min_factor
        self.max_dt = max_dt
        self.min_dt = min_dt

        # Statistics
        self.accepted_steps = 0
        self.rejected_steps = 0

    def step(self, t: float, m: np.ndarray, dt: float) -> Tuple[np.ndarray, float, float]:
        """
        Perform adaptive integration step.

        Args:
            t: Current time
            m: Current magnetization
            dt: Trial time step

        Returns:
            Tuple of (updated magnetization, step actually taken, proposed next step)
        """
        exponent = 1.0 / (self.tableau.order + 1)
        if self.max_dt is not None:
            dt = min(dt, self.max_dt)

        while True:
            m_high, m_low = self._embedded_rk_step(t, m, dt)
            error = self._error_norm(m, m_high, m_low)

            if error <= 1.0:
                self.accepted_steps += 1
                if error > 0:
                    factor = self.safety_factor * error ** (-exponent)
                    factor = max(self.min_factor, min(self.max_factor, factor))
                else:
                    factor = self.max_factor
                new_dt = dt * factor
                if self.max_dt is not None:
                    new_dt = min(new_dt, self.max_dt)
                return m_high, dt, new_dt

            # Reject step and reduce time step
            self.rejected_steps += 1
            if np.isfinite(error):
                factor = max(self.min_factor, self.safety_factor * error ** (-exponent))
            else:
                factor = self.min_factor
            dt *= min(factor, 1.0)
            if dt <= self.min_dt:
                raise NumericalInstabilityError("Adaptive step size underflow",
                                                time=t, dt=dt, error=error,
                                                rejected_steps=self.rejected_steps)

    def _embedded_rk_step(self, t: float, m: np.ndarray, dt: float) -> Tuple[np.ndarray, np.ndarray]:
        tableau = self.tableau
        k = []
        for stage in range(tableau.stages):
            increment = np.zeros_like(m)
            for j, coefficient in enumerate(tableau.a[stage]):
                if coefficient != 0:
                    increment += coefficient * k[j]
            k.append(self.equation.calculate_llg_rhs(t + tableau.c[stage] * dt,
                                                     m + dt * increment))

        m_high = m.copy()
        m_low = m.copy()
        for j in range(tableau.stages):
            m_high += dt * tableau.b_high[j] * k[j]
            m_low += dt * tableau.b_low[j] * k[j]
        return m_high, m_low

    def _error_norm(self, m, m_high, m_low) -> float:
        scale = self.tolerance * (1.0 + np.maximum(np.abs(m), np.abs(m_high)))
        with np.errstate(invalid="ignore", over="ignore"):
            error = np.max(np.abs(m_high - m_low) / scale)
        if not np.isfinite(error):
            return np.inf
        return float(error)

    def get_statistics(self) -> dict:
        """Get integration statistics."""
        total_steps = self.accepted_steps + self.rejected_steps
        acceptance_rate = self.accepted_steps / total_steps if total_steps > 0 else 0

        return {
            'accepted_steps': self.accepted_steps,
            'rejected_steps': self.rejected_steps,
            'acceptance_rate': acceptance_rate,
            'total_attempts': total_steps
        }


TABLEAUS = {
    "rk45": FEHLBERG45,
    "dormand_prince": DORMAND_PRINCE54,
}
