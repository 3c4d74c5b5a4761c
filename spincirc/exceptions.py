"""
Exception taxonomy for transport and dynamics failures.

Every error carries the structured context needed to diagnose the failure
without re-running (node indices, residuals, iteration counts, ...).
"""

from typing import Any, Dict


class SpinCircError(Exception):
    """Base class for all spincirc errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def __getattr__(self, name: str) -> Any:
        context = self.__dict__.get("context", {})
        if name in context:
            return context[name]
        raise AttributeError(name)

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
        return f"{self.message} ({details})"


class ConfigurationError(SpinCircError, ValueError):
    """Invalid geometry, material, boundary or solver specification."""


class SingularSystemError(SpinCircError):
    """Reduced transport system is singular or too ill-conditioned to solve."""


class NumericalInstabilityError(SpinCircError):
    """A solve completed but failed its internal consistency check."""


class ConvergenceError(SpinCircError):
    """Transport/dynamics fixed-point iteration exceeded its iteration budget."""


class NormDriftError(SpinCircError):
    """
    Magnetization norm drifted beyond threshold during one step.

    Recorded in IntegrationInfo.warnings, never raised by the integrator.
    """
