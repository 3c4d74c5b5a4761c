"""
Run configuration.

Every option a simulation run depends on lives here explicitly; components
receive the values they need from a validated SimulationConfig rather than
consulting hidden defaults.

Coupling modes
--------------
quasi-static
    For each outer step of length ``outer_dt`` the transport problem and the
    spin torque are iterated to a fixed point (at most
    ``max_fixed_point_iterations`` rounds, each one integrating the outer step
    with the torque frozen). Costs several integrations per outer step but
    only a handful of transport solves; accuracy of the torque is limited by
    ``outer_dt``.
dynamic
    The transport problem is re-solved at every right-hand-side evaluation of
    the integrator. No outer iteration, exact instantaneous torque, but one
    matrix build and factorisation per stage.
"""

from dataclasses import dataclass, fields, asdict, replace as dc_replace
from typing import Any, Dict, Optional

from .exceptions import ConfigurationError

SCHEMES = ("rk4", "heun", "rk45", "dormand_prince")
ADAPTIVE_SCHEMES = ("rk45", "dormand_prince")
COUPLING_MODES = ("quasi-static", "dynamic")


@dataclass(frozen=True)
class SimulationConfig:
    """
    Options for one coupled transport/dynamics run.

    Attributes:
        scheme: Integration scheme ("rk4", "heun", "rk45", "dormand_prince")
        dt: Fixed step, and initial step for adaptive schemes (seconds)
        tolerance: Local error tolerance of the adaptive schemes
        max_dt: Upper bound on the adaptive step (None = no bound)
        max_steps: Accepted-step budget (None = unlimited)
        max_wall_time: Wall-clock budget in seconds (None = unlimited)
        coupling_mode: "quasi-static" or "dynamic"
        fixed_point_tolerance: Relative torque change accepted as converged
        max_fixed_point_iterations: Fixed-point iteration cap per outer step
        relaxation: Under-relaxation factor of the fixed-point update
        outer_dt: Outer step of the quasi-static mode (seconds)
        thermal_noise: Enable the stochastic thermal field
        temperature: Temperature in Kelvin (materials and thermal field)
        seed: Seed of the thermal-noise generator
        norm_drift_threshold: Per-step norm drift recorded as NormDriftError
        energy_tolerance: Allowed relative energy change in validation mode
        condition_threshold: Largest condition number the transport solve accepts
        conservation_tolerance: Relative tolerance of the matrix self-check
        kirchhoff_tolerance: Relative tolerance of the post-solve Kirchhoff check
    """

    scheme: str = "dormand_prince"
    dt: float = 1e-12
    tolerance: float = 1e-6
    max_dt: Optional[float] = None
    max_steps: Optional[int] = None
    max_wall_time: Optional[float] = None
    coupling_mode: str = "quasi-static"
    fixed_point_tolerance: float = 1e-6
    max_fixed_point_iterations: int = 50
    relaxation: float = 1.0
    outer_dt: float = 1e-11
    thermal_noise: bool = False
    temperature: float = 300.0
    seed: Optional[int] = None
    norm_drift_threshold: float = 1e-6
    energy_tolerance: float = 1e-6
    condition_threshold: float = 1e12
    conservation_tolerance: float = 1e-9
    kirchhoff_tolerance: float = 1e-9

    def __post_init__(self):
        self.validate()

    @property
    def adaptive(self) -> bool:
        """Whether the configured scheme adapts its step size."""
        return self.scheme in ADAPTIVE_SCHEMES

    def validate(self) -> None:
        """Raise ConfigurationError on the first invalid option."""
        if self.scheme not in SCHEMES:
            raise ConfigurationError(f"Unknown integration scheme: {self.scheme}",
                                     valid=SCHEMES)
        if self.coupling_mode not in COUPLING_MODES:
            raise ConfigurationError(f"Unknown coupling mode: {self.coupling_mode}",
                                     valid=COUPLING_MODES)

        positive = ("dt", "tolerance", "outer_dt", "fixed_point_tolerance",
                    "norm_drift_threshold", "energy_tolerance",
                    "condition_threshold", "conservation_tolerance",
                    "kirchhoff_tolerance")
        for name in positive:
            value = getattr(self, name)
            if not value > 0:
                raise ConfigurationError(f"{name} must be positive", value=value)

        if self.max_dt is not None and not self.max_dt > 0:
            raise ConfigurationError("max_dt must be positive", value=self.max_dt)
        if self.max_steps is not None and self.max_steps < 1:
            raise ConfigurationError("max_steps must be at least 1", value=self.max_steps)
        if self.max_wall_time is not None and not self.max_wall_time > 0:
            raise ConfigurationError("max_wall_time must be positive",
                                     value=self.max_wall_time)
        if self.max_fixed_point_iterations < 1:
            raise ConfigurationError("max_fixed_point_iterations must be at least 1",
                                     value=self.max_fixed_point_iterations)
        if not 0 < self.relaxation <= 1:
            raise ConfigurationError("relaxation must lie in (0, 1]",
                                     value=self.relaxation)
        if not self.temperature > 0:
            raise ConfigurationError("temperature must be positive",
                                     value=self.temperature)
        if self.thermal_noise and self.seed is None:
            raise ConfigurationError("thermal_noise requires an explicit seed")

    def replace(self, **changes: Any) -> "SimulationConfig":
        """Return a validated copy with some options changed."""
        return dc_replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, options: Dict[str, Any]) -> "SimulationConfig":
        """
        Build a config from a plain mapping.

        Accepts the spelled-out keys of this class plus the short aliases
        ``couplingMode``, ``thermalNoise``, ``maxSteps``,
        ``fixedPointTolerance`` and ``maxFixedPointIterations``.
        """
        aliases = {
            "couplingMode": "coupling_mode",
            "mode": "coupling_mode",
            "thermalNoise": "thermal_noise",
            "maxSteps": "max_steps",
            "fixedPointTolerance": "fixed_point_tolerance",
            "maxFixedPointIterations": "max_fixed_point_iterations",
        }
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in options.items():
            name = aliases.get(key, key)
            if name not in known:
                raise ConfigurationError(f"Unknown configuration option: {key}")
            if name == "scheme":
                value = _normalize_scheme(value)
            kwargs[name] = value
        return cls(**kwargs)


def _normalize_scheme(name: str) -> str:
    lookup = {
        "rk4": "rk4",
        "heun": "heun",
        "rk45": "rk45",
        "dormandprince": "dormand_prince",
        "dormand_prince": "dormand_prince",
        "dopri5": "dormand_prince",
    }
    key = str(name).lower().replace("-", "")
    if key not in lookup:
        raise ConfigurationError(f"Unknown integration scheme: {name}", valid=SCHEMES)
    return lookup[key]
