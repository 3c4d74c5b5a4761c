"""
Self-consistent coupling of spin transport and magnetization dynamics.

Transport enters the dynamics only through the effective-field function
handed to the integrator: the orchestrator wraps the transport solve into a
spin-transfer-torque field term and injects it.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Mapping, Optional, Tuple

import numpy as np
from tqdm import tqdm

from ..config import ADAPTIVE_SCHEMES, SimulationConfig
from ..core.fast_ops import normalize_magnetization, zeeman_energy
from ..core.structure import MultilayerStack
from ..dynamics.fields import EffectiveField, SpinTransferTorqueField, ThermalNoise
from ..dynamics.llg_solver import IntegrationInfo, IntegratorState, MagnetizationIntegrator
from ..exceptions import ConfigurationError, ConvergenceError
from ..transport.conductance import ConductanceMatrixBuilder
from ..transport.solver import TransportSolution, TransportSolver
from ..utils.random import make_rng

logger = logging.getLogger(__name__)


@dataclass
class CoupledResult:
    """
    Outcome of a coupled transport/dynamics run.

    Attributes:
        times: (n_times,) simulated times (s)
        trajectory: (n_times, n_magnetic, 3) unit magnetization vectors
        info: Merged integration diagnostics
        transport: Transport solutions, one per outer step (quasi-static)
            or the final state only (dynamic)
        fixed_point_iterations: Iterations used per outer step (quasi-static)
        mode: Coupling mode of the run
        renormalized_layers: Input vectors that were off unit norm
    """

    times: np.ndarray
    trajectory: np.ndarray
    info: IntegrationInfo
    transport: List[TransportSolution] = field(default_factory=list)
    fixed_point_iterations: List[int] = field(default_factory=list)
    mode: str = "quasi-static"
    renormalized_layers: List[int] = field(default_factory=list)

    @property
    def final_magnetization(self) -> np.ndarray:
        return self.trajectory[-1]

    @property
    def completed(self) -> bool:
        return self.info.status is IntegratorState.COMPLETED


class CouplingOrchestrator:
    """
    Drives transport and dynamics together.

    Modes:
        quasi-static: per outer step, integrate with the spin-transfer torque
            frozen, re-solve transport at the midpoint magnetization and
            repeat until the torque stops changing. Cheap for slow dynamics,
            accuracy limited by the outer step.
        dynamic: the field function solves transport at every evaluation.
            Exact coupling, one transport solve per integrator stage.
    """

    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        builder: Optional[ConductanceMatrixBuilder] = None,
        solver: Optional[TransportSolver] = None,
        integrator: Optional[MagnetizationIntegrator] = None,
        verbose: bool = False,
    ):
        self.config = config or SimulationConfig()
        self.builder = builder or ConductanceMatrixBuilder(
            conservation_tolerance=self.config.conservation_tolerance)
        self.solver = solver or TransportSolver(
            condition_threshold=self.config.condition_threshold,
            kirchhoff_tolerance=self.config.kirchhoff_tolerance)
        self.integrator = integrator or MagnetizationIntegrator.from_config(self.config)
        self.verbose = verbose

    def _resolve_stack(self, stack) -> MultilayerStack:
        if not isinstance(stack, MultilayerStack):
            stack = MultilayerStack(stack)
        return stack.at_temperature(self.config.temperature)

    def _transport(self, stack: MultilayerStack, magnetization: np.ndarray,
                   boundary_conditions: Mapping) -> TransportSolution:
        matrix = self.builder.build(stack, magnetization)
        return self.solver.solve(matrix, boundary_conditions)

    def solve_static(self, stack, magnetization, boundary_conditions: Mapping) -> TransportSolution:
        """
        Transport solve for a fixed magnetization configuration.

        Args:
            stack: MultilayerStack or (Material, LayerGeometry) pairs
            magnetization: (n_magnetic, 3) directions, validated to unit norm
            boundary_conditions: {node: BoundaryCondition or {type, value}}

        Returns:
            TransportSolution
        """
        stack = self._resolve_stack(stack)
        m = None
        if stack.n_magnetic:
            m, _ = stack.validate_magnetization(magnetization)
        return self._transport(stack, m, boundary_conditions)

    def run(
        self,
        stack,
        magnetization,
        boundary_conditions: Mapping,
        time_span: Tuple[float, float],
        field=None,
    ) -> CoupledResult:
        """
        Evolve the magnetization under transport-generated spin-transfer torque.

        Args:
            stack: MultilayerStack or (Material, LayerGeometry) pairs
            magnetization: (n_magnetic, 3) initial unit vectors
            boundary_conditions: {node: BoundaryCondition or {type, value}}
            time_span: (t0, tf) in seconds
            field: Field function H(t, m) on the magnetic layers, or an
                applied field vector; None uses the stack's anisotropy and
                demagnetizing fields

        Returns:
            CoupledResult
        """
        stack = self._resolve_stack(stack)
        if not stack.n_magnetic:
            raise ConfigurationError("Stack has no magnetic layer to evolve", stack=repr(stack))
        m0, renormalized = stack.validate_magnetization(magnetization)

        if field is None or not callable(field):
            base = EffectiveField.for_stack(stack, applied_field=field)
        else:
            base = field

        mode = self.config.coupling_mode
        logger.info("Coupled run on %r: mode=%s, scheme=%s, t=[%.3g, %.3g] s",
                    stack, mode, self.integrator.scheme, time_span[0], time_span[1])
        if mode == "dynamic":
            result = self._run_dynamic(stack, m0, boundary_conditions, time_span, base)
        else:
            result = self._run_quasi_static(stack, m0, boundary_conditions, time_span, base)
        result.renormalized_layers = renormalized

        logger.info("Coupled run finished: status=%s, steps=%d, wall time %.2f s",
                    result.info.status.value, result.info.steps, result.info.wall_time)
        return result

    def _thermal_noise(self, stack: MultilayerStack, rng) -> Optional[ThermalNoise]:
        if not self.config.thermal_noise:
            return None
        return ThermalNoise(self.config.temperature,
                            stack.magnetic_parameter("saturation_magnetization"),
                            stack.magnetic_volumes(), rng)

    def _run_dynamic(self, stack, m0, boundary_conditions, time_span, base) -> CoupledResult:
        def spin_currents(t, m):
            return self._transport(stack, m, boundary_conditions).transverse_spin_currents()

        torque = SpinTransferTorqueField.for_stack(stack, spin_currents)
        trajectory, times, info = self.integrator.integrate(
            m0,
            EffectiveField([base, torque]),
            stack.magnetic_parameter("damping"),
            stack.magnetic_parameter("gyromagnetic_ratio"),
            time_span,
            thermal_noise=self._thermal_noise(stack, make_rng(self.config.seed)),
            energy_fn=_energy_function(base),
        )
        final = self._transport(stack, trajectory[-1], boundary_conditions)
        return CoupledResult(times, trajectory, info, [final], [], "dynamic")

    def _run_quasi_static(self, stack, m0, boundary_conditions, time_span, base) -> CoupledResult:
        config = self.config
        t0, tf = (float(v) for v in time_span)
        if not tf > t0:
            raise ConfigurationError("Time span must be increasing", time_span=time_span)
        n_outer = max(1, int(np.ceil((tf - t0) / config.outer_dt - 1e-9)))
        edges = np.linspace(t0, tf, n_outer + 1)

        damping = stack.magnetic_parameter("damping")
        gamma = stack.magnetic_parameter("gyromagnetic_ratio")
        energy_fn = _energy_function(base)
        rng = make_rng(config.seed) if config.thermal_noise else None
        scheme = None
        if rng is not None and self.integrator.scheme in ADAPTIVE_SCHEMES:
            logger.warning("Thermal noise is incompatible with adaptive scheme '%s'; "
                           "outer steps use stochastic Heun", self.integrator.scheme)
            scheme = "heun"
        max_steps = self.integrator.max_steps
        max_wall_time = self.integrator.max_wall_time
        start_wall = time.perf_counter()

        m = m0
        times = [np.array([t0])]
        trajectory = [m0[None, :, :]]
        info = IntegrationInfo()
        solutions: List[TransportSolution] = []
        iterations: List[int] = []

        for outer in tqdm(range(n_outer), desc="Outer steps", disable=not self.verbose):
            span = (edges[outer], edges[outer + 1])
            step_seed = int(rng.integers(2**63)) if rng is not None else None
            remaining_steps = None if max_steps is None else max(max_steps - info.steps, 0)
            remaining_wall = None if max_wall_time is None else \
                max_wall_time - (time.perf_counter() - start_wall)

            solution = self._transport(stack, m, boundary_conditions)
            currents = solution.transverse_spin_currents()
            residual = np.inf
            for iteration in range(1, config.max_fixed_point_iterations + 1):
                noise = self._thermal_noise(stack, make_rng(step_seed)) if rng is not None else None
                torque = SpinTransferTorqueField.for_stack(stack, currents)
                step_traj, step_times, step_info = self.integrator.integrate(
                    m, EffectiveField([base, torque]), damping, gamma, span,
                    scheme=scheme, thermal_noise=noise, energy_fn=energy_fn,
                    max_steps=remaining_steps, max_wall_time=remaining_wall,
                )
                if step_info.diverged:
                    break

                midpoint, _ = normalize_magnetization(np.ascontiguousarray(m + step_traj[-1]))
                solution = self._transport(stack, midpoint, boundary_conditions)
                updated = solution.transverse_spin_currents()
                updated = config.relaxation * updated + (1.0 - config.relaxation) * currents
                scale = max(np.linalg.norm(updated), np.linalg.norm(currents),
                            np.finfo(float).tiny)
                residual = float(np.linalg.norm(updated - currents) / scale)
                logger.debug("Outer step %d, iteration %d: torque change %.3g",
                             outer, iteration, residual)
                currents = updated
                if residual <= config.fixed_point_tolerance:
                    break
            else:
                logger.error("Fixed-point coupling did not converge at t=%.6g s after %d "
                             "iterations (residual %.3g)", span[0], iteration, residual)
                raise ConvergenceError(
                    "Fixed-point coupling did not converge",
                    outer_step=outer, time=span[0], iterations=iteration,
                    residual=residual, tolerance=config.fixed_point_tolerance)

            info = info.merge(step_info)
            times.append(step_times[1:])
            trajectory.append(step_traj[1:])
            solutions.append(solution)
            iterations.append(iteration)
            m = step_traj[-1]
            if step_info.diverged:
                break

        info.wall_time = time.perf_counter() - start_wall
        return CoupledResult(np.concatenate(times), np.concatenate(trajectory), info,
                             solutions, iterations, "quasi-static")


def _energy_function(base: Callable) -> Callable[[float, np.ndarray], float]:
    energy = getattr(base, "energy", None)
    if energy is not None:
        return energy

    def field_energy(t, m):
        H = np.broadcast_to(np.asarray(base(t, m), dtype=float), m.shape)
        return zeeman_energy(np.ascontiguousarray(m), np.ascontiguousarray(H))

    return field_energy
