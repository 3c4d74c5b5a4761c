"""
Tests for coupled transport/dynamics runs.
"""

import numpy as np
import pytest

from spincirc import CouplingOrchestrator, SimulationConfig
from spincirc.core import LayerGeometry, MultilayerStack, default_registry
from spincirc.dynamics import IntegratorState, SpinTransferTorqueField, ZeemanField
from spincirc.exceptions import ConfigurationError, ConvergenceError, SingularSystemError
from spincirc.transport import BoundaryCondition, two_terminal_bias

NONCOLLINEAR = [[0.0, 0.0, 1.0], [1.0, 0.0, 0.0]]
FIELD = ZeemanField([0.0, 0.0, 0.1])


def spin_valve():
    registry = default_registry()
    geometry = LayerGeometry(10e-9, 100e-9, 100e-9)
    return MultilayerStack([(registry["CoFeB"], geometry),
                            (registry["Cu"], geometry),
                            (registry["CoFeB"], geometry)])


def bias(voltage=0.01):
    return two_terminal_bias(spin_valve().n_nodes, voltage)


def test_quasi_static_run():
    """Test a quasi-static run over three outer steps."""
    orchestrator = CouplingOrchestrator(SimulationConfig(outer_dt=1e-11))
    result = orchestrator.run(spin_valve(), NONCOLLINEAR, bias(), (0.0, 3e-11), field=FIELD)

    assert result.mode == "quasi-static"
    assert result.completed
    assert result.trajectory.shape == (len(result.times), 2, 3)
    assert result.times[-1] == pytest.approx(3e-11)
    assert np.all(np.diff(result.times) > 0)
    np.testing.assert_allclose(np.linalg.norm(result.trajectory, axis=-1), 1.0, atol=1e-6)

    assert len(result.transport) == 3
    assert len(result.fixed_point_iterations) == 3
    assert all(1 <= n <= 50 for n in result.fixed_point_iterations)
    assert result.info.steps == len(result.times) - 1
    np.testing.assert_array_equal(result.final_magnetization, result.trajectory[-1])


def test_dynamic_matches_quasi_static():
    """Test that both coupling modes agree for a weak torque."""
    stack, m0, span = spin_valve(), NONCOLLINEAR, (0.0, 2e-11)
    quasi = CouplingOrchestrator(SimulationConfig(outer_dt=1e-11)).run(
        stack, m0, bias(), span, field=FIELD)
    dynamic = CouplingOrchestrator(SimulationConfig(coupling_mode="dynamic")).run(
        stack, m0, bias(), span, field=FIELD)

    assert dynamic.mode == "dynamic"
    assert dynamic.completed
    assert len(dynamic.transport) == 1
    assert dynamic.fixed_point_iterations == []
    np.testing.assert_allclose(dynamic.final_magnetization, quasi.final_magnetization, atol=1e-4)


def test_torque_changes_trajectory():
    """Test that the spin-transfer torque actually feeds back into the dynamics."""
    stack, span = spin_valve(), (0.0, 2e-11)
    orchestrator = CouplingOrchestrator(SimulationConfig(coupling_mode="dynamic"))
    driven = orchestrator.run(stack, NONCOLLINEAR, bias(0.05), span, field=FIELD)
    idle = orchestrator.run(stack, NONCOLLINEAR, bias(0.0), span, field=FIELD)
    assert not np.allclose(driven.final_magnetization, idle.final_magnetization, atol=1e-6)


def test_fixed_point_iteration_cap():
    """Test that exceeding the iteration cap raises ConvergenceError with context."""
    config = SimulationConfig(outer_dt=1e-11, max_fixed_point_iterations=1,
                              fixed_point_tolerance=1e-12)
    with pytest.raises(ConvergenceError) as excinfo:
        CouplingOrchestrator(config).run(spin_valve(), NONCOLLINEAR, bias(), (0.0, 1e-11),
                                         field=FIELD)
    assert excinfo.value.iterations == 1
    assert excinfo.value.residual > 1e-12
    assert excinfo.value.outer_step == 0


def test_relaxation_factor():
    """Test that an under-relaxed fixed point still converges."""
    config = SimulationConfig(outer_dt=1e-11, relaxation=0.5)
    result = CouplingOrchestrator(config).run(spin_valve(), NONCOLLINEAR, bias(), (0.0, 1e-11),
                                              field=FIELD)
    assert result.completed
    assert result.fixed_point_iterations[0] >= 2


def test_transport_failure_propagates():
    """Test that singular transport problems abort the run."""
    orchestrator = CouplingOrchestrator()
    with pytest.raises(SingularSystemError):
        orchestrator.run(spin_valve(), NONCOLLINEAR, {0: BoundaryCondition.current(1e-3)},
                         (0.0, 1e-11), field=FIELD)
    with pytest.raises(ConfigurationError):
        orchestrator.run(spin_valve(), NONCOLLINEAR, {}, (0.0, 1e-11), field=FIELD)


def test_step_budget_shared_across_outer_steps():
    """Test that the step budget truncates a quasi-static run."""
    config = SimulationConfig(outer_dt=1e-11, max_steps=3)
    result = CouplingOrchestrator(config).run(spin_valve(), NONCOLLINEAR, bias(), (0.0, 1e-10),
                                              field=FIELD)
    assert result.info.status is IntegratorState.DIVERGED
    assert result.info.budget_exceeded
    assert result.info.steps == 3
    assert result.times[-1] < 1e-10


def test_thermal_noise_reproducible():
    """Test that seeded thermal runs are reproducible."""
    config = SimulationConfig(outer_dt=1e-11, thermal_noise=True, seed=7)
    first = CouplingOrchestrator(config).run(spin_valve(), NONCOLLINEAR, bias(), (0.0, 2e-11),
                                             field=FIELD)
    second = CouplingOrchestrator(config).run(spin_valve(), NONCOLLINEAR, bias(), (0.0, 2e-11),
                                              field=FIELD)
    assert first.info.scheme == "heun"
    np.testing.assert_array_equal(first.trajectory, second.trajectory)


def test_solve_static():
    """Test transport-only solves through the orchestrator."""
    orchestrator = CouplingOrchestrator()
    parallel = orchestrator.solve_static(spin_valve(), [[0, 0, 1], [0, 0, 1]], bias(1.0))
    antiparallel = orchestrator.solve_static(spin_valve(), [[0, 0, 1], [0, 0, -1]], bias(1.0))
    assert parallel.charge_current > 0
    assert antiparallel.magnetoresistance_ratio(parallel) > 0


def test_input_validation():
    """Test magnetization ingestion and stacks without magnetic layers."""
    orchestrator = CouplingOrchestrator(SimulationConfig(outer_dt=1e-11))
    result = orchestrator.run(spin_valve(), [[0.0, 0.0, 1.5], [1.0, 0.0, 0.0]], bias(),
                              (0.0, 1e-11), field=FIELD)
    assert result.renormalized_layers == [0]
    np.testing.assert_allclose(result.trajectory[0, 0], [0.0, 0.0, 1.0])

    registry = default_registry()
    copper = MultilayerStack([(registry["Cu"], LayerGeometry(10e-9, 100e-9, 100e-9))])
    with pytest.raises(ConfigurationError):
        orchestrator.run(copper, [], two_terminal_bias(copper.n_nodes, 0.01), (0.0, 1e-11))


def test_applied_field_vector():
    """Test that a field vector is combined with the stack's own fields."""
    orchestrator = CouplingOrchestrator(SimulationConfig(outer_dt=1e-11))
    result = orchestrator.run(spin_valve(), NONCOLLINEAR, bias(), (0.0, 1e-11),
                              field=[0.0, 0.0, 0.1])
    assert result.completed
    np.testing.assert_allclose(np.linalg.norm(result.trajectory, axis=-1), 1.0, atol=1e-6)


@pytest.mark.parametrize("voltage", [-0.05, 0.05])
def test_torque_follows_electron_flow(voltage):
    """Test Slonczewski switching direction against the current direction.

    A negative bias on node 0 sends electrons from the +z layer into the
    free layer, which must turn towards +z; the opposite bias turns it
    towards -z.
    """
    stack = spin_valve()
    orchestrator = CouplingOrchestrator(SimulationConfig(coupling_mode="dynamic"))
    solution = orchestrator.solve_static(stack, NONCOLLINEAR, bias(voltage))
    assert np.sign(solution.charge_current) == np.sign(voltage)

    m = np.array(NONCOLLINEAR)
    H = SpinTransferTorqueField.for_stack(stack, solution.transverse_spin_currents())(0.0, m)
    precession = -np.cross(m, H)
    expected = -np.sign(voltage)
    assert expected * precession[1, 2] > 0

    result = orchestrator.run(stack, NONCOLLINEAR, bias(voltage), (0.0, 2e-11),
                              field=ZeemanField([0.0, 0.0, 0.0]))
    assert result.completed
    assert expected * result.final_magnetization[1, 2] > 0.02
