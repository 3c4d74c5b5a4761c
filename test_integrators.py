"""
Tests for the single-step integrators.
"""

import numpy as np
import pytest

from spincirc.dynamics import AdaptiveIntegrator, HeunIntegrator, RK4Integrator, TABLEAUS
from spincirc.dynamics.llg_solver import LLGEquation
from spincirc.exceptions import NumericalInstabilityError

GAMMA = 1.76e11


def precession(field=(0.0, 0.0, 1.0), alpha=0.0):
    H = np.array([field])
    return LLGEquation(lambda t, m: H, np.array([alpha]), np.array([GAMMA]))


def exact_precession(m0, t):
    """Undamped precession of m0 about +z in a 1 T field."""
    phase = GAMMA * t
    c, s = np.cos(phase), np.sin(phase)
    return np.array([[c * m0[0] - s * m0[1], s * m0[0] + c * m0[1], m0[2]]])


@pytest.mark.parametrize("name", sorted(TABLEAUS))
def test_tableau_consistency(name):
    """Test the row-sum condition and weight normalization of each tableau."""
    tableau = TABLEAUS[name]
    for stage in range(1, tableau.stages):
        assert tableau.a[stage].sum() == pytest.approx(tableau.c[stage])
    assert tableau.b_high.sum() == pytest.approx(1.0)
    assert tableau.b_low.sum() == pytest.approx(1.0)


def test_rk4_convergence_order():
    """Test that halving the step reduces the RK4 error about 16 times."""
    m0 = np.array([1.0, 0.0, 0.0])
    t_end = 5e-11

    errors = []
    for n_steps in (100, 200):
        integrator = RK4Integrator(precession())
        m = m0[None, :].copy()
        dt = t_end / n_steps
        for k in range(n_steps):
            m = integrator.step(k * dt, m, dt)
        errors.append(np.max(np.abs(m - exact_precession(m0, t_end))))

    assert errors[0] / errors[1] == pytest.approx(16.0, rel=0.1)


def test_heun_second_order():
    """Test that Heun's method is second-order accurate."""
    m0 = np.array([1.0, 0.0, 0.0])
    t_end = 5e-11

    errors = []
    for n_steps in (200, 400):
        integrator = HeunIntegrator(precession())
        m = m0[None, :].copy()
        dt = t_end / n_steps
        for k in range(n_steps):
            m = integrator.step(k * dt, m, dt)
        errors.append(np.max(np.abs(m - exact_precession(m0, t_end))))

    assert errors[0] / errors[1] == pytest.approx(4.0, rel=0.1)


@pytest.mark.parametrize("name", sorted(TABLEAUS))
def test_adaptive_accuracy(name):
    """Test adaptive integration against the exact precession."""
    m0 = np.array([1.0, 0.0, 0.0])
    integrator = AdaptiveIntegrator(precession(), tableau=TABLEAUS[name], tolerance=1e-9)
    t, dt, t_end = 0.0, 1e-13, 1e-10
    m = m0[None, :].copy()
    while t < t_end:
        m, taken, dt = integrator.step(t, m, min(dt, t_end - t))
        t += taken
    np.testing.assert_allclose(m, exact_precession(m0, t_end), atol=1e-6)

    stats = integrator.get_statistics()
    assert stats['accepted_steps'] > 0
    assert 0 < stats['acceptance_rate'] <= 1


def test_adaptive_step_growth_bounded():
    """Test that a zero right-hand side grows the step by at most max_factor."""
    integrator = AdaptiveIntegrator(precession(field=(0.0, 0.0, 0.0)), max_dt=1e-11)
    m = np.array([[0.0, 1.0, 0.0]])
    _, taken, proposed = integrator.step(0.0, m, 1e-13)
    assert taken == 1e-13
    assert proposed == pytest.approx(5e-13)
    _, _, proposed = integrator.step(0.0, m, 1e-11)
    assert proposed == 1e-11


def test_adaptive_underflow():
    """Test that a non-finite right-hand side ends in a step-size underflow."""
    equation = LLGEquation(lambda t, m: np.full(np.shape(m), np.nan),
                           np.array([0.1]), np.array([GAMMA]))
    integrator = AdaptiveIntegrator(equation, min_dt=1e-20)
    with pytest.raises(NumericalInstabilityError) as excinfo:
        integrator.step(0.0, np.array([[1.0, 0.0, 0.0]]), 1e-12)
    assert excinfo.value.rejected_steps > 0
