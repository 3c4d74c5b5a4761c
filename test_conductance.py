"""
Tests for conductance-matrix assembly.
"""

from dataclasses import replace

import numpy as np
import pytest

from spincirc.core import LayerGeometry, MultilayerStack, default_registry
from spincirc.exceptions import ConfigurationError
from spincirc.transport import ConductanceMatrixBuilder, spin_rotation
from spincirc.transport.conductance import ferromagnet_blocks, normal_metal_blocks
from spincirc.utils import make_rng, random_unit_vectors

TOLERANCE = 1e-9


def spin_valve(free_length=10e-9, spacer_length=10e-9):
    registry = default_registry()
    area = (100e-9, 100e-9)
    return MultilayerStack([
        (registry["CoFeB"], LayerGeometry(10e-9, *area)),
        (registry["Cu"], LayerGeometry(spacer_length, *area)),
        (registry["CoFeB"], LayerGeometry(free_length, *area)),
    ])


def test_row_sums_and_symmetry_collinear():
    """Test conservation and reciprocity of collinear configurations."""
    builder = ConductanceMatrixBuilder()
    for m2 in ([0, 0, 1], [0, 0, -1]):
        matrix = builder.build(spin_valve(), [[0, 0, 1], m2])
        assert matrix.matrix.shape == (24, 24)
        assert matrix.conservation_residual() < TOLERANCE
        assert matrix.reciprocal
        assert matrix.is_symmetric(TOLERANCE)


def test_conservation_random_orientations():
    """Test that current conservation holds for arbitrary magnetization."""
    builder = ConductanceMatrixBuilder()
    rng = make_rng(7)
    for _ in range(20):
        m = random_unit_vectors(2, rng)
        matrix = builder.build(spin_valve(), m)
        assert matrix.check_conservation(TOLERANCE)
        # Charge column of every row sums to zero
        row_sums = matrix.matrix[:, 0::4].sum(axis=1)
        assert np.max(np.abs(row_sums)) < TOLERANCE * np.max(np.abs(matrix.matrix))


def test_spin_rows_carry_relaxation():
    """Test that conservation concerns charge, while spin relaxation leaks spin rows."""
    matrix = ConductanceMatrixBuilder().build(spin_valve(), [[0, 0, 1], [1, 0, 0]])
    assert matrix.check_conservation(TOLERANCE)
    scale = np.max(np.abs(matrix.matrix))
    charge_rows = matrix.matrix[0::4].sum(axis=1)
    assert np.max(np.abs(charge_rows)) < TOLERANCE * scale
    spin_rows = np.concatenate([matrix.matrix[k::4].sum(axis=1) for k in (1, 2, 3)])
    assert np.max(np.abs(spin_rows)) > 1e-6 * scale


def test_mixing_conductance_breaks_symmetry():
    """Test that an imaginary mixing conductance makes the matrix non-reciprocal."""
    registry = default_registry()
    cofeb = registry["CoFeB"]
    torque_material = replace(cofeb, name="CoFeB*", mixing_conductance_imag=5e13)
    geometry = LayerGeometry(10e-9, 100e-9, 100e-9)
    stack = MultilayerStack([(torque_material, geometry), (registry["Cu"], geometry)])
    matrix = ConductanceMatrixBuilder().build(stack, [[1, 0, 0]])
    assert not matrix.reciprocal
    assert not matrix.is_symmetric(TOLERANCE)
    assert matrix.check_conservation(TOLERANCE)


def test_deterministic():
    """Test that identical inputs give a bit-identical matrix."""
    builder = ConductanceMatrixBuilder()
    m = [[0.6, 0.0, 0.8], [0.0, 1.0, 0.0]]
    first = builder.build(spin_valve(), m).matrix
    second = builder.build(spin_valve(), m).matrix
    assert np.array_equal(first, second)


def test_spin_rotation():
    """Test that the spin rotation maps +z onto the magnetization."""
    rng = make_rng(1)
    for m in list(random_unit_vectors(10, rng)) + [np.array([0.0, 0.0, -1.0])]:
        rotation = spin_rotation(m)
        np.testing.assert_allclose(rotation @ [0, 0, 1], m, atol=1e-12)
        np.testing.assert_allclose(rotation @ rotation.T, np.eye(3), atol=1e-12)


def test_normal_metal_limits():
    """Test the spin-relaxation limits of a normal-metal block."""
    cu = default_registry()["Cu"]
    short = LayerGeometry(1e-9, 100e-9, 100e-9)
    series, shunt = normal_metal_blocks(cu, short)
    # Much shorter than λ: spin conducts like charge and hardly relaxes
    np.testing.assert_allclose(series[1, 1], series[0, 0], rtol=1e-3)
    assert shunt[1, 1] < 1e-2 * series[0, 0]

    pt = default_registry()["Pt"]
    long = LayerGeometry(500e-9, 100e-9, 100e-9)
    series, shunt = normal_metal_blocks(pt, long)
    assert series[1, 1] < 1e-15 * series[0, 0]


def test_ferromagnet_block_positive():
    """Test that the local ferromagnet block is positive semidefinite."""
    cofeb = default_registry()["CoFeB"]
    series, shunt = ferromagnet_blocks(cofeb, LayerGeometry(10e-9, 100e-9, 100e-9))
    assert np.all(np.linalg.eigvalsh(series) > -1e-12)
    assert np.all(np.diag(shunt) >= 0)
    assert series[0, 3] == pytest.approx(cofeb.polarization * series[0, 0])


def test_missing_magnetization():
    """Test that magnetic stacks require a magnetization."""
    with pytest.raises(ConfigurationError):
        ConductanceMatrixBuilder().build(spin_valve())
    with pytest.raises(ConfigurationError):
        ConductanceMatrixBuilder().build(spin_valve(), [[0, 0, 1]])


def test_temperature_resolution():
    """Test that the builder evaluates materials at its temperature."""
    cold = ConductanceMatrixBuilder(temperature=300.0).build(spin_valve(), [[0, 0, 1]] * 2)
    hot = ConductanceMatrixBuilder(temperature=500.0).build(spin_valve(), [[0, 0, 1]] * 2)
    # Higher resistivity lowers the charge conductance of the copper spacer
    assert hot.series[2, 0, 0] < cold.series[2, 0, 0]


def test_element_currents_conserve_charge():
    """Test that the charge current is the same on both sides of every element."""
    matrix = ConductanceMatrixBuilder().build(spin_valve(), [[1, 0, 0], [0, 0, 1]])
    rng = make_rng(3)
    potentials = rng.normal(size=(matrix.n_nodes, 4))
    currents = matrix.element_currents(potentials)
    np.testing.assert_allclose(currents[:, 0, 0], currents[:, 1, 0], rtol=1e-12)
