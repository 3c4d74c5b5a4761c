"""
Tests for materials, the registry and stack layout.
"""

import numpy as np
import pytest

from spincirc.core import Layer, LayerGeometry, Material, MultilayerStack, default_registry
from spincirc.exceptions import ConfigurationError


@pytest.fixture
def registry():
    return default_registry()


def test_registry_lookup(registry):
    """Test name lookup and the read-only contract."""
    cofeb = registry.get("CoFeB")
    assert cofeb.is_magnetic
    assert not registry["Cu"].is_magnetic
    assert "Pt" in registry
    assert len(registry) == len(registry.names())

    with pytest.raises(ConfigurationError):
        registry.get("Unobtainium")
    with pytest.raises(TypeError):
        registry._materials["Cu"] = cofeb


def test_registry_with_material(registry):
    """Test that adding a material leaves the original registry unchanged."""
    custom = Material("Ru", resistivity=7.1e-8, spin_diffusion_length=14e-9)
    extended = registry.with_material(custom)
    assert "Ru" in extended
    assert "Ru" not in registry


def test_temperature_laws(registry):
    """Test the temperature dependence of material parameters."""
    cu_300 = registry.get("Cu")
    cu_400 = registry.get("Cu", temperature=400.0)
    assert cu_400.resistivity > cu_300.resistivity
    assert cu_400.spin_diffusion_length < cu_300.spin_diffusion_length
    assert registry.get("Cu", temperature=300.0) is cu_300

    cofeb_hot = registry.get("CoFeB", temperature=900.0)
    assert 0 < cofeb_hot.saturation_magnetization < registry["CoFeB"].saturation_magnetization
    assert abs(cofeb_hot.polarization) < abs(registry["CoFeB"].polarization)


def test_above_curie_temperature(registry, caplog):
    """Test that magnetism vanishes above the Curie temperature with a warning."""
    nife = registry.get("NiFe", temperature=1000.0)
    assert nife.saturation_magnetization == 0.0
    assert nife.polarization == 0.0
    assert "Curie" in caplog.text


@pytest.mark.parametrize("kwargs", [
    {"resistivity": 0.0, "spin_diffusion_length": 1e-9},
    {"resistivity": 1e-8, "spin_diffusion_length": -1e-9},
    {"resistivity": 1e-8, "spin_diffusion_length": 1e-9, "polarization": 1.0},
    {"resistivity": 1e-8, "spin_diffusion_length": 1e-9, "anisotropy_axis": (0, 0, 0)},
])
def test_invalid_material(kwargs):
    """Test material validation."""
    with pytest.raises(ConfigurationError):
        Material("bad", **kwargs)


def test_invalid_geometry():
    """Test that degenerate geometry is rejected."""
    with pytest.raises(ConfigurationError):
        LayerGeometry(10e-9, 0.0, 5e-9)
    with pytest.raises(ConfigurationError):
        LayerGeometry(float("nan"), 50e-9, 5e-9)


def test_stack_layout(registry):
    """Test interface insertion between ferromagnets and normal metals."""
    geometry = LayerGeometry(10e-9, 100e-9, 100e-9)
    stack = MultilayerStack([
        (registry["Cu"], geometry),
        Layer(registry["CoFeB"], geometry, name="free"),
        (registry["Cu"], geometry),
        (registry["Cu"], geometry),
    ])
    kinds = [element.kind for element in stack.elements]
    assert kinds == ["bulk", "interface", "bulk", "interface", "bulk", "bulk"]
    assert stack.n_nodes == 7
    assert stack.magnetic_indices == (1,)
    assert stack.bulk_element(1) == 2
    assert stack.elements[1].normal_layer == 0
    assert stack.elements[3].normal_layer == 2
    assert "free" in repr(stack)
    np.testing.assert_allclose(stack.magnetic_volumes(), [geometry.volume])


def test_validate_magnetization(registry, caplog):
    """Test unit-norm validation of magnetization at ingestion."""
    geometry = LayerGeometry(10e-9, 100e-9, 100e-9)
    stack = MultilayerStack([(registry["CoFeB"], geometry), (registry["Cu"], geometry),
                             (registry["CoFeB"], geometry)])

    m, offending = stack.validate_magnetization([[0, 0, 1], [0, 0, 1]])
    assert offending == []

    m, offending = stack.validate_magnetization([[0, 0, 2.0], [1, 0, 0]])
    assert offending == [0]
    np.testing.assert_allclose(np.linalg.norm(m, axis=1), 1.0)
    assert "not unit norm" in caplog.text

    with pytest.raises(ConfigurationError):
        stack.validate_magnetization([[0, 0, 1]])
    with pytest.raises(ConfigurationError):
        stack.validate_magnetization([[0, 0, 0], [0, 0, 1]])
