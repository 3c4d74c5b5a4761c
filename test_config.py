"""
Tests for run configuration and the error taxonomy.
"""

import pytest

from spincirc import SimulationConfig
from spincirc.exceptions import ConfigurationError, ConvergenceError, SpinCircError


def test_defaults():
    """Test that the default configuration is valid and adaptive."""
    config = SimulationConfig()
    assert config.scheme == "dormand_prince"
    assert config.adaptive
    assert config.coupling_mode == "quasi-static"
    assert config.max_fixed_point_iterations == 50
    assert config.condition_threshold == 1e12


def test_from_dict_aliases():
    """Test the short option names of the configuration surface."""
    config = SimulationConfig.from_dict({
        "scheme": "RK45",
        "tolerance": 1e-8,
        "maxSteps": 1000,
        "couplingMode": "dynamic",
        "thermalNoise": True,
        "temperature": 77.0,
        "seed": 3,
    })
    assert config.scheme == "rk45"
    assert config.max_steps == 1000
    assert config.coupling_mode == "dynamic"
    assert config.thermal_noise
    assert config.seed == 3

    assert SimulationConfig.from_dict({"scheme": "DormandPrince"}).scheme == "dormand_prince"
    assert SimulationConfig.from_dict({"scheme": "RK4"}).scheme == "rk4"
    assert not SimulationConfig.from_dict({"scheme": "RK4"}).adaptive


@pytest.mark.parametrize("options", [
    {"scheme": "euler"},
    {"coupling_mode": "implicit"},
    {"tolerance": 0.0},
    {"relaxation": 1.5},
    {"max_steps": 0},
    {"temperature": -1.0},
    {"thermal_noise": True},
    {"unknown_option": 1},
])
def test_invalid_options(options):
    """Test that invalid options are rejected at construction."""
    with pytest.raises(ConfigurationError):
        SimulationConfig.from_dict(options)


def test_replace_validates():
    """Test that replace() returns a validated copy."""
    config = SimulationConfig()
    faster = config.replace(scheme="rk4", dt=1e-13)
    assert faster.scheme == "rk4"
    assert config.scheme == "dormand_prince"
    with pytest.raises(ConfigurationError):
        config.replace(outer_dt=-1.0)


def test_round_trip_dict():
    """Test that to_dict() output is accepted by from_dict()."""
    config = SimulationConfig(scheme="heun", max_wall_time=5.0)
    assert SimulationConfig.from_dict(config.to_dict()) == config


def test_error_context():
    """Test that errors carry structured context."""
    error = ConvergenceError("did not converge", iterations=50, residual=1e-3)
    assert isinstance(error, SpinCircError)
    assert error.iterations == 50
    assert error.context["residual"] == 1e-3
    assert "iterations=50" in str(error)

    # Configuration errors are also ValueErrors
    assert isinstance(ConfigurationError("bad"), ValueError)


def test_setup_logging(tmp_path):
    """Test that package logging writes to the requested file."""
    import logging

    from spincirc import setup_logging

    log_file = tmp_path / "run.log"
    setup_logging("WARNING")
    logger = setup_logging(logging.DEBUG, str(log_file))
    try:
        assert logger.name == "spincirc"
        # Repeated setup replaces handlers instead of stacking them
        assert len(logger.handlers) == 2
        logging.getLogger("spincirc.transport.solver").debug("solver message")
        for handler in logger.handlers:
            handler.flush()
        assert "solver message" in log_file.read_text(encoding="utf-8")
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)
