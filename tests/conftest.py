"""
Pytest configuration for the n-body simulation tests.

This file ensures the nbody package is importable from tests and provides
shared body tables.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add the src directory to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / 'src'))

from nbody import constants as const  # noqa: E402
from nbody.config import BodyConfig, SimulationParameters  # noqa: E402

M_SUN = 1.989e30  # kg
M_EARTH = 5.972e24  # kg
M_MARS = 6.39e23  # kg


def make_params(bodies, **overrides) -> SimulationParameters:
    """SimulationParameters for a list of BodyConfig, with test-friendly defaults."""
    options = dict(
        simulation_name="test",
        output_directory="./results/test",
        bodies=bodies,
        dt=1.0,
        snapshot_interval=10.0,
    )
    options.update(overrides)
    return SimulationParameters(**options)


def sun_earth_bodies():
    """Sun at the origin and Earth on the 2022-01-01 ephemeris position."""
    return [
        BodyConfig.from_astronomical("Sun", M_SUN, [0.0, 0.0, 0.0], [0.0, 0.0, 0.0]),
        BodyConfig.from_astronomical(
            "Earth", M_EARTH,
            [-1.01673977e-01, 7.00034986e-01, -1.85435480e-06],
            [-1.42987359e-02, -1.00797828e-02, 2.24008069e-07],
        ),
    ]


def circular_orbit_bodies():
    """Sun at the origin and Earth at 1 AU on a circular orbit in the x-y plane."""
    v_circular = np.sqrt(const.G * M_SUN / const.AU)
    return [
        BodyConfig("Sun", M_SUN, np.zeros(3), np.zeros(3)),
        BodyConfig("Earth", M_EARTH, np.array([const.AU, 0.0, 0.0]), np.array([0.0, v_circular, 0.0])),
    ]


@pytest.fixture
def config_path():
    return project_root / 'configs' / 'solar_system.yaml'


@pytest.fixture
def sun_earth_params():
    return make_params(sun_earth_bodies())
