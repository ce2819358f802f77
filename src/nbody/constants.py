"""
Physical and astronomical constants used throughout the simulation.

SI UNITS SYSTEM:
- Distance: meters (m)
- Velocity: meters per second (m/s)
- Mass: kilograms (kg)
- Time: seconds (s)

All simulation state is kept in SI. Astronomical units only appear at the
configuration boundary (see nbody.units).
"""

from datetime import datetime, timezone

# Gravitational constant
G = 6.67430e-11  # [m³/(kg·s²)]

# Astronomical unit, rounded to the mean Earth-Sun distance of 149.6 million km
AU = 149.6e6 * 1000.0  # [m]

# Time
SECONDS_PER_DAY = 86400.0  # [s]
SECONDS_PER_WEEK = 7.0 * SECONDS_PER_DAY  # [s]
SIDEREAL_YEAR = 365.25636 * SECONDS_PER_DAY  # [s]

# Default simulation epoch
DEFAULT_START_TIME = datetime(2022, 1, 1, 0, 0, 0, tzinfo=timezone.utc)

# For reference (not used in calculations)
# M_sun = 1.989e30 kg
# M_earth = 5.972e24 kg
# M_mars = 6.39e23 kg
