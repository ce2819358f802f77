"""
Unit conversions between astronomical and SI units.

Only the configuration boundary and reporting helpers use these; the
simulation itself runs entirely in meters, seconds and kilograms.
All functions accept floats or NumPy arrays.
"""

from nbody import constants as const


def au_to_meters(au):
    """Convert a distance in astronomical units to meters."""
    return au * const.AU


def meters_to_au(meters):
    """Convert a distance in meters to astronomical units."""
    return meters / const.AU


def au_per_day_to_meters_per_second(au_per_day):
    """Convert a velocity in AU/day to m/s."""
    return au_per_day * const.AU / const.SECONDS_PER_DAY


def meters_per_second_to_au_per_day(meters_per_second):
    """Convert a velocity in m/s to AU/day."""
    return meters_per_second * const.SECONDS_PER_DAY / const.AU
