"""
Diagnostics for simulation health checks.

This module provides:
- Pairwise distances between bodies
- Total energy and momentum of the system
- Drift of both relative to a baseline

Energies use the true (kg) masses of both bodies in each pair, so they are the
physical energies of the system even though the integrator works with
accelerations directly.
"""

import numpy as np

from nbody import constants as const


def pairwise_distances(positions: np.ndarray) -> np.ndarray:
    """
    Calculate the distance between every pair of bodies.

    Args:
        positions: Body positions [m] (shape: (N, 3))

    Returns:
        Symmetric distance matrix [m] (shape: (N, N)), zero on the diagonal
    """
    positions = np.asarray(positions, dtype=np.float64)
    deltas = positions[:, np.newaxis, :] - positions[np.newaxis, :, :]
    return np.sqrt(np.sum(deltas**2, axis=-1))


def calculate_kinetic_energy(velocities: np.ndarray, masses: np.ndarray) -> float:
    """
    Total Newtonian kinetic energy.

    KE = Σ 0.5 × m × v²

    Returns:
        Kinetic energy [J]
    """
    return float(0.5 * np.sum(masses * np.sum(velocities**2, axis=1)))


def calculate_potential_energy(positions: np.ndarray, masses: np.ndarray) -> float:
    """
    Total gravitational potential energy over all pairs.

    PE = -Σ_{i<j} G × m_i × m_j / r_ij

    Coincident pairs are left out.

    Returns:
        Potential energy [J] (negative)
    """
    total = 0.0
    n_bodies = len(positions)

    for i in range(n_bodies):
        for j in range(i + 1, n_bodies):
            r = np.linalg.norm(positions[j] - positions[i])
            if r > 0.0:
                total -= const.G * masses[i] * masses[j] / r

    return float(total)


def calculate_total_energy(positions: np.ndarray, velocities: np.ndarray,
                           masses: np.ndarray) -> float:
    """Total energy KE + PE [J]."""
    return (calculate_kinetic_energy(velocities, masses)
            + calculate_potential_energy(positions, masses))


def calculate_total_momentum(velocities: np.ndarray, masses: np.ndarray) -> np.ndarray:
    """
    Total momentum P = Σ m × v.

    Returns:
        Momentum vector [kg·m/s] (shape: (3,))
    """
    return np.sum(masses[:, np.newaxis] * velocities, axis=0)


def relative_drift(value: float, baseline: float) -> float:
    """|value - baseline| / |baseline|, or NaN without a usable baseline."""
    if baseline == 0.0 or not np.isfinite(baseline):
        return float('nan')
    return abs(value - baseline) / abs(baseline)


def check_state_health(positions: np.ndarray, velocities: np.ndarray) -> list:
    """
    Look for numerical blow-up.

    Returns:
        List of warning messages. Empty list if all checks pass.
    """
    warnings = []

    if not np.all(np.isfinite(positions)):
        warnings.append("CRITICAL: Non-finite body position - numerical instability!")
    if not np.all(np.isfinite(velocities)):
        warnings.append("CRITICAL: Non-finite body velocity - numerical instability!")

    return warnings
