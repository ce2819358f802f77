"""
Physics functions for the n-body simulation.

All performance-critical functions are JIT-compiled with Numba. These
functions must be Numba-compatible (NumPy arrays, no Python objects), so they
report degenerate geometry through return codes; the Python wrappers at the
bottom of the module turn those codes into DegenerateDistanceError.

Kernels are compiled with nogil=True so a consumer thread keeps running while
the driver thread is stepping.
"""

import numpy as np
from numba import jit

from nbody import constants as const
from nbody.errors import DegenerateDistanceError

# Zero-distance policies
DISTANCE_RAISE = 0  # Stop and report the coincident pair
DISTANCE_SKIP = 1  # Ignore the coincident pair's contribution
DISTANCE_CLAMP = 2  # Use min_distance as a floor for the separation

DISTANCE_POLICIES = {
    'raise': DISTANCE_RAISE,
    'skip': DISTANCE_SKIP,
    'clamp': DISTANCE_CLAMP,
}

# Update schemes
SEQUENTIAL = 'sequential'
SYNCHRONOUS = 'synchronous'
UPDATE_SCHEMES = (SEQUENTIAL, SYNCHRONOUS)

NO_BODY = -1


@jit(nopython=True, nogil=True)
def calculate_body_acceleration(i, positions, masses, policy, min_distance):
    """
    Calculate the gravitational acceleration on body i from all other bodies.

    a_i = Σ_j G × m_j / d² × (r_j - r_i) / d

    The mass of body i is deliberately absent: the sum is the acceleration
    directly, not a force.

    Args:
        i: Index of the body being accelerated
        positions: All body positions [m] (shape: (N, 3))
        masses: All body masses [kg] (shape: (N,))
        policy: DISTANCE_RAISE, DISTANCE_SKIP or DISTANCE_CLAMP
        min_distance: Separation floor [m] for DISTANCE_CLAMP

    Returns:
        (accel, j) tuple:
        - accel: 3D acceleration vector [m/s²] (shape: (3,))
        - j: NO_BODY, or the index of a body at zero separation from body i
          when policy is DISTANCE_RAISE (accel is then incomplete)
    """
    accel = np.zeros(3)
    n_bodies = len(positions)

    for j in range(n_bodies):
        if j == i:
            continue

        dx = positions[j, 0] - positions[i, 0]
        dy = positions[j, 1] - positions[i, 1]
        dz = positions[j, 2] - positions[i, 2]
        distance = np.sqrt(dx * dx + dy * dy + dz * dz)

        if distance == 0.0:
            if policy == DISTANCE_RAISE:
                return accel, j
            # No direction to pull in
            continue

        effective = distance
        if policy == DISTANCE_CLAMP and distance < min_distance:
            effective = min_distance

        magnitude = const.G * masses[j] / (effective * effective)

        accel[0] += magnitude * dx / distance
        accel[1] += magnitude * dy / distance
        accel[2] += magnitude * dz / distance

    return accel, NO_BODY


@jit(nopython=True, nogil=True)
def update_body(i, positions, velocities, masses, dt, policy, min_distance):
    """
    Advance body i by one timestep with semi-implicit (Euler-Cromer) integration.

    1. a = acceleration from every other body at their current positions
    2. v(t + dt) = v(t) + a × dt
    3. x(t + dt) = x(t) + v(t + dt) × dt

    Args:
        i: Index of the body to update
        positions: Body positions [m] (shape: (N, 3)), modified in place
        velocities: Body velocities [m/s] (shape: (N, 3)), modified in place
        masses: Body masses [kg] (shape: (N,))
        dt: Timestep [s]
        policy: Zero-distance policy code
        min_distance: Separation floor [m] for DISTANCE_CLAMP

    Returns:
        NO_BODY on success, otherwise the index of the coincident body.
        Body i is left untouched when a coincident body is reported.
    """
    accel, other = calculate_body_acceleration(i, positions, masses, policy, min_distance)
    if other != NO_BODY:
        return other

    for k in range(3):
        velocities[i, k] += accel[k] * dt

    for k in range(3):
        positions[i, k] += velocities[i, k] * dt

    return NO_BODY


@jit(nopython=True, nogil=True)
def step_sequential(positions, velocities, masses, dt, policy, min_distance):
    """
    Apply one tick to all bodies in list order (Gauss-Seidel style).

    Each body reads the CURRENT positions of the others, so body k sees
    bodies 0..k-1 already advanced within the same tick. Results depend on
    body order.

    Returns:
        (i, j): (NO_BODY, NO_BODY) on success, otherwise the body whose update
        failed and the body it coincides with. A failed tick is rolled back,
        so every body is left at the start of the tick.
    """
    n_bodies = len(positions)
    start_positions = positions.copy()
    start_velocities = velocities.copy()

    for i in range(n_bodies):
        other = update_body(i, positions, velocities, masses, dt, policy, min_distance)
        if other != NO_BODY:
            positions[:] = start_positions
            velocities[:] = start_velocities
            return i, other

    return NO_BODY, NO_BODY


@jit(nopython=True, nogil=True)
def step_synchronous(positions, velocities, masses, dt, policy, min_distance):
    """
    Apply one tick to all bodies from positions frozen at the start of the tick.

    All accelerations are computed first, then every velocity and position is
    updated. Results do not depend on body order.

    Returns:
        (i, j): (NO_BODY, NO_BODY) on success, otherwise the coincident pair.
        Nothing is modified when a pair is reported.
    """
    n_bodies = len(positions)
    accelerations = np.zeros((n_bodies, 3))

    for i in range(n_bodies):
        accel, other = calculate_body_acceleration(i, positions, masses, policy, min_distance)
        if other != NO_BODY:
            return i, other
        accelerations[i] = accel

    for i in range(n_bodies):
        for k in range(3):
            velocities[i, k] += accelerations[i, k] * dt
            positions[i, k] += velocities[i, k] * dt

    return NO_BODY, NO_BODY


@jit(nopython=True, nogil=True)
def evolve_ticks(positions, velocities, masses, dt, n_steps, synchronous, policy, min_distance):
    """
    Apply n_steps ticks in a single compiled loop.

    Returns:
        (done, i, j): number of completed ticks, and the coincident pair
        (NO_BODY, NO_BODY when all ticks completed)
    """
    for step in range(n_steps):
        if synchronous:
            i, j = step_synchronous(positions, velocities, masses, dt, policy, min_distance)
        else:
            i, j = step_sequential(positions, velocities, masses, dt, policy, min_distance)
        if i != NO_BODY:
            return step, i, j

    return n_steps, NO_BODY, NO_BODY


# ==============================================================================
# PYTHON WRAPPERS
# ==============================================================================


def resolve_distance_policy(name: str) -> int:
    """Map a distance policy name to its kernel code."""
    try:
        return DISTANCE_POLICIES[name]
    except KeyError:
        raise ValueError(
            f"distance_policy must be one of {sorted(DISTANCE_POLICIES)}, got '{name}'"
        ) from None


def _degenerate(state, i, j):
    return DegenerateDistanceError(int(i), int(j), labels=(state.labels[i], state.labels[j]))


def step(state, dt: float, scheme: str = SEQUENTIAL,
         distance_policy: str = 'raise', min_distance: float = 0.0):
    """
    Advance every body in state by one tick and advance the simulated clock.

    Args:
        state: SimulationState (modified in place)
        dt: Timestep [s]
        scheme: 'sequential' (default) or 'synchronous'
        distance_policy: 'raise', 'skip' or 'clamp'
        min_distance: Separation floor [m] for 'clamp'

    Raises:
        DegenerateDistanceError: Two bodies coincide and the policy is 'raise'.
            The clock is not advanced and no body moves.
    """
    policy = resolve_distance_policy(distance_policy)

    if scheme == SEQUENTIAL:
        i, j = step_sequential(state.positions, state.velocities, state.masses,
                               dt, policy, min_distance)
    elif scheme == SYNCHRONOUS:
        i, j = step_synchronous(state.positions, state.velocities, state.masses,
                                dt, policy, min_distance)
    else:
        raise ValueError(f"scheme must be one of {UPDATE_SCHEMES}, got '{scheme}'")

    if i != NO_BODY:
        raise _degenerate(state, i, j)

    state.advance_clock(dt)


def evolve(state, dt: float, n_steps: int, scheme: str = SEQUENTIAL,
           distance_policy: str = 'raise', min_distance: float = 0.0) -> int:
    """
    Advance state by n_steps ticks without any snapshot handling.

    Useful for batch runs and tests; the live driver steps one tick at a time.

    Returns:
        Number of ticks applied (always n_steps unless an error is raised)

    Raises:
        DegenerateDistanceError: As for step(); the clock reflects the ticks
            completed before the failure.
    """
    if scheme not in UPDATE_SCHEMES:
        raise ValueError(f"scheme must be one of {UPDATE_SCHEMES}, got '{scheme}'")
    policy = resolve_distance_policy(distance_policy)

    done, i, j = evolve_ticks(state.positions, state.velocities, state.masses,
                              dt, n_steps, scheme == SYNCHRONOUS, policy, min_distance)
    state.advance_clock(dt, n_ticks=done)

    if i != NO_BODY:
        raise _degenerate(state, i, j)

    return done
