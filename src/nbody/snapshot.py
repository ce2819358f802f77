"""
Immutable point-in-time views of the simulation state.

A Snapshot is built by the driver thread while it owns the state, so every
body in it belongs to the same tick. The arrays are copies marked read-only:
a consumer may keep a Snapshot as long as it likes without ever seeing the
simulation move underneath it.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Tuple

import numpy as np

from nbody import constants as const
from nbody.diagnostics import pairwise_distances


def _frozen(array) -> np.ndarray:
    copy = np.array(array, dtype=np.float64, copy=True)
    copy.setflags(write=False)
    return copy


@dataclass(frozen=True, eq=False)
class BodySnapshot:
    """One body at the snapshot instant (SI units)."""

    label: str
    mass: float  # [kg]
    position: np.ndarray  # [m] (read-only, shape (3,))
    velocity: np.ndarray  # [m/s] (read-only, shape (3,))

    @property
    def position_au(self) -> np.ndarray:
        return self.position / const.AU

    @property
    def speed(self) -> float:
        """Speed [m/s]."""
        return float(np.linalg.norm(self.velocity))


@dataclass(frozen=True, eq=False)
class Snapshot:
    """
    Atomic view of all bodies at one simulated instant.

    Attributes:
        bodies: Body records in state order
        simulated_time: Simulated timestamp
        elapsed: Simulated seconds since the start epoch
        tick: Number of ticks applied when the snapshot was taken
        iterations_per_second: Ticks per wall-clock second since the previous
            snapshot (0.0 for the first one)
        sequence: Delivery number, starting at 0
    """

    bodies: Tuple[BodySnapshot, ...]
    simulated_time: datetime
    elapsed: float
    tick: int
    iterations_per_second: float
    sequence: int = 0

    @classmethod
    def capture(cls, state, iterations_per_second: float = 0.0,
                sequence: int = 0) -> 'Snapshot':
        """
        Copy the current state into a Snapshot.

        Must be called from the thread that owns state, between ticks.
        """
        bodies = tuple(
            BodySnapshot(
                label=state.labels[i],
                mass=float(state.masses[i]),
                position=_frozen(state.positions[i]),
                velocity=_frozen(state.velocities[i]),
            )
            for i in range(state.n_bodies)
        )
        return cls(
            bodies=bodies,
            simulated_time=state.current_time,
            elapsed=float(state.time),
            tick=int(state.timestep_count),
            iterations_per_second=float(iterations_per_second),
            sequence=sequence,
        )

    @property
    def labels(self) -> Tuple[str, ...]:
        return tuple(b.label for b in self.bodies)

    @property
    def positions(self) -> np.ndarray:
        """All positions [m] (shape: (N, 3))."""
        return np.array([b.position for b in self.bodies]).reshape(-1, 3)

    @property
    def velocities(self) -> np.ndarray:
        """All velocities [m/s] (shape: (N, 3))."""
        return np.array([b.velocity for b in self.bodies]).reshape(-1, 3)

    @property
    def masses(self) -> np.ndarray:
        return np.array([b.mass for b in self.bodies], dtype=np.float64)

    def __len__(self) -> int:
        return len(self.bodies)

    def __getitem__(self, label: str) -> BodySnapshot:
        for body in self.bodies:
            if body.label == label:
                return body
        raise KeyError(label)

    def distances_au(self) -> np.ndarray:
        """Pairwise distance matrix in AU (shape: (N, N))."""
        return pairwise_distances(self.positions) / const.AU

    def to_dict(self) -> dict:
        """Plain-Python message form of the snapshot."""
        return {
            'bodies': [
                {
                    'label': b.label,
                    'mass': b.mass,
                    'position': b.position.tolist(),
                    'velocity': b.velocity.tolist(),
                }
                for b in self.bodies
            ],
            'simulated_time': self.simulated_time,
            'iterations_per_second': self.iterations_per_second,
            'tick': self.tick,
        }

    def summary(self) -> str:
        """One-line human-readable summary."""
        return (f"{len(self.bodies)} objects: {self.simulated_time.isoformat()} "
                f"{self.iterations_per_second:.0f}(i/s)")
