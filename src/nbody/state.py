"""
Simulation state management for the n-body simulation.

This module defines the SimulationState class. The body table is stored as
UNIFIED ARRAYS (one row per body) so the Numba kernels in nbody.physics can
work on it directly. Row order is the body order from the configuration and
is significant: the sequential stepper updates bodies in this order.

The state is owned by the simulation driver thread. Other threads only ever
see copies of it (see nbody.snapshot).
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Sequence

import h5py
import numpy as np

from nbody import constants as const


@dataclass
class Body:
    """
    A single body of the system, viewed through its row in SimulationState.

    position and velocity are views into the state arrays, so mutating them
    mutates the state.
    """

    label: str
    mass: float  # [kg]
    position: np.ndarray  # [m] (view, shape (3,))
    velocity: np.ndarray  # [m/s] (view, shape (3,))


class SimulationState:
    """
    Ordered body table plus the simulated clock.

    All physics arrays use SI units:
    - positions: meters (m)
    - velocities: meters per second (m/s)
    - masses: kilograms (kg)
    - time: seconds since start_time (s)
    """

    def __init__(self, n_bodies: int, start_time: Optional[datetime] = None):
        """
        Initialize an empty body table.

        Args:
            n_bodies: Number of bodies
            start_time: Simulated epoch at time == 0 (UTC datetime)
        """
        # Core physics arrays - used by integration
        self.positions = np.zeros((n_bodies, 3), dtype=np.float64)  # [m]
        self.velocities = np.zeros((n_bodies, 3), dtype=np.float64)  # [m/s]
        self.masses = np.zeros(n_bodies, dtype=np.float64)  # [kg]

        # Metadata
        self.labels: List[str] = [f"body_{i}" for i in range(n_bodies)]

        # Simulated clock
        self.start_time = start_time if start_time is not None else const.DEFAULT_START_TIME
        self.time = 0.0  # [s] since start_time
        self.timestep_count = 0

    @classmethod
    def from_bodies(cls, labels: Sequence[str], masses, positions, velocities,
                    start_time: Optional[datetime] = None) -> 'SimulationState':
        """
        Build a state from per-body sequences already in SI units.

        Args:
            labels: Body labels, in update order
            masses: Masses [kg] (shape: (N,))
            positions: Positions [m] (shape: (N, 3))
            velocities: Velocities [m/s] (shape: (N, 3))
            start_time: Simulated epoch

        Returns:
            New SimulationState
        """
        state = cls(n_bodies=len(labels), start_time=start_time)
        state.labels = list(labels)
        state.masses[:] = masses
        state.positions[:] = positions
        state.velocities[:] = velocities
        return state

    @property
    def n_bodies(self) -> int:
        """Number of bodies."""
        return len(self.positions)

    @property
    def current_time(self) -> datetime:
        """Simulated timestamp."""
        return self.start_time + timedelta(seconds=self.time)

    def body(self, i: int) -> Body:
        """Get body i as a Body view onto the state arrays."""
        return Body(
            label=self.labels[i],
            mass=float(self.masses[i]),
            position=self.positions[i],
            velocity=self.velocities[i],
        )

    def __iter__(self):
        return (self.body(i) for i in range(self.n_bodies))

    def __len__(self) -> int:
        return self.n_bodies

    def advance_clock(self, dt: float, n_ticks: int = 1):
        """
        Advance the simulated clock by n_ticks ticks of length dt.

        Args:
            dt: Timestep [s], must be positive
            n_ticks: Number of ticks applied
        """
        if dt <= 0:
            raise ValueError(f"Simulated time cannot rewind or stall (dt={dt})")
        self.time += dt * n_ticks
        self.timestep_count += n_ticks

    def copy(self) -> 'SimulationState':
        """Deep copy of the state."""
        state = SimulationState.from_bodies(
            self.labels, self.masses, self.positions, self.velocities,
            start_time=self.start_time
        )
        state.time = self.time
        state.timestep_count = self.timestep_count
        return state

    def save_to_hdf5(self, filepath: str, compression: str = "gzip"):
        """
        Save simulation state to HDF5 file.

        Args:
            filepath: Path to HDF5 file
            compression: HDF5 compression method ("gzip", "lzf", or None)
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        with h5py.File(filepath, 'w') as f:
            f.attrs['time'] = self.time
            f.attrs['timestep_count'] = self.timestep_count
            f.attrs['start_time'] = self.start_time.isoformat()
            f.attrs['n_bodies'] = self.n_bodies

            physics = f.create_group('physics')
            physics.create_dataset('positions', data=self.positions, compression=compression)
            physics.create_dataset('velocities', data=self.velocities, compression=compression)
            physics.create_dataset('masses', data=self.masses, compression=compression)

            metadata = f.create_group('metadata')
            metadata.create_dataset('labels', data=np.array(self.labels, dtype=h5py.string_dtype()))

    @classmethod
    def load_from_hdf5(cls, filepath: str) -> 'SimulationState':
        """
        Load simulation state from HDF5 file.

        Args:
            filepath: Path to HDF5 file

        Returns:
            SimulationState instance loaded from file
        """
        with h5py.File(filepath, 'r') as f:
            n_bodies = int(f.attrs['n_bodies'])
            start_time = datetime.fromisoformat(f.attrs['start_time'])

            state = cls(n_bodies=n_bodies, start_time=start_time)
            state.time = float(f.attrs['time'])
            state.timestep_count = int(f.attrs['timestep_count'])

            physics = f['physics']
            state.positions[:] = physics['positions'][:]
            state.velocities[:] = physics['velocities'][:]
            state.masses[:] = physics['masses'][:]

            state.labels = [label for label in f['metadata']['labels'].asstr()[:]]

        return state

    def __repr__(self) -> str:
        """String representation of simulation state."""
        lines = [
            f"SimulationState(time={self.current_time.isoformat()}, "
            f"step={self.timestep_count})",
            f"  Bodies: {self.n_bodies}",
        ]
        for i in range(self.n_bodies):
            r_au = np.linalg.norm(self.positions[i]) / const.AU
            lines.append(f"    {self.labels[i]}: {self.masses[i]:.3e} kg, |r|={r_au:.4f} AU")
        return "\n".join(lines)
