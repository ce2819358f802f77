"""
Snapshot recording and checkpointing for the n-body simulation.

This module handles:
- Time series recording of delivered snapshots to HDF5 files
- Energy and momentum conservation monitoring
- Restoring the full simulation state from a driver checkpoint

The recorder is a consumer-side object: it only ever sees Snapshots, never the
live SimulationState. Checkpoints are written by the driver that owns the
state (SimulationDriver.save_checkpoint).
"""

import logging
import warnings
from pathlib import Path
from typing import Optional

import h5py
import numpy as np

from nbody.config import SimulationParameters
from nbody.diagnostics import (
    calculate_total_energy,
    calculate_total_momentum,
    relative_drift,
)
from nbody.snapshot import Snapshot
from nbody.state import SimulationState

logger = logging.getLogger(__name__)

# Relative drift above which a warning is emitted
CONSERVATION_TOLERANCE = 0.01


class SnapshotRecorder:
    """
    Appends snapshots to an HDF5 file.

    The HDF5 file structure:
    /config (group) - Simulation configuration as attributes
    /metadata (group) - Body metadata (constant throughout simulation)
        /labels (dataset) - Body labels (n_bodies,)
        /masses (dataset) - Body masses (n_bodies,) [kg]
    /timeseries (group) - One row per recorded snapshot
        /elapsed (dataset) - Simulated seconds since start_time [s]
        /tick (dataset) - Tick counter
        /iterations_per_second (dataset) - Throughput [ticks/s]
        /positions (dataset) - Body positions (n_records, n_bodies, 3) [m]
        /velocities (dataset) - Body velocities (n_records, n_bodies, 3) [m/s]
    /conservation (group)
        /total_energy (dataset) - Total energy [J]
        /total_momentum (dataset) - Total momentum (n_records, 3) [kg·m/s]
        /energy_error (dataset) - Relative energy drift from the first record
        /momentum_error (dataset) - Relative momentum drift from the first record

    Datasets are chunked and resizable, so the number of records does not
    need to be known up front.
    """

    def __init__(self, filepath: str, params: SimulationParameters,
                 check_conservation: bool = True):
        """
        Create the HDF5 file.

        Args:
            filepath: Path to HDF5 output file
            params: Simulation parameters (stored as configuration attributes)
            check_conservation: Whether to record energy/momentum drift
        """
        self.filepath = Path(filepath)
        self.params = params
        self.check_conservation = check_conservation
        self.n_bodies = params.n_bodies

        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        self.file = h5py.File(str(self.filepath), 'w')

        self._save_configuration(params)
        self._save_metadata(params)
        self._create_timeseries_datasets()
        self._create_conservation_datasets()

        self.n_records = 0
        self.initial_energy: Optional[float] = None
        self.initial_momentum: Optional[float] = None

    def _save_configuration(self, params: SimulationParameters):
        """Save simulation configuration to HDF5 file."""
        config_group = self.file.create_group('config')

        config_group.attrs['simulation_name'] = params.simulation_name
        config_group.attrs['start_time'] = params.start_time.isoformat()
        config_group.attrs['dt'] = params.dt
        config_group.attrs['snapshot_interval'] = params.snapshot_interval
        config_group.attrs['update_scheme'] = params.update_scheme
        config_group.attrs['distance_policy'] = params.distance_policy
        config_group.attrs['min_distance'] = params.min_distance

    def _save_metadata(self, params: SimulationParameters):
        """Save body metadata (constant throughout simulation)."""
        meta_group = self.file.create_group('metadata')

        meta_group.create_dataset('labels', data=np.array(params.labels, dtype=h5py.string_dtype()))
        meta_group.create_dataset('masses', data=np.array([b.mass for b in params.bodies], dtype=np.float64))
        meta_group.attrs['n_bodies'] = self.n_bodies

    def _create_timeseries_datasets(self):
        """Create resizable datasets for snapshot rows."""
        ts_group = self.file.create_group('timeseries')
        n = self.n_bodies

        ts_group.create_dataset('elapsed', shape=(0,), maxshape=(None,), dtype=np.float64,
                                chunks=(256,), compression='gzip', compression_opts=4)
        ts_group.create_dataset('tick', shape=(0,), maxshape=(None,), dtype=np.int64,
                                chunks=(256,), compression='gzip', compression_opts=4)
        ts_group.create_dataset('iterations_per_second', shape=(0,), maxshape=(None,), dtype=np.float64,
                                chunks=(256,), compression='gzip', compression_opts=4)
        ts_group.create_dataset('positions', shape=(0, n, 3), maxshape=(None, n, 3), dtype=np.float64,
                                chunks=(64, n, 3), compression='gzip', compression_opts=4)
        ts_group.create_dataset('velocities', shape=(0, n, 3), maxshape=(None, n, 3), dtype=np.float64,
                                chunks=(64, n, 3), compression='gzip', compression_opts=4)

    def _create_conservation_datasets(self):
        """Create resizable datasets for conservation monitoring."""
        cons_group = self.file.create_group('conservation')

        for name in ('total_energy', 'energy_error', 'momentum_error'):
            cons_group.create_dataset(name, shape=(0,), maxshape=(None,), dtype=np.float64,
                                      chunks=(256,), compression='gzip', compression_opts=4)
        cons_group.create_dataset('total_momentum', shape=(0, 3), maxshape=(None, 3), dtype=np.float64,
                                  chunks=(256, 3), compression='gzip', compression_opts=4)

    @staticmethod
    def _append(dataset, idx: int, value):
        dataset.resize(idx + 1, axis=0)
        dataset[idx] = value

    def record(self, snapshot: Snapshot):
        """
        Append one snapshot.

        Args:
            snapshot: Snapshot received from the handoff channel

        Raises:
            ValueError: If the snapshot has a different number of bodies
        """
        if len(snapshot) != self.n_bodies:
            raise ValueError(
                f"Snapshot has {len(snapshot)} bodies, recorder expects {self.n_bodies}"
            )

        idx = self.n_records
        ts = self.file['timeseries']
        positions = snapshot.positions
        velocities = snapshot.velocities

        self._append(ts['elapsed'], idx, snapshot.elapsed)
        self._append(ts['tick'], idx, snapshot.tick)
        self._append(ts['iterations_per_second'], idx, snapshot.iterations_per_second)
        self._append(ts['positions'], idx, positions)
        self._append(ts['velocities'], idx, velocities)

        if self.check_conservation:
            self._record_conservation(snapshot, idx)

        self.n_records += 1

    def _record_conservation(self, snapshot: Snapshot, idx: int):
        """
        Calculate and record conservation metrics.

        The first record is the baseline for all later drift values.
        """
        cons = self.file['conservation']
        masses = snapshot.masses

        total_energy = calculate_total_energy(snapshot.positions, snapshot.velocities, masses)
        total_momentum = calculate_total_momentum(snapshot.velocities, masses)
        momentum_norm = float(np.linalg.norm(total_momentum))

        if idx == 0:
            self.initial_energy = total_energy
            self.initial_momentum = momentum_norm
            energy_error = 0.0
            momentum_error = 0.0
        else:
            energy_error = relative_drift(total_energy, self.initial_energy)
            momentum_error = relative_drift(momentum_norm, self.initial_momentum)

        self._append(cons['total_energy'], idx, total_energy)
        self._append(cons['total_momentum'], idx, total_momentum)
        self._append(cons['energy_error'], idx, energy_error)
        self._append(cons['momentum_error'], idx, momentum_error)

        if energy_error > CONSERVATION_TOLERANCE:
            warnings.warn(
                f"Energy conservation violated by {energy_error*100:.2f}% at "
                f"{snapshot.simulated_time.isoformat()}"
            )
        if momentum_error > CONSERVATION_TOLERANCE:
            warnings.warn(
                f"Momentum conservation violated by {momentum_error*100:.2f}% at "
                f"{snapshot.simulated_time.isoformat()}"
            )

    def close(self):
        """Close HDF5 file."""
        if getattr(self, 'file', None) is not None:
            self.file.close()
            self.file = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


def load_checkpoint(filepath: str) -> SimulationState:
    """
    Load simulation state from checkpoint.

    Args:
        filepath: Path to checkpoint HDF5 file

    Returns:
        Restored SimulationState object
    """
    return SimulationState.load_from_hdf5(filepath)
