"""
Tests for snapshot recording and checkpointing functionality.
"""

import h5py
import numpy as np
import pytest

from nbody.config import initialize_state
from nbody.evolution import SimulationDriver
from nbody.output import SnapshotRecorder, load_checkpoint
from nbody.physics import evolve
from nbody.snapshot import Snapshot

from conftest import make_params, circular_orbit_bodies


@pytest.fixture
def orbit_params():
    return make_params(circular_orbit_bodies(), dt=60.0, snapshot_interval=3600.0)


class TestSnapshotRecorder:
    """Tests for the HDF5 snapshot recorder."""

    def test_file_structure(self, orbit_params, tmp_path):
        filepath = tmp_path / "out" / "run.h5"
        with SnapshotRecorder(str(filepath), orbit_params):
            pass

        assert filepath.exists()
        with h5py.File(filepath, 'r') as f:
            for group in ('config', 'metadata', 'timeseries', 'conservation'):
                assert group in f
            assert list(f['metadata/labels'].asstr()[:]) == ["Sun", "Earth"]
            assert f['config'].attrs['dt'] == 60.0
            assert f['timeseries/positions'].shape == (0, 2, 3)

    def test_records_snapshots(self, orbit_params, tmp_path):
        state = initialize_state(orbit_params)
        filepath = tmp_path / "run.h5"

        with SnapshotRecorder(str(filepath), orbit_params) as recorder:
            for _ in range(4):
                recorder.record(Snapshot.capture(state, iterations_per_second=10.0))
                evolve(state, orbit_params.dt, 100)
            assert recorder.n_records == 4

        with h5py.File(filepath, 'r') as f:
            ts = f['timeseries']
            assert ts['positions'].shape == (4, 2, 3)
            np.testing.assert_array_equal(ts['tick'][:], [0, 100, 200, 300])
            np.testing.assert_allclose(ts['elapsed'][:], [0.0, 6000.0, 12000.0, 18000.0])
            np.testing.assert_array_equal(ts['iterations_per_second'][:], [10.0] * 4)
            assert not np.array_equal(ts['positions'][0], ts['positions'][3])

    def test_conservation_tracking(self, orbit_params, tmp_path):
        """A circular orbit over a few hours conserves energy to well under 1%."""
        state = initialize_state(orbit_params)
        filepath = tmp_path / "run.h5"

        with SnapshotRecorder(str(filepath), orbit_params) as recorder:
            for _ in range(5):
                recorder.record(Snapshot.capture(state))
                evolve(state, orbit_params.dt, 60)
            initial_energy = recorder.initial_energy

        assert initial_energy < 0.0, "Bound orbit has negative total energy"
        with h5py.File(filepath, 'r') as f:
            cons = f['conservation']
            assert cons['total_energy'].shape == (5,)
            assert cons['total_momentum'].shape == (5, 3)
            assert cons['energy_error'][0] == 0.0
            assert np.all(cons['energy_error'][:] < 1e-3)

    def test_rejects_wrong_body_count(self, orbit_params, tmp_path):
        lone = make_params(circular_orbit_bodies()[:1])
        with SnapshotRecorder(str(tmp_path / "run.h5"), orbit_params) as recorder:
            with pytest.raises(ValueError):
                recorder.record(Snapshot.capture(initialize_state(lone)))

    def test_records_live_driver(self, orbit_params, tmp_path):
        """The recorder is a regular consumer of the handoff channel."""
        driver = SimulationDriver.from_params(orbit_params)
        filepath = tmp_path / "live.h5"

        with SnapshotRecorder(str(filepath), orbit_params) as recorder:
            driver.start(max_ticks=300)
            for snapshot in driver.channel:
                recorder.record(snapshot)
            driver.join(30.0)

        with h5py.File(filepath, 'r') as f:
            ticks = f['timeseries/tick'][:]
            # dt=60 s, snapshot every hour: due after 61 ticks
            np.testing.assert_array_equal(ticks, [0, 61, 122, 183, 244])


class TestCheckpoint:
    """Tests for full-state checkpoints written by the driver."""

    def test_save_and_load(self, orbit_params, tmp_path):
        driver = SimulationDriver.from_params(orbit_params)
        evolve(driver.state, orbit_params.dt, 42)

        path = driver.save_checkpoint(str(tmp_path))

        assert path.name == "checkpoint_0000000042.h5"
        restored = load_checkpoint(str(path))

        assert restored.timestep_count == 42
        np.testing.assert_array_equal(restored.positions, driver.state.positions)

        # A restored state continues exactly like the original
        evolve(driver.state, orbit_params.dt, 10)
        evolve(restored, orbit_params.dt, 10)
        np.testing.assert_array_equal(restored.positions, driver.state.positions)

    def test_after_bounded_run(self, orbit_params, tmp_path):
        driver = SimulationDriver.from_params(orbit_params)
        driver.start(max_ticks=100)
        for _ in driver.channel:
            pass
        assert driver.join(30.0)

        path = driver.save_checkpoint(str(tmp_path), checkpoint_name="final")
        assert path == tmp_path / "final.h5"
        assert load_checkpoint(str(path)).timestep_count == 100

    def test_refused_while_running(self, orbit_params, tmp_path):
        driver = SimulationDriver.from_params(orbit_params)
        driver.start()
        try:
            with driver.channel.consume(timeout=30.0) as snapshot:
                assert snapshot is not None
                assert driver.running
                with pytest.raises(RuntimeError):
                    driver.save_checkpoint(str(tmp_path))
        finally:
            driver.stop()
            driver.join(30.0)
