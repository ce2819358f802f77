"""
Time evolution engine for the n-body simulation.

This module implements the live simulation driver. The driver owns the
SimulationState: it is the only code that mutates body positions and
velocities. Consumers see the system only through Snapshots handed over by
the HandoffChannel rendezvous.

THE LOOP:
  1. If a snapshot is due, copy the state into a Snapshot, deliver it and
     block until the consumer acknowledges
  2. Apply one tick (Euler-Cromer, bodies in list order) to every body
  3. Advance the simulated clock by dt

A snapshot is due before the very first tick, and afterwards whenever the
simulated time is strictly past the previous snapshot time plus the snapshot
interval. Throughput is ticks per wall-clock second between consecutive
deliveries, so time the consumer spends reading is included.
"""

import enum
import logging
import threading
import time
from pathlib import Path
from typing import Optional

from tqdm import tqdm

from nbody import constants as const
from nbody import physics
from nbody.config import SimulationParameters, initialize_state
from nbody.errors import HandoffClosed
from nbody.handoff import HandoffChannel
from nbody.snapshot import Snapshot
from nbody.state import SimulationState

logger = logging.getLogger(__name__)


class RunState(enum.Enum):
    """Lifecycle of a SimulationDriver."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"


class SimulationDriver:
    """
    Continuous simulation loop with periodic snapshot handoff.

    Runs until stop() is called, max_ticks ticks have been applied, the
    handoff channel is closed, or the physics raises. Any physics error moves
    the driver to RunState.FAILED, closes the channel and propagates.
    """

    def __init__(
        self,
        state: SimulationState,
        params: SimulationParameters,
        channel: Optional[HandoffChannel] = None
    ):
        """
        Args:
            state: Initial SimulationState; the driver takes ownership of it
            params: SimulationParameters (dt, snapshot interval, physics options)
            channel: HandoffChannel to deliver snapshots on (created if omitted)
        """
        self.state = state
        self.params = params
        self.channel = channel if channel is not None else HandoffChannel()

        self.dt = params.dt
        self.snapshot_interval = params.snapshot_interval

        self.run_state = RunState.IDLE
        self.error: Optional[BaseException] = None
        self.snapshots_delivered = 0

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # Bookkeeping since the last snapshot
        self._last_snapshot_time: Optional[float] = None  # simulated [s]
        self._last_snapshot_clock: Optional[float] = None  # wall clock [s]
        self._iterations = 0

    @classmethod
    def from_params(cls, params: SimulationParameters,
                    channel: Optional[HandoffChannel] = None) -> 'SimulationDriver':
        """Create a driver with a fresh initial state built from params."""
        return cls(initialize_state(params), params, channel=channel)

    @property
    def iterations_since_snapshot(self) -> int:
        return self._iterations

    def snapshot_due(self) -> bool:
        """Whether the next loop iteration must deliver a snapshot first."""
        if self._last_snapshot_time is None:
            return True
        return self.state.time > self._last_snapshot_time + self.snapshot_interval

    def iterations_per_second(self, now: Optional[float] = None) -> float:
        """
        Ticks per wall-clock second since the previous snapshot was delivered.

        Returns 0.0 before the first snapshot or when no wall time has elapsed.
        """
        if self._last_snapshot_clock is None:
            return 0.0
        if now is None:
            now = time.perf_counter()
        elapsed = now - self._last_snapshot_clock
        if elapsed <= 0.0:
            return 0.0
        return self._iterations / elapsed

    def take_snapshot(self) -> Snapshot:
        """Copy the current state into a Snapshot with throughput metadata."""
        return Snapshot.capture(
            self.state,
            iterations_per_second=self.iterations_per_second(),
            sequence=self.snapshots_delivered,
        )

    def publish(self, snapshot: Snapshot):
        """
        Deliver a snapshot and wait for the consumer.

        Raises:
            HandoffClosed: The channel was closed before acknowledgement
        """
        logger.debug("Delivering snapshot #%d at %s (%.0f i/s)",
                     snapshot.sequence, snapshot.simulated_time.isoformat(),
                     snapshot.iterations_per_second)
        delivered_at = time.perf_counter()
        self.channel.deliver(snapshot)

        self._last_snapshot_time = self.state.time
        self._last_snapshot_clock = delivered_at
        self._iterations = 0
        self.snapshots_delivered += 1

    def tick(self):
        """Apply one timestep to every body and advance the clock."""
        physics.step(
            self.state,
            self.dt,
            scheme=self.params.update_scheme,
            distance_policy=self.params.distance_policy,
            min_distance=self.params.min_distance,
        )
        self._iterations += 1

    def run(self, max_ticks: Optional[int] = None) -> dict:
        """
        Run the simulation loop on the calling thread.

        Args:
            max_ticks: Stop after this many ticks (defaults to params.max_ticks;
                None runs until stopped)

        Returns:
            Dictionary with run statistics:
            - ticks: Ticks applied by this run
            - snapshots: Snapshots delivered by this run
            - final_time: Simulated seconds since the start epoch
            - run_state: Final RunState

        Raises:
            RuntimeError: If the driver has already been run
            DegenerateDistanceError: Two bodies coincided (policy 'raise')
        """
        if self.run_state is not RunState.IDLE:
            raise RuntimeError(f"Driver cannot be run from state {self.run_state.value}")
        if max_ticks is None:
            max_ticks = self.params.max_ticks

        self.run_state = RunState.RUNNING
        ticks = 0
        snapshots_before = self.snapshots_delivered
        logger.info("Simulation started: %d bodies, dt=%s s, snapshot every %.2f days",
                    self.state.n_bodies, self.dt, self.snapshot_interval / const.SECONDS_PER_DAY)

        pbar = None
        if self.params.show_progress:
            pbar = tqdm(total=max_ticks, desc="Simulating", unit="ticks")
        reported = 0

        try:
            while not self._stop_event.is_set():
                if max_ticks is not None and ticks >= max_ticks:
                    break

                if self.snapshot_due():
                    self.publish(self.take_snapshot())
                    if pbar is not None:
                        pbar.update(ticks - reported)
                        reported = ticks

                self.tick()
                ticks += 1

        except HandoffClosed:
            logger.info("Handoff channel closed, stopping simulation")
        except Exception as e:
            self.run_state = RunState.FAILED
            self.error = e
            logger.error("Simulation failed at %s: %s", self.state.current_time.isoformat(), e)
            raise
        finally:
            if self.run_state is RunState.RUNNING:
                self.run_state = RunState.STOPPED
            self.channel.close()
            if pbar is not None:
                pbar.update(ticks - reported)
                pbar.close()

        logger.info("Simulation stopped after %d ticks at %s",
                    ticks, self.state.current_time.isoformat())

        return {
            'ticks': ticks,
            'snapshots': self.snapshots_delivered - snapshots_before,
            'final_time': self.state.time,
            'run_state': self.run_state,
        }

    def start(self, max_ticks: Optional[int] = None) -> threading.Thread:
        """Run the loop on a background daemon thread."""
        thread = threading.Thread(
            target=self.run,
            kwargs={"max_ticks": max_ticks},
            name="nbody-driver",
            daemon=True,
        )
        self._thread = thread
        thread.start()
        return thread

    def stop(self):
        """
        Request the loop to stop.

        Safe to call from any thread. A driver blocked on an unacknowledged
        snapshot is released by closing the channel.
        """
        self._stop_event.set()
        self.channel.close()

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for a driver started with start() to finish.

        Returns:
            True if the driver thread has finished
        """
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def save_checkpoint(self, directory: Optional[str] = None,
                        checkpoint_name: Optional[str] = None) -> Path:
        """
        Save the full simulation state as a checkpoint for restart.

        Only allowed while the loop is not running, so the state is a single
        completed tick.

        Args:
            directory: Target directory (default: params.output_directory)
            checkpoint_name: Optional name (default: checkpoint_{timestep})

        Returns:
            Path of the checkpoint file

        Raises:
            RuntimeError: The driver is running
        """
        if self.running:
            raise RuntimeError("Cannot checkpoint a running driver; stop() and join() it first")

        if checkpoint_name is None:
            checkpoint_name = f"checkpoint_{self.state.timestep_count:010d}"
        if directory is None:
            directory = self.params.output_directory

        ckpt_path = Path(directory) / f"{checkpoint_name}.h5"
        self.state.save_to_hdf5(str(ckpt_path))
        logger.info("Checkpoint written to %s", ckpt_path)
        return ckpt_path

    @property
    def running(self) -> bool:
        return self.run_state is RunState.RUNNING
