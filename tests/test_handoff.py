"""
Tests for the snapshot handoff rendezvous.
"""

import threading
import time

import numpy as np
import pytest

from nbody.config import initialize_state
from nbody.errors import HandoffClosed, HandoffViolation
from nbody.handoff import HandoffChannel
from nbody.snapshot import Snapshot

# Generous bound for thread start-up on slow CI machines
TIMEOUT = 5.0


@pytest.fixture
def snapshot(sun_earth_params):
    return Snapshot.capture(initialize_state(sun_earth_params))


def deliver_in_thread(channel, snapshot):
    """Start a producer thread; returns (thread, outcome dict)."""
    outcome = {}

    def produce():
        try:
            channel.deliver(snapshot)
            outcome['result'] = 'acknowledged'
        except HandoffClosed:
            outcome['result'] = 'closed'

    thread = threading.Thread(target=produce, daemon=True)
    thread.start()
    return thread, outcome


class TestRendezvous:
    """Tests for the deliver/acknowledge exchange."""

    def test_deliver_blocks_until_acknowledged(self, snapshot):
        channel = HandoffChannel()
        thread, outcome = deliver_in_thread(channel, snapshot)

        received = channel.receive(timeout=TIMEOUT)
        assert received is snapshot

        # Producer stays blocked while the consumer is reading
        time.sleep(0.05)
        assert thread.is_alive()
        assert channel.in_flight

        channel.acknowledge()
        thread.join(TIMEOUT)
        assert not thread.is_alive()
        assert outcome['result'] == 'acknowledged'
        assert not channel.in_flight
        assert channel.delivered_count == channel.acknowledged_count == 1

    def test_consumer_waiting_first(self, snapshot):
        """A consumer that starts waiting before delivery still receives it."""
        channel = HandoffChannel()
        got = []

        def consume():
            with channel.consume(timeout=TIMEOUT) as s:
                got.append(s)

        consumer = threading.Thread(target=consume, daemon=True)
        consumer.start()
        time.sleep(0.05)

        channel.deliver(snapshot)
        consumer.join(TIMEOUT)

        assert got == [snapshot]

    def test_receive_timeout(self):
        channel = HandoffChannel()
        start = time.monotonic()
        assert channel.receive(timeout=0.05) is None
        assert time.monotonic() - start >= 0.04

    def test_consume_timeout_yields_none(self):
        channel = HandoffChannel()
        with channel.consume(timeout=0.01) as s:
            assert s is None
        # Nothing was received, so nothing is outstanding
        with pytest.raises(HandoffViolation):
            channel.acknowledge()

    def test_exchanges_are_ordered(self, sun_earth_params):
        """Many exchanges arrive in delivery order, one at a time."""
        channel = HandoffChannel()
        state = initialize_state(sun_earth_params)
        sent = [Snapshot.capture(state, sequence=n) for n in range(50)]

        def produce():
            for s in sent:
                channel.deliver(s)
            channel.close()

        producer = threading.Thread(target=produce, daemon=True)
        producer.start()

        received = [s.sequence for s in channel]
        producer.join(TIMEOUT)

        assert received == list(range(50))

    def test_iteration_tolerates_explicit_acknowledge(self, sun_earth_params):
        """Acknowledging inside the loop body releases the producer early, once."""
        channel = HandoffChannel()
        state = initialize_state(sun_earth_params)
        sent = [Snapshot.capture(state, sequence=n) for n in range(3)]

        def produce():
            for s in sent:
                channel.deliver(s)
            channel.close()

        producer = threading.Thread(target=produce, daemon=True)
        producer.start()

        received = []
        for s in channel:
            received.append(s.sequence)
            assert channel.awaiting_acknowledgement
            channel.acknowledge()
            assert not channel.awaiting_acknowledgement
        producer.join(TIMEOUT)

        assert received == [0, 1, 2]
        assert channel.acknowledged_count == 3


class TestProtocolViolations:
    """Misuse is reported, not silently tolerated."""

    def test_acknowledge_without_receive(self):
        with pytest.raises(HandoffViolation):
            HandoffChannel().acknowledge()

    def test_double_acknowledge(self, snapshot):
        channel = HandoffChannel()
        thread, _ = deliver_in_thread(channel, snapshot)
        channel.receive(timeout=TIMEOUT)
        channel.acknowledge()
        thread.join(TIMEOUT)

        with pytest.raises(HandoffViolation):
            channel.acknowledge()

    def test_receive_twice_without_acknowledge(self, snapshot):
        channel = HandoffChannel()
        thread, _ = deliver_in_thread(channel, snapshot)
        channel.receive(timeout=TIMEOUT)

        with pytest.raises(HandoffViolation):
            channel.receive(timeout=0.01)

        channel.acknowledge()
        thread.join(TIMEOUT)

    def test_second_delivery_while_in_flight(self, snapshot):
        channel = HandoffChannel()
        thread, _ = deliver_in_thread(channel, snapshot)
        channel.receive(timeout=TIMEOUT)

        with pytest.raises(HandoffViolation):
            channel.deliver(snapshot)

        channel.acknowledge()
        thread.join(TIMEOUT)


class TestClose:
    """Closing releases whoever is blocked."""

    def test_close_releases_producer(self, snapshot):
        channel = HandoffChannel()
        thread, outcome = deliver_in_thread(channel, snapshot)
        channel.receive(timeout=TIMEOUT)

        channel.close()
        thread.join(TIMEOUT)

        assert outcome['result'] == 'closed'
        # The consumer can still finish its exchange
        channel.acknowledge()

    def test_close_releases_consumer(self):
        channel = HandoffChannel()
        errors = []

        def consume():
            try:
                channel.receive()
            except HandoffClosed as e:
                errors.append(e)

        consumer = threading.Thread(target=consume, daemon=True)
        consumer.start()
        time.sleep(0.05)
        channel.close()
        consumer.join(TIMEOUT)

        assert not consumer.is_alive()
        assert len(errors) == 1

    def test_closed_channel_rejects_delivery(self, snapshot):
        channel = HandoffChannel()
        channel.close()
        channel.close()  # idempotent
        assert channel.closed
        with pytest.raises(HandoffClosed):
            channel.deliver(snapshot)

    def test_iteration_ends_on_close(self):
        channel = HandoffChannel()
        channel.close()
        assert list(channel) == []


class TestSnapshotImmutability:
    """Snapshots are copies the consumer can keep."""

    def test_arrays_are_read_only_copies(self, sun_earth_params):
        state = initialize_state(sun_earth_params)
        snapshot = Snapshot.capture(state)

        earth = snapshot["Earth"]
        with pytest.raises(ValueError):
            earth.position[0] = 0.0

        before = earth.position.copy()
        state.positions[1] += 1.0e6
        np.testing.assert_array_equal(earth.position, before)

    def test_metadata(self, sun_earth_params):
        state = initialize_state(sun_earth_params)
        state.advance_clock(1.0, n_ticks=7)
        snapshot = Snapshot.capture(state, iterations_per_second=123.0, sequence=4)

        assert snapshot.tick == 7
        assert snapshot.elapsed == 7.0
        assert snapshot.simulated_time == state.current_time
        assert snapshot.iterations_per_second == 123.0
        assert snapshot.sequence == 4
        assert snapshot.labels == ("Sun", "Earth")
        assert snapshot.positions.shape == (2, 3)

        message = snapshot.to_dict()
        assert [b['label'] for b in message['bodies']] == ["Sun", "Earth"]
        assert len(message['bodies'][1]['position']) == 3
        assert "2 objects" in snapshot.summary()

    def test_unknown_label(self, snapshot):
        with pytest.raises(KeyError):
            snapshot["Pluto"]

    def test_distances(self, snapshot):
        distances = snapshot.distances_au()
        assert distances.shape == (2, 2)
        assert distances[0, 0] == 0.0
        r = np.hypot(-1.01673977e-01, 7.00034986e-01)
        assert abs(distances[0, 1] - r) < 1e-6
