"""
Rendezvous handoff of snapshots from the simulation thread to a consumer.

Exactly one snapshot can be in flight. The producer blocks in deliver() until
the consumer acknowledges it, so the simulation never ticks while a consumer
is reading.

    producer                          consumer
    --------                          --------
    deliver(s)  --- "deliver" --->    receive() -> s
       (blocked)                      ... read s ...
    returns     <-- "acknowledge" --  acknowledge()

Delivery and acknowledgement are tracked with monotonically increasing
sequence counters under a single Condition, so spurious wake-ups and
notifications sent before the other side starts waiting are harmless.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from nbody.errors import HandoffClosed, HandoffViolation
from nbody.snapshot import Snapshot

logger = logging.getLogger(__name__)


class HandoffChannel:
    """
    Unbuffered two-phase exchange between one producer and one consumer.

    The channel can be closed from either side (or a third thread) to release
    whoever is blocked; both deliver() and receive() then raise HandoffClosed.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._payload: Optional[Snapshot] = None
        self._delivered = 0  # Deliveries started by the producer
        self._received = 0  # Deliveries taken by the consumer
        self._acknowledged = 0  # Deliveries acknowledged by the consumer
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    @property
    def in_flight(self) -> bool:
        """Whether a delivered snapshot is still waiting for acknowledgement."""
        with self._cond:
            return self._delivered != self._acknowledged

    @property
    def delivered_count(self) -> int:
        with self._cond:
            return self._delivered

    @property
    def awaiting_acknowledgement(self) -> bool:
        """Whether the consumer holds a received snapshot it has not acknowledged."""
        with self._cond:
            return self._received != self._acknowledged

    @property
    def acknowledged_count(self) -> int:
        with self._cond:
            return self._acknowledged

    def deliver(self, snapshot: Snapshot):
        """
        Hand a snapshot to the consumer and block until it is acknowledged.

        Raises:
            HandoffViolation: Another delivery is still in flight
            HandoffClosed: The channel is closed, or was closed before the
                consumer acknowledged
        """
        with self._cond:
            if self._closed:
                raise HandoffClosed("Cannot deliver on a closed channel")
            if self._delivered != self._acknowledged:
                raise HandoffViolation(
                    f"Snapshot #{self._acknowledged} is still in flight"
                )

            self._payload = snapshot
            self._delivered += 1
            sequence = self._delivered
            self._cond.notify_all()

            while self._acknowledged < sequence:
                if self._closed:
                    self._payload = None
                    raise HandoffClosed("Channel closed before the snapshot was acknowledged")
                self._cond.wait()

        logger.debug("Snapshot #%d acknowledged", sequence)

    def receive(self, timeout: Optional[float] = None) -> Optional[Snapshot]:
        """
        Wait for the next delivered snapshot.

        Args:
            timeout: Seconds to wait, or None to wait indefinitely

        Returns:
            The snapshot, or None if the timeout expired first

        Raises:
            HandoffViolation: The previously received snapshot has not been
                acknowledged yet
            HandoffClosed: The channel is closed
        """
        with self._cond:
            if self._received != self._acknowledged:
                raise HandoffViolation("Previous snapshot must be acknowledged before receiving")

            ready = self._cond.wait_for(
                lambda: self._closed or self._delivered > self._received,
                timeout=timeout,
            )
            if not ready:
                return None
            if self._closed:
                raise HandoffClosed("Channel closed")

            self._received = self._delivered
            return self._payload

    def acknowledge(self):
        """
        Release the producer after reading the received snapshot.

        Acknowledging is still allowed after the channel was closed, so a
        consumer can always finish its exchange cleanly.

        Raises:
            HandoffViolation: No snapshot is waiting for acknowledgement
        """
        with self._cond:
            if self._received == self._acknowledged:
                raise HandoffViolation("No received snapshot to acknowledge")

            self._acknowledged = self._received
            self._payload = None
            self._cond.notify_all()

    @contextmanager
    def consume(self, timeout: Optional[float] = None):
        """
        Receive a snapshot and acknowledge it when the block exits.

        Yields None if the timeout expired (nothing to acknowledge).

            with channel.consume() as snapshot:
                render(snapshot)
        """
        snapshot = self.receive(timeout=timeout)
        try:
            yield snapshot
        finally:
            if snapshot is not None:
                self.acknowledge()

    def __iter__(self) -> Iterator[Snapshot]:
        """
        Yield snapshots until the channel is closed.

        Each snapshot is acknowledged when the loop body asks for the next
        one (or the loop is left). A loop body that acknowledges a
        snapshot itself is not acknowledged twice.
        """
        while True:
            try:
                snapshot = self.receive()
            except HandoffClosed:
                return
            try:
                yield snapshot
            finally:
                if self.awaiting_acknowledgement:
                    self.acknowledge()

    def close(self):
        """Close the channel and wake every waiting party."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._cond.notify_all()
        logger.debug("Handoff channel closed")
