"""
Exception hierarchy for the n-body simulation.
"""


class SimulationError(Exception):
    """Base class for all simulation errors."""


class ConfigurationError(SimulationError, ValueError):
    """Initial body data or simulation parameters are malformed."""


class DegenerateDistanceError(SimulationError, ArithmeticError):
    """
    Two bodies occupy the same position, so the acceleration between them
    is undefined.

    Attributes:
        index: Index of the body being updated
        other_index: Index of the coincident body
        labels: (label, other_label) when known
    """

    def __init__(self, index: int, other_index: int, labels=None):
        self.index = index
        self.other_index = other_index
        self.labels = labels
        if labels is not None:
            who = f"'{labels[0]}' (#{index}) and '{labels[1]}' (#{other_index})"
        else:
            who = f"#{index} and #{other_index}"
        super().__init__(f"Bodies {who} are at zero separation")


class HandoffViolation(SimulationError, RuntimeError):
    """The snapshot handoff protocol was used out of order."""


class HandoffClosed(HandoffViolation):
    """The handoff channel was closed while a party was using or waiting on it."""
