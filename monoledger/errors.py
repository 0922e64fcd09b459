"""Exception hierarchy for the ledger operator."""

from __future__ import annotations


class MonoledgerError(Exception):
    """Base class for all operator errors."""


class StartupError(MonoledgerError):
    """The operator could not load its state or catch up with the chain."""


class ConfigurationMismatch(StartupError):
    """Stored state belongs to a different contract than the configured one."""

    def __init__(self, expected: str, found: str):
        super().__init__(
            f"Stored state is for contract {found}, operator is configured for {expected}"
        )
        self.expected = expected
        self.found = found


class DistributionError(MonoledgerError):
    """Revenue could not be distributed; the ledger was left unchanged."""


class CollaboratorUnavailable(MonoledgerError):
    """A chain, channel or store call failed in a way that may succeed on retry."""


class InvalidCommand(MonoledgerError):
    """A channel payload could not be turned into a command."""


__all__ = [
    "CollaboratorUnavailable",
    "ConfigurationMismatch",
    "DistributionError",
    "InvalidCommand",
    "MonoledgerError",
    "StartupError",
]
