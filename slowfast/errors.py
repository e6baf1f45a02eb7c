"""Exceptions raised by slowfast optimizers."""

from __future__ import annotations


class SlowFastError(Exception):
    """Base class for all slowfast errors."""


class StatelessAccessError(SlowFastError, RuntimeError):
    """State was requested from an optimizer classified as stateless."""

    def __init__(self, optimizer: object) -> None:
        super().__init__(f"optimizer {optimizer!r} is stateless and has no per-parameter state")
        self.optimizer = optimizer


class ConfigurationError(SlowFastError, ValueError):
    """An optimizer was constructed with an invalid configuration."""
