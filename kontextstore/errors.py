"""Exception types raised by the context store."""

from __future__ import annotations


class KontextError(Exception):
    """Base class for all kontextstore errors."""


class ValidationError(KontextError):
    """A payload or query failed validation (bad type, missing metadata, ...)."""


class CapacityError(KontextError):
    """A bounded storage backend is full and cannot accept a new record."""

    def __init__(self, max_size: int) -> None:
        super().__init__(f"Storage limit reached (max: {max_size} contexts)")
        self.max_size = max_size
