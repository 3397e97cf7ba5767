from __future__ import annotations


class PopRadiusError(Exception):
    """Base class for every error the query engine reports."""


class LoadError(PopRadiusError):
    """The region dataset could not be fetched, parsed, or accepted. Fatal to the session."""

    def __init__(self, location: str, reason: str) -> None:
        super().__init__(f"Failed to load dataset {location}: {reason}")
        self.location = location
        self.reason = reason


class InvalidQueryError(PopRadiusError):
    """A compute request carried a bad target, center, or year selector."""


class UnreachableTargetError(PopRadiusError):
    """Bound expansion hit its ceiling before the aggregate reached the target."""

    def __init__(self, target: float, reached_value: float, ceiling_km: float) -> None:
        super().__init__(
            f"Target {target:g} not reached within {ceiling_km:g} km (largest total {reached_value:g})"
        )
        self.target = target
        self.reached_value = reached_value
        self.ceiling_km = ceiling_km


class NotReadyError(PopRadiusError):
    """A compute request arrived before a successful init."""
