"""
Exception types shared by the mapping and optimization pipelines.

Recoverable per-vertex problems (missed rays, NaN gamma, placement conflicts)
are logged instead of raised; only precondition violations end up here.
"""

from __future__ import annotations


class AnamorphError(RuntimeError):
    pass


class ConfigError(AnamorphError, ValueError):
    pass


class LifecycleError(AnamorphError):
    """An operation was called in a state that does not allow it."""

    def __init__(self, operation: str, status: object, allowed: tuple[object, ...] = ()):
        self.operation = str(operation)
        self.status = status
        self.allowed = tuple(allowed)
        names = ", ".join(getattr(a, "name", str(a)) for a in self.allowed) or "-"
        super().__init__(
            f"Cannot {self.operation} while status is {getattr(status, 'name', status)} "
            f"(allowed: {names})"
        )


class DeviationLengthError(AnamorphError, ValueError):
    pass


class NoPlanarSolution(AnamorphError):
    pass


class ContinuityRequiredError(AnamorphError):
    pass
