"""
Pipeline error types.

Two kinds of failure exist and both are fatal for a run:

- ConfigurationError: the configuration contradicts the frame sequence
  (zero-span loops, edge/loop count mismatch).
- CollaboratorError: a frame source, filter, aligner or correction pass
  could not do its job (unreadable frame, too few points to align).

Construction and preparation steps return a ``Result`` instead of raising,
so the caller decides where the run is aborted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")
U = TypeVar("U")


class PipelineError(Exception):
    """Base class for all registration pipeline errors."""


class ConfigurationError(PipelineError):
    """Raised when configuration and frame sequence contradict each other."""


class CollaboratorError(PipelineError):
    """Raised when an external collaborator (I/O, aligner, corrector) fails."""


@dataclass(frozen=True)
class Result(Generic[T]):
    """Success value or pipeline error, returned by construction functions."""

    value: Optional[T] = None
    error: Optional[PipelineError] = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: PipelineError) -> "Result[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    def then(self, fn: Callable[[T], "Result[U]"]) -> "Result[U]":
        """Chain another fallible step; failures short-circuit."""
        if self.error is not None:
            return Result.failure(self.error)
        return fn(self.value)  # type: ignore[arg-type]
