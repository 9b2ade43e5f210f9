"""
Discriminated results for pipeline and access operations.
An Outcome is either a success carrying a value or a failure carrying a typed error.
"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from .errors import SealForgeError

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[SealForgeError] = None
    step: Optional[str] = None

    @classmethod
    def success(cls, value: T, step: str = None) -> "Outcome[T]":
        return cls(ok=True, value=value, step=step)

    @classmethod
    def failure(cls, error: SealForgeError, step: str = None) -> "Outcome[T]":
        return cls(ok=False, error=error, step=step)

    def unwrap(self) -> T:
        """Return the value or raise the carried error"""
        if not self.ok:
            raise self.error
        return self.value
