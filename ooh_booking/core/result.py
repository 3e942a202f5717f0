"""Result pattern for decode steps that may fail without raising."""

from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")


@dataclass
class Success(Generic[T]):
    """Represents a successful result."""

    value: T

    def is_success(self) -> bool:
        """Check if result is successful."""
        return True

    def is_failure(self) -> bool:
        """Check if result is a failure."""
        return False

    def unwrap(self) -> T:
        """Get the success value."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Get the success value or a default."""
        return self.value

    def __repr__(self) -> str:
        return f"Success({self.value!r})"


@dataclass
class Failure(Generic[E]):
    """Represents a failed result."""

    error: str
    exception: Optional[Exception] = None

    def is_success(self) -> bool:
        """Check if result is successful."""
        return False

    def is_failure(self) -> bool:
        """Check if result is a failure."""
        return True

    def unwrap(self) -> Any:
        """
        Re-raise the captured exception, or RuntimeError when there is none.

        Raises:
            Exception: The exception the failure was built from
        """
        if self.exception is not None:
            raise self.exception
        raise RuntimeError(f"Called unwrap on Failure: {self.error}")

    def unwrap_or(self, default: T) -> T:
        """Get the default value (success value is not available)."""
        return default

    def __repr__(self) -> str:
        if self.exception:
            return f"Failure(error={self.error!r}, exception={type(self.exception).__name__})"
        return f"Failure(error={self.error!r})"


Result = Union[Success[T], Failure[E]]
