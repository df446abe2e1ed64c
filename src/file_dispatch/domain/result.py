"""Result pattern for capability calls.

I/O capabilities (move, copy, trash, scripts, archives...) return a Result
instead of raising, so the action pipeline can turn every failure into a
reported outcome without try/except at each call site.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar, cast

T = TypeVar('T')  # Success type
E = TypeVar('E', bound=Exception)  # Error type


class Result(ABC, Generic[T, E]):
    """Either a successful value or a typed error."""

    @abstractmethod
    def is_success(self) -> bool:
        ...

    @abstractmethod
    def is_failure(self) -> bool:
        ...

    @abstractmethod
    def value(self) -> T:
        """Get the success value.

        Raises:
            ValueError: If the result is a failure.
        """
        ...

    @abstractmethod
    def error(self) -> E:
        """Get the error.

        Raises:
            ValueError: If the result is a success.
        """
        ...


@dataclass(frozen=True, slots=True)
class Success(Result[T, E]):
    """A completed capability call."""
    _value: T

    def __repr__(self) -> str:
        return f"Success({self._value!r})"

    def is_success(self) -> bool:
        return True

    def is_failure(self) -> bool:
        return False

    def value(self) -> T:
        return self._value

    def error(self) -> E:
        raise ValueError("Cannot get error from Success result")


@dataclass(frozen=True, slots=True)
class Failure(Result[T, E]):
    """A capability call that failed with a typed error."""
    _error: E

    def __repr__(self) -> str:
        return f"Failure({self._error!r})"

    def is_success(self) -> bool:
        return False

    def is_failure(self) -> bool:
        return True

    def value(self) -> T:
        raise ValueError(f"Cannot get value from Failure result: {self._error}")

    def error(self) -> E:
        return self._error


def try_catch(fn: Callable[[], T], error_class: type[E] | tuple[type[E], ...] = Exception) -> Result[T, E]:
    """Run fn and wrap the outcome, catching only the given exception type(s)."""
    try:
        return Success(fn())
    except error_class as e:
        return Failure(cast(E, e))
