"""Result type for explicit error handling.

Every component of the release core reports expected failures as values:
a tag that cannot be resolved, a build step that did not produce what it
promised, a binary whose linkage cannot be inspected. Callers decide what
is fatal and what degrades to a default.

Usage:
    match parse_tag(packages, "app-v1.2.0"):
        case Ok(announcing):
            print(announcing.tag)
        case Err(error):
            print(f"cannot release: {error}")

    linkage = determine_linkage(path, target).unwrap_or(Linkage.empty(...))
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeGuard, TypeVar

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E")
F = TypeVar("F")


@dataclass(frozen=True, slots=True)
class Ok[T]:
    """A successful result carrying `value`."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Return the contained value."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Return the contained value; `default` is ignored."""
        return self.value

    def unwrap_or_else(self, f: Callable[[E], T]) -> T:
        """Return the contained value; `f` is never called."""
        return self.value

    def unwrap_err(self) -> None:
        """Raise ValueError: an Ok carries no error."""
        raise ValueError(f"called unwrap_err on Ok: {self.value}")

    def map(self, f: Callable[[T], U]) -> Ok[U]:
        """Transform the contained value."""
        return Ok(f(self.value))

    def map_err(self, f: Callable[[E], F]) -> Ok[T]:
        return self

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err[E]:
    """A failed result carrying an error payload in `error`."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> None:
        """Raise ValueError describing the contained error."""
        raise ValueError(f"called unwrap on Err: {self.error}")

    def unwrap_or(self, default: T) -> T:
        """Return `default` in place of the missing value."""
        return default

    def unwrap_or_else(self, f: Callable[[E], T]) -> T:
        """Compute a fallback value from the error.

        This is where best-effort policies live: the caller turns the error
        into a default (and usually reports it) instead of aborting.
        """
        return f(self.error)

    def unwrap_err(self) -> E:
        """Return the contained error."""
        return self.error

    def map(self, f: Callable[[T], U]) -> Err[E]:
        return self

    def map_err(self, f: Callable[[E], F]) -> Err[F]:
        """Transform the contained error, e.g. to attach context."""
        return Err(f(self.error))

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


type Result[T, E] = Ok[T] | Err[E]


def is_ok[T, E](result: Result[T, E]) -> TypeGuard[Ok[T]]:
    """Type guard narrowing a Result to Ok."""
    return isinstance(result, Ok)


def is_err[T, E](result: Result[T, E]) -> TypeGuard[Err[E]]:
    """Type guard narrowing a Result to Err."""
    return isinstance(result, Err)
