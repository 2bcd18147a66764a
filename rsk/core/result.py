"""Result values for boundary calls.

Every boundary in the release pipeline (HTTP feeds, subprocesses, the build
sandbox, the signer, the publishing surface) reports failure as a value
instead of raising. Callers branch on the variant:

    match oracle.latest_stable(tool):
        case Ok(version):
            plan(version)
        case Err(error):
            console.error(error.message)

or narrow with ``isinstance(result, Err)`` and return early.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Never, TypeGuard


@dataclass(frozen=True, slots=True)
class Ok[T]:
    value: T

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: object) -> T:
        return self.value

    def map[U](self, f: Callable[[T], U]) -> Ok[U]:
        return Ok(f(self.value))

    def map_err(self, f: Callable[[Never], object]) -> Ok[T]:
        return self

    def flat_map[U, E](self, f: Callable[[T], Result[U, E]]) -> Result[U, E]:
        return f(self.value)


@dataclass(frozen=True, slots=True)
class Err[E]:
    error: E

    def unwrap(self) -> Never:
        """Programming-error escape hatch; ValueError carries the payload."""
        raise ValueError(f"unwrap() on Err: {self.error}")

    def unwrap_or[D](self, default: D) -> D:
        return default

    def map(self, f: Callable[[Never], object]) -> Err[E]:
        return self

    def map_err[F](self, f: Callable[[E], F]) -> Err[F]:
        """Lift the payload into a wider error family."""
        return Err(f(self.error))

    def flat_map(self, f: Callable[[Never], object]) -> Err[E]:
        return self


type Result[T, E] = Ok[T] | Err[E]


def is_ok[T, E](result: Result[T, E]) -> TypeGuard[Ok[T]]:
    return isinstance(result, Ok)


def is_err[T, E](result: Result[T, E]) -> TypeGuard[Err[E]]:
    return isinstance(result, Err)
