"""Result values for operations whose failures are part of the contract."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from teams_auth.core.errors import AuthError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    error: AuthError

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


__all__ = ["Err", "Ok", "Result"]
