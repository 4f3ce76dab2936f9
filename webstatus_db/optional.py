from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class OptionallySet(Generic[T]):
    """
    Partial-update field.

    ``is_set=False`` means "leave the stored value alone"; ``is_set=True``
    with ``value=None`` means "clear it".
    """

    value: Optional[T] = None
    is_set: bool = False

    @classmethod
    def of(cls, value: Optional[T]) -> "OptionallySet[T]":
        return cls(value=value, is_set=True)

    def apply(self, current: Optional[T]) -> Optional[T]:
        return self.value if self.is_set else current


UNSET: OptionallySet = OptionallySet()
