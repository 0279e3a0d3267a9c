"""
CollectionStore — ordered list of repeatable child records.

Dependents and beneficiaries are held here until the applicant has a
server ID.  Indexes are positional: removing an entry shifts every later
entry down by one, and no slot is ever reused.  Duplicate entries are
allowed; callers that care must check first.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from decimal import Decimal
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class CollectionStore(Generic[T]):
    """Insertion-ordered store with positional removal and simple aggregates."""

    def __init__(self, items: list[T] | None = None) -> None:
        self._items: list[T] = list(items or [])

    def add(self, item: T) -> int:
        """Append ``item`` and return its index."""
        self._items.append(item)
        return len(self._items) - 1

    def remove_at(self, index: int) -> T:
        """Remove and return the entry at ``index``.  Negative indexes are rejected."""
        if not 0 <= index < len(self._items):
            raise IndexError(
                f"No entry at index {index} (store holds {len(self._items)})"
            )
        return self._items.pop(index)

    def all(self) -> tuple[T, ...]:
        """Snapshot of every entry in insertion order."""
        return tuple(self._items)

    def count_by(self, predicate: Callable[[T], bool]) -> int:
        return sum(1 for item in self._items if predicate(item))

    def sum_by(self, selector: Callable[[T], Any]) -> Decimal:
        """Sum ``selector(item)`` over all entries using Decimal arithmetic."""
        total = Decimal("0")
        for item in self._items:
            value = selector(item)
            if value is not None:
                total += Decimal(str(value))
        return total

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(tuple(self._items))

    def __getitem__(self, index: int) -> T:
        return self._items[index]

    def __repr__(self) -> str:
        return f"CollectionStore({self._items!r})"
