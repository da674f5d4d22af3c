from __future__ import annotations

import sys
import threading
from collections.abc import Iterator, Mapping
from itertools import count
from typing import Any, TypeVar, final


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


K = TypeVar("K")
V = TypeVar("V")


class frozendict(Mapping[K, V]):  # noqa: N801
    """Immutable, insertion-ordered dictionary with hash support.

    Every mapping inside a loaded ``TableSchema`` or ``EntityMapping`` is a
    frozendict, so metadata shared between queries cannot be mutated by one
    of them. Order is preserved because column order drives the order of
    ``SELECT`` lists and ``INSERT`` column lists.

    Example:
        >>> columns = frozendict({"users.id": 1, "users.email": 2})
        >>> list(columns)
        ['users.id', 'users.email']
        >>> columns.merge({"users.email": 3})
        <frozendict {'users.id': 1, 'users.email': 3}>
    """

    __slots__ = ("_dict", "_hash")

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self._dict: dict[K, V] = dict(*args, **kwargs)
        self._hash: int | None = None

    def __getitem__(self, key: K) -> V:
        return self._dict[key]

    def __contains__(self, key: Any) -> bool:
        return key in self._dict

    def merge(self, other: Mapping[K, V]) -> Self:
        """Return a new frozendict where entries of *other* shadow ours.

        Keys already present keep their position; new keys are appended.
        """
        merged = dict(self._dict)
        merged.update(other)
        return type(self)(merged)

    def __iter__(self) -> Iterator[K]:
        return iter(self._dict)

    def __len__(self) -> int:
        return len(self._dict)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._dict!r}>"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, frozendict):
            return self._dict == other._dict

        if isinstance(other, dict):
            return self._dict == other

        return NotImplemented

    def __hash__(self) -> int:
        # Computed lazily: values such as ColumnDef are hashable, but callers
        # may store unhashable defaults and never need the hash.
        if self._hash is None:
            self._hash = hash(frozenset(self._dict.items()))
        return self._hash

    def __reduce__(self) -> tuple[Any, ...]:
        return (type(self), (self._dict,))


@final
class AliasAllocator:
    """Process-wide, monotonically increasing table alias counter.

    Values start at 0 and are never reused or reset. :meth:`allocate` also
    skips values whose ``name + counter`` alias was already handed out (table
    ``t1`` at 0 and table ``t`` at 10 would both give ``t10``), so every
    table alias in a running process is unique.
    """

    __slots__ = ("_counter", "_issued", "_lock")

    def __init__(self) -> None:
        self._counter = count()
        self._issued: set[str] = set()
        self._lock = threading.Lock()

    def next_alias(self) -> int:
        with self._lock:
            return next(self._counter)

    def allocate(self, name: str) -> str:
        """Return the next unused ``f"{name}{n}"`` alias."""
        with self._lock:
            while True:
                alias = f"{name}{next(self._counter)}"
                if alias not in self._issued:
                    self._issued.add(alias)
                    return alias


DEFAULT_ALIASES: AliasAllocator = AliasAllocator()
