"""Write-once containers for server metadata.

Capability statements and resolved operation definitions are fetched at most
once per server. These containers make that rule explicit: a `SetOnce` refuses
a second assignment and an `AppendOnlyDict` keeps the first value stored for a
key.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Generic, TypeVar

from fhirsession.shared.exceptions import AlreadySetError

T = TypeVar("T")
K = TypeVar("K")
V = TypeVar("V")


class SetOnce(Generic[T]):
    """A cell that can be assigned exactly once."""

    __slots__ = ("_value", "_is_set", "_name")

    def __init__(self, name: str = "value") -> None:
        self._name = name
        self._value: T | None = None
        self._is_set = False

    @property
    def is_set(self) -> bool:
        return self._is_set

    def get(self) -> T | None:
        return self._value

    def set(self, value: T) -> T:
        if self._is_set:
            raise AlreadySetError(f"{self._name} has already been set")
        self._value = value
        self._is_set = True
        return value

    def __repr__(self) -> str:
        if not self._is_set:
            return f"SetOnce({self._name}, unset)"
        return f"SetOnce({self._name}={self._value!r})"


class AppendOnlyDict(Mapping[K, V]):
    """A mapping that only grows; existing entries are never overwritten."""

    def __init__(self) -> None:
        self._data: dict[K, V] = {}

    def insert(self, key: K, value: V) -> V:
        """Store `value` under `key` unless the key is present.

        Returns:
            The value stored under `key` after the call, which is the earlier
            value when the key already existed.
        """
        return self._data.setdefault(key, value)

    def __getitem__(self, key: K) -> V:
        return self._data[key]

    def __iter__(self) -> Iterator[K]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"AppendOnlyDict({self._data!r})"
