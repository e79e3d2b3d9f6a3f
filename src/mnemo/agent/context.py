"""Typed scratch context attached to a session runtime."""

from __future__ import annotations

from typing import Any, Generic, TypeVar, overload

T = TypeVar("T")


class ContextKey(Generic[T]):
    """A named slot holding values of one type.

    Example:
        LOCALE = ContextKey("locale", str)
        runtime.set_context(LOCALE, "es-AR")
        runtime.get_context(LOCALE)  # -> "es-AR"
    """

    def __init__(self, name: str, value_type: type[T]) -> None:
        self.name = name
        self.value_type = value_type

    def __repr__(self) -> str:
        return f"ContextKey({self.name!r}, {self.value_type.__name__})"


class ContextSlots:
    """Key to typed-value registry. Keys compare by identity."""

    def __init__(self) -> None:
        self._values: dict[ContextKey[Any], Any] = {}

    def set(self, key: ContextKey[T], value: T) -> None:
        if not isinstance(value, key.value_type):
            raise TypeError(
                f"{key.name} expects {key.value_type.__name__}, "
                f"got {type(value).__name__}"
            )
        self._values[key] = value

    @overload
    def get(self, key: ContextKey[T]) -> T | None: ...

    @overload
    def get(self, key: ContextKey[T], default: T) -> T: ...

    def get(self, key: ContextKey[T], default: T | None = None) -> T | None:
        return self._values.get(key, default)

    def remove(self, key: ContextKey[Any]) -> None:
        self._values.pop(key, None)

    def __contains__(self, key: ContextKey[Any]) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)
