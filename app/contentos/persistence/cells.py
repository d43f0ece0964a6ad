"""
Purpose: Reactive state containers bound to one store key each.
Why: The workflow UI mutates state freely; each change must land in the store
without the UI knowing about persistence.

ObservableCell is a plain value + subscribe + set container with no UI dependency.
PersistedCell adds the store: the initial value is read once at creation, and
the write-through is an ordinary subscriber, so it can be tested without Streamlit.
"""

from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar, Union

from ..interfaces import KeyValueStore

logger = logging.getLogger("ContentOS.Cells")

T = TypeVar("T")
Listener = Callable[[Any], None]


@dataclass(frozen=True)
class Codec(Generic[T]):
    """Maps a cell value to and from its JSON-compatible stored form."""

    encode: Callable[[T], Any]
    decode: Callable[[Any], T]


def _identity(value: Any) -> Any:
    return value


JSON_CODEC: Codec[Any] = Codec(encode=_identity, decode=_identity)


def model_codec(decode: Callable[[Any], T]) -> Codec[T]:
    """Codec for objects exposing to_dict(); decode must accept untrusted data."""
    return Codec(encode=lambda value: value.to_dict(), decode=decode)


def model_list_codec(decode: Callable[[Any], list]) -> Codec[list]:
    return Codec(encode=lambda items: [item.to_dict() for item in items], decode=decode)


class ObservableCell(Generic[T]):
    def __init__(self, value: T) -> None:
        self._value = value
        self._listeners: list[Listener] = []

    def get(self) -> T:
        return self._value

    def set(self, value: Union[T, Callable[[T], T]]) -> T:
        """Replace the value, or apply an updater over the current value."""
        if callable(value):
            value = value(self._value)
        self._value = value
        self._notify()
        return value

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._value)


class PersistedCell(ObservableCell[T]):
    def __init__(
        self,
        store: KeyValueStore,
        key: str,
        default_factory: Callable[[], T],
        codec: Optional[Codec[T]] = None,
    ) -> None:
        self.store = store
        self.key = key
        self.default_factory = default_factory
        self.codec: Codec[T] = codec or JSON_CODEC
        self._write_suspended = False
        super().__init__(self._load())
        self.subscribe(self._write_through)

    def _load(self) -> T:
        raw = self.store.read(self.key)
        if raw is None:
            return self.default_factory()
        try:
            return self.codec.decode(json.loads(raw))
        except Exception as e:
            logger.debug("Ignoring unreadable value under %s: %s", self.key, e)
            return self.default_factory()

    def serialize(self, value: Optional[T] = None) -> Optional[str]:
        try:
            return json.dumps(
                self.codec.encode(self._value if value is None else value),
                ensure_ascii=False,
            )
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning("Could not serialize %s: %s", self.key, e)
            return None

    def _write_through(self, value: T) -> None:
        if self._write_suspended:
            return
        payload = self.serialize(value)
        if payload is not None:
            self.store.write(self.key, payload)

    def reset(self) -> None:
        """Back to the default in memory; the key is removed, not rewritten."""
        self._value = self.default_factory()
        self.store.remove(self.key)
        self._write_suspended = True
        try:
            self._notify()
        finally:
            self._write_suspended = False

    def reload(self) -> T:
        """Re-read the stored value (after something else rewrote the store)."""
        self._value = self._load()
        self._write_suspended = True
        try:
            self._notify()
        finally:
            self._write_suspended = False
        return self._value


def create_cell(
    store: KeyValueStore,
    key: str,
    default_factory: Callable[[], T],
    codec: Optional[Codec[T]] = None,
) -> PersistedCell[T]:
    return PersistedCell(store, key, default_factory, codec)
