from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, TypeVar

_logger = logging.getLogger("parseql")

T = TypeVar('T')

_UNEVALUATED = object()


class Lazy(Generic[T]):
    """Zero-argument callable whose thunk runs at most once.

    Re-entering a thunk while it is running means some type tried to read its
    own fields eagerly during construction; that is a programming error, so it
    raises instead of recursing forever.
    """

    __slots__ = ('_thunk', '_value', '_running')

    def __init__(self, thunk: Callable[[], T]):
        self._thunk = thunk
        self._value: Any = _UNEVALUATED
        self._running = False

    @property
    def evaluated(self) -> bool:
        return self._value is not _UNEVALUATED

    def __call__(self) -> T:
        if self._value is _UNEVALUATED:
            if self._running:
                raise RuntimeError("Lazy thunk re-entered while evaluating")
            self._running = True
            try:
                self._value = self._thunk()
            finally:
                self._running = False
        return self._value


class TypeCache:
    """Per-compilation memo of class name -> type bundle.

    A factory only creates type handles and defers field construction to
    ``Lazy`` thunks, so cyclic references (A -> B -> A) are resolved when the
    thunks run, by which point every bundle involved is cached. A factory that
    looks up its own class name again raises ``RuntimeError`` instead of
    building a second bundle. ``materialize`` runs the pending thunks, which
    may add further entries, until everything is built.
    """

    def __init__(self):
        self._entries: Dict[str, Any] = {}
        self._building: set = set()

    def get_or_create(self, class_name: str, factory: Callable[[], T]) -> T:
        try:
            return self._entries[class_name]
        except KeyError:
            pass
        if class_name in self._building:
            raise RuntimeError(f"type factory for {class_name} re-entered the cache; defer field construction to a Lazy thunk")
        _logger.debug("parseql.cache: building %s", class_name)
        self._building.add(class_name)
        try:
            bundle = factory()
        finally:
            self._building.discard(class_name)
        self._entries[class_name] = bundle
        return bundle

    def get(self, class_name: str) -> Optional[Any]:
        return self._entries.get(class_name)

    def materialize(self) -> List[Any]:
        """Run every pending field thunk; returns the bundles in build order."""
        done: set = set()
        while True:
            pending = [name for name in self._entries if name not in done]
            if not pending:
                break
            for name in pending:
                self._entries[name].materialize()
                done.add(name)
        return list(self._entries.values())

    def clear(self) -> None:
        self._entries.clear()
        self._building.clear()

    def __contains__(self, class_name: object) -> bool:
        return class_name in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
