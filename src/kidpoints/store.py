"""In-memory application state shared across a parent's page loads."""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

Record = Dict[str, Any]
Loader = Callable[[], Tuple[Optional[Record], Sequence[Record]]]


@dataclass(slots=True)
class AppState:
    """Snapshot of the signed-in parent, their children and the selection."""

    user: Optional[Record] = None
    children: List[Record] = field(default_factory=list)
    selected_child: Optional[Record] = None
    is_loading: bool = False
    error: Optional[str] = None


class AppStore:
    """Mutable cache of :class:`AppState` with the usual update helpers."""

    __slots__ = ("_state", "_lock")

    def __init__(self) -> None:
        self._state = AppState()
        self._lock = Lock()

    @property
    def state(self) -> AppState:
        return self._state

    def set_user(self, user: Optional[Record]) -> None:
        self._state.user = deepcopy(user)

    def set_children(self, children: Sequence[Record]) -> None:
        self._state.children = [deepcopy(child) for child in children]

    def set_selected_child(self, child: Optional[Record]) -> None:
        self._state.selected_child = deepcopy(child)

    def select_child_id(self, child_id: Optional[int]) -> Optional[Record]:
        """Select a cached child by id, clearing the selection when unknown."""

        match = self.find_child(child_id) if child_id is not None else None
        self.set_selected_child(match)
        return self._state.selected_child

    def set_loading(self, is_loading: bool) -> None:
        self._state.is_loading = is_loading

    def set_error(self, error: Optional[str]) -> None:
        self._state.error = error

    def add_child(self, child: Record) -> None:
        self._state.children.append(deepcopy(child))

    def update_child(self, child_id: int, **changes: Any) -> None:
        for child in self._state.children:
            if child.get("id") == child_id:
                child.update(changes)
        selected = self._state.selected_child
        if selected is not None and selected.get("id") == child_id:
            selected.update(changes)

    def remove_child(self, child_id: int) -> None:
        self._state.children = [child for child in self._state.children if child.get("id") != child_id]
        selected = self._state.selected_child
        if selected is not None and selected.get("id") == child_id:
            self._state.selected_child = None

    def find_child(self, child_id: int) -> Optional[Record]:
        for child in self._state.children:
            if child.get("id") == child_id:
                return child
        return None

    def clear(self) -> None:
        self._state = AppState()

    def snapshot(self) -> Record:
        """Return the persisted subset of the state."""

        selected = self._state.selected_child
        return {
            "user": deepcopy(self._state.user),
            "children": deepcopy(self._state.children),
            "selected_child_id": selected.get("id") if selected else None,
        }

    def as_dict(self) -> Record:
        payload = self.snapshot()
        payload.update(
            {
                "selected_child": deepcopy(self._state.selected_child),
                "is_loading": self._state.is_loading,
                "error": self._state.error,
            }
        )
        return payload

    def rehydrate(self, loader: Loader, *, selected_child_id: Optional[int] = None) -> AppState:
        """Reload user and children through ``loader`` and restore the selection.

        The previous selection wins when it still exists, then
        ``selected_child_id``, then the first child. Loader errors are kept in
        ``state.error`` and re-raised.
        """

        with self._lock:
            previous = self._state.selected_child.get("id") if self._state.selected_child else None
            self.set_loading(True)
            self.set_error(None)
            try:
                user, children = loader()
            except Exception as exc:
                self.set_error(str(exc))
                raise
            finally:
                self.set_loading(False)
            self.set_user(user)
            self.set_children(children)
            for candidate in (previous, selected_child_id):
                if candidate is not None and self.find_child(candidate) is not None:
                    self.select_child_id(candidate)
                    break
            else:
                self.set_selected_child(self._state.children[0] if self._state.children else None)
            return self._state


class StoreRegistry:
    """Process-wide map of user id to :class:`AppStore`."""

    def __init__(self) -> None:
        self._stores: Dict[int, AppStore] = {}
        self._lock = Lock()

    def for_user(self, user_id: int) -> AppStore:
        with self._lock:
            store = self._stores.get(user_id)
            if store is None:
                store = AppStore()
                self._stores[user_id] = store
            return store

    def get(self, user_id: int) -> Optional[AppStore]:
        return self._stores.get(user_id)

    def discard(self, user_id: int) -> None:
        with self._lock:
            store = self._stores.pop(user_id, None)
        if store is not None:
            store.clear()

    def clear(self) -> None:
        with self._lock:
            self._stores.clear()


__all__ = ["AppState", "AppStore", "StoreRegistry"]
