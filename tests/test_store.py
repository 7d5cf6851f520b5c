import pytest

from kidpoints.store import AppStore, StoreRegistry

USER = {"id": 1, "full_name": "Pat Parent"}
AVA = {"id": 10, "name": "Ava"}
BEN = {"id": 11, "name": "Ben"}


def test_rehydrate_selects_first_child_by_default() -> None:
    store = AppStore()

    state = store.rehydrate(lambda: (USER, [AVA, BEN]))

    assert state.user == USER
    assert [child["id"] for child in state.children] == [10, 11]
    assert state.selected_child["id"] == 10
    assert state.is_loading is False
    assert state.error is None


def test_rehydrate_keeps_previous_selection_when_present() -> None:
    store = AppStore()
    store.rehydrate(lambda: (USER, [AVA, BEN]))
    store.select_child_id(11)

    store.rehydrate(lambda: (USER, [AVA, BEN]), selected_child_id=10)

    assert store.state.selected_child["id"] == 11


def test_rehydrate_falls_back_when_selection_disappears() -> None:
    store = AppStore()
    store.rehydrate(lambda: (USER, [AVA, BEN]))
    store.select_child_id(11)

    store.rehydrate(lambda: (USER, [AVA]))

    assert store.state.selected_child["id"] == 10


def test_rehydrate_uses_persisted_selection() -> None:
    store = AppStore()

    store.rehydrate(lambda: (USER, [AVA, BEN]), selected_child_id=11)

    assert store.snapshot()["selected_child_id"] == 11


def test_rehydrate_records_loader_errors() -> None:
    store = AppStore()

    def broken():
        raise RuntimeError("datastore offline")

    with pytest.raises(RuntimeError):
        store.rehydrate(broken)

    assert store.state.error == "datastore offline"
    assert store.state.is_loading is False


def test_update_child_patches_selected_child() -> None:
    store = AppStore()
    store.rehydrate(lambda: (USER, [AVA, BEN]))

    store.update_child(10, name="Ava Rose")

    assert store.find_child(10)["name"] == "Ava Rose"
    assert store.state.selected_child["name"] == "Ava Rose"
    assert AVA["name"] == "Ava"


def test_remove_child_clears_selection() -> None:
    store = AppStore()
    store.rehydrate(lambda: (USER, [AVA, BEN]))

    store.remove_child(10)

    assert store.state.selected_child is None
    assert [child["id"] for child in store.state.children] == [11]


def test_add_child_and_clear() -> None:
    store = AppStore()
    store.set_user(USER)
    store.add_child(AVA)
    store.set_loading(True)

    assert store.as_dict()["is_loading"] is True
    store.clear()
    assert store.snapshot() == {"user": None, "children": [], "selected_child_id": None}


def test_registry_keeps_one_store_per_user() -> None:
    registry = StoreRegistry()

    first = registry.for_user(1)
    first.set_user(USER)

    assert registry.for_user(1) is first
    assert registry.for_user(2) is not first
    registry.discard(1)
    assert registry.get(1) is None
    assert first.state.user is None
