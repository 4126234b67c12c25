"""Tests for the keyed item store and item invariants."""

from dataclasses import replace

import pytest

from models.analysis_item import ImageStatus, MappingStatus, TrackableItem
from services.item_store import ItemStore


def _item(item_id: str, **overrides) -> TrackableItem:
    fields = {"id": item_id, "filename": f"{item_id}.png", "content": b"bytes", "mime_type": "image/png"}
    fields.update(overrides)
    return TrackableItem(**fields)


def test_new_items_start_pending_and_unverified():
    item = _item("a")
    assert item.status is ImageStatus.PENDING
    assert item.mapping_status is MappingStatus.UNVERIFIED


def test_success_requires_result():
    with pytest.raises(ValueError):
        _item("a", status=ImageStatus.SUCCESS)


def test_error_requires_message():
    with pytest.raises(ValueError):
        _item("a", status=ImageStatus.ERROR)
    assert _item("a", status=ImageStatus.ERROR, error="boom").error == "boom"


def test_items_are_immutable():
    item = _item("a")
    with pytest.raises(AttributeError):
        item.id = "b"


def test_update_replaces_whole_item_and_keeps_old_snapshot():
    store = ItemStore()
    original = store.add(_item("a"))
    before = store.snapshot()

    updated = store.update("a", lambda item: replace(item, status=ImageStatus.LOADING))

    assert updated.status is ImageStatus.LOADING
    assert original.status is ImageStatus.PENDING
    assert before[0].status is ImageStatus.PENDING
    assert store.get("a").status is ImageStatus.LOADING


def test_update_rejects_id_change():
    store = ItemStore()
    store.add(_item("a"))
    with pytest.raises(ValueError):
        store.update("a", lambda item: replace(item, id="b"))


def test_update_of_missing_item_is_ignored():
    store = ItemStore()
    assert store.update("missing", lambda item: item) is None
    assert store.update_many(["missing"], lambda item: item) == []


def test_duplicate_ids_are_rejected():
    store = ItemStore()
    store.add(_item("a"))
    with pytest.raises(ValueError):
        store.add(_item("a"))


def test_remove_releases_preview():
    store = ItemStore()
    store.add(_item("a"), preview=b"png")
    assert store.preview("a") == b"png"

    removed = store.remove("a")

    assert removed.id == "a"
    assert "a" not in store
    with pytest.raises(KeyError):
        store.preview("a")
    with pytest.raises(KeyError):
        store.remove("a")


def test_snapshot_order_and_status_queries():
    store = ItemStore()
    store.add(_item("a"))
    store.add(_item("b", status=ImageStatus.ERROR, error="failed"))
    store.add(_item("c"))

    assert [item.id for item in store.snapshot()] == ["a", "b", "c"]
    assert [item.id for item in store.with_status(ImageStatus.PENDING)] == ["a", "c"]
    assert store.status_counts() == {"pending": 2, "loading": 0, "success": 0, "error": 1}
    assert len(store) == 3
