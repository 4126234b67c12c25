"""Simple in-memory store for uploaded scans and their previews."""

from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional, Tuple

from models.analysis_item import ImageStatus, TrackableItem

ItemUpdate = Callable[[TrackableItem], TrackableItem]


class ItemStore:
    """Keyed collection of immutable `TrackableItem` snapshots.

    Every change replaces a whole item through a pure update function. The
    store is meant to be written from a single event loop only.
    """

    def __init__(self) -> None:
        self._items: Dict[str, TrackableItem] = {}
        self._previews: Dict[str, bytes] = {}

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def add(self, item: TrackableItem, preview: Optional[bytes] = None) -> TrackableItem:
        """Insert a new item, keeping its preview bytes alongside."""
        if item.id in self._items:
            raise ValueError(f"Item {item.id} already exists")
        self._items[item.id] = item
        if preview is not None:
            self._previews[item.id] = preview
        return item

    def get(self, item_id: str) -> TrackableItem:
        """Return an item or raise KeyError if missing."""
        item = self._items.get(item_id)
        if item is None:
            raise KeyError(f"Item {item_id} not found")
        return item

    def find(self, item_id: str) -> Optional[TrackableItem]:
        return self._items.get(item_id)

    def update(self, item_id: str, update: ItemUpdate) -> Optional[TrackableItem]:
        """Replace an item with `update(item)`; missing ids are ignored."""
        current = self._items.get(item_id)
        if current is None:
            return None
        updated = update(current)
        if updated.id != item_id:
            raise ValueError(f"Update changed the id of item {item_id}")
        self._items[item_id] = updated
        return updated

    def update_many(self, item_ids: Iterable[str], update: ItemUpdate) -> List[TrackableItem]:
        """Apply `update` to each listed item that still exists."""
        updated = []
        for item_id in item_ids:
            item = self.update(item_id, update)
            if item is not None:
                updated.append(item)
        return updated

    def remove(self, item_id: str) -> TrackableItem:
        """Delete an item and release its preview."""
        item = self.get(item_id)
        del self._items[item_id]
        self._previews.pop(item_id, None)
        return item

    def preview(self, item_id: str) -> bytes:
        """Return the preview bytes or raise KeyError if missing."""
        self.get(item_id)
        preview = self._previews.get(item_id)
        if preview is None:
            raise KeyError(f"Preview for item {item_id} not available")
        return preview

    def snapshot(self) -> Tuple[TrackableItem, ...]:
        """Return all items in upload order."""
        return tuple(self._items.values())

    def with_status(self, status: ImageStatus) -> List[TrackableItem]:
        return [item for item in self._items.values() if item.status is status]

    def status_counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in ImageStatus}
        for item in self._items.values():
            counts[item.status.value] += 1
        return counts
