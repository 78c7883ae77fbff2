"""Ordered, id-deduplicated local copy of a remote collection."""
from typing import Any, Callable, Dict, List, Optional, Union

from treesync.errors import MalformedEventError
from treesync.sync.models import created_at_key

Item = Dict[str, Any]


def item_id(item: Item) -> Any:
    if not isinstance(item, dict) or item.get("id") is None:
        raise MalformedEventError(f"Item has no id: {item!r}")
    return item["id"]


class LocalCollection:
    """Keeps at most one item per id, sorted by ``sort_key``.

    Not thread-safe on its own; the owning channel serializes access.
    """

    def __init__(self, sort_key: Callable[[Item], Any] = created_at_key, descending: bool = True):
        self.sort_key = sort_key
        self.descending = descending
        self._items: List[Item] = []

    def replace(self, items: List[Item]) -> None:
        """Swap in a full snapshot. Later duplicates of an id win."""
        by_id: Dict[Any, Item] = {}
        for item in items:
            by_id[item_id(item)] = item
        self._items = list(by_id.values())
        self._sort()

    def add(self, item: Item) -> bool:
        """Insert an item unless its id is already present."""
        key = item_id(item)
        if self._index(key) is not None:
            return False
        self._items.insert(0, item)
        self._sort()
        return True

    def modify(self, item: Item) -> bool:
        """Replace the item with the same id in place. Unknown ids are ignored."""
        index = self._index(item_id(item))
        if index is None:
            return False
        old = self._items[index]
        self._items[index] = item
        if self.sort_key(old) != self.sort_key(item):
            self._sort()
        return True

    def remove(self, item: Union[Item, Any]) -> Optional[Item]:
        """Drop the item with the given id (or the id of the given item)."""
        key = item_id(item) if isinstance(item, dict) else item
        index = self._index(key)
        if index is None:
            return None
        return self._items.pop(index)

    def get(self, key: Any) -> Optional[Item]:
        index = self._index(key)
        return None if index is None else self._items[index]

    def items(self) -> List[Item]:
        return list(self._items)

    def ids(self) -> List[Any]:
        return [item["id"] for item in self._items]

    def _index(self, key: Any) -> Optional[int]:
        for index, item in enumerate(self._items):
            if item.get("id") == key:
                return index
        return None

    def _sort(self) -> None:
        self._items.sort(key=self.sort_key, reverse=self.descending)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: Any) -> bool:
        return self._index(key) is not None
