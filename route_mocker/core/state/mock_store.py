"""Handler-owned state for stateful mocks.

A ``MockStore`` is created by a test and passed to ``route(..., store=...)``;
the handler receives it as its second argument. It holds arbitrary keyed
state (dot notation for nested keys), counters, and named resource
collections that simulate a backend's create/read/update/delete lifecycle.

All operations are synchronous. Handlers for one page run on a single event
loop, so every mutation is atomic relative to the other handlers of that
page.
"""

import copy
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import urlsplit

from ...utils.logging import get_logger

logger = get_logger(__name__)

Validator = Callable[[Dict[str, Any]], Optional[str]]


class ResourceCollection:
    """In-memory collection of JSON objects keyed by an integer id.

    Ids are issued from a counter that only moves forward, so an id is
    never handed out twice during the collection's lifetime, even after
    the item that held it is deleted.
    """

    def __init__(self, name: str,
                 initial_items: Optional[Iterable[Dict[str, Any]]] = None,
                 id_field: str = "id"):
        self.name = name
        self.id_field = id_field
        self._items: List[Dict[str, Any]] = [dict(item) for item in initial_items or []]

        existing_ids = [
            item[id_field] for item in self._items
            if isinstance(item.get(id_field), int)
        ]
        self._next_id = max(existing_ids, default=0) + 1

    @property
    def next_id(self) -> int:
        return self._next_id

    def list(self) -> List[Dict[str, Any]]:
        """Current committed items, in insertion order."""
        return [dict(item) for item in self._items]

    def get(self, item_id: int) -> Optional[Dict[str, Any]]:
        index = self._index_of(item_id)
        return dict(self._items[index]) if index is not None else None

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Store ``data`` under a newly issued id and return the item.

        A client supplied id is overwritten.
        """
        item = {**data, self.id_field: self._next_id}
        self._next_id += 1
        self._items.append(item)
        logger.debug(f"Created {self.name} item {item[self.id_field]}")
        return dict(item)

    def update(self, item_id: int, changes: Dict[str, Any],
               replace: bool = False) -> Optional[Dict[str, Any]]:
        """Merge (or with ``replace`` overwrite) an item's fields.

        Returns:
            The updated item, or None if no item has ``item_id``
        """
        index = self._index_of(item_id)
        if index is None:
            return None

        base = {} if replace else self._items[index]
        item = {**base, **changes, self.id_field: item_id}
        self._items[index] = item
        logger.debug(f"Updated {self.name} item {item_id}")
        return dict(item)

    def delete(self, item_id: int) -> Optional[Dict[str, Any]]:
        """Remove an item; returns it, or None if it did not exist."""
        index = self._index_of(item_id)
        if index is None:
            return None
        logger.debug(f"Deleted {self.name} item {item_id}")
        return self._items.pop(index)

    def _index_of(self, item_id: int) -> Optional[int]:
        for index, item in enumerate(self._items):
            if item.get(self.id_field) == item_id:
                return index
        return None

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return self._index_of(item_id) is not None


class MockStore:
    """Keyed state shared by the handlers it is registered with."""

    def __init__(self, name: str = "default", initial: Optional[Dict[str, Any]] = None):
        """Initialize the store.

        Args:
            name: Name used in log messages
            initial: Initial keyed state
        """
        self.name = name
        self._state: Dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._collections: Dict[str, ResourceCollection] = {}

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value; ``key`` supports dot notation for nested access."""
        current = self._state
        try:
            for part in key.split('.'):
                current = current[part]
            return current
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """Set a value; ``key`` supports dot notation for nested setting."""
        parts = key.split('.')
        current = self._state
        for part in parts[:-1]:
            if part not in current:
                current[part] = {}
            current = current[part]
        current[parts[-1]] = value

    def increment(self, key: str, amount: int = 1) -> int:
        """Add ``amount`` to a counter (starting at 0) and return it."""
        value = self.get(key, 0) + amount
        self.set(key, value)
        return value

    def append(self, key: str, value: Any) -> None:
        current = self.get(key)
        if current is None:
            current = []
            self.set(key, current)
        elif not isinstance(current, list):
            raise ValueError(f"Cannot append to non-list value at key: {key}")
        current.append(value)

    def collection(self, name: str,
                   initial_items: Optional[Iterable[Dict[str, Any]]] = None,
                   id_field: str = "id") -> ResourceCollection:
        """Get the named collection, creating it on first use.

        ``initial_items`` only applies when the collection is created.
        """
        if name not in self._collections:
            self._collections[name] = ResourceCollection(name, initial_items, id_field)
        return self._collections[name]

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy of keyed state and collections, for assertions."""
        data = copy.deepcopy(self._state)
        data["collections"] = {
            name: collection.list() for name, collection in self._collections.items()
        }
        return data

    def reset(self) -> None:
        self._state.clear()
        self._collections.clear()
        logger.debug(f"Mock store {self.name} reset")


class CrudResource:
    """Route handler serving a store collection as a REST resource.

    Register it with the store it should use, for example::

        store = MockStore()
        store.collection("items", [{"id": 1, "name": "First"}])
        page.route("**/api/items{,/*}", CrudResource("items"), store=store)

    Collection URL: ``GET`` lists, ``POST`` creates (201). Item URL
    (``<base_path>/<id>``): ``GET``, ``PUT`` (replace), ``PATCH`` (merge)
    and ``DELETE``. Unknown ids answer 404, never raise.
    """

    ITEM_METHODS = ("GET", "PUT", "PATCH", "DELETE")
    COLLECTION_METHODS = ("GET", "POST")

    def __init__(self, collection: str,
                 base_path: Optional[str] = None,
                 validator: Optional[Validator] = None):
        """Initialize the resource.

        Args:
            collection: Name of the store collection to serve
            base_path: URL path of the collection, defaults to /api/<collection>
            validator: Called with create/update payloads; a returned string
                rejects the request with 400 and that message
        """
        self.collection_name = collection
        self.base_path = (base_path or f"/api/{collection}").rstrip("/")
        self.validator = validator

    def __call__(self, context: Any, store: MockStore) -> None:
        collection = store.collection(self.collection_name)
        request = context.request
        path = urlsplit(request.url).path.rstrip("/")

        if path.endswith(self.base_path):
            self._handle_collection(context, collection)
            return

        marker = self.base_path + "/"
        tail = path.rsplit(marker, 1)[-1] if marker in path else None
        if tail is None or "/" in tail:
            context.fulfill(status=404, json={"error": "Not found"})
            return

        try:
            item_id = int(tail)
        except ValueError:
            context.fulfill(status=404, json={"error": "Not found"})
            return

        self._handle_item(context, collection, item_id)

    def _handle_collection(self, context: Any, collection: ResourceCollection) -> None:
        method = context.request.method
        if method == "GET":
            context.fulfill(status=200, json=collection.list())
        elif method == "POST":
            payload = self._read_payload(context)
            if payload is None:
                return
            context.fulfill(status=201, json=collection.create(payload))
        else:
            self._method_not_allowed(context, self.COLLECTION_METHODS)

    def _handle_item(self, context: Any, collection: ResourceCollection, item_id: int) -> None:
        method = context.request.method
        if method not in self.ITEM_METHODS:
            self._method_not_allowed(context, self.ITEM_METHODS)
            return

        if method == "GET":
            item = collection.get(item_id)
        elif method == "DELETE":
            item = collection.delete(item_id)
        else:
            if item_id not in collection:
                item = None
            else:
                payload = self._read_payload(context)
                if payload is None:
                    return
                item = collection.update(item_id, payload, replace=(method == "PUT"))

        if item is None:
            context.fulfill(status=404, json={"error": "Not found"})
        elif method == "DELETE":
            context.fulfill(status=200, json={"message": "Deleted"})
        else:
            context.fulfill(status=200, json=item)

    def _read_payload(self, context: Any) -> Optional[Dict[str, Any]]:
        """Parse and validate the JSON body, answering 400 on failure."""
        try:
            payload = context.request.post_data_json()
        except ValueError:
            payload = None

        if not isinstance(payload, dict):
            context.fulfill(status=400, json={"error": "Invalid JSON body"})
            return None

        if self.validator is not None:
            message = self.validator(payload)
            if message:
                context.fulfill(status=400, json={"error": "Validation Error", "message": message})
                return None

        return payload

    def _method_not_allowed(self, context: Any, allowed: Iterable[str]) -> None:
        context.fulfill(
            status=405,
            headers={"Allow": ", ".join(allowed)},
            json={"error": "Method not allowed"},
        )
