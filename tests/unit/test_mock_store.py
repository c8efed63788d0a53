"""Tests for handler-owned mock state."""

import pytest

from route_mocker.core.interception.request_context import RequestContext
from route_mocker.core.state.mock_store import CrudResource, MockStore, ResourceCollection


class TestMockStore:
    """Keyed state and counters."""

    def test_get_and_set_with_dot_notation(self):
        store = MockStore(initial={"user": {"name": "alice"}})

        store.set("user.role", "admin")
        store.set("flags.beta.enabled", True)

        assert store.get("user.name") == "alice"
        assert store.get("user.role") == "admin"
        assert store.get("flags.beta.enabled") is True
        assert store.get("user.missing", "n/a") == "n/a"
        assert store.get("user.name.first") is None

    def test_initial_state_is_copied(self):
        initial = {"items": [1]}
        store = MockStore(initial=initial)

        store.append("items", 2)

        assert initial == {"items": [1]}
        assert store.get("items") == [1, 2]

    def test_increment(self):
        store = MockStore()

        assert store.increment("calls") == 1
        assert store.increment("calls", 5) == 6

    def test_append_to_non_list_raises(self):
        store = MockStore(initial={"name": "x"})

        with pytest.raises(ValueError):
            store.append("name", "y")

    def test_snapshot_is_independent(self):
        store = MockStore(initial={"count": 1})
        store.collection("items", [{"id": 1}])

        snapshot = store.snapshot()
        snapshot["collections"]["items"].append({"id": 99})
        store.increment("count")

        assert snapshot["count"] == 1
        assert snapshot["collections"] == {"items": [{"id": 1}, {"id": 99}]}
        assert store.snapshot()["collections"] == {"items": [{"id": 1}]}

    def test_reset(self):
        store = MockStore(initial={"count": 1})
        store.collection("items", [{"id": 1}])

        store.reset()

        assert store.snapshot() == {"collections": {}}


class TestResourceCollection:
    """Collections with monotonic ids."""

    def test_next_id_follows_initial_items(self):
        collection = ResourceCollection("items", [{"id": 3}, {"id": 7}, {"id": "x"}])

        assert collection.next_id == 8

    def test_ids_are_never_reused(self):
        collection = ResourceCollection("items")
        first = collection.create({"name": "a"})
        collection.delete(first["id"])

        second = collection.create({"name": "b", "id": 1})

        assert first["id"] == 1
        assert second["id"] == 2

    def test_update_merges_or_replaces(self):
        collection = ResourceCollection("items", [{"id": 1, "name": "a", "tag": "x"}])

        assert collection.update(1, {"name": "b"}) == {"id": 1, "name": "b", "tag": "x"}
        assert collection.update(1, {"name": "c"}, replace=True) == {"id": 1, "name": "c"}
        assert collection.update(2, {"name": "d"}) is None

    def test_returned_items_are_copies(self):
        collection = ResourceCollection("items", [{"id": 1, "name": "a"}])

        collection.get(1)["name"] = "changed"

        assert collection.get(1)["name"] == "a"


def handle(resource, store, make_request, fake_transport, method, path, body=None):
    """Run ``resource`` for one request and return the resolved context."""
    context = RequestContext(make_request(method, path, body=body), fake_transport)
    resource(context, store)
    assert context.resolved
    return context


class TestCrudResource:
    """REST semantics over a store collection."""

    @pytest.fixture
    def store(self):
        store = MockStore("crud")
        store.collection("items", [{"id": 1, "name": "First", "done": False}])
        return store

    @pytest.fixture
    def run(self, store, make_request, fake_transport):
        resource = CrudResource("items", validator=lambda data: None if data.get("name") else "name is required")

        def _run(method, path, body=None):
            response = handle(resource, store, make_request, fake_transport, method, path, body).resolution.response
            return response.status, response.json()
        return _run

    def test_list(self, run):
        assert run("GET", "/api/items") == (200, [{"id": 1, "name": "First", "done": False}])

    def test_create_issues_next_id(self, run, store):
        status, body = run("POST", "/api/items", {"name": "Second"})

        assert status == 201
        assert body == {"name": "Second", "id": 2}
        assert len(store.collection("items")) == 2

    def test_create_validation_error(self, run, store):
        status, body = run("POST", "/api/items", {"done": True})

        assert status == 400
        assert body == {"error": "Validation Error", "message": "name is required"}
        assert len(store.collection("items")) == 1

    def test_invalid_json_body(self, run):
        status, body = run("POST", "/api/items", "not json")

        assert status == 400
        assert body == {"error": "Invalid JSON body"}

    def test_get_item(self, run):
        assert run("GET", "/api/items/1") == (200, {"id": 1, "name": "First", "done": False})

    def test_patch_merges_and_put_replaces(self, run):
        assert run("PATCH", "/api/items/1", {"name": "Renamed"}) == (
            200, {"id": 1, "name": "Renamed", "done": False}
        )
        assert run("PUT", "/api/items/1", {"name": "Replaced"}) == (200, {"id": 1, "name": "Replaced"})

    def test_delete_then_missing(self, run):
        assert run("DELETE", "/api/items/1") == (200, {"message": "Deleted"})
        assert run("GET", "/api/items/1") == (404, {"error": "Not found"})
        assert run("DELETE", "/api/items/1") == (404, {"error": "Not found"})

    @pytest.mark.parametrize("method", ["GET", "PUT", "PATCH", "DELETE"])
    def test_unknown_id_is_404(self, run, method):
        assert run(method, "/api/items/42", {"name": "x"}) == (404, {"error": "Not found"})

    def test_non_numeric_id_is_404(self, run):
        assert run("GET", "/api/items/abc") == (404, {"error": "Not found"})

    def test_method_not_allowed(self, store, make_request, fake_transport):
        context = handle(CrudResource("items"), store, make_request, fake_transport, "DELETE", "/api/items")

        response = context.resolution.response
        assert response.status == 405
        assert response.headers["Allow"] == "GET, POST"

    def test_deleted_id_is_not_reissued(self, run):
        run("POST", "/api/items", {"name": "Second"})
        run("DELETE", "/api/items/2")

        status, body = run("POST", "/api/items", {"name": "Third"})

        assert (status, body["id"]) == (201, 3)
