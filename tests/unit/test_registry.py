"""Tests for the handler registry."""

import pytest

from route_mocker.core.errors import InvalidPatternError, PatternEvaluationError
from route_mocker.core.interception.registry import HandlerRegistry, RouteScope
from route_mocker.core.state.mock_store import MockStore


def noop(context):
    return None


@pytest.fixture
def registry():
    return HandlerRegistry(RouteScope.PAGE, "page-1", base_url="https://app.test")


class TestRegistration:
    """Registering and removing handlers."""

    def test_register_returns_handle(self, registry):
        handle = registry.register("**/api/items", noop)

        assert handle.scope is RouteScope.PAGE
        assert handle.owner_id == "page-1"
        assert handle.active
        assert registry.registrations == (handle,)

    def test_register_rejects_non_callable(self, registry):
        with pytest.raises(TypeError):
            registry.register("**/api", "not a handler")

    def test_register_rejects_invalid_times(self, registry):
        with pytest.raises(ValueError):
            registry.register("**/api", noop, times=0)

    def test_register_rejects_invalid_pattern(self, registry):
        with pytest.raises(InvalidPatternError):
            registry.register("", noop)

        assert len(registry) == 0

    def test_unregister_preserves_order_of_remaining(self, registry):
        first = registry.register("**/a", noop)
        second = registry.register("**/b", noop)
        third = registry.register("**/c", noop)

        assert registry.unregister(second) is True
        assert registry.registrations == (first, third)
        assert not second.active

    def test_unregister_unknown_handle(self, registry):
        other = HandlerRegistry(RouteScope.PAGE, "page-2")
        handle = other.register("**/a", noop)

        assert registry.unregister(handle) is False
        assert handle.active

    def test_unregister_pattern_by_source_and_callback(self, registry):
        def other(context):
            return None

        registry.register("**/api/items", noop)
        registry.register("**/api/items", other)
        registry.register("**/api/users", noop)

        assert registry.unregister_pattern("**/api/items", other) == 1
        assert registry.unregister_pattern("**/api/items") == 1
        assert [r.pattern.source for r in registry.registrations] == ["**/api/users"]

    def test_clear_deactivates_everything(self, registry):
        handles = [registry.register("**/a", noop), registry.register("**/b", noop)]

        assert registry.clear() == 2
        assert len(registry) == 0
        assert all(not h.active for h in handles)


class TestMatching:
    """Ordering and filtering of matches."""

    def test_newest_registration_first(self, registry):
        broad = registry.register("**/api/**", noop)
        specific = registry.register("**/api/items", noop)

        matches = registry.match("https://app.test/api/items", "GET")

        assert matches == [specific, broad]

    def test_method_filter(self, registry):
        only_post = registry.register("**/api/items", noop, method="post")
        any_method = registry.register("**/api/items", noop)
        reads = registry.register("**/api/items", noop, method=["GET", "HEAD"])

        assert registry.match("https://app.test/api/items", "GET") == [reads, any_method]
        assert registry.match("https://app.test/api/items", "POST") == [any_method, only_post]

    def test_relative_patterns_use_base_url(self, registry):
        handle = registry.register("/api/items", noop)

        assert registry.match("https://app.test/api/items", "GET") == [handle]
        assert registry.match("https://elsewhere.test/api/items", "GET") == []

    def test_times_limits_matches(self, registry):
        handle = registry.register("**/api/items", noop, times=2)

        for _ in range(2):
            assert registry.match("https://app.test/api/items", "GET") == [handle]
            handle.consume()

        assert handle.exhausted
        assert registry.match("https://app.test/api/items", "GET") == []

    def test_prune_exhausted(self, registry):
        once = registry.register("**/api/items", noop, times=1)
        forever = registry.register("**/api/items", noop)
        once.consume()

        registry.prune_exhausted()

        assert registry.registrations == (forever,)
        assert not once.active

    def test_predicate_error_raises_without_handler(self, registry):
        registry.register(lambda url: url.path.missing, noop)

        with pytest.raises(PatternEvaluationError) as exc_info:
            registry.match("https://app.test/api", "GET")

        assert isinstance(exc_info.value.original, AttributeError)

    def test_predicate_error_skips_registration_with_handler(self, registry):
        errors = []
        good = registry.register("**/api", noop)
        registry.register(lambda url: 1 / 0, noop)

        matches = registry.match("https://app.test/api", "GET", on_error=errors.append)

        assert matches == [good]
        assert len(errors) == 1
        assert errors[0].url == "https://app.test/api"


class TestInvocation:
    """Calling registered handlers."""

    def test_invoke_without_store(self, registry):
        calls = []
        handle = registry.register("**/a", lambda ctx: calls.append(ctx))

        handle.invoke("ctx")

        assert calls == ["ctx"]

    def test_invoke_passes_bound_store(self, registry):
        store = MockStore({"count": 0})
        calls = []
        handle = registry.register("**/a", lambda ctx, s: calls.append((ctx, s)), store=store)

        handle.invoke("ctx")

        assert calls == [("ctx", store)]

    def test_describe(self, registry):
        handle = registry.register("**/api", noop, method=["POST", "GET"])

        assert handle.describe() == "page:GET,POST **/api"
