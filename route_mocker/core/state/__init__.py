"""Handler-owned mock state."""

from .mock_store import CrudResource, MockStore, ResourceCollection

__all__ = ["CrudResource", "MockStore", "ResourceCollection"]
