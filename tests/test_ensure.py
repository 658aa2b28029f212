"""Tests for the idempotent get-or-create helper."""

import pytest

from shir_deployer.ensure import ensure
from shir_deployer.errors import LookupFailure
from shir_deployer.resources import ResourceDescriptor, ResourceKind


class Store:
    """Minimal provider keeping one named resource."""

    def __init__(self, existing: ResourceDescriptor | None = None) -> None:
        self.resource = existing
        self.lookups = 0
        self.creates = 0

    def lookup(self) -> ResourceDescriptor | None:
        self.lookups += 1
        return self.resource

    def create(self) -> ResourceDescriptor:
        self.creates += 1
        self.resource = ResourceDescriptor(
            name="rg-shir-dev",
            kind=ResourceKind.RESOURCE_GROUP,
            attributes={"id": "/subscriptions/x/resourceGroups/rg-shir-dev"},
        )
        return self.resource


class TestEnsure:
    """Tests for ensure()."""

    def test_creates_when_absent(self) -> None:
        """Test that a confirmed-absent resource is created once."""
        store = Store()

        result = ensure(store.lookup, store.create)

        assert store.creates == 1
        assert result.name == "rg-shir-dev"
        assert result.resource_id == "/subscriptions/x/resourceGroups/rg-shir-dev"

    def test_returns_existing_unchanged(self) -> None:
        """Test that an existing resource is returned without calling create."""
        existing = ResourceDescriptor(name="kv-secret", kind=ResourceKind.SECRET)
        store = Store(existing)

        result = ensure(store.lookup, store.create, kind=ResourceKind.SECRET, name="kv-secret")

        assert result is existing
        assert store.creates == 0

    def test_idempotent(self) -> None:
        """Test that a second ensure creates nothing and returns an equal descriptor."""
        store = Store()

        first = ensure(store.lookup, store.create)
        second = ensure(store.lookup, store.create)

        assert first == second
        assert store.creates == 1
        assert store.lookups == 2

    def test_lookup_failure_not_treated_as_absent(self) -> None:
        """Test that a lookup failure propagates and create is never called."""
        store = Store()

        def failing_lookup() -> ResourceDescriptor | None:
            raise LookupFailure("403 Forbidden", resource="rg-shir-dev")

        with pytest.raises(LookupFailure):
            ensure(failing_lookup, store.create)

        assert store.creates == 0

    def test_create_failure_propagates(self) -> None:
        """Test that create errors reach the caller."""

        def failing_create() -> ResourceDescriptor:
            raise RuntimeError("quota exceeded")

        with pytest.raises(RuntimeError, match="quota exceeded"):
            ensure(lambda: None, failing_create)
