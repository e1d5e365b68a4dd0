"""Tests for the resource hierarchy walker."""

import pytest

from neo_authz.core.exceptions import InvalidInputError, StoreUnavailableError
from neo_authz.features.permissions.entities import ResourceRef
from neo_authz.features.permissions.services.hierarchy_walker import HierarchyWalker


async def collect(walker, *args, **kwargs):
    return [ref async for ref in walker.walk(*args, **kwargs)]


class TestHierarchyWalker:
    """Test iterative upward traversal."""

    @pytest.fixture
    def chain(self, fake_store):
        """n0 -> n1 -> ... -> n15."""
        for i in range(15):
            fake_store.link(ResourceRef("nodes", f"n{i}"), ResourceRef("nodes", f"n{i + 1}"))
        return fake_store

    @pytest.mark.asyncio
    async def test_walks_to_root(self, fake_store):
        """Ancestors are yielded nearest first, excluding the start."""
        fake_store.link(ResourceRef("documents", "d1"), ResourceRef("folders", "f1"))
        fake_store.link(ResourceRef("folders", "f1"), ResourceRef("workspaces", "w1"))

        ancestors = await collect(HierarchyWalker(fake_store), "documents", "d1")

        assert ancestors == [ResourceRef("folders", "f1"), ResourceRef("workspaces", "w1")]

    @pytest.mark.asyncio
    async def test_no_parent(self, fake_store):
        assert await collect(HierarchyWalker(fake_store), "documents", "orphan") == []

    @pytest.mark.asyncio
    async def test_default_depth_limit(self, chain):
        """The default bound is 10 hops."""
        ancestors = await collect(HierarchyWalker(chain), "nodes", "n0")

        assert len(ancestors) == 10
        assert ancestors[-1] == ResourceRef("nodes", "n10")
        assert chain.calls["get_parent_resource"] == 10

    @pytest.mark.asyncio
    async def test_per_call_depth_override(self, chain):
        ancestors = await collect(HierarchyWalker(chain), "nodes", "n0", max_depth=3)

        assert [a.resource_id for a in ancestors] == ["n1", "n2", "n3"]

    @pytest.mark.asyncio
    async def test_cycle_guard(self, fake_store):
        """A cycle stops the walk at the first repeated instance."""
        fake_store.link(ResourceRef("nodes", "a"), ResourceRef("nodes", "b"))
        fake_store.link(ResourceRef("nodes", "b"), ResourceRef("nodes", "c"))
        fake_store.link(ResourceRef("nodes", "c"), ResourceRef("nodes", "a"))

        ancestors = await collect(HierarchyWalker(fake_store, max_depth=100), "nodes", "a")

        assert [a.resource_id for a in ancestors] == ["b", "c"]

    @pytest.mark.asyncio
    async def test_self_loop(self, fake_store):
        fake_store.link(ResourceRef("nodes", "a"), ResourceRef("nodes", "a"))

        assert await collect(HierarchyWalker(fake_store), "nodes", "a") == []

    @pytest.mark.asyncio
    async def test_lazy(self, chain):
        """The next parent is only fetched when the caller asks for it."""
        walker = HierarchyWalker(chain)
        async for _ in walker.walk("nodes", "n0"):
            break

        assert chain.calls["get_parent_resource"] == 1

    @pytest.mark.asyncio
    async def test_restartable(self, chain):
        """Each walk starts fresh."""
        walker = HierarchyWalker(chain, max_depth=2)

        first = await collect(walker, "nodes", "n0")
        second = await collect(walker, "nodes", "n0")

        assert first == second

    @pytest.mark.asyncio
    async def test_store_errors_propagate(self, fake_store):
        fake_store.fail_on["get_parent_resource"] = StoreUnavailableError("down")

        with pytest.raises(StoreUnavailableError):
            await collect(HierarchyWalker(fake_store), "nodes", "a")

    @pytest.mark.parametrize("depth", [0, -1])
    def test_rejects_non_positive_depth(self, fake_store, depth):
        with pytest.raises(InvalidInputError):
            HierarchyWalker(fake_store, max_depth=depth)
