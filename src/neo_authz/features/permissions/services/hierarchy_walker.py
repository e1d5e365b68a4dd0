"""Upward traversal of resource hierarchy edges."""

import logging
from typing import AsyncIterator, Optional, Set

from ....config.constants import HierarchyLimits
from ....core.exceptions import InvalidInputError
from ..entities.permission import ResourceRef
from ..entities.protocols import StoreClient

logger = logging.getLogger(__name__)


class HierarchyWalker:
    """Walks parent edges from a resource instance towards the root.

    The walk is iterative with an explicit visited set and hop counter.
    Each call to ``walk`` starts fresh; no traversal state is kept on the
    walker, so one instance serves any number of concurrent resolutions.
    """

    def __init__(self, store: StoreClient, max_depth: int = HierarchyLimits.DEFAULT_MAX_DEPTH):
        if max_depth <= 0:
            raise InvalidInputError(f"max_depth must be positive, got {max_depth}")
        self.store = store
        self.max_depth = max_depth

    async def walk(
        self,
        resource_type: str,
        resource_id: str,
        max_depth: Optional[int] = None
    ) -> AsyncIterator[ResourceRef]:
        """Yield ancestors of (resource_type, resource_id), nearest first.

        Stops when there is no parent edge, after ``max_depth`` hops, or on
        reaching an instance already visited. The starting instance itself
        is never yielded. Store errors propagate to the caller.
        """
        limit = self.max_depth if max_depth is None else max_depth
        if limit <= 0:
            raise InvalidInputError(f"max_depth must be positive, got {limit}")

        current = ResourceRef(resource_type, resource_id)
        visited: Set[ResourceRef] = {current}
        depth = 0

        while depth < limit:
            parent = await self.store.get_parent_resource(current.resource_type, current.resource_id)
            if parent is None:
                return

            if parent in visited:
                logger.warning(f"Cycle in resource hierarchy at {parent} (reached from {current})")
                return

            depth += 1
            visited.add(parent)
            yield parent
            current = parent

        logger.debug(f"Hierarchy walk from {resource_type}/{resource_id} stopped at depth limit {limit}")
