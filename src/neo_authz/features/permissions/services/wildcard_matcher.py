"""
Wildcard Permission Matcher for neo-authz

Matches a concrete "resource:action" permission against a set of granted
patterns, which may use the wildcard token in either position.
"""
import logging
from typing import Iterable, Iterator, List, Optional, Union

from ..entities.grant import GrantKind, GrantPattern
from ....core.exceptions import InvalidGrantError

logger = logging.getLogger(__name__)

GrantLike = Union[str, GrantPattern]


class WildcardMatcher:
    """
    Wildcard matching over parsed grant patterns.

    Supports patterns like:
    - Exact matches: "users:read" matches "users:read"
    - Wildcard resources: "*:read" matches "users:read", "tenants:read", etc.
    - Wildcard actions: "users:*" matches "users:read", "users:write", etc.
    - Full wildcards: "*:*" matches any permission
    """

    # Evaluation order only affects short-circuiting; the result is an OR.
    _ORDER = (
        GrantKind.EXACT,
        GrantKind.RESOURCE_WILDCARD,
        GrantKind.ACTION_WILDCARD,
        GrantKind.GLOBAL_WILDCARD,
    )

    def match(self, required: str, granted: Iterable[GrantLike]) -> bool:
        """
        Check if any granted pattern satisfies the required permission.

        Args:
            required: Concrete permission being checked (e.g., "users:read")
            granted: Granted patterns, as strings or parsed GrantPatterns

        Returns:
            True if at least one granted pattern covers ``required``

        Raises:
            InvalidGrantError: If ``required`` is malformed or contains a wildcard
        """
        target = GrantPattern.parse(required)
        if target.kind is not GrantKind.EXACT:
            raise InvalidGrantError(f"Required permission must be concrete, got: {required!r}")

        return self.find_match(target.resource_type, target.action, granted) is not None

    def find_match(
        self,
        resource_type: str,
        action: str,
        granted: Iterable[GrantLike]
    ) -> Optional[GrantPattern]:
        """
        Return the first granted pattern covering (resource_type, action).

        Malformed granted strings are skipped with a warning; they can
        never match anything.
        """
        for pattern in self.iter_matches(resource_type, action, granted):
            logger.debug(
                f"Permission match: '{pattern.code}' satisfies '{resource_type}:{action}'"
            )
            return pattern
        return None

    def iter_matches(
        self,
        resource_type: str,
        action: str,
        granted: Iterable[GrantLike]
    ) -> Iterator[GrantPattern]:
        """Yield every granted pattern covering (resource_type, action), exact grants first."""
        by_kind = {kind: [] for kind in self._ORDER}
        for pattern in self._parse_all(granted):
            by_kind[pattern.kind].append(pattern)

        for kind in self._ORDER:
            for pattern in by_kind[kind]:
                if pattern.matches(resource_type, action):
                    yield pattern

    def _parse_all(self, granted: Iterable[GrantLike]) -> List[GrantPattern]:
        patterns = []
        for item in granted:
            if isinstance(item, GrantPattern):
                patterns.append(item)
                continue
            try:
                patterns.append(GrantPattern.parse(item))
            except InvalidGrantError:
                logger.warning(f"Invalid permission format: {item!r}")
        return patterns
