"""
Permission resolution service.

Resolves whether a principal may perform an action on a resource type (and
optionally one instance of it) inside an optional tenant context. Checks run
in a fixed order and the first definitive grant wins:

    SuperAdmin -> tenant -> cache -> role union -> resource-specific ->
    hierarchy -> owner -> wildcard -> delegation -> deny

Time windows are applied inline wherever a matching permission record is
considered. Store failures and deadlines surface as exceptions; only a
completed resolution produces a verdict.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Hashable, Iterable, List, Optional

from ....config.constants import AuditOutcome, CacheKeys, CacheTTL, HierarchyLimits, ResolutionPath
from ....config.settings import AuthzSettings, get_settings
from ....core.exceptions import (
    CacheError,
    CacheKeyError,
    InvalidGrantError,
    InvalidInputError,
    ResolutionTimeoutError,
    ResourceNotFoundError,
    StoreUnavailableError,
)
from ...cache.keys import PermissionCacheKey, build_cache_key
from ..entities.decision import AuditEvent, Decision, PermissionCheck
from ..entities.delegation import Delegation
from ..entities.grant import GrantPattern
from ..entities.permission import EffectivePermission, PermissionRecord
from ..entities.protocols import AuditSink, PermissionCache, StoreClient
from ..entities.time_window import ensure_aware
from .audit import NullAuditSink
from .hierarchy_walker import HierarchyWalker
from .wildcard_matcher import WildcardMatcher

logger = logging.getLogger(__name__)

_CACHEABLE_PATHS = frozenset({
    ResolutionPath.ROLE,
    ResolutionPath.RESOURCE_SPECIFIC,
    ResolutionPath.HIERARCHY,
    ResolutionPath.OWNER,
    ResolutionPath.WILDCARD,
    ResolutionPath.DELEGATION,
    ResolutionPath.DEFAULT_DENY,
})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Resolution:
    """Per-call state of one resolution. Never shared between calls."""

    principal_id: str
    action: str
    resource_type: str
    resource_id: Optional[str]
    tenant_id: Optional[str]
    now: datetime
    records: Optional[List[PermissionRecord]] = None
    # set when the verdict depended on a validity window or a delegation period
    time_sensitive: bool = False
    delegation: Optional[Delegation] = None
    unions: Dict[str, List[PermissionRecord]] = field(default_factory=dict)


class PermissionResolver:
    """Resolves permission checks against a store, a decision cache and an audit sink.

    One instance is shared by every concurrent resolution. All mutable state
    lives in the injected cache; the resolver itself keeps none between calls.
    """

    def __init__(
        self,
        store: StoreClient,
        cache: PermissionCache,
        audit_sink: Optional[AuditSink] = None,
        *,
        cache_ttl: int = CacheTTL.DECISION,
        max_hierarchy_depth: int = HierarchyLimits.DEFAULT_MAX_DEPTH,
        default_timeout: Optional[float] = None,
        wildcard_matcher: Optional[WildcardMatcher] = None,
        hierarchy_walker: Optional[HierarchyWalker] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize permission resolver.

        Args:
            store: Read-only principal/role/tenant store
            cache: Decision cache shared across resolutions
            audit_sink: Destination for audit events (discarded when None)
            cache_ttl: TTL in seconds for cached verdicts
            max_hierarchy_depth: Hop bound for the hierarchy walk
            default_timeout: Deadline in seconds applied when a call gives none
            wildcard_matcher: Matcher for wildcard grants
            hierarchy_walker: Walker for resource parent edges
            clock: Source of the current time for windows and delegations
        """
        if cache_ttl <= 0:
            raise InvalidInputError(f"cache_ttl must be positive, got {cache_ttl}")

        self.store = store
        self.cache = cache
        self.audit_sink = audit_sink or NullAuditSink()
        self.cache_ttl = cache_ttl
        self.default_timeout = default_timeout
        self.matcher = wildcard_matcher or WildcardMatcher()
        self.walker = hierarchy_walker or HierarchyWalker(store, max_depth=max_hierarchy_depth)
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        store: StoreClient,
        cache: PermissionCache,
        audit_sink: Optional[AuditSink] = None,
        settings: Optional[AuthzSettings] = None,
    ) -> "PermissionResolver":
        """Build a resolver configured from AuthzSettings."""
        settings = settings or get_settings()
        return cls(
            store,
            cache,
            audit_sink if settings.audit_enabled else NullAuditSink(),
            cache_ttl=settings.cache_ttl_seconds,
            max_hierarchy_depth=settings.max_hierarchy_depth,
            default_timeout=settings.resolution_timeout_seconds,
        )

    async def resolve(
        self,
        principal_id: str,
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        *,
        require_tenant: bool = False,
        timeout: Optional[float] = None,
    ) -> bool:
        """Return True when the principal may perform ``action`` on the resource."""
        decision = await self.evaluate(
            principal_id,
            action,
            resource_type,
            resource_id,
            tenant_id,
            require_tenant=require_tenant,
            timeout=timeout,
        )
        return decision.granted

    async def evaluate(
        self,
        principal_id: str,
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        *,
        require_tenant: bool = False,
        timeout: Optional[float] = None,
    ) -> Decision:
        """
        Resolve a permission check and report how the verdict was reached.

        Args:
            principal_id: Principal being authorized
            action: Action name (e.g. "view")
            resource_type: Resource type name (e.g. "documents")
            resource_id: Optional resource instance id
            tenant_id: Optional tenant context; the principal's default
                tenant is used when omitted
            require_tenant: Deny instead of falling back to global-only
                evaluation when no tenant context can be resolved
            timeout: Deadline in seconds for the whole resolution

        Returns:
            Decision with the verdict and the pipeline step that produced it

        Raises:
            InvalidInputError: If a required argument is empty or ill-formed
            StoreUnavailableError: If the store could not answer
            ResolutionTimeoutError: If the deadline passed before completion
        """
        self._validate(principal_id, action, resource_type, resource_id, tenant_id)

        deadline = timeout if timeout is not None else self.default_timeout
        if deadline is not None and deadline <= 0:
            raise InvalidInputError(f"timeout must be positive, got {deadline}")

        try:
            async with asyncio.timeout(deadline):
                return await self._evaluate(
                    principal_id, action, resource_type, resource_id, tenant_id, require_tenant
                )
        except TimeoutError as e:
            logger.warning(
                f"Permission resolution timed out after {deadline}s: "
                f"{principal_id} {action} {resource_type}"
            )
            await self._audit(AuditEvent(
                principal_id=principal_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                tenant_id=tenant_id,
                outcome=AuditOutcome.ERROR,
                path_taken=ResolutionPath.ERROR,
            ))
            raise ResolutionTimeoutError(
                f"Permission resolution exceeded {deadline}s",
                details={"principal_id": principal_id, "action": action, "resource_type": resource_type},
            ) from e

    async def resolve_many(
        self,
        principal_id: str,
        checks: Iterable[PermissionCheck],
        tenant_id: Optional[str] = None,
        *,
        require_tenant: bool = False,
        timeout: Optional[float] = None,
    ) -> Dict[str, bool]:
        """
        Resolve several checks for one principal concurrently.

        Returns:
            Verdicts keyed by ``action:resource_type[:resource_id]``
        """
        checks = list(checks)
        results = await asyncio.gather(*(
            self.resolve(
                principal_id,
                check.action,
                check.resource_type,
                check.resource_id,
                tenant_id,
                require_tenant=require_tenant,
                timeout=timeout,
            )
            for check in checks
        ))
        return {check.label: granted for check, granted in zip(checks, results)}

    async def get_effective_permissions(
        self,
        principal_id: str,
        tenant_id: Optional[str] = None
    ) -> List[EffectivePermission]:
        """
        List the permissions a principal currently holds through role assignments.

        Records outside their validity window are left out. Each permission
        is reported once per role it is reached through.
        """
        self._validate_component("principal_id", principal_id)
        if tenant_id is not None:
            self._validate_tenant(tenant_id)

        effective_tenant = tenant_id
        if effective_tenant is None:
            effective_tenant = await self.store.resolve_default_tenant(principal_id)

        now = self._clock()
        records = await self.store.get_union_permissions(principal_id, effective_tenant)

        seen = set()
        result: List[EffectivePermission] = []
        for record in records:
            if not await self._record_active(record, now):
                continue
            entry = EffectivePermission(
                resource_type=record.resource_type,
                action=record.action,
                source=record.source or "direct",
            )
            if entry not in seen:
                seen.add(entry)
                result.append(entry)

        result.sort(key=lambda p: (p.resource_type, p.action, p.source))
        return result

    async def _evaluate(
        self,
        principal_id: str,
        action: str,
        resource_type: str,
        resource_id: Optional[str],
        tenant_id: Optional[str],
        require_tenant: bool,
    ) -> Decision:
        try:
            # SuperAdmin needs no tenant and is never cached
            if await self.store.is_super_admin(principal_id):
                decision = Decision(True, ResolutionPath.SUPER_ADMIN, tenant_id)
                await self._audit_decision(principal_id, action, resource_type, resource_id, decision)
                return decision

            effective_tenant = tenant_id
            if effective_tenant is None:
                effective_tenant = await self.store.resolve_default_tenant(principal_id)
                if effective_tenant is None and require_tenant:
                    decision = Decision(False, ResolutionPath.TENANT_UNRESOLVED)
                    await self._audit_decision(principal_id, action, resource_type, resource_id, decision)
                    return decision

            try:
                key = build_cache_key(principal_id, effective_tenant, resource_type, action, resource_id)
            except CacheKeyError as e:
                raise InvalidInputError(f"Resolved tenant is not usable: {e.message}") from e

            cached = await self._cache_get(key)
            if cached is not None:
                decision = Decision(cached, ResolutionPath.CACHE, effective_tenant, cached=True)
                await self._audit_decision(principal_id, action, resource_type, resource_id, decision)
                return decision

            generation = await self._cache_generation(key)
            state = _Resolution(
                principal_id=principal_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                tenant_id=effective_tenant,
                now=self._clock(),
            )
            path = await self._run_checks(state)
            decision = Decision(
                granted=path is not ResolutionPath.DEFAULT_DENY,
                path=path,
                tenant_id=effective_tenant,
                delegation_id=state.delegation.id if state.delegation else None,
            )

            if generation is not None and path in _CACHEABLE_PATHS and not state.time_sensitive:
                ttl = self.cache_ttl
                if path is ResolutionPath.DEFAULT_DENY:
                    ttl = await self._deny_ttl(state)
                if ttl is not None:
                    await self._cache_set(key, decision.granted, generation, ttl)

        except ResourceNotFoundError as e:
            logger.debug(f"Resource or tenant not found, denying: {e.message}")
            decision = Decision(False, ResolutionPath.NOT_FOUND, tenant_id)
        except StoreUnavailableError as e:
            logger.error(
                f"Store unavailable while resolving {action} on {resource_type} "
                f"for {principal_id}: {e.message}"
            )
            await self._audit(AuditEvent(
                principal_id=principal_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                tenant_id=tenant_id,
                outcome=AuditOutcome.ERROR,
                path_taken=ResolutionPath.ERROR,
            ))
            raise

        logger.debug(
            f"Resolved {principal_id} {action} {resource_type}"
            f"{'/' + resource_id if resource_id else ''} in tenant {decision.tenant_id or '-'}: "
            f"{decision.granted} via {decision.path.value}"
        )
        await self._audit_decision(principal_id, action, resource_type, resource_id, decision)
        if decision.delegation_id:
            await self._audit(AuditEvent(
                principal_id=principal_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                tenant_id=decision.tenant_id,
                outcome=AuditOutcome.GRANTED,
                path_taken=ResolutionPath.DELEGATION,
                delegation_id=decision.delegation_id,
                event_type="delegation.used",
            ))
        return decision

    async def _run_checks(self, state: _Resolution) -> ResolutionPath:
        """Steps after the cache lookup, in precedence order."""
        records = await self._union(state)

        if await self._holds_exact(state, records, state.resource_type):
            return ResolutionPath.ROLE

        if state.resource_id is not None:
            if await self.store.get_resource_specific_grant(
                state.principal_id,
                state.tenant_id,
                state.resource_type,
                state.action,
                state.resource_id,
            ):
                return ResolutionPath.RESOURCE_SPECIFIC

            if await self.store.supports_hierarchy(state.resource_type):
                if await self._check_ancestors(state, records):
                    return ResolutionPath.HIERARCHY

            if await self._check_owner(state):
                return ResolutionPath.OWNER

        if await self._holds_wildcard(state, records, state.resource_type):
            return ResolutionPath.WILDCARD

        if await self._check_delegations(state):
            return ResolutionPath.DELEGATION

        return ResolutionPath.DEFAULT_DENY

    async def _union(self, state: _Resolution) -> List[PermissionRecord]:
        if state.records is None:
            state.records = await self.store.get_union_permissions(state.principal_id, state.tenant_id)
        return state.records

    async def _holds_exact(
        self,
        state: _Resolution,
        records: List[PermissionRecord],
        resource_type: str
    ) -> bool:
        """Non-wildcard union records for (resource_type, action) that are currently valid."""
        candidates = [
            r for r in records
            if not r.permission.is_wildcard
            and r.resource_type == resource_type
            and r.action == state.action
        ]
        return await self._any_active(state, candidates)

    async def _holds_wildcard(
        self,
        state: _Resolution,
        records: List[PermissionRecord],
        resource_type: str
    ) -> bool:
        grouped: Dict[GrantPattern, List[PermissionRecord]] = {}
        for record in records:
            if not record.permission.is_wildcard:
                continue
            try:
                pattern = GrantPattern.parse(record.code)
            except InvalidGrantError:
                logger.warning(f"Ignoring malformed grant {record.code!r} for {state.principal_id}")
                continue
            grouped.setdefault(pattern, []).append(record)

        if not grouped:
            return False

        for pattern in self.matcher.iter_matches(resource_type, state.action, grouped.keys()):
            if await self._any_active(state, grouped[pattern]):
                return True
        return False

    async def _check_ancestors(self, state: _Resolution, records: List[PermissionRecord]) -> bool:
        async for ancestor in self.walker.walk(state.resource_type, state.resource_id):
            if await self._holds_exact(state, records, ancestor.resource_type):
                logger.debug(f"Inherited {state.action} from {ancestor} via role union")
                return True
            if await self.store.get_resource_specific_grant(
                state.principal_id,
                state.tenant_id,
                ancestor.resource_type,
                state.action,
                ancestor.resource_id,
            ):
                logger.debug(f"Inherited {state.action} from {ancestor} via resource grant")
                return True
        return False

    async def _check_owner(self, state: _Resolution) -> bool:
        if not await self.store.supports_ownership(state.resource_type):
            return False
        owner_actions = await self.store.get_owner_actions(state.resource_type)
        if state.action not in owner_actions:
            return False
        return await self.store.is_owner(state.principal_id, state.resource_type, state.resource_id)

    async def _check_delegations(self, state: _Resolution) -> bool:
        delegations = await self.store.get_active_delegations(state.principal_id, state.now)
        if not delegations:
            return False

        state.time_sensitive = True
        for delegation in delegations:
            if delegation.delegate_id != state.principal_id:
                continue
            if not delegation.is_active(state.now):
                continue
            if not delegation.applies_to_tenant(state.tenant_id):
                continue
            if not delegation.covers(state.resource_type, state.action):
                continue

            # delegated access never exceeds what the delegator holds right now
            if await self._delegator_holds(state, delegation.delegator_id):
                state.delegation = delegation
                return True

            logger.debug(
                f"Delegation {delegation.id} covers {state.resource_type}:{state.action} "
                f"but delegator {delegation.delegator_id} no longer holds it"
            )
        return False

    async def _delegator_holds(self, state: _Resolution, delegator_id: str) -> bool:
        records = state.unions.get(delegator_id)
        if records is None:
            records = await self.store.get_union_permissions(delegator_id, state.tenant_id)
            state.unions[delegator_id] = records

        if await self._holds_exact(state, records, state.resource_type):
            return True
        return await self._holds_wildcard(state, records, state.resource_type)

    async def _any_active(self, state: _Resolution, candidates: List[PermissionRecord]) -> bool:
        """True when at least one matching record is valid now. Unconstrained records are checked first."""
        constrained = []
        for record in candidates:
            if record.time_window is None:
                return True
            constrained.append(record)

        for record in constrained:
            state.time_sensitive = True
            if await self.store.check_time_window(record, state.now):
                return True
        return False

    async def _record_active(self, record: PermissionRecord, now: datetime) -> bool:
        if record.time_window is None:
            return True
        return await self.store.check_time_window(record, now)

    async def _cache_get(self, key: PermissionCacheKey) -> Optional[bool]:
        try:
            return await self.cache.get(key)
        except CacheError as e:
            logger.warning(f"Decision cache read failed, treating as miss: {e.message}")
            return None

    async def _deny_ttl(self, state: _Resolution) -> Optional[int]:
        """Cache TTL for a default deny, capped at the next delegation start.

        Returns None when that start is less than a second away.
        """
        starts_at = await self.store.get_next_delegation_start(state.principal_id, state.now)
        if starts_at is None:
            return self.cache_ttl

        remaining = int((ensure_aware(starts_at) - ensure_aware(state.now)).total_seconds())
        if remaining < 1:
            return None
        return min(self.cache_ttl, remaining)

    async def _cache_generation(self, key: PermissionCacheKey) -> Optional[Hashable]:
        """Invalidation snapshot taken before any store read; None skips the later write."""
        try:
            return await self.cache.generation(key)
        except CacheError as e:
            logger.warning(f"Decision cache generation read failed, verdict will not be cached: {e.message}")
            return None

    async def _cache_set(self, key: PermissionCacheKey, granted: bool, generation: Hashable, ttl: int) -> None:
        try:
            await self.cache.set(key, granted, ttl=ttl, expected_generation=generation)
        except CacheError as e:
            logger.warning(f"Decision cache write failed, verdict not cached: {e.message}")

    async def _audit_decision(
        self,
        principal_id: str,
        action: str,
        resource_type: str,
        resource_id: Optional[str],
        decision: Decision
    ) -> None:
        await self._audit(AuditEvent(
            principal_id=principal_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            tenant_id=decision.tenant_id,
            outcome=AuditOutcome.GRANTED if decision.granted else AuditOutcome.DENIED,
            path_taken=decision.path,
            delegation_id=decision.delegation_id,
        ))

    async def _audit(self, event: AuditEvent) -> None:
        try:
            await self.audit_sink.record(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Audit sink failed for {event.event_type}: {e}")

    def _validate(
        self,
        principal_id: str,
        action: str,
        resource_type: str,
        resource_id: Optional[str],
        tenant_id: Optional[str]
    ) -> None:
        self._validate_component("principal_id", principal_id)
        self._validate_component("action", action)
        self._validate_component("resource_type", resource_type)
        if resource_id is not None:
            self._validate_component("resource_id", resource_id)
        if tenant_id is not None:
            self._validate_tenant(tenant_id)

    def _validate_tenant(self, tenant_id: str) -> None:
        self._validate_component("tenant_id", tenant_id)
        if tenant_id == CacheKeys.GLOBAL_TENANT:
            raise InvalidInputError(f"Tenant id {tenant_id!r} is reserved")

    @staticmethod
    def _validate_component(name: str, value: str) -> None:
        if not isinstance(value, str) or not value.strip():
            raise InvalidInputError(f"{name} is required", details={"field": name})
        if CacheKeys.DELIMITER in value:
            raise InvalidInputError(
                f"{name} contains a reserved character",
                details={"field": name},
            )

