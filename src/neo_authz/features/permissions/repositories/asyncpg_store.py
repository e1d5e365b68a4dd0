"""Store client over the Postgres ``authz`` schema using AsyncPG.

Tables read by this client:

    roles(id, name)
    permissions(id, resource_type, action)
    role_permissions(role_id, permission_id, valid_from, valid_until,
                     days_of_week, start_hour, end_hour, timezone)
    user_roles(user_id, role_id, tenant_id NULL = global, expires_at)
    user_permissions(user_id, permission_id, tenant_id, expires_at,
                     valid_from, valid_until, days_of_week, start_hour, end_hour, timezone)
    tenant_memberships(user_id, tenant_id, is_default, is_active)
    resource_types(name, supports_hierarchy, supports_ownership)
    resource_permissions(role_id, permission_id, resource_id, expires_at)
    resource_hierarchy(child_type, child_id, parent_type, parent_id)
    resource_owners(resource_type, resource_id, user_id)
    owner_actions(resource_type, action)
    delegations(id, delegator_id, delegate_id, tenant_id, permissions,
                starts_at, ends_at, revoked_at)
"""

import logging
import re
from datetime import datetime
from typing import Any, List, Optional, Set

import asyncpg
from asyncpg import Record

from ....config.constants import AuthzSchema, SystemRoles
from ....config.settings import AuthzSettings, get_settings
from ....core.exceptions import InvalidInputError, ResourceNotFoundError, StoreUnavailableError
from ....database.connection import CONNECTIVITY_ERRORS, DatabaseManager
from ..entities.delegation import Delegation
from ..entities.permission import Permission, PermissionRecord, ResourceRef
from ..entities.time_window import TimeWindow

logger = logging.getLogger(__name__)

_SCHEMA_NAME = re.compile(r"^[a-z_][a-z0-9_]*$")

STORE_ERRORS = (asyncpg.PostgresError, *CONNECTIVITY_ERRORS)

_WINDOW_FIELDS = ("valid_from", "valid_until", "days_of_week", "start_hour", "end_hour")


class AsyncPGStoreClient:
    """Read-only StoreClient implementation backed by asyncpg."""

    def __init__(
        self,
        database: DatabaseManager,
        schema: str = AuthzSchema.NAME,
        super_admin_role: str = SystemRoles.SUPER_ADMIN,
    ):
        """Initialize store client with database manager and schema."""
        self.database = database
        self.schema = self._validate_schema_name(schema)
        self.super_admin_role = super_admin_role

    @classmethod
    def from_settings(
        cls,
        database: DatabaseManager,
        settings: Optional[AuthzSettings] = None,
    ) -> "AsyncPGStoreClient":
        settings = settings or get_settings()
        return cls(database, super_admin_role=settings.super_admin_role)

    def _validate_schema_name(self, schema_name: str) -> str:
        """Validate schema name to prevent SQL injection."""
        if _SCHEMA_NAME.match(schema_name):
            return schema_name
        raise InvalidInputError(f"Invalid schema name: {schema_name}")

    async def is_super_admin(self, principal_id: str) -> bool:
        query = f"""
            SELECT EXISTS (
                SELECT 1
                FROM {self.schema}.user_roles ur
                JOIN {self.schema}.roles r ON r.id = ur.role_id
                WHERE ur.user_id = $1
                AND ur.tenant_id IS NULL
                AND r.name = $2
                AND (ur.expires_at IS NULL OR ur.expires_at > NOW())
            )
        """
        return bool(await self._fetchval(query, principal_id, self.super_admin_role))

    async def resolve_default_tenant(self, principal_id: str) -> Optional[str]:
        query = f"""
            SELECT tenant_id
            FROM {self.schema}.tenant_memberships
            WHERE user_id = $1
            AND is_active = true
            ORDER BY is_default DESC, tenant_id
            LIMIT 1
        """
        tenant_id = await self._fetchval(query, principal_id)
        return str(tenant_id) if tenant_id is not None else None

    async def get_union_permissions(
        self,
        principal_id: str,
        tenant_id: Optional[str]
    ) -> List[PermissionRecord]:
        """Global plus tenant role permissions, plus direct grants."""
        query = f"""
            WITH user_role_permissions AS (
                -- Permissions from global and tenant role assignments
                SELECT p.resource_type, p.action, r.name AS source, rp.id::text AS record_id,
                       rp.valid_from, rp.valid_until, rp.days_of_week,
                       rp.start_hour, rp.end_hour, rp.timezone
                FROM {self.schema}.user_roles ur
                JOIN {self.schema}.roles r ON r.id = ur.role_id
                JOIN {self.schema}.role_permissions rp ON rp.role_id = ur.role_id
                JOIN {self.schema}.permissions p ON p.id = rp.permission_id
                WHERE ur.user_id = $1
                AND (ur.tenant_id IS NULL OR ur.tenant_id = $2)
                AND (ur.expires_at IS NULL OR ur.expires_at > NOW())
            ),
            user_direct_permissions AS (
                -- Permissions granted to the user without a role
                SELECT p.resource_type, p.action, 'direct' AS source, up.id::text AS record_id,
                       up.valid_from, up.valid_until, up.days_of_week,
                       up.start_hour, up.end_hour, up.timezone
                FROM {self.schema}.user_permissions up
                JOIN {self.schema}.permissions p ON p.id = up.permission_id
                WHERE up.user_id = $1
                AND (up.tenant_id IS NULL OR up.tenant_id = $2)
                AND (up.expires_at IS NULL OR up.expires_at > NOW())
            )
            SELECT * FROM user_role_permissions
            UNION ALL
            SELECT * FROM user_direct_permissions
        """
        rows = await self._fetch(query, principal_id, tenant_id)

        records = []
        for row in rows:
            record = self._to_record(row)
            if record is not None:
                records.append(record)
        return records

    async def get_resource_specific_grant(
        self,
        principal_id: str,
        tenant_id: Optional[str],
        resource_type: str,
        action: str,
        resource_id: str
    ) -> bool:
        query = f"""
            SELECT EXISTS (
                SELECT 1
                FROM {self.schema}.user_roles ur
                JOIN {self.schema}.resource_permissions rsp ON rsp.role_id = ur.role_id
                JOIN {self.schema}.permissions p ON p.id = rsp.permission_id
                WHERE ur.user_id = $1
                AND (ur.tenant_id IS NULL OR ur.tenant_id = $2)
                AND (ur.expires_at IS NULL OR ur.expires_at > NOW())
                AND p.resource_type = $3
                AND p.action = $4
                AND rsp.resource_id = $5
                AND (rsp.expires_at IS NULL OR rsp.expires_at > NOW())
            )
        """
        return bool(await self._fetchval(query, principal_id, tenant_id, resource_type, action, resource_id))

    async def get_parent_resource(self, resource_type: str, resource_id: str) -> Optional[ResourceRef]:
        query = f"""
            SELECT parent_type, parent_id
            FROM {self.schema}.resource_hierarchy
            WHERE child_type = $1 AND child_id = $2
        """
        row = await self._fetchrow(query, resource_type, resource_id)
        if row is None:
            return None
        return ResourceRef(resource_type=row["parent_type"], resource_id=str(row["parent_id"]))

    async def supports_hierarchy(self, resource_type: str) -> bool:
        return await self._resource_type_flag(resource_type, "supports_hierarchy")

    async def is_owner(self, principal_id: str, resource_type: str, resource_id: str) -> bool:
        query = f"""
            SELECT EXISTS (
                SELECT 1
                FROM {self.schema}.resource_owners
                WHERE resource_type = $1 AND resource_id = $2 AND user_id = $3
            )
        """
        return bool(await self._fetchval(query, resource_type, resource_id, principal_id))

    async def supports_ownership(self, resource_type: str) -> bool:
        return await self._resource_type_flag(resource_type, "supports_ownership")

    async def get_owner_actions(self, resource_type: str) -> Set[str]:
        query = f"""
            SELECT action
            FROM {self.schema}.owner_actions
            WHERE resource_type = $1
        """
        rows = await self._fetch(query, resource_type)
        return {row["action"] for row in rows}

    async def get_active_delegations(self, principal_id: str, now: datetime) -> List[Delegation]:
        query = f"""
            SELECT id, delegator_id, delegate_id, tenant_id, permissions, starts_at, ends_at
            FROM {self.schema}.delegations
            WHERE delegate_id = $1
            AND revoked_at IS NULL
            AND starts_at <= $2
            AND ends_at > $2
        """
        rows = await self._fetch(query, principal_id, now)

        delegations = []
        for row in rows:
            try:
                delegations.append(Delegation(
                    id=str(row["id"]),
                    delegator_id=str(row["delegator_id"]),
                    delegate_id=str(row["delegate_id"]),
                    permissions=frozenset(row["permissions"] or ()),
                    starts_at=row["starts_at"],
                    ends_at=row["ends_at"],
                    tenant_id=str(row["tenant_id"]) if row["tenant_id"] is not None else None,
                ))
            except InvalidInputError as e:
                logger.warning(f"Skipping invalid delegation {row['id']}: {e.message}")
        return delegations

    async def get_next_delegation_start(self, principal_id: str, now: datetime) -> Optional[datetime]:
        query = f"""
            SELECT MIN(starts_at)
            FROM {self.schema}.delegations
            WHERE delegate_id = $1
            AND revoked_at IS NULL
            AND starts_at > $2
        """
        return await self._fetchval(query, principal_id, now)

    async def check_time_window(self, record: PermissionRecord, now: datetime) -> bool:
        return record.is_active_at(now)

    async def _resource_type_flag(self, resource_type: str, column: str) -> bool:
        query = f"""
            SELECT {column}
            FROM {self.schema}.resource_types
            WHERE name = $1
        """
        row = await self._fetchrow(query, resource_type)
        if row is None:
            raise ResourceNotFoundError(
                f"Unknown resource type: {resource_type}",
                details={"resource_type": resource_type},
            )
        return bool(row[column])

    def _to_record(self, row: Record) -> Optional[PermissionRecord]:
        """Build a PermissionRecord; rows with unusable data are dropped."""
        try:
            permission = Permission(resource_type=row["resource_type"], action=row["action"])
            window = self._to_time_window(row)
        except InvalidInputError as e:
            logger.warning(f"Skipping permission record {row['record_id']}: {e.message}")
            return None
        return PermissionRecord(
            permission=permission,
            time_window=window,
            source=row["source"],
            record_id=row["record_id"],
        )

    def _to_time_window(self, row: Record) -> Optional[TimeWindow]:
        if all(row[column] is None for column in _WINDOW_FIELDS):
            return None
        days = row["days_of_week"]
        return TimeWindow(
            valid_from=row["valid_from"],
            valid_until=row["valid_until"],
            days_of_week=frozenset(days) if days is not None else None,
            start_hour=row["start_hour"],
            end_hour=row["end_hour"],
            timezone_name=row["timezone"] or "UTC",
        )

    async def _fetch(self, query: str, *args) -> List[Record]:
        try:
            return await self.database.fetch(query, *args)
        except STORE_ERRORS as e:
            raise self._unavailable(e) from e

    async def _fetchrow(self, query: str, *args) -> Optional[Record]:
        try:
            return await self.database.fetchrow(query, *args)
        except STORE_ERRORS as e:
            raise self._unavailable(e) from e

    async def _fetchval(self, query: str, *args) -> Any:
        try:
            return await self.database.fetchval(query, *args)
        except STORE_ERRORS as e:
            raise self._unavailable(e) from e

    @staticmethod
    def _unavailable(error: Exception) -> StoreUnavailableError:
        logger.error(f"Permission store query failed: {error}")
        return StoreUnavailableError(
            f"Permission store unavailable: {error}",
            details={"cause": error.__class__.__name__},
        )
