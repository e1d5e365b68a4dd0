"""Tests for the fail-closed permission guard."""

import pytest
from unittest.mock import AsyncMock

from neo_authz.core.exceptions import (
    InvalidInputError,
    PermissionDeniedError,
    ResolutionTimeoutError,
    StoreUnavailableError,
)
from neo_authz.features.permissions.services.permission_guard import PermissionGuard


class TestPermissionGuard:
    """Test policy applied to indeterminate results."""

    @pytest.fixture
    def mock_resolver(self):
        resolver = AsyncMock()
        resolver.resolve = AsyncMock(return_value=True)
        return resolver

    @pytest.mark.asyncio
    async def test_passes_verdict_through(self, mock_resolver):
        guard = PermissionGuard(mock_resolver)

        assert await guard.is_allowed("u1", "view", "users", tenant_id="t1") is True
        mock_resolver.resolve.assert_awaited_once_with(
            "u1", "view", "users", None, "t1", require_tenant=False, timeout=None
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        StoreUnavailableError("db down"),
        ResolutionTimeoutError("too slow"),
    ])
    async def test_fail_closed_by_default(self, mock_resolver, error):
        """Indeterminate results deny unless configured otherwise."""
        mock_resolver.resolve.side_effect = error

        assert await PermissionGuard(mock_resolver).is_allowed("u1", "view", "users") is False

    @pytest.mark.asyncio
    async def test_fail_open(self, mock_resolver):
        mock_resolver.resolve.side_effect = StoreUnavailableError("db down")

        guard = PermissionGuard(mock_resolver, fail_open=True)

        assert await guard.is_allowed("u1", "view", "users") is True

    @pytest.mark.asyncio
    async def test_invalid_input_not_masked(self, mock_resolver):
        """Caller mistakes are raised, not turned into a deny."""
        mock_resolver.resolve.side_effect = InvalidInputError("principal_id is required")

        with pytest.raises(InvalidInputError):
            await PermissionGuard(mock_resolver).is_allowed("", "view", "users")

    @pytest.mark.asyncio
    async def test_require_raises_on_deny(self, mock_resolver):
        mock_resolver.resolve.return_value = False

        with pytest.raises(PermissionDeniedError) as exc_info:
            await PermissionGuard(mock_resolver).require("u1", "delete", "documents", "d1")

        assert exc_info.value.message == "Permission denied"
        assert "d1" not in str(exc_info.value.details)

    @pytest.mark.asyncio
    async def test_require_passes_on_grant(self, mock_resolver):
        await PermissionGuard(mock_resolver).require("u1", "view", "users")

    @pytest.mark.asyncio
    async def test_with_real_resolver(self, resolver, fake_store):
        """Store failures through a real resolver deny at the guard."""
        fake_store.fail_on["get_union_permissions"] = StoreUnavailableError("db down")

        assert await PermissionGuard(resolver).is_allowed("u1", "view", "users") is False
