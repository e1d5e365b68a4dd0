"""Permission store implementations."""

from .asyncpg_store import AsyncPGStoreClient

__all__ = ["AsyncPGStoreClient"]
