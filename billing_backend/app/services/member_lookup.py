"""
Member handle lookup.

Resolves user ids to member handles from the members database, with a Redis
cache in front, and handles back to user ids for imports. Handle lookups are
best effort: an unset MEMBER_DB_URL, an unreachable database or an unreachable
Redis never fail the caller, they only shrink the returned mapping.
"""

import logging
from typing import Dict, Iterable, Optional

from redis.exceptions import RedisError
from sqlalchemy import text, bindparam
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from billing_backend.app.core.config import settings
from billing_backend.app.core import redis_client as redis_client_module

logger = logging.getLogger(__name__)

HANDLE_CACHE_PREFIX = "member:handle:"

_HANDLES_QUERY = text(
    'SELECT "userId", "handle" FROM "member" WHERE "userId" IN :user_ids'
).bindparams(bindparam("user_ids", expanding=True))

_USER_ID_QUERY = text(
    'SELECT "userId" FROM "member" WHERE "handleLower" = lower(:handle) OR "handle" = :handle LIMIT 1'
)


class MemberLookupService:
    """
    Lazily connects to the members database on first use.
    
    Usage:
        lookup = MemberLookupService()
        handles = await lookup.get_handles(["1001", "1002"])
        # {"1001": "alice"}  (ids without a member are absent)
    """
    
    def __init__(self, member_db_url: Optional[str] = None, cache_ttl_seconds: Optional[int] = None):
        self.member_db_url = member_db_url if member_db_url is not None else settings.member_db_url
        self.cache_ttl_seconds = cache_ttl_seconds or settings.member_cache_ttl_seconds
        self._engine: Optional[AsyncEngine] = None
        self._initialized = False
    
    def _ensure_engine(self) -> Optional[AsyncEngine]:
        if not self._initialized:
            self._initialized = True
            if not self.member_db_url:
                logger.warning("MEMBER_DB_URL not set; member handle lookups will be skipped.")
            else:
                self._engine = create_async_engine(self.member_db_url, pool_pre_ping=True)
        return self._engine
    
    async def _cached_handles(self, user_ids) -> Dict[str, str]:
        redis = redis_client_module.redis_client
        found = {}
        try:
            for user_id in user_ids:
                handle = await redis.get(f"{HANDLE_CACHE_PREFIX}{user_id}")
                if handle:
                    found[user_id] = handle.decode() if isinstance(handle, bytes) else handle
        except (RedisError, OSError) as exc:
            logger.warning("Member handle cache unavailable: %s", exc)
        return found
    
    async def _cache_handles(self, handles: Dict[str, str]) -> None:
        redis = redis_client_module.redis_client
        try:
            for user_id, handle in handles.items():
                await redis.set(f"{HANDLE_CACHE_PREFIX}{user_id}", handle, ex=self.cache_ttl_seconds)
        except (RedisError, OSError) as exc:
            logger.warning("Could not cache member handles: %s", exc)
    
    async def _query_handles(self, engine: AsyncEngine, user_ids) -> Dict[str, str]:
        # members."userId" is a BIGINT; ids that are not integers cannot match
        numeric_ids = []
        for user_id in user_ids:
            try:
                numeric_ids.append(int(user_id))
            except ValueError:
                continue
        if not numeric_ids:
            return {}
        
        async with engine.connect() as conn:
            result = await conn.execute(_HANDLES_QUERY, {"user_ids": numeric_ids})
            rows = result.all()
        return {str(row[0]): row[1] for row in rows if row[1]}
    
    async def get_handles(self, user_ids: Iterable[str]) -> Dict[str, str]:
        """
        Resolve handles for the given user ids.
        
        Returns:
            Mapping userId -> handle for the ids that could be resolved
        """
        ids = list(dict.fromkeys(str(user_id) for user_id in user_ids))
        if not ids:
            return {}
        
        engine = self._ensure_engine()
        if engine is None:
            return {}
        
        handles = await self._cached_handles(ids)
        missing = [user_id for user_id in ids if user_id not in handles]
        if not missing:
            return handles
        
        try:
            fetched = await self._query_handles(engine, missing)
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("Member handle lookup failed for %d id(s): %s", len(missing), exc)
            return handles
        
        await self._cache_handles(fetched)
        handles.update(fetched)
        return handles
    
    async def find_user_id(self, handle: str) -> Optional[str]:
        """
        Resolve a member handle (case-insensitive) to its user id.
        
        Unlike ``get_handles`` database errors propagate, so bulk callers can
        count the row as failed. Returns None when no member matches or
        MEMBER_DB_URL is unset.
        """
        engine = self._ensure_engine()
        if engine is None:
            return None
        async with engine.connect() as conn:
            user_id = await conn.scalar(_USER_ID_QUERY, {"handle": handle})
        return str(user_id) if user_id is not None else None
    
    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()


member_lookup = MemberLookupService()


async def get_member_lookup() -> MemberLookupService:
    """FastAPI dependency returning the process-wide lookup service."""
    return member_lookup
