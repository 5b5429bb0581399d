"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from xpl.database import get_session as _get_session
from xpl.progress.completion_service import CompletionService
from xpl.progress.retry_policy import RetryPolicy
from xpl.redis_client import get_redis_optional

get_db = _get_session


async def get_redis_dep() -> AsyncGenerator[object | None, None]:
    """Yield the Redis client, or None when it is not configured."""
    yield get_redis_optional()


async def get_current_user_id(x_user_id: str | None = Header(None)) -> str:
    """Caller identity as forwarded by the authenticating gateway."""
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    user_id = x_user_id.strip()
    if len(user_id) > 64:
        raise HTTPException(status_code=400, detail="X-User-Id too long")
    return user_id


async def get_completion_service(
    db: AsyncSession = Depends(get_db),  # noqa: B008
    redis: object | None = Depends(get_redis_dep),  # noqa: B008
) -> CompletionService:
    return CompletionService(db, redis=redis, retry_policy=RetryPolicy.from_settings())
