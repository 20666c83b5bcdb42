"""
Request dependencies shared by the routers.

Caller identity arrives in the X-User-ID / X-User-Role headers; store
grants are loaded from the database on every request so a revoked or
expired grant stops working immediately.
"""

from typing import AsyncGenerator

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scout_analytics.access.context import CallerContext, Role
from scout_analytics.access.grants import build_caller_context
from scout_analytics.access.policy import AccessPolicy
from scout_analytics.config.settings import Settings
from scout_analytics.exceptions import AccessDenied
from scout_analytics.refresh.scheduler import RefreshScheduler
from scout_analytics.refresh.view_store import ViewStore


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_view_store(request: Request) -> ViewStore:
    return request.app.state.view_store


def get_scheduler(request: Request) -> RefreshScheduler:
    return request.app.state.scheduler


def get_policy(request: Request) -> AccessPolicy:
    return request.app.state.policy


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.session_factory


async def get_session(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """Read session; writers open their own transaction."""
    async with session_factory() as session:
        yield session


async def get_caller(
    request: Request,
    x_user_id: str = Header(..., alias="X-User-ID"),
    x_user_role: str = Header(..., alias="X-User-Role"),
    session: AsyncSession = Depends(get_session),
) -> CallerContext:
    try:
        role = Role(x_user_role.lower())
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Unknown role: {x_user_role}") from None

    return await build_caller_context(session, x_user_id, role, now=request.app.state.clock())


async def require_admin(caller: CallerContext = Depends(get_caller)) -> CallerContext:
    if not caller.is_admin:
        raise AccessDenied("admin_required", f"{caller.role.value} cannot use admin endpoints")
    return caller
