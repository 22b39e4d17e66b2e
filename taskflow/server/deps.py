"""FastAPI dependency injection for DB sessions, request context and effects.

Usage in route handlers::

    @router.post("")
    async def create_task(body: TaskCreate, uow: Uow) -> TaskResponse:
        ...

Identity is asserted by the upstream auth gateway: it forwards the
authenticated user's id in ``X-User-Id`` and authenticates itself with the
shared bearer token (``TASKFLOW_AUTH_TOKEN``).
"""

from __future__ import annotations

import secrets
from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.server.broadcast.base import Broadcaster
from taskflow.server.context import RequestContext, resolve_context
from taskflow.server.effects import UnitOfWork
from taskflow.server.errors import AccessDeniedError, AuthenticationError


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield an async SQLAlchemy session, closing it after the request.

    Managers commit through :class:`UnitOfWork`.  If the handler raises, the
    session is closed and the implicit transaction is rolled back.
    """
    session_factory = request.app.state.db_session_factory
    if session_factory is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not configured (TASKFLOW_DATABASE_URL is unset).",
        )
    session: AsyncSession = session_factory()
    try:
        yield session
    finally:
        await session.close()


def get_broadcaster(request: Request) -> Broadcaster | None:
    return request.app.state.broadcaster


def client_ip(request: Request) -> str | None:
    """Best-effort client address behind proxies."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else None


def verify_token(request: Request, authorization: str | None) -> None:
    expected: str | None = request.app.state.auth_token
    if expected is None:
        return
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token, expected):
        raise HTTPException(
            status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing bearer token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_context(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    x_user_id: Annotated[str | None, Header()] = None,
    x_workspace_id: Annotated[str | None, Header()] = None,
    authorization: Annotated[str | None, Header()] = None,
) -> RequestContext:
    verify_token(request, authorization)
    try:
        return await resolve_context(db, x_user_id, workspace_override=x_workspace_id, ip=client_ip(request))
    except AuthenticationError as exc:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from None
    except AccessDeniedError as exc:
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail={"message": str(exc), "code": exc.code}) from None


async def get_uow(
    db: Annotated[AsyncSession, Depends(get_db)],
    ctx: Annotated[RequestContext, Depends(get_context)],
    broadcaster: Annotated[Broadcaster | None, Depends(get_broadcaster)],
) -> UnitOfWork:
    return UnitOfWork(db, ctx, broadcaster)


# -- Annotated type aliases for concise route signatures ---------------------

DbSession = Annotated[AsyncSession, Depends(get_db)]
"""Annotated dependency: async SQLAlchemy session (auto-closed after request)."""

Context = Annotated[RequestContext, Depends(get_context)]
"""Annotated dependency: authenticated caller and their workspace."""

Uow = Annotated[UnitOfWork, Depends(get_uow)]
"""Annotated dependency: unit of work bound to the request's session and context."""

EventBus = Annotated[Broadcaster | None, Depends(get_broadcaster)]
"""Annotated dependency: realtime broadcaster (``None`` when disabled)."""
