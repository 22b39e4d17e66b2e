from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import redis.asyncio as aioredis
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.routing import APIRouter
from fastapi.staticfiles import StaticFiles
from loguru import logger
from sse_starlette.sse import AppStatus

from taskflow.server.broadcast.base import Broadcaster
from taskflow.server.broadcast.local import LocalBroadcaster
from taskflow.server.broadcast.redis import RedisBroadcaster
from taskflow.server.db.engine import create_engine, create_session_factory
from taskflow.server.log import setup_logging
from taskflow.server.settings import get_settings


def _create_broadcaster(redis_client: aioredis.Redis | None) -> Broadcaster:
    """Redis pub/sub when Redis is configured, in-process fan-out otherwise."""
    if redis_client is not None:
        return RedisBroadcaster(redis_client)
    return LocalBroadcaster()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    # -- Startup ---------------------------------------------------------------
    settings = get_settings()
    setup_logging(settings.log_level, serialize=settings.log_json)

    auth_token = settings.resolve_auth_token()
    if not settings.auth_token:
        logger.warning("No TASKFLOW_AUTH_TOKEN set -- generated token: {}", auth_token)
    _app.state.auth_token = auth_token

    logger.info("TaskFlow starting (host={}, port={})", settings.host, settings.port)

    # -- Initialise state fields (always present, possibly None) ----------------
    _app.state.db_engine = None
    _app.state.db_session_factory = None
    _app.state.redis = None

    # -- Database --------------------------------------------------------------
    if settings.database_url:
        engine = create_engine(settings.database_url)
        _app.state.db_engine = engine
        _app.state.db_session_factory = create_session_factory(engine)
        logger.info("PostgreSQL: connected (pool_size=5, max_overflow=10)")
    else:
        logger.warning("TASKFLOW_DATABASE_URL not set -- API requests will fail with 503")

    # -- Redis -----------------------------------------------------------------
    if settings.redis_url:
        _app.state.redis = aioredis.from_url(
            settings.redis_url,
            decode_responses=False,
            socket_connect_timeout=5,
            retry_on_timeout=True,
        )
        logger.info("Redis: connected")
    else:
        logger.warning("TASKFLOW_REDIS_URL not set -- realtime events stay in this process")

    _app.state.broadcaster = _create_broadcaster(_app.state.redis)

    # -- SSE -------------------------------------------------------------------
    # Streams are closed explicitly on shutdown below.
    AppStatus.disable_automatic_graceful_drain()

    yield

    # -- Shutdown --------------------------------------------------------------
    logger.info("TaskFlow shutting down")

    AppStatus.should_exit = True
    logger.info("SSE: signalled streams to close")

    await _app.state.broadcaster.close()

    if _app.state.redis is not None:
        await _app.state.redis.aclose()
        logger.info("Redis: closed")

    if _app.state.db_engine is not None:
        await _app.state.db_engine.dispose()
        logger.info("PostgreSQL: disposed")


app = FastAPI(title="TaskFlow", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# API router -- all backend endpoints live under /api
# ---------------------------------------------------------------------------
api = APIRouter(prefix="/api")


@api.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


from taskflow.server.routers.changelog import router as changelog_router  # noqa: E402
from taskflow.server.routers.events import router as events_router  # noqa: E402
from taskflow.server.routers.notifications import router as notifications_router  # noqa: E402
from taskflow.server.routers.policy import router as policy_router  # noqa: E402
from taskflow.server.routers.tasks import router as tasks_router  # noqa: E402
from taskflow.server.routers.teams import router as teams_router  # noqa: E402
from taskflow.server.routers.users import router as users_router  # noqa: E402
from taskflow.server.routers.workspaces import router as workspaces_router  # noqa: E402

api.include_router(policy_router)
api.include_router(workspaces_router)
api.include_router(users_router)
api.include_router(teams_router)
api.include_router(tasks_router)
api.include_router(notifications_router)
api.include_router(changelog_router)
api.include_router(events_router)

app.include_router(api)

# ---------------------------------------------------------------------------
# Static UI serving
# Resolved relative to CWD.  Override with TASKFLOW_UI_DIR.
# ---------------------------------------------------------------------------


def safe_ui_path(root: Path, requested: str) -> Path | None:
    """Resolve *requested* under *root*; paths escaping the UI directory give ``None``."""
    path = (root / requested).resolve()
    return path if path.is_relative_to(root.resolve()) else None


_UI_DIR = Path(get_settings().ui_dir)

if _UI_DIR.is_dir():
    app.mount("/assets", StaticFiles(directory=_UI_DIR / "assets"), name="ui-assets")

    @app.get("/{full_path:path}")
    async def serve_spa(full_path: str) -> FileResponse:
        """Serve the SPA index.html for all unmatched routes (client-side routing)."""
        file_path = safe_ui_path(_UI_DIR, full_path)
        if file_path is not None and file_path.is_file():
            return FileResponse(file_path)
        return FileResponse(_UI_DIR / "index.html")
