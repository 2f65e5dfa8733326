import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from crewtime.config import settings
from crewtime.middleware.exceptions import register_exception_handlers
from crewtime.middleware.rate_limit import RateLimitMiddleware
from crewtime.routers import activity, cron, health, leaderboard, quotas, workspace_activity
from crewtime.services.cron import wait_for_background
from crewtime.services.directory import close_directory
from crewtime.services.leaderboard import ActivityViews
from crewtime.services.notifications import close_notifier
from crewtime.utils.cache import close_redis

logger = logging.getLogger("crewtime")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """No in-process scheduler: cron ticks arrive over HTTP.

    On shutdown, let fire-and-forget rank syncs finish, then close the
    shared HTTP and Redis clients.
    """
    logger.info("Crewtime starting (environment=%s)", settings.environment)
    yield
    await wait_for_background()
    await app.state.views.wait_for_refreshes()
    await close_notifier()
    await close_directory()
    await close_redis()


app = FastAPI(
    title="Crewtime",
    description="Staff activity tracking, quotas and leaderboards for game workspaces",
    version="0.1.0",
    lifespan=lifespan,
)

# Cached staff overview and leaderboard reads
app.state.views = ActivityViews()

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware (outermost first) ─────────────────────────────
if settings.rate_limit_enabled:
    app.add_middleware(
        RateLimitMiddleware,
        default_limit=100,
        default_window=60,
        exempt_paths=["/health", "/docs", "/openapi.json", "/api/cron/"],
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)

# Game servers (activity key)
app.include_router(activity.router, prefix="/api/activity", tags=["activity"])

# Members (JWT)
app.include_router(
    workspace_activity.router,
    prefix="/api/workspaces/{workspace_id}/activity",
    tags=["activity"],
)
app.include_router(
    quotas.router, prefix="/api/workspaces/{workspace_id}/quotas", tags=["quotas"]
)

# Public API (workspace API key)
app.include_router(
    leaderboard.router, prefix="/api/public/v1/workspace", tags=["public"]
)

# External cron (shared secret)
app.include_router(cron.router, prefix="/api/cron", tags=["cron"])
