import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import async_session, engine
from app.middleware.exceptions import register_exception_handlers
from app.routers import health, permissions, roles
from app.services.roles import seed_system_roles
from app.utils.cache import close_redis
from app.utils.logging import configure_logging

configure_logging(settings.log_level, settings.log_json)
logger = logging.getLogger("staffperm")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.seed_roles_on_startup:
        async with async_session() as db:
            await seed_system_roles(db)
    logger.info("Staff permissions service started")
    yield
    await close_redis()
    await engine.dispose()
    logger.info("Staff permissions service stopped")


app = FastAPI(
    title="Staff Permissions",
    description="Permission resolution and management for retail staff",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(permissions.router, prefix="/api/permissions", tags=["permissions"])
app.include_router(roles.router, prefix="/api/roles", tags=["roles"])
