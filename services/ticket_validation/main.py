"""Service entry point para ticket validation (sin gateway)"""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded

from app.core.config import settings
from shared.auth.access import MemoryRoleCache, RedisRoleCache, ScannerAccess, SqlRoleDirectory
from shared.database.connection import close_db, get_session_maker, init_db
from shared.cache.redis_client import close_redis, init_redis
from shared.utils.rate_limiter import limiter, rate_limit_exceeded_handler
from services.ticket_validation.routes.validation import router


def build_scanner_access() -> ScannerAccess:
    """Capacidad de acceso de los scanners, con el cache configurado"""
    if settings.ACCESS_CACHE_BACKEND == "redis":
        cache = RedisRoleCache()
    else:
        cache = MemoryRoleCache()
    return ScannerAccess(
        SqlRoleDirectory(get_session_maker()),
        cache=cache,
        ttl_seconds=settings.ACCESS_CACHE_TTL_SECONDS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    if settings.ACCESS_CACHE_BACKEND == "redis":
        await init_redis()
    app.state.scanner_access = build_scanner_access()
    yield
    await close_db()
    await close_redis()


app = FastAPI(title="Ticket Validation Service", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.include_router(router, prefix="/api/v1/tickets", tags=["tickets"])
