"""
FastAPI main application for resume-search.

Collaborators are built once in the lifespan and stored on app.state.
"""
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

project_root = Path(__file__).parent.parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from apps.orchestrator.gateway import ReasoningGateway
from apps.orchestrator.graph import SearchOrchestrator
from shared.config import Settings
from shared.log_config import configure_logging
from src.api.v1.analytics import router as analytics_router
from src.api.v1.search import router as search_router
from src.services.analytics import AnalyticsService
from src.services.auth import TokenVerifier
from src.services.cache import InMemoryCacheBackend, RedisCacheBackend, SearchCache
from src.services.conversation_store import InMemoryConversationStore, PostgresConversationStore
from src.services.event_log import InMemoryEventLog, PostgresEventLog
from src.services.exceptions import SearchServiceError
from src.services.postgres import create_pool
from src.services.resume_store import InMemoryResumeStore, PostgresResumeStore

logger = structlog.get_logger()

VERSION = "1.0.0"


async def build_components(settings: Settings) -> Dict[str, Any]:
    """
    Construct every long-lived collaborator from settings.

    Postgres and Redis are used when configured; otherwise process-local
    in-memory implementations are used (local development only).
    """
    if settings.redis_url:
        backend = RedisCacheBackend(settings.redis_url)
    else:
        logger.warning("redis_not_configured", fallback="in_memory_cache")
        backend = InMemoryCacheBackend()
    cache = SearchCache(
        backend,
        search_ttl=settings.search_cache_ttl_seconds,
        analytics_ttl=settings.analytics_cache_ttl_seconds,
    )

    pool = None
    if settings.database_url:
        pool = await create_pool(settings.database_url)
        resume_store = PostgresResumeStore(pool)
        conversations = PostgresConversationStore(pool)
        event_log = PostgresEventLog(pool)
    else:
        logger.warning("database_not_configured", fallback="in_memory_stores")
        resume_store = InMemoryResumeStore()
        conversations = InMemoryConversationStore()
        event_log = InMemoryEventLog()

    gateway = ReasoningGateway.from_settings(settings)
    orchestrator = SearchOrchestrator(
        cache=cache,
        resume_store=resume_store,
        conversations=conversations,
        event_log=event_log,
        gateway=gateway,
        max_history_turns=settings.max_history_turns,
        candidate_text_limit=settings.candidate_text_limit,
    )

    return {
        "cache": cache,
        "pool": pool,
        "resume_store": resume_store,
        "conversations": conversations,
        "event_log": event_log,
        "gateway": gateway,
        "orchestrator": orchestrator,
        "analytics": AnalyticsService(event_log, cache),
        "token_verifier": TokenVerifier(settings.jwt_secret, settings.jwt_algorithm),
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build collaborators on startup and release connections on shutdown."""
    settings: Settings = app.state.settings
    owned = not hasattr(app.state, "orchestrator")

    if owned:
        logger.info("building_components", provider=settings.reasoning_provider)
        for name, component in (await build_components(settings)).items():
            setattr(app.state, name, component)

    yield

    if owned:
        logger.info("shutting_down")
        await app.state.cache.backend.close()
        if app.state.pool is not None:
            await app.state.pool.close()


def _error_response(error: SearchServiceError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content={"error": error.to_dict()})


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(SearchServiceError)
    async def search_service_error_handler(request: Request, exc: SearchServiceError):
        logger.info("request_failed", path=request.url.path, code=exc.code)
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.info("request_invalid", path=request.url.path, errors=len(exc.errors()))
        return JSONResponse(
            status_code=400,
            content={"error": {"code": "invalid_input", "message": "Invalid input", "retryable": False}},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("request_unhandled_error", path=request.url.path, error_type=type(exc).__name__)
        return JSONResponse(
            status_code=500,
            content={"error": {"code": "internal_error", "message": "Internal server error", "retryable": False}},
        )


async def _health(request: Request) -> JSONResponse:
    """Liveness plus collaborator configuration, secrets never included."""
    settings: Settings = request.app.state.settings
    state = request.app.state

    checks: Dict[str, str] = {
        "auth": "configured" if settings.jwt_secret else "missing",
        "reasoning_provider": settings.reasoning_provider,
        "cache": "redis" if settings.redis_url else "in_memory",
        "database": "postgres" if settings.database_url else "in_memory",
    }
    healthy = bool(settings.jwt_secret)

    cache: Optional[SearchCache] = getattr(state, "cache", None)
    if cache is not None and not await cache.backend.ping():
        # The cache is optional; a failing ping degrades but never fails the service.
        checks["cache"] = "unreachable"

    pool = getattr(state, "pool", None)
    if pool is not None:
        try:
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
        except Exception as e:
            logger.error("database_health_check_failed", error_type=type(e).__name__)
            checks["database"] = "unreachable"
            healthy = False

    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "ok" if healthy else "unhealthy", "version": VERSION, "checks": checks},
    )


def create_app(settings: Optional[Settings] = None, components: Optional[Dict[str, Any]] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        settings: Runtime settings; read from the environment when omitted
        components: Pre-built collaborators (tests); skips construction in the lifespan
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Resume Search API",
        description="Conversational resume search over permission-scoped candidates",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    if components:
        for name, component in components.items():
            setattr(app.state, name, component)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_exception_handlers(app)

    app.include_router(search_router)
    app.include_router(analytics_router)
    app.add_api_route("/health", _health, methods=["GET"], tags=["health"])
    app.add_api_route("/api/v1/health", _health, methods=["GET"], tags=["health"])

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
