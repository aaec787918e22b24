import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from handoff.config import settings
from handoff.db import PostgresOrderStore, close_pool, get_pool, init_schema
from handoff.errors import ConflictError, InternalConsistencyError, InvalidTransitionError, OrderNotFoundError
from handoff.metrics import get_metrics_bytes, get_metrics_content_type
from handoff.orchestrator import build_orchestrator
from handoff.redis_client import close_redis, get_redis
from handoff.routes import orders

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    r = await get_redis()
    pool = await get_pool()
    await init_schema(pool)
    app.state.orchestrator = build_orchestrator(PostgresOrderStore(pool), r)
    logger.info("Handoff service ready (lock_ttl_ms=%d, lock_attempts=%d)", settings.lock_ttl_ms, settings.lock_acquire_attempts)
    yield
    await close_pool()
    await close_redis()


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(OrderNotFoundError)
    async def not_found(request: Request, exc: OrderNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": "not_found", "order_id": exc.order_id})

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition(request: Request, exc: InvalidTransitionError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "error": "invalid_transition",
                "code": exc.code,
                "order_id": exc.order_id,
                "current_status": exc.current_status,
                "action": exc.action,
                "detail": str(exc),
            },
        )

    @app.exception_handler(ConflictError)
    async def conflict(request: Request, exc: ConflictError) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={"error": "conflict", "detail": str(exc)},
            headers={"Retry-After": "1"},
        )

    @app.exception_handler(InternalConsistencyError)
    async def internal(request: Request, exc: InternalConsistencyError) -> JSONResponse:
        # Already logged and counted by the orchestrator; keep details out of the response.
        return JSONResponse(status_code=500, content={"detail": "internal error"})


def create_app(lifespan_handler=lifespan) -> FastAPI:
    app = FastAPI(title="Handoff Coordination Engine", lifespan=lifespan_handler)
    app.include_router(orders.router)
    register_error_handlers(app)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus scrape endpoint."""
        return Response(
            content=get_metrics_bytes(),
            media_type=get_metrics_content_type(),
        )

    return app


app = create_app()
