"""CivicTrack API — FastAPI application for civic issues and the chat assistant.

Run:
    uvicorn civictrack.api.main:app --reload
    # or
    civictrack-api
"""

import asyncio
import contextlib
import logging
import uuid
from contextlib import asynccontextmanager

import mlflow
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from civictrack.api.chat import router as chat_router
from civictrack.api.deps import Services, build_services
from civictrack.api.routes import router
from civictrack.config import settings
from civictrack.core.errors import CivicTrackError
from civictrack.observability.logging import correlation_id, setup_logging
from civictrack.observability.tracing import configure_tracking
from civictrack.storage.conversations import ConversationStore

logger = logging.getLogger(__name__)


async def sweep_conversations(conversations: ConversationStore, interval_seconds: float) -> None:
    """Purge expired conversations every interval until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await conversations.purge_expired()
        except Exception:
            logger.exception("Conversation sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services and initialize DB on startup, cleanup on shutdown."""
    setup_logging(json_format=settings.log_json, level=settings.log_level)
    try:
        configure_tracking(settings.mlflow_tracking_uri, settings.mlflow_experiment_name)
    except Exception as e:
        logger.warning("MLflow tracking unavailable: %s", e)

    services: Services = getattr(app.state, "services", None) or build_services(settings)
    app.state.services = services
    logger.info("Initializing database...")
    await services.db.init()

    sweeper = asyncio.create_task(
        sweep_conversations(services.conversations, settings.conversation_sweep_seconds)
    )
    logger.info("CivicTrack API ready")
    yield
    logger.info("Shutting down")
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    await services.db.dispose()


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Set correlation ID from X-Request-ID header or generate a new one."""

    async def dispatch(self, request: Request, call_next):
        cid = request.headers.get("x-request-id", str(uuid.uuid4()))
        token = correlation_id.set(cid)
        try:
            response = await call_next(request)
            response.headers["x-request-id"] = cid
            return response
        finally:
            correlation_id.reset(token)


async def civictrack_error_handler(request: Request, exc: CivicTrackError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", exc.error_type, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error_type": exc.error_type},
    )


def create_app(services: Services | None = None) -> FastAPI:
    """Build the app. Passing services skips construction in the lifespan (tests)."""
    app = FastAPI(
        title="CivicTrack",
        description="Civic issue reporting with geo search and a tool-using chat assistant.",
        version="1.0.0",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(CorrelationIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(CivicTrackError, civictrack_error_handler)

    app.include_router(router)
    app.include_router(chat_router)

    @app.get("/health")
    async def health(request: Request):
        """Health check — verifies DB connectivity, LLM configuration, MLflow."""
        checks = {}

        services = getattr(request.app.state, "services", None)
        if services is None:
            checks["database"] = "not initialized"
            checks["llm"] = "not initialized"
        else:
            try:
                await services.db.ping()
                checks["database"] = "ok"
            except Exception as e:
                checks["database"] = f"error: {e}"
            checks["llm"] = "configured" if services.llm.is_configured else "offline"

        try:
            mlflow.search_experiments(max_results=1)
            checks["mlflow"] = "ok"
        except Exception as e:
            checks["mlflow"] = f"error: {e}"

        status = "healthy" if checks.get("database") == "ok" else "degraded"
        return {"status": status, "checks": checks}

    return app


app = create_app()


def run():
    """Entry point for civictrack-api console script."""
    uvicorn.run("civictrack.api.main:app", host="0.0.0.0", port=8000, reload=True)
