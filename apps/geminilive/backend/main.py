"""
geminilive.main
===============
Entrypoint that stitches everything together:

• config / CORS
• shared objects on `app.state` (relay session registry)
• route registration (health + conversation WebSocket)
• optional static hosting of the browser client
"""

from __future__ import annotations

from utils.telemetry_config import setup_tracing

# ---------------- Monitoring ------------------------------------------------
setup_tracing(service_name="gemini-live-relay")

from utils.ml_logging import get_logger

logger = get_logger("main")

import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from opentelemetry import trace

from apps.geminilive.backend import settings
from apps.geminilive.backend.routers import health, realtime
from src.pools.session_manager import RelaySessionManager


# --------------------------------------------------------------------------- #
#  Lifecycle Management
# --------------------------------------------------------------------------- #
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create process-wide shared state on startup and close every live relay
    on shutdown.

    :param app: The FastAPI application instance.
    """
    tracer = trace.get_tracer(__name__)

    with tracer.start_as_current_span("startup-lifespan") as span:
        logger.info("🚀 startup…")
        start_time = time.perf_counter()
        app.state.session_manager = RelaySessionManager()
        span.set_attributes(
            {
                "service.name": "gemini-live-relay",
                "startup.has_api_key": bool(settings.GEMINI_API_KEY),
            }
        )
        logger.info(
            f"Startup complete in {time.perf_counter() - start_time:.3f}s "
            f"(default voice={settings.DEFAULT_VOICE}, voices={len(settings.VOICES)})"
        )

    yield

    with tracer.start_as_current_span("shutdown-lifespan"):
        logger.info("🛑 shutdown…")
        closed = await app.state.session_manager.close_all()
        logger.info(f"Shutdown complete, closed {closed} relay session(s)")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Gemini Live Relay",
        description="Real-time voice/video relay between browser clients and the Gemini Live API",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(realtime.router)

    # Mounted last so API and WebSocket routes take precedence
    if settings.STATIC_DIR.is_dir():
        app.mount("/", StaticFiles(directory=settings.STATIC_DIR, html=True), name="static")
        logger.info(f"Serving static client from {settings.STATIC_DIR}")
    else:
        logger.info(f"No static client directory at {settings.STATIC_DIR}, skipping mount")

    return app


app = create_app()


def main() -> None:
    logger.keyinfo(f"Gemini Live server running at http://localhost:{settings.PORT}")
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    main()
