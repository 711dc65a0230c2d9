"""FastAPI application entry point.

Startup sequence: load settings → ensure uploads dir → init Gemini relay.
"""

from contextlib import asynccontextmanager

import structlog
import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from zaytoon.api.routes import router
from zaytoon.core.config import Settings
from zaytoon.core.errors import ConfigError, RelayError
from zaytoon.core.llm_adapter import GeminiRelay
from zaytoon.core.uploads import ensure_upload_dir

load_dotenv()

logger = structlog.get_logger(__name__)

FALLBACK_ERROR = "Something went wrong!"
_CAPPED_CONTENT_TYPES = ("application/json", "application/x-www-form-urlencoded")


def create_app(settings: Settings | None = None, relay: GeminiRelay | None = None) -> FastAPI:
    """Build the application.

    Args:
        settings: Runtime settings. Read from the environment at startup when omitted.
        relay: Model relay. Built from the settings at startup when omitted.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        logger.info("startup.begin")

        try:
            app.state.settings = settings or Settings.from_env()
        except ConfigError as e:
            logger.error("startup.config_failed", error=str(e), hint="Set GEMINI_API_KEY in .env")
            raise

        upload_dir = ensure_upload_dir(app.state.settings.upload_dir)
        logger.info("startup.uploads_ready", path=str(upload_dir))

        app.state.relay = relay or GeminiRelay.from_settings(app.state.settings)
        logger.info("startup.relay_initialized", model=app.state.relay.model_name)

        logger.info("startup.complete")
        yield
        logger.info("shutdown.complete")

    app = FastAPI(
        title="Zaytoon AI API",
        description="Farming assistant relay for Google Gemini",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def body_limit_middleware(request: Request, call_next):
        """Refuse JSON / urlencoded bodies declared larger than the body cap."""
        content_type = request.headers.get("content-type", "")
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and content_type.startswith(_CAPPED_CONTENT_TYPES):
            limit = request.app.state.settings.max_body_bytes
            if int(content_length) > limit:
                logger.warning("request.body_too_large", path=request.url.path,
                               content_length=int(content_length), limit=limit)
                return JSONResponse(status_code=500, content={"error": FALLBACK_ERROR})
        return await call_next(request)

    @app.middleware("http")
    async def fallback_error_middleware(request: Request, call_next):
        """Answer any unhandled exception with a generic 500, inside the CORS layer."""
        try:
            return await call_next(request)
        except Exception as exc:
            logger.error("server.unhandled_error", path=request.url.path, exc_info=exc)
            return JSONResponse(status_code=500, content={"error": FALLBACK_ERROR})

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    app.include_router(router)
    return app


app = create_app()


def run() -> None:
    """Serve ``app`` with uvicorn on HOST:PORT."""
    try:
        settings = Settings.from_env()
    except ConfigError as e:
        logger.error("startup.config_failed", error=str(e))
        raise SystemExit(1)

    logger.info("server.listening", url=f"http://localhost:{settings.port}")
    uvicorn.run("zaytoon.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
