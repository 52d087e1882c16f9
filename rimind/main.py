"""FastAPI application entry point for the Rimind backend."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from rimind.api.routes.auth import router as auth_router
from rimind.api.routes.chat import router as chat_router
from rimind.config import Settings
from rimind.config import settings as default_settings
from rimind.core.deps import build_container
from rimind.core.errors import RimindError
from rimind.database import init_db
from rimind.services.assistant import Assistant

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Root log level and format; verbose outside production."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger().setLevel(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup, release the engine on shutdown."""
    container = app.state.container

    await init_db(container.engine)
    purged = await container.challenges.purge_expired()
    if purged:
        logger.info(f"Removed {purged} stale challenges")

    if container.orchestrator.assistant is None:
        logger.warning("OPENAI_API_KEY not set: assistant replies are disabled")

    yield

    await container.engine.dispose()


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RimindError)
    async def rimind_exception_handler(request: Request, exc: RimindError):
        """Domain errors carry their own status code and client-safe message."""
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Missing or malformed input is a 400, reported with the first problem."""
        errors = exc.errors()
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{location}: {first.get('msg')}" if location else first.get("msg")
        else:
            message = "Invalid request"
        return JSONResponse(status_code=400, content={"message": message})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """
        Handle unhandled exceptions with generic error response.

        Internal error details are never sent to the client.
        """
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"message": "Internal server error"}
        )


def create_app(
    settings: Optional[Settings] = None,
    assistant: Optional[Assistant] = None,
) -> FastAPI:
    """
    Build the application and its component graph.

    Args:
        settings: Settings to use instead of the environment-loaded ones
        assistant: Assistant to use instead of the OpenAI one from settings

    Returns:
        Configured FastAPI app
    """
    settings = settings or default_settings
    configure_logging(settings)

    app = FastAPI(
        title="Rimind API",
        description="Wallet-signature login and streaming assistant conversations",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.container = build_container(settings, assistant=assistant)

    if settings.CORS_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ORIGINS,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.get("/", response_class=PlainTextResponse)
    def root():
        return "Hello World"

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "ok"}

    # Register auth routes
    app.include_router(auth_router)

    # Register conversation routes
    app.include_router(chat_router)

    register_exception_handlers(app)

    return app


def run() -> None:
    """Serve the app with uvicorn (console script entry point)."""
    import uvicorn

    uvicorn.run("rimind.main:create_app", factory=True, host="0.0.0.0", port=3000)


if __name__ == "__main__":
    run()
