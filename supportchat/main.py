"""
Support Chat Relay - FastAPI Application
Relays customer-support chat to an upstream completion provider and streams
the answer back to the browser while persisting the conversation.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from supportchat import __version__
from supportchat.api.middleware import register_middleware
from supportchat.api.routes import all_routers
from supportchat.config import config, Config
from supportchat.db import Database
from supportchat.errors import ChatError
from supportchat.relay import RelayClient
from supportchat.services.chat_service import ChatService
from supportchat.services.conversation_service import ConversationService

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler: wire up the store and the relay client."""
    logger.info("Starting Support Chat Relay...")

    Config.validate()

    database: Database = app.state.database or Database()
    database.initialize()

    relay: RelayClient = app.state.relay or RelayClient(**Config.get_relay_config())

    conversation_service = ConversationService(database, default_model=relay.default_model)
    app.state.database = database
    app.state.relay = relay
    app.state.conversation_service = conversation_service
    app.state.chat_service = ChatService(
        conversation_service,
        relay,
        temperature=config.LLM_TEMPERATURE,
        max_tokens=config.LLM_MAX_TOKENS,
    )

    logger.info("Support Chat Relay started successfully")

    yield

    logger.info("Shutting down Support Chat Relay...")
    await relay.close()
    database.close()
    logger.info("Support Chat Relay stopped")


def create_app(
    database: Optional[Database] = None,
    relay: Optional[RelayClient] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        database: Store to use instead of the configured SQLite file.
        relay: Relay client to use instead of one built from config.
    """
    app = FastAPI(
        title="Support Chat Relay",
        description="Streaming relay between the support chat UI and an LLM provider",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.database = database
    app.state.relay = relay

    register_middleware(app)
    for router in all_routers:
        app.include_router(router)

    register_exception_handlers(app)
    return app


def register_exception_handlers(app: FastAPI) -> None:
    """Map errors to the ``{"success": false, ...}`` JSON envelope."""

    @app.exception_handler(ChatError)
    async def chat_error_handler(request, exc: ChatError):
        if exc.status_code >= 500:
            logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc)
        else:
            logger.info("%s on %s %s: %s", exc.code, request.method, request.url.path, exc)
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.public_message, "code": exc.code},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request, exc: RequestValidationError):
        errors = exc.errors()
        detail = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": detail, "code": "VALIDATION_ERROR"},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request, exc):
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Invalid request", "detail": str(exc)}
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request, exc):
        logger.error(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error", "code": "INTERNAL_ERROR"}
        )


app = create_app()


# Entry point for running with uvicorn directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "supportchat.main:app",
        host=config.API_HOST,
        port=config.API_PORT,
        reload=False,
        log_level=config.LOG_LEVEL.lower()
    )
