"""
API middleware: authentication, CORS, etc.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from supportchat.config import config

# Endpoints that never require authentication
PUBLIC_ENDPOINTS = {"/health", "/docs", "/redoc", "/openapi.json"}


async def api_key_middleware(request, call_next):
    """
    Verify API key for all endpoints except public ones.
    If API_KEY is not configured, all requests are allowed (dev mode).
    """
    if request.url.path in PUBLIC_ENDPOINTS or request.method == "OPTIONS":
        return await call_next(request)

    if not config.API_KEY:
        return await call_next(request)

    api_key = request.headers.get("X-API-Key")
    if not api_key:
        return JSONResponse(
            status_code=401,
            content={
                "success": False,
                "error": "Missing API key. Include 'X-API-Key' header.",
                "code": "UNAUTHORIZED",
            },
        )

    if api_key != config.API_KEY:
        return JSONResponse(
            status_code=403,
            content={"success": False, "error": "Invalid API key", "code": "FORBIDDEN"},
        )

    return await call_next(request)


def register_middleware(app: FastAPI) -> None:
    """Attach all middleware to the FastAPI app."""
    # API key authentication
    app.middleware("http")(api_key_middleware)

    # CORS, added last so it wraps the key check and answers preflights
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
