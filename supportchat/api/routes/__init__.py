"""
Route modules for the support chat API.

Each module defines a FastAPI APIRouter for a specific domain.
All routers are collected in ``all_routers`` for easy inclusion.
"""

from supportchat.api.routes.system import router as system_router
from supportchat.api.routes.chat import router as chat_router
from supportchat.api.routes.conversations import router as conversations_router

all_routers = [
    system_router,
    chat_router,
    conversations_router,
]

__all__ = ["all_routers"]
