"""FastAPI routers and dependencies."""

from docsynth.api.deps import get_app_settings, get_db, get_orchestrator, get_task_dispatcher
from docsynth.api.generations import router as generations_router
from docsynth.api.templates import router as templates_router

__all__ = [
    "get_app_settings",
    "get_db",
    "get_orchestrator",
    "get_task_dispatcher",
    "generations_router",
    "templates_router",
]
