"""FastAPI dependencies for dependency injection.

Provides reusable dependencies for routes including:
- Database sessions
- The generation orchestrator
- Task dispatch to the Celery worker
"""

import logging
from collections.abc import AsyncGenerator, Callable

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from docsynth.core.config import Settings, get_settings
from docsynth.core.factory import ComponentFactory
from docsynth.core.orchestrator import GenerationOrchestrator
from docsynth.db.session import get_async_session, get_session_maker

logger = logging.getLogger(__name__)

TaskDispatcher = Callable[..., str]


def get_app_settings(request: Request) -> Settings:
    """Dependency for the settings the application was created with."""
    return getattr(request.app.state, "settings", None) or get_settings()


async def get_db(
    settings: Settings = Depends(get_app_settings),
) -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions.

    Args:
        settings: Application settings.

    Yields:
        An async database session.
    """
    try:
        async for session in get_async_session(settings):
            yield session
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting database session: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database connection error",
        ) from e


def get_component_factory(settings: Settings = Depends(get_app_settings)) -> ComponentFactory:
    return ComponentFactory(settings)


def get_orchestrator(
    settings: Settings = Depends(get_app_settings),
    factory: ComponentFactory = Depends(get_component_factory),
) -> GenerationOrchestrator:
    """Dependency for the orchestrator bound to the application database."""
    return GenerationOrchestrator(
        session_maker=get_session_maker(settings),
        factory=factory,
        settings=settings,
    )


def enqueue_generation(request_id: str, instruction: str, allow_retry: bool = False) -> str:
    """Send a generation to the Celery worker and return the task id."""
    from docsynth.worker import generate_document_task

    result = generate_document_task.delay(request_id, instruction, allow_retry)
    logger.info(f"Queued generation {request_id} as task {result.id}")
    return result.id


def get_task_dispatcher() -> TaskDispatcher:
    return enqueue_generation
