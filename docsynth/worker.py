"""Celery worker entry point.

Background worker for generating documents asynchronously.
Uses an event loop to run async tasks within Celery workers.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from celery import Celery, shared_task
from celery.exceptions import SoftTimeLimitExceeded
from celery.signals import worker_process_init, worker_ready
from sqlalchemy import text

from docsynth.core.config import Settings, get_settings
from docsynth.core.errors import ErrorKind, GenerationError, GenerationTimeout
from docsynth.core.factory import ComponentFactory
from docsynth.core.logging_config import setup_logging
from docsynth.core.orchestrator import GenerationOrchestrator, GenerationOutcome
from docsynth.db.session import build_engine, build_session_maker

logger = logging.getLogger(__name__)

# Initialize Celery app
settings: Settings = get_settings()

celery_app = Celery(
    "docsynth_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["docsynth.worker"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    task_time_limit=settings.task_time_limit,
    task_soft_time_limit=settings.task_soft_time_limit,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=50,
)


@worker_process_init.connect
def on_worker_process_init(**kwargs):
    """Set up file and console logging in each worker process."""
    setup_logging(settings)


@worker_ready.connect
def on_worker_ready(**kwargs):
    """Log when worker is ready."""
    logger.info("Celery worker is ready and listening for tasks")


def run_async(coro):
    """Run an async coroutine in a new event loop.

    Celery workers don't have a running event loop, so we need
    to create one for async operations.

    Args:
        coro: The async coroutine to run.

    Returns:
        The result of the coroutine.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def should_retry(error: GenerationError, retries: int, settings: Settings) -> bool:
    """Return True if another attempt may be scheduled.

    Args:
        error: The error the attempt ended with.
        retries: Retries already performed (0 on the first attempt).
        settings: Settings carrying ``job_max_attempts``.
    """
    return error.retryable and retries + 1 < settings.job_max_attempts


@shared_task(bind=True, name="docsynth.worker.generate_document")
def generate_document_task(self, request_id: str, instruction: str, allow_retry: bool = False) -> dict:
    """Generate the document of a generation request.

    The first attempt claims a PENDING request; retries claim it back from
    FAILED. Retryable failures are rescheduled with the configured backoff
    until ``job_max_attempts`` is reached. An attempt cut short by the soft
    time limit or an unexpected error is marked FAILED here, so the request
    never stays PROCESSING.

    Args:
        self: Celery task instance (for bind=True).
        request_id: The UUID of the generation request.
        instruction: The user's natural-language instruction.
        allow_retry: Claim a FAILED request on the first attempt too (explicit
            retry requested through the API).

    Returns:
        Dict with the attempt result.
    """
    settings = get_settings()
    retries = self.request.retries or 0

    logger.info(f"Starting generation {request_id} (attempt {retries + 1}/{settings.job_max_attempts})")

    try:
        outcome = run_async(
            _generate_document_async(request_id, instruction, allow_retry=allow_retry or retries > 0)
        )
    except GenerationError as e:
        if should_retry(e, retries, settings):
            countdown = settings.backoff_for(retries)
            logger.warning(f"Generation {request_id} will be retried in {countdown}s: {e.message}")
            raise self.retry(exc=e, countdown=countdown, max_retries=settings.job_max_attempts - 1)

        return {
            "status": "failed",
            "request_id": request_id,
            "kind": e.kind.value,
            "error": e.message,
        }
    except SoftTimeLimitExceeded:
        logger.error(f"Generation {request_id} hit the task time limit ({settings.task_soft_time_limit}s)")
        error = GenerationTimeout(f"Generation exceeded the task time limit of {settings.task_soft_time_limit}s")
        return _fail_attempt(request_id, error)
    except Exception as e:
        logger.exception(f"Fatal error in generate_document_task for {request_id}: {e}")
        error = GenerationError(f"Fatal error: {e}", kind=ErrorKind.INTERNAL_ERROR)
        return _fail_attempt(request_id, error)

    return {
        "status": outcome.status.value,
        "request_id": request_id,
        "claimed": outcome.claimed,
        "result_file_path": outcome.result_file_path,
    }


def _fail_attempt(request_id: str, error: GenerationError) -> dict:
    """Mark a still-PROCESSING request FAILED after the attempt died outside the orchestrator."""
    try:
        run_async(_abandon_async(request_id, error))
    except Exception as e:
        # The request is reclaimed once its attempt is older than the hard time limit.
        logger.error(f"Could not mark generation {request_id} failed: {e}", exc_info=True)

    return {
        "status": "failed",
        "request_id": request_id,
        "kind": error.kind.value,
        "error": error.message,
    }


@asynccontextmanager
async def _orchestrator_scope():
    """Yield an orchestrator on an engine owned by the current event loop."""
    settings = get_settings()
    engine = build_engine(settings.database_url)
    try:
        yield GenerationOrchestrator(
            session_maker=build_session_maker(engine),
            factory=ComponentFactory(settings),
            settings=settings,
        )
    finally:
        await engine.dispose()


async def _generate_document_async(request_id: str, instruction: str, allow_retry: bool) -> GenerationOutcome:
    """Run one attempt.

    Args:
        request_id: The UUID of the generation request.
        instruction: The user's natural-language instruction.
        allow_retry: Whether a FAILED request may be claimed.

    Returns:
        The GenerationOutcome of the attempt.
    """
    async with _orchestrator_scope() as orchestrator:
        return await orchestrator.run(request_id, instruction, allow_retry=allow_retry)


async def _abandon_async(request_id: str, error: GenerationError) -> bool:
    async with _orchestrator_scope() as orchestrator:
        return await orchestrator.abandon(request_id, error)


@shared_task(name="docsynth.worker.health_check")
def health_check_task() -> dict:
    """Health check task for monitoring worker status.

    Returns:
        Dict with worker health status.
    """
    try:
        logger.debug("Running health check")
        return run_async(_health_check_async())
    except Exception as e:
        logger.exception(f"Health check failed: {e}")
        return {
            "status": "unhealthy",
            "error": str(e),
        }


async def _health_check_async() -> dict:
    """Async health check implementation.

    Returns:
        Dict with worker health status.
    """
    settings = get_settings()

    # Check database connection
    engine = build_engine(settings.database_url)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.debug("Database health check passed")
    except Exception as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return {
            "status": "unhealthy",
            "database": "disconnected",
            "error": str(e),
        }
    finally:
        await engine.dispose()

    ai_configured = ComponentFactory(settings).get_ai_client().is_configured

    return {
        "status": "healthy",
        "database": "connected",
        "ai_client": "configured" if ai_configured else "unconfigured",
    }
