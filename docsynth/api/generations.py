"""Generation API routes.

Creates generation requests, dispatches them to the worker (or runs them
inline), reports their status and serves the generated files.
"""

import logging
import uuid
from pathlib import Path

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile, status
from fastapi.responses import FileResponse

from docsynth.api.deps import TaskDispatcher, get_app_settings, get_orchestrator, get_task_dispatcher
from docsynth.api.schemas import DispatchMode, GenerationResponse
from docsynth.core.config import Settings
from docsynth.core.errors import DispatchFailure, GenerationError, TemplateNotFound
from docsynth.core.orchestrator import GenerationOrchestrator
from docsynth.db.models import GenerationRequest, GenerationRequestRead, GenerationStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/generations", tags=["generations"])

MEDIA_TYPES = {
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


# =============================================================================
# Helper Functions
# =============================================================================


def _require_instruction(instruction: str) -> str:
    if not instruction or not instruction.strip():
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Instruction must not be empty",
        )
    return instruction.strip()


async def _get_request_or_404(orchestrator: GenerationOrchestrator, request_id: uuid.UUID) -> GenerationRequest:
    request = await orchestrator.get_request(request_id)
    if request is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Generation request {request_id} not found",
        )
    return request


async def _save_source(source_file: UploadFile, settings: Settings) -> str:
    suffix = Path(source_file.filename or "").suffix.lower()
    relative_path = f"sources/{uuid.uuid4()}{suffix}"
    file_path = settings.storage_dir / relative_path
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_bytes(await source_file.read())

    logger.info(f"Saved source file: {file_path}")
    return relative_path


async def _dispatch(
    request_id: uuid.UUID,
    instruction: str,
    dispatch: DispatchMode,
    orchestrator: GenerationOrchestrator,
    dispatcher: TaskDispatcher,
    allow_retry: bool = False,
) -> GenerationResponse:
    match dispatch:
        case DispatchMode.ASYNC:
            try:
                task_id = dispatcher(str(request_id), instruction, allow_retry)
            except Exception as e:
                logger.error(f"Could not queue generation {request_id}: {e}", exc_info=True)
                error = DispatchFailure(f"Could not queue generation: {e}")
                if not allow_retry:
                    await orchestrator.abandon(request_id, error, expected=GenerationStatus.PENDING)
                raise error from e
            await orchestrator.set_task_id(request_id, task_id)
            message = "Generation queued"
        case DispatchMode.SYNC:
            try:
                outcome = await orchestrator.run(request_id, instruction, allow_retry=allow_retry)
            except GenerationError as e:
                message = f"Generation failed ({e.kind.value})"
            else:
                if not outcome.claimed:
                    raise HTTPException(
                        status_code=status.HTTP_409_CONFLICT,
                        detail=f"Generation request {request_id} is already {outcome.status.value}",
                    )
                message = "Generation completed"

    request = await _get_request_or_404(orchestrator, request_id)
    return GenerationResponse(
        request=GenerationRequestRead.model_validate(request, from_attributes=True),
        dispatch=dispatch,
        message=message,
    )


# =============================================================================
# Endpoints
# =============================================================================


@router.post(
    "",
    response_model=GenerationResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_generation(
    response: Response,
    template_id: uuid.UUID = Form(...),
    instruction: str = Form(...),
    source_file: UploadFile | None = File(default=None),
    dispatch: DispatchMode = Form(default=DispatchMode.ASYNC),
    settings: Settings = Depends(get_app_settings),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    dispatcher: TaskDispatcher = Depends(get_task_dispatcher),
) -> GenerationResponse:
    """Create a generation request for a template.

    Args:
        template_id: The template to generate from.
        instruction: Natural-language instruction for the content.
        source_file: Optional reference document (.docx, .xlsx or text).
        dispatch: ``async`` to queue on the worker, ``sync`` to run once inline.

    Raises:
        HTTPException: 422 for a blank instruction, 404 for an unknown template.
    """
    instruction = _require_instruction(instruction)

    source_path = None
    if source_file is not None and source_file.filename:
        source_path = await _save_source(source_file, settings)

    try:
        request = await orchestrator.create_request(template_id, source_file_path=source_path)
    except TemplateNotFound as e:
        if source_path:
            (settings.storage_dir / source_path).unlink(missing_ok=True)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message) from e

    if dispatch is DispatchMode.SYNC:
        response.status_code = status.HTTP_200_OK
    return await _dispatch(request.id, instruction, dispatch, orchestrator, dispatcher)


@router.get("/{request_id}", response_model=GenerationRequestRead)
async def get_generation(
    request_id: uuid.UUID,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationRequest:
    """Get the status of a generation request."""
    return await _get_request_or_404(orchestrator, request_id)


@router.post("/{request_id}/retry", response_model=GenerationResponse, status_code=status.HTTP_202_ACCEPTED)
async def retry_generation(
    request_id: uuid.UUID,
    response: Response,
    instruction: str = Form(...),
    dispatch: DispatchMode = Form(default=DispatchMode.ASYNC),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    dispatcher: TaskDispatcher = Depends(get_task_dispatcher),
) -> GenerationResponse:
    """Retry a failed generation request.

    The instruction is not stored with the request, so it is sent again.
    A PROCESSING request whose worker outlived the task time limit counts
    as failed.

    Raises:
        HTTPException: 404 if unknown, 409 unless the request is FAILED or stale.
    """
    instruction = _require_instruction(instruction)
    request = await _get_request_or_404(orchestrator, request_id)

    retryable = request.status == GenerationStatus.FAILED or (
        request.status == GenerationStatus.PROCESSING and await orchestrator.is_stale(request_id)
    )
    if not retryable:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Only failed requests can be retried (status: {request.status.value})",
        )

    logger.info(f"Retrying generation {request_id} ({dispatch.value})")
    if dispatch is DispatchMode.SYNC:
        response.status_code = status.HTTP_200_OK
    return await _dispatch(request_id, instruction, dispatch, orchestrator, dispatcher, allow_retry=True)


@router.get("/{request_id}/download")
async def download_generation(
    request_id: uuid.UUID,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> FileResponse:
    """Download the generated document.

    Raises:
        HTTPException: 404 if unknown or the file is gone, 409 unless COMPLETED.
    """
    request = await _get_request_or_404(orchestrator, request_id)

    if request.status != GenerationStatus.COMPLETED or not request.result_file_path:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Generation is not completed (status: {request.status.value})",
        )

    file_path = orchestrator.resolve_path(request.result_file_path)
    if not file_path.is_file():
        logger.error(f"Generated file missing on disk: {file_path}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Generated file not found",
        )

    return FileResponse(
        path=str(file_path),
        filename=file_path.name,
        media_type=MEDIA_TYPES.get(file_path.suffix, "application/octet-stream"),
    )
