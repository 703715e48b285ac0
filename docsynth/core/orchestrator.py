"""Generation orchestrator.

Runs one generation attempt end to end:
1. Claim the request (atomic status transition to PROCESSING)
2. Load request and template
3. Read the optional source document (best effort)
4. Extract structure -> build prompt -> call the AI -> parse -> assemble
5. Record COMPLETED with the result path, or FAILED with the error message

Failures are re-raised so the dispatcher can decide on a retry from the
exception's ``retryable`` flag.

Assembly writes to a staging file unique to the attempt; only a successful
attempt promotes it to ``generated/<request_id>.<ext>``. An assembly thread
that outlives a timed-out attempt removes its own staging file.
"""

import asyncio
import logging
import os
import threading
import uuid
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docsynth.core.config import Settings
from docsynth.core.errors import (
    ErrorKind,
    GenerationError,
    GenerationTimeout,
    SourceExtractionFailure,
    TemplateNotFound,
)
from docsynth.core.factory import ComponentFactory
from docsynth.db.models import DocumentTemplate, GenerationRequest, GenerationStatus, utcnow
from docsynth.strategies.template_engine.assembler import AssemblyReport
from docsynth.strategies.template_engine.models import OutputKind

logger = logging.getLogger(__name__)

MAX_ERROR_MESSAGE_LENGTH = 2048
GENERATED_DIR_NAME = "generated"


@dataclass
class GenerationOutcome:
    """Result of one call to ``GenerationOrchestrator.run``."""

    request_id: uuid.UUID
    status: GenerationStatus
    claimed: bool = True
    result_file_path: str | None = None
    error_message: str | None = None
    report: AssemblyReport | None = None


def truncate_message(message: str, limit: int = MAX_ERROR_MESSAGE_LENGTH) -> str:
    return message if len(message) <= limit else message[: limit - 3] + "..."


def _as_uuid(value: uuid.UUID | str) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


class GenerationOrchestrator:
    """Drives generation requests through their state machine.

    PENDING -> PROCESSING -> COMPLETED | FAILED, and FAILED -> PROCESSING
    only when the caller asks for a retry. The claim is a conditional UPDATE,
    so two workers can never process the same request at once. A PROCESSING
    request whose attempt started longer ago than the hard task time limit
    has lost its worker and may be claimed again.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        factory: ComponentFactory,
        settings: Settings,
    ) -> None:
        self._session_maker = session_maker
        self._factory = factory
        self._settings = settings

    # =========================================================================
    # Request records
    # =========================================================================

    async def create_request(
        self,
        template_id: uuid.UUID | str,
        source_file_path: str | None = None,
    ) -> GenerationRequest:
        """Persist a new PENDING request.

        Raises:
            TemplateNotFound: If the template does not exist.
        """
        template_id = _as_uuid(template_id)

        async with self._session_maker() as session:
            template = await session.get(DocumentTemplate, template_id)
            if template is None:
                raise TemplateNotFound(f"Template not found: {template_id}")

            request = GenerationRequest(
                template_id=template_id,
                source_file_path=source_file_path,
                status=GenerationStatus.PENDING,
            )
            session.add(request)
            await session.commit()
            await session.refresh(request)

        logger.info(f"Created generation request {request.id} for template {template_id}")
        return request

    async def get_request(self, request_id: uuid.UUID | str) -> GenerationRequest | None:
        async with self._session_maker() as session:
            return await session.get(GenerationRequest, _as_uuid(request_id))

    async def set_task_id(self, request_id: uuid.UUID | str, task_id: str) -> None:
        async with self._session_maker() as session:
            await session.execute(
                update(GenerationRequest)
                .where(GenerationRequest.id == _as_uuid(request_id))
                .values(task_id=task_id, updated_at=utcnow())
            )
            await session.commit()

    async def claim(self, request_id: uuid.UUID | str, allow_retry: bool = False) -> bool:
        """Move a request to PROCESSING if nobody else has.

        Args:
            request_id: The request to claim.
            allow_retry: Also accept requests in FAILED.

        Returns:
            True if this caller now owns the attempt.
        """
        request_id = _as_uuid(request_id)
        allowed = [GenerationStatus.PENDING]
        if allow_retry:
            allowed.append(GenerationStatus.FAILED)

        now = utcnow()
        async with self._session_maker() as session:
            result = await session.execute(
                update(GenerationRequest)
                .where(
                    GenerationRequest.id == request_id,
                    or_(GenerationRequest.status.in_(allowed), self._stale_clause(now)),
                )
                .values(
                    status=GenerationStatus.PROCESSING,
                    error_message=None,
                    result_file_path=None,
                    attempt_count=GenerationRequest.attempt_count + 1,
                    processing_started_at=now,
                    processing_completed_at=None,
                    updated_at=now,
                )
            )
            await session.commit()

        claimed = result.rowcount == 1
        if claimed:
            logger.info(f"Claimed generation request {request_id}")
        else:
            logger.warning(f"Generation request {request_id} could not be claimed")
        return claimed

    def _stale_clause(self, now):
        cutoff = now - timedelta(seconds=self._settings.task_time_limit)
        return and_(
            GenerationRequest.status == GenerationStatus.PROCESSING,
            GenerationRequest.processing_started_at < cutoff,
        )

    async def is_stale(self, request_id: uuid.UUID | str) -> bool:
        """Return True if the request is PROCESSING without a live attempt."""
        async with self._session_maker() as session:
            result = await session.execute(
                select(GenerationRequest.id).where(
                    GenerationRequest.id == _as_uuid(request_id),
                    self._stale_clause(utcnow()),
                )
            )
            return result.first() is not None

    async def abandon(
        self,
        request_id: uuid.UUID | str,
        error: GenerationError,
        expected: GenerationStatus = GenerationStatus.PROCESSING,
    ) -> bool:
        """Mark a request FAILED if it is still in ``expected``.

        Used when an attempt ends outside ``run`` (task time limit, worker
        error, failed dispatch).

        Returns:
            True if the request was moved to FAILED.
        """
        request_id = _as_uuid(request_id)
        now = utcnow()
        async with self._session_maker() as session:
            result = await session.execute(
                update(GenerationRequest)
                .where(
                    GenerationRequest.id == request_id,
                    GenerationRequest.status == expected,
                )
                .values(
                    status=GenerationStatus.FAILED,
                    result_file_path=None,
                    error_message=truncate_message(error.message or error.kind.value),
                    processing_completed_at=now,
                    updated_at=now,
                )
            )
            await session.commit()

        abandoned = result.rowcount == 1
        if abandoned:
            self._remove_output(request_id)
            logger.error(f"Generation {request_id} abandoned ({error.kind.value}): {error.message}")
        return abandoned

    # =========================================================================
    # Attempt
    # =========================================================================

    async def run(
        self,
        request_id: uuid.UUID | str,
        instruction: str,
        allow_retry: bool = False,
    ) -> GenerationOutcome:
        """Run one attempt for a request.

        Returns an outcome with ``claimed=False`` when the request was not
        claimable (missing, in progress elsewhere or already completed).

        Raises:
            GenerationError: The attempt failed; the request is FAILED.
        """
        request_id = _as_uuid(request_id)

        if not await self.claim(request_id, allow_retry=allow_retry):
            request = await self.get_request(request_id)
            return GenerationOutcome(
                request_id=request_id,
                status=request.status if request else GenerationStatus.FAILED,
                claimed=False,
                result_file_path=request.result_file_path if request else None,
                error_message=request.error_message if request else "Request not found",
            )

        attempt_token = uuid.uuid4().hex
        cancelled = threading.Event()
        timeout = self._settings.job_timeout_seconds
        try:
            kind, report = await asyncio.wait_for(
                self._execute(request_id, instruction, attempt_token, cancelled),
                timeout=timeout,
            )
            result_path = self._promote(request_id, attempt_token, kind)
        except asyncio.TimeoutError:
            cancelled.set()
            error = GenerationTimeout(f"Generation exceeded {timeout:g}s")
            await self._mark_failed(request_id, error, attempt_token)
            raise error from None
        except GenerationError as e:
            await self._mark_failed(request_id, e, attempt_token)
            raise
        except Exception as e:
            logger.exception(f"Unexpected error while generating {request_id}")
            error = GenerationError(f"Internal error: {e}", kind=ErrorKind.INTERNAL_ERROR)
            await self._mark_failed(request_id, error, attempt_token)
            raise error from e

        try:
            await self._mark_completed(request_id, result_path)
        except Exception as e:
            logger.exception(f"Could not record completion of {request_id}")
            error = GenerationError(f"Internal error: {e}", kind=ErrorKind.INTERNAL_ERROR)
            await self._mark_failed(request_id, error, attempt_token)
            raise error from e

        return GenerationOutcome(
            request_id=request_id,
            status=GenerationStatus.COMPLETED,
            result_file_path=result_path,
            report=report,
        )

    async def _execute(
        self,
        request_id: uuid.UUID,
        instruction: str,
        attempt_token: str,
        cancelled: threading.Event,
    ) -> tuple[OutputKind, AssemblyReport]:
        async with self._session_maker() as session:
            request = await session.get(GenerationRequest, request_id)
            if request is None:
                raise GenerationError(f"Generation request {request_id} disappeared")
            template = await session.get(DocumentTemplate, request.template_id)
            if template is None:
                raise TemplateNotFound(f"Template not found: {request.template_id}")

        kind = OutputKind(template.output_kind)
        template_path = self.resolve_path(template.template_path)
        source_text = await self._load_source(request.source_file_path)

        extractor = self._factory.get_extractor()
        structure = await asyncio.to_thread(extractor.extract, template_path, kind)
        logger.debug(f"Template structure: {extractor.describe(structure)}")

        prompt = self._factory.get_prompt_builder().build(structure, instruction, source_text)
        logger.debug(f"Prompt for {request_id}:\n{prompt}")

        if kind is OutputKind.DOCX:
            max_tokens = self._settings.docx_max_output_tokens
        else:
            max_tokens = self._settings.xlsx_max_output_tokens

        reply = await self._factory.get_ai_client().generate_text(prompt, max_output_tokens=max_tokens)
        logger.debug(f"Raw reply for {request_id}:\n{reply}")

        blocks = self._factory.get_response_parser().parse(reply, kind)
        logger.info(f"Parsed {len(blocks)} content block(s) for {request_id}")

        report = await asyncio.to_thread(
            self._assemble_staged,
            structure,
            blocks,
            template_path,
            self._staging_path(request_id, attempt_token, kind),
            cancelled,
        )
        return kind, report

    def _assemble_staged(self, structure, blocks, template_path: Path, staging_path: Path, cancelled: threading.Event):
        # Runs in a worker thread that may outlive a timed-out attempt.
        try:
            return self._factory.get_assembler().assemble(structure, blocks, template_path, staging_path)
        finally:
            if cancelled.is_set():
                staging_path.unlink(missing_ok=True)

    def _staging_path(self, request_id: uuid.UUID, attempt_token: str, kind: OutputKind) -> Path:
        return self.resolve_path(f"{GENERATED_DIR_NAME}/.{request_id}.{attempt_token}{kind.extension}")

    def _promote(self, request_id: uuid.UUID, attempt_token: str, kind: OutputKind) -> str:
        relative_path = f"{GENERATED_DIR_NAME}/{request_id}{kind.extension}"
        os.replace(self._staging_path(request_id, attempt_token, kind), self.resolve_path(relative_path))
        return relative_path

    async def _load_source(self, source_file_path: str | None) -> str | None:
        if not source_file_path:
            return None
        try:
            source = await self._factory.get_source_parser().aload_text(self.resolve_path(source_file_path))
        except SourceExtractionFailure as e:
            logger.warning(f"Continuing without reference data: {e.message}")
            return None
        return source.content

    def resolve_path(self, stored_path: str) -> Path:
        """Resolve a path stored on a record against the storage root."""
        return self._settings.storage_dir / stored_path

    # =========================================================================
    # Terminal states
    # =========================================================================

    async def _mark_completed(self, request_id: uuid.UUID, result_path: str) -> None:
        now = utcnow()
        async with self._session_maker() as session:
            await session.execute(
                update(GenerationRequest)
                .where(GenerationRequest.id == request_id)
                .values(
                    status=GenerationStatus.COMPLETED,
                    result_file_path=result_path,
                    error_message=None,
                    processing_completed_at=now,
                    updated_at=now,
                )
            )
            await session.commit()

        logger.info(f"Generation {request_id} completed: {result_path}")

    async def _mark_failed(
        self,
        request_id: uuid.UUID,
        error: GenerationError,
        attempt_token: str | None = None,
    ) -> None:
        self._remove_output(request_id, attempt_token)

        now = utcnow()
        async with self._session_maker() as session:
            await session.execute(
                update(GenerationRequest)
                .where(GenerationRequest.id == request_id)
                .values(
                    status=GenerationStatus.FAILED,
                    result_file_path=None,
                    error_message=truncate_message(error.message or error.kind.value),
                    processing_completed_at=now,
                    updated_at=now,
                )
            )
            await session.commit()

        logger.error(
            f"Generation {request_id} failed ({error.kind.value}, "
            f"retryable={error.retryable}): {error.message}"
        )

    def _remove_output(self, request_id: uuid.UUID, attempt_token: str | None = None) -> None:
        for kind in OutputKind:
            self.resolve_path(f"{GENERATED_DIR_NAME}/{request_id}{kind.extension}").unlink(missing_ok=True)
            if attempt_token:
                self._staging_path(request_id, attempt_token, kind).unlink(missing_ok=True)
