"""Unit tests for the generation orchestrator."""

import asyncio
import time
import uuid
from datetime import timedelta

import pytest
from docx import Document
from openpyxl import load_workbook
from sqlalchemy import update

from docsynth.core.config import Settings
from docsynth.core.errors import (
    EmptyInstruction,
    EmptyOutput,
    ErrorKind,
    GenerationError,
    GenerationTimeout,
    TemplateFileMissing,
    TemplateNotFound,
    UpstreamError,
)
from docsynth.core.orchestrator import GenerationOrchestrator, truncate_message
from docsynth.db.models import DocumentTemplate, GenerationRequest, GenerationStatus, utcnow
from docsynth.strategies.template_engine.assembler import DocumentAssembler
from docsynth.strategies.template_engine.models import OutputKind

END_TO_END_REPLY = "[SECTION-1]\nBudi Santoso\n[/SECTION-1]\n[TABLE]\nName\tScore\nBudi\t85\n[/TABLE]"


class SlowAssembler(DocumentAssembler):
    """Assembler that keeps its thread busy past a short job timeout."""

    def __init__(self, delay: float) -> None:
        self.delay = delay

    def assemble(self, *args, **kwargs):
        time.sleep(self.delay)
        return super().assemble(*args, **kwargs)


@pytest.fixture
def docx_template(tmp_path, make_docx, add_template):
    path = make_docx(tmp_path / "uploads" / "form.docx", ["Nama: ____", [["Name", "Score"]]])
    return add_template(path, OutputKind.DOCX, name="Form")


@pytest.fixture
def xlsx_template(tmp_path, make_xlsx, add_template):
    path = make_xlsx(tmp_path / "uploads" / "scores.xlsx", [["Name", "Score"]])
    return add_template(path, OutputKind.XLSX, name="Scores")


@pytest.fixture
def short_timeout_orchestrator(session_maker, factory):
    """Orchestrator whose attempts time out after 0.3s."""
    settings = Settings(
        _env_file=None,
        storage_dir=factory.settings.storage_dir,
        llm_timeout_seconds=0.1,
        job_timeout_seconds=0.3,
    )
    return GenerationOrchestrator(session_maker=session_maker, factory=factory, settings=settings)


def _create(orchestrator, template_id, source_file_path=None) -> GenerationRequest:
    return asyncio.run(orchestrator.create_request(template_id, source_file_path=source_file_path))


def _get(orchestrator, request_id) -> GenerationRequest:
    return asyncio.run(orchestrator.get_request(request_id))


def _age_attempt(session_maker, request_id, seconds: float) -> None:
    async def _update():
        async with session_maker() as session:
            await session.execute(
                update(GenerationRequest)
                .where(GenerationRequest.id == request_id)
                .values(processing_started_at=utcnow() - timedelta(seconds=seconds))
            )
            await session.commit()

    asyncio.run(_update())


# =============================================================================
# Request Records
# =============================================================================


class TestCreateRequest:
    """Test suite for request creation."""

    def test_creates_pending_request(self, orchestrator, docx_template):
        """Test that a new request starts PENDING with no attempts."""
        request = _create(orchestrator, docx_template.id)

        stored = _get(orchestrator, request.id)
        assert stored.status == GenerationStatus.PENDING
        assert stored.attempt_count == 0
        assert stored.result_file_path is None
        assert stored.error_message is None

    def test_unknown_template(self, orchestrator):
        """Test that an unknown template id raises TemplateNotFound."""
        with pytest.raises(TemplateNotFound):
            _create(orchestrator, uuid.uuid4())


# =============================================================================
# Claim
# =============================================================================


class TestClaim:
    """Test suite for the atomic claim."""

    def test_concurrent_claims_have_one_winner(self, orchestrator, docx_template):
        """Test that two concurrent claims move the request to PROCESSING once."""
        request = _create(orchestrator, docx_template.id)

        async def claim_twice():
            return await asyncio.gather(orchestrator.claim(request.id), orchestrator.claim(request.id))

        results = asyncio.run(claim_twice())

        assert sorted(results) == [False, True]
        stored = _get(orchestrator, request.id)
        assert stored.status == GenerationStatus.PROCESSING
        assert stored.attempt_count == 1
        assert stored.processing_started_at is not None

    def test_missing_request_cannot_be_claimed(self, orchestrator):
        """Test that claiming an unknown request returns False."""
        assert asyncio.run(orchestrator.claim(uuid.uuid4())) is False

    def test_completed_request_cannot_be_claimed(self, orchestrator, fake_ai, docx_template):
        """Test that a COMPLETED request is never claimed again, even on retry."""
        fake_ai.replies = [END_TO_END_REPLY]
        request = _create(orchestrator, docx_template.id)
        asyncio.run(orchestrator.run(request.id, "Isi data Budi"))

        assert asyncio.run(orchestrator.claim(request.id)) is False
        assert asyncio.run(orchestrator.claim(request.id, allow_retry=True)) is False

    def test_failed_request_needs_allow_retry(self, orchestrator, fake_ai, docx_template):
        """Test that a FAILED request is only claimed with allow_retry."""
        fake_ai.replies = [UpstreamError("boom")]
        request = _create(orchestrator, docx_template.id)
        with pytest.raises(UpstreamError):
            asyncio.run(orchestrator.run(request.id, "Isi data Budi"))

        assert asyncio.run(orchestrator.claim(request.id)) is False
        assert asyncio.run(orchestrator.claim(request.id, allow_retry=True)) is True

    # =========================================================================
    # Stale Attempts
    # =========================================================================

    def test_live_processing_request_is_not_taken_over(self, orchestrator, docx_template):
        """Test that a recently claimed request cannot be claimed again."""
        request = _create(orchestrator, docx_template.id)
        assert asyncio.run(orchestrator.claim(request.id)) is True

        assert asyncio.run(orchestrator.is_stale(request.id)) is False
        assert asyncio.run(orchestrator.claim(request.id, allow_retry=True)) is False

    def test_stale_processing_request_is_taken_over(self, orchestrator, session_maker, settings, docx_template):
        """Test that a PROCESSING request older than the hard time limit can be claimed."""
        request = _create(orchestrator, docx_template.id)
        assert asyncio.run(orchestrator.claim(request.id)) is True
        _age_attempt(session_maker, request.id, settings.task_time_limit + 5)

        assert asyncio.run(orchestrator.is_stale(request.id)) is True
        assert asyncio.run(orchestrator.claim(request.id)) is True

        stored = _get(orchestrator, request.id)
        assert stored.status == GenerationStatus.PROCESSING
        assert stored.attempt_count == 2

    def test_redelivered_task_completes_stale_request(self, orchestrator, fake_ai, session_maker, settings, docx_template):
        """Test that a new attempt finishes a request whose worker died."""
        fake_ai.replies = [END_TO_END_REPLY]
        request = _create(orchestrator, docx_template.id)
        asyncio.run(orchestrator.claim(request.id))
        _age_attempt(session_maker, request.id, settings.task_time_limit + 5)

        outcome = asyncio.run(orchestrator.run(request.id, "Isi data Budi"))

        assert outcome.claimed is True
        assert outcome.status == GenerationStatus.COMPLETED


# =============================================================================
# Abandon
# =============================================================================


class TestAbandon:
    """Test suite for failing requests outside an attempt."""

    def test_processing_request_is_failed(self, orchestrator, docx_template):
        """Test that abandoning a PROCESSING request marks it FAILED with the message."""
        request = _create(orchestrator, docx_template.id)
        asyncio.run(orchestrator.claim(request.id))

        abandoned = asyncio.run(orchestrator.abandon(request.id, GenerationTimeout("Task time limit exceeded")))

        assert abandoned is True
        stored = _get(orchestrator, request.id)
        assert stored.status == GenerationStatus.FAILED
        assert stored.error_message == "Task time limit exceeded"
        assert stored.result_file_path is None

    def test_completed_request_is_left_alone(self, orchestrator, fake_ai, settings, docx_template):
        """Test that abandon never touches a COMPLETED request or its file."""
        fake_ai.replies = [END_TO_END_REPLY]
        request = _create(orchestrator, docx_template.id)
        outcome = asyncio.run(orchestrator.run(request.id, "Isi data Budi"))

        abandoned = asyncio.run(orchestrator.abandon(request.id, GenerationTimeout("late")))

        assert abandoned is False
        assert _get(orchestrator, request.id).status == GenerationStatus.COMPLETED
        assert (settings.storage_dir / outcome.result_file_path).is_file()

    def test_pending_request_with_expected_status(self, orchestrator, docx_template):
        """Test that a PENDING request is failed when PENDING is expected."""
        request = _create(orchestrator, docx_template.id)

        abandoned = asyncio.run(
            orchestrator.abandon(request.id, GenerationError("broker down"), expected=GenerationStatus.PENDING)
        )

        assert abandoned is True
        assert _get(orchestrator, request.id).status == GenerationStatus.FAILED


# =============================================================================
# Word Generations
# =============================================================================


class TestRunDocx:
    """Test suite for Word generations."""

    def test_end_to_end(self, orchestrator, fake_ai, settings, docx_template):
        """Test that the reply fills the paragraph and table under the template headers."""
        fake_ai.replies = [END_TO_END_REPLY]
        request = _create(orchestrator, docx_template.id)

        outcome = asyncio.run(orchestrator.run(request.id, "Isi data Budi"))

        assert outcome.status == GenerationStatus.COMPLETED
        assert outcome.result_file_path == f"generated/{request.id}.docx"

        doc = Document(str(settings.storage_dir / outcome.result_file_path))
        assert [p.text for p in doc.paragraphs] == ["Budi Santoso"]
        assert [[c.text for c in row.cells] for row in doc.tables[0].rows] == [
            ["Name", "Score"],
            ["Budi", "85"],
        ]

        stored = _get(orchestrator, request.id)
        assert stored.status == GenerationStatus.COMPLETED
        assert stored.result_file_path == outcome.result_file_path
        assert stored.error_message is None
        assert stored.attempt_count == 1
        assert stored.processing_completed_at is not None

    def test_only_final_output_remains(self, orchestrator, fake_ai, settings, docx_template):
        """Test that a successful attempt leaves no staging file behind."""
        fake_ai.replies = [END_TO_END_REPLY]
        request = _create(orchestrator, docx_template.id)

        asyncio.run(orchestrator.run(request.id, "Isi data Budi"))

        produced = sorted(p.name for p in settings.generated_dir.iterdir())
        assert produced == [f"{request.id}.docx"]

    def test_prompt_and_token_budget(self, orchestrator, fake_ai, docx_template):
        """Test that the prompt describes the template and uses the docx token budget."""
        fake_ai.replies = [END_TO_END_REPLY]
        request = _create(orchestrator, docx_template.id)

        asyncio.run(orchestrator.run(request.id, "Isi data Budi"))

        prompt = fake_ai.prompts[0]
        assert 'SECTION-1 [PARAGRAPH] (name: full name of a person): "Nama: ____"' in prompt
        assert "SECTION-2 [TABLE]: columns = Name, Score" in prompt
        assert "Isi data Budi" in prompt
        assert fake_ai.max_output_tokens == [4000]

    def test_untagged_reply_falls_back(self, orchestrator, fake_ai, settings, docx_template):
        """Test that an untagged reply becomes section 1 and the table keeps its template rows."""
        fake_ai.replies = ["Budi Santoso, mahasiswa teknik"]
        request = _create(orchestrator, docx_template.id)

        outcome = asyncio.run(orchestrator.run(request.id, "Isi data Budi"))

        doc = Document(str(settings.storage_dir / outcome.result_file_path))
        assert [p.text for p in doc.paragraphs] == ["Budi Santoso, mahasiswa teknik"]
        assert [[c.text for c in row.cells] for row in doc.tables[0].rows] == [["Name", "Score"]]

    def test_source_document_is_reference_data(self, orchestrator, fake_ai, settings, docx_template):
        """Test that the source document text is sent as reference data."""
        fake_ai.replies = [END_TO_END_REPLY]
        source = settings.sources_dir / "notes.txt"
        source.parent.mkdir(parents=True, exist_ok=True)
        source.write_text("Budi mendapat nilai 85", encoding="utf-8")
        request = _create(orchestrator, docx_template.id, source_file_path="sources/notes.txt")

        asyncio.run(orchestrator.run(request.id, "Isi data Budi"))

        assert "=== REFERENCE DATA (BEGIN) ===" in fake_ai.prompts[0]
        assert "Budi mendapat nilai 85" in fake_ai.prompts[0]

    def test_source_extraction_failure_is_not_fatal(self, orchestrator, fake_ai, docx_template):
        """Test that an unreadable source document is skipped."""
        fake_ai.replies = [END_TO_END_REPLY]
        request = _create(orchestrator, docx_template.id, source_file_path="sources/missing.docx")

        outcome = asyncio.run(orchestrator.run(request.id, "Isi data Budi"))

        assert outcome.status == GenerationStatus.COMPLETED
        assert "REFERENCE DATA" not in fake_ai.prompts[0]


# =============================================================================
# Excel Generations
# =============================================================================


class TestRunXlsx:
    """Test suite for Excel generations."""

    def test_end_to_end(self, orchestrator, fake_ai, settings, xlsx_template):
        """Test that reply rows are written below the header row."""
        fake_ai.replies = ["Budi\t85\nAni\t92"]
        request = _create(orchestrator, xlsx_template.id)

        outcome = asyncio.run(orchestrator.run(request.id, "Buat dua baris"))

        assert outcome.result_file_path == f"generated/{request.id}.xlsx"
        assert outcome.report.rows_written == 2
        assert fake_ai.max_output_tokens == [3000]

        sheet = load_workbook(str(settings.storage_dir / outcome.result_file_path)).active
        assert [[c.value for c in row] for row in sheet.iter_rows()] == [
            ["Name", "Score"],
            ["Budi", 85],
            ["Ani", 92],
        ]

    def test_reply_without_rows_fails(self, orchestrator, fake_ai, settings, xlsx_template):
        """Test that a reply with no data rows fails without output."""
        fake_ai.replies = ["# no data\n```"]
        request = _create(orchestrator, xlsx_template.id)

        with pytest.raises(EmptyOutput) as exc_info:
            asyncio.run(orchestrator.run(request.id, "Buat dua baris"))

        assert exc_info.value.retryable is False
        stored = _get(orchestrator, request.id)
        assert stored.status == GenerationStatus.FAILED
        assert not (settings.generated_dir / f"{request.id}.xlsx").exists()


# =============================================================================
# Failures
# =============================================================================


class TestFailures:
    """Test suite for failed attempts."""

    def test_empty_instruction_rejected_before_ai_call(self, orchestrator, fake_ai, docx_template):
        """Test that a blank instruction fails before the AI client is called."""
        request = _create(orchestrator, docx_template.id)

        with pytest.raises(EmptyInstruction):
            asyncio.run(orchestrator.run(request.id, "   "))

        assert fake_ai.prompts == []
        assert _get(orchestrator, request.id).status == GenerationStatus.FAILED

    def test_failed_request_has_no_result_path(self, orchestrator, fake_ai, settings, docx_template):
        """Test that a failed request records the message and links no output."""
        fake_ai.replies = [UpstreamError("upstream unavailable")]
        request = _create(orchestrator, docx_template.id)

        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(orchestrator.run(request.id, "Isi data Budi"))

        assert exc_info.value.retryable is True
        stored = _get(orchestrator, request.id)
        assert stored.status == GenerationStatus.FAILED
        assert stored.result_file_path is None
        assert stored.error_message == "upstream unavailable"
        assert not (settings.generated_dir / f"{request.id}.docx").exists()

    def test_retry_after_failure_clears_error(self, orchestrator, fake_ai, docx_template):
        """Test that a retried attempt clears the previous error."""
        fake_ai.replies = [UpstreamError("first attempt"), END_TO_END_REPLY]
        request = _create(orchestrator, docx_template.id)
        with pytest.raises(UpstreamError):
            asyncio.run(orchestrator.run(request.id, "Isi data Budi"))

        skipped = asyncio.run(orchestrator.run(request.id, "Isi data Budi"))
        assert skipped.claimed is False
        assert skipped.status == GenerationStatus.FAILED

        outcome = asyncio.run(orchestrator.run(request.id, "Isi data Budi", allow_retry=True))

        assert outcome.status == GenerationStatus.COMPLETED
        stored = _get(orchestrator, request.id)
        assert stored.error_message is None
        assert stored.attempt_count == 2

    def test_dangling_template(self, orchestrator, session_maker):
        """Test that a request whose template was deleted fails with TemplateNotFound."""

        async def insert_orphan():
            async with session_maker() as session:
                request = GenerationRequest(template_id=uuid.uuid4())
                session.add(request)
                await session.commit()
                return request.id

        request_id = asyncio.run(insert_orphan())

        with pytest.raises(TemplateNotFound):
            asyncio.run(orchestrator.run(request_id, "Isi data"))

        assert _get(orchestrator, request_id).status == GenerationStatus.FAILED

    def test_template_file_missing(self, orchestrator, fake_ai, session_maker):
        """Test that a missing template file fails before the AI call."""

        async def insert_template():
            async with session_maker() as session:
                template = DocumentTemplate(
                    name="Gone",
                    output_kind=OutputKind.DOCX,
                    template_path="templates/gone.docx",
                )
                session.add(template)
                await session.commit()
                return template.id

        request = _create(orchestrator, asyncio.run(insert_template()))

        with pytest.raises(TemplateFileMissing):
            asyncio.run(orchestrator.run(request.id, "Isi data"))

        assert fake_ai.prompts == []

    def test_unexpected_error_is_internal(self, orchestrator, fake_ai, docx_template):
        """Test that unexpected exceptions are wrapped as non-retryable internal errors."""
        fake_ai.replies = [RuntimeError("bug")]
        request = _create(orchestrator, docx_template.id)

        with pytest.raises(GenerationError) as exc_info:
            asyncio.run(orchestrator.run(request.id, "Isi data Budi"))

        assert exc_info.value.kind == ErrorKind.INTERNAL_ERROR
        assert exc_info.value.retryable is False
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert "bug" in _get(orchestrator, request.id).error_message

    # =========================================================================
    # Timeouts
    # =========================================================================

    def test_timeout(self, short_timeout_orchestrator, fake_ai, docx_template):
        """Test that an attempt exceeding the job timeout fails as retryable."""
        orchestrator = short_timeout_orchestrator

        async def slow_reply(prompt, max_output_tokens=1024):
            await asyncio.sleep(5)
            return END_TO_END_REPLY

        fake_ai.generate_text = slow_reply
        request = _create(orchestrator, docx_template.id)

        with pytest.raises(GenerationTimeout) as exc_info:
            asyncio.run(orchestrator.run(request.id, "Isi data Budi"))

        assert exc_info.value.retryable is True
        assert _get(orchestrator, request.id).status == GenerationStatus.FAILED

    def test_timed_out_assembly_leaves_no_output(self, short_timeout_orchestrator, factory, fake_ai, docx_template, monkeypatch):
        """Test that an assembly thread outliving its attempt does not leave a file behind."""
        orchestrator = short_timeout_orchestrator
        fake_ai.replies = [END_TO_END_REPLY]
        monkeypatch.setattr(factory, "get_assembler", lambda: SlowAssembler(delay=0.6))
        request = _create(orchestrator, docx_template.id)

        # asyncio.run waits for the default executor, so the thread has finished here.
        with pytest.raises(GenerationTimeout):
            asyncio.run(orchestrator.run(request.id, "Isi data Budi"))

        stored = _get(orchestrator, request.id)
        assert stored.status == GenerationStatus.FAILED
        assert stored.result_file_path is None
        generated_dir = factory.settings.generated_dir
        assert not generated_dir.exists() or list(generated_dir.iterdir()) == []

    def test_timed_out_assembly_does_not_touch_retry_output(
        self, short_timeout_orchestrator, orchestrator, factory, fake_ai, docx_template, monkeypatch
    ):
        """Test that a retry's output survives the earlier attempt's late thread."""
        fake_ai.replies = [END_TO_END_REPLY]
        monkeypatch.setattr(factory, "get_assembler", lambda: SlowAssembler(delay=0.6))
        request = _create(orchestrator, docx_template.id)

        async def timeout_then_retry():
            with pytest.raises(GenerationTimeout):
                await short_timeout_orchestrator.run(request.id, "Isi data Budi")
            monkeypatch.setattr(factory, "get_assembler", lambda: DocumentAssembler())
            return await orchestrator.run(request.id, "Isi data Budi", allow_retry=True)

        outcome = asyncio.run(timeout_then_retry())

        assert outcome.status == GenerationStatus.COMPLETED
        produced = sorted(p.name for p in factory.settings.generated_dir.iterdir())
        assert produced == [f"{request.id}.docx"]


# =============================================================================
# Helpers
# =============================================================================


class TestTruncateMessage:
    """Test suite for error message truncation."""

    def test_short_message_unchanged(self):
        """Test that short messages are kept as they are."""
        assert truncate_message("boom") == "boom"

    def test_long_message_truncated(self):
        """Test that long messages are cut to 2048 characters with an ellipsis."""
        message = truncate_message("x" * 5000)

        assert len(message) == 2048
        assert message.endswith("...")
