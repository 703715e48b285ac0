"""Shared fixtures for the test suite."""

import asyncio
import os
import tempfile
from pathlib import Path

# Keep the module-level app and Celery settings away from the working tree.
os.environ.setdefault("STORAGE_DIR", str(Path(tempfile.gettempdir()) / "docsynth-test-storage"))

import pytest
from docx import Document
from openpyxl import Workbook
from sqlalchemy.pool import NullPool

from docsynth.core.config import Settings
from docsynth.core.factory import ComponentFactory
from docsynth.core.orchestrator import GenerationOrchestrator
from docsynth.db.models import DocumentTemplate
from docsynth.db.session import build_engine, build_session_maker, create_all_tables
from docsynth.interfaces.generator import BaseAIClient
from docsynth.strategies.template_engine.models import OutputKind


class FakeAIClient(BaseAIClient):
    """Returns canned replies and records every prompt it receives.

    ``replies`` items are returned in order (the last one repeats); an
    exception instance is raised instead of returned.
    """

    def __init__(self, *replies):
        self.replies = list(replies) or [""]
        self.prompts: list[str] = []
        self.max_output_tokens: list[int] = []

    async def generate_text(self, prompt: str, max_output_tokens: int = 1024) -> str:
        self.prompts.append(prompt)
        self.max_output_tokens.append(max_output_tokens)
        reply = self.replies[min(len(self.prompts), len(self.replies)) - 1]
        if isinstance(reply, BaseException):
            raise reply
        return reply


class StubFactory(ComponentFactory):
    """ComponentFactory whose AI client is injected."""

    def __init__(self, settings: Settings, ai_client: BaseAIClient) -> None:
        super().__init__(settings)
        self.ai_client = ai_client

    def get_ai_client(self) -> BaseAIClient:
        return self.ai_client


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment, backed by tmp_path."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        storage_dir=tmp_path / "storage",
        llm_api_key="test-key",
        llm_model="test-model",
        llm_timeout_seconds=5,
        job_timeout_seconds=10,
    )


@pytest.fixture
def session_maker(settings):
    """Session maker on a fresh SQLite database with all tables created.

    NullPool keeps connections from outliving the event loop of each
    ``asyncio.run`` call.
    """
    engine = build_engine(settings.database_url, poolclass=NullPool)
    asyncio.run(create_all_tables(engine))
    yield build_session_maker(engine)
    asyncio.run(engine.dispose())


@pytest.fixture
def fake_ai():
    return FakeAIClient()


@pytest.fixture
def factory(settings, fake_ai):
    return StubFactory(settings, fake_ai)


@pytest.fixture
def orchestrator(session_maker, factory, settings):
    return GenerationOrchestrator(session_maker=session_maker, factory=factory, settings=settings)


@pytest.fixture
def make_docx():
    """Build a .docx file.

    ``blocks`` items are strings (normal paragraphs), ``("bold", text)``
    tuples (bold paragraphs) or lists of rows (tables).
    """

    def _make(path: Path, blocks) -> Path:
        doc = Document()
        for block in blocks:
            if isinstance(block, str):
                doc.add_paragraph(block)
            elif isinstance(block, tuple):
                paragraph = doc.add_paragraph()
                run = paragraph.add_run(block[1])
                run.bold = True
            else:
                width = max(len(row) for row in block)
                table = doc.add_table(rows=len(block), cols=width)
                for row_cells, values in zip(table.rows, block):
                    for cell, value in zip(row_cells.cells, values):
                        cell.text = value
        path.parent.mkdir(parents=True, exist_ok=True)
        doc.save(str(path))
        return path

    return _make


@pytest.fixture
def make_xlsx():
    """Build a .xlsx file from a list of rows (row 1 is the header)."""

    def _make(path: Path, rows) -> Path:
        workbook = Workbook()
        sheet = workbook.active
        for row in rows:
            sheet.append(list(row))
        path.parent.mkdir(parents=True, exist_ok=True)
        workbook.save(str(path))
        return path

    return _make


@pytest.fixture
def add_template(session_maker, settings):
    """Store a template file under the storage root and create its record."""

    def _add(source: Path, kind: OutputKind, name: str = "Template") -> DocumentTemplate:
        relative_path = f"templates/{source.name}"
        target = settings.storage_dir / relative_path
        target.parent.mkdir(parents=True, exist_ok=True)
        if source.resolve() != target.resolve():
            target.write_bytes(source.read_bytes())

        async def _create() -> DocumentTemplate:
            async with session_maker() as session:
                template = DocumentTemplate(name=name, output_kind=kind, template_path=relative_path)
                session.add(template)
                await session.commit()
                await session.refresh(template)
                return template

        return asyncio.run(_create())

    return _add
