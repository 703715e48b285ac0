"""Database models and session management."""

from docsynth.db.models import (
    DocumentTemplate,
    GenerationRequest,
    GenerationStatus,
)
from docsynth.db.session import (
    AsyncSession,
    create_all_tables,
    get_async_session,
    get_session_maker,
    init_db,
)

__all__ = [
    # Models
    "DocumentTemplate",
    "GenerationRequest",
    "GenerationStatus",
    # Session
    "AsyncSession",
    "get_async_session",
    "get_session_maker",
    "create_all_tables",
    "init_db",
]
