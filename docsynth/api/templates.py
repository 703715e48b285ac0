"""Template management API routes.

Handles template upload, listing and lookup.
"""

import asyncio
import logging
import uuid

from fastapi import APIRouter, Depends, Form, HTTPException, UploadFile, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from docsynth.api.deps import get_app_settings, get_component_factory, get_db
from docsynth.api.schemas import TemplateListResponse
from docsynth.core.config import Settings
from docsynth.core.factory import ComponentFactory
from docsynth.db.models import DocumentTemplate, DocumentTemplateRead
from docsynth.strategies.template_engine.models import OutputKind

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/templates", tags=["templates"])


@router.post(
    "",
    response_model=DocumentTemplateRead,
    status_code=status.HTTP_201_CREATED,
)
async def upload_template(
    file: UploadFile,
    name: str = Form(..., min_length=1, max_length=150),
    output_kind: OutputKind | None = Form(default=None),
    description: str | None = Form(default=None, max_length=2048),
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    factory: ComponentFactory = Depends(get_component_factory),
) -> DocumentTemplate:
    """Upload a Word or Excel template.

    The file is stored under ``templates/`` and its structure is read once to
    reject files the extractor cannot handle.

    Args:
        file: The .docx or .xlsx template.
        name: Display name of the template.
        output_kind: Optional explicit kind; inferred from the file extension
            when omitted.
        description: Optional description.

    Raises:
        HTTPException: If the file type is unsupported or unreadable.
    """
    filename = file.filename or ""
    try:
        inferred_kind = OutputKind.from_filename(filename)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=str(e),
        ) from e

    if output_kind is not None and output_kind != inferred_kind:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"File {filename} does not match output kind '{output_kind.value}'",
        )

    template_id = uuid.uuid4()
    relative_path = f"templates/{template_id}{inferred_kind.extension}"
    file_path = settings.storage_dir / relative_path
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_bytes(await file.read())

    logger.info(f"Saved template file: {file_path}")

    try:
        structure = await asyncio.to_thread(factory.get_extractor().extract, file_path, inferred_kind)
    except Exception as e:
        file_path.unlink(missing_ok=True)
        logger.warning(f"Rejected unreadable template {filename}: {e}")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Template could not be read: {e}",
        ) from e

    template = DocumentTemplate(
        id=template_id,
        name=name.strip(),
        description=description,
        output_kind=inferred_kind,
        template_path=relative_path,
    )
    session.add(template)
    await session.commit()
    await session.refresh(template)

    logger.info(
        f"Created template {template.id} ({inferred_kind.value}, "
        f"{len(structure.elements) or len(structure.sheet_headers)} structural items)"
    )
    return template


@router.get("", response_model=TemplateListResponse)
async def list_templates(
    skip: int = 0,
    limit: int = 50,
    session: AsyncSession = Depends(get_db),
) -> TemplateListResponse:
    """List templates, newest first."""
    total = (await session.execute(select(func.count()).select_from(DocumentTemplate))).scalar_one()
    result = await session.execute(
        select(DocumentTemplate)
        .order_by(DocumentTemplate.created_at.desc())
        .offset(skip)
        .limit(limit)
    )
    templates = result.scalars().all()

    return TemplateListResponse(
        templates=[DocumentTemplateRead.model_validate(t, from_attributes=True) for t in templates],
        total=total,
    )


@router.get("/{template_id}", response_model=DocumentTemplateRead)
async def get_template(
    template_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
) -> DocumentTemplate:
    """Get a single template.

    Raises:
        HTTPException: If the template does not exist.
    """
    template = await session.get(DocumentTemplate, template_id)
    if template is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Template {template_id} not found",
        )
    return template
