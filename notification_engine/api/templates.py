"""Template API endpoints."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Body, Query, status
from sqlmodel import SQLModel

from notification_engine.api.deps import DBSession
from notification_engine.models.template import (
    TemplateCreate,
    TemplateResponse,
    TemplateType,
    TemplateUpdate,
    TemplateValidationResponse,
)
from notification_engine.services.templates import (
    create_template,
    delete_template,
    get_default_template,
    get_template,
    get_template_by_name,
    get_template_statistics,
    list_templates,
    set_active,
    set_default_template,
    update_template,
    validate_template,
)

router = APIRouter(prefix="/api/templates", tags=["Templates"])


class TemplateListResponse(SQLModel):
    """Schema for template list response."""

    templates: list[TemplateResponse]
    total: int


@router.post("", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
def create_template_endpoint(
    session: DBSession,
    template_data: TemplateCreate,
) -> TemplateResponse:
    template = create_template(session, template_data)
    return TemplateResponse.model_validate(template)


@router.get("", response_model=TemplateListResponse)
def list_templates_endpoint(
    session: DBSession,
    template_type: TemplateType | None = Query(default=None, alias="type"),
    active_only: bool = Query(default=True),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> TemplateListResponse:
    templates, total = list_templates(session, template_type, active_only, limit, offset)
    return TemplateListResponse(
        templates=[TemplateResponse.model_validate(t) for t in templates],
        total=total,
    )


@router.get("/statistics")
def template_statistics_endpoint(session: DBSession) -> dict[str, Any]:
    return get_template_statistics(session)


@router.get("/defaults/{template_type}", response_model=TemplateResponse)
def get_default_template_endpoint(
    session: DBSession,
    template_type: TemplateType,
    language: str | None = Query(default=None),
) -> TemplateResponse:
    """Get the active default template for a type."""
    template = get_default_template(session, template_type, language)
    return TemplateResponse.model_validate(template)


@router.get("/by-name/{name}", response_model=TemplateResponse)
def get_template_by_name_endpoint(session: DBSession, name: str) -> TemplateResponse:
    return TemplateResponse.model_validate(get_template_by_name(session, name))


@router.get("/{template_id}", response_model=TemplateResponse)
def get_template_endpoint(session: DBSession, template_id: UUID) -> TemplateResponse:
    return TemplateResponse.model_validate(get_template(session, template_id))


@router.put("/{template_id}", response_model=TemplateResponse)
def update_template_endpoint(
    session: DBSession,
    template_id: UUID,
    template_data: TemplateUpdate,
) -> TemplateResponse:
    """Update a template; its version grows by one."""
    template = update_template(session, template_id, template_data)
    return TemplateResponse.model_validate(template)


@router.post("/{template_id}/activate", response_model=TemplateResponse)
def activate_template_endpoint(session: DBSession, template_id: UUID) -> TemplateResponse:
    return TemplateResponse.model_validate(set_active(session, template_id, True))


@router.post("/{template_id}/deactivate", response_model=TemplateResponse)
def deactivate_template_endpoint(session: DBSession, template_id: UUID) -> TemplateResponse:
    return TemplateResponse.model_validate(set_active(session, template_id, False))


@router.post("/{template_id}/default", response_model=TemplateResponse)
def set_default_template_endpoint(session: DBSession, template_id: UUID) -> TemplateResponse:
    """Make this template the default for its type and language."""
    return TemplateResponse.model_validate(set_default_template(session, template_id))


@router.post("/{template_id}/validate", response_model=TemplateValidationResponse)
def validate_template_endpoint(
    session: DBSession,
    template_id: UUID,
    test_data: dict[str, Any] | None = Body(default=None),
) -> TemplateValidationResponse:
    """Render the template against test data and report missing variables."""
    return validate_template(session, template_id, test_data)


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_template_endpoint(session: DBSession, template_id: UUID) -> None:
    delete_template(session, template_id)
