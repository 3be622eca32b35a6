"""REST API endpoints for email templates: listing, saving, and rendering."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from src.crm.api.deps import CurrentUser, get_current_user, get_tenant, require_state
from src.crm.core.tenant import TenantContext
from src.crm.repositories.base import EntityNotFoundError
from src.crm.templates.rendering import (
    COMMON_VARIABLES,
    EmailTemplate,
    MissingTemplateVariableError,
    RenderedEmail,
    TemplateVisibility,
    build_context,
    render_template,
    strip_html,
    visible_templates,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/email-templates", tags=["email-templates"])

PREVIEW_LENGTH = 150


class TemplateSummary(BaseModel):
    id: str
    name: str
    subject: str
    visibility: TemplateVisibility
    tags: list[str] = Field(default_factory=list)
    variables: list[str] = Field(default_factory=list)
    preview: str = ""


class TemplateSaveRequest(BaseModel):
    name: str
    subject: str
    body_html: str
    visibility: TemplateVisibility = TemplateVisibility.PRIVATE
    tags: list[str] = Field(default_factory=list)


class RenderRequest(BaseModel):
    template_id: str
    contact_id: str | None = None
    company_id: str | None = None
    variables: dict[str, Any] = Field(default_factory=dict)
    strict: bool = False


class TemplateSavedResponse(BaseModel):
    id: str
    variables: list[str]


def _get_template_repository(request: Request) -> Any:
    return require_state(request, "email_template_repository", "Email template repository")


def _summary(template: EmailTemplate) -> TemplateSummary:
    return TemplateSummary(
        id=template.id,
        name=template.name,
        subject=template.subject,
        visibility=template.visibility,
        tags=template.tags,
        variables=template.variables,
        preview=strip_html(template.body_html)[:PREVIEW_LENGTH],
    )


@router.get("", response_model=list[TemplateSummary])
async def list_templates(
    request: Request,
    visibility: TemplateVisibility = Query(TemplateVisibility.PRIVATE),
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> list[TemplateSummary]:
    """Templates on one visibility tab, newest first. Private ones are the caller's own."""
    templates = await _get_template_repository(request).list_templates(tenant.tenant_id)
    return [_summary(t) for t in visible_templates(templates, user.id, visibility)]


@router.get("/variables", response_model=list[str])
async def list_common_variables(user: CurrentUser = Depends(get_current_user)) -> list[str]:
    return list(COMMON_VARIABLES)


@router.post("", response_model=TemplateSavedResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    body: TemplateSaveRequest,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> TemplateSavedResponse:
    template = EmailTemplate(**body.model_dump(), owner_uid=user.id)
    template_id = await _get_template_repository(request).save_template(tenant.tenant_id, template)
    logger.info("email_template_saved", tenant_id=tenant.tenant_id, template_id=template_id)
    return TemplateSavedResponse(id=template_id, variables=template.to_document()["variables"])


@router.post("/render", response_model=RenderedEmail)
async def render(
    body: RenderRequest,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> RenderedEmail:
    """Render a template for a contact and/or company, plus explicit variables.

    Explicit ``variables`` override values derived from the records. With
    ``strict`` any unresolved placeholder answers 422.
    """
    try:
        template = await _get_template_repository(request).get_template(tenant.tenant_id, body.template_id)
    except EntityNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Template {body.template_id} not found",
        )

    contact = company = None
    if body.contact_id:
        contacts = require_state(request, "contact_repository", "Contact repository")
        contact = await contacts.get(tenant.tenant_id, body.contact_id)
    if body.company_id:
        companies = require_state(request, "company_repository", "Company repository")
        company = await companies.get(tenant.tenant_id, body.company_id)

    context = build_context(
        contact,
        company,
        sender={"name": user.name, "email": user.email},
        extra=body.variables,
    )
    try:
        return render_template(template, context, strict=body.strict)
    except MissingTemplateVariableError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": "Missing template variables", "missing": e.missing},
        )
