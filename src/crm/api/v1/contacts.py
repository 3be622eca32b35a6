"""REST API endpoints for contacts.

``mine=true`` keeps contacts assigned to the caller directly or through one
of the caller's companies, so the companies are resolved first.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from src.crm.api.deps import (
    CurrentUser,
    FIREBASE_TOKEN_HEADER,
    functions_http_error,
    get_current_user,
    get_functions_client,
    get_tenant,
    require_state,
)
from src.crm.associations.refs import associated_ids, salesperson_ids
from src.crm.associations.resolver import get_user_associated_companies, get_user_associated_contacts
from src.crm.core.tenant import TenantContext
from src.crm.functions.client import CloudFunctionsClient
from src.crm.functions.errors import FunctionsError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/contacts", tags=["contacts"])


class ContactResponse(BaseModel):
    id: str
    full_name: str | None = None
    email: str | None = None
    phone: str | None = None
    job_title: str | None = None
    state: str | None = None
    company_ids: list[str] = Field(default_factory=list)
    salesperson_ids: list[str] = Field(default_factory=list)


class ContactListResponse(BaseModel):
    contacts: list[ContactResponse] = Field(default_factory=list)
    total: int = 0


class CleanupResponse(BaseModel):
    success: bool = False
    result: Any = None


def _contact_to_response(contact: dict[str, Any]) -> ContactResponse:
    full_name = contact.get("fullName") or " ".join(
        part for part in (contact.get("firstName"), contact.get("lastName")) if part
    )
    company_ids = associated_ids(contact, "companies")
    legacy_company = contact.get("companyId")
    if legacy_company and legacy_company not in company_ids:
        company_ids.append(legacy_company)
    return ContactResponse(
        id=contact["id"],
        full_name=full_name or None,
        email=contact.get("email"),
        phone=contact.get("phone"),
        job_title=contact.get("jobTitle") or contact.get("title"),
        state=contact.get("state"),
        company_ids=company_ids,
        salesperson_ids=salesperson_ids(contact),
    )


@router.get("", response_model=ContactListResponse)
async def list_contacts(
    request: Request,
    mine: bool = Query(False, description="Only contacts associated with the caller"),
    state: str | None = Query(None),
    company_id: str | None = Query(None, alias="companyId"),
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> ContactListResponse:
    contacts_repo = require_state(request, "contact_repository", "Contact repository")

    if company_id:
        contacts = await contacts_repo.list_for_company(tenant.tenant_id, company_id)
    elif state:
        contacts = await contacts_repo.list_by_state(tenant.tenant_id, state)
    else:
        contacts = await contacts_repo.list(tenant.tenant_id)

    if mine:
        companies_repo = require_state(request, "company_repository", "Company repository")
        my_companies = get_user_associated_companies(await companies_repo.list(tenant.tenant_id), user.id)
        contacts = get_user_associated_contacts(contacts, user.id, {c["id"] for c in my_companies})

    return ContactListResponse(
        contacts=[_contact_to_response(c) for c in contacts],
        total=len(contacts),
    )


@router.post("/cleanup-company-associations", response_model=CleanupResponse)
async def cleanup_company_associations(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
    functions: CloudFunctionsClient = Depends(get_functions_client),
) -> CleanupResponse:
    """Remove dangling contact -> company links (needs the caller's Firebase ID token)."""
    id_token = request.headers.get(FIREBASE_TOKEN_HEADER)
    if not id_token:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{FIREBASE_TOKEN_HEADER} header is required",
        )
    try:
        body = await functions.cleanup_contact_company_associations(tenant.tenant_id, id_token)
    except FunctionsError as e:
        raise functions_http_error(e)
    logger.info("contact_cleanup_requested", tenant_id=tenant.tenant_id, user_id=user.id)
    return CleanupResponse(success=bool(body.get("success")), result=body.get("result"))
