"""Decide whether a company, contact, or deal is associated with a user.

Sources are checked in a fixed order and the first match wins:

    0. activeSalespeople[userId]        (companies only; computed server-side)
    1. associations.salespeople         (id string, or object with id/uid)
    2. legacy owner fields              (per entity kind, see below)

Contacts additionally match when one of their companies is in the caller's
company set (``associations.companies`` then legacy ``companyId``), checked
between steps 1 and 2.

A non-matching ``associations.salespeople`` array does not stop the search;
legacy fields are still consulted so half-migrated documents resolve.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable, Iterator, Mapping
from typing import Any

import structlog
from pydantic import BaseModel, Field

from src.crm.associations.refs import associated_ids, salesperson_refs

logger = structlog.get_logger(__name__)

# ── Legacy field tables ─────────────────────────────────────────────────────

COMPANY_OWNER_FIELDS = ("salesOwnerId", "accountOwnerId", "owner")
COMPANY_ID_LIST_FIELDS = ("associatedUsers",)

DEAL_OWNER_FIELDS = ("salesOwnerId", "owner", "assignedTo")
DEAL_ID_LIST_FIELDS = ("salespersonIds", "salespeopleIds")

CONTACT_OWNER_FIELDS = ("salesOwnerId", "accountOwnerId", "owner")

# Union used by the entity-agnostic checks
ALL_OWNER_FIELDS = ("salesOwnerId", "accountOwnerId", "owner", "assignedTo")
ALL_ID_LIST_FIELDS = ("associatedUsers", "salespersonIds", "salespeopleIds")


class AssociationStatus(BaseModel):
    """Every source that ties an entity to a user, for diagnostics and UI badges."""

    is_associated: bool = False
    has_active_salespeople: bool = False
    is_user_active: bool = False
    last_updated: Any = None
    sources: list[str] = Field(default_factory=list)


# ── Source matchers ─────────────────────────────────────────────────────────


def _active_salespeople_match(entity: Mapping[str, Any], user_id: str) -> bool:
    active = entity.get("activeSalespeople")
    return isinstance(active, Mapping) and bool(active.get(user_id))


def _salespeople_match(entity: Mapping[str, Any], user_id: str) -> bool:
    return any(ref.id == user_id for ref in salesperson_refs(entity))


def _legacy_matches(
    entity: Mapping[str, Any],
    user_id: str,
    owner_fields: Iterable[str],
    id_list_fields: Iterable[str] = (),
) -> Iterator[str]:
    for field in owner_fields:
        if entity.get(field) == user_id:
            yield field
    for field in id_list_fields:
        values = entity.get(field)
        if isinstance(values, (list, tuple)) and user_id in values:
            yield field


def _contact_company_match(contact: Mapping[str, Any], company_ids: Collection[str]) -> Iterator[str]:
    if not company_ids:
        return
    if any(cid in company_ids for cid in associated_ids(contact, "companies")):
        yield "associations.companies"
    legacy_company = contact.get("companyId")
    if legacy_company and legacy_company in company_ids:
        yield "companyId"


def _iter_company_sources(company: Mapping[str, Any], user_id: str) -> Iterator[str]:
    if _active_salespeople_match(company, user_id):
        yield "activeSalespeople"
    if _salespeople_match(company, user_id):
        yield "associations.salespeople"
    yield from _legacy_matches(company, user_id, COMPANY_OWNER_FIELDS, COMPANY_ID_LIST_FIELDS)


def _iter_deal_sources(deal: Mapping[str, Any], user_id: str) -> Iterator[str]:
    if _salespeople_match(deal, user_id):
        yield "associations.salespeople"
    yield from _legacy_matches(deal, user_id, DEAL_OWNER_FIELDS, DEAL_ID_LIST_FIELDS)


def _iter_contact_sources(
    contact: Mapping[str, Any], user_id: str, company_ids: Collection[str]
) -> Iterator[str]:
    if _salespeople_match(contact, user_id):
        yield "associations.salespeople"
    yield from _contact_company_match(contact, company_ids)
    yield from _legacy_matches(contact, user_id, CONTACT_OWNER_FIELDS)


def _iter_any_sources(entity: Mapping[str, Any], user_id: str) -> Iterator[str]:
    if _active_salespeople_match(entity, user_id):
        yield "activeSalespeople"
    if _salespeople_match(entity, user_id):
        yield "associations.salespeople"
    yield from _legacy_matches(entity, user_id, ALL_OWNER_FIELDS, ALL_ID_LIST_FIELDS)


def _valid(entity: Any, user_id: Any) -> bool:
    return isinstance(entity, Mapping) and isinstance(user_id, str) and bool(user_id)


# ── Membership checks ───────────────────────────────────────────────────────


def is_company_associated_with_user(company: Mapping[str, Any] | None, user_id: str | None) -> bool:
    """True if the user owns or is assigned to the company."""
    if not _valid(company, user_id):
        return False
    return next(_iter_company_sources(company, user_id), None) is not None


def is_deal_associated_with_user(deal: Mapping[str, Any] | None, user_id: str | None) -> bool:
    """True if the user is a salesperson or legacy owner on the deal."""
    if not _valid(deal, user_id):
        return False
    return next(_iter_deal_sources(deal, user_id), None) is not None


def is_contact_associated_with_user(
    contact: Mapping[str, Any] | None,
    user_id: str | None,
    my_company_ids: Collection[str] = (),
) -> bool:
    """True if the contact is assigned to the user or belongs to one of their companies.

    Args:
        contact: Contact document.
        user_id: User uid.
        my_company_ids: Ids of companies already resolved as the user's.
    """
    if not _valid(contact, user_id):
        return False
    company_ids = my_company_ids if isinstance(my_company_ids, (set, frozenset)) else set(my_company_ids)
    return next(_iter_contact_sources(contact, user_id, company_ids), None) is not None


def is_associated_with_user(entity: Mapping[str, Any] | None, user_id: str | None) -> bool:
    """Entity-agnostic check over every salesperson source and legacy field."""
    if not _valid(entity, user_id):
        return False
    return next(_iter_any_sources(entity, user_id), None) is not None


# ── Collection filters ──────────────────────────────────────────────────────


def get_user_associated_companies(companies: Iterable[Mapping[str, Any]] | None, user_id: str | None) -> list:
    if not companies or not user_id:
        return []
    return [c for c in companies if is_company_associated_with_user(c, user_id)]


def get_user_associated_deals(deals: Iterable[Mapping[str, Any]] | None, user_id: str | None) -> list:
    if not deals or not user_id:
        return []
    return [d for d in deals if is_deal_associated_with_user(d, user_id)]


def get_user_associated_contacts(
    contacts: Iterable[Mapping[str, Any]] | None,
    user_id: str | None,
    my_company_ids: Collection[str] = (),
) -> list:
    if not contacts or not user_id:
        return []
    company_ids = set(my_company_ids)
    return [c for c in contacts if is_contact_associated_with_user(c, user_id, company_ids)]


# ── Diagnostics ─────────────────────────────────────────────────────────────


def association_status(entity: Mapping[str, Any] | None, user_id: str | None) -> AssociationStatus:
    """Collect every source linking the entity to the user (not just the first)."""
    if not _valid(entity, user_id):
        return AssociationStatus()

    sources = list(dict.fromkeys(_iter_any_sources(entity, user_id)))
    active = entity.get("activeSalespeople")
    has_active = isinstance(active, Mapping) and len(active) > 0

    status = AssociationStatus(
        is_associated=bool(sources),
        has_active_salespeople=has_active,
        is_user_active=_active_salespeople_match(entity, user_id),
        last_updated=entity.get("activeSalespeopleUpdatedAt"),
        sources=sources,
    )
    logger.debug(
        "association_status",
        entity_id=entity.get("id"),
        user_id=user_id,
        is_associated=status.is_associated,
        sources=status.sources,
    )
    return status
