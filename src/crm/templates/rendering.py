"""Email template variables, rendering, and visibility.

Templates store HTML bodies with ``{{variable}}`` placeholders. The
``variables`` field is derived from the body on every save.
"""

from __future__ import annotations

import html
import re
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

VARIABLE_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
_TAG_PATTERN = re.compile(r"<[^>]*>")

COMMON_VARIABLES = (
    "first_name",
    "last_name",
    "company_name",
    "title",
    "city",
    "state",
    "industry",
    "my_name",
    "my_company",
    "my_title",
)


class TemplateVisibility(str, Enum):
    PRIVATE = "private"
    TEAM = "team"
    COMPANY = "company"


class MissingTemplateVariableError(KeyError):
    """Raised by strict rendering when the context lacks template variables."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Missing template variables: {', '.join(missing)}")


class EmailTemplate(BaseModel):
    id: str = ""
    name: str
    subject: str
    body_html: str
    owner_uid: str = ""
    visibility: TemplateVisibility = TemplateVisibility.PRIVATE
    tags: list[str] = Field(default_factory=list)
    variables: list[str] = Field(default_factory=list)

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> EmailTemplate:
        body = doc.get("bodyHtml") or ""
        try:
            visibility = TemplateVisibility(doc.get("visibility") or "private")
        except ValueError:
            visibility = TemplateVisibility.PRIVATE
        return cls(
            id=str(doc.get("id", "")),
            name=doc.get("name") or "",
            subject=doc.get("subject") or "",
            body_html=body,
            owner_uid=doc.get("ownerUid") or "",
            visibility=visibility,
            tags=list(doc.get("tags") or []),
            variables=list(doc.get("variables") or extract_variables(body)),
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "subject": self.subject,
            "bodyHtml": self.body_html,
            "ownerUid": self.owner_uid,
            "visibility": self.visibility.value,
            "tags": list(self.tags),
            "variables": extract_variables(self.body_html),
        }


class RenderedEmail(BaseModel):
    subject: str
    body_html: str
    body_text: str
    missing: list[str] = Field(default_factory=list)


def extract_variables(text: str | None) -> list[str]:
    """Unique placeholder names in first-seen order."""
    if not text:
        return []
    return list(dict.fromkeys(VARIABLE_PATTERN.findall(text)))


def strip_html(text: str | None) -> str:
    """Remove tags (as the template list preview does) and unescape entities."""
    if not text:
        return ""
    return html.unescape(_TAG_PATTERN.sub("", text))


def render_text(
    text: str,
    context: Mapping[str, Any],
    *,
    strict: bool = False,
    escape: bool = False,
) -> str:
    """Substitute ``{{name}}`` placeholders.

    Unknown names are left intact unless ``strict``, which raises
    MissingTemplateVariableError listing every missing name.
    """
    missing = [name for name in extract_variables(text) if context.get(name) is None]
    if strict and missing:
        raise MissingTemplateVariableError(missing)

    def _replace(match: re.Match[str]) -> str:
        value = context.get(match.group(1))
        if value is None:
            return match.group(0)
        value = str(value)
        return html.escape(value) if escape else value

    return VARIABLE_PATTERN.sub(_replace, text)


def render_template(
    template: EmailTemplate,
    context: Mapping[str, Any],
    *,
    strict: bool = False,
) -> RenderedEmail:
    """Render subject and body; values are HTML-escaped in the body only."""
    subject = render_text(template.subject, context, strict=strict)
    body = render_text(template.body_html, context, strict=strict, escape=True)
    names = extract_variables(template.subject + template.body_html)
    return RenderedEmail(
        subject=subject,
        body_html=body,
        body_text=strip_html(body),
        missing=[n for n in names if context.get(n) is None],
    )


def build_context(
    contact: Mapping[str, Any] | None = None,
    company: Mapping[str, Any] | None = None,
    sender: Mapping[str, Any] | None = None,
    extra: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Fill the common variables from a contact, its company, and the sending user."""
    contact = contact or {}
    company = company or {}
    sender = sender or {}
    context: dict[str, Any] = {
        "first_name": contact.get("firstName"),
        "last_name": contact.get("lastName"),
        "title": contact.get("jobTitle") or contact.get("title"),
        "company_name": company.get("companyName") or company.get("name"),
        "city": company.get("city") or contact.get("city"),
        "state": company.get("state") or contact.get("state"),
        "industry": company.get("industry"),
        "my_name": sender.get("displayName") or sender.get("name"),
        "my_company": sender.get("companyName"),
        "my_title": sender.get("jobTitle") or sender.get("title"),
    }
    context = {k: v for k, v in context.items() if v}
    if extra:
        context.update(extra)
    return context


def visible_templates(
    templates: Iterable[EmailTemplate],
    user_id: str,
    visibility: TemplateVisibility,
) -> list[EmailTemplate]:
    """Templates on one visibility tab; private ones only for their owner."""
    visibility = TemplateVisibility(visibility)
    if visibility == TemplateVisibility.PRIVATE:
        return [t for t in templates if t.visibility == visibility and t.owner_uid == user_id]
    return [t for t in templates if t.visibility == visibility]
