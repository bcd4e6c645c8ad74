from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from jinja2 import Environment, PackageLoader, select_autoescape

from app.studiofinder.modules.notifications.templates import TemplateDefinition, get_template_definition

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

_PLACEHOLDER_RE = re.compile(r"\{\{([^}]+)\}\}")

_env = Environment(
    loader=PackageLoader("app.studiofinder", "templates/emails"),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


class TemplateNotFoundError(LookupError):
    pass


class MissingVariablesError(ValueError):
    def __init__(self, key: str, missing: list[str]):
        self.key = key
        self.missing = missing
        super().__init__(f"Missing required variables for template '{key}': {', '.join(missing)}")


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


def substitute_variables(text: str, variables: dict[str, Any]) -> str:
    """Replace {{name}}; unknown or None placeholders are left as written."""

    def _sub(m: re.Match) -> str:
        value = variables.get(m.group(1).strip())
        return m.group(0) if value is None else str(value)

    return _PLACEHOLDER_RE.sub(_sub, text)


def missing_variables(schema: dict[str, str], variables: dict[str, Any]) -> list[str]:
    missing: list[str] = []
    for name, kind in schema.items():
        value = variables.get(name)
        if value is None:
            missing.append(name)
        elif kind in ("url", "email") and str(value).strip() == "":
            missing.append(name)
    return missing


def undeclared_placeholders(definition: TemplateDefinition) -> list[str]:
    """Placeholders in the copy that the template's variable schema does not declare."""
    texts = [
        definition.subject,
        definition.heading,
        definition.preheader,
        definition.cta_label,
        definition.cta_url,
        definition.footer_text,
        *definition.body_paragraphs,
        *definition.bullet_items,
    ]
    known = set(definition.variables) | {"base_url"}
    found: list[str] = []
    for text in texts:
        for m in _PLACEHOLDER_RE.finditer(text or ""):
            name = m.group(1).strip()
            if name not in known and name not in found:
                found.append(name)
    return found


def load_template(s: "Session | None", key: str) -> TemplateDefinition:
    definition = get_template_definition(key)
    if definition is None:
        raise TemplateNotFoundError(f"Template not found: {key}")
    if s is None:
        return definition
    from app.studiofinder.modules.notifications.models import EmailTemplate

    override = s.query(EmailTemplate).filter(EmailTemplate.key == key).one_or_none()
    return definition.with_override(override) if override is not None else definition


def render_definition(
    definition: TemplateDefinition,
    variables: dict[str, Any],
    *,
    base_url: str = "",
    unsubscribe_url: str | None = None,
) -> RenderedEmail:
    missing = missing_variables(definition.variables, variables)
    if missing:
        raise MissingVariablesError(definition.key, missing)

    values = {"base_url": base_url, **variables}

    def sub(text: str | None) -> str | None:
        return substitute_variables(text, values) if text else None

    subject = sub(definition.subject) or ""
    heading = sub(definition.heading) or ""
    paragraphs = [p for p in (sub(p) or "" for p in definition.body_paragraphs) if p.strip()]
    bullets = [sub(b) or "" for b in definition.bullet_items]
    ctx = {
        "subject": subject,
        "preheader": sub(definition.preheader),
        "heading": heading,
        "paragraphs": paragraphs,
        "bullets": bullets,
        "cta_label": sub(definition.cta_label),
        "cta_url": sub(definition.cta_url),
        "footer_text": sub(definition.footer_text),
        "hero_image_url": sub(definition.hero_image_url),
        "unsubscribe_url": unsubscribe_url if definition.is_marketing else None,
        "base_url": base_url,
    }
    html = _env.get_template("layout.html").render(**ctx)
    text = _env.get_template("layout.txt").render(**ctx)
    return RenderedEmail(subject=subject, html=html, text=text)


def render_email(
    s: "Session | None",
    key: str,
    variables: dict[str, Any],
    *,
    base_url: str = "",
    unsubscribe_url: str | None = None,
) -> RenderedEmail:
    return render_definition(load_template(s, key), variables, base_url=base_url, unsubscribe_url=unsubscribe_url)
