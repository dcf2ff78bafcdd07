"""Template resolution and template management.

Placeholders use the ``{{ name }}`` form. Unknown placeholders are left
in place so a missing variable is visible in the rendered output rather
than silently dropped.
"""

import logging
import re
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import update
from sqlmodel import Session, func, select

from notification_engine.config import get_settings
from notification_engine.errors import InvalidStateError, NotFoundError, ValidationError
from notification_engine.models.notification import Notification, NotificationType
from notification_engine.models.template import (
    NotificationTemplate,
    TemplateCreate,
    TemplateType,
    TemplateUpdate,
    TemplateValidationResponse,
)

logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


# =============================================================================
# Rendering
# =============================================================================


def substitute(template: str | None, variables: dict[str, Any] | None) -> str | None:
    """Replace ``{{ name }}`` placeholders with values from variables."""
    if not template or not variables:
        return template

    def replace(match: re.Match) -> str:
        name = match.group(1)
        if name not in variables:
            return match.group(0)
        value = variables[name]
        return "" if value is None else str(value)

    return PLACEHOLDER.sub(replace, template)


def extract_variables(*templates: str | None) -> list[str]:
    """Sorted placeholder names used across templates."""
    names: set[str] = set()
    for template in templates:
        if template:
            names.update(PLACEHOLDER.findall(template))
    return sorted(names)


@dataclass(frozen=True)
class TemplateContent:
    """Detached snapshot of the renderable parts of a template."""

    id: UUID
    name: str
    is_active: bool
    subject_template: str | None = None
    title_template: str | None = None
    content_template: str | None = None
    html_template: str | None = None
    sms_template: str | None = None
    push_template: str | None = None

    @classmethod
    def from_template(cls, template: NotificationTemplate) -> "TemplateContent":
        return cls(
            id=template.id,
            name=template.name,
            is_active=template.is_active,
            subject_template=template.subject_template,
            title_template=template.title_template,
            content_template=template.content_template,
            html_template=template.html_template,
            sms_template=template.sms_template,
            push_template=template.push_template,
        )


def apply_template(
    notification: Notification,
    template: TemplateContent | NotificationTemplate,
    variables: dict[str, Any] | None,
) -> None:
    """Render template into notification's content fields.

    Channel-specific templates are applied first. The common title template
    then replaces the title, and the common content template fills content
    only if nothing has set it yet.
    """
    variables = variables or {}

    if notification.type == NotificationType.EMAIL:
        if template.subject_template:
            notification.subject = substitute(template.subject_template, variables)
        if template.html_template:
            notification.html_content = substitute(template.html_template, variables)
    elif notification.type == NotificationType.SMS:
        if template.sms_template:
            notification.content = substitute(template.sms_template, variables)
    elif notification.type == NotificationType.PUSH:
        if template.push_template:
            notification.content = substitute(template.push_template, variables)

    if template.title_template:
        notification.title = substitute(template.title_template, variables)

    if template.content_template and not notification.content:
        notification.content = substitute(template.content_template, variables)


# =============================================================================
# Cache
# =============================================================================


class TemplateCache:
    """In-process template snapshot cache keyed by id.

    Entries expire after ttl_seconds; every template mutation in this module
    invalidates the affected entry explicitly.
    """

    def __init__(self, ttl_seconds: float = 300) -> None:
        self.ttl_seconds = ttl_seconds
        self._entries: dict[UUID, tuple[float, TemplateContent]] = {}
        self._lock = threading.Lock()

    def get(
        self,
        template_id: UUID,
        loader: Callable[[UUID], TemplateContent | None],
    ) -> TemplateContent | None:
        now = time.monotonic()
        with self._lock:
            entry = self._entries.get(template_id)
            if entry is not None and entry[0] > now:
                return entry[1]

        content = loader(template_id)
        if content is not None:
            with self._lock:
                self._entries[template_id] = (now + self.ttl_seconds, content)
        return content

    def invalidate(self, template_id: UUID) -> None:
        with self._lock:
            self._entries.pop(template_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


_cache_instance: TemplateCache | None = None


def get_template_cache() -> TemplateCache:
    """Get or create the process-wide template cache."""
    global _cache_instance
    if _cache_instance is None:
        _cache_instance = TemplateCache(get_settings().TEMPLATE_CACHE_TTL_SECONDS)
    return _cache_instance


def resolve_template(
    session: Session,
    template_id: UUID,
    cache: TemplateCache | None = None,
) -> TemplateContent:
    """Load a template for rendering.

    Raises:
        NotFoundError: If the template does not exist
        InvalidStateError: If the template is inactive
    """
    def load(tid: UUID) -> TemplateContent | None:
        template = session.get(NotificationTemplate, tid)
        return TemplateContent.from_template(template) if template else None

    content = cache.get(template_id, load) if cache is not None else load(template_id)
    if content is None:
        raise NotFoundError(f"Template {template_id} not found")
    if not content.is_active:
        raise InvalidStateError(f"Template {content.name} is not active")
    return content


# =============================================================================
# Management
# =============================================================================


def _invalidate(template_id: UUID) -> None:
    get_template_cache().invalidate(template_id)


def get_template(session: Session, template_id: UUID) -> NotificationTemplate:
    template = session.get(NotificationTemplate, template_id)
    if template is None:
        raise NotFoundError(f"Template {template_id} not found")
    return template


def get_template_by_name(session: Session, name: str) -> NotificationTemplate:
    template = session.exec(
        select(NotificationTemplate).where(NotificationTemplate.name == name)
    ).first()
    if template is None:
        raise NotFoundError(f"Template {name} not found")
    return template


def create_template(session: Session, data: TemplateCreate) -> NotificationTemplate:
    """Create a template.

    Args:
        session: Database session
        data: Template creation data

    Returns:
        NotificationTemplate: The created template

    Raises:
        ValidationError: If the name is taken or the template has no content
    """
    existing = session.exec(
        select(NotificationTemplate).where(NotificationTemplate.name == data.name)
    ).first()
    if existing:
        raise ValidationError(f"Template '{data.name}' already exists", field="name")

    template = NotificationTemplate(**data.model_dump(exclude={"is_default"}))
    sources = template.content_sources()
    if not sources:
        raise ValidationError("Template must define at least one content template", field="content_template")
    template.variables = extract_variables(*sources)

    session.add(template)
    session.flush()

    if data.is_default:
        _make_default(session, template)

    session.commit()
    session.refresh(template)

    logger.info(
        "Template created",
        extra={"template_id": str(template.id), "template_name": template.name, "type": template.type.value},
    )
    return template


def update_template(
    session: Session,
    template_id: UUID,
    data: TemplateUpdate,
) -> NotificationTemplate:
    """Edit a template's content; the version grows by one."""
    template = get_template(session, template_id)

    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(template, key, value)

    template.variables = extract_variables(*template.content_sources())
    template.version += 1
    template.updated_at = datetime.utcnow()
    session.add(template)
    session.commit()
    session.refresh(template)
    _invalidate(template_id)

    logger.info(
        "Template updated",
        extra={"template_id": str(template_id), "version": template.version},
    )
    return template


def list_templates(
    session: Session,
    template_type: TemplateType | None = None,
    active_only: bool = True,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[NotificationTemplate], int]:
    query = select(NotificationTemplate)
    count_query = select(func.count()).select_from(NotificationTemplate)
    if active_only:
        query = query.where(NotificationTemplate.is_active == True)  # noqa: E712
        count_query = count_query.where(NotificationTemplate.is_active == True)  # noqa: E712
    if template_type is not None:
        query = query.where(NotificationTemplate.type == template_type)
        count_query = count_query.where(NotificationTemplate.type == template_type)

    templates = list(
        session.exec(query.order_by(NotificationTemplate.name).offset(offset).limit(limit)).all()
    )
    total = session.exec(count_query).one()
    return templates, total


def set_active(session: Session, template_id: UUID, active: bool) -> NotificationTemplate:
    template = get_template(session, template_id)
    template.is_active = active
    template.updated_at = datetime.utcnow()
    session.add(template)
    session.commit()
    session.refresh(template)
    _invalidate(template_id)

    logger.info(
        "Template activated" if active else "Template deactivated",
        extra={"template_id": str(template_id)},
    )
    return template


def _make_default(session: Session, template: NotificationTemplate) -> None:
    # At most one default per (type, language)
    session.execute(
        update(NotificationTemplate)
        .where(NotificationTemplate.type == template.type)
        .where(NotificationTemplate.language == template.language)
        .where(NotificationTemplate.id != template.id)
        .values(is_default=False)
        .execution_options(synchronize_session=False)
    )
    template.is_default = True
    template.updated_at = datetime.utcnow()
    session.add(template)


def set_default_template(session: Session, template_id: UUID) -> NotificationTemplate:
    template = get_template(session, template_id)
    _make_default(session, template)
    session.commit()
    session.refresh(template)

    logger.info(
        "Template set as default",
        extra={
            "template_id": str(template_id),
            "type": template.type.value,
            "language": template.language,
        },
    )
    return template


def get_default_template(
    session: Session,
    template_type: TemplateType,
    language: str | None = None,
) -> NotificationTemplate:
    query = (
        select(NotificationTemplate)
        .where(NotificationTemplate.type == template_type)
        .where(NotificationTemplate.is_default == True)  # noqa: E712
        .where(NotificationTemplate.is_active == True)  # noqa: E712
    )
    if language is not None:
        query = query.where(NotificationTemplate.language == language)

    template = session.exec(query).first()
    if template is None:
        raise NotFoundError(f"No default template for type {template_type.value}")
    return template


def delete_template(session: Session, template_id: UUID) -> None:
    # Notifications keep only a weak reference, so nothing cascades
    template = get_template(session, template_id)
    session.delete(template)
    session.commit()
    _invalidate(template_id)

    logger.info("Template deleted", extra={"template_id": str(template_id)})


def validate_template(
    session: Session,
    template_id: UUID,
    test_data: dict[str, Any] | None,
) -> TemplateValidationResponse:
    """Check test_data against the template's placeholders and render previews."""
    template = get_template(session, template_id)
    required = extract_variables(*template.content_sources())
    provided = test_data or {}
    missing = [name for name in required if name not in provided]

    result = TemplateValidationResponse(
        template_id=template_id,
        valid=not missing,
        required_variables=required,
        missing_variables=missing,
    )
    if test_data is not None and not missing:
        result.processed_subject = substitute(template.subject_template, test_data)
        result.processed_title = substitute(template.title_template, test_data)
        result.processed_content = substitute(template.content_template, test_data)
        result.processed_sms = substitute(template.sms_template, test_data)
        result.processed_push = substitute(template.push_template, test_data)
    return result


def get_template_statistics(session: Session) -> dict[str, Any]:
    total = session.exec(select(func.count()).select_from(NotificationTemplate)).one()
    active = session.exec(
        select(func.count())
        .select_from(NotificationTemplate)
        .where(NotificationTemplate.is_active == True)  # noqa: E712
    ).one()
    by_type = session.exec(
        select(NotificationTemplate.type, func.count()).group_by(NotificationTemplate.type)
    ).all()
    by_language = session.exec(
        select(NotificationTemplate.language, func.count()).group_by(NotificationTemplate.language)
    ).all()
    most_used = session.exec(
        select(NotificationTemplate)
        .where(NotificationTemplate.usage_count > 0)
        .order_by(NotificationTemplate.usage_count.desc())
        .limit(10)
    ).all()

    return {
        "total_templates": total,
        "active_templates": active,
        "by_type": {t.value: count for t, count in by_type},
        "by_language": {language: count for language, count in by_language},
        "most_used": [
            {"template_id": str(t.id), "name": t.name, "usage_count": t.usage_count}
            for t in most_used
        ],
    }
