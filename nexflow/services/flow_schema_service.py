"""Flow, step and step-field schema management.

Positions are dense and 1-based within their parent. Renumbering goes through
negative intermediates so the ``(parent, position)`` unique constraints hold
after every flush.
"""
import logging
import re
import unicodedata
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from nexflow.core.errors import (
    DuplicateSlugError,
    FlowHasCardsError,
    HasCardsError,
    InvalidFieldConfigurationError,
    InvalidOrderError,
    InvalidSlugError,
    LastStepError,
    ResponsibleConflictError,
    SystemFieldLockedError,
    ValidationError,
)
from nexflow.database import SessionLocal
from nexflow.models.access import (
    FlowAccess,
    FlowTeamAccess,
    FlowUserExclusion,
    StepTeamAccess,
    StepUserExclusion,
    StepVisibility,
)
from nexflow.models.automation import StepChildCardAutomation
from nexflow.models.card import Card
from nexflow.models.contact import ContactAutomation
from nexflow.models.flow import Flow, Step, StepField
from nexflow.models.organization import ClientUser, Team
from nexflow.models.tag import FlowTag
from nexflow.services import visibility_service
from nexflow.services.tenant import get_scoped

logger = logging.getLogger(__name__)

STEP_TYPES = ("standard", "finisher", "fail", "freezing")
FIELD_TYPES = ("text", "number", "date", "checklist", "file", "user_select")

RESPONSIBLE_SLUG = "assigned_to"
RESPONSIBLE_TEAM_SLUG = "assigned_team_id"
SYSTEM_SLUGS = (RESPONSIBLE_SLUG, RESPONSIBLE_TEAM_SLUG)

DEFAULT_STEP_TITLE = "New step"
DEFAULT_STEP_COLOR = "#2563eb"

SLUG_RE = re.compile(r"^[a-z0-9_]+$")
_TEAM_LABEL_RE = re.compile(r"\b(time|team|equipe)\b")
_RESPONSIBLE_LABEL_RE = re.compile(r"\b(responsavel|responsible|assignee|assigned to)\b")


def _fold(text: str) -> str:
    normalized = unicodedata.normalize("NFKD", text or "")
    return normalized.encode("ascii", "ignore").decode("ascii").lower().strip()


def slugify(label: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "_", _fold(label)).strip("_")
    return slug or "field"


def system_slug_for(label: str, field_type: str) -> Optional[str]:
    if field_type != "user_select":
        return None
    folded = _fold(label)
    # "Responsável time" names the team, so the team pattern wins
    if _TEAM_LABEL_RE.search(folded):
        return RESPONSIBLE_TEAM_SLUG
    if _RESPONSIBLE_LABEL_RE.search(folded):
        return RESPONSIBLE_SLUG
    return None


def _validate_field_type(field_type: str) -> None:
    if field_type not in FIELD_TYPES:
        raise ValidationError(f"Invalid field type '{field_type}'")


def _validate_configuration(field_type: str, configuration: Any) -> Dict[str, Any]:
    if configuration is None:
        configuration = {}
    if not isinstance(configuration, dict):
        raise InvalidFieldConfigurationError("configuration must be an object")

    if field_type == "checklist":
        items = configuration.get("items", [])
        if not isinstance(items, list) or not all(isinstance(i, str) for i in items):
            raise InvalidFieldConfigurationError("checklist items must be a list of strings")

    return dict(configuration)


def _validate_slug(slug: str, field_type: str) -> None:
    if not SLUG_RE.match(slug):
        raise InvalidSlugError(f"Invalid slug '{slug}': use lowercase letters, digits and underscores")
    if slug in SYSTEM_SLUGS and field_type != "user_select":
        raise InvalidSlugError(f"Slug '{slug}' is reserved for user_select fields")


def _slug_taken(db: Session, step_id: str, slug: str, exclude_field_id: Optional[str] = None) -> bool:
    q = db.query(StepField).filter(StepField.step_id == step_id, StepField.slug == slug)
    if exclude_field_id is not None:
        q = q.filter(StepField.id != exclude_field_id)
    return q.first() is not None


def _renumber(db: Session, rows: Sequence[Any]) -> None:
    for i, row in enumerate(rows):
        row.position = -(i + 1)
    db.flush()
    for i, row in enumerate(rows):
        row.position = i + 1
    db.flush()


def _ordered_steps(db: Session, flow_id: str) -> List[Step]:
    return db.query(Step).filter(Step.flow_id == flow_id).order_by(Step.position.asc(), Step.id.asc()).all()


def _ordered_fields(db: Session, step_id: str) -> List[StepField]:
    return (
        db.query(StepField)
        .filter(StepField.step_id == step_id)
        .order_by(StepField.position.asc(), StepField.id.asc())
        .all()
    )


def _apply_order(db: Session, rows: List[Any], ordered_ids: List[str], label: str) -> List[Any]:
    by_id = {r.id: r for r in rows}
    requested = [str(i) for i in ordered_ids]
    if len(requested) != len(set(requested)) or set(requested) != set(by_id):
        raise InvalidOrderError(f"Ordered ids must list every {label} exactly once")
    ordered = [by_id[i] for i in requested]
    _renumber(db, ordered)
    return ordered


def _next_position(db: Session, column, parent_column, parent_id: str) -> int:
    current = db.query(func.max(column)).filter(parent_column == parent_id).scalar()
    return int(current or 0) + 1


# --- flows -----------------------------------------------------------------


def create_flow(
    client_id: str,
    name: str,
    description: Optional[str] = None,
    visibility_type: str = "company",
    steps: Optional[List[Dict[str, Any]]] = None,
    created_by: Optional[str] = None,
) -> Flow:
    if not name or not name.strip():
        raise ValidationError("Flow name is required")
    if visibility_type not in visibility_service.VISIBILITY_TYPES:
        raise ValidationError(f"Invalid visibility type '{visibility_type}'")

    db = SessionLocal()
    try:
        flow = Flow(
            client_id=str(client_id),
            name=name.strip(),
            description=description,
            visibility_type=visibility_type,
            is_active=True,
            created_by=created_by,
        )
        db.add(flow)
        db.flush()

        for i, seed in enumerate(steps or [{"title": DEFAULT_STEP_TITLE}]):
            step_type = seed.get("step_type") or "standard"
            if step_type not in STEP_TYPES:
                raise ValidationError(f"Invalid step type '{step_type}'")
            db.add(
                Step(
                    client_id=str(client_id),
                    flow_id=flow.id,
                    title=seed.get("title") or DEFAULT_STEP_TITLE,
                    color=seed.get("color") or DEFAULT_STEP_COLOR,
                    position=i + 1,
                    step_type=step_type,
                )
            )

        db.commit()
        db.refresh(flow)
        logger.info("Flow created", extra={"client_id": client_id, "flow_id": flow.id})
        return flow
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_flow(client_id: str, flow_id: str) -> Flow:
    db = SessionLocal()
    try:
        return get_scoped(db, Flow, flow_id, client_id, "Flow")
    finally:
        db.close()


def list_flows(client_id: str, user_id: str) -> List[Flow]:
    db = SessionLocal()
    try:
        rows = (
            db.query(Flow)
            .filter(Flow.client_id == str(client_id))
            .order_by(Flow.created_at.asc(), Flow.id.asc())
            .all()
        )
        return visibility_service.visible_flows(db, client_id, user_id, rows)
    finally:
        db.close()


def update_flow(client_id: str, flow_id: str, changes: Dict[str, Any]) -> Flow:
    db = SessionLocal()
    try:
        flow = get_scoped(db, Flow, flow_id, client_id, "Flow")

        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise ValidationError("Flow name is required")
            flow.name = name
        if "description" in changes:
            flow.description = changes["description"]
        if "is_active" in changes and changes["is_active"] is not None:
            flow.is_active = bool(changes["is_active"])

        db.commit()
        db.refresh(flow)
        return flow
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _delete_step_dependents(db: Session, client_id: str, step_ids: List[str]) -> None:
    if not step_ids:
        return
    db.query(StepChildCardAutomation).filter(
        StepChildCardAutomation.client_id == str(client_id),
        (StepChildCardAutomation.step_id.in_(step_ids)) | (StepChildCardAutomation.target_step_id.in_(step_ids)),
    ).delete(synchronize_session=False)
    db.query(ContactAutomation).filter(
        ContactAutomation.client_id == str(client_id),
        ContactAutomation.target_step_id.in_(step_ids),
    ).delete(synchronize_session=False)
    for model in (StepField, StepTeamAccess, StepUserExclusion, StepVisibility):
        db.query(model).filter(model.step_id.in_(step_ids)).delete(synchronize_session=False)


def delete_flow(client_id: str, flow_id: str) -> None:
    db = SessionLocal()
    try:
        flow = get_scoped(db, Flow, flow_id, client_id, "Flow")

        if db.query(Card.id).filter(Card.flow_id == flow.id).first() is not None:
            raise FlowHasCardsError("Flow still has cards")

        step_ids = [s.id for s in _ordered_steps(db, flow.id)]
        db.query(StepChildCardAutomation).filter(
            StepChildCardAutomation.client_id == str(client_id),
            StepChildCardAutomation.target_flow_id == flow.id,
        ).delete(synchronize_session=False)
        _delete_step_dependents(db, client_id, step_ids)
        db.query(Step).filter(Step.flow_id == flow.id).delete(synchronize_session=False)
        for model in (FlowTeamAccess, FlowUserExclusion, FlowAccess, FlowTag):
            db.query(model).filter(model.flow_id == flow.id).delete(synchronize_session=False)
        db.delete(flow)

        db.commit()
        logger.info("Flow deleted", extra={"client_id": client_id, "flow_id": flow_id})
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# --- steps -----------------------------------------------------------------


def list_steps(client_id: str, flow_id: str) -> List[Step]:
    db = SessionLocal()
    try:
        return (
            db.query(Step)
            .filter(Step.client_id == str(client_id), Step.flow_id == str(flow_id))
            .order_by(Step.position.asc(), Step.id.asc())
            .all()
        )
    finally:
        db.close()


def create_step(
    client_id: str,
    flow_id: str,
    title: str,
    color: Optional[str] = None,
    step_type: str = "standard",
) -> Step:
    if step_type not in STEP_TYPES:
        raise ValidationError(f"Invalid step type '{step_type}'")

    db = SessionLocal()
    try:
        flow = get_scoped(db, Flow, flow_id, client_id, "Flow")

        step = Step(
            client_id=str(client_id),
            flow_id=flow.id,
            title=title or DEFAULT_STEP_TITLE,
            color=color or DEFAULT_STEP_COLOR,
            position=_next_position(db, Step.position, Step.flow_id, flow.id),
            step_type=step_type,
        )
        db.add(step)
        db.commit()
        db.refresh(step)
        return step
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def update_step(client_id: str, step_id: str, changes: Dict[str, Any]) -> Step:
    """Apply only the keys present in ``changes``.

    A responsible user and a responsible team are mutually exclusive: setting
    one clears the other.
    """
    db = SessionLocal()
    try:
        step = get_scoped(db, Step, step_id, client_id, "Step")

        user_id = changes.get("responsible_user_id")
        team_id = changes.get("responsible_team_id")
        if user_id and team_id:
            raise ResponsibleConflictError("A step can have a responsible user or a responsible team, not both")

        if "title" in changes:
            if not changes["title"]:
                raise ValidationError("Step title is required")
            step.title = changes["title"]
        if "color" in changes and changes["color"]:
            step.color = changes["color"]
        if "step_type" in changes:
            if changes["step_type"] not in STEP_TYPES:
                raise ValidationError(f"Invalid step type '{changes['step_type']}'")
            step.step_type = changes["step_type"]

        if "responsible_user_id" in changes:
            if user_id:
                get_scoped(db, ClientUser, user_id, client_id, "User")
                step.responsible_user_id = str(user_id)
                step.responsible_team_id = None
            else:
                step.responsible_user_id = None

        if "responsible_team_id" in changes:
            if team_id:
                get_scoped(db, Team, team_id, client_id, "Team")
                step.responsible_team_id = str(team_id)
                step.responsible_user_id = None
            else:
                step.responsible_team_id = None

        db.commit()
        db.refresh(step)
        return step
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def reorder_steps(client_id: str, flow_id: str, ordered_step_ids: List[str]) -> List[Step]:
    db = SessionLocal()
    try:
        flow = get_scoped(db, Flow, flow_id, client_id, "Flow")
        ordered = _apply_order(db, _ordered_steps(db, flow.id), ordered_step_ids, "step")
        db.commit()
        return ordered
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def delete_step(client_id: str, step_id: str) -> None:
    db = SessionLocal()
    try:
        step = get_scoped(db, Step, step_id, client_id, "Step")

        if db.query(Card.id).filter(Card.step_id == step.id).first() is not None:
            raise HasCardsError("Step still has cards")

        remaining = [s for s in _ordered_steps(db, step.flow_id) if s.id != step.id]
        if not remaining:
            raise LastStepError("Cannot delete the last step of a flow")

        _delete_step_dependents(db, client_id, [step.id])
        db.delete(step)
        db.flush()
        _renumber(db, remaining)

        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# --- fields ----------------------------------------------------------------


def list_fields(client_id: str, step_id: str) -> List[StepField]:
    db = SessionLocal()
    try:
        return (
            db.query(StepField)
            .filter(StepField.client_id == str(client_id), StepField.step_id == str(step_id))
            .order_by(StepField.position.asc(), StepField.id.asc())
            .all()
        )
    finally:
        db.close()


def create_field(
    client_id: str,
    step_id: str,
    label: str,
    field_type: str,
    is_required: bool = False,
    configuration: Optional[Dict[str, Any]] = None,
    slug: Optional[str] = None,
) -> StepField:
    if not label or not label.strip():
        raise ValidationError("Field label is required")
    _validate_field_type(field_type)
    configuration = _validate_configuration(field_type, configuration)

    system_slug = system_slug_for(label, field_type)
    if system_slug:
        # responsible fields always carry the system slug, whatever was asked for
        slug = system_slug
    elif slug:
        _validate_slug(slug, field_type)
    else:
        slug = slugify(label)
        _validate_slug(slug, field_type)

    db = SessionLocal()
    try:
        step = get_scoped(db, Step, step_id, client_id, "Step")

        if _slug_taken(db, step.id, slug):
            if slug in SYSTEM_SLUGS:
                raise DuplicateSlugError(f"Step already has a '{slug}' field")
            raise DuplicateSlugError(f"Slug '{slug}' already exists on this step")

        field = StepField(
            client_id=str(client_id),
            step_id=step.id,
            label=label.strip(),
            slug=slug,
            field_type=field_type,
            is_required=bool(is_required),
            position=_next_position(db, StepField.position, StepField.step_id, step.id),
            configuration=configuration,
        )
        db.add(field)
        db.commit()
        db.refresh(field)
        return field
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def update_field(client_id: str, field_id: str, changes: Dict[str, Any]) -> StepField:
    db = SessionLocal()
    try:
        field = get_scoped(db, StepField, field_id, client_id, "Field")
        is_system = field.slug in SYSTEM_SLUGS

        new_type = changes.get("field_type") or field.field_type
        if "field_type" in changes and changes["field_type"] is not None:
            _validate_field_type(new_type)
            if is_system and new_type != field.field_type:
                raise SystemFieldLockedError(f"Field type of '{field.slug}' cannot change")

        if "slug" in changes and changes["slug"] != field.slug:
            new_slug = changes["slug"]
            if is_system:
                raise SystemFieldLockedError(f"Slug '{field.slug}' is system managed")
            if new_slug in SYSTEM_SLUGS:
                raise SystemFieldLockedError(f"Slug '{new_slug}' is system managed")
            if new_slug:
                _validate_slug(new_slug, new_type)
                if _slug_taken(db, field.step_id, new_slug, exclude_field_id=field.id):
                    raise DuplicateSlugError(f"Slug '{new_slug}' already exists on this step")
            field.slug = new_slug or None

        if "configuration" in changes:
            field.configuration = _validate_configuration(new_type, changes["configuration"])
        elif new_type != field.field_type:
            _validate_configuration(new_type, field.configuration)

        if "label" in changes:
            if not changes["label"] or not changes["label"].strip():
                raise ValidationError("Field label is required")
            field.label = changes["label"].strip()
        if "is_required" in changes and changes["is_required"] is not None:
            field.is_required = bool(changes["is_required"])
        field.field_type = new_type

        db.commit()
        db.refresh(field)
        return field
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def delete_field(client_id: str, field_id: str) -> None:
    db = SessionLocal()
    try:
        field = get_scoped(db, StepField, field_id, client_id, "Field")
        remaining = [f for f in _ordered_fields(db, field.step_id) if f.id != field.id]

        db.delete(field)
        db.flush()
        _renumber(db, remaining)

        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def reorder_fields(client_id: str, step_id: str, ordered_field_ids: List[str]) -> List[StepField]:
    db = SessionLocal()
    try:
        step = get_scoped(db, Step, step_id, client_id, "Step")
        ordered = _apply_order(db, _ordered_fields(db, step.id), ordered_field_ids, "field")
        db.commit()
        return ordered
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
