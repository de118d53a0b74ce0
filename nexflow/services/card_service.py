"""Card lifecycle: creation, field values, checklists, moves and status.

Every mutation appends ``card_history`` rows; the timeline is read back from
those rows. Automations for the destination step run after the move has been
committed, each in its own transaction.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from nexflow.core.authorization import is_elevated
from nexflow.core.errors import (
    ForbiddenError,
    InvalidMovementHistoryError,
    StepFlowMismatchError,
    TerminalCardError,
    ValidationError,
)
from nexflow.database import SessionLocal
from nexflow.models.card import Card, CardActivity, CardHistory, CardStepValue
from nexflow.models.contact import Contact
from nexflow.models.flow import Flow, Step, StepField
from nexflow.models.organization import ClientUser, Team
from nexflow.services import automation_service, visibility_service
from nexflow.services.flow_schema_service import RESPONSIBLE_SLUG, RESPONSIBLE_TEAM_SLUG
from nexflow.services.tenant import get_scoped

logger = logging.getLogger(__name__)

CARD_STATUSES = ("inprogress", "completed", "canceled")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _record_event(db: Session, card: Card, event_type: str, actor_id: Optional[str] = None, **values) -> CardHistory:
    row = CardHistory(
        client_id=card.client_id,
        card_id=card.id,
        event_type=event_type,
        created_at=values.pop("created_at", None) or _utc_now(),
        created_by=actor_id,
        **values,
    )
    db.add(row)
    return row


def stage_entered_at(db: Session, card: Card) -> datetime:
    last = (
        db.query(CardHistory.created_at)
        .filter(CardHistory.card_id == card.id, CardHistory.event_type == "stage_change")
        .order_by(CardHistory.created_at.desc())
        .first()
    )
    return last[0] if last is not None else card.created_at


def _movement_direction(db: Session, from_step_id: Optional[str], to_step_id: str) -> str:
    if not from_step_id or from_step_id == to_step_id:
        return "same"
    from_step = db.get(Step, from_step_id)
    to_step = db.get(Step, to_step_id)
    if from_step is None or to_step is None or from_step.position == to_step.position:
        return "same"
    return "forward" if to_step.position > from_step.position else "backward"


def _next_card_position(db: Session, step_id: str) -> int:
    current = db.query(func.max(Card.position)).filter(Card.step_id == step_id).scalar()
    return int(current or 0) + 1


def _flow_fields(db: Session, flow_id: str) -> List[StepField]:
    return (
        db.query(StepField)
        .join(Step, Step.id == StepField.step_id)
        .filter(Step.flow_id == flow_id)
        .all()
    )


def _resolve_field(fields: List[StepField], key: str) -> Optional[StepField]:
    for f in fields:
        if f.id == key:
            return f
    for f in fields:
        if f.slug and f.slug == key:
            return f
    return None


def _history_entry(from_step_id: Optional[str], to_step_id: str, moved_by: Optional[str], moved_at: datetime) -> Dict[str, Any]:
    return {
        "id": str(uuid.uuid4()),
        "fromStepId": from_step_id,
        "toStepId": to_step_id,
        "movedAt": moved_at.isoformat(),
        "movedBy": moved_by,
    }


def validate_movement_history(history: Any, current_step_id: str) -> List[Dict[str, Any]]:
    """Return a normalized copy of ``history`` or raise if it does not chain.

    The first entry comes from nowhere, every later entry starts where the
    previous one ended, and the last one ends on ``current_step_id``.
    """
    if not isinstance(history, list) or not history:
        raise InvalidMovementHistoryError("Movement history must be a non-empty list")

    normalized = []
    previous_to = None
    for i, entry in enumerate(history):
        if not isinstance(entry, dict) or not entry.get("toStepId"):
            raise InvalidMovementHistoryError(f"Movement entry {i} has no toStepId")
        from_step = entry.get("fromStepId")
        if i == 0 and from_step is not None:
            raise InvalidMovementHistoryError("First movement entry must not have a fromStepId")
        if i > 0 and from_step != previous_to:
            raise InvalidMovementHistoryError(f"Movement entry {i} does not start where entry {i - 1} ended")
        previous_to = entry["toStepId"]
        normalized.append(
            {
                "id": entry.get("id") or str(uuid.uuid4()),
                "fromStepId": from_step,
                "toStepId": previous_to,
                "movedAt": entry.get("movedAt"),
                "movedBy": entry.get("movedBy"),
            }
        )

    if previous_to != current_step_id:
        raise InvalidMovementHistoryError("Movement history must end at the card's current step")
    return normalized


def _check_assignee(db: Session, client_id: str, user_id: Optional[str], team_id: Optional[str]) -> None:
    if user_id:
        get_scoped(db, ClientUser, user_id, client_id, "User")
    if team_id:
        get_scoped(db, Team, team_id, client_id, "Team")


def _set_assignment(db: Session, card: Card, actor_id: Optional[str], **changes) -> None:
    previous = {"assigned_to": card.assigned_to, "assigned_team_id": card.assigned_team_id}
    for key, value in changes.items():
        setattr(card, key, value or None)
    current = {"assigned_to": card.assigned_to, "assigned_team_id": card.assigned_team_id}
    if current != previous:
        _record_event(db, card, "assignee_change", actor_id, previous_value=previous, new_value=current)


def new_card(
    db: Session,
    client_id: str,
    flow_id: str,
    step_id: str,
    title: str,
    field_values: Optional[Dict[str, Any]] = None,
    assigned_to: Optional[str] = None,
    assigned_team_id: Optional[str] = None,
    contact_id: Optional[str] = None,
    parent_card_id: Optional[str] = None,
    created_by: Optional[str] = None,
) -> Card:
    """Build and add a card inside an existing transaction."""
    if not title or not str(title).strip():
        raise ValidationError("Card title is required")

    flow = get_scoped(db, Flow, flow_id, client_id, "Flow")
    step = get_scoped(db, Step, step_id, client_id, "Step")
    if step.flow_id != flow.id:
        raise StepFlowMismatchError("Step does not belong to the flow")

    if contact_id:
        get_scoped(db, Contact, contact_id, client_id, "Contact")
    if parent_card_id:
        get_scoped(db, Card, parent_card_id, client_id, "Parent card")

    _check_assignee(db, client_id, assigned_to, assigned_team_id)
    if not assigned_to and not assigned_team_id:
        assigned_to = step.responsible_user_id
        assigned_team_id = step.responsible_team_id

    now = _utc_now()
    card = Card(
        id=str(uuid.uuid4()),
        client_id=str(client_id),
        flow_id=flow.id,
        step_id=step.id,
        title=str(title).strip(),
        field_values=dict(field_values or {}),
        checklist_progress={},
        assigned_to=assigned_to or None,
        assigned_team_id=assigned_team_id or None,
        position=_next_card_position(db, step.id),
        movement_history=[_history_entry(None, step.id, created_by, now)],
        parent_card_id=parent_card_id or None,
        contact_id=contact_id or None,
        status="inprogress",
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )
    db.add(card)
    db.flush()
    return card


def create_card(client_id: str, flow_id: str, step_id: str, title: str, created_by: Optional[str] = None, **options) -> Card:
    db = SessionLocal()
    try:
        card = new_card(db, client_id, flow_id, step_id, title, created_by=created_by, **options)
        db.commit()
        db.refresh(card)
        logger.info("Card created", extra={"client_id": client_id, "card_id": card.id, "step_id": step_id})
        return card
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def create_card_from_contact(
    client_id: str,
    contact_id: str,
    flow_id: str,
    step_id: str,
    title: Optional[str] = None,
    created_by: Optional[str] = None,
) -> Card:
    db = SessionLocal()
    try:
        contact = get_scoped(db, Contact, contact_id, client_id, "Contact")
        card = new_card(
            db,
            client_id,
            flow_id,
            step_id,
            title or contact.name,
            contact_id=contact.id,
            created_by=created_by,
        )
        db.commit()
        db.refresh(card)
        return card
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_card(client_id: str, card_id: str) -> Card:
    db = SessionLocal()
    try:
        return get_scoped(db, Card, card_id, client_id, "Card")
    finally:
        db.close()


def list_cards(client_id: str, flow_id: str, user_id: str, step_id: Optional[str] = None) -> List[Card]:
    db = SessionLocal()
    try:
        flow = get_scoped(db, Flow, flow_id, client_id, "Flow")
        if not visibility_service.flow_is_visible(db, client_id, user_id, flow):
            raise ForbiddenError("You cannot view this flow")

        steps = db.query(Step).filter(Step.flow_id == flow.id).all()
        positions = {s.id: s.position for s in visibility_service.visible_steps(db, client_id, user_id, steps)}
        if step_id is not None:
            positions = {k: v for k, v in positions.items() if k == str(step_id)}
        if not positions:
            return []

        rows = (
            db.query(Card)
            .filter(Card.client_id == str(client_id), Card.flow_id == flow.id, Card.step_id.in_(sorted(positions)))
            .all()
        )
        return sorted(rows, key=lambda c: (positions[c.step_id], c.position, c.created_at, c.id))
    finally:
        db.close()


def _merge_field_values(db: Session, card: Card, patch: Dict[str, Any], actor_id: Optional[str]) -> None:
    if not isinstance(patch, dict):
        raise ValidationError("field_values must be an object")

    fields = _flow_fields(db, card.flow_id)
    values = dict(card.field_values or {})

    for key, value in patch.items():
        old = values.get(key)
        if key in values and old == value:
            continue
        values[key] = value

        field = _resolve_field(fields, key)
        _record_event(
            db,
            card,
            "field_update",
            actor_id,
            field_id=field.id if field is not None else None,
            step_id=field.step_id if field is not None else card.step_id,
            previous_value={"value": old},
            new_value={"value": value},
            details={"key": key},
        )

        # system fields mirror the card's assignment
        if field is not None and field.slug == RESPONSIBLE_SLUG:
            _check_assignee(db, card.client_id, value, None)
            _set_assignment(db, card, actor_id, assigned_to=value)
        elif field is not None and field.slug == RESPONSIBLE_TEAM_SLUG:
            _check_assignee(db, card.client_id, None, value)
            _set_assignment(db, card, actor_id, assigned_team_id=value)

    card.field_values = values


def update_field_values(client_id: str, card_id: str, patch: Dict[str, Any], actor_id: Optional[str] = None) -> Card:
    db = SessionLocal()
    try:
        card = get_scoped(db, Card, card_id, client_id, "Card")
        _merge_field_values(db, card, patch, actor_id)
        db.commit()
        db.refresh(card)
        return card
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _merge_checklist(db: Session, card: Card, field_id: str, progress: Dict[str, Any], actor_id: Optional[str]) -> None:
    if not isinstance(progress, dict):
        raise ValidationError("Checklist progress must be an object")

    field = get_scoped(db, StepField, field_id, card.client_id, "Field")
    step = db.get(Step, field.step_id)
    if step is None or step.flow_id != card.flow_id:
        raise ValidationError("Field does not belong to the card's flow")
    if field.field_type != "checklist":
        raise ValidationError("Field is not a checklist")

    all_progress = dict(card.checklist_progress or {})
    previous = dict(all_progress.get(field.id) or {})
    current = dict(previous)
    current.update({str(k): bool(v) for k, v in progress.items()})
    all_progress[field.id] = current
    card.checklist_progress = all_progress

    if current == previous:
        return

    _record_event(
        db,
        card,
        "checklist_change",
        actor_id,
        field_id=field.id,
        step_id=field.step_id,
        previous_value=previous,
        new_value=current,
    )

    items = (field.configuration or {}).get("items") or []

    def _done(state):
        return bool(items) and all(state.get(str(item)) for item in items)

    if _done(current) and not _done(previous):
        _record_event(db, card, "checklist_completed", actor_id, field_id=field.id, step_id=field.step_id)


def update_checklist(
    client_id: str,
    card_id: str,
    field_id: str,
    progress: Dict[str, Any],
    actor_id: Optional[str] = None,
) -> Card:
    db = SessionLocal()
    try:
        card = get_scoped(db, Card, card_id, client_id, "Card")
        _merge_checklist(db, card, field_id, progress, actor_id)
        db.commit()
        db.refresh(card)
        return card
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _snapshot_step_values(db: Session, card: Card) -> None:
    row = (
        db.query(CardStepValue)
        .filter(CardStepValue.card_id == card.id, CardStepValue.step_id == card.step_id)
        .first()
    )
    if row is None:
        db.add(
            CardStepValue(
                client_id=card.client_id,
                card_id=card.id,
                step_id=card.step_id,
                field_values=dict(card.field_values or {}),
            )
        )
    else:
        row.field_values = dict(card.field_values or {})
        row.updated_at = _utc_now()


def _move(
    db: Session,
    card: Card,
    to_step_id: str,
    actor_id: Optional[str],
    assigned_to: Optional[str] = None,
    assigned_team_id: Optional[str] = None,
    position: Optional[int] = None,
) -> bool:
    """Move ``card`` inside the current transaction; True when the step changed."""
    if card.is_terminal:
        raise TerminalCardError(f"Card is {card.status} and cannot be moved")

    step = get_scoped(db, Step, to_step_id, card.client_id, "Step")
    if step.flow_id != card.flow_id:
        raise StepFlowMismatchError("Target step belongs to another flow")

    if step.id == card.step_id:
        if position is not None:
            card.position = int(position)
        return False

    now = _utc_now()
    previous_step_id = card.step_id
    duration = int((now - stage_entered_at(db, card)).total_seconds())

    _snapshot_step_values(db, card)

    card.movement_history = list(card.movement_history or []) + [
        _history_entry(previous_step_id, step.id, actor_id, now)
    ]
    card.step_id = step.id
    card.position = int(position) if position is not None else _next_card_position(db, step.id)

    _record_event(
        db,
        card,
        "stage_change",
        actor_id,
        created_at=now,
        from_step_id=previous_step_id,
        to_step_id=step.id,
        duration_seconds=max(duration, 0),
        movement_direction=_movement_direction(db, previous_step_id, step.id),
    )

    if assigned_to or assigned_team_id:
        _check_assignee(db, card.client_id, assigned_to, assigned_team_id)
        changes = {}
        if assigned_to:
            changes["assigned_to"] = assigned_to
        if assigned_team_id:
            changes["assigned_team_id"] = assigned_team_id
        _set_assignment(db, card, actor_id, **changes)
    elif step.responsible_user_id:
        _set_assignment(db, card, actor_id, assigned_to=step.responsible_user_id)
    elif step.responsible_team_id:
        _set_assignment(db, card, actor_id, assigned_team_id=step.responsible_team_id)

    return True


def move_card(
    client_id: str,
    card_id: str,
    to_step_id: str,
    actor_id: Optional[str] = None,
    assigned_to: Optional[str] = None,
    assigned_team_id: Optional[str] = None,
    position: Optional[int] = None,
) -> Card:
    db = SessionLocal()
    try:
        card = get_scoped(db, Card, card_id, client_id, "Card")
        moved = _move(db, card, to_step_id, actor_id, assigned_to, assigned_team_id, position)
        db.commit()
        db.refresh(card)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    if moved:
        automation_service.run_step_automations(client_id, card.id, card.step_id, actor_id)
    return card


def _set_title(db: Session, card: Card, title: str, actor_id: Optional[str]) -> None:
    if not is_elevated(db, card.client_id, actor_id):
        raise ForbiddenError("Only administrators and team leaders can edit card titles")
    if not title or not str(title).strip():
        raise ValidationError("Card title is required")

    title = str(title).strip()
    if title == card.title:
        return
    _record_event(db, card, "title_change", actor_id, previous_value={"title": card.title}, new_value={"title": title})
    card.title = title


def set_title(client_id: str, card_id: str, title: str, actor_id: Optional[str]) -> Card:
    db = SessionLocal()
    try:
        card = get_scoped(db, Card, card_id, client_id, "Card")
        _set_title(db, card, title, actor_id)
        db.commit()
        db.refresh(card)
        return card
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _set_status(db: Session, card: Card, status: str, actor_id: Optional[str]) -> None:
    if status not in CARD_STATUSES:
        raise ValidationError(f"Invalid card status '{status}'")
    if status == card.status:
        return
    if card.is_terminal:
        raise TerminalCardError(f"Card is already {card.status}")

    _record_event(
        db,
        card,
        "status_change",
        actor_id,
        step_id=card.step_id,
        previous_value={"status": card.status},
        new_value={"status": status},
    )
    card.status = status


def _finish(client_id: str, card_id: str, status: str, actor_id: Optional[str]) -> Card:
    db = SessionLocal()
    try:
        card = get_scoped(db, Card, card_id, client_id, "Card")
        if card.is_terminal:
            raise TerminalCardError(f"Card is already {card.status}")
        _set_status(db, card, status, actor_id)
        db.commit()
        db.refresh(card)
        logger.info("Card finished", extra={"client_id": client_id, "card_id": card.id, "status": status})
        return card
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def complete_card(client_id: str, card_id: str, actor_id: Optional[str] = None) -> Card:
    return _finish(client_id, card_id, "completed", actor_id)


def cancel_card(client_id: str, card_id: str, actor_id: Optional[str] = None) -> Card:
    return _finish(client_id, card_id, "canceled", actor_id)


def update_card(client_id: str, card_id: str, payload: Dict[str, Any], actor_id: Optional[str] = None) -> Card:
    """Apply the keys present in ``payload``; absent keys are left alone."""
    moved = False
    db = SessionLocal()
    try:
        card = get_scoped(db, Card, card_id, client_id, "Card")

        if "title" in payload:
            _set_title(db, card, payload["title"], actor_id)

        if payload.get("field_values") is not None:
            _merge_field_values(db, card, payload["field_values"], actor_id)

        if payload.get("checklist_progress") is not None:
            if not isinstance(payload["checklist_progress"], dict):
                raise ValidationError("checklist_progress must be an object")
            for field_id, progress in payload["checklist_progress"].items():
                _merge_checklist(db, card, field_id, progress, actor_id)

        assignment = {k: payload[k] for k in ("assigned_to", "assigned_team_id") if k in payload}
        if assignment:
            _check_assignee(db, client_id, assignment.get("assigned_to"), assignment.get("assigned_team_id"))
            _set_assignment(db, card, actor_id, **assignment)

        if "parent_card_id" in payload:
            parent_id = payload["parent_card_id"] or None
            if parent_id is not None:
                if parent_id == card.id:
                    raise ValidationError("A card cannot be its own parent")
                get_scoped(db, Card, parent_id, client_id, "Parent card")
            if parent_id != card.parent_card_id:
                _record_event(
                    db,
                    card,
                    "parent_change",
                    actor_id,
                    previous_value={"parent_card_id": card.parent_card_id},
                    new_value={"parent_card_id": parent_id},
                )
                card.parent_card_id = parent_id

        if payload.get("step_id"):
            moved = _move(db, card, payload["step_id"], actor_id, position=payload.get("position"))
        elif payload.get("position") is not None:
            card.position = int(payload["position"])

        if payload.get("movement_history") is not None:
            card.movement_history = validate_movement_history(payload["movement_history"], card.step_id)

        if payload.get("status") is not None:
            _set_status(db, card, payload["status"], actor_id)

        db.commit()
        db.refresh(card)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    if moved:
        automation_service.run_step_automations(client_id, card.id, card.step_id, actor_id)
    return card


# --- activities ------------------------------------------------------------


def create_activity(
    client_id: str,
    card_id: str,
    title: str,
    start_at: datetime,
    end_at: datetime,
    assignee_id: Optional[str] = None,
    actor_id: Optional[str] = None,
) -> CardActivity:
    if not title or not title.strip():
        raise ValidationError("Activity title is required")
    if end_at < start_at:
        raise ValidationError("Activity end must not be before its start")

    db = SessionLocal()
    try:
        card = get_scoped(db, Card, card_id, client_id, "Card")
        if assignee_id:
            get_scoped(db, ClientUser, assignee_id, client_id, "User")

        activity = CardActivity(
            id=str(uuid.uuid4()),
            client_id=str(client_id),
            card_id=card.id,
            title=title.strip(),
            start_at=start_at,
            end_at=end_at,
            assignee_id=assignee_id,
            completed=False,
            created_by=actor_id,
        )
        db.add(activity)
        _record_event(db, card, "activity", actor_id, activity_id=activity.id, action_type="created", step_id=card.step_id)

        db.commit()
        db.refresh(activity)
        return activity
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def update_activity(client_id: str, activity_id: str, changes: Dict[str, Any], actor_id: Optional[str] = None) -> CardActivity:
    db = SessionLocal()
    try:
        activity = get_scoped(db, CardActivity, activity_id, client_id, "Activity")
        card = get_scoped(db, Card, activity.card_id, client_id, "Card")

        if "title" in changes:
            if not changes["title"] or not changes["title"].strip():
                raise ValidationError("Activity title is required")
            activity.title = changes["title"].strip()
        if changes.get("start_at") is not None:
            activity.start_at = changes["start_at"]
        if changes.get("end_at") is not None:
            activity.end_at = changes["end_at"]
        if activity.end_at < activity.start_at:
            raise ValidationError("Activity end must not be before its start")
        if "assignee_id" in changes:
            if changes["assignee_id"]:
                get_scoped(db, ClientUser, changes["assignee_id"], client_id, "User")
            activity.assignee_id = changes["assignee_id"] or None

        _record_event(db, card, "activity", actor_id, activity_id=activity.id, action_type="updated", step_id=card.step_id)

        db.commit()
        db.refresh(activity)
        return activity
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def complete_activity(client_id: str, activity_id: str, actor_id: Optional[str] = None) -> CardActivity:
    db = SessionLocal()
    try:
        activity = get_scoped(db, CardActivity, activity_id, client_id, "Activity")
        card = get_scoped(db, Card, activity.card_id, client_id, "Card")

        if not activity.completed:
            activity.completed = True
            activity.completed_at = _utc_now()
            _record_event(
                db, card, "activity", actor_id, activity_id=activity.id, action_type="completed", step_id=card.step_id
            )

        db.commit()
        db.refresh(activity)
        return activity
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def list_activities(client_id: str, card_id: str) -> List[CardActivity]:
    db = SessionLocal()
    try:
        card = get_scoped(db, Card, card_id, client_id, "Card")
        return (
            db.query(CardActivity)
            .filter(CardActivity.card_id == card.id)
            .order_by(CardActivity.start_at.asc(), CardActivity.id.asc())
            .all()
        )
    finally:
        db.close()
