"""Read-only projections over ``card_history`` and ``card_step_values``.

Related rows (steps, fields, activities, users) may have been deleted since an
event was written; summaries then fall back to what the event itself carries.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from nexflow.database import SessionLocal
from nexflow.models.card import Card, CardActivity, CardHistory, CardStepValue
from nexflow.models.contact import Contact
from nexflow.models.flow import Flow, Step, StepField
from nexflow.models.organization import ClientUser
from nexflow.services import visibility_service
from nexflow.services.tenant import fetch_by_ids, get_scoped


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _step_summary(step: Optional[Step], step_id: Optional[str]) -> Optional[Dict[str, Any]]:
    if not step_id:
        return None
    if step is None:
        return {"id": step_id, "title": None, "color": None, "position": None, "step_type": None}
    return {
        "id": step.id,
        "title": step.title,
        "color": step.color,
        "position": step.position,
        "step_type": step.step_type,
    }


def _field_summary(field: Optional[StepField], raw_key: Optional[str]) -> Dict[str, Any]:
    if field is None:
        return {"id": None, "label": raw_key, "slug": None, "field_type": "text"}
    return {"id": field.id, "label": field.label, "slug": field.slug, "field_type": field.field_type}


def _by_id(rows: Iterable[Any]) -> Dict[str, Any]:
    return {r.id: r for r in rows}


def _stage_entered_at(events: List[CardHistory], card: Card) -> datetime:
    stage_changes = [e for e in events if e.event_type == "stage_change"]
    return stage_changes[-1].created_at if stage_changes else card.created_at


def _seconds_since(moment: datetime) -> int:
    return max(int((_utc_now() - moment).total_seconds()), 0)


def _card_events(db: Session, card: Card) -> List[CardHistory]:
    return (
        db.query(CardHistory)
        .filter(CardHistory.client_id == card.client_id, CardHistory.card_id == card.id)
        .order_by(CardHistory.created_at.asc(), CardHistory.id.asc())
        .all()
    )


def _serialize_events(db: Session, card: Card, events: List[CardHistory]) -> List[Dict[str, Any]]:
    client_id = card.client_id

    step_ids = {e.from_step_id for e in events} | {e.to_step_id for e in events} | {e.step_id for e in events}
    steps = _by_id(fetch_by_ids(db, Step, step_ids, client_id=client_id))
    fields = _by_id(fetch_by_ids(db, StepField, {e.field_id for e in events}, client_id=client_id))
    activities = _by_id(fetch_by_ids(db, CardActivity, {e.activity_id for e in events}, client_id=client_id))
    users = _by_id(fetch_by_ids(db, ClientUser, {e.created_by for e in events}, client_id=client_id))

    out = []
    for e in events:
        details = e.details or {}

        field = None
        if e.field_id or details.get("key"):
            field = _field_summary(fields.get(e.field_id), details.get("key") or e.field_id)

        activity = None
        if e.activity_id:
            row = activities.get(e.activity_id)
            activity = {
                "id": e.activity_id,
                "title": row.title if row is not None else None,
                "start_at": row.start_at if row is not None else None,
                "end_at": row.end_at if row is not None else None,
                "completed": bool(row.completed) if row is not None else None,
            }

        user = None
        if e.created_by:
            row = users.get(e.created_by)
            user = {"id": e.created_by, "name": row.name if row is not None else None}

        out.append(
            {
                "id": e.id,
                "card_id": e.card_id,
                "event_type": e.event_type,
                "created_at": e.created_at,
                "created_by": e.created_by,
                "user": user,
                "duration_seconds": e.duration_seconds,
                "previous_value": e.previous_value,
                "new_value": e.new_value,
                "from_step": _step_summary(steps.get(e.from_step_id), e.from_step_id),
                "to_step": _step_summary(steps.get(e.to_step_id), e.to_step_id),
                "step": _step_summary(steps.get(e.step_id), e.step_id),
                "field": field,
                "activity": activity,
                "action_type": e.action_type,
                "movement_direction": e.movement_direction,
                "details": e.details,
            }
        )
    return out


def _timeline(db: Session, card: Card) -> Dict[str, Any]:
    events = _card_events(db, card)
    current_step = db.get(Step, card.step_id)
    return {
        "card_id": card.id,
        "current_step": _step_summary(current_step, card.step_id),
        "time_in_current_stage_seconds": _seconds_since(_stage_entered_at(events, card)),
        "events": _serialize_events(db, card, events),
    }


def get_card_timeline(client_id: str, card_id: str) -> Dict[str, Any]:
    """Timeline of a card, or of its parent while the card sits in a freezing step."""
    db = SessionLocal()
    try:
        card = get_scoped(db, Card, card_id, client_id, "Card")

        source = card
        step = db.get(Step, card.step_id)
        if step is not None and step.step_type == "freezing" and card.parent_card_id:
            source = get_scoped(db, Card, card.parent_card_id, client_id, "Parent card")

        out = _timeline(db, source)
        out["requested_card_id"] = card.id
        return out
    finally:
        db.close()


def time_in_current_stage(client_id: str, card_id: str) -> int:
    db = SessionLocal()
    try:
        card = get_scoped(db, Card, card_id, client_id, "Card")
        return _seconds_since(_stage_entered_at(_card_events(db, card), card))
    finally:
        db.close()


def _resolve_values(values: Dict[str, Any], fields: List[StepField]) -> List[Dict[str, Any]]:
    by_id = {f.id: f for f in fields}
    by_slug = {f.slug: f for f in fields if f.slug}

    out = []
    for key, value in (values or {}).items():
        field = by_id.get(key) or by_slug.get(key)
        summary = _field_summary(field, key)
        out.append(
            {
                "key": key,
                "field_id": summary["id"],
                "label": summary["label"],
                "field_type": summary["field_type"],
                "value": value,
            }
        )
    return out


def get_card_step_history(client_id: str, card_id: str) -> List[Dict[str, Any]]:
    """Field values a card carried in each step it has been through.

    Snapshots are taken when a card leaves a step; the current step shows the
    card's live values.
    """
    db = SessionLocal()
    try:
        card = get_scoped(db, Card, card_id, client_id, "Card")

        snapshots = {
            row.step_id: row
            for row in db.query(CardStepValue).filter(
                CardStepValue.client_id == str(client_id), CardStepValue.card_id == card.id
            )
        }

        steps = (
            db.query(Step)
            .filter(Step.client_id == str(client_id), Step.flow_id == card.flow_id)
            .all()
        )
        steps_by_id = _by_id(steps)
        fields = fetch_by_ids(db, StepField, steps_by_id.keys(), client_id=client_id, column=StepField.step_id)

        entries = []
        for step_id in set(snapshots) | {card.step_id}:
            is_current = step_id == card.step_id
            snapshot = snapshots.get(step_id)
            values = card.field_values if is_current else snapshot.field_values
            step = steps_by_id.get(step_id)
            entries.append(
                {
                    "step_id": step_id,
                    "step": _step_summary(step, step_id),
                    "is_current": is_current,
                    "updated_at": card.updated_at if is_current else snapshot.updated_at,
                    "fields": _resolve_values(values, fields),
                }
            )

        # deleted steps sort last
        entries.sort(
            key=lambda e: (e["step"]["position"] is not None, e["step"]["position"] or 0),
            reverse=True,
        )
        return entries
    finally:
        db.close()


def _visible_cards(db: Session, client_id: str, user_id: str, cards: List[Card]) -> List[Card]:
    steps = fetch_by_ids(db, Step, {c.step_id for c in cards}, client_id=client_id)
    flows = fetch_by_ids(db, Flow, {s.flow_id for s in steps}, client_id=client_id)

    team_ids = visibility_service.user_team_ids(db, client_id, user_id)
    flow_ids = {f.id for f in visibility_service.visible_flows(db, client_id, user_id, flows, team_ids=team_ids)}
    step_ids = {
        s.id
        for s in visibility_service.visible_steps(
            db, client_id, user_id, [s for s in steps if s.flow_id in flow_ids], team_ids=team_ids
        )
    }
    return [c for c in cards if c.step_id in step_ids]


def get_contact_history(client_id: str, contact_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
    """Cards linked to a contact; with ``user_id`` only the cards that user may view."""
    db = SessionLocal()
    try:
        contact = get_scoped(db, Contact, contact_id, client_id, "Contact")

        cards = (
            db.query(Card)
            .filter(Card.client_id == str(client_id), Card.contact_id == contact.id)
            .order_by(Card.created_at.desc(), Card.id.asc())
            .all()
        )
        if user_id is not None:
            cards = _visible_cards(db, client_id, user_id, cards)
        flows = _by_id(fetch_by_ids(db, Flow, {c.flow_id for c in cards}, client_id=client_id))

        summaries = []
        for card in cards:
            timeline = _timeline(db, card)
            events = timeline["events"]
            flow = flows.get(card.flow_id)
            summaries.append(
                {
                    "card_id": card.id,
                    "title": card.title,
                    "flow_id": card.flow_id,
                    "flow_name": flow.name if flow is not None else None,
                    "current_step": timeline["current_step"],
                    "time_in_current_stage_seconds": timeline["time_in_current_stage_seconds"],
                    "status": card.status,
                    "created_at": card.created_at,
                    "events": events,
                    "total_events": len(events),
                    "last_event_type": events[-1]["event_type"] if events else None,
                    "last_event_at": events[-1]["created_at"] if events else None,
                }
            )

        return {"contact_id": contact.id, "contact_name": contact.name, "cards": summaries}
    finally:
        db.close()
