import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from nexflow.core.errors import NexflowError, StepFlowMismatchError, ValidationError
from nexflow.database import SessionLocal
from nexflow.models.card import Card
from nexflow.models.contact import Contact, ContactAutomation
from nexflow.models.flow import Flow, Step
from nexflow.services import card_service
from nexflow.services.tenant import get_scoped

logger = logging.getLogger(__name__)

DEFAULT_CARD_TITLE = "New contact"


def _check_target(db: Session, client_id: str, target_flow_id: str, target_step_id: str) -> None:
    flow = get_scoped(db, Flow, target_flow_id, client_id, "Target flow")
    step = get_scoped(db, Step, target_step_id, client_id, "Target step")
    if step.flow_id != flow.id:
        raise StepFlowMismatchError("Target step does not belong to the target flow")


def _clean_conditions(conditions: Any) -> Dict[str, Any]:
    if conditions is None:
        return {}
    if not isinstance(conditions, dict):
        raise ValidationError("trigger_conditions must be an object")
    return dict(conditions)


def create_contact_automation(
    client_id: str,
    target_flow_id: str,
    target_step_id: str,
    name: Optional[str] = None,
    is_active: bool = True,
    trigger_conditions: Optional[Dict[str, Any]] = None,
) -> ContactAutomation:
    db = SessionLocal()
    try:
        _check_target(db, client_id, target_flow_id, target_step_id)
        row = ContactAutomation(
            client_id=str(client_id),
            name=(name or "").strip() or None,
            target_flow_id=str(target_flow_id),
            target_step_id=str(target_step_id),
            is_active=bool(is_active),
            trigger_conditions=_clean_conditions(trigger_conditions),
        )
        db.add(row)
        db.commit()
        db.refresh(row)
        return row
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_contact_automation(client_id: str, automation_id: str) -> ContactAutomation:
    db = SessionLocal()
    try:
        return get_scoped(db, ContactAutomation, automation_id, client_id, "Contact automation")
    finally:
        db.close()


def list_contact_automations(client_id: str) -> List[ContactAutomation]:
    """Newest first."""
    db = SessionLocal()
    try:
        return (
            db.query(ContactAutomation)
            .filter(ContactAutomation.client_id == str(client_id))
            .order_by(ContactAutomation.created_at.desc(), ContactAutomation.id.desc())
            .all()
        )
    finally:
        db.close()


def update_contact_automation(client_id: str, automation_id: str, changes: Dict[str, Any]) -> ContactAutomation:
    db = SessionLocal()
    try:
        row = get_scoped(db, ContactAutomation, automation_id, client_id, "Contact automation")

        if changes.get("target_flow_id") or changes.get("target_step_id"):
            target_flow_id = changes.get("target_flow_id") or row.target_flow_id
            target_step_id = changes.get("target_step_id") or row.target_step_id
            _check_target(db, client_id, target_flow_id, target_step_id)
            row.target_flow_id = str(target_flow_id)
            row.target_step_id = str(target_step_id)

        if "name" in changes:
            row.name = (changes["name"] or "").strip() or None
        if changes.get("is_active") is not None:
            row.is_active = bool(changes["is_active"])
        if "trigger_conditions" in changes:
            row.trigger_conditions = _clean_conditions(changes["trigger_conditions"])

        db.commit()
        db.refresh(row)
        return row
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def delete_contact_automation(client_id: str, automation_id: str) -> None:
    db = SessionLocal()
    try:
        row = get_scoped(db, ContactAutomation, automation_id, client_id, "Contact automation")
        db.delete(row)
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def auto_create_cards(
    client_id: str,
    contact_id: str,
    automation_id: Optional[str] = None,
    actor_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Open one card per active contact automation for ``contact_id``.

    Each rule runs in its own transaction. A rule whose target is gone or
    inconsistent is rolled back and reported in ``errors``; the others still
    create their cards.
    """
    db = SessionLocal()
    try:
        contact = get_scoped(db, Contact, contact_id, client_id, "Contact")
        q = db.query(ContactAutomation).filter(
            ContactAutomation.client_id == str(client_id),
            ContactAutomation.is_active.is_(True),
        )
        if automation_id is not None:
            q = q.filter(ContactAutomation.id == str(automation_id))
        rules = [
            (r.id, r.target_flow_id, r.target_step_id)
            for r in q.order_by(ContactAutomation.created_at.asc(), ContactAutomation.id.asc()).all()
        ]
        title = contact.name or DEFAULT_CARD_TITLE
    finally:
        db.close()

    if not rules:
        return {"message": "No active contact automations", "cards_created": [], "cards_count": 0, "errors": []}

    created: List[Card] = []
    errors: List[Dict[str, str]] = []
    for rule_id, target_flow_id, target_step_id in rules:
        db = SessionLocal()
        try:
            card = card_service.new_card(
                db,
                client_id,
                target_flow_id,
                target_step_id,
                title,
                contact_id=str(contact_id),
                created_by=actor_id,
            )
            db.commit()
            db.refresh(card)
            created.append(card)
            logger.info(
                "Card created by contact automation",
                extra={"automation_id": rule_id, "contact_id": contact_id, "card_id": card.id},
            )
        except NexflowError as exc:
            db.rollback()
            errors.append({"automation_id": rule_id, "error": exc.message})
            logger.warning(
                "Contact automation skipped",
                extra={"automation_id": rule_id, "contact_id": contact_id, "error": exc.code},
            )
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    return {
        "message": f"{len(created)} card(s) created",
        "cards_created": created,
        "cards_count": len(created),
        "errors": errors,
    }
