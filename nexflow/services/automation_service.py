import logging
from typing import Any, Dict, List, Optional

from nexflow.core.errors import ValidationError
from nexflow.database import SessionLocal
from nexflow.models.automation import StepChildCardAutomation
from nexflow.models.card import Card
from nexflow.models.flow import Flow, Step
from nexflow.services import card_service
from nexflow.services.tenant import get_scoped

logger = logging.getLogger(__name__)


def _check_targets(db, client_id: str, step: Step, target_flow_id: str, target_step_id: str) -> None:
    flow = get_scoped(db, Flow, target_flow_id, client_id, "Target flow")
    target = get_scoped(db, Step, target_step_id, client_id, "Target step")
    if target.flow_id != flow.id:
        raise ValidationError("Target step does not belong to the target flow")
    if target.id == step.id:
        raise ValidationError("Target step cannot be the trigger step")


def create_automation(
    client_id: str,
    step_id: str,
    target_flow_id: str,
    target_step_id: str,
    is_active: bool = True,
    copy_field_values: bool = False,
    copy_assignment: bool = False,
) -> StepChildCardAutomation:
    db = SessionLocal()
    try:
        step = get_scoped(db, Step, step_id, client_id, "Step")
        _check_targets(db, client_id, step, target_flow_id, target_step_id)

        row = StepChildCardAutomation(
            client_id=str(client_id),
            step_id=step.id,
            target_flow_id=str(target_flow_id),
            target_step_id=str(target_step_id),
            is_active=bool(is_active),
            copy_field_values=bool(copy_field_values),
            copy_assignment=bool(copy_assignment),
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


def update_automation(client_id: str, automation_id: str, changes: Dict[str, Any]) -> StepChildCardAutomation:
    db = SessionLocal()
    try:
        row = get_scoped(db, StepChildCardAutomation, automation_id, client_id, "Automation")

        if "target_flow_id" in changes or "target_step_id" in changes:
            step = get_scoped(db, Step, row.step_id, client_id, "Step")
            target_flow_id = changes.get("target_flow_id") or row.target_flow_id
            target_step_id = changes.get("target_step_id") or row.target_step_id
            _check_targets(db, client_id, step, target_flow_id, target_step_id)
            row.target_flow_id = str(target_flow_id)
            row.target_step_id = str(target_step_id)

        for key in ("is_active", "copy_field_values", "copy_assignment"):
            if changes.get(key) is not None:
                setattr(row, key, bool(changes[key]))

        db.commit()
        db.refresh(row)
        return row
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def delete_automation(client_id: str, automation_id: str) -> None:
    db = SessionLocal()
    try:
        row = get_scoped(db, StepChildCardAutomation, automation_id, client_id, "Automation")
        db.delete(row)
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def list_automations(client_id: str, step_id: Optional[str] = None) -> List[StepChildCardAutomation]:
    db = SessionLocal()
    try:
        q = db.query(StepChildCardAutomation).filter(StepChildCardAutomation.client_id == str(client_id))
        if step_id is not None:
            q = q.filter(StepChildCardAutomation.step_id == str(step_id))
        return q.order_by(StepChildCardAutomation.created_at.asc(), StepChildCardAutomation.id.asc()).all()
    finally:
        db.close()


def run_step_automations(client_id: str, card_id: str, step_id: str, actor_id: Optional[str] = None) -> List[str]:
    """Create child cards for the active automations of ``step_id``.

    Runs after the move is committed. Each automation gets its own
    transaction; a failing one is rolled back and logged, never raised.
    Returns the ids of the child cards created.
    """
    db = SessionLocal()
    try:
        automation_ids = [
            r.id
            for r in db.query(StepChildCardAutomation)
            .filter(
                StepChildCardAutomation.client_id == str(client_id),
                StepChildCardAutomation.step_id == str(step_id),
                StepChildCardAutomation.is_active.is_(True),
            )
            .order_by(StepChildCardAutomation.created_at.asc(), StepChildCardAutomation.id.asc())
            .all()
        ]
    finally:
        db.close()

    created: List[str] = []
    for automation_id in automation_ids:
        db = SessionLocal()
        try:
            automation = get_scoped(db, StepChildCardAutomation, automation_id, client_id, "Automation")
            parent = get_scoped(db, Card, card_id, client_id, "Card")

            child = card_service.new_card(
                db,
                client_id,
                automation.target_flow_id,
                automation.target_step_id,
                parent.title,
                field_values=dict(parent.field_values or {}) if automation.copy_field_values else None,
                assigned_to=parent.assigned_to if automation.copy_assignment else None,
                assigned_team_id=parent.assigned_team_id if automation.copy_assignment else None,
                parent_card_id=parent.id,
                created_by=actor_id,
            )
            if not automation.copy_assignment:
                # the target step's default responsible does not apply to spawned cards
                child.assigned_to = None
                child.assigned_team_id = None

            db.commit()
            created.append(child.id)
            logger.info(
                "Child card created by automation",
                extra={"automation_id": automation_id, "card_id": card_id, "child_card_id": child.id},
            )
        except Exception:
            db.rollback()
            logger.exception(
                "Step automation failed",
                extra={"automation_id": automation_id, "card_id": card_id, "step_id": step_id},
            )
        finally:
            db.close()

    return created
