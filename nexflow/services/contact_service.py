import logging
from typing import Optional

from nexflow.core.errors import ValidationError
from nexflow.database import SessionLocal
from nexflow.models.contact import Contact
from nexflow.services import contact_automation_service
from nexflow.services.tenant import get_scoped

logger = logging.getLogger(__name__)


def create_contact(
    client_id: str,
    name: str,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    created_by: Optional[str] = None,
    run_automations: bool = True,
) -> Contact:
    """Create a contact, then let the active contact automations open its cards."""
    if not name or not name.strip():
        raise ValidationError("Contact name is required")

    db = SessionLocal()
    try:
        row = Contact(client_id=str(client_id), name=name.strip(), email=email, phone=phone)
        db.add(row)
        db.commit()
        db.refresh(row)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    if run_automations:
        result = contact_automation_service.auto_create_cards(client_id, row.id, actor_id=created_by)
        if result["cards_count"] or result["errors"]:
            logger.info(
                "Contact automations ran",
                extra={"contact_id": row.id, "cards_count": result["cards_count"], "errors": len(result["errors"])},
            )
    return row


def get_contact(client_id: str, contact_id: str) -> Contact:
    db = SessionLocal()
    try:
        return get_scoped(db, Contact, contact_id, client_id, "Contact")
    finally:
        db.close()
