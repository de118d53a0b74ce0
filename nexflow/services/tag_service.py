"""Flow tags and their assignment to cards.

Anyone in the tenant may read a flow's tags; creating, renaming, recoloring
and deleting them is reserved to administrators and team leaders.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from nexflow.core.authorization import is_elevated
from nexflow.core.errors import (
    DuplicateTagError,
    ForbiddenError,
    InvalidTagColorError,
    TagFlowMismatchError,
    TagInUseError,
    ValidationError,
)
from nexflow.database import SessionLocal
from nexflow.models.card import Card
from nexflow.models.flow import Flow
from nexflow.models.tag import DEFAULT_TAG_COLOR, CardTag, FlowTag
from nexflow.services.tenant import fetch_by_ids, get_scoped

logger = logging.getLogger(__name__)

_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")


def _require_elevated(db: Session, client_id: str, actor_id: Optional[str]) -> None:
    if not is_elevated(db, client_id, actor_id):
        raise ForbiddenError("Only administrators and team leaders can manage tags")


def _clean_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Tag name is required")
    return name.strip()


def _clean_color(color: Any) -> str:
    if not isinstance(color, str) or not _COLOR_RE.match(color):
        raise InvalidTagColorError("Tag color must be a hex value like #1a2b3c")
    return color


def _name_taken(db: Session, flow_id: str, name: str, exclude_tag_id: Optional[str] = None) -> bool:
    q = db.query(FlowTag.id).filter(FlowTag.flow_id == flow_id, FlowTag.name == name)
    if exclude_tag_id is not None:
        q = q.filter(FlowTag.id != exclude_tag_id)
    return q.first() is not None


def list_tags(client_id: str, flow_id: str) -> List[FlowTag]:
    db = SessionLocal()
    try:
        flow = get_scoped(db, Flow, flow_id, client_id, "Flow")
        return (
            db.query(FlowTag)
            .filter(FlowTag.client_id == str(client_id), FlowTag.flow_id == flow.id)
            .order_by(FlowTag.created_at.asc(), FlowTag.id.asc())
            .all()
        )
    finally:
        db.close()


def get_tag(client_id: str, tag_id: str) -> FlowTag:
    db = SessionLocal()
    try:
        return get_scoped(db, FlowTag, tag_id, client_id, "Tag")
    finally:
        db.close()


def create_tag(
    client_id: str,
    flow_id: str,
    name: str,
    color: Optional[str] = None,
    actor_id: Optional[str] = None,
) -> FlowTag:
    db = SessionLocal()
    try:
        _require_elevated(db, client_id, actor_id)
        flow = get_scoped(db, Flow, flow_id, client_id, "Flow")
        name = _clean_name(name)
        color = _clean_color(color) if color is not None else DEFAULT_TAG_COLOR

        if _name_taken(db, flow.id, name):
            raise DuplicateTagError(f"Tag '{name}' already exists in this flow")

        row = FlowTag(client_id=str(client_id), flow_id=flow.id, name=name, color=color)
        db.add(row)
        db.commit()
        db.refresh(row)
        logger.info("Tag created", extra={"client_id": client_id, "flow_id": flow.id, "tag_id": row.id})
        return row
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def update_tag(client_id: str, tag_id: str, changes: Dict[str, Any], actor_id: Optional[str] = None) -> FlowTag:
    db = SessionLocal()
    try:
        _require_elevated(db, client_id, actor_id)
        row = get_scoped(db, FlowTag, tag_id, client_id, "Tag")

        name = changes.get("name")
        color = changes.get("color")
        if name is None and color is None:
            raise ValidationError("Nothing to update")

        if name is not None:
            name = _clean_name(name)
            if _name_taken(db, row.flow_id, name, exclude_tag_id=row.id):
                raise DuplicateTagError(f"Tag '{name}' already exists in this flow")
            row.name = name
        if color is not None:
            row.color = _clean_color(color)

        db.commit()
        db.refresh(row)
        return row
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def delete_tag(client_id: str, tag_id: str, actor_id: Optional[str] = None) -> None:
    db = SessionLocal()
    try:
        _require_elevated(db, client_id, actor_id)
        row = get_scoped(db, FlowTag, tag_id, client_id, "Tag")

        if db.query(CardTag.id).filter(CardTag.tag_id == row.id).first() is not None:
            raise TagInUseError("Tag is still assigned to cards")

        db.delete(row)
        db.commit()
        logger.info("Tag deleted", extra={"client_id": client_id, "tag_id": tag_id})
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# --- card tags -------------------------------------------------------------


def list_card_tags(client_id: str, card_id: str) -> List[FlowTag]:
    db = SessionLocal()
    try:
        card = get_scoped(db, Card, card_id, client_id, "Card")
        links = (
            db.query(CardTag)
            .filter(CardTag.client_id == str(client_id), CardTag.card_id == card.id)
            .order_by(CardTag.assigned_at.asc(), CardTag.id.asc())
            .all()
        )
        tags = {t.id: t for t in fetch_by_ids(db, FlowTag, [link.tag_id for link in links], client_id=client_id)}
        return [tags[link.tag_id] for link in links if link.tag_id in tags]
    finally:
        db.close()


def add_card_tag(client_id: str, card_id: str, tag_id: str) -> List[FlowTag]:
    db = SessionLocal()
    try:
        card = get_scoped(db, Card, card_id, client_id, "Card")
        tag = get_scoped(db, FlowTag, tag_id, client_id, "Tag")
        if tag.flow_id != card.flow_id:
            raise TagFlowMismatchError("Tag does not belong to the card's flow")

        exists = db.query(CardTag.id).filter(CardTag.card_id == card.id, CardTag.tag_id == tag.id).first()
        if exists is not None:
            raise DuplicateTagError("Tag is already assigned to this card")

        db.add(CardTag(client_id=str(client_id), card_id=card.id, tag_id=tag.id))
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
    return list_card_tags(client_id, card_id)


def remove_card_tag(client_id: str, card_id: str, tag_id: str) -> List[FlowTag]:
    """Removing a tag that is not on the card is a no-op."""
    db = SessionLocal()
    try:
        card = get_scoped(db, Card, card_id, client_id, "Card")
        db.query(CardTag).filter(
            CardTag.client_id == str(client_id),
            CardTag.card_id == card.id,
            CardTag.tag_id == str(tag_id),
        ).delete(synchronize_session=False)
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
    return list_card_tags(client_id, card_id)
