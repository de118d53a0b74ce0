from datetime import datetime
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint

from nexflow.database import Base

DEFAULT_TAG_COLOR = "#94a3b8"


class FlowTag(Base):
    __tablename__ = "flow_tags"

    __table_args__ = (
        UniqueConstraint("flow_id", "name", name="uq_flow_tags_flow_name"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)
    flow_id = Column(String, ForeignKey("flows.id"), nullable=False, index=True)

    name = Column(String, nullable=False)
    color = Column(String, nullable=False, default=DEFAULT_TAG_COLOR)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class CardTag(Base):
    __tablename__ = "card_tags"

    __table_args__ = (
        UniqueConstraint("card_id", "tag_id", name="uq_card_tags_card_tag"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)
    card_id = Column(String, ForeignKey("cards.id"), nullable=False, index=True)
    tag_id = Column(String, ForeignKey("flow_tags.id"), nullable=False, index=True)

    assigned_at = Column(DateTime, nullable=False, default=datetime.utcnow)
