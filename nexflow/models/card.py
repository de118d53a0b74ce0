from datetime import datetime
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.ext.mutable import MutableDict, MutableList

from nexflow.database import Base


class Card(Base):
    __tablename__ = "cards"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)
    flow_id = Column(String, ForeignKey("flows.id"), nullable=False, index=True)
    step_id = Column(String, ForeignKey("steps.id"), nullable=False, index=True)

    title = Column(String, nullable=False)
    field_values = Column(MutableDict.as_mutable(JSON), nullable=False, default=dict)
    checklist_progress = Column(MutableDict.as_mutable(JSON), nullable=False, default=dict)

    assigned_to = Column(String, nullable=True, index=True)
    assigned_team_id = Column(String, nullable=True, index=True)

    position = Column(Integer, nullable=False, default=0)
    movement_history = Column(MutableList.as_mutable(JSON), nullable=False, default=list)

    parent_card_id = Column(String, ForeignKey("cards.id"), nullable=True, index=True)
    contact_id = Column(String, ForeignKey("contacts.id"), nullable=True, index=True)

    status = Column(String, nullable=False, default="inprogress", index=True)  # inprogress|completed|canceled

    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def assignee_type(self) -> str:
        if self.assigned_to:
            return "user"
        if self.assigned_team_id:
            return "team"
        return "unassigned"

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "canceled")


class CardStepValue(Base):
    __tablename__ = "card_step_values"

    __table_args__ = (
        UniqueConstraint("card_id", "step_id", name="uq_card_step_values_card_step"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)
    card_id = Column(String, ForeignKey("cards.id"), nullable=False, index=True)
    step_id = Column(String, nullable=False, index=True)
    field_values = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class CardHistory(Base):
    """Append-only card event record; the timeline is a projection of these rows."""

    __tablename__ = "card_history"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)
    card_id = Column(String, ForeignKey("cards.id"), nullable=False, index=True)

    event_type = Column(String, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    created_by = Column(String, nullable=True)

    duration_seconds = Column(Integer, nullable=True)
    previous_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)

    from_step_id = Column(String, nullable=True)
    to_step_id = Column(String, nullable=True)
    step_id = Column(String, nullable=True)
    field_id = Column(String, nullable=True)
    activity_id = Column(String, nullable=True)

    action_type = Column(String, nullable=True)
    movement_direction = Column(String, nullable=True)  # forward|backward|same
    details = Column(JSON, nullable=True)


class CardActivity(Base):
    __tablename__ = "card_activities"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)
    card_id = Column(String, ForeignKey("cards.id"), nullable=False, index=True)

    title = Column(String, nullable=False)
    start_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=False)
    assignee_id = Column(String, nullable=True)

    completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime, nullable=True)

    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
