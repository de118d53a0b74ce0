from datetime import datetime
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String

from nexflow.database import Base


class StepChildCardAutomation(Base):
    __tablename__ = "step_child_card_automations"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)

    step_id = Column(String, ForeignKey("steps.id"), nullable=False, index=True)
    target_flow_id = Column(String, ForeignKey("flows.id"), nullable=False, index=True)
    target_step_id = Column(String, ForeignKey("steps.id"), nullable=False, index=True)

    is_active = Column(Boolean, nullable=False, default=True)
    copy_field_values = Column(Boolean, nullable=False, default=False)
    copy_assignment = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
