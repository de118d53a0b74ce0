from datetime import datetime
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint

from nexflow.database import Base


class Flow(Base):
    __tablename__ = "flows"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)

    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    visibility_type = Column(String, nullable=False, default="company")  # company|team|user_exclusion
    is_active = Column(Boolean, nullable=False, default=True)

    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class Step(Base):
    __tablename__ = "steps"

    __table_args__ = (
        UniqueConstraint("flow_id", "position", name="uq_steps_flow_position"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)
    flow_id = Column(String, ForeignKey("flows.id"), nullable=False, index=True)

    title = Column(String, nullable=False)
    color = Column(String, nullable=False, default="#2563eb")
    position = Column(Integer, nullable=False)
    step_type = Column(String, nullable=False, default="standard")  # standard|finisher|fail|freezing

    # at most one of the two is set
    responsible_user_id = Column(String, nullable=True)
    responsible_team_id = Column(String, nullable=True)

    visibility_type = Column(String, nullable=False, default="company")

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class StepField(Base):
    __tablename__ = "step_fields"

    __table_args__ = (
        UniqueConstraint("step_id", "slug", name="uq_step_fields_step_slug"),
        UniqueConstraint("step_id", "position", name="uq_step_fields_step_position"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)
    step_id = Column(String, ForeignKey("steps.id"), nullable=False, index=True)

    label = Column(String, nullable=False)
    slug = Column(String, nullable=True)
    field_type = Column(String, nullable=False)  # text|number|date|checklist|file|user_select
    is_required = Column(Boolean, nullable=False, default=False)
    position = Column(Integer, nullable=False)
    configuration = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
