from uuid import uuid4

from sqlalchemy import Boolean, Column, ForeignKey, String, UniqueConstraint

from nexflow.database import Base


class FlowTeamAccess(Base):
    __tablename__ = "flow_team_access"

    __table_args__ = (
        UniqueConstraint("flow_id", "team_id", name="uq_flow_team_access"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)
    flow_id = Column(String, ForeignKey("flows.id"), nullable=False, index=True)
    team_id = Column(String, ForeignKey("teams.id"), nullable=False, index=True)


class FlowUserExclusion(Base):
    __tablename__ = "flow_user_exclusions"

    __table_args__ = (
        UniqueConstraint("flow_id", "user_id", name="uq_flow_user_exclusions"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)
    flow_id = Column(String, ForeignKey("flows.id"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)


class StepTeamAccess(Base):
    __tablename__ = "step_team_access"

    __table_args__ = (
        UniqueConstraint("step_id", "team_id", name="uq_step_team_access"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)
    step_id = Column(String, ForeignKey("steps.id"), nullable=False, index=True)
    team_id = Column(String, ForeignKey("teams.id"), nullable=False, index=True)


class StepUserExclusion(Base):
    __tablename__ = "step_user_exclusions"

    __table_args__ = (
        UniqueConstraint("step_id", "user_id", name="uq_step_user_exclusions"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)
    step_id = Column(String, ForeignKey("steps.id"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)


class FlowAccess(Base):
    __tablename__ = "flow_access"

    __table_args__ = (
        UniqueConstraint("flow_id", "user_id", name="uq_flow_access_flow_user"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)
    flow_id = Column(String, ForeignKey("flows.id"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    role = Column(String, nullable=False, default="viewer")  # viewer|editor|admin


class StepVisibility(Base):
    __tablename__ = "step_visibility"

    __table_args__ = (
        UniqueConstraint("step_id", "user_id", name="uq_step_visibility_step_user"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)
    step_id = Column(String, ForeignKey("steps.id"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    can_view = Column(Boolean, nullable=False, default=True)
    can_edit_fields = Column(Boolean, nullable=False, default=True)
