from datetime import datetime
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.ext.mutable import MutableDict

from nexflow.database import Base


class Contact(Base):
    __tablename__ = "contacts"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class ContactAutomation(Base):
    """Rule that opens a card in ``target_step_id`` for a contact."""

    __tablename__ = "contact_automations"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=True)

    target_flow_id = Column(String, ForeignKey("flows.id"), nullable=False, index=True)
    target_step_id = Column(String, ForeignKey("steps.id"), nullable=False, index=True)

    is_active = Column(Boolean, nullable=False, default=True)
    trigger_conditions = Column(MutableDict.as_mutable(JSON), nullable=False, default=dict)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
