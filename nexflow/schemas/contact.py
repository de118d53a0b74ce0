from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from nexflow.schemas.card import CardResponse


class ContactCreate(BaseModel):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None


class ContactResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    created_at: datetime


class ContactCardCreate(BaseModel):
    flow_id: str
    step_id: str
    title: Optional[str] = None


class ContactAutomationCreate(BaseModel):
    target_flow_id: str
    target_step_id: str
    name: Optional[str] = None
    is_active: bool = True
    trigger_conditions: Optional[Dict[str, Any]] = None


class ContactAutomationUpdate(BaseModel):
    name: Optional[str] = None
    target_flow_id: Optional[str] = None
    target_step_id: Optional[str] = None
    is_active: Optional[bool] = None
    trigger_conditions: Optional[Dict[str, Any]] = None


class ContactAutomationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str
    name: Optional[str] = None
    target_flow_id: str
    target_step_id: str
    is_active: bool
    trigger_conditions: Dict[str, Any]
    created_at: datetime
    updated_at: datetime


class AutoCreateRequest(BaseModel):
    automation_id: Optional[str] = None


class AutoCreateError(BaseModel):
    automation_id: str
    error: str


class AutoCreateResponse(BaseModel):
    message: str
    cards_created: List[CardResponse]
    cards_count: int
    errors: List[AutoCreateError]
