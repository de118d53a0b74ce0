from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CardCreate(BaseModel):
    flow_id: str
    step_id: str
    title: str
    field_values: Dict[str, Any] = Field(default_factory=dict)
    assigned_to: Optional[str] = None
    assigned_team_id: Optional[str] = None
    contact_id: Optional[str] = None
    parent_card_id: Optional[str] = None


class CardUpdate(BaseModel):
    """Partial update; only the keys sent by the client are applied."""

    title: Optional[str] = None
    field_values: Optional[Dict[str, Any]] = None
    checklist_progress: Optional[Dict[str, Dict[str, bool]]] = None
    assigned_to: Optional[str] = None
    assigned_team_id: Optional[str] = None
    step_id: Optional[str] = None
    position: Optional[int] = None
    movement_history: Optional[List[Dict[str, Any]]] = None
    parent_card_id: Optional[str] = None
    status: Optional[str] = None


class CardMove(BaseModel):
    step_id: str
    assigned_to: Optional[str] = None
    assigned_team_id: Optional[str] = None
    position: Optional[int] = None


class FieldValuesPatch(BaseModel):
    values: Dict[str, Any]


class ChecklistPatch(BaseModel):
    field_id: str
    progress: Dict[str, bool]


class CardResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str
    flow_id: str
    step_id: str
    title: str
    field_values: Dict[str, Any]
    checklist_progress: Dict[str, Dict[str, bool]]
    assigned_to: Optional[str] = None
    assigned_team_id: Optional[str] = None
    assignee_type: str
    position: int
    movement_history: List[Dict[str, Any]]
    parent_card_id: Optional[str] = None
    contact_id: Optional[str] = None
    status: str
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ActivityCreate(BaseModel):
    title: str
    start_at: datetime
    end_at: datetime
    assignee_id: Optional[str] = None


class ActivityUpdate(BaseModel):
    title: Optional[str] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    assignee_id: Optional[str] = None


class ActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    card_id: str
    title: str
    start_at: datetime
    end_at: datetime
    assignee_id: Optional[str] = None
    completed: bool
    completed_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: datetime
