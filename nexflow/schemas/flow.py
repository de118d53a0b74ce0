from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class StepSeed(BaseModel):
    title: str
    color: Optional[str] = None
    step_type: Optional[str] = None


class FlowCreate(BaseModel):
    name: str
    description: Optional[str] = None
    visibility_type: str = "company"
    steps: Optional[List[StepSeed]] = None


class FlowUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class FlowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str
    name: str
    description: Optional[str] = None
    visibility_type: str
    is_active: bool
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class StepCreate(BaseModel):
    title: str
    color: Optional[str] = None
    step_type: str = "standard"


class StepUpdate(BaseModel):
    title: Optional[str] = None
    color: Optional[str] = None
    step_type: Optional[str] = None
    responsible_user_id: Optional[str] = None
    responsible_team_id: Optional[str] = None


class StepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str
    flow_id: str
    title: str
    color: str
    position: int
    step_type: str
    responsible_user_id: Optional[str] = None
    responsible_team_id: Optional[str] = None
    visibility_type: str
    created_at: datetime


class OrderRequest(BaseModel):
    ordered_ids: List[str] = Field(min_length=1)


class FieldCreate(BaseModel):
    label: str
    field_type: str
    is_required: bool = False
    configuration: Dict[str, Any] = Field(default_factory=dict)
    slug: Optional[str] = None


class FieldUpdate(BaseModel):
    label: Optional[str] = None
    slug: Optional[str] = None
    field_type: Optional[str] = None
    is_required: Optional[bool] = None
    configuration: Optional[Dict[str, Any]] = None


class FieldResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str
    step_id: str
    label: str
    slug: Optional[str] = None
    field_type: str
    is_required: bool
    position: int
    configuration: Dict[str, Any]
    created_at: datetime
