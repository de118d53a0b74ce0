from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class VisibilityUpdate(BaseModel):
    visibility_type: str
    team_ids: List[str] = Field(default_factory=list)
    excluded_user_ids: List[str] = Field(default_factory=list)


class VisibilityResponse(BaseModel):
    flow_id: Optional[str] = None
    step_id: Optional[str] = None
    visibility_type: str
    team_ids: List[str]
    excluded_user_ids: List[str]
    filtered_excluded_count: int = 0


class FlowAccessUpdate(BaseModel):
    user_id: str
    role: str


class FlowAccessResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    flow_id: str
    user_id: str
    role: str


class StepUserVisibilityUpdate(BaseModel):
    user_id: str
    can_view: bool = True
    can_edit_fields: bool = True


class StepUserVisibilityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    step_id: str
    user_id: str
    can_view: bool
    can_edit_fields: bool


class CanViewResponse(BaseModel):
    flow_id: str
    user_id: str
    can_view: bool
    can_edit: bool
