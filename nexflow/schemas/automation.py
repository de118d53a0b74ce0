from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class AutomationCreate(BaseModel):
    step_id: str
    target_flow_id: str
    target_step_id: str
    is_active: bool = True
    copy_field_values: bool = False
    copy_assignment: bool = False


class AutomationUpdate(BaseModel):
    target_flow_id: Optional[str] = None
    target_step_id: Optional[str] = None
    is_active: Optional[bool] = None
    copy_field_values: Optional[bool] = None
    copy_assignment: Optional[bool] = None


class AutomationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str
    step_id: str
    target_flow_id: str
    target_step_id: str
    is_active: bool
    copy_field_values: bool
    copy_assignment: bool
    created_at: datetime
