from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class StepSummary(BaseModel):
    id: str
    title: Optional[str] = None
    color: Optional[str] = None
    position: Optional[int] = None
    step_type: Optional[str] = None


class FieldSummary(BaseModel):
    id: Optional[str] = None
    label: Optional[str] = None
    slug: Optional[str] = None
    field_type: str = "text"


class ActivitySummary(BaseModel):
    id: str
    title: Optional[str] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    completed: Optional[bool] = None


class UserSummary(BaseModel):
    id: str
    name: Optional[str] = None


class TimelineEvent(BaseModel):
    id: str
    card_id: str
    event_type: str
    created_at: datetime
    created_by: Optional[str] = None
    user: Optional[UserSummary] = None
    duration_seconds: Optional[int] = None
    previous_value: Optional[Any] = None
    new_value: Optional[Any] = None
    from_step: Optional[StepSummary] = None
    to_step: Optional[StepSummary] = None
    step: Optional[StepSummary] = None
    field: Optional[FieldSummary] = None
    activity: Optional[ActivitySummary] = None
    action_type: Optional[str] = None
    movement_direction: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class CardTimelineResponse(BaseModel):
    card_id: str
    requested_card_id: str
    current_step: Optional[StepSummary] = None
    time_in_current_stage_seconds: int
    events: List[TimelineEvent]


class StepValue(BaseModel):
    key: str
    field_id: Optional[str] = None
    label: Optional[str] = None
    field_type: str
    value: Any = None


class StepHistoryEntry(BaseModel):
    step_id: str
    step: StepSummary
    is_current: bool
    updated_at: Optional[datetime] = None
    fields: List[StepValue]


class ContactCardSummary(BaseModel):
    card_id: str
    title: str
    flow_id: str
    flow_name: Optional[str] = None
    current_step: Optional[StepSummary] = None
    time_in_current_stage_seconds: int
    status: str
    created_at: datetime
    events: List[TimelineEvent]
    total_events: int
    last_event_type: Optional[str] = None
    last_event_at: Optional[datetime] = None


class ContactHistoryResponse(BaseModel):
    contact_id: str
    contact_name: str
    cards: List[ContactCardSummary]
