from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from nexflow.core.errors import ForbiddenError
from nexflow.deps.auth import require_auth
from nexflow.schemas.card import (
    ActivityCreate,
    ActivityResponse,
    ActivityUpdate,
    CardCreate,
    CardMove,
    CardResponse,
    CardUpdate,
    ChecklistPatch,
    FieldValuesPatch,
)
from nexflow.schemas.timeline import CardTimelineResponse, StepHistoryEntry
from nexflow.services import card_service, timeline_service, visibility_service

router = APIRouter(tags=["Cards"])


def _require_card_view(client_id: str, card_id: str, user_id: str) -> None:
    if not visibility_service.can_user_view_card(client_id, card_id, user_id):
        raise ForbiddenError("You cannot view this card")


def _require_step_view(client_id: str, step_id: str, user_id: str) -> None:
    if not visibility_service.can_user_view_step(client_id, step_id, user_id):
        raise ForbiddenError("You cannot use this step")


def _require_activity_view(client_id: str, activity_id: str, user_id: str) -> None:
    if not visibility_service.can_user_view_activity(client_id, activity_id, user_id):
        raise ForbiddenError("You cannot view this activity")


def _require_field_edit(client_id: str, card_id: str, user_id: str) -> None:
    _require_card_view(client_id, card_id, user_id)
    card = card_service.get_card(client_id, card_id)
    if not visibility_service.can_user_edit_step_fields(client_id, card.step_id, user_id):
        raise ForbiddenError("You cannot edit fields in this step")


@router.post("/cards", response_model=CardResponse)
def create_card(payload: CardCreate, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_step_view(client_id, payload.step_id, user_id)
    return card_service.create_card(
        client_id,
        payload.flow_id,
        payload.step_id,
        payload.title,
        created_by=user_id,
        field_values=payload.field_values,
        assigned_to=payload.assigned_to,
        assigned_team_id=payload.assigned_team_id,
        contact_id=payload.contact_id,
        parent_card_id=payload.parent_card_id,
    )


@router.get("/cards", response_model=List[CardResponse])
def list_cards(
    flow_id: str = Query(...),
    step_id: Optional[str] = Query(default=None),
    _auth: tuple[str, str] = Depends(require_auth),
):
    user_id, client_id = _auth
    return card_service.list_cards(client_id, flow_id, user_id, step_id=step_id)


@router.get("/cards/{card_id}", response_model=CardResponse)
def get_card(card_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_card_view(client_id, card_id, user_id)
    return card_service.get_card(client_id, card_id)


@router.patch("/cards/{card_id}", response_model=CardResponse)
def update_card(card_id: str, payload: CardUpdate, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_card_view(client_id, card_id, user_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("step_id"):
        _require_step_view(client_id, changes["step_id"], user_id)
    if "field_values" in changes or "checklist_progress" in changes:
        _require_field_edit(client_id, card_id, user_id)
    return card_service.update_card(client_id, card_id, changes, actor_id=user_id)


@router.post("/cards/{card_id}/move", response_model=CardResponse)
def move_card(card_id: str, payload: CardMove, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_card_view(client_id, card_id, user_id)
    _require_step_view(client_id, payload.step_id, user_id)
    return card_service.move_card(
        client_id,
        card_id,
        payload.step_id,
        actor_id=user_id,
        assigned_to=payload.assigned_to,
        assigned_team_id=payload.assigned_team_id,
        position=payload.position,
    )


@router.post("/cards/{card_id}/complete", response_model=CardResponse)
def complete_card(card_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_card_view(client_id, card_id, user_id)
    return card_service.complete_card(client_id, card_id, actor_id=user_id)


@router.post("/cards/{card_id}/cancel", response_model=CardResponse)
def cancel_card(card_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_card_view(client_id, card_id, user_id)
    return card_service.cancel_card(client_id, card_id, actor_id=user_id)


@router.put("/cards/{card_id}/field-values", response_model=CardResponse)
def update_field_values(card_id: str, payload: FieldValuesPatch, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_field_edit(client_id, card_id, user_id)
    return card_service.update_field_values(client_id, card_id, payload.values, actor_id=user_id)


@router.put("/cards/{card_id}/checklist", response_model=CardResponse)
def update_checklist(card_id: str, payload: ChecklistPatch, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_field_edit(client_id, card_id, user_id)
    return card_service.update_checklist(client_id, card_id, payload.field_id, payload.progress, actor_id=user_id)


@router.get("/cards/{card_id}/timeline", response_model=CardTimelineResponse)
def get_card_timeline(card_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_card_view(client_id, card_id, user_id)
    return timeline_service.get_card_timeline(client_id, card_id)


@router.get("/cards/{card_id}/step-history", response_model=List[StepHistoryEntry])
def get_card_step_history(card_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_card_view(client_id, card_id, user_id)
    return timeline_service.get_card_step_history(client_id, card_id)


@router.get("/cards/{card_id}/activities", response_model=List[ActivityResponse])
def list_activities(card_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_card_view(client_id, card_id, user_id)
    return card_service.list_activities(client_id, card_id)


@router.post("/cards/{card_id}/activities", response_model=ActivityResponse)
def create_activity(card_id: str, payload: ActivityCreate, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_card_view(client_id, card_id, user_id)
    return card_service.create_activity(
        client_id,
        card_id,
        payload.title,
        payload.start_at,
        payload.end_at,
        assignee_id=payload.assignee_id,
        actor_id=user_id,
    )


@router.patch("/activities/{activity_id}", response_model=ActivityResponse)
def update_activity(activity_id: str, payload: ActivityUpdate, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_activity_view(client_id, activity_id, user_id)
    return card_service.update_activity(
        client_id, activity_id, payload.model_dump(exclude_unset=True), actor_id=user_id
    )


@router.post("/activities/{activity_id}/complete", response_model=ActivityResponse)
def complete_activity(activity_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_activity_view(client_id, activity_id, user_id)
    return card_service.complete_activity(client_id, activity_id, actor_id=user_id)
