from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response

from nexflow.core.errors import ForbiddenError
from nexflow.deps.auth import require_auth
from nexflow.schemas.automation import AutomationCreate, AutomationResponse, AutomationUpdate
from nexflow.services import automation_service, visibility_service

router = APIRouter(prefix="/automations", tags=["Automations"])


def _require_automation_edit(client_id: str, automation_id: str, user_id: str) -> None:
    if not visibility_service.can_user_edit_automation(client_id, automation_id, user_id):
        raise ForbiddenError("You cannot edit automations of this flow")


@router.post("", response_model=AutomationResponse)
def create_automation(payload: AutomationCreate, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    if not visibility_service.can_user_edit_step(client_id, payload.step_id, user_id):
        raise ForbiddenError("You cannot edit automations of this flow")
    return automation_service.create_automation(
        client_id,
        payload.step_id,
        payload.target_flow_id,
        payload.target_step_id,
        is_active=payload.is_active,
        copy_field_values=payload.copy_field_values,
        copy_assignment=payload.copy_assignment,
    )


@router.get("", response_model=List[AutomationResponse])
def list_automations(
    step_id: Optional[str] = Query(default=None),
    _auth: tuple[str, str] = Depends(require_auth),
):
    _user_id, client_id = _auth
    return automation_service.list_automations(client_id, step_id=step_id)


@router.patch("/{automation_id}", response_model=AutomationResponse)
def update_automation(automation_id: str, payload: AutomationUpdate, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_automation_edit(client_id, automation_id, user_id)
    return automation_service.update_automation(client_id, automation_id, payload.model_dump(exclude_unset=True))


@router.delete("/{automation_id}", status_code=204)
def delete_automation(automation_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_automation_edit(client_id, automation_id, user_id)
    automation_service.delete_automation(client_id, automation_id)
    return Response(status_code=204)
