from typing import List

from fastapi import APIRouter, Depends, Response

from nexflow.core.errors import ForbiddenError
from nexflow.deps.auth import require_auth
from nexflow.schemas.contact import (
    ContactAutomationCreate,
    ContactAutomationResponse,
    ContactAutomationUpdate,
)
from nexflow.services import contact_automation_service, visibility_service

router = APIRouter(prefix="/contact-automations", tags=["Contact automations"])


def _require_flow_edit(client_id: str, flow_id: str, user_id: str) -> None:
    if not visibility_service.can_user_edit_flow(client_id, flow_id, user_id):
        raise ForbiddenError("You cannot edit automations of this flow")


@router.post("", response_model=ContactAutomationResponse)
def create_contact_automation(payload: ContactAutomationCreate, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_flow_edit(client_id, payload.target_flow_id, user_id)
    return contact_automation_service.create_contact_automation(
        client_id,
        payload.target_flow_id,
        payload.target_step_id,
        name=payload.name,
        is_active=payload.is_active,
        trigger_conditions=payload.trigger_conditions,
    )


@router.get("", response_model=List[ContactAutomationResponse])
def list_contact_automations(_auth: tuple[str, str] = Depends(require_auth)):
    _user_id, client_id = _auth
    return contact_automation_service.list_contact_automations(client_id)


@router.patch("/{automation_id}", response_model=ContactAutomationResponse)
def update_contact_automation(
    automation_id: str,
    payload: ContactAutomationUpdate,
    _auth: tuple[str, str] = Depends(require_auth),
):
    user_id, client_id = _auth
    row = contact_automation_service.get_contact_automation(client_id, automation_id)
    _require_flow_edit(client_id, row.target_flow_id, user_id)
    if payload.target_flow_id:
        _require_flow_edit(client_id, payload.target_flow_id, user_id)
    return contact_automation_service.update_contact_automation(
        client_id, automation_id, payload.model_dump(exclude_unset=True)
    )


@router.delete("/{automation_id}", status_code=204)
def delete_contact_automation(automation_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    row = contact_automation_service.get_contact_automation(client_id, automation_id)
    _require_flow_edit(client_id, row.target_flow_id, user_id)
    contact_automation_service.delete_contact_automation(client_id, automation_id)
    return Response(status_code=204)
