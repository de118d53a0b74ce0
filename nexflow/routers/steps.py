from typing import List

from fastapi import APIRouter, Depends, Response

from nexflow.core.authorization import ClientRole, require_role
from nexflow.core.errors import ForbiddenError
from nexflow.deps.auth import require_auth
from nexflow.schemas.flow import FieldCreate, FieldResponse, FieldUpdate, OrderRequest, StepResponse, StepUpdate
from nexflow.schemas.visibility import (
    StepUserVisibilityResponse,
    StepUserVisibilityUpdate,
    VisibilityResponse,
    VisibilityUpdate,
)
from nexflow.services import flow_schema_service, visibility_service

router = APIRouter(tags=["Steps"])


def _require_step_edit(client_id: str, step_id: str, user_id: str) -> None:
    if not visibility_service.can_user_edit_step(client_id, step_id, user_id):
        raise ForbiddenError("You cannot edit this flow")


def _require_field_schema_edit(client_id: str, field_id: str, user_id: str) -> None:
    if not visibility_service.can_user_edit_field(client_id, field_id, user_id):
        raise ForbiddenError("You cannot edit this flow")


@router.patch("/steps/{step_id}", response_model=StepResponse)
def update_step(step_id: str, payload: StepUpdate, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_step_edit(client_id, step_id, user_id)
    return flow_schema_service.update_step(client_id, step_id, payload.model_dump(exclude_unset=True))


@router.delete("/steps/{step_id}", status_code=204)
def delete_step(step_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_step_edit(client_id, step_id, user_id)
    flow_schema_service.delete_step(client_id, step_id)
    return Response(status_code=204)


@router.get("/steps/{step_id}/fields", response_model=List[FieldResponse])
def list_fields(step_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    if not visibility_service.can_user_view_step(client_id, step_id, user_id):
        raise ForbiddenError("You cannot view this step")
    return flow_schema_service.list_fields(client_id, step_id)


@router.post("/steps/{step_id}/fields", response_model=FieldResponse)
def create_field(step_id: str, payload: FieldCreate, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_step_edit(client_id, step_id, user_id)
    return flow_schema_service.create_field(
        client_id,
        step_id,
        payload.label,
        payload.field_type,
        is_required=payload.is_required,
        configuration=payload.configuration,
        slug=payload.slug,
    )


@router.put("/steps/{step_id}/fields/order", response_model=List[FieldResponse])
def reorder_fields(step_id: str, payload: OrderRequest, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_step_edit(client_id, step_id, user_id)
    return flow_schema_service.reorder_fields(client_id, step_id, payload.ordered_ids)


@router.put("/steps/{step_id}/visibility", response_model=VisibilityResponse)
def update_step_visibility(
    step_id: str,
    payload: VisibilityUpdate,
    _auth: tuple[str, str] = Depends(require_auth),
    _role: ClientRole = Depends(require_role(ClientRole.ADMINISTRATOR)),
):
    _user_id, client_id = _auth
    return visibility_service.update_step_visibility(
        client_id,
        step_id,
        payload.visibility_type,
        team_ids=payload.team_ids,
        excluded_user_ids=payload.excluded_user_ids,
    )


@router.put("/steps/{step_id}/user-visibility", response_model=StepUserVisibilityResponse)
def set_step_user_visibility(
    step_id: str,
    payload: StepUserVisibilityUpdate,
    _auth: tuple[str, str] = Depends(require_auth),
    _role: ClientRole = Depends(require_role(ClientRole.ADMINISTRATOR)),
):
    _user_id, client_id = _auth
    return visibility_service.set_step_visibility(
        client_id,
        step_id,
        payload.user_id,
        can_view=payload.can_view,
        can_edit_fields=payload.can_edit_fields,
    )


@router.patch("/fields/{field_id}", response_model=FieldResponse)
def update_field(field_id: str, payload: FieldUpdate, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_field_schema_edit(client_id, field_id, user_id)
    return flow_schema_service.update_field(client_id, field_id, payload.model_dump(exclude_unset=True))


@router.delete("/fields/{field_id}", status_code=204)
def delete_field(field_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_field_schema_edit(client_id, field_id, user_id)
    flow_schema_service.delete_field(client_id, field_id)
    return Response(status_code=204)
