from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response

from nexflow.core.authorization import ClientRole, require_role
from nexflow.core.errors import ForbiddenError
from nexflow.deps.auth import require_auth
from nexflow.schemas.flow import (
    FlowCreate,
    FlowResponse,
    FlowUpdate,
    OrderRequest,
    StepCreate,
    StepResponse,
)
from nexflow.schemas.visibility import (
    CanViewResponse,
    FlowAccessResponse,
    FlowAccessUpdate,
    VisibilityResponse,
    VisibilityUpdate,
)
from nexflow.services import flow_schema_service, visibility_service

router = APIRouter(prefix="/flows", tags=["Flows"])


def _require_flow_view(client_id: str, flow_id: str, user_id: str) -> None:
    # unknown or foreign flows raise before the visibility check
    flow_schema_service.get_flow(client_id, flow_id)
    if not visibility_service.can_user_view_flow(flow_id, user_id, client_id):
        raise ForbiddenError("You cannot view this flow")


def _require_flow_edit(client_id: str, flow_id: str, user_id: str) -> None:
    if not visibility_service.can_user_edit_flow(client_id, flow_id, user_id):
        raise ForbiddenError("You cannot edit this flow")


@router.post("", response_model=FlowResponse)
def create_flow(payload: FlowCreate, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    return flow_schema_service.create_flow(
        client_id,
        payload.name,
        description=payload.description,
        visibility_type=payload.visibility_type,
        steps=[s.model_dump() for s in payload.steps] if payload.steps else None,
        created_by=user_id,
    )


@router.get("", response_model=List[FlowResponse])
def list_flows(_auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    return flow_schema_service.list_flows(client_id, user_id)


@router.get("/{flow_id}", response_model=FlowResponse)
def get_flow(flow_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_flow_view(client_id, flow_id, user_id)
    return flow_schema_service.get_flow(client_id, flow_id)


@router.patch("/{flow_id}", response_model=FlowResponse)
def update_flow(flow_id: str, payload: FlowUpdate, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_flow_edit(client_id, flow_id, user_id)
    return flow_schema_service.update_flow(client_id, flow_id, payload.model_dump(exclude_unset=True))


@router.delete("/{flow_id}", status_code=204)
def delete_flow(flow_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_flow_edit(client_id, flow_id, user_id)
    flow_schema_service.delete_flow(client_id, flow_id)
    return Response(status_code=204)


@router.get("/{flow_id}/visibility", response_model=VisibilityResponse)
def get_flow_visibility(flow_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    _user_id, client_id = _auth
    return visibility_service.get_flow_visibility(client_id, flow_id)


@router.put("/{flow_id}/visibility", response_model=VisibilityResponse)
def update_flow_visibility(
    flow_id: str,
    payload: VisibilityUpdate,
    _auth: tuple[str, str] = Depends(require_auth),
    _role: ClientRole = Depends(require_role(ClientRole.ADMINISTRATOR)),
):
    _user_id, client_id = _auth
    return visibility_service.update_flow_visibility(
        client_id,
        flow_id,
        payload.visibility_type,
        team_ids=payload.team_ids,
        excluded_user_ids=payload.excluded_user_ids,
    )


@router.put("/{flow_id}/access", response_model=FlowAccessResponse)
def set_flow_access(
    flow_id: str,
    payload: FlowAccessUpdate,
    _auth: tuple[str, str] = Depends(require_auth),
    _role: ClientRole = Depends(require_role(ClientRole.ADMINISTRATOR)),
):
    _user_id, client_id = _auth
    return visibility_service.set_flow_access(client_id, flow_id, payload.user_id, payload.role)


@router.delete("/{flow_id}/access/{user_id}", status_code=204)
def remove_flow_access(
    flow_id: str,
    user_id: str,
    _auth: tuple[str, str] = Depends(require_auth),
    _role: ClientRole = Depends(require_role(ClientRole.ADMINISTRATOR)),
):
    _actor_id, client_id = _auth
    visibility_service.remove_flow_access(client_id, flow_id, user_id)
    return Response(status_code=204)


@router.get("/{flow_id}/can-view", response_model=CanViewResponse)
def can_view_flow(
    flow_id: str,
    user_id: Optional[str] = Query(default=None),
    _auth: tuple[str, str] = Depends(require_auth),
):
    actor_id, client_id = _auth
    target = user_id or actor_id
    # raises for unknown or foreign flows before answering
    flow_schema_service.get_flow(client_id, flow_id)
    return {
        "flow_id": flow_id,
        "user_id": target,
        "can_view": visibility_service.can_user_view_flow(flow_id, target, client_id),
        "can_edit": visibility_service.can_user_edit_flow(client_id, flow_id, target),
    }


@router.get("/{flow_id}/steps", response_model=List[StepResponse])
def list_steps(flow_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_flow_view(client_id, flow_id, user_id)
    return flow_schema_service.list_steps(client_id, flow_id)


@router.post("/{flow_id}/steps", response_model=StepResponse)
def create_step(flow_id: str, payload: StepCreate, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_flow_edit(client_id, flow_id, user_id)
    return flow_schema_service.create_step(
        client_id, flow_id, payload.title, color=payload.color, step_type=payload.step_type
    )


@router.put("/{flow_id}/steps/order", response_model=List[StepResponse])
def reorder_steps(flow_id: str, payload: OrderRequest, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_flow_edit(client_id, flow_id, user_id)
    return flow_schema_service.reorder_steps(client_id, flow_id, payload.ordered_ids)
