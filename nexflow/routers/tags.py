from typing import List

from fastapi import APIRouter, Depends, Response

from nexflow.core.errors import ForbiddenError
from nexflow.deps.auth import require_auth
from nexflow.schemas.tag import CardTagAdd, TagCreate, TagResponse, TagUpdate
from nexflow.services import flow_schema_service, tag_service, visibility_service

router = APIRouter(tags=["Tags"])


def _require_flow_view(client_id: str, flow_id: str, user_id: str) -> None:
    flow_schema_service.get_flow(client_id, flow_id)
    if not visibility_service.can_user_view_flow(flow_id, user_id, client_id):
        raise ForbiddenError("You cannot view this flow")


def _require_tag_view(client_id: str, tag_id: str, user_id: str) -> None:
    tag = tag_service.get_tag(client_id, tag_id)
    _require_flow_view(client_id, tag.flow_id, user_id)


def _require_card_view(client_id: str, card_id: str, user_id: str) -> None:
    if not visibility_service.can_user_view_card(client_id, card_id, user_id):
        raise ForbiddenError("You cannot view this card")


@router.get("/flows/{flow_id}/tags", response_model=List[TagResponse])
def list_tags(flow_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_flow_view(client_id, flow_id, user_id)
    return tag_service.list_tags(client_id, flow_id)


@router.post("/tags", response_model=TagResponse)
def create_tag(payload: TagCreate, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_flow_view(client_id, payload.flow_id, user_id)
    return tag_service.create_tag(client_id, payload.flow_id, payload.name, color=payload.color, actor_id=user_id)


@router.patch("/tags/{tag_id}", response_model=TagResponse)
def update_tag(tag_id: str, payload: TagUpdate, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_tag_view(client_id, tag_id, user_id)
    return tag_service.update_tag(client_id, tag_id, payload.model_dump(exclude_unset=True), actor_id=user_id)


@router.delete("/tags/{tag_id}", status_code=204)
def delete_tag(tag_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_tag_view(client_id, tag_id, user_id)
    tag_service.delete_tag(client_id, tag_id, actor_id=user_id)
    return Response(status_code=204)


@router.get("/cards/{card_id}/tags", response_model=List[TagResponse])
def list_card_tags(card_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_card_view(client_id, card_id, user_id)
    return tag_service.list_card_tags(client_id, card_id)


@router.post("/cards/{card_id}/tags", response_model=List[TagResponse])
def add_card_tag(card_id: str, payload: CardTagAdd, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_card_view(client_id, card_id, user_id)
    return tag_service.add_card_tag(client_id, card_id, payload.tag_id)


@router.delete("/cards/{card_id}/tags/{tag_id}", response_model=List[TagResponse])
def remove_card_tag(card_id: str, tag_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    _require_card_view(client_id, card_id, user_id)
    return tag_service.remove_card_tag(client_id, card_id, tag_id)
