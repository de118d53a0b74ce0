from typing import Optional

from fastapi import APIRouter, Depends

from nexflow.core.errors import ForbiddenError
from nexflow.deps.auth import require_auth
from nexflow.schemas.card import CardResponse
from nexflow.schemas.contact import (
    AutoCreateRequest,
    AutoCreateResponse,
    ContactCardCreate,
    ContactCreate,
    ContactResponse,
)
from nexflow.schemas.timeline import ContactHistoryResponse
from nexflow.services import (
    card_service,
    contact_automation_service,
    contact_service,
    timeline_service,
    visibility_service,
)

router = APIRouter(prefix="/contacts", tags=["Contacts"])


@router.post("", response_model=ContactResponse)
def create_contact(payload: ContactCreate, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    return contact_service.create_contact(
        client_id, payload.name, email=payload.email, phone=payload.phone, created_by=user_id
    )


@router.get("/{contact_id}", response_model=ContactResponse)
def get_contact(contact_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    _user_id, client_id = _auth
    return contact_service.get_contact(client_id, contact_id)


@router.post("/{contact_id}/cards", response_model=CardResponse)
def create_card_from_contact(contact_id: str, payload: ContactCardCreate, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    if not visibility_service.can_user_view_step(client_id, payload.step_id, user_id):
        raise ForbiddenError("You cannot use this step")
    return card_service.create_card_from_contact(
        client_id,
        contact_id,
        payload.flow_id,
        payload.step_id,
        title=payload.title,
        created_by=user_id,
    )


@router.get("/{contact_id}/history", response_model=ContactHistoryResponse)
def get_contact_history(contact_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    user_id, client_id = _auth
    return timeline_service.get_contact_history(client_id, contact_id, user_id=user_id)


@router.post("/{contact_id}/auto-create", response_model=AutoCreateResponse)
def auto_create_cards(
    contact_id: str,
    payload: Optional[AutoCreateRequest] = None,
    _auth: tuple[str, str] = Depends(require_auth),
):
    user_id, client_id = _auth
    result = contact_automation_service.auto_create_cards(
        client_id,
        contact_id,
        automation_id=payload.automation_id if payload else None,
        actor_id=user_id,
    )
    result["cards_created"] = [CardResponse.model_validate(card) for card in result["cards_created"]]
    return result
