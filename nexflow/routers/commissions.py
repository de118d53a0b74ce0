from typing import List

from fastapi import APIRouter, Depends

from nexflow.deps.auth import require_auth
from nexflow.schemas.commission import CommissionRequest, CommissionResult, DistributionResponse
from nexflow.services import commission_service

router = APIRouter(prefix="/commissions", tags=["Commissions"])


@router.post("/calculate", response_model=CommissionResult)
def calculate_commission(payload: CommissionRequest, _auth: tuple[str, str] = Depends(require_auth)):
    _user_id, client_id = _auth
    return commission_service.calculate_commission(client_id, payload.payment_id, payload.card_id)


@router.get("/{calculation_id}/distributions", response_model=List[DistributionResponse])
def list_distributions(calculation_id: str, _auth: tuple[str, str] = Depends(require_auth)):
    _user_id, client_id = _auth
    return commission_service.list_distributions(client_id, calculation_id)
