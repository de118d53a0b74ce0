from datetime import datetime
from decimal import Decimal
from typing import List

from pydantic import BaseModel, ConfigDict


class CommissionRequest(BaseModel):
    payment_id: str
    card_id: str


class CommissionResult(BaseModel):
    skipped: bool
    message: str
    calculations: List[str]


class DistributionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    calculation_id: str
    user_id: str
    level_id: str
    distribution_percentage: Decimal
    distribution_amount: Decimal
    status: str
    created_at: datetime
