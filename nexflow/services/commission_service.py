from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from nexflow.core.errors import NoTeamAssignedError, ValidationError
from nexflow.database import SessionLocal
from nexflow.models.card import Card
from nexflow.models.commission import (
    CardItem,
    CommissionCalculation,
    CommissionDistribution,
    Payment,
    TeamCommission,
)
from nexflow.models.flow import Step
from nexflow.models.organization import Team, TeamLevel, TeamMember, TeamMemberLevel
from nexflow.services.tenant import get_scoped

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def _to_cents(amount: Decimal) -> int:
    return int((amount / CENT).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _from_cents(cents: int) -> Decimal:
    return (Decimal(cents) * CENT).quantize(CENT)


def _skip(message: str, **context) -> Dict[str, Any]:
    logger.info("Commission skipped: %s", message, extra=context)
    return {"skipped": True, "message": message, "calculations": []}


def team_amount(rule: TeamCommission, payment_amount: Decimal) -> Decimal:
    value = Decimal(str(rule.commission_value))
    if rule.commission_type == "percentage":
        amount = Decimal(str(payment_amount)) * value / HUNDRED
    else:
        amount = value
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def find_rule(db: Session, client_id: str, team_id: str, item: CardItem) -> Optional[TeamCommission]:
    rules = (
        db.query(TeamCommission)
        .filter(
            TeamCommission.client_id == str(client_id),
            TeamCommission.team_id == str(team_id),
            TeamCommission.is_active.is_(True),
        )
        .order_by(TeamCommission.id.asc())
        .all()
    )
    if item.item_id:
        for rule in rules:
            if rule.item_id and rule.item_id == item.item_id:
                return rule
    if item.item_code:
        for rule in rules:
            if rule.item_code and rule.item_code == item.item_code:
                return rule
    return None


def allocate_cents(total_cents: int, shares: List[Tuple[str, Decimal]]) -> Dict[str, int]:
    """Split ``total_cents`` across keys proportionally to their shares.

    Largest remainder method: floor every share, then hand the leftover cents
    to the largest remainders (ties broken by key).
    """
    weight_total = sum((w for _, w in shares), Decimal(0))
    if total_cents <= 0 or weight_total <= 0:
        return {key: 0 for key, _ in shares}

    allocations: List[Tuple[str, int, Decimal]] = []  # (key, cents_floor, remainder)
    assigned = 0
    for key, weight in sorted(shares):
        exact = Decimal(total_cents) * weight / weight_total
        floor = int(exact)
        allocations.append((key, floor, exact - floor))
        assigned += floor

    leftover = total_cents - assigned
    if leftover < 0:
        raise ValueError("Allocation error: negative leftover")

    allocations.sort(key=lambda x: (-x[2], x[0]))
    return {key: floor + (1 if i < leftover else 0) for i, (key, floor, _r) in enumerate(allocations)}


def _active_levels(db: Session, client_id: str, team_id: str) -> Tuple[List[Tuple[TeamMember, TeamLevel]], List[str]]:
    members = (
        db.query(TeamMember)
        .filter(TeamMember.client_id == str(client_id), TeamMember.team_id == str(team_id))
        .order_by(TeamMember.id.asc())
        .all()
    )

    active = []
    missing = []
    for member in members:
        row = (
            db.query(TeamMemberLevel, TeamLevel)
            .join(TeamLevel, TeamLevel.id == TeamMemberLevel.team_level_id)
            .filter(
                TeamMemberLevel.team_member_id == member.id,
                TeamMemberLevel.effective_to.is_(None),
            )
            .order_by(TeamMemberLevel.effective_from.desc())
            .first()
        )
        if row is None:
            missing.append(member.user_id)
            continue
        active.append((member, row[1]))
    return active, missing


def _distribute(db: Session, calculation: CommissionCalculation, amount: Decimal) -> None:
    active, missing = _active_levels(db, calculation.client_id, calculation.team_id)
    if missing:
        logger.info(
            "Team members without an active level skipped",
            extra={"calculation_id": calculation.id, "user_ids": missing},
        )

    total_pct = sum((Decimal(str(level.commission_percentage)) for _, level in active), Decimal(0))
    if total_pct > HUNDRED:
        logger.warning(
            "Distributed commission exceeds 100%",
            extra={"calculation_id": calculation.id, "team_id": calculation.team_id, "total_percentage": str(total_pct)},
        )

    distributed_cents = _to_cents(amount * total_pct / HUNDRED)
    shares = [(member.id, Decimal(str(level.commission_percentage))) for member, level in active]
    cents_by_member = allocate_cents(distributed_cents, shares)

    for member, level in active:
        db.add(
            CommissionDistribution(
                client_id=calculation.client_id,
                calculation_id=calculation.id,
                user_id=member.user_id,
                level_id=level.id,
                distribution_percentage=Decimal(str(level.commission_percentage)),
                distribution_amount=_from_cents(cents_by_member.get(member.id, 0)),
                status="pending",
            )
        )

    calculation.total_distributed_percentage = total_pct
    calculation.total_distributed_amount = _from_cents(distributed_cents)


def calculate_commission(client_id: str, payment_id: str, card_id: str) -> Dict[str, Any]:
    """Compute and persist commission for a confirmed payment on a completed card.

    Not idempotent: every call inserts new calculation rows.
    """
    db = SessionLocal()
    try:
        payment = get_scoped(db, Payment, payment_id, client_id, "Payment")
        card = get_scoped(db, Card, card_id, client_id, "Card")

        if payment.card_id and payment.card_id != card.id:
            raise ValidationError("Payment is linked to a different card")

        context = {"client_id": client_id, "payment_id": payment.id, "card_id": card.id}

        if payment.payment_status != "confirmed":
            return _skip("Payment is not confirmed", **context)
        if card.status != "completed":
            return _skip("Card is not completed", **context)

        step = db.get(Step, card.step_id)
        if step is None or step.step_type != "finisher":
            return _skip("Card is not in a finisher step", **context)

        if not card.assigned_team_id:
            raise NoTeamAssignedError("Card has no team assigned")
        team = get_scoped(db, Team, card.assigned_team_id, client_id, "Team")

        items = (
            db.query(CardItem)
            .filter(CardItem.client_id == str(client_id), CardItem.card_id == card.id)
            .order_by(CardItem.id.asc())
            .all()
        )
        if not items:
            return _skip("Card has no items", **context)

        payment_amount = Decimal(str(payment.payment_amount))
        results = []
        for item in items:
            rule = find_rule(db, client_id, team.id, item)
            if rule is None:
                logger.info(
                    "No commission rule for item",
                    extra={**context, "card_item_id": item.id, "item_id": item.item_id, "item_code": item.item_code},
                )
                continue

            amount = team_amount(rule, payment_amount)
            calculation = CommissionCalculation(
                client_id=str(client_id),
                card_id=card.id,
                card_item_id=item.id,
                payment_id=payment.id,
                payment_amount=payment_amount,
                payment_date=payment.payment_date,
                team_id=team.id,
                item_code=item.item_code,
                team_commission_type=rule.commission_type,
                team_commission_value=Decimal(str(rule.commission_value)),
                team_commission_amount=amount,
                status="pending",
            )
            db.add(calculation)
            db.flush()

            _distribute(db, calculation, amount)
            results.append(calculation)

        db.commit()

        calculation_ids = [c.id for c in results]
        logger.info("Commission calculated", extra={**context, "calculations": len(calculation_ids)})
        return {
            "skipped": False,
            "message": f"{len(calculation_ids)} commission calculation(s) created",
            "calculations": calculation_ids,
        }
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def list_distributions(client_id: str, calculation_id: str) -> List[CommissionDistribution]:
    db = SessionLocal()
    try:
        calculation = get_scoped(db, CommissionCalculation, calculation_id, client_id, "Commission calculation")
        return (
            db.query(CommissionDistribution)
            .filter(CommissionDistribution.calculation_id == calculation.id)
            .order_by(CommissionDistribution.distribution_percentage.desc(), CommissionDistribution.id.asc())
            .all()
        )
    finally:
        db.close()
