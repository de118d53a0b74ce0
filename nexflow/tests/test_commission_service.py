from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from nexflow.core.errors import NoTeamAssignedError, NotFoundError, TenantViolationError
from nexflow.database import SessionLocal
from nexflow.models.commission import (
    CardItem,
    CommissionCalculation,
    CommissionDistribution,
    Payment,
    TeamCommission,
)
from nexflow.models.organization import ClientUser, Team, TeamLevel, TeamMember, TeamMemberLevel
from nexflow.services import card_service, commission_service, flow_schema_service as schema

CLIENT = "client-a"
OTHER_CLIENT = "client-b"


def _insert(*rows):
    db = SessionLocal()
    try:
        for row in rows:
            db.add(row)
        db.commit()
        for row in rows:
            db.refresh(row)
        return rows[0] if len(rows) == 1 else rows
    finally:
        db.close()


def _member(team, percentage, active=True):
    user = _insert(ClientUser(id=str(uuid4()), client_id=CLIENT, name="Seller"))
    member = _insert(TeamMember(id=str(uuid4()), client_id=CLIENT, team_id=team.id, user_id=user.id))
    level = _insert(
        TeamLevel(id=str(uuid4()), client_id=CLIENT, team_id=team.id, name=f"L{percentage}", commission_percentage=percentage)
    )
    _insert(
        TeamMemberLevel(
            id=str(uuid4()),
            client_id=CLIENT,
            team_member_id=member.id,
            team_level_id=level.id,
            effective_from=datetime(2025, 1, 1),
            effective_to=None if active else datetime(2025, 6, 1),
        )
    )
    return user


def _completed_sale(team_id=None, step_type="finisher", items=(("item-1", "SKU-1"),)):
    flow = schema.create_flow(CLIENT, "Sales", steps=[{"title": "Lead"}, {"title": "Won", "step_type": step_type}])
    steps = schema.list_steps(CLIENT, flow.id)
    card = card_service.create_card(CLIENT, flow.id, steps[0].id, "Deal", assigned_team_id=team_id)
    card_service.move_card(CLIENT, card.id, steps[1].id)
    card_service.complete_card(CLIENT, card.id)
    for item_id, item_code in items:
        _insert(CardItem(id=str(uuid4()), client_id=CLIENT, card_id=card.id, item_id=item_id, item_code=item_code))
    return card


def _payment(card_id, amount="10000.00", status="confirmed", client_id=CLIENT):
    return _insert(
        Payment(
            id=str(uuid4()),
            client_id=client_id,
            card_id=card_id,
            payment_amount=Decimal(amount),
            payment_date=datetime(2026, 3, 1),
            payment_status=status,
        )
    )


def _rule(team, commission_type="percentage", value="10", item_id=None, item_code=None, is_active=True):
    return _insert(
        TeamCommission(
            id=str(uuid4()),
            client_id=CLIENT,
            team_id=team.id,
            item_id=item_id,
            item_code=item_code,
            commission_type=commission_type,
            commission_value=Decimal(value),
            is_active=is_active,
        )
    )


def _distributions():
    db = SessionLocal()
    try:
        return db.query(CommissionDistribution).all()
    finally:
        db.close()


def _calculations():
    db = SessionLocal()
    try:
        return db.query(CommissionCalculation).all()
    finally:
        db.close()


def test_distribution_of_60_40_team_sums_to_team_amount():
    team = _insert(Team(id=str(uuid4()), client_id=CLIENT, name="Closers"))
    senior = _member(team, 60)
    junior = _member(team, 40)
    _rule(team, "percentage", "10", item_id="item-1")
    card = _completed_sale(team.id)
    payment = _payment(card.id, "10000.00")

    result = commission_service.calculate_commission(CLIENT, payment.id, card.id)

    assert result["skipped"] is False
    assert len(result["calculations"]) == 1

    calculation = _calculations()[0]
    assert Decimal(calculation.team_commission_amount) == Decimal("1000.00")
    assert Decimal(calculation.total_distributed_percentage) == Decimal("100")
    assert Decimal(calculation.total_distributed_amount) == Decimal("1000.00")

    amounts = {d.user_id: Decimal(d.distribution_amount) for d in _distributions()}
    assert amounts == {senior.id: Decimal("600.00"), junior.id: Decimal("400.00")}

    listed = commission_service.list_distributions(CLIENT, calculation.id)
    assert [d.user_id for d in listed] == [senior.id, junior.id]


def test_uneven_split_is_apportioned_to_the_cent():
    team = _insert(Team(id=str(uuid4()), client_id=CLIENT, name="Closers"))
    for _ in range(3):
        _member(team, Decimal("33.333"))
    _rule(team, "fixed", "100", item_code="SKU-1")
    card = _completed_sale(team.id)
    payment = _payment(card.id)

    commission_service.calculate_commission(CLIENT, payment.id, card.id)

    cents = sorted(int(Decimal(d.distribution_amount) * 100) for d in _distributions())
    calculation = _calculations()[0]
    assert sum(cents) == int(Decimal(calculation.total_distributed_amount) * 100)
    assert cents == [3333, 3333, 3334]


def test_item_id_rule_takes_priority_over_item_code_rule():
    team = _insert(Team(id=str(uuid4()), client_id=CLIENT, name="Closers"))
    _member(team, 100)
    _rule(team, "fixed", "50", item_code="SKU-1")
    by_id = _rule(team, "fixed", "75", item_id="item-1")
    card = _completed_sale(team.id)
    payment = _payment(card.id)

    commission_service.calculate_commission(CLIENT, payment.id, card.id)

    calculation = _calculations()[0]
    assert Decimal(calculation.team_commission_value) == Decimal(by_id.commission_value)
    assert Decimal(calculation.team_commission_amount) == Decimal("75.00")


def test_items_without_rule_and_members_without_level_are_skipped():
    team = _insert(Team(id=str(uuid4()), client_id=CLIENT, name="Closers"))
    active = _member(team, 50)
    _member(team, 50, active=False)
    _rule(team, "percentage", "5", item_code="SKU-1")
    _rule(team, "percentage", "5", item_code="SKU-2", is_active=False)
    card = _completed_sale(team.id, items=(("item-1", "SKU-1"), ("item-2", "SKU-2")))
    payment = _payment(card.id, "2000.00")

    result = commission_service.calculate_commission(CLIENT, payment.id, card.id)

    assert len(result["calculations"]) == 1
    distributions = _distributions()
    assert [d.user_id for d in distributions] == [active.id]
    assert Decimal(distributions[0].distribution_amount) == Decimal("50.00")


def test_over_100_percent_is_a_warning_not_an_error(caplog):
    team = _insert(Team(id=str(uuid4()), client_id=CLIENT, name="Closers"))
    _member(team, 70)
    _member(team, 50)
    _rule(team, "fixed", "100", item_id="item-1")
    card = _completed_sale(team.id)
    payment = _payment(card.id)

    result = commission_service.calculate_commission(CLIENT, payment.id, card.id)

    assert result["skipped"] is False
    assert any(r.getMessage() == "Distributed commission exceeds 100%" for r in caplog.records)
    assert Decimal(_calculations()[0].total_distributed_amount) == Decimal("120.00")


@pytest.mark.parametrize(
    "payment_status,step_type,complete,message",
    [
        ("pending", "finisher", True, "Payment is not confirmed"),
        ("confirmed", "finisher", False, "Card is not completed"),
        ("confirmed", "standard", True, "Card is not in a finisher step"),
    ],
)
def test_unmet_preconditions_are_benign_skips(payment_status, step_type, complete, message):
    team = _insert(Team(id=str(uuid4()), client_id=CLIENT, name="Closers"))
    _rule(team, "fixed", "100", item_id="item-1")
    flow = schema.create_flow(CLIENT, "Sales", steps=[{"title": "Won", "step_type": step_type}])
    step = schema.list_steps(CLIENT, flow.id)[0]
    card = card_service.create_card(CLIENT, flow.id, step.id, "Deal", assigned_team_id=team.id)
    if complete:
        card_service.complete_card(CLIENT, card.id)
    payment = _payment(card.id, status=payment_status)

    result = commission_service.calculate_commission(CLIENT, payment.id, card.id)

    assert result == {"skipped": True, "message": message, "calculations": []}
    assert _calculations() == []


def test_card_without_items_is_a_benign_skip():
    team = _insert(Team(id=str(uuid4()), client_id=CLIENT, name="Closers"))
    card = _completed_sale(team.id, items=())
    payment = _payment(card.id)

    result = commission_service.calculate_commission(CLIENT, payment.id, card.id)
    assert result["skipped"] is True
    assert result["message"] == "Card has no items"


def test_card_without_team_fails():
    card = _completed_sale(None)
    payment = _payment(card.id)

    with pytest.raises(NoTeamAssignedError):
        commission_service.calculate_commission(CLIENT, payment.id, card.id)


def test_missing_and_foreign_payments():
    team = _insert(Team(id=str(uuid4()), client_id=CLIENT, name="Closers"))
    card = _completed_sale(team.id)
    foreign = _payment(None, client_id=OTHER_CLIENT)

    with pytest.raises(NotFoundError):
        commission_service.calculate_commission(CLIENT, str(uuid4()), card.id)

    with pytest.raises(TenantViolationError):
        commission_service.calculate_commission(CLIENT, foreign.id, card.id)


def test_repeated_calculation_inserts_again():
    team = _insert(Team(id=str(uuid4()), client_id=CLIENT, name="Closers"))
    _member(team, 100)
    _rule(team, "fixed", "10", item_id="item-1")
    card = _completed_sale(team.id)
    payment = _payment(card.id)

    commission_service.calculate_commission(CLIENT, payment.id, card.id)
    commission_service.calculate_commission(CLIENT, payment.id, card.id)

    assert len(_calculations()) == 2


def test_allocate_cents_largest_remainder():
    shares = [("a", Decimal(1)), ("b", Decimal(1)), ("c", Decimal(1))]
    assert commission_service.allocate_cents(100, shares) == {"a": 34, "b": 33, "c": 33}
    assert commission_service.allocate_cents(0, shares) == {"a": 0, "b": 0, "c": 0}
