from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from nexflow.core.errors import (
    ForbiddenError,
    InvalidMovementHistoryError,
    StepFlowMismatchError,
    TenantViolationError,
    TerminalCardError,
    ValidationError,
)
from nexflow.database import SessionLocal
from nexflow.models.card import CardHistory, CardStepValue
from nexflow.models.organization import ClientUser, Team, TeamMember
from nexflow.services import card_service, contact_service, flow_schema_service as schema

CLIENT = "client-a"
OTHER_CLIENT = "client-b"


def _insert(row):
    db = SessionLocal()
    try:
        db.add(row)
        db.commit()
        db.refresh(row)
        return row
    finally:
        db.close()


def _user(role="user", client_id=CLIENT):
    return _insert(ClientUser(id=str(uuid4()), client_id=client_id, name="User", role=role))


def _events(card_id, event_type=None):
    db = SessionLocal()
    try:
        q = db.query(CardHistory).filter(CardHistory.card_id == card_id)
        if event_type is not None:
            q = q.filter(CardHistory.event_type == event_type)
        return q.order_by(CardHistory.created_at.asc()).all()
    finally:
        db.close()


def _pipeline(*titles):
    flow = schema.create_flow(CLIENT, "Pipeline", steps=[{"title": t} for t in titles or ("Lead", "Proposal", "Won")])
    return flow, schema.list_steps(CLIENT, flow.id)


def test_create_card_starts_movement_history_and_appends_position():
    flow, steps = _pipeline()

    first = card_service.create_card(CLIENT, flow.id, steps[0].id, "Deal A", field_values={"a": 1})
    second = card_service.create_card(CLIENT, flow.id, steps[0].id, "Deal B")

    assert first.status == "inprogress"
    assert first.field_values == {"a": 1}
    assert len(first.movement_history) == 1
    assert first.movement_history[0]["fromStepId"] is None
    assert first.movement_history[0]["toStepId"] == steps[0].id
    assert second.position == first.position + 1


def test_create_card_rejects_step_of_another_flow():
    flow, _ = _pipeline()
    _, other_steps = _pipeline("Elsewhere")

    with pytest.raises(StepFlowMismatchError):
        card_service.create_card(CLIENT, flow.id, other_steps[0].id, "Deal")


def test_create_card_applies_step_default_responsible():
    flow, steps = _pipeline()
    owner = _user()
    schema.update_step(CLIENT, steps[0].id, {"responsible_user_id": owner.id})

    card = card_service.create_card(CLIENT, flow.id, steps[0].id, "Deal")
    assert card.assigned_to == owner.id
    assert card.assignee_type == "user"


def test_create_card_from_contact_uses_contact_name():
    flow, steps = _pipeline()
    contact = contact_service.create_contact(CLIENT, "Maria Silva", email="maria@example.com")

    card = card_service.create_card_from_contact(CLIENT, contact.id, flow.id, steps[0].id)

    assert card.title == "Maria Silva"
    assert card.contact_id == contact.id


def test_move_card_chains_history_snapshots_values_and_records_stage_change():
    flow, steps = _pipeline()
    card = card_service.create_card(CLIENT, flow.id, steps[0].id, "Deal", field_values={"budget": 10})

    card = card_service.move_card(CLIENT, card.id, steps[1].id, actor_id="u-1")
    card = card_service.move_card(CLIENT, card.id, steps[0].id, actor_id="u-1")

    history = card.movement_history
    assert [h["toStepId"] for h in history] == [steps[0].id, steps[1].id, steps[0].id]
    for previous, current in zip(history, history[1:]):
        assert current["fromStepId"] == previous["toStepId"]
    assert card.step_id == steps[0].id

    changes = _events(card.id, "stage_change")
    assert [e.movement_direction for e in changes] == ["forward", "backward"]
    assert all(e.duration_seconds >= 0 for e in changes)
    assert changes[0].from_step_id == steps[0].id and changes[0].to_step_id == steps[1].id

    db = SessionLocal()
    try:
        snapshot = (
            db.query(CardStepValue)
            .filter(CardStepValue.card_id == card.id, CardStepValue.step_id == steps[0].id)
            .one()
        )
        assert snapshot.field_values == {"budget": 10}
    finally:
        db.close()


def test_move_card_to_step_of_another_flow_fails():
    flow, steps = _pipeline()
    _, other_steps = _pipeline("Elsewhere")
    card = card_service.create_card(CLIENT, flow.id, steps[0].id, "Deal")

    with pytest.raises(StepFlowMismatchError):
        card_service.move_card(CLIENT, card.id, other_steps[0].id)

    assert card_service.get_card(CLIENT, card.id).step_id == steps[0].id


def test_terminal_cards_cannot_move_or_change_status():
    flow, steps = _pipeline()
    card = card_service.create_card(CLIENT, flow.id, steps[0].id, "Deal")

    completed = card_service.complete_card(CLIENT, card.id)
    assert completed.status == "completed"

    with pytest.raises(TerminalCardError):
        card_service.move_card(CLIENT, card.id, steps[1].id)
    with pytest.raises(TerminalCardError):
        card_service.cancel_card(CLIENT, card.id)

    assert [e.new_value for e in _events(card.id, "status_change")] == [{"status": "completed"}]


def test_move_assignment_explicit_wins_over_step_default():
    flow, steps = _pipeline()
    default_owner = _user()
    explicit_owner = _user()
    schema.update_step(CLIENT, steps[1].id, {"responsible_user_id": default_owner.id})

    a = card_service.create_card(CLIENT, flow.id, steps[0].id, "A")
    b = card_service.create_card(CLIENT, flow.id, steps[0].id, "B")

    a = card_service.move_card(CLIENT, a.id, steps[1].id)
    b = card_service.move_card(CLIENT, b.id, steps[1].id, assigned_to=explicit_owner.id)

    assert a.assigned_to == default_owner.id
    assert b.assigned_to == explicit_owner.id
    assert len(_events(b.id, "assignee_change")) == 1


def test_update_field_values_merges_and_records_changed_keys_only():
    flow, steps = _pipeline()
    field = schema.create_field(CLIENT, steps[0].id, "Budget", "number")
    card = card_service.create_card(CLIENT, flow.id, steps[0].id, "Deal", field_values={"budget": 1, "keep": "x"})

    card = card_service.update_field_values(CLIENT, card.id, {"budget": 2, "keep": "x", "new": True})

    assert card.field_values == {"budget": 2, "keep": "x", "new": True}
    updates = _events(card.id, "field_update")
    assert sorted(e.details["key"] for e in updates) == ["budget", "new"]
    budget = next(e for e in updates if e.details["key"] == "budget")
    assert budget.field_id == field.id
    assert budget.previous_value == {"value": 1}
    assert budget.new_value == {"value": 2}


def test_responsible_field_value_updates_card_assignment():
    flow, steps = _pipeline()
    schema.create_field(CLIENT, steps[0].id, "Responsável", "user_select")
    owner = _user()
    card = card_service.create_card(CLIENT, flow.id, steps[0].id, "Deal")

    card = card_service.update_field_values(CLIENT, card.id, {"assigned_to": owner.id})

    assert card.assigned_to == owner.id


def test_checklist_merge_and_completion_event():
    flow, steps = _pipeline()
    field = schema.create_field(CLIENT, steps[0].id, "Docs", "checklist", configuration={"items": ["RG", "CPF"]})
    card = card_service.create_card(CLIENT, flow.id, steps[0].id, "Deal")

    card = card_service.update_checklist(CLIENT, card.id, field.id, {"RG": True})
    assert card.checklist_progress == {field.id: {"RG": True}}
    assert _events(card.id, "checklist_completed") == []

    card = card_service.update_checklist(CLIENT, card.id, field.id, {"CPF": True})
    assert card.checklist_progress == {field.id: {"RG": True, "CPF": True}}
    assert len(_events(card.id, "checklist_change")) == 2
    assert len(_events(card.id, "checklist_completed")) == 1


def test_set_title_requires_elevated_role():
    flow, steps = _pipeline()
    card = card_service.create_card(CLIENT, flow.id, steps[0].id, "Deal")
    plain = _user()
    admin = _user(role="administrator")
    leader = _user()
    team = _insert(Team(id=str(uuid4()), client_id=CLIENT, name="Sales"))
    _insert(TeamMember(id=str(uuid4()), client_id=CLIENT, team_id=team.id, user_id=leader.id, role="leader"))

    with pytest.raises(ForbiddenError):
        card_service.set_title(CLIENT, card.id, "Renamed", plain.id)
    assert card_service.get_card(CLIENT, card.id).title == "Deal"

    assert card_service.set_title(CLIENT, card.id, "By admin", admin.id).title == "By admin"
    assert card_service.set_title(CLIENT, card.id, "By leader", leader.id).title == "By leader"
    assert len(_events(card.id, "title_change")) == 2


def test_update_card_applies_only_provided_keys():
    flow, steps = _pipeline()
    parent = card_service.create_card(CLIENT, flow.id, steps[0].id, "Parent")
    card = card_service.create_card(CLIENT, flow.id, steps[0].id, "Deal", field_values={"a": 1})

    updated = card_service.update_card(
        CLIENT,
        card.id,
        {"field_values": {"b": 2}, "parent_card_id": parent.id, "step_id": steps[1].id},
        actor_id="u-1",
    )

    assert updated.title == "Deal"
    assert updated.field_values == {"a": 1, "b": 2}
    assert updated.parent_card_id == parent.id
    assert updated.step_id == steps[1].id
    assert updated.status == "inprogress"
    assert len(_events(card.id, "parent_change")) == 1


def test_update_card_title_by_plain_user_is_forbidden_and_rolls_back():
    flow, steps = _pipeline()
    card = card_service.create_card(CLIENT, flow.id, steps[0].id, "Deal")
    plain = _user()

    with pytest.raises(ForbiddenError):
        card_service.update_card(CLIENT, card.id, {"title": "X", "field_values": {"a": 1}}, actor_id=plain.id)

    assert card_service.get_card(CLIENT, card.id).field_values == {}


def test_update_card_movement_history_must_chain_to_current_step():
    flow, steps = _pipeline()
    card = card_service.create_card(CLIENT, flow.id, steps[0].id, "Deal")

    broken = [
        {"fromStepId": None, "toStepId": steps[0].id},
        {"fromStepId": steps[1].id, "toStepId": steps[2].id},
    ]
    with pytest.raises(InvalidMovementHistoryError):
        card_service.update_card(CLIENT, card.id, {"movement_history": broken})

    wrong_end = [{"fromStepId": None, "toStepId": steps[1].id}]
    with pytest.raises(InvalidMovementHistoryError):
        card_service.update_card(CLIENT, card.id, {"movement_history": wrong_end})

    valid = [
        {"fromStepId": None, "toStepId": steps[1].id},
        {"fromStepId": steps[1].id, "toStepId": steps[0].id},
    ]
    updated = card_service.update_card(CLIENT, card.id, {"movement_history": valid})
    assert [h["toStepId"] for h in updated.movement_history] == [steps[1].id, steps[0].id]
    assert all(h["id"] for h in updated.movement_history)


def test_card_cannot_be_its_own_parent_or_reference_foreign_cards():
    flow, steps = _pipeline()
    card = card_service.create_card(CLIENT, flow.id, steps[0].id, "Deal")

    other_flow = schema.create_flow(OTHER_CLIENT, "Theirs")
    other_step = schema.list_steps(OTHER_CLIENT, other_flow.id)[0]
    foreign = card_service.create_card(OTHER_CLIENT, other_flow.id, other_step.id, "Foreign")

    with pytest.raises(ValidationError) as self_parent:
        card_service.update_card(CLIENT, card.id, {"parent_card_id": card.id})
    assert "own parent" in str(self_parent.value)

    with pytest.raises(TenantViolationError):
        card_service.update_card(CLIENT, card.id, {"parent_card_id": foreign.id})

    with pytest.raises(TenantViolationError):
        card_service.get_card(CLIENT, foreign.id)


def test_list_cards_orders_by_step_then_position():
    flow, steps = _pipeline()
    late = card_service.create_card(CLIENT, flow.id, steps[1].id, "Late")
    early_1 = card_service.create_card(CLIENT, flow.id, steps[0].id, "Early 1")
    early_2 = card_service.create_card(CLIENT, flow.id, steps[0].id, "Early 2")

    rows = card_service.list_cards(CLIENT, flow.id, "u-1")
    assert [c.id for c in rows] == [early_1.id, early_2.id, late.id]

    only_second = card_service.list_cards(CLIENT, flow.id, "u-1", step_id=steps[1].id)
    assert [c.id for c in only_second] == [late.id]


def test_activity_lifecycle_records_events():
    flow, steps = _pipeline()
    card = card_service.create_card(CLIENT, flow.id, steps[0].id, "Deal")
    start = datetime(2026, 1, 5, 14, 0)

    activity = card_service.create_activity(CLIENT, card.id, "Call", start, start + timedelta(minutes=30))
    card_service.update_activity(CLIENT, activity.id, {"title": "Call back"})
    done = card_service.complete_activity(CLIENT, activity.id)

    assert done.completed is True
    assert done.completed_at is not None
    assert [e.action_type for e in _events(card.id, "activity")] == ["created", "updated", "completed"]
    assert [a.title for a in card_service.list_activities(CLIENT, card.id)] == ["Call back"]
