from datetime import datetime, timedelta

from nexflow.database import SessionLocal
from nexflow.models.card import Card
from nexflow.services import card_service, contact_service, flow_schema_service as schema, timeline_service

CLIENT = "client-a"


def _pipeline():
    flow = schema.create_flow(CLIENT, "Pipeline", steps=[{"title": "Lead"}, {"title": "Proposal"}, {"title": "Won"}])
    return flow, schema.list_steps(CLIENT, flow.id)


def _backdate_card(card_id, seconds):
    db = SessionLocal()
    try:
        card = db.get(Card, card_id)
        card.created_at = card.created_at - timedelta(seconds=seconds)
        db.commit()
    finally:
        db.close()


def test_timeline_lists_events_in_order_with_step_summaries():
    flow, steps = _pipeline()
    field = schema.create_field(CLIENT, steps[0].id, "Budget", "number")
    card = card_service.create_card(CLIENT, flow.id, steps[0].id, "Deal")

    card_service.update_field_values(CLIENT, card.id, {field.id: 100}, actor_id="u-1")
    card_service.move_card(CLIENT, card.id, steps[1].id, actor_id="u-1")
    card_service.complete_card(CLIENT, card.id, actor_id="u-1")

    timeline = timeline_service.get_card_timeline(CLIENT, card.id)

    assert timeline["card_id"] == card.id
    assert [e["event_type"] for e in timeline["events"]] == ["field_update", "stage_change", "status_change"]

    update, stage, status = timeline["events"]
    assert update["field"]["label"] == "Budget"
    assert update["new_value"] == {"value": 100}
    assert stage["from_step"]["title"] == "Lead"
    assert stage["to_step"]["title"] == "Proposal"
    assert stage["movement_direction"] == "forward"
    assert stage["duration_seconds"] >= 0
    assert status["new_value"] == {"status": "completed"}
    assert timeline["current_step"]["title"] == "Proposal"


def test_timeline_falls_back_to_raw_key_for_deleted_fields():
    flow, steps = _pipeline()
    field = schema.create_field(CLIENT, steps[0].id, "Legacy", "text")
    card = card_service.create_card(CLIENT, flow.id, steps[0].id, "Deal")
    card_service.update_field_values(CLIENT, card.id, {field.id: "x", "free_key": "y"})

    schema.delete_field(CLIENT, field.id)
    events = timeline_service.get_card_timeline(CLIENT, card.id)["events"]

    labels = sorted(e["field"]["label"] for e in events)
    assert labels == sorted([field.id, "free_key"])
    assert all(e["field"]["field_type"] == "text" for e in events)


def test_time_in_current_stage_counts_from_creation_until_first_move():
    flow, steps = _pipeline()
    card = card_service.create_card(CLIENT, flow.id, steps[0].id, "Deal")
    _backdate_card(card.id, 3600)

    assert timeline_service.time_in_current_stage(CLIENT, card.id) >= 3600

    card_service.move_card(CLIENT, card.id, steps[1].id)
    assert timeline_service.time_in_current_stage(CLIENT, card.id) < 3600


def test_freezing_step_shows_parent_timeline():
    flow, steps = _pipeline()
    schema.update_step(CLIENT, steps[2].id, {"step_type": "freezing"})
    parent = card_service.create_card(CLIENT, flow.id, steps[0].id, "Parent")
    card_service.move_card(CLIENT, parent.id, steps[1].id)
    child = card_service.create_card(CLIENT, flow.id, steps[2].id, "Child", parent_card_id=parent.id)

    timeline = timeline_service.get_card_timeline(CLIENT, child.id)

    assert timeline["requested_card_id"] == child.id
    assert timeline["card_id"] == parent.id
    assert [e["event_type"] for e in timeline["events"]] == ["stage_change"]


def test_step_history_resolves_fields_and_orders_by_step_position_descending():
    flow, steps = _pipeline()
    budget = schema.create_field(CLIENT, steps[0].id, "Budget", "number")
    schema.create_field(CLIENT, steps[1].id, "Discount", "number", slug="discount")
    card = card_service.create_card(CLIENT, flow.id, steps[0].id, "Deal", field_values={budget.id: 10, "orphan": 1})

    card_service.move_card(CLIENT, card.id, steps[1].id)
    card_service.update_field_values(CLIENT, card.id, {"discount": 5})

    history = timeline_service.get_card_step_history(CLIENT, card.id)

    assert [h["step"]["title"] for h in history] == ["Proposal", "Lead"]
    current, first = history
    assert current["is_current"] is True
    assert {f["label"] for f in current["fields"]} == {"Budget", "orphan", "Discount"}

    by_key = {f["key"]: f for f in first["fields"]}
    assert by_key[budget.id]["label"] == "Budget"
    assert by_key[budget.id]["field_type"] == "number"
    assert by_key["orphan"]["label"] == "orphan"
    assert by_key["orphan"]["field_type"] == "text"


def test_contact_history_summarizes_each_card():
    flow, steps = _pipeline()
    contact = contact_service.create_contact(CLIENT, "Maria")
    first = card_service.create_card_from_contact(CLIENT, contact.id, flow.id, steps[0].id)
    second = card_service.create_card_from_contact(CLIENT, contact.id, flow.id, steps[0].id, title="Upsell")
    card_service.move_card(CLIENT, second.id, steps[1].id)

    history = timeline_service.get_contact_history(CLIENT, contact.id)

    assert history["contact_name"] == "Maria"
    by_card = {c["card_id"]: c for c in history["cards"]}
    assert set(by_card) == {first.id, second.id}
    assert by_card[first.id]["total_events"] == 0
    assert by_card[first.id]["last_event_type"] is None
    assert by_card[second.id]["flow_name"] == "Pipeline"
    assert by_card[second.id]["current_step"]["title"] == "Proposal"
    assert by_card[second.id]["total_events"] == 1
    assert by_card[second.id]["last_event_type"] == "stage_change"
    assert isinstance(by_card[second.id]["last_event_at"], datetime)


def test_contact_without_cards_has_empty_history():
    contact = contact_service.create_contact(CLIENT, "Nobody")
    assert timeline_service.get_contact_history(CLIENT, contact.id)["cards"] == []
