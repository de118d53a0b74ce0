from uuid import uuid4

import pytest

from nexflow.core.errors import (
    DuplicateSlugError,
    HasCardsError,
    InvalidFieldConfigurationError,
    InvalidOrderError,
    InvalidSlugError,
    LastStepError,
    ResponsibleConflictError,
    SystemFieldLockedError,
    TenantViolationError,
)
from nexflow.database import SessionLocal
from nexflow.models.flow import StepField
from nexflow.models.organization import ClientUser, Team
from nexflow.services import card_service, flow_schema_service as schema

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


def _flow_with_steps(*titles):
    flow = schema.create_flow(CLIENT, "Sales", steps=[{"title": t} for t in titles])
    return flow, schema.list_steps(CLIENT, flow.id)


def test_create_flow_without_steps_gets_a_default_step():
    flow = schema.create_flow(CLIENT, "Onboarding")

    steps = schema.list_steps(CLIENT, flow.id)
    assert [(s.title, s.position) for s in steps] == [(schema.DEFAULT_STEP_TITLE, 1)]


def test_create_step_appends_after_last_position():
    flow, _ = _flow_with_steps("Lead", "Proposal")

    step = schema.create_step(CLIENT, flow.id, "Won", color="#16a34a")

    assert step.position == 3
    assert [s.title for s in schema.list_steps(CLIENT, flow.id)] == ["Lead", "Proposal", "Won"]


def test_reorder_steps_assigns_dense_positions_in_requested_order():
    flow, steps = _flow_with_steps("A", "B", "C", "D")
    requested = [steps[2].id, steps[0].id, steps[3].id, steps[1].id]

    schema.reorder_steps(CLIENT, flow.id, requested)

    after = schema.list_steps(CLIENT, flow.id)
    assert [s.id for s in after] == requested
    assert [s.position for s in after] == [1, 2, 3, 4]


def test_reorder_steps_rejects_partial_order_and_leaves_positions_alone():
    flow, steps = _flow_with_steps("A", "B", "C")

    with pytest.raises(InvalidOrderError):
        schema.reorder_steps(CLIENT, flow.id, [steps[1].id, steps[0].id])

    with pytest.raises(InvalidOrderError):
        schema.reorder_steps(CLIENT, flow.id, [steps[0].id, steps[0].id, steps[1].id])

    after = schema.list_steps(CLIENT, flow.id)
    assert [(s.id, s.position) for s in after] == [(s.id, s.position) for s in steps]


def test_delete_step_blocked_by_cards_then_by_last_step():
    flow, steps = _flow_with_steps("Only")
    card = card_service.create_card(CLIENT, flow.id, steps[0].id, "Deal")

    with pytest.raises(HasCardsError):
        schema.delete_step(CLIENT, steps[0].id)

    card_service.cancel_card(CLIENT, card.id)
    with pytest.raises(HasCardsError):
        # canceled cards still reference the step
        schema.delete_step(CLIENT, steps[0].id)

    empty_flow, empty_steps = _flow_with_steps("Single")
    with pytest.raises(LastStepError):
        schema.delete_step(CLIENT, empty_steps[0].id)


def test_delete_step_renumbers_remaining_steps_and_removes_fields():
    flow, steps = _flow_with_steps("A", "B", "C")
    schema.create_field(CLIENT, steps[1].id, "Notes", "text")

    schema.delete_step(CLIENT, steps[1].id)

    after = schema.list_steps(CLIENT, flow.id)
    assert [(s.title, s.position) for s in after] == [("A", 1), ("C", 2)]
    assert schema.list_fields(CLIENT, steps[1].id) == []


@pytest.mark.parametrize(
    "label,expected",
    [
        ("Data de Nascimento", "data_de_nascimento"),
        ("  Ação / Próxima!  ", "acao_proxima"),
        ("!!!", "field"),
        ("CPF", "cpf"),
    ],
)
def test_slugify(label, expected):
    assert schema.slugify(label) == expected


def test_create_field_derives_slug_and_positions():
    _, steps = _flow_with_steps("Lead")

    first = schema.create_field(CLIENT, steps[0].id, "Valor do Contrato", "number")
    second = schema.create_field(CLIENT, steps[0].id, "Observações", "text", is_required=True)

    assert first.slug == "valor_do_contrato"
    assert (first.position, second.position) == (1, 2)
    assert second.slug == "observacoes"
    assert second.is_required is True


def test_duplicate_slug_is_rejected_and_existing_field_unchanged():
    _, steps = _flow_with_steps("Lead")
    original = schema.create_field(CLIENT, steps[0].id, "Phone", "text")

    with pytest.raises(DuplicateSlugError):
        schema.create_field(CLIENT, steps[0].id, "Other phone", "number", slug="phone")

    with pytest.raises(DuplicateSlugError):
        schema.create_field(CLIENT, steps[0].id, "Phone", "text")

    fields = schema.list_fields(CLIENT, steps[0].id)
    assert len(fields) == 1
    assert (fields[0].id, fields[0].label, fields[0].field_type) == (original.id, "Phone", "text")


def test_explicit_slug_must_match_pattern():
    _, steps = _flow_with_steps("Lead")

    with pytest.raises(InvalidSlugError):
        schema.create_field(CLIENT, steps[0].id, "Email", "text", slug="E-mail")


def test_responsible_user_select_gets_system_slug_once_per_step():
    _, steps = _flow_with_steps("Lead")

    responsible = schema.create_field(CLIENT, steps[0].id, "Responsável", "user_select")
    team = schema.create_field(CLIENT, steps[0].id, "Responsável time", "user_select")

    assert responsible.slug == schema.RESPONSIBLE_SLUG
    assert team.slug == schema.RESPONSIBLE_TEAM_SLUG

    with pytest.raises(DuplicateSlugError):
        schema.create_field(CLIENT, steps[0].id, "Assignee", "user_select")


def test_responsible_label_forces_system_slug_over_explicit_slug():
    _, steps = _flow_with_steps("Lead")

    field = schema.create_field(CLIENT, steps[0].id, "Responsável", "user_select", slug="owner")
    assert field.slug == schema.RESPONSIBLE_SLUG

    # a second responsible field cannot sneak in under another slug
    with pytest.raises(DuplicateSlugError):
        schema.create_field(CLIENT, steps[0].id, "Assigned to", "user_select", slug="backup_owner")


def test_responsible_label_on_text_field_is_an_ordinary_field():
    _, steps = _flow_with_steps("Lead")

    field = schema.create_field(CLIENT, steps[0].id, "Responsável", "text")
    assert field.slug == "responsavel"

    with pytest.raises(InvalidSlugError):
        schema.create_field(CLIENT, steps[0].id, "Owner", "text", slug=schema.RESPONSIBLE_SLUG)


def test_system_field_slug_and_type_are_locked():
    _, steps = _flow_with_steps("Lead")
    field = schema.create_field(CLIENT, steps[0].id, "Responsible", "user_select")

    with pytest.raises(SystemFieldLockedError):
        schema.update_field(CLIENT, field.id, {"slug": "owner"})

    with pytest.raises(SystemFieldLockedError):
        schema.update_field(CLIENT, field.id, {"field_type": "text"})

    renamed = schema.update_field(CLIENT, field.id, {"label": "Dono", "is_required": True})
    assert renamed.slug == schema.RESPONSIBLE_SLUG
    assert renamed.label == "Dono"
    assert renamed.is_required is True


def test_ordinary_field_cannot_take_a_reserved_slug():
    _, steps = _flow_with_steps("Lead")
    field = schema.create_field(CLIENT, steps[0].id, "Seller", "user_select", slug="seller")

    with pytest.raises(SystemFieldLockedError):
        schema.update_field(CLIENT, field.id, {"slug": schema.RESPONSIBLE_SLUG})

    updated = schema.update_field(CLIENT, field.id, {"slug": "salesperson"})
    assert updated.slug == "salesperson"


def test_checklist_items_must_be_strings():
    _, steps = _flow_with_steps("Lead")

    with pytest.raises(InvalidFieldConfigurationError):
        schema.create_field(CLIENT, steps[0].id, "Docs", "checklist", configuration={"items": ["RG", 3]})

    field = schema.create_field(CLIENT, steps[0].id, "Docs", "checklist", configuration={"items": ["RG", "CPF"]})
    assert field.configuration == {"items": ["RG", "CPF"]}


def test_delete_and_reorder_fields_keep_positions_dense():
    _, steps = _flow_with_steps("Lead")
    a = schema.create_field(CLIENT, steps[0].id, "A", "text")
    b = schema.create_field(CLIENT, steps[0].id, "B", "text")
    c = schema.create_field(CLIENT, steps[0].id, "C", "text")

    schema.delete_field(CLIENT, a.id)
    assert [(f.id, f.position) for f in schema.list_fields(CLIENT, steps[0].id)] == [(b.id, 1), (c.id, 2)]

    schema.reorder_fields(CLIENT, steps[0].id, [c.id, b.id])
    assert [(f.id, f.position) for f in schema.list_fields(CLIENT, steps[0].id)] == [(c.id, 1), (b.id, 2)]


def test_step_responsible_user_and_team_are_mutually_exclusive():
    _, steps = _flow_with_steps("Lead")
    user = _insert(ClientUser(id=str(uuid4()), client_id=CLIENT, name="Ana"))
    team = _insert(Team(id=str(uuid4()), client_id=CLIENT, name="Closers"))

    step = schema.update_step(CLIENT, steps[0].id, {"responsible_user_id": user.id})
    assert (step.responsible_user_id, step.responsible_team_id) == (user.id, None)

    step = schema.update_step(CLIENT, steps[0].id, {"responsible_team_id": team.id})
    assert (step.responsible_user_id, step.responsible_team_id) == (None, team.id)

    with pytest.raises(ResponsibleConflictError):
        schema.update_step(CLIENT, steps[0].id, {"responsible_user_id": user.id, "responsible_team_id": team.id})


def test_step_responsible_from_another_client_is_a_tenant_violation():
    _, steps = _flow_with_steps("Lead")
    foreign_team = _insert(Team(id=str(uuid4()), client_id=OTHER_CLIENT, name="Elsewhere"))

    with pytest.raises(TenantViolationError):
        schema.update_step(CLIENT, steps[0].id, {"responsible_team_id": foreign_team.id})


def test_schema_reads_from_another_client_are_tenant_violations():
    flow, steps = _flow_with_steps("Lead")

    with pytest.raises(TenantViolationError):
        schema.create_step(OTHER_CLIENT, flow.id, "Sneaky")

    with pytest.raises(TenantViolationError):
        schema.create_field(OTHER_CLIENT, steps[0].id, "Sneaky", "text")

    assert schema.list_steps(OTHER_CLIENT, flow.id) == []


def test_delete_flow_removes_schema_unless_cards_exist():
    flow, steps = _flow_with_steps("A", "B")
    schema.create_field(CLIENT, steps[0].id, "Notes", "text")

    schema.delete_flow(CLIENT, flow.id)

    db = SessionLocal()
    try:
        assert db.query(StepField).filter(StepField.step_id == steps[0].id).count() == 0
    finally:
        db.close()
    assert schema.list_steps(CLIENT, flow.id) == []
