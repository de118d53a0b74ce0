"""initial nexflow schema

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-18 09:12:44.301876

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3f1c2a9d7b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_columns():
    return [
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
    ]


def _index(table: str, *columns: str) -> None:
    for column in columns:
        op.create_index(f"ix_{table}_{column}", table, [column], unique=False)


def upgrade() -> None:
    # --- organization ---
    op.create_table(
        "client_users",
        *_id_columns(),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    _index("client_users", "client_id")

    op.create_table(
        "teams",
        *_id_columns(),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    _index("teams", "client_id")

    op.create_table(
        "team_members",
        *_id_columns(),
        sa.Column("team_id", sa.String(), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("user_id", sa.String(), sa.ForeignKey("client_users.id"), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.UniqueConstraint("team_id", "user_id", name="uq_team_members_team_user"),
    )
    _index("team_members", "client_id", "team_id", "user_id")

    op.create_table(
        "team_levels",
        *_id_columns(),
        sa.Column("team_id", sa.String(), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("commission_percentage", sa.Numeric(7, 3), nullable=False),
    )
    _index("team_levels", "client_id", "team_id")

    op.create_table(
        "team_member_levels",
        *_id_columns(),
        sa.Column("team_member_id", sa.String(), sa.ForeignKey("team_members.id"), nullable=False),
        sa.Column("team_level_id", sa.String(), sa.ForeignKey("team_levels.id"), nullable=False),
        sa.Column("effective_from", sa.DateTime(), nullable=False),
        sa.Column("effective_to", sa.DateTime(), nullable=True),
    )
    _index("team_member_levels", "client_id", "team_member_id", "team_level_id")

    # --- flow schema ---
    op.create_table(
        "flows",
        *_id_columns(),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("visibility_type", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    _index("flows", "client_id")

    op.create_table(
        "steps",
        *_id_columns(),
        sa.Column("flow_id", sa.String(), sa.ForeignKey("flows.id"), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("color", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("step_type", sa.String(), nullable=False),
        sa.Column("responsible_user_id", sa.String(), nullable=True),
        sa.Column("responsible_team_id", sa.String(), nullable=True),
        sa.Column("visibility_type", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("flow_id", "position", name="uq_steps_flow_position"),
    )
    _index("steps", "client_id", "flow_id")

    op.create_table(
        "step_fields",
        *_id_columns(),
        sa.Column("step_id", sa.String(), sa.ForeignKey("steps.id"), nullable=False),
        sa.Column("label", sa.String(), nullable=False),
        sa.Column("slug", sa.String(), nullable=True),
        sa.Column("field_type", sa.String(), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("configuration", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("step_id", "slug", name="uq_step_fields_step_slug"),
        sa.UniqueConstraint("step_id", "position", name="uq_step_fields_step_position"),
    )
    _index("step_fields", "client_id", "step_id")

    # --- visibility ---
    op.create_table(
        "flow_team_access",
        *_id_columns(),
        sa.Column("flow_id", sa.String(), sa.ForeignKey("flows.id"), nullable=False),
        sa.Column("team_id", sa.String(), sa.ForeignKey("teams.id"), nullable=False),
        sa.UniqueConstraint("flow_id", "team_id", name="uq_flow_team_access"),
    )
    _index("flow_team_access", "client_id", "flow_id", "team_id")

    op.create_table(
        "flow_user_exclusions",
        *_id_columns(),
        sa.Column("flow_id", sa.String(), sa.ForeignKey("flows.id"), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.UniqueConstraint("flow_id", "user_id", name="uq_flow_user_exclusions"),
    )
    _index("flow_user_exclusions", "client_id", "flow_id", "user_id")

    op.create_table(
        "step_team_access",
        *_id_columns(),
        sa.Column("step_id", sa.String(), sa.ForeignKey("steps.id"), nullable=False),
        sa.Column("team_id", sa.String(), sa.ForeignKey("teams.id"), nullable=False),
        sa.UniqueConstraint("step_id", "team_id", name="uq_step_team_access"),
    )
    _index("step_team_access", "client_id", "step_id", "team_id")

    op.create_table(
        "step_user_exclusions",
        *_id_columns(),
        sa.Column("step_id", sa.String(), sa.ForeignKey("steps.id"), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.UniqueConstraint("step_id", "user_id", name="uq_step_user_exclusions"),
    )
    _index("step_user_exclusions", "client_id", "step_id", "user_id")

    op.create_table(
        "flow_access",
        *_id_columns(),
        sa.Column("flow_id", sa.String(), sa.ForeignKey("flows.id"), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.UniqueConstraint("flow_id", "user_id", name="uq_flow_access_flow_user"),
    )
    _index("flow_access", "client_id", "flow_id", "user_id")

    op.create_table(
        "step_visibility",
        *_id_columns(),
        sa.Column("step_id", sa.String(), sa.ForeignKey("steps.id"), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("can_view", sa.Boolean(), nullable=False),
        sa.Column("can_edit_fields", sa.Boolean(), nullable=False),
        sa.UniqueConstraint("step_id", "user_id", name="uq_step_visibility_step_user"),
    )
    _index("step_visibility", "client_id", "step_id", "user_id")

    # --- cards ---
    op.create_table(
        "contacts",
        *_id_columns(),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    _index("contacts", "client_id")

    op.create_table(
        "cards",
        *_id_columns(),
        sa.Column("flow_id", sa.String(), sa.ForeignKey("flows.id"), nullable=False),
        sa.Column("step_id", sa.String(), sa.ForeignKey("steps.id"), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("field_values", sa.JSON(), nullable=False),
        sa.Column("checklist_progress", sa.JSON(), nullable=False),
        sa.Column("assigned_to", sa.String(), nullable=True),
        sa.Column("assigned_team_id", sa.String(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("movement_history", sa.JSON(), nullable=False),
        sa.Column("parent_card_id", sa.String(), sa.ForeignKey("cards.id"), nullable=True),
        sa.Column("contact_id", sa.String(), sa.ForeignKey("contacts.id"), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    _index(
        "cards",
        "client_id",
        "flow_id",
        "step_id",
        "assigned_to",
        "assigned_team_id",
        "parent_card_id",
        "contact_id",
        "status",
    )

    op.create_table(
        "card_step_values",
        *_id_columns(),
        sa.Column("card_id", sa.String(), sa.ForeignKey("cards.id"), nullable=False),
        sa.Column("step_id", sa.String(), nullable=False),
        sa.Column("field_values", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("card_id", "step_id", name="uq_card_step_values_card_step"),
    )
    _index("card_step_values", "client_id", "card_id", "step_id")

    op.create_table(
        "card_history",
        *_id_columns(),
        sa.Column("card_id", sa.String(), sa.ForeignKey("cards.id"), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("previous_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("from_step_id", sa.String(), nullable=True),
        sa.Column("to_step_id", sa.String(), nullable=True),
        sa.Column("step_id", sa.String(), nullable=True),
        sa.Column("field_id", sa.String(), nullable=True),
        sa.Column("activity_id", sa.String(), nullable=True),
        sa.Column("action_type", sa.String(), nullable=True),
        sa.Column("movement_direction", sa.String(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
    )
    _index("card_history", "client_id", "card_id", "event_type", "created_at")

    op.create_table(
        "card_activities",
        *_id_columns(),
        sa.Column("card_id", sa.String(), sa.ForeignKey("cards.id"), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("start_at", sa.DateTime(), nullable=False),
        sa.Column("end_at", sa.DateTime(), nullable=False),
        sa.Column("assignee_id", sa.String(), nullable=True),
        sa.Column("completed", sa.Boolean(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    _index("card_activities", "client_id", "card_id")

    op.create_table(
        "step_child_card_automations",
        *_id_columns(),
        sa.Column("step_id", sa.String(), sa.ForeignKey("steps.id"), nullable=False),
        sa.Column("target_flow_id", sa.String(), sa.ForeignKey("flows.id"), nullable=False),
        sa.Column("target_step_id", sa.String(), sa.ForeignKey("steps.id"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("copy_field_values", sa.Boolean(), nullable=False),
        sa.Column("copy_assignment", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    _index("step_child_card_automations", "client_id", "step_id", "target_flow_id", "target_step_id")

    # --- commissions ---
    op.create_table(
        "payments",
        *_id_columns(),
        sa.Column("card_id", sa.String(), sa.ForeignKey("cards.id"), nullable=True),
        sa.Column("payment_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("payment_date", sa.DateTime(), nullable=True),
        sa.Column("payment_status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    _index("payments", "client_id", "card_id")

    op.create_table(
        "card_items",
        *_id_columns(),
        sa.Column("card_id", sa.String(), sa.ForeignKey("cards.id"), nullable=False),
        sa.Column("item_id", sa.String(), nullable=True),
        sa.Column("item_code", sa.String(), nullable=True),
        sa.Column("quantity", sa.Numeric(14, 3), nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=True),
    )
    _index("card_items", "client_id", "card_id", "item_id", "item_code")

    op.create_table(
        "team_commissions",
        *_id_columns(),
        sa.Column("team_id", sa.String(), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("item_id", sa.String(), nullable=True),
        sa.Column("item_code", sa.String(), nullable=True),
        sa.Column("commission_type", sa.String(), nullable=False),
        sa.Column("commission_value", sa.Numeric(14, 3), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
    )
    _index("team_commissions", "client_id", "team_id", "item_id", "item_code")

    op.create_table(
        "commission_calculations",
        *_id_columns(),
        sa.Column("card_id", sa.String(), sa.ForeignKey("cards.id"), nullable=False),
        sa.Column("card_item_id", sa.String(), sa.ForeignKey("card_items.id"), nullable=False),
        sa.Column("payment_id", sa.String(), sa.ForeignKey("payments.id"), nullable=False),
        sa.Column("payment_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("payment_date", sa.DateTime(), nullable=True),
        sa.Column("team_id", sa.String(), nullable=False),
        sa.Column("item_code", sa.String(), nullable=True),
        sa.Column("team_commission_type", sa.String(), nullable=False),
        sa.Column("team_commission_value", sa.Numeric(14, 3), nullable=False),
        sa.Column("team_commission_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_distributed_percentage", sa.Numeric(7, 3), nullable=False),
        sa.Column("total_distributed_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    _index("commission_calculations", "client_id", "card_id", "card_item_id", "payment_id", "team_id")

    op.create_table(
        "commission_distributions",
        *_id_columns(),
        sa.Column(
            "calculation_id",
            sa.String(),
            sa.ForeignKey("commission_calculations.id"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("level_id", sa.String(), nullable=False),
        sa.Column("distribution_percentage", sa.Numeric(7, 3), nullable=False),
        sa.Column("distribution_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    _index("commission_distributions", "client_id", "calculation_id", "user_id")


def downgrade() -> None:
    for table in (
        "commission_distributions",
        "commission_calculations",
        "team_commissions",
        "card_items",
        "payments",
        "step_child_card_automations",
        "card_activities",
        "card_history",
        "card_step_values",
        "cards",
        "contacts",
        "step_visibility",
        "flow_access",
        "step_user_exclusions",
        "step_team_access",
        "flow_user_exclusions",
        "flow_team_access",
        "step_fields",
        "steps",
        "flows",
        "team_member_levels",
        "team_levels",
        "team_members",
        "teams",
        "client_users",
    ):
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
