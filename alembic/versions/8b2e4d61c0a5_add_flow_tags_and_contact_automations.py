"""add flow tags and contact automations

Revision ID: 8b2e4d61c0a5
Revises: 3f1c2a9d7b10
Create Date: 2026-10-18 14:27:05.118342
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "8b2e4d61c0a5"
down_revision: Union[str, Sequence[str], None] = "3f1c2a9d7b10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "flow_tags",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("flow_id", sa.String(), sa.ForeignKey("flows.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("color", sa.String(), server_default=sa.text("'#94a3b8'"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("flow_id", "name", name="uq_flow_tags_flow_name"),
    )
    op.create_index(op.f("ix_flow_tags_client_id"), "flow_tags", ["client_id"], unique=False)
    op.create_index(op.f("ix_flow_tags_flow_id"), "flow_tags", ["flow_id"], unique=False)

    op.create_table(
        "card_tags",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("card_id", sa.String(), sa.ForeignKey("cards.id"), nullable=False),
        sa.Column("tag_id", sa.String(), sa.ForeignKey("flow_tags.id"), nullable=False),
        sa.Column("assigned_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("card_id", "tag_id", name="uq_card_tags_card_tag"),
    )
    op.create_index(op.f("ix_card_tags_client_id"), "card_tags", ["client_id"], unique=False)
    op.create_index(op.f("ix_card_tags_card_id"), "card_tags", ["card_id"], unique=False)
    op.create_index(op.f("ix_card_tags_tag_id"), "card_tags", ["tag_id"], unique=False)

    op.create_table(
        "contact_automations",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("target_flow_id", sa.String(), sa.ForeignKey("flows.id"), nullable=False),
        sa.Column("target_step_id", sa.String(), sa.ForeignKey("steps.id"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("trigger_conditions", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(op.f("ix_contact_automations_client_id"), "contact_automations", ["client_id"], unique=False)
    op.create_index(
        op.f("ix_contact_automations_target_flow_id"), "contact_automations", ["target_flow_id"], unique=False
    )
    op.create_index(
        op.f("ix_contact_automations_target_step_id"), "contact_automations", ["target_step_id"], unique=False
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_contact_automations_target_step_id"), table_name="contact_automations")
    op.drop_index(op.f("ix_contact_automations_target_flow_id"), table_name="contact_automations")
    op.drop_index(op.f("ix_contact_automations_client_id"), table_name="contact_automations")
    op.drop_table("contact_automations")

    op.drop_index(op.f("ix_card_tags_tag_id"), table_name="card_tags")
    op.drop_index(op.f("ix_card_tags_card_id"), table_name="card_tags")
    op.drop_index(op.f("ix_card_tags_client_id"), table_name="card_tags")
    op.drop_table("card_tags")

    op.drop_index(op.f("ix_flow_tags_flow_id"), table_name="flow_tags")
    op.drop_index(op.f("ix_flow_tags_client_id"), table_name="flow_tags")
    op.drop_table("flow_tags")
