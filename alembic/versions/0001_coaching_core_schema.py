"""coaching_core_schema

Revision ID: 0001_coaching_core
Revises:
Create Date: 2026-10-19

Initial schema: coaches, customers, invites, attempts, quiz content,
coach tags and SOP tables.

`attempt` carries a partial unique index so at most one unsubmitted attempt
exists per invite; concurrent starts collide on it instead of duplicating.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision = "0001_coaching_core"
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(JSONB(), "postgresql")


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    op.create_table(
        "coach",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _created_at(),
        sa.Column("username", sa.Text(), nullable=False, unique=True),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column("role", sa.Text(), nullable=False, server_default="coach"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        "customer",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("coach_id", sa.Uuid(), sa.ForeignKey("coach.id"), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("nickname", sa.Text(), nullable=True),
        sa.Column("coach_metadata", JSONType, nullable=False, server_default=sa.text("'{}'")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_customer_coach_id", "customer", ["coach_id"])

    op.create_table(
        "invite",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("token_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("coach_id", sa.Uuid(), sa.ForeignKey("coach.id"), nullable=False),
        sa.Column("customer_id", sa.Uuid(), sa.ForeignKey("customer.id"), nullable=False),
        sa.Column("quiz_version", sa.Text(), nullable=False),
        sa.Column("track", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="active"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.CheckConstraint(
            "status IN ('active', 'entered', 'completed', 'expired')",
            name="ck_invite_status",
        ),
    )
    op.create_index("ix_invite_coach_id", "invite", ["coach_id"])
    op.create_index("ix_invite_customer_id", "invite", ["customer_id"])
    op.create_index("ix_invite_customer_track_status", "invite", ["customer_id", "track", "status"])

    op.create_table(
        "attempt",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("invite_id", sa.Uuid(), sa.ForeignKey("invite.id"), nullable=False),
        sa.Column("customer_id", sa.Uuid(), sa.ForeignKey("customer.id"), nullable=False),
        sa.Column("coach_id", sa.Uuid(), sa.ForeignKey("coach.id"), nullable=False),
        sa.Column("quiz_version", sa.Text(), nullable=False),
        sa.Column("track", sa.Text(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("answers", JSONType, nullable=False, server_default=sa.text("'{}'")),
        sa.Column("tags", JSONType, nullable=True),
        sa.Column("stage", sa.Text(), nullable=True),
        sa.Column("result_summary", JSONType, nullable=True),
    )
    op.create_index("ix_attempt_invite_id", "attempt", ["invite_id"])
    op.create_index("ix_attempt_customer_id", "attempt", ["customer_id"])
    op.create_index("ix_attempt_coach_id", "attempt", ["coach_id"])
    op.create_index(
        "uq_attempt_open_per_invite",
        "attempt",
        ["invite_id"],
        unique=True,
        postgresql_where=sa.text("submitted_at IS NULL"),
        sqlite_where=sa.text("submitted_at IS NULL"),
    )

    op.create_table(
        "quiz",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("quiz_version", sa.Text(), nullable=False),
        sa.Column("track", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="active"),
        sa.UniqueConstraint("quiz_version", "track", name="uq_quiz_version_track"),
    )

    op.create_table(
        "question",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("quiz_id", sa.Uuid(), sa.ForeignKey("quiz.id"), nullable=False),
        sa.Column("order_no", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stem", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="active"),
    )
    op.create_index("ix_question_quiz_id", "question", ["quiz_id"])

    op.create_table(
        "option",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("question_id", sa.Uuid(), sa.ForeignKey("question.id"), nullable=False),
        sa.Column("order_no", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("text", sa.Text(), nullable=False),
    )
    op.create_index("ix_option_question_id", "option", ["question_id"])

    op.create_table(
        "coach_tag",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("customer_id", sa.Uuid(), sa.ForeignKey("customer.id"), nullable=False),
        sa.Column("coach_id", sa.Uuid(), sa.ForeignKey("coach.id"), nullable=False),
        sa.Column("tag_key", sa.Text(), nullable=False),
        _created_at(),
        sa.UniqueConstraint("customer_id", "coach_id", "tag_key", name="uq_coach_tag_customer_coach_key"),
    )
    op.create_index("ix_coach_tag_customer_id", "coach_tag", ["customer_id"])

    op.create_table(
        "coaching_stage",
        sa.Column("stage_id", sa.Text(), primary_key=True),
        sa.Column("stage_name", sa.Text(), nullable=False),
        sa.Column("stage_desc", sa.Text(), nullable=True),
        sa.Column("allow_actions", JSONType, nullable=True),
        sa.Column("forbid_actions", JSONType, nullable=True),
    )

    op.create_table(
        "sop_definition",
        sa.Column("sop_id", sa.Text(), primary_key=True),
        sa.Column("sop_name", sa.Text(), nullable=False),
        sa.Column("sop_stage", sa.Text(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("state_summary", sa.Text(), nullable=True),
        sa.Column("core_goal", sa.Text(), nullable=True),
        sa.Column("strategy_list", JSONType, nullable=True),
        sa.Column("forbidden_list", JSONType, nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="active"),
        _created_at(),
    )

    op.create_table(
        "sop_rule",
        sa.Column("rule_id", sa.Text(), primary_key=True),
        sa.Column("sop_id", sa.Text(), sa.ForeignKey("sop_definition.sop_id"), nullable=False),
        sa.Column("required_stage", sa.Text(), nullable=True),
        sa.Column("required_tags", JSONType, nullable=True),
        sa.Column("excluded_tags", JSONType, nullable=True),
        sa.Column("confidence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.Text(), nullable=False, server_default="active"),
        _created_at(),
    )
    op.create_index("ix_sop_rule_sop_id", "sop_rule", ["sop_id"])

    op.create_table(
        "sop_stage_map",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("stage_id", sa.Text(), sa.ForeignKey("coaching_stage.stage_id"), nullable=False),
        sa.Column("sop_id", sa.Text(), sa.ForeignKey("sop_definition.sop_id"), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint("stage_id", "sop_id", name="uq_sop_stage_map_stage_sop"),
    )
    op.create_index(
        "uq_sop_stage_map_default_per_stage",
        "sop_stage_map",
        ["stage_id"],
        unique=True,
        postgresql_where=sa.text("is_default"),
        sqlite_where=sa.text("is_default = 1"),
    )


def downgrade() -> None:
    op.drop_table("sop_stage_map")
    op.drop_table("sop_rule")
    op.drop_table("sop_definition")
    op.drop_table("coaching_stage")
    op.drop_table("coach_tag")
    op.drop_table("option")
    op.drop_table("question")
    op.drop_table("quiz")
    op.drop_table("attempt")
    op.drop_table("invite")
    op.drop_table("customer")
    op.drop_table("coach")
