"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Creates all tables for the SkillShare request lifecycle:
users, groups, group_members (read-only directory), requests, responses,
hidden_requests, group_requests, meetings, request_mutations.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

request_status = sa.Enum(
    "draft", "open", "active", "completed", "archived", "cancelled", name="requeststatus"
)
response_status = sa.Enum("accepted", "declined", "not_interested", name="responsestatus")
group_request_status = sa.Enum(
    "pending", "voting_open", "accepted", "funding", "paid", "payment_complete",
    "in_progress", "completed", "cancelled",
    name="grouprequeststatus",
)
refund_status = sa.Enum("pending", name="refundstatus")
request_type = sa.Enum("one-to-one", "group", name="requesttype")
meeting_status = sa.Enum("scheduled", "active", "completed", name="meetingstatus")
group_role = sa.Enum("admin", "member", name="grouprole")


def upgrade() -> None:
    # --- users ---
    op.create_table(
        "users",
        sa.Column("user_id", sa.String(36), primary_key=True),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column("default_timezone", sa.String(50), nullable=False, server_default="UTC"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- groups ---
    op.create_table(
        "groups",
        sa.Column("group_id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(150), nullable=False),
        sa.Column("created_by", sa.String(36), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- group_members ---
    op.create_table(
        "group_members",
        sa.Column("group_id", sa.String(36), sa.ForeignKey("groups.group_id"), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.user_id"), primary_key=True),
        sa.Column("role", group_role, nullable=False, server_default="member"),
        sa.Column("is_hidden", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- requests (one-to-one) ---
    op.create_table(
        "requests",
        sa.Column("request_id", sa.String(36), primary_key=True),
        sa.Column("owner_id", sa.String(36), nullable=False),
        sa.Column("topic", sa.String(200), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("subject", sa.String(100), nullable=True),
        sa.Column("payment_amount", sa.Float, nullable=True),
        sa.Column("preferred_date", sa.Date, nullable=True),
        sa.Column("preferred_time", sa.Time, nullable=True),
        sa.Column("duration_minutes", sa.Integer, nullable=True),
        sa.Column("status", request_status, nullable=False, server_default="draft"),
        sa.Column("responses", sa.JSON, nullable=False),
        sa.Column("response_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("accepted_by", sa.String(36), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("meeting_ref", sa.String(36), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_by", sa.String(36), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_reason", sa.String(500), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_requests_owner_id", "requests", ["owner_id"])
    op.create_index("ix_requests_status", "requests", ["status"])

    # --- responses ---
    op.create_table(
        "responses",
        sa.Column("response_id", sa.String(36), primary_key=True),
        sa.Column("request_id", sa.String(36), sa.ForeignKey("requests.request_id"), nullable=False),
        sa.Column("responder_id", sa.String(36), nullable=False),
        sa.Column("status", response_status, nullable=False),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("request_id", "responder_id", name="uq_response_request_responder"),
    )
    op.create_index("ix_responses_request_id", "responses", ["request_id"])
    op.create_index("ix_responses_responder_id", "responses", ["responder_id"])

    # --- hidden_requests ---
    op.create_table(
        "hidden_requests",
        sa.Column("user_id", sa.String(36), primary_key=True),
        sa.Column("request_id", sa.String(36), primary_key=True),
        sa.Column("hidden_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- group_requests ---
    op.create_table(
        "group_requests",
        sa.Column("request_id", sa.String(36), primary_key=True),
        sa.Column("creator_id", sa.String(36), nullable=False),
        sa.Column("group_id", sa.String(36), nullable=False),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("category", sa.String(100), nullable=True),
        sa.Column("rate", sa.Float, nullable=False, server_default="0"),
        sa.Column("status", group_request_status, nullable=False, server_default="pending"),
        sa.Column("votes", sa.JSON, nullable=False),
        sa.Column("teachers", sa.JSON, nullable=False),
        sa.Column("participants", sa.JSON, nullable=False),
        sa.Column("paid_participants", sa.JSON, nullable=False),
        sa.Column("selected_teacher", sa.String(36), nullable=True),
        sa.Column("min_participants", sa.Integer, nullable=False, server_default="3"),
        sa.Column("vote_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("participant_count", sa.Integer, nullable=False, server_default="1"),
        sa.Column("total_paid", sa.Float, nullable=False, server_default="0"),
        sa.Column("payment_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("meeting_ref", sa.String(36), nullable=True),
        sa.Column("refund_status", refund_status, nullable=True),
        sa.Column("cancellation_reason", sa.String(500), nullable=True),
        sa.Column("voting_opened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("funding_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("funding_expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_initiated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_group_requests_creator_id", "group_requests", ["creator_id"])
    op.create_index("ix_group_requests_group_id", "group_requests", ["group_id"])
    op.create_index("ix_group_requests_status", "group_requests", ["status"])
    op.create_index("ix_group_requests_payment_deadline", "group_requests", ["payment_deadline"])

    # --- meetings ---
    op.create_table(
        "meetings",
        sa.Column("meeting_id", sa.String(36), primary_key=True),
        sa.Column("request_id", sa.String(36), nullable=False, unique=True),
        sa.Column("request_type", request_type, nullable=False),
        sa.Column("room_id", sa.String(200), nullable=False),
        sa.Column("join_url", sa.String(500), nullable=False),
        sa.Column("participants", sa.JSON, nullable=False),
        sa.Column("status", meeting_status, nullable=False, server_default="scheduled"),
        sa.Column("scheduled_start_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- request_mutations (ledger) ---
    op.create_table(
        "request_mutations",
        sa.Column("mutation_id", sa.String(36), primary_key=True),
        sa.Column("request_id", sa.String(36), nullable=False),
        sa.Column("request_type", sa.String(20), nullable=False),
        sa.Column("actor_id", sa.String(36), nullable=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("before_status", sa.String(30), nullable=True),
        sa.Column("after_status", sa.String(30), nullable=True),
        sa.Column("detail", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_request_mutations_request_id", "request_mutations", ["request_id"])


def downgrade() -> None:
    op.drop_table("request_mutations")
    op.drop_table("meetings")
    op.drop_table("group_requests")
    op.drop_table("hidden_requests")
    op.drop_table("responses")
    op.drop_table("requests")
    op.drop_table("group_members")
    op.drop_table("groups")
    op.drop_table("users")
    for enum_type in (
        meeting_status, request_type, refund_status, group_request_status,
        response_status, request_status, group_role,
    ):
        enum_type.drop(op.get_bind(), checkfirst=True)
