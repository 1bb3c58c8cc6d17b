"""Initial membership schema (users, members, subscriptions, activity_logs)

Revision ID: 5c1e7a9d2b40
Revises:
Create Date: 2026-10-18 09:00:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "5c1e7a9d2b40"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


USER_ROLE_VALUES = ("SUPER_ADMIN", "ADMIN", "EDITOR", "AUTHOR")
MEMBERSHIP_STATUS_VALUES = ("Active", "Inactive")
SUBSCRIPTION_STATUS_VALUES = ("ACTIVE", "TRIALING", "PAST_DUE", "CANCELED", "INACTIVE")
BILLING_PROVIDER_VALUES = ("stripe", "paykickstart")
ACTIVITY_ACTION_VALUES = (
    "SUBSCRIPTION_CREATED",
    "SUBSCRIPTION_UPDATED",
    "SUBSCRIPTION_CANCELLED",
    "PAYMENT_FAILED",
    "PAYMENT_SUCCEEDED",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade database schema."""

    # ------------------------------------------------------------------
    # 1. members
    # ------------------------------------------------------------------
    op.create_table(
        "members",
        sa.Column("member_id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("membership_tier", sa.String(100), nullable=False, server_default="Customer"),
        sa.Column(
            "membership_status",
            sa.Enum(*MEMBERSHIP_STATUS_VALUES, name="membershipstatus"),
            nullable=False,
            server_default="Inactive",
        ),
        sa.Column("total_spent", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("lifetime_value", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("paykickstart_customer_id", sa.String(255), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_members_email", "members", ["email"], unique=True)
    op.create_index("ix_members_paykickstart_customer_id", "members", ["paykickstart_customer_id"])

    # ------------------------------------------------------------------
    # 2. users
    # ------------------------------------------------------------------
    op.create_table(
        "users",
        sa.Column("user_id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column(
            "role",
            sa.Enum(*USER_ROLE_VALUES, name="userrole"),
            nullable=False,
            server_default="EDITOR",
        ),
        sa.Column("email_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_login", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "member_id",
            sa.Uuid(),
            sa.ForeignKey("members.member_id", ondelete="SET NULL"),
            nullable=True,
            unique=True,
        ),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # ------------------------------------------------------------------
    # 3. subscriptions
    # ------------------------------------------------------------------
    op.create_table(
        "subscriptions",
        sa.Column("subscription_id", sa.Uuid(), primary_key=True),
        sa.Column(
            "member_id",
            sa.Uuid(),
            sa.ForeignKey("members.member_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "provider",
            sa.Enum(*BILLING_PROVIDER_VALUES, name="billingprovider"),
            nullable=False,
        ),
        sa.Column("provider_subscription_id", sa.String(255), nullable=False, unique=True),
        sa.Column("provider_customer_id", sa.String(255), nullable=True),
        sa.Column(
            "status",
            sa.Enum(*SUBSCRIPTION_STATUS_VALUES, name="subscriptionstatus"),
            nullable=False,
            server_default="INACTIVE",
        ),
        sa.Column("tier", sa.String(255), nullable=False, server_default="FREE"),
        sa.Column("billing_cycle", sa.String(20), nullable=False, server_default="monthly"),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_subscriptions_member_id", "subscriptions", ["member_id"])
    op.create_index("idx_subscription_member_status", "subscriptions", ["member_id", "status"])
    op.create_index(
        "idx_subscription_status_period_end",
        "subscriptions",
        ["status", "current_period_end"],
    )

    # ------------------------------------------------------------------
    # 4. activity_logs (append-only)
    # ------------------------------------------------------------------
    op.create_table(
        "activity_logs",
        sa.Column("activity_id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("users.user_id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "action",
            sa.Enum(*ACTIVITY_ACTION_VALUES, name="activityaction"),
            nullable=False,
        ),
        sa.Column("entity", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(255), nullable=False),
        sa.Column("details", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_activity_user_created", "activity_logs", ["user_id", "created_at"])
    op.create_index("idx_activity_entity", "activity_logs", ["entity", "entity_id"])


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("idx_activity_entity", table_name="activity_logs")
    op.drop_index("idx_activity_user_created", table_name="activity_logs")
    op.drop_table("activity_logs")

    op.drop_index("idx_subscription_status_period_end", table_name="subscriptions")
    op.drop_index("idx_subscription_member_status", table_name="subscriptions")
    op.drop_index("ix_subscriptions_member_id", table_name="subscriptions")
    op.drop_table("subscriptions")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    op.drop_index("ix_members_paykickstart_customer_id", table_name="members")
    op.drop_index("ix_members_email", table_name="members")
    op.drop_table("members")

    bind = op.get_bind()
    for name in (
        "activityaction",
        "billingprovider",
        "subscriptionstatus",
        "userrole",
        "membershipstatus",
    ):
        sa.Enum(name=name).drop(bind, checkfirst=True)
