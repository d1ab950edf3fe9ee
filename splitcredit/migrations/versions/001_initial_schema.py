"""Initial schema — all tables, enum checks, constraints, and indexes.

Revision: 001_initial_schema
Created:  2026-10-19

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a schema change is required, create a NEW migration file.

Enums:
  Enum columns are VARCHAR(32) (models use native_enum=False) so the same
  DDL runs on PostgreSQL and on the SQLite test database. Each enum column
  gets a named CHECK listing its allowed values.

Participant columns:
  A balance-bearing participant is a (kind, id) pair where kind is 'user'
  (users.id) or 'pending' (pending_members.id). The id column is not a
  foreign key because its target depends on kind.

Creation order (FK dependencies):
  users → groups → memberships → pending_members → pending_memberships
  → expenses → splits → settlements → user_credit_states → credit_history
  → activities

ON DELETE policies:
  splits.expense_id                 → CASCADE   (splits owned by expense)
  settlements.expense_id            → SET NULL  (expense may be hard-deleted)
  pending_memberships.pending_member_id → CASCADE
  user_credit_states / credit_history / activities → CASCADE on user
  credit_history.related_settlement_id → RESTRICT (audit trail)
  everything else                   → RESTRICT
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration — no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None


PARTICIPANT_KINDS = ("user", "pending")
CURRENCIES = ("INR", "USD", "EUR", "GBP")
PENDING_MEMBER_STATUSES = ("invited", "resolved", "removed")
SPLIT_MODES = ("equal", "custom")
CATEGORIES = (
    "food", "transport", "entertainment", "utilities",
    "rent", "shopping", "health", "other",
)
SETTLEMENT_METHODS = ("cash", "upi", "bank", "other")
SETTLEMENT_STATUSES = ("pending", "completed")
CREDIT_REASONS = (
    "on_time_settlement", "settlement_within_3d", "consecutive_bonus",
    "delayed_gt3", "delayed_gt7", "delayed_gt15", "reminder_ignored",
)
ACTIVITY_ACTIONS = (
    "expense_added", "expense_deleted", "settlement_initiated",
    "settlement_confirmed", "member_joined",
)


def _enum_check(column: str, values: tuple[str, ...], name: str) -> sa.CheckConstraint:
    allowed = ", ".join(f"'{v}'" for v in values)
    return sa.CheckConstraint(f"{column} IN ({allowed})", name=name)


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    # ── users ──────────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("phone_number", sa.String(20), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("phone_number", name="uq_users_phone_number"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.CheckConstraint("LENGTH(TRIM(name)) > 0", name="ck_users_name_nonempty"),
    )

    # ── groups ─────────────────────────────────────────────────────────────
    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column(
            "owner_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_groups_owner"),
            nullable=False,
        ),
        sa.Column("currency", sa.String(32), nullable=False, server_default="INR"),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_groups"),
        sa.CheckConstraint("LENGTH(TRIM(name)) > 0", name="ck_groups_name_nonempty"),
        _enum_check("currency", CURRENCIES, "ck_groups_currency"),
    )

    # ── memberships ────────────────────────────────────────────────────────
    op.create_table(
        "memberships",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_memberships_user"),
            nullable=False,
        ),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_memberships_group"),
            nullable=False,
        ),
        _created_at("joined_at"),
        sa.PrimaryKeyConstraint("id", name="pk_memberships"),
        sa.UniqueConstraint("user_id", "group_id", name="uq_memberships_user_group"),
    )
    op.create_index("ix_memberships_user_id", "memberships", ["user_id"])
    op.create_index("ix_memberships_group_id", "memberships", ["group_id"])

    # ── pending_members ────────────────────────────────────────────────────
    # One row per invited phone number across all groups.
    op.create_table(
        "pending_members",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("phone_number", sa.String(20), nullable=False),
        sa.Column("display_name", sa.String(50), nullable=False),
        sa.Column(
            "added_by_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_pending_members_added_by"),
            nullable=False,
        ),
        sa.Column("status", sa.String(32), nullable=False, server_default="invited"),
        sa.Column(
            "resolved_to_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_pending_members_resolved_to"),
            nullable=True,
        ),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_pending_members"),
        sa.UniqueConstraint("phone_number", name="uq_pending_members_phone_number"),
        _enum_check("status", PENDING_MEMBER_STATUSES, "ck_pending_members_status"),
    )
    op.create_index("ix_pending_members_status", "pending_members", ["status"])

    # ── pending_memberships ────────────────────────────────────────────────
    op.create_table(
        "pending_memberships",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "pending_member_id",
            sa.Integer(),
            sa.ForeignKey(
                "pending_members.id",
                ondelete="CASCADE",
                name="fk_pending_memberships_member",
            ),
            nullable=False,
        ),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_pending_memberships_group"),
            nullable=False,
        ),
        sa.Column(
            "added_by_user_id",
            sa.Integer(),
            sa.ForeignKey(
                "users.id",
                ondelete="RESTRICT",
                name="fk_pending_memberships_added_by",
            ),
            nullable=False,
        ),
        _created_at("added_at"),
        sa.PrimaryKeyConstraint("id", name="pk_pending_memberships"),
        sa.UniqueConstraint(
            "pending_member_id",
            "group_id",
            name="uq_pending_memberships_member_group",
        ),
    )
    op.create_index(
        "ix_pending_memberships_pending_member_id",
        "pending_memberships",
        ["pending_member_id"],
    )
    op.create_index("ix_pending_memberships_group_id", "pending_memberships", ["group_id"])

    # ── expenses ───────────────────────────────────────────────────────────
    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_expenses_group"),
            nullable=False,
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payer_kind", sa.String(32), nullable=False),
        sa.Column("payer_id", sa.Integer(), nullable=False),
        sa.Column("split_mode", sa.String(32), nullable=False, server_default="equal"),
        sa.Column("category", sa.String(32), nullable=False, server_default="other"),
        sa.Column(
            "has_pending_participants",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "created_by_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_expenses_created_by"),
            nullable=False,
        ),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_expenses"),
        sa.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        sa.CheckConstraint("LENGTH(TRIM(title)) > 0", name="ck_expenses_title_nonempty"),
        _enum_check("payer_kind", PARTICIPANT_KINDS, "ck_expenses_payer_kind"),
        _enum_check("split_mode", SPLIT_MODES, "ck_expenses_split_mode"),
        _enum_check("category", CATEGORIES, "ck_expenses_category"),
    )
    op.create_index("ix_expenses_group_id", "expenses", ["group_id"])
    op.create_index("idx_expenses_payer", "expenses", ["payer_kind", "payer_id"])
    # Reconciliation looks up expenses still touching a pending participant.
    op.create_index(
        "ix_expenses_has_pending_participants",
        "expenses",
        ["has_pending_participants"],
    )

    # ── splits ─────────────────────────────────────────────────────────────
    op.create_table(
        "splits",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "expense_id",
            sa.Integer(),
            sa.ForeignKey("expenses.id", ondelete="CASCADE", name="fk_splits_expense"),
            nullable=False,
        ),
        sa.Column("participant_kind", sa.String(32), nullable=False),
        sa.Column("participant_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_splits"),
        sa.UniqueConstraint(
            "expense_id",
            "participant_kind",
            "participant_id",
            name="uq_splits_expense_participant",
        ),
        sa.CheckConstraint("amount >= 0", name="ck_splits_amount_non_negative"),
        _enum_check("participant_kind", PARTICIPANT_KINDS, "ck_splits_participant_kind"),
    )
    op.create_index("ix_splits_expense_id", "splits", ["expense_id"])
    op.create_index("idx_splits_participant", "splits", ["participant_kind", "participant_id"])

    # ── settlements ────────────────────────────────────────────────────────
    op.create_table(
        "settlements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_settlements_group"),
            nullable=False,
        ),
        sa.Column("from_participant_kind", sa.String(32), nullable=False),
        sa.Column("from_participant_id", sa.Integer(), nullable=False),
        sa.Column("to_participant_kind", sa.String(32), nullable=False),
        sa.Column("to_participant_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "expense_id",
            sa.Integer(),
            sa.ForeignKey("expenses.id", ondelete="SET NULL", name="fk_settlements_expense"),
            nullable=True,
        ),
        sa.Column("method", sa.String(32), nullable=False, server_default="cash"),
        sa.Column("note", sa.String(300), nullable=False, server_default=""),
        sa.Column("status", sa.String(32), nullable=False, server_default="completed"),
        sa.Column(
            "credit_score_processed",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("last_penalty_tier", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reminder_count", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_settlements"),
        sa.CheckConstraint("amount > 0", name="ck_settlements_amount_positive"),
        sa.CheckConstraint(
            "NOT (from_participant_kind = to_participant_kind "
            "AND from_participant_id = to_participant_id)",
            name="ck_settlements_no_self_settlement",
        ),
        sa.CheckConstraint(
            "last_penalty_tier IN (0, 3, 7, 15)",
            name="ck_settlements_penalty_tier",
        ),
        sa.CheckConstraint("reminder_count >= 0", name="ck_settlements_reminders"),
        _enum_check("from_participant_kind", PARTICIPANT_KINDS, "ck_settlements_from_kind"),
        _enum_check("to_participant_kind", PARTICIPANT_KINDS, "ck_settlements_to_kind"),
        _enum_check("method", SETTLEMENT_METHODS, "ck_settlements_method"),
        _enum_check("status", SETTLEMENT_STATUSES, "ck_settlements_status"),
    )
    op.create_index("idx_settlements_group_created", "settlements", ["group_id", "created_at"])
    # The delay scanner reads pending settlements per debtor.
    op.create_index(
        "idx_settlements_debtor_status",
        "settlements",
        ["from_participant_kind", "from_participant_id", "status"],
    )

    # ── user_credit_states ─────────────────────────────────────────────────
    # version is the optimistic-lock counter (SQLAlchemy version_id_col).
    op.create_table(
        "user_credit_states",
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_user_credit_states_user"),
            nullable=False,
        ),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("consecutive_on_time", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False),
        _created_at("updated_at"),
        sa.PrimaryKeyConstraint("user_id", name="pk_user_credit_states"),
        sa.CheckConstraint(
            "score BETWEEN 300 AND 900",
            name="ck_user_credit_states_score_range",
        ),
        sa.CheckConstraint("consecutive_on_time >= 0", name="ck_user_credit_states_streak"),
    )

    # ── credit_history ─────────────────────────────────────────────────────
    # UNIQUE(user_id, dedupe_key) makes a repeated (settlement, reason) event
    # fail at the database even if two writers race past the service check.
    # NULL dedupe keys (reminder_ignored) never collide.
    op.create_table(
        "credit_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_credit_history_user"),
            nullable=False,
        ),
        sa.Column("old_score", sa.Integer(), nullable=False),
        sa.Column("new_score", sa.Integer(), nullable=False),
        sa.Column("change_amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(32), nullable=False),
        sa.Column(
            "related_settlement_id",
            sa.Integer(),
            sa.ForeignKey(
                "settlements.id",
                ondelete="RESTRICT",
                name="fk_credit_history_settlement",
            ),
            nullable=True,
        ),
        sa.Column("dedupe_key", sa.String(64), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_credit_history"),
        sa.UniqueConstraint("user_id", "dedupe_key", name="uq_credit_history_dedupe"),
        _enum_check("reason", CREDIT_REASONS, "ck_credit_history_reason"),
    )
    op.create_index(
        "idx_credit_history_user_created",
        "credit_history",
        ["user_id", "created_at"],
    )

    # ── activities ─────────────────────────────────────────────────────────
    op.create_table(
        "activities",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="CASCADE", name="fk_activities_group"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_activities_user"),
            nullable=False,
        ),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column("target_type", sa.String(32), nullable=True),
        sa.Column("target_id", sa.Integer(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_activities"),
        _enum_check("action", ACTIVITY_ACTIONS, "ck_activities_action"),
    )
    op.create_index("idx_activities_group_created", "activities", ["group_id", "created_at"])


def downgrade() -> None:
    """Drops everything created in upgrade(), in reverse dependency order."""
    op.drop_index("idx_activities_group_created", table_name="activities")
    op.drop_table("activities")

    op.drop_index("idx_credit_history_user_created", table_name="credit_history")
    op.drop_table("credit_history")

    op.drop_table("user_credit_states")

    op.drop_index("idx_settlements_debtor_status", table_name="settlements")
    op.drop_index("idx_settlements_group_created", table_name="settlements")
    op.drop_table("settlements")

    op.drop_index("idx_splits_participant", table_name="splits")
    op.drop_index("ix_splits_expense_id", table_name="splits")
    op.drop_table("splits")

    op.drop_index("ix_expenses_has_pending_participants", table_name="expenses")
    op.drop_index("idx_expenses_payer", table_name="expenses")
    op.drop_index("ix_expenses_group_id", table_name="expenses")
    op.drop_table("expenses")

    op.drop_index("ix_pending_memberships_group_id", table_name="pending_memberships")
    op.drop_index("ix_pending_memberships_pending_member_id", table_name="pending_memberships")
    op.drop_table("pending_memberships")

    op.drop_index("ix_pending_members_status", table_name="pending_members")
    op.drop_table("pending_members")

    op.drop_index("ix_memberships_group_id", table_name="memberships")
    op.drop_index("ix_memberships_user_id", table_name="memberships")
    op.drop_table("memberships")

    op.drop_table("groups")
    op.drop_table("users")
