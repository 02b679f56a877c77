"""Initial migration

Revision ID: 001
Revises:
Create Date: 2026-01-01 00:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("username", sa.String(64), nullable=True),
        sa.Column("role", sa.String(32), nullable=False, server_default="user"),
        sa.Column("is_blocked", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "challenges",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tier", sa.Integer(), nullable=False),
        sa.Column("difficulty", sa.String(16), nullable=False, server_default="beginner"),
        sa.Column("min_odds", sa.Numeric(6, 3), nullable=False),
        sa.Column("cost", sa.Numeric(18, 2), nullable=False),
        sa.Column("reset_fee", sa.Numeric(18, 2), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("current_level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("current_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("level1_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("level2_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("level3_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("level4_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("total_rewards_earned", sa.Numeric(18, 2), nullable=False, server_default="0.00"),
        sa.Column("total_pending_amount", sa.Numeric(18, 2), nullable=False, server_default="0.00"),
        sa.Column("purchased_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_reference", sa.String(128), nullable=True, unique=True),
        sa.Column("reset_from_id", sa.Integer(), sa.ForeignKey("challenges.id"), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("current_streak >= 0", name="ck_challenges_streak_non_negative"),
        sa.CheckConstraint("current_level BETWEEN 1 AND 4", name="ck_challenges_level_range"),
        sa.CheckConstraint("total_pending_amount >= 0", name="ck_challenges_pending_non_negative"),
    )
    op.create_index("ix_challenges_user_id", "challenges", ["user_id"])
    op.create_index("ix_challenges_user_status", "challenges", ["user_id", "status"])
    op.create_index("ix_challenges_status_expires", "challenges", ["status", "expires_at"])

    op.create_table(
        "challenge_rewards",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("challenge_id", sa.Integer(), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("unlocked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("challenge_id", "level", name="uq_challenge_rewards_challenge_level"),
    )
    op.create_index("ix_challenge_rewards_challenge_id", "challenge_rewards", ["challenge_id"])
    op.create_index("ix_challenge_rewards_status", "challenge_rewards", ["status"])

    op.create_table(
        "bets",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sport", sa.String(64), nullable=False),
        sa.Column("league", sa.String(128), nullable=True),
        sa.Column("matchup", sa.String(256), nullable=False),
        sa.Column("bet_type", sa.String(64), nullable=False),
        sa.Column("selection", sa.String(256), nullable=False),
        sa.Column("event_id", sa.String(128), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("odds", sa.String(16), nullable=False),
        sa.Column("odds_decimal", sa.Numeric(8, 3), nullable=False),
        sa.Column("stake", sa.Numeric(18, 2), nullable=False),
        sa.Column("result", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("profit_loss", sa.Numeric(18, 2), nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("settlement_applied_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_bets_user_id", "bets", ["user_id"])
    op.create_index("ix_bets_user_result", "bets", ["user_id", "result"])

    op.create_table(
        "challenge_bets",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("challenge_id", sa.Integer(), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("bet_id", sa.Integer(), sa.ForeignKey("bets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("min_odds", sa.Numeric(6, 3), nullable=False),
        sa.Column("difficulty", sa.String(16), nullable=False),
        sa.Column("streak_before", sa.Integer(), nullable=False),
        sa.Column("level_before", sa.Integer(), nullable=False),
        sa.Column("result", sa.String(16), nullable=True),
        sa.Column("streak_after", sa.Integer(), nullable=True),
        sa.Column("level_after", sa.Integer(), nullable=True),
        sa.Column("level_completed", sa.Integer(), nullable=True),
        sa.Column("skipped_reason", sa.String(32), nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("challenge_id", "bet_id", name="uq_challenge_bets_challenge_bet"),
    )
    op.create_index("ix_challenge_bets_challenge_id", "challenge_bets", ["challenge_id"])
    op.create_index("ix_challenge_bets_bet_id", "challenge_bets", ["bet_id"])

    op.create_table(
        "payouts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("payment_method", sa.String(16), nullable=False),
        sa.Column("payment_details_enc", sa.Text(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("external_reference", sa.String(128), nullable=True),
        sa.Column("reject_reason", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_payouts_user_id", "payouts", ["user_id"])
    op.create_index("ix_payouts_user_status", "payouts", ["user_id", "status"])
    op.create_index("ix_payouts_status", "payouts", ["status"])


def downgrade() -> None:
    op.drop_table("payouts")
    op.drop_table("challenge_bets")
    op.drop_table("bets")
    op.drop_table("challenge_rewards")
    op.drop_table("challenges")
    op.drop_table("users")
