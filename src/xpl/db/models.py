"""ORM models for the challenge catalog, progress records and the XP ledger.

The ledger (``xp_transactions``) is append-only and is the source of truth for
every XP-derived value. ``user_xp_totals`` is a denormalized read cache that
must always equal the ledger sum. ``user_progress`` and ``user_submissions``
may be deleted freely; ``challenge_completion_idempotency`` never is.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from xpl.db.base import Base

# BIGINT primary keys only autoincrement on SQLite when declared INTEGER.
_BigId = BigInteger().with_variant(Integer(), "sqlite")

XP_ACTIONS = ("challenge_completed", "first_challenge", "daily_streak")
PROGRESS_STATUSES = ("not_started", "in_progress", "completed")
DIFFICULTIES = ("easy", "medium", "hard")


def _in_list(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


# ---------------------------------------------------------------------------
# Challenge catalog (read model of the external content system)
# ---------------------------------------------------------------------------


class Challenge(Base):
    """Challenge catalog entry: slug lookup plus difficulty tier."""

    __tablename__ = "challenges"
    __table_args__ = (
        CheckConstraint(_in_list("difficulty", DIFFICULTIES), name="ck_challenges_difficulty"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    objectives: Mapped[list[ChallengeObjective]] = relationship(
        "ChallengeObjective",
        back_populates="challenge",
        order_by="ChallengeObjective.id",
        cascade="all, delete-orphan",
    )


class ChallengeObjective(Base):
    """Registered objective for a challenge: UNIQUE(challenge_id, objective_key)."""

    __tablename__ = "challenge_objectives"
    __table_args__ = (
        UniqueConstraint("challenge_id", "objective_key", name="uq_challenge_objective_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False
    )
    objective_key: Mapped[str] = mapped_column(String(128), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False, server_default="status")

    challenge: Mapped[Challenge] = relationship("Challenge", back_populates="objectives")


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class XPTransaction(Base):
    """Immutable XP event log.

    ``dedupe_key`` carries the uniqueness rules: one ``challenge_completed``
    row per (user, challenge), one ``first_challenge`` row per user and one
    ``daily_streak`` row per user per UTC day.
    """

    __tablename__ = "xp_transactions"
    __table_args__ = (
        CheckConstraint(_in_list("action", XP_ACTIONS), name="ck_xp_transactions_action"),
        CheckConstraint(
            "xp_amount > 0 OR (action = 'daily_streak' AND xp_amount >= 0)",
            name="ck_xp_transactions_amount",
        ),
        Index("idx_xp_transactions_user_action_time", "user_id", "action", "created_at"),
    )

    id: Mapped[int] = mapped_column(_BigId, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    xp_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    challenge_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("challenges.id", ondelete="SET NULL"), nullable=True
    )
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    dedupe_key: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)


class UserXPTotal(Base):
    """Denormalized XP total: single row per user, O(1) reads."""

    __tablename__ = "user_xp_totals"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    total_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CompletionIdempotency(Base):
    """Reward settlement marker: UNIQUE(user_id, challenge_id), never deleted."""

    __tablename__ = "challenge_completion_idempotency"
    __table_args__ = (
        UniqueConstraint("user_id", "challenge_id", name="uq_completion_idempotency_user_challenge"),
    )

    id: Mapped[int] = mapped_column(_BigId, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    challenge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Progress (resettable)
# ---------------------------------------------------------------------------


class UserProgress(Base):
    """Per-challenge progress: UNIQUE(user_id, challenge_id) so upserts are atomic."""

    __tablename__ = "user_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "challenge_id", name="uq_user_progress_user_challenge"),
        CheckConstraint(_in_list("status", PROGRESS_STATUSES), name="ck_user_progress_status"),
    )

    id: Mapped[int] = mapped_column(_BigId, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    challenge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="not_started")
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    daily_limit_reached: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=false(), default=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class UserSubmission(Base):
    """Submission audit trail: every attempt, pass or fail."""

    __tablename__ = "user_submissions"

    id: Mapped[int] = mapped_column(_BigId, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    challenge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False
    )
    passed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    payload: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
