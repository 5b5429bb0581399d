"""Challenge catalog, XP ledger and progress tables.

Revision ID: 001_progress_ledger
Revises: None
Create Date: 2026-10-16
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_progress_ledger"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Catalog ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS challenges (
            id SERIAL PRIMARY KEY,
            slug VARCHAR(128) UNIQUE NOT NULL,
            title VARCHAR(256) NOT NULL,
            difficulty VARCHAR(16) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_challenges_difficulty CHECK (difficulty IN ('easy', 'medium', 'hard'))
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS challenge_objectives (
            id SERIAL PRIMARY KEY,
            challenge_id INTEGER NOT NULL REFERENCES challenges(id) ON DELETE CASCADE,
            objective_key VARCHAR(128) NOT NULL,
            title VARCHAR(256) NOT NULL,
            description TEXT,
            category VARCHAR(32) NOT NULL DEFAULT 'status',
            CONSTRAINT uq_challenge_objective_key UNIQUE (challenge_id, objective_key)
        )
    """)

    # --- XP Ledger (append-only) ---
    # dedupe_key: challenge_completed:{user}:{challenge_id}, first_challenge:{user},
    # daily_streak:{user}:{YYYY-MM-DD}
    op.execute("""
        CREATE TABLE IF NOT EXISTS xp_transactions (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            action VARCHAR(32) NOT NULL,
            xp_amount INTEGER NOT NULL,
            challenge_id INTEGER REFERENCES challenges(id) ON DELETE SET NULL,
            description VARCHAR(256),
            created_at TIMESTAMPTZ NOT NULL,
            dedupe_key VARCHAR(128) UNIQUE,
            CONSTRAINT ck_xp_transactions_action
                CHECK (action IN ('challenge_completed', 'first_challenge', 'daily_streak')),
            CONSTRAINT ck_xp_transactions_amount
                CHECK (xp_amount > 0 OR (action = 'daily_streak' AND xp_amount >= 0))
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_xp_transactions_user_id
        ON xp_transactions(user_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_xp_transactions_user_action_time
        ON xp_transactions(user_id, action, created_at DESC)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS user_xp_totals (
            user_id VARCHAR(64) PRIMARY KEY,
            total_xp BIGINT NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS challenge_completion_idempotency (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            challenge_id INTEGER NOT NULL REFERENCES challenges(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT uq_completion_idempotency_user_challenge UNIQUE (user_id, challenge_id)
        )
    """)

    # --- Progress (resettable) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_progress (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            challenge_id INTEGER NOT NULL REFERENCES challenges(id) ON DELETE CASCADE,
            status VARCHAR(16) NOT NULL DEFAULT 'not_started',
            started_at TIMESTAMPTZ NOT NULL,
            completed_at TIMESTAMPTZ,
            daily_limit_reached BOOLEAN NOT NULL DEFAULT false,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_user_progress_user_challenge UNIQUE (user_id, challenge_id),
            CONSTRAINT ck_user_progress_status
                CHECK (status IN ('not_started', 'in_progress', 'completed'))
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_user_progress_user_id
        ON user_progress(user_id)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS user_submissions (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            challenge_id INTEGER NOT NULL REFERENCES challenges(id) ON DELETE CASCADE,
            passed BOOLEAN NOT NULL,
            payload JSON NOT NULL,
            created_at TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_user_submissions_user_id
        ON user_submissions(user_id)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS user_submissions")
    op.execute("DROP TABLE IF EXISTS user_progress")
    op.execute("DROP TABLE IF EXISTS challenge_completion_idempotency")
    op.execute("DROP TABLE IF EXISTS user_xp_totals")
    op.execute("DROP TABLE IF EXISTS xp_transactions")
    op.execute("DROP TABLE IF EXISTS challenge_objectives")
    op.execute("DROP TABLE IF EXISTS challenges")
