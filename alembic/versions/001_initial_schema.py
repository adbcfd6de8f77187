"""Initial schema: users, charts, arenas, support, ledger, notifications.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            username VARCHAR(32) UNIQUE NOT NULL,
            email VARCHAR(320) UNIQUE,
            display_name VARCHAR(64) NOT NULL,
            avatar_url TEXT,
            country_code VARCHAR(2) NOT NULL DEFAULT 'US',
            reputation DOUBLE PRECISION NOT NULL DEFAULT 4.5,
            review_count INTEGER NOT NULL DEFAULT 1,
            is_verified BOOLEAN NOT NULL DEFAULT FALSE,
            is_banned BOOLEAN NOT NULL DEFAULT FALSE,
            charts_created INTEGER NOT NULL DEFAULT 0,
            charts_won INTEGER NOT NULL DEFAULT 0,
            balance BIGINT NOT NULL DEFAULT 0,
            total_earned BIGINT NOT NULL DEFAULT 0,
            total_supported BIGINT NOT NULL DEFAULT 0,
            status VARCHAR(16) NOT NULL DEFAULT 'offline',
            last_seen TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_users_balance_non_negative CHECK (balance >= 0)
        )
    """)

    # --- Charts ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS charts (
            id BIGSERIAL PRIMARY KEY,
            creator_id BIGINT NOT NULL REFERENCES users(id),
            title VARCHAR(100) NOT NULL,
            description VARCHAR(500) NOT NULL DEFAULT '',
            game VARCHAR(64) NOT NULL,
            difficulty VARCHAR(16) NOT NULL DEFAULT 'intermediate',
            entry_fee BIGINT NOT NULL,
            prize_pool BIGINT NOT NULL DEFAULT 0,
            status VARCHAR(16) NOT NULL DEFAULT 'open',
            participant_count INTEGER NOT NULL DEFAULT 0,
            max_participants INTEGER NOT NULL DEFAULT 2,
            min_participants INTEGER NOT NULL DEFAULT 2,
            time_limit INTEGER NOT NULL DEFAULT 5,
            win_score INTEGER NOT NULL DEFAULT 100,
            starts_at TIMESTAMPTZ NOT NULL,
            ends_at TIMESTAMPTZ,
            total_donations BIGINT NOT NULL DEFAULT 0,
            total_shoutouts INTEGER NOT NULL DEFAULT 0,
            tags JSONB NOT NULL DEFAULT '[]'::jsonb,
            winner_id BIGINT REFERENCES users(id),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_charts_participants_capped CHECK (participant_count <= max_participants)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_charts_status ON charts(status)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS chart_participants (
            id BIGSERIAL PRIMARY KEY,
            chart_id BIGINT NOT NULL REFERENCES charts(id),
            user_id BIGINT NOT NULL REFERENCES users(id),
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_chart_participants_chart_user UNIQUE (chart_id, user_id)
        )
    """)

    # --- Arenas ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS arenas (
            id BIGSERIAL PRIMARY KEY,
            chart_id BIGINT UNIQUE NOT NULL REFERENCES charts(id),
            status VARCHAR(16) NOT NULL DEFAULT 'waiting',
            current_round INTEGER NOT NULL DEFAULT 1,
            total_rounds INTEGER NOT NULL DEFAULT 3,
            game_state JSONB NOT NULL DEFAULT '{}'::jsonb,
            winner_id BIGINT REFERENCES users(id),
            prize BIGINT,
            started_at TIMESTAMPTZ,
            ended_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_arenas_status ON arenas(status)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS arena_players (
            id BIGSERIAL PRIMARY KEY,
            arena_id BIGINT NOT NULL REFERENCES arenas(id),
            user_id BIGINT NOT NULL REFERENCES users(id),
            score INTEGER NOT NULL DEFAULT 0,
            moves INTEGER NOT NULL DEFAULT 0,
            status VARCHAR(16) NOT NULL DEFAULT 'waiting',
            joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_arena_players_arena_user UNIQUE (arena_id, user_id)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS arena_spectators (
            id BIGSERIAL PRIMARY KEY,
            arena_id BIGINT NOT NULL REFERENCES arenas(id),
            user_id BIGINT NOT NULL REFERENCES users(id),
            joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_arena_spectators_arena_user UNIQUE (arena_id, user_id)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS arena_chat (
            id BIGSERIAL PRIMARY KEY,
            arena_id BIGINT NOT NULL REFERENCES arenas(id),
            user_id BIGINT REFERENCES users(id),
            type VARCHAR(16) NOT NULL DEFAULT 'user',
            message VARCHAR(280) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_arena_chat_arena ON arena_chat(arena_id, id)")

    # --- Donations & shoutouts ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS donations (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id),
            chart_id BIGINT NOT NULL REFERENCES charts(id),
            recipient_id BIGINT NOT NULL REFERENCES users(id),
            amount BIGINT NOT NULL,
            message VARCHAR(280) NOT NULL DEFAULT '',
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            transaction_id VARCHAR(64) UNIQUE,
            payment_method VARCHAR(16) NOT NULL DEFAULT 'balance',
            completed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS shoutouts (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id),
            chart_id BIGINT NOT NULL REFERENCES charts(id),
            recipient_id BIGINT NOT NULL REFERENCES users(id),
            message VARCHAR(280) NOT NULL DEFAULT '',
            amount BIGINT NOT NULL DEFAULT 0,
            reputation_boost DOUBLE PRECISION NOT NULL DEFAULT 0.05,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS transactions (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id),
            type VARCHAR(16) NOT NULL,
            amount BIGINT NOT NULL,
            balance BIGINT NOT NULL,
            reference_type VARCHAR(16),
            reference_id BIGINT,
            description VARCHAR(256) NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'completed',
            metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_transactions_user_created
        ON transactions(user_id, created_at, id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_transactions_reference
        ON transactions(reference_type, reference_id)
    """)

    # --- Notifications ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id),
            type VARCHAR(32) NOT NULL,
            title VARCHAR(256) NOT NULL,
            message TEXT NOT NULL,
            data JSONB NOT NULL DEFAULT '{}'::jsonb,
            read BOOLEAN NOT NULL DEFAULT FALSE,
            read_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_notifications_user_created
        ON notifications(user_id, created_at)
    """)


def downgrade() -> None:
    for table in (
        "notifications",
        "transactions",
        "shoutouts",
        "donations",
        "arena_chat",
        "arena_spectators",
        "arena_players",
        "arenas",
        "chart_participants",
        "charts",
        "users",
    ):
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
