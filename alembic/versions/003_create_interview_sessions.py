"""003: create interview_sessions

Revision ID: 003
Revises: 002
Create Date: 2026-09-29
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE interview_sessions (
            id                      UUID            PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id                 VARCHAR(64)     NOT NULL,
            call_id                 VARCHAR(128),
            duration_minutes        INTEGER         NOT NULL,
            status                  VARCHAR(20)     NOT NULL DEFAULT 'created',
            credit_state            VARCHAR(20)     NOT NULL DEFAULT 'reserved',
            credits_blocked         NUMERIC(12, 2),
            credits_deducted        NUMERIC(12, 2),
            credits_refunded        NUMERIC(12, 2),
            actual_duration_seconds INTEGER,
            started_at              TIMESTAMPTZ,
            ended_at                TIMESTAMPTZ,
            created_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_interview_sessions_call_id UNIQUE (call_id),
            CONSTRAINT ck_interview_sessions_status CHECK (
                status IN ('created', 'started', 'completed', 'failed')
            ),
            CONSTRAINT ck_interview_sessions_credit_state CHECK (
                credit_state IN ('reserved', 'settled', 'refunded')
            ),
            CONSTRAINT ck_interview_sessions_duration_gt_0 CHECK (duration_minutes > 0),
            CONSTRAINT ck_interview_sessions_settled_fields CHECK (
                credit_state = 'reserved'
                OR (credits_deducted IS NOT NULL AND credits_refunded IS NOT NULL)
            )
        );
    """)
    op.execute("""
        CREATE TRIGGER trg_interview_sessions_updated_at
            BEFORE UPDATE ON interview_sessions
            FOR EACH ROW EXECUTE FUNCTION fn_set_updated_at();
    """)
    op.execute(
        "CREATE INDEX idx_interview_sessions_user_time "
        "ON interview_sessions (user_id, created_at DESC);"
    )
    op.execute("""
        CREATE INDEX idx_interview_sessions_reserved
        ON interview_sessions (created_at)
        WHERE credit_state = 'reserved';
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS interview_sessions CASCADE;")
