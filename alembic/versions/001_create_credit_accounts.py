"""001: create credit_accounts

Revision ID: 001
Revises:
Create Date: 2026-09-28
"""
from typing import Sequence, Union
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE OR REPLACE FUNCTION fn_set_updated_at()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = NOW();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TABLE credit_accounts (
            user_id             VARCHAR(64)     PRIMARY KEY,
            credits             NUMERIC(12, 2)  NOT NULL DEFAULT 0,
            blocked_credits     NUMERIC(12, 2)  NOT NULL DEFAULT 0,
            version             BIGINT          NOT NULL DEFAULT 0,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_credit_accounts_blocked_gte_0     CHECK (blocked_credits >= 0),
            CONSTRAINT ck_credit_accounts_blocked_lte_total CHECK (blocked_credits <= credits)
        );
    """)
    op.execute("""
        CREATE TRIGGER trg_credit_accounts_updated_at
            BEFORE UPDATE ON credit_accounts
            FOR EACH ROW EXECUTE FUNCTION fn_set_updated_at();
    """)
    op.execute(
        "COMMENT ON TABLE credit_accounts IS "
        "'Per-user credit balance — available = credits - blocked_credits';"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS credit_accounts CASCADE;")
    op.execute("DROP FUNCTION IF EXISTS fn_set_updated_at();")
