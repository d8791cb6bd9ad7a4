"""002: create credit_transactions

Revision ID: 002
Revises: 001
Create Date: 2026-09-28
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE credit_transactions (
            id                  BIGSERIAL       PRIMARY KEY,
            user_id             VARCHAR(64)     NOT NULL,
            transaction_type    VARCHAR(20)     NOT NULL,
            amount              NUMERIC(12, 2)  NOT NULL,
            balance_after       NUMERIC(12, 2)  NOT NULL,
            reference_id        VARCHAR(64),
            reference_type      VARCHAR(20),
            metadata            JSONB           NOT NULL DEFAULT '{}'::jsonb,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_credit_tx_type CHECK (
                transaction_type IN ('purchase', 'block', 'deduct', 'refund', 'adjustment')
            ),
            CONSTRAINT ck_credit_tx_reference_type CHECK (
                reference_type IS NULL OR reference_type IN ('interview', 'payment', 'manual')
            ),
            CONSTRAINT ck_credit_tx_balance_gte_0 CHECK (balance_after >= 0)
        );
    """)
    op.execute(
        "CREATE INDEX idx_credit_tx_user_time ON credit_transactions (user_id, created_at DESC);"
    )
    op.execute("""
        CREATE INDEX idx_credit_tx_reference
        ON credit_transactions (reference_type, reference_id)
        WHERE reference_id IS NOT NULL;
    """)
    op.execute(
        "COMMENT ON TABLE credit_transactions IS "
        "'Credit ledger — append-only; amount is signed, balance_after is available credits';"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS credit_transactions CASCADE;")
