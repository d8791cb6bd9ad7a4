"""004: create payments

Revision ID: 004
Revises: 003
Create Date: 2026-09-30
"""
from typing import Sequence, Union
from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE payments (
            id                  UUID            PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id             VARCHAR(64)     NOT NULL,
            order_id            VARCHAR(64)     NOT NULL,
            plan_id             VARCHAR(32)     NOT NULL,
            amount              INTEGER         NOT NULL,
            currency            VARCHAR(8)      NOT NULL DEFAULT 'INR',
            credits             NUMERIC(12, 2)  NOT NULL,
            status              VARCHAR(20)     NOT NULL DEFAULT 'created',
            receipt_number      VARCHAR(40)     NOT NULL,
            provider_payment_id VARCHAR(64),
            payment_method      VARCHAR(32),
            paid_at             TIMESTAMPTZ,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_payments_order_id UNIQUE (order_id),
            CONSTRAINT ck_payments_status CHECK (
                status IN ('created', 'paid', 'paid_uncredited', 'failed')
            ),
            CONSTRAINT ck_payments_amount_gte_0 CHECK (amount >= 0),
            CONSTRAINT ck_payments_credits_gt_0 CHECK (credits > 0)
        );
    """)
    op.execute("""
        CREATE TRIGGER trg_payments_updated_at
            BEFORE UPDATE ON payments
            FOR EACH ROW EXECUTE FUNCTION fn_set_updated_at();
    """)
    op.execute(
        "CREATE INDEX idx_payments_user_status ON payments (user_id, status, created_at DESC);"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS payments CASCADE;")
