# src/ic_credits/domain/invariants.py
"""Ledger invariant checks.

INV-B: 0 <= blocked_credits <= credits for every account
INV-R: blocked_credits == SUM(credits_blocked) over the user's reserved sessions
INV-S: settled sessions satisfy deducted + refunded == blocked (tolerance 0.01)
"""
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.ic_credits.domain.models import CreditAccount

logger = logging.getLogger(__name__)

_BALANCE_BOUNDS_SQL = text("""
    SELECT user_id, credits, blocked_credits
    FROM credit_accounts
    WHERE blocked_credits < 0 OR blocked_credits > credits
""")

_RESERVED_SUM_SQL = text("""
    SELECT a.user_id, a.blocked_credits, COALESCE(s.outstanding, 0) AS outstanding
    FROM credit_accounts a
    LEFT JOIN (
        SELECT user_id, SUM(credits_blocked) AS outstanding
        FROM interview_sessions
        WHERE credit_state = 'reserved'
        GROUP BY user_id
    ) s ON s.user_id = a.user_id
    WHERE a.blocked_credits <> COALESCE(s.outstanding, 0)
""")

_CONSERVATION_SQL = text("""
    SELECT id, credits_blocked, credits_deducted, credits_refunded
    FROM interview_sessions
    WHERE credits_deducted IS NOT NULL
      AND credits_refunded IS NOT NULL
      AND ABS(credits_deducted + credits_refunded - COALESCE(credits_blocked, 0)) >= 0.01
""")


def account_violations(account: CreditAccount) -> list[str]:
    """INV-B for a single in-hand account."""
    violations: list[str] = []
    if account.blocked_credits < 0:
        violations.append(
            f"INV-B violated: user={account.user_id} blocked={account.blocked_credits} < 0"
        )
    if account.blocked_credits > account.credits:
        violations.append(
            f"INV-B violated: user={account.user_id} blocked={account.blocked_credits}"
            f" > credits={account.credits}"
        )
    return violations


async def verify_ledger_invariants(db: AsyncSession) -> list[str]:
    """Run INV-B, INV-R and INV-S over the whole store. Returns violation strings."""
    violations: list[str] = []

    for row in (await db.execute(_BALANCE_BOUNDS_SQL)).fetchall():
        violations.append(
            f"INV-B violated: user={row.user_id} credits={row.credits}"
            f" blocked={row.blocked_credits}"
        )

    for row in (await db.execute(_RESERVED_SUM_SQL)).fetchall():
        violations.append(
            f"INV-R violated: user={row.user_id} blocked={row.blocked_credits}"
            f" != reserved sessions={row.outstanding}"
        )

    for row in (await db.execute(_CONSERVATION_SQL)).fetchall():
        violations.append(
            f"INV-S violated: session={row.id} deducted={row.credits_deducted}"
            f" + refunded={row.credits_refunded} != blocked={row.credits_blocked}"
        )

    for msg in violations:
        logger.error(msg)
    return violations
