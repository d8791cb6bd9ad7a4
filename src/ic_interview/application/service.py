"""InterviewSessionService — session lifecycle around the credit ledger.

Start:  validate duration -> create session + Block (one transaction)
        -> create provider call. A failed call creation refunds the block.
End:    provider webhook (call_ended) or client end-call fallback. Both
        funnel into _finish(), which locks the session row and reconciles.

Settlement runs inside a savepoint: a failed settlement rolls back its
ledger entries, and the session is still marked ended.
"""

import logging
import uuid
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.ic_common.credits import ZERO
from src.ic_common.datetime_utils import from_epoch_ms, minutes_ago, utc_now
from src.ic_common.enums import (
    CreditState,
    LedgerErrorCode,
    SessionStatus,
    SettlementAction,
    SettlementTrigger,
)
from src.ic_common.errors import (
    CallCreationFailedError,
    CallProviderError,
    InsufficientCreditsError,
    InvalidDurationError,
    LedgerOperationError,
    SessionNotFoundError,
)
from src.ic_credits.application.reconciliation import ReconciliationService
from src.ic_credits.application.schemas import ReconciliationResult
from src.ic_credits.application.service import CreditLedgerService
from src.ic_credits.domain.converter import (
    max_duration_minutes,
    suggest_durations,
    validate_for_duration,
)
from src.ic_credits.domain.repository import SessionCreditsRepositoryProtocol
from src.ic_credits.infrastructure.session_credits import SessionCreditsRepository
from src.ic_interview.application.schemas import (
    CallEvent,
    CallEventAck,
    EndInterviewResponse,
    InterviewSessionResponse,
    StaleReleaseReport,
    StartInterviewResponse,
)
from src.ic_interview.domain.models import CallTimes, InterviewSession, compute_elapsed_seconds
from src.ic_interview.domain.repository import (
    CallProviderProtocol,
    InterviewSessionRepositoryProtocol,
)
from src.ic_interview.infrastructure.call_provider import HttpCallProvider
from src.ic_interview.infrastructure.persistence import InterviewSessionRepository

logger = logging.getLogger(__name__)

_STALE_BATCH = 100


class InterviewSessionService:
    def __init__(
        self,
        repo: InterviewSessionRepositoryProtocol | None = None,
        ledger: CreditLedgerService | None = None,
        provider: CallProviderProtocol | None = None,
        session_credits: SessionCreditsRepositoryProtocol | None = None,
        reconciler: ReconciliationService | None = None,
    ) -> None:
        self._repo: InterviewSessionRepositoryProtocol = repo or InterviewSessionRepository()
        self._ledger = ledger or CreditLedgerService()
        self._provider: CallProviderProtocol = provider or HttpCallProvider()
        self._session_credits: SessionCreditsRepositoryProtocol = (
            session_credits or SessionCreditsRepository()
        )
        self._reconciler = reconciler or ReconciliationService(
            ledger=self._ledger, sessions=self._session_credits
        )

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start_session(
        self, db: AsyncSession, user_id: str, duration_minutes: int
    ) -> StartInterviewResponse:
        if duration_minutes <= 0:
            raise InvalidDurationError(duration_minutes)

        balance = await self._ledger.get_balance(db, user_id, open_if_missing=True)
        check = validate_for_duration(balance.available_credits, duration_minutes)
        if not check.valid:
            raise InsufficientCreditsError(
                check.credits_needed,
                check.credits_available,
                check.suggested_durations,
                check.max_duration,
            )

        session_id = str(uuid.uuid4())
        needed = check.credits_needed
        try:
            await self._repo.create(
                db,
                InterviewSession(
                    id=session_id,
                    user_id=user_id,
                    duration_minutes=duration_minutes,
                    status=SessionStatus.CREATED.value,
                    credit_state=CreditState.RESERVED.value,
                    credits_blocked=needed,
                ),
            )
            block = await self._ledger.block_credits(
                db,
                user_id,
                needed,
                session_id,
                {"duration_minutes": duration_minutes},
                commit=False,
            )
            if not block.success:
                self._raise_block_failure(block.error, block.message, block.available, needed)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        try:
            call = await self._provider.create_call(session_id, user_id, duration_minutes)
        except CallProviderError as exc:
            logger.error(
                "Call creation failed: session=%s user=%s error=%s", session_id, user_id, exc
            )
            await self._undo_reservation(db, session_id, user_id, needed)
            raise CallCreationFailedError() from exc

        try:
            await self._repo.attach_call(db, session_id, call.call_id)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Interview started: session=%s user=%s call=%s duration=%d blocked=%s",
            session_id, user_id, call.call_id, duration_minutes, needed,
        )
        return StartInterviewResponse(
            session_id=session_id,
            call_id=call.call_id,
            access_token=call.access_token,
            duration_minutes=duration_minutes,
            credits_blocked=needed,
            available_credits=block.new_balance,
        )

    @staticmethod
    def _raise_block_failure(
        error: LedgerErrorCode | None,
        message: str | None,
        available: Decimal | None,
        needed: Decimal,
    ) -> None:
        if error == LedgerErrorCode.INSUFFICIENT_CREDITS:
            # Lost a race with another reservation after the pre-check
            available = available or ZERO
            raise InsufficientCreditsError(
                needed, available, suggest_durations(available), max_duration_minutes(available)
            )
        raise LedgerOperationError(error.value if error else "storage_failure", message or "")

    async def _undo_reservation(
        self, db: AsyncSession, session_id: str, user_id: str, amount: Decimal
    ) -> None:
        try:
            refund = await self._ledger.refund_blocked_credits(
                db, user_id, amount, session_id, reason="call_creation_failed", commit=False
            )
            if not refund.success:
                await db.rollback()
                logger.critical(
                    "Reservation NOT restored after failed call: session=%s user=%s "
                    "amount=%s error=%s",
                    session_id, user_id, amount, refund.error,
                )
                return
            await self._session_credits.record_settlement(
                db, session_id, ZERO, amount, CreditState.REFUNDED
            )
            await self._repo.mark_ended(db, session_id, SessionStatus.FAILED, None, utc_now())
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    # ------------------------------------------------------------------
    # End
    # ------------------------------------------------------------------

    async def end_session(
        self, db: AsyncSession, user_id: str, session_id: str
    ) -> EndInterviewResponse:
        """Client fallback for when the provider webhook is late or lost."""
        session = await self._repo.get_by_id(db, session_id)
        if session is None or session.user_id != user_id:
            raise SessionNotFoundError(session_id)

        times: CallTimes | None = None
        if session.call_id:
            try:
                times = await self._provider.get_call(session.call_id)
            except CallProviderError as exc:
                logger.warning(
                    "Could not fetch call times: session=%s call=%s error=%s",
                    session_id, session.call_id, exc,
                )
        return await self._finish(
            db, session_id, compute_elapsed_seconds(times), SettlementTrigger.END_CALL
        )

    async def handle_call_event(self, db: AsyncSession, event: CallEvent) -> CallEventAck:
        call = event.call
        if call is None or not call.call_id:
            logger.warning("Call event without call_id: event=%s", event.event)
            return CallEventAck(event=event.event, handled=False)

        if event.event == "call_started":
            started_at = from_epoch_ms(call.start_timestamp) or utc_now()
            try:
                session = await self._repo.mark_started(db, call.call_id, started_at)
                await db.commit()
            except Exception:
                await db.rollback()
                raise
            return CallEventAck(
                event=event.event,
                handled=session is not None,
                session_id=session.id if session else None,
            )

        if event.event == "call_ended":
            session = await self._repo.get_by_call_id(db, call.call_id)
            if session is None:
                logger.warning("call_ended for unknown call: call=%s", call.call_id)
                return CallEventAck(event=event.event, handled=False)
            elapsed = compute_elapsed_seconds(
                CallTimes(call.start_timestamp, call.end_timestamp)
            )
            ended = await self._finish(db, session.id, elapsed, SettlementTrigger.WEBHOOK)
            return CallEventAck(
                event=event.event,
                handled=True,
                session_id=session.id,
                settlement=ended.model_dump(mode="json"),
            )

        logger.info("Ignoring call event: event=%s call=%s", event.event, call.call_id)
        return CallEventAck(event=event.event, handled=False)

    async def _finish(
        self,
        db: AsyncSession,
        session_id: str,
        elapsed_seconds: int | None,
        trigger: SettlementTrigger,
    ) -> EndInterviewResponse:
        try:
            session = await self._repo.get_for_update(db, session_id)
            if session is None:
                raise SessionNotFoundError(session_id)

            savepoint = await db.begin_nested()
            result = await self._reconciler.reconcile(db, session_id, elapsed_seconds, trigger)
            if result.success:
                await savepoint.commit()
            else:
                await savepoint.rollback()
                logger.error(
                    "Settlement failed, session ended unsettled: session=%s action=%s "
                    "error=%s message=%s",
                    session_id, result.action.value, result.error, result.message,
                )

            status = (
                SessionStatus.FAILED
                if result.action == SettlementAction.REFUND_ALL and result.success
                else SessionStatus.COMPLETED
            )
            stored = await self._repo.mark_ended(
                db, session_id, status, elapsed_seconds, utc_now()
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        return self._end_response(stored, result)

    @staticmethod
    def _end_response(
        session: InterviewSession, result: ReconciliationResult
    ) -> EndInterviewResponse:
        # status and duration as stored; the first end of a session wins
        return EndInterviewResponse(
            session_id=session.id,
            status=session.status,
            action=result.action,
            settled=result.success,
            already_processed=result.already_processed,
            actual_duration_seconds=session.actual_duration_seconds,
            credits_deducted=result.credits_deducted,
            credits_refunded=result.credits_refunded,
        )

    # ------------------------------------------------------------------
    # Queries / maintenance
    # ------------------------------------------------------------------

    async def get_session(
        self, db: AsyncSession, user_id: str, session_id: str
    ) -> InterviewSessionResponse:
        session = await self._repo.get_by_id(db, session_id)
        if session is None or session.user_id != user_id:
            raise SessionNotFoundError(session_id)
        return InterviewSessionResponse.from_domain(session)

    async def release_stale_reservations(
        self, db: AsyncSession, older_than_minutes: int | None = None
    ) -> StaleReleaseReport:
        """Refund reservations of sessions that never ended.

        A session whose call was never created, or whose end was never
        reported, would otherwise hold its credits forever.
        """
        minutes = older_than_minutes or settings.STALE_RESERVATION_MINUTES
        cutoff = minutes_ago(minutes)
        try:
            stale = await self._repo.list_stale_reserved(db, cutoff, _STALE_BATCH)
        except Exception:
            await db.rollback()
            raise

        released = 0
        failed: list[str] = []
        for session in stale:
            if await self._release_one(db, session):
                released += 1
            else:
                failed.append(session.id)
        try:
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Stale reservation sweep: cutoff=%s examined=%d released=%d failed=%d",
            cutoff.isoformat(), len(stale), released, len(failed),
        )
        return StaleReleaseReport(
            cutoff=cutoff.isoformat(), examined=len(stale), released=released, failed=failed
        )

    async def _release_one(self, db: AsyncSession, session: InterviewSession) -> bool:
        amount = session.credits_blocked or ZERO
        savepoint = await db.begin_nested()
        if amount > 0:
            refund = await self._ledger.refund_blocked_credits(
                db,
                session.user_id,
                amount,
                session.id,
                reason="stale_reservation",
                metadata={"trigger": SettlementTrigger.STALE_SWEEP.value},
                commit=False,
            )
            if not refund.success:
                await savepoint.rollback()
                logger.error(
                    "Stale reservation not released: session=%s user=%s error=%s",
                    session.id, session.user_id, refund.error,
                )
                return False
        await self._session_credits.record_settlement(
            db, session.id, ZERO, amount, CreditState.REFUNDED
        )
        await self._repo.mark_ended(db, session.id, SessionStatus.FAILED, None, utc_now())
        await savepoint.commit()
        return True
