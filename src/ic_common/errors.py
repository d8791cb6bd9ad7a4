"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Auth
  2xxx: Credits / ledger
  3xxx: Interview sessions
  4xxx: Payments
  9xxx: System
"""

from decimal import Decimal
from typing import Any


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
        data: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        self.data = data
        super().__init__(message)


# --- 1xxx: Auth ---

class InvalidCredentialsError(AppError):
    def __init__(self) -> None:
        super().__init__(1003, "Invalid or expired token", 401)


class AdminRequiredError(AppError):
    def __init__(self) -> None:
        super().__init__(1006, "Administrator access required", 403)


# --- 2xxx: Credits ---

class InsufficientCreditsError(AppError):
    def __init__(
        self,
        required: Decimal,
        available: Decimal,
        suggested_durations: list[int] | None = None,
        max_duration: int | None = None,
    ) -> None:
        self.required = required
        self.available = available
        super().__init__(
            2001,
            f"Insufficient credits: required {required}, available {available}",
            422,
            data={
                "credits_needed": str(required),
                "credits_available": str(available),
                "suggested_durations": suggested_durations or [],
                "max_duration": max_duration,
            },
        )


class CreditAccountNotFoundError(AppError):
    def __init__(self, user_id: str) -> None:
        super().__init__(2002, f"Credit account not found for user {user_id}", 404)


class ReservationNotHeldError(AppError):
    """Releasing more than is currently blocked: the reservation was already settled."""

    def __init__(self, amount: Decimal, blocked: Decimal) -> None:
        super().__init__(
            2003,
            f"Reservation not held: release {amount}, currently blocked {blocked}",
            409,
        )


class InvalidCreditAmountError(AppError):
    def __init__(self, amount: Decimal) -> None:
        super().__init__(2004, f"Credit amount must be positive, got {amount}", 422)


class LedgerOperationError(AppError):
    """A ledger operation returned a structured failure the caller cannot recover from."""

    def __init__(self, error: str, message: str) -> None:
        status = 503 if error == "storage_failure" else 409
        super().__init__(2005, message, status, data={"error": error})


# --- 3xxx: Interview sessions ---

class SessionNotFoundError(AppError):
    def __init__(self, ref: str) -> None:
        super().__init__(3001, f"Interview session not found: {ref}", 404)


class InvalidDurationError(AppError):
    def __init__(self, minutes: int) -> None:
        super().__init__(3002, f"Interview duration must be positive, got {minutes}", 422)


class CallCreationFailedError(AppError):
    def __init__(self) -> None:
        super().__init__(
            3003,
            "Failed to create interview session. Your credits have been restored.",
            502,
        )


class CallProviderError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(3004, f"Call provider error: {detail}", 502)


class InvalidCallSignatureError(AppError):
    def __init__(self) -> None:
        super().__init__(3005, "Call webhook signature invalid", 401)


# --- 4xxx: Payments ---

class PaymentNotFoundError(AppError):
    def __init__(self, ref: str) -> None:
        super().__init__(4001, f"Payment not found: {ref}", 404)


class PaymentMismatchError(AppError):
    def __init__(self) -> None:
        super().__init__(4002, "Payment ID mismatch for this order", 400)


class InvalidSignatureError(AppError):
    def __init__(self) -> None:
        super().__init__(4003, "Payment verification failed", 400)


class UnknownPlanError(AppError):
    def __init__(self, plan_id: str) -> None:
        super().__init__(4004, f"Unknown pricing plan: {plan_id}", 422)


class PaymentCreditFailedError(AppError):
    def __init__(self, payment_id: str) -> None:
        super().__init__(
            4005,
            "Payment successful but account update failed. "
            f"Please contact support with your payment ID: {payment_id}",
            500,
            data={"payment_id": payment_id},
        )


# --- 9xxx: System ---

class RateLimitError(AppError):
    def __init__(self) -> None:
        super().__init__(9001, "Rate limit exceeded", 429)


class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)


class LedgerStorageError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(9003, f"Ledger storage unavailable: {detail}", 503)
