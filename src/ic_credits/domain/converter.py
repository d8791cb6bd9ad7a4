"""Duration <-> credit conversion. Pure functions, no I/O.

Rate: 10 credits = 1 minute. Usage is rounded UP to the next 15-second
increment before billing.
"""

import math
from dataclasses import dataclass, field
from decimal import Decimal

from src.ic_common.credits import ZERO, to_credits

CREDITS_PER_MINUTE = 10
ROUNDING_INTERVAL_SECONDS = 15
STANDARD_DURATIONS: tuple[int, ...] = (3, 5, 8, 10)


@dataclass
class DurationCheck:
    valid: bool
    credits_needed: Decimal
    credits_available: Decimal
    suggested_durations: list[int] | None = field(default=None)
    max_duration: int | None = None


def credits_for_duration(minutes: int) -> Decimal:
    """Credits to reserve for a planned interview: 5 -> 50, 8 -> 80."""
    return to_credits(minutes * CREDITS_PER_MINUTE)


def credits_from_elapsed_seconds(seconds: int) -> Decimal:
    """Credits for actual usage, rounded up to the next 15 s.

    125 s -> 135 s -> 22.5 credits; 150 s -> 25; 305 s -> 52.5.
    """
    if seconds < 0:
        raise ValueError(f"Elapsed seconds must be >= 0, got {seconds}")
    intervals = math.ceil(seconds / ROUNDING_INTERVAL_SECONDS)
    rounded_seconds = intervals * ROUNDING_INTERVAL_SECONDS
    return to_credits(Decimal(rounded_seconds) * CREDITS_PER_MINUTE / 60)


def max_duration_minutes(credits: Decimal) -> int:
    """Longest whole-minute interview the credits cover: 35 -> 3, 85 -> 8."""
    if credits <= 0:
        return 0
    return int(to_credits(credits) // CREDITS_PER_MINUTE)


def suggest_durations(available_credits: Decimal) -> list[int]:
    """Standard durations that fit, else the max whole minute, else nothing."""
    max_minutes = max_duration_minutes(available_credits)
    suggestions = [d for d in STANDARD_DURATIONS if d <= max_minutes]
    if not suggestions and max_minutes > 0:
        return [max_minutes]
    return suggestions


def validate_for_duration(available_credits: Decimal, minutes: int) -> DurationCheck:
    needed = credits_for_duration(minutes)
    available = to_credits(available_credits)
    if available >= needed:
        return DurationCheck(valid=True, credits_needed=needed, credits_available=available)
    return DurationCheck(
        valid=False,
        credits_needed=needed,
        credits_available=available,
        suggested_durations=suggest_durations(available),
        max_duration=max_duration_minutes(available),
    )


def available_credits(total: Decimal, blocked: Decimal) -> Decimal:
    return max(ZERO, to_credits(total) - to_credits(blocked))


def format_credits_as_time(credits: Decimal) -> str:
    """50 -> '5 minutes', 10 -> '1 minute', 85 -> '8.5 minutes'."""
    minutes = to_credits(credits) / CREDITS_PER_MINUTE
    if minutes == minutes.to_integral_value():
        whole = int(minutes)
        return f"{whole} minute{'' if whole == 1 else 's'}"
    return f"{minutes:.1f} minutes"


def format_elapsed(seconds: int) -> str:
    """125 -> '02:05'."""
    mins, secs = divmod(int(seconds), 60)
    return f"{mins:02d}:{secs:02d}"
