"""
Token bucket calculations for the admission controller.

This module implements the classic continuous-refill token bucket:

- **Lazy Refill**: Tokens are recomputed from elapsed clock time right
  before they are read or decremented, instead of on a timer.
- **Capped**: A bucket never holds more than its capacity, so bursts are
  bounded by capacity and the sustained rate by the refill rate.
- **Never Negative**: Consumption only happens when at least the requested
  amount is available; otherwise the caller is told how long to wait.

All functions are pure. They take the current clock reading explicitly and
return new values instead of mutating the bucket, so the controller decides
when state changes.

Key functions:
    refill_bucket: Calculate refilled tokens for the elapsed time
    try_consume: Attempt to take tokens (refill, then check-and-consume)
    calculate_wait_seconds: Time until a deficit is refilled
    clamp_tokens: Lower a bucket to a server-reported remaining count
"""

import math
from dataclasses import dataclass

from .models import BucketState


@dataclass
class RefillResult:
    """Result of a bucket refill calculation."""

    new_tokens: float
    new_last_refill: float


@dataclass
class ConsumeResult:
    """Result of attempting to consume from a bucket."""

    success: bool
    new_tokens: float
    new_last_refill: float
    available: float  # tokens available before consume attempt
    wait_seconds: float  # 0 if success, time to wait if failed


def refill_bucket(
    tokens: float,
    last_refill: float,
    now: float,
    capacity: float,
    refill_rate: float,
) -> RefillResult:
    """
    Calculate refilled tokens.

    tokens = min(capacity, tokens + elapsed * refill_rate)

    Args:
        tokens: Current tokens
        last_refill: Clock reading of the last refill (seconds)
        now: Current clock reading (seconds)
        capacity: Maximum tokens
        refill_rate: Tokens per second

    Returns:
        RefillResult with new token count and timestamp
    """
    elapsed = now - last_refill
    if elapsed <= 0:
        return RefillResult(tokens, last_refill)

    return RefillResult(min(capacity, tokens + elapsed * refill_rate), now)


def calculate_wait_seconds(
    tokens: float,
    refill_rate: float,
    needed: float = 1.0,
) -> float:
    """
    Calculate seconds until ``needed`` tokens are available.

    Rounded up to whole milliseconds so a sleep of this length always
    yields enough tokens.

    Args:
        tokens: Tokens available now
        refill_rate: Tokens per second
        needed: Tokens required

    Returns:
        Seconds to wait (0.0 if already available)
    """
    deficit = needed - tokens
    if deficit <= 0:
        return 0.0
    return math.ceil(deficit / refill_rate * 1000) / 1000.0


def try_consume(
    state: BucketState,
    now: float,
    requested: float = 1.0,
) -> ConsumeResult:
    """
    Attempt to consume tokens from a bucket.

    First refills the bucket based on elapsed time, then checks if
    there's enough capacity for the request.

    Args:
        state: Current bucket state
        now: Current clock reading (seconds)
        requested: Number of tokens to consume

    Returns:
        ConsumeResult indicating success/failure and new state
    """
    refill = refill_bucket(
        tokens=state.tokens,
        last_refill=state.last_refill,
        now=now,
        capacity=state.capacity,
        refill_rate=state.refill_rate,
    )

    current = refill.new_tokens
    if current >= requested:
        return ConsumeResult(
            success=True,
            new_tokens=current - requested,
            new_last_refill=refill.new_last_refill,
            available=current,
            wait_seconds=0.0,
        )

    return ConsumeResult(
        success=False,
        new_tokens=current,
        new_last_refill=refill.new_last_refill,
        available=current,
        wait_seconds=calculate_wait_seconds(current, state.refill_rate, requested),
    )


def calculate_available(state: BucketState, now: float) -> float:
    """Tokens that would be available at ``now`` without consuming any."""
    return refill_bucket(
        tokens=state.tokens,
        last_refill=state.last_refill,
        now=now,
        capacity=state.capacity,
        refill_rate=state.refill_rate,
    ).new_tokens


def clamp_tokens(state: BucketState, remaining: float) -> float:
    """
    Lower a bucket to a remaining count reported by the server.

    Only ever lowers: another client sharing the quota can make us have
    fewer tokens than we think, never more.

    Returns:
        The new token count (never negative)
    """
    return max(0.0, min(state.tokens, remaining))
