#!/usr/bin/env python3
"""
Retry backoff policy for Solana RPC calls.

Exponential backoff with a capped maximum and proportional jitter. Rate-limit
responses start from a longer base delay than transient failures. Each slot's
retry sequence is independent: the controller holds configuration only.
"""

import random
import time
from typing import Callable, Optional, TypeVar

from solana_utils import (
    RpcError, RpcErrorKind, logger, MAX_RPC_RETRIES, RETRY_BASE_DELAY, RATE_LIMIT_BASE_DELAY,
    MAX_RETRY_DELAY, RETRY_JITTER_FRACTION
)

RETRYABLE_KINDS = frozenset({RpcErrorKind.RATE_LIMITED, RpcErrorKind.TRANSIENT})

T = TypeVar('T')


class BackoffController:
    """
    Decides whether and how long to wait before retrying a failed RPC call.

    ``attempt`` is the zero-based index of the retry being considered, i.e.
    the number of consecutive failures already retried for this call.
    """

    def __init__(self, max_retries: int = MAX_RPC_RETRIES,
                 base_delay: float = RETRY_BASE_DELAY,
                 rate_limit_base_delay: float = RATE_LIMIT_BASE_DELAY,
                 max_delay: float = MAX_RETRY_DELAY,
                 jitter_fraction: float = RETRY_JITTER_FRACTION,
                 rng: Optional[random.Random] = None) -> None:
        """
        Args:
            max_retries: Retry ceiling; attempts at or beyond it are refused
            base_delay: First delay for transient failures (seconds)
            rate_limit_base_delay: First delay for rate-limited calls (seconds)
            max_delay: Upper bound on any single delay (seconds)
            jitter_fraction: Jitter is drawn from [0, delay * jitter_fraction)
            rng: Randomness source with a ``uniform(a, b)`` method
        """
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if base_delay < 0 or rate_limit_base_delay < 0 or max_delay < 0:
            raise ValueError("delays must be non-negative")
        if not 0 <= jitter_fraction < 1:
            raise ValueError("jitter_fraction must be in [0, 1)")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.rate_limit_base_delay = rate_limit_base_delay
        self.max_delay = max_delay
        self.jitter_fraction = jitter_fraction
        self.rng = rng or random.Random()

    def base_for(self, error_kind: RpcErrorKind) -> float:
        if error_kind is RpcErrorKind.RATE_LIMITED:
            return self.rate_limit_base_delay
        return self.base_delay

    def should_retry(self, attempt: int, error_kind: RpcErrorKind) -> bool:
        """True while fewer than max_retries retries (after the first fetch) have been made."""
        if error_kind not in RETRYABLE_KINDS:
            return False
        return attempt < self.max_retries

    def next_delay(self, attempt: int, error_kind: RpcErrorKind) -> float:
        """
        Delay in seconds before retry number ``attempt``.

        min(base * 2^attempt, max_delay) plus jitter, with the total still
        capped at max_delay.
        """
        attempt = max(attempt, 0)
        base = self.base_for(error_kind)
        # Cap the exponent so long retry chains cannot overflow the float
        delay = min(base * (2 ** min(attempt, 62)), self.max_delay)
        jitter = 0.0
        if delay > 0 and self.jitter_fraction > 0:
            jitter = self.rng.uniform(0.0, delay * self.jitter_fraction)
        return min(delay + max(jitter, 0.0), self.max_delay)

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}(max_retries={self.max_retries}, "
                f"base_delay={self.base_delay}, rate_limit_base_delay={self.rate_limit_base_delay}, "
                f"max_delay={self.max_delay})")


def retry_call(fetch: Callable[[], T], backoff: BackoffController, what: str,
               sleep: Callable[[float], None] = time.sleep) -> T:
    """
    Call ``fetch`` until it succeeds or the backoff policy gives up.

    Used for one-off setup calls (current slot, epoch and leader schedules);
    per-slot block fetches go through the scanner's state machine instead.

    Raises:
        RpcError: The last error once it is non-retryable or retries run out
    """
    failures = 0
    while True:
        try:
            return fetch()
        except RpcError as e:
            if not backoff.should_retry(failures, e.kind):
                raise
            delay = backoff.next_delay(failures, e.kind)
            failures += 1
            logger.warning(f"Fetching {what} failed ({e.kind.value}): {e}. "
                           f"Retrying in {delay:.2f}s (attempt {failures})")
            sleep(delay)
