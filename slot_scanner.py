#!/usr/bin/env python3
"""
Solana Slot Scanner

Walks a contiguous slot range one slot at a time and resolves every slot to
exactly one terminal SlotOutcome. Block fetches run through an explicit
per-slot state machine:

    PENDING -> FETCHING -> SUCCEEDED
                        -> RETRYING -> FETCHING ...
                        -> EXHAUSTED

Recoverable RPC failures are retried with the backoff controller; failures
that remain are recorded on the slot and never abort the rest of the scan.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

from solana_utils import (
    InvalidInputError, RpcError, RpcErrorKind, logger, validate_pubkey
)
from vote_backoff import BackoffController
from vote_decoder import VoteMatch, scan_block_votes

MAX_U64 = 2 ** 64 - 1
MAX_U32 = 2 ** 32 - 1


class SlotStatus(Enum):
    VOTE_FOUND = "vote_found"
    NO_VOTE_IN_BLOCK = "no_vote_in_block"
    BLOCK_MISSING = "block_missing"
    LEADER_SKIPPED_SLOT = "leader_skipped_slot"
    ERRORED = "errored"


class SlotState(Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


ALLOWED_TRANSITIONS = {
    SlotState.PENDING: {SlotState.FETCHING},
    SlotState.FETCHING: {SlotState.SUCCEEDED, SlotState.RETRYING, SlotState.EXHAUSTED},
    SlotState.RETRYING: {SlotState.FETCHING},
    SlotState.SUCCEEDED: set(),
    SlotState.EXHAUSTED: set(),
}


@dataclass(frozen=True)
class ScanRequest:
    """
    One bounded historical scan.

    ``start_slot`` is the newest slot; the range covers
    [start_slot - distance + 1, start_slot] and is scanned newest first.
    """
    rpc_url: str
    target_account: str
    start_slot: int
    distance: int

    def __post_init__(self):
        if not 0 <= self.start_slot <= MAX_U64:
            raise InvalidInputError(f"Slot must be a non-negative 64-bit integer: {self.start_slot}")
        if not 1 <= self.distance <= MAX_U32:
            raise InvalidInputError(f"Distance must be between 1 and {MAX_U32}: {self.distance}")
        if self.distance > self.start_slot + 1:
            raise InvalidInputError(
                f"Distance {self.distance} reaches below slot 0 from slot {self.start_slot}")
        object.__setattr__(self, 'target_account', validate_pubkey(self.target_account))

    @property
    def first_slot(self) -> int:
        return self.start_slot - self.distance + 1

    @property
    def last_slot(self) -> int:
        return self.start_slot

    def slots(self) -> List[int]:
        """Slots in scan order (descending from start_slot)."""
        return list(range(self.start_slot, self.first_slot - 1, -1))


@dataclass(frozen=True)
class SlotOutcome:
    """Terminal result for a single slot"""
    slot: int
    status: SlotStatus
    leader: Optional[str] = None
    attempts: int = 0
    reason: Optional[str] = None
    vote_count: Optional[int] = None
    block_time: Optional[int] = None
    matches: Tuple[VoteMatch, ...] = ()
    waited: float = 0.0

    @property
    def voted_slots(self) -> List[int]:
        return [m.voted_slot for m in self.matches if m.voted_slot is not None]


@dataclass
class RetryState:
    """Transient retry bookkeeping for the slot being processed"""
    consecutive_failures: int = 0
    last_error_kind: Optional[RpcErrorKind] = None

    def record_failure(self, kind: RpcErrorKind) -> None:
        self.consecutive_failures += 1
        self.last_error_kind = kind


@dataclass
class SlotTask:
    """A slot moving through the fetch state machine"""
    slot: int
    state: SlotState = SlotState.PENDING
    attempts: int = 0
    retry: RetryState = field(default_factory=RetryState)
    waited: float = 0.0
    history: List[SlotState] = field(default_factory=lambda: [SlotState.PENDING])

    def transition(self, new_state: SlotState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise ValueError(f"Slot {self.slot}: illegal transition {self.state.value} -> {new_state.value}")
        logger.debug(f"Slot {self.slot}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)
        if new_state is SlotState.FETCHING:
            self.attempts += 1

    @property
    def terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.state]


class SlotScanner:
    """
    Resolves each slot of a ScanRequest to a SlotOutcome.

    The leader schedule resolver is passed in and shared across slots; it is
    the only state that outlives a single slot.
    """

    def __init__(self, client, backoff: BackoffController, resolver, target_account: str,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        """
        Args:
            client: RPC adapter exposing fetch_block(slot)
            backoff: Retry policy for block fetches
            resolver: LeaderScheduleResolver for leader lookups
            target_account: Base58 account whose votes are searched for
            sleep: Wait function (injectable for tests)
        """
        self.client = client
        self.backoff = backoff
        self.resolver = resolver
        self.target_account = target_account
        self.sleep = sleep

    def scan_slot(self, slot: int) -> SlotOutcome:
        """
        Fetch and classify one slot.

        Raises:
            LeaderScheduleError: If the slot's leader cannot be determined
        """
        task = SlotTask(slot=slot)
        while True:
            task.transition(SlotState.FETCHING)
            try:
                block = self.client.fetch_block(slot)
            except RpcError as e:
                outcome = self._handle_failure(task, e)
                if outcome is not None:
                    return outcome
                continue
            task.transition(SlotState.SUCCEEDED)
            return self._classify_block(task, block)

    def _handle_failure(self, task: SlotTask, error: RpcError) -> Optional[SlotOutcome]:
        """Return a terminal outcome, or None after waiting for a retry."""
        slot = task.slot
        if error.kind is RpcErrorKind.SLOT_SKIPPED:
            # The endpoint is authoritative about skipped slots
            task.transition(SlotState.SUCCEEDED)
            logger.info(f"Slot {slot} was skipped: {error}")
            return self._outcome(task, SlotStatus.LEADER_SKIPPED_SLOT, reason=str(error))

        if not self.backoff.should_retry(task.retry.consecutive_failures, error.kind):
            task.transition(SlotState.EXHAUSTED)
            # An unavailable block is its own status; the summary counts it as errored
            status = SlotStatus.BLOCK_MISSING if error.kind is RpcErrorKind.NOT_FOUND else SlotStatus.ERRORED
            logger.warning(f"Slot {slot} could not be fetched after {task.attempts} attempt(s) "
                           f"({error.kind.value}): {error}")
            return self._outcome(task, status, reason=str(error))

        delay = self.backoff.next_delay(task.retry.consecutive_failures, error.kind)
        task.retry.record_failure(error.kind)
        task.transition(SlotState.RETRYING)
        logger.warning(f"Error fetching block {slot} ({error.kind.value}): {error}. "
                       f"Retrying in {delay:.2f}s (attempt {task.attempts})")
        self.sleep(delay)
        task.waited += delay
        return None

    def _classify_block(self, task: SlotTask, block) -> SlotOutcome:
        votes = scan_block_votes(block, self.target_account)
        leader = self.resolver.leader_for_slot(task.slot)
        if votes.found:
            status = SlotStatus.VOTE_FOUND
        elif leader != self.target_account:
            status = SlotStatus.LEADER_SKIPPED_SLOT
        else:
            status = SlotStatus.NO_VOTE_IN_BLOCK
        logger.debug(f"Slot {task.slot}: {status.value} ({votes.vote_count} vote transactions, "
                     f"{len(votes.matches)} matching)")
        return SlotOutcome(
            slot=task.slot,
            status=status,
            leader=leader,
            attempts=task.attempts,
            vote_count=votes.vote_count,
            block_time=block.get('blockTime'),
            matches=tuple(votes.matches),
            waited=task.waited,
        )

    def _outcome(self, task: SlotTask, status: SlotStatus, reason: Optional[str] = None) -> SlotOutcome:
        return SlotOutcome(
            slot=task.slot,
            status=status,
            leader=self.resolver.cached_leader_for_slot(task.slot),
            attempts=task.attempts,
            reason=reason,
            waited=task.waited,
        )

    def run(self, request: ScanRequest, aggregator, progress=None):
        """
        Scan every slot in ``request`` into ``aggregator`` and return the finalized Report.

        Leader schedules for all spanned epochs are loaded before the first
        block fetch, so a schedule failure aborts before any slot is scanned.
        """
        epochs = self.resolver.prefetch(request.first_slot, request.last_slot)
        logger.info(f"Scanning slots {request.first_slot}-{request.last_slot} "
                    f"across epoch(s) {', '.join(str(e) for e in epochs)}")

        for slot in request.slots():
            if progress is not None:
                progress.start_slot(slot)
            outcome = self.scan_slot(slot)
            aggregator.record(outcome)
            if progress is not None:
                progress.advance(outcome)
        if progress is not None:
            progress.finish()
        return aggregator.finalize()
