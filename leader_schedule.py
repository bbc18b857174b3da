#!/usr/bin/env python3
"""
Solana Leader Schedule Resolver

Maps slots to epochs and epochs to leader schedules. Each epoch's schedule is
fetched once and served from an invocation-scoped cache afterwards.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from solana_utils import LeaderScheduleError, RpcError, logger
from vote_backoff import retry_call

MINIMUM_SLOTS_PER_EPOCH = 32
_MIN_EPOCH_SHIFT = MINIMUM_SLOTS_PER_EPOCH.bit_length() - 1  # log2(32)


@dataclass(frozen=True)
class EpochSchedule:
    """Epoch geometry as reported by getEpochSchedule"""
    slots_per_epoch: int
    leader_schedule_slot_offset: int = 0
    warmup: bool = False
    first_normal_epoch: int = 0
    first_normal_slot: int = 0

    @classmethod
    def from_rpc(cls, result: Dict) -> 'EpochSchedule':
        return cls(
            slots_per_epoch=int(result['slotsPerEpoch']),
            leader_schedule_slot_offset=int(result.get('leaderScheduleSlotOffset', 0)),
            warmup=bool(result.get('warmup', False)),
            first_normal_epoch=int(result.get('firstNormalEpoch', 0)),
            first_normal_slot=int(result.get('firstNormalSlot', 0)),
        )

    def get_epoch(self, slot: int) -> int:
        """Return the epoch containing ``slot``."""
        if slot < 0:
            raise ValueError(f"slot must be non-negative: {slot}")
        if slot < self.first_normal_slot:
            # Warmup epochs double in length starting at MINIMUM_SLOTS_PER_EPOCH
            return (slot + MINIMUM_SLOTS_PER_EPOCH).bit_length() - 1 - _MIN_EPOCH_SHIFT
        normal_slot_index = slot - self.first_normal_slot
        return self.first_normal_epoch + normal_slot_index // self.slots_per_epoch

    def get_slots_in_epoch(self, epoch: int) -> int:
        if epoch < self.first_normal_epoch:
            return 2 ** (epoch + _MIN_EPOCH_SHIFT)
        return self.slots_per_epoch

    def get_first_slot_in_epoch(self, epoch: int) -> int:
        if epoch <= self.first_normal_epoch:
            return (2 ** epoch - 1) * MINIMUM_SLOTS_PER_EPOCH
        return (epoch - self.first_normal_epoch) * self.slots_per_epoch + self.first_normal_slot

    def get_last_slot_in_epoch(self, epoch: int) -> int:
        return self.get_first_slot_in_epoch(epoch) + self.get_slots_in_epoch(epoch) - 1


@dataclass(frozen=True)
class LeaderSchedule:
    """Absolute slot -> leader identity for a single epoch"""
    epoch: int
    first_slot: int
    last_slot: int
    slot_leaders: Dict[int, str] = field(default_factory=dict)

    @classmethod
    def from_rpc(cls, epoch: int, first_slot: int, last_slot: int,
                 result: Dict[str, List[int]]) -> 'LeaderSchedule':
        """Build from getLeaderSchedule output (identity -> relative slot indices)."""
        slot_leaders = {}
        for identity, relative_slots in result.items():
            for relative_slot in relative_slots:
                slot_leaders[first_slot + int(relative_slot)] = identity
        return cls(epoch=epoch, first_slot=first_slot, last_slot=last_slot,
                   slot_leaders=slot_leaders)

    def covers(self, slot: int) -> bool:
        return self.first_slot <= slot <= self.last_slot

    def leader_for(self, slot: int) -> Optional[str]:
        return self.slot_leaders.get(slot)

    def __len__(self) -> int:
        return len(self.slot_leaders)


class LeaderScheduleResolver:
    """
    Lazily fetches and caches leader schedules per epoch.

    The cache lives as long as the resolver, which is one scan invocation.
    Fetch failures are retried through the backoff controller; once retries
    are exhausted the failure is raised as LeaderScheduleError, since slots
    cannot be classified correctly without knowing their leader.
    """

    def __init__(self, client, backoff, sleep: Callable[[float], None] = time.sleep) -> None:
        """
        Args:
            client: RPC adapter exposing fetch_epoch_schedule/fetch_leader_schedule
            backoff: BackoffController used between failed fetches
            sleep: Wait function (injectable for tests)
        """
        self.client = client
        self.backoff = backoff
        self.sleep = sleep
        self._epoch_schedule: Optional[EpochSchedule] = None
        self._schedules: Dict[int, LeaderSchedule] = {}
        self.fetch_count = 0

    @property
    def cached_epochs(self) -> List[int]:
        return sorted(self._schedules)

    def epoch_schedule(self) -> EpochSchedule:
        if self._epoch_schedule is None:
            self._epoch_schedule = self._with_retry(self.client.fetch_epoch_schedule,
                                                    "epoch schedule", None)
        return self._epoch_schedule

    def get_or_fetch(self, epoch: int) -> LeaderSchedule:
        """Return the cached schedule for ``epoch``, fetching it on first use."""
        schedule = self._schedules.get(epoch)
        if schedule is not None:
            return schedule

        epochs = self.epoch_schedule()
        first_slot = epochs.get_first_slot_in_epoch(epoch)
        last_slot = epochs.get_last_slot_in_epoch(epoch)
        logger.info(f"Fetching leader schedule for epoch {epoch} (slots {first_slot}-{last_slot})")
        schedule = self._with_retry(
            lambda: self.client.fetch_leader_schedule(epoch, first_slot, last_slot),
            f"leader schedule for epoch {epoch}", epoch)
        self.fetch_count += 1
        self._schedules[epoch] = schedule
        logger.debug(f"Cached leader schedule for epoch {epoch}: {len(schedule)} slots assigned")
        return schedule

    def leader_for_slot(self, slot: int) -> Optional[str]:
        epoch = self.epoch_schedule().get_epoch(slot)
        return self.get_or_fetch(epoch).leader_for(slot)

    def cached_leader_for_slot(self, slot: int) -> Optional[str]:
        """Leader from already-cached schedules only; never triggers a fetch."""
        for schedule in self._schedules.values():
            if schedule.covers(slot):
                return schedule.leader_for(slot)
        return None

    def prefetch(self, first_slot: int, last_slot: int) -> List[int]:
        """Load every epoch spanned by [first_slot, last_slot]; returns the epochs."""
        epochs = self.epoch_schedule()
        first_epoch = epochs.get_epoch(first_slot)
        last_epoch = epochs.get_epoch(last_slot)
        spanned = list(range(first_epoch, last_epoch + 1))
        for epoch in spanned:
            self.get_or_fetch(epoch)
        return spanned

    def _with_retry(self, fetch, what: str, epoch: Optional[int]):
        try:
            return retry_call(fetch, self.backoff, what, sleep=self.sleep)
        except RpcError as e:
            raise LeaderScheduleError(f"Could not fetch {what}: {e}", epoch=epoch, last_error=e) from e
