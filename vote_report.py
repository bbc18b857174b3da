#!/usr/bin/env python3
"""
Vote inclusion report: aggregation, rendering and scan progress.
"""

import sys
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, TextIO, Tuple

from solana_utils import ScanAbortedError, format_timestamp
from slot_scanner import ScanRequest, SlotOutcome, SlotStatus

GREEN = "\033[32m"
RED = "\033[31m"
YELLOW = "\033[33m"
MAGENTA = "\033[35m"
CYAN = "\033[36m"
DIM = "\033[2m"
BOLD = "\033[1m"
RESET = "\033[0m"

STATUS_LABELS = {
    SlotStatus.VOTE_FOUND: "vote found",
    SlotStatus.NO_VOTE_IN_BLOCK: "VOTE MISSING (leader)",
    SlotStatus.LEADER_SKIPPED_SLOT: "skipped / not leader",
    SlotStatus.BLOCK_MISSING: "block unavailable",
    SlotStatus.ERRORED: "could not determine",
}

STATUS_COLORS = {
    SlotStatus.VOTE_FOUND: GREEN,
    SlotStatus.NO_VOTE_IN_BLOCK: RED + BOLD,
    SlotStatus.LEADER_SKIPPED_SLOT: DIM,
    SlotStatus.BLOCK_MISSING: YELLOW,
    SlotStatus.ERRORED: MAGENTA,
}

# Summary categories; BLOCK_MISSING and ERRORED both mean "could not determine"
CATEGORIES = OrderedDict([
    ('found', (SlotStatus.VOTE_FOUND,)),
    ('missing', (SlotStatus.NO_VOTE_IN_BLOCK,)),
    ('skipped', (SlotStatus.LEADER_SKIPPED_SLOT,)),
    ('errored', (SlotStatus.ERRORED, SlotStatus.BLOCK_MISSING)),
])


@dataclass(frozen=True)
class Report:
    """Slot-ordered outcomes plus summary counts"""
    outcomes: Tuple[SlotOutcome, ...]
    status_counts: Tuple[Tuple[SlotStatus, int], ...]

    def __len__(self) -> int:
        return len(self.outcomes)

    @property
    def counts(self) -> Dict[SlotStatus, int]:
        return dict(self.status_counts)

    def category_count(self, category: str) -> int:
        counts = self.counts
        return sum(counts.get(status, 0) for status in CATEGORIES[category])

    @property
    def found(self) -> int:
        return self.category_count('found')

    @property
    def missing(self) -> int:
        return self.category_count('missing')

    @property
    def skipped(self) -> int:
        return self.category_count('skipped')

    @property
    def errored(self) -> int:
        return self.category_count('errored')

    @property
    def slots(self) -> List[int]:
        return [outcome.slot for outcome in self.outcomes]

    def outcome_for(self, slot: int) -> Optional[SlotOutcome]:
        for outcome in self.outcomes:
            if outcome.slot == slot:
                return outcome
        return None

    def to_dict(self) -> Dict:
        """JSON-friendly representation"""
        return {
            'summary': {category: self.category_count(category) for category in CATEGORIES},
            'counts': {status.value: count for status, count in self.status_counts},
            'slots': [
                {
                    'slot': o.slot,
                    'status': o.status.value,
                    'leader': o.leader,
                    'attempts': o.attempts,
                    'reason': o.reason,
                    'vote_count': o.vote_count,
                    'block_time': o.block_time,
                    'signatures': [m.signature for m in o.matches],
                    'voted_slots': o.voted_slots,
                }
                for o in self.outcomes
            ],
        }


class ReportAggregator:
    """
    Collects SlotOutcomes and produces a Report ordered by slot.

    Recording order does not matter. Each slot may be recorded once; when the
    expected slots are known, finalize() refuses to build a report with gaps.
    """

    def __init__(self, expected_slots: Optional[Iterable[int]] = None) -> None:
        self.expected_slots = set(expected_slots) if expected_slots is not None else None
        self._outcomes: Dict[int, SlotOutcome] = {}

    def record(self, outcome: SlotOutcome) -> None:
        if outcome.slot in self._outcomes:
            raise ValueError(f"Slot {outcome.slot} already has an outcome")
        if self.expected_slots is not None and outcome.slot not in self.expected_slots:
            raise ValueError(f"Slot {outcome.slot} is outside the scanned range")
        self._outcomes[outcome.slot] = outcome

    def __len__(self) -> int:
        return len(self._outcomes)

    def finalize(self) -> Report:
        if self.expected_slots is not None:
            missing = sorted(self.expected_slots - set(self._outcomes))
            if missing:
                raise ScanAbortedError(f"Report incomplete: {len(missing)} slot(s) have no outcome "
                                       f"(first missing: {missing[0]})")
        outcomes = tuple(self._outcomes[slot] for slot in sorted(self._outcomes))
        status_counts = tuple((status, sum(1 for o in outcomes if o.status is status))
                              for status in SlotStatus)
        return Report(outcomes=outcomes, status_counts=status_counts)


def _paint(text: str, color: str, enabled: bool) -> str:
    return f"{color}{text}{RESET}" if enabled and color else text


def _format_outcome(outcome: SlotOutcome, color: bool) -> List[str]:
    label = STATUS_LABELS[outcome.status]
    status = _paint(f"{label:<22}", STATUS_COLORS[outcome.status], color)
    leader = outcome.leader or "unknown"
    line = f"  {outcome.slot:<12} {status} Leader: {_paint(leader, DIM, color)}"
    if outcome.vote_count is not None:
        line += f"  Votes: {_paint(str(outcome.vote_count), CYAN, color)}"
    if outcome.attempts > 1:
        line += f"  Attempts: {outcome.attempts}"
    lines = [line]
    if outcome.block_time is not None:
        lines.append(f"  {'':<12} Time: {format_timestamp(outcome.block_time)}")
    for match in outcome.matches:
        voted = str(match.voted_slot) if match.voted_slot is not None else "[unknown]"
        lines.append(f"  {'':<12} Signature: {_paint(match.signature, DIM, color)}  "
                     f"Voted slot: {_paint(voted, YELLOW, color)}  Position: {match.position}")
    if outcome.reason and outcome.status in (SlotStatus.ERRORED, SlotStatus.BLOCK_MISSING):
        lines.append(f"  {'':<12} Reason: {outcome.reason}")
    return lines


def render_report(report: Report, request: Optional[ScanRequest] = None, color: bool = True) -> str:
    """
    Render a report as human-readable text.

    Args:
        report: Finalized report
        request: Scan request, for the header
        color: Emit ANSI color codes

    Returns:
        Multi-line report string (identical for identical reports)
    """
    rule = _paint("=" * 60, DIM, color)
    lines = ["", rule]
    if request is not None:
        lines.append(f"{_paint('Account:', BOLD, color)} {request.target_account}")
        lines.append(f"{_paint('Slots:', BOLD, color)} {request.first_slot}-{request.last_slot}  "
                     f"{_paint('Distance:', BOLD, color)} {request.distance}")
        lines.append(rule)
    for outcome in report.outcomes:
        lines.extend(_format_outcome(outcome, color))
    lines.append(rule)
    summary = (
        f"Found: {_paint(str(report.found), GREEN, color)}  "
        f"Missing: {_paint(str(report.missing), RED, color)}  "
        f"Skipped: {report.skipped}  "
        f"Errored: {_paint(str(report.errored), MAGENTA, color)}  "
        f"Total: {len(report)}"
    )
    lines.append(summary)
    if report.missing:
        missing_slots = [str(o.slot) for o in report.outcomes if o.status is SlotStatus.NO_VOTE_IN_BLOCK]
        lines.append(_paint(f"Vote missing while leader in slot(s): {', '.join(missing_slots)}", RED, color))
    lines.append("")
    return "\n".join(lines)


class ProgressIndicator:
    """Single-line scan progress written to a terminal stream"""

    def __init__(self, total: int, stream: Optional[TextIO] = None, enabled: bool = True) -> None:
        self.total = total
        self.stream = stream or sys.stderr
        self.enabled = enabled
        self.done = 0
        self.found = 0
        self.problems = 0

    def _write(self, text: str) -> None:
        if self.enabled:
            self.stream.write(f"\r\033[2K{text}")
            self.stream.flush()

    def start_slot(self, slot: int) -> None:
        self._write(f"[{self.done + 1}/{self.total}] Scanning slot {slot} "
                    f"(found {self.found}, issues {self.problems})")

    def advance(self, outcome: SlotOutcome) -> None:
        self.done += 1
        if outcome.status is SlotStatus.VOTE_FOUND:
            self.found += 1
        elif outcome.status in (SlotStatus.NO_VOTE_IN_BLOCK, SlotStatus.ERRORED, SlotStatus.BLOCK_MISSING):
            self.problems += 1

    def finish(self) -> None:
        if self.enabled:
            self.stream.write("\r\033[2K")
            self.stream.flush()
