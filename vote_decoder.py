#!/usr/bin/env python3
"""
Vote transaction detection and vote instruction decoding.

Works on blocks fetched with ``"encoding": "json"``: account keys are base58
strings and instruction data is base58-encoded bincode. Decoding is
best-effort; data that cannot be decoded yields ``None`` and never raises.
"""

import struct
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import base58

from solana_utils import VOTE_PROGRAM_ID, VOTE_PROGRAM_INVOKE_LOG, logger

# VoteInstruction variant indices (bincode u32 enum tag)
VOTE = 2
VOTE_SWITCH = 6
UPDATE_VOTE_STATE = 8
UPDATE_VOTE_STATE_SWITCH = 9
COMPACT_UPDATE_VOTE_STATE = 12
COMPACT_UPDATE_VOTE_STATE_SWITCH = 13
TOWER_SYNC = 14
TOWER_SYNC_SWITCH = 15

INSTRUCTION_NAMES = {
    VOTE: "Vote",
    VOTE_SWITCH: "VoteSwitch",
    UPDATE_VOTE_STATE: "UpdateVoteState",
    UPDATE_VOTE_STATE_SWITCH: "UpdateVoteStateSwitch",
    COMPACT_UPDATE_VOTE_STATE: "CompactUpdateVoteState",
    COMPACT_UPDATE_VOTE_STATE_SWITCH: "CompactUpdateVoteStateSwitch",
    TOWER_SYNC: "TowerSync",
    TOWER_SYNC_SWITCH: "TowerSyncSwitch",
}

NO_ROOT = 2 ** 64 - 1
HASH_BYTES = 32


class _DecodeError(Exception):
    pass


@dataclass(frozen=True)
class DecodedVote:
    """Slots carried by one vote instruction"""
    instruction: str
    lockouts: Tuple[Tuple[int, int], ...]  # (slot, confirmation_count)
    root: Optional[int] = None
    timestamp: Optional[int] = None

    @property
    def voted_slot(self) -> Optional[int]:
        """The newest slot in the tower (confirmation count 1)."""
        for slot, confirmation_count in self.lockouts:
            if confirmation_count == 1:
                return slot
        if self.lockouts:
            return max(slot for slot, _ in self.lockouts)
        return None


@dataclass(frozen=True)
class VoteMatch:
    """A vote transaction in a block that belongs to the target account"""
    signature: str
    position: int
    vote_account: Optional[str]
    voted_slot: Optional[int] = None
    instruction: Optional[str] = None


@dataclass
class BlockVotes:
    """Vote summary for one block"""
    vote_count: int = 0
    matches: List[VoteMatch] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return bool(self.matches)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    def take(self, size: int) -> bytes:
        if self.offset + size > len(self.data):
            raise _DecodeError("unexpected end of instruction data")
        chunk = self.data[self.offset:self.offset + size]
        self.offset += size
        return chunk

    def u8(self) -> int:
        return self.take(1)[0]

    def u32(self) -> int:
        return struct.unpack('<I', self.take(4))[0]

    def u64(self) -> int:
        return struct.unpack('<Q', self.take(8))[0]

    def i64(self) -> int:
        return struct.unpack('<q', self.take(8))[0]

    def option(self, read):
        tag = self.u8()
        if tag == 0:
            return None
        if tag == 1:
            return read()
        raise _DecodeError(f"invalid option tag {tag}")

    def short_vec_len(self) -> int:
        # compact-u16: 7 bits per byte, at most 3 bytes
        value = 0
        for index in range(3):
            byte = self.u8()
            value |= (byte & 0x7F) << (7 * index)
            if not byte & 0x80:
                return value
        raise _DecodeError("short_vec length overflow")

    def varint_u64(self) -> int:
        value = 0
        for index in range(10):
            byte = self.u8()
            value |= (byte & 0x7F) << (7 * index)
            if not byte & 0x80:
                return value
        raise _DecodeError("varint overflow")


def _decode_vote(reader: _Reader, name: str) -> DecodedVote:
    count = reader.u64()
    if count > len(reader.data):
        raise _DecodeError("slot count exceeds data length")
    slots = [reader.u64() for _ in range(count)]
    reader.take(HASH_BYTES)
    timestamp = reader.option(reader.i64)
    # Vote carries no confirmation counts; the last slot is the newest
    lockouts = tuple((slot, len(slots) - index) for index, slot in enumerate(slots))
    return DecodedVote(instruction=name, lockouts=lockouts, timestamp=timestamp)


def _decode_vote_state_update(reader: _Reader, name: str) -> DecodedVote:
    count = reader.u64()
    if count > len(reader.data):
        raise _DecodeError("lockout count exceeds data length")
    lockouts = tuple((reader.u64(), reader.u32()) for _ in range(count))
    root = reader.option(reader.u64)
    reader.take(HASH_BYTES)
    timestamp = reader.option(reader.i64)
    return DecodedVote(instruction=name, lockouts=lockouts, root=root, timestamp=timestamp)


def _decode_compact(reader: _Reader, name: str) -> DecodedVote:
    root = reader.u64()
    slot = 0 if root == NO_ROOT else root
    lockouts = []
    for _ in range(reader.short_vec_len()):
        slot += reader.varint_u64()
        lockouts.append((slot, reader.u8()))
    reader.take(HASH_BYTES)
    timestamp = reader.option(reader.i64)
    return DecodedVote(instruction=name, lockouts=tuple(lockouts),
                       root=None if root == NO_ROOT else root, timestamp=timestamp)


_DECODERS = {
    VOTE: _decode_vote,
    VOTE_SWITCH: _decode_vote,
    UPDATE_VOTE_STATE: _decode_vote_state_update,
    UPDATE_VOTE_STATE_SWITCH: _decode_vote_state_update,
    COMPACT_UPDATE_VOTE_STATE: _decode_compact,
    COMPACT_UPDATE_VOTE_STATE_SWITCH: _decode_compact,
    TOWER_SYNC: _decode_compact,
    TOWER_SYNC_SWITCH: _decode_compact,
}


def decode_vote_instruction(data: bytes) -> Optional[DecodedVote]:
    """
    Decode raw vote program instruction data.

    Args:
        data: bincode-serialized VoteInstruction

    Returns:
        DecodedVote for slot-carrying variants, None for anything else
    """
    reader = _Reader(data)
    try:
        variant = reader.u32()
        decoder = _DECODERS.get(variant)
        if decoder is None:
            return None
        return decoder(reader, INSTRUCTION_NAMES[variant])
    except _DecodeError as e:
        logger.debug(f"Could not decode vote instruction: {e}")
        return None


def decode_instruction_data(encoded: str) -> Optional[DecodedVote]:
    """Decode base58 instruction data as it appears in a json-encoded block."""
    try:
        raw = base58.b58decode(encoded)
    except ValueError as e:
        logger.debug(f"Failed to decode base58 instruction data: {e}")
        return None
    return decode_vote_instruction(raw)


def _message(tx: Dict[str, Any]) -> Dict[str, Any]:
    return (tx.get('transaction') or {}).get('message') or {}


def vote_instructions(tx: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Instructions in ``tx`` that invoke the vote program."""
    message = _message(tx)
    account_keys = message.get('accountKeys') or []
    found = []
    for instruction in message.get('instructions') or []:
        index = instruction.get('programIdIndex')
        if isinstance(index, int) and 0 <= index < len(account_keys):
            if account_keys[index] == VOTE_PROGRAM_ID:
                found.append(instruction)
    return found


def is_vote_transaction(tx: Dict[str, Any]) -> bool:
    if vote_instructions(tx):
        return True
    logs = (tx.get('meta') or {}).get('logMessages') or []
    return any(log.startswith(VOTE_PROGRAM_INVOKE_LOG) for log in logs)


def _vote_account(tx: Dict[str, Any], instruction: Dict[str, Any]) -> Optional[str]:
    account_keys = _message(tx).get('accountKeys') or []
    accounts = instruction.get('accounts') or []
    if accounts and isinstance(accounts[0], int) and accounts[0] < len(account_keys):
        return account_keys[accounts[0]]
    return None


def match_vote_transaction(tx: Dict[str, Any], position: int, target_account: str) -> Optional[VoteMatch]:
    """
    Return a VoteMatch when ``tx`` is a vote signed by or for ``target_account``.

    The target matches as the fee payer (first signer) or as the vote account
    referenced by a vote instruction.
    """
    if not is_vote_transaction(tx):
        return None
    message = _message(tx)
    account_keys = message.get('accountKeys') or []
    signatures = (tx.get('transaction') or {}).get('signatures') or []
    signature = signatures[0] if signatures else ''
    fee_payer = account_keys[0] if account_keys else None

    instructions = vote_instructions(tx)
    for instruction in instructions:
        vote_account = _vote_account(tx, instruction)
        if target_account not in (fee_payer, vote_account):
            continue
        decoded = decode_instruction_data(instruction.get('data') or '')
        return VoteMatch(
            signature=signature,
            position=position,
            vote_account=vote_account,
            voted_slot=decoded.voted_slot if decoded else None,
            instruction=decoded.instruction if decoded else None,
        )

    # Log-only detection: no instruction list to inspect, fall back to the signer
    if not instructions and fee_payer == target_account:
        return VoteMatch(signature=signature, position=position, vote_account=None)
    return None


def scan_block_votes(block: Dict[str, Any], target_account: str) -> BlockVotes:
    """Count vote transactions in ``block`` and collect those matching the target."""
    votes = BlockVotes()
    for tx in block.get('transactions') or []:
        if not is_vote_transaction(tx):
            continue
        match = match_vote_transaction(tx, votes.vote_count, target_account)
        votes.vote_count += 1
        if match is not None:
            votes.matches.append(match)
    return votes
