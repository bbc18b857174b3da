"""
Pytest configuration and shared fixtures for the Solana vote checker tests.
"""
import struct

import base58
import pytest

from solana_utils import VOTE_PROGRAM_ID, RpcError, RpcErrorKind
from leader_schedule import EpochSchedule, LeaderSchedule
from vote_backoff import BackoffController

TARGET = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
OTHER_VALIDATOR = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
VOTE_ACCOUNT = "So11111111111111111111111111111111111111112"
RPC_URL = "http://localhost:8899"


def encode_tower_sync(root, lockouts, timestamp=1700000000):
    """bincode TowerSync instruction data, base58-encoded (lockouts are (slot, confirmations))"""
    data = struct.pack('<I', 14) + struct.pack('<Q', root)
    data += bytes([len(lockouts)])
    previous = root
    for slot, confirmation_count in lockouts:
        data += bytes([slot - previous]) + bytes([confirmation_count])
        previous = slot
    data += b'\x11' * 32
    data += b'\x01' + struct.pack('<q', timestamp)
    data += b'\x22' * 32
    return base58.b58encode(data).decode()


def make_vote_tx(fee_payer, vote_account=VOTE_ACCOUNT, signature="sig", voted_slot=100):
    """A json-encoded vote transaction as returned by getBlock"""
    data = encode_tower_sync(voted_slot - 3, [(voted_slot - 2, 3), (voted_slot - 1, 2), (voted_slot, 1)])
    return {
        'transaction': {
            'signatures': [signature],
            'message': {
                'accountKeys': [fee_payer, vote_account, VOTE_PROGRAM_ID],
                'instructions': [
                    {'programIdIndex': 2, 'accounts': [1, 0], 'data': data},
                ],
            },
        },
        'meta': {
            'err': None,
            'logMessages': [f"Program {VOTE_PROGRAM_ID} invoke [1]", f"Program {VOTE_PROGRAM_ID} success"],
        },
    }


def make_transfer_tx(fee_payer, signature="transfer"):
    return {
        'transaction': {
            'signatures': [signature],
            'message': {
                'accountKeys': [fee_payer, OTHER_VALIDATOR, "11111111111111111111111111111111"],
                'instructions': [{'programIdIndex': 2, 'accounts': [0, 1], 'data': '3Bxs4h24hBtQy9rw'}],
            },
        },
        'meta': {'err': None, 'logMessages': ["Program 11111111111111111111111111111111 invoke [1]"]},
    }


def make_block(slot, transactions, block_time=1700000000):
    return {
        'blockhash': f"hash{slot}",
        'parentSlot': slot - 1,
        'blockTime': block_time,
        'transactions': transactions,
    }


class ScriptedRpcClient:
    """
    In-memory stand-in for SolanaRpcClient.

    ``block_scripts`` maps slot -> list of responses; each response is either
    a block dict or an RpcError to raise. The last response repeats once the
    script runs out.
    """

    def __init__(self, block_scripts=None, leaders=None, epoch_schedule=None,
                 current_slot=10_000, schedule_errors=None):
        self.block_scripts = {slot: list(script) for slot, script in (block_scripts or {}).items()}
        self.leaders = leaders or {}
        self.epoch_schedule = epoch_schedule or EpochSchedule(slots_per_epoch=432000)
        self.current_slot = current_slot
        self.schedule_errors = list(schedule_errors or [])
        self.block_calls = []
        self.schedule_calls = []

    def fetch_block(self, slot):
        self.block_calls.append(slot)
        script = self.block_scripts.get(slot)
        if not script:
            raise RpcError(f"No block available for slot {slot}", RpcErrorKind.NOT_FOUND)
        response = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(response, Exception):
            raise response
        return response

    def fetch_current_slot(self):
        return self.current_slot

    def fetch_epoch_schedule(self):
        return self.epoch_schedule

    def fetch_leader_schedule(self, epoch, first_slot, last_slot):
        self.schedule_calls.append(epoch)
        if self.schedule_errors:
            raise self.schedule_errors.pop(0)
        slot_leaders = {slot: leader for slot, leader in self.leaders.items()
                        if first_slot <= slot <= last_slot}
        return LeaderSchedule(epoch=epoch, first_slot=first_slot, last_slot=last_slot,
                              slot_leaders=slot_leaders)


class FixedRandom:
    """rng stub: uniform() returns the given fraction of its range"""

    def __init__(self, fraction=0.0):
        self.fraction = fraction
        self.calls = []

    def uniform(self, a, b):
        self.calls.append((a, b))
        return a + (b - a) * self.fraction


@pytest.fixture
def target():
    return TARGET


@pytest.fixture
def sleeps():
    """Records every requested wait instead of sleeping"""
    return []


@pytest.fixture
def backoff():
    """Deterministic backoff: no jitter, 1s transient base, 3s rate-limit base"""
    return BackoffController(max_retries=5, base_delay=1.0, rate_limit_base_delay=3.0,
                             max_delay=30.0, jitter_fraction=0.25, rng=FixedRandom(0.0))


@pytest.fixture
def vote_block():
    def _build(slot, fee_payer=TARGET):
        return make_block(slot, [make_transfer_tx(OTHER_VALIDATOR),
                                 make_vote_tx(OTHER_VALIDATOR, signature=f"other{slot}", voted_slot=slot - 1),
                                 make_vote_tx(fee_payer, signature=f"vote{slot}", voted_slot=slot - 1)])
    return _build


@pytest.fixture
def empty_vote_block():
    def _build(slot):
        return make_block(slot, [make_vote_tx(OTHER_VALIDATOR, signature=f"other{slot}", voted_slot=slot - 1)])
    return _build
