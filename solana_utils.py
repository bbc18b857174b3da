#!/usr/bin/env python3
"""
Solana Vote Tools - Shared Utilities

Common functions, constants and exception classes used across the vote
inclusion checker modules.
"""

import logging
from enum import Enum
from pathlib import Path
from datetime import datetime
from typing import Dict, Optional, Any

import yaml
import pytz
from solders.pubkey import Pubkey

# Set up basic logging first (before config loading)
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


class RpcErrorKind(Enum):
    """Classification of a failed RPC call"""
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    SLOT_SKIPPED = "slot_skipped"
    NOT_FOUND = "not_found"
    FATAL = "fatal"


# Custom exception classes
class SolanaToolError(Exception):
    """Base exception for all Solana vote tool errors"""
    pass


class RpcError(SolanaToolError):
    """Raised when an RPC call fails, tagged with its classification"""
    def __init__(self, message: str, kind: RpcErrorKind,
                 status_code: Optional[int] = None,
                 rpc_code: Optional[int] = None,
                 original_error: Optional[Exception] = None):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.rpc_code = rpc_code
        self.original_error = original_error

    @property
    def retryable(self) -> bool:
        return self.kind in (RpcErrorKind.RATE_LIMITED, RpcErrorKind.TRANSIENT)


class NetworkError(SolanaToolError):
    """Raised when the RPC endpoint cannot be reached at setup time"""
    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error


class InvalidInputError(SolanaToolError):
    """Raised when user input is invalid"""
    pass


class LeaderScheduleError(SolanaToolError):
    """Raised when the leader schedule for an epoch cannot be retrieved"""
    def __init__(self, message: str, epoch: Optional[int] = None,
                 last_error: Optional[RpcError] = None):
        super().__init__(message)
        self.epoch = epoch
        self.last_error = last_error


class ScanAbortedError(SolanaToolError):
    """Raised when a scan cannot continue and no report can be produced"""
    pass


# Configuration loading
def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file"""
    if config_path is None:
        config_path = Path(__file__).parent / "config.yaml"
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        # Return defaults if config file doesn't exist
        return {}

    try:
        with open(config_path, 'r') as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not load config file {config_path}: {e}")
        return {}


# Load configuration
_config = load_config()

# Reconfigure logging with config if available
_log_config = _config.get('logging', {})
if _log_config:
    log_level = getattr(logging, _log_config.get('level', 'INFO').upper(), logging.INFO)
    log_format = _log_config.get('format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    log_datefmt = _log_config.get('datefmt', '%Y-%m-%d %H:%M:%S')
    logging.basicConfig(level=log_level, format=log_format, datefmt=log_datefmt, force=True)

# Timeout values (with config override support)
_api_timeout_config = _config.get('api', {}).get('timeout', {})
API_TIMEOUT_DEFAULT = _api_timeout_config.get('default', 20)
API_TIMEOUT_QUICK = _api_timeout_config.get('quick', 5)

# Default headers for JSON-RPC requests
DEFAULT_HEADERS = _config.get('api', {}).get('headers', {
    'Content-Type': 'application/json',
    'User-Agent': 'solana-vote-checker',
})

# Retry policy (with config override support)
_retry_config = _config.get('retry', {})
MAX_RPC_RETRIES = _retry_config.get('max_retries', 5)
RETRY_BASE_DELAY = _retry_config.get('base_delay', 1.0)
RATE_LIMIT_BASE_DELAY = _retry_config.get('rate_limit_base_delay', 3.0)
MAX_RETRY_DELAY = _retry_config.get('max_delay', 30.0)
RETRY_JITTER_FRACTION = _retry_config.get('jitter_fraction', 0.25)

VOTE_PROGRAM_ID = "Vote111111111111111111111111111111111111111"
VOTE_PROGRAM_INVOKE_LOG = f"Program {VOTE_PROGRAM_ID} invoke"


def validate_pubkey(value: str) -> str:
    """
    Validate a base58-encoded 32-byte public key.

    Args:
        value: Candidate public key string

    Returns:
        The key in canonical base58 form

    Raises:
        InvalidInputError: If the value is not a valid public key
    """
    if not value or not isinstance(value, str):
        raise InvalidInputError("Public key must be a non-empty base58 string")
    try:
        return str(Pubkey.from_string(value.strip()))
    except Exception as e:  # pylint: disable=broad-except
        raise InvalidInputError(f"Invalid public key: {value}") from e


def format_timestamp(timestamp: Optional[int]) -> str:
    """
    Convert a unix block time to a human-readable UTC string.

    Args:
        timestamp: Unix timestamp (seconds), or None when the node has no block time

    Returns:
        Formatted timestamp string
    """
    if timestamp is None:
        return "unknown time"
    try:
        dt_utc = datetime.fromtimestamp(int(timestamp), tz=pytz.UTC)
        return dt_utc.strftime("%Y-%m-%d %H:%M:%S UTC")
    except (ValueError, OverflowError, OSError) as e:
        return f"Unknown timestamp (Error: {e})"
