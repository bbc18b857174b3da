#!/usr/bin/env python3
"""
Solana JSON-RPC Client Adapter

Thin wrapper over the endpoint's getBlock, getLeaderSchedule, getSlot and
getEpochSchedule methods. Every transport or protocol failure is raised as an
RpcError tagged with an RpcErrorKind; retry policy belongs to the caller.
"""

from typing import Any, Dict, List, Optional

import requests

from solana_utils import RpcError, RpcErrorKind, logger
from solana_base import SolanaTool
from leader_schedule import EpochSchedule, LeaderSchedule

# JSON-RPC server error codes used by Solana validators
BLOCK_CLEANED_UP = -32001
BLOCK_NOT_AVAILABLE = -32004
NODE_UNHEALTHY = -32005
SLOT_SKIPPED = -32007
LONG_TERM_STORAGE_SLOT_SKIPPED = -32009
TRANSACTION_HISTORY_NOT_AVAILABLE = -32011
BLOCK_STATUS_NOT_AVAILABLE_YET = -32014
MIN_CONTEXT_SLOT_NOT_REACHED = -32016
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

RPC_CODE_KINDS = {
    429: RpcErrorKind.RATE_LIMITED,
    BLOCK_NOT_AVAILABLE: RpcErrorKind.TRANSIENT,
    NODE_UNHEALTHY: RpcErrorKind.TRANSIENT,
    BLOCK_STATUS_NOT_AVAILABLE_YET: RpcErrorKind.TRANSIENT,
    MIN_CONTEXT_SLOT_NOT_REACHED: RpcErrorKind.TRANSIENT,
    INTERNAL_ERROR: RpcErrorKind.TRANSIENT,
    SLOT_SKIPPED: RpcErrorKind.SLOT_SKIPPED,
    LONG_TERM_STORAGE_SLOT_SKIPPED: RpcErrorKind.SLOT_SKIPPED,
    BLOCK_CLEANED_UP: RpcErrorKind.NOT_FOUND,
    TRANSACTION_HISTORY_NOT_AVAILABLE: RpcErrorKind.NOT_FOUND,
    INVALID_REQUEST: RpcErrorKind.FATAL,
    METHOD_NOT_FOUND: RpcErrorKind.FATAL,
    INVALID_PARAMS: RpcErrorKind.FATAL,
}

RATE_LIMIT_MARKERS = ('rate limit', 'too many requests')

GET_BLOCK_CONFIG = {
    "encoding": "json",
    "transactionDetails": "full",
    "rewards": False,
    "maxSupportedTransactionVersion": 0,
}


def classify_http_status(status_code: int) -> RpcErrorKind:
    if status_code == 429:
        return RpcErrorKind.RATE_LIMITED
    if status_code >= 500:
        return RpcErrorKind.TRANSIENT
    return RpcErrorKind.FATAL


def classify_rpc_error(error: Dict[str, Any]) -> RpcErrorKind:
    """Map a JSON-RPC error object to an RpcErrorKind"""
    code = error.get('code')
    message = str(error.get('message', '')).lower()
    if code in RPC_CODE_KINDS:
        return RPC_CODE_KINDS[code]
    if any(marker in message for marker in RATE_LIMIT_MARKERS):
        return RpcErrorKind.RATE_LIMITED
    if 'skipped' in message:
        return RpcErrorKind.SLOT_SKIPPED
    # Unknown server-defined codes are assumed to be node-side hiccups
    if isinstance(code, int) and -32099 <= code <= -32000:
        return RpcErrorKind.TRANSIENT
    return RpcErrorKind.FATAL


class SolanaRpcClient(SolanaTool):
    """JSON-RPC adapter with typed error classification and no internal retries"""

    def __init__(self, rpc_url: str, headers: Optional[Dict[str, str]] = None,
                 timeout: Optional[float] = None) -> None:
        super().__init__(rpc_url, headers, timeout)
        self._request_id = 0

    def _call(self, method: str, params: Optional[List[Any]] = None, quick: bool = False) -> Any:
        """
        Perform one JSON-RPC call.

        Args:
            method: JSON-RPC method name
            params: Positional parameters
            quick: Use the short timeout

        Returns:
            The ``result`` member of the response (may be None)

        Raises:
            RpcError: On transport failure, HTTP error or JSON-RPC error object
        """
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method}
        if params is not None:
            payload["params"] = params

        try:
            response = requests.post(self.rpc_url, json=payload, headers=self.headers,
                                     timeout=self.get_api_timeout(quick=quick))
        except requests.Timeout as e:
            raise RpcError(f"{method} timed out: {e}", RpcErrorKind.TRANSIENT, original_error=e) from e
        except requests.ConnectionError as e:
            raise RpcError(f"{method} connection failed: {e}", RpcErrorKind.TRANSIENT, original_error=e) from e
        except (requests.exceptions.ChunkedEncodingError, requests.exceptions.ContentDecodingError) as e:
            # Connection dropped while the body was being read
            raise RpcError(f"{method} response interrupted: {e}", RpcErrorKind.TRANSIENT, original_error=e) from e
        except requests.RequestException as e:
            raise RpcError(f"{method} request failed: {e}", RpcErrorKind.FATAL, original_error=e) from e

        status_code = response.status_code
        if status_code != 200:
            kind = classify_http_status(status_code)
            raise RpcError(f"{method} returned HTTP {status_code}", kind, status_code=status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise RpcError(f"{method} returned a non-JSON body", RpcErrorKind.FATAL,
                           status_code=status_code, original_error=e) from e

        if not isinstance(data, dict):
            raise RpcError(f"{method} returned an unexpected response shape", RpcErrorKind.FATAL,
                           status_code=status_code)

        error = data.get('error')
        if error:
            if not isinstance(error, dict):
                error = {'message': str(error)}
            kind = classify_rpc_error(error)
            raise RpcError(f"{method} error {error.get('code')}: {error.get('message', 'unknown error')}",
                           kind, status_code=status_code, rpc_code=error.get('code'))

        return data.get('result')

    def fetch_block(self, slot: int) -> Dict[str, Any]:
        """
        Fetch a confirmed block with full JSON transaction details.

        Raises:
            RpcError: NOT_FOUND when the node returns no block, otherwise as classified
        """
        if slot < 0:
            raise ValueError(f"slot must be non-negative: {slot}")
        result = self._call("getBlock", [slot, dict(GET_BLOCK_CONFIG)])
        if result is None:
            raise RpcError(f"No block available for slot {slot}", RpcErrorKind.NOT_FOUND)
        if not isinstance(result, dict):
            raise RpcError(f"Malformed getBlock result for slot {slot}", RpcErrorKind.FATAL)
        return result

    def fetch_current_slot(self) -> int:
        result = self._call("getSlot", quick=True)
        if not isinstance(result, int) or result < 0:
            raise RpcError(f"Malformed getSlot result: {result!r}", RpcErrorKind.FATAL)
        return result

    def fetch_epoch_schedule(self) -> EpochSchedule:
        result = self._call("getEpochSchedule", quick=True)
        try:
            return EpochSchedule.from_rpc(result)
        except (KeyError, TypeError, ValueError) as e:
            raise RpcError(f"Malformed getEpochSchedule result: {result!r}", RpcErrorKind.FATAL,
                           original_error=e) from e

    def fetch_leader_schedule(self, epoch: int, first_slot: int, last_slot: int) -> LeaderSchedule:
        """
        Fetch the leader schedule for the epoch starting at ``first_slot``.

        Raises:
            RpcError: NOT_FOUND when the node has no schedule for the epoch
        """
        result = self._call("getLeaderSchedule", [first_slot])
        if result is None:
            raise RpcError(f"No leader schedule found for epoch {epoch}", RpcErrorKind.NOT_FOUND)
        if not isinstance(result, dict):
            raise RpcError(f"Malformed getLeaderSchedule result for epoch {epoch}", RpcErrorKind.FATAL)
        logger.debug(f"Leader schedule for epoch {epoch} lists {len(result)} validators")
        try:
            return LeaderSchedule.from_rpc(epoch, first_slot, last_slot, result)
        except (KeyError, TypeError, ValueError) as e:
            raise RpcError(f"Malformed getLeaderSchedule result for epoch {epoch}: {e}", RpcErrorKind.FATAL,
                           original_error=e) from e
