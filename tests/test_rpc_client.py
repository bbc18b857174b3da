"""
Tests for solana_rpc_client module.
"""
import pytest
import requests
from unittest.mock import Mock, patch

from solana_utils import InvalidInputError, RpcError, RpcErrorKind
from solana_rpc_client import SolanaRpcClient, classify_http_status, classify_rpc_error

from conftest import OTHER_VALIDATOR, RPC_URL, TARGET


def rpc_response(result=None, error=None, status_code=200):
    response = Mock()
    response.status_code = status_code
    body = {'jsonrpc': '2.0', 'id': 1}
    if error is not None:
        body['error'] = error
    else:
        body['result'] = result
    response.json.return_value = body
    return response


class TestClassification:
    """Tests for HTTP and JSON-RPC error classification"""

    def test_http_status(self):
        assert classify_http_status(429) is RpcErrorKind.RATE_LIMITED
        assert classify_http_status(502) is RpcErrorKind.TRANSIENT
        assert classify_http_status(503) is RpcErrorKind.TRANSIENT
        assert classify_http_status(401) is RpcErrorKind.FATAL
        assert classify_http_status(404) is RpcErrorKind.FATAL

    @pytest.mark.parametrize("code,kind", [
        (429, RpcErrorKind.RATE_LIMITED),
        (-32004, RpcErrorKind.TRANSIENT),
        (-32005, RpcErrorKind.TRANSIENT),
        (-32007, RpcErrorKind.SLOT_SKIPPED),
        (-32009, RpcErrorKind.SLOT_SKIPPED),
        (-32001, RpcErrorKind.NOT_FOUND),
        (-32602, RpcErrorKind.FATAL),
        (-32050, RpcErrorKind.TRANSIENT),
    ])
    def test_rpc_codes(self, code, kind):
        assert classify_rpc_error({'code': code, 'message': 'x'}) is kind

    def test_rate_limit_message(self):
        error = {'code': -32099999, 'message': 'Too many requests for a specific RPC call'}

        assert classify_rpc_error(error) is RpcErrorKind.RATE_LIMITED


class TestSolanaRpcClient:
    """Tests for SolanaRpcClient calls"""

    def test_init_rejects_bad_url(self):
        with pytest.raises(InvalidInputError):
            SolanaRpcClient("localhost:8899")

    @patch('solana_rpc_client.requests.post')
    def test_fetch_block_success(self, mock_post):
        mock_post.return_value = rpc_response({'blockTime': 1, 'transactions': []})
        client = SolanaRpcClient(RPC_URL)

        block = client.fetch_block(100)

        assert block['transactions'] == []
        payload = mock_post.call_args.kwargs['json']
        assert payload['method'] == 'getBlock'
        assert payload['params'][0] == 100
        assert payload['params'][1]['encoding'] == 'json'
        assert payload['params'][1]['maxSupportedTransactionVersion'] == 0
        assert mock_post.call_args.kwargs['timeout'] > 0

    @patch('solana_rpc_client.requests.post')
    def test_fetch_block_null_result_is_not_found(self, mock_post):
        mock_post.return_value = rpc_response(None)
        client = SolanaRpcClient(RPC_URL)

        with pytest.raises(RpcError) as excinfo:
            client.fetch_block(100)

        assert excinfo.value.kind is RpcErrorKind.NOT_FOUND

    @patch('solana_rpc_client.requests.post')
    def test_fetch_block_skipped(self, mock_post):
        mock_post.return_value = rpc_response(error={
            'code': -32007,
            'message': 'Slot 100 was skipped, or missing due to ledger jump to recent snapshot',
        })
        client = SolanaRpcClient(RPC_URL)

        with pytest.raises(RpcError) as excinfo:
            client.fetch_block(100)

        assert excinfo.value.kind is RpcErrorKind.SLOT_SKIPPED
        assert excinfo.value.rpc_code == -32007

    @patch('solana_rpc_client.requests.post')
    def test_http_429(self, mock_post):
        mock_post.return_value = rpc_response(status_code=429)
        client = SolanaRpcClient(RPC_URL)

        with pytest.raises(RpcError) as excinfo:
            client.fetch_block(100)

        assert excinfo.value.kind is RpcErrorKind.RATE_LIMITED
        assert excinfo.value.status_code == 429
        assert excinfo.value.retryable

    @patch('solana_rpc_client.requests.post')
    def test_timeout_is_transient(self, mock_post):
        mock_post.side_effect = requests.Timeout("read timed out")
        client = SolanaRpcClient(RPC_URL)

        with pytest.raises(RpcError) as excinfo:
            client.fetch_block(100)

        assert excinfo.value.kind is RpcErrorKind.TRANSIENT
        assert isinstance(excinfo.value.original_error, requests.Timeout)

    @patch('solana_rpc_client.requests.post')
    def test_connection_error_is_transient(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("connection reset")
        client = SolanaRpcClient(RPC_URL)

        with pytest.raises(RpcError) as excinfo:
            client.fetch_current_slot()

        assert excinfo.value.kind is RpcErrorKind.TRANSIENT

    @patch('solana_rpc_client.requests.post')
    def test_reset_while_reading_body_is_transient(self, mock_post):
        mock_post.side_effect = requests.exceptions.ChunkedEncodingError(
            "Connection broken: ConnectionResetError(104, 'Connection reset by peer')")
        client = SolanaRpcClient(RPC_URL)

        with pytest.raises(RpcError) as excinfo:
            client.fetch_block(100)

        assert excinfo.value.kind is RpcErrorKind.TRANSIENT
        assert excinfo.value.retryable

    @patch('solana_rpc_client.requests.post')
    def test_non_json_body_is_fatal(self, mock_post):
        response = Mock(status_code=200)
        response.json.side_effect = ValueError("no json")
        mock_post.return_value = response
        client = SolanaRpcClient(RPC_URL)

        with pytest.raises(RpcError) as excinfo:
            client.fetch_current_slot()

        assert excinfo.value.kind is RpcErrorKind.FATAL

    def test_negative_slot_rejected(self):
        with pytest.raises(ValueError):
            SolanaRpcClient(RPC_URL).fetch_block(-1)

    @patch('solana_rpc_client.requests.post')
    def test_fetch_current_slot(self, mock_post):
        mock_post.return_value = rpc_response(250000000)

        assert SolanaRpcClient(RPC_URL).fetch_current_slot() == 250000000
        assert mock_post.call_args.kwargs['json']['method'] == 'getSlot'

    @patch('solana_rpc_client.requests.post')
    def test_fetch_epoch_schedule(self, mock_post):
        mock_post.return_value = rpc_response({
            'firstNormalEpoch': 0, 'firstNormalSlot': 0, 'leaderScheduleSlotOffset': 432000,
            'slotsPerEpoch': 432000, 'warmup': False,
        })

        schedule = SolanaRpcClient(RPC_URL).fetch_epoch_schedule()

        assert schedule.slots_per_epoch == 432000

    @patch('solana_rpc_client.requests.post')
    def test_fetch_epoch_schedule_malformed(self, mock_post):
        mock_post.return_value = rpc_response({'unexpected': True})

        with pytest.raises(RpcError) as excinfo:
            SolanaRpcClient(RPC_URL).fetch_epoch_schedule()

        assert excinfo.value.kind is RpcErrorKind.FATAL

    @patch('solana_rpc_client.requests.post')
    def test_fetch_leader_schedule(self, mock_post):
        mock_post.return_value = rpc_response({TARGET: [0, 1], OTHER_VALIDATOR: [2, 3]})

        schedule = SolanaRpcClient(RPC_URL).fetch_leader_schedule(1, 432000, 863999)

        assert mock_post.call_args.kwargs['json']['params'] == [432000]
        assert schedule.epoch == 1
        assert schedule.leader_for(432001) == TARGET
        assert schedule.leader_for(432003) == OTHER_VALIDATOR

    @patch('solana_rpc_client.requests.post')
    def test_fetch_leader_schedule_missing(self, mock_post):
        mock_post.return_value = rpc_response(None)

        with pytest.raises(RpcError) as excinfo:
            SolanaRpcClient(RPC_URL).fetch_leader_schedule(900, 0, 1)

        assert excinfo.value.kind is RpcErrorKind.NOT_FOUND

    @patch('solana_rpc_client.requests.post')
    def test_fetch_leader_schedule_malformed(self, mock_post):
        mock_post.return_value = rpc_response({TARGET: 5})

        with pytest.raises(RpcError) as excinfo:
            SolanaRpcClient(RPC_URL).fetch_leader_schedule(0, 0, 431999)

        assert excinfo.value.kind is RpcErrorKind.FATAL
