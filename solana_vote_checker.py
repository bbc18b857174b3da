#!/usr/bin/env python3
"""
Solana Vote Inclusion Checker

Scans a contiguous range of slots ending at --slot and reports, for every
slot, whether a vote transaction from the given account was included in the
block.

Usage:
    python3 solana_vote_checker.py --url https://api.mainnet-beta.solana.com \\
        --account <base58 pubkey> --slot 250000000 --distance 20
"""

import sys
import json
import logging
import argparse
from typing import List, Optional

from solana_utils import (
    InvalidInputError, LeaderScheduleError, NetworkError, RpcError, ScanAbortedError,
    MAX_RPC_RETRIES, logger
)
from solana_rpc_client import SolanaRpcClient
from vote_backoff import BackoffController, retry_call
from leader_schedule import LeaderScheduleResolver
from slot_scanner import ScanRequest, SlotScanner
from vote_report import ProgressIndicator, ReportAggregator, render_report

# Version number (semantic versioning: MAJOR.MINOR.PATCH)
__version__ = "1.0.0"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description='Check whether a validator\'s vote transactions were included in a range of slots',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
The range covers [slot - distance + 1, slot]; slots are scanned newest first
and reported in ascending order.

Examples:
  python3 solana_vote_checker.py --url https://api.mainnet-beta.solana.com \\
      --account Vote111... --slot 250000000 --distance 10
        """
    )
    parser.add_argument('--url', required=True, help='Solana JSON-RPC endpoint URL')
    parser.add_argument('--account', required=True, help='Base58 public key whose votes are checked')
    parser.add_argument('--slot', type=int, required=True, help='Newest slot of the range')
    parser.add_argument('--distance', type=int, required=True, help='Number of slots to scan (>= 1)')
    parser.add_argument('--max-retries', type=int, default=MAX_RPC_RETRIES,
                        help=f'Retries per RPC call before giving up (default: {MAX_RPC_RETRIES})')
    parser.add_argument('--json', action='store_true', help='Print the report as JSON')
    parser.add_argument('--no-color', action='store_true', help='Disable colored output')
    parser.add_argument('--no-progress', action='store_true', help='Disable the progress line')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    parser.add_argument('-q', '--quiet', action='store_true', help='Only log warnings and errors')
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    return parser.parse_args(argv)


def check_start_slot(client: SolanaRpcClient, backoff: BackoffController, request: ScanRequest) -> int:
    """Confirm the endpoint is reachable and the requested slot is not in the future."""
    try:
        current_slot = retry_call(client.fetch_current_slot, backoff, "current slot")
    except RpcError as e:
        raise NetworkError(f"Could not reach RPC endpoint {client.rpc_url}: {e}", original_error=e) from e
    if request.start_slot > current_slot:
        raise InvalidInputError(f"Slot {request.start_slot} is ahead of the endpoint's current slot {current_slot}")
    logger.info(f"Endpoint current slot: {current_slot}")
    return current_slot


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    elif args.quiet:
        logging.getLogger().setLevel(logging.WARNING)

    try:
        request = ScanRequest(
            rpc_url=args.url,
            target_account=args.account,
            start_slot=args.slot,
            distance=args.distance,
        )
        if args.max_retries < 0:
            raise InvalidInputError("--max-retries must be non-negative")
        client = SolanaRpcClient(request.rpc_url)
        backoff = BackoffController(max_retries=args.max_retries)
        check_start_slot(client, backoff, request)

        resolver = LeaderScheduleResolver(client, backoff)
        scanner = SlotScanner(client, backoff, resolver, request.target_account)
        progress = ProgressIndicator(total=request.distance,
                                     enabled=not args.no_progress and sys.stderr.isatty())
        report = scanner.run(request, ReportAggregator(expected_slots=request.slots()), progress=progress)
    except InvalidInputError as e:
        logger.error(f"Invalid input: {e}")
        return 1
    except (NetworkError, LeaderScheduleError, ScanAbortedError) as e:
        logger.error(f"Scan aborted: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted; no report produced")
        return 130

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(render_report(report, request, color=not args.no_color and sys.stdout.isatty()))
    return 0


if __name__ == "__main__":
    sys.exit(main())
