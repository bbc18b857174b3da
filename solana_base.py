#!/usr/bin/env python3
"""
Solana Vote Tools - Base Class

Base class providing common functionality for tools that talk to a Solana
JSON-RPC endpoint.
"""

from typing import Dict, Optional
from abc import ABC

from solana_utils import DEFAULT_HEADERS, API_TIMEOUT_DEFAULT, API_TIMEOUT_QUICK, InvalidInputError


class SolanaTool(ABC):
    """
    Base class for all Solana RPC tools.

    Provides common initialization and shared functionality.
    """

    def __init__(self, rpc_url: str, headers: Optional[Dict[str, str]] = None,
                 timeout: Optional[float] = None) -> None:
        """
        Initialize the Solana tool.

        Args:
            rpc_url: JSON-RPC endpoint URL (http or https)
            headers: Optional custom headers (defaults to DEFAULT_HEADERS)
            timeout: Optional per-request timeout in seconds
        """
        if not rpc_url or not rpc_url.startswith(('http://', 'https://')):
            raise InvalidInputError(f"RPC URL must start with http:// or https://: {rpc_url!r}")
        self.rpc_url: str = rpc_url
        self.headers: Dict[str, str] = headers or DEFAULT_HEADERS.copy()
        self.timeout: Optional[float] = timeout

    def get_api_timeout(self, quick: bool = False) -> float:
        """
        Get API timeout value.

        Args:
            quick: If True, return quick timeout, otherwise default timeout

        Returns:
            Timeout value in seconds (explicit, from config, or defaults)
        """
        if self.timeout is not None:
            return self.timeout
        return API_TIMEOUT_QUICK if quick else API_TIMEOUT_DEFAULT

    def __repr__(self) -> str:
        """String representation of the tool"""
        return f"{self.__class__.__name__}(rpc_url={self.rpc_url})"
