#!/usr/bin/env python3
"""
Stacks NFT Market — Shared Constants and Utilities

Centralized configuration for:
- Network presets (testnet / mainnet)
- Marketplace contract identifiers
- Contract error codes
- Explorer links
- Formatting utilities
"""

from typing import Optional

# =============================================================================
# Networks
# =============================================================================

NETWORKS = {
    "testnet": {
        "node_url": "https://api.testnet.hiro.so",
        "chain_id": 0x80000000,
        "tx_version": 0x80,
        "address_version": 26,  # ST...
        "explorer_chain": "testnet",
    },
    "mainnet": {
        "node_url": "https://api.hiro.so",
        "chain_id": 0x00000001,
        "tx_version": 0x00,
        "address_version": 22,  # SP...
        "explorer_chain": "mainnet",
    },
}

EXPLORER_BASE_URL = "https://explorer.stacks.co"


# =============================================================================
# Marketplace Contracts
# =============================================================================

# Deployer of both contracts on testnet
DEFAULT_CONTRACT_ADDRESS = "STT7DEMBVKGRGBQFG5EP801XC71566V9ZQM4C9GZ"
NFT_CONTRACT = "simple-nft"
MARKETPLACE_CONTRACT = "nft-marketplace"

# Basis points denominator (10000 bps = 100%)
BPS_DENOMINATOR = 10000
DEFAULT_MARKETPLACE_FEE_BPS = 250
MAX_MARKETPLACE_FEE_BPS = 1000
MAX_ROYALTY_BPS = 1000

MICROSTX_PER_STX = 1_000_000

# Read-only functions reported by `stats`
STATS_FUNCTIONS = {
    "total_volume": "get-total-volume",
    "total_sales": "get-total-sales",
    "marketplace_fee": "get-marketplace-fee",
}


# =============================================================================
# Contract Error Codes
# =============================================================================

CONTRACT_ERRORS = {
    1: ("ERR_INSUFFICIENT_BALANCE", "Not enough STX to complete the transfer"),
    2: ("ERR_SELF_TRANSFER", "Sender and recipient are the same principal"),
    3: ("ERR_NON_POSITIVE_AMOUNT", "Transfer amount must be positive"),
    100: ("ERR_UNAUTHORIZED", "Caller is not allowed to perform this action"),
    101: ("ERR_LISTING_NOT_FOUND", "No active listing for this token and seller"),
    102: ("ERR_INVALID_PRICE", "Price must be greater than zero"),
    103: ("ERR_ALREADY_LISTED", "Token is already listed"),
    104: ("ERR_INVALID_ROYALTY", "Royalty is out of range or has no recipient"),
    105: ("ERR_SELF_PURCHASE", "Seller cannot buy their own listing"),
    106: ("ERR_INVALID_FEE", "Marketplace fee is out of range"),
    107: ("ERR_NFT_NOT_FOUND", "Token does not exist"),
}

ERR_UNAUTHORIZED = 100
ERR_LISTING_NOT_FOUND = 101
ERR_INVALID_PRICE = 102
ERR_ALREADY_LISTED = 103
ERR_INVALID_ROYALTY = 104
ERR_SELF_PURCHASE = 105
ERR_INVALID_FEE = 106
ERR_NFT_NOT_FOUND = 107


# =============================================================================
# Explorer Links
# =============================================================================


def explorer_tx_url(txid: str, network: str = "testnet") -> str:
    """Explorer link for a transaction id."""
    chain = NETWORKS.get(network, NETWORKS["testnet"])["explorer_chain"]
    return f"{EXPLORER_BASE_URL}/txid/{txid}?chain={chain}"


def explorer_contract_url(contract_id: str, network: str = "testnet") -> str:
    """Explorer link for a contract (ADDR.name) or plain address."""
    chain = NETWORKS.get(network, NETWORKS["testnet"])["explorer_chain"]
    return f"{EXPLORER_BASE_URL}/address/{contract_id}?chain={chain}"


# =============================================================================
# Formatting Utilities
# =============================================================================


def format_stx_amount(micro: Optional[int]) -> str:
    """Convert microSTX to STX with proper formatting."""
    if micro is None:
        return "N/A"
    stx = micro / MICROSTX_PER_STX
    if stx < 1:
        return f"{stx:.6f} STX"
    elif stx < 1000:
        return f"{stx:.4f} STX"
    else:
        return f"{stx:,.2f} STX"


def format_bps(bps: Optional[int]) -> str:
    """250 -> 2.50%"""
    if bps is None:
        return "N/A"
    return f"{bps / 100:.2f}%"


def truncate_address(address: str, start: int = 6, end: int = 4) -> str:
    """Truncate address for display: ST1PQH...GZGM"""
    if len(address) <= start + end + 3:
        return address
    return f"{address[:start]}...{address[-end:]}"


# =============================================================================
# CLI Help Text
# =============================================================================

COMMON_EPILOG = """
Environment variables:
  PRIVATE_KEY        Hex private key used when --wallet is not given
  WALLET_PASSWORD    Password for encrypted wallet storage
  STACKS_NETWORK     testnet (default) or mainnet
  HIRO_API_KEY       Hiro API key (optional, increases rate limits)

Configuration:
  Config file: ~/.stacks-nft-market/config.json
  Set values: python utils.py config set <key> <value>

All amounts are in microSTX (1 STX = 1,000,000 microSTX).
Royalties and fees are in basis points (250 = 2.5%).
"""


# =============================================================================
# Module exports
# =============================================================================

__all__ = [
    # Networks
    "NETWORKS",
    "EXPLORER_BASE_URL",
    # Contracts
    "DEFAULT_CONTRACT_ADDRESS",
    "NFT_CONTRACT",
    "MARKETPLACE_CONTRACT",
    "BPS_DENOMINATOR",
    "DEFAULT_MARKETPLACE_FEE_BPS",
    "MAX_MARKETPLACE_FEE_BPS",
    "MAX_ROYALTY_BPS",
    "MICROSTX_PER_STX",
    "STATS_FUNCTIONS",
    # Errors
    "CONTRACT_ERRORS",
    "ERR_UNAUTHORIZED",
    "ERR_LISTING_NOT_FOUND",
    "ERR_INVALID_PRICE",
    "ERR_ALREADY_LISTED",
    "ERR_INVALID_ROYALTY",
    "ERR_SELF_PURCHASE",
    "ERR_INVALID_FEE",
    "ERR_NFT_NOT_FOUND",
    # Links
    "explorer_tx_url",
    "explorer_contract_url",
    # Formatting
    "format_stx_amount",
    "format_bps",
    "truncate_address",
    # Help
    "COMMON_EPILOG",
]
