#!/usr/bin/env python3
"""
Stacks NFT Market — User-Friendly Error Messages

Converts node rejections and contract error codes into user-friendly messages
with actionable suggestions.
"""

import sys
from pathlib import Path
from typing import Optional, Dict, Any

script_dir = Path(__file__).parent
sys.path.insert(0, str(script_dir))

from common import CONTRACT_ERRORS  # noqa: E402


# =============================================================================
# Error Message Mapping
# =============================================================================

ERROR_PATTERNS = {
    # Mempool rejections (reason field of POST /v2/transactions)
    "conflictingnonceinmempool": {
        "message": "Another transaction with the same nonce is pending",
        "reasons": [
            "A previous transaction from this account is still in the mempool",
            "The same command was sent twice",
        ],
        "suggestion": "Wait for the pending transaction or pass --nonce explicitly",
    },
    "badnonce": {
        "message": "Transaction nonce mismatch",
        "reasons": [
            "Another transaction was sent first",
            "Account state changed since the nonce was fetched",
        ],
        "suggestion": "Wait a moment and try again",
    },
    "notenoughfunds": {
        "message": "Insufficient balance",
        "reasons": [
            "Not enough STX for the transaction fee",
            "Not enough STX to pay the listing price",
        ],
        "suggestion": "Check your balance with 'wallet.py balance'",
    },
    "feetoolow": {
        "message": "Transaction fee too low",
        "reasons": [
            "Network is congested",
            "Fee estimation fell back to the configured minimum",
        ],
        "suggestion": "Retry with a higher --fee (in microSTX)",
    },
    "contractalreadyexists": {
        "message": "Contract already deployed",
        "reasons": [
            "A contract with this name already exists for this deployer",
        ],
        "suggestion": "Deploy under a different contract name or account",
    },
    "nosuchcontract": {
        "message": "Contract not found",
        "reasons": [
            "Contract address or name is wrong",
            "Contract is deployed on another network",
            "Deployment has not been confirmed yet",
        ],
        "suggestion": "Check --contract-address and --network",
    },
    "badfunctionargument": {
        "message": "Invalid contract call arguments",
        "reasons": [
            "Argument types do not match the contract function signature",
        ],
        "suggestion": "Check token id, price and principal arguments",
    },
    "serializationfailure": {
        "message": "Node could not decode the transaction",
        "reasons": [
            "Transaction built for another network version",
        ],
        "suggestion": "Check --network matches the node URL",
    },
    # Transport errors
    "timeout": {
        "message": "Request timeout",
        "reasons": [
            "Network connection is slow",
            "Node is overloaded",
        ],
        "suggestion": "Try again in a few moments",
    },
    "connection error": {
        "message": "Connection error",
        "reasons": [
            "No internet connection",
            "Node is down",
            "Network firewall blocking request",
        ],
        "suggestion": "Check your internet connection and --node-url",
    },
}


# =============================================================================
# Error Formatting Functions
# =============================================================================


def format_error(
    error: Any,
    error_type: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Convert technical error into user-friendly format.

    Args:
        error: Error message (string, dict, or exception)
        error_type: Type of error (e.g., "broadcast", "api", "contract")
        context: Additional context (e.g., {"txid": "..."})

    Returns:
        dict with formatted error message
    """
    error_msg = _extract_error_message(error)
    error_lower = error_msg.lower()

    matched_pattern = None
    for pattern, info in ERROR_PATTERNS.items():
        if pattern in error_lower:
            matched_pattern = info
            break

    result = {
        "success": False,
        "error": matched_pattern["message"] if matched_pattern else error_msg,
    }

    if matched_pattern:
        result["reasons"] = matched_pattern.get("reasons", [])
        result["suggestion"] = matched_pattern.get("suggestion", "")
        result["raw_error"] = error_msg

    if context:
        for key in ("txid", "contract", "function", "endpoint"):
            if context.get(key):
                result[key] = context[key]

    if error_type == "api" and isinstance(error, dict) and "status_code" in error:
        result["status_code"] = error["status_code"]

    return result


def _extract_error_message(error: Any) -> str:
    """Extract error message from various error types."""
    if isinstance(error, str):
        return error
    elif isinstance(error, dict):
        # Node rejection: {"error": "transaction rejected", "reason": "BadNonce", ...}
        if error.get("reason"):
            return f"{error.get('error', 'transaction rejected')}: {error['reason']}"
        inner = error.get("error", error)
        return inner if isinstance(inner, str) else str(inner)
    else:
        return str(error)


def format_api_error(error: Any, endpoint: Optional[str] = None) -> Dict[str, Any]:
    """Format node API error."""
    return format_error(error, error_type="api", context={"endpoint": endpoint})


def format_broadcast_error(error: Any, txid: Optional[str] = None) -> Dict[str, Any]:
    """
    Format a mempool rejection.

    The node answers POST /v2/transactions with
    {"error": ..., "reason": ..., "reason_data": ..., "txid": ...}.
    """
    result = format_error(error, error_type="broadcast", context={"txid": txid})
    if isinstance(error, dict):
        if error.get("reason"):
            result["reason"] = error["reason"]
        if error.get("reason_data"):
            result["reason_data"] = error["reason_data"]
        if error.get("txid") and "txid" not in result:
            result["txid"] = error["txid"]
    return result


def format_contract_error(code: int, contract: Optional[str] = None) -> Dict[str, Any]:
    """Map a Clarity (err uN) code to its symbolic name."""
    name, message = CONTRACT_ERRORS.get(code, ("ERR_UNKNOWN", f"Contract error u{code}"))
    result = {
        "success": False,
        "error": message,
        "error_code": code,
        "error_name": name,
    }
    if contract:
        result["contract"] = contract
    return result


# =============================================================================
# Helper Functions
# =============================================================================


def get_error_suggestion(error: Any) -> Optional[str]:
    """Get suggestion for error if available."""
    error_msg = _extract_error_message(error).lower()
    for pattern, info in ERROR_PATTERNS.items():
        if pattern in error_msg:
            return info.get("suggestion")
    return None
