#!/usr/bin/env python3
"""
Stacks NFT Market — Взаимодействие с маркетплейсом

- Минт NFT (simple-nft.mint)
- Листинг, покупка, отмена листинга (nft-marketplace)
- Статистика маркетплейса (read-only)
- Листинг / комиссии / владелец токена (read-only)
- Смена комиссии маркетплейса (admin)

Every write command signs a contract-call, broadcasts it and prints the
txid with an explorer link. --dry-run signs without broadcasting.
"""

import os
import sys
import json
import logging
import argparse
import getpass
from pathlib import Path
from typing import Any, List, Optional

# Локальный импорт
script_dir = Path(__file__).parent
sys.path.insert(0, str(script_dir))

from utils import (  # noqa: E402
    LOG_FILE,
    LOGGER_NAME,
    address_network,
    get_config_value,
    get_network,
    is_valid_address,
    parse_principal,
    setup_logging,
)
from common import (  # noqa: E402
    BPS_DENOMINATOR,
    COMMON_EPILOG,
    DEFAULT_CONTRACT_ADDRESS,
    MARKETPLACE_CONTRACT,
    MAX_MARKETPLACE_FEE_BPS,
    NETWORKS,
    NFT_CONTRACT,
    STATS_FUNCTIONS,
    explorer_contract_url,
    explorer_tx_url,
    format_bps,
    format_stx_amount,
    truncate_address,
)
from clarity import (  # noqa: E402
    ClarityValue,
    contract_principal_cv,
    cv_to_string,
    none_cv,
    principal_cv,
    some_cv,
    standard_principal_cv,
    uint_cv,
)
from errors import format_contract_error  # noqa: E402
from transactions import (  # noqa: E402
    NodeRequestError,
    StacksPrivateKey,
    broadcast_transaction,
    call_read_only,
    make_contract_call,
)
from wallet import resolve_signer, signer_needs_password  # noqa: E402

logger = logging.getLogger(LOGGER_NAME)

SIGNING_COMMANDS = ("mint", "list", "buy", "cancel", "set-fee")


# =============================================================================
# Contract Resolution & Validation
# =============================================================================


def resolve_contracts(contract_address: Optional[str] = None) -> dict:
    """
    Адрес деплоера и имена контрактов.

    Порядок: аргумент → config["contract_address"] → DEFAULT_CONTRACT_ADDRESS.
    """
    address = (
        contract_address or get_config_value("contract_address") or DEFAULT_CONTRACT_ADDRESS
    )
    if not is_valid_address(address):
        raise ValueError(f"Invalid contract address: {address}")

    return {
        "address": address,
        "nft": get_config_value("nft_contract") or NFT_CONTRACT,
        "marketplace": get_config_value("marketplace_contract") or MARKETPLACE_CONTRACT,
    }


def validate_uint(name: str, value: Any, positive: bool = False) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer")
    if value < 0:
        raise ValueError(f"{name} cannot be negative")
    if positive and value == 0:
        raise ValueError(f"{name} must be greater than zero")
    return value


def validate_principal(principal: str, network: str) -> str:
    """Адрес или ADDR.contract в сети `network`."""
    address, _ = parse_principal(principal)
    actual = address_network(address)
    if actual and actual != network:
        raise ValueError(f"{principal} is a {actual} address, but network is {network}")
    return principal


# =============================================================================
# Transactions
# =============================================================================


def submit_contract_call(
    contract_name: str,
    function_name: str,
    function_args: List[ClarityValue],
    signer: StacksPrivateKey,
    action: str,
    contract_address: Optional[str] = None,
    network: Optional[str] = None,
    node_url: Optional[str] = None,
    fee: Optional[int] = None,
    nonce: Optional[int] = None,
    dry_run: bool = False,
) -> dict:
    """
    Подписывает contract-call и отправляет в сеть.

    Returns:
        dict с txid и ссылкой на explorer (или raw_tx при dry_run)
    """
    net = get_network(network)
    address = contract_address or resolve_contracts()["address"]
    contract_id = f"{address}.{contract_name}"

    try:
        tx = make_contract_call(
            address,
            contract_name,
            function_name,
            function_args,
            signer,
            network=net["name"],
            node_url=node_url,
            fee=fee,
            nonce=nonce,
        )
    except NodeRequestError as e:
        return {**e.result, "action": action, "contract": contract_id}

    result = {
        "action": action,
        "contract": contract_id,
        "function": function_name,
        "args": [cv_to_string(arg) for arg in function_args],
        "sender": signer.address(net),
        "network": net["name"],
        "nonce": tx.nonce,
        "fee": tx.fee,
        "txid": tx.txid(),
    }

    if dry_run:
        result.update({"success": True, "broadcast": False, "raw_tx": tx.hex()})
        return result

    logger.info(
        "Broadcasting %s %s from %s (nonce %s)",
        contract_id,
        function_name,
        truncate_address(result["sender"]),
        tx.nonce,
    )
    sent = broadcast_transaction(tx, network=net["name"], node_url=node_url)
    if not sent["success"]:
        return {**result, **sent, "broadcast": False}

    result.update(
        {
            "success": True,
            "broadcast": True,
            "txid": sent["txid"],
            "explorer_url": explorer_tx_url(sent["txid"], net["name"]),
        }
    )
    logger.info("Transaction sent: %s", sent["txid"])
    return result


def mint_nft(
    recipient: str,
    signer: StacksPrivateKey,
    contract_address: Optional[str] = None,
    network: Optional[str] = None,
    node_url: Optional[str] = None,
    fee: Optional[int] = None,
    nonce: Optional[int] = None,
    dry_run: bool = False,
) -> dict:
    """simple-nft.mint(recipient). Only the contract deployer may mint."""
    try:
        net = get_network(network)
        contracts = resolve_contracts(contract_address)
        recipient_cv = principal_cv(validate_principal(recipient, net["name"]))
    except ValueError as e:
        return {"success": False, "action": "mint", "error": str(e)}

    result = submit_contract_call(
        contracts["nft"],
        "mint",
        [recipient_cv],
        signer,
        action="mint",
        contract_address=contracts["address"],
        network=net["name"],
        node_url=node_url,
        fee=fee,
        nonce=nonce,
        dry_run=dry_run,
    )
    result["recipient"] = recipient
    return result


def list_nft(
    token_id: int,
    price: int,
    signer: StacksPrivateKey,
    royalty: int = 0,
    royalty_recipient: Optional[str] = None,
    contract_address: Optional[str] = None,
    network: Optional[str] = None,
    node_url: Optional[str] = None,
    fee: Optional[int] = None,
    nonce: Optional[int] = None,
    dry_run: bool = False,
) -> dict:
    """
    Выставляет NFT на продажу.

    Args:
        token_id: ID токена simple-nft
        price: Цена в microSTX (> 0)
        royalty: Роялти в bps (500 = 5%)
        royalty_recipient: Получатель роялти; по умолчанию адрес контрактов,
            если royalty > 0
    """
    try:
        net = get_network(network)
        contracts = resolve_contracts(contract_address)
        validate_uint("token_id", token_id)
        validate_uint("price", price, positive=True)
        validate_uint("royalty", royalty)
        if royalty > BPS_DENOMINATOR:
            raise ValueError(f"royalty must be within 0..{BPS_DENOMINATOR} bps")

        if royalty_recipient:
            recipient_cv = some_cv(
                principal_cv(validate_principal(royalty_recipient, net["name"]))
            )
        elif royalty > 0:
            recipient_cv = some_cv(standard_principal_cv(contracts["address"]))
        else:
            recipient_cv = none_cv()
    except ValueError as e:
        return {"success": False, "action": "list", "error": str(e)}

    result = submit_contract_call(
        contracts["marketplace"],
        "list-nft",
        [
            contract_principal_cv(contracts["address"], contracts["nft"]),
            uint_cv(token_id),
            uint_cv(price),
            uint_cv(royalty),
            recipient_cv,
        ],
        signer,
        action="list",
        contract_address=contracts["address"],
        network=net["name"],
        node_url=node_url,
        fee=fee,
        nonce=nonce,
        dry_run=dry_run,
    )
    result.update(
        {
            "token_id": token_id,
            "price": price,
            "price_stx": format_stx_amount(price),
            "royalty": format_bps(royalty),
        }
    )
    return result


def buy_nft(
    token_id: int,
    seller: str,
    signer: StacksPrivateKey,
    contract_address: Optional[str] = None,
    network: Optional[str] = None,
    node_url: Optional[str] = None,
    fee: Optional[int] = None,
    nonce: Optional[int] = None,
    dry_run: bool = False,
) -> dict:
    """Покупает листинг `token_id` у `seller`."""
    try:
        net = get_network(network)
        contracts = resolve_contracts(contract_address)
        validate_uint("token_id", token_id)
        seller_cv = principal_cv(validate_principal(seller, net["name"]))
    except ValueError as e:
        return {"success": False, "action": "buy", "error": str(e)}

    result = submit_contract_call(
        contracts["marketplace"],
        "buy-nft",
        [
            contract_principal_cv(contracts["address"], contracts["nft"]),
            uint_cv(token_id),
            seller_cv,
        ],
        signer,
        action="buy",
        contract_address=contracts["address"],
        network=net["name"],
        node_url=node_url,
        fee=fee,
        nonce=nonce,
        dry_run=dry_run,
    )
    result.update({"token_id": token_id, "seller": seller})
    return result


def cancel_listing(
    token_id: int,
    signer: StacksPrivateKey,
    contract_address: Optional[str] = None,
    network: Optional[str] = None,
    node_url: Optional[str] = None,
    fee: Optional[int] = None,
    nonce: Optional[int] = None,
    dry_run: bool = False,
) -> dict:
    """Снимает листинг; токен возвращается продавцу."""
    try:
        net = get_network(network)
        contracts = resolve_contracts(contract_address)
        validate_uint("token_id", token_id)
    except ValueError as e:
        return {"success": False, "action": "cancel", "error": str(e)}

    result = submit_contract_call(
        contracts["marketplace"],
        "cancel-listing",
        [
            contract_principal_cv(contracts["address"], contracts["nft"]),
            uint_cv(token_id),
        ],
        signer,
        action="cancel",
        contract_address=contracts["address"],
        network=net["name"],
        node_url=node_url,
        fee=fee,
        nonce=nonce,
        dry_run=dry_run,
    )
    result["token_id"] = token_id
    return result


def set_marketplace_fee(
    fee_bps: int,
    signer: StacksPrivateKey,
    contract_address: Optional[str] = None,
    network: Optional[str] = None,
    node_url: Optional[str] = None,
    fee: Optional[int] = None,
    nonce: Optional[int] = None,
    dry_run: bool = False,
) -> dict:
    """Admin: новая комиссия маркетплейса в bps (не выше 1000)."""
    try:
        net = get_network(network)
        contracts = resolve_contracts(contract_address)
        validate_uint("fee_bps", fee_bps)
        if fee_bps > MAX_MARKETPLACE_FEE_BPS:
            raise ValueError(f"fee_bps must be within 0..{MAX_MARKETPLACE_FEE_BPS}")
    except ValueError as e:
        return {"success": False, "action": "set-fee", "error": str(e)}

    result = submit_contract_call(
        contracts["marketplace"],
        "set-marketplace-fee",
        [uint_cv(fee_bps)],
        signer,
        action="set-fee",
        contract_address=contracts["address"],
        network=net["name"],
        node_url=node_url,
        fee=fee,
        nonce=nonce,
        dry_run=dry_run,
    )
    result["marketplace_fee"] = format_bps(fee_bps)
    return result


# =============================================================================
# Read-only
# =============================================================================


def _unwrap_ok(value: Any) -> Any:
    if isinstance(value, dict) and set(value) == {"ok"}:
        return value["ok"]
    return value


def _read(
    contract_name: str,
    function_name: str,
    args: List[ClarityValue],
    contracts: dict,
    network: Optional[str],
    node_url: Optional[str],
) -> dict:
    result = call_read_only(
        contracts["address"],
        contract_name,
        function_name,
        args,
        sender=contracts["address"],
        network=network,
        node_url=node_url,
    )
    if result["success"]:
        value = result["value"]
        if isinstance(value, dict) and set(value) == {"err"} and isinstance(value["err"], int):
            return format_contract_error(value["err"], f"{contracts['address']}.{contract_name}")
    return result


def get_marketplace_stats(
    contract_address: Optional[str] = None,
    network: Optional[str] = None,
    node_url: Optional[str] = None,
) -> dict:
    """
    Статистика маркетплейса.

    Values the node cannot return are null; console queries and the
    explorer link are always reported.
    """
    net = get_network(network)
    contracts = resolve_contracts(contract_address)
    contract_id = f"{contracts['address']}.{contracts['marketplace']}"

    stats = {}
    errors = {}
    queries = {}
    for key, function_name in STATS_FUNCTIONS.items():
        queries[key] = f"(contract-call? '{contract_id} {function_name})"
        read = _read(contracts["marketplace"], function_name, [], contracts, net["name"], node_url)
        if read["success"]:
            stats[key] = _unwrap_ok(read["value"])
        else:
            stats[key] = None
            errors[key] = read.get("error")

    result = {
        "success": True,
        "contract": contract_id,
        "network": net["name"],
        "stats": stats,
        "formatted": {
            "total_volume": format_stx_amount(stats["total_volume"]),
            "total_sales": stats["total_sales"],
            "marketplace_fee": format_bps(stats["marketplace_fee"]),
        },
        "queries": queries,
        "explorer_url": explorer_contract_url(contract_id, net["name"]),
    }
    if errors:
        result["errors"] = errors
    return result


def get_listing(
    token_id: int,
    contract_address: Optional[str] = None,
    network: Optional[str] = None,
    node_url: Optional[str] = None,
) -> dict:
    """Активный листинг токена (get-listing)."""
    net = get_network(network)
    contracts = resolve_contracts(contract_address)
    validate_uint("token_id", token_id)

    read = _read(
        contracts["marketplace"],
        "get-listing",
        [contract_principal_cv(contracts["address"], contracts["nft"]), uint_cv(token_id)],
        contracts,
        net["name"],
        node_url,
    )
    if not read["success"]:
        return read

    listing = read["value"]
    result = {"success": True, "token_id": token_id, "listed": listing is not None}
    if listing is not None:
        result["listing"] = listing
        if isinstance(listing.get("price"), int):
            result["price_stx"] = format_stx_amount(listing["price"])
    return result


def calculate_fees(
    price: int,
    contract_address: Optional[str] = None,
    network: Optional[str] = None,
    node_url: Optional[str] = None,
) -> dict:
    """Комиссия маркетплейса и сумма продавцу для цены (calculate-fees)."""
    net = get_network(network)
    contracts = resolve_contracts(contract_address)
    validate_uint("price", price)

    read = _read(
        contracts["marketplace"],
        "calculate-fees",
        [uint_cv(price)],
        contracts,
        net["name"],
        node_url,
    )
    if not read["success"]:
        return read

    fees = _unwrap_ok(read["value"])
    return {
        "success": True,
        "price": price,
        "marketplace_fee": fees["marketplace-fee"],
        "seller_amount": fees["seller-amount"],
        "formatted": {
            "price": format_stx_amount(price),
            "marketplace_fee": format_stx_amount(fees["marketplace-fee"]),
            "seller_amount": format_stx_amount(fees["seller-amount"]),
        },
    }


def get_owner(
    token_id: int,
    contract_address: Optional[str] = None,
    network: Optional[str] = None,
    node_url: Optional[str] = None,
) -> dict:
    """Владелец токена simple-nft (get-owner)."""
    net = get_network(network)
    contracts = resolve_contracts(contract_address)
    validate_uint("token_id", token_id)

    read = _read(
        contracts["nft"], "get-owner", [uint_cv(token_id)], contracts, net["name"], node_url
    )
    if not read["success"]:
        return read

    owner = _unwrap_ok(read["value"])
    marketplace_id = f"{contracts['address']}.{contracts['marketplace']}"
    return {
        "success": True,
        "token_id": token_id,
        "owner": owner,
        "exists": owner is not None,
        "escrowed": owner == marketplace_id,
    }


# =============================================================================
# CLI
# =============================================================================


def main():
    parser = argparse.ArgumentParser(
        description="Stacks NFT marketplace interaction",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Минт NFT (только деплоер контракта)
  %(prog)s mint ST1SJ3DTE5DN7X54YDH5D64R3BCB6A2AG2ZQ8YPD5

  # Выставить токен #4 за 1 STX с роялти 5%
  %(prog)s list 4 1000000 500

  # Купить токен #4 у продавца
  %(prog)s buy 4 ST1SJ3DTE5DN7X54YDH5D64R3BCB6A2AG2ZQ8YPD5

  # Снять с продажи
  %(prog)s cancel 4

  # Статистика
  %(prog)s stats

  # Подписать без отправки
  %(prog)s --dry-run --nonce 0 --fee 2000 mint ST1SJ3...
"""
        + COMMON_EPILOG,
    )

    parser.add_argument("--password", "-p", help="Wallet password (or WALLET_PASSWORD env)")
    parser.add_argument("--wallet", "-w", help="Wallet label or address from storage")
    parser.add_argument("--network", "-n", choices=list(NETWORKS), help="Network (default: config)")
    parser.add_argument("--node-url", help="Stacks node URL override")
    parser.add_argument("--contract-address", help="Deployer address of the contracts")
    parser.add_argument("--fee", type=int, help="Transaction fee in microSTX (default: estimate)")
    parser.add_argument("--nonce", type=int, help="Account nonce (default: from node)")
    parser.add_argument("--dry-run", action="store_true", help="Sign but do not broadcast")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--log", action="store_true", help=f"Also write the log to {LOG_FILE}")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # --- mint ---
    mint_p = subparsers.add_parser("mint", help="Mint NFT to recipient")
    mint_p.add_argument("recipient", help="Recipient address")

    # --- list ---
    list_p = subparsers.add_parser("list", help="List NFT for sale")
    list_p.add_argument("token_id", type=int, help="Token ID")
    list_p.add_argument("price", type=int, help="Price in microSTX")
    list_p.add_argument("royalty", type=int, nargs="?", default=0, help="Royalty in bps (default: 0)")
    list_p.add_argument("--royalty-recipient", help="Royalty recipient (default: contract address)")

    # --- buy ---
    buy_p = subparsers.add_parser("buy", help="Buy listed NFT")
    buy_p.add_argument("token_id", type=int, help="Token ID")
    buy_p.add_argument("seller", help="Seller address")

    # --- cancel ---
    cancel_p = subparsers.add_parser("cancel", help="Cancel listing")
    cancel_p.add_argument("token_id", type=int, help="Token ID")

    # --- stats ---
    subparsers.add_parser("stats", help="Marketplace statistics")

    # --- listing ---
    listing_p = subparsers.add_parser("listing", help="Show listing of a token")
    listing_p.add_argument("token_id", type=int, help="Token ID")

    # --- fees ---
    fees_p = subparsers.add_parser("fees", help="Fee split for a price")
    fees_p.add_argument("price", type=int, help="Price in microSTX")

    # --- owner ---
    owner_p = subparsers.add_parser("owner", help="Owner of a token")
    owner_p.add_argument("token_id", type=int, help="Token ID")

    # --- set-fee ---
    set_fee_p = subparsers.add_parser("set-fee", help="Set marketplace fee (admin)")
    set_fee_p.add_argument("fee_bps", type=int, help="Fee in bps (max 1000)")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    setup_logging(verbose=args.verbose, log_file=LOG_FILE if args.log else None)

    common = {
        "contract_address": args.contract_address,
        "network": args.network,
        "node_url": args.node_url,
    }

    try:
        if args.command in SIGNING_COMMANDS:
            password = args.password or os.environ.get("WALLET_PASSWORD")
            if signer_needs_password(args.wallet) and not password and sys.stdin.isatty():
                password = getpass.getpass("Wallet password: ")

            signer = resolve_signer(args.wallet, password)
            tx_options = {
                **common,
                "fee": args.fee,
                "nonce": args.nonce,
                "dry_run": args.dry_run,
            }

            if args.command == "mint":
                result = mint_nft(args.recipient, signer, **tx_options)
            elif args.command == "list":
                result = list_nft(
                    args.token_id,
                    args.price,
                    signer,
                    royalty=args.royalty,
                    royalty_recipient=args.royalty_recipient,
                    **tx_options,
                )
            elif args.command == "buy":
                result = buy_nft(args.token_id, args.seller, signer, **tx_options)
            elif args.command == "cancel":
                result = cancel_listing(args.token_id, signer, **tx_options)
            else:
                result = set_marketplace_fee(args.fee_bps, signer, **tx_options)

        elif args.command == "stats":
            result = get_marketplace_stats(**common)
        elif args.command == "listing":
            result = get_listing(args.token_id, **common)
        elif args.command == "fees":
            result = calculate_fees(args.price, **common)
        elif args.command == "owner":
            result = get_owner(args.token_id, **common)
        else:
            result = {"success": False, "error": f"Unknown command: {args.command}"}

        print(json.dumps(result, indent=2, ensure_ascii=False))
        if not result.get("success"):
            return sys.exit(1)

    except ValueError as e:
        print(json.dumps({"success": False, "error": str(e)}, indent=2))
        return sys.exit(1)
    except Exception as e:
        logger.debug("Unexpected error", exc_info=True)
        print(json.dumps({"success": False, "error": f"Unexpected error: {e}"}, indent=2))
        return sys.exit(1)


if __name__ == "__main__":
    main()
