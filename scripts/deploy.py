#!/usr/bin/env python3
"""
Stacks NFT Market — Деплой контрактов

Deploys simple-nft, waits a fixed delay, then deploys nft-marketplace.
The marketplace deploy uses the next nonce, so it does not depend on the
first transaction being visible in the mempool.
"""

import os
import sys
import json
import time
import logging
import argparse
import getpass
from pathlib import Path
from typing import Optional

# Локальный импорт
script_dir = Path(__file__).parent
sys.path.insert(0, str(script_dir))

from utils import (  # noqa: E402
    LOG_FILE,
    LOGGER_NAME,
    get_config_value,
    get_network,
    setup_logging,
)
from common import (  # noqa: E402
    COMMON_EPILOG,
    MARKETPLACE_CONTRACT,
    NETWORKS,
    NFT_CONTRACT,
    explorer_contract_url,
    explorer_tx_url,
)
from transactions import (  # noqa: E402
    NodeRequestError,
    StacksPrivateKey,
    broadcast_transaction,
    get_account_nonce,
    make_contract_deploy,
)
from wallet import resolve_signer, signer_needs_password  # noqa: E402

logger = logging.getLogger(LOGGER_NAME)

DEFAULT_DELAY_SECONDS = 5

NFT_PLACEHOLDER_CODE = """
;; Simple NFT contract code would be here
;; This is a placeholder for the deployment script
"""

MARKETPLACE_PLACEHOLDER_CODE = """
;; Marketplace contract code would be here
;; This is a placeholder for the deployment script
"""


def load_contract_source(path: str) -> str:
    """Читает исходник Clarity контракта."""
    source_path = Path(path).expanduser()
    if not source_path.is_file():
        raise ValueError(f"Contract source not found: {path}")
    code = source_path.read_text(encoding="utf-8")
    if not code.strip():
        raise ValueError(f"Contract source is empty: {path}")
    return code


def deploy_contract(
    contract_name: str,
    code_body: str,
    signer: StacksPrivateKey,
    nonce: int,
    network: str,
    node_url: Optional[str] = None,
    fee: Optional[int] = None,
    dry_run: bool = False,
) -> dict:
    """Один деплой: подпись + broadcast."""
    tx = make_contract_deploy(
        contract_name,
        code_body,
        signer,
        network=network,
        node_url=node_url,
        fee=fee,
        nonce=nonce,
    )
    deployer = signer.address(get_network(network))
    result = {
        "contract_name": contract_name,
        "contract_id": f"{deployer}.{contract_name}",
        "nonce": tx.nonce,
        "fee": tx.fee,
        "txid": tx.txid(),
    }

    if dry_run:
        result.update({"success": True, "broadcast": False, "raw_tx": tx.hex()})
        return result

    sent = broadcast_transaction(tx, network=network, node_url=node_url)
    if not sent["success"]:
        return {**result, **sent, "broadcast": False}

    result.update(
        {
            "success": True,
            "broadcast": True,
            "txid": sent["txid"],
            "explorer_url": explorer_tx_url(sent["txid"], network),
        }
    )
    return result


def deploy_contracts(
    signer: StacksPrivateKey,
    network: Optional[str] = None,
    delay_seconds: float = DEFAULT_DELAY_SECONDS,
    nft_source: Optional[str] = None,
    marketplace_source: Optional[str] = None,
    dry_run: bool = False,
    node_url: Optional[str] = None,
    fee: Optional[int] = None,
    nonce: Optional[int] = None,
) -> dict:
    """
    Деплоит simple-nft, затем nft-marketplace.

    Args:
        signer: Ключ деплоера
        network: testnet / mainnet
        delay_seconds: Пауза между деплоями
        nft_source: Код simple-nft (по умолчанию placeholder)
        marketplace_source: Код nft-marketplace (по умолчанию placeholder)
        dry_run: Подписать без отправки (без паузы)
        fee: Комиссия каждой транзакции (по умолчанию оценка ноды)
        nonce: Nonce первой транзакции (по умолчанию из ноды)

    Returns:
        dict с txid обоих деплоев; ошибка останавливает последовательность
    """
    if delay_seconds < 0:
        return {"success": False, "error": "delay_seconds cannot be negative"}

    net = get_network(network)
    deployer = signer.address(net)
    plan = [
        (NFT_CONTRACT, nft_source or NFT_PLACEHOLDER_CODE),
        (MARKETPLACE_CONTRACT, marketplace_source or MARKETPLACE_PLACEHOLDER_CODE),
    ]

    try:
        if nonce is None:
            nonce = get_account_nonce(deployer, network=net["name"], node_url=node_url)
    except NodeRequestError as e:
        return {**e.result, "stage": "nonce", "deployer": deployer}

    deployed = []
    for i, (contract_name, code_body) in enumerate(plan):
        if i > 0 and not dry_run and delay_seconds:
            logger.info("Waiting %ss before deploying %s...", delay_seconds, contract_name)
            time.sleep(delay_seconds)

        logger.info("Deploying %s (nonce %s)...", contract_name, nonce + i)
        try:
            step = deploy_contract(
                contract_name,
                code_body,
                signer,
                nonce=nonce + i,
                network=net["name"],
                node_url=node_url,
                fee=fee,
                dry_run=dry_run,
            )
        except NodeRequestError as e:
            step = {**e.result, "contract_name": contract_name}

        deployed.append(step)
        if not step.get("success"):
            logger.error("Deployment of %s failed: %s", contract_name, step.get("error"))
            return {
                "success": False,
                "error": step.get("error", "Deployment failed"),
                "stage": contract_name,
                "deployer": deployer,
                "network": net["name"],
                "contracts": deployed,
            }
        logger.info("%s: %s", contract_name, step["txid"])

    marketplace = deployed[-1]
    result = {
        "success": True,
        "deployer": deployer,
        "network": net["name"],
        "broadcast": not dry_run,
        "contracts": deployed,
        "contract_explorer_url": explorer_contract_url(marketplace["contract_id"], net["name"]),
    }
    if not dry_run:
        result["explorer_url"] = marketplace["explorer_url"]
    return result


def main():
    parser = argparse.ArgumentParser(
        description="Deploy simple-nft and nft-marketplace contracts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  PRIVATE_KEY=... %(prog)s
  %(prog)s --wallet deployer --network testnet
  %(prog)s --nft-source contracts/simple-nft.clar --marketplace-source contracts/nft-marketplace.clar
  %(prog)s --dry-run --nonce 0 --fee 10000
"""
        + COMMON_EPILOG,
    )
    parser.add_argument("--password", "-p", help="Wallet password (or WALLET_PASSWORD env)")
    parser.add_argument("--wallet", "-w", help="Wallet label or address from storage")
    parser.add_argument("--network", "-n", choices=list(NETWORKS), help="Network (default: config)")
    parser.add_argument("--node-url", help="Stacks node URL override")
    parser.add_argument("--nft-source", help="Path to simple-nft Clarity source")
    parser.add_argument("--marketplace-source", help="Path to nft-marketplace Clarity source")
    parser.add_argument(
        "--delay",
        type=float,
        default=None,
        help=f"Seconds between deployments (default: config or {DEFAULT_DELAY_SECONDS})",
    )
    parser.add_argument("--fee", type=int, help="Fee per transaction in microSTX")
    parser.add_argument("--nonce", type=int, help="Nonce of the first transaction")
    parser.add_argument("--dry-run", action="store_true", help="Sign but do not broadcast")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--log", action="store_true", help=f"Also write the log to {LOG_FILE}")

    args = parser.parse_args()
    setup_logging(verbose=args.verbose, log_file=LOG_FILE if args.log else None)

    try:
        password = args.password or os.environ.get("WALLET_PASSWORD")
        if signer_needs_password(args.wallet) and not password and sys.stdin.isatty():
            password = getpass.getpass("Wallet password: ")
        signer = resolve_signer(args.wallet, password)

        delay = args.delay
        if delay is None:
            delay = float(get_config_value("deploy.delay_seconds", DEFAULT_DELAY_SECONDS))

        result = deploy_contracts(
            signer,
            network=args.network,
            delay_seconds=delay,
            nft_source=load_contract_source(args.nft_source) if args.nft_source else None,
            marketplace_source=(
                load_contract_source(args.marketplace_source)
                if args.marketplace_source
                else None
            ),
            dry_run=args.dry_run,
            node_url=args.node_url,
            fee=args.fee,
            nonce=args.nonce,
        )

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
