#!/usr/bin/env python3
"""
Stacks NFT Market — Управление ключами

- Создание ключей secp256k1 (compressed)
- Импорт приватного ключа (hex)
- Список кошельков с лейблами, testnet/mainnet адреса
- Балансы STX через ноду
- Шифрованное хранение
"""

import os
import sys
import json
import argparse
import getpass
from pathlib import Path
from typing import Optional, List, Dict, Any
from datetime import datetime, UTC

# Локальный импорт
script_dir = Path(__file__).parent
sys.path.insert(0, str(script_dir))

from utils import (  # noqa: E402
    encrypt_json,
    decrypt_json,
    ensure_skill_dir,
    get_config_value,
    c32_address_decode,
    is_valid_address,
    SKILL_DIR,  # noqa: F401 - used by tests via monkeypatch
    WALLETS_FILE,
)
from common import NETWORKS, format_stx_amount  # noqa: E402
from transactions import StacksPrivateKey, get_account_info  # noqa: E402

SECRET_FIELDS = ("private_key",)


# =============================================================================
# Wallet Storage
# =============================================================================


class WalletStorage:
    """Управление зашифрованным хранилищем ключей."""

    def __init__(self, password: str):
        self.password = password
        self.wallets_file = WALLETS_FILE
        ensure_skill_dir()

    def load(self) -> Dict[str, Any]:
        """Загружает и дешифрует хранилище."""
        if not self.wallets_file.exists():
            return {"wallets": [], "version": 1}

        try:
            with open(self.wallets_file, "r") as f:
                encrypted = f.read().strip()
            return decrypt_json(encrypted, self.password)
        except Exception as e:
            raise ValueError(f"Failed to decrypt wallets: {e}")

    def save(self, data: Dict[str, Any]) -> bool:
        """Шифрует и сохраняет хранилище."""
        try:
            encrypted = encrypt_json(data, self.password)
            with open(self.wallets_file, "w") as f:
                f.write(encrypted)
            # Права только для владельца
            os.chmod(self.wallets_file, 0o600)
            return True
        except OSError as e:
            raise ValueError(f"Failed to save wallets: {e}")

    def add_wallet(self, wallet_data: dict) -> bool:
        """Добавляет кошелёк в хранилище."""
        storage = self.load()

        for w in storage["wallets"]:
            if w.get("address") == wallet_data.get("address"):
                raise ValueError(f"Wallet already exists: {wallet_data['address']}")
            if wallet_data.get("label") and (
                w.get("label", "").lower() == wallet_data["label"].lower()
            ):
                raise ValueError(f"Label already in use: {wallet_data['label']}")

        storage["wallets"].append(wallet_data)
        return self.save(storage)

    def get_wallets(self, include_secrets: bool = False) -> List[dict]:
        """Возвращает список кошельков."""
        storage = self.load()
        wallets = storage.get("wallets", [])

        if not include_secrets:
            return [
                {k: v for k, v in w.items() if k not in SECRET_FIELDS} for w in wallets
            ]
        return wallets

    @staticmethod
    def _matches(wallet: dict, identifier: str) -> bool:
        if wallet.get("label", "").lower() == identifier.lower():
            return True
        if identifier in (wallet.get("address"), wallet.get("mainnet_address")):
            return True

        # Тот же ключ в другой сети: сравниваем hash160
        try:
            _, wallet_h160 = c32_address_decode(wallet.get("address", ""))
            _, search_h160 = c32_address_decode(identifier)
        except ValueError:
            return False
        return wallet_h160 == search_h160

    def get_wallet(
        self, identifier: str, include_secrets: bool = False
    ) -> Optional[dict]:
        """
        Ищет кошелёк по лейблу или адресу (ST... или SP...).

        Args:
            identifier: Адрес или лейбл кошелька
            include_secrets: Включать ли приватный ключ
        """
        for w in self.get_wallets(include_secrets=include_secrets):
            if self._matches(w, identifier):
                return w
        return None

    def update_wallet(self, identifier: str, updates: dict) -> bool:
        """Обновляет данные кошелька."""
        storage = self.load()

        for w in storage["wallets"]:
            if self._matches(w, identifier):
                w.update(updates)
                return self.save(storage)

        raise ValueError(f"Wallet not found: {identifier}")

    def remove_wallet(self, identifier: str) -> bool:
        """Удаляет кошелёк."""
        storage = self.load()

        for i, w in enumerate(storage["wallets"]):
            if self._matches(w, identifier):
                del storage["wallets"][i]
                return self.save(storage)

        raise ValueError(f"Wallet not found: {identifier}")


# =============================================================================
# Key Helpers
# =============================================================================


def key_to_wallet(key: StacksPrivateKey) -> dict:
    """Данные кошелька для хранилища."""
    return {
        "address": key.address(NETWORKS["testnet"]),
        "mainnet_address": key.address(NETWORKS["mainnet"]),
        "public_key": key.public_key_bytes.hex(),
        "private_key": key.to_hex(),
    }


def signer_needs_password(wallet: Optional[str] = None) -> bool:
    """Нужен ли пароль хранилища, чтобы resolve_signer нашёл ключ."""
    if wallet:
        return True
    return not os.environ.get("PRIVATE_KEY") and bool(get_config_value("default_wallet"))


def resolve_signer(
    wallet: Optional[str] = None, password: Optional[str] = None
) -> StacksPrivateKey:
    """
    Ключ для подписи транзакций.

    Порядок: --wallet из хранилища → PRIVATE_KEY env → default_wallet из конфига.

    Raises:
        ValueError: ключ не найден или пароль не задан
    """
    identifier = wallet
    if not identifier:
        env_key = os.environ.get("PRIVATE_KEY")
        if env_key:
            return StacksPrivateKey.from_hex(env_key)
        identifier = get_config_value("default_wallet") or None

    if not identifier:
        raise ValueError(
            "Private key required. Use --wallet or set PRIVATE_KEY env"
        )
    if not password:
        raise ValueError("Password required. Use --password or WALLET_PASSWORD env")

    wallet_data = WalletStorage(password).get_wallet(identifier, include_secrets=True)
    if not wallet_data:
        raise ValueError(f"Wallet not found: {identifier}")
    return StacksPrivateKey.from_hex(wallet_data["private_key"])


def get_balance(address: str, network: Optional[str] = None) -> dict:
    """Баланс STX адреса."""
    info = get_account_info(address, network=network)
    if not info["success"]:
        return info

    return {
        "success": True,
        "address": address,
        "balance": info["balance"],
        "balance_stx": format_stx_amount(info["balance"]),
        "locked": info["locked"],
        "nonce": info["nonce"],
    }


# =============================================================================
# CLI Commands
# =============================================================================


def cmd_create(args, password: str) -> dict:
    """Создаёт новый ключ."""
    storage = WalletStorage(password)

    key = StacksPrivateKey.generate()
    wallet_data = key_to_wallet(key)
    wallet_data["label"] = args.label or f"wallet_{len(storage.get_wallets()) + 1}"
    wallet_data["created_at"] = datetime.now(UTC).isoformat()

    storage.add_wallet(wallet_data)

    return {
        "success": True,
        "action": "created",
        "wallet": {
            "address": wallet_data["address"],
            "mainnet_address": wallet_data["mainnet_address"],
            "label": wallet_data["label"],
        },
        "warning": "Back up the key with 'wallet.py export'. It is stored only in the encrypted file.",
    }


def cmd_import(args, password: str) -> dict:
    """Импортирует приватный ключ."""
    storage = WalletStorage(password)

    try:
        key = StacksPrivateKey.from_hex(args.private_key)
    except ValueError as e:
        return {"success": False, "error": f"Invalid private key: {e}"}

    wallet_data = key_to_wallet(key)
    wallet_data["label"] = args.label or f"imported_{len(storage.get_wallets()) + 1}"
    wallet_data["created_at"] = datetime.now(UTC).isoformat()
    wallet_data["imported"] = True

    try:
        storage.add_wallet(wallet_data)
    except ValueError as e:
        return {"success": False, "error": str(e)}

    return {
        "success": True,
        "action": "imported",
        "wallet": {
            "address": wallet_data["address"],
            "mainnet_address": wallet_data["mainnet_address"],
            "label": wallet_data["label"],
        },
    }


def cmd_list(args, password: str) -> dict:
    """Список кошельков (опционально с балансами)."""
    storage = WalletStorage(password)
    wallets = storage.get_wallets(include_secrets=False)
    network = getattr(args, "network", None)

    result_wallets = []
    for w in wallets:
        wallet_info = {
            "label": w.get("label", ""),
            "address": w.get("address", ""),
            "mainnet_address": w.get("mainnet_address", ""),
            "created_at": w.get("created_at"),
        }

        if args.balances:
            address = w["mainnet_address"] if network == "mainnet" else w["address"]
            balance = get_balance(address, network=network)
            if balance["success"]:
                wallet_info["balance"] = balance["balance"]
                wallet_info["balance_stx"] = balance["balance_stx"]
            else:
                wallet_info["balance"] = None
                wallet_info["balance_error"] = balance.get("error")

        result_wallets.append(wallet_info)

    return {"success": True, "count": len(result_wallets), "wallets": result_wallets}


def cmd_balance(args, password: str) -> dict:
    """Баланс кошелька или произвольного адреса."""
    network = getattr(args, "network", None)

    if is_valid_address(args.wallet):
        return get_balance(args.wallet, network=network)

    wallet = WalletStorage(password).get_wallet(args.wallet)
    if not wallet:
        return {"success": False, "error": f"Wallet not found: {args.wallet}"}

    address = wallet["mainnet_address"] if network == "mainnet" else wallet["address"]
    result = get_balance(address, network=network)
    if result["success"]:
        result["label"] = wallet.get("label", "")
    return result


def cmd_remove(args, password: str) -> dict:
    """Удаляет кошелёк из хранилища."""
    storage = WalletStorage(password)

    wallet = storage.get_wallet(args.wallet)
    if not wallet:
        return {"success": False, "error": f"Wallet not found: {args.wallet}"}

    storage.remove_wallet(args.wallet)

    return {"success": True, "action": "removed", "wallet": wallet["address"]}


def cmd_label(args, password: str) -> dict:
    """Меняет лейбл кошелька."""
    storage = WalletStorage(password)

    wallet = storage.get_wallet(args.wallet)
    if not wallet:
        return {"success": False, "error": f"Wallet not found: {args.wallet}"}

    old_label = wallet.get("label", "")
    storage.update_wallet(args.wallet, {"label": args.new_label})

    return {
        "success": True,
        "action": "renamed",
        "address": wallet["address"],
        "old_label": old_label,
        "new_label": args.new_label,
    }


def cmd_export(args, password: str) -> dict:
    """Экспортирует приватный ключ."""
    storage = WalletStorage(password)

    wallet = storage.get_wallet(args.wallet, include_secrets=True)
    if not wallet:
        return {"success": False, "error": f"Wallet not found: {args.wallet}"}

    return {
        "success": True,
        "address": wallet["address"],
        "label": wallet.get("label", ""),
        "private_key": wallet.get("private_key", ""),
        "warning": "Never share the private key with anyone!",
    }


def main():
    parser = argparse.ArgumentParser(
        description="Stacks key management",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s create --label deployer
  %(prog)s import --private-key 753b7cc0...01 --label devnet
  %(prog)s list --balances
  %(prog)s balance deployer
  %(prog)s balance ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM
  %(prog)s export deployer
""",
    )

    parser.add_argument(
        "--password", "-p", help="Encryption password (or use WALLET_PASSWORD env)"
    )
    parser.add_argument(
        "--network", "-n", choices=list(NETWORKS), help="Network for balances"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # --- create ---
    create_p = subparsers.add_parser("create", help="Create new key")
    create_p.add_argument("--label", "-l", help="Wallet label/name")

    # --- import ---
    import_p = subparsers.add_parser("import", help="Import hex private key")
    import_p.add_argument(
        "--private-key", "-k", required=True, help="Hex private key (64 or 66 chars)"
    )
    import_p.add_argument("--label", "-l", help="Wallet label")

    # --- list ---
    list_p = subparsers.add_parser("list", help="List all wallets")
    list_p.add_argument(
        "--balances", "-b", action="store_true", help="Include balances (slower)"
    )

    # --- balance ---
    balance_p = subparsers.add_parser("balance", help="Get STX balance")
    balance_p.add_argument("wallet", help="Wallet label or address")

    # --- remove ---
    remove_p = subparsers.add_parser("remove", help="Remove wallet from storage")
    remove_p.add_argument("wallet", help="Wallet label or address")

    # --- label ---
    label_p = subparsers.add_parser("label", help="Change wallet label")
    label_p.add_argument("wallet", help="Current wallet label or address")
    label_p.add_argument("new_label", help="New label")

    # --- export ---
    export_p = subparsers.add_parser("export", help="Export private key (DANGER!)")
    export_p.add_argument("wallet", help="Wallet label or address")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    password = args.password or os.environ.get("WALLET_PASSWORD")
    needs_password = not (args.command == "balance" and is_valid_address(args.wallet))

    if needs_password and not password:
        if sys.stdin.isatty():
            password = getpass.getpass("Wallet password: ")
        else:
            print(
                json.dumps(
                    {
                        "error": "Password required. Use --password or WALLET_PASSWORD env"
                    }
                )
            )
            return sys.exit(1)

    try:
        commands = {
            "create": cmd_create,
            "import": cmd_import,
            "list": cmd_list,
            "balance": cmd_balance,
            "remove": cmd_remove,
            "label": cmd_label,
            "export": cmd_export,
        }

        result = commands[args.command](args, password)
        print(json.dumps(result, indent=2, ensure_ascii=False))
        if not result.get("success", False):
            return sys.exit(1)

    except ValueError as e:
        print(json.dumps({"error": str(e)}, indent=2))
        return sys.exit(1)
    except Exception as e:
        print(json.dumps({"error": f"Unexpected error: {e}"}, indent=2))
        return sys.exit(1)


if __name__ == "__main__":
    main()
