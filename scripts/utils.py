#!/usr/bin/env python3
"""
Stacks NFT Market — Общие утилиты

- AES-256 шифрование/дешифрование
- Конфиг менеджер
- c32check адреса Stacks
- HTTP клиент с retry
- Логирование
"""

import os
import re
import sys
import json
import base64
import hashlib
import logging
import argparse
from pathlib import Path
from typing import Any, Optional, Tuple, Union

# Зависимости
try:
    import requests
    from requests.adapters import HTTPAdapter
    from urllib3.util.retry import Retry
except ImportError:
    print(
        json.dumps(
            {"error": "Missing dependency: requests", "install": "pip install requests"}
        )
    )
    sys.exit(1)
    raise SystemExit

try:
    from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
    from cryptography.hazmat.primitives import padding
    from cryptography.hazmat.backends import default_backend
except ImportError:
    print(
        json.dumps(
            {
                "error": "Missing dependency: cryptography",
                "install": "pip install cryptography",
            }
        )
    )
    sys.exit(1)
    raise SystemExit

try:
    from Crypto.Hash import RIPEMD160, SHA512
except ImportError:
    print(
        json.dumps(
            {
                "error": "Missing dependency: pycryptodome",
                "install": "pip install pycryptodome",
            }
        )
    )
    sys.exit(1)
    raise SystemExit

script_dir = Path(__file__).parent
sys.path.insert(0, str(script_dir))

from common import NETWORKS  # noqa: E402


# =============================================================================
# Константы
# =============================================================================

SKILL_DIR = Path.home() / ".stacks-nft-market"
CONFIG_FILE = SKILL_DIR / "config.json"
WALLETS_FILE = SKILL_DIR / "wallets.enc"
LOG_FILE = SKILL_DIR / "market.log"

LOGGER_NAME = "stacks-nft"


# =============================================================================
# Шифрование/Дешифрование (AES-256-CBC)
# =============================================================================


def derive_key(password: str, salt: bytes) -> bytes:
    """Деривация ключа из пароля через PBKDF2-like (SHA256 iterations)."""
    key = password.encode("utf-8") + salt
    for _ in range(100000):  # 100k iterations
        key = hashlib.sha256(key).digest()
    return key  # 32 bytes = 256 bits


def encrypt_data(data: bytes, password: str) -> bytes:
    """
    Шифрует данные AES-256-CBC.
    Формат: salt(16) + iv(16) + encrypted_data
    """
    salt = os.urandom(16)
    iv = os.urandom(16)
    key = derive_key(password, salt)

    padder = padding.PKCS7(128).padder()
    padded_data = padder.update(data) + padder.finalize()

    cipher = Cipher(algorithms.AES(key), modes.CBC(iv), backend=default_backend())
    encryptor = cipher.encryptor()
    encrypted = encryptor.update(padded_data) + encryptor.finalize()

    return salt + iv + encrypted


def decrypt_data(encrypted_data: bytes, password: str) -> bytes:
    """
    Дешифрует данные AES-256-CBC.
    Ожидает формат: salt(16) + iv(16) + encrypted_data
    """
    if len(encrypted_data) < 33:
        raise ValueError("Invalid encrypted data")

    salt = encrypted_data[:16]
    iv = encrypted_data[16:32]
    ciphertext = encrypted_data[32:]

    key = derive_key(password, salt)

    cipher = Cipher(algorithms.AES(key), modes.CBC(iv), backend=default_backend())
    decryptor = cipher.decryptor()
    padded_data = decryptor.update(ciphertext) + decryptor.finalize()

    unpadder = padding.PKCS7(128).unpadder()
    return unpadder.update(padded_data) + unpadder.finalize()


def encrypt_json(data: dict, password: str) -> str:
    """Шифрует JSON и возвращает base64."""
    json_bytes = json.dumps(data, ensure_ascii=False).encode("utf-8")
    encrypted = encrypt_data(json_bytes, password)
    return base64.b64encode(encrypted).decode("ascii")


def decrypt_json(encrypted_b64: str, password: str) -> dict:
    """Дешифрует base64 в JSON."""
    encrypted = base64.b64decode(encrypted_b64)
    decrypted = decrypt_data(encrypted, password)
    return json.loads(decrypted.decode("utf-8"))


# =============================================================================
# Конфиг менеджер
# =============================================================================

DEFAULT_CONFIG = {
    "network": "testnet",
    "node_url": "",
    "hiro_api_key": "",
    "contract_address": "",
    "nft_contract": "",
    "marketplace_contract": "",
    "default_wallet": "",
    "fees": {"fallback_fee": 2000},
    "deploy": {"delay_seconds": 5},
}


def ensure_skill_dir() -> Path:
    """Создаёт рабочую директорию если не существует."""
    SKILL_DIR.mkdir(parents=True, exist_ok=True)
    return SKILL_DIR


def load_config() -> dict:
    """Загружает конфигурацию из файла."""
    ensure_skill_dir()
    if CONFIG_FILE.exists():
        try:
            with open(CONFIG_FILE, "r") as f:
                config = json.load(f)
            # Merge с дефолтами (для новых полей)
            merged = json.loads(json.dumps(DEFAULT_CONFIG))
            merged.update(config)
            return merged
        except (OSError, ValueError):
            return json.loads(json.dumps(DEFAULT_CONFIG))
    return json.loads(json.dumps(DEFAULT_CONFIG))


def save_config(config: dict) -> bool:
    """Сохраняет конфигурацию в файл."""
    ensure_skill_dir()
    try:
        with open(CONFIG_FILE, "w") as f:
            json.dump(config, f, indent=2, ensure_ascii=False)
        return True
    except OSError:
        return False


def get_config_value(key: str, default: Any = None) -> Any:
    """Получает значение из конфига по ключу (dot notation: fees.fallback_fee)."""
    config = load_config()
    value = config
    for k in key.split("."):
        if isinstance(value, dict) and k in value:
            value = value[k]
        else:
            return default
    return value


def set_config_value(key: str, value: Any) -> bool:
    """Устанавливает значение в конфиге (поддерживает dot notation)."""
    config = load_config()
    keys = key.split(".")
    target = config
    for k in keys[:-1]:
        if not isinstance(target.get(k), dict):
            target[k] = {}
        target = target[k]
    target[keys[-1]] = value
    return save_config(config)


def get_network(network: Optional[str] = None) -> dict:
    """
    Возвращает пресет сети с учётом конфига и окружения.

    Порядок: аргумент → STACKS_NETWORK env → config["network"].
    node_url из конфига относится к config["network"] и для другой сети
    не применяется.
    """
    config = load_config()
    name = (
        network or os.environ.get("STACKS_NETWORK") or config.get("network") or "testnet"
    ).lower()
    if name not in NETWORKS:
        raise ValueError(
            f"Unknown network: {name}. Expected one of: {', '.join(NETWORKS)}"
        )

    preset = dict(NETWORKS[name])
    preset["name"] = name
    configured_network = (config.get("network") or "testnet").lower()
    if config.get("node_url") and name == configured_network:
        preset["node_url"] = config["node_url"].rstrip("/")
    return preset


# =============================================================================
# Хеши
# =============================================================================


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def sha512_256(data: bytes) -> bytes:
    """SHA-512/256 (используется для txid и sighash)."""
    return SHA512.new(data, truncate="256").digest()


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data)), 20 байт."""
    return RIPEMD160.new(sha256(data)).digest()


# =============================================================================
# c32check адреса Stacks
# =============================================================================

C32_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

# Версии адресов
ADDRESS_VERSION_MAINNET_SINGLE_SIG = 22  # SP
ADDRESS_VERSION_MAINNET_MULTI_SIG = 20  # SM
ADDRESS_VERSION_TESTNET_SINGLE_SIG = 26  # ST
ADDRESS_VERSION_TESTNET_MULTI_SIG = 21  # SN

CONTRACT_NAME_RE = re.compile(r"^[a-zA-Z]([a-zA-Z0-9]|[-_])*$")
CONTRACT_NAME_MAX_LENGTH = 40


def _c32_normalize(text: str) -> str:
    """Crockford-style нормализация: O→0, L/I→1, верхний регистр."""
    return text.upper().replace("O", "0").replace("L", "1").replace("I", "1")


def c32_encode(data: bytes) -> str:
    """
    Кодирует байты в c32.

    Каждый ведущий нулевой байт даёт один символ '0'.
    """
    value = int.from_bytes(data, "big")
    digits = []
    while value > 0:
        value, rem = divmod(value, 32)
        digits.append(C32_ALPHABET[rem])

    leading_zeros = len(data) - len(data.lstrip(b"\x00"))
    return "0" * leading_zeros + "".join(reversed(digits))


def c32_decode(text: str) -> bytes:
    """Декодирует c32 строку в байты."""
    text = _c32_normalize(text)
    value = 0
    for ch in text:
        idx = C32_ALPHABET.find(ch)
        if idx < 0:
            raise ValueError(f"Invalid c32 character: {ch!r}")
        value = value * 32 + idx

    leading_zeros = len(text) - len(text.lstrip("0"))
    body = value.to_bytes((value.bit_length() + 7) // 8, "big") if value else b""
    return b"\x00" * leading_zeros + body


def _c32_checksum(version: int, data: bytes) -> bytes:
    return sha256(sha256(bytes([version]) + data))[:4]


def c32check_encode(version: int, data: bytes) -> str:
    if not 0 <= version < 32:
        raise ValueError(f"Invalid c32check version: {version}")
    return C32_ALPHABET[version] + c32_encode(data + _c32_checksum(version, data))


def c32check_decode(text: str) -> Tuple[int, bytes]:
    text = _c32_normalize(text)
    if len(text) < 2:
        raise ValueError("c32check string too short")

    version = C32_ALPHABET.find(text[0])
    if version < 0:
        raise ValueError(f"Invalid c32check version character: {text[0]!r}")

    raw = c32_decode(text[1:])
    if len(raw) < 4:
        raise ValueError("c32check payload too short")

    data, checksum = raw[:-4], raw[-4:]
    if _c32_checksum(version, data) != checksum:
        raise ValueError("Invalid c32check checksum")
    return version, data


def c32_address(version: int, hash160_bytes: bytes) -> str:
    """
    Кодирует hash160 в адрес Stacks.

    Args:
        version: Версия адреса (22 = SP, 26 = ST, ...)
        hash160_bytes: 20 байт hash160

    Returns:
        Адрес вида ST...
    """
    if len(hash160_bytes) != 20:
        raise ValueError(f"hash160 must be 20 bytes, got {len(hash160_bytes)}")
    return "S" + c32check_encode(version, hash160_bytes)


def c32_address_decode(address: str) -> Tuple[int, bytes]:
    """
    Декодирует адрес Stacks.

    Returns:
        (version, hash160)
    """
    if not address or address[0].upper() != "S":
        raise ValueError(f"Invalid Stacks address: {address}")
    try:
        version, data = c32check_decode(address[1:])
    except ValueError as e:
        raise ValueError(f"Invalid Stacks address {address}: {e}")
    if len(data) != 20:
        raise ValueError(f"Invalid Stacks address {address}: hash160 has {len(data)} bytes")
    return version, data


def is_valid_address(address: str) -> bool:
    """Проверяет валидность standard адреса Stacks (без имени контракта)."""
    try:
        c32_address_decode(address)
        return True
    except (ValueError, AttributeError, TypeError):
        return False


def is_valid_contract_name(name: str) -> bool:
    return bool(
        name
        and len(name) <= CONTRACT_NAME_MAX_LENGTH
        and CONTRACT_NAME_RE.match(name)
    )


def parse_principal(principal: str) -> Tuple[str, Optional[str]]:
    """
    Разбирает principal: "ADDR" или "ADDR.contract-name".

    Returns:
        (address, contract_name или None)
    """
    principal = principal.strip()
    if "." in principal:
        address, name = principal.split(".", 1)
        if not is_valid_contract_name(name):
            raise ValueError(f"Invalid contract name: {name}")
    else:
        address, name = principal, None

    c32_address_decode(address)
    return address, name


def address_network(address: str) -> Optional[str]:
    """testnet / mainnet по версии адреса, None если неизвестна."""
    version, _ = c32_address_decode(address)
    if version in (ADDRESS_VERSION_TESTNET_SINGLE_SIG, ADDRESS_VERSION_TESTNET_MULTI_SIG):
        return "testnet"
    if version in (ADDRESS_VERSION_MAINNET_SINGLE_SIG, ADDRESS_VERSION_MAINNET_MULTI_SIG):
        return "mainnet"
    return None


# =============================================================================
# HTTP клиент с retry
# =============================================================================


def create_http_session(
    retries: int = 3,
    backoff_factor: float = 0.5,
    status_forcelist: tuple = (500, 502, 503, 504),
    timeout: int = 30,
) -> requests.Session:
    """
    Создаёт HTTP сессию с автоматическими retry.

    Args:
        retries: Количество повторных попыток
        backoff_factor: Фактор задержки между попытками
        status_forcelist: HTTP коды для retry
        timeout: Таймаут по умолчанию

    Returns:
        Настроенная requests.Session
    """
    session = requests.Session()

    retry_strategy = Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=status_forcelist,
        allowed_methods=["HEAD", "GET", "POST", "PUT", "DELETE", "OPTIONS", "TRACE"],
    )

    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("https://", adapter)
    session.mount("http://", adapter)

    # Default timeout через hook
    session.request = lambda method, url, **kwargs: requests.Session.request(  # ty: ignore[invalid-assignment]
        session, method, url, timeout=kwargs.pop("timeout", timeout), **kwargs
    )

    return session


def api_request(
    url: str,
    method: str = "GET",
    headers: Optional[dict] = None,
    params: Optional[dict] = None,
    json_data: Optional[Union[dict, list]] = None,
    data: Optional[bytes] = None,
    api_key: Optional[str] = None,
    api_key_header: str = "x-api-key",
    api_key_prefix: str = "",
    timeout: int = 30,
    retries: int = 3,
) -> dict:
    """
    Универсальный API запрос с retry и обработкой ошибок.

    Args:
        url: URL запроса
        method: HTTP метод
        headers: Дополнительные заголовки
        params: Query параметры
        json_data: JSON body
        data: Сырое тело запроса (bytes), например сериализованная транзакция
        api_key: API ключ (если есть)
        api_key_header: Заголовок для API ключа
        api_key_prefix: Префикс для API ключа
        timeout: Таймаут
        retries: Количество retry

    Returns:
        dict с ключами: success, data/error, status_code
    """
    session = create_http_session(retries=retries, timeout=timeout)

    req_headers = {"Accept": "application/json"}
    if headers:
        req_headers.update(headers)
    if api_key:
        req_headers[api_key_header] = f"{api_key_prefix}{api_key}"

    logger = logging.getLogger(LOGGER_NAME)
    logger.debug("%s %s", method.upper(), url)

    try:
        response = session.request(
            method=method.upper(),
            url=url,
            headers=req_headers,
            params=params,
            json=json_data,
            data=data,
            timeout=timeout,
        )

        # Пытаемся распарсить JSON
        try:
            body = response.json()
        except ValueError:
            body = response.text

        if response.ok:
            return {"success": True, "data": body, "status_code": response.status_code}

        logger.debug("HTTP %s from %s: %s", response.status_code, url, body)
        return {
            "success": False,
            "error": body if body else response.reason,
            "status_code": response.status_code,
        }

    except requests.exceptions.Timeout:
        return {"success": False, "error": "Request timeout", "status_code": None}
    except requests.exceptions.ConnectionError:
        return {"success": False, "error": "Connection error", "status_code": None}
    except requests.exceptions.RequestException as e:
        return {"success": False, "error": str(e), "status_code": None}


# =============================================================================
# Stacks node API
# =============================================================================


def get_hiro_api_key() -> Optional[str]:
    """Hiro API key из конфига или окружения."""
    config = load_config()
    return config.get("hiro_api_key") or os.environ.get("HIRO_API_KEY") or None


def node_request(
    endpoint: str,
    method: str = "GET",
    params: Optional[dict] = None,
    json_data: Optional[Union[dict, list]] = None,
    data: Optional[bytes] = None,
    headers: Optional[dict] = None,
    network: Optional[str] = None,
    node_url: Optional[str] = None,
    timeout: int = 30,
    retries: int = 3,
) -> dict:
    """
    Запрос к Stacks ноде (RPC /v2/... или extended API /extended/v1/...).

    Args:
        endpoint: Endpoint без base URL, например "/v2/accounts/{address}"
        method: HTTP метод
        params: Query параметры
        json_data: JSON body
        data: Сырое тело (bytes)
        headers: Дополнительные заголовки
        network: testnet / mainnet (по умолчанию из конфига)
        node_url: Явный URL ноды, переопределяет сеть

    Returns:
        Результат api_request
    """
    base_url = (node_url or get_network(network)["node_url"]).rstrip("/")

    return api_request(
        url=f"{base_url}{endpoint}",
        method=method,
        headers=headers,
        params=params,
        json_data=json_data,
        data=data,
        api_key=get_hiro_api_key(),
        api_key_header="x-api-key",
        api_key_prefix="",
        timeout=timeout,
        retries=retries,
    )


# =============================================================================
# Логирование
# =============================================================================


def setup_logging(verbose: bool = False, log_file: Optional[Path] = None) -> logging.Logger:
    """Настройка логирования в stderr (и опционально в файл)."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    # stdout занят JSON результатом
    sh = logging.StreamHandler(sys.stderr)
    sh.setLevel(logging.DEBUG if verbose else logging.INFO)
    sh.setFormatter(formatter)
    logger.addHandler(sh)

    return logger


# =============================================================================
# CLI
# =============================================================================


def main():
    parser = argparse.ArgumentParser(description="Stacks NFT Market utilities")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # --- config ---
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_sub = config_parser.add_subparsers(dest="config_cmd")

    config_get = config_sub.add_parser("get", help="Get config value")
    config_get.add_argument("key", help="Config key (dot notation)")

    config_set = config_sub.add_parser("set", help="Set config value")
    config_set.add_argument("key", help="Config key")
    config_set.add_argument("value", help="Value to set")

    config_sub.add_parser("show", help="Show all config")

    # --- address ---
    addr_parser = subparsers.add_parser("address", help="Stacks address tools")
    addr_sub = addr_parser.add_subparsers(dest="addr_cmd")

    addr_decode = addr_sub.add_parser("decode", help="Decode address to version + hash160")
    addr_decode.add_argument("address", help="Stacks address")

    addr_encode = addr_sub.add_parser("encode", help="Encode hash160 to address")
    addr_encode.add_argument("hash160", help="20-byte hash160 (hex)")
    addr_encode.add_argument(
        "--version", type=int, default=ADDRESS_VERSION_TESTNET_SINGLE_SIG
    )

    addr_validate = addr_sub.add_parser("validate", help="Validate address or principal")
    addr_validate.add_argument("address", help="Address or ADDR.contract")

    args = parser.parse_args()

    result = {}

    if args.command == "config":
        if args.config_cmd == "get":
            result = {"key": args.key, "value": get_config_value(args.key)}
        elif args.config_cmd == "set":
            # Пробуем распарсить значение как JSON
            try:
                value = json.loads(args.value)
            except ValueError:
                value = args.value
            success = set_config_value(args.key, value)
            result = {"success": success, "key": args.key, "value": value}
        elif args.config_cmd == "show":
            result = load_config()
            if result.get("hiro_api_key"):
                result["hiro_api_key"] = "***"
        else:
            result = {"error": "Unknown config command"}

    elif args.command == "address":
        if args.addr_cmd == "decode":
            try:
                version, h160 = c32_address_decode(args.address)
                result = {
                    "address": args.address,
                    "version": version,
                    "hash160": h160.hex(),
                    "network": address_network(args.address),
                }
            except ValueError as e:
                result = {"error": str(e)}
        elif args.addr_cmd == "encode":
            try:
                address = c32_address(args.version, bytes.fromhex(args.hash160))
                result = {"address": address, "version": args.version}
            except ValueError as e:
                result = {"error": str(e)}
        elif args.addr_cmd == "validate":
            try:
                address, name = parse_principal(args.address)
                result = {"principal": args.address, "valid": True, "contract": name}
            except ValueError as e:
                result = {"principal": args.address, "valid": False, "error": str(e)}
        else:
            result = {"error": "Unknown address command"}

    else:
        parser.print_help()
        return

    print(json.dumps(result, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
