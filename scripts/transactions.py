#!/usr/bin/env python3
"""
Stacks NFT Market — Stacks transactions

- Ключи secp256k1 (coincurve) и адреса
- Payload: contract-call, smart-contract (deploy)
- Single-sig авторизация, подпись, сериализация, txid
- Операции с нодой: nonce, оценка комиссии, broadcast, read-only вызовы
"""

import re
import sys
import copy
import struct
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import List, Optional, Union

from coincurve import PrivateKey, PublicKey

# Локальный импорт
script_dir = Path(__file__).parent
sys.path.insert(0, str(script_dir))

from utils import (  # noqa: E402
    LOGGER_NAME,
    c32_address,
    c32_address_decode,
    get_config_value,
    get_network,
    hash160,
    is_valid_contract_name,
    node_request,
    sha512_256,
)
from clarity import ClarityError, ClarityValue, cv_to_hex, cv_to_string, cv_to_value, hex_to_cv, serialize_cv  # noqa: E402
from errors import format_api_error, format_broadcast_error, format_error  # noqa: E402

logger = logging.getLogger(LOGGER_NAME)


# =============================================================================
# Constants
# =============================================================================


class AnchorMode(IntEnum):
    ON_CHAIN_ONLY = 0x01
    OFF_CHAIN_ONLY = 0x02
    ANY = 0x03


class PostConditionMode(IntEnum):
    ALLOW = 0x01
    DENY = 0x02


class PayloadType(IntEnum):
    SMART_CONTRACT = 0x01
    CONTRACT_CALL = 0x02


class AuthType(IntEnum):
    STANDARD = 0x04


class AddressHashMode(IntEnum):
    P2PKH = 0x00


class PubKeyEncoding(IntEnum):
    COMPRESSED = 0x00
    UNCOMPRESSED = 0x01


RECOVERABLE_SIGNATURE_LENGTH = 65
EMPTY_SIGNATURE = b"\x00" * RECOVERABLE_SIGNATURE_LENGTH

CLARITY_NAME_RE = re.compile(r"^[a-zA-Z]([a-zA-Z0-9]|[-_!?+<>=/*])*$|^[-+=/*]$|^[<>]=?$")
CLARITY_NAME_MAX_LENGTH = 128

MAX_CODE_BODY_LENGTH = 100_000 * 20


class NodeRequestError(RuntimeError):
    """Node call failed; `result` holds the formatted error dict."""

    def __init__(self, result: dict):
        super().__init__(result.get("error", "Node request failed"))
        self.result = result


# =============================================================================
# Keys
# =============================================================================


class StacksPrivateKey:
    """
    secp256k1 private key in Stacks format.

    64 hex chars -> uncompressed public key,
    66 hex chars ending in "01" -> compressed public key.
    """

    def __init__(self, secret: bytes, compressed: bool = True):
        if len(secret) != 32:
            raise ValueError(f"Private key must be 32 bytes, got {len(secret)}")
        self._key = PrivateKey(secret)
        self.compressed = compressed

    @classmethod
    def from_hex(cls, key_hex: str) -> "StacksPrivateKey":
        key_hex = key_hex.strip()
        if key_hex.startswith("0x"):
            key_hex = key_hex[2:]
        try:
            raw = bytes.fromhex(key_hex)
        except ValueError:
            raise ValueError("Private key is not valid hex")

        if len(raw) == 33:
            if raw[32] != 0x01:
                raise ValueError("33-byte private key must end with 01 (compressed flag)")
            return cls(raw[:32], compressed=True)
        if len(raw) == 32:
            return cls(raw, compressed=False)
        raise ValueError(f"Private key must be 32 or 33 bytes, got {len(raw)}")

    @classmethod
    def generate(cls) -> "StacksPrivateKey":
        return cls(PrivateKey().secret, compressed=True)

    def to_hex(self) -> str:
        return self._key.secret.hex() + ("01" if self.compressed else "")

    @property
    def public_key_bytes(self) -> bytes:
        return self._key.public_key.format(compressed=self.compressed)

    @property
    def key_encoding(self) -> PubKeyEncoding:
        return PubKeyEncoding.COMPRESSED if self.compressed else PubKeyEncoding.UNCOMPRESSED

    @property
    def hash160(self) -> bytes:
        return hash160(self.public_key_bytes)

    def address(self, network: Union[str, dict] = "testnet") -> str:
        net = network if isinstance(network, dict) else get_network(network)
        return c32_address(net["address_version"], self.hash160)

    def sign_recoverable(self, message_hash: bytes) -> bytes:
        """
        Recoverable ECDSA signature in Stacks VRS order.

        coincurve returns r(32) || s(32) || recid(1); Stacks expects
        recid(1) || r(32) || s(32).
        """
        if len(message_hash) != 32:
            raise ValueError("Message hash must be 32 bytes")
        sig = self._key.sign_recoverable(message_hash, hasher=None)
        return bytes([sig[64]]) + sig[:64]


def recover_public_key(message_hash: bytes, signature_vrs: bytes, compressed: bool = True) -> bytes:
    """Recover the signer's public key from a VRS signature."""
    if len(signature_vrs) != RECOVERABLE_SIGNATURE_LENGTH:
        raise ValueError("Signature must be 65 bytes")
    rsv = signature_vrs[1:] + signature_vrs[:1]
    pub = PublicKey.from_signature_and_message(rsv, message_hash, hasher=None)
    return pub.format(compressed=compressed)


# =============================================================================
# Payloads
# =============================================================================


def _lp_name(name: str) -> bytes:
    raw = name.encode("ascii")
    return bytes([len(raw)]) + raw


def _address_bytes(address: str) -> bytes:
    version, h160 = c32_address_decode(address)
    return bytes([version]) + h160


def is_valid_function_name(name: str) -> bool:
    return bool(
        name and len(name) <= CLARITY_NAME_MAX_LENGTH and CLARITY_NAME_RE.match(name)
    )


@dataclass
class ContractCallPayload:
    contract_address: str
    contract_name: str
    function_name: str
    function_args: List[ClarityValue] = field(default_factory=list)

    def __post_init__(self):
        c32_address_decode(self.contract_address)
        if not is_valid_contract_name(self.contract_name):
            raise ValueError(f"Invalid contract name: {self.contract_name}")
        if not is_valid_function_name(self.function_name):
            raise ValueError(f"Invalid function name: {self.function_name}")

    @property
    def contract_id(self) -> str:
        return f"{self.contract_address}.{self.contract_name}"

    def serialize(self) -> bytes:
        return b"".join(
            [
                bytes([PayloadType.CONTRACT_CALL]),
                _address_bytes(self.contract_address),
                _lp_name(self.contract_name),
                _lp_name(self.function_name),
                struct.pack(">I", len(self.function_args)),
                b"".join(serialize_cv(arg) for arg in self.function_args),
            ]
        )

    def describe(self) -> dict:
        return {
            "type": "contract-call",
            "contract": self.contract_id,
            "function": self.function_name,
            "args": [cv_to_string(arg) for arg in self.function_args],
        }


@dataclass
class SmartContractPayload:
    contract_name: str
    code_body: str

    def __post_init__(self):
        if not is_valid_contract_name(self.contract_name):
            raise ValueError(f"Invalid contract name: {self.contract_name}")
        if len(self.code_body.encode("utf-8")) > MAX_CODE_BODY_LENGTH:
            raise ValueError("Contract code body is too large")

    def serialize(self) -> bytes:
        code = self.code_body.encode("utf-8")
        return b"".join(
            [
                bytes([PayloadType.SMART_CONTRACT]),
                _lp_name(self.contract_name),
                struct.pack(">I", len(code)),
                code,
            ]
        )

    def describe(self) -> dict:
        return {
            "type": "smart-contract",
            "contract_name": self.contract_name,
            "code_length": len(self.code_body.encode("utf-8")),
        }


Payload = Union[ContractCallPayload, SmartContractPayload]


# =============================================================================
# Authorization
# =============================================================================


@dataclass
class SingleSigSpendingCondition:
    signer: bytes
    nonce: int = 0
    fee: int = 0
    key_encoding: PubKeyEncoding = PubKeyEncoding.COMPRESSED
    signature: bytes = EMPTY_SIGNATURE
    hash_mode: AddressHashMode = AddressHashMode.P2PKH

    def serialize(self) -> bytes:
        if len(self.signer) != 20:
            raise ValueError("Signer must be a 20-byte hash160")
        if len(self.signature) != RECOVERABLE_SIGNATURE_LENGTH:
            raise ValueError("Signature must be 65 bytes")
        return b"".join(
            [
                bytes([self.hash_mode]),
                self.signer,
                struct.pack(">Q", self.nonce),
                struct.pack(">Q", self.fee),
                bytes([self.key_encoding]),
                self.signature,
            ]
        )

    def cleared(self) -> "SingleSigSpendingCondition":
        """Copy with nonce, fee and signature zeroed (initial sighash form)."""
        return SingleSigSpendingCondition(
            signer=self.signer,
            nonce=0,
            fee=0,
            key_encoding=self.key_encoding,
            signature=EMPTY_SIGNATURE,
            hash_mode=self.hash_mode,
        )


# =============================================================================
# Transaction
# =============================================================================


@dataclass
class StacksTransaction:
    version: int
    chain_id: int
    spending_condition: SingleSigSpendingCondition
    payload: Payload
    anchor_mode: AnchorMode = AnchorMode.ANY
    post_condition_mode: PostConditionMode = PostConditionMode.ALLOW
    auth_type: AuthType = AuthType.STANDARD

    def serialize(self) -> bytes:
        return b"".join(
            [
                bytes([self.version]),
                struct.pack(">I", self.chain_id),
                bytes([self.auth_type]),
                self.spending_condition.serialize(),
                bytes([self.anchor_mode]),
                bytes([self.post_condition_mode]),
                struct.pack(">I", 0),  # post-conditions
                self.payload.serialize(),
            ]
        )

    def txid(self) -> str:
        return sha512_256(self.serialize()).hex()

    def hex(self) -> str:
        return self.serialize().hex()

    def payload_hex(self) -> str:
        return self.payload.serialize().hex()

    @property
    def fee(self) -> int:
        return self.spending_condition.fee

    @property
    def nonce(self) -> int:
        return self.spending_condition.nonce

    def set_fee(self, fee: int) -> None:
        if fee < 0:
            raise ValueError("Fee cannot be negative")
        self.spending_condition.fee = int(fee)

    def set_nonce(self, nonce: int) -> None:
        if nonce < 0:
            raise ValueError("Nonce cannot be negative")
        self.spending_condition.nonce = int(nonce)

    def initial_sighash(self) -> bytes:
        tx = copy.deepcopy(self)
        tx.spending_condition = self.spending_condition.cleared()
        return sha512_256(tx.serialize())

    def presign_sighash(self) -> bytes:
        return sha512_256(
            self.initial_sighash()
            + bytes([self.auth_type])
            + struct.pack(">Q", self.fee)
            + struct.pack(">Q", self.nonce)
        )

    def sign(self, key: StacksPrivateKey) -> None:
        """Sign as origin. Fee and nonce must be final before signing."""
        if key.hash160 != self.spending_condition.signer:
            raise ValueError("Private key does not match the transaction signer")
        if key.key_encoding != self.spending_condition.key_encoding:
            raise ValueError("Public key encoding does not match the spending condition")
        self.spending_condition.signature = key.sign_recoverable(self.presign_sighash())

    def verify_signature(self) -> bool:
        cond = self.spending_condition
        if cond.signature == EMPTY_SIGNATURE:
            return False
        try:
            pub = recover_public_key(
                self.presign_sighash(),
                cond.signature,
                compressed=cond.key_encoding == PubKeyEncoding.COMPRESSED,
            )
        except Exception as e:  # coincurve raises plain Exception
            logger.debug("Signature recovery failed: %s", e)
            return False
        return hash160(pub) == cond.signer

    def describe(self) -> dict:
        return {
            "txid": self.txid(),
            "nonce": self.nonce,
            "fee": self.fee,
            "payload": self.payload.describe(),
            "size": len(self.serialize()),
        }


def new_transaction(
    payload: Payload,
    sender_key: StacksPrivateKey,
    network: dict,
    anchor_mode: AnchorMode = AnchorMode.ANY,
    post_condition_mode: PostConditionMode = PostConditionMode.ALLOW,
) -> StacksTransaction:
    """Unsigned transaction with nonce and fee set to zero."""
    return StacksTransaction(
        version=network["tx_version"],
        chain_id=network["chain_id"],
        spending_condition=SingleSigSpendingCondition(
            signer=sender_key.hash160, key_encoding=sender_key.key_encoding
        ),
        payload=payload,
        anchor_mode=anchor_mode,
        post_condition_mode=post_condition_mode,
    )


# =============================================================================
# Node Operations
# =============================================================================


def get_account_info(
    address: str, network: Optional[str] = None, node_url: Optional[str] = None
) -> dict:
    """
    Баланс и nonce аккаунта (GET /v2/accounts/{address}?proof=0).

    Balance приходит hex-строкой в microSTX.
    """
    result = node_request(
        f"/v2/accounts/{address}",
        params={"proof": 0},
        network=network,
        node_url=node_url,
    )
    if not result["success"]:
        return format_api_error(result, endpoint="/v2/accounts")

    data = result["data"]
    try:
        balance = int(data.get("balance", "0x0"), 16)
        locked = int(data.get("locked", "0x0"), 16)
    except (TypeError, ValueError):
        return {"success": False, "error": f"Unexpected account response: {data}"}

    return {
        "success": True,
        "address": address,
        "balance": balance,
        "locked": locked,
        "nonce": int(data.get("nonce", 0)),
    }


def get_account_nonce(
    address: str, network: Optional[str] = None, node_url: Optional[str] = None
) -> int:
    info = get_account_info(address, network=network, node_url=node_url)
    if not info["success"]:
        raise NodeRequestError(info)
    return info["nonce"]


def estimate_fee(
    tx: StacksTransaction, network: Optional[str] = None, node_url: Optional[str] = None
) -> int:
    """
    Оценка комиссии в microSTX.

    1. POST /v2/fees/transaction (средняя из трёх оценок)
    2. GET /v2/fees/transfer (ставка за байт) * длина транзакции
    3. fees.fallback_fee из конфига
    """
    estimated_len = len(tx.serialize())

    result = node_request(
        "/v2/fees/transaction",
        method="POST",
        json_data={
            "transaction_payload": tx.payload_hex(),
            "estimated_len": estimated_len,
        },
        network=network,
        node_url=node_url,
    )
    if result["success"] and isinstance(result["data"], dict):
        estimations = result["data"].get("estimations") or []
        if estimations:
            middle = estimations[1] if len(estimations) > 1 else estimations[0]
            fee = int(middle.get("fee", 0))
            if fee > 0:
                logger.debug("Fee estimate from /v2/fees/transaction: %s", fee)
                return fee

    result = node_request("/v2/fees/transfer", network=network, node_url=node_url)
    if result["success"]:
        try:
            rate = int(result["data"])
        except (TypeError, ValueError):
            rate = 0
        if rate > 0:
            logger.debug("Fee from transfer rate %s x %s bytes", rate, estimated_len)
            return rate * estimated_len

    fallback = int(get_config_value("fees.fallback_fee", 2000))
    logger.warning("Fee estimation unavailable, using fallback fee %s microSTX", fallback)
    return fallback


def _build_and_sign(
    payload: Payload,
    sender_key: StacksPrivateKey,
    network: Optional[str],
    node_url: Optional[str],
    fee: Optional[int],
    nonce: Optional[int],
    anchor_mode: AnchorMode,
    post_condition_mode: PostConditionMode,
) -> StacksTransaction:
    net = get_network(network)
    tx = new_transaction(payload, sender_key, net, anchor_mode, post_condition_mode)

    if nonce is None:
        nonce = get_account_nonce(
            sender_key.address(net), network=net["name"], node_url=node_url
        )
    tx.set_nonce(nonce)

    if fee is None:
        fee = estimate_fee(tx, network=net["name"], node_url=node_url)
    tx.set_fee(fee)

    tx.sign(sender_key)
    logger.debug("Signed %s (nonce=%s fee=%s)", tx.txid(), tx.nonce, tx.fee)
    return tx


def make_contract_call(
    contract_address: str,
    contract_name: str,
    function_name: str,
    function_args: List[ClarityValue],
    sender_key: StacksPrivateKey,
    *,
    network: Optional[str] = None,
    node_url: Optional[str] = None,
    fee: Optional[int] = None,
    nonce: Optional[int] = None,
    anchor_mode: AnchorMode = AnchorMode.ANY,
    post_condition_mode: PostConditionMode = PostConditionMode.ALLOW,
) -> StacksTransaction:
    """
    Собирает и подписывает contract-call транзакцию.

    Nonce и fee запрашиваются у ноды, если не заданы явно.
    """
    payload = ContractCallPayload(
        contract_address=contract_address,
        contract_name=contract_name,
        function_name=function_name,
        function_args=list(function_args),
    )
    return _build_and_sign(
        payload, sender_key, network, node_url, fee, nonce, anchor_mode, post_condition_mode
    )


def make_contract_deploy(
    contract_name: str,
    code_body: str,
    sender_key: StacksPrivateKey,
    *,
    network: Optional[str] = None,
    node_url: Optional[str] = None,
    fee: Optional[int] = None,
    nonce: Optional[int] = None,
    anchor_mode: AnchorMode = AnchorMode.ANY,
    post_condition_mode: PostConditionMode = PostConditionMode.ALLOW,
) -> StacksTransaction:
    """Собирает и подписывает транзакцию деплоя контракта."""
    payload = SmartContractPayload(contract_name=contract_name, code_body=code_body)
    return _build_and_sign(
        payload, sender_key, network, node_url, fee, nonce, anchor_mode, post_condition_mode
    )


def broadcast_transaction(
    tx: StacksTransaction, network: Optional[str] = None, node_url: Optional[str] = None
) -> dict:
    """
    Отправляет подписанную транзакцию в сеть (POST /v2/transactions).

    Returns:
        dict с txid или отформатированной ошибкой mempool
    """
    expected_txid = tx.txid()
    result = node_request(
        "/v2/transactions",
        method="POST",
        data=tx.serialize(),
        headers={"Content-Type": "application/octet-stream"},
        network=network,
        node_url=node_url,
    )

    if not result["success"]:
        logger.error("Broadcast rejected: %s", result.get("error"))
        return format_broadcast_error(result.get("error"), txid=expected_txid)

    data = result["data"]
    txid = data.get("txid") if isinstance(data, dict) else data
    txid = str(txid or "").strip().strip('"')
    if txid.startswith("0x"):
        txid = txid[2:]
    if txid and txid != expected_txid:
        logger.warning("Node returned txid %s, expected %s", txid, expected_txid)

    return {"success": True, "txid": txid or expected_txid}


def call_read_only(
    contract_address: str,
    contract_name: str,
    function_name: str,
    function_args: Optional[List[ClarityValue]] = None,
    sender: Optional[str] = None,
    network: Optional[str] = None,
    node_url: Optional[str] = None,
) -> dict:
    """
    Read-only вызов (POST /v2/contracts/call-read/...).

    Returns:
        dict с result (ClarityValue), value (JSON) и repr (Clarity literal)
    """
    endpoint = f"/v2/contracts/call-read/{contract_address}/{contract_name}/{function_name}"
    result = node_request(
        endpoint,
        method="POST",
        json_data={
            "sender": sender or contract_address,
            "arguments": [cv_to_hex(arg) for arg in function_args or []],
        },
        network=network,
        node_url=node_url,
    )
    if not result["success"]:
        return format_api_error(result, endpoint=endpoint)

    data = result["data"]
    if not isinstance(data, dict) or not data.get("okay"):
        cause = data.get("cause") if isinstance(data, dict) else data
        return format_error(
            cause or "Read-only call failed",
            error_type="contract",
            context={"contract": f"{contract_address}.{contract_name}", "function": function_name},
        )

    try:
        cv = hex_to_cv(data["result"])
    except (KeyError, ClarityError) as e:
        return {"success": False, "error": f"Cannot decode read-only result: {e}"}

    return {
        "success": True,
        "result": cv,
        "value": cv_to_value(cv),
        "repr": cv_to_string(cv),
    }


def get_transaction_status(
    txid: str, network: Optional[str] = None, node_url: Optional[str] = None
) -> dict:
    """Статус транзакции (GET /extended/v1/tx/{txid})."""
    if not txid.startswith("0x"):
        txid = f"0x{txid}"
    result = node_request(f"/extended/v1/tx/{txid}", network=network, node_url=node_url)
    if not result["success"]:
        return format_api_error(result, endpoint="/extended/v1/tx")

    data = result["data"]
    status = {
        "success": True,
        "txid": data.get("tx_id", txid),
        "tx_status": data.get("tx_status"),
        "tx_type": data.get("tx_type"),
        "block_height": data.get("block_height"),
    }
    tx_result = data.get("tx_result") or {}
    if tx_result.get("repr"):
        status["tx_result"] = tx_result["repr"]
    return status
