#!/usr/bin/env python3
"""
Stacks NFT Market — Clarity values

Clarity value model and its consensus (SIP-005) binary encoding, used for
contract-call arguments, read-only call results and the simulated chain.

    >>> cv_to_hex(uint_cv(1))
    '0x0100000000000000000000000000000001'
"""

import sys
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

script_dir = Path(__file__).parent
sys.path.insert(0, str(script_dir))

from utils import c32_address, c32_address_decode, is_valid_contract_name  # noqa: E402


class ClarityError(ValueError):
    """Malformed Clarity value or encoding."""


class ClarityType(IntEnum):
    INT = 0x00
    UINT = 0x01
    BUFFER = 0x02
    BOOL_TRUE = 0x03
    BOOL_FALSE = 0x04
    PRINCIPAL_STANDARD = 0x05
    PRINCIPAL_CONTRACT = 0x06
    RESPONSE_OK = 0x07
    RESPONSE_ERR = 0x08
    OPTIONAL_NONE = 0x09
    OPTIONAL_SOME = 0x0A
    LIST = 0x0B
    TUPLE = 0x0C
    STRING_ASCII = 0x0D
    STRING_UTF8 = 0x0E


INT_MIN = -(2**127)
INT_MAX = 2**127 - 1
UINT_MAX = 2**128 - 1


# =============================================================================
# Value types
# =============================================================================


class ClarityValue:
    type_id: ClarityType


@dataclass(frozen=True)
class IntCV(ClarityValue):
    value: int
    type_id: ClarityType = field(default=ClarityType.INT, init=False, repr=False)


@dataclass(frozen=True)
class UIntCV(ClarityValue):
    value: int
    type_id: ClarityType = field(default=ClarityType.UINT, init=False, repr=False)


@dataclass(frozen=True)
class BufferCV(ClarityValue):
    data: bytes
    type_id: ClarityType = field(default=ClarityType.BUFFER, init=False, repr=False)


@dataclass(frozen=True)
class BoolCV(ClarityValue):
    value: bool

    @property
    def type_id(self) -> ClarityType:
        return ClarityType.BOOL_TRUE if self.value else ClarityType.BOOL_FALSE


@dataclass(frozen=True)
class StandardPrincipalCV(ClarityValue):
    address: str
    type_id: ClarityType = field(
        default=ClarityType.PRINCIPAL_STANDARD, init=False, repr=False
    )

    def __str__(self) -> str:
        return self.address


@dataclass(frozen=True)
class ContractPrincipalCV(ClarityValue):
    address: str
    contract_name: str
    type_id: ClarityType = field(
        default=ClarityType.PRINCIPAL_CONTRACT, init=False, repr=False
    )

    def __str__(self) -> str:
        return f"{self.address}.{self.contract_name}"


@dataclass(frozen=True)
class ResponseOkCV(ClarityValue):
    value: ClarityValue
    type_id: ClarityType = field(default=ClarityType.RESPONSE_OK, init=False, repr=False)


@dataclass(frozen=True)
class ResponseErrCV(ClarityValue):
    value: ClarityValue
    type_id: ClarityType = field(default=ClarityType.RESPONSE_ERR, init=False, repr=False)


@dataclass(frozen=True)
class NoneCV(ClarityValue):
    type_id: ClarityType = field(default=ClarityType.OPTIONAL_NONE, init=False, repr=False)


@dataclass(frozen=True)
class SomeCV(ClarityValue):
    value: ClarityValue
    type_id: ClarityType = field(default=ClarityType.OPTIONAL_SOME, init=False, repr=False)


@dataclass(frozen=True)
class ListCV(ClarityValue):
    items: Tuple[ClarityValue, ...]
    type_id: ClarityType = field(default=ClarityType.LIST, init=False, repr=False)


@dataclass(frozen=True)
class TupleCV(ClarityValue):
    # dict is unhashable; tuples are compared, never hashed
    data: Dict[str, ClarityValue]
    type_id: ClarityType = field(default=ClarityType.TUPLE, init=False, repr=False)

    def __getitem__(self, key: str) -> ClarityValue:
        return self.data[key]


@dataclass(frozen=True)
class StringAsciiCV(ClarityValue):
    value: str
    type_id: ClarityType = field(default=ClarityType.STRING_ASCII, init=False, repr=False)


@dataclass(frozen=True)
class StringUtf8CV(ClarityValue):
    value: str
    type_id: ClarityType = field(default=ClarityType.STRING_UTF8, init=False, repr=False)


PrincipalCV = (StandardPrincipalCV, ContractPrincipalCV)
ResponseCV = (ResponseOkCV, ResponseErrCV)


# =============================================================================
# Constructors
# =============================================================================


def int_cv(value: int) -> IntCV:
    value = int(value)
    if not INT_MIN <= value <= INT_MAX:
        raise ClarityError(f"Int out of 128-bit signed range: {value}")
    return IntCV(value)


def uint_cv(value: int) -> UIntCV:
    value = int(value)
    if not 0 <= value <= UINT_MAX:
        raise ClarityError(f"UInt out of 128-bit unsigned range: {value}")
    return UIntCV(value)


def buffer_cv(data: bytes) -> BufferCV:
    return BufferCV(bytes(data))


def bool_cv(value: bool) -> BoolCV:
    return BoolCV(bool(value))


def true_cv() -> BoolCV:
    return BoolCV(True)


def false_cv() -> BoolCV:
    return BoolCV(False)


def standard_principal_cv(address: str) -> StandardPrincipalCV:
    try:
        c32_address_decode(address)
    except ValueError as e:
        raise ClarityError(str(e))
    return StandardPrincipalCV(address)


def contract_principal_cv(address: str, contract_name: str) -> ContractPrincipalCV:
    try:
        c32_address_decode(address)
    except ValueError as e:
        raise ClarityError(str(e))
    if not is_valid_contract_name(contract_name):
        raise ClarityError(f"Invalid contract name: {contract_name}")
    return ContractPrincipalCV(address, contract_name)


def principal_cv(principal: str):
    """'ADDR' -> standard principal, 'ADDR.name' -> contract principal."""
    if "." in principal:
        address, name = principal.split(".", 1)
        return contract_principal_cv(address, name)
    return standard_principal_cv(principal)


def ok_cv(value: ClarityValue) -> ResponseOkCV:
    return ResponseOkCV(value)


def err_cv(value: ClarityValue) -> ResponseErrCV:
    return ResponseErrCV(value)


def none_cv() -> NoneCV:
    return NoneCV()


def some_cv(value: ClarityValue) -> SomeCV:
    return SomeCV(value)


def optional_cv(value: Optional[ClarityValue]):
    return none_cv() if value is None else some_cv(value)


def list_cv(items) -> ListCV:
    return ListCV(tuple(items))


def tuple_cv(data: Dict[str, ClarityValue]) -> TupleCV:
    for key in data:
        if not key or len(key) > 128:
            raise ClarityError(f"Invalid tuple key: {key!r}")
    return TupleCV(dict(data))


def string_ascii_cv(value: str) -> StringAsciiCV:
    try:
        value.encode("ascii")
    except UnicodeEncodeError:
        raise ClarityError("string-ascii value contains non-ASCII characters")
    return StringAsciiCV(value)


def string_utf8_cv(value: str) -> StringUtf8CV:
    return StringUtf8CV(value)


# =============================================================================
# Serialization
# =============================================================================


def _serialize_address(address: str) -> bytes:
    version, h160 = c32_address_decode(address)
    return bytes([version]) + h160


def _serialize_lp_string(text: str) -> bytes:
    """1-byte length prefixed ASCII (contract names, tuple keys)."""
    raw = text.encode("ascii")
    if len(raw) > 128:
        raise ClarityError(f"Name too long: {text}")
    return bytes([len(raw)]) + raw


def serialize_cv(cv: ClarityValue) -> bytes:
    """Serialize a Clarity value to its consensus binary form."""
    prefix = bytes([cv.type_id])

    if isinstance(cv, IntCV):
        return prefix + cv.value.to_bytes(16, "big", signed=True)
    if isinstance(cv, UIntCV):
        return prefix + cv.value.to_bytes(16, "big")
    if isinstance(cv, BufferCV):
        return prefix + struct.pack(">I", len(cv.data)) + cv.data
    if isinstance(cv, BoolCV):
        return prefix
    if isinstance(cv, StandardPrincipalCV):
        return prefix + _serialize_address(cv.address)
    if isinstance(cv, ContractPrincipalCV):
        return (
            prefix
            + _serialize_address(cv.address)
            + _serialize_lp_string(cv.contract_name)
        )
    if isinstance(cv, (ResponseOkCV, ResponseErrCV, SomeCV)):
        return prefix + serialize_cv(cv.value)
    if isinstance(cv, NoneCV):
        return prefix
    if isinstance(cv, ListCV):
        return (
            prefix
            + struct.pack(">I", len(cv.items))
            + b"".join(serialize_cv(item) for item in cv.items)
        )
    if isinstance(cv, TupleCV):
        # Ключи сортируются лексикографически
        parts = [prefix, struct.pack(">I", len(cv.data))]
        for key in sorted(cv.data):
            parts.append(_serialize_lp_string(key))
            parts.append(serialize_cv(cv.data[key]))
        return b"".join(parts)
    if isinstance(cv, StringAsciiCV):
        raw = cv.value.encode("ascii")
        return prefix + struct.pack(">I", len(raw)) + raw
    if isinstance(cv, StringUtf8CV):
        raw = cv.value.encode("utf-8")
        return prefix + struct.pack(">I", len(raw)) + raw

    raise ClarityError(f"Cannot serialize {type(cv).__name__}")


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    def read(self, n: int) -> bytes:
        if self.offset + n > len(self.data):
            raise ClarityError("Unexpected end of Clarity value")
        chunk = self.data[self.offset : self.offset + n]
        self.offset += n
        return chunk

    def read_u8(self) -> int:
        return self.read(1)[0]

    def read_u32(self) -> int:
        return struct.unpack(">I", self.read(4))[0]


def _read_address(reader: _Reader) -> str:
    version = reader.read_u8()
    hash_bytes = reader.read(20)
    try:
        return c32_address(version, hash_bytes)
    except ValueError as e:
        raise ClarityError(f"Invalid principal: {e}")


def _read_lp_string(reader: _Reader) -> str:
    length = reader.read_u8()
    try:
        return reader.read(length).decode("ascii")
    except UnicodeDecodeError:
        raise ClarityError("Non-ASCII name in Clarity value")


def _deserialize(reader: _Reader) -> ClarityValue:
    type_byte = reader.read_u8()
    try:
        type_id = ClarityType(type_byte)
    except ValueError:
        raise ClarityError(f"Unknown Clarity type id: 0x{type_byte:02x}")

    if type_id == ClarityType.INT:
        return IntCV(int.from_bytes(reader.read(16), "big", signed=True))
    if type_id == ClarityType.UINT:
        return UIntCV(int.from_bytes(reader.read(16), "big"))
    if type_id == ClarityType.BUFFER:
        return BufferCV(reader.read(reader.read_u32()))
    if type_id == ClarityType.BOOL_TRUE:
        return BoolCV(True)
    if type_id == ClarityType.BOOL_FALSE:
        return BoolCV(False)
    if type_id == ClarityType.PRINCIPAL_STANDARD:
        return StandardPrincipalCV(_read_address(reader))
    if type_id == ClarityType.PRINCIPAL_CONTRACT:
        address = _read_address(reader)
        return ContractPrincipalCV(address, _read_lp_string(reader))
    if type_id == ClarityType.RESPONSE_OK:
        return ResponseOkCV(_deserialize(reader))
    if type_id == ClarityType.RESPONSE_ERR:
        return ResponseErrCV(_deserialize(reader))
    if type_id == ClarityType.OPTIONAL_NONE:
        return NoneCV()
    if type_id == ClarityType.OPTIONAL_SOME:
        return SomeCV(_deserialize(reader))
    if type_id == ClarityType.LIST:
        count = reader.read_u32()
        return ListCV(tuple(_deserialize(reader) for _ in range(count)))
    if type_id == ClarityType.TUPLE:
        count = reader.read_u32()
        data = {}
        for _ in range(count):
            key = _read_lp_string(reader)
            data[key] = _deserialize(reader)
        return TupleCV(data)
    if type_id == ClarityType.STRING_ASCII:
        try:
            return StringAsciiCV(reader.read(reader.read_u32()).decode("ascii"))
        except UnicodeDecodeError:
            raise ClarityError("Invalid string-ascii payload")
    # STRING_UTF8
    try:
        return StringUtf8CV(reader.read(reader.read_u32()).decode("utf-8"))
    except UnicodeDecodeError:
        raise ClarityError("Invalid string-utf8 payload")


def deserialize_cv(data: bytes) -> ClarityValue:
    """Decode one Clarity value; trailing bytes are an error."""
    reader = _Reader(bytes(data))
    value = _deserialize(reader)
    if reader.offset != len(reader.data):
        raise ClarityError(
            f"Trailing bytes after Clarity value: {len(reader.data) - reader.offset}"
        )
    return value


def cv_to_hex(cv: ClarityValue) -> str:
    return "0x" + serialize_cv(cv).hex()


def hex_to_cv(hex_str: str) -> ClarityValue:
    if hex_str.startswith("0x"):
        hex_str = hex_str[2:]
    try:
        raw = bytes.fromhex(hex_str)
    except ValueError:
        raise ClarityError(f"Invalid hex: {hex_str[:20]}")
    return deserialize_cv(raw)


# =============================================================================
# Display
# =============================================================================


def cv_to_value(cv: ClarityValue) -> Any:
    """
    JSON-friendly Python value.

    Responses become {"ok": v} / {"err": v}; none becomes None.
    """
    if isinstance(cv, (IntCV, UIntCV, BoolCV, StringAsciiCV, StringUtf8CV)):
        return cv.value
    if isinstance(cv, BufferCV):
        return "0x" + cv.data.hex()
    if isinstance(cv, PrincipalCV):
        return str(cv)
    if isinstance(cv, ResponseOkCV):
        return {"ok": cv_to_value(cv.value)}
    if isinstance(cv, ResponseErrCV):
        return {"err": cv_to_value(cv.value)}
    if isinstance(cv, NoneCV):
        return None
    if isinstance(cv, SomeCV):
        return cv_to_value(cv.value)
    if isinstance(cv, ListCV):
        return [cv_to_value(item) for item in cv.items]
    if isinstance(cv, TupleCV):
        return {key: cv_to_value(value) for key, value in cv.data.items()}
    raise ClarityError(f"Unknown Clarity value: {cv!r}")


def cv_to_string(cv: ClarityValue) -> str:
    """Clarity literal, e.g. (ok u4) or (some 'ST...)."""
    if isinstance(cv, IntCV):
        return str(cv.value)
    if isinstance(cv, UIntCV):
        return f"u{cv.value}"
    if isinstance(cv, BufferCV):
        return "0x" + cv.data.hex()
    if isinstance(cv, BoolCV):
        return "true" if cv.value else "false"
    if isinstance(cv, PrincipalCV):
        return f"'{cv}"
    if isinstance(cv, ResponseOkCV):
        return f"(ok {cv_to_string(cv.value)})"
    if isinstance(cv, ResponseErrCV):
        return f"(err {cv_to_string(cv.value)})"
    if isinstance(cv, NoneCV):
        return "none"
    if isinstance(cv, SomeCV):
        return f"(some {cv_to_string(cv.value)})"
    if isinstance(cv, ListCV):
        return "(list " + " ".join(cv_to_string(i) for i in cv.items) + ")"
    if isinstance(cv, TupleCV):
        inner = ", ".join(f"{k}: {cv_to_string(v)}" for k, v in cv.data.items())
        return "{" + inner + "}"
    if isinstance(cv, StringAsciiCV):
        return '"' + cv.value.replace("\\", "\\\\").replace('"', '\\"') + '"'
    if isinstance(cv, StringUtf8CV):
        return 'u"' + cv.value.replace("\\", "\\\\").replace('"', '\\"') + '"'
    raise ClarityError(f"Unknown Clarity value: {cv!r}")
