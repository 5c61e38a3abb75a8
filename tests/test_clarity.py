"""
Unit tests for clarity.py (Clarity values and their binary encoding).

Run with: pytest tests/test_clarity.py -v
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))

from clarity import (
    ClarityError,
    ClarityType,
    ContractPrincipalCV,
    StandardPrincipalCV,
    TupleCV,
    UIntCV,
    bool_cv,
    buffer_cv,
    contract_principal_cv,
    cv_to_hex,
    cv_to_string,
    cv_to_value,
    deserialize_cv,
    err_cv,
    false_cv,
    hex_to_cv,
    int_cv,
    list_cv,
    none_cv,
    ok_cv,
    optional_cv,
    principal_cv,
    serialize_cv,
    some_cv,
    standard_principal_cv,
    string_ascii_cv,
    string_utf8_cv,
    true_cv,
    tuple_cv,
    uint_cv,
)

from conftest import CONTRACT_ADDRESS, DEPLOYER_ADDRESS, DEPLOYER_HASH160


# =============================================================================
# Encoding
# =============================================================================


class TestSerialize:
    """Known encodings of each value type."""

    def test_uint(self):
        assert cv_to_hex(uint_cv(1)) == "0x01" + "00" * 15 + "01"
        assert cv_to_hex(uint_cv(1000000)) == "0x01" + "00" * 13 + "0f4240"

    def test_int_negative(self):
        assert cv_to_hex(int_cv(-1)) == "0x00" + "ff" * 16

    def test_bool(self):
        assert serialize_cv(bool_cv(True)) == b"\x03"
        assert serialize_cv(bool_cv(False)) == b"\x04"

    def test_buffer(self):
        assert cv_to_hex(buffer_cv(b"\xde\xad")) == "0x0200000002dead"

    def test_standard_principal(self):
        assert cv_to_hex(standard_principal_cv(DEPLOYER_ADDRESS)) == "0x051a" + DEPLOYER_HASH160

    def test_contract_principal(self):
        cv = contract_principal_cv(DEPLOYER_ADDRESS, "simple-nft")

        assert cv_to_hex(cv) == "0x061a" + DEPLOYER_HASH160 + "0a" + b"simple-nft".hex()

    def test_optional(self):
        assert serialize_cv(none_cv()) == b"\x09"
        assert serialize_cv(some_cv(uint_cv(4))) == b"\x0a" + serialize_cv(uint_cv(4))

    def test_responses(self):
        assert serialize_cv(ok_cv(bool_cv(True))) == b"\x07\x03"
        assert serialize_cv(err_cv(uint_cv(100)))[:2] == b"\x08\x01"

    def test_list(self):
        encoded = serialize_cv(list_cv([uint_cv(1), uint_cv(2)]))

        assert encoded[:5] == b"\x0b\x00\x00\x00\x02"
        assert len(encoded) == 5 + 2 * 17

    def test_tuple_keys_sorted(self):
        """Tuple keys serialize in sorted order regardless of insertion order."""
        a = tuple_cv({"seller-amount": uint_cv(975000), "marketplace-fee": uint_cv(25000)})
        b = tuple_cv({"marketplace-fee": uint_cv(25000), "seller-amount": uint_cv(975000)})

        encoded = serialize_cv(a)
        assert encoded == serialize_cv(b)
        assert encoded[5] == len("marketplace-fee")
        assert encoded[6 : 6 + 15] == b"marketplace-fee"

    def test_strings(self):
        assert cv_to_hex(string_ascii_cv("hi")) == "0x0d000000026869"
        assert serialize_cv(string_utf8_cv("é")) == b"\x0e\x00\x00\x00\x02\xc3\xa9"


class TestDeserialize:
    """Decoding node results."""

    def test_read_only_uint_result(self):
        """Result of get-marketplace-fee as returned by call-read."""
        cv = hex_to_cv("0x01000000000000000000000000000000fa")

        assert cv == uint_cv(250)

    def test_nested_response(self):
        original = ok_cv(some_cv(standard_principal_cv(DEPLOYER_ADDRESS)))

        assert deserialize_cv(serialize_cv(original)) == original

    def test_listing_tuple(self):
        listing = some_cv(
            tuple_cv(
                {
                    "seller": principal_cv(DEPLOYER_ADDRESS),
                    "price": uint_cv(1000000),
                    "royalty": uint_cv(500),
                    "royalty-recipient": none_cv(),
                }
            )
        )

        decoded = hex_to_cv(cv_to_hex(listing))

        assert decoded == listing
        assert isinstance(decoded.value, TupleCV)
        assert decoded.value["price"] == uint_cv(1000000)

    def test_contract_principal(self):
        cv = hex_to_cv(cv_to_hex(principal_cv(f"{CONTRACT_ADDRESS}.nft-marketplace")))

        assert isinstance(cv, ContractPrincipalCV)
        assert str(cv) == f"{CONTRACT_ADDRESS}.nft-marketplace"

    def test_truncated_input(self):
        with pytest.raises(ClarityError, match="end"):
            hex_to_cv("0x0100")

    def test_unknown_type(self):
        with pytest.raises(ClarityError, match="type id"):
            deserialize_cv(b"\x42")

    def test_trailing_bytes(self):
        with pytest.raises(ClarityError, match="Trailing"):
            deserialize_cv(b"\x03\x03")

    def test_invalid_principal_version(self):
        with pytest.raises(ClarityError, match="Invalid principal"):
            hex_to_cv("0x05" + "20" + "00" * 20)

    def test_invalid_hex(self):
        with pytest.raises(ClarityError):
            hex_to_cv("0xzz")


# =============================================================================
# Constructors
# =============================================================================


class TestConstructors:
    def test_uint_range(self):
        assert uint_cv(2**128 - 1).value == 2**128 - 1
        with pytest.raises(ClarityError):
            uint_cv(-1)
        with pytest.raises(ClarityError):
            uint_cv(2**128)

    def test_int_range(self):
        with pytest.raises(ClarityError):
            int_cv(2**127)

    def test_principal_dispatch(self):
        assert isinstance(principal_cv(DEPLOYER_ADDRESS), StandardPrincipalCV)
        assert isinstance(principal_cv(f"{DEPLOYER_ADDRESS}.simple-nft"), ContractPrincipalCV)

    def test_invalid_principal(self):
        with pytest.raises(ClarityError):
            standard_principal_cv("ST-not-an-address")
        with pytest.raises(ClarityError):
            contract_principal_cv(DEPLOYER_ADDRESS, "bad name")

    def test_string_ascii_rejects_unicode(self):
        with pytest.raises(ClarityError):
            string_ascii_cv("héllo")

    def test_bool_shortcuts(self):
        assert true_cv() == bool_cv(1)
        assert false_cv() == bool_cv(0)
        assert cv_to_hex(false_cv()) == "0x04"

    def test_optional_cv(self):
        assert optional_cv(None) == none_cv()
        assert optional_cv(uint_cv(1)) == some_cv(uint_cv(1))

    def test_type_ids(self):
        assert uint_cv(1).type_id == ClarityType.UINT
        assert bool_cv(True).type_id == ClarityType.BOOL_TRUE
        assert bool_cv(False).type_id == ClarityType.BOOL_FALSE
        assert none_cv().type_id == ClarityType.OPTIONAL_NONE

    def test_values_are_immutable(self):
        cv = uint_cv(1)
        with pytest.raises(Exception):
            cv.value = 2


# =============================================================================
# Display
# =============================================================================


class TestDisplay:
    def test_cv_to_string(self):
        assert cv_to_string(ok_cv(uint_cv(4))) == "(ok u4)"
        assert cv_to_string(err_cv(uint_cv(100))) == "(err u100)"
        assert cv_to_string(some_cv(principal_cv(DEPLOYER_ADDRESS))) == f"(some '{DEPLOYER_ADDRESS})"
        assert cv_to_string(none_cv()) == "none"
        assert cv_to_string(tuple_cv({"a": uint_cv(1)})) == "{a: u1}"
        assert cv_to_string(string_ascii_cv('say "hi"')) == '"say \\"hi\\""'

    def test_cv_to_value(self):
        assert cv_to_value(ok_cv(uint_cv(4))) == {"ok": 4}
        assert cv_to_value(err_cv(uint_cv(101))) == {"err": 101}
        assert cv_to_value(ok_cv(none_cv())) == {"ok": None}
        assert cv_to_value(some_cv(principal_cv(DEPLOYER_ADDRESS))) == DEPLOYER_ADDRESS
        assert cv_to_value(buffer_cv(b"\x01\x02")) == "0x0102"
        assert cv_to_value(list_cv([bool_cv(True)])) == [True]
        assert cv_to_value(
            tuple_cv({"marketplace-fee": uint_cv(25000), "seller-amount": uint_cv(975000)})
        ) == {"marketplace-fee": 25000, "seller-amount": 975000}

    def test_uint_value_type(self):
        assert isinstance(uint_cv(7), UIntCV)
