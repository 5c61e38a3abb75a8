"""
Unit tests for utils.py module.

Run with: pytest tests/test_utils.py -v
"""

import base64
import json
import logging
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))

from utils import (
    # Encryption
    encrypt_data,
    decrypt_data,
    encrypt_json,
    decrypt_json,
    derive_key,
    # Config
    load_config,
    save_config,
    get_config_value,
    set_config_value,
    get_network,
    # Hashing
    sha512_256,
    hash160,
    # Addresses
    c32_encode,
    c32_decode,
    c32_address,
    c32_address_decode,
    c32check_decode,
    is_valid_address,
    is_valid_contract_name,
    parse_principal,
    address_network,
    # HTTP
    create_http_session,
    api_request,
    node_request,
    # Logging
    setup_logging,
    LOGGER_NAME,
)

from conftest import (
    CONTRACT_ADDRESS,
    DEPLOYER_ADDRESS,
    DEPLOYER_HASH160,
    ETH_ADDRESS,
    INVALID_ADDRESS,
    MAINNET_ADDRESS,
)


# =============================================================================
# Test Data
# =============================================================================

SAMPLE_HASH160 = bytes.fromhex("a46ff88886c2ef9762d970b4d2c63678835bd39d")


# =============================================================================
# Encryption Tests
# =============================================================================


class TestEncryption:
    """Tests for AES-256 storage encryption."""

    def test_encrypt_decrypt_roundtrip(self):
        """Encrypt then decrypt returns original bytes."""
        original = b"753b7cc01a1a2e86221266a154af7394"
        encrypted = encrypt_data(original, "strong_password_123")

        assert decrypt_data(encrypted, "strong_password_123") == original
        assert original not in encrypted

    def test_random_salt_and_iv(self):
        """Same input and password give different ciphertexts."""
        enc1 = encrypt_data(b"secret", "test")
        enc2 = encrypt_data(b"secret", "test")

        assert enc1 != enc2
        assert decrypt_data(enc1, "test") == decrypt_data(enc2, "test") == b"secret"

    def test_wrong_password_fails(self):
        """Wrong password never yields the plaintext."""
        encrypted = encrypt_data(b"secret", "correct_password")

        try:
            decrypted = decrypt_data(encrypted, "wrong_password")
        except ValueError:
            return
        # padding may still be valid by chance
        assert decrypted != b"secret"

    def test_truncated_data_fails(self):
        """Data shorter than salt + iv + one block is rejected."""
        with pytest.raises(ValueError):
            decrypt_data(b"short", "any_password")

    def test_derive_key_deterministic(self):
        """Key derivation is deterministic and 256-bit."""
        salt = b"0123456789abcdef"

        key1 = derive_key("test_password", salt)
        key2 = derive_key("test_password", salt)

        assert key1 == key2
        assert len(key1) == 32
        assert derive_key("test_password", b"fedcba9876543210") != key1

    def test_json_roundtrip_is_base64(self):
        """encrypt_json produces base64 that decrypt_json reverses."""
        original = {"wallets": [{"label": "deployer", "private_key": "00" * 33}]}

        encrypted = encrypt_json(original, "pw")

        base64.b64decode(encrypted)
        assert decrypt_json(encrypted, "pw") == original

    def test_json_wrong_password(self):
        encrypted = encrypt_json({"secret": "data"}, "correct")

        with pytest.raises(ValueError):
            decrypt_json(encrypted, "wrong")


# =============================================================================
# Config Manager Tests
# =============================================================================


class TestConfigManager:
    """Tests for configuration management."""

    @pytest.fixture(autouse=True)
    def setup_temp_config(self, tmp_path, monkeypatch):
        """Use temporary directory for config during tests."""
        temp_skill_dir = tmp_path / "stacks-nft-market"
        temp_config_file = temp_skill_dir / "config.json"

        monkeypatch.setattr("utils.SKILL_DIR", temp_skill_dir)
        monkeypatch.setattr("utils.CONFIG_FILE", temp_config_file)
        monkeypatch.delenv("STACKS_NETWORK", raising=False)

        self.skill_dir = temp_skill_dir
        self.config_file = temp_config_file

    def test_load_config_defaults(self):
        """No file: defaults are returned."""
        config = load_config()

        assert config["network"] == "testnet"
        assert config["fees"]["fallback_fee"] == 2000
        assert config["deploy"]["delay_seconds"] == 5

    def test_load_config_merges_with_defaults(self):
        """Saved keys override defaults, missing keys come from defaults."""
        save_config({"hiro_api_key": "my_key"})

        loaded = load_config()

        assert loaded["hiro_api_key"] == "my_key"
        assert loaded["network"] == "testnet"

    def test_defaults_not_shared_between_loads(self):
        """Mutating a loaded config does not leak into later loads."""
        config = load_config()
        config["fees"]["fallback_fee"] = 1

        assert load_config()["fees"]["fallback_fee"] == 2000

    def test_get_config_value_dot_notation(self):
        save_config({"deploy": {"delay_seconds": 10}})

        assert get_config_value("deploy.delay_seconds") == 10

    def test_get_config_value_missing_returns_default(self):
        assert get_config_value("a.b.c", default="fallback") == "fallback"

    def test_set_config_value_creates_nested(self):
        set_config_value("fees.fallback_fee", 5000)

        assert get_config_value("fees.fallback_fee") == 5000
        assert json.loads(self.config_file.read_text())["fees"]["fallback_fee"] == 5000

    def test_corrupted_config_returns_defaults(self):
        """Corrupted config file yields defaults."""
        self.skill_dir.mkdir(parents=True, exist_ok=True)
        self.config_file.write_text("{ invalid json }")

        assert load_config()["network"] == "testnet"


class TestNetworkResolution:
    """Tests for get_network."""

    @pytest.fixture(autouse=True)
    def setup_temp_config(self, mock_config):
        self.config_file = mock_config["config_file"]

    def test_default_testnet(self):
        net = get_network()

        assert net["name"] == "testnet"
        assert net["chain_id"] == 0x80000000
        assert net["tx_version"] == 0x80
        assert net["node_url"] == "https://api.testnet.hiro.so"

    def test_argument_wins(self, monkeypatch):
        monkeypatch.setenv("STACKS_NETWORK", "testnet")

        net = get_network("mainnet")

        assert net["name"] == "mainnet"
        assert net["chain_id"] == 0x00000001
        assert net["address_version"] == 22

    def test_env_over_config(self, monkeypatch):
        monkeypatch.setenv("STACKS_NETWORK", "mainnet")

        assert get_network()["name"] == "mainnet"

    def test_config_node_url_override(self):
        save_config({"node_url": "http://localhost:3999/"})

        assert get_network()["node_url"] == "http://localhost:3999"

    def test_config_node_url_only_for_configured_network(self, monkeypatch):
        save_config({"network": "testnet", "node_url": "http://localhost:3999"})

        assert get_network("mainnet")["node_url"] == "https://api.hiro.so"

        monkeypatch.setenv("STACKS_NETWORK", "mainnet")
        assert get_network()["node_url"] == "https://api.hiro.so"
        assert get_network("testnet")["node_url"] == "http://localhost:3999"

    def test_unknown_network(self):
        with pytest.raises(ValueError, match="Unknown network"):
            get_network("devnet-x")


# =============================================================================
# Hashing Tests
# =============================================================================


class TestHashing:
    def test_sha512_256_empty(self):
        assert (
            sha512_256(b"").hex()
            == "c672b8d1ef56ed28ab87c3622c5114069bdd3ad7b8f9737498d0c01ecef0967a"
        )

    def test_hash160_length(self):
        assert len(hash160(b"any data")) == 20


# =============================================================================
# Address Tests (c32check)
# =============================================================================


class TestC32:
    """Tests for the c32check address codec."""

    def test_c32_encode_known_value(self):
        assert c32_encode(SAMPLE_HASH160) == "MHQZH246RBQSERPSE2TD5HHPF21NQMWX"

    def test_c32_decode_reverses_encode(self):
        assert c32_decode("MHQZH246RBQSERPSE2TD5HHPF21NQMWX") == SAMPLE_HASH160

    def test_c32_leading_zero_bytes(self):
        data = b"\x00\x00\x01"
        encoded = c32_encode(data)

        assert encoded.startswith("00")
        assert c32_decode(encoded) == data

    @pytest.mark.parametrize(
        "version,expected",
        [
            (22, "SP2J6ZY48GV1EZ5V2V5RB9MP66SW86PYKKNRV9EJ7"),
            (26, "ST2J6ZY48GV1EZ5V2V5RB9MP66SW86PYKKQYAC0RQ"),
            (20, "SM2J6ZY48GV1EZ5V2V5RB9MP66SW86PYKKQVX8X0G"),
            (21, "SN2J6ZY48GV1EZ5V2V5RB9MP66SW86PYKKP6D2ZK9"),
        ],
    )
    def test_c32_address_versions(self, version, expected):
        assert c32_address(version, SAMPLE_HASH160) == expected

    def test_c32_address_zero_hash(self):
        assert c32_address(26, b"\x00" * 20) == "ST000000000000000000002AMW42H"

    def test_c32_address_decode(self):
        version, h160 = c32_address_decode(DEPLOYER_ADDRESS)

        assert version == 26
        assert h160.hex() == DEPLOYER_HASH160

    def test_c32_address_decode_lowercase(self):
        """Lowercase input is normalized."""
        version, h160 = c32_address_decode(MAINNET_ADDRESS.lower())

        assert version == 22
        assert h160 == SAMPLE_HASH160

    def test_c32_address_bad_checksum(self):
        broken = DEPLOYER_ADDRESS[:-1] + ("N" if DEPLOYER_ADDRESS[-1] != "N" else "P")

        with pytest.raises(ValueError, match="checksum"):
            c32_address_decode(broken)

    def test_c32_address_wrong_hash_length(self):
        with pytest.raises(ValueError):
            c32_address(26, b"\x01" * 19)

    def test_c32check_decode_invalid_character(self):
        with pytest.raises(ValueError):
            c32check_decode("T!!!")


class TestAddressValidation:
    """Tests for address / principal validation."""

    def test_is_valid_address(self):
        assert is_valid_address(DEPLOYER_ADDRESS) is True
        assert is_valid_address(CONTRACT_ADDRESS) is True
        assert is_valid_address(MAINNET_ADDRESS) is True

    def test_is_valid_address_invalid(self):
        assert is_valid_address(INVALID_ADDRESS) is False
        assert is_valid_address(ETH_ADDRESS) is False
        assert is_valid_address("") is False

    def test_contract_principal_is_not_plain_address(self):
        assert is_valid_address(f"{CONTRACT_ADDRESS}.simple-nft") is False

    def test_parse_principal_standard(self):
        assert parse_principal(DEPLOYER_ADDRESS) == (DEPLOYER_ADDRESS, None)

    def test_parse_principal_contract(self):
        assert parse_principal(f"{CONTRACT_ADDRESS}.nft-marketplace") == (
            CONTRACT_ADDRESS,
            "nft-marketplace",
        )

    def test_parse_principal_invalid_contract_name(self):
        with pytest.raises(ValueError, match="contract name"):
            parse_principal(f"{CONTRACT_ADDRESS}.1bad")

    @pytest.mark.parametrize(
        "name,valid",
        [
            ("simple-nft", True),
            ("nft_marketplace", True),
            ("a" * 40, True),
            ("a" * 41, False),
            ("1nft", False),
            ("nft.market", False),
            ("", False),
        ],
    )
    def test_is_valid_contract_name(self, name, valid):
        assert is_valid_contract_name(name) is valid

    def test_address_network(self):
        assert address_network(DEPLOYER_ADDRESS) == "testnet"
        assert address_network(MAINNET_ADDRESS) == "mainnet"


# =============================================================================
# HTTP Client Tests
# =============================================================================


class TestHttpClient:
    """Tests for HTTP client with retry logic."""

    def test_create_http_session(self):
        import requests

        session = create_http_session(retries=5)

        assert isinstance(session, requests.Session)
        assert "https://" in session.adapters
        assert "http://" in session.adapters

    @patch("requests.Session.request")
    def test_api_request_get_success(self, mock_request):
        mock_request.return_value = MagicMock(
            ok=True, status_code=200, json=lambda: {"nonce": 3}
        )

        result = api_request("https://api.testnet.hiro.so/v2/accounts/x")

        assert result == {"success": True, "data": {"nonce": 3}, "status_code": 200}

    @patch("requests.Session.request")
    def test_api_request_raw_body(self, mock_request):
        """Raw bytes are passed through as the request body."""
        mock_request.return_value = MagicMock(ok=True, status_code=200, json=lambda: "ab" * 32)

        result = api_request(
            "https://node/v2/transactions",
            method="POST",
            data=b"\x80\x80",
            headers={"Content-Type": "application/octet-stream"},
        )

        call_kwargs = mock_request.call_args[1]
        assert call_kwargs["data"] == b"\x80\x80"
        assert call_kwargs["headers"]["Content-Type"] == "application/octet-stream"
        assert result["data"] == "ab" * 32

    @patch("requests.Session.request")
    def test_api_request_error_response(self, mock_request):
        mock_request.return_value = MagicMock(
            ok=False,
            status_code=400,
            json=lambda: {"error": "transaction rejected", "reason": "BadNonce"},
            reason="Bad Request",
        )

        result = api_request("https://node/v2/transactions", method="POST")

        assert result["success"] is False
        assert result["status_code"] == 400
        assert result["error"]["reason"] == "BadNonce"

    @patch("requests.Session.request")
    def test_api_request_text_body(self, mock_request):
        """Non-JSON body falls back to response text."""

        def bad_json():
            raise ValueError("not json")

        mock_request.return_value = MagicMock(
            ok=False, status_code=502, json=bad_json, text="Bad gateway", reason="Bad Gateway"
        )

        result = api_request("https://node/v2/info")

        assert result["error"] == "Bad gateway"

    @patch("requests.Session.request")
    def test_api_request_timeout(self, mock_request):
        import requests

        mock_request.side_effect = requests.exceptions.Timeout()

        result = api_request("https://node/v2/info")

        assert result["success"] is False
        assert "timeout" in result["error"].lower()

    @patch("requests.Session.request")
    def test_api_request_connection_error(self, mock_request):
        import requests

        mock_request.side_effect = requests.exceptions.ConnectionError()

        result = api_request("https://node/v2/info")

        assert result["success"] is False
        assert "connection" in result["error"].lower()


class TestNodeRequest:
    """Tests for node_request URL building and API key handling."""

    @pytest.fixture(autouse=True)
    def setup_config(self, mock_config):
        self.mock_config = mock_config

    @patch("utils.api_request")
    def test_builds_url_from_network(self, mock_api_request):
        mock_api_request.return_value = {"success": True, "data": {}}

        node_request("/v2/info", network="mainnet")

        assert mock_api_request.call_args[1]["url"] == "https://api.hiro.so/v2/info"

    @patch("utils.api_request")
    def test_explicit_node_url(self, mock_api_request):
        mock_api_request.return_value = {"success": True, "data": {}}

        node_request("/v2/info", node_url="http://localhost:3999/")

        assert mock_api_request.call_args[1]["url"] == "http://localhost:3999/v2/info"

    @patch("utils.api_request")
    def test_api_key_from_env(self, mock_api_request, monkeypatch):
        monkeypatch.setenv("HIRO_API_KEY", "hiro_key")
        mock_api_request.return_value = {"success": True, "data": {}}

        node_request("/v2/info")

        kwargs = mock_api_request.call_args[1]
        assert kwargs["api_key"] == "hiro_key"
        assert kwargs["api_key_header"] == "x-api-key"

    @patch("utils.api_request")
    def test_no_api_key(self, mock_api_request):
        mock_api_request.return_value = {"success": True, "data": {}}

        node_request("/v2/info")

        assert mock_api_request.call_args[1]["api_key"] is None


# =============================================================================
# Logging Tests
# =============================================================================


class TestLogging:
    def test_setup_logging_levels(self):
        logger = setup_logging(verbose=True)

        assert logger.name == LOGGER_NAME
        assert logger.level == logging.DEBUG
        assert setup_logging(verbose=False).level == logging.INFO

    def test_setup_logging_replaces_handlers(self):
        setup_logging()
        logger = setup_logging()

        assert len(logger.handlers) == 1

    def test_setup_logging_file(self, tmp_path):
        log_file = tmp_path / "logs" / "market.log"

        logger = setup_logging(log_file=log_file)
        logger.info("deploy started")
        for handler in logger.handlers:
            handler.flush()

        assert "deploy started" in log_file.read_text()
        setup_logging()


# =============================================================================
# Formatting Tests
# =============================================================================


class TestFormatting:
    def test_format_stx_amount(self):
        from common import format_stx_amount

        assert format_stx_amount(25000) == "0.025000 STX"
        assert format_stx_amount(1_000_000) == "1.0000 STX"
        assert format_stx_amount(1_500_000_000) == "1,500.00 STX"
        assert format_stx_amount(None) == "N/A"

    def test_format_bps(self):
        from common import format_bps

        assert format_bps(250) == "2.50%"
        assert format_bps(None) == "N/A"

    def test_truncate_address(self):
        from common import truncate_address

        assert truncate_address(DEPLOYER_ADDRESS) == "ST1PQH...GZGM"
        assert truncate_address("ST1PQHQKV0") == "ST1PQHQKV0"

    def test_explorer_links(self):
        from common import explorer_contract_url, explorer_tx_url

        assert explorer_tx_url("ab", "mainnet") == "https://explorer.stacks.co/txid/ab?chain=mainnet"
        assert explorer_contract_url(f"{DEPLOYER_ADDRESS}.simple-nft") == (
            f"https://explorer.stacks.co/address/{DEPLOYER_ADDRESS}.simple-nft?chain=testnet"
        )
