"""
Pytest configuration and shared fixtures for stacks-nft-market tests.
"""

import json
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))


# =============================================================================
# Test Data
# =============================================================================

# Clarinet devnet accounts - FOR TESTING ONLY, PUBLICLY KNOWN KEYS
DEPLOYER_KEY = "753b7cc01a1a2e86221266a154af739463fce51219d97e4f856cd7200c3bd2a601"
DEPLOYER_ADDRESS = "ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM"
DEPLOYER_HASH160 = "6d78de7b0625dfbfc16c3a8a5735f6dc3dc3f2ce"

WALLET_1_KEY = "7287ba251d44a4d3fd9276c88ce34c5c52a038955511cccaf77e61068649c17801"
WALLET_1_ADDRESS = "ST1SJ3DTE5DN7X54YDH5D64R3BCB6A2AG2ZQ8YPD5"

WALLET_2_KEY = "530d9f61984c888536871c6573073bdfc0058896dc1adfe9a6a10dfacadc209101"
WALLET_2_ADDRESS = "ST2CY5V39NHDPWSXMW9QDT3HC3GD6Q6XX4CFRK9AG"

CONTRACT_ADDRESS = "STT7DEMBVKGRGBQFG5EP801XC71566V9ZQM4C9GZ"

MAINNET_ADDRESS = "SP2J6ZY48GV1EZ5V2V5RB9MP66SW86PYKKNRV9EJ7"
INVALID_ADDRESS = "not-a-valid-address"
ETH_ADDRESS = "0x742d35Cc6634C0532925a3b844Bc9e7595f8fE2d"

SAMPLE_TXID = "a" * 64


def mock_response(ok=True, status_code=200, body=None, reason="OK"):
    """requests.Response stand-in as returned by the patched Session.request."""
    return MagicMock(ok=ok, status_code=status_code, json=lambda: body, reason=reason)


def route_node(routes):
    """
    side_effect for requests.Session.request that answers by URL suffix.

    routes: {("GET", "/v2/accounts/"): response, ...}. The path match is a
    substring match, so query strings and base URLs are ignored. A route
    may also map to a function of the request kwargs.
    """

    def handler(session, method, url, **kwargs):
        for (route_method, fragment), response in routes.items():
            if route_method == method and fragment in url:
                if isinstance(response, MagicMock):
                    return response
                return response(**kwargs)
        return mock_response(ok=False, status_code=404, body={"error": f"no route for {url}"})

    return handler


# =============================================================================
# Fixtures - Mock Node
# =============================================================================


@pytest.fixture
def mock_node():
    """Node answering nonce, fee estimate and broadcast requests."""
    routes = {
        ("GET", "/v2/accounts/"): mock_response(
            body={"balance": "0x0000000000000000000000003b9aca00", "locked": "0x0", "nonce": 7}
        ),
        ("POST", "/v2/fees/transaction"): mock_response(
            body={
                "estimations": [
                    {"fee": 1000, "fee_rate": 1},
                    {"fee": 3000, "fee_rate": 2},
                    {"fee": 9000, "fee_rate": 3},
                ]
            }
        ),
        ("POST", "/v2/transactions"): mock_response(body=SAMPLE_TXID),
    }
    with patch("requests.Session.request") as mock_request:
        mock_request.side_effect = route_node(routes)
        mock_request.routes = routes
        yield mock_request


@pytest.fixture
def mock_node_error():
    """Node answering every request with HTTP 500."""
    with patch("requests.Session.request") as mock_request:
        mock_request.return_value = mock_response(
            ok=False,
            status_code=500,
            body={"error": "Internal Server Error"},
            reason="Internal Server Error",
        )
        yield mock_request


@pytest.fixture
def mock_node_timeout():
    """Node timing out."""
    import requests

    with patch("requests.Session.request") as mock_request:
        mock_request.side_effect = requests.exceptions.Timeout("Connection timed out")
        yield mock_request


# =============================================================================
# Fixtures - Mock Config
# =============================================================================


@pytest.fixture
def mock_config(tmp_path, monkeypatch):
    """Isolated config directory with testnet defaults."""
    temp_skill_dir = tmp_path / "stacks-nft-market"
    temp_config_file = temp_skill_dir / "config.json"
    temp_wallets_file = temp_skill_dir / "wallets.enc"

    temp_skill_dir.mkdir(parents=True, exist_ok=True)

    default_config = {
        "network": "testnet",
        "node_url": "",
        "hiro_api_key": "",
        "contract_address": "",
        "default_wallet": "",
        "fees": {"fallback_fee": 2000},
        "deploy": {"delay_seconds": 5},
    }
    temp_config_file.write_text(json.dumps(default_config))

    import utils

    monkeypatch.setattr(utils, "SKILL_DIR", temp_skill_dir)
    monkeypatch.setattr(utils, "CONFIG_FILE", temp_config_file)
    monkeypatch.setattr(utils, "WALLETS_FILE", temp_wallets_file)
    monkeypatch.setattr("wallet.WALLETS_FILE", temp_wallets_file)
    for var in ("PRIVATE_KEY", "WALLET_PASSWORD", "HIRO_API_KEY", "STACKS_NETWORK"):
        monkeypatch.delenv(var, raising=False)

    return {
        "skill_dir": temp_skill_dir,
        "config_file": temp_config_file,
        "wallets_file": temp_wallets_file,
        "config": default_config,
    }


# =============================================================================
# Fixtures - Keys & Simnet
# =============================================================================


@pytest.fixture
def deployer_key():
    from transactions import StacksPrivateKey

    return StacksPrivateKey.from_hex(DEPLOYER_KEY)


@pytest.fixture
def seller_key():
    from transactions import StacksPrivateKey

    return StacksPrivateKey.from_hex(WALLET_1_KEY)


@pytest.fixture
def simnet():
    """Fresh simulated chain with simple-nft and nft-marketplace deployed."""
    from simnet import Simnet

    return Simnet()


@pytest.fixture
def accounts(simnet):
    return simnet.get_accounts()


# =============================================================================
# Security Test Helpers
# =============================================================================


def assert_no_secrets_in_string(text: str, private_key: str = None):
    """Assert that a private key is not present in a string."""
    if private_key:
        assert private_key not in text, "Private key found in text!"
        assert private_key[:64] not in text, "Private key found in text!"


# =============================================================================
# Test Categories (markers)
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "security: Security-related tests (critical)")
    config.addinivalue_line("markers", "slow: Slow tests (skip with -m 'not slow')")
    config.addinivalue_line("markers", "wallet: Wallet module tests")
    config.addinivalue_line("markers", "utils: Utils module tests")
    config.addinivalue_line("markers", "clarity: Clarity codec tests")
    config.addinivalue_line("markers", "transactions: Transaction building tests")
    config.addinivalue_line("markers", "marketplace: Marketplace CLI tests")
    config.addinivalue_line("markers", "deploy: Deployment tests")
    config.addinivalue_line("markers", "contracts: Contract rules on the simulated chain")
    config.addinivalue_line("markers", "errors: Error formatting tests")


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_collection_modifyitems(config, items):
    """Add markers based on test file."""
    file_markers = {
        "test_wallet": pytest.mark.wallet,
        "test_utils": pytest.mark.utils,
        "test_clarity": pytest.mark.clarity,
        "test_transactions": pytest.mark.transactions,
        "test_marketplace_contract": pytest.mark.contracts,
        "test_marketplace": pytest.mark.marketplace,
        "test_deploy": pytest.mark.deploy,
        "test_errors": pytest.mark.errors,
    }
    for item in items:
        for fragment, marker in file_markers.items():
            if fragment in str(item.fspath):
                item.add_marker(marker)
                break

        if "security" in item.name.lower() or "sec" in item.name.lower():
            item.add_marker(pytest.mark.security)
