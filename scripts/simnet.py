#!/usr/bin/env python3
"""
Stacks NFT Market — Simulated chain

In-memory chain for exercising the marketplace contracts without a node:
- Devnet accounts (deployer, wallet_1 .. wallet_3) with STX balances
- Contract deployment (reference models from contracts.py)
- Public calls: atomic, one block each, rollback on (err ...)
- Read-only calls, STX / NFT events
"""

import sys
import copy
import json
import logging
import argparse
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Type

# Локальный импорт
script_dir = Path(__file__).parent
sys.path.insert(0, str(script_dir))

from utils import LOGGER_NAME, is_valid_address, setup_logging  # noqa: E402
from clarity import (  # noqa: E402
    ClarityValue,
    ResponseErrCV,
    ResponseOkCV,
    cv_to_string,
    cv_to_value,
    err_cv,
    hex_to_cv,
    ok_cv,
    true_cv,
    uint_cv,
)
from contracts import (  # noqa: E402
    DEFAULT_CONTRACTS,
    STX_ERR_INSUFFICIENT_BALANCE,
    STX_ERR_NON_POSITIVE_AMOUNT,
    STX_ERR_SELF_TRANSFER,
    CallContext,
    Contract,
    ContractRuntimeError,
)

logger = logging.getLogger(LOGGER_NAME)


# =============================================================================
# Devnet accounts
# =============================================================================

# Clarinet default devnet accounts (Devnet.toml)
DEVNET_ACCOUNTS = {
    "deployer": {
        "address": "ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM",
        "private_key": "753b7cc01a1a2e86221266a154af739463fce51219d97e4f856cd7200c3bd2a601",
    },
    "wallet_1": {
        "address": "ST1SJ3DTE5DN7X54YDH5D64R3BCB6A2AG2ZQ8YPD5",
        "private_key": "7287ba251d44a4d3fd9276c88ce34c5c52a038955511cccaf77e61068649c17801",
    },
    "wallet_2": {
        "address": "ST2CY5V39NHDPWSXMW9QDT3HC3GD6Q6XX4CFRK9AG",
        "private_key": "530d9f61984c888536871c6573073bdfc0058896dc1adfe9a6a10dfacadc209101",
    },
    "wallet_3": {
        "address": "ST2JHG361ZXG51QTKY2NQCVBPPRRE2KZB1HR05NNC",
        "private_key": "d655b2523bcd65e34889725c73064feb17ceb796831c0e111ba1a552b0f31b3901",
    },
}

DEFAULT_BALANCE = 100_000_000_000_000  # microSTX


class SimnetError(Exception):
    """Call aborted at runtime (unknown contract/function, wrong arguments)."""


@dataclass
class CallResult:
    result: ClarityValue
    events: List[dict] = field(default_factory=list)

    @property
    def is_ok(self) -> bool:
        return isinstance(self.result, ResponseOkCV)

    def to_dict(self) -> dict:
        return {
            "result": cv_to_string(self.result),
            "value": cv_to_value(self.result),
            "events": [
                {**e, "data": {k: _event_value(v) for k, v in e["data"].items()}}
                for e in self.events
            ],
        }


def _event_value(value):
    return cv_to_string(value) if isinstance(value, ClarityValue) else value


# =============================================================================
# Simnet
# =============================================================================


class Simnet:
    """
    Simulated chain.

    Contracts are addressed by full id ("ADDR.name") or by bare name,
    which resolves against the deployer account.
    """

    def __init__(
        self,
        contracts: Optional[Sequence[Type[Contract]]] = None,
        balance: int = DEFAULT_BALANCE,
    ):
        self.accounts = {name: acc["address"] for name, acc in DEVNET_ACCOUNTS.items()}
        self.deployer = self.accounts["deployer"]
        self.block_height = 1
        self.balances: Dict[str, int] = {addr: balance for addr in self.accounts.values()}
        self.nft_owners: Dict[tuple, str] = {}
        self.contracts: Dict[str, Contract] = {}

        for contract_cls in DEFAULT_CONTRACTS if contracts is None else contracts:
            self.deploy_contract(contract_cls)

    # --- accounts ------------------------------------------------------------

    def get_accounts(self) -> Dict[str, str]:
        return dict(self.accounts)

    def get_stx_balance(self, address: str) -> int:
        return self.balances.get(address, 0)

    def get_nft_owner(self, contract: str, token_id: int, asset: Optional[str] = None) -> Optional[str]:
        contract_id = self.resolve_contract_id(contract)
        asset = asset or contract_id.split(".", 1)[1]
        return self.nft_owner(f"{contract_id}::{asset}", token_id)

    def mine_empty_blocks(self, count: int = 1) -> int:
        if count < 0:
            raise ValueError("Block count cannot be negative")
        self.block_height += count
        return self.block_height

    # --- contracts -----------------------------------------------------------

    def resolve_contract_id(self, contract: str) -> str:
        return contract if "." in contract else f"{self.deployer}.{contract}"

    def deploy_contract(self, contract_cls: Type[Contract], sender: Optional[str] = None) -> str:
        deployer = sender or self.deployer
        contract_id = f"{deployer}.{contract_cls.name}"
        if contract_id in self.contracts:
            raise SimnetError(f"Contract already exists: {contract_id}")

        contract = contract_cls(contract_id, deployer)
        self.contracts[contract_id] = contract
        events: List[dict] = []
        contract.on_deploy(
            CallContext(self, sender=deployer, caller=deployer, contract_id=contract_id, events=events)
        )
        self.block_height += 1
        logger.debug("Deployed %s at block %s", contract_id, self.block_height)
        return contract_id

    def _get_contract(self, contract: str) -> Contract:
        contract_id = self.resolve_contract_id(contract)
        if contract_id not in self.contracts:
            raise SimnetError(f"Contract not found: {contract_id}")
        return self.contracts[contract_id]

    @staticmethod
    def _function_kind(target: Contract, function: str) -> str:
        try:
            return target.function_kind(function)
        except ContractRuntimeError as e:
            raise SimnetError(str(e))

    def _snapshot(self) -> tuple:
        return copy.deepcopy(
            (self.balances, self.nft_owners, {cid: c.data for cid, c in self.contracts.items()})
        )

    def _restore(self, snapshot: tuple) -> None:
        balances, nft_owners, data = snapshot
        self.balances = balances
        self.nft_owners = nft_owners
        for cid, contract_data in data.items():
            self.contracts[cid].data = contract_data

    def _abort(self, snapshot: Optional[tuple]) -> None:
        if snapshot is not None:
            self._restore(snapshot)

    def invoke(
        self,
        contract: str,
        function: str,
        args: Sequence[ClarityValue],
        sender: str,
        caller: Optional[str] = None,
        events: Optional[List[dict]] = None,
    ) -> ClarityValue:
        """
        Runs one contract function, nested or top-level.

        A public function returning (err ...) has all its state changes
        and events discarded.
        """
        target = self._get_contract(contract)
        kind = self._function_kind(target, function)

        call_events: List[dict] = []
        ctx = CallContext(
            self,
            sender=sender,
            caller=caller or sender,
            contract_id=target.contract_id,
            events=call_events,
        )
        snapshot = self._snapshot() if kind == "public" else None

        try:
            result = target.functions[function](ctx, *args)
        except TypeError as e:
            self._abort(snapshot)
            raise SimnetError(f"{target.contract_id}::{function}: wrong number of arguments ({e})")
        except ContractRuntimeError as e:
            self._abort(snapshot)
            raise SimnetError(f"{target.contract_id}::{function}: {e}")
        except SimnetError:
            self._abort(snapshot)
            raise

        if kind == "public":
            if not isinstance(result, (ResponseOkCV, ResponseErrCV)):
                raise SimnetError(f"{target.contract_id}::{function} must return a response")
            if isinstance(result, ResponseErrCV):
                self._restore(snapshot)
                call_events = []

        if events is not None:
            events.extend(call_events)
        return result

    def call_public_fn(
        self, contract: str, function: str, args: Sequence[ClarityValue], sender: str
    ) -> CallResult:
        """Public call as a transaction of its own; mines one block."""
        target = self._get_contract(contract)
        if self._function_kind(target, function) != "public":
            raise SimnetError(f"{function} is not a public function")

        events: List[dict] = []
        result = self.invoke(contract, function, args, sender=sender, events=events)
        self.block_height += 1
        logger.debug("%s %s -> %s", function, sender, cv_to_string(result))
        return CallResult(result=result, events=events)

    def call_read_only_fn(
        self, contract: str, function: str, args: Sequence[ClarityValue], sender: str
    ) -> CallResult:
        target = self._get_contract(contract)
        if self._function_kind(target, function) != "read-only":
            raise SimnetError(f"{function} is not a read-only function")

        snapshot = self._snapshot()
        result = self.invoke(contract, function, args, sender=sender)
        self._restore(snapshot)
        return CallResult(result=result)

    # --- built-in assets -----------------------------------------------------

    def stx_transfer(self, amount: int, sender: str, recipient: str, events: List[dict]) -> ClarityValue:
        if amount <= 0:
            return err_cv(uint_cv(STX_ERR_NON_POSITIVE_AMOUNT))
        if sender == recipient:
            return err_cv(uint_cv(STX_ERR_SELF_TRANSFER))
        if self.balances.get(sender, 0) < amount:
            return err_cv(uint_cv(STX_ERR_INSUFFICIENT_BALANCE))

        self.balances[sender] -= amount
        self.balances[recipient] = self.balances.get(recipient, 0) + amount
        events.append(
            {
                "event": "stx_transfer_event",
                "data": {"amount": str(amount), "sender": sender, "recipient": recipient},
            }
        )
        return ok_cv(true_cv())

    def nft_owner(self, asset_identifier: str, token_id: int) -> Optional[str]:
        return self.nft_owners.get((asset_identifier, token_id))

    def nft_mint(self, asset_identifier: str, token_id: int, recipient: str, events: List[dict]) -> None:
        key = (asset_identifier, token_id)
        if key in self.nft_owners:
            raise ContractRuntimeError(f"Token {token_id} already minted")
        self.nft_owners[key] = recipient
        events.append(
            {
                "event": "nft_mint_event",
                "data": {
                    "asset_identifier": asset_identifier,
                    "recipient": recipient,
                    "value": uint_cv(token_id),
                },
            }
        )

    def nft_transfer(
        self, asset_identifier: str, token_id: int, sender: str, recipient: str, events: List[dict]
    ) -> None:
        key = (asset_identifier, token_id)
        if self.nft_owners.get(key) != sender:
            raise ContractRuntimeError(f"{sender} does not own token {token_id}")
        self.nft_owners[key] = recipient
        events.append(
            {
                "event": "nft_transfer_event",
                "data": {
                    "asset_identifier": asset_identifier,
                    "sender": sender,
                    "recipient": recipient,
                    "value": uint_cv(token_id),
                },
            }
        )


# =============================================================================
# CLI
# =============================================================================


def _resolve_sender(simnet: Simnet, sender: str) -> str:
    if sender in simnet.accounts:
        return simnet.accounts[sender]
    if is_valid_address(sender):
        return sender
    raise ValueError(f"Unknown sender: {sender}")


def main():
    parser = argparse.ArgumentParser(
        description="Run contract calls against a fresh simulated chain",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s accounts
  %(prog)s call simple-nft mint 0x051a7321b74e2b6a7e949e6c4ad313035b1665095017 --sender deployer
  %(prog)s read nft-marketplace calculate-fees 0x01000000000000000000000000000f4240

Arguments are hex-encoded Clarity values (see clarity.py).
""",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("accounts", help="List devnet accounts and balances")

    for name, help_text in (("call", "Public call"), ("read", "Read-only call")):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("contract", help="Contract name or ADDR.name")
        p.add_argument("function", help="Function name")
        p.add_argument("args", nargs="*", help="Hex-encoded Clarity arguments")
        p.add_argument("--sender", "-s", default="deployer", help="Account name or address")

    args = parser.parse_args()
    setup_logging(verbose=args.verbose)

    if not args.command:
        parser.print_help()
        return

    try:
        simnet = Simnet()
        if args.command == "accounts":
            result = {
                "success": True,
                "accounts": {
                    name: {"address": addr, "balance": simnet.get_stx_balance(addr)}
                    for name, addr in simnet.get_accounts().items()
                },
            }
        else:
            sender = _resolve_sender(simnet, args.sender)
            cv_args = [hex_to_cv(a) for a in args.args]
            if args.command == "call":
                call = simnet.call_public_fn(args.contract, args.function, cv_args, sender)
            else:
                call = simnet.call_read_only_fn(args.contract, args.function, cv_args, sender)
            result = {"success": True, **call.to_dict()}

        print(json.dumps(result, indent=2, ensure_ascii=False))

    except (ValueError, SimnetError) as e:
        print(json.dumps({"success": False, "error": str(e)}, indent=2))
        return sys.exit(1)


if __name__ == "__main__":
    main()
