#!/usr/bin/env python3
"""
Stacks NFT Market — Reference contracts for the simulated chain

Python models of the two deployed contracts:
- simple-nft: SIP-009 style NFT, 3 tokens pre-minted to the deployer
- nft-marketplace: escrow listings, fee + royalty split, sales statistics

Functions take and return Clarity values. Public functions return a
response; an (err ...) result makes the simnet roll the call back.
"""

import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

# Локальный импорт
script_dir = Path(__file__).parent
sys.path.insert(0, str(script_dir))

from common import (  # noqa: E402
    BPS_DENOMINATOR,
    DEFAULT_MARKETPLACE_FEE_BPS,
    ERR_ALREADY_LISTED,
    ERR_INVALID_FEE,
    ERR_INVALID_PRICE,
    ERR_INVALID_ROYALTY,
    ERR_LISTING_NOT_FOUND,
    ERR_NFT_NOT_FOUND,
    ERR_SELF_PURCHASE,
    ERR_UNAUTHORIZED,
    MAX_MARKETPLACE_FEE_BPS,
    MAX_ROYALTY_BPS,
    NFT_CONTRACT,
    MARKETPLACE_CONTRACT,
)
from clarity import (  # noqa: E402
    ClarityValue,
    ContractPrincipalCV,
    NoneCV,
    ResponseErrCV,
    ResponseOkCV,
    SomeCV,
    StandardPrincipalCV,
    UIntCV,
    err_cv,
    none_cv,
    ok_cv,
    principal_cv,
    some_cv,
    string_ascii_cv,
    true_cv,
    tuple_cv,
    uint_cv,
)

# stx-transfer? error codes
STX_ERR_INSUFFICIENT_BALANCE = 1
STX_ERR_SELF_TRANSFER = 2
STX_ERR_NON_POSITIVE_AMOUNT = 3

INITIAL_TOKEN_SUPPLY = 3
TOKEN_URI_BASE = "https://simple-nft.stacks.example/metadata/"


class ContractRuntimeError(Exception):
    """Runtime fault (bad argument types, unknown function). Aborts the whole call."""


# =============================================================================
# Call context
# =============================================================================


@dataclass
class CallContext:
    """
    Execution context of one contract function.

    `sender` is tx-sender, `caller` is contract-caller. `chain` is the
    simnet that owns balances, NFT ownership and contract state.
    """

    chain: Any
    sender: str
    caller: str
    contract_id: str
    events: List[dict]

    @property
    def block_height(self) -> int:
        return self.chain.block_height

    def as_contract(self) -> "CallContext":
        return replace(self, sender=self.contract_id, caller=self.contract_id)

    def contract_call(self, contract_id: str, function: str, args: List[ClarityValue]) -> ClarityValue:
        return self.chain.invoke(
            contract_id,
            function,
            args,
            sender=self.sender,
            caller=self.contract_id,
            events=self.events,
        )

    def stx_transfer(self, amount: int, sender: str, recipient: str) -> ClarityValue:
        return self.chain.stx_transfer(amount, sender, recipient, self.events)

    def nft_mint(self, asset: str, token_id: int, recipient: str) -> None:
        self.chain.nft_mint(f"{self.contract_id}::{asset}", token_id, recipient, self.events)

    def nft_transfer(self, asset: str, token_id: int, sender: str, recipient: str) -> None:
        self.chain.nft_transfer(
            f"{self.contract_id}::{asset}", token_id, sender, recipient, self.events
        )

    def nft_owner(self, asset: str, token_id: int) -> Optional[str]:
        return self.chain.nft_owner(f"{self.contract_id}::{asset}", token_id)


# =============================================================================
# Contract base
# =============================================================================


def public(name: str) -> Callable:
    def decorator(fn):
        fn.clarity_name = name
        fn.clarity_kind = "public"
        return fn

    return decorator


def read_only(name: str) -> Callable:
    def decorator(fn):
        fn.clarity_name = name
        fn.clarity_kind = "read-only"
        return fn

    return decorator


def err(code: int) -> ResponseErrCV:
    return err_cv(uint_cv(code))


def ok(value: ClarityValue) -> ResponseOkCV:
    return ok_cv(value)


def expect_uint(value: ClarityValue) -> int:
    if not isinstance(value, UIntCV):
        raise ContractRuntimeError(f"Expected uint, got {type(value).__name__}")
    return value.value


def expect_principal(value: ClarityValue) -> str:
    if not isinstance(value, (StandardPrincipalCV, ContractPrincipalCV)):
        raise ContractRuntimeError(f"Expected principal, got {type(value).__name__}")
    return str(value)


def expect_optional_principal(value: ClarityValue) -> Optional[str]:
    if isinstance(value, NoneCV):
        return None
    if isinstance(value, SomeCV):
        return expect_principal(value.value)
    raise ContractRuntimeError(f"Expected optional principal, got {type(value).__name__}")


class Contract:
    """Base class: collects @public and @read_only methods by Clarity name."""

    name = ""

    def __init__(self, contract_id: str, deployer: str):
        self.contract_id = contract_id
        self.deployer = deployer
        self.data: Dict[str, Any] = {}
        self.functions: Dict[str, Callable] = {}
        for attr in dir(type(self)):
            fn = getattr(self, attr)
            if callable(fn) and hasattr(fn, "clarity_name"):
                self.functions[fn.clarity_name] = fn

    def on_deploy(self, ctx: CallContext) -> None:
        pass

    def function_kind(self, function: str) -> str:
        if function not in self.functions:
            raise ContractRuntimeError(f"Function {function} not found in {self.contract_id}")
        return self.functions[function].clarity_kind


# =============================================================================
# simple-nft
# =============================================================================


class SimpleNft(Contract):
    name = NFT_CONTRACT
    asset = "simple-nft"

    def on_deploy(self, ctx: CallContext) -> None:
        self.data["last-token-id"] = 0
        for _ in range(INITIAL_TOKEN_SUPPLY):
            self._mint(ctx, self.deployer)

    def _mint(self, ctx: CallContext, recipient: str) -> int:
        token_id = self.data["last-token-id"] + 1
        ctx.nft_mint(self.asset, token_id, recipient)
        self.data["last-token-id"] = token_id
        return token_id

    @public("mint")
    def mint(self, ctx: CallContext, recipient: ClarityValue) -> ClarityValue:
        recipient_addr = expect_principal(recipient)
        if ctx.sender != self.deployer:
            return err(ERR_UNAUTHORIZED)
        return ok(uint_cv(self._mint(ctx, recipient_addr)))

    @public("transfer")
    def transfer(
        self, ctx: CallContext, token_id: ClarityValue, sender: ClarityValue, recipient: ClarityValue
    ) -> ClarityValue:
        tid = expect_uint(token_id)
        sender_addr = expect_principal(sender)
        recipient_addr = expect_principal(recipient)
        if ctx.sender != sender_addr:
            return err(ERR_UNAUTHORIZED)
        owner = ctx.nft_owner(self.asset, tid)
        if owner is None:
            return err(ERR_NFT_NOT_FOUND)
        if owner != sender_addr:
            return err(ERR_UNAUTHORIZED)
        ctx.nft_transfer(self.asset, tid, sender_addr, recipient_addr)
        return ok(true_cv())

    @read_only("get-last-token-id")
    def get_last_token_id(self, ctx: CallContext) -> ClarityValue:
        return ok(uint_cv(self.data["last-token-id"]))

    @read_only("get-token-uri")
    def get_token_uri(self, ctx: CallContext, token_id: ClarityValue) -> ClarityValue:
        tid = expect_uint(token_id)
        if ctx.nft_owner(self.asset, tid) is None:
            return ok(none_cv())
        return ok(some_cv(string_ascii_cv(f"{TOKEN_URI_BASE}{tid}.json")))

    @read_only("get-owner")
    def get_owner(self, ctx: CallContext, token_id: ClarityValue) -> ClarityValue:
        owner = ctx.nft_owner(self.asset, expect_uint(token_id))
        if owner is None:
            return ok(none_cv())
        return ok(some_cv(principal_cv(owner)))


# =============================================================================
# nft-marketplace
# =============================================================================


def split_price(price: int, fee_bps: int, royalty_bps: int = 0) -> Dict[str, int]:
    """Fee and royalty round down; the seller receives the remainder."""
    marketplace_fee = price * fee_bps // BPS_DENOMINATOR
    royalty = price * royalty_bps // BPS_DENOMINATOR
    return {
        "marketplace_fee": marketplace_fee,
        "royalty": royalty,
        "seller_amount": price - marketplace_fee - royalty,
    }


class NftMarketplace(Contract):
    name = MARKETPLACE_CONTRACT

    def on_deploy(self, ctx: CallContext) -> None:
        self.data.update(
            {
                "marketplace-fee": DEFAULT_MARKETPLACE_FEE_BPS,
                "total-volume": 0,
                "total-sales": 0,
                "listings": {},
            }
        )

    @property
    def contract_owner(self) -> str:
        return self.deployer

    def _owner_of(self, ctx: CallContext, nft_contract: str, token_id: int) -> Optional[str]:
        result = ctx.contract_call(nft_contract, "get-owner", [uint_cv(token_id)])
        if isinstance(result, ResponseOkCV) and isinstance(result.value, SomeCV):
            return str(result.value.value)
        return None

    @public("list-nft")
    def list_nft(
        self,
        ctx: CallContext,
        nft_contract: ClarityValue,
        token_id: ClarityValue,
        price: ClarityValue,
        royalty: ClarityValue,
        royalty_recipient: ClarityValue,
    ) -> ClarityValue:
        nft = expect_principal(nft_contract)
        tid = expect_uint(token_id)
        price_value = expect_uint(price)
        royalty_bps = expect_uint(royalty)
        recipient = expect_optional_principal(royalty_recipient)

        if (nft, tid) in self.data["listings"]:
            return err(ERR_ALREADY_LISTED)

        owner = self._owner_of(ctx, nft, tid)
        if owner is None:
            return err(ERR_NFT_NOT_FOUND)
        if owner != ctx.sender:
            return err(ERR_UNAUTHORIZED)
        if price_value == 0:
            return err(ERR_INVALID_PRICE)
        if royalty_bps > MAX_ROYALTY_BPS or (royalty_bps > 0 and recipient is None):
            return err(ERR_INVALID_ROYALTY)

        # Escrow: token moves into the marketplace until sold or cancelled
        moved = ctx.contract_call(
            nft, "transfer", [uint_cv(tid), principal_cv(ctx.sender), principal_cv(self.contract_id)]
        )
        if isinstance(moved, ResponseErrCV):
            return moved

        self.data["listings"][(nft, tid)] = {
            "seller": ctx.sender,
            "price": price_value,
            "royalty": royalty_bps,
            "royalty-recipient": recipient,
            "listed-at": ctx.block_height,
        }
        return ok(true_cv())

    @public("buy-nft")
    def buy_nft(
        self, ctx: CallContext, nft_contract: ClarityValue, token_id: ClarityValue, seller: ClarityValue
    ) -> ClarityValue:
        nft = expect_principal(nft_contract)
        tid = expect_uint(token_id)
        seller_addr = expect_principal(seller)

        listing = self.data["listings"].get((nft, tid))
        if listing is None or listing["seller"] != seller_addr:
            return err(ERR_LISTING_NOT_FOUND)
        buyer = ctx.sender
        if buyer == seller_addr:
            return err(ERR_SELF_PURCHASE)

        split = split_price(listing["price"], self.data["marketplace-fee"], listing["royalty"])
        payments = [
            (split["marketplace_fee"], self.contract_owner),
            (split["royalty"], listing["royalty-recipient"]),
            (split["seller_amount"], seller_addr),
        ]
        for amount, recipient in payments:
            if amount > 0:
                paid = ctx.stx_transfer(amount, buyer, recipient)
                if isinstance(paid, ResponseErrCV):
                    return paid

        moved = ctx.as_contract().contract_call(
            nft, "transfer", [uint_cv(tid), principal_cv(self.contract_id), principal_cv(buyer)]
        )
        if isinstance(moved, ResponseErrCV):
            return moved

        del self.data["listings"][(nft, tid)]
        self.data["total-volume"] += listing["price"]
        self.data["total-sales"] += 1
        return ok(true_cv())

    @public("cancel-listing")
    def cancel_listing(
        self, ctx: CallContext, nft_contract: ClarityValue, token_id: ClarityValue
    ) -> ClarityValue:
        nft = expect_principal(nft_contract)
        tid = expect_uint(token_id)

        listing = self.data["listings"].get((nft, tid))
        if listing is None:
            return err(ERR_LISTING_NOT_FOUND)
        if listing["seller"] != ctx.sender:
            return err(ERR_UNAUTHORIZED)

        moved = ctx.as_contract().contract_call(
            nft,
            "transfer",
            [uint_cv(tid), principal_cv(self.contract_id), principal_cv(listing["seller"])],
        )
        if isinstance(moved, ResponseErrCV):
            return moved

        del self.data["listings"][(nft, tid)]
        return ok(true_cv())

    @public("set-marketplace-fee")
    def set_marketplace_fee(self, ctx: CallContext, fee: ClarityValue) -> ClarityValue:
        fee_bps = expect_uint(fee)
        if ctx.sender != self.contract_owner:
            return err(ERR_UNAUTHORIZED)
        if fee_bps > MAX_MARKETPLACE_FEE_BPS:
            return err(ERR_INVALID_FEE)
        self.data["marketplace-fee"] = fee_bps
        return ok(uint_cv(fee_bps))

    @read_only("get-listing")
    def get_listing(self, ctx: CallContext, nft_contract: ClarityValue, token_id: ClarityValue) -> ClarityValue:
        listing = self.data["listings"].get((expect_principal(nft_contract), expect_uint(token_id)))
        if listing is None:
            return none_cv()
        recipient = listing["royalty-recipient"]
        return some_cv(
            tuple_cv(
                {
                    "seller": principal_cv(listing["seller"]),
                    "price": uint_cv(listing["price"]),
                    "royalty": uint_cv(listing["royalty"]),
                    "royalty-recipient": some_cv(principal_cv(recipient)) if recipient else none_cv(),
                    "listed-at": uint_cv(listing["listed-at"]),
                }
            )
        )

    @read_only("get-marketplace-fee")
    def get_marketplace_fee(self, ctx: CallContext) -> ClarityValue:
        return uint_cv(self.data["marketplace-fee"])

    @read_only("get-total-volume")
    def get_total_volume(self, ctx: CallContext) -> ClarityValue:
        return uint_cv(self.data["total-volume"])

    @read_only("get-total-sales")
    def get_total_sales(self, ctx: CallContext) -> ClarityValue:
        return uint_cv(self.data["total-sales"])

    @read_only("calculate-fees")
    def calculate_fees(self, ctx: CallContext, price: ClarityValue) -> ClarityValue:
        split = split_price(expect_uint(price), self.data["marketplace-fee"])
        return tuple_cv(
            {
                "marketplace-fee": uint_cv(split["marketplace_fee"]),
                "seller-amount": uint_cv(split["seller_amount"]),
            }
        )


# Deployment order matters: the marketplace calls into simple-nft
DEFAULT_CONTRACTS = [SimpleNft, NftMarketplace]
