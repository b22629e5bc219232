# calldata.py
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, localcontext
from typing import Optional, Union

from web3 import Web3

from errors import InvalidAddress, InvalidAmount
from models import CallPayload, WalletRecord

MAX_UINT256 = 2**256 - 1
WORD_SIZE = 32
UINT256_DIGITS = len(str(MAX_UINT256))

APPROVE_SELECTOR = "0x095ea7b3"  # approve(address,uint256)
DEPOSIT_SELECTOR = "0xb6b55f25"  # deposit(uint256)
DEPOSIT_FOR_SELECTOR = "0x6e553f65"  # deposit(uint256,address)

UNLIMITED = "unlimited"
_UNLIMITED_ALIASES = {UNLIMITED, "max"}

Amount = Union[str, int, float, Decimal]


@dataclass(frozen=True)
class Approve:
    spender: str
    amount: Amount = UNLIMITED


@dataclass(frozen=True)
class Deposit:
    amount: Amount
    recipient: Optional[str] = None


def parse_selector(selector: str) -> bytes:
    raw = selector[2:] if selector.startswith("0x") else selector
    try:
        value = bytes.fromhex(raw)
    except ValueError:
        raise ValueError(f"Selector is not hex: {selector}")
    if len(value) != 4:
        raise ValueError(f"Selector must be 4 bytes, got {len(value)}: {selector}")
    return value


def to_base_units(amount: Amount, decimals: int) -> int:
    """Convert a human amount to token base units, truncating extra precision.

    "unlimited" (or "max") maps to the largest uint256, as used for
    infinite approvals.
    """
    if isinstance(amount, str) and amount.strip().lower() in _UNLIMITED_ALIASES:
        return MAX_UINT256
    if isinstance(amount, bool):
        raise InvalidAmount(f"Invalid amount: {amount}")
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"Invalid amount: {amount}")
    if not value.is_finite() or value <= 0:
        raise InvalidAmount(f"Invalid amount: {amount}")

    # enough digits for any uint256 value
    with localcontext() as ctx:
        ctx.prec = UINT256_DIGITS + decimals + 2
        units = int(value.scaleb(decimals))
    if units <= 0:
        raise InvalidAmount(f"Amount {amount} is below the token precision ({decimals} decimals)")
    if units > MAX_UINT256:
        raise InvalidAmount(f"Amount {amount} does not fit in uint256")
    return units


def encode_amount(amount: Amount, decimals: int) -> str:
    return format(to_base_units(amount, decimals), "064x")


def encode_address(address: str) -> str:
    if not isinstance(address, str) or not Web3.is_address(address):
        raise InvalidAddress(f"Invalid address: {address}")
    digits = address[2:] if address[:2] in ("0x", "0X") else address
    return digits.lower().rjust(WORD_SIZE * 2, "0")


def build(operation: Union[Approve, Deposit], selector: Optional[str] = None, decimals: int = 6) -> CallPayload:
    """Build calldata for an approve or deposit call: selector followed by 32-byte words."""
    if isinstance(operation, Approve):
        selector = selector or APPROVE_SELECTOR
        words = [encode_address(operation.spender), encode_amount(operation.amount, decimals)]
    elif isinstance(operation, Deposit):
        if selector is None:
            selector = DEPOSIT_FOR_SELECTOR if operation.recipient else DEPOSIT_SELECTOR
        words = [encode_amount(operation.amount, decimals)]
        if operation.recipient is not None:
            words.append(encode_address(operation.recipient))
    else:
        raise TypeError(f"Unsupported operation: {operation!r}")

    return CallPayload(
        selector=parse_selector(selector),
        args=tuple(bytes.fromhex(word) for word in words),
    )


@dataclass(frozen=True)
class Operation:
    """A configured contract call applied to every wallet of a batch."""

    name: str
    kind: str  # "approve" or "deposit"
    contract_address: str
    method_selector: str
    spender: Optional[str] = None
    approve_amount: Amount = UNLIMITED
    decimals: int = 6
    pay_to_holder: bool = False

    def __post_init__(self) -> None:
        if self.kind not in ("approve", "deposit"):
            raise ValueError(f"Unknown operation kind: {self.kind}")
        if self.kind == "approve" and not self.spender:
            raise ValueError(f"Operation {self.name}: approve requires a spender")
        parse_selector(self.method_selector)

    def call_for(self, record: WalletRecord) -> CallPayload:
        if self.kind == "approve":
            call = Approve(spender=self.spender, amount=self.approve_amount)
        else:
            if record.amount is None:
                raise InvalidAmount(f"Missing amount for {record.address}")
            call = Deposit(amount=record.amount, recipient=record.address if self.pay_to_holder else None)
        return build(call, selector=self.method_selector, decimals=self.decimals)
