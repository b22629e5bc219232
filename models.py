# models.py
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple, Union


@dataclass(frozen=True)
class WalletRecord:
    """One spreadsheet row: the wallet, its signing key and an optional amount."""

    address: str
    credential: str = field(repr=False)
    amount: Optional[Decimal] = None
    row: int = 0


@dataclass(frozen=True)
class FeeQuote:
    max_fee_per_gas: int
    max_priority_fee_per_gas: int


@dataclass(frozen=True)
class CallPayload:
    selector: bytes
    args: Tuple[bytes, ...] = ()

    @property
    def data(self) -> bytes:
        return self.selector + b"".join(self.args)

    def to_hex(self) -> str:
        return "0x" + self.data.hex()


@dataclass(frozen=True)
class CallRequest:
    sender: str
    to: str
    data: str


@dataclass(frozen=True)
class TxHandle:
    tx_hash: str


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    block_number: int
    status: int = 1


# Submission outcomes

@dataclass(frozen=True)
class Submitted:
    address: str
    handle: TxHandle


@dataclass(frozen=True)
class SubmissionFailed:
    address: str
    reason: str
    error: str = "Exception"


SubmissionOutcome = Union[Submitted, SubmissionFailed]


# Confirmation outcomes

@dataclass(frozen=True)
class Confirmed:
    address: str
    handle: TxHandle
    block_number: int


@dataclass(frozen=True)
class TimedOut:
    address: str
    handle: TxHandle
    timeout_ms: int


@dataclass(frozen=True)
class ConfirmationFailed:
    address: str
    handle: TxHandle
    reason: str


ConfirmationOutcome = Union[Confirmed, TimedOut, ConfirmationFailed]


@dataclass
class RunSummary:
    attempted: int = 0
    submitted: int = 0
    confirmed: int = 0
    timed_out: int = 0
    failed: int = 0
    skipped: int = 0

    def __str__(self) -> str:
        return (
            f"attempted={self.attempted} submitted={self.submitted} confirmed={self.confirmed} "
            f"timed_out={self.timed_out} failed={self.failed} skipped={self.skipped}"
        )
