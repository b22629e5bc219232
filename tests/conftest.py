import asyncio
from decimal import Decimal
from typing import Dict, Iterable, Optional

import pytest
from eth_account import Account

from errors import SubmissionRejected
from models import FeeQuote, Receipt, TxHandle, WalletRecord


def make_key(i: int) -> str:
    return "0x" + format(i + 1, "064x")


def make_record(i: int, amount: Optional[str] = None) -> WalletRecord:
    key = make_key(i)
    return WalletRecord(
        address=Account.from_key(key).address,
        credential=key,
        amount=Decimal(amount) if amount is not None else None,
        row=i + 2,
    )


class StubGateway:
    """In-memory chain: configurable delays, rejections and receipt failures per sender."""

    def __init__(
        self,
        submit_delay: float = 0.0,
        receipt_delay: float = 0.0,
        reject: Iterable[str] = (),
        receipt_delays: Optional[Dict[str, float]] = None,
        fail_receipt: Iterable[str] = (),
        revert: Iterable[str] = (),
    ) -> None:
        self.submit_delay = submit_delay
        self.receipt_delay = receipt_delay
        self.reject = set(reject)
        self.receipt_delays = receipt_delays or {}
        self.fail_receipt = set(fail_receipt)
        self.revert = set(revert)
        self.active = 0
        self.max_active = 0
        self.fee_calls = 0
        self.calls = []
        self.senders = {}

    async def estimate_fees(self) -> FeeQuote:
        self.fee_calls += 1
        return FeeQuote(max_fee_per_gas=2_000_000_000, max_priority_fee_per_gas=1_000_000_000)

    async def estimate_gas_limit(self, call) -> int:
        return 60_000

    async def submit(self, credential, call, fees, gas_limit) -> TxHandle:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.submit_delay)
            if call.sender in self.reject:
                raise SubmissionRejected("replacement transaction underpriced")
            self.calls.append(call)
            handle = TxHandle(tx_hash="0x" + format(len(self.calls), "064x"))
            self.senders[handle.tx_hash] = call.sender
            return handle
        finally:
            self.active -= 1

    async def wait_for_receipt(self, handle: TxHandle) -> Receipt:
        sender = self.senders[handle.tx_hash]
        await asyncio.sleep(self.receipt_delays.get(sender, self.receipt_delay))
        if sender in self.fail_receipt:
            raise ConnectionError("connection reset by peer")
        status = 0 if sender in self.revert else 1
        return Receipt(tx_hash=handle.tx_hash, block_number=1234, status=status)


@pytest.fixture
def records():
    return [make_record(i, amount="10") for i in range(10)]


@pytest.fixture
def failure_log(tmp_path):
    return tmp_path / "error-log.txt"
