# pipeline.py
import asyncio
import random
import threading
from typing import AsyncIterator, Iterable, Optional, Set, Tuple

from eth_account import Account
from web3 import Web3

import config
from calldata import Operation
from errors import InvalidAddress
from gateway import Web3Gateway
from logger import get_logger
from models import (
    CallRequest,
    ConfirmationFailed,
    ConfirmationOutcome,
    Confirmed,
    RunSummary,
    SubmissionFailed,
    SubmissionOutcome,
    Submitted,
    TimedOut,
    TxHandle,
    WalletRecord,
)
from utils import RecordSource, shorten_address, shuffle_records

logger = get_logger("Pipeline", config.LOG_LEVEL)


class FailureSink:
    """Append-only log of failed wallets, one "address: message" line each.

    Writing is best effort: an error here is logged and never reaches
    the caller.
    """

    def __init__(self, path: str = config.FAILED_WALLETS_FILE) -> None:
        self.path = path
        # Lock for file writes to prevent concurrent writes
        self._lock = threading.Lock()

    def record(self, wallet_address: str, message: str) -> None:
        line = f"{wallet_address}: {' '.join(str(message).splitlines())}\n"
        with self._lock:
            try:
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line)
            except Exception as e:
                logger.error(f"Failed to write to {self.path}: {e}")


class ConfirmationTracker:
    """Waits for receipts of submitted transactions, each racing a timeout.

    Confirmation tasks are spawned without blocking the submission queue
    and kept in a live set that forgets them as soon as they finish;
    ``join()`` waits for whatever is still outstanding.
    """

    def __init__(
        self,
        gateway,
        sink: FailureSink,
        timeout_ms: int = config.TX_TIMEOUT_MS,
        max_pending: Optional[int] = config.CONFIRM_CONCURRENCY,
    ) -> None:
        self._gateway = gateway
        self._sink = sink
        self.timeout_ms = timeout_ms
        self._semaphore = asyncio.Semaphore(max_pending) if max_pending else None
        self._tasks: Set[asyncio.Task] = set()
        self._abandoned: Set[asyncio.Future] = set()
        self.confirmed = 0
        self.timed_out = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def track(self, handle: TxHandle, wallet_address: str, timeout_ms: Optional[int] = None) -> ConfirmationOutcome:
        timeout_ms = timeout_ms or self.timeout_ms
        wallet_short = shorten_address(wallet_address)
        waiter = asyncio.ensure_future(self._gateway.wait_for_receipt(handle))
        try:
            done, _ = await asyncio.wait({waiter}, timeout=timeout_ms / 1000)
        except asyncio.CancelledError:
            waiter.cancel()
            raise

        if not done:
            self._abandon(waiter)
            message = f"transaction {handle.tx_hash} not confirmed within {timeout_ms / 1000:g} seconds"
            logger.warning(f"{wallet_short}: {message}")
            self._sink.record(wallet_address, f"confirmation failed - {message}")
            return TimedOut(wallet_address, handle, timeout_ms)

        error = waiter.exception()
        if error is None:
            receipt = waiter.result()
            if receipt.status == 1:
                logger.info(f"{wallet_short}: transaction confirmed in block {receipt.block_number}, tx: {handle.tx_hash}")
                return Confirmed(wallet_address, handle, receipt.block_number)
            reason = f"transaction {handle.tx_hash} reverted in block {receipt.block_number}"
        else:
            reason = str(error) or type(error).__name__

        logger.error(f"{wallet_short}: confirmation failed - {reason}")
        self._sink.record(wallet_address, f"confirmation failed - {reason}")
        return ConfirmationFailed(wallet_address, handle, reason)

    def _abandon(self, waiter: asyncio.Future) -> None:
        # The chain call keeps running; its late result is dropped.
        self._abandoned.add(waiter)
        waiter.add_done_callback(self._discard_abandoned)

    def _discard_abandoned(self, waiter: asyncio.Future) -> None:
        self._abandoned.discard(waiter)
        if not waiter.cancelled() and waiter.exception() is None:
            logger.debug(f"Late receipt discarded: {waiter.result()}")

    async def _run(self, handle: TxHandle, wallet_address: str) -> ConfirmationOutcome:
        if self._semaphore is None:
            outcome = await self.track(handle, wallet_address)
        else:
            async with self._semaphore:
                outcome = await self.track(handle, wallet_address)
        if isinstance(outcome, Confirmed):
            self.confirmed += 1
        elif isinstance(outcome, TimedOut):
            self.timed_out += 1
        else:
            self.failed += 1
        return outcome

    def spawn(self, handle: TxHandle, wallet_address: str) -> asyncio.Task:
        task = asyncio.create_task(self._run(handle, wallet_address))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def join(self) -> None:
        while self._tasks:
            await asyncio.gather(*self._tasks)

    def close(self) -> None:
        """Stop waiting locally for transactions that already timed out."""
        for waiter in list(self._abandoned):
            waiter.cancel()


_DONE = object()


class SubmissionQueue:
    """Submits one transaction per wallet with at most ``concurrency`` in flight."""

    def __init__(
        self,
        gateway,
        tracker: ConfirmationTracker,
        sink: FailureSink,
        operation: Operation,
        concurrency: int = config.CONCURRENCY_LIMIT,
        wallet_delay: Optional[Tuple[float, float]] = config.SLEEP_BETWEEN_WALLETS_SEC,
    ) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self._gateway = gateway
        self._tracker = tracker
        self._sink = sink
        self._operation = operation
        self.concurrency = concurrency
        self.wallet_delay = wallet_delay
        self._idle = asyncio.Event()
        self._idle.set()

    async def _submit(self, record: WalletRecord, index: int) -> SubmissionOutcome:
        wallet_short = shorten_address(record.address)
        try:
            if not Web3.is_address(record.address):
                raise InvalidAddress(f"Invalid wallet address: {record.address}")
            payload = self._operation.call_for(record)
            sender = Account.from_key(record.credential).address
            call = CallRequest(sender=sender, to=self._operation.contract_address, data=payload.to_hex())
            logger.info(
                f"Wallet #{index} ({wallet_short}): {self._operation.name} -> contract "
                f"{shorten_address(call.to)} from {shorten_address(sender)}"
            )
            logger.debug(f"Wallet #{index} ({wallet_short}): calldata {call.data}")

            fees = await self._gateway.estimate_fees()
            gas_limit = await self._gateway.estimate_gas_limit(call)
            handle = await self._gateway.submit(record.credential, call, fees, gas_limit)
        except Exception as e:
            reason = str(e) or type(e).__name__
            logger.error(f"Wallet #{index} ({wallet_short}): transaction failed - {reason}")
            self._sink.record(record.address, reason)
            return SubmissionFailed(record.address, reason, type(e).__name__)

        logger.info(f"Wallet #{index} ({wallet_short}): transaction sent, tx: {handle.tx_hash}")
        self._tracker.spawn(handle, record.address)
        return Submitted(record.address, handle)

    async def run(self, records: Iterable[WalletRecord]) -> AsyncIterator[SubmissionOutcome]:
        """Yield one outcome per record, in completion order."""
        outcomes: asyncio.Queue = asyncio.Queue()
        pending = enumerate(records, 1)

        async def worker() -> None:
            # Workers share one iterator, so each record is taken exactly once
            for index, record in pending:
                if self.wallet_delay and index > 1:
                    await asyncio.sleep(random.uniform(*self.wallet_delay))
                await outcomes.put(await self._submit(record, index))

        self._idle.clear()
        workers = [asyncio.create_task(worker()) for _ in range(self.concurrency)]
        finished = asyncio.gather(*workers)
        finished.add_done_callback(lambda _: outcomes.put_nowait(_DONE))
        try:
            while True:
                outcome = await outcomes.get()
                if outcome is _DONE:
                    break
                yield outcome
            await finished
        finally:
            for task in workers:
                task.cancel()
            self._idle.set()

    async def on_idle(self) -> None:
        await self._idle.wait()


async def run_batch(run_config: config.RunConfig, gateway=None) -> RunSummary:
    source = RecordSource(run_config.source_path)
    records = shuffle_records(source.load())
    logger.info(f"Loaded {len(records)} wallets and shuffled their order")

    summary = RunSummary(skipped=len(source.skipped))
    owns_gateway = gateway is None
    if owns_gateway:
        gateway = Web3Gateway.connect(run_config)

    sink = FailureSink(run_config.log_path)
    tracker = ConfirmationTracker(gateway, sink, run_config.timeout_ms, run_config.confirm_concurrency)
    queue = SubmissionQueue(
        gateway, tracker, sink, run_config.operation, run_config.concurrency, run_config.wallet_delay,
    )
    try:
        async for outcome in queue.run(records):
            summary.attempted += 1
            if isinstance(outcome, Submitted):
                summary.submitted += 1
            else:
                summary.failed += 1

        await queue.on_idle()
        logger.info(f"All transactions sent! Waiting for {tracker.pending} confirmations...")
        await tracker.join()
        logger.info("All confirmations finished!")
    finally:
        tracker.close()
        if owns_gateway:
            gateway.close()

    summary.confirmed = tracker.confirmed
    summary.timed_out = tracker.timed_out
    summary.failed += tracker.timed_out + tracker.failed
    logger.info(f"Batch {run_config.operation.name} finished: {summary}")
    return summary
