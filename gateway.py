# gateway.py
import asyncio
import functools
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional

from eth_account import Account
from web3 import Web3
from web3.exceptions import TransactionNotFound

import config
from errors import FeeQuoteUnavailable, GatewayUnavailable, SubmissionRejected
from logger import get_logger
from models import CallRequest, FeeQuote, Receipt, TxHandle
from utils import get_w3_with_retry, shorten_address

logger = get_logger("Gateway", config.LOG_LEVEL)


class Web3Gateway:
    """Chain access for the pipeline on top of a blocking web3 connection.

    Every RPC call runs in a thread pool so that the event loop keeps
    serving the other wallets while a request is in flight.
    """

    def __init__(
        self,
        w3: Web3,
        chain_id: int,
        gas_limit_multiplier: float = config.GAS_LIMIT_MULTIPLIER,
        gas_price_multiplier: float = config.GAS_PRICE_MULTIPLIER,
        poll_interval: float = config.RECEIPT_POLL_INTERVAL,
        max_workers: int = config.CONCURRENCY_LIMIT,
    ) -> None:
        self._w3 = w3
        self.chain_id = chain_id
        self.gas_limit_multiplier = gas_limit_multiplier
        self.gas_price_multiplier = gas_price_multiplier
        self.poll_interval = poll_interval
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers))

    @classmethod
    def connect(cls, run_config: "config.RunConfig") -> "Web3Gateway":
        w3 = get_w3_with_retry(run_config.endpoint_url, run_config.chain_id, run_config.proxy)
        if w3 is None:
            raise GatewayUnavailable(f"Cannot connect to {run_config.endpoint_url} (chain_id {run_config.chain_id})")
        # Receipt polls share the pool with submissions
        workers = run_config.concurrency + (run_config.confirm_concurrency or run_config.concurrency)
        return cls(
            w3,
            run_config.chain_id,
            gas_limit_multiplier=run_config.gas_limit_multiplier,
            gas_price_multiplier=run_config.gas_price_multiplier,
            poll_interval=run_config.poll_interval,
            max_workers=workers,
        )

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args))

    def _compute_eip1559_fees(self) -> FeeQuote:
        """Compute EIP-1559 fields from the priority fee and the pending block base fee."""
        eth = self._w3.eth
        try:
            priority = eth.max_priority_fee
            if priority is None:
                raise ValueError("max_priority_fee not available")
        except Exception:
            # fallback to small fraction of gas_price
            try:
                priority = int(eth.gas_price * 0.1)
            except Exception:
                priority = Web3.to_wei(1, "gwei")

        try:
            pending = eth.get_block("pending")
            base_fee = pending.get("baseFeePerGas", None)
            if base_fee is None:
                base_fee = eth.gas_price
        except Exception:
            try:
                base_fee = eth.gas_price
            except Exception as e:
                raise FeeQuoteUnavailable(f"Cannot fetch gas price from chain: {e}") from e

        max_fee = int((int(base_fee) * 2 + int(priority)) * self.gas_price_multiplier)
        return FeeQuote(max_fee_per_gas=max_fee, max_priority_fee_per_gas=int(priority))

    async def estimate_fees(self) -> FeeQuote:
        return await self._call(self._compute_eip1559_fees)

    def _estimate_gas(self, call: CallRequest) -> int:
        try:
            gas = self._w3.eth.estimate_gas({"from": call.sender, "to": call.to, "data": call.data})
        except Exception as e:
            raise SubmissionRejected(f"Gas estimation failed: {e}") from e
        return int(gas * self.gas_limit_multiplier)

    async def estimate_gas_limit(self, call: CallRequest) -> int:
        return await self._call(self._estimate_gas, call)

    def _sign_and_send(self, credential: str, call: CallRequest, fees: FeeQuote, gas_limit: int) -> TxHandle:
        eth = self._w3.eth
        try:
            nonce = eth.get_transaction_count(call.sender, "pending")
            txn = {
                "type": 2,
                "chainId": self.chain_id,
                "nonce": nonce,
                "to": Web3.to_checksum_address(call.to),
                "data": call.data,
                "value": 0,
                "gas": gas_limit,
                "maxFeePerGas": fees.max_fee_per_gas,
                "maxPriorityFeePerGas": fees.max_priority_fee_per_gas,
            }
            signed_txn = Account.sign_transaction(txn, credential)
            tx_hash = eth.send_raw_transaction(signed_txn.raw_transaction)
        except Exception as e:
            raise SubmissionRejected(str(e)) from e
        return TxHandle(tx_hash=Web3.to_hex(tx_hash))

    async def submit(self, credential: str, call: CallRequest, fees: FeeQuote, gas_limit: int) -> TxHandle:
        logger.debug(
            f"Sending from {shorten_address(call.sender)}: gas={gas_limit}, "
            f"maxFeePerGas={Web3.from_wei(fees.max_fee_per_gas, 'gwei')} Gwei, "
            f"maxPriorityFeePerGas={Web3.from_wei(fees.max_priority_fee_per_gas, 'gwei')} Gwei"
        )
        return await self._call(self._sign_and_send, credential, call, fees, gas_limit)

    def _get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        try:
            receipt = self._w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        return Receipt(
            tx_hash=tx_hash,
            block_number=int(receipt["blockNumber"]),
            status=int(receipt.get("status", 1)),
        )

    async def wait_for_receipt(self, handle: TxHandle) -> Receipt:
        """Poll until the transaction is mined. Has no deadline of its own."""
        while True:
            receipt = await self._call(self._get_receipt, handle.tx_hash)
            if receipt is not None:
                return receipt
            await asyncio.sleep(self.poll_interval)

    def close(self) -> None:
        self._executor.shutdown(wait=False)
