# main.py
import argparse
import asyncio
import sys
from typing import List, Optional

import config
from errors import BatchError
from logger import get_logger, set_level
from pipeline import FailureSink, run_batch
from utils import get_w3_with_retry

logger = get_logger("Main", config.LOG_LEVEL)

ASCII_BANNER = r"""
  ___   _ _____ ___ _  _     ___ _   _ ___ __  __ ___ _____
 | _ ) /_\_   _/ __| || |   / __| | | | _ )  \/  |_ _|_   _|
 | _ \/ _ \| || (__| __ |   \__ \ |_| | _ \ |\/| || |  | |
 |___/_/ \_\_| \___|_||_|   |___/\___/|___/_|  |_|___| |_|
"""

MENU = [
    ("1", "approve", "Approve USDC on Arbitrum"),
    ("2", "stable-approve", "Approve USDT on Ethereum"),
    ("3", "deposit", "Deposit USDC on Arbitrum"),
    ("4", "stable-deposit", "Deposit USDT on Ethereum"),
]


def print_banner() -> None:
    print(ASCII_BANNER)


def menu() -> None:
    print("Select an action:")
    for number, _, title in MENU:
        print(f"{number}. {title}")
    print("5. Check RPC connection")
    print("6. Exit")


async def check_rpc() -> None:
    """Checks availability of RPC nodes and reports chain_id match"""
    print("Checking RPC connectivity...\n")
    for name, network in config.NETWORKS.items():
        try:
            w3 = get_w3_with_retry(network.rpc_url, network.chain_id, config.PROXY)
            status = "OK" if w3 is not None else "FAIL"
            print(f"{name} {network.rpc_url}: {status} (expected chain_id: {network.chain_id})")
        except Exception as e:
            print(f"{name} {network.rpc_url}: ERROR ({e})")
    print()


async def start_batch(operation_name: str, **overrides) -> None:
    run_config = config.load_config(operation_name, **overrides)
    logger.info(
        f"Starting {operation_name}: {run_config.source_path} -> {run_config.contract_address} "
        f"via {run_config.endpoint_url} (concurrency {run_config.concurrency})"
    )
    try:
        summary = await run_batch(run_config)
    except BatchError as e:
        FailureSink(run_config.log_path).record("global error", str(e))
        raise
    print(
        f"\nAttempted: {summary.attempted} | Submitted: {summary.submitted} | "
        f"Confirmed: {summary.confirmed} | Failed: {summary.failed} "
        f"(timed out: {summary.timed_out}) | Skipped rows: {summary.skipped}\n"
    )


async def main_loop() -> None:
    print_banner()
    actions = {number: name for number, name, _ in MENU}
    while True:
        try:
            menu()
            choice = input("Enter action number: ").strip()
            if choice in actions:
                await start_batch(actions[choice])
            elif choice == "5":
                logger.info("Checking RPC connectivity...")
                await check_rpc()
            elif choice == "6":
                logger.info("Exiting...")
                sys.exit(0)
            else:
                print("Invalid input, please try again.\n")
        except BatchError as e:
            logger.error(f"Batch aborted: {e}")
        except Exception as e:
            logger.error(f"Error in main loop: {e}")
            print("An error occurred, please restart the script.\n")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Submit approve / deposit transactions for a batch of wallets.")
    parser.add_argument("operation", nargs="?", choices=list(config.OPERATIONS), help="run this preset without the menu")
    parser.add_argument("--source", dest="source_path", help="CSV or Excel file with wallets")
    parser.add_argument("--rpc", dest="endpoint_url", help="RPC endpoint URL")
    parser.add_argument("--concurrency", type=int, help="transactions in flight at the same time")
    parser.add_argument("--timeout-ms", dest="timeout_ms", type=int, help="confirmation timeout in milliseconds")
    parser.add_argument("--log-path", dest="log_path", help="file receiving failed wallets")
    parser.add_argument(
        "--delay", dest="wallet_delay", nargs=2, type=float, metavar=("MIN", "MAX"),
        help="random pause in seconds before each wallet",
    )
    parser.add_argument("--verbose", action="store_true", help="log at DEBUG level")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    if args.verbose:
        set_level("DEBUG")
    if args.operation is None:
        asyncio.run(main_loop())
        return 0

    overrides = {
        "source_path": args.source_path,
        "endpoint_url": args.endpoint_url,
        "concurrency": args.concurrency,
        "timeout_ms": args.timeout_ms,
        "log_path": args.log_path,
        "wallet_delay": tuple(args.wallet_delay) if args.wallet_delay else None,
    }
    try:
        asyncio.run(start_batch(args.operation, **overrides))
    except (BatchError, ValueError) as e:
        logger.error(f"Batch aborted: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
