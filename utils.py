# utils.py
import random
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
from requests import Session
from web3 import HTTPProvider, Web3

import config
from errors import MalformedRecord, SourceUnreadable
from logger import get_logger
from models import WalletRecord

logger = get_logger("Records", config.LOG_LEVEL)

EXCEL_SUFFIXES = {".xlsx", ".xlsm"}
LEGACY_EXCEL_SUFFIXES = {".xls"}


def shorten_address(address: str) -> str:
    return f"{address[:6]}...{address[-4:]}"


def normalize_private_key(private_key: str) -> str:
    """Accept keys both with and without the 0x prefix."""
    private_key = private_key.strip()
    if not private_key.startswith("0x"):
        private_key = "0x" + private_key
    return private_key


def _pick_column(columns: Sequence[str], candidates: Sequence[str]) -> Optional[str]:
    for name in candidates:
        if name in columns:
            return name
    return None


def _cell(row: Dict[str, Any], column: Optional[str]) -> str:
    if column is None:
        return ""
    value = row.get(column)
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    return str(value).strip()


class RecordSource:
    """Loads wallet records from a CSV or Excel file.

    Expected columns: wallet_address, private_key and, for deposits,
    usdc_amount. Rows without an address or key are skipped and kept in
    ``skipped``; a file that cannot be read raises SourceUnreadable.
    """

    def __init__(
        self,
        path: str,
        address_columns: Sequence[str] = config.ADDRESS_COLUMNS,
        credential_columns: Sequence[str] = config.CREDENTIAL_COLUMNS,
        amount_columns: Sequence[str] = config.AMOUNT_COLUMNS,
    ) -> None:
        self.path = path
        self.address_columns = address_columns
        self.credential_columns = credential_columns
        self.amount_columns = amount_columns
        self.skipped: List[MalformedRecord] = []

    def _read_frame(self) -> pd.DataFrame:
        path = Path(self.path)
        if path.suffix.lower() in LEGACY_EXCEL_SUFFIXES:
            raise SourceUnreadable(f"Cannot read {self.path}: legacy .xls is not supported, save it as .xlsx")
        try:
            if path.suffix.lower() in EXCEL_SUFFIXES:
                df = pd.read_excel(path, engine="openpyxl", dtype=str, keep_default_na=False)
            else:
                df = pd.read_csv(path, dtype=str, keep_default_na=False, skipinitialspace=True)
        except pd.errors.EmptyDataError:
            return pd.DataFrame()
        except Exception as e:
            raise SourceUnreadable(f"Cannot read {self.path}: {e}") from e
        df.columns = df.columns.astype(str).str.lower().str.strip()
        return df

    def load(self) -> List[WalletRecord]:
        df = self._read_frame()
        self.skipped = []
        columns = list(df.columns)
        address_col = _pick_column(columns, self.address_columns)
        credential_col = _pick_column(columns, self.credential_columns)
        amount_col = _pick_column(columns, self.amount_columns)

        records = []
        for idx, row in enumerate(df.to_dict("records")):
            row_number = idx + 2  # header is row 1
            address = _cell(row, address_col)
            private_key = _cell(row, credential_col)

            missing = [name for name, value in (("address", address), ("private_key", private_key)) if not value]
            if missing:
                skipped = MalformedRecord(row_number, f"missing {', '.join(missing)}, skipping")
                logger.warning(str(skipped))
                self.skipped.append(skipped)
                continue

            amount = None
            raw_amount = _cell(row, amount_col)
            if raw_amount:
                try:
                    amount = Decimal(raw_amount)
                except InvalidOperation:
                    logger.warning(f"Row {row_number}: amount '{raw_amount}' is not a number")

            records.append(WalletRecord(
                address=address,
                credential=normalize_private_key(private_key),
                amount=amount,
                row=row_number,
            ))

        logger.info(f"Loaded {len(records)} wallets from {self.path} ({len(self.skipped)} skipped)")
        return records


def shuffle_records(records: Sequence[WalletRecord], rng: Optional[random.Random] = None) -> List[WalletRecord]:
    """Return the records in a uniformly random order; the input is left untouched."""
    shuffled = list(records)
    (rng or random).shuffle(shuffled)
    return shuffled


def get_w3(rpc_url: str, proxy: Optional[str] = None) -> Web3:
    """Returns Web3 connection to RPC (with optional HTTP proxy session)."""
    if proxy:
        session = Session()
        session.proxies = {'http': proxy, 'https': proxy}
        provider = HTTPProvider(rpc_url, request_kwargs={'timeout': config.RPC_REQUEST_TIMEOUT}, session=session)
    else:
        provider = HTTPProvider(rpc_url, request_kwargs={'timeout': config.RPC_REQUEST_TIMEOUT})
    return Web3(provider)


def get_w3_with_retry(rpc_url: str, chain_id: int, proxy: Optional[str] = None) -> Optional[Web3]:
    """Returns Web3 connection with retries and verifies the endpoint serves chain_id."""
    for attempt in range(1, config.RPC_TRY + 1):
        try:
            w3 = get_w3(rpc_url, proxy)
            actual = w3.eth.chain_id
            if actual == chain_id:
                return w3
            logger.warning(f"{rpc_url}: unexpected chain_id {actual} (expected {chain_id})")
            return None
        except Exception as e:
            logger.warning(f"Attempt {attempt}/{config.RPC_TRY} failed for {rpc_url}: {e}")
    logger.error(f"All attempts failed for {rpc_url}")
    return None
