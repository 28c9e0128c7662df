# ingestion/parser.py
"""
ingestion.parser
Normalize raw Etherscan account records into Transaction objects.

Every category keeps only records sent TO the tracked contract, at or after
the tracking start date, with a positive base-10 integer value. Records
that are not JSON objects are dropped.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from common.settings import Tracking
from common.utils import parse_uint, same_address


@dataclass(frozen=True)
class Transaction:
    hash: str
    timestamp: int  # epoch milliseconds
    value: str  # smallest units, not scaled by decimals
    token_symbol: str
    token_decimal: int
    from_address: Optional[str]
    to_address: Optional[str]
    network: str
    block_number: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": self.hash,
            "timestamp": self.timestamp,
            "value": self.value,
            "tokenSymbol": self.token_symbol,
            "tokenDecimal": self.token_decimal,
            "from": self.from_address,
            "to": self.to_address,
            "network": self.network,
            "blockNumber": self.block_number,
        }


def _to_int(value, default: Optional[int] = 0) -> Optional[int]:
    parsed = parse_uint(value)
    return default if parsed is None else parsed


def passes_shared_filters(tx: Dict[str, Any], tracking: Tracking) -> bool:
    if not isinstance(tx, dict):
        return False
    ts = _to_int(tx.get("timeStamp"), None)
    if ts is None or ts < tracking.start_timestamp:
        return False
    if not same_address(tx.get("to"), tracking.contract):
        return False
    value = _to_int(tx.get("value"), None)
    return value is not None and value > 0


def _build(tx: Dict[str, Any], symbol: str, decimals: int, tracking: Tracking) -> Transaction:
    return Transaction(
        hash=tx.get("hash") or "",
        timestamp=_to_int(tx.get("timeStamp")) * 1000,
        value=str(tx.get("value")).strip(" \t\r\n"),
        token_symbol=symbol,
        token_decimal=decimals,
        from_address=tx.get("from"),
        to_address=tx.get("to"),
        network=tracking.network,
        block_number=_to_int(tx.get("blockNumber")),
    )


def parse_token_transfers(raw_txs: Iterable[Dict[str, Any]], tracking: Tracking) -> List[Transaction]:
    """
    ERC-20 transfers (tokentx). Only the tracked token contracts count;
    known upstream symbol aliases map to the canonical ticker.
    """
    allowed = tracking.token_contracts
    aliases = tracking.symbol_aliases
    out = []
    for tx in raw_txs or []:
        if not passes_shared_filters(tx, tracking):
            continue
        token = allowed.get(str(tx.get("contractAddress") or "").strip().lower())
        if token is None:
            continue
        symbol = tx.get("tokenSymbol") or token.symbol
        symbol = aliases.get(symbol, symbol)
        out.append(_build(tx, symbol, _to_int(tx.get("tokenDecimal"), 18), tracking))
    return out


def parse_internal_transfers(raw_txs: Iterable[Dict[str, Any]], tracking: Tracking) -> List[Transaction]:
    """Internal ETH transfers (txlistinternal), always native units with 18 decimals."""
    return [
        _build(tx, tracking.native_symbol, 18, tracking)
        for tx in raw_txs or []
        if passes_shared_filters(tx, tracking)
    ]


def parse_normal_transactions(raw_txs: Iterable[Dict[str, Any]], tracking: Tracking) -> List[Transaction]:
    # reverted top-level transactions move no value
    return [
        _build(tx, tracking.native_symbol, 18, tracking)
        for tx in raw_txs or []
        if passes_shared_filters(tx, tracking) and str(tx.get("isError", "0")) != "1"
    ]


__all__ = [
    "Transaction",
    "passes_shared_filters",
    "parse_token_transfers",
    "parse_internal_transfers",
    "parse_normal_transactions",
]
