from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Sequence

from analytics.prices import PriceLookup
from common.utils import parse_token_value
from ingestion.parser import Transaction

logger = logging.getLogger(__name__)


@dataclass
class CurrencyBreakdown:
    currency: str
    count: int = 0
    total_amount: float = 0.0
    total_usd: float = 0.0
    price: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currency": self.currency,
            "count": self.count,
            "totalAmount": self.total_amount,
            "totalUSD": self.total_usd,
            "price": self.price,
        }


@dataclass
class AggregationResult:
    currency_breakdown: Dict[str, CurrencyBreakdown] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"currencyBreakdown": {k: v.to_dict() for k, v in self.currency_breakdown.items()}}


def _symbol(tx: Transaction) -> str:
    return (tx.token_symbol or "").upper()


def aggregate_fees(transactions: Sequence[Transaction], price_lookup: PriceLookup) -> AggregationResult:
    """
    Per-currency count, native total and USD total.

    Prices are fetched once for the distinct symbol set. Symbols without a
    price still count and add to the native total, at 0 USD.
    """
    symbols = sorted({_symbol(tx) for tx in transactions})
    prices = price_lookup.get_prices(symbols) if symbols else {}

    amounts: Dict[str, List[float]] = {s: [] for s in symbols}
    for tx in transactions:
        amounts[_symbol(tx)].append(parse_token_value(tx.value, tx.token_decimal))

    result = AggregationResult()
    for symbol in symbols:
        price = float(prices.get(symbol) or 0.0)
        native = amounts[symbol]
        result.currency_breakdown[symbol] = CurrencyBreakdown(
            currency=symbol,
            count=len(native),
            # fsum is exactly rounded, so input order cannot change the totals
            total_amount=math.fsum(native),
            total_usd=math.fsum(a * price for a in native),
            price=price,
        )
        if not price:
            logger.warning("No price for %s, %d transactions contribute 0 USD", symbol, len(native))
    return result


def grand_total_usd(result: AggregationResult) -> float:
    return math.fsum(b.total_usd for b in result.currency_breakdown.values())


def recent_transactions(
    transactions: Iterable[Transaction],
    prices: Dict[str, float],
    limit: int = 20,
) -> List[Dict[str, Any]]:
    recent = sorted(transactions, key=lambda tx: tx.timestamp, reverse=True)[:limit]
    out = []
    for tx in recent:
        amount = parse_token_value(tx.value, tx.token_decimal)
        row = tx.to_dict()
        row["usdValue"] = amount * float(prices.get(_symbol(tx)) or 0.0)
        out.append(row)
    return out
