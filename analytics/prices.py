# analytics/prices.py
from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Protocol

import requests

from common.settings import Prices

logger = logging.getLogger(__name__)


class PriceLookup(Protocol):
    def get_prices(self, symbols: Iterable[str]) -> Dict[str, float]:
        """Current unit price per upper-cased symbol; unknown symbols are absent."""
        ...


class StaticPriceLookup:
    def __init__(self, prices: Dict[str, float]):
        self.prices = {k.upper(): float(v) for k, v in prices.items()}
        self.calls = 0

    def get_prices(self, symbols: Iterable[str]) -> Dict[str, float]:
        self.calls += 1
        wanted = {s.upper() for s in symbols}
        return {s: p for s, p in self.prices.items() if s in wanted}


class CoinGeckoPriceLookup:
    """
    Batch spot prices from CoinGecko /simple/price.

    Symbols are mapped to CoinGecko coin ids through config; a failed request
    logs a warning and returns no prices.
    """

    def __init__(self, cfg: Optional[Prices] = None):
        self.cfg = cfg or Prices()

    def get_prices(self, symbols: Iterable[str]) -> Dict[str, float]:
        ids_by_symbol = {}
        for s in {s.upper() for s in symbols}:
            coin_id = self.cfg.coin_ids.get(s)
            if coin_id:
                ids_by_symbol[s] = coin_id
            else:
                logger.warning("No price source configured for %s", s)
        if not ids_by_symbol:
            return {}

        vs = self.cfg.vs_currency
        url = f"{self.cfg.base_url}/simple/price"
        params = {"ids": ",".join(sorted(set(ids_by_symbol.values()))), "vs_currencies": vs}
        try:
            resp = requests.get(url, params=params, timeout=self.cfg.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Price lookup failed for %s: %s", sorted(ids_by_symbol), e)
            return {}

        out: Dict[str, float] = {}
        if not isinstance(data, dict):
            return out
        for symbol, coin_id in ids_by_symbol.items():
            entry = data.get(coin_id)
            if isinstance(entry, dict) and entry.get(vs) is not None:
                try:
                    out[symbol] = float(entry[vs])
                except (TypeError, ValueError):
                    logger.warning("Unusable price for %s: %r", symbol, entry[vs])
        return out


__all__ = ["PriceLookup", "StaticPriceLookup", "CoinGeckoPriceLookup"]
