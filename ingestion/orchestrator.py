# ingestion/orchestrator.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from common.settings import Settings, Tracking
from ingestion.cache import FetchCache
from ingestion.fetcher import backoff_delay_ms, build_query_url, fetch_with_retry, redact_url
from ingestion.parser import (
    Transaction,
    parse_internal_transfers,
    parse_normal_transactions,
    parse_token_transfers,
)

logger = logging.getLogger(__name__)

ParseFn = Callable[[Iterable[Dict[str, Any]], Tracking], List[Transaction]]
FetchFn = Callable[..., List[Dict[str, Any]]]


@dataclass(frozen=True)
class CategoryPolicy:
    """
    How one upstream category is fetched. A critical category gets one
    extra end-to-end fetch-and-parse cycle once its fetch budget is spent.
    """
    name: str
    action: str
    parse: ParseFn
    max_attempts: int = 3
    critical: bool = False

    @property
    def cycles(self) -> int:
        return 2 if self.critical else 1


@dataclass
class CategoryOutcome:
    policy: CategoryPolicy
    transactions: List[Transaction] = field(default_factory=list)
    error: Optional[Exception] = None
    cycles_used: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


def default_policies(settings: Settings) -> List[CategoryPolicy]:
    attempts = settings.fetch.max_attempts
    policies = [
        CategoryPolicy("token", "tokentx", parse_token_transfers, attempts, critical=True),
        CategoryPolicy("internal", "txlistinternal", parse_internal_transfers, attempts),
    ]
    if settings.fetch.include_normal_transactions:
        policies.append(CategoryPolicy("normal", "txlist", parse_normal_transactions, attempts))
    return policies


def dedupe_transactions(transactions: Iterable[Transaction]) -> List[Transaction]:
    """Drop repeats of (hash, value), keeping the first occurrence in order."""
    seen = set()
    out = []
    for tx in transactions:
        key = (tx.hash, tx.value)
        if key in seen:
            continue
        seen.add(key)
        out.append(tx)
    return out


def summarize_by_symbol(transactions: Iterable[Transaction]) -> Dict[str, int]:
    summary: Dict[str, int] = {}
    for tx in transactions:
        symbol = tx.token_symbol or "UNKNOWN"
        summary[symbol] = summary.get(symbol, 0) + 1
    return summary


def missing_symbols(summary: Dict[str, int], expected: Iterable[str]) -> List[str]:
    return [s for s in expected if not summary.get(s)]


class IngestionOrchestrator:
    """
    Fetch every category for the tracked contract, normalize, merge and dedupe.

    Owns the FetchCache so repeated runs within the TTL reuse upstream data.
    """

    def __init__(
        self,
        settings: Settings,
        cache: Optional[FetchCache] = None,
        policies: Optional[List[CategoryPolicy]] = None,
        fetch: FetchFn = fetch_with_retry,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.cache = cache if cache is not None else FetchCache(
            ttl_seconds=settings.cache.ttl_seconds,
            max_entries=settings.cache.max_entries,
        )
        self.policies = policies if policies is not None else default_policies(settings)
        self._fetch = fetch
        self._sleep = sleep

    def run_category(self, policy: CategoryPolicy) -> CategoryOutcome:
        url = build_query_url(policy.action, self.settings)
        fp = self.settings.fetch
        last_error: Optional[Exception] = None
        for cycle in range(policy.cycles):
            if cycle > 0:
                # one more step of the fetch backoff schedule
                delay_ms = backoff_delay_ms(policy.max_attempts, fp.backoff_base_ms, fp.backoff_cap_ms)
                logger.warning(
                    "Retrying %s transactions end to end in %dms (cycle %d)", policy.name, delay_ms, cycle + 1
                )
                self._sleep(delay_ms / 1000.0)
            try:
                raw = self._fetch(
                    url,
                    policy.max_attempts,
                    cache=self.cache,
                    user_agent=self.settings.etherscan.user_agent,
                    timeout=self.settings.etherscan.timeout,
                    backoff_base_ms=fp.backoff_base_ms,
                    backoff_cap_ms=fp.backoff_cap_ms,
                    sleep=self._sleep,
                )
                txs = policy.parse(raw, self.settings.tracking)
                logger.info("Processed %d %s transactions from %d raw records", len(txs), policy.name, len(raw))
                return CategoryOutcome(policy, txs, None, cycle + 1)
            except Exception as e:
                last_error = e
                logger.error("%s transactions failed: %s (url=%s)", policy.name, e, redact_url(url)[:100])
        if policy.critical:
            logger.error("%s transactions still failing after retry, revenue for that category will be missing", policy.name)
        return CategoryOutcome(policy, [], last_error, policy.cycles)

    def collect(self) -> List[CategoryOutcome]:
        """
        Run every category in order with a pause in between.
        Raises ConfigError when no API key is configured.
        """
        self.settings.require_api_key()
        logger.info(
            "Fetching transactions for contract %s since %s",
            self.settings.tracking.contract,
            self.settings.tracking.start_date.isoformat(),
        )
        started = time.monotonic()
        outcomes = []
        for i, policy in enumerate(self.policies):
            if i > 0 and self.settings.fetch.inter_call_delay > 0:
                self._sleep(self.settings.fetch.inter_call_delay)
            outcomes.append(self.run_category(policy))
        logger.info("All category calls completed in %.0fms", (time.monotonic() - started) * 1000)
        for o in outcomes:
            if o.ok:
                logger.info("  %s: ok (%d transactions)", o.policy.name, len(o.transactions))
            else:
                logger.info("  %s: failed (%s)", o.policy.name, o.error)
        return outcomes

    def fetch_transactions(self) -> List[Transaction]:
        """
        Deduplicated transactions across all categories. Never raises: any
        failure is logged and yields an empty list.
        """
        try:
            outcomes = self.collect()
            merged: List[Transaction] = []
            for o in outcomes:
                merged.extend(o.transactions)
            unique = dedupe_transactions(merged)
        except Exception as e:
            logger.exception("Error fetching transactions: %s", e)
            return []

        summary = summarize_by_symbol(unique)
        logger.info("Final summary: %d unique transactions, by currency %s", len(unique), summary)
        expected = [t.symbol for t in self.settings.tracking.tokens]
        for symbol in missing_symbols(summary, expected):
            logger.warning("No %s transactions found, quiet period or token feed failure", symbol)
        return unique


__all__ = [
    "CategoryPolicy",
    "CategoryOutcome",
    "IngestionOrchestrator",
    "default_policies",
    "dedupe_transactions",
    "summarize_by_symbol",
    "missing_symbols",
]
