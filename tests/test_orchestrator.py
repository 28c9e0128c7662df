import logging

import pytest
import requests

from common.settings import ConfigError
from conftest import FakeResp, WETH, internal_tx, token_tx
from ingestion.cache import FetchCache
from ingestion.fetcher import EtherscanError
from ingestion.orchestrator import (
    CategoryPolicy,
    IngestionOrchestrator,
    default_policies,
    dedupe_transactions,
    missing_symbols,
    summarize_by_symbol,
)
from ingestion.parser import Transaction, parse_internal_transfers, parse_token_transfers


def _tx(hash, value, symbol="ETH", ts=1):
    return Transaction(hash, ts, value, symbol, 18, "0xa", "0xb", "ethereum", 1)


class ScriptedFetch:
    """Fake fetch_with_retry: per action, a list of results or exceptions consumed in order."""

    def __init__(self, script):
        self.script = {k: list(v) for k, v in script.items()}
        self.calls = []

    def __call__(self, url, max_attempts=3, **kw):
        action = next(a for a in self.script if f"action={a}&" in url)
        self.calls.append((action, max_attempts))
        step = self.script[action].pop(0)
        if isinstance(step, Exception):
            raise step
        return step


def _orchestrator(settings, script, sleeps=None):
    fetch = ScriptedFetch(script)
    sleep = sleeps.append if sleeps is not None else (lambda s: None)
    return IngestionOrchestrator(settings, cache=FetchCache(), fetch=fetch, sleep=sleep), fetch


def test_dedupe_keeps_first_occurrence_in_order():
    txs = [_tx("0x1", "5"), _tx("0x2", "5"), _tx("0x1", "5", symbol="USDC"), _tx("0x1", "6"), _tx("0x2", "5")]
    out = dedupe_transactions(txs)
    assert [(t.hash, t.value, t.token_symbol) for t in out] == [("0x1", "5", "ETH"), ("0x2", "5", "ETH"), ("0x1", "6", "ETH")]


@pytest.mark.parametrize("txs", [
    [],
    [_tx("0x1", "1")],
    [_tx("0x1", "1"), _tx("0x1", "1"), _tx("0x1", "2")],
    [_tx(f"0x{i % 3}", str(i % 2)) for i in range(20)],
])
def test_dedupe_is_idempotent(txs):
    once = dedupe_transactions(txs)
    assert dedupe_transactions(once) == once


def test_summary_and_missing_symbols():
    summary = summarize_by_symbol([_tx("0x1", "1", "USDC"), _tx("0x2", "1", "USDC"), _tx("0x3", "1", "ETH")])
    assert summary == {"USDC": 2, "ETH": 1}
    assert missing_symbols(summary, ["USDC", "WETH"]) == ["WETH"]


def test_default_policies(settings):
    policies = default_policies(settings)
    assert [(p.name, p.action, p.critical) for p in policies] == [
        ("token", "tokentx", True),
        ("internal", "txlistinternal", False),
    ]
    assert policies[0].cycles == 2 and policies[1].cycles == 1

    settings.fetch.include_normal_transactions = True
    assert [p.action for p in default_policies(settings)] == ["tokentx", "txlistinternal", "txlist"]


def test_fetch_merges_categories(settings):
    orch, fetch = _orchestrator(settings, {
        "tokentx": [[token_tx(hash="0xt1"), token_tx(hash="0xt2", contract=WETH, symbol="WETH", decimals="18")]],
        "txlistinternal": [[internal_tx(hash="0xi1")]],
    })
    out = orch.fetch_transactions()
    assert [t.hash for t in out] == ["0xt1", "0xt2", "0xi1"]
    assert [a for a, _ in fetch.calls] == ["tokentx", "txlistinternal"]


def test_cross_category_duplicate_survives_once(settings):
    orch, _ = _orchestrator(settings, {
        "tokentx": [[token_tx(hash="0xabc", value="500")]],
        "txlistinternal": [[internal_tx(hash="0xabc", value="500")]],
    })
    out = orch.fetch_transactions()
    assert len(out) == 1
    assert out[0].token_symbol == "USDC"


def test_pause_between_categories(settings):
    settings.fetch.inter_call_delay = 1.0
    sleeps = []
    orch, _ = _orchestrator(settings, {"tokentx": [[]], "txlistinternal": [[]]}, sleeps)
    orch.fetch_transactions()
    assert sleeps == [1.0]


def test_internal_failure_does_not_block_tokens(settings):
    orch, _ = _orchestrator(settings, {
        "tokentx": [[token_tx(hash="0xt1")]],
        "txlistinternal": [EtherscanError("HTTP 500: boom", 500)],
    })
    outcomes = orch.collect()
    assert outcomes[0].ok and len(outcomes[0].transactions) == 1
    assert not outcomes[1].ok
    assert outcomes[1].cycles_used == 1
    assert isinstance(outcomes[1].error, EtherscanError)


def test_critical_token_category_gets_one_extra_cycle(settings):
    sleeps = []
    orch, fetch = _orchestrator(settings, {
        "tokentx": [EtherscanError("rate limited"), [token_tx(hash="0xt1")]],
        "txlistinternal": [[internal_tx(hash="0xi1")]],
    }, sleeps)
    out = orch.fetch_transactions()
    assert [t.hash for t in out] == ["0xt1", "0xi1"]
    assert [a for a, _ in fetch.calls] == ["tokentx", "tokentx", "txlistinternal"]
    # the extra cycle waits one more backoff step (capped at 5s) before refetching
    assert sleeps == [5.0]


def test_extra_cycle_pause_follows_backoff_settings(settings):
    settings.fetch.max_attempts = 1
    sleeps = []
    orch, _ = _orchestrator(settings, {
        "tokentx": [EtherscanError("rate limited"), []],
        "txlistinternal": [[]],
    }, sleeps)
    orch.fetch_transactions()
    assert sleeps == [2.0]


def test_non_object_record_does_not_fail_the_category(settings):
    orch, fetch = _orchestrator(settings, {
        "tokentx": [[token_tx(hash="0xgood"), "garbage", None, 42]],
        "txlistinternal": [[["not", "a", "dict"], internal_tx(hash="0xi1")]],
    })
    outcomes = orch.collect()
    assert all(o.ok for o in outcomes)
    assert [t.hash for o in outcomes for t in o.transactions] == ["0xgood", "0xi1"]
    assert [a for a, _ in fetch.calls] == ["tokentx", "txlistinternal"]


def test_critical_token_category_gives_up_after_second_cycle(settings):
    orch, fetch = _orchestrator(settings, {
        "tokentx": [EtherscanError("down"), EtherscanError("still down"), [token_tx()]],
        "txlistinternal": [[internal_tx(hash="0xi1")]],
    })
    outcomes = orch.collect()
    assert not outcomes[0].ok
    assert outcomes[0].cycles_used == 2
    assert str(outcomes[0].error) == "still down"
    assert [a for a, _ in fetch.calls].count("tokentx") == 2


def test_policy_attempt_budget_is_passed_to_fetch(settings):
    policies = [
        CategoryPolicy("token", "tokentx", parse_token_transfers, max_attempts=5, critical=True),
        CategoryPolicy("internal", "txlistinternal", parse_internal_transfers, max_attempts=1),
    ]
    fetch = ScriptedFetch({"tokentx": [[]], "txlistinternal": [[]]})
    IngestionOrchestrator(settings, policies=policies, fetch=fetch, sleep=lambda s: None).fetch_transactions()
    assert fetch.calls == [("tokentx", 5), ("txlistinternal", 1)]


def test_missing_api_key_returns_empty(settings, caplog):
    settings.etherscan.api_key = None
    orch, fetch = _orchestrator(settings, {"tokentx": [[token_tx()]], "txlistinternal": [[]]})
    with pytest.raises(ConfigError):
        orch.collect()
    with caplog.at_level(logging.ERROR, logger="ingestion.orchestrator"):
        assert orch.fetch_transactions() == []
    assert "ETHERSCAN_API_KEY" in caplog.text
    assert fetch.calls == []


def test_total_failure_returns_empty(settings):
    orch, _ = _orchestrator(settings, {
        "tokentx": [EtherscanError("a"), EtherscanError("b")],
        "txlistinternal": [EtherscanError("c")],
    })
    assert orch.fetch_transactions() == []


def test_missing_tracked_symbol_is_a_warning(settings, caplog):
    orch, _ = _orchestrator(settings, {"tokentx": [[token_tx()]], "txlistinternal": [[]]})
    with caplog.at_level(logging.WARNING, logger="ingestion.orchestrator"):
        orch.fetch_transactions()
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert any("WETH" in r.getMessage() for r in warnings)
    assert not any("USDC" in r.getMessage() for r in warnings)


def test_end_to_end_with_http_and_cache(settings, monkeypatch):
    calls = []

    def fake_get(url, headers=None, timeout=None):
        calls.append(url)
        if "action=tokentx" in url:
            return FakeResp({"status": "1", "message": "OK", "result": [token_tx(hash="0xt")]})
        return FakeResp({"status": "0", "message": "No transactions found", "result": []})

    monkeypatch.setattr(requests, "get", fake_get)
    orch = IngestionOrchestrator(settings, sleep=lambda s: None)
    assert [t.hash for t in orch.fetch_transactions()] == ["0xt"]
    assert [t.hash for t in orch.fetch_transactions()] == ["0xt"]
    # token feed is served from the orchestrator's cache the second time
    assert sum("action=tokentx" in u for u in calls) == 1
    assert sum("action=txlistinternal" in u for u in calls) == 2
