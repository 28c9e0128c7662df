from __future__ import annotations

import hashlib
import logging
import os
from functools import lru_cache
from typing import Optional

import requests
from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse

from analytics.fees import aggregate_fees, grand_total_usd, recent_transactions
from analytics.prices import CoinGeckoPriceLookup, PriceLookup
from common.logging_setup import setup_logging
from common.settings import ConfigError, Settings, load_settings
from ingestion.fetcher import EtherscanError, build_query_url, fetch_with_retry, redact_url
from ingestion.orchestrator import IngestionOrchestrator

logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}
FEES_ERROR = "Failed to fetch fee data"

app = FastAPI(title="Fee Tracker API", version="0.1.0")


@app.on_event("startup")
def on_startup() -> None:
    setup_logging()


@lru_cache
def _settings() -> Settings:
    return load_settings(os.environ.get("FEE_TRACKER_CONFIG", "config.yaml"))


@lru_cache
def _orchestrator() -> IngestionOrchestrator:
    """Process-wide orchestrator; its fetch cache is shared by all requests."""
    return IngestionOrchestrator(_settings())


def _price_lookup(settings: Settings = Depends(_settings)) -> PriceLookup:
    return CoinGeckoPriceLookup(settings.prices)


@app.exception_handler(ConfigError)
def config_error_handler(request: Request, exc: ConfigError) -> JSONResponse:
    logger.error("Configuration error serving %s: %s", request.url.path, exc)
    return JSONResponse({"success": False, "error": FEES_ERROR}, status_code=500, headers=NO_CACHE_HEADERS)


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/fees", tags=["fees"])
def get_fees(
    settings: Settings = Depends(_settings),
    orchestrator: IngestionOrchestrator = Depends(_orchestrator),
    price_lookup: PriceLookup = Depends(_price_lookup),
) -> JSONResponse:
    """Aggregated USD fees per currency plus the most recent transactions."""
    try:
        logger.info("Starting fee data fetch")
        settings.require_api_key()

        transactions = orchestrator.fetch_transactions()
        logger.info("Processing %d transactions", len(transactions))

        aggregated = aggregate_fees(transactions, price_lookup)
        logger.info("Aggregation complete, total $%.2f", grand_total_usd(aggregated))

        prices = {s: b.price for s, b in aggregated.currency_breakdown.items()}
        recent = recent_transactions(transactions, prices, settings.api.recent_limit)
        return JSONResponse(
            {"success": True, "data": aggregated.to_dict(), "recentTransactions": recent},
            headers=NO_CACHE_HEADERS,
        )
    except Exception:
        logger.exception("Error fetching fees")
        return JSONResponse({"success": False, "error": FEES_ERROR}, status_code=500, headers=NO_CACHE_HEADERS)


def _key_fingerprint(key: Optional[str]) -> dict:
    if not key:
        return {"present": False, "length": 0, "prefix": "N/A", "hash": "N/A"}
    return {
        "present": True,
        "length": len(key),
        "prefix": key[:8],
        "hash": hashlib.md5(key.encode("utf-8")).hexdigest()[:8],
    }


@app.get("/api/debug", tags=["system"])
def debug_info(
    settings: Settings = Depends(_settings),
    x_debug_auth: Optional[str] = Header(default=None),
) -> JSONResponse:
    """Configuration diagnostics; development only unless the debug header matches."""
    token = settings.api.debug_token
    authorized = settings.api.environment == "development" or (token is not None and x_debug_auth == token)
    if not authorized:
        return JSONResponse(
            {"error": "Debug endpoint disabled in production. Use x-debug-auth header."},
            status_code=403,
        )

    tracking = settings.tracking
    actions = {"token": "tokentx", "internal": "txlistinternal", "normal": "txlist"}
    expected = [t.symbol for t in tracking.tokens] + [tracking.native_symbol]
    debug = {
        "apiKey": _key_fingerprint(settings.etherscan.api_key),
        "environment": settings.api.environment,
        "constants": {
            "trackedContract": tracking.contract,
            "tokens": {t.symbol: t.contract for t in tracking.tokens},
            "startDate": tracking.start_date.isoformat(),
            "startTimestamp": tracking.start_timestamp,
        },
        "expectedCurrencies": {"count": len(expected), "list": expected},
        "fetch": settings.fetch.model_dump(),
        "apiEndpoints": {name: redact_url(build_query_url(action, settings)) for name, action in actions.items()},
    }
    return JSONResponse({"success": True, "debug": debug}, headers=NO_CACHE_HEADERS)


@app.get("/api/test-tokens", tags=["system"])
def token_feed_check(settings: Settings = Depends(_settings)) -> JSONResponse:
    """Fetch the raw token feed once, uncached, and report what it contains."""
    if not settings.etherscan.api_key:
        return JSONResponse({"success": False, "error": "API key missing", "hasApiKey": False})

    url = build_query_url("tokentx", settings)
    try:
        raw = fetch_with_retry(
            url,
            1,
            user_agent=settings.etherscan.user_agent,
            timeout=settings.etherscan.timeout,
        )
    except (EtherscanError, requests.RequestException, ValueError) as e:
        logger.error("Token feed test failed: %s", e)
        return JSONResponse({"success": False, "error": str(e), "debug": "Token API failed"})
    except Exception:
        logger.exception("Token feed test failed")
        return JSONResponse({"success": False, "error": "Token API failed"}, status_code=500)

    records = [tx for tx in raw if isinstance(tx, dict)]
    contracts = sorted({str(tx.get("contractAddress") or "").lower() for tx in records} - {""})
    symbols = sorted({str(tx["tokenSymbol"]) for tx in records if tx.get("tokenSymbol")})
    tracked = {t.symbol: t.contract in contracts for t in settings.tracking.tokens}
    return JSONResponse(
        {
            "success": True,
            "totalTransactions": len(raw),
            "contracts": contracts,
            "symbols": symbols,
            "trackedContractsSeen": tracked,
        },
        headers=NO_CACHE_HEADERS,
    )
