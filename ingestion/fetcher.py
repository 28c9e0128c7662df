# ingestion/fetcher.py
from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

import requests

from common.settings import Settings
from ingestion.cache import FetchCache

logger = logging.getLogger(__name__)

NO_RESULTS_MESSAGE = "No transactions found"
DEFAULT_USER_AGENT = "GONDI-FeeTracker/1.0"
START_BLOCK = 0
END_BLOCK = 99999999

_APIKEY_RE = re.compile(r"(apikey=)[^&]*", re.IGNORECASE)


class EtherscanError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def build_query_url(action: str, settings: Settings) -> str:
    """
    Account-module query for the tracked contract over the full block range.
    """
    ec = settings.etherscan
    params = {
        "chainid": ec.chain_id,
        "module": "account",
        "action": action,
        "address": settings.tracking.contract,
        "startblock": START_BLOCK,
        "endblock": END_BLOCK,
        "sort": "asc",
        "apikey": ec.api_key or "",
    }
    return f"{ec.base_url}?{urlencode(params)}"


def redact_url(url: str) -> str:
    return _APIKEY_RE.sub(r"\1[REDACTED]", url)


def backoff_delay_ms(attempt_index: int, base_ms: int = 1000, cap_ms: int = 5000) -> int:
    return min(cap_ms, base_ms * (2 ** attempt_index))


def _parse_envelope(data: Any) -> Optional[List[Dict[str, Any]]]:
    """
    Return the result list, or None for a "No transactions found" envelope.
    """
    if not isinstance(data, dict):
        raise EtherscanError("Etherscan API error: response is not a JSON object")
    if str(data.get("status")) == "0":
        message = data.get("message")
        if message == NO_RESULTS_MESSAGE:
            return None
        raise EtherscanError(f"Etherscan API error: {message or data.get('result')}")
    result = data.get("result")
    return result if isinstance(result, list) else []


def fetch_with_retry(
    url: str,
    max_attempts: int = 3,
    *,
    cache: Optional[FetchCache] = None,
    user_agent: str = DEFAULT_USER_AGENT,
    timeout: float = 30.0,
    backoff_base_ms: int = 1000,
    backoff_cap_ms: int = 5000,
    sleep: Callable[[float], None] = time.sleep,
) -> List[Dict[str, Any]]:
    """
    GET an Etherscan-style endpoint and return the envelope's result list.

    A "No transactions found" envelope is an empty list, not an error. Other
    failures are retried with capped exponential backoff; the last one is
    raised. Successful results, empty lists included, are written to the cache
    when one is given; "No transactions found" is never cached.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    if cache is not None:
        cached = cache.get(url)
        if cached is not None:
            logger.info("Using cached data for %s", redact_url(url)[:100])
            return cached

    for attempt in range(max_attempts):
        try:
            logger.info("API call (attempt %d/%d): %s", attempt + 1, max_attempts, redact_url(url)[:100])
            resp = requests.get(url, headers={"User-Agent": user_agent}, timeout=timeout)
            if not 200 <= resp.status_code < 300:
                raise EtherscanError(f"HTTP {resp.status_code}: {resp.reason}", status_code=resp.status_code)

            results = _parse_envelope(resp.json())
            if results is None:
                logger.info("No transactions found for this request")
                return []

            logger.info("Received %d results", len(results))
            if cache is not None:
                cache.set(url, results)
            return results
        except (requests.RequestException, ValueError, EtherscanError) as e:
            logger.warning("Attempt %d failed: %s", attempt + 1, e)
            if attempt == max_attempts - 1:
                logger.error("All %d attempts failed for %s", max_attempts, redact_url(url)[:100])
                raise
            delay_ms = backoff_delay_ms(attempt, backoff_base_ms, backoff_cap_ms)
            logger.info("Waiting %dms before retry", delay_ms)
            sleep(delay_ms / 1000.0)


__all__ = [
    "EtherscanError",
    "build_query_url",
    "redact_url",
    "backoff_delay_ms",
    "fetch_with_retry",
]
