import pytest
import requests

from common.settings import Settings

CONTRACT = "0x4169447a424ec645f8a24dccfd8328f714dd5562"
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
START_TS = 1761091200  # 2025-10-22T00:00:00Z
AFTER = START_TS + 3600


class FakeResp:
    def __init__(self, json_data=None, status_code=200, reason="OK", bad_json=False):
        self._json = json_data
        self.status_code = status_code
        self.reason = reason
        self._bad_json = bad_json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"status {self.status_code}")

    def json(self):
        if self._bad_json:
            raise ValueError("Expecting value")
        return self._json


def token_tx(hash="0x1", value="1000000", contract=USDC, symbol="USDC", decimals="6",
             to=CONTRACT, ts=AFTER, block="100"):
    return {
        "hash": hash,
        "timeStamp": str(ts),
        "value": value,
        "from": "0x1111111111111111111111111111111111111111",
        "to": to,
        "contractAddress": contract,
        "tokenSymbol": symbol,
        "tokenDecimal": decimals,
        "blockNumber": block,
    }


def internal_tx(hash="0x2", value="1000000000000000000", to=CONTRACT, ts=AFTER, block="101"):
    return {
        "hash": hash,
        "timeStamp": str(ts),
        "value": value,
        "from": "0x2222222222222222222222222222222222222222",
        "to": to,
        "blockNumber": block,
    }


@pytest.fixture
def settings() -> Settings:
    s = Settings()
    s.etherscan.api_key = "TESTKEY"
    s.fetch.inter_call_delay = 0
    return s


@pytest.fixture
def sleeps():
    calls = []
    return calls


@pytest.fixture
def fake_sleep(sleeps):
    return sleeps.append
