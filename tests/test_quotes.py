"""
Tests for the quoting service client.
"""
import urllib.parse

import pytest
import requests

from sealedswap.exceptions import ErrorCode, UpstreamUnavailable, ValidationError
from sealedswap.quotes import QuoteClient
from conftest import AMOUNT_IN, TEST_QUOTE_URL, TOKEN_IN, TOKEN_OUT, make_route


@pytest.fixture
def quotes():
    return QuoteClient(TEST_QUOTE_URL, retry_count=0)


def test_get_quote(quotes, requests_mock):
    requests_mock.get(TEST_QUOTE_URL, json=make_route())
    quote = quotes.get_quote(TOKEN_IN, TOKEN_OUT, AMOUNT_IN, slippage_bps=50)

    assert quote["outAmount"] == "99000000"
    query = urllib.parse.parse_qs(urllib.parse.urlparse(requests_mock.last_request.url).query)
    assert query["inputMint"] == [TOKEN_IN]
    assert query["outputMint"] == [TOKEN_OUT]
    assert query["amount"] == [str(AMOUNT_IN)]
    assert query["slippageBps"] == ["50"]
    assert query["swapMode"] == ["ExactIn"]


@pytest.mark.parametrize("kwargs", [
    {"status_code": 500},
    {"status_code": 400, "json": {"error": "no route"}},
    {"exc": requests.ConnectTimeout},
    {"text": "not json"},
    {"json": {"error": "Could not find any route"}},
])
def test_quote_failures_are_upstream_unavailable(quotes, requests_mock, kwargs):
    requests_mock.get(TEST_QUOTE_URL, **kwargs)
    with pytest.raises(UpstreamUnavailable) as exc_info:
        quotes.get_quote(TOKEN_IN, TOKEN_OUT, AMOUNT_IN)
    assert exc_info.value.code == ErrorCode.QUOTE_UNAVAILABLE
    assert exc_info.value.http_status == 503


def test_quote_validation_lists_all_errors(quotes, requests_mock):
    with pytest.raises(ValidationError) as exc_info:
        quotes.get_quote("bad", "", 0, slippage_bps=20_000)
    assert len(exc_info.value.errors) == 4
    assert not requests_mock.called


@pytest.mark.parametrize("amount", [True, 1.5, "100", -1])
def test_quote_rejects_bad_amounts(quotes, amount):
    with pytest.raises(ValidationError):
        quotes.get_quote(TOKEN_IN, TOKEN_OUT, amount)


def test_quote_url_must_be_http():
    with pytest.raises(ValueError):
        QuoteClient("ftp://quote.example.com")
