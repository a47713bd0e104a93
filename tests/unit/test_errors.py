import asyncio

import httpx
import pytest
from anthropic import APIConnectionError, APITimeoutError, RateLimitError

from gift_finder.utils.errors import (
    BrowserSessionTimeoutError,
    CleanupError,
    FailureCategory,
    GiftFinderError,
    QueryGenerationError,
    ScoringParseError,
    SessionError,
    categorize_error,
)

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def test_taxonomy_shares_base():
    for exc in (
        QueryGenerationError("x"),
        SessionError("x"),
        BrowserSessionTimeoutError(900),
        CleanupError("x"),
        ScoringParseError("x"),
    ):
        assert isinstance(exc, GiftFinderError)


def test_session_error_records_step():
    assert SessionError("no search bar", step="act").step == "act"


def test_timeout_error_message():
    error = BrowserSessionTimeoutError(900, step="extract")
    assert error.timeout_seconds == 900
    assert error.step == "extract"
    assert "900s" in str(error)
    assert isinstance(error, SessionError)


def test_scoring_parse_error_keeps_raw_response():
    assert ScoringParseError("bad", raw_response="not json").raw_response == "not json"


@pytest.mark.parametrize("error,expected", [
    (RateLimitError("slow down", response=httpx.Response(429, request=REQUEST), body=None),
     FailureCategory.RATE_LIMIT),
    (APITimeoutError(request=REQUEST), FailureCategory.TIMEOUT),
    (APIConnectionError(request=REQUEST), FailureCategory.NETWORK),
    (BrowserSessionTimeoutError(900), FailureCategory.TIMEOUT),
    (asyncio.TimeoutError(), FailureCategory.TIMEOUT),
    (ConnectionResetError(), FailureCategory.NETWORK),
    (ScoringParseError("bad json"), FailureCategory.VALIDATION),
    (ValueError("bad value"), FailureCategory.VALIDATION),
    (SessionError("no elements", step="act"), FailureCategory.BROWSER),
    (RuntimeError("net::ERR_NAME_NOT_RESOLVED at https://firebox.eu/"), FailureCategory.NETWORK),
    (RuntimeError("Timeout 30000ms exceeded"), FailureCategory.TIMEOUT),
    (RuntimeError("Target closed"), FailureCategory.BROWSER),
    (RuntimeError("something odd"), FailureCategory.UNKNOWN),
])
def test_categorize_error(error, expected):
    assert categorize_error(error) == expected
