"""
Error taxonomy and failure categorisation.

Each component raises its own exception type; the boundaries that recover
from them (query fallback, session isolation, scoring fallback) use
``categorize_error`` to tag logs and results with a coarse failure category.
"""

import asyncio
from enum import Enum

import anthropic
from pydantic import ValidationError as PydanticValidationError


# =============================================================================
# Custom Exceptions
# =============================================================================

class GiftFinderError(Exception):
    """Base application exception."""
    pass


class QueryGenerationError(GiftFinderError):
    """Search term generation failed or produced nothing usable."""
    pass


class SessionError(GiftFinderError):
    """A browser session step (init, navigate, act, extract) failed."""

    def __init__(self, message: str, step: str = "unknown"):
        super().__init__(message)
        self.step = step


class BrowserSessionTimeoutError(SessionError):
    """The browser session exceeded its lifetime ceiling."""

    def __init__(self, timeout_seconds: int, step: str = "unknown"):
        super().__init__(
            f"Browser session exceeded {timeout_seconds}s ceiling during {step}",
            step=step,
        )
        self.timeout_seconds = timeout_seconds


class CleanupError(GiftFinderError):
    """Releasing a browser session failed."""
    pass


class ScoringParseError(GiftFinderError):
    """The scoring response could not be parsed into the expected schema."""

    def __init__(self, message: str, raw_response: str = ""):
        super().__init__(message)
        self.raw_response = raw_response


# =============================================================================
# Categorisation
# =============================================================================

class FailureCategory(str, Enum):
    """Coarse failure categories for logging and result tagging."""
    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    VALIDATION = "validation"
    BROWSER = "browser"
    UNKNOWN = "unknown"


def categorize_error(error: BaseException) -> FailureCategory:
    """Categorize errors for logging and result tagging."""
    if isinstance(error, anthropic.RateLimitError):
        return FailureCategory.RATE_LIMIT
    if isinstance(error, (BrowserSessionTimeoutError, asyncio.TimeoutError, anthropic.APITimeoutError)):
        return FailureCategory.TIMEOUT
    if isinstance(error, (anthropic.APIConnectionError, ConnectionError)):
        return FailureCategory.NETWORK
    if isinstance(error, (PydanticValidationError, ScoringParseError, ValueError)):
        return FailureCategory.VALIDATION
    if isinstance(error, SessionError):
        return FailureCategory.BROWSER

    # Playwright errors carry no stable hierarchy, so fall back to the message
    err_str = str(error).lower()
    if "rate limit" in err_str:
        return FailureCategory.RATE_LIMIT
    if "timeout" in err_str:
        return FailureCategory.TIMEOUT
    if "net::" in err_str or "connection" in err_str:
        return FailureCategory.NETWORK
    if "target closed" in err_str or "browser has been closed" in err_str:
        return FailureCategory.BROWSER

    return FailureCategory.UNKNOWN
