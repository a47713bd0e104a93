"""Utils module for Gift Finder."""

from gift_finder.utils.logger import LogContext, get_logger, setup_logging
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
from gift_finder.utils.formatters import (
    format_recommendations_json,
    format_recommendations_markdown,
    format_top_products_table,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "LogContext",
    "GiftFinderError",
    "QueryGenerationError",
    "SessionError",
    "BrowserSessionTimeoutError",
    "CleanupError",
    "ScoringParseError",
    "FailureCategory",
    "categorize_error",
    "format_recommendations_json",
    "format_recommendations_markdown",
    "format_top_products_table",
]
