"""
Services package for Gift Finder.

Services:
    - ClaudeService: Language-model completions and structured extraction
    - PlaywrightBrowserSession: Browser automation driven by Claude
"""

from gift_finder.services.llm_service import (
    ClaudeService,
    ClaudeServiceError,
    EmptyResponseError,
    MaxRetriesExceededError,
    SchemaValidationError,
    TaskType,
    TokenUsage,
    extract_json,
    strip_code_fences,
)
from gift_finder.services.browser_service import (
    BrowserSession,
    BrowserSessionConfig,
    PageAction,
    PlaywrightBrowserSession,
    create_browser_session_factory,
    is_ad_request,
)

__all__ = [
    # LLM Service
    "ClaudeService",
    "TaskType",
    "TokenUsage",
    "ClaudeServiceError",
    "EmptyResponseError",
    "SchemaValidationError",
    "MaxRetriesExceededError",
    "extract_json",
    "strip_code_fences",
    # Browser Service
    "BrowserSession",
    "BrowserSessionConfig",
    "PageAction",
    "PlaywrightBrowserSession",
    "create_browser_session_factory",
    "is_ad_request",
]
