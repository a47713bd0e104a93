"""
Claude API service for completions and structured extraction.

This module is the language-model capability used by query generation,
product scoring and the browser session's natural-language actions. It
wraps Anthropic's async client with transport-level retries, token
accounting and schema-validated JSON extraction.

Example:
    >>> service = ClaudeService()
    >>> text = await service.complete("Suggest three gift ideas", max_tokens=200)
    >>> products = await service.extract_structured_data(page_text, ExtractedProducts)
"""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Type, TypeVar

import anthropic
from anthropic import APIConnectionError, APIStatusError, RateLimitError
from pydantic import BaseModel, ValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from gift_finder.config.settings import Settings, get_settings
from gift_finder.utils.logger import get_logger

# Type variable for generic schema validation
T = TypeVar("T", bound=BaseModel)

logger = get_logger(__name__)


# =============================================================================
# Constants and Enums
# =============================================================================

class TaskType(str, Enum):
    """Task types, used for logging and temperature selection."""
    QUERY_GENERATION = "query_generation"
    SCORING = "scoring"
    BROWSER_ACTION = "browser_action"
    EXTRACTION = "extraction"


# Token costs per model (per 1K tokens)
TOKEN_COSTS = {
    "claude-sonnet-4-20250514": {"input": 0.003, "output": 0.015},
    "claude-3-5-sonnet-20241022": {"input": 0.003, "output": 0.015},
    "claude-3-5-haiku-20241022": {"input": 0.0008, "output": 0.004},
    "claude-3-haiku-20240307": {"input": 0.00025, "output": 0.00125},
}

CODE_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
JSON_BLOCK_PATTERN = re.compile(r"(\{[\s\S]*\}|\[[\s\S]*\])")

EXTRACTION_SYSTEM_PROMPT = """You are a data extraction specialist. Extract structured data from web page content and return it as valid JSON.

RULES:
1. ONLY output valid JSON - no markdown, no explanation, no code blocks
2. Follow the exact schema structure provided
3. Never invent values that are not present in the content
4. URLs must be absolute, exactly as they appear in the link list"""


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class TokenUsage:
    """Token usage tracking for a single request."""
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0
    model: str = ""
    task_type: str = ""
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def calculate_cost(self, model: str) -> float:
        """Calculate estimated cost based on token usage."""
        if model in TOKEN_COSTS:
            costs = TOKEN_COSTS[model]
            input_cost = (self.input_tokens / 1000) * costs["input"]
            output_cost = (self.output_tokens / 1000) * costs["output"]
            self.estimated_cost = input_cost + output_cost
        return self.estimated_cost


# =============================================================================
# Custom Exceptions
# =============================================================================

class ClaudeServiceError(Exception):
    """Base exception for Claude service errors."""
    pass


class EmptyResponseError(ClaudeServiceError):
    """Raised when the model returns no text content."""
    pass


class SchemaValidationError(ClaudeServiceError):
    """Raised when response doesn't match expected schema."""
    def __init__(self, message: str, raw_response: str, errors: list[str]):
        super().__init__(message)
        self.raw_response = raw_response
        self.errors = errors


class MaxRetriesExceededError(ClaudeServiceError):
    """Raised when max retries are exceeded."""
    pass


def _is_retryable(error: BaseException) -> bool:
    """Rate limits, dropped connections and server errors are worth another try."""
    if isinstance(error, (RateLimitError, APIConnectionError)):
        return True
    if isinstance(error, APIStatusError):
        return error.status_code >= 500
    return False


def strip_code_fences(text: str) -> str:
    """Remove markdown code-fence markers a model may wrap its output in."""
    text = re.sub(r"```json\s*", "", text)
    text = re.sub(r"```\s*", "", text)
    return text.strip()


def extract_json(text: str) -> str:
    """Extract JSON from text that may contain markdown or other content."""
    # Try to find JSON in code blocks first
    matches = CODE_FENCE_PATTERN.findall(text)
    if matches:
        return matches[0].strip()

    # Try to find raw JSON object or array
    matches = JSON_BLOCK_PATTERN.findall(text)
    if matches:
        # Return the longest match (likely the full JSON)
        return max(matches, key=len)

    # Return original text as fallback
    return text.strip()


# =============================================================================
# Main Service Class
# =============================================================================

class ClaudeService:
    """
    Claude API service shared by every component that talks to the model.

    One instance is created by the pipeline and passed to its collaborators;
    the pipeline owns its lifecycle.

    Example:
        >>> async with ClaudeService(settings) as service:
        ...     text = await service.complete("...", max_tokens=1000)

    Attributes:
        settings: Application settings
        client: Anthropic API client
        token_usage_history: List of token usage records
        total_cost: Running total of API costs
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        api_key: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_backoff: Optional[float] = None,
    ):
        """
        Initialize the Claude service.

        Args:
            settings: Application settings instance
            api_key: Override API key (uses settings if not provided)
            max_retries: Maximum attempts per request
            retry_backoff: Base of the exponential backoff, in seconds
        """
        self.settings = settings or get_settings()
        self._api_key = api_key or self.settings.anthropic_api_key.get_secret_value()
        self.max_retries = max_retries if max_retries is not None else self.settings.max_retries
        self.retry_backoff = (
            retry_backoff if retry_backoff is not None else self.settings.retry_backoff_seconds
        )

        # Retries are handled here, not inside the SDK
        self.client = anthropic.AsyncAnthropic(
            api_key=self._api_key,
            max_retries=0,
            timeout=self.settings.request_timeout_seconds,
        )

        # Token tracking
        self.token_usage_history: list[TokenUsage] = []
        self.total_cost: float = 0.0

        logger.info(
            "ClaudeService initialized",
            model=self.settings.claude_model,
            max_retries=self.max_retries,
        )

    async def __aenter__(self) -> "ClaudeService":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the client connection."""
        await self.client.close()
        logger.info(
            "ClaudeService closed",
            total_requests=len(self.token_usage_history),
            total_cost=f"${self.total_cost:.4f}",
        )

    # =========================================================================
    # Core API Methods
    # =========================================================================

    async def _call_api(
        self,
        messages: list[dict[str, str]],
        system: str = "",
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
        task_type: TaskType = TaskType.SCORING,
    ) -> tuple[str, TokenUsage]:
        """
        Make an API call with retry logic.

        Returns:
            Tuple of (response_text, token_usage)

        Raises:
            ClaudeServiceError: On non-retryable API errors
            MaxRetriesExceededError: When every attempt failed
            EmptyResponseError: When the model returned no text
        """
        max_tokens = max_tokens or self.settings.claude_max_tokens
        model = model or self.settings.claude_model

        request: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": messages,
        }
        if system:
            request["system"] = system

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(self.max_retries, 1)),
            wait=wait_exponential(multiplier=self.retry_backoff, max=60),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
            before_sleep=lambda state: logger.warning(
                "Retrying API call",
                task_type=task_type.value,
                attempt=state.attempt_number,
                error=str(state.outcome.exception()) if state.outcome else None,
            ),
        )

        start_time = time.time()
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self.client.messages.create(**request)
        except (RateLimitError, APIConnectionError) as e:
            logger.error("Max retries exceeded", task_type=task_type.value, error=str(e))
            raise MaxRetriesExceededError(
                f"Failed after {self.max_retries} attempts: {e}"
            ) from e
        except APIStatusError as e:
            if e.status_code >= 500:
                logger.error("Max retries exceeded", task_type=task_type.value, error=str(e))
                raise MaxRetriesExceededError(
                    f"Failed after {self.max_retries} attempts: {e}"
                ) from e
            if e.status_code == 401:
                logger.error("Authentication failed", error=str(e))
                raise ClaudeServiceError(f"Authentication failed: {e}") from e
            logger.error("API error", status_code=e.status_code, error=str(e))
            raise ClaudeServiceError(f"API error: {e}") from e

        elapsed = time.time() - start_time

        response_text = "".join(
            getattr(block, "text", "") for block in (response.content or [])
        ).strip()
        if not response_text:
            raise EmptyResponseError(f"Empty response for {task_type.value}")

        usage = TokenUsage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            model=model,
            task_type=task_type.value,
        )
        usage.calculate_cost(model)
        self.token_usage_history.append(usage)
        self.total_cost += usage.estimated_cost

        logger.info(
            "API call successful",
            task_type=task_type.value,
            elapsed_seconds=f"{elapsed:.2f}",
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            cost=f"${usage.estimated_cost:.4f}",
        )

        return response_text, usage

    # =========================================================================
    # High-Level Methods
    # =========================================================================

    async def complete(
        self,
        prompt: str,
        *,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: float = 0.7,
        task_type: TaskType = TaskType.SCORING,
    ) -> str:
        """
        Send a single user prompt and return the text of the reply.

        Raises:
            ClaudeServiceError: On any failure, including empty content
        """
        text, _ = await self._call_api(
            messages=[{"role": "user", "content": prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
            model=model,
            task_type=task_type,
        )
        return text

    async def extract_structured_data(
        self,
        raw_text: str,
        schema: Type[T],
        additional_context: str = "",
        task_type: TaskType = TaskType.EXTRACTION,
    ) -> T:
        """
        Extract structured data from unstructured text using Claude.

        Args:
            raw_text: Unstructured text to extract data from
            schema: Pydantic model class defining expected structure
            additional_context: Instruction describing what to extract

        Returns:
            Instance of the provided schema class

        Raises:
            SchemaValidationError: If the reply does not match the schema
        """
        schema_str = json.dumps(schema.model_json_schema(), indent=2)

        prompt = f"""Extract structured data from the following content.

## Content:
{raw_text}

{f"## Task:{chr(10)}{additional_context}" if additional_context else ""}

## Required Output Schema:
{schema_str}

Return ONLY valid JSON matching the schema. Output the JSON now:"""

        response_text, _ = await self._call_api(
            messages=[{"role": "user", "content": prompt}],
            system=EXTRACTION_SYSTEM_PROMPT,
            temperature=self.settings.browser_temperature,
            task_type=task_type,
        )

        json_str = extract_json(response_text)
        try:
            return schema.model_validate_json(json_str)
        except ValidationError as e:
            errors = [str(err) for err in e.errors()]
            logger.warning(
                "Structured extraction failed validation",
                schema=schema.__name__,
                errors=errors[:3],
            )
            raise SchemaValidationError(
                f"Response does not match {schema.__name__}",
                raw_response=response_text,
                errors=errors,
            ) from e

    def get_usage_stats(self) -> dict[str, Any]:
        """Get usage statistics for the service."""
        if not self.token_usage_history:
            return {
                "total_requests": 0,
                "total_tokens": 0,
                "total_cost": 0.0,
                "avg_tokens_per_request": 0,
            }

        total_tokens = sum(u.total_tokens for u in self.token_usage_history)

        return {
            "total_requests": len(self.token_usage_history),
            "total_tokens": total_tokens,
            "total_input_tokens": sum(u.input_tokens for u in self.token_usage_history),
            "total_output_tokens": sum(u.output_tokens for u in self.token_usage_history),
            "total_cost": self.total_cost,
            "avg_tokens_per_request": total_tokens // len(self.token_usage_history),
        }


__all__ = [
    "ClaudeService",
    "TaskType",
    "TokenUsage",
    "ClaudeServiceError",
    "EmptyResponseError",
    "SchemaValidationError",
    "MaxRetriesExceededError",
    "strip_code_fences",
    "extract_json",
]
