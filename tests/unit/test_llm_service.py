import json
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
import pytest
from pydantic import BaseModel

from gift_finder.models.schemas import ExtractedProducts
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

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def api_response(text="Response text", input_tokens=50, output_tokens=30):
    response = MagicMock()
    response.content = [MagicMock(text=text)]
    response.usage.input_tokens = input_tokens
    response.usage.output_tokens = output_tokens
    return response


def status_error(cls, status_code):
    return cls(
        f"status {status_code}",
        response=httpx.Response(status_code, request=REQUEST),
        body=None,
    )


@pytest.fixture
def service(test_settings):
    return ClaudeService(settings=test_settings)


# =============================================================================
# Helpers
# =============================================================================

def test_strip_code_fences():
    assert strip_code_fences("```json\n[1, 2]\n```") == "[1, 2]"
    assert strip_code_fences("```\n[1]\n```") == "[1]"
    assert strip_code_fences("  [3] ") == "[3]"


def test_extract_json_from_fenced_block():
    text = 'Here you go:\n```json\n{"products": []}\n```\nDone.'
    assert json.loads(extract_json(text)) == {"products": []}


def test_extract_json_from_prose():
    text = 'The answer is {"element_index": 3, "action": "click"} as requested.'
    assert json.loads(extract_json(text)) == {"element_index": 3, "action": "click"}


def test_token_usage_cost():
    usage = TokenUsage(input_tokens=1000, output_tokens=1000)
    assert usage.calculate_cost("claude-sonnet-4-20250514") == pytest.approx(0.018)
    assert TokenUsage(input_tokens=10).calculate_cost("unknown-model") == 0.0


# =============================================================================
# Service
# =============================================================================

def test_init(service, test_settings):
    assert service.settings == test_settings
    assert service.client is not None
    assert service.max_retries == test_settings.max_retries


@pytest.mark.asyncio
async def test_complete_success(service, test_settings):
    with patch.object(service.client.messages, "create", new_callable=AsyncMock) as mock_create:
        mock_create.return_value = api_response("spice rack\nchef knife")

        text = await service.complete("prompt", max_tokens=1000, temperature=0.8,
                                      task_type=TaskType.QUERY_GENERATION)

    assert text == "spice rack\nchef knife"
    kwargs = mock_create.call_args.kwargs
    assert kwargs["model"] == test_settings.claude_model
    assert kwargs["max_tokens"] == 1000
    assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]
    assert "system" not in kwargs
    stats = service.get_usage_stats()
    assert stats["total_requests"] == 1
    assert stats["total_tokens"] == 80


@pytest.mark.asyncio
async def test_complete_model_override(service):
    with patch.object(service.client.messages, "create", new_callable=AsyncMock) as mock_create:
        mock_create.return_value = api_response()
        await service.complete("prompt", model="claude-3-5-haiku-20241022")

    assert mock_create.call_args.kwargs["model"] == "claude-3-5-haiku-20241022"


@pytest.mark.asyncio
async def test_empty_content_raises(service):
    with patch.object(service.client.messages, "create", new_callable=AsyncMock) as mock_create:
        mock_create.return_value = api_response(text="   ")

        with pytest.raises(EmptyResponseError):
            await service.complete("prompt")


@pytest.mark.asyncio
async def test_no_content_blocks_raises(service):
    response = api_response()
    response.content = []
    with patch.object(service.client.messages, "create", new_callable=AsyncMock, return_value=response):
        with pytest.raises(EmptyResponseError):
            await service.complete("prompt")


@pytest.mark.asyncio
async def test_retries_server_errors_then_succeeds(service):
    with patch.object(service.client.messages, "create", new_callable=AsyncMock) as mock_create:
        mock_create.side_effect = [
            status_error(anthropic.InternalServerError, 500),
            api_response("ok"),
        ]

        assert await service.complete("prompt") == "ok"

    assert mock_create.call_count == 2


@pytest.mark.asyncio
async def test_rate_limit_exhausts_retries(service, test_settings):
    with patch.object(service.client.messages, "create", new_callable=AsyncMock) as mock_create:
        mock_create.side_effect = status_error(anthropic.RateLimitError, 429)

        with pytest.raises(MaxRetriesExceededError):
            await service.complete("prompt")

    assert mock_create.call_count == test_settings.max_retries


@pytest.mark.asyncio
async def test_connection_error_is_retried(service):
    with patch.object(service.client.messages, "create", new_callable=AsyncMock) as mock_create:
        mock_create.side_effect = [anthropic.APIConnectionError(request=REQUEST), api_response("ok")]

        assert await service.complete("prompt") == "ok"


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(service):
    with patch.object(service.client.messages, "create", new_callable=AsyncMock) as mock_create:
        mock_create.side_effect = status_error(anthropic.BadRequestError, 400)

        with pytest.raises(ClaudeServiceError) as exc_info:
            await service.complete("prompt")

    assert not isinstance(exc_info.value, MaxRetriesExceededError)
    assert mock_create.call_count == 1


@pytest.mark.asyncio
async def test_authentication_error(service):
    with patch.object(service.client.messages, "create", new_callable=AsyncMock) as mock_create:
        mock_create.side_effect = status_error(anthropic.AuthenticationError, 401)

        with pytest.raises(ClaudeServiceError, match="Authentication failed"):
            await service.complete("prompt")

    assert mock_create.call_count == 1


@pytest.mark.asyncio
async def test_extract_structured_data(service, test_settings):
    payload = json.dumps({"products": [{
        "title": "Grill Set",
        "url": "https://firebox.eu/products/grill-set",
        "price": "€39.99",
        "rating": "4.7 stars",
    }]})

    with patch.object(service, "_call_api", new_callable=AsyncMock) as mock_call:
        mock_call.return_value = (f"```json\n{payload}\n```", TokenUsage(input_tokens=10, output_tokens=10))

        result = await service.extract_structured_data(
            "page text", ExtractedProducts, additional_context="Extract the first 3 products",
        )

    assert isinstance(result, ExtractedProducts)
    assert result.products[0].title == "Grill Set"
    kwargs = mock_call.call_args.kwargs
    assert kwargs["task_type"] == TaskType.EXTRACTION
    assert kwargs["temperature"] == test_settings.browser_temperature
    assert "Extract the first 3 products" in kwargs["messages"][0]["content"]
    assert kwargs["system"]


@pytest.mark.asyncio
async def test_extract_structured_data_schema_mismatch(service):
    class StrictSchema(BaseModel):
        required_field: str

    with patch.object(service, "_call_api", new_callable=AsyncMock) as mock_call:
        mock_call.return_value = (json.dumps({"wrong_field": "data"}), TokenUsage())

        with pytest.raises(SchemaValidationError) as exc_info:
            await service.extract_structured_data("text", StrictSchema)

    assert exc_info.value.errors
    assert "wrong_field" in exc_info.value.raw_response


@pytest.mark.asyncio
async def test_context_manager_closes_client(test_settings):
    service = ClaudeService(settings=test_settings)
    with patch.object(service.client, "close", new_callable=AsyncMock) as mock_close:
        async with service:
            pass
    mock_close.assert_awaited_once()


def test_usage_stats_empty(service):
    assert service.get_usage_stats()["total_requests"] == 0
