"""
Search term generation.

Turns a recipient profile into at most ``max_queries`` retail search terms
with a single Claude call. Failures surface once as ``QueryGenerationError``;
the pipeline decides what to do about them.
"""

from typing import Optional

from gift_finder.config.settings import Settings, get_settings
from gift_finder.models.schemas import RecipientProfile
from gift_finder.queries.prompts import QUERY_GENERATION_CONFIG, format_query_generation_prompt
from gift_finder.services.llm_service import ClaudeService, TaskType
from gift_finder.utils.errors import QueryGenerationError
from gift_finder.utils.logger import get_logger

logger = get_logger(__name__)

FALLBACK_QUERIES: tuple[str, ...] = ("gifts", "accessories", "items")


def parse_queries(text: str, limit: int = 3) -> list[str]:
    """One term per non-blank line, trimmed, first ``limit`` kept."""
    queries = [line.strip() for line in text.strip().splitlines()]
    return [q for q in queries if q][:limit]


class QueryGenerator:
    """Generates gift search terms for a recipient."""

    def __init__(
        self,
        llm_service: ClaudeService,
        settings: Optional[Settings] = None,
    ):
        self.llm = llm_service
        self.settings = settings or get_settings()
        self.max_queries = self.settings.max_queries

    async def generate(self, profile: RecipientProfile) -> list[str]:
        """
        Generate search terms for a recipient.

        Args:
            profile: Recipient category and description

        Returns:
            Between 1 and ``max_queries`` search terms, in model order

        Raises:
            QueryGenerationError: If the call fails or yields no terms
        """
        logger.info("Generating search queries", recipient=profile.category.value)

        prompt = format_query_generation_prompt(profile, count=self.max_queries)
        try:
            response = await self.llm.complete(
                prompt,
                max_tokens=QUERY_GENERATION_CONFIG.recommended_max_tokens,
                temperature=self.settings.query_temperature,
                task_type=TaskType.QUERY_GENERATION,
            )
        except Exception as e:
            raise QueryGenerationError(f"Query generation call failed: {e}") from e

        queries = parse_queries(response, limit=self.max_queries)
        if not queries:
            raise QueryGenerationError("Model returned no search terms")

        logger.info("Search queries generated", queries=queries)
        return queries
