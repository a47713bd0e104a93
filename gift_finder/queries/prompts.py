"""
Prompts for search term generation.

The model is steered away from the obvious gift for a hobby and towards
complementary items, upgrades and things people rarely buy for themselves.
"""

from dataclasses import dataclass

from gift_finder.models.schemas import RecipientProfile


@dataclass
class PromptConfig:
    """Configuration for a prompt template."""
    name: str
    description: str
    recommended_temperature: float
    recommended_max_tokens: int

    def __repr__(self) -> str:
        return f"PromptConfig({self.name}, temp={self.recommended_temperature})"


QUERY_GENERATION_CONFIG = PromptConfig(
    name="gift_query_generation",
    description="Generate short retail search terms for a gift recipient",
    recommended_temperature=0.8,
    recommended_max_tokens=1000,
)

QUERY_GENERATION_USER = """Generate exactly {count} short gift search queries (1-2 words each) for finding gifts for a {recipient} who is described as: "{description}".

IMPORTANT: Assume they already have the basic necessities related to their interests. Focus on:
- Complementary items that enhance their hobbies
- Thoughtful accessories or upgrades
- Related but unexpected items
- Premium or unique versions of things they might not buy themselves

AVOID obvious basics like "poker set" for poker players, "dumbbells" for fitness enthusiasts, etc.

Examples for "loves cooking":
spice rack
chef knife
herb garden

Return ONLY the search terms, one per line, no dashes, bullets, or numbers. Just the plain search terms:"""


def format_query_generation_prompt(profile: RecipientProfile, count: int = 3) -> str:
    """Build the search term prompt for a recipient."""
    return QUERY_GENERATION_USER.format(
        count=count,
        recipient=profile.category.value.lower(),
        description=profile.description,
    )
