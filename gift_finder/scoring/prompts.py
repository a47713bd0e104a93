"""
Prompts for product scoring.

All products of a run are scored in one batch so the model can rank them
against each other.
"""

from typing import Sequence

from gift_finder.models.schemas import MAX_REASON_LENGTH, Product, RecipientProfile

SCORING_MAX_TOKENS = 1000

PRODUCT_SCORING_USER = """You are a gift recommendation expert. Score each product based on how well it matches the recipient profile.

RECIPIENT: {recipient}
DESCRIPTION: {description}

PRODUCTS TO SCORE:
{product_list}

For each product, provide a score from 1-10 (10 being perfect match) and a brief reason. Consider:
- How well it matches their interests/hobbies
- Appropriateness for the relationship ({relationship})
- Value for money
- Uniqueness/thoughtfulness
- Practical usefulness

Return ONLY a valid JSON array (no markdown, no code blocks) with this exact format:
[
  {{
    "productIndex": 1,
    "score": 8,
    "reason": "Perfect for poker enthusiasts, high quality chips enhance the gaming experience"
  }},
  {{
    "productIndex": 2,
    "score": 6,
    "reason": "Useful but basic, might already own similar item"
  }}
]

IMPORTANT:
- Return raw JSON only, no code blocks
- Include all {count} products
- Keep reasons under {max_reason} characters
- Use productIndex 1-{count}"""


def format_product_list(products: Sequence[Product]) -> str:
    """1-indexed ``title - price - rating`` lines."""
    return "\n".join(
        f"{index}. {product.prompt_line()}"
        for index, product in enumerate(products, start=1)
    )


def format_scoring_prompt(products: Sequence[Product], profile: RecipientProfile) -> str:
    """Build the batch scoring prompt."""
    return PRODUCT_SCORING_USER.format(
        recipient=profile.category.value,
        relationship=profile.category.value.lower(),
        description=profile.description,
        product_list=format_product_list(products),
        count=len(products),
        max_reason=MAX_REASON_LENGTH,
    )
