"""
Listing extraction prompts and response models.

Uses OpenAI structured output so the model reply is parsed straight into
ExtractionResult. Known reference values are listed in the prompt so the
model prefers canonical names that the router can resolve.
"""

from pydantic import BaseModel, Field


# =============================================================================
# Response Models for Structured Output
# =============================================================================


class ExtractedItem(BaseModel):
    """A single item mentioned in a trade message. Every field is optional."""

    description: str | None = Field(
        default=None,
        description='Short description of the item, e.g. "Parker hydraulic valve, 1/2 inch".',
    )
    category: str | None = Field(
        default=None, description='Category name, preferably one of the known categories.'
    )
    manufacturer: str | None = Field(
        default=None, description='Manufacturer or brand, preferably a known manufacturer name.'
    )
    part_number: str | None = Field(default=None, description='Part / reference number if stated.')
    model_name: str | None = Field(default=None, description='Model name if stated.')
    quantity: float | None = Field(default=None, description='Quantity offered or wanted.')
    unit: str | None = Field(default=None, description='Unit of the quantity, e.g. "each", "ft".')
    price: float | None = Field(default=None, description='Price per unit as a number.')
    currency: str | None = Field(default=None, description='ISO 4217 currency code, e.g. "USD".')
    condition: str | None = Field(
        default=None, description='Item condition, e.g. "New Old Stock", "Used", "BNIB".'
    )
    dial_color: str | None = Field(default=None, description='Dial color (watches).')
    case_material: str | None = Field(default=None, description='Case material (watches).')
    year: int | None = Field(default=None, description='Production year if stated.')
    case_size_mm: float | None = Field(default=None, description='Case size in mm (watches).')
    set_composition: str | None = Field(
        default=None, description='What is included, e.g. "box and papers".'
    )
    bracelet_strap: str | None = Field(default=None, description='Bracelet or strap type.')


class ExtractionResult(BaseModel):
    """Complete extraction result for one message."""

    intent: str = Field(
        default='unknown',
        description='"sell" if the sender offers items, "want" if they are looking for items, '
        'otherwise "unknown".',
    )
    items: list[ExtractedItem] = Field(
        default_factory=list,
        description='Every distinct item in the message. Empty if the message is not a trade listing.',
    )
    unknown_terms: list[str] = Field(
        default_factory=list,
        description='Acronyms or jargon in the message that you could not interpret.',
    )
    confidence: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description='Overall confidence (0.0 to 1.0) that the extraction is correct.',
    )

    @classmethod
    def fallback(cls) -> 'ExtractionResult':
        """Safe result used whenever extraction fails: no items, zero confidence."""
        return cls(intent='unknown', items=[], unknown_terms=[], confidence=0.0)


# =============================================================================
# Prompt Templates
# =============================================================================

EXTRACTION_SYSTEM_PROMPT = """You extract structured trade listings from messages posted in \
trade community chat groups.

Members post items they are SELLING or items they WANT to buy, often in a terse style \
with prices, quantities, part numbers and industry acronyms. Some messages are chatter \
and contain no listing at all.

## Rules
1. Classify the whole message as "sell", "want" or "unknown".
2. Return one item per distinct product. A message like "10x valves and 5x pumps" has two items.
3. Use the known category and manufacturer names below when one fits; otherwise give the \
name as written.
4. Acronyms already expanded in the text appear as "Expansion (ACRONYM)". Report any other \
acronym you cannot interpret in unknown_terms.
5. Never invent prices, quantities or part numbers that are not in the message.
6. Set confidence low when the message is ambiguous or not a listing.

## Known categories
{categories}

## Known manufacturers (aliases in parentheses)
{manufacturers}

## Known jargon
{jargon}
"""

EXTRACTION_USER_PROMPT = """Extract the listings from this message:

{message_text}"""


def build_extraction_prompt(
    message_text: str,
    category_names: list[str] | None = None,
    manufacturers: list[tuple[str, list[str]]] | None = None,
    jargon: list[tuple[str, str]] | None = None,
) -> list[dict[str, str]]:
    """
    Build the messages array for listing extraction.

    Args:
        message_text: The jargon-expanded message text
        category_names: Known category names
        manufacturers: (name, aliases) pairs for known manufacturers
        jargon: (acronym, expansion) pairs for verified jargon

    Returns:
        List of message dicts for the OpenAI API
    """
    categories_text = ', '.join(category_names) if category_names else '(none)'

    if manufacturers:
        manufacturers_text = ', '.join(
            f"{name} ({', '.join(aliases)})" if aliases else name
            for name, aliases in manufacturers
        )
    else:
        manufacturers_text = '(none)'

    if jargon:
        jargon_text = ', '.join(f'{acronym}={expansion}' for acronym, expansion in jargon)
    else:
        jargon_text = '(none)'

    return [
        {
            'role': 'system',
            'content': EXTRACTION_SYSTEM_PROMPT.format(
                categories=categories_text,
                manufacturers=manufacturers_text,
                jargon=jargon_text,
            ),
        },
        {'role': 'user', 'content': EXTRACTION_USER_PROMPT.format(message_text=message_text)},
    ]
