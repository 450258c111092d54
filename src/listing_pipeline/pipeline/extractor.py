"""
Listing extraction service.

Turns jargon-expanded message text into an ExtractionResult using OpenAI
structured output. Extraction never raises for model-side problems: blank
text, API errors and unparseable replies all yield the fallback result
(intent unknown, no items, confidence 0), which produces no listings.
"""

from ..clients.openai_client import OpenAIClient
from ..config import config
from ..errors import wrap_openai_error
from ..logging import get_logger
from ..models.reference import JargonEntry
from ..prompts.extract_listings import ExtractionResult, build_extraction_prompt
from ..repository import TradeRepository

logger = get_logger(__name__)


class ListingExtractor:
    """
    Extracts structured listings from message text.

    Known category and manufacturer names are loaded from the repository and
    listed in the prompt so the model prefers names the router can resolve.
    """

    def __init__(
        self,
        openai_client: OpenAIClient,
        repository: TradeRepository | None = None,
        temperature: float | None = None,
    ):
        """
        Initialize the extractor.

        Args:
            openai_client: Configured OpenAI client
            repository: Source of known reference names (optional)
            temperature: Sampling temperature (defaults to OPENAI_EXTRACTION_TEMPERATURE)
        """
        self.openai_client = openai_client
        self.repository = repository
        self.temperature = (
            temperature if temperature is not None else config.OPENAI_EXTRACTION_TEMPERATURE
        )

    async def extract(
        self,
        text: str | None,
        jargon: list[JargonEntry] | None = None,
    ) -> ExtractionResult:
        """
        Extract listings from expanded message text.

        Args:
            text: Jargon-expanded message text
            jargon: Verified jargon entries to list in the prompt

        Returns:
            ExtractionResult, or ExtractionResult.fallback() on any model failure
        """
        if text is None or not text.strip():
            return ExtractionResult.fallback()

        # Reference lookups are storage reads, so their failures propagate
        category_names: list[str] = []
        manufacturers: list[tuple[str, list[str]]] = []
        if self.repository is not None:
            category_names = await self.repository.list_category_names()
            manufacturers = [
                (m.name, m.aliases) for m in await self.repository.list_active_manufacturers()
            ]

        messages = build_extraction_prompt(
            message_text=text,
            category_names=category_names,
            manufacturers=manufacturers,
            jargon=[(e.acronym, e.expansion) for e in (jargon or []) if e.verified],
        )

        try:
            result = await self.openai_client.chat_completion_structured(
                messages=messages,
                response_model=ExtractionResult,
                temperature=self.temperature,
            )
        except Exception as e:
            error = wrap_openai_error(e)
            logger.warning(
                'extractor.fallback',
                error=str(error),
                error_type=type(error).__name__,
            )
            return ExtractionResult.fallback()

        logger.info(
            'extractor.extracted',
            intent=result.intent,
            items=len(result.items),
            unknown_terms=len(result.unknown_terms),
            confidence=result.confidence,
        )
        return result
