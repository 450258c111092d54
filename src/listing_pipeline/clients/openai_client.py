"""
OpenAI client for listing extraction and embeddings.

Extraction uses structured output parsed straight into a Pydantic model;
embeddings are stored on raw messages and listing descriptions for
similarity search. Transient API failures (connection, timeout, rate limit,
5xx) are retried with exponential backoff; anything else surfaces at once.
"""

import os
from typing import TypeVar

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import config
from ..logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T', bound=BaseModel)

TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)

_retry_transient = retry(
    retry=retry_if_exception_type(TRANSIENT_ERRORS),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    reraise=True,
)


class OpenAIClient:
    """
    Async OpenAI wrapper used by the extractor, the router and the pipeline.

    Models and embedding size default to OPENAI_EXTRACTION_MODEL,
    OPENAI_EMBEDDING_MODEL and OPENAI_EMBEDDING_DIMENSIONS.
    """

    def __init__(
        self,
        api_key: str | None = None,
        chat_model: str | None = None,
        embedding_model: str | None = None,
        embedding_dimensions: int | None = None,
    ):
        api_key = api_key or os.getenv('OPENAI_API_KEY')
        if not api_key:
            raise ValueError('OPENAI_API_KEY environment variable is required')

        self.chat_model = chat_model or config.OPENAI_EXTRACTION_MODEL
        self.embedding_model = embedding_model or config.OPENAI_EMBEDDING_MODEL
        self.embedding_dimensions = embedding_dimensions or config.OPENAI_EMBEDDING_DIMENSIONS
        self._client = AsyncOpenAI(api_key=api_key)

    @_retry_transient
    async def chat_completion_structured(
        self,
        messages: list[dict[str, str]],
        response_model: type[T],
        temperature: float = 0.0,
    ) -> T:
        """
        Run a chat completion and parse the reply into response_model.

        Raises:
            ValueError: If the model refused or returned nothing parseable
        """
        response = await self._client.chat.completions.parse(
            model=self.chat_model,
            messages=messages,  # type: ignore[arg-type]
            response_format=response_model,
            temperature=temperature,
        )
        message = response.choices[0].message
        if message.parsed is None:
            raise ValueError(f'No structured output from {self.chat_model}: {message.refusal or "empty reply"}')
        return message.parsed

    @_retry_transient
    async def create_embedding(self, text: str) -> list[float]:
        """Embed one text; whitespace runs (including newlines) collapse to single spaces."""
        response = await self._client.embeddings.create(
            model=self.embedding_model,
            input=' '.join(text.split()),
            dimensions=self.embedding_dimensions,
        )
        return response.data[0].embedding

    async def health_check(self) -> dict[str, bool | str]:
        """Confirm the key works and the extraction model is available."""
        try:
            await self._client.models.retrieve(self.chat_model)
        except openai.OpenAIError as e:
            logger.warning('openai.health_check_failed', error=str(e))
            return {'healthy': False, 'error': str(e)}
        return {
            'healthy': True,
            'chat_model': self.chat_model,
            'embedding_model': self.embedding_model,
        }

    async def close(self) -> None:
        await self._client.close()
