"""
Prompt templates and structured-output models for LLM calls.
"""

from .extract_listings import (
    ExtractedItem,
    ExtractionResult,
    build_extraction_prompt,
)

__all__ = [
    'ExtractedItem',
    'ExtractionResult',
    'build_extraction_prompt',
]
