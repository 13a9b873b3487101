"""Extraction module: LLM-backed receipt classification and field extraction."""

from .prompts import PROMPT_VERSION, ReceiptExtractionPrompt
from .service import (
    ExtractionResult,
    OllamaExtractionClient,
    build_extraction_result,
    parse_extraction_response,
)

__all__ = [
    "ExtractionResult",
    "OllamaExtractionClient",
    "PROMPT_VERSION",
    "ReceiptExtractionPrompt",
    "build_extraction_result",
    "parse_extraction_response",
]
