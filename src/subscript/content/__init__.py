"""
Content selection and document conversion.

Provides:
- Converter adapter interface and the MarkItDown implementation
- Priority-ordered selection: PDF, then image, then body
"""

from .converter import DocumentConverter, MarkItDownConverter
from .selector import ContentSelector, ContentSource, SelectedContent

__all__ = [
    "ContentSelector",
    "ContentSource",
    "DocumentConverter",
    "MarkItDownConverter",
    "SelectedContent",
]
