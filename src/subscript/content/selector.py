"""
Content selector - picks the one representation of a message fed to extraction.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from ..errors import ConversionError
from ..schemas.message import Attachment, DecomposedMessage
from .converter import DocumentConverter

logger = logging.getLogger(__name__)


class ContentSource(str, Enum):
    """Where the selected text came from."""

    PDF = "pdf"
    IMAGE = "image"
    BODY = "body"


@dataclass
class SelectedContent:
    """Converted text plus the attachment it came from (if any)."""

    markdown: str
    source: ContentSource
    attachment: Attachment | None = None

    @property
    def mime_type(self) -> str | None:
        return self.attachment.content_type if self.attachment else None

    @property
    def data(self) -> bytes | None:
        return self.attachment.data if self.attachment else None


@dataclass
class _Candidate:
    source: ContentSource
    data: bytes
    extension: str
    attachment: Attachment | None


class ContentSelector:
    """
    Chooses and converts the most informative part of a message.

    Priority order, first match wins:
    1. First attachment whose content-type contains "pdf"
    2. First attachment whose content-type is image/jpeg or image/png
    3. The message body, treated as HTML

    By default a conversion failure on the chosen candidate fails the message.
    With `fallback_on_error=True` the next candidate in priority order is tried
    instead.
    """

    def __init__(self, converter: DocumentConverter, fallback_on_error: bool = False):
        self.converter = converter
        self.fallback_on_error = fallback_on_error

    def candidates(self, message: DecomposedMessage) -> list[_Candidate]:
        """Ordered conversion candidates for a message."""
        result: list[_Candidate] = []

        pdf = next(
            (a for a in message.attachments if "pdf" in a.content_type.lower()),
            None,
        )
        if pdf is not None:
            result.append(_Candidate(ContentSource.PDF, pdf.data, ".pdf", pdf))

        image = next(
            (
                a
                for a in message.attachments
                if "image/jpeg" in a.content_type.lower() or "image/png" in a.content_type.lower()
            ),
            None,
        )
        if image is not None:
            ext = ".jpg" if "jpeg" in image.content_type.lower() else ".png"
            result.append(_Candidate(ContentSource.IMAGE, image.data, ext, image))

        result.append(_Candidate(ContentSource.BODY, message.body.encode("utf-8"), ".html", None))
        return result

    def select(self, message: DecomposedMessage) -> SelectedContent:
        """
        Convert the highest-priority candidate.

        Raises:
            ConversionError: If conversion of the chosen candidate fails (or,
                with fallback enabled, if every candidate fails).
        """
        last_error: ConversionError | None = None

        for candidate in self.candidates(message):
            try:
                markdown = self.converter.convert(candidate.data, candidate.extension)
            except ConversionError as e:
                if not self.fallback_on_error:
                    raise
                logger.warning(
                    "Conversion of %s failed for '%s', trying next candidate: %s",
                    candidate.source.value,
                    message.subject,
                    e,
                )
                last_error = e
                continue

            logger.debug("Selected %s content for '%s'", candidate.source.value, message.subject)
            return SelectedContent(
                markdown=markdown,
                source=candidate.source,
                attachment=candidate.attachment,
            )

        # Only reachable with fallback enabled; the body is always a candidate
        if last_error is None:
            raise ConversionError(f"No convertible content in '{message.subject}'")
        raise last_error
