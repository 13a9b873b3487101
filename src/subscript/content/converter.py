"""
Document-to-markdown converter adapter.
"""

import logging
import os
import subprocess
import sys
import tempfile
from abc import ABC, abstractmethod

from ..errors import ConversionError

logger = logging.getLogger(__name__)


class DocumentConverter(ABC):
    """
    Base class for converters turning binary content into markdown/plain text.

    Implementations receive the raw bytes plus a suggested file extension
    (".pdf", ".jpg", ".png", ".html") and either return text or raise
    ConversionError.
    """

    @abstractmethod
    def convert(self, data: bytes, extension: str) -> str:
        """
        Convert content to markdown.

        Args:
            data: Raw content bytes
            extension: Suggested extension including the dot

        Returns:
            Markdown/plain-text representation

        Raises:
            ConversionError: If the content cannot be converted
        """
        pass


class MarkItDownConverter(DocumentConverter):
    """
    Converter backed by Microsoft MarkItDown, run as `python -m markitdown`.

    Running out of process gives every conversion a hard timeout; a stuck PDF
    parser is killed instead of stalling the sync run. An in-process
    `MarkItDown().convert()` call cannot be interrupted once it hangs, so the
    `markitdown` package is only driven through its command-line module.
    """

    def __init__(self, python_executable: str | None = None, timeout_seconds: int = 60):
        self.python_executable = python_executable or sys.executable
        self.timeout_seconds = timeout_seconds

    def convert(self, data: bytes, extension: str) -> str:
        if not extension.startswith("."):
            extension = f".{extension}"

        # markitdown picks its converter from the file extension
        fd, path = tempfile.mkstemp(suffix=extension, prefix="subscript-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)

            logger.debug("Converting %d bytes as %s", len(data), extension)
            try:
                result = subprocess.run(
                    [self.python_executable, "-m", "markitdown", path],
                    capture_output=True,
                    timeout=self.timeout_seconds,
                    check=False,
                )
            except subprocess.TimeoutExpired as e:
                raise ConversionError(
                    f"MarkItDown timed out after {self.timeout_seconds}s converting {extension}"
                ) from e
            except OSError as e:
                raise ConversionError(f"Failed to execute markitdown: {e}") from e
        finally:
            try:
                os.unlink(path)
            except OSError:
                logger.warning("Could not remove temporary file %s", path)

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise ConversionError(f"MarkItDown failed for {extension}: {stderr or 'no output'}")

        markdown = result.stdout.decode("utf-8", errors="replace")
        if not markdown.strip():
            raise ConversionError(f"MarkItDown produced no text for {extension}")

        logger.debug("MarkItDown returned %d chars", len(markdown))
        return markdown
