"""Tests for the converter adapter and content selection."""

import os
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from subscript.content import (
    ContentSelector,
    ContentSource,
    DocumentConverter,
    MarkItDownConverter,
)
from subscript.errors import ConversionError
from subscript.schemas import Attachment, DecomposedMessage


class RecordingConverter(DocumentConverter):
    """Converter returning canned text and recording each call."""

    def __init__(self, fail_extensions: tuple[str, ...] = ()):
        self.calls: list[tuple[bytes, str]] = []
        self.fail_extensions = fail_extensions

    def convert(self, data: bytes, extension: str) -> str:
        self.calls.append((data, extension))
        if extension in self.fail_extensions:
            raise ConversionError(f"cannot convert {extension}")
        return f"converted {extension}"


def _message(attachments: list[Attachment] | None = None, body: str = "<p>body</p>"):
    return DecomposedMessage(
        subject="Receipt",
        sender="shop@example.com",
        date="Mon, 18 Nov 2024 10:00:00 +0000",
        body=body,
        attachments=attachments or [],
    )


PDF = Attachment("invoice.pdf", "application/pdf", b"%PDF")
JPEG = Attachment("scan.jpg", "image/jpeg", b"\xff\xd8")
PNG = Attachment("scan.png", "image/png", b"\x89PNG")
ZIP = Attachment("files.zip", "application/zip", b"PK")


class TestContentSelector:
    """Tests for priority order and failure handling."""

    def test_pdf_preferred(self):
        """A PDF attachment wins over images and the body."""
        converter = RecordingConverter()
        selected = ContentSelector(converter).select(_message([JPEG, ZIP, PDF]))

        assert selected.source is ContentSource.PDF
        assert selected.markdown == "converted .pdf"
        assert selected.mime_type == "application/pdf"
        assert selected.data == b"%PDF"
        assert converter.calls == [(b"%PDF", ".pdf")]

    def test_first_pdf_wins(self):
        """Among several PDFs the first is used."""
        second = Attachment("second.pdf", "application/pdf", b"%PDF-2")
        selected = ContentSelector(RecordingConverter()).select(_message([PDF, second]))

        assert selected.attachment is PDF

    def test_image_when_no_pdf(self):
        """JPEG or PNG is used when there is no PDF."""
        selected = ContentSelector(RecordingConverter()).select(_message([ZIP, PNG, JPEG]))

        assert selected.source is ContentSource.IMAGE
        assert selected.attachment is PNG
        assert selected.markdown == "converted .png"

    def test_jpeg_extension(self):
        """JPEG attachments are converted with a .jpg hint."""
        converter = RecordingConverter()
        ContentSelector(converter).select(_message([JPEG]))

        assert converter.calls[0][1] == ".jpg"

    def test_body_as_html_fallback(self):
        """Without a usable attachment the body is converted as HTML."""
        converter = RecordingConverter()
        selected = ContentSelector(converter).select(_message([ZIP], body="<b>hi</b>"))

        assert selected.source is ContentSource.BODY
        assert selected.attachment is None
        assert selected.mime_type is None
        assert selected.data is None
        assert converter.calls == [(b"<b>hi</b>", ".html")]

    def test_conversion_failure_is_hard_by_default(self):
        """A failing PDF conversion fails the message; no fallback is attempted."""
        converter = RecordingConverter(fail_extensions=(".pdf",))

        with pytest.raises(ConversionError):
            ContentSelector(converter).select(_message([PDF, PNG]))
        assert len(converter.calls) == 1

    def test_fallback_tries_next_candidate(self):
        """With fallback enabled the next candidate is converted."""
        converter = RecordingConverter(fail_extensions=(".pdf",))
        selected = ContentSelector(converter, fallback_on_error=True).select(_message([PDF, PNG]))

        assert selected.source is ContentSource.IMAGE
        assert [ext for _, ext in converter.calls] == [".pdf", ".png"]

    def test_fallback_all_fail(self):
        """With fallback enabled, failure of every candidate raises."""
        converter = RecordingConverter(fail_extensions=(".pdf", ".html"))

        with pytest.raises(ConversionError, match=".html"):
            ContentSelector(converter, fallback_on_error=True).select(_message([PDF]))

    def test_no_candidates_raises(self):
        """A selector with nothing to convert raises ConversionError."""
        selector = ContentSelector(RecordingConverter(), fallback_on_error=True)

        with patch.object(selector, "candidates", return_value=[]):
            with pytest.raises(ConversionError, match="No convertible content"):
                selector.select(_message([]))


class TestMarkItDownConverter:
    """Tests for the out-of-process converter."""

    @patch("subscript.content.converter.subprocess.run")
    def test_successful_conversion(self, mock_run: MagicMock):
        """stdout of `python -m markitdown <file>` is returned."""
        mock_run.return_value = subprocess.CompletedProcess(
            args=[], returncode=0, stdout=b"# Invoice\nTotal 10", stderr=b""
        )

        result = MarkItDownConverter(python_executable="/usr/bin/python3").convert(b"%PDF", "pdf")

        assert result == "# Invoice\nTotal 10"
        cmd = mock_run.call_args.args[0]
        assert cmd[:3] == ["/usr/bin/python3", "-m", "markitdown"]
        assert cmd[3].endswith(".pdf")
        assert mock_run.call_args.kwargs["timeout"] == 60

    @patch("subscript.content.converter.subprocess.run")
    def test_temp_file_removed(self, mock_run: MagicMock):
        """The temporary input file is deleted after conversion."""
        mock_run.return_value = subprocess.CompletedProcess([], 0, b"text", b"")

        MarkItDownConverter().convert(b"<p>x</p>", ".html")

        path = mock_run.call_args.args[0][3]

        assert not os.path.exists(path)

    @patch("subscript.content.converter.subprocess.run")
    def test_nonzero_exit(self, mock_run: MagicMock):
        """A failing converter process raises ConversionError with stderr."""
        mock_run.return_value = subprocess.CompletedProcess([], 1, b"", b"UnsupportedFormat")

        with pytest.raises(ConversionError, match="UnsupportedFormat"):
            MarkItDownConverter().convert(b"??", ".pdf")

    @patch("subscript.content.converter.subprocess.run")
    def test_timeout(self, mock_run: MagicMock):
        """A hung converter is killed and reported."""
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="markitdown", timeout=5)

        with pytest.raises(ConversionError, match="timed out"):
            MarkItDownConverter(timeout_seconds=5).convert(b"%PDF", ".pdf")

    @patch("subscript.content.converter.subprocess.run")
    def test_missing_executable(self, mock_run: MagicMock):
        """An interpreter that cannot be started raises ConversionError."""
        mock_run.side_effect = FileNotFoundError("no such file")

        with pytest.raises(ConversionError, match="execute"):
            MarkItDownConverter(python_executable="/nope/python").convert(b"x", ".pdf")

    @patch("subscript.content.converter.subprocess.run")
    def test_empty_output(self, mock_run: MagicMock):
        """Whitespace-only output is a conversion failure."""
        mock_run.return_value = subprocess.CompletedProcess([], 0, b"  \n", b"")

        with pytest.raises(ConversionError, match="no text"):
            MarkItDownConverter().convert(b"\x89PNG", ".png")
