"""
Transient mail objects handed from the fetcher to the content selector.
"""

from dataclasses import dataclass, field


@dataclass
class Attachment:
    """A MIME part with an attachment disposition, kept verbatim."""

    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class DecomposedMessage:
    """
    One mail message split into headers, a single body and its attachments.

    `body` holds the concatenated text/plain parts. When the message has no
    text/plain part it holds the HTML body verbatim and `body_is_html` is set.
    """

    subject: str
    sender: str
    date: str
    body: str
    attachments: list[Attachment] = field(default_factory=list)
    body_is_html: bool = False
    uid: str | None = None
