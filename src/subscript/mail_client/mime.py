"""
MIME decomposition: raw RFC 822 bytes → DecomposedMessage.
"""

import email
import email.policy
import logging
from email.message import EmailMessage

from ..schemas.message import Attachment, DecomposedMessage

logger = logging.getLogger(__name__)


class MimeDecomposer:
    """
    Stateless decomposer for fetched mail.

    Walks the part tree depth-first:
    - Parts with an attachment disposition are kept verbatim as Attachments
    - Other text/plain parts are concatenated into the body
    - text/html is used as the body only when no text/plain part exists
    """

    def decompose(self, raw_bytes: bytes, uid: str | None = None) -> DecomposedMessage:
        """Parse one message into headers, a single body and its attachments."""
        msg = email.message_from_bytes(raw_bytes, policy=email.policy.default)

        plain_parts: list[str] = []
        html_parts: list[str] = []
        attachments: list[Attachment] = []

        for part in msg.walk():
            # Multipart containers have no content of their own
            if part.is_multipart():
                continue

            if part.get_content_disposition() == "attachment":
                attachments.append(
                    Attachment(
                        filename=part.get_filename() or "unnamed",
                        content_type=part.get_content_type(),
                        data=part.get_payload(decode=True) or b"",
                    )
                )
                continue

            content_type = part.get_content_type()
            if content_type == "text/plain":
                plain_parts.append(self._part_text(part))
            elif content_type == "text/html":
                html_parts.append(self._part_text(part))

        if plain_parts:
            body, body_is_html = "\n".join(plain_parts), False
        else:
            body, body_is_html = "\n".join(html_parts), bool(html_parts)

        decomposed = DecomposedMessage(
            subject=str(msg.get("Subject", "") or ""),
            sender=str(msg.get("From", "") or ""),
            date=str(msg.get("Date", "") or ""),
            body=body,
            attachments=attachments,
            body_is_html=body_is_html,
            uid=uid,
        )
        logger.debug(
            "Decomposed message uid=%s: %d body chars, %d attachment(s)",
            uid,
            len(body),
            len(attachments),
        )
        return decomposed

    def _part_text(self, part: EmailMessage) -> str:
        """Decode a text part, tolerating unknown or wrong charsets."""
        try:
            content = part.get_content()
        except (LookupError, UnicodeDecodeError):
            payload = part.get_payload(decode=True) or b""
            return payload.decode("utf-8", errors="replace")
        if isinstance(content, bytes):
            return content.decode("utf-8", errors="replace")
        return content
