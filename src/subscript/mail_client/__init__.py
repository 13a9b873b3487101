"""
Mail client.

Provides:
- Authenticated IMAP retrieval of unseen messages
- Depth-first MIME decomposition into body and attachments
- Per-message fetch isolation
"""

from .client import FetchedMessage, ImapFetcher
from .mime import MimeDecomposer

__all__ = [
    "FetchedMessage",
    "ImapFetcher",
    "MimeDecomposer",
]
