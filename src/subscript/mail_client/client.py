"""
IMAP fetcher for unseen receipt mail.
"""

import imaplib
import logging
import ssl
from dataclasses import dataclass

from ..config import ImapConfig
from ..errors import TransportError
from ..schemas.message import DecomposedMessage
from .mime import MimeDecomposer

logger = logging.getLogger(__name__)


@dataclass
class FetchedMessage:
    """Outcome of fetching one unseen message.

    Exactly one of `message` and `error` is set. A failed fetch does not
    abort the listing; the orchestrator records it as a failed item.
    """

    uid: str
    message: DecomposedMessage | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.message is not None


class ImapFetcher:
    """
    Client for a single IMAP mailbox.

    Features:
    - Implicit TLS (IMAPS) or plain connections
    - Socket timeout on connect and every command
    - Per-message isolation: one bad message never hides the others

    Fetching with RFC822 marks messages as seen on the server, so a message
    is offered to the pipeline once.
    """

    def __init__(self, config: ImapConfig, decomposer: MimeDecomposer | None = None):
        """
        Initialize fetcher.

        Args:
            config: Mail server settings
            decomposer: MIME decomposer (default: MimeDecomposer())
        """
        self.config = config
        self.decomposer = decomposer or MimeDecomposer()
        self._conn: imaplib.IMAP4 | None = None

    # Lifecycle

    def connect(self) -> None:
        """Connect, authenticate and select the mailbox.

        Raises:
            TransportError: If any of the three steps fails.
        """
        host, port = self.config.host, self.config.port
        logger.info("Connecting to IMAP %s:%d as %s", host, port, self.config.username)

        conn: imaplib.IMAP4 | None = None
        try:
            if self.config.use_ssl:
                conn = imaplib.IMAP4_SSL(
                    host,
                    port,
                    ssl_context=ssl.create_default_context(),
                    timeout=self.config.timeout_seconds,
                )
            else:
                conn = imaplib.IMAP4(host, port, timeout=self.config.timeout_seconds)
        except (imaplib.IMAP4.error, OSError) as e:
            raise TransportError(f"Failed to connect to IMAP server {host}:{port}: {e}") from e

        try:
            conn.login(self.config.username, self.config.password)
        except (imaplib.IMAP4.error, OSError) as e:
            self._safe_logout(conn)
            raise TransportError(f"Failed to login to IMAP server: {e}") from e

        try:
            status, data = conn.select(self.config.mailbox)
        except (imaplib.IMAP4.error, OSError) as e:
            self._safe_logout(conn)
            raise TransportError(f"Failed to select mailbox {self.config.mailbox}: {e}") from e
        if status != "OK":
            self._safe_logout(conn)
            raise TransportError(f"Failed to select mailbox {self.config.mailbox}: {data!r}")

        self._conn = conn

    def disconnect(self) -> None:
        """Close mailbox and logout."""
        if self._conn is None:
            return
        try:
            self._conn.close()
        except (imaplib.IMAP4.error, OSError):
            pass
        self._safe_logout(self._conn)
        self._conn = None
        logger.debug("IMAP connection closed")

    def __enter__(self) -> "ImapFetcher":
        self.connect()
        return self

    def __exit__(self, *args) -> None:
        self.disconnect()

    @staticmethod
    def _safe_logout(conn: imaplib.IMAP4) -> None:
        try:
            conn.logout()
        except (imaplib.IMAP4.error, OSError):
            pass

    def test_connection(self) -> None:
        """Log in and out once.

        Raises:
            TransportError: If the server is unreachable or rejects the login.
        """
        with self:
            pass
        logger.info("IMAP connection test succeeded for %s", self.config.host)

    # Message retrieval

    def fetch_unseen(self) -> list[FetchedMessage]:
        """
        Fetch and decompose every message not yet marked seen.

        Returns:
            One FetchedMessage per unseen UID, in server order.

        Raises:
            TransportError: If connecting, logging in, selecting the mailbox
                or listing unseen messages fails.
        """
        with self:
            uids = self._search_unseen()
            logger.info("Found %d unseen message(s) in %s", len(uids), self.config.mailbox)
            return [self._fetch_one(uid) for uid in uids]

    def _search_unseen(self) -> list[str]:
        if self._conn is None:
            raise TransportError("Not connected to IMAP server")
        try:
            status, data = self._conn.uid("SEARCH", None, "UNSEEN")
        except (imaplib.IMAP4.error, OSError) as e:
            raise TransportError(f"Failed to list unseen messages: {e}") from e
        if status != "OK":
            raise TransportError(f"Failed to list unseen messages: {data!r}")
        if not data or not data[0]:
            return []
        return [uid.decode() for uid in data[0].split()]

    def _fetch_one(self, uid: str) -> FetchedMessage:
        if self._conn is None:
            raise TransportError("Not connected to IMAP server")
        try:
            status, msg_data = self._conn.uid("FETCH", uid, "(RFC822)")
        except (imaplib.IMAP4.error, OSError) as e:
            logger.error("Failed to fetch message uid=%s: %s", uid, e)
            return FetchedMessage(uid=uid, error=f"Fetch failed: {e}")

        raw_bytes = self._raw_from_fetch(msg_data) if status == "OK" else None
        if raw_bytes is None:
            logger.error("Server returned no body for message uid=%s (status %s)", uid, status)
            return FetchedMessage(uid=uid, error=f"No message body returned (status {status})")

        try:
            message = self.decomposer.decompose(raw_bytes, uid=uid)
        except (ValueError, LookupError, UnicodeError) as e:
            logger.error("Failed to decompose message uid=%s: %s", uid, e)
            return FetchedMessage(uid=uid, error=f"Malformed message: {e}")

        return FetchedMessage(uid=uid, message=message)

    @staticmethod
    def _raw_from_fetch(msg_data: list) -> bytes | None:
        """Pick the literal out of an imaplib FETCH response."""
        for item in msg_data or []:
            if isinstance(item, tuple) and len(item) >= 2 and isinstance(item[1], bytes):
                return item[1]
        return None
