"""Test fixtures and utilities."""

from email.message import EmailMessage
from pathlib import Path

import pytest

from subscript.config import Config, ImapConfig, LLMConfig, StorageConfig
from subscript.state_store import StateStore

SAMPLE_RECEIPT_TEXT = """
Netflix

Your monthly membership receipt

Plan: Standard
Amount charged: $15.49 USD
Billing period: Nov 18, 2024 - Dec 17, 2024
Next billing date: December 18, 2024
"""

SAMPLE_DOMAIN_RENEWAL_TEXT = """
Namecheap Order Summary

example.com - Domain Registration Renewal - 1 year
Price: $10.98
New expiration date: 2025-11-18
Auto-Renew: ON
"""


def build_message(
    subject: str = "Your receipt",
    sender: str = "billing@example.com",
    date: str = "Mon, 18 Nov 2024 10:00:00 +0000",
    text: str | None = "Thanks for your payment.",
    html: str | None = None,
    attachments: list[tuple[str, str, bytes]] | None = None,
) -> bytes:
    """Build raw RFC 822 bytes.

    attachments: (filename, content_type, data) tuples
    """
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["Date"] = date

    if text is not None:
        msg.set_content(text)
        if html is not None:
            msg.add_alternative(html, subtype="html")
    elif html is not None:
        msg.set_content(html, subtype="html")

    for filename, content_type, data in attachments or []:
        maintype, subtype = content_type.split("/", 1)
        msg.add_attachment(data, maintype=maintype, subtype=subtype, filename=filename)

    return msg.as_bytes()


@pytest.fixture
def sample_receipt_text() -> str:
    """Sample subscription receipt text."""
    return SAMPLE_RECEIPT_TEXT


@pytest.fixture
def sample_domain_text() -> str:
    """Sample domain renewal text."""
    return SAMPLE_DOMAIN_RENEWAL_TEXT


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store."""
    return StateStore(temp_db)


@pytest.fixture
def config(tmp_path) -> Config:
    """Fully configured application config writing into tmp_path."""
    return Config(
        imap=ImapConfig(
            host="imap.example.com",
            username="user@example.com",
            password="secret",
        ),
        llm=LLMConfig(ollama_url="http://localhost:11434", model="llama3"),
        storage=StorageConfig(data_dir=tmp_path / "data"),
    )


@pytest.fixture
def make_message():
    """Factory for raw RFC 822 message bytes."""
    return build_message
