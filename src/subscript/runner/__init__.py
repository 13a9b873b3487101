"""
CLI runner module.

Provides commands:
- sync: Fetch unseen mail and queue extractions
- pending / approve / reject / create-pending: Review queue
- models / test-imap: Check external services
- status / purge-receipts / clear-test-db: Store maintenance
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
