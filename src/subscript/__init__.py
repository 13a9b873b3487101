"""
Mail receipts → Structured extraction → Human-in-the-loop → Subscription ledger

Fetches unread receipt mail, converts the most informative part of each message
to text, classifies it with a local LLM and queues the result for review before
anything reaches the subscription and domain ledger.
"""

__version__ = "0.1.0"
