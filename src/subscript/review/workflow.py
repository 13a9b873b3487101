"""
Review workflow management.

A review item moves from `pending` to `approved` or `rejected` exactly once.
Approval commits the extracted payload to the ledger, links the receipt and
records the transition in one transaction.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

from ..errors import NotFoundError, ValidationError
from ..schemas.extraction import (
    Classification,
    DomainExtraction,
    JunkExtraction,
    SubscriptionExtraction,
    parse_extraction,
)
from ..state_store import PendingImportRecord, PendingStatus, StateStore, StoreSession

logger = logging.getLogger(__name__)


@dataclass
class ApprovalResult:
    """Entity committed by an approval."""

    pending_id: int
    classification: Classification
    entity_id: int
    merged: bool = False  # domain already existed


class ReviewWorkflow:
    """
    Manages the review workflow against one store.

    Responsibilities:
    - List items awaiting review
    - Commit approved items (append subscriptions, create or merge domains)
    - Record rejections
    """

    def __init__(self, store: StateStore):
        """Initialize with state store."""
        self.store = store

    def list_pending(self) -> list[PendingImportRecord]:
        """Get all items pending review, newest first."""
        return self.store.list_pending_imports()

    def approve(
        self,
        pending_id: int,
        edited_data: str | dict[str, Any] | None = None,
    ) -> ApprovalResult:
        """
        Approve a review item.

        Args:
            pending_id: ID of the review item
            edited_data: Replacement payload (JSON string or mapping); the
                stored extracted data is used when omitted

        Returns:
            ApprovalResult naming the committed entity

        Raises:
            NotFoundError: No review item with this ID
            ValidationError: Item is not pending, classification is junk or
                missing, or the payload lacks required fields
        """
        if isinstance(edited_data, dict):
            edited_data = json.dumps(edited_data)

        with self.store.session() as session:
            record = session.get_pending_import(pending_id)
            if record is None:
                raise NotFoundError("Pending import", pending_id)
            if record.is_terminal:
                raise ValidationError(
                    f"Pending import {pending_id} is already {record.status.value}"
                )

            payload = edited_data if edited_data is not None else record.extracted_data
            extraction = parse_extraction(record.classification, payload)

            if isinstance(extraction, SubscriptionExtraction):
                result = self._commit_subscription(session, record, extraction)
            elif isinstance(extraction, DomainExtraction):
                result = self._commit_domain(session, record, extraction)
            elif isinstance(extraction, JunkExtraction):
                raise ValidationError(f"Pending import {pending_id} is junk and cannot be approved")
            else:
                raise ValidationError(f"Unsupported extraction for pending import {pending_id}")

            session.set_pending_status(pending_id, PendingStatus.APPROVED)

        logger.info(
            "Approved pending import %d as %s %d%s",
            pending_id,
            result.classification.value,
            result.entity_id,
            " (merged)" if result.merged else "",
        )
        return result

    def _commit_subscription(
        self,
        session: StoreSession,
        record: PendingImportRecord,
        extraction: SubscriptionExtraction,
    ) -> ApprovalResult:
        subscription_id = session.insert_subscription(extraction)
        if record.receipt_id is not None:
            session.link_receipt(record.receipt_id, subscription_id=subscription_id)
        return ApprovalResult(
            pending_id=record.id,
            classification=Classification.SUBSCRIPTION,
            entity_id=subscription_id,
        )

    def _commit_domain(
        self,
        session: StoreSession,
        record: PendingImportRecord,
        extraction: DomainExtraction,
    ) -> ApprovalResult:
        existing = session.find_domain_by_name(extraction.domain_name)
        if existing is not None:
            session.merge_domain(existing.id, extraction)
            domain_id, merged = existing.id, True
        else:
            domain_id, merged = session.insert_domain(extraction), False
        if record.receipt_id is not None:
            session.link_receipt(record.receipt_id, domain_id=domain_id)
        return ApprovalResult(
            pending_id=record.id,
            classification=Classification.DOMAIN,
            entity_id=domain_id,
            merged=merged,
        )

    def reject(self, pending_id: int) -> None:
        """
        Reject a review item. No entity is created and receipt links are untouched.

        Raises:
            NotFoundError: No review item with this ID
            ValidationError: Item is not pending
        """
        with self.store.session() as session:
            record = session.get_pending_import(pending_id)
            if record is None:
                raise NotFoundError("Pending import", pending_id)
            if record.is_terminal:
                raise ValidationError(
                    f"Pending import {pending_id} is already {record.status.value}"
                )
            session.set_pending_status(pending_id, PendingStatus.REJECTED)
        logger.info("Rejected pending import %d", pending_id)

    def batch_approve(self, pending_ids: list[int]) -> list[ApprovalResult]:
        """Approve items in order. The first failure stops the batch.

        Items approved before the failure stay approved.
        """
        return [self.approve(pending_id) for pending_id in pending_ids]

    def batch_reject(self, pending_ids: list[int]) -> None:
        """Reject items in order. The first failure stops the batch."""
        for pending_id in pending_ids:
            self.reject(pending_id)
