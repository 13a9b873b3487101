"""Tests for the review workflow state machine."""

import json

import pytest

from subscript.errors import NotFoundError, ValidationError
from subscript.review import ReviewWorkflow
from subscript.schemas import Classification
from subscript.state_store import PendingStatus, StateStore

NETFLIX = {
    "vendor": "Netflix",
    "amount": 15.49,
    "currency": "usd",
    "cycle": "monthly",
    "next_billing": "2024-12-18",
    "category": "Entertainment",
}


def _queue(store: StateStore, classification, data, with_receipt: bool = False) -> int:
    """Insert a review item, optionally with a linked receipt."""
    payload = data if isinstance(data, str) else json.dumps(data)
    with store.session() as session:
        receipt_id = None
        if with_receipt:
            receipt_id = session.insert_receipt("Receipt", "shop@x.io", "2024-11-18")
        return session.insert_pending_import(
            "Receipt", "shop@x.io", "2024-11-18", classification, 0.9, payload, receipt_id
        )


@pytest.fixture
def workflow(store) -> ReviewWorkflow:
    return ReviewWorkflow(store)


class TestApproveSubscription:
    """Tests for committing subscriptions."""

    def test_creates_active_subscription(self, store, workflow):
        """Approval appends an active subscription without notes."""
        pending_id = _queue(store, "subscription", NETFLIX)

        result = workflow.approve(pending_id)

        assert result.classification is Classification.SUBSCRIPTION
        subs = store.list_subscriptions()
        assert len(subs) == 1
        assert subs[0].id == result.entity_id
        assert subs[0].name == "Netflix"
        assert subs[0].cost == 15.49
        assert subs[0].currency == "USD"
        assert subs[0].periodicity == "monthly"
        assert subs[0].next_date == "2024-12-18"
        assert subs[0].status == "active"
        assert subs[0].notes is None
        assert store.get_pending_import(pending_id).status is PendingStatus.APPROVED

    def test_subscriptions_always_appended(self, store, workflow):
        """Identical subscription approvals create separate rows."""
        workflow.approve(_queue(store, "subscription", NETFLIX))
        workflow.approve(_queue(store, "subscription", NETFLIX))

        assert len(store.list_subscriptions()) == 2

    def test_receipt_back_linked(self, store, workflow):
        """The linked receipt points at the new subscription."""
        pending_id = _queue(store, "subscription", NETFLIX, with_receipt=True)
        receipt_id = store.get_pending_import(pending_id).receipt_id

        result = workflow.approve(pending_id)

        receipt = store.get_receipt(receipt_id)
        assert receipt.subscription_id == result.entity_id
        assert receipt.domain_id is None

    def test_edited_data_used(self, store, workflow):
        """Edited data replaces the stored payload."""
        pending_id = _queue(store, "subscription", NETFLIX)
        edited = dict(NETFLIX, amount=17.99, cycle="yearly")

        workflow.approve(pending_id, edited_data=json.dumps(edited))

        sub = store.list_subscriptions()[0]
        assert sub.cost == 17.99
        assert sub.periodicity == "yearly"

    def test_edited_data_as_mapping(self, store, workflow):
        """Edited data may be passed as a dict."""
        pending_id = _queue(store, "subscription", NETFLIX)

        workflow.approve(pending_id, edited_data=dict(NETFLIX, vendor="Netflix Inc."))

        assert store.list_subscriptions()[0].name == "Netflix Inc."

    def test_camel_case_fields_accepted(self, store, workflow):
        """Field aliases used by hand-edited items are understood."""
        pending_id = _queue(
            store,
            "subscription",
            {"name": "Spotify", "cost": 9.99, "currency": "EUR", "billingCycle": "one time"},
        )

        workflow.approve(pending_id)

        sub = store.list_subscriptions()[0]
        assert sub.name == "Spotify"
        assert sub.periodicity == "one-time"

    def test_missing_required_field_no_mutation(self, store, workflow):
        """A payload without amount fails and leaves the item pending."""
        pending_id = _queue(store, "subscription", {"vendor": "Netflix", "cycle": "monthly"})

        with pytest.raises(ValidationError):
            workflow.approve(pending_id)

        assert store.get_pending_import(pending_id).status is PendingStatus.PENDING
        assert store.list_subscriptions() == []


class TestApproveDomain:
    """Tests for creating and merging domains."""

    def test_new_domain_defaults(self, store, workflow):
        """A new domain is active with auto_renew false when absent."""
        pending_id = _queue(
            store, "domain", {"domain_name": "example.com", "expiry_date": "2025-11-18"}
        )

        result = workflow.approve(pending_id)

        assert result.merged is False
        domain = store.list_domains()[0]
        assert domain.name == "example.com"
        assert domain.status == "active"
        assert domain.auto_renew is False

    def test_null_fields_preserve_existing_values(self, store, workflow):
        """Null optional fields never overwrite; expiry date always does."""
        first = _queue(
            store,
            "domain",
            {
                "domain_name": "example.com",
                "registrar": "Namecheap",
                "cost": 10.98,
                "currency": "USD",
                "expiry_date": "2025-11-18",
                "registration_date": "2020-11-18",
                "auto_renew": True,
            },
        )
        second = _queue(
            store,
            "domain",
            {
                "domain_name": "example.com",
                "registrar": None,
                "cost": None,
                "currency": None,
                "expiry_date": "2026-11-18",
                "registration_date": None,
                "auto_renew": None,
            },
        )

        first_result = workflow.approve(first)
        second_result = workflow.approve(second)

        assert second_result.merged is True
        assert second_result.entity_id == first_result.entity_id
        domains = store.list_domains()
        assert len(domains) == 1
        assert domains[0].registrar == "Namecheap"
        assert domains[0].cost == 10.98
        assert domains[0].currency == "USD"
        assert domains[0].registration_date == "2020-11-18"
        assert domains[0].auto_renew is True
        assert domains[0].expiry_date == "2026-11-18"

    def test_same_extraction_twice_merges(self, store, workflow):
        """Approving the same domain extraction twice keeps one row."""
        data = {"domain_name": "example.org", "expiry_date": "2025-01-01"}
        workflow.approve(_queue(store, "domain", data))
        workflow.approve(_queue(store, "domain", data))

        assert len(store.list_domains()) == 1

    def test_receipt_back_linked_to_merged_domain(self, store, workflow):
        """The receipt links to the existing domain on merge."""
        data = {"domain_name": "example.net", "expiry_date": "2025-01-01"}
        first = workflow.approve(_queue(store, "domain", data))
        pending_id = _queue(store, "domain", data, with_receipt=True)
        receipt_id = store.get_pending_import(pending_id).receipt_id

        workflow.approve(pending_id)

        receipt = store.get_receipt(receipt_id)
        assert receipt.domain_id == first.entity_id
        assert receipt.subscription_id is None


class TestApproveRejections:
    """Tests for approvals that must fail without mutation."""

    @pytest.mark.parametrize("classification", ["junk", None])
    def test_junk_or_missing_classification_fails(self, store, workflow, classification):
        """Junk and unclassified items cannot be approved."""
        pending_id = _queue(store, classification, {"reason": "newsletter"})

        with pytest.raises(ValidationError):
            workflow.approve(pending_id)

        assert store.get_pending_import(pending_id).status is PendingStatus.PENDING
        assert store.get_stats()["subscriptions"] == 0
        assert store.get_stats()["domains"] == 0

    def test_unknown_id(self, workflow):
        """Approving an unknown ID raises NotFoundError."""
        with pytest.raises(NotFoundError):
            workflow.approve(404)

    def test_reject_then_approve_fails(self, store, workflow):
        """A rejected item cannot be approved and creates no entity."""
        pending_id = _queue(store, "subscription", NETFLIX)
        workflow.reject(pending_id)

        with pytest.raises(ValidationError, match="rejected"):
            workflow.approve(pending_id)

        assert store.list_subscriptions() == []
        assert store.get_pending_import(pending_id).status is PendingStatus.REJECTED

    def test_double_approve_fails(self, store, workflow):
        """An approved item cannot be approved again."""
        pending_id = _queue(store, "subscription", NETFLIX)
        workflow.approve(pending_id)

        with pytest.raises(ValidationError):
            workflow.approve(pending_id)

        assert len(store.list_subscriptions()) == 1

    def test_invalid_json_payload(self, store, workflow):
        """A corrupt payload fails validation."""
        pending_id = _queue(store, "subscription", "{not json")

        with pytest.raises(ValidationError):
            workflow.approve(pending_id)


class TestReject:
    """Tests for rejection."""

    def test_reject_sets_status_only(self, store, workflow):
        """Rejecting creates nothing and leaves the receipt unlinked."""
        pending_id = _queue(store, "domain", {"domain_name": "x.io"}, with_receipt=True)
        receipt_id = store.get_pending_import(pending_id).receipt_id

        workflow.reject(pending_id)

        assert store.get_pending_import(pending_id).status is PendingStatus.REJECTED
        assert store.list_domains() == []
        receipt = store.get_receipt(receipt_id)
        assert receipt.domain_id is None and receipt.subscription_id is None

    def test_reject_twice_fails(self, store, workflow):
        """A terminal item cannot be rejected again."""
        pending_id = _queue(store, "junk", {})
        workflow.reject(pending_id)

        with pytest.raises(ValidationError):
            workflow.reject(pending_id)

    def test_reject_unknown(self, workflow):
        """Rejecting an unknown ID raises NotFoundError."""
        with pytest.raises(NotFoundError):
            workflow.reject(1)

    def test_list_pending(self, store, workflow):
        """Rejected items drop out of the queue."""
        keep = _queue(store, "junk", {})
        drop = _queue(store, "junk", {})
        workflow.reject(drop)

        assert [r.id for r in workflow.list_pending()] == [keep]


class TestBatchOperations:
    """Tests for fail-fast batches."""

    def test_batch_approve_all(self, store, workflow):
        """Every item in the batch is approved in order."""
        ids = [_queue(store, "subscription", NETFLIX) for _ in range(3)]

        results = workflow.batch_approve(ids)

        assert [r.pending_id for r in results] == ids
        assert len(store.list_subscriptions()) == 3

    def test_batch_approve_stops_at_first_failure(self, store, workflow):
        """Items before the failure stay approved; items after are untouched."""
        ok = _queue(store, "subscription", NETFLIX)
        bad = _queue(store, "junk", {})
        after = _queue(store, "subscription", NETFLIX)

        with pytest.raises(ValidationError):
            workflow.batch_approve([ok, bad, after])

        assert store.get_pending_import(ok).status is PendingStatus.APPROVED
        assert store.get_pending_import(bad).status is PendingStatus.PENDING
        assert store.get_pending_import(after).status is PendingStatus.PENDING
        assert len(store.list_subscriptions()) == 1

    def test_batch_reject_stops_at_first_failure(self, store, workflow):
        """A missing ID stops the batch."""
        first = _queue(store, "junk", {})
        last = _queue(store, "junk", {})

        with pytest.raises(NotFoundError):
            workflow.batch_reject([first, 999, last])

        assert store.get_pending_import(first).status is PendingStatus.REJECTED
        assert store.get_pending_import(last).status is PendingStatus.PENDING
