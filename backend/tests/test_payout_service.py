import uuid
from datetime import date, datetime

import pytest

from orderflow.errors import InvalidInputError, InvalidStateError, NotFoundError
from orderflow.services import payout_service
from orderflow.services.checkout_service import checkout
from orderflow.services.dispatch_service import create_job, get_job
from orderflow.services.payout_service import record_completion, resolve_payout_amount, review_payout

from conftest import make_recipient


COMPLETED_AT = datetime(2026, 3, 4, 16, 30)  # a Wednesday


@pytest.fixture
def checked_out(app, workflow, cart, contact):
    return checkout(cart, contact)


class TestRecordCompletion:
    def test_creates_entry_from_frozen_subtotal(self, app, store, checked_out):
        result = record_completion(checked_out.job_id, completed_at=COMPLETED_AT)

        entry = result.entry
        assert result.outcome == payout_service.OUTCOME_CREATED
        assert entry["amount_cents"] == 7000
        assert entry["status"] == "pending"
        assert entry["payout_type"] == "job"
        assert entry["period_start"] == date(2026, 3, 2)
        assert entry["period_end"] == date(2026, 3, 8)
        assert get_job(checked_out.job_id)["status"] == "completed"
        # Legacy FK satisfied with a shim row
        assert store.select("jobs", {"job_id": checked_out.job_id})

    def test_double_completion_is_unchanged(self, app, store, checked_out):
        first = record_completion(checked_out.job_id, completed_at=COMPLETED_AT)
        second = record_completion(checked_out.job_id, completed_at=COMPLETED_AT)

        assert second.outcome == payout_service.OUTCOME_UNCHANGED
        assert second.entry["payout_id"] == first.entry["payout_id"]
        assert len(store.select("payouts_ledger")) == 1

    def test_explicit_amount_wins(self, app, checked_out):
        result = record_completion(checked_out.job_id, amount_cents=1234)
        assert result.entry["amount_cents"] == 1234

    def test_unknown_job(self, app):
        with pytest.raises(NotFoundError):
            record_completion(str(uuid.uuid4()))

    def test_concurrent_insert_falls_back_to_existing(self, app, store, checked_out, monkeypatch):
        first = record_completion(checked_out.job_id, completed_at=COMPLETED_AT)
        real_find = payout_service.find_entry
        calls = []

        def stale_then_real(*args, **kwargs):
            calls.append(args)
            return None if len(calls) == 1 else real_find(*args, **kwargs)

        monkeypatch.setattr(payout_service, "find_entry", stale_then_real)

        result = record_completion(checked_out.job_id, completed_at=COMPLETED_AT)

        assert result.outcome == payout_service.OUTCOME_UNCHANGED
        assert result.entry["payout_id"] == first.entry["payout_id"]
        assert len(store.select("payouts_ledger")) == 1


class TestAmountResolution:
    def test_job_lines_sum(self, app, store, checked_out):
        for cents in (10000, 5000):
            store.insert("dispatch_job_lines", {"job_id": checked_out.job_id, "quantity": 1, "payout_cents": cents})

        result = record_completion(checked_out.job_id)

        assert result.entry["amount_cents"] == 15000

    def test_unresolvable_amount_is_zero_for_review_then_healed(self, app, store, workflow):
        recipient_id = make_recipient(store, "orphan@example.com")
        job = create_job("ORD-MISSING", recipient_id).row

        zero = record_completion(job["job_id"])

        assert zero.entry["amount_cents"] == 0
        assert zero.entry["status"] == "needs_review"
        assert zero.warnings

        healed = record_completion(job["job_id"], amount_cents=5000)

        assert healed.outcome == payout_service.OUTCOME_HEALED
        assert healed.entry["amount_cents"] == 5000
        assert healed.entry["status"] == "pending"
        assert len(store.select("payouts_ledger")) == 1

    def test_resolution_order(self, app, checked_out):
        job = get_job(checked_out.job_id)
        assert resolve_payout_amount(job, 50) == (50, "explicit")
        assert resolve_payout_amount({**job, "payout_cents": 900}) == (900, "job.payout_cents")
        assert resolve_payout_amount(job) == (7000, "order.subtotal")


class TestReview:
    def test_approve_pending_entry(self, app, store, checked_out):
        entry = record_completion(checked_out.job_id, completed_at=COMPLETED_AT).entry

        approved = review_payout(entry["payout_id"], "approve", note="looks right")

        assert approved["status"] == "approved"
        assert approved["reviewed_at"] is not None
        assert approved["note"] == "looks right"
        assert store.select("payouts_ledger")[0]["status"] == "approved"

    def test_repeated_decision_is_a_no_op(self, app, checked_out):
        entry = record_completion(checked_out.job_id).entry
        first = review_payout(entry["payout_id"], "approve")

        second = review_payout(entry["payout_id"], " Approve ")

        assert second["status"] == "approved"
        assert second["reviewed_at"] == first["reviewed_at"]

    def test_decided_entry_cannot_flip(self, app, checked_out):
        entry = record_completion(checked_out.job_id).entry
        review_payout(entry["payout_id"], "approve")

        with pytest.raises(InvalidStateError):
            review_payout(entry["payout_id"], "reject")

    def test_zero_entry_can_be_rejected_but_not_approved(self, app, store, workflow):
        recipient_id = make_recipient(store, "orphan@example.com")
        job = create_job("ORD-MISSING", recipient_id).row
        zero = record_completion(job["job_id"]).entry

        with pytest.raises(InvalidStateError):
            review_payout(zero["payout_id"], "approve")

        rejected = review_payout(zero["payout_id"], "reject")
        assert rejected["status"] == "rejected"

        # A rejected entry is no longer healed by a later completion
        again = record_completion(job["job_id"], amount_cents=5000)
        assert again.outcome == payout_service.OUTCOME_UNCHANGED
        assert again.entry["status"] == "rejected"
        assert again.entry["amount_cents"] == 0

    def test_bad_action(self, app, checked_out):
        entry = record_completion(checked_out.job_id).entry

        with pytest.raises(InvalidInputError):
            review_payout(entry["payout_id"], "maybe")

    def test_unknown_payout(self, app):
        with pytest.raises(NotFoundError):
            review_payout(str(uuid.uuid4()), "approve")
