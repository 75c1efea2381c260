from datetime import datetime

import pytest

from orderflow.errors import InvalidInputError, InvalidStateError, NotFoundError
from orderflow.extensions import db
from orderflow.models import Order
from orderflow.services import geocoding_service
from orderflow.services.checkout_service import cancel_checkout, checkout
from orderflow.services.dispatch_service import delete_job, get_job
from orderflow.services.geocoding_service import GoogleGeocoder
from orderflow.services.order_service import mark_paid
from orderflow.services.payout_service import record_completion
from orderflow.services.schedule_service import schedule


@pytest.fixture
def checked_out(app, workflow, cart, contact):
    return checkout(cart, contact, metadata={"address_line1": "1 Main St", "city": "Austin", "state": "TX"})


class TestSchedule:
    def test_moves_job_to_window_start_and_queues_it(self, app, checked_out):
        result = schedule(checked_out.order_code, "2026-03-04", "2:00 PM - 5:00 PM")

        assert result.due_at == datetime(2026, 3, 4, 14, 0)
        assert result.job_id == checked_out.job_id
        assert result.warnings == []
        job = get_job(checked_out.job_id)
        assert job["status"] == "queued"
        assert job["due_at"] == datetime(2026, 3, 4, 14, 0)

    def test_updates_order_metadata(self, app, geocoder, checked_out):
        schedule(checked_out.order_id, "2026-03-04", "14:00")

        meta = db.session.get(Order, checked_out.order_id).metadata_json
        assert meta["service_date"] == "2026-03-04"
        assert meta["time_window"] == "14:00"
        assert meta["scheduled_start"] == "2026-03-04T14:00:00Z"
        assert meta["geo"] == {"lat": 30.2672, "lng": -97.7431}
        assert geocoder.calls == ["1 Main St, Austin, TX"]

    def test_payout_rederived_from_frozen_subtotal(self, app, checked_out):
        order = db.session.get(Order, checked_out.order_id)
        mark_paid(order, 1000)

        schedule(checked_out.payment_session_id, "2026-03-04", "9:00 AM - 12:00 PM")

        meta = db.session.get(Order, checked_out.order_id).metadata_json
        assert meta["payout_estimated_cents"] == 7000
        assert meta["amount_paid_cents"] == 1000

    def test_missing_job_is_recreated_with_warning(self, app, store, checked_out):
        delete_job(checked_out.job_id)

        result = schedule(checked_out.order_code, "2026-03-04", "2:00 PM - 5:00 PM")

        assert result.job_id and result.job_id != checked_out.job_id
        assert any("recreated" in w for w in result.warnings)
        meta = db.session.get(Order, checked_out.order_id).metadata_json
        assert meta["dispatch_job_id"] == result.job_id
        assert any("recreated" in w for w in meta["warnings"])
        assert get_job(result.job_id)["status"] == "queued"

    def test_sends_confirmation_sms(self, app, sms, checked_out):
        schedule(checked_out.order_code, "2026-03-04", "2:00 PM - 5:00 PM")

        to, body = sms.sent[0]
        assert to == "+15555550100"
        assert checked_out.order_code in body

    def test_sms_failure_is_a_warning(self, app, sms, checked_out):
        sms.succeed = False

        result = schedule(checked_out.order_code, "2026-03-04", "2:00 PM - 5:00 PM")

        assert result.warnings == ["confirmation SMS was not sent"]
        assert get_job(checked_out.job_id)["status"] == "queued"


class TestScheduleValidation:
    @pytest.mark.parametrize("date", ["03/04/2026", "2026-3-4", "soon"])
    def test_malformed_date(self, app, checked_out, date):
        with pytest.raises(InvalidInputError):
            schedule(checked_out.order_code, date, "2:00 PM - 5:00 PM")

    def test_unparseable_window(self, app, checked_out):
        with pytest.raises(InvalidInputError):
            schedule(checked_out.order_code, "2026-03-04", "whenever")

    def test_unknown_order(self, app):
        with pytest.raises(NotFoundError):
            schedule("ORD-NOPE", "2026-03-04", "14:00")


class TestScheduleGuards:
    def test_completed_job_is_not_requeued(self, app, checked_out):
        record_completion(checked_out.job_id)

        result = schedule(checked_out.order_code, "2026-03-04", "2:00 PM - 5:00 PM")

        assert get_job(checked_out.job_id)["status"] == "completed"
        assert result.job_id == checked_out.job_id
        assert any("not rescheduled" in w for w in result.warnings)

    def test_cancelled_order_cannot_be_scheduled(self, app, checked_out):
        cancel_checkout(checked_out.order_code)

        with pytest.raises(InvalidStateError):
            schedule(checked_out.order_code, "2026-03-04", "2:00 PM - 5:00 PM")

    def test_geocoder_exception_is_a_warning(self, app, geocoder, checked_out, monkeypatch):
        def broken(address):
            raise RuntimeError("geocoder exploded")

        monkeypatch.setattr(geocoder, "geocode", broken)

        result = schedule(checked_out.order_code, "2026-03-04", "2:00 PM - 5:00 PM")

        assert result.warnings == ["address could not be geocoded"]
        assert get_job(checked_out.job_id)["status"] == "queued"

    def test_sms_exception_is_a_warning(self, app, sms, checked_out, monkeypatch):
        def broken(to, body):
            raise RuntimeError("sms provider down")

        monkeypatch.setattr(sms, "send", broken)

        result = schedule(checked_out.order_code, "2026-03-04", "2:00 PM - 5:00 PM")

        assert result.warnings == ["confirmation SMS was not sent"]


class TestGoogleGeocoder:
    class _Response:
        def __init__(self, body):
            self.body = body

        def raise_for_status(self):
            return None

        def json(self):
            return self.body

    @pytest.mark.parametrize("body", [
        {"status": "OK", "results": [{}]},
        {"status": "OK", "results": [{"geometry": {"location": {"lat": "north"}}}]},
        ["not", "an", "object"],
    ])
    def test_malformed_response_is_none(self, app, monkeypatch, body):
        monkeypatch.setattr(geocoding_service.httpx, "get", lambda *a, **kw: self._Response(body))

        assert GoogleGeocoder("key").geocode("1 Main St") is None

    def test_location_is_returned(self, app, monkeypatch):
        body = {"status": "OK", "results": [{"geometry": {"location": {"lat": 30.1, "lng": -97.2}}}]}
        monkeypatch.setattr(geocoding_service.httpx, "get", lambda *a, **kw: self._Response(body))

        assert GoogleGeocoder("key").geocode("1 Main St") == {"lat": 30.1, "lng": -97.2}
