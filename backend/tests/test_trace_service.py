import pytest
from sqlalchemy.exc import OperationalError

from orderflow.errors import PaymentTimeoutError
from orderflow.extensions import db
from orderflow.services import trace_service
from orderflow.services.trace_service import get_trace, new_trace_id, record_failure, record_stage


def test_module_documents_its_invariants():
    assert trace_service.__doc__ is not None
    assert "Append-only" in trace_service.__doc__


class TestTraceRecording:
    def test_stages_are_kept_in_order(self, app):
        trace_id = new_trace_id()
        record_stage(trace_id, "started")
        record_stage(trace_id, "order_created", order_code="ORD-1")

        trace = get_trace(trace_id)

        assert trace["stages"] == ["started", "order_created"]
        assert trace["latest_stage"] == "order_created"
        assert trace["latest_failure"] is None

    def test_failure_uses_error_code(self, app):
        trace_id = new_trace_id()
        record_failure(trace_id, "payment_session", PaymentTimeoutError("slow"))
        record_failure(trace_id, "compensation", RuntimeError("boom"))

        failures = get_trace(trace_id)["failures"]

        assert [f["error_code"] for f in failures] == ["PROCESSOR_TIMEOUT", "RuntimeError"]

    def test_recorder_errors_do_not_propagate(self, app, monkeypatch):
        def failing_commit():
            raise OperationalError("INSERT", {}, Exception("disk full"))

        monkeypatch.setattr(db.session, "commit", failing_commit)

        assert record_stage(new_trace_id(), "started") is None
        assert record_failure(new_trace_id(), "started", RuntimeError("x")) is None
