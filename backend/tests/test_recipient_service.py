import pytest

from orderflow.errors import BadRequestError
from orderflow.services import recipient_service
from orderflow.services.recipient_service import normalize_email, resolve_recipient

from conftest import make_recipient


class TestRecipientDirectory:
    def test_normalizes_email(self):
        assert normalize_email("  Ada@Example.COM ") == "ada@example.com"

    def test_creates_once_and_reuses(self, store):
        first = resolve_recipient("Ada@Example.com", "Ada")
        second = resolve_recipient(" ada@example.com", "Someone Else")

        assert first == second
        rows = store.select("recipients")
        assert len(rows) == 1
        assert rows[0]["display_name"] == "Ada"
        assert rows[0]["recipient_key"].startswith("customer-")

    def test_missing_email_is_rejected(self):
        with pytest.raises(BadRequestError):
            resolve_recipient("   ")

    def test_concurrent_creation_rereads_once(self, store, monkeypatch):
        winner = make_recipient(store, "ada@example.com")
        real_find = recipient_service.find_recipient
        calls = []

        def stale_then_real(email):
            calls.append(email)
            # First lookup happens before the concurrent insert becomes visible
            return None if len(calls) == 1 else real_find(email)

        monkeypatch.setattr(recipient_service, "find_recipient", stale_then_real)

        assert resolve_recipient("ada@example.com") == winner
        assert len(calls) == 2
        assert len(store.select("recipients")) == 1
