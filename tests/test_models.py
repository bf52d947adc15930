"""Message and session models."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from chatsync.models.message import Message
from chatsync.models.session import Session, display_name_from_email
from tests.conftest import T0, make_message


class TestMessage:
    def test_system_notice_has_no_author(self):
        notice = Message.system_notice("alice joined the chat")
        assert notice.is_system_notice
        assert notice.author_id is None

        with pytest.raises(ValidationError):
            Message(text="x", is_system_notice=True, author_id="user-1")

    def test_regular_message_needs_text_and_author(self):
        with pytest.raises(ValidationError):
            Message(text="   ", author_display_name="alice", author_id="user-1")
        with pytest.raises(ValidationError):
            Message(text="hi", author_display_name="", author_id="user-1")

    def test_naive_timestamps_are_treated_as_utc(self):
        m = Message(text="hi", author_display_name="a", sent_at=datetime(2024, 5, 1, 12, 0, 0))
        assert m.sent_at == T0

    def test_dedup_key_ignores_sub_second_difference(self):
        a = make_message("hi")
        b = Message(
            text="hi", author_display_name="bob", author_id="user-2",
            sent_at=T0 + timedelta(milliseconds=700),
        )
        c = make_message("hi", seconds=1)
        assert a.dedup_key == b.dedup_key
        assert a.dedup_key != c.dedup_key
        assert a.dedup_key != make_message("hi", author_id="user-3").dedup_key

    def test_wire_payload_matches_chat_server_shape(self):
        wire = make_message("hi").to_wire()
        assert wire["text"] == "hi"
        assert wire["user"] == wire["username"] == "bob"
        assert wire["user_id"] == "user-2"
        assert wire["created_at"] == T0.isoformat()
        assert len(wire["time"]) == 5

    def test_from_wire_accepts_either_name_field(self):
        m = Message.from_wire({"text": "yo", "username": "carol", "user_id": "u3", "created_at": "2024-05-01T12:00:00Z"})
        assert m.author_display_name == "carol"
        assert m.sent_at == T0

    def test_from_wire_without_timestamp_uses_now(self):
        before = datetime.now(timezone.utc)
        m = Message.from_wire({"text": "yo", "user": "carol", "time": "12:00"})
        assert m.sent_at >= before - timedelta(seconds=1)
        assert m.author_id is None

    def test_from_wire_unparseable_timestamp_uses_now(self):
        before = datetime.now(timezone.utc)
        m = Message.from_wire({"text": "hi", "user": "bob", "user_id": "u2", "created_at": "10:42 AM"})
        assert m.text == "hi"
        assert m.sent_at >= before - timedelta(seconds=1)

    def test_record_key_survives_write_under_another_owner(self):
        remote = make_message("hi", author="bob", author_id="user-2")
        stored = Message.from_record(remote.to_record("user-1"))
        assert stored.dedup_key != remote.dedup_key
        assert stored.record_key == remote.record_key

    @pytest.mark.parametrize("payload", [
        None,
        "hello",
        {"text": "", "user": "carol"},
        {"text": "hi"},
        {"text": "carol joined the chat", "system": True},
    ])
    def test_from_wire_rejects_unusable_payloads(self, payload):
        with pytest.raises(ValueError):
            Message.from_wire(payload)

    def test_record_uses_owner_identity(self):
        record = make_message("hi").to_record("owner-9")
        assert record == {
            "text": "hi", "user_id": "owner-9", "username": "bob", "created_at": T0.isoformat(),
        }
        back = Message.from_record(record)
        assert back.author_id == "owner-9"
        assert back.sent_at == T0


class TestSession:
    def test_display_name_is_email_local_part(self):
        s = Session(access_token="t", user_id="u", email="alice.smith@example.com")
        assert s.display_name == "alice.smith"

    def test_display_name_absent_without_email(self):
        assert Session(access_token="t", user_id="u").display_name is None
        assert display_name_from_email("") is None

    def test_from_token_response(self):
        s = Session.from_token_response({
            "access_token": "a", "refresh_token": "r", "expires_in": 3600,
            "user": {"id": "u1", "email": "x@y.z"},
        })
        assert s.user_id == "u1"
        assert s.email == "x@y.z"
        assert not s.is_expired()
        assert s.is_expired(now=s.expires_at + 1)
