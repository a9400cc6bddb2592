"""Tests for request parsing and SSE framing."""

import pytest

from via.message import Message
from via.protocol import PublishAck, parse_cursor, split_password, sse_event


class TestParsing:
    def test_split_password(self):
        assert split_password("hmsg/room") == ("hmsg/room", "")
        assert split_password("room:secret") == ("room", "secret")
        assert split_password("room:a:b") == ("room", "a:b")

    @pytest.mark.parametrize(
        "raw,expected",
        [(None, 0), ("", 0), ("abc", 0), ("-4", 0), ("0", 0), ("7", 7), (" 12 ", 12)],
    )
    def test_malformed_cursor_means_no_cursor(self, raw, expected):
        assert parse_cursor(raw) == expected


class TestSse:
    def test_event_with_id(self):
        assert sse_event(Message(3, b"hello")) == b"id: 3\ndata: hello\n\n"

    def test_event_without_id(self):
        assert sse_event(Message(3, b"hello"), include_id=False) == b"data: hello\n\n"

    def test_multiline_payload(self):
        frame = sse_event(Message(1, b"a\r\nb\nc"))
        assert frame == b"id: 1\ndata: a\ndata: b\ndata: c\n\n"

    def test_undecodable_bytes_are_replaced(self):
        frame = sse_event(Message(1, b"ok\xff"), include_id=False)
        assert frame == "data: ok�\n\n".encode("utf-8")


class TestAck:
    def test_remaining_only_for_history_topics(self):
        assert PublishAck(topic="t").to_dict() == {"topic": "t", "status": "ok"}
        assert PublishAck(topic="hmsg/t", remaining=0).to_dict() == {
            "topic": "hmsg/t",
            "status": "ok",
            "remaining": 0,
        }
