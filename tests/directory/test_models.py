"""Tests for muttr.directory.models."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from muttr.core.exceptions import ResponseParseError, TokenError
from muttr.directory.models import (
    Alias,
    InboxNotification,
    MessageDescriptor,
    Playback,
    ReceivedMessage,
    Token,
)


# =============================================================================
# Token
# =============================================================================


class TestToken:
    def test_from_dict(self):
        token = Token.from_dict({"token": "abc", "issuedAt": 1000}, "get", "/inboxes")
        assert (token.method, token.resource, token.value, token.issued_at) == ("GET", "/inboxes", "abc", 1000)
        assert not token.consumed

    def test_from_dict_missing_value(self):
        with pytest.raises(ResponseParseError, match="no token value"):
            Token.from_dict({"method": "GET"}, "GET", "/inboxes")

    def test_from_dict_not_object(self):
        with pytest.raises(ResponseParseError):
            Token.from_dict(["abc"], "GET", "/inboxes")

    def test_consume_once(self):
        token = Token("GET", "/inboxes", "abc")
        assert token.consume("get", "/inboxes") == "abc"
        assert token.consumed
        with pytest.raises(TokenError, match="already used"):
            token.consume("GET", "/inboxes")

    def test_consume_wrong_method(self):
        token = Token("GET", "/inboxes", "abc")
        with pytest.raises(TokenError, match="scoped to GET /inboxes"):
            token.consume("DELETE", "/inboxes")
        assert not token.consumed

    def test_consume_wrong_resource(self):
        with pytest.raises(TokenError):
            Token("GET", "/inboxes", "abc").consume("GET", "/messages")

    def test_value_not_in_repr(self):
        assert "abc" not in repr(Token("GET", "/inboxes", "abc"))


# =============================================================================
# Notifications
# =============================================================================


class TestInboxNotification:
    def test_wire_round_trip(self):
        data = {"key": "k" * 40, "from": "alice@pod.example", "timestamp": 1700000000000}
        notification = InboxNotification.from_dict(data)
        assert notification.sender == "alice@pod.example"
        assert notification.to_dict() == data

    def test_timestamp_optional(self):
        assert InboxNotification.from_dict({"key": "k", "from": "a@b"}).timestamp is None

    @pytest.mark.parametrize(
        "data",
        [
            "not an object",
            {"from": "a@b"},
            {"key": "k"},
            {"key": 1, "from": "a@b"},
            {"key": "k", "from": "a@b", "timestamp": "yesterday"},
        ],
    )
    def test_malformed(self, data):
        with pytest.raises(ResponseParseError):
            InboxNotification.from_dict(data)


class TestReceivedMessage:
    def test_to_dict_excludes_text(self):
        notification = InboxNotification("k", "alice@pod.example", 5)
        received = ReceivedMessage(notification, "secret text")
        assert received.to_dict() == {"key": "k", "from": "alice@pod.example", "timestamp": 5}
        assert "secret text" not in repr(received)
        assert received.text == "secret text"
        assert received.sender == "alice@pod.example"


class TestMessageDescriptor:
    def test_to_dict(self):
        assert MessageDescriptor("k", "bob@pod.example", 7).to_dict() == {
            "key": "k",
            "recipient": "bob@pod.example",
            "timestamp": 7,
        }


class TestAlias:
    def test_from_string(self):
        alias = Alias.from_dict("bob", "pod.example")
        assert alias.user_id == "bob@pod.example"

    def test_from_object(self):
        alias = Alias.from_dict({"alias": "bob", "publicKey": "KEY"}, "pod.example")
        assert alias.public_key == "KEY"

    def test_malformed(self):
        with pytest.raises(ResponseParseError):
            Alias.from_dict({"name": "bob"}, "pod.example")


class TestPlayback:
    @pytest.mark.asyncio
    async def test_purge_is_explicit(self):
        purge = AsyncMock(return_value={"purged": True})
        playback = Playback([InboxNotification("k", "a@b")], purge)

        assert len(playback) == 1
        assert [n.key for n in playback] == ["k"]
        purge.assert_not_called()

        assert await playback.purge() == {"purged": True}
        assert playback.purged
        purge.assert_awaited_once()
