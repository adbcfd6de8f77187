"""Unit tests for realtime message parsing and envelopes."""

from __future__ import annotations

import json
import time

import pytest

from thumbs.errors import ValidationError
from thumbs.ws.messages import (
    AuthMessage,
    JoinArenaMessage,
    PingMessage,
    UpdateScoreMessage,
    envelope,
    error_envelope,
    parse_inbound,
)


class TestParseInbound:
    def test_auth(self):
        msg = parse_inbound(json.dumps({"type": "auth", "token": "abc"}))
        assert isinstance(msg, AuthMessage)
        assert msg.token == "abc"

    def test_camel_case_arena_id(self):
        msg = parse_inbound('{"type": "join_arena", "arenaId": 5}')
        assert isinstance(msg, JoinArenaMessage)
        assert msg.arena_id == 5

    def test_update_score_without_moves(self):
        msg = parse_inbound('{"type": "update_score", "arenaId": 1, "playerId": 2, "score": 30}')
        assert isinstance(msg, UpdateScoreMessage)
        assert msg.player_id == 2
        assert msg.moves is None

    def test_ping(self):
        assert isinstance(parse_inbound('{"type": "ping"}'), PingMessage)

    def test_invalid_json(self):
        with pytest.raises(ValidationError) as exc:
            parse_inbound("{not json")
        assert exc.value.code == "INVALID_JSON"

    def test_missing_type(self):
        with pytest.raises(ValidationError) as exc:
            parse_inbound('{"token": "abc"}')
        assert exc.value.code == "INVALID_MESSAGE"

    def test_non_object(self):
        with pytest.raises(ValidationError) as exc:
            parse_inbound("[1, 2]")
        assert exc.value.code == "INVALID_MESSAGE"

    def test_unknown_type(self):
        with pytest.raises(ValidationError) as exc:
            parse_inbound('{"type": "teleport"}')
        assert exc.value.code == "UNKNOWN_TYPE"

    def test_missing_field(self):
        with pytest.raises(ValidationError) as exc:
            parse_inbound('{"type": "arena_chat", "arenaId": 1}')
        assert exc.value.code == "INVALID_MESSAGE"

    def test_negative_score_rejected(self):
        with pytest.raises(ValidationError) as exc:
            parse_inbound('{"type": "update_score", "arenaId": 1, "playerId": 2, "score": -1}')
        assert exc.value.code == "INVALID_MESSAGE"


class TestEnvelope:
    def test_carries_type_fields_and_timestamp(self):
        before = int(time.time() * 1000)
        msg = envelope("score_update", arenaId=1, score=10)
        assert msg["type"] == "score_update"
        assert msg["arenaId"] == 1
        assert msg["score"] == 10
        assert msg["timestamp"] >= before

    def test_error_envelope_with_code(self):
        msg = error_envelope("Not authenticated", "NOT_AUTHENTICATED")
        assert msg["type"] == "error"
        assert msg["error"] == "Not authenticated"
        assert msg["code"] == "NOT_AUTHENTICATED"

    def test_error_envelope_without_code(self):
        assert "code" not in error_envelope("Failed to process message")
