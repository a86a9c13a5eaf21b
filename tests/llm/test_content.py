"""Tests for turn and part serialization."""

from mina.llm.content import (
    Attribution,
    FunctionCallPart,
    FunctionResultPart,
    InlineDataPart,
    TextPart,
    Turn,
    part_from_dict,
    part_to_dict,
)


class TestParts:
    def test_function_call_round_trip(self):
        part = FunctionCallPart(name="recall_memories", args={"query": "pets"}, call_id="c1")
        assert part_from_dict(part_to_dict(part)) == part

    def test_inline_data_tagged(self):
        data = part_to_dict(InlineDataPart(data="aGk=", mime_type="image/png"))
        assert data == {"type": "inline_data", "data": "aGk=", "mime_type": "image/png"}

    def test_malformed_parts(self):
        assert part_from_dict("text") is None
        assert part_from_dict({"type": "text"}) is None
        assert part_from_dict({"type": "video", "url": "x"}) is None
        assert part_from_dict({"type": "function_call"}) is None

    def test_function_call_bad_args_become_empty(self):
        part = part_from_dict({"type": "function_call", "name": "x", "args": "nope"})
        assert part == FunctionCallPart(name="x", args={})

    def test_function_result_response_coerced(self):
        part = part_from_dict({"type": "function_result", "name": "x", "response": 42})
        assert part == FunctionResultPart(name="x", response="42")


class TestTurn:
    def test_text_joins_text_parts(self):
        turn = Turn(
            role="user",
            parts=[TextPart(" hello "), InlineDataPart("aGk=", "image/png"), TextPart("world")],
        )
        assert turn.text == "hello world"
        assert turn.non_text_parts == [InlineDataPart("aGk=", "image/png")]

    def test_to_dict_includes_attribution(self):
        turn = Turn(
            role="user",
            parts=[TextPart("hi")],
            timestamp=10.0,
            attribution=Attribution(user_id="u1", username="ana", display_name="Ana"),
        )
        data = turn.to_dict()

        assert data["user_id"] == "u1"
        assert data["display_name"] == "Ana"
        assert Turn.from_dict(data) == turn

    def test_from_dict_maps_legacy_role(self):
        turn = Turn.from_dict({"role": "model", "parts": [{"type": "text", "text": "ok"}]})
        assert turn is not None
        assert turn.role == "assistant"

    def test_from_dict_drops_unknown_role(self):
        assert Turn.from_dict({"role": "system", "parts": [{"type": "text", "text": "x"}]}) is None
        assert Turn.from_dict({"role": ["user"], "parts": []}) is None

    def test_from_dict_drops_turn_without_valid_parts(self):
        assert Turn.from_dict({"role": "user", "parts": [{"type": "bogus"}]}) is None
        assert Turn.from_dict({"role": "user", "parts": "hi"}) is None
        assert Turn.from_dict(None) is None

    def test_from_dict_missing_timestamp_uses_now(self):
        turn = Turn.from_dict({"role": "user", "parts": [{"type": "text", "text": "x"}]}, now=99.0)
        assert turn is not None
        assert turn.timestamp == 99.0

    def test_assistant_turn_has_no_attribution(self):
        turn = Turn.from_dict({
            "role": "assistant",
            "parts": [{"type": "text", "text": "x"}],
            "user_id": "u1",
        })
        assert turn is not None
        assert turn.attribution is None
