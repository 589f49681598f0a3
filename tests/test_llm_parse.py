import pytest

from vhp.utils.llm_parse import extract_json_object, parse_json_object, strip_think_tags


class TestStripThinkTags:
    def test_closed_block(self):
        assert strip_think_tags("<think>hmm</think>answer") == "answer"

    def test_unterminated_block(self):
        assert strip_think_tags("answer<think>still going") == "answer"


class TestParseJsonObject:
    def test_fenced_reply(self):
        text = 'Here you go:\n```json\n{"score": 72, "completed": true}\n```'

        assert parse_json_object(text) == {"score": 72, "completed": True}

    def test_reasoning_before_json(self):
        text = '<think>the person waves {maybe}</think>{"score": 40}'

        assert parse_json_object(text) == {"score": 40}

    def test_extract_keeps_nested_braces(self):
        assert extract_json_object('x {"a": {"b": 1}} y') == '{"a": {"b": 1}}'

    @pytest.mark.parametrize("text", ["no json here", "[1, 2, 3]", '{"score": }'])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_json_object(text)
