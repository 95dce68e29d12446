# Test suite for lenient tool-input parsing

from taor.utils.json_parser import safe_parse_json


class TestSafeParseJson:
    """Tool-call arguments as models actually write them"""

    def test_valid_object(self):
        assert safe_parse_json('{"path": "a.txt", "lines": 3}') == {"path": "a.txt", "lines": 3}

    def test_dict_passes_through(self):
        value = {"already": "parsed"}
        assert safe_parse_json(value) is value

    def test_empty_and_none(self):
        assert safe_parse_json("") == {}
        assert safe_parse_json("   ") == {}
        assert safe_parse_json(None) == {}

    def test_non_object_json(self):
        assert safe_parse_json("[1, 2, 3]") == {}
        assert safe_parse_json("42") == {}

    def test_fenced_block(self):
        raw = 'Here you go:\n```json\n{"query": "taor"}\n```'
        assert safe_parse_json(raw) == {"query": "taor"}

    def test_object_inside_prose(self):
        raw = 'I will call it with {"a": {"b": 1}} and then stop.'
        assert safe_parse_json(raw) == {"a": {"b": 1}}

    def test_trailing_commas(self):
        assert safe_parse_json('{"items": [1, 2,], "x": 1,}') == {"items": [1, 2], "x": 1}

    def test_truncated_output_is_closed(self):
        assert safe_parse_json('{"cmd": "ls", "args": ["-la"') == {"cmd": "ls", "args": ["-la"]}

    def test_braces_inside_strings(self):
        raw = 'prefix {"pattern": "}{", "n": 1} suffix'
        assert safe_parse_json(raw) == {"pattern": "}{", "n": 1}

    def test_garbage(self):
        assert safe_parse_json("definitely not json") == {}

    def test_non_string_input(self):
        assert safe_parse_json(12) == {}
