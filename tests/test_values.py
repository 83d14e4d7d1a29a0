"""
tests/test_values.py — Tagged Setting Values
=============================================
"""

from __future__ import annotations

from levelstore.engine.values import ValueType, decode_value, encode_value, sniff_legacy


class TestEncode:
    def test_bool_before_int(self):
        assert encode_value(True) == ("true", ValueType.BOOL)
        assert encode_value(False) == ("false", ValueType.BOOL)

    def test_numbers(self):
        assert encode_value(42) == ("42", ValueType.NUMBER)
        assert encode_value(1.5) == ("1.5", ValueType.NUMBER)

    def test_containers_and_none_are_json(self):
        assert encode_value({"a": 1}) == ('{"a": 1}', ValueType.JSON)
        assert encode_value((1, 2)) == ("[1, 2]", ValueType.JSON)
        assert encode_value(None) == ("null", ValueType.JSON)

    def test_everything_else_is_a_string(self):
        assert encode_value("hello") == ("hello", ValueType.STRING)


class TestDecode:
    def test_tagged_string_true_stays_a_string(self):
        text, tag = encode_value("true")
        assert decode_value(text, tag) == "true"

    def test_tagged_values_come_back_exactly(self):
        for value in (True, False, 0, 7, 2.25, "x", {"k": [1, 2]}, [1, "a"], None):
            text, tag = encode_value(value)
            assert decode_value(text, tag) == value

    def test_unknown_tag_falls_back_to_sniffing(self):
        assert decode_value("false", "mystery") is False

    def test_bad_number_returns_raw_text(self):
        assert decode_value("abc", "number") == "abc"


class TestLegacySniff:
    def test_json_prefixed(self):
        assert sniff_legacy('{"a": 1}') == {"a": 1}
        assert sniff_legacy("[1, 2]") == [1, 2]

    def test_invalid_json_returned_raw(self):
        assert sniff_legacy("{not json") == "{not json"

    def test_boolean_literals(self):
        assert sniff_legacy("true") is True
        assert sniff_legacy("false") is False

    def test_plain_text_and_numbers_stay_text(self):
        assert sniff_legacy("hello") == "hello"
        assert sniff_legacy("3") == "3"

    def test_null(self):
        assert sniff_legacy(None) is None
        assert decode_value(None, None) is None
