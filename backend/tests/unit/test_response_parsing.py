"""
Unit tests for tolerant model-output parsing.
"""
import pytest

from response_parsing import (
    coerce_string, coerce_string_list, extract_json, extract_json_object, parse_description,
)


class TestExtractJson:
    """Tests for extract_json()."""

    def test_plain_json(self):
        """Clean JSON should parse directly."""
        assert extract_json('{"angles": ["a", "b"]}') == {'angles': ['a', 'b']}

    def test_fenced_json(self):
        """Markdown fences around JSON should be stripped."""
        text = '```json\n{"en": "Hello", "cn": "你好"}\n```'
        assert extract_json(text) == {'en': 'Hello', 'cn': '你好'}

    def test_json_with_chatter(self):
        """Text before and after the object should be ignored."""
        text = 'Sure! Here is the caption: {"en": "Bottle", "cn": "瓶子"} Hope that helps.'
        assert extract_json(text) == {'en': 'Bottle', 'cn': '瓶子'}

    def test_array_with_chatter(self):
        """An outermost array should be recovered when there is no object."""
        assert extract_json('Ideas: ["one", "two"] done') == ['one', 'two']

    def test_empty_text_raises(self):
        """Empty or None text should raise ValueError."""
        with pytest.raises(ValueError):
            extract_json('')
        with pytest.raises(ValueError):
            extract_json(None)

    def test_garbage_raises(self):
        """Text without JSON should raise ValueError."""
        with pytest.raises(ValueError):
            extract_json('no json here {not valid')


class TestExtractJsonObject:
    """Tests for extract_json_object()."""

    def test_array_rejected(self):
        """A top-level array is not an object."""
        with pytest.raises(ValueError):
            extract_json_object('["a"]')


class TestParseDescription:
    """Tests for parse_description()."""

    def test_missing_text(self):
        """No text should give the no-description pair."""
        description = parse_description(None)
        assert description.en == 'No description available.'
        assert description.cn == '无可用描述。'

    def test_valid_caption(self):
        """A JSON caption should map to en/cn."""
        description = parse_description('{"en": "A red bag", "cn": "红色的包"}')
        assert description.en == 'A red bag'
        assert description.cn == '红色的包'

    def test_unparseable_caption(self):
        """Free text should be truncated to 150 chars with the fallback Chinese text."""
        text = 'x' * 200
        description = parse_description(text)
        assert description.en == 'x' * 150 + '...'
        assert description.cn == '请查看图片。'

    def test_missing_keys(self):
        """Missing keys should become '...'."""
        description = parse_description('{"en": "Only English"}')
        assert description.en == 'Only English'
        assert description.cn == '...'


class TestCoercion:
    """Tests for coerce_string_list() and coerce_string()."""

    def test_list_filters_non_strings(self):
        """Only non-empty strings survive."""
        assert coerce_string_list(['a', '', None, 3, ' b ']) == ['a', 'b']

    def test_lone_string_wrapped(self):
        assert coerce_string_list('single idea') == ['single idea']

    def test_other_types_dropped(self):
        assert coerce_string_list({'a': 1}) == []
        assert coerce_string_list(None) == []

    def test_coerce_string_defaults(self):
        """Blank and None values fall back to the default."""
        assert coerce_string('  ', 'fallback') == 'fallback'
        assert coerce_string(None, 'fallback') == 'fallback'
        assert coerce_string(42) == '42'
