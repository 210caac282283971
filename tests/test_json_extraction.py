"""
Tests for JSON extraction from free model text.
"""

import pytest

from jobmatch.services.common.json_extraction import (
    JSONExtractionError,
    clean_json_string,
    extract_json,
    find_balanced_json,
)


class TestExtractJson:
    """Layered extraction: fences, balanced scan, whole text, repair."""

    def test_fenced_block(self):
        """A ```json fenced block is unwrapped."""
        assert extract_json('```json\n{"score": 80}\n```') == {"score": 80}

    def test_object_inside_prose(self):
        """Commentary around the object is ignored."""
        text = 'Here is the result: {"score": 55, "reasons": ["ok"]} Hope that helps!'
        assert extract_json(text, "object") == {"score": 55, "reasons": ["ok"]}

    def test_trailing_comma_repaired(self):
        assert extract_json('{"score":80,}') == {"score": 80}

    def test_bare_keys_repaired(self):
        assert extract_json("{score:80}") == {"score": 80}

    def test_array_expected(self):
        """With expected=array, an array is returned even when objects come first."""
        text = 'Note {"x": 1} then [{"jobId": 1}, {"jobId": 2}]'
        assert extract_json(text, "array") == [{"jobId": 1}, {"jobId": 2}]

    def test_any_takes_outermost_value(self):
        text = '{"results": [{"jobId": 1}]}'
        assert extract_json(text, "any") == {"results": [{"jobId": 1}]}

    def test_any_keeps_bare_array(self):
        """A bare array is returned whole, not as its first element."""
        assert extract_json('Here: [{"jobId": 1}, {"jobId": 2}]', "any") == [{"jobId": 1}, {"jobId": 2}]

    def test_shape_mismatch_rejected(self):
        """A valid array is not accepted when an object is expected."""
        with pytest.raises(JSONExtractionError):
            extract_json("[1, 2, 3]", "object")

    def test_no_json_raises_with_preview(self):
        text = "I cannot help with that. " * 10
        with pytest.raises(JSONExtractionError) as exc_info:
            extract_json(text)
        assert len(exc_info.value.preview) <= 103
        assert "Could not extract valid JSON" in str(exc_info.value)

    def test_braces_inside_strings(self):
        """Brackets inside string values don't break the balanced scan."""
        text = 'prefix {"reasons": ["uses {curly} and ]brackets["], "score": 10} suffix'
        assert extract_json(text, "object")["score"] == 10


class TestHelpers:
    """Balanced scan and light repair."""

    def test_find_balanced_multiple(self):
        found = find_balanced_json('{"a": 1} and {"b": {"c": 2}}', "{", "}")
        assert found == ['{"a": 1}', '{"b": {"c": 2}}']

    def test_escaped_quote_in_string(self):
        found = find_balanced_json(r'{"a": "say \"}\" please"}', "{", "}")
        assert found == [r'{"a": "say \"}\" please"}']

    def test_clean_control_characters(self):
        assert clean_json_string('{"a":\t1}') == '{"a": 1}'

    def test_repair_leaves_string_values_alone(self):
        """Comma/colon text inside a string value survives the repair of the surrounding JSON."""
        text = '{"score": 80, "reasons": ["Strong fit, python: 5 years",]}'
        assert extract_json(text, "object") == {"score": 80, "reasons": ["Strong fit, python: 5 years"]}

    def test_repair_keeps_trailing_comma_text_in_strings(self):
        assert clean_json_string('{score: 1, "note": "a, ]"}') == '{"score": 1, "note": "a, ]"}'

    def test_repair_does_not_quote_array_values(self):
        assert extract_json("{ok: [true, false, null],}", "object") == {"ok": [True, False, None]}
