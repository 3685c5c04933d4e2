"""
Unit Tests for JSON extraction from model output
"""
import json

import pytest

from vbs.exceptions import JSONExtractionError
from vbs.llm.json_repair import (
    clean_json_text,
    escape_control_chars,
    extract_json,
    repair_truncated_json,
    strip_trailing_commas,
)


DOCUMENT = json.dumps({
    "files": [
        {"path": "src/index.js", "content": "const a = \"b\";\nmodule.exports = a;"},
        {"path": "package.json", "content": "{\"name\": \"demo\"}"},
    ],
    "startCommand": "node src/index.js",
    "pm2Name": "demo",
    "port": 3000,
    "ok": True,
}, indent=2)


class TestCleaning:
    """Tests for the cleaning steps that run before parsing"""

    def test_strips_markdown_fences(self):
        """Test fenced JSON parses"""
        assert extract_json('```json\n{"a": 1}\n```') == {"a": 1}

    def test_skips_leading_prose(self):
        """Test text before the first bracket is dropped"""
        assert extract_json('Here is the result:\n{"a": [1, 2]}') == {"a": [1, 2]}

    def test_strips_bom(self):
        assert extract_json('﻿{"a": 1}') == {"a": 1}

    def test_escapes_raw_newlines_in_strings(self):
        """Test raw control characters inside strings are escaped"""
        text = '{"content": "line one\nline two\tend"}'
        assert extract_json(text) == {"content": "line one\nline two\tend"}

    def test_control_chars_outside_strings_untouched(self):
        assert escape_control_chars('{\n"a": 1\n}') == '{\n"a": 1\n}'

    def test_removes_trailing_commas(self):
        assert strip_trailing_commas('{"a": [1, 2,], "b": 3,}') == '{"a": [1, 2], "b": 3}'

    def test_trailing_comma_inside_string_kept(self):
        assert strip_trailing_commas('{"a": ",}"}') == '{"a": ",}"}'

    def test_clean_keeps_valid_json(self):
        assert json.loads(clean_json_text(DOCUMENT)) == json.loads(DOCUMENT)


class TestTruncationRepair:
    """Tests for recovering JSON cut off at the token limit"""

    def test_closes_open_containers(self):
        text = '{"files": [{"path": "a.js", "content": "x"}, {"path": "b.js", "conte'
        assert extract_json(text) == {"files": [{"path": "a.js", "content": "x"}, {"path": "b.js"}]}

    def test_drops_dangling_key(self):
        assert repair_truncated_json('{"a": "x", "b"') == '{"a": "x"}'

    def test_drops_incomplete_number(self):
        assert extract_json('{"a": "x", "n": 12') == {"a": "x"}

    def test_every_cut_point_recovers_a_subset(self):
        """Test any prefix of a valid document parses to a dict with known keys"""
        original = json.loads(DOCUMENT)
        for cut in range(1, len(DOCUMENT) + 1):
            result = extract_json(DOCUMENT[:cut])
            assert isinstance(result, dict), f"cut at {cut}"
            assert set(result) <= set(original), f"cut at {cut}"

    def test_full_document_round_trips(self):
        assert extract_json(DOCUMENT) == json.loads(DOCUMENT)

    def test_trailing_prose_after_root_ignored(self):
        assert repair_truncated_json('{"a": 1} and more') == '{"a": 1}'


class TestFailures:
    """Tests for inputs that cannot be recovered"""

    def test_empty_response(self):
        with pytest.raises(JSONExtractionError):
            extract_json("   ")

    def test_no_json_at_all(self):
        with pytest.raises(JSONExtractionError) as exc_info:
            extract_json("Sorry, I cannot help with that.")
        assert exc_info.value.code == "JSON_PARSE_FAILED"
