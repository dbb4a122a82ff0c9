# Copyright 2025 John Brosnihan
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Tests for thinking-annotation stripping and JSON payload extraction."""

import json
import pytest

from adventure.services.errors import ExtractionError
from adventure.services.response_extractor import extract_json_payload, strip_thinking

PAYLOAD = '{"stats":{"health":80,"gold":5,"inventory":[]},"narrative":"You wake up.","choices":[{"id":1,"text":"Stand","preview":"?"}]}'


def test_extract_plain_json():
    """Test a reply that is nothing but the JSON object."""
    assert extract_json_payload(PAYLOAD) == PAYLOAD


def test_extract_after_think_block():
    """Test the reference scenario with a leading thinking block."""
    raw = "<think>planning...</think>" + PAYLOAD
    result = extract_json_payload(raw)
    assert result == PAYLOAD
    assert result.startswith('{"stats"')


def test_extract_with_multiple_think_blocks():
    """Test that every paired block is removed."""
    raw = "<think>one</think>Intro <think>two {not json}</think>" + PAYLOAD + "<think>three</think>"
    assert extract_json_payload(raw) == PAYLOAD


def test_extract_with_nested_think_blocks():
    """Test nested thinking blocks are removed as a whole."""
    raw = "<think>outer <think>inner {x}</think> still thinking }</think>" + PAYLOAD
    assert extract_json_payload(raw) == PAYLOAD


def test_extract_with_braces_inside_think_block():
    """Test that braces inside a thinking block do not widen the span."""
    raw = "<think>maybe {\"draft\": true}</think>\n" + PAYLOAD + "\n<think>}</think>"
    assert extract_json_payload(raw) == PAYLOAD


def test_extract_with_escaped_tags():
    """Test backslash-escaped tag delimiters are recognized."""
    raw = "\\<think\\>hmm {draft}\\</think\\>" + PAYLOAD
    assert extract_json_payload(raw) == PAYLOAD


def test_extract_with_escaped_closing_slash():
    """Test a closing tag with an escaped slash."""
    raw = "<think>hmm {draft}<\\/think>" + PAYLOAD
    assert extract_json_payload(raw) == PAYLOAD


def test_extract_with_orphan_closing_tag():
    """Test a reply that starts mid-thought with only a closing tag."""
    raw = "still reasoning about {options}</think>" + PAYLOAD
    assert extract_json_payload(raw) == PAYLOAD


def test_extract_with_orphan_opening_tag():
    """Test an unterminated thinking block still yields the answer."""
    raw = "<think>" + PAYLOAD
    assert extract_json_payload(raw) == PAYLOAD


def test_extract_case_insensitive_tags():
    """Test tag matching ignores case and accepts the 'thinking' spelling."""
    raw = "<THINK>a</THINK><Thinking>b</Thinking>" + PAYLOAD
    assert extract_json_payload(raw) == PAYLOAD


def test_extract_discards_prose_around_json():
    """Test preamble and trailing commentary are cut away."""
    raw = "Sure! Here is the next scene:\n" + PAYLOAD + "\nLet me know what you choose."
    assert extract_json_payload(raw) == PAYLOAD


def test_extract_result_is_parseable():
    """Test the extracted substring is valid JSON."""
    raw = "<think>x</think>\n```json\n" + PAYLOAD + "\n```"
    assert json.loads(extract_json_payload(raw))["narrative"] == "You wake up."


def test_extract_no_braces_raises():
    """Test a reply with no JSON object fails with ExtractionError."""
    with pytest.raises(ExtractionError) as exc_info:
        extract_json_payload("<think>hmm</think>The model refused to answer in JSON.")
    
    assert exc_info.value.error_type == "extraction_error"
    assert exc_info.value.details == "The model refused to answer in JSON."


def test_extract_error_preview_truncated():
    """Test the diagnostic preview carries at most 100 characters."""
    with pytest.raises(ExtractionError) as exc_info:
        extract_json_payload("x" * 500)
    assert len(exc_info.value.details) == 100


def test_extract_reversed_braces_raises():
    """Test a closing brace before any opening brace is not a payload."""
    with pytest.raises(ExtractionError):
        extract_json_payload("} nothing here {")


def test_extract_empty_input_raises():
    """Test empty or missing text fails with ExtractionError."""
    with pytest.raises(ExtractionError):
        extract_json_payload("")
    with pytest.raises(ExtractionError):
        extract_json_payload(None)


def test_strip_thinking_without_tags():
    """Test text without annotations is only trimmed."""
    assert strip_thinking("  plain text  ") == "plain text"


def test_strip_thinking_orphan_close_without_answer():
    """Test an orphan closing tag with no object after it keeps the text."""
    assert strip_thinking("before</think>after") == "beforeafter"
