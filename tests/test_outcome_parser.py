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
"""Tests for OutcomeParser with tagged success/failure results."""

import pytest

from adventure.services.errors import ExtractionError, ParseError, ValidationError
from adventure.services.outcome_parser import OutcomeParser, ParsedOutcome


@pytest.fixture
def parser():
    """Create an OutcomeParser instance for testing."""
    return OutcomeParser()


def test_parse_valid_reply(parser, make_reply):
    """Test a well-formed reply wrapped in a thinking block."""
    result = parser.parse(make_reply())
    
    assert isinstance(result, ParsedOutcome)
    assert result.is_valid
    assert result.error is None
    assert result.error_type is None
    assert result.state.narrative == "The cellar door creaks open onto a flooded stair."
    assert result.json_payload.startswith('{"stats"')
    assert result.unwrap() is result.state


def test_parse_uses_previous_state(parser, make_reply):
    """Test the previous state fills fields the reply omits."""
    previous = parser.parse(make_reply()).state
    
    result = parser.parse(make_reply(stats={"health": 40}, systemLog=None), previous=previous)
    
    assert result.is_valid
    assert result.state.stats.health == 40
    assert result.state.stats.gold == 12
    assert result.state.system_log.world_state.active_quests == ["Escape the village"]


def test_parse_no_json(parser):
    """Test a reply without braces is an extraction failure."""
    result = parser.parse("<think>...</think>I cannot continue the story.")
    
    assert not result.is_valid
    assert result.state is None
    assert result.error_type == "extraction_error"
    assert isinstance(result.error, ExtractionError)
    assert result.json_payload is None


def test_parse_malformed_json(parser):
    """Test malformed JSON is a parse failure and keeps the candidate."""
    result = parser.parse('Here: {"stats": {"health": 10}, "narrative": }')
    
    assert not result.is_valid
    assert result.error_type == "parse_error"
    assert isinstance(result.error, ParseError)
    assert result.json_payload == '{"stats": {"health": 10}, "narrative": }'


def test_parse_missing_mandatory(parser, make_reply):
    """Test a reply missing choices is a validation failure."""
    result = parser.parse(make_reply(choices=None))
    
    assert not result.is_valid
    assert result.error_type == "validation_error"
    assert result.error.details["missing"] == ["choices"]


def test_unwrap_raises_recorded_error(parser):
    """Test unwrap() re-raises the failure."""
    result = parser.parse("no json at all")
    with pytest.raises(ExtractionError):
        result.unwrap()


def test_parse_validation_error_unwrap(parser):
    """Test unwrap() raises ValidationError when mandatory keys are missing."""
    result = parser.parse('{"narrative": "only narrative"}')
    with pytest.raises(ValidationError):
        result.unwrap()


def test_truncate_for_log(parser):
    """Test long payloads are truncated and newlines flattened for logs."""
    truncated = parser._truncate_for_log("line\n" * 200)
    
    assert "\n" not in truncated
    assert truncated.endswith("... (truncated)")
