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
"""Tests for PromptBuilder."""

import pytest
from adventure.prompting.prompt_builder import (
    OPENING_USER_MESSAGE,
    THEMES,
    PromptBuilder,
)


@pytest.fixture
def prompt_builder():
    """Fixture providing a PromptBuilder instance."""
    return PromptBuilder(default_theme="mystery")


def test_resolve_theme(prompt_builder):
    """Test that blank themes fall back to the default."""
    assert prompt_builder.resolve_theme("Horror") == "Horror"
    assert prompt_builder.resolve_theme("  Sci-Fi ") == "Sci-Fi"
    assert prompt_builder.resolve_theme("") == "mystery"
    assert prompt_builder.resolve_theme("   ") == "mystery"
    assert prompt_builder.resolve_theme(None) == "mystery"


def test_system_prompt_contains_theme_and_format(prompt_builder):
    """Test that the system prompt names the theme and the JSON contract."""
    prompt = prompt_builder.system_prompt("Horror")

    assert "themed around Horror" in prompt
    assert "${theme}" not in prompt
    assert "JSON" in prompt
    assert '"storySoFar"' in prompt
    assert "exactly three choices" in prompt


def test_system_prompt_default_theme(prompt_builder):
    """Test that the default theme is used when none is given."""
    assert "themed around mystery" in prompt_builder.system_prompt()


def test_opening_messages(prompt_builder):
    """Test the one-shot opener exchange."""
    messages = prompt_builder.opening_messages("Fantasy")

    assert [m.role for m in messages] == ["system", "user"]
    assert messages[0].content == "You are narrating a Fantasy adventure."
    assert messages[1].content == OPENING_USER_MESSAGE
    # The opener asks for free text, not JSON
    assert "JSON" not in messages[0].content


def test_builtin_themes():
    """Test the themes offered by the theme picker."""
    assert THEMES == ["Fantasy", "Sci-Fi", "Horror"]
