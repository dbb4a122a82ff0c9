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
"""Tests for the client-side game-state merge."""

from adventure.client import initial_game_state, merge_game_state
from adventure.models import GameState, GameStats


def test_initial_game_state():
    """Test the opener state uses defaults plus the context text."""
    state = initial_game_state("A storm gathers over the harbour.")
    
    assert state.narrative == "A storm gathers over the harbour."
    assert state.story_so_far == "A storm gathers over the harbour."
    assert state.stats.health == 100
    assert state.stats.gold == 0
    assert state.system_log.game_state.current_phase == "DISASTER"
    assert state.choices == []


def test_merge_full_payload(valid_reply):
    """Test a complete payload replaces every field."""
    state = merge_game_state(initial_game_state("start"), valid_reply)
    
    assert state.narrative == valid_reply["narrative"]
    assert state.story_so_far == valid_reply["storySoFar"]
    assert state.stats.inventory == ["Rope", "Lantern"]
    assert len(state.choices) == 3
    assert state.system_log.world_state.alliances == {"Innkeeper": "hostile"}


def test_merge_without_previous(valid_reply):
    """Test merging into no state uses defaults as the base."""
    state = merge_game_state(None, {"narrative": "Hello"})
    
    assert state.narrative == "Hello"
    assert state.story_so_far == "Hello"
    assert state.stats.health == 100


def test_merge_partial_stats_keeps_previous(valid_reply):
    """Test stats merge per field."""
    previous = merge_game_state(None, valid_reply)
    
    state = merge_game_state(previous, {"narrative": "Later", "stats": {"gold": 40}})
    
    assert state.stats.gold == 40
    assert state.stats.health == 90
    assert state.stats.inventory == ["Rope", "Lantern"]


def test_merge_story_so_far_fallbacks(valid_reply):
    """Test storySoFar prefers the payload, then its narrative, then the previous value."""
    previous = merge_game_state(None, valid_reply)
    
    assert merge_game_state(previous, {"narrative": "New scene"}).story_so_far == "New scene"
    assert merge_game_state(previous, {}).story_so_far == valid_reply["storySoFar"]
    assert merge_game_state(previous, {}).narrative == valid_reply["narrative"]


def test_merge_system_log_shallow(valid_reply):
    """Test systemLog keys absent from the payload are kept."""
    previous = merge_game_state(None, valid_reply)
    
    state = merge_game_state(previous, {
        "systemLog": {"gameState": {"currentPhase": "CHALLENGE", "daysSurvived": 4, "difficulty": "HARD"}}
    })
    
    assert state.system_log.game_state.current_phase == "CHALLENGE"
    assert len(state.system_log.decisions) == 1
    assert state.system_log.world_state.active_quests == ["Escape the village"]


def test_merge_changes_shallow(valid_reply):
    """Test changes merge per key."""
    previous = merge_game_state(None, valid_reply)
    
    state = merge_game_state(previous, {"changes": {"goldChange": 5}})
    
    assert state.changes.gold_change == 5
    assert state.changes.health_change == -10


def test_merge_choices_never_inherited(valid_reply):
    """Test choices come from the payload only."""
    previous = merge_game_state(None, valid_reply)
    
    state = merge_game_state(previous, {"narrative": "The end."})
    
    assert state.choices == []


def test_merge_does_not_modify_previous(valid_reply):
    """Test the previous state object is untouched."""
    previous = merge_game_state(None, valid_reply)
    before = previous.to_wire()
    
    merge_game_state(previous, {"stats": {"health": 1}, "choices": []})
    
    assert previous.to_wire() == before
    assert isinstance(previous, GameState)


def test_merge_lower_max_health_clamps_health():
    """Test a payload lowering maxHealth below current health clamps health."""
    previous = GameState(stats=GameStats(health=100, max_health=100))
    
    state = merge_game_state(previous, {"stats": {"maxHealth": 50}, "narrative": "x", "choices": []})
    
    assert state.stats.max_health == 50
    assert state.stats.health == 50


def test_merge_health_above_previous_max_clamps():
    """Test incoming health above the kept maxHealth is clamped."""
    previous = GameState(stats=GameStats(health=40, max_health=80))
    
    state = merge_game_state(previous, {"stats": {"health": 95}})
    
    assert state.stats.health == 80
    assert state.stats.max_health == 80


def test_merge_ignores_sections_of_wrong_type(valid_reply):
    """Test non-object stats, systemLog and changes fall back to previous."""
    previous = merge_game_state(None, valid_reply)
    
    state = merge_game_state(previous, {"stats": [1, 2], "systemLog": "log", "changes": 7})
    
    assert state.stats == previous.stats
    assert state.system_log == previous.system_log
    assert state.changes == previous.changes
