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
"""Client-side merge of a received payload into the displayed game state.

Merge policy is field-level "prefer new, fall back to previous": the state
object is never replaced wholesale, so fields the model omitted this turn
keep their last known values. The one exception is ``choices``, which are
always taken from the payload so stale options are never offered again.
"""

from typing import Any, Dict, Optional

from adventure.models import GameState

STAT_FIELDS = ("health", "maxHealth", "gold", "inventory")


def initial_game_state(context: str) -> GameState:
    """Default state shown after an opener, before the first turn.
    
    Args:
        context: Opening narration returned by the opener call
        
    Returns:
        GameState with default stats and the context as narrative and summary
    """
    return GameState(narrative=context, story_so_far=context)


def merge_game_state(previous: Optional[GameState], incoming: Dict[str, Any]) -> GameState:
    """Merge a (possibly partial) wire payload into the previous state.
    
    Args:
        previous: State currently displayed, or None before the first turn
        incoming: camelCase payload received from the server
        
    Returns:
        A new GameState; ``previous`` is not modified

    Raises:
        pydantic.ValidationError: If a field in the payload has the wrong type
    """
    base = previous.to_wire() if previous is not None else GameState().to_wire()
    
    incoming_stats = _mapping(incoming.get("stats"))
    stats = dict(base["stats"])
    for field in STAT_FIELDS:
        if incoming_stats.get(field) is not None:
            stats[field] = incoming_stats[field]

    # Stats merged from two payloads can disagree; keep health in [0, maxHealth]
    if isinstance(stats["health"], int) and isinstance(stats["maxHealth"], int):
        stats["health"] = max(0, min(stats["health"], stats["maxHealth"]))

    merged = {
        "narrative": incoming.get("narrative") or base["narrative"],
        "storySoFar": (
            incoming.get("storySoFar")
            or incoming.get("narrative")
            or base["storySoFar"]
        ),
        "stats": stats,
        "systemLog": {**base["systemLog"], **_mapping(incoming.get("systemLog"))},
        "changes": {**base["changes"], **_mapping(incoming.get("changes"))},
        "choices": incoming.get("choices") or [],
    }
    return GameState.model_validate(merged)


def _mapping(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}
