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
"""Normalization of a parsed model reply into a complete GameState.

The model is an unreliable producer: keys go missing, numbers arrive as
strings, enums drift in case, and nested objects are sometimes omitted
entirely. The normalizer is the contract boundary that turns whatever was
parsed into a fully-populated, typed GameState.

Contract:
- Strict JSON parsing; malformed JSON raises ParseError.
- ``stats``, ``narrative`` and ``choices`` are mandatory; if any is absent
  (or unusable) ValidationError is raised.
- Every other field takes the new value when it is present and well-formed,
  otherwise the previous known value, otherwise a hard-coded default. This
  pass never raises.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from adventure.models import (
    ALLIANCE_STANCES,
    DECISION_TYPES,
    DIFFICULTIES,
    GAME_PHASES,
    ChatMessage,
    Choice,
    Decision,
    DecisionFlags,
    GameChanges,
    GamePhase,
    GameState,
    GameStats,
    SystemLog,
    WorldState,
)
from adventure.logging import StructuredLogger, redact_secrets
from adventure.services.errors import ParseError, ValidationError

logger = StructuredLogger(__name__)

MANDATORY_KEYS = ("stats", "narrative", "choices")
EXPECTED_CHOICE_COUNT = 3

# Maximum payload size carried in error details
MAX_DETAIL_PAYLOAD_LENGTH = 500


def coerce_int(value: Any) -> Optional[int]:
    """Best-effort conversion of a model-supplied number to int.
    
    Accepts ints, floats (rounded) and numeric strings. Booleans and
    anything else yield None.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value != value or value in (float('inf'), float('-inf')):
            return None
        return int(round(value))
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        if number != number or number in (float('inf'), float('-inf')):
            return None
        return int(round(number))
    return None


def coerce_bool(value: Any, default: bool = False) -> bool:
    """Best-effort conversion of a model-supplied flag to bool."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0"):
            return False
    if isinstance(value, (int, float)):
        return bool(value)
    return default


def coerce_str_list(value: Any) -> Optional[List[str]]:
    """Convert a model-supplied list to a list of non-empty strings.
    
    Returns None when the value is not a list at all, so callers can tell
    "absent" from "present but empty".
    """
    if not isinstance(value, list):
        return None
    items = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, (str, int, float)):
            continue
        text = str(item).strip()
        if text:
            items.append(text)
    return items


def _non_empty_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


class GameStateNormalizer:
    """Parses JSON candidates and fills every GameState field.
    
    Usage:
        normalizer = GameStateNormalizer()
        state = normalizer.normalize(json_text, previous=session.last_state)
    """
    
    def normalize(self, json_text: str, previous: Optional[GameState] = None) -> GameState:
        """Parse a JSON candidate and normalize it against the previous state.
        
        Args:
            json_text: JSON candidate isolated from the model reply
            previous: Last known GameState of the session, if any
            
        Returns:
            Fully-populated GameState
            
        Raises:
            ParseError: If json_text is not valid JSON
            ValidationError: If a mandatory top-level key is missing
        """
        try:
            data = json.loads(json_text)
        except (ValueError, RecursionError) as e:
            # ValueError also covers oversized integer literals
            if isinstance(e, json.JSONDecodeError):
                reason = f"JSON decode error at line {e.lineno}, column {e.colno}: {e.msg}"
            else:
                reason = f"JSON decode error: {type(e).__name__}: {e}"
            logger.error(
                "Failed to parse model reply as JSON",
                error_type="parse_error",
                error_details=reason
            )
            raise ParseError(details={
                "reason": reason,
                "content": self._truncate(json_text)
            }) from e
        
        return self.normalize_data(data, previous)
    
    def normalize_data(self, data: Any, previous: Optional[GameState] = None) -> GameState:
        """Normalize an already-parsed reply.
        
        Args:
            data: Parsed JSON value
            previous: Last known GameState of the session, if any
            
        Returns:
            Fully-populated GameState
            
        Raises:
            ValidationError: If a mandatory top-level key is missing or unusable
        """
        self._check_mandatory(data)
        
        previous = previous or GameState()
        narrative = data["narrative"]
        
        state = GameState(
            stats=self.normalize_stats(data["stats"], previous.stats),
            narrative=narrative,
            story_so_far=_non_empty_str(data.get("storySoFar")) or narrative,
            system_log=self.normalize_system_log(
                _section(data, "systemLog"), previous.system_log
            ),
            changes=self.normalize_changes(_section(data, "changes")),
            choices=self.normalize_choices(data["choices"])
        )
        
        logger.info(
            "Normalized model reply",
            narrative_length=len(state.narrative),
            choice_count=len(state.choices),
            decision_count=len(state.system_log.decisions),
            health=state.stats.health
        )
        return state
    
    def _check_mandatory(self, data: Any) -> None:
        if not isinstance(data, dict):
            logger.error(
                "Model reply is not a JSON object",
                error_type="validation_error",
                value_type=type(data).__name__
            )
            raise ValidationError(details={
                "reason": "top-level JSON value must be an object"
            })
        
        missing = [key for key in MANDATORY_KEYS if data.get(key) is None]
        invalid = []
        if "stats" not in missing and not isinstance(data["stats"], dict):
            invalid.append("stats")
        if "narrative" not in missing and _non_empty_str(data["narrative"]) is None:
            invalid.append("narrative")
        if "choices" not in missing and not isinstance(data["choices"], list):
            invalid.append("choices")
        
        if missing or invalid:
            logger.error(
                "Model reply failed mandatory field validation",
                error_type="validation_error",
                missing=missing,
                invalid=invalid
            )
            raise ValidationError(details={"missing": missing, "invalid": invalid})
    
    def normalize_stats(self, raw: Dict[str, Any], previous: GameStats) -> GameStats:
        """Normalize stats, clamping health into [0, maxHealth]."""
        max_health = coerce_int(raw.get("maxHealth"))
        if max_health is None or max_health < 1:
            max_health = previous.max_health
        
        health = coerce_int(raw.get("health"))
        if health is None:
            health = previous.health
        clamped = max(0, min(health, max_health))
        if clamped != health:
            logger.info("Clamped health into range", reported=health, max_health=max_health)
        
        gold = coerce_int(raw.get("gold"))
        if gold is None:
            gold = previous.gold
        
        inventory = coerce_str_list(raw.get("inventory"))
        if inventory is None:
            inventory = list(previous.inventory)
        
        return GameStats(
            health=clamped,
            max_health=max_health,
            gold=max(0, gold),
            inventory=inventory
        )
    
    def normalize_system_log(self, raw: Dict[str, Any], previous: SystemLog) -> SystemLog:
        """Normalize the system log section."""
        raw_decisions = raw.get("decisions")
        if isinstance(raw_decisions, list):
            decisions = [
                decision for decision in
                (self.normalize_decision(item) for item in raw_decisions)
                if decision is not None
            ]
        else:
            decisions = [d.model_copy(deep=True) for d in previous.decisions]
        
        raw_history = raw.get("messageHistory")
        if isinstance(raw_history, list):
            history = self.normalize_message_history(raw_history)
        else:
            history = [m.model_copy() for m in previous.message_history]
        
        return SystemLog(
            decisions=decisions,
            world_state=self.normalize_world_state(
                _section(raw, "worldState"), previous.world_state
            ),
            game_state=self.normalize_game_phase(
                _section(raw, "gameState"), previous.game_state
            ),
            message_history=history
        )
    
    def normalize_decision(self, raw: Any) -> Optional[Decision]:
        """Normalize one decision entry; unusable entries yield None."""
        if not isinstance(raw, dict):
            logger.warning("Dropped non-object decision", value_type=type(raw).__name__)
            return None
        
        decision_type = raw.get("type")
        decision_type = decision_type.strip().upper() if isinstance(decision_type, str) else None
        if decision_type not in DECISION_TYPES:
            logger.warning("Dropped decision with unknown type", decision_type=raw.get("type"))
            return None
        
        flags = raw.get("flags") if isinstance(raw.get("flags"), dict) else {}
        description = raw.get("description")
        
        return Decision(
            timestamp=_non_empty_str(raw.get("timestamp")) or datetime.now(timezone.utc).isoformat(),
            type=decision_type,
            description=description if isinstance(description, str) else "",
            consequences=coerce_str_list(raw.get("consequences")) or [],
            affected_npcs=coerce_str_list(raw.get("affectedNPCs")) or [],
            flags=DecisionFlags(
                is_betrayal=coerce_bool(flags.get("isBetrayal")),
                is_killing=coerce_bool(flags.get("isKilling")),
                is_heroic=coerce_bool(flags.get("isHeroic")),
                is_permanent=coerce_bool(flags.get("isPermanent"))
            )
        )
    
    def normalize_world_state(self, raw: Dict[str, Any], previous: WorldState) -> WorldState:
        """Normalize world state; absent fields keep their previous value."""
        raw_alliances = raw.get("alliances")
        if isinstance(raw_alliances, dict):
            alliances = {}
            for npc, stance in raw_alliances.items():
                stance = stance.strip().lower() if isinstance(stance, str) else ""
                alliances[str(npc)] = stance if stance in ALLIANCE_STANCES else "neutral"
        else:
            alliances = dict(previous.alliances)
        
        raw_reputation = raw.get("reputation")
        if isinstance(raw_reputation, dict):
            reputation = {}
            for faction, score in raw_reputation.items():
                score = coerce_int(score)
                if score is not None:
                    reputation[str(faction)] = score
        else:
            reputation = dict(previous.reputation)
        
        def pick(key: str, fallback: List[str]) -> List[str]:
            value = coerce_str_list(raw.get(key))
            return value if value is not None else list(fallback)
        
        return WorldState(
            alliances=alliances,
            dead_npcs=pick("deadNPCs", previous.dead_npcs),
            unlocked_locations=pick("unlockedLocations", previous.unlocked_locations),
            active_quests=pick("activeQuests", previous.active_quests),
            completed_quests=pick("completedQuests", previous.completed_quests),
            reputation=reputation
        )
    
    def normalize_game_phase(self, raw: Dict[str, Any], previous: GamePhase) -> GamePhase:
        """Normalize phase, day counter and difficulty."""
        phase = raw.get("currentPhase")
        phase = phase.strip().upper() if isinstance(phase, str) else None
        
        difficulty = raw.get("difficulty")
        difficulty = difficulty.strip().upper() if isinstance(difficulty, str) else None
        
        days = coerce_int(raw.get("daysSurvived"))
        
        return GamePhase(
            current_phase=phase if phase in GAME_PHASES else previous.current_phase,
            days_survived=max(0, days) if days is not None else previous.days_survived,
            difficulty=difficulty if difficulty in DIFFICULTIES else previous.difficulty
        )
    
    def normalize_message_history(self, raw: List[Any]) -> List[ChatMessage]:
        """Keep only well-formed role/content entries."""
        history = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            role = item.get("role")
            content = item.get("content")
            if role in ("system", "user", "assistant") and isinstance(content, str):
                history.append(ChatMessage(role=role, content=content))
        return history
    
    def normalize_changes(self, raw: Dict[str, Any]) -> GameChanges:
        """Normalize this turn's deltas; absent values stay None."""
        return GameChanges(
            health_change=coerce_int(raw.get("healthChange")),
            gold_change=coerce_int(raw.get("goldChange")),
            items_added=coerce_str_list(raw.get("itemsAdded")),
            items_removed=coerce_str_list(raw.get("itemsRemoved"))
        )
    
    def normalize_choices(self, raw: List[Any]) -> List[Choice]:
        """Normalize offered choices.
        
        Plain strings become choices; objects without usable text are
        dropped; missing ids are replaced by the 1-based position. Counts
        other than three are tolerated and logged.
        """
        choices = []
        for index, item in enumerate(raw):
            if isinstance(item, str):
                if item.strip():
                    choices.append(Choice(id=index + 1, text=item.strip()))
                continue
            if not isinstance(item, dict):
                continue
            text = _non_empty_str(item.get("text"))
            if text is None:
                logger.warning("Dropped choice without text", position=index)
                continue
            choice_id = coerce_int(item.get("id"))
            preview = item.get("preview")
            choices.append(Choice(
                id=choice_id if choice_id is not None else index + 1,
                text=text,
                preview=preview if isinstance(preview, str) else ""
            ))
        
        if len(choices) != EXPECTED_CHOICE_COUNT:
            logger.warning(
                "Model offered an unexpected number of choices",
                expected=EXPECTED_CHOICE_COUNT,
                received=len(choices)
            )
        return choices
    
    def _truncate(self, text: str) -> str:
        redacted = redact_secrets(text)
        if len(redacted) > MAX_DETAIL_PAYLOAD_LENGTH:
            return redacted[:MAX_DETAIL_PAYLOAD_LENGTH] + "... (truncated)"
        return redacted
