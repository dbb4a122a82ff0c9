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
"""Pydantic models for the adventure service.

This module defines the canonical game-state record produced for every turn,
the request/response schemas of the HTTP API, and the role-tagged message
type shared by the conversation manager and the model client.

Game-state models use snake_case attributes in Python and camelCase keys on
the wire (``maxHealth``, ``storySoFar``, ``systemLog`` ...). Always serialize
them with ``to_wire()`` or ``model_dump(by_alias=True)``.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

DecisionType = Literal["MORAL", "COMBAT", "ALLIANCE", "QUEST", "ITEM"]
AllianceStance = Literal["friendly", "hostile", "neutral"]
GamePhaseName = Literal["DISASTER", "SURVIVAL", "CHALLENGE", "VICTORY"]
Difficulty = Literal["EASY", "MEDIUM", "HARD"]
MessageRole = Literal["system", "user", "assistant"]

DECISION_TYPES = ("MORAL", "COMBAT", "ALLIANCE", "QUEST", "ITEM")
ALLIANCE_STANCES = ("friendly", "hostile", "neutral")
GAME_PHASES = ("DISASTER", "SURVIVAL", "CHALLENGE", "VICTORY")
DIFFICULTIES = ("EASY", "MEDIUM", "HARD")

DEFAULT_HEALTH = 100
DEFAULT_MAX_HEALTH = 100
DEFAULT_GOLD = 0
DEFAULT_PHASE: GamePhaseName = "DISASTER"
DEFAULT_DIFFICULTY: Difficulty = "MEDIUM"


class GameModel(BaseModel):
    """Base class for wire-facing game-state models."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """Dump to a JSON-compatible dict using camelCase keys."""
        return self.model_dump(by_alias=True, mode="json")


class ChatMessage(GameModel):
    """A single role-tagged entry of a conversation transcript."""
    role: MessageRole
    content: str


class GameStats(GameModel):
    """Player statistics shown in the character panel."""
    health: int = Field(DEFAULT_HEALTH, ge=0)
    max_health: int = Field(DEFAULT_MAX_HEALTH, ge=1)
    gold: int = Field(DEFAULT_GOLD, ge=0)
    inventory: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_health_bounds(self) -> "GameStats":
        """Health never exceeds maxHealth."""
        if self.health > self.max_health:
            raise ValueError(
                f"health ({self.health}) cannot exceed maxHealth ({self.max_health})"
            )
        return self


class DecisionFlags(GameModel):
    """Moral weight markers attached to a recorded decision."""
    is_betrayal: bool = False
    is_killing: bool = False
    is_heroic: bool = False
    is_permanent: bool = False


class Decision(GameModel):
    """A significant player decision recorded in the system log."""
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    type: DecisionType
    description: str = ""
    consequences: List[str] = Field(default_factory=list)
    affected_npcs: List[str] = Field(default_factory=list, alias="affectedNPCs")
    flags: DecisionFlags = Field(default_factory=DecisionFlags)


class WorldState(GameModel):
    """Persistent facts about the world the narrator must stay consistent with."""
    alliances: Dict[str, AllianceStance] = Field(default_factory=dict)
    dead_npcs: List[str] = Field(default_factory=list, alias="deadNPCs")
    unlocked_locations: List[str] = Field(default_factory=list)
    active_quests: List[str] = Field(default_factory=list)
    completed_quests: List[str] = Field(default_factory=list)
    reputation: Dict[str, int] = Field(default_factory=dict)


class GamePhase(GameModel):
    """Story arc position and difficulty."""
    current_phase: GamePhaseName = DEFAULT_PHASE
    days_survived: int = Field(0, ge=0)
    difficulty: Difficulty = DEFAULT_DIFFICULTY


class SystemLog(GameModel):
    """Structured bookkeeping that accompanies the narrative."""
    decisions: List[Decision] = Field(default_factory=list)
    world_state: WorldState = Field(default_factory=WorldState)
    game_state: GamePhase = Field(default_factory=GamePhase)
    message_history: List[ChatMessage] = Field(default_factory=list)


class GameChanges(GameModel):
    """Deltas describing what just happened; None when nothing changed."""
    health_change: Optional[int] = None
    gold_change: Optional[int] = None
    items_added: Optional[List[str]] = None
    items_removed: Optional[List[str]] = None


class Choice(GameModel):
    """One of the actions offered to the player."""
    id: int
    text: str
    preview: str = ""


class GameState(GameModel):
    """The canonical per-turn game-state record.
    
    Attributes:
        stats: Player statistics
        narrative: The latest scene description
        story_so_far: Cumulative summary (falls back to narrative)
        system_log: Decisions, world state, phase and transcript mirror
        changes: Deltas for this turn
        choices: Actions offered next (three in the intended design)
    """
    stats: GameStats = Field(default_factory=GameStats)
    narrative: str = ""
    story_so_far: str = ""
    system_log: SystemLog = Field(default_factory=SystemLog)
    changes: GameChanges = Field(default_factory=GameChanges)
    choices: List[Choice] = Field(default_factory=list)


class TurnRequest(BaseModel):
    """Request model for a player turn.
    
    Accepts the camelCase keys sent by the browser client as well as
    snake_case names. The player's input is ``message`` when given,
    otherwise the content of the last entry of ``messages``.
    """
    model_config = ConfigDict(populate_by_name=True)

    messages: Optional[List[ChatMessage]] = Field(
        None,
        description="Client-side transcript; only the last entry is used as the player turn"
    )
    message: Optional[str] = Field(
        None,
        max_length=8000,
        description="Player's action or free text for this turn",
        examples=["Investigate the gold carefully"]
    )
    theme: Optional[str] = Field(
        None,
        max_length=200,
        description="Story theme; used when a new game starts",
        examples=["Fantasy", "Sci-Fi", "Horror"]
    )
    endpoint: Optional[str] = Field(
        None,
        description="Model endpoint override",
        examples=["http://localhost:11434"]
    )
    model: Optional[str] = Field(
        None,
        description="Model name override",
        examples=["deepseek-r1:32b"]
    )
    is_new_game: bool = Field(
        False,
        alias="isNewGame",
        description="Discard the session transcript and start a fresh story"
    )
    session_id: str = Field(
        "default",
        alias="sessionId",
        min_length=1,
        max_length=128,
        description="Game session identifier"
    )

    @model_validator(mode="after")
    def check_player_input(self) -> "TurnRequest":
        """Require a non-empty player turn."""
        if not self.user_text().strip():
            raise ValueError("request must carry a non-empty 'message' or 'messages'")
        return self

    def user_text(self) -> str:
        """Return the player's input for this turn."""
        if self.message is not None:
            return self.message
        if self.messages:
            return self.messages[-1].content
        return ""


class OpeningResponse(BaseModel):
    """Response for the adventure opener."""
    content: str = Field(..., description="Opening narration text")


class SessionView(BaseModel):
    """Debug view of a live game session."""
    session_id: str
    theme: Optional[str] = None
    message_count: int
    message_history: List[Dict[str, Any]]
    last_state: Optional[Dict[str, Any]] = None


class OptionsResponse(BaseModel):
    """Picker options offered to the browser client."""
    endpoints: List[str]
    models: List[str]
    themes: List[str]
    default_endpoint: str
    default_model: str


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""
    status: Literal["healthy", "degraded"] = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    active_sessions: int = Field(0, description="Number of live game sessions")


class ErrorResponse(BaseModel):
    """Error payload returned for a failed request.
    
    Attributes:
        error: Stable, human-readable error message
        error_type: Machine-readable error category
        details: Best-effort diagnostic detail (may include raw model text)
        request_id: Request correlation ID
    """
    error: str
    error_type: str
    details: Optional[Any] = None
    request_id: Optional[str] = None


class DebugParseRequest(BaseModel):
    """Request model for the debug parse endpoint."""
    llm_response: str = Field(
        ...,
        min_length=1,
        description="Raw model output to run through extraction and normalization"
    )
