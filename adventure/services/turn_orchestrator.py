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
"""Turn orchestrator for deterministic turn processing.

One turn runs these steps, in order, while holding the session lock:
1. Snapshot the session so a failed turn leaves no trace
2. Reset or continue the transcript
3. Append the player's input
4. Call the model (full transcript, or system prompt plus latest input)
5. Extract and normalize the reply against the previous game state
6. Mirror the transcript into systemLog.messageHistory
7. Append the narrator's reply and store the new game state

The orchestrator ensures:
- Concurrent turns on one session serialize instead of interleaving
- A failed turn restores the session to its pre-turn state
- Structured error logging and metrics for every outcome
"""

from typing import Optional

from adventure.models import GameState
from adventure.services.conversation import ConversationSession
from adventure.services.errors import TurnError
from adventure.services.llm_client import ModelClient
from adventure.services.outcome_parser import OutcomeParser
from adventure.logging import PhaseTimer, StructuredLogger, set_session_id
from adventure.metrics import get_metrics_collector

logger = StructuredLogger(__name__)


class TurnOrchestrator:
    """Orchestrator for a single player turn.
    
    Example:
        orchestrator = TurnOrchestrator(model_client, OutcomeParser())
        state = await orchestrator.play_turn(session, "Open the door")
    """
    
    def __init__(
        self,
        model_client: ModelClient,
        outcome_parser: Optional[OutcomeParser] = None,
        minimal_context: bool = False
    ):
        """Initialize turn orchestrator.
        
        Args:
            model_client: Client for the model backend
            outcome_parser: Parser for model replies
            minimal_context: Send only system prompt and latest input to the model
        """
        self.model_client = model_client
        self.outcome_parser = outcome_parser or OutcomeParser()
        self.minimal_context = minimal_context
    
    async def play_turn(
        self,
        session: ConversationSession,
        user_text: str,
        theme: Optional[str] = None,
        is_new_game: bool = False,
        endpoint: Optional[str] = None,
        model: Optional[str] = None
    ) -> GameState:
        """Run one turn and return the new game state.
        
        Args:
            session: Conversation session to advance
            user_text: Player's action or free text
            theme: Story theme, used when a new game starts
            is_new_game: Discard the transcript and start fresh
            endpoint: Optional model endpoint override
            model: Optional model name override
            
        Returns:
            The normalized GameState for this turn
            
        Raises:
            TurnError: Any per-turn failure; the session is left unchanged.
                Other exceptions also restore the session before propagating.
        """
        set_session_id(session.session_id)
        
        async with session.lock:
            snapshot = session.snapshot()
            try:
                state = await self._run_steps(
                    session, user_text, theme, is_new_game, endpoint, model
                )
            except TurnError as e:
                session.restore(snapshot)
                logger.warning(
                    "Turn failed; session restored to pre-turn state",
                    error_type=e.error_type,
                    message_count=len(session.message_history)
                )
                if (collector := get_metrics_collector()):
                    collector.record_error(e.error_type)
                raise
            except Exception as e:
                # Reported as internal_error by the caller
                session.restore(snapshot)
                logger.error(
                    "Turn failed unexpectedly; session restored to pre-turn state",
                    error_type=type(e).__name__,
                    message_count=len(session.message_history)
                )
                raise
            
        if (collector := get_metrics_collector()):
            collector.record_turn_complete()
        
        logger.info(
            "Turn completed",
            choice_count=len(state.choices),
            health=state.stats.health,
            phase=state.system_log.game_state.current_phase
        )
        return state
    
    async def _run_steps(
        self,
        session: ConversationSession,
        user_text: str,
        theme: Optional[str],
        is_new_game: bool,
        endpoint: Optional[str],
        model: Optional[str]
    ) -> GameState:
        session.start_or_continue(is_new_game=is_new_game, theme=theme)
        session.append_user_turn(user_text)
        
        with PhaseTimer("model_call", logger):
            reply = await self.model_client.complete(
                session.model_messages(self.minimal_context),
                endpoint=endpoint,
                model=model
            )
        
        with PhaseTimer("normalization", logger):
            outcome = self.outcome_parser.parse(reply, previous=session.last_state)
        state = outcome.unwrap()
        
        # Mirror includes the new user turn but not the assistant reply
        state.system_log.message_history = session.current_history()
        
        session.append_assistant_turn(state.narrative)
        session.last_state = state
        return state
