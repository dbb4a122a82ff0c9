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
"""Conversation state for game sessions.

A ConversationSession owns the transcript sent to the model and the latest
GameState of one playthrough. The SessionRegistry owns the sessions, keyed
by session identifier, so concurrent games never share mutable state.

Transcript invariants:
- ``message_history[0]`` is always the system prompt once the session has
  started; a reset replaces the whole transcript, it never appends.
- Insertion order is the conversation order sent to the model.
"""

import asyncio
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from adventure.models import ChatMessage, GameState
from adventure.prompting.prompt_builder import PromptBuilder
from adventure.logging import StructuredLogger

logger = StructuredLogger(__name__)


@dataclass
class SessionSnapshot:
    """Copy of a session's mutable state, used to roll back a failed turn."""
    theme: Optional[str]
    message_history: List[ChatMessage]
    last_state: Optional[GameState]


class ConversationSession:
    """Transcript and latest game state for one playthrough.
    
    Example:
        session.start_or_continue(is_new_game=True, theme="Horror")
        session.append_user_turn("Open the door")
        messages = session.current_history()
        ...
        session.append_assistant_turn(state.narrative)
    """
    
    def __init__(self, session_id: str, prompt_builder: PromptBuilder):
        """Initialize an empty, not yet started session.
        
        Args:
            session_id: Registry key of this session
            prompt_builder: Renders the system prompt on reset
        """
        self.session_id = session_id
        self.prompt_builder = prompt_builder
        self.theme: Optional[str] = None
        self.message_history: List[ChatMessage] = []
        self.last_state: Optional[GameState] = None
        self.lock = asyncio.Lock()
        self.created_at = time.time()
        self.last_access = time.monotonic()
    
    @property
    def is_started(self) -> bool:
        """Whether the transcript holds a system prompt."""
        return bool(self.message_history)
    
    def start_or_continue(self, is_new_game: bool, theme: Optional[str] = None) -> None:
        """Reset the transcript for a new game, or keep the running one.
        
        A reset discards all prior messages and the last game state and
        starts from a single system prompt built from the theme.
        
        Args:
            is_new_game: Explicit request for a fresh story
            theme: Story theme for the system prompt (default theme if blank)
        """
        if is_new_game or not self.is_started:
            self.theme = self.prompt_builder.resolve_theme(theme)
            self.message_history = [
                ChatMessage(role="system", content=self.prompt_builder.system_prompt(self.theme))
            ]
            self.last_state = None
            logger.info(
                "Started new conversation",
                session_id=self.session_id,
                theme=self.theme,
                explicit_reset=is_new_game
            )
        else:
            logger.debug(
                "Continuing conversation",
                session_id=self.session_id,
                message_count=len(self.message_history)
            )
    
    def append_user_turn(self, text: str) -> None:
        """Append the player's input to the transcript."""
        self._require_started()
        self.message_history.append(ChatMessage(role="user", content=text))
    
    def append_assistant_turn(self, narrative: str) -> None:
        """Append the narrator's reply to the transcript."""
        self._require_started()
        self.message_history.append(ChatMessage(role="assistant", content=narrative))
    
    def current_history(self) -> List[ChatMessage]:
        """Return a copy of the transcript in conversation order."""
        return list(self.message_history)
    
    def model_messages(self, minimal_context: bool = False) -> List[ChatMessage]:
        """Return the messages to send to the model for the pending turn.
        
        In minimal-context mode only the system prompt and the latest user
        turn are sent; the full transcript is still kept in the session.
        """
        self._require_started()
        if not minimal_context:
            return self.current_history()
        
        latest_user = next(
            (m for m in reversed(self.message_history) if m.role == "user"),
            None
        )
        messages = [self.message_history[0]]
        if latest_user is not None:
            messages.append(latest_user)
        return messages
    
    def snapshot(self) -> SessionSnapshot:
        """Capture the mutable state for a later restore()."""
        return SessionSnapshot(
            theme=self.theme,
            message_history=list(self.message_history),
            last_state=self.last_state
        )
    
    def restore(self, snapshot: SessionSnapshot) -> None:
        """Return to a state captured by snapshot()."""
        self.theme = snapshot.theme
        self.message_history = list(snapshot.message_history)
        self.last_state = snapshot.last_state
    
    def touch(self) -> None:
        """Mark the session as recently used."""
        self.last_access = time.monotonic()
    
    def to_dict(self) -> Dict[str, Any]:
        """Serialize the session for the debug snapshot endpoint."""
        return {
            "session_id": self.session_id,
            "theme": self.theme,
            "message_count": len(self.message_history),
            "message_history": [m.to_wire() for m in self.message_history],
            "last_state": self.last_state.to_wire() if self.last_state else None
        }
    
    def _require_started(self) -> None:
        if not self.is_started:
            raise RuntimeError(
                f"Session {self.session_id} has not been started; call start_or_continue() first"
            )


class SessionRegistry:
    """In-memory registry of game sessions with LRU and idle-time bounds.
    
    Features:
    - Thread-safe access with locks
    - LRU eviction when max_sessions is reached
    - Idle sessions older than ttl_seconds are purged on access
    
    Example:
        >>> registry = SessionRegistry(prompt_builder, max_sessions=100)
        >>> session = registry.get_or_create("tab-1")
        >>> registry.delete("tab-1")
    """
    
    def __init__(
        self,
        prompt_builder: PromptBuilder,
        max_sessions: int = 1000,
        ttl_seconds: int = 86400
    ):
        """Initialize session registry.
        
        Args:
            prompt_builder: Passed to every new session
            max_sessions: Maximum number of live sessions
            ttl_seconds: Idle time after which a session is discarded
        """
        self.prompt_builder = prompt_builder
        self.max_sessions = max_sessions
        self.ttl_seconds = ttl_seconds
        self._sessions: "OrderedDict[str, ConversationSession]" = OrderedDict()
        self._lock = threading.Lock()
    
    def get_or_create(self, session_id: str) -> ConversationSession:
        """Return the session for an id, creating it on first use."""
        with self._lock:
            self._purge_expired()
            session = self._sessions.get(session_id)
            if session is None:
                session = ConversationSession(session_id, self.prompt_builder)
                self._sessions[session_id] = session
                logger.info("Created game session", session_id=session_id)
                while len(self._sessions) > self.max_sessions:
                    evicted_id, _ = self._sessions.popitem(last=False)
                    logger.info("Evicted least recently used session", evicted_session_id=evicted_id)
            else:
                self._sessions.move_to_end(session_id)
            session.touch()
            return session
    
    def get(self, session_id: str) -> Optional[ConversationSession]:
        """Return an existing session, or None."""
        with self._lock:
            self._purge_expired()
            return self._sessions.get(session_id)
    
    def delete(self, session_id: str) -> bool:
        """Destroy a session. Returns False if it did not exist."""
        with self._lock:
            removed = self._sessions.pop(session_id, None)
        if removed is not None:
            logger.info("Deleted game session", session_id=session_id)
        return removed is not None
    
    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
    
    def _purge_expired(self) -> None:
        cutoff = time.monotonic() - self.ttl_seconds
        expired = [sid for sid, s in self._sessions.items() if s.last_access < cutoff]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("Purged idle sessions", purged_count=len(expired))
