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
"""Parser for model replies with a tagged success/failure result.

This module is the single boundary between untrusted model text and the
rest of the service. It runs extraction and normalization and never lets
their exceptions escape: callers receive a ParsedOutcome that is either a
valid GameState or one of the per-turn error kinds.
"""

from typing import Optional
from dataclasses import dataclass

from adventure.models import GameState
from adventure.logging import StructuredLogger, redact_secrets
from adventure.services.errors import TurnError
from adventure.services.response_extractor import extract_json_payload
from adventure.services.state_normalizer import GameStateNormalizer

logger = StructuredLogger(__name__)

# Maximum payload size to log (to prevent log flooding and secret leakage)
MAX_PAYLOAD_LOG_LENGTH = 500


@dataclass
class ParsedOutcome:
    """Result of parsing a model reply.
    
    Attributes:
        state: Normalized GameState if parsing succeeded, None otherwise
        is_valid: Whether the reply produced a GameState
        error: The per-turn error if parsing failed
        json_payload: The isolated JSON candidate, when extraction succeeded
    """
    state: Optional[GameState]
    is_valid: bool
    error: Optional[TurnError] = None
    json_payload: Optional[str] = None

    @property
    def error_type(self) -> Optional[str]:
        """Machine-readable error category, if any."""
        return self.error.error_type if self.error else None

    def unwrap(self) -> GameState:
        """Return the GameState or raise the recorded error."""
        if self.error is not None:
            raise self.error
        return self.state


class OutcomeParser:
    """Turns raw model text into a ParsedOutcome.
    
    Steps:
    1. Strip thinking annotations and isolate the outermost JSON object
    2. Parse strictly and check mandatory fields
    3. Fill every other field from the reply, the previous state or defaults
    """
    
    def __init__(self, normalizer: Optional[GameStateNormalizer] = None):
        """Initialize outcome parser."""
        self.normalizer = normalizer or GameStateNormalizer()
    
    def parse(
        self,
        response_text: str,
        previous: Optional[GameState] = None
    ) -> ParsedOutcome:
        """Parse a model reply into a tagged result.
        
        Args:
            response_text: Raw text returned by the model backend
            previous: Last known GameState of the session, if any
            
        Returns:
            ParsedOutcome with a GameState or the error that prevented one
        """
        payload = None
        try:
            payload = extract_json_payload(response_text)
            state = self.normalizer.normalize(payload, previous=previous)
        except TurnError as e:
            logger.error(
                "Model reply could not be turned into a game state",
                error_type=e.error_type,
                payload_preview=self._truncate_for_log(response_text or "")
            )
            return ParsedOutcome(state=None, is_valid=False, error=e, json_payload=payload)
        
        return ParsedOutcome(state=state, is_valid=True, json_payload=payload)
    
    def _truncate_for_log(self, text: str) -> str:
        """Redact and truncate text for safe logging."""
        redacted = redact_secrets(text).replace('\n', ' ')
        if len(redacted) > MAX_PAYLOAD_LOG_LENGTH:
            return redacted[:MAX_PAYLOAD_LOG_LENGTH] + "... (truncated)"
        return redacted
