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
"""Async client that plays the adventure against the HTTP service.

The client keeps what the browser UI keeps: the displayed game state and
the displayed transcript. It submits one turn at a time, reassembles the
chunked response and merges it into the displayed state.
"""

from typing import Any, Dict, List, Optional
from httpx import AsyncClient, RequestError, Response
from pydantic import ValidationError as PydanticValidationError

from adventure.models import ChatMessage, GameState
from adventure.client.state_merger import initial_game_state, merge_game_state
from adventure.streaming.buffer import BufferError, ChunkAccumulator
from adventure.logging import StructuredLogger

logger = StructuredLogger(__name__)

MISSING_NARRATIVE_TEXT = "No narrative provided"


class ClientBusyError(Exception):
    """Raised when a turn is submitted while another is in flight."""
    pass


class TurnFailedError(Exception):
    """Raised when the service reports a failed turn.
    
    Attributes:
        error: Human-readable error message from the service
        details: Diagnostic detail from the service, if any
        status_code: HTTP status code, None for transport failures
    """
    def __init__(self, error: str, details: Any = None, status_code: Optional[int] = None):
        super().__init__(error)
        self.error = error
        self.details = details
        self.status_code = status_code


class AdventureClient:
    """Client for the adventure service.
    
    Example:
        async with httpx.AsyncClient() as http:
            client = AdventureClient("http://localhost:8000", http, theme="Horror")
            await client.load_opening()
            state = await client.submit(text="Light a torch")
            state = await client.submit(choice_id=2)
    """

    def __init__(
        self,
        base_url: str,
        http_client: AsyncClient,
        theme: Optional[str] = None,
        endpoint: Optional[str] = None,
        model: Optional[str] = None,
        session_id: str = "default",
        use_streaming: bool = True
    ):
        """Initialize adventure client.
        
        Args:
            base_url: Base URL of the adventure service
            http_client: HTTP client for making requests
            theme: Story theme sent with every turn
            endpoint: Model endpoint override sent with every turn
            model: Model name override sent with every turn
            session_id: Game session identifier
            use_streaming: Use the chunked stream route instead of the JSON route
        """
        self.base_url = base_url.rstrip('/')
        self.http_client = http_client
        self.theme = theme
        self.endpoint = endpoint
        self.model = model
        self.session_id = session_id
        self.use_streaming = use_streaming
        self.state: Optional[GameState] = None
        self.transcript: List[ChatMessage] = []
        self._in_flight = False

    @property
    def is_busy(self) -> bool:
        """Whether a request is in flight (submission is disabled)."""
        return self._in_flight

    async def load_opening(self) -> GameState:
        """Fetch an opener and show it as the initial state."""
        params = {"theme": self.theme, "endpoint": self.endpoint, "model": self.model}
        params = {k: v for k, v in params.items() if v}
        response = await self._send("GET", "/adventure/opening", params=params)
        self.state = initial_game_state(response.json()["content"])
        return self.state

    async def submit(self, text: Optional[str] = None, choice_id: Optional[int] = None) -> GameState:
        """Submit one turn as free text or as one of the offered choices.
        
        Args:
            text: Free-text player input
            choice_id: Id of a choice from the current state
            
        Returns:
            The merged state now displayed
            
        Raises:
            ValueError: If not exactly one of text/choice_id is usable
            ClientBusyError: If a request is already in flight
            TurnFailedError: If the service or transport fails; state is untouched
        """
        if self._in_flight:
            raise ClientBusyError("A turn is already in flight")
        user_text = self._resolve_input(text, choice_id)

        body = {
            "messages": [m.to_wire() for m in self.transcript]
            + [{"role": "user", "content": user_text}],
            "message": user_text,
            "theme": self.theme,
            "endpoint": self.endpoint,
            "model": self.model,
            "isNewGame": len(self.transcript) == 0,
            "sessionId": self.session_id
        }

        self._in_flight = True
        try:
            if self.use_streaming:
                payload = await self._stream_turn(body)
            else:
                payload = self._json_body(
                    await self._send("POST", "/adventure/turn", json=body)
                )
        finally:
            self._in_flight = False

        try:
            self.state = merge_game_state(self.state, payload)
        except PydanticValidationError as e:
            raise TurnFailedError(
                "Received an unreadable game state",
                details=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]
            ) from e
        self.transcript.extend([
            ChatMessage(role="user", content=user_text),
            ChatMessage(role="assistant", content=payload.get("narrative") or MISSING_NARRATIVE_TEXT)
        ])
        logger.debug(
            "Turn merged into displayed state",
            session_id=self.session_id,
            transcript_length=len(self.transcript),
            choice_count=len(self.state.choices)
        )
        return self.state

    def _resolve_input(self, text: Optional[str], choice_id: Optional[int]) -> str:
        if (text is None) == (choice_id is None):
            raise ValueError("Provide exactly one of text or choice_id")
        if text is not None:
            if not text.strip():
                raise ValueError("text must not be empty")
            return text
        choices = self.state.choices if self.state else []
        for choice in choices:
            if choice.id == choice_id:
                return choice.text
        raise ValueError(f"Choice {choice_id} is not among the current choices")

    async def _stream_turn(self, body: Dict[str, Any]) -> Dict[str, Any]:
        accumulator = ChunkAccumulator()
        try:
            async with self.http_client.stream(
                "POST", f"{self.base_url}/adventure/stream", json=body
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise self._failure_from(response)
                async for chunk in response.aiter_text():
                    accumulator.append(chunk)
        except RequestError as e:
            raise TurnFailedError("Could not reach the adventure service", details=str(e)) from e
        except BufferError as e:
            raise TurnFailedError("Stream exceeded the size limit", details=str(e)) from e
        
        accumulator.finalize()
        try:
            return accumulator.parse()
        except BufferError as e:
            raise TurnFailedError("Received an unreadable game state", details=str(e)) from e

    async def _send(self, method: str, path: str, **kwargs) -> Response:
        try:
            response = await self.http_client.request(method, f"{self.base_url}{path}", **kwargs)
        except RequestError as e:
            raise TurnFailedError("Could not reach the adventure service", details=str(e)) from e
        if response.status_code >= 400:
            raise self._failure_from(response)
        return response

    @staticmethod
    def _json_body(response: Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise TurnFailedError("Received an unreadable game state", details=str(e)) from e
        if not isinstance(data, dict):
            raise TurnFailedError("Received an unreadable game state", details="expected object")
        return data

    @staticmethod
    def _failure_from(response: Response) -> TurnFailedError:
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        error = data.get("error") or f"Request failed with status {response.status_code}"
        logger.warning(
            "Adventure service returned an error",
            status_code=response.status_code,
            error_type=data.get("error_type")
        )
        return TurnFailedError(error, details=data.get("details"), status_code=response.status_code)
