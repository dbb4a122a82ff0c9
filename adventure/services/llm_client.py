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
"""Model backend client for narrative generation.

The model backend is a locally-hosted Ollama server reached through its
OpenAI-compatible chat completions API. The client accepts a role-tagged
message list and returns the free-text completion; it enforces no schema,
so every reply goes through the outcome parser afterwards.
"""

import json
import time
from collections import OrderedDict
from typing import List, Optional
from openai import AsyncOpenAI
import openai

from adventure.logging import StructuredLogger, redact_secrets
from adventure.models import ChatMessage
from adventure.prompting.prompt_builder import PromptBuilder
from adventure.metrics import get_metrics_collector
from adventure.services.errors import (
    ModelBackendError,
    ModelConfigurationError,
    ModelTimeoutError,
)

logger = StructuredLogger(__name__)


class ModelClient:
    """Client for a locally-hosted language model.
    
    This client:
    - Sends the conversation as OpenAI-style chat messages
    - Lets each request override the endpoint and model
    - Applies a per-call timeout so a hung model cannot stall a session
    - Does not retry: a failure is terminal for the turn
    - Supports stub mode for offline development
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "deepseek-r1:32b",
        api_key: str = "ollama",
        timeout: int = 120,
        stub_mode: bool = False,
        prompt_builder: Optional[PromptBuilder] = None,
        max_cached_clients: int = 8
    ):
        """Initialize model client.

        Args:
            base_url: Default Ollama endpoint (without the /v1 suffix)
            model: Default model name
            api_key: Placeholder key required by the OpenAI SDK
            timeout: Request timeout in seconds
            stub_mode: If True, returns stub replies without calling the backend
            prompt_builder: Builds the opener messages
            max_cached_clients: Number of per-endpoint SDK clients kept open
        """
        self.prompt_builder = prompt_builder or PromptBuilder()
        if not model or model.strip() == "":
            raise ModelConfigurationError(details="Model name cannot be empty")

        self.base_url = base_url.rstrip('/')
        self.model = model
        self.api_key = api_key or "ollama"
        self.timeout = timeout
        self.stub_mode = stub_mode
        self.max_cached_clients = max(1, max_cached_clients)
        self._clients: "OrderedDict[str, AsyncOpenAI]" = OrderedDict()
        self._retired: List[AsyncOpenAI] = []

        if stub_mode:
            logger.info("Initialized ModelClient in STUB MODE (no model calls will be made)")
        else:
            logger.info(
                f"Initialized ModelClient with base_url={self.base_url}, model={self.model}, "
                f"timeout={self.timeout}s"
            )

    def _client_for(self, endpoint: str) -> AsyncOpenAI:
        """Return the cached SDK client for an endpoint.

        The cache is least-recently-used and bounded by max_cached_clients;
        evicted clients are closed by the next complete() or close().
        """
        client = self._clients.get(endpoint)
        if client is not None:
            self._clients.move_to_end(endpoint)
            return client

        client = AsyncOpenAI(
            base_url=f"{endpoint}/v1",
            api_key=self.api_key,
            timeout=self.timeout,
            max_retries=0
        )
        self._clients[endpoint] = client
        while len(self._clients) > self.max_cached_clients:
            evicted_endpoint, evicted = self._clients.popitem(last=False)
            self._retired.append(evicted)
            logger.debug("Evicted model client", endpoint=evicted_endpoint)
        return client

    async def _close_retired(self) -> None:
        while self._retired:
            await self._retired.pop().close()

    async def complete(
        self,
        messages: List[ChatMessage],
        endpoint: Optional[str] = None,
        model: Optional[str] = None
    ) -> str:
        """Send a conversation to the model and return its reply text.
        
        Args:
            messages: Role-tagged conversation, system prompt first
            endpoint: Optional endpoint override
            model: Optional model name override
            
        Returns:
            The completion text, unmodified
            
        Raises:
            ModelTimeoutError: If the call exceeds the timeout
            ModelConfigurationError: If the backend rejects credentials or model
            ModelBackendError: For connection failures, server errors and empty replies
        """
        endpoint = (endpoint or self.base_url).rstrip('/')
        model = model or self.model

        if self.stub_mode:
            return self._generate_stub_reply(messages, model)

        await self._close_retired()

        logger.info(
            "Calling model backend",
            endpoint=endpoint,
            model=model,
            message_count=len(messages)
        )

        start_time = time.time()
        try:
            response = await self._client_for(endpoint).chat.completions.create(
                model=model,
                messages=[{"role": m.role, "content": m.content} for m in messages]
            )
        except openai.APITimeoutError as e:
            self._record_latency(start_time)
            logger.error("Model call timed out", timeout_seconds=self.timeout)
            raise ModelTimeoutError(
                details=f"Model call exceeded {self.timeout}s"
            ) from e
        except (openai.AuthenticationError, openai.PermissionDeniedError, openai.NotFoundError) as e:
            self._record_latency(start_time)
            logger.error(
                "Model backend rejected the request configuration",
                error_type=type(e).__name__,
                error=redact_secrets(str(e))
            )
            raise ModelConfigurationError(details=redact_secrets(str(e))) from e
        except openai.APIConnectionError as e:
            self._record_latency(start_time)
            logger.error(
                "Model backend unreachable",
                endpoint=endpoint,
                error=redact_secrets(str(e))
            )
            raise ModelBackendError(details=f"Could not reach model backend at {endpoint}") from e
        except openai.APIError as e:
            self._record_latency(start_time)
            logger.error(
                "Model backend returned an error",
                error_type=type(e).__name__,
                error=redact_secrets(str(e))
            )
            raise ModelBackendError(details=redact_secrets(str(e))) from e

        duration_ms = (time.time() - start_time) * 1000
        if (collector := get_metrics_collector()):
            collector.record_latency("model_call", duration_ms)

        content = None
        if response.choices:
            content = response.choices[0].message.content

        if not content:
            logger.error("Model backend returned empty content", model=model)
            raise ModelBackendError(details="Model returned empty content")

        logger.info(
            "Model call completed",
            model=model,
            reply_length=len(content),
            duration_ms=f"{duration_ms:.2f}"
        )
        return content

    async def opening(
        self,
        theme: Optional[str] = None,
        endpoint: Optional[str] = None,
        model: Optional[str] = None
    ) -> str:
        """Ask the model for a short free-text opener for a theme.

        The opener is a one-shot exchange outside any session transcript.
        """
        return await self.complete(
            self.prompt_builder.opening_messages(theme),
            endpoint=endpoint,
            model=model
        )

    async def close(self) -> None:
        """Close every cached SDK client."""
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
        await self._close_retired()

    def _record_latency(self, start_time: float) -> None:
        if (collector := get_metrics_collector()):
            collector.record_latency("model_call", (time.time() - start_time) * 1000)

    def _generate_stub_reply(self, messages: List[ChatMessage], model: str) -> str:
        """Build a deterministic, schema-shaped reply for offline development.
        
        The JSON is wrapped in a thinking block so the full extraction path
        is exercised. A one-shot opener (no JSON instructions) gets plain text.
        """
        user_turns = [m for m in messages if m.role == "user"]
        last_action = user_turns[-1].content if user_turns else ""

        if len(messages) <= 2 and "JSON" not in messages[0].content:
            return f"[STUB MODE] A new adventure begins ({model})."

        reply = {
            "stats": {"health": 100, "maxHealth": 100, "gold": 5, "inventory": ["Torch"]},
            "narrative": f"[STUB MODE] You chose to {last_action!r}. The world holds its breath ({model}).",
            "storySoFar": f"[STUB MODE] {len(user_turns)} turn(s) played.",
            "systemLog": {
                "decisions": [],
                "worldState": {
                    "alliances": {},
                    "deadNPCs": [],
                    "unlockedLocations": [],
                    "activeQuests": [],
                    "completedQuests": [],
                    "reputation": {}
                },
                "gameState": {"currentPhase": "DISASTER", "daysSurvived": 0, "difficulty": "MEDIUM"}
            },
            "changes": {"healthChange": None, "goldChange": None, "itemsAdded": None, "itemsRemoved": None},
            "choices": [
                {"id": 1, "text": "Look around", "preview": "Take stock of your surroundings"},
                {"id": 2, "text": "Move forward", "preview": "Press on into the unknown"},
                {"id": 3, "text": "Wait", "preview": "See what happens next"}
            ]
        }
        return f"<think>stub reasoning</think>\n{json.dumps(reply)}"
