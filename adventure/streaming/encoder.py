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
"""Chunked delivery of a finalized game state.

The game state is fully known before the first chunk is written; chunking
is a transport artifact that lets the browser render a typing effect, not
incremental generation. Chunk boundaries do not align with JSON tokens, so
consumers must buffer every chunk before parsing.
"""

import asyncio
import time
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from adventure.models import GameState
from adventure.logging import StreamLifecycleLogger, StructuredLogger
from adventure.metrics import get_metrics_collector

logger = StructuredLogger(__name__)

DisconnectCheck = Callable[[], Awaitable[bool]]


def split_chunks(text: str, chunk_size: int) -> List[str]:
    """Split text into consecutive slices of at most chunk_size characters.
    
    Args:
        text: Serialized payload
        chunk_size: Maximum characters per slice (must be positive)
        
    Returns:
        Slices in order; empty list for empty text
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return [text[i:i + chunk_size] for i in range(0, len(text), chunk_size)]


class ChunkedDeliveryEncoder:
    """Serializes a GameState once and emits it as paced chunks.
    
    Example:
        encoder = ChunkedDeliveryEncoder(chunk_size=100, delay_ms=10)
        return StreamingResponse(
            encoder.stream(state, session_id, request.is_disconnected),
            media_type="text/event-stream"
        )
    """
    
    def __init__(self, chunk_size: int = 100, delay_ms: int = 10):
        """Initialize encoder.
        
        Args:
            chunk_size: Characters per chunk
            delay_ms: Pause after each chunk, in milliseconds
        """
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.chunk_size = chunk_size
        self.delay_ms = delay_ms
    
    def encode(self, state: GameState) -> str:
        """Serialize the state to its camelCase JSON wire form."""
        return state.model_dump_json(by_alias=True)
    
    def chunks(self, state: GameState) -> List[str]:
        """Return the serialized state split into delivery chunks."""
        return split_chunks(self.encode(state), self.chunk_size)
    
    async def stream(
        self,
        state: GameState,
        session_id: str = "default",
        is_disconnected: Optional[DisconnectCheck] = None
    ) -> AsyncIterator[bytes]:
        """Yield the encoded state chunk by chunk with cooperative pacing.
        
        Emission stops as soon as is_disconnected reports the client gone.
        
        Args:
            state: Finalized game state
            session_id: Session identifier for log correlation
            is_disconnected: Optional async check, e.g. Request.is_disconnected
        """
        payload = self.encode(state)
        pieces = split_chunks(payload, self.chunk_size)
        lifecycle = StreamLifecycleLogger(logger, session_id)
        lifecycle.log_stream_start(payload_length=len(payload), chunk_count=len(pieces))
        
        collector = get_metrics_collector()
        if collector:
            collector.record_stream_start()
        
        start = time.monotonic()
        sent = 0
        try:
            for index, piece in enumerate(pieces):
                if is_disconnected is not None and await is_disconnected():
                    lifecycle.log_client_disconnect()
                    if collector:
                        collector.record_stream_client_disconnect()
                    return
                yield piece.encode("utf-8")
                sent += 1
                lifecycle.log_chunk_sent(index)
                if self.delay_ms > 0:
                    await asyncio.sleep(self.delay_ms / 1000)
        except asyncio.CancelledError:
            lifecycle.log_client_disconnect()
            if collector:
                collector.record_stream_client_disconnect()
            raise
        
        lifecycle.log_stream_complete(chunks_sent=sent)
        if collector:
            collector.record_stream_complete(
                chunk_count=sent,
                duration_ms=(time.monotonic() - start) * 1000
            )
