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
"""Accumulator for chunked game-state payloads on the receiving side.

Chunk boundaries carry no meaning, so a consumer appends every chunk in
arrival order and parses only once the stream has closed.
"""

from typing import Any, Dict, List, Optional
import json
import time


class ChunkAccumulator:
    """Buffers received chunks until the stream closes.
    
    Example:
        accumulator = ChunkAccumulator()
        async for chunk in response.aiter_text():
            accumulator.append(chunk)
        accumulator.finalize()
        payload = accumulator.parse()
    """
    
    # Maximum accumulated size in characters (1MB)
    MAX_BUFFER_SIZE = 1_000_000
    
    def __init__(self, max_size: Optional[int] = None):
        """Initialize an empty accumulator.
        
        Args:
            max_size: Size ceiling; defaults to MAX_BUFFER_SIZE
        """
        self.max_size = max_size or self.MAX_BUFFER_SIZE
        self._chunks: List[str] = []
        self._size = 0
        self._finalized = False
        self._start_time_monotonic = time.monotonic()
        self._duration_ms: Optional[float] = None
    
    def append(self, chunk: str) -> None:
        """Append a received chunk.
        
        Raises:
            BufferError: If already finalized or the size ceiling is exceeded
        """
        if self._finalized:
            raise BufferError("Cannot append to finalized buffer")
        
        if self._size + len(chunk) > self.max_size:
            self.finalize()
            raise BufferError(
                f"Buffer size limit exceeded: {self._size + len(chunk)} characters "
                f"(max: {self.max_size})"
            )
        
        self._chunks.append(chunk)
        self._size += len(chunk)
    
    def text(self) -> str:
        """Return every chunk joined in arrival order."""
        return "".join(self._chunks)
    
    def finalize(self) -> None:
        """Mark the stream as closed. Idempotent."""
        if not self._finalized:
            self._duration_ms = (time.monotonic() - self._start_time_monotonic) * 1000
            self._finalized = True
    
    def parse(self) -> Dict[str, Any]:
        """Parse the accumulated payload as a JSON object.
        
        Raises:
            BufferError: If called before finalize() or the payload is not an object
        """
        if not self._finalized:
            raise BufferError("Cannot parse before the stream is finalized")
        try:
            data = json.loads(self.text())
        except json.JSONDecodeError as e:
            raise BufferError(f"Accumulated payload is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise BufferError(f"Accumulated payload is {type(data).__name__}, expected object")
        return data
    
    def get_chunk_count(self) -> int:
        return len(self._chunks)
    
    def get_duration_ms(self) -> Optional[float]:
        """Duration from creation to finalize() in ms, or None if still open."""
        return self._duration_ms
    
    def is_finalized(self) -> bool:
        return self._finalized


class BufferError(Exception):
    """Raised when buffer operations fail."""
    pass
