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
"""Optional metrics collection for observability.

This module provides simple in-memory metrics collection:
- Request counters (total, success, error by status code)
- Latency tracking (min, max, avg, count by operation)
- Chunk stream counters and turn parse conformance
- Thread-safe atomic operations using locks
"""

import time
from typing import Dict, Optional
from dataclasses import dataclass
from threading import Lock
from collections import defaultdict

# Error types that count as a model reply the pipeline could not use
PARSE_FAILURE_TYPES = ("extraction_error", "parse_error", "validation_error")


@dataclass
class LatencyStats:
    """Statistics for a generic numeric value (latency, counts, etc.)."""
    count: int = 0
    total: float = 0.0
    min: float = float('inf')
    max: float = 0.0
    
    @property
    def avg(self) -> float:
        """Calculate average value."""
        return self.total / self.count if self.count > 0 else 0.0
    
    def record(self, value: float) -> None:
        """Record a new sample.
        
        Args:
            value: The value to record (e.g., duration in ms, chunk count)
        """
        self.count += 1
        self.total += value
        self.min = min(self.min, value)
        self.max = max(self.max, value)
    
    def to_dict(self, unit: str = "ms") -> Dict[str, float]:
        """Convert to dictionary for serialization.
        
        Args:
            unit: Unit suffix for keys (e.g., "ms" for milliseconds, "" for dimensionless)
        
        Returns:
            Dictionary with count, avg, min, max with appropriate unit suffix
        """
        suffix = f"_{unit}" if unit else ""
        return {
            "count": self.count,
            f"avg{suffix}": round(self.avg, 2),
            f"min{suffix}": round(self.min, 2) if self.min != float('inf') else 0.0,
            f"max{suffix}": round(self.max, 2)
        }


class MetricsCollector:
    """In-memory metrics collector with thread-safe operations.
    
    Collects:
    - HTTP request counts by status code
    - Operation latencies (turn processing, model calls)
    - Error counts by type
    - Chunk stream metrics (chunks per stream, durations, client disconnects)
    """
    
    def __init__(self):
        """Initialize metrics collector."""
        self._lock = Lock()
        self._request_counts: Dict[int, int] = defaultdict(int)
        self._error_counts: Dict[str, int] = defaultdict(int)
        self._latencies: Dict[str, LatencyStats] = defaultdict(LatencyStats)
        self._start_time = time.time()
        self._turns_completed = 0
        self._stream_counts = {
            "total": 0,
            "completed": 0,
            "client_disconnects": 0
        }
        self._stream_chunk_stats = LatencyStats()
        self._stream_duration_stats = LatencyStats()
    
    def record_request(self, status_code: int) -> None:
        """Record an HTTP request."""
        with self._lock:
            self._request_counts[status_code] += 1
    
    def record_error(self, error_type: str) -> None:
        """Record an error by type.
        
        Args:
            error_type: Error type/category
        """
        with self._lock:
            self._error_counts[error_type] += 1
    
    def record_latency(self, operation: str, duration_ms: float) -> None:
        """Record operation latency.
        
        Args:
            operation: Operation name (e.g., "turn", "model_call")
            duration_ms: Duration in milliseconds
        """
        with self._lock:
            self._latencies[operation].record(duration_ms)
    
    def record_turn_complete(self) -> None:
        """Record a turn whose model reply normalized successfully."""
        with self._lock:
            self._turns_completed += 1
    
    def record_stream_start(self) -> None:
        """Record the start of a chunk stream."""
        with self._lock:
            self._stream_counts["total"] += 1
    
    def record_stream_complete(self, chunk_count: int, duration_ms: float) -> None:
        """Record successful completion of a chunk stream.
        
        Args:
            chunk_count: Number of chunks emitted
            duration_ms: Total stream duration in milliseconds
        """
        with self._lock:
            self._stream_counts["completed"] += 1
            self._stream_chunk_stats.record(float(chunk_count))
            self._stream_duration_stats.record(duration_ms)
    
    def record_stream_client_disconnect(self) -> None:
        """Record a client disconnect during streaming."""
        with self._lock:
            self._stream_counts["client_disconnects"] += 1
    
    def get_metrics(self) -> Dict:
        """Get all collected metrics.
        
        Returns:
            Dictionary with all metrics
        """
        with self._lock:
            total_requests = sum(self._request_counts.values())
            success_requests = sum(
                count for status, count in self._request_counts.items()
                if 200 <= status < 400
            )
            
            parse_failures = sum(
                self._error_counts.get(error_type, 0)
                for error_type in PARSE_FAILURE_TYPES
            )
            total_parses = self._turns_completed + parse_failures
            conformance_rate = (
                self._turns_completed / total_parses if total_parses > 0 else 0.0
            )
            
            return {
                "uptime_seconds": round(time.time() - self._start_time, 2),
                "requests": {
                    "total": total_requests,
                    "success": success_requests,
                    "errors": total_requests - success_requests,
                    "by_status_code": dict(self._request_counts)
                },
                "errors": {
                    "by_type": dict(self._error_counts)
                },
                "latencies": {
                    operation: stats.to_dict(unit="ms")
                    for operation, stats in self._latencies.items()
                },
                "schema_conformance": {
                    "total_parses": total_parses,
                    "successful_parses": self._turns_completed,
                    "failed_parses": parse_failures,
                    "conformance_rate": round(conformance_rate, 4)
                },
                "streaming": {
                    "total_streams": self._stream_counts["total"],
                    "completed_streams": self._stream_counts["completed"],
                    "client_disconnects": self._stream_counts["client_disconnects"],
                    "chunks_per_stream": self._stream_chunk_stats.to_dict(unit="") if self._stream_chunk_stats.count > 0 else {},
                    "stream_duration": self._stream_duration_stats.to_dict(unit="ms") if self._stream_duration_stats.count > 0 else {}
                }
            }
    
    def reset(self) -> None:
        """Reset all metrics. Useful for testing."""
        with self._lock:
            self._request_counts.clear()
            self._error_counts.clear()
            self._latencies.clear()
            self._turns_completed = 0
            self._stream_counts = {
                "total": 0,
                "completed": 0,
                "client_disconnects": 0
            }
            self._stream_chunk_stats = LatencyStats()
            self._stream_duration_stats = LatencyStats()
            self._start_time = time.time()


# Global metrics collector instance (singleton)
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> Optional[MetricsCollector]:
    """Get the global metrics collector instance.
    
    Returns:
        MetricsCollector instance if metrics are enabled, None otherwise
    """
    return _metrics_collector


def init_metrics_collector() -> MetricsCollector:
    """Initialize the global metrics collector."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


def disable_metrics_collector() -> None:
    """Disable metrics collection by clearing the global instance."""
    global _metrics_collector
    _metrics_collector = None


class MetricsTimer:
    """Context manager for timing operations and recording metrics.
    
    Usage:
        with MetricsTimer("turn"):
            # do work
            pass
    """
    
    def __init__(self, operation: str):
        """Initialize metrics timer.
        
        Args:
            operation: Operation name for metrics
        """
        self.operation = operation
        self.start_time = 0.0
        self.collector = get_metrics_collector()
    
    def __enter__(self):
        """Start the timer."""
        self.start_time = time.time()
        return self
    
    def __exit__(self, exc_type, exc_val, exc_tb):
        """End the timer and record metrics."""
        if self.collector:
            duration_ms = (time.time() - self.start_time) * 1000
            self.collector.record_latency(self.operation, duration_ms)
