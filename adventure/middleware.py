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
"""Request correlation middleware.

Every request gets a request id (taken from ``X-Request-Id`` or generated),
which is stored in the logging context for the duration of the request and
echoed back on the response. Turn requests are timed separately from the
rest of the API.
"""

import time
import uuid
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from adventure.logging import StructuredLogger, set_request_id, clear_context
from adventure.metrics import get_metrics_collector, MetricsTimer

logger = StructuredLogger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"
TURN_PATHS = ("/adventure/turn", "/adventure/stream")


class RequestCorrelationMiddleware(BaseHTTPMiddleware):
    """Attach a request id to logs, metrics and the response."""
    
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        set_request_id(request_id)
        path = request.url.path
        start_time = time.time()
        
        logger.info(
            f"{request.method} {path}",
            client_ip=request.client.host if request.client else None
        )
        
        try:
            # For /adventure/stream this covers the turn, not chunk delivery
            with MetricsTimer("turn" if path in TURN_PATHS else "request"):
                response = await call_next(request)
        except Exception as e:
            logger.error(
                f"{request.method} {path} raised {type(e).__name__}",
                error_message=str(e),
                duration_ms=f"{(time.time() - start_time) * 1000:.2f}",
                exc_info=True
            )
            raise
        else:
            if (collector := get_metrics_collector()):
                collector.record_request(response.status_code)
            logger.info(
                f"{request.method} {path} -> {response.status_code}",
                duration_ms=f"{(time.time() - start_time) * 1000:.2f}"
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_context()
