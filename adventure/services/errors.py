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
"""Per-turn error taxonomy.

Every failure a turn can hit is a TurnError subclass. None of them end the
process or the session: the turn fails, the session is restored, and the
client receives an error payload built from ``message`` and ``details``.
"""

from typing import Any, Optional


class TurnError(Exception):
    """Base exception for a failed turn.
    
    Attributes:
        error_type: Machine-readable category used in payloads and metrics
        message: Stable user-facing message
        details: Best-effort diagnostic detail
        status_code: HTTP status used when reported over the API
    """
    error_type = "turn_error"
    status_code = 500
    default_message = "Failed to generate story"

    def __init__(self, details: Optional[Any] = None, message: Optional[str] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(f"{self.message}: {details}" if details is not None else self.message)


class ExtractionError(TurnError):
    """No JSON object could be located in the model reply."""
    error_type = "extraction_error"
    status_code = 422
    default_message = "Model reply did not contain a JSON object"


class ParseError(TurnError):
    """The isolated JSON candidate is not valid JSON."""
    error_type = "parse_error"
    status_code = 422
    default_message = "Model reply contained malformed JSON"


class ValidationError(TurnError):
    """The parsed reply lacks a mandatory top-level field."""
    error_type = "validation_error"
    status_code = 422
    default_message = "Missing required fields in game response"


class ModelBackendError(TurnError):
    """The model backend could not be reached or returned nothing usable."""
    error_type = "model_backend_error"
    status_code = 502
    default_message = "Failed to generate story"


class ModelTimeoutError(ModelBackendError):
    """The model call exceeded the configured timeout."""
    error_type = "model_timeout"
    status_code = 504
    default_message = "Model backend timed out. Please try again."


class ModelConfigurationError(ModelBackendError):
    """The model backend rejected the client configuration."""
    error_type = "model_configuration_error"
    status_code = 502
    default_message = "Model backend rejected the request configuration"
