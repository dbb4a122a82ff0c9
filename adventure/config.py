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
"""Configuration module for the adventure service.

This module loads and validates configuration from environment variables.
All settings are validated at startup to fail fast if configuration is invalid.
"""

from functools import lru_cache
from typing import List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.
    
    All settings can be overridden via environment variables.
    See .env.example for detailed documentation of each setting.
    """

    # Model Backend Configuration
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Default Ollama endpoint used when a request names none",
        examples=["http://localhost:11434", "http://172.21.192.1:11434"]
    )
    ollama_model: str = Field(
        default="deepseek-r1:32b",
        description="Default model used when a request names none"
    )
    ollama_api_key: str = Field(
        default="ollama",
        description="Placeholder key sent to the OpenAI-compatible endpoint"
    )
    allowed_endpoints: str = Field(
        default="http://localhost:11434,http://172.21.192.1:11434",
        description="Comma-separated endpoints offered by the endpoint picker"
    )
    available_models: str = Field(
        default="deepseek-r1:32b,mistral:7b,llama2:13b",
        description="Comma-separated models offered by the model picker"
    )
    model_timeout: int = Field(
        default=120,
        ge=1,
        le=600,
        description="Timeout for a single model call in seconds"
    )
    model_stub_mode: bool = Field(
        default=False,
        description="Enable stub mode for offline development (no actual model calls)"
    )

    # Story Configuration
    default_theme: str = Field(
        default="mystery",
        description="Theme used when a new game does not name one"
    )
    minimal_context_mode: bool = Field(
        default=False,
        description=(
            "Send only the system prompt and the latest player turn to the model "
            "instead of the full transcript"
        )
    )

    # Chunked Delivery Configuration
    stream_chunk_size: int = Field(
        default=100,
        ge=1,
        le=65536,
        description="Number of characters per streamed chunk"
    )
    stream_chunk_delay_ms: int = Field(
        default=10,
        ge=0,
        le=1000,
        description="Pause between streamed chunks in milliseconds"
    )

    # Session Registry Configuration
    max_sessions: int = Field(
        default=1000,
        ge=1,
        description="Maximum number of live sessions before LRU eviction"
    )
    session_ttl_seconds: int = Field(
        default=86400,
        ge=60,
        description="Idle time after which a session is discarded"
    )

    # Service Configuration
    service_name: str = Field(
        default="llm-adventure",
        description="Service name for logging and identification"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_json_format: bool = Field(
        default=False,
        description="Enable JSON structured logging output"
    )

    # Metrics Configuration
    enable_metrics: bool = Field(
        default=False,
        description="Enable metrics collection and /metrics endpoint"
    )
    
    # Debug Configuration
    enable_debug_endpoints: bool = Field(
        default=False,
        description="Enable debug endpoints like /debug/parse_llm (for local development only)"
    )

    @field_validator('ollama_base_url')
    @classmethod
    def validate_ollama_url(cls, v: str) -> str:
        """Validate model endpoint URL format."""
        if not v:
            raise ValueError("ollama_base_url cannot be empty")
        if not (v.startswith('http://') or v.startswith('https://')):
            raise ValueError(
                f"ollama_base_url must start with http:// or https://, got: {v}"
            )
        # Remove trailing slash for consistency
        return v.rstrip('/')

    @field_validator('default_theme')
    @classmethod
    def validate_default_theme(cls, v: str) -> str:
        """Validate the default theme is not blank."""
        if not v or v.strip() == "":
            raise ValueError("default_theme cannot be empty")
        return v.strip()

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a recognized value."""
        valid_levels = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(
                f"log_level must be one of {valid_levels}, got: {v}"
            )
        return v_upper

    @property
    def endpoint_options(self) -> List[str]:
        """Endpoint picker options, default endpoint first."""
        options = [e.strip().rstrip('/') for e in self.allowed_endpoints.split(',') if e.strip()]
        if self.ollama_base_url not in options:
            options.insert(0, self.ollama_base_url)
        return options

    @property
    def model_options(self) -> List[str]:
        """Model picker options, default model first."""
        options = [m.strip() for m in self.available_models.split(',') if m.strip()]
        if self.ollama_model not in options:
            options.insert(0, self.ollama_model)
        return options

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        protected_namespaces=()
    )


@lru_cache
def get_settings() -> Settings:
    """Get the settings instance with LRU caching.
    
    Uses functools.lru_cache for thread-safe singleton pattern.
    The cache can be cleared for testing using get_settings.cache_clear().
    
    Returns:
        Settings instance with validated configuration
        
    Raises:
        ValueError: If configuration is invalid
    """
    try:
        return Settings()
    except Exception as e:
        raise ValueError(
            f"Configuration error: {e}. "
            "Check the environment variables and .env file. "
            "See .env.example for the available configuration."
        ) from e
