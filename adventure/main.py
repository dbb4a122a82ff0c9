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
"""FastAPI application entry point for the adventure service.

This module creates and configures the FastAPI application with:
- Route registration
- CORS middleware (for browser client access)
- Lifespan management for the model client and session registry
- OpenAPI/Swagger documentation
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
import logging

from adventure.api.routes import router, create_error_response
from adventure.config import get_settings
from adventure.middleware import RequestCorrelationMiddleware
from adventure.logging import configure_logging
from adventure.metrics import init_metrics_collector, disable_metrics_collector

# Will be configured in lifespan
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.
    
    Handles startup and shutdown logic:
    - Startup: Validate config, create the model client, sessions and orchestrator
    - Shutdown: Close the model client's connections
    
    Args:
        app: FastAPI application instance
    """
    logger.info("Starting adventure service...")

    # Validate configuration at startup
    try:
        settings = get_settings()
        
        configure_logging(
            level=settings.log_level,
            json_format=settings.log_json_format,
            service_name=settings.service_name
        )
        
        logger.info("Configuration loaded successfully")
        logger.info(f"Default model endpoint: {settings.ollama_base_url}")
        logger.info(f"Default model: {settings.ollama_model}")
        logger.info(f"Minimal context mode: {settings.minimal_context_mode}")
        logger.info(f"Metrics enabled: {settings.enable_metrics}")
        
        if settings.enable_metrics:
            init_metrics_collector()
            logger.info("Metrics collector initialized")
        else:
            disable_metrics_collector()
            logger.info("Metrics collection disabled")
    except Exception as e:
        logger.error(f"Configuration validation failed: {e}")
        raise

    from adventure.prompting.prompt_builder import PromptBuilder
    from adventure.services.conversation import SessionRegistry
    from adventure.services.llm_client import ModelClient
    from adventure.services.outcome_parser import OutcomeParser
    from adventure.services.turn_orchestrator import TurnOrchestrator

    app.state.prompt_builder = PromptBuilder(default_theme=settings.default_theme)
    
    app.state.model_client = ModelClient(
        base_url=settings.ollama_base_url,
        model=settings.ollama_model,
        api_key=settings.ollama_api_key,
        timeout=settings.model_timeout,
        stub_mode=settings.model_stub_mode,
        prompt_builder=app.state.prompt_builder,
        # Room for every configured picker endpoint
        max_cached_clients=max(8, len(settings.endpoint_options))
    )
    logger.info(f"Model client initialized (model={settings.ollama_model}, stub_mode={settings.model_stub_mode})")

    app.state.session_registry = SessionRegistry(
        prompt_builder=app.state.prompt_builder,
        max_sessions=settings.max_sessions,
        ttl_seconds=settings.session_ttl_seconds
    )
    logger.info(f"Session registry initialized (max_sessions={settings.max_sessions})")
    
    app.state.turn_orchestrator = TurnOrchestrator(
        model_client=app.state.model_client,
        outcome_parser=OutcomeParser(),
        minimal_context=settings.minimal_context_mode
    )
    logger.info("Turn orchestrator initialized")

    yield

    logger.info("Shutting down adventure service...")
    if hasattr(app.state, 'model_client'):
        await app.state.model_client.close()
        logger.info("Model client closed")


app = FastAPI(
    title="LLM Adventure API",
    description=(
        "Narrated text adventure backed by a locally-hosted language model. "
        "Keeps the conversation per session, turns each model reply into a "
        "normalized game state and delivers it as JSON or in paced chunks."
    ),
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# Browser clients may be served from any origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestCorrelationMiddleware)

app.include_router(router, tags=["adventure"])


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies with the same error shape as failed turns."""
    return create_error_response(
        error_type="invalid_request",
        message="Invalid request",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details=[
            {"loc": list(err.get("loc", ())), "msg": err.get("msg")}
            for err in exc.errors()
        ]
    )


logger.info("FastAPI application configured")


def _state_attribute(name: str, label: str):
    if not hasattr(app.state, name):
        raise RuntimeError(
            f"{label} not initialized. "
            "Ensure the application lifespan has started."
        )
    return getattr(app.state, name)


def get_session_registry_override():
    """Dependency override that provides the SessionRegistry from app state.
    
    Raises:
        RuntimeError: If session_registry is not initialized in app state
    """
    return _state_attribute("session_registry", "Session registry")


def get_model_client_override():
    """Dependency override that provides the ModelClient from app state.
    
    Raises:
        RuntimeError: If model_client is not initialized in app state
    """
    return _state_attribute("model_client", "Model client")


def get_turn_orchestrator_override():
    """Dependency override that provides the TurnOrchestrator from app state.
    
    Raises:
        RuntimeError: If turn_orchestrator is not initialized in app state
    """
    return _state_attribute("turn_orchestrator", "Turn orchestrator")


# Use FastAPI's dependency_overrides instead of monkey-patching
from adventure.api.routes import (
    get_model_client,
    get_session_registry,
    get_turn_orchestrator
)  # noqa: E402
app.dependency_overrides[get_session_registry] = get_session_registry_override
app.dependency_overrides[get_model_client] = get_model_client_override
app.dependency_overrides[get_turn_orchestrator] = get_turn_orchestrator_override


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    logging.getLogger().setLevel(settings.log_level)

    uvicorn.run(
        "adventure.main:app",
        host="0.0.0.0",
        port=8080,
        reload=True,
        log_level=settings.log_level.lower()
    )
