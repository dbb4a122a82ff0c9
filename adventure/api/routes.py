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
"""API route handlers for the adventure service.

This module defines the HTTP endpoints:
- POST /adventure/turn: Play one turn and return the game state as JSON
- POST /adventure/stream: Play one turn and deliver the game state in paced chunks
- GET /adventure/opening: One-shot opener narration for a theme
- GET /sessions/{session_id}: Debug view of a live session
- DELETE /sessions/{session_id}: Discard a session
- GET /options: Endpoint, model and theme picker lists
- GET /health: Service health check
- GET /metrics: Service metrics (optional, requires ENABLE_METRICS=true)
- POST /debug/parse_llm: Run raw model text through the parser (optional,
  requires ENABLE_DEBUG_ENDPOINTS=true)

The stream route runs the whole turn before the first chunk is written, so
a failed turn is always reported as a JSON error body with a non-2xx
status, never as a truncated stream.
"""

from typing import Optional, Union
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse, StreamingResponse

from adventure.models import (
    DebugParseRequest,
    ErrorResponse,
    GameState,
    HealthResponse,
    OpeningResponse,
    OptionsResponse,
    SessionView,
    TurnRequest,
)
from adventure.config import Settings, get_settings
from adventure.prompting.prompt_builder import THEMES
from adventure.services.conversation import SessionRegistry
from adventure.services.errors import TurnError
from adventure.services.llm_client import ModelClient
from adventure.services.outcome_parser import OutcomeParser
from adventure.services.turn_orchestrator import TurnOrchestrator
from adventure.streaming import ChunkedDeliveryEncoder
from adventure.logging import (
    StreamLifecycleLogger,
    StructuredLogger,
    get_request_id,
    sanitize_for_log,
    set_session_id,
)
from adventure.metrics import get_metrics_collector

logger = StructuredLogger(__name__)

router = APIRouter()

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def create_error_response(
    error_type: str,
    message: str,
    status_code: int,
    details: Optional[object] = None
) -> JSONResponse:
    """Create a structured error response.
    
    Args:
        error_type: Machine-readable error type
        message: Human-readable error message
        status_code: HTTP status code
        details: Best-effort diagnostic detail
        
    Returns:
        JSONResponse with an ErrorResponse body
    """
    body = ErrorResponse(
        error=message,
        error_type=error_type,
        details=details,
        request_id=get_request_id()
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def get_session_registry() -> SessionRegistry:
    """Dependency that provides the SessionRegistry.
    
    This is a placeholder that must be overridden by the application.
    The application lifespan in main.py provides the actual implementation.
    
    Raises:
        NotImplementedError: If not overridden by the application
    """
    raise NotImplementedError(
        "get_session_registry dependency must be overridden. "
        "This should be configured in adventure.main module."
    )


def get_model_client() -> ModelClient:
    """Dependency that provides the ModelClient for opener calls.
    
    This is a placeholder that must be overridden by the application.
    
    Raises:
        NotImplementedError: If not overridden by the application
    """
    raise NotImplementedError(
        "get_model_client dependency must be overridden. "
        "This should be configured in adventure.main module."
    )


def get_turn_orchestrator() -> TurnOrchestrator:
    """Dependency that provides the TurnOrchestrator for turn processing.
    
    This is a placeholder that must be overridden by the application.
    
    Raises:
        NotImplementedError: If not overridden by the application
    """
    raise NotImplementedError(
        "get_turn_orchestrator dependency must be overridden. "
        "This should be configured in adventure.main module."
    )


async def _play(
    request: TurnRequest,
    registry: SessionRegistry,
    orchestrator: TurnOrchestrator
) -> Union[GameState, JSONResponse]:
    """Run one turn, translating failures into error responses."""
    set_session_id(request.session_id)
    user_text = request.user_text()
    
    logger.info(
        "Processing turn request",
        is_new_game=request.is_new_game,
        theme=request.theme,
        model=request.model,
        action_preview=sanitize_for_log(user_text, 50)
    )
    
    session = registry.get_or_create(request.session_id)
    try:
        return await orchestrator.play_turn(
            session,
            user_text,
            theme=request.theme,
            is_new_game=request.is_new_game,
            endpoint=request.endpoint,
            model=request.model
        )
    except TurnError as e:
        logger.error("Turn failed", error_type=e.error_type, error=sanitize_for_log(str(e)))
        return create_error_response(
            error_type=e.error_type,
            message=e.message,
            status_code=e.status_code,
            details=e.details
        )
    except Exception as e:
        # Catch-all for unexpected errors
        logger.error(
            "Unexpected error processing turn",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True
        )
        if (collector := get_metrics_collector()):
            collector.record_error("internal_error")
        return create_error_response(
            error_type="internal_error",
            message="Failed to generate story",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=str(e)
        )


@router.post(
    "/adventure/turn",
    response_model=GameState,
    response_model_by_alias=True,
    status_code=status.HTTP_200_OK,
    summary="Play one turn",
    description=(
        "Append the player's input to the session transcript, ask the model for "
        "the next scene and return the normalized game state."
    ),
    responses={
        422: {"model": ErrorResponse, "description": "Model reply could not be parsed"},
        502: {"model": ErrorResponse, "description": "Model backend failure"},
        504: {"model": ErrorResponse, "description": "Model backend timed out"},
    }
)
async def play_turn(
    request: TurnRequest,
    registry: SessionRegistry = Depends(get_session_registry),
    orchestrator: TurnOrchestrator = Depends(get_turn_orchestrator)
):
    """Play one turn and return the game state.
    
    Args:
        request: Turn request with the player's input
        registry: Session registry (injected)
        orchestrator: Turn orchestrator (injected)
        
    Returns:
        GameState, or an ErrorResponse with a non-2xx status
    """
    result = await _play(request, registry, orchestrator)
    if isinstance(result, JSONResponse):
        return result
    return JSONResponse(content=result.to_wire())


@router.post(
    "/adventure/stream",
    status_code=status.HTTP_200_OK,
    summary="Play one turn with chunked delivery",
    description=(
        "Same as /adventure/turn, but the serialized game state is written as "
        "fixed-size raw chunks with a short pause between them. Concatenate all "
        "chunks before parsing; the stream ends when the connection closes."
    ),
    responses={
        200: {"content": {"text/event-stream": {}}, "description": "Chunked game state"},
        422: {"model": ErrorResponse, "description": "Model reply could not be parsed"},
        502: {"model": ErrorResponse, "description": "Model backend failure"},
        504: {"model": ErrorResponse, "description": "Model backend timed out"},
    }
)
async def stream_turn(
    request: TurnRequest,
    http_request: Request,
    registry: SessionRegistry = Depends(get_session_registry),
    orchestrator: TurnOrchestrator = Depends(get_turn_orchestrator),
    settings: Settings = Depends(get_settings)
):
    """Play one turn and stream the game state in paced chunks.
    
    Args:
        request: Turn request with the player's input
        http_request: Raw request, used to detect client disconnects
        registry: Session registry (injected)
        orchestrator: Turn orchestrator (injected)
        settings: Application settings (injected)
        
    Returns:
        StreamingResponse, or an ErrorResponse with a non-2xx status
    """
    result = await _play(request, registry, orchestrator)
    if isinstance(result, JSONResponse):
        StreamLifecycleLogger(logger, request.session_id).log_stream_error(
            error_type="turn_failed",
            error_message=f"status {result.status_code}"
        )
        return result
    
    encoder = ChunkedDeliveryEncoder(
        chunk_size=settings.stream_chunk_size,
        delay_ms=settings.stream_chunk_delay_ms
    )
    return StreamingResponse(
        encoder.stream(result, request.session_id, http_request.is_disconnected),
        media_type="text/event-stream",
        headers=STREAM_HEADERS
    )


@router.get(
    "/adventure/opening",
    response_model=OpeningResponse,
    status_code=status.HTTP_200_OK,
    summary="Generate an opener",
    description="One-shot opener narration for a theme; does not touch any session."
)
async def adventure_opening(
    theme: Optional[str] = Query(None, max_length=200),
    endpoint: Optional[str] = Query(None),
    model: Optional[str] = Query(None),
    model_client: ModelClient = Depends(get_model_client)
):
    """Ask the model for an opener.
    
    Args:
        theme: Story theme (default theme if omitted)
        endpoint: Model endpoint override
        model: Model name override
        model_client: Model client (injected)
        
    Returns:
        OpeningResponse with the narration text
    """
    try:
        content = await model_client.opening(theme, endpoint=endpoint, model=model)
    except TurnError as e:
        logger.error("Opener failed", error_type=e.error_type)
        if (collector := get_metrics_collector()):
            collector.record_error(e.error_type)
        return create_error_response(
            error_type=e.error_type,
            message="Failed to load adventure",
            status_code=e.status_code,
            details=e.details
        )
    return OpeningResponse(content=content)


@router.get(
    "/sessions/{session_id}",
    response_model=SessionView,
    summary="Inspect a session"
)
async def get_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Return the transcript and last game state of a session."""
    session = registry.get(session_id)
    if session is None:
        return create_error_response(
            error_type="session_not_found",
            message=f"Session {session_id} not found",
            status_code=status.HTTP_404_NOT_FOUND
        )
    return SessionView(**session.to_dict())


@router.delete(
    "/sessions/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Discard a session"
)
async def delete_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Discard a session and its transcript."""
    if not registry.delete(session_id):
        return create_error_response(
            error_type="session_not_found",
            message=f"Session {session_id} not found",
            status_code=status.HTTP_404_NOT_FOUND
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/options",
    response_model=OptionsResponse,
    summary="Picker options"
)
async def get_options(settings: Settings = Depends(get_settings)) -> OptionsResponse:
    """Endpoints, models and themes the client may choose from."""
    return OptionsResponse(
        endpoints=settings.endpoint_options,
        models=settings.model_options,
        themes=THEMES,
        default_endpoint=settings.ollama_base_url,
        default_model=settings.ollama_model
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check endpoint",
    responses={
        200: {
            "description": "Service is healthy",
            "content": {
                "application/json": {
                    "example": {
                        "status": "healthy",
                        "service": "llm-adventure",
                        "active_sessions": 2
                    }
                }
            }
        }
    }
)
async def health_check(
    registry: SessionRegistry = Depends(get_session_registry),
    settings: Settings = Depends(get_settings)
) -> HealthResponse:
    """Health check endpoint.
    
    The model backend is not pinged: it is chosen per request and may be
    any of several endpoints.
    """
    logger.debug("Health check requested")
    return HealthResponse(
        status="healthy",
        service=settings.service_name,
        active_sessions=len(registry)
    )


@router.get(
    "/metrics",
    status_code=status.HTTP_200_OK,
    summary="Metrics endpoint",
    description=(
        "Get service metrics including request counts, error rates, schema "
        "conformance, streaming and latencies. Only available when ENABLE_METRICS "
        "is true. Returns 404 if metrics are disabled."
    ),
    responses={404: {"description": "Metrics disabled"}}
)
async def get_metrics(settings: Settings = Depends(get_settings)):
    """Get service metrics.
    
    Raises:
        HTTPException: If metrics are disabled
    """
    if not settings.enable_metrics:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Metrics endpoint is disabled. Set ENABLE_METRICS=true to enable."
        )
    
    collector = get_metrics_collector()
    if not collector:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Metrics collector not initialized"
        )
    
    return collector.get_metrics()


@router.post(
    "/debug/parse_llm",
    status_code=status.HTTP_200_OK,
    summary="Debug endpoint to test model reply parsing",
    description=(
        "Run raw model output through extraction and normalization. "
        "Only available when ENABLE_DEBUG_ENDPOINTS is true. "
        "This endpoint is intended for local development and debugging only."
    ),
    responses={
        200: {
            "description": "Parse results with validation status",
            "content": {
                "application/json": {
                    "example": {
                        "is_valid": False,
                        "error_type": "validation_error",
                        "error_message": "Missing required fields in game response",
                        "error_details": {"missing": ["choices"], "invalid": []},
                        "json_payload": "{\"stats\": {}, \"narrative\": \"...\"}",
                        "state": None
                    }
                }
            }
        },
        404: {"description": "Debug endpoints disabled"}
    }
)
async def debug_parse_llm(
    request: DebugParseRequest,
    settings: Settings = Depends(get_settings)
):
    """Debug endpoint to test model reply parsing.
    
    Args:
        request: Pydantic model with "llm_response"
        settings: Application settings (injected)
        
    Returns:
        Dictionary with the tagged parse result
        
    Raises:
        HTTPException: If debug endpoints are disabled
    """
    if not settings.enable_debug_endpoints:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Debug endpoints are disabled. Set ENABLE_DEBUG_ENDPOINTS=true to enable."
        )
    
    parsed = OutcomeParser().parse(request.llm_response)
    return {
        "is_valid": parsed.is_valid,
        "error_type": parsed.error_type,
        "error_message": parsed.error.message if parsed.error else None,
        "error_details": parsed.error.details if parsed.error else None,
        "json_payload": parsed.json_payload,
        "state": parsed.state.to_wire() if parsed.state else None
    }
