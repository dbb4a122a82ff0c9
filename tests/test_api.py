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
"""API tests for the adventure service.

These tests exercise the HTTP surface end to end with the model client in
stub mode or scripted per test:
- Turn and stream routes, including error bodies and session rollback
- Opener, options, session inspection and deletion
- Health, metrics and debug endpoints and their feature gates
"""

import json
import pytest
from unittest.mock import AsyncMock, patch

from adventure.services.errors import ModelTimeoutError


def test_health_endpoint(client):
    """Test health check reports service name and live sessions."""
    response = client.get("/health")
    
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "llm-adventure-test"
    assert data["active_sessions"] == 0


def test_request_id_header(client):
    """Test the correlation header is generated or echoed."""
    assert client.get("/health").headers.get("X-Request-Id")
    
    response = client.get("/health", headers={"X-Request-Id": "abc-123"})
    assert response.headers["X-Request-Id"] == "abc-123"


def test_cors_allows_any_origin(client):
    """Test browser clients from any origin are accepted."""
    response = client.options(
        "/adventure/turn",
        headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "POST"
        }
    )
    assert response.headers["access-control-allow-origin"] == "*"


def test_turn_stub_mode(client):
    """Test a turn in stub mode returns a complete camelCase game state."""
    response = client.post("/adventure/turn", json={
        "messages": [{"role": "user", "content": "Light a torch"}],
        "theme": "Horror",
        "isNewGame": True
    })
    
    assert response.status_code == 200
    data = response.json()
    assert set(data) == {"stats", "narrative", "storySoFar", "systemLog", "changes", "choices"}
    assert "Light a torch" in data["narrative"]
    assert len(data["choices"]) == 3
    history = data["systemLog"]["messageHistory"]
    assert [m["role"] for m in history] == ["system", "user"]
    assert "Horror" in history[0]["content"]


def test_turn_accepts_snake_case(client):
    """Test snake_case request keys are accepted too."""
    response = client.post("/adventure/turn", json={
        "message": "Wait",
        "is_new_game": True,
        "session_id": "snake"
    })
    assert response.status_code == 200
    assert client.get("/sessions/snake").status_code == 200


def test_turn_requires_player_input(client):
    """Test a request without message or messages is rejected."""
    response = client.post("/adventure/turn", json={"theme": "Horror"})
    
    assert response.status_code == 422
    data = response.json()
    assert data["error_type"] == "invalid_request"
    assert data["error"] == "Invalid request"


def test_turn_extraction_failure(client, model_client):
    """Test a reply without JSON yields an error body and no session change."""
    client.post("/adventure/turn", json={"message": "start", "isNewGame": True, "sessionId": "s1"})
    before = client.get("/sessions/s1").json()
    
    with patch.object(model_client, "complete", AsyncMock(return_value="<think>hmm</think>No JSON here.")):
        response = client.post("/adventure/turn", json={"message": "next", "sessionId": "s1"})
    
    assert response.status_code == 422
    data = response.json()
    assert data["error_type"] == "extraction_error"
    assert data["details"] == "No JSON here."
    assert data["request_id"] == response.headers["X-Request-Id"]
    assert client.get("/sessions/s1").json() == before


def test_turn_validation_failure(client, model_client, make_reply):
    """Test a reply missing a mandatory key yields a validation error."""
    with patch.object(model_client, "complete", AsyncMock(return_value=make_reply(stats=None))):
        response = client.post("/adventure/turn", json={"message": "go", "isNewGame": True})
    
    assert response.status_code == 422
    data = response.json()
    assert data["error"] == "Missing required fields in game response"
    assert data["details"]["missing"] == ["stats"]


def test_turn_model_timeout(client, model_client):
    """Test a model timeout maps to 504."""
    with patch.object(model_client, "complete", AsyncMock(side_effect=ModelTimeoutError(details="120s"))):
        response = client.post("/adventure/turn", json={"message": "go", "isNewGame": True})
    
    assert response.status_code == 504
    assert response.json()["error_type"] == "model_timeout"


def test_turn_unexpected_error(client, model_client):
    """Test unexpected failures map to a generic 500 error body."""
    with patch.object(model_client, "complete", AsyncMock(side_effect=RuntimeError("boom"))):
        response = client.post("/adventure/turn", json={"message": "go", "isNewGame": True})
    
    assert response.status_code == 500
    assert response.json()["error"] == "Failed to generate story"


def test_turn_passes_overrides(client, model_client, make_reply):
    """Test endpoint and model overrides reach the model client."""
    with patch.object(model_client, "complete", AsyncMock(return_value=make_reply())) as mock_complete:
        client.post("/adventure/turn", json={
            "message": "go",
            "endpoint": "http://172.21.192.1:11434",
            "model": "mistral:7b"
        })
    
    assert mock_complete.call_args.kwargs == {
        "endpoint": "http://172.21.192.1:11434",
        "model": "mistral:7b"
    }


def test_sessions_are_isolated(client):
    """Test turns on different session ids never share a transcript."""
    client.post("/adventure/turn", json={"message": "a1", "isNewGame": True, "sessionId": "a"})
    client.post("/adventure/turn", json={"message": "a2", "sessionId": "a"})
    client.post("/adventure/turn", json={"message": "b1", "isNewGame": True, "sessionId": "b"})
    
    assert client.get("/sessions/a").json()["message_count"] == 5
    assert client.get("/sessions/b").json()["message_count"] == 3


def test_new_game_resets_session(client):
    """Test isNewGame discards the running transcript."""
    client.post("/adventure/turn", json={"message": "one", "isNewGame": True, "sessionId": "r"})
    client.post("/adventure/turn", json={"message": "two", "sessionId": "r"})
    client.post("/adventure/turn", json={"message": "fresh", "isNewGame": True, "theme": "Sci-Fi", "sessionId": "r"})
    
    snapshot = client.get("/sessions/r").json()
    assert snapshot["message_count"] == 3
    assert snapshot["theme"] == "Sci-Fi"
    assert snapshot["message_history"][1]["content"] == "fresh"
    assert snapshot["last_state"]["narrative"]


def test_stream_delivers_chunks(client):
    """Test the stream route returns the state as raw paced chunks."""
    with client.stream("POST", "/adventure/stream", json={"message": "Light a torch", "isNewGame": True}) as response:
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["x-accel-buffering"] == "no"
        body = "".join(response.iter_text())
    
    data = json.loads(body)
    assert "Light a torch" in data["narrative"]
    assert not body.startswith("data:")


def test_stream_matches_turn_payload(client, model_client, make_reply):
    """Test streamed and non-streamed turns produce the same state shape."""
    with patch.object(model_client, "complete", AsyncMock(return_value=make_reply())):
        turn = client.post("/adventure/turn", json={"message": "go", "isNewGame": True, "sessionId": "x"}).json()
        streamed = json.loads(client.post(
            "/adventure/stream", json={"message": "go", "isNewGame": True, "sessionId": "y"}
        ).text)
    
    assert streamed["stats"] == turn["stats"]
    assert streamed["choices"] == turn["choices"]


def test_stream_failure_returns_error_body(client, model_client):
    """Test a failed turn on the stream route is a JSON error, not a partial stream."""
    with patch.object(model_client, "complete", AsyncMock(return_value="no braces")):
        response = client.post("/adventure/stream", json={"message": "go", "isNewGame": True})
    
    assert response.status_code == 422
    assert response.headers["content-type"].startswith("application/json")
    assert response.json()["error_type"] == "extraction_error"


def test_opening(client):
    """Test the opener returns plain narration."""
    response = client.get("/adventure/opening", params={"theme": "Fantasy"})
    
    assert response.status_code == 200
    assert response.json()["content"].startswith("[STUB MODE]")


def test_opening_failure(client, model_client):
    """Test an opener failure maps to an error body."""
    with patch.object(model_client, "opening", AsyncMock(side_effect=ModelTimeoutError())):
        response = client.get("/adventure/opening")
    
    assert response.status_code == 504
    assert response.json()["error"] == "Failed to load adventure"


def test_get_unknown_session(client):
    """Test inspecting an unknown session is a 404."""
    response = client.get("/sessions/nope")
    assert response.status_code == 404
    assert response.json()["error_type"] == "session_not_found"


def test_delete_session(client):
    """Test explicit session destruction."""
    client.post("/adventure/turn", json={"message": "go", "sessionId": "gone"})
    
    assert client.delete("/sessions/gone").status_code == 204
    assert client.delete("/sessions/gone").status_code == 404
    assert client.get("/sessions/gone").status_code == 404


def test_options(client):
    """Test picker lists start with the configured defaults."""
    data = client.get("/options").json()
    
    assert data["default_endpoint"] == "http://localhost:11434"
    assert data["endpoints"][0] == "http://localhost:11434"
    assert data["models"][0] == "deepseek-r1:32b"
    assert data["themes"] == ["Fantasy", "Sci-Fi", "Horror"]


def test_metrics_disabled(client):
    """Test the metrics endpoint is hidden unless enabled."""
    assert client.get("/metrics").status_code == 404


def test_debug_parse_disabled(client):
    """Test the debug endpoint is hidden unless enabled."""
    response = client.post("/debug/parse_llm", json={"llm_response": "{}"})
    assert response.status_code == 404


@pytest.mark.parametrize("test_env", [{
    "MODEL_STUB_MODE": "true",
    "STREAM_CHUNK_DELAY_MS": "0",
    "SERVICE_NAME": "llm-adventure-test",
    "ENABLE_METRICS": "true",
    "ENABLE_DEBUG_ENDPOINTS": "true"
}])
def test_metrics_and_debug_enabled(client, make_reply):
    """Test metrics and debug endpoints when their flags are set."""
    client.post("/adventure/turn", json={"message": "go", "isNewGame": True})
    
    metrics = client.get("/metrics").json()
    assert metrics["requests"]["total"] >= 1
    assert metrics["schema_conformance"]["successful_parses"] == 1
    
    valid = client.post("/debug/parse_llm", json={"llm_response": make_reply()}).json()
    assert valid["is_valid"] is True
    assert valid["state"]["stats"]["gold"] == 12
    
    invalid = client.post("/debug/parse_llm", json={"llm_response": '{"narrative": "x"}'}).json()
    assert invalid["is_valid"] is False
    assert invalid["error_type"] == "validation_error"
    assert set(invalid["error_details"]["missing"]) == {"stats", "choices"}


def test_openapi_docs_available(client):
    """Test OpenAPI schema lists the adventure routes."""
    paths = client.get("/openapi.json").json()["paths"]
    
    assert "/adventure/turn" in paths
    assert "/adventure/stream" in paths
    assert "/sessions/{session_id}" in paths


def test_unexpected_error_keeps_session_history(client, model_client):
    """Test a 500 turn leaves the session transcript as it was."""
    client.post("/adventure/turn", json={"message": "Open the door", "isNewGame": True, "sessionId": "tab-9"})
    
    with patch.object(model_client, "complete", AsyncMock(side_effect=RuntimeError("boom"))):
        response = client.post("/adventure/turn", json={"message": "Go down", "sessionId": "tab-9"})
    assert response.status_code == 500
    
    view = client.get("/sessions/tab-9").json()
    assert view["message_count"] == 3
    assert [m["role"] for m in view["message_history"]] == ["system", "user", "assistant"]
