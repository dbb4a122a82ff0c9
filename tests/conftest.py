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
"""Shared test fixtures for the adventure service.

This module provides pytest fixtures for testing the adventure service:
- test_env: Test environment variables
- model_client: ModelClient in stub mode
- client: FastAPI TestClient with test dependencies
- valid_reply / make_reply: Schema-shaped model replies

Usage:
    Run tests with pytest:
        pytest tests/
        pytest tests/test_api.py -v

    Script the model for a single test by patching the fixture instance:
        def test_custom(client, model_client, make_reply):
            with patch.object(model_client, "complete", AsyncMock(return_value=make_reply())):
                response = client.post("/adventure/turn", json={"message": "Look"})
"""

import json
import pytest
from fastapi.testclient import TestClient
from unittest.mock import patch
import os


@pytest.fixture
def test_env():
    """Fixture providing test environment variables.
    
    Returns a dictionary of environment variables configured for testing:
    - MODEL_STUB_MODE: Enabled to avoid real model calls
    - STREAM_CHUNK_DELAY_MS: Zero so streamed tests run fast
    - Other configuration with safe test defaults
    """
    return {
        "OLLAMA_BASE_URL": "http://localhost:11434",
        "OLLAMA_MODEL": "deepseek-r1:32b",
        "MODEL_STUB_MODE": "true",
        "MODEL_TIMEOUT": "30",
        "DEFAULT_THEME": "mystery",
        "STREAM_CHUNK_SIZE": "100",
        "STREAM_CHUNK_DELAY_MS": "0",
        "SERVICE_NAME": "llm-adventure-test",
        "LOG_LEVEL": "INFO",
        "ENABLE_METRICS": "false",
        "ENABLE_DEBUG_ENDPOINTS": "false"
    }


@pytest.fixture
def model_client():
    """ModelClient in stub mode; tests may patch its complete() method."""
    from adventure.services.llm_client import ModelClient
    from adventure.prompting.prompt_builder import PromptBuilder
    
    return ModelClient(
        base_url="http://localhost:11434",
        model="deepseek-r1:32b",
        timeout=30,
        stub_mode=True,
        prompt_builder=PromptBuilder(default_theme="mystery")
    )


@pytest.fixture
def client(test_env, model_client):
    """Fixture providing FastAPI test client with test dependencies.
    
    Creates a TestClient with:
    - Test environment variables
    - A fresh session registry per test
    - The stub-mode model_client fixture behind the orchestrator
    
    Usage:
        def test_health(client):
            response = client.get("/health")
            assert response.status_code == 200
    """
    with patch.dict(os.environ, test_env, clear=True):
        from adventure.config import get_settings
        get_settings.cache_clear()
        
        # Import dependencies FIRST before importing app
        from adventure.api.routes import (
            get_model_client,
            get_session_registry,
            get_turn_orchestrator
        )
        
        from adventure.main import app
        from adventure.metrics import disable_metrics_collector
        from adventure.prompting.prompt_builder import PromptBuilder
        from adventure.services.conversation import SessionRegistry
        from adventure.services.turn_orchestrator import TurnOrchestrator
        
        try:
            settings = get_settings()
            test_registry = SessionRegistry(
                prompt_builder=PromptBuilder(default_theme=settings.default_theme),
                max_sessions=settings.max_sessions,
                ttl_seconds=settings.session_ttl_seconds
            )
            test_orchestrator = TurnOrchestrator(model_client=model_client)
            
            # Override dependencies (don't clear - just overwrite the ones from main.py)
            app.dependency_overrides[get_session_registry] = lambda: test_registry
            app.dependency_overrides[get_model_client] = lambda: model_client
            app.dependency_overrides[get_turn_orchestrator] = lambda: test_orchestrator
            
            with TestClient(app) as client:
                yield client
        finally:
            app.dependency_overrides.clear()
            get_settings.cache_clear()
            disable_metrics_collector()


@pytest.fixture
def valid_reply():
    """A complete, well-formed game-state reply as the model would emit it."""
    return {
        "stats": {"health": 90, "maxHealth": 100, "gold": 12, "inventory": ["Rope", "Lantern"]},
        "narrative": "The cellar door creaks open onto a flooded stair.",
        "storySoFar": "You fled the burning inn and hid below ground.",
        "systemLog": {
            "decisions": [
                {
                    "timestamp": "2025-01-01T00:00:00Z",
                    "type": "MORAL",
                    "description": "Left the innkeeper behind",
                    "consequences": ["Innkeeper distrusts you"],
                    "affectedNPCs": ["Innkeeper"],
                    "flags": {"isBetrayal": True, "isKilling": False, "isHeroic": False, "isPermanent": False}
                }
            ],
            "worldState": {
                "alliances": {"Innkeeper": "hostile"},
                "deadNPCs": [],
                "unlockedLocations": ["Cellar"],
                "activeQuests": ["Escape the village"],
                "completedQuests": [],
                "reputation": {"Villagers": -5}
            },
            "gameState": {"currentPhase": "SURVIVAL", "daysSurvived": 1, "difficulty": "MEDIUM"}
        },
        "changes": {"healthChange": -10, "goldChange": None, "itemsAdded": ["Lantern"], "itemsRemoved": None},
        "choices": [
            {"id": 1, "text": "Wade down the stair", "preview": "Cold water, unknown depth"},
            {"id": 2, "text": "Bar the door", "preview": "Buy time"},
            {"id": 3, "text": "Call out", "preview": "Someone may answer"}
        ]
    }


@pytest.fixture
def make_reply(valid_reply):
    """Factory building raw model text around a (modified) valid reply.
    
    Usage:
        raw = make_reply(narrative="Hello", think=True)
    """
    def _make(think: bool = True, **overrides):
        data = dict(valid_reply)
        data.update(overrides)
        text = json.dumps(data)
        if think:
            text = f"<think>Let me plan the scene.</think>\n{text}"
        return text
    return _make
