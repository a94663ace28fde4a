import json

import pytest

from gamemaster.providers.base import ProviderRuntimeConfig
from gamemaster.services.container import build_workflow_engine
from gamemaster.services.provider_service import ProviderService
from gamemaster.services.turn_service import TurnOrchestrator

SCENE = {
    "description": "A quiet tavern",
    "player_status": ["tired"],
    "npcs": [{"name": "Barkeep", "role": "merchant", "status": ["friendly"]}],
    "environment": {"location": "Tavern", "time_of_day": "night", "weather": None},
}


@pytest.mark.anyio
async def test_health_reports_providers(client):
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "llm_provider": "mock",
        "embed_provider": "deterministic",
    }


@pytest.mark.anyio
async def test_process_action_with_mock_provider(client):
    payload = {
        "player_id": "player-1",
        "action": "Look around the tavern",
        "scene": SCENE,
        "previous_actions": [
            {"action": "Enter", "result": "You step inside", "timestamp": "2024-01-01T00:00:00Z"}
        ],
    }
    response = await client.post("/api/campaigns/camp-1/actions", json=payload)
    assert response.status_code == 200
    data = response.json()

    assert data["success"] is True
    assert data["narrative"].startswith("You Look around the tavern.")
    assert data["mood"] == "mysterious"
    assert data["session_status"] == "ACTIVE"
    assert data["dice"] is None
    assert data["degraded"] is False
    assert data["scene"]["player_status"] == ["tired"]
    assert [step["phase"] for step in data["trace"]] == [
        "action_analysis",
        "judgment_execution",
        "narrative_generation",
        "state_update",
    ]
    assert [memory["category"] for memory in data["new_memories"]] == ["EVENT", "STORY_BEAT"]

    response = await client.get("/api/memory/camp-1", params={"category": "EVENT"})
    assert response.status_code == 200
    tags = [item["tags"] for item in response.json()["items"]]
    assert ["turn", "success"] in tags


@pytest.mark.anyio
async def test_process_action_combat_rolls_dice(client):
    payload = {"player_id": "player-1", "action": "Attack the barkeep", "scene": SCENE}
    response = await client.post("/api/campaigns/camp-1/actions", json=payload)
    assert response.status_code == 200
    dice = response.json()["dice"]
    assert dice is not None
    assert 1 <= dice["roll"] <= 20
    assert dice["total"] == dice["roll"] + dice["modifier"]


@pytest.mark.anyio
async def test_process_action_validates_payload(client):
    response = await client.post("/api/campaigns/camp-1/actions", json={"action": "x"})
    assert response.status_code == 422

    response = await client.post(
        "/api/campaigns/%20/actions",
        json={"player_id": "p", "action": "x", "scene": SCENE},
    )
    assert response.status_code == 400


@pytest.mark.anyio
async def test_memory_crud_and_search(client):
    response = await client.post(
        "/api/memory/camp-1",
        json={"content": "The barkeep hides a map", "category": "CHARACTER", "tags": ["map"]},
    )
    assert response.status_code == 201
    created = response.json()
    memory_id = created["id"]
    assert created["importance"] == 1
    assert created["is_active"] is True

    response = await client.post(
        "/api/memory/camp-1/search", json={"query": "The barkeep hides a map"}
    )
    assert response.status_code == 200
    results = response.json()["results"]
    assert results[0]["id"] == memory_id
    assert results[0]["similarity"] == pytest.approx(1.0)

    response = await client.get(f"/api/memory/entry/{memory_id}")
    assert response.status_code == 200
    assert response.json()["tags"] == ["map"]

    response = await client.delete(f"/api/memory/entry/{memory_id}")
    assert response.status_code == 204

    response = await client.post(
        "/api/memory/camp-1/search", json={"query": "The barkeep hides a map"}
    )
    assert response.json()["results"] == []

    response = await client.get("/api/memory/entry/does-not-exist")
    assert response.status_code == 404
    response = await client.delete("/api/memory/entry/does-not-exist")
    assert response.status_code == 404


@pytest.mark.anyio
async def test_memory_create_rejects_bad_input(client):
    response = await client.post("/api/memory/camp-1", json={"content": ""})
    assert response.status_code == 422
    response = await client.post(
        "/api/memory/camp-1", json={"content": "x", "category": "WEATHER"}
    )
    assert response.status_code == 422


@pytest.mark.anyio
async def test_memory_stats_and_cleanup(client):
    for content, importance in (("Dragon slain", 9), ("Bread bought", 2), ("Ale spilled", 1)):
        response = await client.post(
            "/api/memory/camp-2",
            json={"content": content, "category": "EVENT", "importance": importance},
        )
        assert response.status_code == 201

    response = await client.get("/api/memory/camp-2/stats")
    assert response.status_code == 200
    stats = response.json()
    assert stats["total_memories"] == 3
    assert stats["active_memories"] == 3
    assert stats["memories_by_category"] == {"EVENT": 3}
    assert stats["average_importance"] == pytest.approx(4.0)

    response = await client.post(
        "/api/memory/camp-2/cleanup", json={"keep_count": 1, "min_importance": 5}
    )
    assert response.status_code == 200
    assert response.json() == {"deactivated": 2}

    response = await client.get("/api/memory/camp-2/stats")
    assert response.json()["active_memories"] == 1

    response = await client.post("/api/memory/camp-2/cleanup")
    assert response.status_code == 200
    assert response.json() == {"deactivated": 0}


@pytest.mark.anyio
async def test_dice_endpoint(client):
    response = await client.post("/api/tools/dice", json={"expression": "2d6+1", "difficulty": 3})
    assert response.status_code == 200
    data = response.json()
    assert len(data["rolls"]) == 2
    assert data["final_total"] == sum(data["rolls"]) + 1
    assert data["success"] is True
    assert data["critical_success"] is None

    response = await client.post("/api/tools/dice", json={"expression": "roll a d20"})
    assert response.status_code == 400


@pytest.mark.anyio
async def test_status_tag_endpoints(client):
    response = await client.post(
        "/api/tools/status/goblin",
        json={
            "tags": [
                {
                    "name": "poisoned",
                    "description": "Losing health",
                    "type": "condition",
                    "action": "add",
                },
                {"name": "enraged", "description": "Angry", "type": "buff", "action": "add"},
            ]
        },
    )
    assert response.status_code == 200
    assert [tag["name"] for tag in response.json()["tags"]] == ["poisoned", "enraged"]

    response = await client.post(
        "/api/tools/status/goblin",
        json={"tags": [{"name": "enraged", "type": "buff", "action": "remove"}]},
    )
    assert [tag["name"] for tag in response.json()["tags"]] == ["poisoned"]

    response = await client.get("/api/tools/status/goblin")
    assert response.status_code == 200
    assert response.json()["entity_id"] == "goblin"
    assert [tag["id"] for tag in response.json()["tags"]] == ["goblin-poisoned"]

    response = await client.post(
        "/api/tools/status/goblin",
        json={"tags": [{"name": "x", "type": "mood", "action": "add"}]},
    )
    assert response.status_code == 422


@pytest.mark.anyio
async def test_scene_at_input_limit_survives_exploration_marker(app, client, make_adapter):
    analysis = {
        "actionType": "exploration",
        "targets": [],
        "requiresCheck": True,
        "difficulty": 1,
        "intent": "Search the cellar",
    }
    narrative = {
        "narrative": "Dust swirls as you search.",
        "mood": "mysterious",
        "suggestedActions": ["Go deeper"],
    }
    provider = ProviderService(
        make_adapter([json.dumps(analysis), json.dumps(narrative)]),
        ProviderRuntimeConfig(provider="stub", model_name="stub-1"),
    )
    app.state.turn_orchestrator = TurnOrchestrator(
        build_workflow_engine(app.state.settings, provider, app.state.game_tools),
        app.state.memory_service,
    )

    scene = dict(SCENE, description="x" * 8000)
    response = await client.post(
        "/api/campaigns/c1/actions",
        json={"player_id": "player-1", "action": "Search the cellar", "scene": scene},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["dice"]["success"] is True
    assert data["scene"]["description"] == "x" * 8000 + " (explored)"
