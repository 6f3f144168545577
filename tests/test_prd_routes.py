"""HTTP tests for the PRD workflow and health routes."""

import pytest
from fastapi.testclient import TestClient

from storywright import __version__
from storywright.interfaces import get_completion_provider
from storywright.server import create_app


@pytest.fixture
def client(test_db):
    with TestClient(create_app()) as test_client:
        yield test_client


@pytest.fixture
def ai(monkeypatch, mock_provider):
    """Route every AI call made through the HTTP layer to the mock provider."""
    monkeypatch.setattr(
        "storywright.c2_story_service.story_helpers.get_completion_provider",
        lambda: mock_provider,
    )
    return mock_provider


@pytest.fixture
def prd(client):
    response = client.post("/api/prds", json={
        "workspace_path": "/work/shop",
        "name": "Shop",
        "description": "An online shop",
        "stories": [
            {"title": "Schema", "acceptance_criteria": ["Tables exist"], "priority": "high"},
            {"title": "Cart", "acceptance_criteria": ["Items can be added"]},
        ],
    })
    assert response.status_code == 201
    return response.json()


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == __version__
        assert data["llm_provider"] == "anthropic"


class TestPRDEndpoints:
    """Test cases for PRD and story CRUD over HTTP."""

    def test_create_and_get(self, client, prd):
        response = client.get(f"/api/prds/{prd['id']}")

        assert response.status_code == 200
        assert [s["title"] for s in response.json()["stories"]] == ["Schema", "Cart"]

        listed = client.get("/api/prds", params={"workspace_path": "/work/shop"}).json()["prds"]
        assert listed[0]["story_count"] == 2

    def test_not_found_maps_to_404(self, client):
        response = client.get("/api/prds/prd-missing")

        assert response.status_code == 404
        detail = response.json()["detail"]
        assert detail["error_code"] == "NOT_FOUND"
        assert detail["context"]["prd_id"] == "prd-missing"

    def test_invalid_request_maps_to_400(self, client, prd):
        story_id = prd["stories"][0]["id"]

        response = client.patch(f"/api/prds/{prd['id']}/stories/{story_id}", json={"priority": "urgent"})

        assert response.status_code == 400
        assert response.json()["detail"]["error_code"] == "INVALID_REQUEST"

    def test_story_edit_dependencies_and_reorder(self, client, prd):
        schema, cart = (s["id"] for s in prd["stories"])

        added = client.post(f"/api/prds/{prd['id']}/stories", json={"title": "Checkout", "depends_on": [cart]})
        assert added.status_code == 201
        checkout = added.json()["id"]

        edge = client.post(f"/api/prds/{prd['id']}/dependencies", json={
            "story_id": cart, "depends_on_id": schema, "reason": "Needs tables",
        })
        assert edge.json()["dependency_reasons"] == {schema: "Needs tables"}

        cycle = client.post(f"/api/prds/{prd['id']}/dependencies", json={"story_id": schema, "depends_on_id": checkout})
        assert cycle.status_code == 400

        graph = client.get(f"/api/prds/{prd['id']}/dependencies").json()
        assert len(graph["edges"]) == 2

        removed = client.delete(
            f"/api/prds/{prd['id']}/dependencies", params={"story_id": cart, "depends_on_id": schema}
        )
        assert removed.json()["depends_on"] == []

        order = client.put(f"/api/prds/{prd['id']}/stories/reorder", json={"story_ids": [checkout]}).json()["order"]
        assert order == [checkout, schema, cart]

        patched = client.patch(f"/api/prds/{prd['id']}/stories/{cart}", json={"add_learning": "Keep it simple"})
        assert patched.json()["learnings"] == ["Keep it simple"]

    def test_ralph_round_trip(self, client):
        document = {"project": "Blog", "userStories": [{"title": "Post", "priority": 1, "passes": True}]}

        created = client.post("/api/prds/import", json={"workspace_path": "/work/blog", "prd_json": document})
        assert created.status_code == 201

        exported = client.get(f"/api/prds/{created.json()['id']}/export").json()
        assert exported["branchName"] == "ralph/blog"
        assert exported["userStories"][0]["passes"] is True

        bad = client.post("/api/prds/import", json={"workspace_path": "/work/blog", "prd_json": "{nope"})
        assert bad.status_code == 400

    def test_standalone_stories(self, client):
        created = client.post("/api/stories", json={"workspace_path": "/work/app", "title": "Loose story"})
        assert created.status_code == 201

        listed = client.get("/api/stories", params={"workspace_path": "/work/app"}).json()["stories"]
        assert [s["title"] for s in listed] == ["Loose story"]

        assert client.delete(f"/api/stories/{created.json()['id']}").status_code == 200


class TestAIEndpoints:
    """Test cases for AI-backed endpoints over HTTP."""

    def test_refine(self, client, prd, ai):
        ai.queue_response({"qualityScore": 82, "qualityExplanation": "Good"})
        story_id = prd["stories"][1]["id"]

        response = client.post(f"/api/prds/{prd['id']}/stories/{story_id}/refine", json={})

        assert response.status_code == 200
        assert response.json()["meets_threshold"] is True

    def test_priority_then_accept(self, client, prd, ai):
        story_id = prd["stories"][1]["id"]
        ai.queue_response({"suggestedPriority": "high", "confidence": 75})

        recommendation = client.post(f"/api/prds/{prd['id']}/stories/{story_id}/priority").json()
        accepted = client.put(
            f"/api/prds/{prd['id']}/stories/{story_id}/priority",
            json={"priority": recommendation["suggested_priority"]},
        ).json()

        assert accepted["priority"] == "high"
        assert accepted["priority_recommendation"]["current_priority"] == "high"

    def test_generate_and_accept(self, client, prd, ai):
        ai.queue_response({"stories": [{"title": "Wishlist", "acceptanceCriteria": ["a", "b", "c"]}]})

        drafts = client.post(f"/api/prds/{prd['id']}/generate", json={"count": 1}).json()["stories"]
        accepted = client.post(f"/api/prds/{prd['id']}/generate/accept", json={"stories": drafts})

        assert accepted.status_code == 201
        assert accepted.json()["stories"][0]["sort_order"] == 2

    def test_analyze_dependencies(self, client, prd, ai):
        schema, cart = (s["id"] for s in prd["stories"])
        ai.queue_response({"dependencies": [{"fromStoryId": cart, "toStoryId": schema, "reason": "Needs tables"}]})

        response = client.post(f"/api/prds/{prd['id']}/dependencies/analyze", json={})

        assert response.status_code == 200
        data = response.json()
        assert data["changed_story_ids"] == [cart]
        assert data["graph"]["edges"] == [{"from": schema, "to": cart, "reason": "Needs tables"}]

    def test_estimate_prd(self, client, prd, ai):
        schema, cart = (s["id"] for s in prd["stories"])
        ai.queue_response({"estimates": [
            {"storyId": schema, "size": "small", "storyPoints": 2},
            {"storyId": cart, "size": "medium", "storyPoints": 5},
        ]})

        response = client.post(f"/api/prds/{prd['id']}/estimate", json={"re_estimate": False})

        assert response.status_code == 200
        assert response.json()["summary"]["total_points"] == 7

        empty = client.post("/api/prds", json={"workspace_path": "/work/shop", "name": "Empty"}).json()
        assert client.post(f"/api/prds/{empty['id']}/estimate", json={}).status_code == 400

    def test_malformed_ai_response_maps_to_502(self, client, prd, ai):
        ai.queue_response("not json at all")
        story_id = prd["stories"][0]["id"]

        response = client.post(f"/api/prds/{prd['id']}/stories/{story_id}/estimate")

        assert response.status_code == 502
        assert response.json()["detail"]["error_code"] == "MALFORMED_UPSTREAM_RESPONSE"

    def test_requests_share_provider_until_shutdown(self, test_db, counting_providers):
        with TestClient(create_app()) as client:
            created = client.post("/api/prds", json={
                "workspace_path": "/work/shop",
                "name": "Shop",
                "stories": [{"title": "Cart", "acceptance_criteria": ["Items can be added"]}],
            }).json()
            prd_id, story_id = created["id"], created["stories"][0]["id"]
            shared = get_completion_provider()
            shared.queue_response({"size": "small", "storyPoints": 2})
            shared.queue_response({"suggestedPriority": "high", "confidence": 70})

            assert client.post(f"/api/prds/{prd_id}/stories/{story_id}/estimate").status_code == 200
            assert client.post(f"/api/prds/{prd_id}/stories/{story_id}/priority").status_code == 200
            assert shared.closed is False

        assert len(counting_providers) == 1
        assert shared.call_count == 2
        assert shared.closed is True

    def test_missing_api_key_maps_to_502(self, client, prd):
        story_id = prd["stories"][0]["id"]

        response = client.post(f"/api/prds/{prd['id']}/stories/{story_id}/validate-criteria", json={})

        assert response.status_code == 502
        assert response.json()["detail"]["error_code"] == "UPSTREAM_FAILURE"


class TestTemplateEndpoints:
    def test_catalog_and_builtin_protection(self, client, prd):
        templates = client.get("/api/templates").json()["templates"]
        assert {t["id"] for t in templates} >= {"builtin-feature", "builtin-bug"}

        assert client.delete("/api/templates/builtin-feature").status_code == 400

        story = client.post(f"/api/prds/{prd['id']}/stories/from-template", json={
            "template_id": "builtin-tech-debt",
            "variables": {"area": "Cart", "improvement": "extract pricing"},
        })
        assert story.status_code == 201
        assert story.json()["title"] == "Tech Debt: Cart - extract pricing"

        preview = client.post("/api/templates/builtin-bug/preview", json={"variables": {}}).json()
        assert preview["title"] == "Fix: {{brief_description_of_bug}}"
