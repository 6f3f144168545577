"""Unit tests for priority recommendation, acceptance and override."""

import pytest

from storywright.c1_database_session import get_db
from storywright.c1_prd_models import WorkspaceMemory
from storywright.c2_story_service import PRDService, PriorityService
from storywright.core.exceptions import (
    InvalidRequestError,
    MalformedUpstreamResponseError,
    UpstreamFailureError,
)
from tests.fixtures.story_records import recommendation_of, seed_recommendation


class TestRecommendPriority:
    """Test cases for single-story recommendations."""

    @pytest.mark.asyncio
    async def test_stores_recommendation_without_changing_priority(self, prd_with_stories, mock_provider):
        ids = prd_with_stories
        mock_provider.queue_response({
            "suggestedPriority": "critical",
            "confidence": 88,
            "factors": [{"factor": "Blocks checkout", "category": "dependency", "impact": "increases",
                         "weight": "major"}],
            "explanation": "Everything waits on the cart.",
        })

        rec = await PriorityService.recommend_priority(ids["prd_id"], ids["cart"], provider=mock_provider)

        assert rec["suggested_priority"] == "critical"
        assert rec["current_priority"] == "medium"
        assert rec["factors"][0]["category"] == "dependency"
        assert recommendation_of(ids["cart"]) == rec
        story = next(s for s in PRDService.get_prd(ids["prd_id"])["stories"] if s["id"] == ids["cart"])
        assert story["priority"] == "medium"

        prompt = mock_provider.last_request["user_prompt"]
        assert 'This story BLOCKS 1 other story(ies):\n- "Checkout"' in prompt
        assert 'This story is BLOCKED BY 1 other story(ies):\n- "Schema"' in prompt

    @pytest.mark.asyncio
    async def test_malformed_payload_stores_nothing(self, prd_with_stories, mock_provider):
        ids = prd_with_stories
        mock_provider.queue_response("I think it should be high")

        with pytest.raises(MalformedUpstreamResponseError):
            await PriorityService.recommend_priority(ids["prd_id"], ids["cart"], provider=mock_provider)

        assert recommendation_of(ids["cart"]) is None

    @pytest.mark.asyncio
    async def test_upstream_failure_propagates(self, prd_with_stories, mock_provider):
        ids = prd_with_stories
        mock_provider.queue_response(UpstreamFailureError("AI request failed (429): slow down", status=429))

        with pytest.raises(UpstreamFailureError) as exc_info:
            await PriorityService.recommend_priority(ids["prd_id"], ids["cart"], provider=mock_provider)

        assert exc_info.value.status == 429

    @pytest.mark.asyncio
    async def test_memory_included_in_prompt(self, prd_with_stories, mock_provider):
        with get_db() as db:
            db.add(WorkspaceMemory(id="m1", workspace_path="/work/shop", category="decision",
                                   key="payments", content="Stripe only", confidence=0.9, times_seen=3))
            db.add(WorkspaceMemory(id="m2", workspace_path="/work/shop", category="decision",
                                   key="guess", content="Maybe GraphQL", confidence=0.1, times_seen=1))
        mock_provider.queue_response({"suggestedPriority": "high"})

        await PriorityService.recommend_priority(
            prd_with_stories["prd_id"], prd_with_stories["checkout"], provider=mock_provider
        )

        system_prompt = mock_provider.last_request["system_prompt"]
        assert "### Architecture Decisions\n- payments: Stripe only" in system_prompt
        assert "GraphQL" not in system_prompt


class TestBulkRecommendations:
    """Test cases for whole-PRD recommendations."""

    @pytest.mark.asyncio
    async def test_summary_counts(self, prd_with_stories, mock_provider):
        ids = prd_with_stories
        mock_provider.queue_response({"recommendations": [
            {"storyId": ids["schema"], "suggestedPriority": "critical", "confidence": 90},
            {"storyId": ids["cart"], "suggestedPriority": "medium", "confidence": 70},
            {"storyId": ids["checkout"], "suggestedPriority": "critical", "confidence": 80},
            {"storyId": "story-ghost", "suggestedPriority": "low"},
        ]})

        result = await PriorityService.recommend_priorities(ids["prd_id"], provider=mock_provider)

        assert len(result["recommendations"]) == 3
        assert result["summary"] == {
            "critical_count": 2,
            "high_count": 0,
            "medium_count": 1,
            "low_count": 0,
            "changed_count": 2,
        }
        assert recommendation_of(ids["checkout"])["suggested_priority"] == "critical"
        assert mock_provider.last_request["max_tokens"] == 8192

    @pytest.mark.asyncio
    async def test_empty_prd_rejected(self, test_db, mock_provider):
        prd = PRDService.create_prd("/work/shop", "Empty")

        with pytest.raises(InvalidRequestError):
            await PriorityService.recommend_priorities(prd["id"], provider=mock_provider)

        assert mock_provider.call_count == 0


class TestAcceptPriority:
    """Test cases for accepting or overriding a recommendation."""

    def test_accept_updates_priority_and_clears_neighbours(self, prd_with_stories):
        ids = prd_with_stories
        for key in ("schema", "cart", "checkout"):
            seed_recommendation(ids[key], priority="critical")

        story = PriorityService.accept_priority(ids["prd_id"], ids["cart"], "critical")

        assert story["priority"] == "critical"
        assert story["priority_recommendation"]["current_priority"] == "critical"
        assert story["priority_recommendation"]["is_manual_override"] is False
        assert recommendation_of(ids["schema"]) is None
        assert recommendation_of(ids["checkout"]) is None

    def test_override_marks_recommendation(self, prd_with_stories):
        ids = prd_with_stories
        seed_recommendation(ids["cart"], priority="critical")

        story = PriorityService.accept_priority(ids["prd_id"], ids["cart"], "low", accept=False)

        assert story["priority"] == "low"
        assert story["priority_recommendation"]["suggested_priority"] == "critical"
        assert story["priority_recommendation"]["is_manual_override"] is True

    def test_unchanged_priority_keeps_neighbours(self, prd_with_stories):
        ids = prd_with_stories
        seed_recommendation(ids["schema"])

        PriorityService.accept_priority(ids["prd_id"], ids["cart"], "medium")

        assert recommendation_of(ids["schema"]) is not None

    def test_invalid_priority(self, prd_with_stories):
        with pytest.raises(InvalidRequestError):
            PriorityService.accept_priority(prd_with_stories["prd_id"], prd_with_stories["cart"], "urgent")
