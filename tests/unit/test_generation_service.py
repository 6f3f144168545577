"""Unit tests for bulk generation, template instantiation and estimation."""

import pytest

from storywright.c1_database_session import get_db
from storywright.c1_prd_models import Story
from storywright.c2_story_service import EstimationService, GenerationService, PRDService
from storywright.core.exceptions import InvalidRequestError, MalformedUpstreamResponseError, NotFoundError


class TestGenerateStories:
    """Test cases for drafting stories from a description."""

    @pytest.mark.asyncio
    async def test_drafts_are_padded_and_not_stored(self, prd_with_stories, mock_provider):
        ids = prd_with_stories
        mock_provider.queue_response({"stories": [
            {"title": "Wishlist", "description": "Save for later", "acceptanceCriteria": ["Heart icon saves item"],
             "priority": "low"},
            {"title": "Reviews", "acceptanceCriteria": ["a", "b", "c"], "priority": "sometime"},
        ]})

        result = await GenerationService.generate_stories(ids["prd_id"], count=2, provider=mock_provider)

        assert result["prd_id"] == ids["prd_id"]
        wishlist, reviews = result["stories"]
        assert wishlist["acceptance_criteria"] == [
            "Heart icon saves item",
            "Needs acceptance criterion 2",
            "Needs acceptance criterion 3",
        ]
        assert reviews["priority"] == "medium"
        assert len(PRDService.get_prd(ids["prd_id"])["stories"]) == 3

        request = mock_provider.last_request
        assert request["user_prompt"].startswith("Generate 2 user stories for the PRD Shop")
        assert "## Description\nAn online shop" in request["user_prompt"]
        assert "- Checkout\n" in request["user_prompt"]
        assert request["max_tokens"] == 8192

    @pytest.mark.asyncio
    async def test_explicit_description_and_context(self, prd_with_stories, mock_provider):
        mock_provider.queue_response([{"title": "A", "acceptanceCriteria": ["1", "2", "3"]}])

        await GenerationService.generate_stories(
            prd_with_stories["prd_id"], description="Loyalty points", context="B2C only", provider=mock_provider
        )

        prompt = mock_provider.last_request["user_prompt"]
        assert prompt.startswith("Generate 7 user stories")
        assert "## Description\nLoyalty points" in prompt
        assert "## Additional Context\nB2C only" in prompt

    @pytest.mark.asyncio
    async def test_no_description_anywhere(self, test_db, mock_provider):
        prd = PRDService.create_prd("/work/shop", "Shop")

        with pytest.raises(InvalidRequestError, match="description"):
            await GenerationService.generate_stories(prd["id"], description="  ", provider=mock_provider)

        assert mock_provider.call_count == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [-1, 0, 21])
    async def test_count_bounds(self, prd_with_stories, mock_provider, count):
        with pytest.raises(InvalidRequestError):
            await GenerationService.generate_stories(prd_with_stories["prd_id"], count=count, provider=mock_provider)

    @pytest.mark.asyncio
    async def test_no_usable_stories(self, prd_with_stories, mock_provider):
        mock_provider.queue_response({"stories": [{"title": ""}]})

        with pytest.raises(MalformedUpstreamResponseError):
            await GenerationService.generate_stories(prd_with_stories["prd_id"], provider=mock_provider)


class TestAcceptGenerated:
    """Test cases for storing reviewed drafts."""

    def test_appended_with_contiguous_order(self, prd_with_stories):
        result = GenerationService.accept_generated(prd_with_stories["prd_id"], [
            {"title": "Wishlist", "acceptance_criteria": ["Saves item"], "priority": "low"},
            {"title": "Reviews"},
        ])

        assert [s["sort_order"] for s in result["stories"]] == [3, 4]
        assert result["stories"][0]["acceptance_criteria"][0]["passed"] is False
        assert [s["title"] for s in PRDService.get_prd(prd_with_stories["prd_id"])["stories"]][-2:] == [
            "Wishlist",
            "Reviews",
        ]

    def test_rejects_empty_and_untitled(self, prd_with_stories):
        with pytest.raises(InvalidRequestError):
            GenerationService.accept_generated(prd_with_stories["prd_id"], [])
        with pytest.raises(InvalidRequestError):
            GenerationService.accept_generated(prd_with_stories["prd_id"], [{"title": "Ok"}, {"title": ""}])

        assert len(PRDService.get_prd(prd_with_stories["prd_id"])["stories"]) == 3


class TestTemplates:
    """Test cases for stories created from templates."""

    def test_story_from_builtin_template(self, prd_with_stories):
        story = GenerationService.create_story_from_template(
            prd_with_stories["prd_id"], "builtin-bug", {"brief_description_of_bug": "Totals off by one cent"}
        )

        assert story["title"] == "Fix: Totals off by one cent"
        assert story["priority"] == "high"
        assert story["sort_order"] == 3
        assert len(story["acceptance_criteria"]) == 4

    def test_preview_stores_nothing(self, prd_with_stories):
        preview = GenerationService.preview_template("builtin-spike", {"topic_or_question": "search engines"})

        assert preview["title"] == "Spike: Investigate search engines"
        assert "{{number}}" in preview["acceptance_criteria"][1]
        assert len(PRDService.get_prd(prd_with_stories["prd_id"])["stories"]) == 3

    def test_unknown_template(self, prd_with_stories):
        with pytest.raises(NotFoundError):
            GenerationService.create_story_from_template(prd_with_stories["prd_id"], "template-ghost")


class TestEstimation:
    """Test cases for AI and manual estimates."""

    @pytest.mark.asyncio
    async def test_ai_estimate_stored(self, prd_with_stories, mock_provider):
        ids = prd_with_stories
        mock_provider.queue_response({
            "size": "large",
            "storyPoints": 8,
            "confidence": "medium",
            "factors": [{"factor": "Payment provider integration", "impact": "increases", "weight": "major"}],
            "reasoning": "External API work.",
            "suggestedBreakdown": ["Card form", "Webhook handling"],
        })

        estimate = await EstimationService.estimate_story(ids["prd_id"], ids["checkout"], provider=mock_provider)

        assert (estimate["size"], estimate["story_points"], estimate["confidence_score"]) == ("large", 8, 60)
        assert estimate["suggested_breakdown"] == ["Card form", "Webhook handling"]
        stored = next(s for s in PRDService.get_prd(ids["prd_id"])["stories"] if s["id"] == ids["checkout"])
        assert stored["estimate"] == estimate

    @pytest.mark.asyncio
    async def test_siblings_with_estimates_calibrate(self, prd_with_stories, mock_provider):
        ids = prd_with_stories
        EstimationService.save_manual_estimate(ids["prd_id"], ids["schema"], "small", 2)
        mock_provider.queue_response({"size": "medium", "storyPoints": 5})

        await EstimationService.estimate_story(ids["prd_id"], ids["cart"], provider=mock_provider)

        assert "- Schema: small (2 points)" in mock_provider.last_request["user_prompt"]

    def test_manual_estimate_keeps_previous_factors(self, prd_with_stories):
        ids = prd_with_stories
        factors = [{"factor": "Legacy code", "impact": "increases", "weight": "minor"}]
        with get_db() as db:
            db.query(Story).filter_by(id=ids["cart"]).one().estimate = {
                "size": "large", "story_points": 13, "confidence": "low", "confidence_score": 30,
                "factors": factors, "reasoning": "AI", "suggested_breakdown": ["a"], "is_manual_override": False,
            }

        estimate = EstimationService.save_manual_estimate(ids["prd_id"], ids["cart"], "medium", 5)

        assert estimate["factors"] == factors
        assert (estimate["confidence"], estimate["confidence_score"]) == ("high", 100)
        assert estimate["reasoning"] == "Manual estimate."
        assert estimate["suggested_breakdown"] is None
        assert estimate["is_manual_override"] is True

    @pytest.mark.parametrize("size,points", [("huge", 5), ("medium", 4)])
    def test_manual_estimate_rejects_off_scale(self, prd_with_stories, size, points):
        with pytest.raises(InvalidRequestError):
            EstimationService.save_manual_estimate(prd_with_stories["prd_id"], prd_with_stories["cart"], size, points)


class TestBulkEstimation:
    """Test cases for estimating every story of a PRD in one exchange."""

    @pytest.mark.asyncio
    async def test_manual_estimates_left_alone(self, prd_with_stories, mock_provider):
        ids = prd_with_stories
        manual = EstimationService.save_manual_estimate(ids["prd_id"], ids["schema"], "small", 2)
        mock_provider.queue_response({"estimates": [
            {"storyId": ids["schema"], "size": "large", "storyPoints": 13},
            {"storyId": ids["cart"], "size": "medium", "storyPoints": 5, "confidenceScore": 70},
            {"storyId": ids["checkout"], "size": "large", "storyPoints": 8, "confidenceScore": 40},
        ]})

        result = await EstimationService.estimate_prd(ids["prd_id"], provider=mock_provider)

        assert f"Only estimate stories with these IDs: {ids['cart']}, {ids['checkout']}" in (
            mock_provider.last_request["system_prompt"]
        )
        assert [e["story_id"] for e in result["estimates"]] == [ids["schema"], ids["cart"], ids["checkout"]]
        assert result["summary"] == {
            "total_points": 15,
            "average_points": 5.0,
            "small_count": 1,
            "medium_count": 1,
            "large_count": 1,
            "average_confidence": 70,
        }
        stories = {s["id"]: s for s in PRDService.get_prd(ids["prd_id"])["stories"]}
        assert stories[ids["schema"]]["estimate"] == manual
        assert stories[ids["checkout"]]["estimate"]["story_points"] == 8

    @pytest.mark.asyncio
    async def test_re_estimate_replaces_manual(self, prd_with_stories, mock_provider):
        ids = prd_with_stories
        EstimationService.save_manual_estimate(ids["prd_id"], ids["schema"], "small", 2)
        mock_provider.queue_response([{"storyId": ids["schema"], "size": "medium", "storyPoints": 3}])

        result = await EstimationService.estimate_prd(ids["prd_id"], re_estimate=True, provider=mock_provider)

        schema = next(e for e in result["estimates"] if e["story_id"] == ids["schema"])
        assert (schema["size"], schema["story_points"], schema["is_manual_override"]) == ("medium", 3, False)
        assert len(result["estimates"]) == 1

    @pytest.mark.asyncio
    async def test_all_manual_skips_the_ai(self, prd_with_stories, mock_provider):
        ids = prd_with_stories
        manual = [(ids["schema"], "small", 1), (ids["cart"], "medium", 3), (ids["checkout"], "large", 8)]
        for story_id, size, points in manual:
            EstimationService.save_manual_estimate(ids["prd_id"], story_id, size, points)

        result = await EstimationService.estimate_prd(ids["prd_id"], provider=mock_provider)

        assert mock_provider.call_count == 0
        assert result["summary"]["total_points"] == 12
        assert result["summary"]["average_points"] == 4.0
        assert result["summary"]["average_confidence"] == 100

    @pytest.mark.asyncio
    async def test_prd_without_stories(self, test_db, mock_provider):
        prd = PRDService.create_prd("/work/shop", "Empty")

        with pytest.raises(InvalidRequestError, match="no stories"):
            await EstimationService.estimate_prd(prd["id"], provider=mock_provider)

        assert mock_provider.call_count == 0

    @pytest.mark.asyncio
    async def test_malformed_payload(self, prd_with_stories, mock_provider):
        mock_provider.queue_response({"sizes": []})

        with pytest.raises(MalformedUpstreamResponseError):
            await EstimationService.estimate_prd(prd_with_stories["prd_id"], provider=mock_provider)
