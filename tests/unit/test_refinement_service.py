"""Unit tests for story refinement and acceptance-criteria validation."""

import pytest

from storywright.c2_story_service import PRDService, RefinementService
from storywright.core.exceptions import InvalidRequestError, NotFoundError
from tests.fixtures.story_records import recommendation_of, seed_recommendation


def _story(prd_id, story_id):
    return next(s for s in PRDService.get_prd(prd_id)["stories"] if s["id"] == story_id)


class TestRefineStory:
    """Test cases for the refinement exchange."""

    @pytest.mark.asyncio
    async def test_first_pass_never_mutates(self, prd_with_stories, mock_provider):
        ids = prd_with_stories
        before = _story(ids["prd_id"], ids["cart"])
        mock_provider.queue_response({
            "qualityScore": 55,
            "qualityExplanation": "Item limits unclear",
            "meetsThreshold": True,
            "questions": [{"id": "q1", "question": "Is there a max quantity?", "context": "Validation"}],
            "updatedStory": {"title": "Rewritten", "description": "x", "acceptanceCriteria": ["y"]},
        })

        result = await RefinementService.refine_story(ids["prd_id"], ids["cart"], provider=mock_provider)

        assert result["quality_score"] == 55
        assert result["meets_threshold"] is False
        assert result["questions"][0]["id"] == "q1"
        after = _story(ids["prd_id"], ids["cart"])
        assert after["title"] == before["title"]
        assert after["updated_at"] == before["updated_at"]

        system_prompt = mock_provider.last_request["system_prompt"]
        assert "## Other Stories in this PRD" in system_prompt
        assert "- Cart:" not in system_prompt

    @pytest.mark.asyncio
    async def test_answers_apply_updated_story(self, prd_with_stories, mock_provider):
        ids = prd_with_stories
        seed_recommendation(ids["schema"])
        seed_recommendation(ids["checkout"])
        mock_provider.queue_response({
            "qualityScore": 86,
            "qualityExplanation": "Clear now",
            "improvements": ["Added quantity limit"],
            "updatedStory": {
                "title": "Cart with quantity limit",
                "description": "Add items, max 10 each",
                "acceptanceCriteria": ["Items can be added", "Quantity above 10 is rejected"],
                "priority": "high",
            },
        })

        result = await RefinementService.refine_story(
            ids["prd_id"],
            ids["cart"],
            answers=[{"question_id": "q1", "answer": "10 per item"}],
            provider=mock_provider,
        )

        assert result["meets_threshold"] is True
        assert result["improvements"] == ["Added quantity limit"]
        story = _story(ids["prd_id"], ids["cart"])
        assert story["title"] == "Cart with quantity limit"
        assert story["priority"] == "high"
        assert [c["description"] for c in story["acceptance_criteria"]] == [
            "Items can be added",
            "Quantity above 10 is rejected",
        ]
        assert all(c["passed"] is False for c in story["acceptance_criteria"])
        assert recommendation_of(ids["schema"]) is None
        assert recommendation_of(ids["checkout"]) is None
        assert "Q: q1\nA: 10 per item" in mock_provider.last_request["user_prompt"]

    @pytest.mark.asyncio
    async def test_answers_without_updated_story_keep_story(self, prd_with_stories, mock_provider):
        ids = prd_with_stories
        mock_provider.queue_response({"qualityScore": 60, "questions": [{"question": "Which currency?"}]})

        await RefinementService.refine_story(
            ids["prd_id"], ids["cart"], answers=[{"question_id": "q1", "answer": "?"}], provider=mock_provider
        )

        assert _story(ids["prd_id"], ids["cart"])["title"] == "Cart"

    @pytest.mark.asyncio
    async def test_bad_answers_rejected_before_calling(self, prd_with_stories, mock_provider):
        with pytest.raises(InvalidRequestError):
            await RefinementService.refine_story(
                prd_with_stories["prd_id"], prd_with_stories["cart"], answers=[{"answer": "no id"}],
                provider=mock_provider,
            )

        assert mock_provider.call_count == 0

    @pytest.mark.asyncio
    async def test_unknown_story(self, prd_with_stories, mock_provider):
        with pytest.raises(NotFoundError):
            await RefinementService.refine_story(prd_with_stories["prd_id"], "story-ghost", provider=mock_provider)


class TestValidateCriteria:
    """Test cases for criteria validation through the service."""

    @pytest.mark.asyncio
    async def test_requested_criteria_validated_and_not_stored(self, prd_with_stories, mock_provider):
        ids = prd_with_stories
        mock_provider.queue_response({
            "overallScore": 30,
            "summary": "Vague",
            "criteria": [{"index": 0, "issues": [{"severity": "error", "category": "vague",
                                                   "message": "Not measurable"}]}],
        })

        result = await RefinementService.validate_criteria(
            ids["prd_id"], ids["cart"], criteria=["System should be fast"], story_title="Fast cart",
            provider=mock_provider,
        )

        assert result["all_valid"] is False
        assert result["criteria"][0]["text"] == "System should be fast"
        assert "Title: Fast cart" in mock_provider.last_request["user_prompt"]
        stored = _story(ids["prd_id"], ids["cart"])["acceptance_criteria"]
        assert [c["description"] for c in stored] == ["Items can be added"]

    @pytest.mark.asyncio
    async def test_falls_back_to_stored_criteria(self, prd_with_stories, mock_provider):
        ids = prd_with_stories
        mock_provider.queue_response({"overallScore": 95, "criteria": []})

        result = await RefinementService.validate_criteria(ids["prd_id"], ids["cart"], provider=mock_provider)

        assert result["all_valid"] is True
        assert [c["text"] for c in result["criteria"]] == ["Items can be added"]

    @pytest.mark.asyncio
    async def test_no_criteria_rejected(self, test_db, mock_provider):
        prd = PRDService.create_prd("/work/shop", "Shop", stories=[{"title": "Bare"}])

        with pytest.raises(InvalidRequestError):
            await RefinementService.validate_criteria(prd["id"], prd["stories"][0]["id"], provider=mock_provider)

        assert mock_provider.call_count == 0
