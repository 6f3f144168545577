"""Helpers for reading and seeding stored priority recommendations in tests."""

from storywright.c1_database_session import get_db
from storywright.c1_prd_models import Story


def seed_recommendation(story_id, priority="medium"):
    """Store a placeholder priority recommendation on a story."""
    with get_db() as db:
        story = db.query(Story).filter_by(id=story_id).one()
        story.priority_recommendation = {
            "story_id": story_id,
            "suggested_priority": priority,
            "current_priority": story.priority,
            "confidence": 70,
            "factors": [],
            "explanation": "Seeded",
            "is_manual_override": False,
        }


def recommendation_of(story_id):
    """Read back a story's stored priority recommendation."""
    with get_db() as db:
        return db.query(Story).filter_by(id=story_id).one().priority_recommendation
