"""PRD, story and template models for Storywright."""

from datetime import datetime
from typing import Any, Dict
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from storywright.c1_database_session.base import Base


def _iso(value):
    return value.isoformat() if value else None


class PRD(Base):
    """Product Requirements Document owning an ordered list of stories."""

    __tablename__ = "prds"

    id = Column(String, primary_key=True)  # Format: prd-{hex}
    workspace_path = Column(String, nullable=False)
    name = Column(String(500), nullable=False)
    description = Column(Text, default="", nullable=False)
    branch_name = Column(String)
    quality_checks = Column(JSON)  # List of QualityCheck dicts
    external_ref = Column(JSON)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    stories = relationship(
        "Story",
        back_populates="prd",
        order_by="Story.sort_order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def to_dict(self, include_stories: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "workspace_path": self.workspace_path,
            "name": self.name,
            "description": self.description or "",
            "branch_name": self.branch_name,
            "quality_checks": list(self.quality_checks or []),
            "external_ref": self.external_ref,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_stories:
            data["stories"] = [story.to_dict() for story in self.stories]
        return data


class Story(Base):
    """A user story, owned by a PRD or standing alone in a workspace."""

    __tablename__ = "prd_stories"

    id = Column(String, primary_key=True)  # Format: story-{hex}
    prd_id = Column(String, ForeignKey("prds.id", ondelete="CASCADE"))  # NULL for standalone stories
    workspace_path = Column(String)

    # Core fields
    title = Column(String(500), nullable=False)
    description = Column(Text, default="", nullable=False)
    acceptance_criteria = Column(JSON)  # List of {id, description, passed}
    priority = Column(
        String(20),
        CheckConstraint("priority IN ('critical', 'high', 'medium', 'low')"),
        default="medium",
        nullable=False,
    )
    status = Column(
        String(20),
        CheckConstraint("status IN ('pending', 'in_progress', 'completed', 'failed', 'skipped')"),
        default="pending",
        nullable=False,
    )

    # Dependency edges (story -> prerequisite)
    depends_on = Column(JSON)  # List of story IDs
    dependency_reasons = Column(JSON)  # Map prerequisite ID -> reason

    # Execution tracking
    task_id = Column(String)
    agent_id = Column(String)
    conversation_id = Column(String)
    commit_sha = Column(String)
    attempts = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=3, nullable=False)
    learnings = Column(JSON)  # List of strings

    sort_order = Column(Integer, default=0, nullable=False)

    # AI-derived and external data
    estimate = Column(JSON)
    priority_recommendation = Column(JSON)
    external_ref = Column(JSON)
    external_status = Column(String)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    prd = relationship("PRD", back_populates="stories")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "prd_id": self.prd_id,
            "workspace_path": self.workspace_path,
            "title": self.title,
            "description": self.description or "",
            "acceptance_criteria": list(self.acceptance_criteria or []),
            "priority": self.priority,
            "status": self.status,
            "depends_on": list(self.depends_on or []),
            "dependency_reasons": dict(self.dependency_reasons or {}),
            "task_id": self.task_id,
            "agent_id": self.agent_id,
            "conversation_id": self.conversation_id,
            "commit_sha": self.commit_sha,
            "attempts": self.attempts or 0,
            "max_attempts": self.max_attempts if self.max_attempts is not None else 3,
            "learnings": list(self.learnings or []),
            "sort_order": self.sort_order,
            "estimate": self.estimate,
            "priority_recommendation": self.priority_recommendation,
            "external_ref": self.external_ref,
            "external_status": self.external_status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class StoryTemplate(Base):
    """Reusable story skeleton with {{placeholder}} substitution points."""

    __tablename__ = "story_templates"

    id = Column(String, primary_key=True)  # builtin-{category} or template-{hex}
    name = Column(String(200), nullable=False)
    description = Column(Text, default="", nullable=False)
    category = Column(
        String(20),
        CheckConstraint("category IN ('feature', 'bug', 'tech_debt', 'spike', 'custom')"),
        default="custom",
        nullable=False,
    )
    title_template = Column(Text, default="", nullable=False)
    description_template = Column(Text, default="", nullable=False)
    acceptance_criteria_templates = Column(JSON)  # List of strings
    priority = Column(String(20), default="medium", nullable=False)
    tags = Column(JSON)  # List of strings
    is_built_in = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description or "",
            "category": self.category,
            "title_template": self.title_template or "",
            "description_template": self.description_template or "",
            "acceptance_criteria_templates": list(self.acceptance_criteria_templates or []),
            "priority": self.priority,
            "tags": list(self.tags or []),
            "is_built_in": bool(self.is_built_in),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class WorkspaceMemory(Base):
    """Learned project knowledge scoped to a workspace path."""

    __tablename__ = "workspace_memories"

    id = Column(String, primary_key=True)
    workspace_path = Column(String, nullable=False)
    category = Column(String(20), nullable=False)  # convention, decision, preference, pattern, context
    key = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    confidence = Column(Float, default=0.5, nullable=False)
    times_seen = Column(Integer, default=1, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workspace_path": self.workspace_path,
            "category": self.category,
            "key": self.key,
            "content": self.content,
            "confidence": self.confidence,
            "times_seen": self.times_seen,
        }
