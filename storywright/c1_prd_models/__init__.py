"""Persistent models for Storywright."""

from storywright.c1_prd_models.prd import PRD, Story, StoryTemplate, WorkspaceMemory

__all__ = ["PRD", "Story", "StoryTemplate", "WorkspaceMemory"]
