"""Storywright: PRD and user-story workflow engine."""

__version__ = "1.0.0"
