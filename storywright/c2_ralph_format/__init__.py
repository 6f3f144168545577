"""Ralph-format import/export mapping."""

from storywright.c2_ralph_format.ralph_format import (
    priority_from_ralph,
    priority_to_ralph,
    ralph_story_id,
    parse_ralph_document,
    build_ralph_document,
)

__all__ = [
    "priority_from_ralph",
    "priority_to_ralph",
    "ralph_story_id",
    "parse_ralph_document",
    "build_ralph_document",
]
