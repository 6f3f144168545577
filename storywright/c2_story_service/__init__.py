"""C2 Story Service - PRD, story and AI workflow operations."""
from storywright.c2_story_service.prd_service import PRDService, StandaloneStoryService
from storywright.c2_story_service.dependency_service import DependencyService
from storywright.c2_story_service.priority_service import PriorityService
from storywright.c2_story_service.refinement_service import RefinementService
from storywright.c2_story_service.generation_service import GenerationService
from storywright.c2_story_service.estimation_service import EstimationService
__all__ = [
    "PRDService",
    "StandaloneStoryService",
    "DependencyService",
    "PriorityService",
    "RefinementService",
    "GenerationService",
    "EstimationService",
]
