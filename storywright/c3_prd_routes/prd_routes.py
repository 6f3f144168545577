"""PRD and story workflow routes."""

import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from storywright.c2_story_service import (
    DependencyService,
    EstimationService,
    GenerationService,
    PRDService,
    PriorityService,
    RefinementService,
    StandaloneStoryService,
)
from storywright.c2_template_library import TemplateService
from storywright.core.exceptions import StoryWorkflowError

logger = logging.getLogger(__name__)


# Request Models
class StoryInput(BaseModel):
    title: str = Field(..., description="Story title")
    description: str = Field("", description="Story description")
    acceptance_criteria: List[str] = Field(default_factory=list, description="Acceptance criteria texts")
    priority: str = Field("medium", description="Priority: critical, high, medium, low")


class CreatePRDRequest(BaseModel):
    workspace_path: str = Field(..., description="Workspace that owns the PRD")
    name: str = Field(..., description="PRD name")
    description: str = Field("", description="Product description")
    branch_name: Optional[str] = Field(None, description="Git branch for execution")
    quality_checks: Optional[List[Dict[str, Any]]] = Field(None, description="Quality gates")
    stories: List[StoryInput] = Field(default_factory=list, description="Initial stories")


class UpdatePRDRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    branch_name: Optional[str] = None
    quality_checks: Optional[List[Dict[str, Any]]] = None


class AddStoryRequest(StoryInput):
    depends_on: Optional[List[str]] = Field(None, description="Prerequisite story IDs in the same PRD")


class CreateStandaloneStoryRequest(StoryInput):
    workspace_path: str = Field(..., description="Workspace that owns the story")


class UpdateStoryRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    acceptance_criteria: Optional[List[Union[str, Dict[str, Any]]]] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    depends_on: Optional[List[str]] = None
    dependency_reasons: Optional[Dict[str, str]] = None
    task_id: Optional[str] = None
    agent_id: Optional[str] = None
    conversation_id: Optional[str] = None
    commit_sha: Optional[str] = None
    attempts: Optional[int] = Field(None, ge=0)
    max_attempts: Optional[int] = Field(None, ge=1)
    learnings: Optional[List[str]] = None
    add_learning: Optional[str] = Field(None, description="Learning appended to the story's list")
    external_status: Optional[str] = None


class ReorderRequest(BaseModel):
    story_ids: List[str] = Field(..., description="Story IDs in their new order")


class ImportRalphRequest(BaseModel):
    workspace_path: str = Field(..., description="Workspace for the imported PRD")
    prd_json: Union[str, Dict[str, Any]] = Field(..., description="Ralph document, as an object or JSON text")


class DependencyRequest(BaseModel):
    story_id: str = Field(..., description="The dependent story")
    depends_on_id: str = Field(..., description="The prerequisite story")
    reason: Optional[str] = Field(None, description="Why the dependency exists")


class DependencyReasonRequest(BaseModel):
    story_id: str
    depends_on_id: str
    reason: Optional[str] = Field(None, description="New reason; empty removes it")


class AnalyzeDependenciesRequest(BaseModel):
    replace_auto_detected: bool = Field(False, description="Replace all edges instead of merging detected ones into them")


class AcceptPriorityRequest(BaseModel):
    priority: str = Field(..., description="Priority to apply")
    accept: bool = Field(True, description="True when taking the AI suggestion, false for an override")


class RefinementAnswerInput(BaseModel):
    question_id: str
    answer: str


class RefineRequest(BaseModel):
    answers: List[RefinementAnswerInput] = Field(default_factory=list, description="Answers to earlier questions")


class ValidateCriteriaRequest(BaseModel):
    criteria: Optional[List[str]] = Field(None, description="Criteria to check; stored criteria when omitted")
    story_title: Optional[str] = None
    story_description: Optional[str] = None


class GenerateStoriesRequest(BaseModel):
    description: Optional[str] = Field(None, description="Product description; PRD description when omitted")
    context: Optional[str] = Field(None, description="Additional context for the generator")
    count: Optional[int] = Field(None, description="Number of stories to draft")


class AcceptGeneratedRequest(BaseModel):
    stories: List[StoryInput] = Field(..., description="Reviewed draft stories")


class FromTemplateRequest(BaseModel):
    template_id: str = Field(..., description="Template to instantiate")
    variables: Dict[str, str] = Field(default_factory=dict, description="Placeholder values")


class ManualEstimateRequest(BaseModel):
    size: str = Field(..., description="small, medium or large")
    story_points: int = Field(..., description="Fibonacci story points")
    reasoning: Optional[str] = None


class EstimatePRDRequest(BaseModel):
    re_estimate: bool = Field(False, description="Also re-estimate stories with a manual estimate")


class TemplateRequest(BaseModel):
    name: str = Field(..., description="Template name")
    category: str = Field(..., description="feature, bug, tech_debt, spike or custom")
    description: str = ""
    title_template: str = ""
    description_template: str = ""
    acceptance_criteria_templates: List[str] = Field(default_factory=list)
    priority: str = "medium"
    tags: List[str] = Field(default_factory=list)


class UpdateTemplateRequest(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    title_template: Optional[str] = None
    description_template: Optional[str] = None
    acceptance_criteria_templates: Optional[List[str]] = None
    priority: Optional[str] = None
    tags: Optional[List[str]] = None


class PreviewTemplateRequest(BaseModel):
    variables: Dict[str, str] = Field(default_factory=dict)


def _http_error(e: StoryWorkflowError) -> HTTPException:
    if e.http_status >= 500:
        logger.error(f"{e.error_code}: {e}")
    else:
        logger.info(f"{e.error_code}: {e}")
    return HTTPException(status_code=e.http_status, detail=e.to_dict())


def create_prd_router():
    """Create the PRD workflow router.

    Returns:
        APIRouter: Configured router with PRD, story, template and AI endpoints
    """
    router = APIRouter(tags=["prds"])

    # --- PRDs ---

    @router.get("/api/prds")
    async def list_prds_endpoint(workspace_path: Optional[str] = Query(None)):
        return {"prds": PRDService.list_prds(workspace_path)}

    @router.post("/api/prds", status_code=201)
    async def create_prd_endpoint(request: CreatePRDRequest):
        try:
            return PRDService.create_prd(
                workspace_path=request.workspace_path,
                name=request.name,
                description=request.description,
                branch_name=request.branch_name,
                quality_checks=request.quality_checks,
                stories=[s.model_dump() for s in request.stories],
            )
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.post("/api/prds/import", status_code=201)
    async def import_ralph_endpoint(request: ImportRalphRequest):
        try:
            return PRDService.import_ralph(request.workspace_path, request.prd_json)
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.get("/api/prds/{prd_id}")
    async def get_prd_endpoint(prd_id: str):
        try:
            return PRDService.get_prd(prd_id)
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.patch("/api/prds/{prd_id}")
    async def update_prd_endpoint(prd_id: str, request: UpdatePRDRequest):
        try:
            return PRDService.update_prd(prd_id, request.model_dump(exclude_none=True))
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.delete("/api/prds/{prd_id}")
    async def delete_prd_endpoint(prd_id: str):
        try:
            return PRDService.delete_prd(prd_id)
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.get("/api/prds/{prd_id}/export")
    async def export_ralph_endpoint(prd_id: str):
        try:
            return PRDService.export_ralph(prd_id)
        except StoryWorkflowError as e:
            raise _http_error(e)

    # --- PRD stories ---

    @router.post("/api/prds/{prd_id}/stories", status_code=201)
    async def add_story_endpoint(prd_id: str, request: AddStoryRequest):
        try:
            return PRDService.add_story(
                prd_id,
                title=request.title,
                description=request.description,
                acceptance_criteria=request.acceptance_criteria,
                priority=request.priority,
                depends_on=request.depends_on,
            )
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.patch("/api/prds/{prd_id}/stories/{story_id}")
    async def update_story_endpoint(prd_id: str, story_id: str, request: UpdateStoryRequest):
        try:
            return PRDService.update_story(prd_id, story_id, request.model_dump(exclude_none=True))
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.delete("/api/prds/{prd_id}/stories/{story_id}")
    async def delete_story_endpoint(prd_id: str, story_id: str):
        try:
            return PRDService.delete_story(prd_id, story_id)
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.put("/api/prds/{prd_id}/stories/reorder")
    async def reorder_stories_endpoint(prd_id: str, request: ReorderRequest):
        try:
            return PRDService.reorder_stories(prd_id, request.story_ids)
        except StoryWorkflowError as e:
            raise _http_error(e)

    # --- Dependencies ---

    @router.get("/api/prds/{prd_id}/dependencies")
    async def dependency_graph_endpoint(prd_id: str):
        try:
            return DependencyService.get_dependency_graph(prd_id)
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.get("/api/prds/{prd_id}/dependencies/validate")
    async def validate_dependencies_endpoint(prd_id: str):
        try:
            return DependencyService.validate_dependencies(prd_id)
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.post("/api/prds/{prd_id}/dependencies")
    async def add_dependency_endpoint(prd_id: str, request: DependencyRequest):
        try:
            return DependencyService.add_dependency(prd_id, request.story_id, request.depends_on_id, request.reason)
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.delete("/api/prds/{prd_id}/dependencies")
    async def remove_dependency_endpoint(
        prd_id: str,
        story_id: str = Query(..., description="The dependent story"),
        depends_on_id: str = Query(..., description="The prerequisite story"),
    ):
        try:
            return DependencyService.remove_dependency(prd_id, story_id, depends_on_id)
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.patch("/api/prds/{prd_id}/dependencies")
    async def dependency_reason_endpoint(prd_id: str, request: DependencyReasonRequest):
        try:
            return DependencyService.update_dependency_reason(
                prd_id, request.story_id, request.depends_on_id, request.reason
            )
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.post("/api/prds/{prd_id}/dependencies/analyze")
    async def analyze_dependencies_endpoint(prd_id: str, request: AnalyzeDependenciesRequest):
        try:
            return await DependencyService.analyze_dependencies(
                prd_id, replace_auto_detected=request.replace_auto_detected
            )
        except StoryWorkflowError as e:
            raise _http_error(e)

    # --- AI workflow ---

    @router.post("/api/prds/{prd_id}/stories/{story_id}/priority")
    async def recommend_priority_endpoint(prd_id: str, story_id: str):
        try:
            return await PriorityService.recommend_priority(prd_id, story_id)
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.post("/api/prds/{prd_id}/priorities")
    async def recommend_priorities_endpoint(prd_id: str):
        try:
            return await PriorityService.recommend_priorities(prd_id)
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.put("/api/prds/{prd_id}/stories/{story_id}/priority")
    async def accept_priority_endpoint(prd_id: str, story_id: str, request: AcceptPriorityRequest):
        try:
            return PriorityService.accept_priority(prd_id, story_id, request.priority, request.accept)
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.post("/api/prds/{prd_id}/stories/{story_id}/refine")
    async def refine_story_endpoint(prd_id: str, story_id: str, request: RefineRequest):
        try:
            return await RefinementService.refine_story(
                prd_id, story_id, answers=[a.model_dump() for a in request.answers]
            )
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.post("/api/prds/{prd_id}/stories/{story_id}/validate-criteria")
    async def validate_criteria_endpoint(prd_id: str, story_id: str, request: ValidateCriteriaRequest):
        try:
            return await RefinementService.validate_criteria(
                prd_id,
                story_id,
                criteria=request.criteria,
                story_title=request.story_title,
                story_description=request.story_description,
            )
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.post("/api/prds/{prd_id}/generate")
    async def generate_stories_endpoint(prd_id: str, request: GenerateStoriesRequest):
        try:
            return await GenerationService.generate_stories(
                prd_id, description=request.description, context=request.context, count=request.count
            )
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.post("/api/prds/{prd_id}/generate/accept", status_code=201)
    async def accept_generated_endpoint(prd_id: str, request: AcceptGeneratedRequest):
        try:
            return GenerationService.accept_generated(prd_id, [s.model_dump() for s in request.stories])
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.post("/api/prds/{prd_id}/stories/from-template", status_code=201)
    async def story_from_template_endpoint(prd_id: str, request: FromTemplateRequest):
        try:
            return GenerationService.create_story_from_template(prd_id, request.template_id, request.variables)
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.post("/api/prds/{prd_id}/stories/{story_id}/estimate")
    async def estimate_story_endpoint(prd_id: str, story_id: str):
        try:
            return await EstimationService.estimate_story(prd_id, story_id)
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.put("/api/prds/{prd_id}/stories/{story_id}/estimate")
    async def manual_estimate_endpoint(prd_id: str, story_id: str, request: ManualEstimateRequest):
        try:
            return EstimationService.save_manual_estimate(
                prd_id, story_id, request.size, request.story_points, request.reasoning
            )
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.post("/api/prds/{prd_id}/estimate")
    async def estimate_prd_endpoint(prd_id: str, request: EstimatePRDRequest):
        try:
            return await EstimationService.estimate_prd(prd_id, re_estimate=request.re_estimate)
        except StoryWorkflowError as e:
            raise _http_error(e)

    # --- Standalone stories ---

    @router.get("/api/stories")
    async def list_standalone_endpoint(workspace_path: str = Query(...)):
        return {"stories": StandaloneStoryService.list_stories(workspace_path)}

    @router.post("/api/stories", status_code=201)
    async def create_standalone_endpoint(request: CreateStandaloneStoryRequest):
        try:
            return StandaloneStoryService.create_story(
                request.workspace_path,
                request.title,
                request.description,
                request.acceptance_criteria,
                request.priority,
            )
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.patch("/api/stories/{story_id}")
    async def update_standalone_endpoint(story_id: str, request: UpdateStoryRequest):
        try:
            return StandaloneStoryService.update_story(story_id, request.model_dump(exclude_none=True))
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.delete("/api/stories/{story_id}")
    async def delete_standalone_endpoint(story_id: str):
        try:
            return StandaloneStoryService.delete_story(story_id)
        except StoryWorkflowError as e:
            raise _http_error(e)

    # --- Templates ---

    @router.get("/api/templates")
    async def list_templates_endpoint(category: Optional[str] = Query(None)):
        return {"templates": TemplateService.list_templates(category)}

    @router.get("/api/templates/{template_id}")
    async def get_template_endpoint(template_id: str):
        try:
            return TemplateService.get_template(template_id)
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.post("/api/templates", status_code=201)
    async def create_template_endpoint(request: TemplateRequest):
        try:
            return TemplateService.create_template(**request.model_dump())
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.patch("/api/templates/{template_id}")
    async def update_template_endpoint(template_id: str, request: UpdateTemplateRequest):
        try:
            return TemplateService.update_template(template_id, request.model_dump(exclude_none=True))
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.delete("/api/templates/{template_id}")
    async def delete_template_endpoint(template_id: str):
        try:
            return TemplateService.delete_template(template_id)
        except StoryWorkflowError as e:
            raise _http_error(e)

    @router.post("/api/templates/{template_id}/preview")
    async def preview_template_endpoint(template_id: str, request: PreviewTemplateRequest):
        try:
            return GenerationService.preview_template(template_id, request.variables)
        except StoryWorkflowError as e:
            raise _http_error(e)

    return router
