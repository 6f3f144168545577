"""Prompt builders for the story workflow.

Each builder returns a ``(system_prompt, user_prompt)`` pair. The system
prompt carries the JSON response contract that the matching normalizer in
``c2_response_normalization`` / ``c2_criteria_validator`` expects.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from storywright.c1_story_enums import MemoryCategory

StoryRecord = Mapping[str, Any]
Prompts = Tuple[str, str]

JSON_ONLY = (
    "You MUST respond with ONLY a valid JSON object. No markdown, no explanation, "
    "no code fences. Just the raw JSON."
)


def build_memory_context(entries: Iterable[Mapping[str, Any]]) -> str:
    """Render workspace memory as a "Project Memory" section grouped by category."""
    grouped: Dict[str, List[str]] = {}
    for entry in entries:
        grouped.setdefault(entry["category"], []).append(f"- {entry['key']}: {entry['content']}")
    if not grouped:
        return ""

    context = "\n\n## Project Memory\n"
    for category, lines in grouped.items():
        try:
            label = MemoryCategory(category).label
        except ValueError:
            label = category
        context += f"\n### {label}\n" + "\n".join(lines) + "\n"
    return context


def _criteria_lines(story: StoryRecord, indent: str = "") -> str:
    lines = [f"{indent}- {c.get('description', '')}" for c in story.get("acceptance_criteria") or []]
    return "\n".join(lines) if lines else f"{indent}(No criteria defined)"


def _prd_header(prd: StoryRecord) -> str:
    return f"## PRD: {prd.get('name', '')}\n{prd.get('description') or '(No description)'}"


def _story_block(story: StoryRecord) -> str:
    return (
        f"Title: {story['title']}\n"
        f"Description: {story.get('description', '')}\n"
        f"Priority: {story.get('priority')}\n"
        f"Acceptance Criteria:\n{_criteria_lines(story)}"
    )


# --- Refinement ---

REFINEMENT_SYSTEM = """You are an expert agile coach and technical product manager. Your job is to help refine user stories until they are clear, specific, and implementable.

A well-defined story:
- Has a specific title describing the outcome
- Explains WHAT needs to be done, WHY it matters, and any important context
- Has acceptance criteria that are specific, testable, and complete
- Fits a single implementation session
- Has no ambiguous terms or undefined behavior, and considers edge cases

Quality scoring guide:
- 90-100: ready for implementation with no ambiguity
- 70-89: implementable, minor clarifications might help
- 50-69: important details missing
- 30-49: multiple areas of ambiguity
- 0-29: major details missing

{json_only}

{{
  "qualityScore": <number 0-100>,
  "qualityExplanation": "<what is unclear or could be improved>",
  "meetsThreshold": <boolean, true if qualityScore >= 80>,
  "questions": [
    {{
      "id": "<unique short id>",
      "question": "<clarifying question>",
      "context": "<why this matters for implementation>",
      "suggestedAnswers": ["<optional suggestion>"]
    }}
  ],
  "improvements": ["<specific change made>"],
  "updatedStory": {{
    "title": "<refined title>",
    "description": "<refined description>",
    "acceptanceCriteria": ["<criterion>"],
    "priority": "critical" | "high" | "medium" | "low"
  }}
}}

IMPORTANT:
- Ask 2-{max_questions} targeted questions while quality is below 80, none once it meets the threshold
- Always provide updatedStory when answers are given
- Only list improvements when updatedStory reflects the user's answers{memory}{siblings}"""


def refinement_prompts(
    prd: StoryRecord,
    story: StoryRecord,
    siblings: Sequence[StoryRecord],
    memory_context: str = "",
    answers: Optional[Sequence[Mapping[str, str]]] = None,
    max_questions: int = 5,
) -> Prompts:
    """Prompts for one refinement exchange.

    ``siblings`` must already exclude ``story``.
    """
    sibling_context = ""
    if siblings:
        sibling_context = "\n\n## Other Stories in this PRD\n" + "".join(
            f"- {s['title']}: {s.get('description', '')}\n" for s in siblings
        )

    system_prompt = REFINEMENT_SYSTEM.format(
        json_only=JSON_ONLY,
        max_questions=max_questions,
        memory=memory_context,
        siblings=sibling_context,
    )

    if answers:
        answers_text = "\n\n".join(f"Q: {a['question_id']}\nA: {a['answer']}" for a in answers)
        user_prompt = (
            "The user has answered clarifying questions about this story. "
            "Use their answers to refine the story.\n\n"
            f"{_prd_header(prd)}\n\n## Current Story\n{_story_block(story)}\n\n"
            f"## User's Answers\n{answers_text}\n\n"
            "Based on the answers:\n"
            "1. Assess the story's quality (0-100)\n"
            "2. Ask NEW follow-up questions only if quality is still below 80\n"
            "3. Provide an updated story incorporating the answers\n"
            "4. Explain what was unclear and how it was improved"
        )
    else:
        user_prompt = (
            "Analyze this user story and assess whether it has enough detail and clarity "
            "for implementation.\n\n"
            f"{_prd_header(prd)}\n\n## Story to Refine\n{_story_block(story)}\n\n"
            "Please:\n"
            "1. Assess the story's quality (0-100): clarity, specificity, testability, scope, missing details\n"
            "2. Ask targeted clarifying questions, each with the reason it matters\n"
            "3. Optionally suggest likely answers\n"
            "4. Explain what is unclear or could be improved"
        )
    return system_prompt, user_prompt


# --- Criteria validation ---

VALIDATION_SYSTEM = """You are an expert agile coach who reviews acceptance criteria. Check every criterion for:

1. Specificity (vague): vague wording such as "fast", "user-friendly", "appropriate", "intuitive", "robust"
2. Measurability (unmeasurable): no objectively observable outcome
3. Testability (untestable): no concrete test could be written for it
4. Scope (too_broad): covers too many things for a single check
5. Ambiguity (ambiguous): unclear terms, undefined references, several readings
6. Missing detail (missing_detail): omits error handling, edge cases, expected values or user actions

Severities:
- "error": must be rewritten before implementation
- "warning": usable but should be improved
- "info": minor suggestion

Scoring: 90-100 excellent, 70-89 good, 50-69 fair, 30-49 poor, 0-29 very poor.

{json_only}

{{
  "overallScore": <number 0-100>,
  "allValid": <boolean>,
  "summary": "<brief overall assessment>",
  "criteria": [
    {{
      "index": <0-based index>,
      "text": "<original criterion text>",
      "isValid": <boolean>,
      "issues": [
        {{
          "criterionIndex": <same index>,
          "criterionText": "<criterion text>",
          "severity": "error" | "warning" | "info",
          "category": "vague" | "unmeasurable" | "untestable" | "too_broad" | "ambiguous" | "missing_detail",
          "message": "<explanation of the issue>",
          "suggestedReplacement": "<improved criterion>"
        }}
      ],
      "suggestedReplacement": "<improved criterion, or null when it is fine>"
    }}
  ]
}}

Return one entry per criterion, in the order given.{memory}"""


def validation_prompts(
    criteria: Sequence[str],
    title: str,
    description: str,
    prd_name: str = "",
    memory_context: str = "",
) -> Prompts:
    """Prompts for validating acceptance criteria."""
    criteria_list = "\n".join(f'{i + 1}. "{c}"' for i, c in enumerate(criteria))
    system_prompt = VALIDATION_SYSTEM.format(json_only=JSON_ONLY, memory=memory_context)
    user_prompt = (
        f"Validate the acceptance criteria of this story{f' from PRD {prd_name}' if prd_name else ''}.\n\n"
        f"## Story\nTitle: {title}\nDescription: {description or '(No description)'}\n\n"
        f"## Acceptance Criteria\n{criteria_list}"
    )
    return system_prompt, user_prompt


# --- Priority ---

PRIORITY_LEVELS = """PRIORITY LEVELS:
- critical: blocks critical functionality, security or data-loss risk, prerequisite for many stories
- high: significant user impact, blocks other stories, key business requirement
- medium: normal feature work, moderate impact, few dependencies
- low: minor improvement, cosmetic change, non-blocking tech debt

FACTOR CATEGORIES:
- dependency: how many stories this blocks, critical path position
- risk: security, performance, data loss, migration, breaking change, compliance, authentication
- scope: number of criteria, cross-cutting concerns, complexity
- user_impact: core workflows, user-facing vs internal, pain points"""

FACTOR_SHAPE = """{
          "factor": "<specific factor referencing story details>",
          "category": "dependency" | "risk" | "scope" | "user_impact",
          "impact": "increases" | "decreases" | "neutral",
          "weight": "minor" | "moderate" | "major"
        }"""


def _estimate_line(story: StoryRecord) -> str:
    estimate = story.get("estimate")
    if estimate:
        return f"Estimate: {estimate.get('size')} ({estimate.get('story_points')} points)"
    return "No estimate yet"


def priority_prompts(
    prd: StoryRecord,
    story: StoryRecord,
    blocks: Sequence[StoryRecord],
    blocked_by: Sequence[StoryRecord],
    siblings: Sequence[StoryRecord],
    memory_context: str = "",
) -> Prompts:
    """Prompts for a single-story priority recommendation.

    Args:
        blocks: Stories that depend on ``story``
        blocked_by: Prerequisites of ``story``
        siblings: Every other story in the PRD
    """
    system_prompt = (
        "You are an expert product manager specializing in story prioritization. "
        "Recommend a priority for a user story from business value, risk, dependencies and user impact.\n\n"
        f"{PRIORITY_LEVELS}\n\n{JSON_ONLY}\n\n"
        "{\n"
        '  "suggestedPriority": "critical" | "high" | "medium" | "low",\n'
        '  "confidence": <number 0-100>,\n'
        f'  "factors": [\n        {FACTOR_SHAPE}\n  ],\n'
        '  "explanation": "<2-3 sentence explanation>"\n'
        "}\n\n"
        "Provide 3-6 factors. A story that blocks many others should generally rank higher."
        f"{memory_context}"
    )

    dependency_context = ""
    if blocks or blocked_by:
        dependency_context = "\n\n## Dependency Information\n"
        if blocks:
            dependency_context += f"This story BLOCKS {len(blocks)} other story(ies):\n" + "".join(
                f'- "{s["title"]}" ({s.get("status")})\n' for s in blocks
            )
        if blocked_by:
            dependency_context += f"This story is BLOCKED BY {len(blocked_by)} other story(ies):\n" + "".join(
                f'- "{s["title"]}" ({s.get("status")})\n' for s in blocked_by
            )

    sibling_context = ""
    if siblings:
        sibling_context = "\n\n## Other Stories in this PRD\n" + "".join(
            f"- {s['title']} (priority: {s.get('priority')}, status: {s.get('status')}, "
            f"{len(s.get('acceptance_criteria') or [])} criteria)\n"
            for s in siblings
        )

    user_prompt = (
        "Recommend a priority level for this user story:\n\n"
        f"{_prd_header(prd)}\n\n## Story to Prioritize\n"
        f"Title: {story['title']}\nDescription: {story.get('description', '')}\n"
        f"Current Priority: {story.get('priority')}\nStatus: {story.get('status')}\n"
        f"Acceptance Criteria:\n{_criteria_lines(story)}\n{_estimate_line(story)}"
        f"{dependency_context}{sibling_context}"
    )
    return system_prompt, user_prompt


def bulk_priority_prompts(
    prd: StoryRecord,
    stories: Sequence[StoryRecord],
    memory_context: str = "",
) -> Prompts:
    """Prompts for recommending priorities for every story of a PRD in one exchange."""
    blocks_map: Dict[str, List[str]] = {}
    for s in stories:
        for dep in s.get("depends_on") or []:
            blocks_map.setdefault(dep, []).append(s["title"])

    stories_context = ""
    for s in stories:
        blocks = blocks_map.get(s["id"], [])
        blocks_text = f"{len(blocks)} stories ({', '.join(blocks)})" if blocks else "None"
        stories_context += (
            f"\n### Story: {s['title']}\n"
            f"- ID: {s['id']}\n"
            f"- Current Priority: {s.get('priority')}\n"
            f"- Status: {s.get('status')}\n"
            f"- Description: {s.get('description') or '(No description)'}\n"
            f"- Acceptance Criteria ({len(s.get('acceptance_criteria') or [])}):\n{_criteria_lines(s, '  ')}\n"
            f"- Blocks: {blocks_text}\n"
            f"- Blocked By: {len(s.get('depends_on') or [])} stories\n"
            f"- {_estimate_line(s)}\n"
        )

    system_prompt = (
        "You are an expert product manager specializing in story prioritization. "
        "Recommend priority levels for ALL stories in this PRD.\n\n"
        f"{PRIORITY_LEVELS}\n\n{JSON_ONLY}\n\n"
        "{\n"
        '  "recommendations": [\n'
        "    {\n"
        '      "storyId": "<story ID>",\n'
        '      "suggestedPriority": "critical" | "high" | "medium" | "low",\n'
        '      "confidence": <number 0-100>,\n'
        f'      "factors": [\n        {FACTOR_SHAPE}\n      ],\n'
        '      "explanation": "<1-2 sentence explanation>"\n'
        "    }\n"
        "  ],\n"
        '  "summary": "<overall prioritization rationale>"\n'
        "}\n\n"
        "Include every story ID from the input with 2-4 factors each. "
        "Not every story should be critical or high."
        f"{memory_context}"
    )
    user_prompt = (
        f"Recommend priority levels for all {len(stories)} stories in this PRD:\n\n"
        f"{_prd_header(prd)}\n\n## Stories\n{stories_context}\n"
        "Prioritize all stories considering dependencies, risks, scope, and user impact."
    )
    return system_prompt, user_prompt


# --- Generation ---

GENERATION_SYSTEM = """You are an expert product manager who breaks product descriptions into implementable user stories.

Each story must:
- Have a short, outcome-focused title
- Explain what to build and why
- Have at least 3 specific, testable acceptance criteria
- Be small enough for a single implementation session

{json_only}

{{
  "stories": [
    {{
      "title": "<story title>",
      "description": "<what and why>",
      "acceptanceCriteria": ["<criterion>", "<criterion>", "<criterion>"],
      "priority": "critical" | "high" | "medium" | "low"
    }}
  ]
}}{memory}"""


def generation_prompts(
    description: str,
    count: int,
    existing_titles: Sequence[str],
    prd_name: str = "",
    context: Optional[str] = None,
    memory_context: str = "",
) -> Prompts:
    """Prompts for bulk story generation from a product description."""
    existing = ""
    if existing_titles:
        existing = "\n\n## Existing Stories (avoid duplicating these)\n" + "".join(
            f"- {title}\n" for title in existing_titles
        )
    extra = f"\n\n## Additional Context\n{context}" if context else ""
    system_prompt = GENERATION_SYSTEM.format(json_only=JSON_ONLY, memory=memory_context)
    user_prompt = (
        f"Generate {count} user stories for {f'the PRD {prd_name}' if prd_name else 'this project'}.\n\n"
        f"## Description\n{description}{extra}{existing}"
    )
    return system_prompt, user_prompt


# --- Estimation ---

ESTIMATE_SYSTEM = """You are an experienced engineering lead estimating user stories.

SIZES: small (a few hours), medium (about a day), large (several days).
STORY POINTS: use the Fibonacci scale 1, 2, 3, 5, 8, 13.

{json_only}

{{
  "size": "small" | "medium" | "large",
  "storyPoints": 1 | 2 | 3 | 5 | 8 | 13,
  "confidence": "low" | "medium" | "high",
  "confidenceScore": <number 0-100>,
  "factors": [
    {{
      "factor": "<what drives the estimate>",
      "impact": "increases" | "decreases" | "neutral",
      "weight": "minor" | "moderate" | "major"
    }}
  ],
  "reasoning": "<2-3 sentences>",
  "suggestedBreakdown": ["<smaller story>"]
}}

Only suggest a breakdown for stories of 8 points or more.{memory}"""


def estimate_prompts(
    prd: StoryRecord,
    story: StoryRecord,
    siblings: Sequence[StoryRecord],
    memory_context: str = "",
) -> Prompts:
    """Prompts for estimating one story."""
    sibling_context = ""
    estimated = [s for s in siblings if s.get("estimate")]
    if estimated:
        sibling_context = "\n\n## Estimated Stories in this PRD (for calibration)\n" + "".join(
            f"- {s['title']}: {s['estimate'].get('size')} ({s['estimate'].get('story_points')} points)\n"
            for s in estimated
        )
    system_prompt = ESTIMATE_SYSTEM.format(json_only=JSON_ONLY, memory=memory_context)
    user_prompt = (
        "Estimate this user story:\n\n"
        f"{_prd_header(prd)}\n\n## Story\n{_story_block(story)}{sibling_context}"
    )
    return system_prompt, user_prompt


def _analysis_story_block(story: StoryRecord, note: str = "") -> str:
    return (
        f'\n### Story "{story["title"]}" (ID: {story["id"]}) [{story.get("priority")}]{note}\n'
        f"{story.get('description') or '(No description)'}\n"
    )


BULK_ESTIMATE_SYSTEM = """You are an experienced engineering lead estimating ALL stories of a PRD relative to each other.

SIZES:
- small (1-2 points): well understood, a single file or minor changes
- medium (3-5 points): several files, new components or endpoints with logic
- large (8-13 points): cross-cutting work, new architecture or many unknowns

CONFIDENCE: high (80-100) for specific criteria and clear scope, medium (50-79) for some ambiguity, low (0-49) for vague criteria.

Size the stories against each other: the simplest should be small and the most complex large.

Only estimate stories with these IDs: {story_ids}

{json_only}

{{
  "estimates": [
    {{
      "storyId": "<story ID>",
      "size": "small" | "medium" | "large",
      "storyPoints": 1 | 2 | 3 | 5 | 8 | 13,
      "confidence": "low" | "medium" | "high",
      "confidenceScore": <number 0-100>,
      "factors": [
        {{
          "factor": "<what drives the estimate>",
          "impact": "increases" | "decreases" | "neutral",
          "weight": "minor" | "moderate" | "major"
        }}
      ],
      "reasoning": "<2-3 sentences>",
      "suggestedBreakdown": ["<smaller story>"]
    }}
  ]
}}

Only suggest a breakdown for stories of 8 points or more.{memory}"""


def bulk_estimate_prompts(
    prd: StoryRecord,
    stories: Sequence[StoryRecord],
    target_ids: Sequence[str],
    memory_context: str = "",
) -> Prompts:
    """Prompts for estimating several stories of a PRD in one exchange.

    Every story is listed for relative sizing; stories outside ``target_ids``
    that already carry an estimate are marked with it.
    """
    targets = set(target_ids)
    stories_context = ""
    for s in stories:
        estimate = s.get("estimate")
        note = ""
        if estimate and s["id"] not in targets:
            note = f" [Already estimated: {estimate.get('size')}, {estimate.get('story_points')}pts]"
        stories_context += (
            _analysis_story_block(s, note)
            + f"Dependencies: {len(s.get('depends_on') or [])}\n"
            + f"Acceptance Criteria:\n{_criteria_lines(s, '  ')}\n"
        )

    system_prompt = BULK_ESTIMATE_SYSTEM.format(
        story_ids=", ".join(target_ids), json_only=JSON_ONLY, memory=memory_context
    )
    user_prompt = (
        "Estimate the complexity of each story in this PRD:\n\n"
        f"{_prd_header(prd)}\n{stories_context}\n"
        "Provide relative complexity estimates for all stories that need estimation."
    )
    return system_prompt, user_prompt


# --- Dependency analysis ---

DEPENDENCY_ANALYSIS_SYSTEM = """You are an expert software architect identifying dependencies between the user stories of a product requirements document.

A dependency exists when one story MUST be completed before another can start, for example when:
- it builds on infrastructure or features created by the other story
- it needs APIs, schemas or data models defined by the other story
- it extends or modifies functionality created by the other story

RULES:
1. Only report real technical dependencies, not thematic similarity
2. A story can depend on several other stories
3. Never create circular dependencies
4. Use the acceptance criteria to decide
5. Independent stories get no dependency

{json_only}

{{
  "dependencies": [
    {{
      "fromStoryId": "<ID of the story that DEPENDS ON another>",
      "toStoryId": "<ID of the story that must be done FIRST>",
      "reason": "<brief explanation>"
    }}
  ]
}}

Only return dependencies you are confident about. An empty array is valid.{memory}"""


def dependency_analysis_prompts(
    prd: StoryRecord,
    stories: Sequence[StoryRecord],
    memory_context: str = "",
) -> Prompts:
    """Prompts for detecting dependencies between all stories of a PRD."""
    stories_context = "".join(
        _analysis_story_block(s) + f"Acceptance Criteria:\n{_criteria_lines(s, '  ')}\n" for s in stories
    )
    system_prompt = DEPENDENCY_ANALYSIS_SYSTEM.format(json_only=JSON_ONLY, memory=memory_context)
    user_prompt = (
        f'Analyze these stories for the PRD "{prd.get("name", "")}" and identify dependencies between them:\n'
        f"{stories_context}\n"
        "Which stories must be completed before others can start? Return the dependency list as JSON."
    )
    return system_prompt, user_prompt
