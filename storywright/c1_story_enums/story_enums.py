"""Story Enums for Storywright."""

from enum import Enum
from typing import Any, Type, TypeVar

E = TypeVar("E", bound=Enum)


class StoryPriority(str, Enum):
    """Story priority, most urgent first."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class StoryStatus(str, Enum):
    """Execution status of a story."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class FactorCategory(str, Enum):
    """What kind of evidence a priority factor is."""
    RISK = "risk"
    DEPENDENCY = "dependency"
    USER_IMPACT = "user_impact"
    SCOPE = "scope"


class FactorImpact(str, Enum):
    """Direction a factor pushes the priority or estimate."""
    INCREASES = "increases"
    DECREASES = "decreases"
    NEUTRAL = "neutral"


class FactorWeight(str, Enum):
    """How strongly a factor counts."""
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"


class IssueSeverity(str, Enum):
    """Severity of an acceptance-criterion issue."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class IssueCategory(str, Enum):
    """Defect taxonomy for acceptance criteria."""
    VAGUE = "vague"
    UNMEASURABLE = "unmeasurable"
    UNTESTABLE = "untestable"
    TOO_BROAD = "too_broad"
    AMBIGUOUS = "ambiguous"
    MISSING_DETAIL = "missing_detail"


class StorySize(str, Enum):
    """T-shirt size of a story estimate."""
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class EstimateConfidence(str, Enum):
    """Confidence band of an estimate."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TemplateCategory(str, Enum):
    """Story template categories."""
    FEATURE = "feature"
    BUG = "bug"
    TECH_DEBT = "tech_debt"
    SPIKE = "spike"
    CUSTOM = "custom"


class MemoryCategory(str, Enum):
    """Workspace memory categories and their prompt headings."""
    CONVENTION = "convention"
    DECISION = "decision"
    PREFERENCE = "preference"
    PATTERN = "pattern"
    CONTEXT = "context"

    @property
    def label(self) -> str:
        return {
            "convention": "Coding Conventions",
            "decision": "Architecture Decisions",
            "preference": "User Preferences",
            "pattern": "Common Patterns",
            "context": "Project Context",
        }[self.value]


class QualityCheckType(str, Enum):
    """Kinds of quality gate a PRD can declare."""
    TYPECHECK = "typecheck"
    LINT = "lint"
    TEST = "test"
    BUILD = "build"
    CUSTOM = "custom"


def coerce_enum(enum_cls: Type[E], value: Any, default: E) -> E:
    """Return ``value`` as a member of ``enum_cls``, or ``default`` when it is not one."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except (ValueError, TypeError):
        return default
