from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional

SEVERITIES = ("critical", "high", "medium", "low")
TIME_CLASSES = ("fast", "medium", "slow")
OPERATION_TYPES = ("create", "modify")


@dataclass(frozen=True)
class ChangeRequest:
    message: str
    current_files: Mapping[str, str] = field(default_factory=dict)
    options: Mapping[str, Any] = field(default_factory=dict)

    @property
    def has_files(self) -> bool:
        return bool(self.current_files)


@dataclass
class IntentResult:
    intent: str
    confidence: float
    reasoning: str = ""
    source: str = "model"  # "model" | "heuristic" | "caller"


@dataclass(frozen=True)
class RouteDecision:
    skip_plan: bool
    skip_analysis: bool
    skip_reflection: bool
    reason: str
    time_class: str  # "fast" | "medium" | "slow"
    rule: str = "full_pipeline"

    @classmethod
    def full_pipeline(cls, reason: str = "Full pipeline") -> "RouteDecision":
        return cls(False, False, False, reason, "slow", "full_pipeline")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FileDetail:
    purpose: str = ""
    key_features: List[str] = field(default_factory=list)


@dataclass
class Plan:
    files_to_create: List[str] = field(default_factory=list)
    files_to_modify: List[str] = field(default_factory=list)
    file_details: Dict[str, FileDetail] = field(default_factory=dict)
    summary: str = ""
    app_identity: Dict[str, Any] = field(default_factory=dict)
    color_scheme: Dict[str, Any] = field(default_factory=dict)
    trivial: bool = False

    @classmethod
    def trivial_for(cls, request: ChangeRequest, entry_file: str = "App.jsx") -> "Plan":
        """Plan used when planning is skipped or the planner produced nothing usable."""
        if request.has_files:
            return cls(files_to_modify=list(request.current_files), summary=request.message, trivial=True)
        return cls(
            files_to_create=[entry_file],
            file_details={entry_file: FileDetail(purpose=request.message)},
            summary=request.message,
            trivial=True,
        )

    def detail_for(self, filename: str) -> FileDetail:
        return self.file_details.get(filename) or FileDetail()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Issue:
    severity: str = "medium"
    category: str = "general"
    description: str = ""
    suggestion: str = ""


@dataclass
class ReviewVerdict:
    quality_score: float
    approved: bool
    issues: List[Issue] = field(default_factory=list)
    overall_feedback: str = ""
    missing_features: List[str] = field(default_factory=list)
    strengths: List[str] = field(default_factory=list)

    @property
    def has_critical(self) -> bool:
        return any(i.severity == "critical" for i in self.issues)

    def blocking_issues(self) -> List[Issue]:
        """Issues severe enough that resolving them counts as progress."""
        return [i for i in self.issues if i.severity in ("critical", "high")]


@dataclass
class PlanVerdict(ReviewVerdict):
    color_creativity_score: float = 70.0
    ux_completeness_score: float = 70.0
    branding_quality_score: float = 70.0


@dataclass
class IterationRecord:
    iteration: int
    quality_score: float
    approved: bool
    issue_count: int


@dataclass
class FileOperation:
    type: str  # "create" | "modify"
    filename: str
    content: str = ""
    validated: bool = False
    quality_score: Optional[float] = None
    reflection_history: List[IterationRecord] = field(default_factory=list)
    error: Optional[str] = None

    def __post_init__(self):
        if self.type not in OPERATION_TYPES:
            raise ValueError(f"FileOperation.type must be one of {OPERATION_TYPES}, got {self.type!r}")
        if self.content is None:
            self.content = ""
        if not isinstance(self.content, str):
            raise TypeError(f"FileOperation.content for {self.filename} must be str, got {type(self.content).__name__}")

    def with_content(self, content: str, **changes) -> "FileOperation":
        """Return a copy carrying new content; repairs always go through here."""
        data = {
            "type": self.type,
            "filename": self.filename,
            "content": content,
            "validated": self.validated,
            "quality_score": self.quality_score,
            "reflection_history": list(self.reflection_history),
            "error": self.error,
        }
        data.update(changes)
        return FileOperation(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Diagnostic:
    kind: str
    message: str
    file: Optional[str] = None
    severity: str = "error"  # "error" | "warning"
    detail: Optional[str] = None


@dataclass
class ValidationResult:
    success: bool
    diagnostics: List[Diagnostic] = field(default_factory=list)
    summary: str = ""
    method: str = "sandbox"  # "sandbox" | "command"
    duration_ms: float = 0.0
    raw: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == "error"]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == "warning"]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DebugAttempt:
    cycle: int
    error_summary: str
    repaired_files: List[FileOperation] = field(default_factory=list)
    success: bool = False
    message: str = ""


@dataclass
class PipelineResult:
    success: bool
    file_operations: List[FileOperation] = field(default_factory=list)
    plan: Optional[Plan] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    friendly_error: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
