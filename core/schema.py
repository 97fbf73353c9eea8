"""Wire models for collaborator replies.

Every collaborator answers in JSON. The pydantic models here accept both the
camelCase keys models tend to emit and snake_case, default anything missing,
and are converted into the plain dataclasses of :mod:`core.types` by the
``to_*`` helpers. :func:`parse_reply` is the single entry point agents use;
it raises :class:`~core.exceptions.CollaboratorParseError` on any failure.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.exceptions import CollaboratorParseError
from core.json_tools import safe_loads
from core.types import (
    SEVERITIES,
    FileDetail,
    Issue,
    Plan,
    PlanVerdict,
    ReviewVerdict,
)

INTENTS = ("create_new", "modify_existing", "add_feature", "style_change", "fix_bug", "explain_code")

T = TypeVar("T", bound=BaseModel)


class _Reply(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class IntentReply(_Reply):
    intent: str
    confidence: float = 0.5
    reasoning: str = ""

    @field_validator("intent")
    @classmethod
    def _known_intent(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in INTENTS:
            raise ValueError(f"unknown intent {v!r}")
        return v

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, v: float) -> float:
        return max(0.0, min(1.0, float(v)))


class FileDetailReply(_Reply):
    purpose: str = ""
    key_features: List[str] = Field(default_factory=list, alias="keyFeatures")


class PlanReply(_Reply):
    files_to_create: List[str] = Field(default_factory=list, alias="filesToCreate")
    files_to_modify: List[str] = Field(default_factory=list, alias="filesToModify")
    file_details: Dict[str, FileDetailReply] = Field(default_factory=dict, alias="fileDetails")
    summary: str = ""
    app_identity: Dict[str, Any] = Field(default_factory=dict, alias="appIdentity")
    color_scheme: Dict[str, Any] = Field(default_factory=dict, alias="colorScheme")


class IssueReply(_Reply):
    severity: str = "medium"
    category: str = "general"
    description: str = ""
    suggestion: str = ""

    @field_validator("severity", mode="before")
    @classmethod
    def _normalise_severity(cls, v: Any) -> str:
        v = str(v or "").strip().lower()
        return v if v in SEVERITIES else "medium"


class ReviewReply(_Reply):
    quality_score: float = Field(70.0, alias="qualityScore")
    approved: Optional[bool] = None
    issues: List[IssueReply] = Field(default_factory=list)
    overall_feedback: str = Field("", alias="overallFeedback")
    missing_features: List[str] = Field(default_factory=list, alias="missingFeatures")
    strengths: List[str] = Field(default_factory=list)

    @field_validator("quality_score", mode="before")
    @classmethod
    def _clamp_score(cls, v: Any) -> float:
        if v is None:
            return 70.0
        return max(0.0, min(100.0, float(v)))


class PlanReviewReply(ReviewReply):
    color_creativity_score: float = Field(70.0, alias="colorCreativityScore")
    ux_completeness_score: float = Field(70.0, alias="uxCompletenessScore")
    branding_quality_score: float = Field(70.0, alias="brandingQualityScore")

    @field_validator("color_creativity_score", "ux_completeness_score", "branding_quality_score", mode="before")
    @classmethod
    def _clamp_sub_score(cls, v: Any) -> float:
        if v is None:
            return 70.0
        return max(0.0, min(100.0, float(v)))


class AnalysisReply(_Reply):
    files_to_modify: List[str] = Field(default_factory=list, alias="filesToModify")
    change_targets: Dict[str, str] = Field(default_factory=dict, alias="changeTargets")
    reasoning: str = ""


class DiagnosisReply(_Reply):
    root_cause: str = Field("", alias="rootCause")
    fix_strategy: str = Field("", alias="fixStrategy")
    affected_files: List[str] = Field(default_factory=list, alias="affectedFiles")


class RepairedFile(_Reply):
    filename: str
    content: str


class RepairReply(_Reply):
    can_fix: bool = Field(True, alias="canFix")
    files: List[RepairedFile] = Field(default_factory=list)
    message: str = ""


def parse_reply(model_cls: Type[T], raw: str, role: str = None) -> T:
    """Parse a collaborator reply into *model_cls*.

    Raises:
        CollaboratorParseError: when the reply holds no JSON object or the
            object does not validate.
    """
    try:
        data = safe_loads(raw, ctx=role or model_cls.__name__)
    except json.JSONDecodeError as e:
        raise CollaboratorParseError(f"{role or 'collaborator'} reply is not JSON: {e.msg}", role=role, raw=raw) from e
    if not isinstance(data, dict):
        raise CollaboratorParseError(f"{role or 'collaborator'} reply is not a JSON object", role=role, raw=raw)
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        raise CollaboratorParseError(f"{role or 'collaborator'} reply failed validation: {e.error_count()} error(s)",
                                     role=role, raw=raw) from e


def to_plan(reply: PlanReply) -> Plan:
    return Plan(
        files_to_create=list(dict.fromkeys(reply.files_to_create)),
        files_to_modify=list(dict.fromkeys(reply.files_to_modify)),
        file_details={
            name: FileDetail(purpose=d.purpose, key_features=list(d.key_features))
            for name, d in reply.file_details.items()
        },
        summary=reply.summary,
        app_identity=dict(reply.app_identity),
        color_scheme=dict(reply.color_scheme),
    )


def _issues(reply: ReviewReply) -> List[Issue]:
    return [Issue(i.severity, i.category, i.description, i.suggestion) for i in reply.issues]


def to_review_verdict(reply: ReviewReply, quality_threshold: float = 75.0) -> ReviewVerdict:
    """Code-review gate: score at threshold and no critical issue."""
    issues = _issues(reply)
    critical = any(i.severity == "critical" for i in issues)
    approved = reply.approved is not False and reply.quality_score >= quality_threshold and not critical
    return ReviewVerdict(
        quality_score=reply.quality_score,
        approved=approved,
        issues=issues,
        overall_feedback=reply.overall_feedback,
        missing_features=list(reply.missing_features),
        strengths=list(reply.strengths),
    )


def to_plan_verdict(reply: PlanReviewReply, quality_threshold: float = 75.0,
                    color_threshold: float = 70.0) -> PlanVerdict:
    """Plan-review gate: quality and colour-creativity gates plus no critical issue."""
    issues = _issues(reply)
    critical = any(i.severity == "critical" for i in issues)
    approved = (
        reply.approved is not False
        and reply.quality_score >= quality_threshold
        and reply.color_creativity_score >= color_threshold
        and not critical
    )
    return PlanVerdict(
        quality_score=reply.quality_score,
        approved=approved,
        issues=issues,
        overall_feedback=reply.overall_feedback,
        missing_features=list(reply.missing_features),
        strengths=list(reply.strengths),
        color_creativity_score=reply.color_creativity_score,
        ux_completeness_score=reply.ux_completeness_score,
        branding_quality_score=reply.branding_quality_score,
    )
