import json
from typing import List

from agents.base import CollaboratorAgent
from core.schema import PlanReviewReply, to_plan_verdict
from core.types import ChangeRequest, Plan, PlanVerdict

PLAN_REVIEW_SYSTEM_PROMPT = """You are a demanding product designer reviewing an implementation plan.
Respond with a single JSON object and nothing else."""

PLAN_REVIEW_PROMPT = """
Change request:
{message}

Plan under review:
{plan}

Score the plan and reply with JSON:
- "qualityScore": 0-100 overall
- "colorCreativityScore": 0-100, how distinctive and coherent the colour scheme is
- "uxCompletenessScore": 0-100, whether every screen and state the user needs is covered
- "brandingQualityScore": 0-100, strength of the app identity
- "approved": true/false
- "issues": [{{"severity": "critical|high|medium|low", "category": "...", "description": "...", "suggestion": "..."}}]
- "strengths": ["..."]
- "overallFeedback": "..."
"""


class PlanReviewerAgent(CollaboratorAgent):
    name = "plan_reviewer"
    role = "plan_review"
    temperature = 0.3

    async def review(self, plan: Plan, request: ChangeRequest) -> PlanVerdict:
        user_prompt = PLAN_REVIEW_PROMPT.format(message=request.message, plan=json.dumps(plan.to_dict(), indent=2))
        reply = await self.ask_json(PlanReviewReply, PLAN_REVIEW_SYSTEM_PROMPT, user_prompt)
        return to_plan_verdict(
            reply,
            quality_threshold=self.settings.get("quality_threshold"),
            color_threshold=self.settings.get("plan_color_threshold"),
        )


def _issue_line(prefix: str, issue) -> str:
    line = f"- {prefix} {issue.description}"
    return f"{line} -> {issue.suggestion}" if issue.suggestion else line


def improvement_instructions(verdict: PlanVerdict, color_threshold: float = 70.0) -> str:
    """Turn a plan verdict into the refinement brief handed back to the planner."""
    lines: List[str] = []
    critical = [i for i in verdict.issues if i.severity == "critical"]
    others = [i for i in verdict.issues if i.severity != "critical"]
    if critical:
        lines.append("CRITICAL issues that must be fixed:")
        lines.extend(_issue_line(f"[{i.category}]", i) for i in critical)
    if others:
        lines.append("Other issues:")
        lines.extend(_issue_line(f"({i.severity})", i) for i in others)
    if verdict.color_creativity_score < color_threshold:
        lines.append(f"Colour creativity scored {verdict.color_creativity_score:.0f}: choose a more distinctive, "
                     "cohesive palette instead of default blues and greys.")
    if verdict.ux_completeness_score < color_threshold:
        lines.append(f"UX completeness scored {verdict.ux_completeness_score:.0f}: cover empty, loading and error states.")
    if verdict.branding_quality_score < color_threshold:
        lines.append(f"Branding scored {verdict.branding_quality_score:.0f}: give the app a clearer name, tagline and tone.")
    if verdict.overall_feedback:
        lines.append(f"Reviewer summary: {verdict.overall_feedback}")
    return "\n".join(lines) or "Raise the overall quality of the plan."
