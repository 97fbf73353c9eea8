from typing import Dict, List, Optional

from agents.base import CollaboratorAgent
from core.schema import ReviewReply, to_review_verdict
from core.types import ChangeRequest, FileDetail, ReviewVerdict

REVIEW_SYSTEM_PROMPT = """You are a strict senior code reviewer for React projects.
Respond with a single JSON object and nothing else."""

REVIEW_PROMPT = """
Request: {message}

File: {filename}
Intended purpose: {purpose}
Required features:
{features}

```
{content}
```

Reply with JSON:
- "qualityScore": 0-100
- "approved": true/false
- "issues": [{{"severity": "critical|high|medium|low", "category": "...", "description": "...", "suggestion": "..."}}]
- "missingFeatures": ["..."]
- "strengths": ["..."]
- "overallFeedback": "..."
"""


class ReviewerAgent(CollaboratorAgent):
    name = "reviewer"
    role = "review"
    temperature = 0.2

    async def review_code(self, filename: str, content: str, request: ChangeRequest,
                          detail: Optional[FileDetail] = None) -> ReviewVerdict:
        detail = detail or FileDetail()
        user_prompt = REVIEW_PROMPT.format(
            message=request.message,
            filename=filename,
            purpose=detail.purpose or "(see request)",
            features="\n".join(f"- {f}" for f in detail.key_features) or "- (see request)",
            content=content,
        )
        reply = await self.ask_json(ReviewReply, REVIEW_SYSTEM_PROMPT, user_prompt)
        return to_review_verdict(reply, quality_threshold=self.settings.get("quality_threshold"))


def aggregate_reviews(verdicts: Dict[str, ReviewVerdict]) -> Dict:
    """Summarise per-file verdicts for metadata and progress events."""
    if not verdicts:
        return {"average_score": None, "approved": 0, "total": 0, "all_approved": False, "critical_issues": []}
    critical: List[Dict[str, str]] = [
        {"file": name, "description": issue.description}
        for name, verdict in verdicts.items()
        for issue in verdict.issues
        if issue.severity == "critical"
    ]
    approved = sum(1 for v in verdicts.values() if v.approved)
    return {
        "average_score": round(sum(v.quality_score for v in verdicts.values()) / len(verdicts), 1),
        "approved": approved,
        "total": len(verdicts),
        "all_approved": approved == len(verdicts),
        "critical_issues": critical,
    }
