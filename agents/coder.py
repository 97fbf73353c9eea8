from typing import Optional

from agents.base import CollaboratorAgent
from core.exceptions import CollaboratorParseError
from core.json_tools import extract_code
from core.types import ChangeRequest, Plan, ReviewVerdict

CODER_SYSTEM_PROMPT = """You are an expert React developer. You write complete, working files.
Use only React and browser APIs; no require(), no process.*, no third-party packages unless asked.
Return exactly one fenced code block containing the full file."""

GENERATE_PROMPT = """
Request: {message}

Plan summary: {summary}
Colour scheme: {colors}
App identity: {identity}

File to write: {filename}
Purpose: {purpose}
Key features:
{features}

Other files in this change: {siblings}
{hints}"""

REFINE_PROMPT = """
A reviewer scored your previous version {score:.0f}/100.

Previous version:
```
{previous}
```

Fix these issues:
{issues}
{missing}
Return the complete corrected file."""


class CoderAgent(CollaboratorAgent):
    """Writes one file of a plan, or rewrites it from review feedback."""
    name = "coder"
    role = "code_generation"
    max_tokens = 8000

    async def generate_file(self, filename: str, plan: Plan, request: ChangeRequest,
                            previous: Optional[str] = None, verdict: Optional[ReviewVerdict] = None,
                            hints: str = "") -> str:
        detail = plan.detail_for(filename)
        user_prompt = GENERATE_PROMPT.format(
            message=request.message,
            summary=plan.summary or request.message,
            colors=plan.color_scheme or "(choose one)",
            identity=plan.app_identity or "(none)",
            filename=filename,
            purpose=detail.purpose or "(see request)",
            features="\n".join(f"- {f}" for f in detail.key_features) or "- (see request)",
            siblings=", ".join(f for f in plan.files_to_create if f != filename) or "(none)",
            hints=f"\nGuidance: {hints}\n" if hints else "",
        )
        if previous is not None and verdict is not None:
            user_prompt += REFINE_PROMPT.format(
                score=verdict.quality_score,
                previous=previous,
                issues="\n".join(f"- ({i.severity}) {i.description} {i.suggestion}".rstrip() for i in verdict.issues)
                or "- (no specific issues listed)",
                missing=("Missing features: " + ", ".join(verdict.missing_features) + "\n")
                if verdict.missing_features else "",
            )
        raw = await self.ask(CODER_SYSTEM_PROMPT, user_prompt)
        content = extract_code(raw)
        if not content.strip():
            raise CollaboratorParseError(f"coder returned no code for {filename}", role=self.role, raw=raw)
        return content
