import json
from typing import Optional

from agents.base import CollaboratorAgent
from core.schema import PlanReply, to_plan
from core.types import ChangeRequest, Plan, PlanVerdict

PLANNER_SYSTEM_PROMPT = """You are a senior front-end architect planning changes to a React project.
Respond with a single JSON object and nothing else."""

PLAN_PROMPT = """
Change request:
{message}

Existing files:
{files}

Project context:
{context}

Produce a plan as JSON with these keys:
- "filesToCreate": list of new file paths
- "filesToModify": list of existing file paths that must change
- "fileDetails": object mapping each file path to {{"purpose": "...", "keyFeatures": ["..."]}}
- "summary": one paragraph describing the result
- "appIdentity": {{"name": "...", "tagline": "...", "tone": "..."}}
- "colorScheme": {{"primary": "#hex", "secondary": "#hex", "accent": "#hex", "background": "#hex"}}
"""

REFINE_PROMPT = """
Your previous plan was reviewed and needs improvement.

Previous plan:
{plan}

Reviewer instructions:
{instructions}

Return the complete improved plan using the same JSON keys.
"""


class PlannerAgent(CollaboratorAgent):
    """
    Produces the architectural :class:`Plan` for a change request and revises
    it from plan-review feedback.
    """
    name = "planner"
    role = "planning"
    temperature = 0.7

    async def plan(self, request: ChangeRequest, context_summary: str = "",
                   previous: Optional[Plan] = None, verdict: Optional[PlanVerdict] = None) -> Plan:
        """
        Draft a plan, or refine *previous* when a *verdict* is given.

        Raises:
            CollaboratorError: the planner failed or its reply did not parse.
        """
        from agents.plan_reviewer import improvement_instructions

        user_prompt = PLAN_PROMPT.format(
            message=request.message,
            files="\n".join(f"- {name}" for name in sorted(request.current_files)) or "(none)",
            context=context_summary or "(none)",
        )
        if previous is not None and verdict is not None:
            user_prompt += REFINE_PROMPT.format(
                plan=json.dumps(previous.to_dict(), indent=2),
                instructions=improvement_instructions(verdict),
            )
        reply = await self.ask_json(PlanReply, PLANNER_SYSTEM_PROMPT, user_prompt)
        plan = to_plan(reply)
        if not plan.files_to_create and not plan.files_to_modify and request.has_files:
            plan.files_to_modify = list(request.current_files)
        return plan
