from dataclasses import dataclass, field
from typing import List, Optional

from core.events import EventBus, EventType
from core.exceptions import CollaboratorError
from core.logging_utils import log_json
from core.reflection_loop import ReflectionLoop
from core.types import ChangeRequest, IterationRecord, Plan, PlanVerdict


@dataclass
class PlanStageResult:
    plan: Plan
    history: List[IterationRecord] = field(default_factory=list)
    stop_reason: str = "approved"
    verdict: Optional[PlanVerdict] = None


class PlanStage:
    """
    Produces the plan for a run: one reflection loop over the planner and the
    plan reviewer. A plan is accepted only when it is approved and clears both
    the quality gate and the colour-creativity gate. A planner failure on the
    first draft degrades to a trivial plan instead of failing the run.
    """

    def __init__(self, planner, reviewer, events: EventBus, max_iterations: int = 2,
                 quality_threshold: float = 75.0, color_threshold: float = 70.0,
                 reflection_enabled: bool = True, entry_file: str = "App.jsx"):
        self.planner = planner
        self.reviewer = reviewer
        self.events = events
        self.loop = ReflectionLoop(max_iterations, quality_threshold, enabled=reflection_enabled, name="plan")
        self.quality_threshold = quality_threshold
        self.color_threshold = color_threshold
        self.entry_file = entry_file

    def _accept(self, verdict: PlanVerdict) -> bool:
        return (verdict.approved
                and verdict.quality_score >= self.quality_threshold
                and verdict.color_creativity_score >= self.color_threshold)

    def _ensure_files(self, plan: Plan, request: ChangeRequest) -> Plan:
        if not plan.files_to_create and not plan.files_to_modify:
            if request.has_files:
                plan.files_to_modify = list(request.current_files)
            else:
                plan.files_to_create = [self.entry_file]
        return plan

    async def run(self, request: ChangeRequest, context_summary: str = "") -> PlanStageResult:
        self.events.emit(EventType.PLAN, "Designing your app", status="start")

        async def generate(previous: Optional[Plan], verdict: Optional[PlanVerdict]) -> Plan:
            if previous is not None:
                self.events.emit(EventType.PLAN, "Improving the plan", status="refine")
            plan = await self.planner.plan(request, context_summary, previous, verdict)
            return self._ensure_files(plan, request)

        async def critique(plan: Plan) -> PlanVerdict:
            self.events.emit(EventType.REVIEW, "Reviewing the plan", target="plan")
            return await self.reviewer.review(plan, request)

        def on_iteration(record: IterationRecord, verdict: PlanVerdict):
            self.events.emit(EventType.REVIEW, f"Plan scored {verdict.quality_score:.0f}/100", target="plan",
                             iteration=record.iteration, quality_score=verdict.quality_score,
                             color_creativity_score=verdict.color_creativity_score,
                             approved=verdict.approved, issues=record.issue_count)

        try:
            outcome = await self.loop.run(generate, critique, accept=self._accept, on_iteration=on_iteration)
        except CollaboratorError as e:
            log_json("WARN", "plan_stage_fallback_trivial", details={"error": str(e)})
            self.events.warning("Planning unavailable, continuing with a minimal plan", error=str(e))
            plan = Plan.trivial_for(request, self.entry_file)
            return PlanStageResult(plan, stop_reason="planner_failed")

        plan = outcome.final
        message = "Plan approved" if outcome.stop_reason == "approved" else "Plan ready"
        self.events.emit(EventType.PLAN, message, status="complete", stop_reason=outcome.stop_reason,
                         files_to_create=plan.files_to_create, files_to_modify=plan.files_to_modify,
                         iterations=len(outcome.history))
        return PlanStageResult(plan, outcome.history, outcome.stop_reason, outcome.last_verdict)
