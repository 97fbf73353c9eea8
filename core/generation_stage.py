"""Concurrent per-file generation.

Every file in ``plan.files_to_create`` gets its own reflection loop (coder
drafts, reviewer critiques) and all loops run concurrently under
``asyncio.gather``. Failures are isolated per file: a file whose loop fails
still yields a :class:`FileOperation` (best-effort content, ``quality_score``
of ``None``, ``validated=False``) and never cancels its siblings, so the
output always has exactly one operation per planned file, in plan order.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from core.consultation import ConsultationBus, ConsultationKind, ConsultationRequest
from core.events import EventBus, EventType
from core.logging_utils import log_json
from core.reflection_loop import ReflectionLoop
from core.types import ChangeRequest, FileOperation, IterationRecord, Plan, ReviewVerdict


@dataclass
class GenerationResult:
    operations: List[FileOperation] = field(default_factory=list)
    reviews: Dict[str, ReviewVerdict] = field(default_factory=dict)

    @property
    def mean_quality(self) -> Optional[float]:
        scores = [op.quality_score for op in self.operations if op.quality_score is not None]
        return round(sum(scores) / len(scores), 1) if scores else None

    @property
    def failed(self) -> List[str]:
        return [op.filename for op in self.operations if op.error]


class GenerationStage:
    def __init__(self, coder, reviewer, events: EventBus, bus: ConsultationBus = None,
                 max_iterations: int = 2, quality_threshold: float = 75.0, reflection_enabled: bool = True):
        self.coder = coder
        self.reviewer = reviewer
        self.events = events
        self.bus = bus
        self.max_iterations = max_iterations
        self.quality_threshold = quality_threshold
        self.reflection_enabled = reflection_enabled

    async def _dependency_hints(self, request: ChangeRequest) -> str:
        if self.bus is None:
            return ""
        answer = await self.bus.request(ConsultationRequest(
            kind=ConsultationKind.ASK_DEPENDENCIES,
            from_stage="generator",
            to_stage="analyzer",
            question="Which dependencies can generated files rely on?",
            context={"current_files": dict(request.current_files)},
        ))
        deps = answer.data.get("dependencies")
        return f"Available dependencies: {', '.join(deps)}" if deps else answer.text

    async def _generate_one(self, filename: str, plan: Plan, request: ChangeRequest, hints: str,
                            reflect: bool, reviews: Dict[str, ReviewVerdict]) -> FileOperation:
        self.events.emit(EventType.FILE_OPERATION, f"Writing {filename}", filename=filename, status="start")
        loop = ReflectionLoop(self.max_iterations, self.quality_threshold,
                              enabled=self.reflection_enabled and reflect, name=f"generate:{filename}")
        latest = {"content": ""}

        async def generate(previous: Optional[str], verdict: Optional[ReviewVerdict]) -> str:
            content = await self.coder.generate_file(filename, plan, request, previous, verdict, hints)
            latest["content"] = content
            return content

        async def critique(content: str) -> ReviewVerdict:
            return await self.reviewer.review_code(filename, content, request, plan.detail_for(filename))

        def on_iteration(record: IterationRecord, verdict: ReviewVerdict):
            reviews[filename] = verdict
            self.events.emit(EventType.REVIEW, f"{filename} scored {verdict.quality_score:.0f}/100",
                             target=filename, iteration=record.iteration,
                             quality_score=verdict.quality_score, approved=verdict.approved)

        try:
            outcome = await loop.run(generate, critique, on_iteration=on_iteration)
        except Exception as e:
            log_json("ERROR", "generation_file_failed", details={"file": filename, "error": str(e)})
            self.events.warning(f"Could not write {filename}", filename=filename, error=str(e))
            return FileOperation("create", filename, latest["content"], quality_score=None, error=str(e))

        if outcome.last_verdict is None:
            reviews.pop(filename, None)
        op = FileOperation(
            "create",
            filename,
            outcome.final,
            quality_score=outcome.quality_score,
            reflection_history=outcome.history,
        )
        self.events.emit(EventType.FILE_OPERATION, f"Wrote {filename}", filename=filename, status="complete",
                         quality_score=op.quality_score, iterations=len(op.reflection_history),
                         stop_reason=outcome.stop_reason)
        return op

    async def run(self, plan: Plan, request: ChangeRequest, reflect: bool = True,
                  filenames: Optional[List[str]] = None) -> GenerationResult:
        targets = list(filenames if filenames is not None else plan.files_to_create)
        result = GenerationResult()
        if not targets:
            return result
        self.events.phase("Writing code", files=targets)
        hints = await self._dependency_hints(request)

        outcomes = await asyncio.gather(
            *(self._generate_one(name, plan, request, hints, reflect, result.reviews) for name in targets),
            return_exceptions=True,
        )
        for name, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                log_json("ERROR", "generation_task_crashed", details={"file": name, "error": repr(outcome)})
                outcome = FileOperation("create", name, "", error=repr(outcome))
            result.operations.append(outcome)

        log_json("INFO", "generation_complete",
                 details={"files": len(result.operations), "failed": result.failed,
                          "mean_quality": result.mean_quality})
        return result
