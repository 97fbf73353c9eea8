"""
Bounded generate → critique → refine loop.

:class:`ReflectionLoop` wraps any pair of async callables: ``generate``
produces a draft (given the previous draft and verdict, ``None`` on the
first pass) and ``critique`` scores it. The loop stops at the first of:

* the verdict is accepted (approved and at/above the quality threshold, or a
  caller-supplied ``accept`` predicate),
* the iteration budget is spent,
* stagnation: the score moved by less than ``STAGNATION_DELTA`` points and no
  critical/high issue from the previous verdict was resolved,
* the critic failed (the current draft is accepted as-is, unscored),
* a regeneration failed (the last good draft is kept).

Only a failure of the very first ``generate`` propagates to the caller.

Usage::

    loop = ReflectionLoop(max_iterations=2, quality_threshold=75)
    outcome = await loop.run(generate, critique)
    outcome.final, outcome.history, outcome.stop_reason
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from core.logging_utils import log_json
from core.types import IterationRecord, ReviewVerdict

Generate = Callable[[Optional[Any], Optional[ReviewVerdict]], Awaitable[Any]]
Critique = Callable[[Any], Awaitable[ReviewVerdict]]


@dataclass
class ReflectionOutcome:
    final: Any
    history: List[IterationRecord] = field(default_factory=list)
    stop_reason: str = "approved"
    last_verdict: Optional[ReviewVerdict] = None

    @property
    def quality_score(self) -> Optional[float]:
        return self.last_verdict.quality_score if self.last_verdict else None

    @property
    def approved(self) -> bool:
        return bool(self.last_verdict and self.last_verdict.approved)


def _issue_key(issue) -> tuple:
    return (issue.category, issue.description.strip().lower())


def resolved_blocking_issue(previous: ReviewVerdict, current: ReviewVerdict) -> bool:
    """True when some critical/high issue of *previous* is gone in *current*."""
    before = {_issue_key(i) for i in previous.blocking_issues()}
    if not before:
        return False
    after = {_issue_key(i) for i in current.blocking_issues()}
    return bool(before - after) or len(after) < len(before)


class ReflectionLoop:
    """Run a bounded reflection over one artifact.

    Attributes:
        STAGNATION_DELTA: Minimum score improvement that counts as progress.
    """

    STAGNATION_DELTA: float = 10.0

    def __init__(self, max_iterations: int = 2, quality_threshold: float = 75.0,
                 enabled: bool = True, name: str = "reflection"):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.max_iterations = max_iterations
        self.quality_threshold = quality_threshold
        self.enabled = enabled
        self.name = name

    def _accepted(self, verdict: ReviewVerdict, accept) -> bool:
        if accept is not None:
            return bool(accept(verdict))
        return verdict.approved and verdict.quality_score >= self.quality_threshold

    async def run(
        self,
        generate: Generate,
        critique: Critique,
        accept: Optional[Callable[[ReviewVerdict], bool]] = None,
        on_iteration: Optional[Callable[[IterationRecord, ReviewVerdict], None]] = None,
    ) -> ReflectionOutcome:
        draft = await generate(None, None)
        if not self.enabled:
            return ReflectionOutcome(final=draft, stop_reason="disabled")

        history: List[IterationRecord] = []
        previous: Optional[ReviewVerdict] = None

        for iteration in range(self.max_iterations):
            try:
                verdict = await critique(draft)
            except Exception as e:
                log_json("WARN", "reflection_critique_failed",
                         details={"loop": self.name, "iteration": iteration, "error": str(e)})
                return ReflectionOutcome(draft, history, "critique_failed", None)

            record = IterationRecord(
                iteration=iteration,
                quality_score=verdict.quality_score,
                approved=verdict.approved,
                issue_count=len(verdict.issues),
            )
            history.append(record)
            log_json("INFO", "reflection_iteration",
                     details={"loop": self.name, "iteration": iteration,
                              "score": verdict.quality_score, "approved": verdict.approved})
            if on_iteration is not None:
                on_iteration(record, verdict)

            if self._accepted(verdict, accept):
                return ReflectionOutcome(draft, history, "approved", verdict)
            if iteration == self.max_iterations - 1:
                return ReflectionOutcome(draft, history, "max_iterations", verdict)
            if previous is not None:
                delta = verdict.quality_score - previous.quality_score
                if delta < self.STAGNATION_DELTA and not resolved_blocking_issue(previous, verdict):
                    log_json("INFO", "reflection_stagnated",
                             details={"loop": self.name, "iteration": iteration, "delta": delta})
                    return ReflectionOutcome(draft, history, "stagnation", verdict)

            try:
                draft = await generate(draft, verdict)
            except Exception as e:
                log_json("WARN", "reflection_regenerate_failed",
                         details={"loop": self.name, "iteration": iteration, "error": str(e)})
                return ReflectionOutcome(draft, history, "generate_failed", verdict)
            previous = verdict

        # unreachable: the last iteration always returns
        return ReflectionOutcome(draft, history, "max_iterations", previous)
