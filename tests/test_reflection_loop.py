import pytest

from core.reflection_loop import ReflectionLoop, resolved_blocking_issue
from core.types import Issue, ReviewVerdict


def verdict(score, approved=False, issues=None):
    return ReviewVerdict(quality_score=score, approved=approved, issues=issues or [])


class Script:
    """Drafts "v1", "v2", ... and replays the given verdicts in order."""

    def __init__(self, verdicts, fail_generate_on=None, fail_critique_on=None):
        self.verdicts = list(verdicts)
        self.fail_generate_on = fail_generate_on
        self.fail_critique_on = fail_critique_on
        self.generate_calls = []
        self.critique_calls = []

    async def generate(self, previous, last_verdict):
        self.generate_calls.append((previous, last_verdict))
        if self.fail_generate_on == len(self.generate_calls):
            raise RuntimeError("generator down")
        return f"v{len(self.generate_calls)}"

    async def critique(self, draft):
        self.critique_calls.append(draft)
        if self.fail_critique_on == len(self.critique_calls):
            raise RuntimeError("critic down")
        return self.verdicts[len(self.critique_calls) - 1]


@pytest.mark.asyncio
async def test_stops_as_soon_as_the_draft_is_approved():
    script = Script([verdict(90, approved=True)])
    outcome = await ReflectionLoop(max_iterations=3).run(script.generate, script.critique)

    assert outcome.final == "v1"
    assert outcome.stop_reason == "approved"
    assert len(outcome.history) == 1
    assert outcome.quality_score == 90
    assert outcome.approved
    assert len(script.generate_calls) == 1


@pytest.mark.asyncio
async def test_approval_needs_the_quality_threshold():
    script = Script([verdict(60, approved=True), verdict(80, approved=True)])
    outcome = await ReflectionLoop(max_iterations=2, quality_threshold=75).run(script.generate, script.critique)

    assert outcome.stop_reason == "approved"
    assert outcome.final == "v2"
    assert [r.quality_score for r in outcome.history] == [60, 80]


@pytest.mark.asyncio
async def test_iterations_are_bounded():
    script = Script([verdict(40), verdict(55), verdict(70)])
    outcome = await ReflectionLoop(max_iterations=3).run(script.generate, script.critique)

    assert outcome.stop_reason == "max_iterations"
    assert len(outcome.history) == 3
    assert len(script.generate_calls) == 3
    assert outcome.final == "v3"


@pytest.mark.asyncio
async def test_refinement_receives_previous_draft_and_verdict():
    first = verdict(40)
    script = Script([first, verdict(90, approved=True)])
    await ReflectionLoop(max_iterations=2).run(script.generate, script.critique)

    assert script.generate_calls[0] == (None, None)
    assert script.generate_calls[1] == ("v1", first)


@pytest.mark.asyncio
async def test_stagnation_stops_early():
    script = Script([verdict(50), verdict(55), verdict(90, approved=True)])
    outcome = await ReflectionLoop(max_iterations=3).run(script.generate, script.critique)

    assert outcome.stop_reason == "stagnation"
    assert len(outcome.history) == 2
    assert outcome.final == "v2"


@pytest.mark.asyncio
async def test_resolving_a_blocking_issue_counts_as_progress():
    high = Issue("high", "code", "state is mutated", "copy the array")
    script = Script([verdict(50, issues=[high]), verdict(52), verdict(90, approved=True)])
    outcome = await ReflectionLoop(max_iterations=3).run(script.generate, script.critique)

    assert outcome.stop_reason == "approved"
    assert len(outcome.history) == 3


@pytest.mark.asyncio
async def test_critique_failure_keeps_current_draft_unscored():
    script = Script([verdict(40)], fail_critique_on=2)
    outcome = await ReflectionLoop(max_iterations=3).run(script.generate, script.critique)

    assert outcome.stop_reason == "critique_failed"
    assert outcome.final == "v2"
    assert [r.quality_score for r in outcome.history] == [40]
    assert outcome.last_verdict is None
    assert outcome.quality_score is None
    assert not outcome.approved


@pytest.mark.asyncio
async def test_critique_failure_on_first_pass_returns_first_draft():
    script = Script([], fail_critique_on=1)
    outcome = await ReflectionLoop(max_iterations=2).run(script.generate, script.critique)

    assert outcome.stop_reason == "critique_failed"
    assert outcome.final == "v1"
    assert outcome.history == []
    assert outcome.quality_score is None


@pytest.mark.asyncio
async def test_regeneration_failure_keeps_last_good_draft():
    script = Script([verdict(40)], fail_generate_on=2)
    outcome = await ReflectionLoop(max_iterations=3).run(script.generate, script.critique)

    assert outcome.stop_reason == "generate_failed"
    assert outcome.final == "v1"


@pytest.mark.asyncio
async def test_first_generation_failure_propagates():
    script = Script([], fail_generate_on=1)
    with pytest.raises(RuntimeError, match="generator down"):
        await ReflectionLoop().run(script.generate, script.critique)


@pytest.mark.asyncio
async def test_disabled_loop_skips_the_critic():
    script = Script([])
    outcome = await ReflectionLoop(enabled=False).run(script.generate, script.critique)

    assert outcome.stop_reason == "disabled"
    assert outcome.final == "v1"
    assert script.critique_calls == []


@pytest.mark.asyncio
async def test_accept_predicate_overrides_default_gate():
    script = Script([verdict(95, approved=True), verdict(95, approved=True)])
    outcome = await ReflectionLoop(max_iterations=2).run(
        script.generate, script.critique, accept=lambda v: False)

    assert outcome.stop_reason == "max_iterations"


@pytest.mark.asyncio
async def test_on_iteration_sees_every_record():
    seen = []
    script = Script([verdict(40), verdict(90, approved=True)])
    await ReflectionLoop(max_iterations=2).run(
        script.generate, script.critique, on_iteration=lambda record, v: seen.append((record.iteration, v.quality_score)))

    assert seen == [(0, 40), (1, 90)]


def test_max_iterations_must_be_positive():
    with pytest.raises(ValueError):
        ReflectionLoop(max_iterations=0)


def test_resolved_blocking_issue():
    crit = Issue("critical", "code", "crashes on load")
    low = Issue("low", "style", "spacing")
    assert resolved_blocking_issue(verdict(50, issues=[crit]), verdict(50, issues=[low]))
    assert not resolved_blocking_issue(verdict(50, issues=[crit]), verdict(50, issues=[crit]))
    assert not resolved_blocking_issue(verdict(50, issues=[low]), verdict(50))
