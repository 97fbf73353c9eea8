"""Pipeline orchestrator for change requests.

:class:`PipelineOrchestrator` turns a :class:`~core.types.ChangeRequest` into
validated file edits:

1. **Intent**: classify the request (model, with a keyword fallback).
2. **Route**: pick the stages the request needs (:mod:`agents.router`).
3. **Plan**: reflection over planner and plan reviewer, unless routed around.
4. **Operation**: dispatch to *generate*, *modify*, *debug* or *refactor*.
5. **Clean up**: deterministic fixes for common script problems (:mod:`core.code_fixes`).
6. **Validate**: validate → repair loop over the configured backend.

Progress is reported through an :class:`~core.events.EventBus`; the
persistent conversation/project context is read once at entry and written
once at exit.

Typical usage::

    from core.model_adapter import ModelAdapter
    from core.orchestrator import PipelineOrchestrator
    from core.types import ChangeRequest

    orchestrator = PipelineOrchestrator(ModelAdapter())
    result = await orchestrator.run(ChangeRequest("make it blue", {"App.jsx": src}),
                                    on_update=print)
"""
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from agents.analyzer import fallback_analysis
from agents.registry import default_agents
from agents.reviewer import aggregate_reviews
from agents.router import RoutingClassifier, estimate_time
from agents.sandbox import ValidationExecutionBackend, select_backend
from core.code_fixes import auto_fix_operations
from core.config_manager import ConfigManager, config as default_config
from core.consultation import ConsultationBus, default_bus
from core.context import PipelineContext
from core.events import EventBus, EventType, PipelineEvent
from core.exceptions import ContextStoreError, RoutingFault
from core.friendly_errors import friendly_error
from core.generation_stage import GenerationStage
from core.logging_utils import log_json
from core.model_adapter import TextCompletionService
from core.modification_stage import ModificationStage
from core.plan_stage import PlanStage
from core.types import ChangeRequest, FileOperation, IntentResult, Plan, PipelineResult, RouteDecision
from core.validation_loop import ValidationExecutionLoop
from memory.store import ContextStore, InMemoryContextStore

OPERATIONS = ("generate", "modify", "debug", "refactor")

_REFACTOR_WORDS = ("refactor", "reorganize", "reorganise", "restructure")


@dataclass
class PipelineOptions:
    reflection_enabled: bool = True
    max_reflection_iterations: int = 2
    quality_threshold: float = 75.0
    plan_max_iterations: int = 2
    plan_color_threshold: float = 70.0
    consultations_enabled: bool = True
    consultation_timeout: float = 30.0
    smart_routing_enabled: bool = True
    run_tests: bool = True
    test_mode: str = "auto"
    test_commands: List[str] = field(default_factory=list)
    allowed_commands: List[str] = field(default_factory=list)
    max_debug_cycles: int = 3
    auto_fix_enabled: bool = True
    sandbox_runtime_checks: bool = True
    sandbox_timeout: float = 5.0
    command_timeout: float = 30.0
    default_entry_file: str = "App.jsx"

    @classmethod
    def from_config(cls, settings: ConfigManager, overrides: Optional[Dict[str, Any]] = None) -> "PipelineOptions":
        """Snapshot the effective settings for one run; *overrides* are request options."""
        known = {k: v for k, v in (overrides or {}).items() if k in cls.__dataclass_fields__}
        if known:
            settings = settings.with_overrides(known)
        return cls(**{name: settings.get(name) for name in cls.__dataclass_fields__})


def detect_operation(intent: IntentResult, request: ChangeRequest, plan: Plan) -> str:
    if not request.has_files:
        return "generate"
    if intent.intent == "fix_bug":
        return "debug"
    if any(word in request.message.lower() for word in _REFACTOR_WORDS):
        return "refactor"
    if plan.files_to_create and not plan.files_to_modify:
        return "generate"
    return "modify"


class PipelineOrchestrator:
    """Coordinates the stages of one change request.

    Args:
        completion: The text-completion service every collaborator shares.
        settings: Configuration source; defaults to the global ``config``.
        agents: Optional mapping overriding entries of :func:`default_agents`.
        store: Persistent context store. Defaults to a :class:`ContextStore`
            at ``context_store_path``, or an in-memory store when that is empty.
        backend: Validation backend; by default chosen from ``test_mode``.
        router: Route classifier; defaults to the heuristic rule table.
    """

    def __init__(self, completion: TextCompletionService, settings: ConfigManager = None,
                 agents: Optional[Dict[str, object]] = None, store=None,
                 backend: Optional[ValidationExecutionBackend] = None,
                 router: Optional[RoutingClassifier] = None):
        self.settings = settings or default_config
        self.agents = default_agents(completion, self.settings)
        self.agents.update(agents or {})
        if store is None:
            path = self.settings.get("context_store_path")
            store = ContextStore(Path(path)) if path else InMemoryContextStore()
        self.store = store
        self.backend = backend
        self.router = router or RoutingClassifier()
        self._dispatch: Dict[str, Callable] = {
            "generate": self._generate,
            "modify": self._modify,
            "debug": self._debug,
            "refactor": self._refactor,
        }

    # ── Stage helpers ───────────────────────────────────────────────────

    async def _classify_intent(self, request: ChangeRequest, events: EventBus) -> IntentResult:
        events.phase("Understanding your request")
        pinned = request.options.get("intent")
        if pinned:
            intent = IntentResult(pinned, 1.0, "Set by caller", source="caller")
        else:
            intent = await self.agents["intent"].classify(request.message, request.current_files)
        events.phase("Request understood", intent=intent.intent, confidence=intent.confidence)
        return intent

    def _route(self, request: ChangeRequest, intent: IntentResult, opts: PipelineOptions,
               events: EventBus) -> RouteDecision:
        if opts.smart_routing_enabled:
            route = self.router.classify(request.message, intent, request.current_files)
        else:
            route = RouteDecision.full_pipeline("Smart routing disabled")
        events.phase(f"Route: {route.reason}", route=route.to_dict(),
                     estimated_time=estimate_time(route, max(len(request.current_files), 1)))
        return route

    async def _plan(self, request: ChangeRequest, route: RouteDecision, opts: PipelineOptions,
                    ctx: PipelineContext, events: EventBus, meta: Dict[str, Any]) -> Plan:
        if route.skip_plan:
            plan = Plan.trivial_for(request, opts.default_entry_file)
            events.emit(EventType.PLAN, "Planning skipped", status="skipped",
                        files_to_create=plan.files_to_create, files_to_modify=plan.files_to_modify)
            meta["plan_iterations"] = 0
            return plan
        stage = PlanStage(
            self.agents["planner"], self.agents["plan_reviewer"], events,
            max_iterations=opts.plan_max_iterations,
            quality_threshold=opts.quality_threshold,
            color_threshold=opts.plan_color_threshold,
            reflection_enabled=opts.reflection_enabled and not route.skip_reflection,
            entry_file=opts.default_entry_file,
        )
        outcome = await stage.run(request, ctx.summary())
        meta["plan_iterations"] = len(outcome.history)
        meta["plan_stop_reason"] = outcome.stop_reason
        if outcome.verdict is not None:
            meta["plan_quality"] = outcome.verdict.quality_score
        return outcome.plan

    def _generation_stage(self, opts: PipelineOptions, events: EventBus, bus: ConsultationBus) -> GenerationStage:
        return GenerationStage(
            self.agents["coder"], self.agents["reviewer"], events, bus,
            max_iterations=opts.max_reflection_iterations,
            quality_threshold=opts.quality_threshold,
            reflection_enabled=opts.reflection_enabled,
        )

    async def _generate(self, request, plan, route, opts, events, bus, meta) -> List[FileOperation]:
        result = await self._generation_stage(opts, events, bus).run(plan, request, reflect=not route.skip_reflection)
        meta["mean_quality"] = result.mean_quality
        meta["reviews"] = aggregate_reviews(result.reviews)
        if result.failed:
            meta["failed_files"] = result.failed
        return result.operations

    async def _modify(self, request, plan, route, opts, events, bus, meta) -> List[FileOperation]:
        if route.skip_analysis:
            analysis = fallback_analysis(request, plan)
        else:
            events.phase("Analyzing your code")
            analysis = await self.agents["analyzer"].analyze(request, plan)
            events.phase("Analysis complete", files=analysis.files_to_modify, fallback=analysis.fallback)
        meta["analysis_fallback"] = analysis.fallback

        operations = await ModificationStage(self.agents["modifier"], events).run(
            analysis.files_to_modify, request, analysis.change_targets)

        new_files = [f for f in plan.files_to_create if f not in request.current_files]
        if new_files:
            result = await self._generation_stage(opts, events, bus).run(
                plan, request, reflect=not route.skip_reflection, filenames=new_files)
            meta["mean_quality"] = result.mean_quality
            operations.extend(result.operations)
        return operations

    async def _debug(self, request, plan, route, opts, events, bus, meta) -> List[FileOperation]:
        events.phase("Finding the bug")
        diagnosis = await self.agents["debugger"].diagnose(request)
        events.phase("Bug identified", root_cause=diagnosis.root_cause, files=diagnosis.affected_files)
        meta["diagnosis"] = {"root_cause": diagnosis.root_cause, "fix_strategy": diagnosis.fix_strategy}
        return await ModificationStage(self.agents["modifier"], events).run(
            diagnosis.affected_files, request, diagnosis.as_hint())

    async def _refactor(self, request, plan, route, opts, events, bus, meta) -> List[FileOperation]:
        """Restructure existing files without changing behaviour; every touched file shares the plan summary."""
        if route.skip_analysis:
            analysis = fallback_analysis(request, plan)
        else:
            events.phase("Analyzing code structure")
            analysis = await self.agents["analyzer"].analyze(request, plan)
        meta["analysis_fallback"] = analysis.fallback

        planned = [f for f in plan.files_to_modify if f in request.current_files] if not plan.trivial else []
        filenames = list(dict.fromkeys(planned + analysis.files_to_modify))
        summary = plan.summary or request.message
        hints = {
            name: "\n".join(filter(None, [
                analysis.change_targets.get(name, ""),
                f"Refactoring plan: {summary}",
                "Keep the existing behaviour and public interface unchanged.",
            ]))
            for name in filenames
        }
        events.phase("Refactoring", files=filenames)
        return await ModificationStage(self.agents["modifier"], events).run(filenames, request, hints)

    # ── Entry point ─────────────────────────────────────────────────────

    async def run(self, request: ChangeRequest,
                  on_update: Optional[Callable[[PipelineEvent], None]] = None) -> PipelineResult:
        """Run the whole pipeline for *request*. Never raises for collaborator failures."""
        run_id = f"run_{uuid.uuid4().hex[:12]}"
        started = time.monotonic()
        events = EventBus([on_update] if on_update else [])
        opts = PipelineOptions.from_config(self.settings, dict(request.options))
        meta: Dict[str, Any] = {"run_id": run_id, "tests_run": False, "tests_passed": False, "debug_cycles": 0}
        ctx = PipelineContext.load(self.store)
        ctx.conversation.add_turn("user", request.message)
        bus = default_bus(self.agents["reviewer"], timeout=opts.consultation_timeout,
                          enabled=opts.consultations_enabled)
        plan: Optional[Plan] = None
        log_json("INFO", "pipeline_started", goal=request.message,
                 details={"run_id": run_id, "files": len(request.current_files)})

        try:
            intent = await self._classify_intent(request, events)
            meta["intent"] = intent.intent
            route = self._route(request, intent, opts, events)
            meta["route"] = route.to_dict()
            meta["estimated_time"] = estimate_time(route, max(len(request.current_files), 1))

            plan = await self._plan(request, route, opts, ctx, events, meta)

            operation = request.options.get("operation") or detect_operation(intent, request, plan)
            meta["operation"] = operation
            handler = self._dispatch.get(operation)
            if handler is None:
                raise RoutingFault(operation)
            operations = await handler(request, plan, route, opts, events, bus, meta)
            meta["files_generated"] = len(operations)

            if opts.auto_fix_enabled and operations:
                operations, fixed = auto_fix_operations(operations)
                if fixed:
                    meta["auto_fixed"] = fixed
                    events.phase("Cleaned up generated code", files=fixed)

            if opts.run_tests and operations:
                backend = self.backend or select_backend(
                    opts.test_mode, opts.test_commands, opts.allowed_commands,
                    known_files=request.current_files, run_python=opts.sandbox_runtime_checks)
                timeout = opts.command_timeout if backend.method == "command" else opts.sandbox_timeout
                loop = ValidationExecutionLoop(backend, self.agents["debugger"], events,
                                               max_cycles=opts.max_debug_cycles, timeout=timeout)
                outcome = await loop.run(operations, request.current_files)
                operations = outcome.operations
                meta.update({
                    "tests_run": True,
                    "tests_passed": outcome.success,
                    "debug_cycles": outcome.cycles,
                    "test_results": outcome.test_results(),
                    "exhausted_retries": outcome.exhausted,
                })

            success = bool(operations)
            meta["consultations"] = bus.stats()
            meta["duration_ms"] = round((time.monotonic() - started) * 1000, 1)
            if success:
                events.emit(EventType.SUCCESS, "All done", files=[op.filename for op in operations])
                ctx.project.update_from_plan(plan)
                ctx.project.update_from_operations(operations)
                ctx.conversation.record_file_operations(operations)
                ctx.conversation.add_turn("assistant", f"Changed {len(operations)} file(s)")
                result = PipelineResult(True, operations, plan, meta)
            else:
                events.error("No changes were produced")
                result = PipelineResult(False, [], plan, meta, error="No changes were produced")
        except Exception as e:
            log_json("ERROR", "pipeline_failed", goal=request.message,
                     details={"run_id": run_id, "error": str(e), "type": type(e).__name__})
            friendly = friendly_error(e, context=meta.get("operation", "pipeline"))
            events.error(f"Something went wrong: {friendly.message}", suggestion=friendly.suggestion)
            meta["duration_ms"] = round((time.monotonic() - started) * 1000, 1)
            result = PipelineResult(False, [], plan, meta, error=str(e), friendly_error=friendly.to_dict())

        self._persist(ctx, result, request)
        return result

    def _persist(self, ctx: PipelineContext, result: PipelineResult, request: ChangeRequest) -> None:
        try:
            ctx.save(self.store)
            self.store.append_log({
                "run_id": result.metadata.get("run_id"),
                "ts": time.time(),
                "message": request.message,
                "success": result.success,
                "operation": result.metadata.get("operation"),
                "files": [op.filename for op in result.file_operations],
                "tests_passed": result.metadata.get("tests_passed"),
                "debug_cycles": result.metadata.get("debug_cycles"),
                "error": result.error,
            })
        except (ContextStoreError, OSError) as e:
            log_json("WARN", "pipeline_context_persist_failed", details={"error": str(e)})


async def run_pipeline(message: str, current_files: Optional[Dict[str, str]] = None,
                       completion: TextCompletionService = None,
                       on_update: Optional[Callable[[PipelineEvent], None]] = None, **options) -> PipelineResult:
    """Convenience wrapper: build an orchestrator with defaults and run one request."""
    if completion is None:
        from core.model_adapter import ModelAdapter
        completion = ModelAdapter()
    orchestrator = PipelineOrchestrator(completion)
    return await orchestrator.run(ChangeRequest(message, dict(current_files or {}), options), on_update=on_update)
