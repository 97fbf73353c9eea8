"""End-to-end integration tests for PipelineOrchestrator.

A ScriptedCompletion answers every collaborator role with fake but
schema-valid replies, so the real agents, stages, router and sandbox backend
all run without hitting any external service.
"""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from core.events import EventType
from core.exceptions import CollaboratorError
from core.model_adapter import ModelAdapter
from core.orchestrator import PipelineOrchestrator, detect_operation, run_pipeline
from core.types import ChangeRequest, IntentResult, Plan
from memory.store import ContextStore, InMemoryContextStore
from tests.fakes.fake_completion import (
    ScriptedCompletion,
    code_reply,
    make_settings,
    plan_reply,
    plan_review_reply,
    review_reply,
)

GOOD_COMPONENT = 'export default function App() { return <div className="p-4">Hi</div>; }'
BAD_COMPONENT = 'export default function App() { return <div>{process.env.NODE_ENV}</div>; }'
REQUIRE_COMPONENT = (
    "const React = require('react');\n"
    "const { useState } = require('react');\n\n"
    "export default function App() { const [n] = useState(0); return <div>{n}</div>; }"
)
EXISTING = {"App.jsx": 'export default function App() { return <h1 className="text-red-500">Hi</h1>; }\n'}


def _new_project_scripts(**extra):
    scripts = {
        "intent": {"intent": "create_new", "confidence": 0.95},
        "planning": plan_reply(["App.jsx", "Header.jsx"]),
        "plan_review": plan_review_reply(90),
        "code_generation": code_reply(GOOD_COMPONENT),
        "review": review_reply(88),
    }
    scripts.update(extra)
    return scripts


def _orchestrator(tmp_path, completion, store=None, **settings):
    return PipelineOrchestrator(completion, make_settings(tmp_path, **settings),
                                store=store if store is not None else InMemoryContextStore())


@pytest.mark.parametrize("intent, message, files, plan, expected", [
    ("create_new", "build a blog", {}, Plan(), "generate"),
    ("fix_bug", "refactor away the crash", EXISTING, Plan(), "debug"),
    ("modify_existing", "Refactor the header", EXISTING, Plan(), "refactor"),
    ("modify_existing", "restructure the layout", EXISTING, Plan(), "refactor"),
    ("add_feature", "add a footer", EXISTING, Plan(files_to_create=["Footer.jsx"]), "generate"),
    ("modify_existing", "tweak the header", EXISTING, Plan(files_to_modify=["App.jsx"]), "modify"),
])
def test_detect_operation(intent, message, files, plan, expected):
    request = ChangeRequest(message, files)
    assert detect_operation(IntentResult(intent, 0.9, ""), request, plan) == expected


# ── Generate ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_new_project_runs_every_stage(tmp_path):
    completion = ScriptedCompletion(_new_project_scripts())
    store = InMemoryContextStore()
    events = []

    result = await _orchestrator(tmp_path, completion, store).run(
        ChangeRequest("build a landing page"), on_update=events.append)

    assert result.success
    assert [op.filename for op in result.file_operations] == ["App.jsx", "Header.jsx"]
    assert all(op.type == "create" and op.validated for op in result.file_operations)
    assert all(op.quality_score == 88 for op in result.file_operations)

    meta = result.metadata
    assert meta["intent"] == "create_new"
    assert meta["route"]["rule"] == "new_project"
    assert meta["estimated_time"] == "35-50s"
    assert meta["operation"] == "generate"
    assert meta["plan_iterations"] == 1
    assert meta["files_generated"] == 2
    assert meta["tests_run"] and meta["tests_passed"]
    assert meta["debug_cycles"] == 1
    assert meta["consultations"]["total"] == 1
    assert meta["run_id"].startswith("run_")

    assert completion.count("analysis") == 0
    assert events[0].type == EventType.PHASE
    assert events[-1].type == EventType.SUCCESS
    assert {EventType.PLAN, EventType.REVIEW, EventType.FILE_OPERATION} <= {e.type for e in events}
    assert store.read_log()[0]["files"] == ["App.jsx", "Header.jsx"]


@pytest.mark.asyncio
async def test_one_failing_file_does_not_fail_the_run(tmp_path):
    def coder(system, user, config):
        if "File to write: Header.jsx" in user:
            raise CollaboratorError("coder down", role="code_generation")
        return code_reply(GOOD_COMPONENT)

    completion = ScriptedCompletion(_new_project_scripts(code_generation=coder))

    result = await _orchestrator(tmp_path, completion).run(ChangeRequest("build a landing page"))

    assert result.success
    app, header = result.file_operations
    assert app.validated and app.error is None
    assert header.error and not header.validated
    assert result.metadata["failed_files"] == ["Header.jsx"]


@pytest.mark.asyncio
async def test_project_context_reaches_the_next_run(tmp_path):
    store = ContextStore(tmp_path / "store")
    completion = ScriptedCompletion(_new_project_scripts())
    orchestrator = _orchestrator(tmp_path, completion, store)

    await orchestrator.run(ChangeRequest("build a landing page"))
    await orchestrator.run(ChangeRequest("build a pricing page"))

    second_prompt = completion.prompts("planning")[1]
    assert "Tidy" in second_prompt
    assert "build a landing page" in second_prompt
    assert len(store.read_log()) == 2
    assert store.read("project_context")["known_files"] == ["App.jsx", "Header.jsx"]


# ── Modify ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_make_it_blue_takes_the_fast_path(tmp_path):
    completion = ScriptedCompletion({
        "intent": {"intent": "style_change", "confidence": 0.9},
        "modification": code_reply(GOOD_COMPONENT.replace("p-4", "text-blue-500")),
    })

    result = await _orchestrator(tmp_path, completion).run(ChangeRequest("make it blue", EXISTING))

    assert result.success
    assert result.metadata["route"]["rule"] == "simple_color"
    assert result.metadata["operation"] == "modify"
    assert result.metadata["plan_iterations"] == 0
    assert result.plan.trivial
    assert completion.count("planning") == 0
    assert completion.count("analysis") == 0
    op = result.file_operations[0]
    assert (op.type, op.filename, op.validated) == ("modify", "App.jsx", True)
    assert "text-blue-500" in op.content


@pytest.mark.asyncio
async def test_disabled_smart_routing_runs_the_full_pipeline(tmp_path):
    completion = ScriptedCompletion({
        "intent": {"intent": "style_change", "confidence": 0.9},
        "planning": plan_reply(files_to_modify=["App.jsx"]),
        "plan_review": plan_review_reply(90),
        "analysis": {"filesToModify": ["App.jsx"], "changeTargets": {"App.jsx": "heading colour"}},
        "modification": code_reply(GOOD_COMPONENT),
    })

    result = await _orchestrator(tmp_path, completion).run(
        ChangeRequest("make it blue", EXISTING, {"smart_routing_enabled": False}))

    assert result.metadata["route"]["rule"] == "full_pipeline"
    assert completion.count("planning") == 1
    assert completion.count("analysis") == 1
    assert "What to change: heading colour" in completion.prompts("modification")[0]


@pytest.mark.asyncio
async def test_pinned_intent_skips_classification(tmp_path):
    completion = ScriptedCompletion({"modification": code_reply(GOOD_COMPONENT)})

    result = await _orchestrator(tmp_path, completion).run(
        ChangeRequest("make it blue", EXISTING, {"intent": "style_change"}))

    assert completion.count("intent") == 0
    assert result.metadata["intent"] == "style_change"
    assert result.success


@pytest.mark.asyncio
async def test_no_tests_option_skips_validation(tmp_path):
    completion = ScriptedCompletion({
        "intent": {"intent": "style_change", "confidence": 0.9},
        "modification": code_reply(BAD_COMPONENT),
    })

    result = await _orchestrator(tmp_path, completion).run(
        ChangeRequest("make it blue", EXISTING, {"run_tests": False}))

    assert result.success
    assert not result.metadata["tests_run"]
    assert result.metadata["debug_cycles"] == 0
    assert not result.file_operations[0].validated


# ── Validate / repair ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_validation_exhaustion_still_delivers_files(tmp_path):
    completion = ScriptedCompletion({
        "intent": {"intent": "style_change", "confidence": 0.9},
        "modification": code_reply(BAD_COMPONENT),
        "debugging": {"canFix": True, "files": [{"filename": "App.jsx", "content": BAD_COMPONENT + "\n// tried"}]},
    })
    events = []

    result = await _orchestrator(tmp_path, completion, max_debug_cycles=3).run(
        ChangeRequest("make it blue", EXISTING), on_update=events.append)

    meta = result.metadata
    assert result.success
    assert meta["tests_run"]
    assert not meta["tests_passed"]
    assert meta["debug_cycles"] == 3
    assert meta["exhausted_retries"]
    assert len(meta["test_results"]) == 3
    assert completion.count("debugging") == 2
    assert result.file_operations[0].content.endswith("// tried")
    assert not result.file_operations[0].validated
    assert any(e.type == EventType.WARNING and "still failing" in e.message for e in events)


@pytest.mark.asyncio
async def test_repair_fixes_the_file(tmp_path):
    completion = ScriptedCompletion({
        "intent": {"intent": "style_change", "confidence": 0.9},
        "modification": code_reply(BAD_COMPONENT),
        "debugging": {"canFix": True, "files": [{"filename": "App.jsx", "content": GOOD_COMPONENT}]},
    })

    result = await _orchestrator(tmp_path, completion).run(ChangeRequest("make it blue", EXISTING))

    assert result.metadata["tests_passed"]
    assert result.metadata["debug_cycles"] == 2
    assert result.file_operations[0].content == GOOD_COMPONENT
    assert "process API not available" in completion.prompts("debugging")[0]


@pytest.mark.asyncio
async def test_required_modules_are_cleaned_up_before_validation(tmp_path):
    completion = ScriptedCompletion({
        "intent": {"intent": "style_change", "confidence": 0.9},
        "modification": code_reply(REQUIRE_COMPONENT),
    })
    events = []

    result = await _orchestrator(tmp_path, completion).run(ChangeRequest("make it blue", EXISTING),
                                                           on_update=events.append)

    meta = result.metadata
    assert meta["auto_fixed"] == ["App.jsx"]
    assert meta["tests_passed"]
    assert meta["debug_cycles"] == 1
    assert completion.count("debugging") == 0
    content = result.file_operations[0].content
    assert content.startswith("import { useState } from 'react';\n\nexport default function App()")
    assert "require(" not in content
    assert any(e.message == "Cleaned up generated code" for e in events)


@pytest.mark.asyncio
async def test_disabled_auto_fix_leaves_the_repair_loop_to_it(tmp_path):
    completion = ScriptedCompletion({
        "intent": {"intent": "style_change", "confidence": 0.9},
        "modification": code_reply(REQUIRE_COMPONENT),
        "debugging": {"canFix": True, "files": [{"filename": "App.jsx", "content": GOOD_COMPONENT}]},
    })

    result = await _orchestrator(tmp_path, completion, auto_fix_enabled=False).run(
        ChangeRequest("make it blue", EXISTING))

    assert "auto_fixed" not in result.metadata
    assert result.metadata["debug_cycles"] == 2
    assert "require() is not available" in completion.prompts("debugging")[0]


# ── Debug ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_bug_report_is_diagnosed_then_fixed(tmp_path):
    completion = ScriptedCompletion({
        "intent": {"intent": "fix_bug", "confidence": 0.9},
        "debugging": {"rootCause": "wrong class", "fixStrategy": "use p-4", "affectedFiles": ["App.jsx"]},
        "modification": code_reply(GOOD_COMPONENT),
    })

    result = await _orchestrator(tmp_path, completion).run(ChangeRequest("the heading is broken", EXISTING))

    assert result.success
    assert result.metadata["route"]["rule"] == "bug_fix"
    assert result.metadata["operation"] == "debug"
    assert result.metadata["diagnosis"]["root_cause"] == "wrong class"
    assert "Root cause: wrong class" in completion.prompts("modification")[0]


# ── Refactor ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_refactor_touches_planned_and_analysed_files(tmp_path):
    files = dict(EXISTING, **{"Header.jsx": "export default function Header() { return <h1>Hi</h1>; }\n"})
    completion = ScriptedCompletion({
        "intent": {"intent": "modify_existing", "confidence": 0.7},
        "planning": plan_reply(files_to_modify=["Header.jsx"], summary="Move the heading into Header"),
        "plan_review": plan_review_reply(90),
        "analysis": {"filesToModify": ["App.jsx"], "changeTargets": {"App.jsx": "render <Header />"}},
        "modification": code_reply(GOOD_COMPONENT),
    })

    result = await _orchestrator(tmp_path, completion).run(
        ChangeRequest("refactor the heading into its own component", files))

    assert result.success
    assert result.metadata["route"]["rule"] == "full_pipeline"
    assert result.metadata["operation"] == "refactor"
    assert [op.filename for op in result.file_operations] == ["Header.jsx", "App.jsx"]
    header_prompt, app_prompt = completion.prompts("modification")
    assert "Refactoring plan: Move the heading into Header" in header_prompt
    assert "render <Header />" in app_prompt
    assert "Keep the existing behaviour" in app_prompt


# ── Failures ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_unknown_operation_is_a_routing_fault(tmp_path):
    completion = ScriptedCompletion({"intent": {"intent": "modify_existing", "confidence": 0.9}})
    store = InMemoryContextStore()
    events = []

    result = await _orchestrator(tmp_path, completion, store).run(
        ChangeRequest("rename the variable", EXISTING, {"operation": "deploy"}), on_update=events.append)

    assert not result.success
    assert result.error == "Unknown operation 'deploy'"
    assert result.file_operations == []
    assert result.friendly_error["category"] == "generic"
    assert events[-1].type == EventType.ERROR
    assert store.read_log()[0]["success"] is False


@pytest.mark.asyncio
async def test_missing_api_key_becomes_an_auth_error(tmp_path):
    settings = make_settings(tmp_path, openai_api_key=None, api_key=None)
    adapter = ModelAdapter(settings, session=MagicMock())

    result = await PipelineOrchestrator(adapter, settings, store=InMemoryContextStore()).run(
        ChangeRequest("build a landing page"))

    assert not result.success
    assert result.friendly_error["category"] == "auth"
    assert result.friendly_error["suggestion"] == "Please check your API key configuration."


@pytest.mark.asyncio
async def test_run_pipeline_wrapper(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    completion = ScriptedCompletion({
        "intent": {"intent": "style_change", "confidence": 0.9},
        "modification": code_reply(GOOD_COMPONENT),
    })

    result = await run_pipeline("make it blue", EXISTING, completion=completion, run_tests=False)

    assert result.success
    assert result.metadata["operation"] == "modify"
