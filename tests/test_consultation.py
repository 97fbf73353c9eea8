import asyncio

import pytest

from core.consultation import (
    DEFAULT_FALLBACK,
    Answer,
    ConsultationBus,
    ConsultationKind,
    ConsultationRequest,
    ReviewerHandler,
    analyzer_handler,
    best_practice_advice,
    component_structure,
    default_bus,
    extract_dependencies,
    find_code_locations,
    planner_handler,
    suggest_file_structure,
)
from core.types import Issue, ReviewVerdict


def ask(kind, to_stage="analyzer", question="", **context):
    return ConsultationRequest(kind, "generator", to_stage, question, context)


@pytest.mark.asyncio
async def test_completed_consultation_is_recorded():
    bus = ConsultationBus()

    async def handler(req):
        return Answer("use hooks", {"ok": True})

    bus.register("reviewer", handler)
    answer = await bus.request(ask(ConsultationKind.ASK_BEST_PRACTICE, "reviewer"))

    assert answer.text == "use hooks"
    assert not answer.fallback
    record = bus.history()[0]
    assert record.status == "completed"
    assert record.id == "consult_1"
    assert record.error is None


@pytest.mark.asyncio
async def test_timeout_returns_the_kind_specific_fallback():
    bus = ConsultationBus(timeout=0.01)

    async def slow(req):
        await asyncio.sleep(1)
        return Answer("too late")

    bus.register("analyzer", slow)
    answer = await bus.request(ask(ConsultationKind.ASK_DEPENDENCIES))

    assert answer.fallback
    assert answer.text == "Use standard React dependencies"
    assert bus.history()[0].status == "timeout"


@pytest.mark.asyncio
async def test_handler_error_and_unknown_target_fall_back():
    bus = ConsultationBus()

    async def broken(req):
        raise RuntimeError("handler bug")

    bus.register("planner", broken)
    failed = await bus.request(ask(ConsultationKind.ASK_SHOULD_CREATE_NEW, "planner"))
    unknown = await bus.request(ask(ConsultationKind.ASK_FILE_STRUCTURE, "nobody"))

    assert failed.text == "Create new file if in doubt"
    assert unknown.text == DEFAULT_FALLBACK
    assert [r.status for r in bus.history()] == ["failed", "unknown_target"]
    assert bus.history()[0].error == "handler bug"


@pytest.mark.asyncio
async def test_disabled_bus_never_calls_handlers():
    bus = ConsultationBus(enabled=False)
    called = []

    async def handler(req):
        called.append(req)
        return Answer("x")

    bus.register("analyzer", handler)
    answer = await bus.request(ask(ConsultationKind.ASK_DEPENDENCIES))

    assert called == []
    assert answer.fallback
    assert bus.history()[0].status == "disabled"


@pytest.mark.asyncio
async def test_history_filters_and_stats():
    bus = default_bus()
    await bus.request(ask(ConsultationKind.ASK_DEPENDENCIES))
    await bus.request(ask(ConsultationKind.ASK_FILE_STRUCTURE, "planner"))
    await bus.request(ask(ConsultationKind.ASK_DEPENDENCIES, "planner"))

    assert len(bus.history(to_stage="planner")) == 2
    assert len(bus.history(kind=ConsultationKind.ASK_DEPENDENCIES)) == 1
    assert len(bus.history(status="failed")) == 1
    assert [r.id for r in bus.history(limit=1)] == ["consult_3"]

    stats = bus.stats()
    assert stats["total"] == 3
    assert stats["completed"] == 2
    assert stats["failed"] == 1
    assert stats["success_rate"] == 67


def test_empty_bus_stats():
    assert ConsultationBus().stats() == {
        "total": 0, "completed": 0, "failed": 0, "average_duration_ms": 0, "success_rate": 100,
    }


@pytest.mark.asyncio
async def test_analyzer_handler_answers_structure_and_location():
    files = {
        "App.jsx": "import Header from './Header';\nfunction App() { return <Header/>; }\n",
        "Header.jsx": "const Header = () => <h1>Title</h1>;\nexport default Header;\n",
    }
    structure = await analyzer_handler(ask(ConsultationKind.ASK_COMPONENT_STRUCTURE, current_files=files))
    location = await analyzer_handler(ask(ConsultationKind.ASK_CODE_LOCATION, question="title", current_files=files))

    assert {c["name"] for c in structure.data["components"]} == {"App", "Header"}
    assert location.data["locations"][0]["file"] == "Header.jsx"
    assert location.data["locations"][0]["matches"][0]["line"] == 1

    with pytest.raises(ValueError):
        await analyzer_handler(ask(ConsultationKind.ASK_FILE_STRUCTURE))


@pytest.mark.asyncio
async def test_reviewer_handler_scores_code():
    class FakeReviewer:
        async def review_code(self, filename, content, request, detail=None):
            return ReviewVerdict(62, False, [Issue("high", "code", "mutates state", "copy first")],
                                 overall_feedback="needs work")

    handler = ReviewerHandler(FakeReviewer())
    answer = await handler(ask(ConsultationKind.ASK_CODE_QUALITY, "reviewer", code="x.push(1)"))

    assert answer.text == "needs work"
    assert answer.data == {"quality_score": 62, "approved": False, "suggestions": ["copy first"]}

    with pytest.raises(ValueError):
        await handler(ask(ConsultationKind.ASK_CODE_QUALITY, "reviewer"))

    advice = await handler(ask(ConsultationKind.ASK_BEST_PRACTICE, "reviewer", question="how to manage state?"))
    assert advice.text.startswith("Use useState")


@pytest.mark.asyncio
async def test_default_bus_answers_every_kind():
    class FakeReviewer:
        async def review_code(self, filename, content, request, detail=None):
            return ReviewVerdict(90, True, [], overall_feedback="fine")

    owners = {
        ConsultationKind.ASK_DEPENDENCIES: "analyzer",
        ConsultationKind.ASK_COMPONENT_STRUCTURE: "analyzer",
        ConsultationKind.ASK_CODE_LOCATION: "analyzer",
        ConsultationKind.ASK_CODE_QUALITY: "reviewer",
        ConsultationKind.ASK_BEST_PRACTICE: "reviewer",
        ConsultationKind.ASK_SHOULD_CREATE_NEW: "planner",
        ConsultationKind.ASK_FILE_STRUCTURE: "planner",
    }
    assert set(owners) == set(ConsultationKind)

    bus = default_bus(FakeReviewer())
    for kind, stage in owners.items():
        answer = await bus.request(ask(kind, stage, question="state", code="const x = 1;",
                                       current_files={"App.jsx": "export default function App() {}"}))
        assert not answer.fallback, kind
    assert bus.stats()["completed"] == len(owners)

@pytest.mark.asyncio
async def test_planner_handler():
    new = await planner_handler(ask(ConsultationKind.ASK_SHOULD_CREATE_NEW, "planner", current_files={}))
    existing = await planner_handler(ask(ConsultationKind.ASK_SHOULD_CREATE_NEW, "planner",
                                         current_files={"App.jsx": ""}))
    assert new.data["recommendation"] == "create-new"
    assert existing.data["recommendation"] == "modify-existing"


def test_extract_dependencies():
    files = {
        "App.jsx": "import React from 'react';\nimport { Button } from '@mui/material/Button';\n",
        "util.js": "import './styles.css';\nimport dayjs from \"dayjs\";\n",
    }
    assert extract_dependencies(files) == ["react", "react-dom", "@mui/material", "dayjs"]
    assert extract_dependencies({}) == ["react", "react-dom"]


def test_component_structure_ignores_non_component_files():
    found = component_structure({"helpers.js": "function Helper() {}", "View.tsx": "class View extends X {}"})
    assert found == [{"name": "View", "file": "View.tsx", "type": "class"}]


def test_find_code_locations_caps_matches_per_file():
    files = {"a.jsx": "\n".join(["title"] * 5)}
    assert len(find_code_locations("TITLE", files)[0]["matches"]) == 3
    assert find_code_locations("", files) == []


def test_best_practice_and_file_structure():
    assert "React.memo" in best_practice_advice("performance tips")
    assert best_practice_advice("anything else").startswith("Follow React best practices")
    assert suggest_file_structure({})["recommended"] == "flat"
    assert suggest_file_structure({"a": "", "b": ""})["recommended"] == "simple"
    assert suggest_file_structure({str(i): "" for i in range(6)})["recommended"] == "organized"
