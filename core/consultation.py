"""
Inter-stage consultation.

A stage that needs a second opinion (which dependencies are in play, is this
code good enough, should a file be created or modified) asks another stage
through the :class:`ConsultationBus` instead of calling it directly. Requests
are bounded by a timeout; a timeout, a handler error or an unknown target all
degrade to a static fallback answer for the consultation kind, so asking
never fails the asker. Every request lands in an append-only history.

Built-in handlers answer for the ``analyzer``, ``reviewer`` and ``planner``
stages; :func:`default_bus` wires them up.
"""
from __future__ import annotations

import asyncio
import itertools
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from core.logging_utils import log_json


class ConsultationKind(str, Enum):
    ASK_DEPENDENCIES = "ask-dependencies"
    ASK_COMPONENT_STRUCTURE = "ask-component-structure"
    ASK_CODE_LOCATION = "ask-code-location"
    ASK_CODE_QUALITY = "ask-code-quality"
    ASK_BEST_PRACTICE = "ask-best-practice"
    ASK_SHOULD_CREATE_NEW = "ask-should-create-new"
    ASK_FILE_STRUCTURE = "ask-file-structure"


FALLBACK_ANSWERS = {
    ConsultationKind.ASK_DEPENDENCIES: "Use standard React dependencies",
    ConsultationKind.ASK_CODE_QUALITY: "Code looks reasonable, proceed with caution",
    ConsultationKind.ASK_SHOULD_CREATE_NEW: "Create new file if in doubt",
    ConsultationKind.ASK_BEST_PRACTICE: "Follow React best practices",
}
DEFAULT_FALLBACK = "Proceed with best judgment"


@dataclass
class ConsultationRequest:
    kind: ConsultationKind
    from_stage: str
    to_stage: str
    question: str = ""
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Answer:
    text: str
    data: Dict[str, Any] = field(default_factory=dict)
    fallback: bool = False


@dataclass
class ConsultationRecord:
    id: str
    request: ConsultationRequest
    status: str  # "completed" | "timeout" | "failed" | "unknown_target" | "disabled"
    answer: Answer
    duration_ms: float
    error: Optional[str] = None


Handler = Callable[[ConsultationRequest], Awaitable[Answer]]


def fallback_answer(kind: ConsultationKind) -> Answer:
    return Answer(FALLBACK_ANSWERS.get(kind, DEFAULT_FALLBACK), fallback=True)


class ConsultationBus:
    def __init__(self, timeout: float = 30.0, enabled: bool = True):
        self.timeout = timeout
        self.enabled = enabled
        self._handlers: Dict[str, Handler] = {}
        self._history: List[ConsultationRecord] = []
        self._ids = itertools.count(1)

    def register(self, stage: str, handler: Handler) -> None:
        self._handlers[stage] = handler

    async def request(self, req: ConsultationRequest) -> Answer:
        """Ask ``req.to_stage``; always returns an answer, falling back on any failure."""
        consultation_id = f"consult_{next(self._ids)}"
        started = time.monotonic()
        status, error = "completed", None
        handler = self._handlers.get(req.to_stage)

        if not self.enabled:
            status, answer = "disabled", fallback_answer(req.kind)
        elif handler is None:
            status, error, answer = "unknown_target", f"Unknown stage: {req.to_stage}", fallback_answer(req.kind)
        else:
            try:
                answer = await asyncio.wait_for(handler(req), timeout=self.timeout)
            except asyncio.TimeoutError:
                status, error = "timeout", f"No answer within {self.timeout}s"
                answer = fallback_answer(req.kind)
            except Exception as e:
                status, error = "failed", str(e)
                answer = fallback_answer(req.kind)

        record = ConsultationRecord(
            id=consultation_id,
            request=req,
            status=status,
            answer=answer,
            duration_ms=round((time.monotonic() - started) * 1000, 1),
            error=error,
        )
        self._history.append(record)
        level = "INFO" if status == "completed" else "WARN"
        log_json(level, "consultation_" + status,
                 details={"id": consultation_id, "kind": req.kind.value, "from": req.from_stage,
                          "to": req.to_stage, "error": error})
        return answer

    def history(self, from_stage: str = None, to_stage: str = None, kind: ConsultationKind = None,
                status: str = None, limit: int = 0) -> List[ConsultationRecord]:
        records = [
            r for r in self._history
            if (from_stage is None or r.request.from_stage == from_stage)
            and (to_stage is None or r.request.to_stage == to_stage)
            and (kind is None or r.request.kind == kind)
            and (status is None or r.status == status)
        ]
        return records[-limit:] if limit > 0 else records

    def stats(self) -> Dict[str, Any]:
        completed = [r for r in self._history if r.status == "completed"]
        total = len(self._history)
        return {
            "total": total,
            "completed": len(completed),
            "failed": total - len(completed),
            "average_duration_ms": round(sum(r.duration_ms for r in completed) / len(completed), 1) if completed else 0,
            "success_rate": round(len(completed) / total * 100) if total else 100,
        }


# ---------------------------------------------------------------------------
# Built-in handlers
# ---------------------------------------------------------------------------

_IMPORT = re.compile(r"""import\s+(?:[^'"]*?\s+from\s+)?['"]([^'"]+)['"]""")
_COMPONENT = re.compile(r"\b(function|const|class)\s+(\w+)")

BEST_PRACTICE_ADVICE = {
    "state": "Use useState for simple state, useReducer for complex state",
    "effect": "Use useEffect for side effects, clean up in return function",
    "props": "Destructure props and keep prop interfaces small and explicit",
    "performance": "Use React.memo, useMemo, and useCallback to optimize",
    "styling": "Use Tailwind CSS for consistent styling",
    "error": "Add error boundaries and proper error handling",
}


def extract_dependencies(files: Mapping[str, str]) -> List[str]:
    deps = ["react", "react-dom"]
    for content in files.values():
        for module in _IMPORT.findall(content or ""):
            if module.startswith("."):
                continue
            parts = module.split("/")
            package = "/".join(parts[:2]) if module.startswith("@") else parts[0]
            if package not in deps:
                deps.append(package)
    return deps


def component_structure(files: Mapping[str, str]) -> List[Dict[str, str]]:
    components = []
    for filename, content in files.items():
        if not filename.endswith((".jsx", ".tsx")):
            continue
        for keyword, name in _COMPONENT.findall(content or ""):
            if name[0].isupper():
                components.append({"name": name, "file": filename,
                                   "type": "class" if keyword == "class" else "functional"})
    return components


def find_code_locations(query: str, files: Mapping[str, str], per_file: int = 3) -> List[Dict[str, Any]]:
    term = (query or "").lower()
    if not term:
        return []
    locations = []
    for filename, content in files.items():
        if term not in (content or "").lower():
            continue
        matches = [
            {"line": idx, "content": line}
            for idx, line in enumerate(content.split("\n"), 1)
            if term in line.lower()
        ][:per_file]
        locations.append({"file": filename, "matches": matches})
    return locations


def best_practice_advice(question: str) -> str:
    lowered = (question or "").lower()
    for topic, advice in BEST_PRACTICE_ADVICE.items():
        if topic in lowered:
            return advice
    return "Follow React best practices: functional components, hooks, and clear prop interfaces"


def suggest_file_structure(files: Mapping[str, str]) -> Dict[str, Any]:
    count = len(files or {})
    if count == 0:
        return {"recommended": "flat", "folders": [],
                "reasoning": "Start with flat structure, organize later as needed"}
    if count < 5:
        return {"recommended": "simple", "folders": ["components"],
                "reasoning": "Simple structure with components folder"}
    return {"recommended": "organized", "folders": ["components", "hooks", "utils", "styles"],
            "reasoning": "Organized structure for larger projects"}


def _unsupported(req: ConsultationRequest) -> ValueError:
    return ValueError(f"{req.to_stage} cannot answer {req.kind.value}")


async def analyzer_handler(req: ConsultationRequest) -> Answer:
    files = req.context.get("current_files") or {}
    if req.kind == ConsultationKind.ASK_DEPENDENCIES:
        deps = extract_dependencies(files)
        text = ("No existing code to analyze. Use standard React dependencies." if not files
                else f"Project uses: {', '.join(deps)}")
        return Answer(text, {"dependencies": deps})
    if req.kind == ConsultationKind.ASK_COMPONENT_STRUCTURE:
        components = component_structure(files)
        suggestion = ("Consider organizing components into folders" if len(components) > 5
                      else "Component structure looks good")
        return Answer(f"Found {len(components)} components", {"components": components, "suggestion": suggestion})
    if req.kind == ConsultationKind.ASK_CODE_LOCATION:
        locations = find_code_locations(req.question, files)
        text = f"Found in {len(locations)} file(s)" if locations else "Not found in existing code"
        return Answer(text, {"locations": locations})
    raise _unsupported(req)


class ReviewerHandler:
    """Answers code-quality questions through the reviewer agent."""

    def __init__(self, reviewer):
        self.reviewer = reviewer

    async def __call__(self, req: ConsultationRequest) -> Answer:
        if req.kind == ConsultationKind.ASK_CODE_QUALITY:
            from core.types import ChangeRequest

            code = req.context.get("code")
            if not code:
                raise ValueError("No code provided for review")
            request = ChangeRequest(req.context.get("message") or req.question)
            verdict = await self.reviewer.review_code(req.context.get("filename", "temp.jsx"), code, request)
            return Answer(verdict.overall_feedback or f"Scored {verdict.quality_score:.0f}", {
                "quality_score": verdict.quality_score,
                "approved": verdict.approved,
                "suggestions": [i.suggestion for i in verdict.blocking_issues() if i.suggestion],
            })
        if req.kind == ConsultationKind.ASK_BEST_PRACTICE:
            return Answer(best_practice_advice(req.question))
        raise _unsupported(req)


async def planner_handler(req: ConsultationRequest) -> Answer:
    files = req.context.get("current_files") or {}
    if req.kind == ConsultationKind.ASK_SHOULD_CREATE_NEW:
        if not files:
            return Answer("Create new files - no existing code", {"recommendation": "create-new"})
        return Answer("Modify existing files when possible", {"recommendation": "modify-existing"})
    if req.kind == ConsultationKind.ASK_FILE_STRUCTURE:
        return Answer("Recommended file structure", {"structure": suggest_file_structure(files)})
    raise _unsupported(req)


def default_bus(reviewer=None, timeout: float = 30.0, enabled: bool = True) -> ConsultationBus:
    bus = ConsultationBus(timeout=timeout, enabled=enabled)
    bus.register("analyzer", analyzer_handler)
    bus.register("planner", planner_handler)
    if reviewer is not None:
        bus.register("reviewer", ReviewerHandler(reviewer))
    return bus
