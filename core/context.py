"""Per-run conversation and project state.

:class:`PipelineContext` is built once at pipeline entry from the persistent
store and saved once at exit; stages only read and update the in-memory copy.
"""
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from core.logging_utils import log_json
from core.types import FileOperation, Plan

CONVERSATION_KEY = "conversation_memory"
PROJECT_KEY = "project_context"
MAX_TURNS = 10


@dataclass
class ConversationMemory:
    turns: List[Dict[str, Any]] = field(default_factory=list)
    file_history: List[Dict[str, Any]] = field(default_factory=list)

    def add_turn(self, role: str, content: str) -> None:
        self.turns.append({"role": role, "content": content, "ts": time.time()})
        del self.turns[:-MAX_TURNS]

    def record_file_operations(self, operations: Sequence[FileOperation]) -> None:
        stamp = time.time()
        for op in operations:
            self.file_history.append({"filename": op.filename, "type": op.type, "ts": stamp})
        del self.file_history[:-50]

    def summary(self, last: int = 3) -> str:
        recent = [t for t in self.turns if t["role"] == "user"][-last:]
        return "\n".join(f"- {t['content'][:200]}" for t in recent)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ConversationMemory":
        data = data or {}
        return cls(turns=list(data.get("turns", []))[-MAX_TURNS:],
                   file_history=list(data.get("file_history", [])))


@dataclass
class ProjectContext:
    app_identity: Dict[str, Any] = field(default_factory=dict)
    color_scheme: Dict[str, Any] = field(default_factory=dict)
    known_files: List[str] = field(default_factory=list)
    last_summary: str = ""

    def update_from_plan(self, plan: Plan) -> None:
        if plan.trivial:
            return
        if plan.app_identity:
            self.app_identity = dict(plan.app_identity)
        if plan.color_scheme:
            self.color_scheme = dict(plan.color_scheme)
        if plan.summary:
            self.last_summary = plan.summary

    def update_from_operations(self, operations: Sequence[FileOperation]) -> None:
        for op in operations:
            if op.filename not in self.known_files:
                self.known_files.append(op.filename)

    def summary(self) -> str:
        parts = []
        if self.app_identity:
            parts.append(f"App identity: {self.app_identity}")
        if self.color_scheme:
            parts.append(f"Colour scheme: {self.color_scheme}")
        if self.known_files:
            parts.append(f"Known files: {', '.join(self.known_files)}")
        return "\n".join(parts)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ProjectContext":
        data = data or {}
        return cls(
            app_identity=dict(data.get("app_identity", {})),
            color_scheme=dict(data.get("color_scheme", {})),
            known_files=list(data.get("known_files", [])),
            last_summary=data.get("last_summary", ""),
        )


@dataclass
class PipelineContext:
    conversation: ConversationMemory = field(default_factory=ConversationMemory)
    project: ProjectContext = field(default_factory=ProjectContext)

    @classmethod
    def load(cls, store) -> "PipelineContext":
        return cls(
            conversation=ConversationMemory.from_dict(store.read(CONVERSATION_KEY, {})),
            project=ProjectContext.from_dict(store.read(PROJECT_KEY, {})),
        )

    def save(self, store) -> None:
        store.write(CONVERSATION_KEY, asdict(self.conversation))
        store.write(PROJECT_KEY, asdict(self.project))
        log_json("INFO", "pipeline_context_saved",
                 details={"turns": len(self.conversation.turns), "known_files": len(self.project.known_files)})

    def summary(self) -> str:
        parts = [self.project.summary()]
        recent = self.conversation.summary()
        if recent:
            parts.append("Recent requests:\n" + recent)
        return "\n".join(p for p in parts if p)
