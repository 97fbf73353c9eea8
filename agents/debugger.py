import json
from dataclasses import dataclass, field
from typing import List, Mapping

from agents.base import CollaboratorAgent
from core.exceptions import CollaboratorError
from core.logging_utils import log_json
from core.schema import DiagnosisReply, RepairReply
from core.types import ChangeRequest, FileOperation

DEBUGGER_SYSTEM_PROMPT = """You are an expert debugging AI for React projects.
Respond with a single JSON object and nothing else."""

DIAGNOSE_PROMPT = """Analyze the bug report below and locate its cause.

Bug report:
{message}

Files:
{files}

Provide your response as a JSON object with the following keys:
- "rootCause": a concise explanation of the probable cause
- "fixStrategy": what to change to resolve it
- "affectedFiles": list of file names that must change
"""

REPAIR_PROMPT = """The following files failed validation (attempt {cycle}).

Errors:
{errors}

Files:
{files}

Fix the errors without changing unrelated behaviour. Reply with a JSON object:
- "canFix": true/false
- "files": [{{"filename": "...", "content": "<complete corrected file>"}}] for every file you changed
- "message": short description of the fix
"""


@dataclass
class Diagnosis:
    root_cause: str
    fix_strategy: str
    affected_files: List[str] = field(default_factory=list)
    fallback: bool = False

    def as_hint(self) -> str:
        return f"Root cause: {self.root_cause}. Fix: {self.fix_strategy}"


@dataclass
class RepairOutcome:
    success: bool
    repaired_files: List[FileOperation] = field(default_factory=list)
    message: str = ""


def _render_files(files: Mapping[str, str]) -> str:
    return "\n\n".join(f"--- {name} ---\n{content}" for name, content in files.items())


class RepairAgent(CollaboratorAgent):
    """
    Diagnoses bug reports and repairs files that failed validation.

    ``diagnose`` feeds the debug operation; ``repair`` is the repair step of
    the validation loop. Neither raises on collaborator failure: ``diagnose``
    returns a fallback diagnosis and ``repair`` reports ``success=False``.
    """
    name = "debugger"
    role = "debugging"
    max_tokens = 8000
    temperature = 0.2

    async def diagnose(self, request: ChangeRequest) -> Diagnosis:
        prompt = DIAGNOSE_PROMPT.format(message=request.message, files=_render_files(request.current_files) or "(none)")
        try:
            reply = await self.ask_json(DiagnosisReply, DEBUGGER_SYSTEM_PROMPT, prompt)
        except CollaboratorError as e:
            log_json("ERROR", "debugger_diagnosis_failed", details={"error": str(e)})
            return Diagnosis(
                root_cause="Diagnosis unavailable",
                fix_strategy=request.message,
                affected_files=list(request.current_files)[:1],
                fallback=True,
            )
        affected = [f for f in reply.affected_files if f in request.current_files]
        return Diagnosis(reply.root_cause, reply.fix_strategy, affected or list(request.current_files)[:1])

    async def repair(self, files: List[FileOperation], error_summary: str, cycle: int) -> RepairOutcome:
        by_name = {op.filename: op for op in files}
        prompt = REPAIR_PROMPT.format(
            cycle=cycle,
            errors=error_summary,
            files=_render_files({op.filename: op.content for op in files}),
        )
        try:
            reply = await self.ask_json(RepairReply, DEBUGGER_SYSTEM_PROMPT, prompt)
        except CollaboratorError as e:
            log_json("ERROR", "debugger_repair_failed", details={"cycle": cycle, "error": str(e)})
            return RepairOutcome(False, message=f"Repair failed: {e}")

        if not reply.can_fix or not reply.files:
            log_json("WARN", "debugger_cannot_fix", details={"cycle": cycle, "message": reply.message})
            return RepairOutcome(False, message=reply.message or "Debugger could not produce a fix")

        repaired = []
        for item in reply.files:
            original = by_name.get(item.filename)
            if original is not None:
                repaired.append(original.with_content(item.content, validated=False))
            else:
                repaired.append(FileOperation("create", item.filename, item.content))
        log_json("INFO", "debugger_repair_proposed",
                 details={"cycle": cycle, "files": json.dumps([op.filename for op in repaired])})
        return RepairOutcome(True, repaired, reply.message)
