"""Validate → repair loop over a pluggable execution backend.

States::

    Validate ──ok──────────────▶ Success
       │ fail, cycles left
       ▼
    Repair ──fixed──▶ Validate
       │ cannot fix
       ▼
    ExhaustedRetries ◀── fail, no cycles left

At most ``max_cycles`` validations run. Exhaustion is not an error: the loop
reports it (warning event, ``exhausted=True``) and hands back the latest
files so the caller can still deliver them.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from agents.sandbox import ValidationExecutionBackend, extract_error_messages
from core.events import EventBus, EventType
from core.logging_utils import log_json
from core.types import DebugAttempt, Diagnostic, FileOperation, ValidationResult


@dataclass
class ValidationOutcome:
    operations: List[FileOperation]
    success: bool
    cycles: int
    results: List[ValidationResult] = field(default_factory=list)
    attempts: List[DebugAttempt] = field(default_factory=list)
    exhausted: bool = False

    def test_results(self) -> List[Dict]:
        return [
            {"cycle": idx, "success": r.success, "summary": r.summary, "method": r.method,
             "errors": len(r.errors), "warnings": len(r.warnings)}
            for idx, r in enumerate(self.results, 1)
        ]


def merge_repairs(operations: List[FileOperation], repaired: List[FileOperation]) -> List[FileOperation]:
    """Overlay repaired files onto *operations* by filename, keeping order; new files are appended."""
    by_name = {op.filename: op for op in repaired}
    merged = []
    for op in operations:
        fix = by_name.pop(op.filename, None)
        merged.append(op.with_content(fix.content, validated=False) if fix is not None else op)
    merged.extend(by_name.values())
    return merged


class ValidationExecutionLoop:
    def __init__(self, backend: ValidationExecutionBackend, repair_agent, events: EventBus,
                 max_cycles: int = 3, timeout: float = 5.0):
        if max_cycles < 1:
            raise ValueError("max_cycles must be at least 1")
        self.backend = backend
        self.repair_agent = repair_agent
        self.events = events
        self.max_cycles = max_cycles
        self.timeout = timeout

    def _validation_set(self, operations: List[FileOperation], baseline: Mapping[str, str]) -> List[FileOperation]:
        if self.backend.method != "command" or not baseline:
            return operations
        touched = {op.filename for op in operations}
        untouched = [FileOperation("modify", name, content) for name, content in baseline.items()
                     if name not in touched]
        return operations + untouched

    async def _validate(self, files: List[FileOperation]) -> ValidationResult:
        try:
            return await self.backend.run(files, self.timeout)
        except Exception as e:
            log_json("ERROR", "validation_backend_failed", details={"error": str(e)})
            return ValidationResult(False, [Diagnostic("backend-error", str(e))],
                                    "Validation backend failed", self.backend.method)

    async def run(self, operations: List[FileOperation],
                  baseline: Optional[Mapping[str, str]] = None) -> ValidationOutcome:
        current = list(operations)
        results: List[ValidationResult] = []
        attempts: List[DebugAttempt] = []
        cycle = 0

        while True:
            cycle += 1
            self.events.phase("Validating code", cycle=cycle, max_cycles=self.max_cycles,
                              method=self.backend.method)
            files = self._validation_set(current, baseline or {})
            result = await self._validate(files)
            results.append(result)
            log_json("INFO", "validation_cycle",
                     details={"cycle": cycle, "success": result.success, "summary": result.summary})

            if result.success:
                current = [op if op.error else op.with_content(op.content, validated=True) for op in current]
                self.events.emit(EventType.SUCCESS, result.summary, cycle=cycle)
                return ValidationOutcome(current, True, cycle, results, attempts)

            if cycle >= self.max_cycles:
                self.events.warning(f"Validation still failing after {cycle} cycle(s); returning best effort",
                                    cycle=cycle, summary=result.summary)
                return ValidationOutcome(current, False, cycle, results, attempts, exhausted=True)

            error_summary = extract_error_messages(result) or result.summary
            self.events.phase("Fixing the bug", cycle=cycle, errors=len(result.errors))
            repair = await self.repair_agent.repair(files, error_summary, cycle)
            attempts.append(DebugAttempt(cycle, error_summary, repair.repaired_files, repair.success, repair.message))

            if not repair.success:
                self.events.warning(f"Automatic repair failed: {repair.message}; returning best effort",
                                    cycle=cycle, summary=result.summary)
                return ValidationOutcome(current, False, cycle, results, attempts, exhausted=True)

            current = merge_repairs(current, repair.repaired_files)
