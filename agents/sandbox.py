"""Validation backends for generated file sets.

Two interchangeable implementations of :class:`ValidationExecutionBackend`:

* :class:`SandboxBackend` runs in-process checks: browser-safety patterns for
  script files (``require(``, ``process.``, ``__dirname``, ``<a href="#">``,
  packages the preview runtime does not ship, unbalanced brackets), cross-file
  import checks, and compile/parse checks for Python and JSON files. Python
  files that compile are then executed in a fresh interpreter (``__main__``
  blocks skipped) so uncaught exceptions surface as ``runtime-error``.
* :class:`CommandBackend` writes the file set into a temporary directory and
  runs test commands (``npm test`` by default) as subprocesses, capturing exit
  code, stdout and stderr per command.

Backends never raise for a failing file set: every outcome, including
timeouts and refused commands, comes back as a :class:`ValidationResult` so the
validation loop can route it to repair.

Typical usage::

    backend = SandboxBackend()
    result = await backend.run(file_operations, timeout=5)
    if not result.success:
        print(extract_error_messages(result))
"""
import ast
import asyncio
import json
import posixpath
import re
import shlex
import sys
import tempfile
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from core.exceptions import SecurityError
from core.logging_utils import log_json
from core.sanitizer import sanitize_command, sanitize_path
from core.types import Diagnostic, FileOperation, ValidationResult

SCRIPT_SUFFIXES = {".js", ".jsx", ".ts", ".tsx", ".mjs"}
BANNED_PACKAGES = ("axios", "lodash", "moment", "uuid", "prop-types")
DEFAULT_TEST_COMMANDS = ["npm test"]

_PLACEHOLDER_LINK = re.compile(r"""<a\s+[^>]*href=["']#["']""")
_IMMEDIATE_ONCLICK = re.compile(r"onClick=\{\w+\([^)]*\)\}")
_MUTATION = re.compile(r"\w+\.(push|pop|shift|unshift|splice)\(")
_BRACKETS = {"}": "{", "]": "[", ")": "("}
_UNAVAILABLE_GLOBALS = (
    ("axios", "use the fetch API"),
    ("_", "use native array/object methods"),
    ("PropTypes", "remove the propTypes block"),
)
_RELATIVE_IMPORT = re.compile(
    r"""^\s*import\s+(?:(?P<default>\w+)\s*,?\s*)?(?:\{(?P<named>[^}]*)\}\s*)?(?:from\s+)?["'](?P<src>\.\.?/[^"']+)["']""",
    re.MULTILINE,
)
_RESOLVE_SUFFIXES = ("", ".jsx", ".js", ".tsx", ".ts", "/index.jsx", "/index.js")
_EXPORT = re.compile(r"^\s*export\s", re.MULTILINE)
_ENTRY_FILES = {"App.jsx", "App.tsx", "main.jsx", "main.tsx", "main.js", "index.jsx", "index.tsx", "index.js"}
_RUNNER = "_patchwright_runner.py"
_RUNNER_SOURCE = "import runpy, sys\nrunpy.run_path(sys.argv[1], run_name=\"__sandbox__\")\n"


class ValidationExecutionBackend(ABC):
    method = "sandbox"

    @abstractmethod
    async def run(self, files: Sequence[FileOperation], timeout: float) -> ValidationResult:
        raise NotImplementedError


def _unbalanced(code: str) -> bool:
    counts = {"{": 0, "[": 0, "(": 0}
    for ch in code:
        if ch in counts:
            counts[ch] += 1
        elif ch in _BRACKETS:
            counts[_BRACKETS[ch]] -= 1
    return any(counts.values())


def check_script(filename: str, code: str) -> List[Diagnostic]:
    """Browser-compatibility checks for one JS/JSX/TS file."""
    found: List[Diagnostic] = []

    def critical(kind: str, message: str):
        found.append(Diagnostic(kind, message, file=filename))

    if "require(" in code:
        critical("browser-incompatible", "require() is not available in browser (use ES6 import)")
    if "process." in code:
        critical("nodejs-api", "process API not available in browser")
    if "__dirname" in code or "__filename" in code:
        critical("nodejs-api", "__dirname/__filename not available in browser")
    if _PLACEHOLDER_LINK.search(code):
        critical("sandbox-navigation", '<a href="#"> causes a blank preview (use <button> instead)')
    for pkg in BANNED_PACKAGES:
        if f'from "{pkg}"' in code or f"from '{pkg}'" in code:
            critical("banned-package", f'Package "{pkg}" not available in the preview runtime')
    for name, hint in _UNAVAILABLE_GLOBALS:
        used = re.search(rf"(?<![\w$.]){re.escape(name)}\.\w", code)
        if used and not re.search(rf"import\s+{re.escape(name)}\b", code):
            critical("undefined-reference", f"{name} is used but not available in the preview runtime ({hint})")
    if _unbalanced(code):
        critical("syntax-error", "Unmatched brackets/braces/parentheses")

    if _IMMEDIATE_ONCLICK.search(code):
        found.append(Diagnostic("event-handler",
                                "Function called immediately in onClick (should be onClick={() => fn()} or onClick={fn})",
                                file=filename, severity="warning"))
    if _MUTATION.search(code):
        found.append(Diagnostic("state-mutation", "Possible direct state mutation (use immutable updates)",
                                file=filename, severity="warning"))
    return found


def check_file(op: FileOperation) -> List[Diagnostic]:
    if not op.content.strip():
        return [Diagnostic("missing-content", "File has no content", file=op.filename, severity="warning")]
    suffix = Path(op.filename).suffix.lower()
    if suffix in SCRIPT_SUFFIXES:
        return check_script(op.filename, op.content)
    if suffix == ".py":
        try:
            ast.parse(op.content, filename=op.filename)
        except SyntaxError as e:
            return [Diagnostic("syntax-error", f"{e.msg} (line {e.lineno})", file=op.filename)]
    elif suffix == ".json":
        try:
            json.loads(op.content)
        except json.JSONDecodeError as e:
            return [Diagnostic("syntax-error", f"Invalid JSON: {e.msg} (line {e.lineno})", file=op.filename)]
    elif suffix == ".css" and _unbalanced(op.content):
        return [Diagnostic("syntax-error", "Unmatched brackets/braces/parentheses", file=op.filename)]
    return []


def _resolve(filename: str, src: str, universe: set) -> Optional[str]:
    path = posixpath.normpath(posixpath.join(posixpath.dirname(filename), src))
    if path.startswith("../"):
        return None
    return next((path + suffix for suffix in _RESOLVE_SUFFIXES if path + suffix in universe), None)


def _import_cycles(graph: Dict[str, List[str]]) -> List[List[str]]:
    cycles: List[List[str]] = []
    seen = set()

    def visit(node: str, path: List[str]):
        if node in path:
            cycle = path[path.index(node):]
            key = frozenset(cycle)
            if key not in seen:
                seen.add(key)
                cycles.append(cycle + [node])
            return
        for dep in graph.get(node, ()):
            visit(dep, path + [node])

    for start in graph:
        visit(start, [])
    return cycles


def check_cross_file(files: Sequence[FileOperation], known_files: Mapping[str, str] = None) -> List[Diagnostic]:
    """Consistency between script files.

    Relative imports must resolve, imported components must be rendered and
    imported hooks called, every non-entry module must export something, and
    the produced files must not import each other in a cycle. Only a module
    without exports is an error.
    """
    universe = {posixpath.normpath(name) for name in known_files or {}}
    universe.update(posixpath.normpath(op.filename) for op in files)
    found: List[Diagnostic] = []
    graph: Dict[str, List[str]] = {}

    def warn(kind: str, message: str, filename: str):
        found.append(Diagnostic(kind, message, file=filename, severity="warning"))

    for op in files:
        if Path(op.filename).suffix.lower() not in SCRIPT_SUFFIXES or not op.content.strip():
            continue
        if Path(op.filename).name not in _ENTRY_FILES and not _EXPORT.search(op.content):
            found.append(Diagnostic("missing-export", "File has no exports (add `export default ...`)",
                                    file=op.filename))
        node = posixpath.normpath(op.filename)
        graph[node] = []
        for m in _RELATIVE_IMPORT.finditer(op.content):
            target = _resolve(op.filename, m.group("src"), universe)
            if target is None:
                warn("unresolved-import", f'Import target "{m.group("src")}" not found', op.filename)
            else:
                graph[node].append(target)
            names = [m.group("default")] + [p.split(" as ")[-1].strip() for p in (m.group("named") or "").split(",")]
            rest = op.content[:m.start()] + op.content[m.end():]
            for name in filter(None, names):
                if name.startswith("use"):
                    if not re.search(rf"(?<![\w$]){re.escape(name)}\s*\(", rest):
                        warn("unused-import", f'Hook "{name}" imported but never called', op.filename)
                elif name[0].isupper() and not re.search(rf"(?<![\w$]){re.escape(name)}(?![\w$])", rest):
                    warn("unused-import", f'Component "{name}" imported but never used', op.filename)

    for cycle in _import_cycles({node: [d for d in deps if d in graph] for node, deps in graph.items()}):
        warn("circular-import", "Circular import: " + " -> ".join(cycle), cycle[0])
    return found


def runtime_diagnostic(filename: str, stderr: str) -> Diagnostic:
    """Turn the traceback of a failed run into a diagnostic; missing third-party modules only warn."""
    lines = [line for line in stderr.strip().splitlines() if line.strip()]
    last = lines[-1].strip() if lines else "Process exited with an error"
    if last.startswith("ModuleNotFoundError"):
        return Diagnostic("missing-dependency", last, file=filename, severity="warning", detail=stderr[-4000:])
    return Diagnostic("runtime-error", last, file=filename, detail=stderr[-4000:])


class SandboxBackend(ValidationExecutionBackend):
    """In-process static checks, cross-file checks and a runtime pass for Python files.

    Args:
        known_files: Files of the surrounding project (path to content). Imports
            may resolve against them and Python files may import them.
        run_python: Execute ``.py`` files that pass the static checks in a
            fresh interpreter and report uncaught exceptions.
    """

    method = "sandbox"

    def __init__(self, known_files: Optional[Mapping[str, str]] = None, run_python: bool = True,
                 python_exec: Optional[str] = None):
        self.known_files = dict(known_files or {})
        self.run_python = run_python
        self.python_exec = python_exec or sys.executable

    def _analyse(self, files: Sequence[FileOperation]) -> List[Diagnostic]:
        diagnostics: List[Diagnostic] = []
        for op in files:
            diagnostics.extend(check_file(op))
        diagnostics.extend(check_cross_file(files, self.known_files))
        return diagnostics

    async def _execute(self, op: FileOperation, root: Path, timeout: float) -> Optional[Diagnostic]:
        proc = await asyncio.create_subprocess_exec(
            self.python_exec, "-B", "-E", "-s", str(root / _RUNNER), op.filename,
            cwd=str(root),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.communicate()
            return Diagnostic("timeout", f"Import did not finish within {timeout:.1f}s", file=op.filename,
                              severity="warning")
        if proc.returncode == 0:
            return None
        return runtime_diagnostic(op.filename, stderr.decode("utf-8", "replace"))

    async def _runtime_checks(self, files: Sequence[FileOperation], skip: set, timeout: float) -> List[Diagnostic]:
        targets = [op for op in files
                   if Path(op.filename).suffix.lower() == ".py" and op.content.strip() and op.filename not in skip]
        if not targets:
            return []
        diagnostics: List[Diagnostic] = []
        deadline = time.monotonic() + timeout
        with tempfile.TemporaryDirectory(prefix="patchwright_sandbox_") as tmp:
            root = Path(tmp)
            tree = {**self.known_files, **{op.filename: op.content for op in files}}
            try:
                for name, content in tree.items():
                    target = sanitize_path(name, root)
                    target.parent.mkdir(parents=True, exist_ok=True)
                    target.write_text(content, encoding="utf-8")
            except SecurityError as e:
                return [Diagnostic("security", str(e))]
            (root / _RUNNER).write_text(_RUNNER_SOURCE, encoding="utf-8")

            for op in targets:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    diagnostics.append(Diagnostic("timeout", "Runtime checks ran out of time", file=op.filename,
                                                  severity="warning"))
                    break
                try:
                    found = await self._execute(op, root, remaining)
                except OSError as e:
                    log_json("ERROR", "sandbox_runtime_failed", details={"file": op.filename, "error": str(e)})
                    found = Diagnostic("runtime-unavailable", f"Could not start the interpreter: {e}",
                                       file=op.filename, severity="warning")
                if found is not None:
                    diagnostics.append(found)
        return diagnostics

    async def run(self, files: Sequence[FileOperation], timeout: float) -> ValidationResult:
        started = time.monotonic()
        files = list(files)
        try:
            diagnostics = await asyncio.wait_for(asyncio.to_thread(self._analyse, files), timeout=timeout)
        except asyncio.TimeoutError:
            diagnostics = [Diagnostic("timeout", f"Static validation exceeded {timeout}s")]
        if self.run_python:
            broken = {d.file for d in diagnostics if d.severity == "error" and d.file}
            remaining = max(timeout - (time.monotonic() - started), 0.1)
            diagnostics.extend(await self._runtime_checks(files, broken, remaining))
        errors = [d for d in diagnostics if d.severity == "error"]
        summary = (f"Static analysis passed for {len(files)} file(s)" if not errors
                   else f"Static analysis found {len(errors)} critical issue(s)")
        log_json("INFO", "sandbox_validation_complete",
                 details={"files": len(files), "errors": len(errors), "warnings": len(diagnostics) - len(errors)})
        return ValidationResult(
            success=not errors,
            diagnostics=diagnostics,
            summary=summary,
            method=self.method,
            duration_ms=round((time.monotonic() - started) * 1000, 1),
        )


class CommandBackend(ValidationExecutionBackend):
    method = "command"

    def __init__(self, commands: Optional[Sequence[str]] = None, allowed_commands: Sequence[str] = ()):
        self.commands = list(commands or DEFAULT_TEST_COMMANDS)
        self.allowed_commands = tuple(allowed_commands)

    async def _run_command(self, command: str, cwd: Path, timeout: float) -> Dict:
        result = {"command": command, "exit_code": -1, "stdout": "", "stderr": "", "timed_out": False}
        argv = shlex.split(command)
        try:
            sanitize_command(argv, self.allowed_commands)
        except SecurityError as e:
            result["stderr"] = str(e)
            return result
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv, cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            result["stderr"] = f"Failed to start '{argv[0]}': {e}"
            return result
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            stdout, stderr = await proc.communicate()
            result["timed_out"] = True
            result["stderr"] = f"Timed out after {timeout}s\n" + stderr.decode("utf-8", "replace")
            result["stdout"] = stdout.decode("utf-8", "replace")
            return result
        result["exit_code"] = proc.returncode
        result["stdout"] = stdout.decode("utf-8", "replace")
        result["stderr"] = stderr.decode("utf-8", "replace")
        return result

    def _materialise(self, files: Sequence[FileOperation], root: Path):
        for op in files:
            target = sanitize_path(op.filename, root)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(op.content, encoding="utf-8")

    async def run(self, files: Sequence[FileOperation], timeout: float) -> ValidationResult:
        started = time.monotonic()
        raw: List[Dict] = []
        diagnostics: List[Diagnostic] = []
        with tempfile.TemporaryDirectory(prefix="patchwright_") as tmp:
            root = Path(tmp)
            try:
                self._materialise(files, root)
            except SecurityError as e:
                diagnostics.append(Diagnostic("security", str(e)))
                return ValidationResult(False, diagnostics, "File set rejected", self.method)
            for command in self.commands:
                outcome = await self._run_command(command, root, timeout)
                raw.append(outcome)
                if outcome["exit_code"] != 0:
                    diagnostics.append(Diagnostic(
                        "timeout" if outcome["timed_out"] else "command-failed",
                        f"'{command}' exited with {outcome['exit_code']}",
                        detail=(outcome["stderr"] or outcome["stdout"])[-4000:],
                    ))
        failed = sum(1 for r in raw if r["exit_code"] != 0)
        summary = f"All {len(raw)} command(s) passed" if not failed else f"{failed}/{len(raw)} command(s) failed"
        log_json("INFO", "command_validation_complete", details={"commands": len(raw), "failed": failed})
        return ValidationResult(
            success=failed == 0,
            diagnostics=diagnostics,
            summary=summary,
            method=self.method,
            duration_ms=round((time.monotonic() - started) * 1000, 1),
            raw=raw,
        )


def extract_error_messages(result: ValidationResult) -> str:
    """Format a failed validation for the repair collaborator."""
    lines: List[str] = []
    if result.method == "command":
        for outcome in result.raw:
            if outcome.get("exit_code") != 0:
                lines.append(f"=== Error from: {outcome['command']} ===")
                lines.append((outcome.get("stderr") or outcome.get("stdout") or "").strip())
        for diag in result.errors:
            if diag.kind == "security":
                lines.append(f"[security] {diag.message}")
        return "\n".join(lines)

    if result.errors:
        lines.append("=== Static Analysis Issues ===")
        for idx, diag in enumerate(result.errors, 1):
            where = f"{diag.file}: " if diag.file else ""
            lines.append(f"{idx}. [{diag.kind}] {where}{diag.message}")
            if diag.detail:
                lines.append(diag.detail.strip())
    return "\n".join(lines)


def select_backend(test_mode: str, test_commands: Sequence[str] = (),
                   allowed_commands: Sequence[str] = (), known_files: Optional[Mapping[str, str]] = None,
                   run_python: bool = True) -> ValidationExecutionBackend:
    """``auto`` uses the command runner only when test commands are configured."""
    if test_mode == "command" or (test_mode == "auto" and test_commands):
        return CommandBackend(test_commands, allowed_commands)
    return SandboxBackend(known_files, run_python=run_python)
