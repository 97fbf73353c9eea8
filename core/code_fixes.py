"""Deterministic clean-up of generated script files.

Runs over every produced :class:`~core.types.FileOperation` before the
validate → repair loop, so the browser-compatibility problems the sandbox
flags most often (``require()``, PropTypes, axios/lodash imports, unused or
missing imports) are fixed without spending a repair cycle.

Each fix is a pure ``str -> str`` function; :func:`auto_fix` applies them in a
fixed order and is a no-op for anything that is not a script file.
"""
import re
from pathlib import Path
from typing import List, Tuple

from agents.sandbox import SCRIPT_SUFFIXES
from core.logging_utils import log_json
from core.types import FileOperation

_REQUIRE_DEFAULT = re.compile(r"""(?:const|let|var)\s+(\w+)\s*=\s*require\s*\(\s*(['"])([^'"]+)\2\s*\)\s*;?[ \t]*""")
_REQUIRE_NAMED = re.compile(r"""(?:const|let|var)\s*\{\s*([^}]+?)\s*\}\s*=\s*require\s*\(\s*(['"])([^'"]+)\2\s*\)\s*;?[ \t]*""")
_PROPTYPES_IMPORT = re.compile(r"""import\s+PropTypes\s+from\s+["']prop-types["'];?[ \t]*\n?""")
_PROPTYPES_BLOCK = re.compile(r"""\n[ \t]*\w+\.propTypes\s*=\s*\{(?:[^\n]*\}|[\s\S]*?\n[ \t]*\});?[ \t]*(?=\n|$)""")
_AXIOS_IMPORT = re.compile(r"""import\s+axios\s+from\s+["']axios["'];?[ \t]*\n?""")
_LODASH_IMPORT = re.compile(r"""import\s+(?:[\w$]+|\{[^}]+\})\s+from\s+["']lodash(?:[/.]\w+)?["'];?[ \t]*\n?""")
_IMPORT_LINE = re.compile(
    r"""^(?P<indent>\s*)import\s+(?:(?P<default>\w+)\s*,?\s*)?(?:\{(?P<named>[^}]*)\})?\s*from\s+(?P<q>["'])(?P<src>[^"']+)(?P=q);?\s*$"""
)
_HOOK_CALL = re.compile(
    r"(?<![\w.])(useState|useEffect|useContext|useReducer|useCallback|useMemo|useRef|useLayoutEffect|useId)\s*\("
)
_REACT_IMPORT = re.compile(r"""from\s+["']react["']""")


def convert_require_to_import(code: str) -> str:
    code = _REQUIRE_NAMED.sub(lambda m: f"import {{ {m.group(1)} }} from {m.group(2)}{m.group(3)}{m.group(2)};", code)
    return _REQUIRE_DEFAULT.sub(lambda m: f"import {m.group(1)} from {m.group(2)}{m.group(3)}{m.group(2)};", code)


def remove_prop_types(code: str) -> str:
    code = _PROPTYPES_IMPORT.sub("", code)
    return _PROPTYPES_BLOCK.sub("", code)


def replace_axios_with_fetch(code: str) -> str:
    fixed = _AXIOS_IMPORT.sub("", code)
    if fixed != code and "axios." in fixed:
        fixed = "// Note: axios is not available, use the fetch API\n" + fixed
    return fixed


def replace_lodash_with_native(code: str) -> str:
    fixed = _LODASH_IMPORT.sub("", code)
    if fixed != code and re.search(r"(?<![\w$])(_|lodash)\.", fixed):
        fixed = "// Note: lodash is not available, use native array/object methods\n" + fixed
    return fixed


def _used(name: str, lines: List[str], skip: int) -> bool:
    pattern = re.compile(rf"(?<![\w$]){re.escape(name)}(?![\w$])")
    return any(pattern.search(line) for idx, line in enumerate(lines) if idx != skip)


def remove_unused_imports(code: str) -> str:
    """Drop default and named bindings that nothing else in the file references."""
    lines = code.split("\n")
    out: List[str] = []
    dropped = False
    for idx, line in enumerate(lines):
        m = _IMPORT_LINE.match(line)
        if not m or (m.group("default") is None and m.group("named") is None):
            out.append(line)
            continue
        if m.group("default") == "type":
            out.append(line)
            continue
        default = m.group("default")
        if default and not _used(default, lines, idx):
            default = None
        parts = [p.strip() for p in (m.group("named") or "").split(",") if p.strip()]
        named = [p for p in parts if _used(p.split(" as ")[-1].strip(), lines, idx)]
        if default is None and not named:
            dropped = True
            continue
        if default == m.group("default") and len(named) == len(parts):
            out.append(line)
            continue
        q = m.group("q")
        bindings = ", ".join(filter(None, [default, f"{{ {', '.join(named)} }}" if named else None]))
        out.append(f"{m.group('indent')}import {bindings} from {q}{m.group('src')}{q};")
    fixed = "\n".join(out)
    return re.sub(r"\n{3,}", "\n\n", fixed).lstrip("\n") if dropped else fixed


def ensure_react_import(code: str) -> str:
    """Import the hooks (and ``React`` itself) a file uses without importing them."""
    if _REACT_IMPORT.search(code):
        return code
    hooks = sorted(set(_HOOK_CALL.findall(code)))
    needs_default = re.search(r"(?<![\w$])React\.", code) is not None
    if not hooks and not needs_default:
        return code
    bindings = ", ".join(filter(None, ["React" if needs_default else None,
                                       f"{{ {', '.join(hooks)} }}" if hooks else None]))
    statement = f"import {bindings} from 'react';"

    lines = code.split("\n")
    insert_at = 0
    for idx, line in enumerate(lines):
        stripped = line.strip()
        if stripped.startswith("import "):
            insert_at = idx + 1
        elif stripped and not stripped.startswith("//"):
            break
    if insert_at == 0:
        return f"{statement}\n\n{code}"
    lines.insert(insert_at, statement)
    return "\n".join(lines)


FIXES = (
    convert_require_to_import,
    remove_prop_types,
    replace_axios_with_fetch,
    replace_lodash_with_native,
    remove_unused_imports,
    ensure_react_import,
)


def auto_fix(code: str, filename: str) -> str:
    if Path(filename).suffix.lower() not in SCRIPT_SUFFIXES or not code.strip():
        return code
    for fix in FIXES:
        code = fix(code)
    return code


def auto_fix_operations(operations: List[FileOperation]) -> Tuple[List[FileOperation], List[str]]:
    """Apply :func:`auto_fix` to every healthy operation; returns the new list and the changed filenames."""
    fixed_ops: List[FileOperation] = []
    changed: List[str] = []
    for op in operations:
        if op.error:
            fixed_ops.append(op)
            continue
        content = auto_fix(op.content, op.filename)
        if content != op.content:
            changed.append(op.filename)
            op = op.with_content(content, validated=False)
        fixed_ops.append(op)
    if changed:
        log_json("INFO", "auto_fix_applied", details={"files": changed})
    return fixed_ops, changed
