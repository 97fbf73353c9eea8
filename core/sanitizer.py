import os
import re
from pathlib import Path
from typing import Any, Iterable, List, Union
from core.exceptions import SecurityError

# Executables the command backend may launch
BASE_ALLOWED_COMMANDS = {
    "npm", "npx", "node", "yarn", "pnpm", "python", "python3", "pytest", "tsc", "eslint",
}

def get_allowed_commands(extra: Iterable[str] = ()) -> set:
    """Returns the effective set of allowed commands from config + base."""
    from core.config_manager import config
    configured = config.get("allowed_commands") or []
    return BASE_ALLOWED_COMMANDS.union(configured).union(extra)

# Regex for masking secrets (best-effort)
SECRET_PATTERNS = [
    re.compile(r"sk-[a-zA-Z0-9_-]{20,}", re.IGNORECASE),
    re.compile(r"Bearer\s+[a-zA-Z0-9._-]+", re.IGNORECASE),
]
SECRET_KEY_PATTERN = re.compile(r"api[-_]?key|(^|_)token$|secret|password", re.IGNORECASE)

def sanitize_path(file_path: Union[str, Path], root_dir: Union[str, Path]) -> Path:
    """
    Ensures a file operation's path stays inside the project jail.
    Prevents path traversal when writing results back to disk.
    """
    root = Path(root_dir).resolve()
    raw_target = Path(file_path)
    target = (root / raw_target).resolve() if not raw_target.is_absolute() else raw_target.resolve()

    try:
        target.relative_to(root)
    except ValueError as exc:
        raise SecurityError(f"Access denied: Path '{file_path}' escapes project root '{root_dir}'.") from exc

    return target

def sanitize_command(cmd: List[str], extra_allowed: Iterable[str] = ()):
    """
    Validates a test command against the allowlist before it is executed.
    """
    if not cmd:
        raise SecurityError("Access denied: empty command.")

    allowed = get_allowed_commands(extra_allowed)
    base_cmd = os.path.basename(cmd[0])
    if base_cmd not in allowed:
        raise SecurityError(f"Access denied: Command '{base_cmd}' is not in the allowlist.")

    dangerous_args = ["--eval", "-e", "--exec", "-c"]
    if base_cmd in ("python", "python3", "node"):
        for arg in cmd[1:]:
            if arg in dangerous_args:
                raise SecurityError(f"Access denied: Dangerous argument '{arg}' in command.")

def mask_secrets(data: Any) -> Any:
    """
    Recursively redacts sensitive info from data.
    """
    if isinstance(data, dict):
        new_dict = {}
        for k, v in data.items():
            if isinstance(k, str) and SECRET_KEY_PATTERN.search(k) and v:
                new_dict[k] = "[REDACTED]"
            else:
                new_dict[k] = mask_secrets(v)
        return new_dict
    elif isinstance(data, (list, tuple)):
        return [mask_secrets(i) for i in data]
    elif isinstance(data, str):
        masked = data
        for p in SECRET_PATTERNS:
            masked = p.sub("[REDACTED]", masked)
        return masked
    return data
