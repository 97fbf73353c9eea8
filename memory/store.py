import json
import os
from pathlib import Path
from typing import Any, Dict, List

from core.exceptions import ContextStoreError
from core.logging_utils import log_json

# Maximum size (bytes) of run_log.jsonl before rotation
_LOG_MAX_BYTES = int(os.getenv("PATCHWRIGHT_LOG_MAX_BYTES", str(10 * 1024 * 1024)))  # 10 MB
_LOG_KEEP_ROTATIONS = 3  # number of rotated files to keep


class ContextStore:
    """Key/value JSON store for state that survives between pipeline runs.

    Each key is one ``<key>.json`` file under *root*; the run log is an
    append-only ``run_log.jsonl`` that rotates at ``_LOG_MAX_BYTES``.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.log_path = self.root / "run_log.jsonl"

    def _key_path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise ContextStoreError(f"Invalid store key: {key!r}")
        return self.root / f"{key}.json"

    def read(self, key: str, fallback: Any = None) -> Any:
        path = self._key_path(key)
        if not path.exists():
            return fallback
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            log_json("WARN", "context_store_read_failed", details={"key": key, "error": str(e)})
            return fallback

    def write(self, key: str, value: Any) -> None:
        path = self._key_path(key)
        tmp = path.with_suffix(".json.tmp")
        try:
            tmp.write_text(json.dumps(value, indent=2, default=str), encoding="utf-8")
            tmp.replace(path)
        except (OSError, TypeError) as e:
            log_json("ERROR", "context_store_write_failed", details={"key": key, "error": str(e)})
            raise ContextStoreError(f"Failed to write '{key}': {e}") from e

    def _rotate_log_if_needed(self) -> None:
        """Rotate run_log.jsonl when it exceeds *_LOG_MAX_BYTES*.

        Keeps up to *_LOG_KEEP_ROTATIONS* copies named ``run_log.jsonl.1``,
        ``.2``, …  Older files are deleted.
        """
        if not self.log_path.exists():
            return
        if self.log_path.stat().st_size < _LOG_MAX_BYTES:
            return

        for i in range(_LOG_KEEP_ROTATIONS - 1, 0, -1):
            src = self.log_path.with_suffix(f".jsonl.{i}")
            dst = self.log_path.with_suffix(f".jsonl.{i + 1}")
            if src.exists():
                if dst.exists():
                    dst.unlink()
                src.rename(dst)

        self.log_path.rename(self.log_path.with_suffix(".jsonl.1"))

        excess = self.log_path.with_suffix(f".jsonl.{_LOG_KEEP_ROTATIONS + 1}")
        if excess.exists():
            excess.unlink()

    def append_log(self, entry: Dict[str, Any]) -> None:
        self._rotate_log_if_needed()
        with self.log_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry, default=str) + "\n")

    def read_log(self, limit: int = 0) -> List[Dict[str, Any]]:
        if not self.log_path.exists():
            return []
        entries = []
        with self.log_path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
        return entries[-limit:] if limit > 0 else entries


class InMemoryContextStore:
    """Non-persistent store with the same read/write surface, used when no path is configured."""

    def __init__(self):
        self._data: Dict[str, Any] = {}
        self._log: List[Dict[str, Any]] = []

    def read(self, key: str, fallback: Any = None) -> Any:
        return json.loads(json.dumps(self._data[key])) if key in self._data else fallback

    def write(self, key: str, value: Any) -> None:
        self._data[key] = json.loads(json.dumps(value, default=str))

    def append_log(self, entry: Dict[str, Any]) -> None:
        self._log.append(entry)

    def read_log(self, limit: int = 0) -> List[Dict[str, Any]]:
        return self._log[-limit:] if limit > 0 else list(self._log)
