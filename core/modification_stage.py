from typing import List, Mapping, Optional, Union

from core.events import EventBus, EventType
from core.exceptions import CollaboratorError
from core.logging_utils import log_json
from core.types import ChangeRequest, FileOperation


class ModificationStage:
    """Apply a change to existing files, one file at a time, in a single pass."""

    def __init__(self, modifier, events: EventBus):
        self.modifier = modifier
        self.events = events

    async def run(self, filenames: List[str], request: ChangeRequest,
                  change_hints: Optional[Union[str, Mapping[str, str]]] = None) -> List[FileOperation]:
        operations: List[FileOperation] = []
        self.events.phase("Updating code", files=list(filenames))
        for filename in filenames:
            original = request.current_files.get(filename)
            if original is None:
                log_json("WARN", "modification_file_missing", details={"file": filename})
                self.events.warning(f"{filename} does not exist, skipping", filename=filename)
                continue

            if isinstance(change_hints, Mapping):
                hints = change_hints.get(filename, "")
            else:
                hints = change_hints or ""

            self.events.emit(EventType.FILE_OPERATION, f"Updating {filename}", filename=filename, status="start")
            try:
                updated = await self.modifier.modify(filename, original, request, hints)
            except CollaboratorError as e:
                log_json("ERROR", "modification_failed", details={"file": filename, "error": str(e)})
                self.events.warning(f"Could not update {filename}, keeping the original", filename=filename,
                                    error=str(e))
                operations.append(FileOperation("modify", filename, original, error=str(e)))
                continue

            operations.append(FileOperation("modify", filename, updated))
            self.events.emit(EventType.FILE_OPERATION, f"Updated {filename}", filename=filename, status="complete",
                             changed=updated != original)
        return operations
