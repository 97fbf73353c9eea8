from dataclasses import dataclass, field
from typing import Dict, List, Optional

from agents.base import CollaboratorAgent
from core.exceptions import CollaboratorError
from core.logging_utils import log_json
from core.schema import AnalysisReply
from core.types import ChangeRequest, Plan

ANALYZER_SYSTEM_PROMPT = """You locate the code that must change to satisfy a request.
Respond with a single JSON object and nothing else."""

ANALYZE_PROMPT = """
Request: {message}

Files:
{files}

Reply with JSON:
- "filesToModify": list of existing file names that must change
- "changeTargets": object mapping each of those files to a short description of what to change there
- "reasoning": "..."
"""

_PREVIEW_CHARS = 1500


@dataclass
class AnalysisResult:
    files_to_modify: List[str]
    change_targets: Dict[str, str] = field(default_factory=dict)
    fallback: bool = False


def fallback_analysis(request: ChangeRequest, plan: Optional[Plan] = None) -> AnalysisResult:
    """Files to touch when analysis is skipped or fails: the plan's list, else the first file."""
    if plan is not None:
        planned = [f for f in plan.files_to_modify if f in request.current_files]
        if planned and not plan.trivial:
            return AnalysisResult(planned, fallback=True)
    first = next(iter(request.current_files), None)
    return AnalysisResult([first] if first else [], fallback=True)


class AnalyzerAgent(CollaboratorAgent):
    name = "analyzer"
    role = "analysis"
    temperature = 0.2

    async def analyze(self, request: ChangeRequest, plan: Optional[Plan] = None) -> AnalysisResult:
        """Pick the files (and per-file targets) a modification must touch. Never raises."""
        files = "\n\n".join(
            f"--- {name} ---\n{content[:_PREVIEW_CHARS]}" for name, content in request.current_files.items()
        )
        try:
            reply = await self.ask_json(AnalysisReply, ANALYZER_SYSTEM_PROMPT,
                                        ANALYZE_PROMPT.format(message=request.message, files=files or "(none)"))
        except CollaboratorError as e:
            log_json("WARN", "analysis_failed_fallback", details={"error": str(e)})
            return fallback_analysis(request, plan)

        known = [f for f in dict.fromkeys(reply.files_to_modify) if f in request.current_files]
        if not known:
            log_json("WARN", "analysis_no_known_files", details={"reply_files": reply.files_to_modify})
            return fallback_analysis(request, plan)
        targets = {f: t for f, t in reply.change_targets.items() if f in known}
        return AnalysisResult(known, targets)
