import re
from typing import Mapping, Optional

from agents.base import CollaboratorAgent
from core.exceptions import CollaboratorError
from core.logging_utils import log_json
from core.schema import INTENTS, IntentReply
from core.types import IntentResult

SYSTEM_PROMPT = (
    "You classify change requests for a web project. Reply with JSON only: "
    '{"intent": one of ' + ", ".join(INTENTS) + ', "confidence": 0..1, "reasoning": "..."}'
)

_HEURISTICS = [
    ("fix_bug", 0.8, re.compile(r"\b(fix|bug|error|broken|crash\w*|not working|doesn'?t work)\b", re.IGNORECASE)),
    ("explain_code", 0.7, re.compile(r"\b(explain|what does|how does|why does)\b", re.IGNORECASE)),
    ("style_change", 0.75, re.compile(
        r"\b(colou?rs?|style|css|theme|darker|lighter|font|blue|red|green|purple|pink|padding|margin)\b",
        re.IGNORECASE)),
    ("add_feature", 0.7, re.compile(r"\b(add|implement|include|new feature|support)\b", re.IGNORECASE)),
]


def heuristic_intent(message: str, current_files: Optional[Mapping[str, str]] = None) -> IntentResult:
    """Keyword-based intent used when the model is unavailable."""
    if not current_files:
        return IntentResult("create_new", 0.9, "No existing files", source="heuristic")
    for intent, confidence, pattern in _HEURISTICS:
        if pattern.search(message or ""):
            return IntentResult(intent, confidence, f"Matched '{pattern.pattern}'", source="heuristic")
    return IntentResult("modify_existing", 0.6, "Default for existing project", source="heuristic")


class IntentClassifierAgent(CollaboratorAgent):
    name = "intent"
    role = "intent"
    max_tokens = 300
    temperature = 0.1

    async def classify(self, message: str, current_files: Optional[Mapping[str, str]] = None) -> IntentResult:
        files = ", ".join(sorted(current_files or {})) or "(none)"
        user_prompt = f"Request: {message}\nExisting files: {files}"
        try:
            reply = await self.ask_json(IntentReply, SYSTEM_PROMPT, user_prompt)
        except CollaboratorError as e:
            fallback = heuristic_intent(message, current_files)
            log_json("WARN", "intent_classification_fallback",
                     details={"error": str(e), "intent": fallback.intent})
            return fallback
        return IntentResult(reply.intent, reply.confidence, reply.reasoning, source="model")
