"""Translate internal failures into messages fit for an end user."""
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, Union

from core.exceptions import CollaboratorTimeout


@dataclass
class FriendlyError:
    category: str
    message: str
    suggestion: str
    technical: str
    context: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_PATTERNS = [
    ("rate_limited", re.compile(r"rate limit", re.IGNORECASE),
     "API rate limit reached",
     "Please wait a moment and try again. The service is temporarily busy."),
    ("timed_out", re.compile(r"time(d)? ?out", re.IGNORECASE),
     "Request took too long",
     "Try simplifying your request or breaking it into smaller parts."),
    ("network", re.compile(r"network|fetch|connection", re.IGNORECASE),
     "Network connection issue",
     "Check your internet connection and try again."),
    ("auth", re.compile(r"API key|unauthori[sz]ed|authentication", re.IGNORECASE),
     "Authentication issue",
     "Please check your API key configuration."),
    ("too_complex", re.compile(r"token|context", re.IGNORECASE),
     "Request too complex",
     "Try simplifying your request or working on smaller sections."),
]


def friendly_error(error: Union[BaseException, str], context: str = "") -> FriendlyError:
    """Map *error* to the first matching user-facing category; generic otherwise."""
    technical = str(error) or type(error).__name__
    if isinstance(error, CollaboratorTimeout):
        _, _, message, suggestion = _PATTERNS[1]
        return FriendlyError("timed_out", message, suggestion, technical, context)
    for category, pattern, message, suggestion in _PATTERNS:
        if pattern.search(technical):
            return FriendlyError(category, message, suggestion, technical, context)
    return FriendlyError(
        "generic",
        "Something unexpected happened",
        "Please try again. If the problem persists, try simplifying your request.",
        technical,
        context,
    )
