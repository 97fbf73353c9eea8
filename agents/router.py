"""Route classification.

:class:`RoutingClassifier` decides which pipeline stages a request needs.
The decision is a pure function of ``(message, intent, current_files)``:
no I/O, no randomness, and it never raises. Rules are evaluated in order
and the first match wins; anything unmatched gets the full pipeline.

The rule table lives in :class:`HeuristicRouteStrategy`; a different
:class:`RouteStrategy` (e.g. a learned classifier) can be swapped in without
touching callers.
"""
import re
from abc import ABC, abstractmethod
from typing import Callable, List, Mapping, NamedTuple, Optional, Union

from core.logging_utils import log_json
from core.types import IntentResult, RouteDecision

SIMPLE_TEXT_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"change.*text",
        r"update.*label",
        r"rename.*button",
        r"change.*title",
        r"update.*heading",
        r"fix.*typo",
        r"change.*placeholder",
    )
]

SIMPLE_COLOR_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"make.*blue",
        r"change.*colou?r",
        r"make.*(red|green|purple|pink)",
        r"darker|lighter",
    )
]

_AND = re.compile(r"\band\b", re.IGNORECASE)

TIME_RANGES = {
    "fast": (8, 15),
    "medium": (20, 30),
    "slow": (35, 50),
}


class RouteInput(NamedTuple):
    message: str
    intent: str
    confidence: float
    file_count: int

    @property
    def word_count(self) -> int:
        return len(self.message.split())


class Rule(NamedTuple):
    name: str
    matches: Callable[[RouteInput], bool]
    decision: RouteDecision


def _route(rule: str, reason: str, time_class: str, skip_plan=False, skip_analysis=False,
           skip_reflection=False) -> RouteDecision:
    return RouteDecision(skip_plan, skip_analysis, skip_reflection, reason, time_class, rule)


def _is_complex(r: RouteInput) -> bool:
    return r.word_count > 30 or "\n" in r.message or bool(_AND.search(r.message)) or "," in r.message


DEFAULT_RULES: List[Rule] = [
    Rule("bug_fix", lambda r: r.intent == "fix_bug",
         _route("bug_fix", "Bug fix - direct to debugging", "medium", skip_plan=True, skip_analysis=True)),
    Rule("new_project", lambda r: r.intent == "create_new" or r.file_count == 0,
         _route("new_project", "New project - full planning", "slow", skip_analysis=True)),
    Rule("simple_text", lambda r: r.file_count > 0 and any(p.search(r.message) for p in SIMPLE_TEXT_PATTERNS),
         _route("simple_text", "Simple text change", "fast", skip_plan=True, skip_reflection=True)),
    Rule("simple_color",
         lambda r: r.file_count > 0 and len(r.message) < 100
         and any(p.search(r.message) for p in SIMPLE_COLOR_PATTERNS),
         _route("simple_color", "Simple color change", "fast", skip_plan=True, skip_analysis=True)),
    Rule("complex", _is_complex,
         _route("complex", "Complex request - full pipeline", "slow")),
    Rule("simple_modification", lambda r: r.word_count < 20 and r.file_count > 0 and r.confidence > 0.8,
         _route("simple_modification", "Simple modification", "fast", skip_plan=True, skip_analysis=True)),
]

FULL_PIPELINE = RouteDecision.full_pipeline("Standard request - full pipeline")


class RouteStrategy(ABC):
    @abstractmethod
    def classify(self, route_input: RouteInput) -> RouteDecision:
        raise NotImplementedError


class HeuristicRouteStrategy(RouteStrategy):
    def __init__(self, rules: Optional[List[Rule]] = None, default: RouteDecision = FULL_PIPELINE):
        self.rules = list(rules if rules is not None else DEFAULT_RULES)
        self.default = default

    def classify(self, route_input: RouteInput) -> RouteDecision:
        for rule in self.rules:
            if rule.matches(route_input):
                return rule.decision
        return self.default


class RoutingClassifier:
    name = "router"

    def __init__(self, strategy: RouteStrategy = None):
        self.strategy = strategy or HeuristicRouteStrategy()

    def classify(self, message: str, intent: Union[IntentResult, str, None] = None,
                 current_files: Optional[Mapping[str, str]] = None) -> RouteDecision:
        """Return the stage-skip decision for a request. Never raises."""
        try:
            if isinstance(intent, IntentResult):
                intent_name, confidence = intent.intent, intent.confidence
            else:
                intent_name, confidence = (intent or ""), 0.0
            route_input = RouteInput(message or "", intent_name, float(confidence), len(current_files or {}))
            decision = self.strategy.classify(route_input)
        except Exception as e:
            log_json("WARN", "route_strategy_failed", details={"error": str(e)})
            return FULL_PIPELINE
        log_json("INFO", "route_decided", details=decision.to_dict())
        return decision


def estimate_time(route: RouteDecision, file_count: int = 1) -> str:
    """Rough wall-clock estimate for a route, scaled by the number of files."""
    low, high = TIME_RANGES.get(route.time_class, TIME_RANGES["slow"])
    multiplier = min(1 + (max(file_count, 1) - 1) * 0.3, 2)
    return f"{round(low * multiplier)}-{round(high * multiplier)}s"
