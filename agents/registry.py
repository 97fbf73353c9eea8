from typing import Dict

from agents.analyzer import AnalyzerAgent
from agents.coder import CoderAgent
from agents.debugger import RepairAgent
from agents.intent import IntentClassifierAgent
from agents.modifier import ModifierAgent
from agents.plan_reviewer import PlanReviewerAgent
from agents.planner import PlannerAgent
from agents.reviewer import ReviewerAgent
from core.config_manager import ConfigManager
from core.model_adapter import TextCompletionService

AGENT_ROLES = ("intent", "planner", "plan_reviewer", "coder", "reviewer", "modifier", "analyzer", "debugger")


def default_agents(completion: TextCompletionService, settings: ConfigManager = None) -> Dict[str, object]:
    """Build the standard collaborator set, all sharing one completion service."""
    return {
        "intent": IntentClassifierAgent(completion, settings),
        "planner": PlannerAgent(completion, settings),
        "plan_reviewer": PlanReviewerAgent(completion, settings),
        "coder": CoderAgent(completion, settings),
        "reviewer": ReviewerAgent(completion, settings),
        "modifier": ModifierAgent(completion, settings),
        "analyzer": AnalyzerAgent(completion, settings),
        "debugger": RepairAgent(completion, settings),
    }
