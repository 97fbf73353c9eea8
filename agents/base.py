from abc import ABC
from typing import Type, TypeVar

from core.config_manager import ConfigManager, config as default_config
from core.exceptions import CollaboratorError
from core.model_adapter import CompletionConfig, TextCompletionService
from core.schema import parse_reply

M = TypeVar("M")


class Agent(ABC):
    name: str


class CollaboratorAgent(Agent):
    """Base for agents that talk to a text-completion collaborator.

    Subclasses set ``role`` (which selects the model through
    ``model_routing``) and build prompts; ``ask`` and ``ask_json`` handle the
    call and parse, raising :class:`CollaboratorError` subclasses on failure.
    """

    name = "collaborator"
    role = "analysis"
    max_tokens = 4000
    temperature = 0.7

    def __init__(self, completion: TextCompletionService, settings: ConfigManager = None):
        self.completion = completion
        self.settings = settings or default_config

    def _completion_config(self, **overrides) -> CompletionConfig:
        params = {
            "role": self.role,
            "model": self.settings.model_for(self.role),
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "timeout": self.settings.get("llm_timeout"),
        }
        params.update(overrides)
        return CompletionConfig(**params)

    async def ask(self, system_prompt: str, user_prompt: str, **overrides) -> str:
        reply = await self.completion.complete(system_prompt, user_prompt, self._completion_config(**overrides))
        if not isinstance(reply, str):
            raise CollaboratorError(f"{self.name} returned {type(reply).__name__} instead of text", role=self.role)
        return reply

    async def ask_json(self, model_cls: Type[M], system_prompt: str, user_prompt: str, **overrides) -> M:
        raw = await self.ask(system_prompt, user_prompt, **overrides)
        return parse_reply(model_cls, raw, role=self.role)
