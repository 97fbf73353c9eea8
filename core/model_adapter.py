import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import requests

from core.config_manager import ConfigManager, config as default_config
from core.exceptions import CollaboratorError, CollaboratorTimeout, ConfigurationError
from core.logging_utils import log_json

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"
_RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}


@dataclass
class CompletionConfig:
    role: str
    model: Optional[str] = None
    max_tokens: int = 4000
    temperature: float = 0.7
    timeout: Optional[float] = None


class TextCompletionService(ABC):
    """Anything that turns a (system, user) prompt pair into text."""

    @abstractmethod
    async def complete(self, system_prompt: str, user_prompt: str, config: CompletionConfig) -> str:
        raise NotImplementedError


class ModelAdapter(TextCompletionService):
    """
    Chat-completion client for OpenAI-compatible HTTP APIs.

    Calls go through ``requests`` on a worker thread so the event loop stays
    free, each attempt is bounded by ``asyncio.wait_for`` and retried with
    exponential backoff on rate limits, 5xx replies, timeouts and connection
    errors. Other HTTP errors fail fast. Every failure surfaces as a
    :class:`CollaboratorError` (or :class:`CollaboratorTimeout`).
    """

    def __init__(self, settings: ConfigManager = None, session: requests.Session = None,
                 base_delay: float = 1.0):
        self.settings = settings or default_config
        self.session = session or requests.Session()
        self.base_delay = base_delay

    def _endpoint(self):
        base_url = self.settings.get("api_base_url")
        openai_key = self.settings.get("openai_api_key")
        router_key = self.settings.get("api_key")
        if openai_key:
            return base_url or OPENAI_URL, openai_key
        if router_key:
            return base_url or OPENROUTER_URL, router_key
        raise ConfigurationError("No model API key configured (set OPENAI_API_KEY or OPENROUTER_API_KEY).")

    def _post(self, system_prompt: str, user_prompt: str, config: CompletionConfig, timeout: float) -> str:
        url, key = self._endpoint()
        headers = {
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": config.model or self.settings.model_for(config.role),
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        response = self.session.post(url, headers=headers, json=payload, timeout=timeout)
        response.raise_for_status()
        data = response.json()
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise CollaboratorError(f"Malformed completion payload for {config.role}", role=config.role) from e

    async def complete(self, system_prompt: str, user_prompt: str, config: CompletionConfig) -> str:
        timeout = float(config.timeout or self.settings.get("llm_timeout"))
        retries = self.settings.get("llm_max_retries")
        last_error: Optional[CollaboratorError] = None

        for attempt in range(retries):
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(self._post, system_prompt, user_prompt, config, timeout),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                last_error = CollaboratorTimeout(f"{config.role} call timed out after {timeout:.0f}s", role=config.role)
            except requests.exceptions.Timeout as e:
                last_error = CollaboratorTimeout(f"{config.role} call timed out: {e}", role=config.role)
            except requests.exceptions.HTTPError as e:
                status = e.response.status_code if e.response is not None else None
                if status == 429:
                    last_error = CollaboratorError(f"Rate limit exceeded for {config.role}", role=config.role)
                elif status == 401 or status == 403:
                    raise CollaboratorError(f"Authentication failed for {config.role}: unauthorized", role=config.role) from e
                else:
                    last_error = CollaboratorError(f"{config.role} call failed with HTTP {status}", role=config.role)
                if status not in _RETRYABLE_STATUS:
                    raise last_error from e
            except requests.exceptions.RequestException as e:
                last_error = CollaboratorError(f"Network error calling {config.role}: {e}", role=config.role)

            if attempt < retries - 1:
                sleep_time = self.base_delay * (2 ** attempt)
                log_json("WARN", "completion_failed_retrying",
                         details={"role": config.role, "attempt": attempt + 1, "retries": retries,
                                  "error": str(last_error), "sleep_time": f"{sleep_time:.2f}"})
                await asyncio.sleep(sleep_time)

        log_json("ERROR", "completion_failed", details={"role": config.role, "error": str(last_error)})
        raise last_error
