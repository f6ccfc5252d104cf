"""
Test Buddy - Unified LLM Client
Centralized LLM access for quiz generation and feedback.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from langchain_core.messages import HumanMessage, SystemMessage

from testbuddy.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Standardized response from LLM client."""
    content: str
    model: str
    tokens_prompt: int = 0
    tokens_completion: int = 0
    tokens_total: int = 0
    raw_response: Any = None


def strip_code_fences(content: str) -> str:
    """Remove a surrounding markdown code block, if any."""
    content = content.strip()
    if content.startswith("```json"):
        content = content[7:]
    if content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    return content.strip()


class LLMClient:
    """
    Unified LLM Client.

    Features:
    - Multi-provider support (OpenRouter, OpenAI, Anthropic)
    - Per-call model override (plans pick different models)
    - Token usage tracking
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        temperature: float = 0.5,
        timeout: Optional[int] = None,
    ):
        """
        Initialize the LLM client.

        Args:
            settings: Application settings. Defaults to the cached settings.
            provider: 'openrouter', 'openai' or 'anthropic'. Defaults to settings.
            model: Default model name. Defaults to the provider's configured model.
            temperature: Sampling temperature.
            timeout: Request timeout in seconds.
        """
        self.settings = settings or default_settings
        self.provider = provider or self.settings.LLM_PROVIDER
        self.model = model or (
            self.settings.ANTHROPIC_MODEL if self.provider == "anthropic"
            else self.settings.OPENAI_MODEL
        )
        self.temperature = temperature
        self.timeout = timeout or self.settings.LLM_TIMEOUT_SECONDS

        self._models: dict[str, Any] = {}

    def _build(self, model: str):
        if self.provider == "anthropic":
            from langchain_anthropic import ChatAnthropic
            return ChatAnthropic(
                model=model,
                api_key=self.settings.ANTHROPIC_API_KEY,
                temperature=self.temperature,
                timeout=self.timeout,
            )

        from langchain_openai import ChatOpenAI
        if self.provider == "openrouter":
            return ChatOpenAI(
                model=model,
                api_key=self.settings.OPENROUTER_API_KEY,
                base_url=self.settings.OPENROUTER_BASE_URL,
                temperature=self.temperature,
                timeout=self.timeout,
                default_headers={"X-Title": self.settings.APP_NAME},
            )
        return ChatOpenAI(
            model=model,
            api_key=self.settings.OPENAI_API_KEY,
            temperature=self.temperature,
            timeout=self.timeout,
        )

    def llm(self, model: Optional[str] = None):
        """Lazy-load the chat model for ``model`` (the default model if omitted)."""
        name = model or self.model
        if name not in self._models:
            self._models[name] = self._build(name)
        return self._models[name]

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
    ) -> LLMResponse:
        """
        Generate a response from the LLM.

        Args:
            prompt: The user prompt.
            system_prompt: Optional system prompt.
            model: Optional model override for this call.

        Returns:
            LLMResponse with content and metadata.
        """
        messages = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        messages.append(HumanMessage(content=prompt))

        model_name = model or self.model
        response = await self.llm(model_name).ainvoke(messages)
        content = response.content if isinstance(response.content, str) else str(response.content)

        tokens_prompt = 0
        tokens_completion = 0
        if hasattr(response, "response_metadata"):
            usage = response.response_metadata.get("token_usage", {}) or {}
            tokens_prompt = usage.get("prompt_tokens", 0)
            tokens_completion = usage.get("completion_tokens", 0)

        logger.debug(
            f"LLM call ({self.provider}/{model_name}): "
            f"{tokens_prompt} prompt + {tokens_completion} completion tokens"
        )

        return LLMResponse(
            content=content,
            model=model_name,
            tokens_prompt=tokens_prompt,
            tokens_completion=tokens_completion,
            tokens_total=tokens_prompt + tokens_completion,
            raw_response=response,
        )

    async def generate_json(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
    ) -> Any:
        """
        Generate a JSON response from the LLM.
        Parses the response and returns the decoded value.
        """
        response = await self.generate(prompt=prompt, system_prompt=system_prompt, model=model)
        return json.loads(strip_code_fences(response.content))
