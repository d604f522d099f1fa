"""LLM client: wraps a LangChain chat model behind a single ``complete`` call."""

import asyncio
from typing import Protocol, TypedDict

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from pydantic import SecretStr

from src.config import Settings


class Completion(TypedDict):
    text: str
    tokens_used: int


class LLMClient(Protocol):
    model: str

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> Completion: ...


def is_llm_configured(settings: Settings) -> bool:
    """Check whether an API key exists for the configured provider."""
    if settings.llm_provider == "anthropic":
        return bool(settings.anthropic_api_key)
    return bool(settings.openai_api_key)


def create_chat_model(settings: Settings, temperature: float, max_tokens: int) -> BaseChatModel:
    """Create a chat model instance based on the configured provider.

    Args:
        settings: Application settings (provider, keys, model names).
        temperature: Sampling temperature.
        max_tokens: Completion token cap for this call.

    Returns:
        A ChatAnthropic or ChatOpenAI instance.
    """
    if settings.llm_provider == "anthropic":
        return ChatAnthropic(  # pyright: ignore[reportCallIssue]
            model=settings.anthropic_model,
            api_key=SecretStr(settings.anthropic_api_key),
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=settings.llm_timeout_seconds,
        )

    return ChatOpenAI(
        model=settings.openai_model,
        temperature=temperature,
        max_tokens=max_tokens,  # pyright: ignore[reportCallIssue]
        api_key=SecretStr(settings.openai_api_key),
        base_url=settings.openai_base_url or None,
        timeout=settings.llm_timeout_seconds,
    )


class ChatModelClient:
    """``LLMClient`` backed by LangChain, with a hard deadline per call."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self.model = settings.anthropic_model if settings.llm_provider == "anthropic" else settings.openai_model

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> Completion:
        llm = create_chat_model(self._settings, temperature=temperature, max_tokens=max_tokens)
        response = await asyncio.wait_for(
            llm.ainvoke([SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]),
            timeout=self._settings.llm_timeout_seconds,
        )
        usage = getattr(response, "usage_metadata", None) or {}
        return Completion(text=str(response.content), tokens_used=int(usage.get("total_tokens", 0)))


def build_llm_client(settings: Settings) -> LLMClient | None:
    """Return a client for the configured provider, or None when no key is set."""
    if not is_llm_configured(settings):
        return None
    return ChatModelClient(settings)
