"""
LLM Factory Module

Builds langchain chat models for the LLM review agents. Each provider has a
ProviderSpec entry in PROVIDERS. Agents pass their scoped environment as
`env`; the process environment is only read when no env is given.

Usage:
    from review_router.llm_factory import LLMFactory, LLMProvider

    llm = LLMFactory.create(LLMProvider.OPENAI, env=context.env)
    llm = LLMFactory.create("ollama", model="codellama:7b", base_url="http://gpu-box:11434")
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

from langchain_core.language_models import BaseChatModel

from .logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434"


class LLMProvider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


def _openai_model(model: str, api_key: Optional[str], base_url: Optional[str], params: Dict[str, Any]) -> BaseChatModel:
    from langchain_openai import ChatOpenAI

    if api_key:
        params["api_key"] = api_key
    if base_url:
        params["base_url"] = base_url
    return ChatOpenAI(model=model, **params)


def _anthropic_model(model: str, api_key: Optional[str], base_url: Optional[str], params: Dict[str, Any]) -> BaseChatModel:
    from langchain_anthropic import ChatAnthropic

    if api_key:
        params["anthropic_api_key"] = api_key
    if base_url:
        params["anthropic_api_url"] = base_url
    return ChatAnthropic(model=model, **params)


def _ollama_model(model: str, api_key: Optional[str], base_url: Optional[str], params: Dict[str, Any]) -> BaseChatModel:
    # Ollama speaks the OpenAI protocol under /v1; the key is ignored but required by the client
    endpoint = (base_url or DEFAULT_OLLAMA_BASE_URL).rstrip("/")
    if not endpoint.endswith("/v1"):
        endpoint += "/v1"
    return _openai_model(model, api_key or "ollama", endpoint, params)


@dataclass(frozen=True)
class ProviderSpec:
    default_model: str
    builder: Callable[..., BaseChatModel]
    key_env_var: Optional[str] = None
    paid: bool = True


PROVIDERS: Dict[LLMProvider, ProviderSpec] = {
    LLMProvider.OPENAI: ProviderSpec("gpt-4o-mini", _openai_model, "OPENAI_API_KEY"),
    LLMProvider.ANTHROPIC: ProviderSpec("claude-sonnet-4-20250514", _anthropic_model, "ANTHROPIC_API_KEY"),
    LLMProvider.OLLAMA: ProviderSpec("codellama:7b", _ollama_model, paid=False),
}


def _coerce(provider: Union[LLMProvider, str]) -> LLMProvider:
    if isinstance(provider, LLMProvider):
        return provider
    return LLMProvider(provider.lower())


class LLMFactory:
    """Creates chat models by provider name."""

    @staticmethod
    def create(
        provider: Union[LLMProvider, str],
        model: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        **kwargs
    ) -> BaseChatModel:
        """
        Create a chat model.

        Args:
            provider: openai, anthropic or ollama
            model: Model name; the provider default when omitted
            max_tokens: Completion limit
            api_key: Explicit key; otherwise read from `env`
            base_url: Endpoint override
            env: Environment holding provider keys (process env if None)
            **kwargs: Passed through to the langchain model

        Raises:
            ValueError: Unknown provider name
        """
        provider = _coerce(provider)
        spec = PROVIDERS[provider]
        source_env = os.environ if env is None else env

        if api_key is None and spec.key_env_var:
            api_key = source_env.get(spec.key_env_var)

        params: Dict[str, Any] = {"temperature": temperature, **kwargs}
        if max_tokens:
            params["max_tokens"] = max_tokens

        model = model or spec.default_model
        logger.debug(f"Building {provider.value} chat model {model}")
        return spec.builder(model, api_key, base_url, params)

    @staticmethod
    def validate_config(
        provider: Union[LLMProvider, str],
        env: Optional[Mapping[str, str]] = None,
    ) -> Tuple[bool, str]:
        """Check the provider is known and its key is present. Returns (ok, message)."""
        try:
            spec = PROVIDERS[_coerce(provider)]
        except ValueError:
            return False, f"Unknown provider: {provider}"

        if spec.key_env_var is None:
            return True, "no key required"

        source_env = os.environ if env is None else env
        if not source_env.get(spec.key_env_var):
            return False, f"{spec.key_env_var} is not set in the agent environment"
        return True, f"{spec.key_env_var} present"

    @staticmethod
    def is_paid(provider: Union[LLMProvider, str]) -> bool:
        return PROVIDERS[_coerce(provider)].paid
