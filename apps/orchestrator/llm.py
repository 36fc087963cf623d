"""
Modular LLM Provider Pattern for the reasoning gateway.

This module provides a factory for LLM providers, allowing the search
agents to switch between OpenAI-compatible chat services.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, List, Optional

from langchain_core.messages import BaseMessage
from langchain_openai import ChatOpenAI

logger = logging.getLogger(__name__)


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    This allows us to easily swap between different chat services
    while maintaining a consistent interface.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the name of the provider (e.g., 'OpenAI', 'DeepSeek')."""
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model name being used."""
        pass

    @abstractmethod
    async def ainvoke(self, messages: List[BaseMessage], json_mode: bool = False) -> Any:
        """
        Invoke the LLM asynchronously.

        Args:
            messages: List of LangChain message objects
            json_mode: Ask the model for a single JSON object

        Returns:
            LLM response object
        """
        pass

    @abstractmethod
    def astream(self, messages: List[BaseMessage]) -> AsyncIterator[str]:
        """Stream the answer as text fragments."""
        pass


class ChatOpenAIProvider(LLMProvider):
    """
    Provider for any OpenAI-compatible chat completion API.

    Uses LangChain's ChatOpenAI. No retries are performed here: a failed or
    timed-out call surfaces to the caller once.
    """

    provider_name = "OpenAI"
    default_model = "gpt-4-turbo"
    base_url: Optional[str] = None

    def __init__(
        self,
        api_key: str,
        model_name: Optional[str] = None,
        temperature: Optional[float] = None,
        timeout: float = 60.0,
    ):
        if not api_key:
            raise ValueError(f"API key is required for the {self.provider_name} provider")

        self._model_name = model_name or self.default_model
        logger.info(f"Initializing {self.provider_name} provider with model: {self._model_name}")

        self._llm = ChatOpenAI(
            model=self._model_name,
            api_key=api_key,
            base_url=self.base_url,
            temperature=0.3 if temperature is None else temperature,
            timeout=timeout,
            max_retries=0,
        )

    @property
    def name(self) -> str:
        return self.provider_name

    @property
    def model_name(self) -> str:
        return self._model_name

    async def ainvoke(self, messages: List[BaseMessage], json_mode: bool = False) -> Any:
        llm = self._llm.bind(response_format={"type": "json_object"}) if json_mode else self._llm
        logger.debug(f"Invoking {self.provider_name} with {len(messages)} messages")
        return await llm.ainvoke(messages)

    async def astream(self, messages: List[BaseMessage]) -> AsyncIterator[str]:
        logger.debug(f"Streaming {self.provider_name} with {len(messages)} messages")
        async for chunk in self._llm.astream(messages):
            content = chunk.content
            if isinstance(content, str) and content:
                yield content


class OpenAIProvider(ChatOpenAIProvider):
    """OpenAI chat completions."""

    provider_name = "OpenAI"
    default_model = "gpt-4-turbo"


class DeepSeekProvider(ChatOpenAIProvider):
    """
    DeepSeek LLM provider using OpenAI-compatible API.

    Model: deepseek-chat (V3)
    """

    provider_name = "DeepSeek"
    default_model = "deepseek-chat"
    base_url = "https://api.deepseek.com"


class LLMProviderFactory:
    """Factory for creating LLM provider instances by name."""

    _registry = {
        "openai": OpenAIProvider,
        "deepseek": DeepSeekProvider,
    }

    @classmethod
    def supported(cls) -> List[str]:
        return sorted(cls._registry)

    @classmethod
    def get_provider(
        cls,
        provider_name: str,
        api_key: str,
        model_name: Optional[str] = None,
        temperature: Optional[float] = None,
        timeout: float = 60.0,
    ) -> LLMProvider:
        """
        Create a provider instance.

        Raises:
            ValueError: If provider_name is not supported or the API key is missing
        """
        provider_cls = cls._registry.get(provider_name.lower())
        if provider_cls is None:
            raise ValueError(
                f"Unsupported provider: {provider_name}. "
                f"Supported providers: {', '.join(cls.supported())}"
            )
        provider = provider_cls(
            api_key=api_key,
            model_name=model_name,
            temperature=temperature,
            timeout=timeout,
        )
        logger.info(f"Created {provider.name} provider ({provider.model_name})")
        return provider
