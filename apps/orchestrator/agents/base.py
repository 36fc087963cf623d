"""
Base Agent class for the reasoning gateway.

Each agent loads its configuration from agents.yaml and its system prompt
from a text file, and owns its own LLM provider.
"""
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

import yaml
import structlog
from langchain_core.messages import BaseMessage, SystemMessage

from apps.orchestrator.llm import LLMProvider, LLMProviderFactory
from shared.config import Settings

logger = structlog.get_logger()

ORCHESTRATOR_DIR = Path(__file__).parent.parent
SETTINGS_PATH = ORCHESTRATOR_DIR / "settings" / "agents.yaml"
PROMPTS_DIR = ORCHESTRATOR_DIR / "prompts"


def load_agent_config(agent_name: str, config_path: Path = SETTINGS_PATH) -> Dict[str, Any]:
    """
    Load agent configuration from agents.yaml.

    Raises:
        FileNotFoundError: If agents.yaml is missing
        ValueError: If agent_name is not configured
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        config = yaml.safe_load(f) or {}

    if agent_name not in config:
        raise ValueError(
            f"Agent '{agent_name}' not found in agents.yaml. "
            f"Available agents: {list(config.keys())}"
        )
    return config[agent_name]


def load_prompt(prompt_file: str, prompts_dir: Path = PROMPTS_DIR) -> str:
    """Load prompt text from a file in the prompts directory."""
    prompt_path = prompts_dir / prompt_file
    if not prompt_path.exists():
        raise FileNotFoundError(f"Prompt file not found: {prompt_path}")
    return prompt_path.read_text().strip()


def _api_key_for(provider_name: str, settings: Settings) -> str:
    if provider_name == "deepseek":
        return settings.deepseek_api_key or ""
    return settings.openai_api_key or ""


class BaseAgent:
    """
    An LLM-backed agent with externalized configuration and prompt.

    The system prompt is always the first message sent to the provider.
    """

    def __init__(
        self,
        agent_name: str,
        settings: Optional[Settings] = None,
        llm_provider: Optional[LLMProvider] = None,
    ):
        self.agent_name = agent_name
        self.config = load_agent_config(agent_name)
        self.system_prompt = load_prompt(self.config["prompt_file"])

        if llm_provider is None:
            settings = settings or Settings()
            provider_name = self.config.get("provider") or settings.reasoning_provider
            llm_provider = LLMProviderFactory.get_provider(
                provider_name=provider_name,
                api_key=_api_key_for(provider_name, settings),
                model_name=(self.config.get("models") or {}).get(provider_name),
                temperature=self.config.get("temperature"),
                timeout=settings.reasoning_timeout_seconds,
            )
        self.llm_provider = llm_provider

        logger.info(
            "agent_initialized",
            agent_name=agent_name,
            provider=self.llm_provider.name,
            model=self.llm_provider.model_name,
            temperature=self.config.get("temperature"),
        )

    def _with_system_prompt(self, messages: List[BaseMessage]) -> List[BaseMessage]:
        return [SystemMessage(content=self.system_prompt), *messages]

    async def invoke(self, messages: List[BaseMessage], json_mode: bool = False) -> Any:
        """Invoke the LLM with the agent's system prompt prepended."""
        full_messages = self._with_system_prompt(messages)
        logger.info(
            "agent_invoking_llm",
            agent_name=self.agent_name,
            message_count=len(full_messages),
            json_mode=json_mode,
        )
        response = await self.llm_provider.ainvoke(full_messages, json_mode=json_mode)
        logger.info(
            "agent_llm_response_received",
            agent_name=self.agent_name,
            response_length=len(response.content) if hasattr(response, "content") else 0,
        )
        return response

    def stream(self, messages: List[BaseMessage]) -> AsyncIterator[str]:
        """Stream the LLM answer with the agent's system prompt prepended."""
        logger.info("agent_streaming_llm", agent_name=self.agent_name, message_count=len(messages) + 1)
        return self.llm_provider.astream(self._with_system_prompt(messages))
