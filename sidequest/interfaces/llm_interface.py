"""Abstract interface for advisory oracle (LLM) providers."""

from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
import asyncio
import json
import logging
import re

logger = logging.getLogger(__name__)

SPRINT_SYSTEM_PROMPT = """You organize the tickets of a sidequest into sprints.

Weigh the following when grouping tickets:
1. Parents finish before their children.
2. Story point totals stay even across sprints and within the stated limits.
3. URGENT and HIGH priority tickets land in earlier sprints.
4. Related tickets share a sprint where possible.

Respond with a JSON object of the form:
{"sprints": [{"sprint_number": 1, "theme": "...", "ticket_ids": ["..."], "total_points": 0, "rationale": "..."}]}
Use only ticket ids from the input."""


def build_sprint_prompt(
    tickets: List[Dict[str, Any]],
    strategy: str,
    constraints: Dict[str, int],
    quest_context: Dict[str, Any],
) -> str:
    """Render the user prompt for a sprint organization request."""
    return f"""## SIDEQUEST
Title: {quest_context.get('title') or 'Unknown'}
Description: {quest_context.get('description') or 'No description'}

## ORGANIZATION SETTINGS
Strategy: {strategy}
Max points per sprint: {constraints['max_points_per_sprint']}
Max tickets per sprint: {constraints['max_tickets_per_sprint']}

## TICKETS TO ORGANIZE
{json.dumps(tickets, indent=2)}

Organize these tickets into sprints following the {strategy} strategy."""


class LLMProviderInterface(ABC):
    """Abstract interface for LLM providers used as an advisory oracle.

    Providers raise on transport or parsing failure; callers own the
    fallback.
    """

    @abstractmethod
    async def suggest_sprint_plan(
        self,
        tickets: List[Dict[str, Any]],
        strategy: str,
        constraints: Dict[str, int],
        quest_context: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Suggest a sprint grouping.

        Args:
            tickets: Compact ticket projections (id, type, title, description,
                priority, story_points, parent_id, status)
            strategy: balanced, priority_first or dependency_aware
            constraints: max_points_per_sprint and max_tickets_per_sprint
            quest_context: Quest title and description

        Returns:
            Dictionary containing:
                - sprints: list of {sprint_number, theme, ticket_ids,
                  total_points, rationale}; untrusted and sanitized by the caller
        """
        pass

    @abstractmethod
    def get_model_name(self) -> str:
        """Get the name of the model being used.

        Returns:
            Model name string
        """
        pass

    async def aclose(self) -> None:
        """Release the provider's HTTP resources."""
        client = getattr(self, "client", None)
        if client is not None:
            await client.close()


class OpenAIProvider(LLMProviderInterface):
    """OpenAI GPT implementation."""

    def __init__(self, api_key: str, model: str = "gpt-4o", temperature: float = 0.3, max_tokens: int = 2000):
        """Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key
            model: Model to use for completions
            temperature: Sampling temperature
            max_tokens: Completion token limit
        """
        import openai
        import httpx

        # Explicit httpx client avoids proxy parameter issues
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            http_client=httpx.AsyncClient()
        )
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def suggest_sprint_plan(
        self,
        tickets: List[Dict[str, Any]],
        strategy: str,
        constraints: Dict[str, int],
        quest_context: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Suggest sprints using GPT."""
        kwargs = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SPRINT_SYSTEM_PROMPT},
                {"role": "user", "content": build_sprint_prompt(tickets, strategy, constraints, quest_context)},
            ],
            "response_format": {"type": "json_object"},
            "temperature": self.temperature,
        }

        # Newer models take max_completion_tokens instead of max_tokens
        if "gpt-5" in self.model or self.model.startswith("o1"):
            kwargs["max_completion_tokens"] = self.max_tokens
        else:
            kwargs["max_tokens"] = self.max_tokens

        try:
            response = await self.client.chat.completions.create(**kwargs)
            content = response.choices[0].message.content
            if not content:
                raise ValueError("Empty response from OpenAI")
            result = json.loads(content)
            logger.debug(f"Sprint plan suggested with {len(result.get('sprints') or [])} sprints")
            return result
        except Exception as e:
            logger.error(f"Failed to suggest sprint plan: {e}")
            raise

    def get_model_name(self) -> str:
        """Get OpenAI model name."""
        return self.model


class AnthropicProvider(LLMProviderInterface):
    """Anthropic Claude implementation."""

    def __init__(self, api_key: str, model: str = "claude-3-5-sonnet-latest", temperature: float = 0.3, max_tokens: int = 2000):
        """Initialize Anthropic provider.

        Args:
            api_key: Anthropic API key
            model: Model to use
            temperature: Sampling temperature
            max_tokens: Completion token limit
        """
        import anthropic

        self.client = anthropic.AsyncAnthropic(api_key=api_key)
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def suggest_sprint_plan(
        self,
        tickets: List[Dict[str, Any]],
        strategy: str,
        constraints: Dict[str, int],
        quest_context: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Suggest sprints using Claude."""
        try:
            response = await self.client.messages.create(
                model=self.model,
                system=SPRINT_SYSTEM_PROMPT,
                messages=[
                    {"role": "user", "content": build_sprint_prompt(tickets, strategy, constraints, quest_context)}
                ],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )

            # Claude returns text, so pull the JSON object out of it
            content = response.content[0].text
            json_match = re.search(r"\{.*\}", content, re.DOTALL)
            if not json_match:
                raise ValueError("No JSON found in response")
            return json.loads(json_match.group())
        except Exception as e:
            logger.error(f"Failed to suggest sprint plan with Claude: {e}")
            raise

    def get_model_name(self) -> str:
        """Get Anthropic model name."""
        return self.model


# Registry for LLM providers
LLM_PROVIDERS = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
}


# Provider built for the settings object it was read from; rebuilt after reload_settings()
_provider = None
_provider_settings = None


def _close_in_background(provider: LLMProviderInterface) -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning("No running event loop; replaced oracle client left for garbage collection")
        return
    loop.create_task(provider.aclose())


def _build_llm_provider(config) -> Optional[LLMProviderInterface]:
    provider_class = LLM_PROVIDERS.get(config.provider)
    if not provider_class:
        raise ValueError(f"Unknown LLM provider: {config.provider}")

    api_key = config.get_api_key()
    if not api_key:
        logger.info(f"No API key for {config.provider}; sprint planning uses the built-in algorithm")
        return None

    kwargs = {"api_key": api_key, "temperature": config.temperature, "max_tokens": config.max_tokens}
    # The default model name is an OpenAI one; Anthropic keeps its own default
    if config.provider == "openai" or not config.model.startswith("gpt"):
        kwargs["model"] = config.model

    logger.info(f"Using {config.provider} oracle with model {kwargs.get('model', 'default')}")
    return provider_class(**kwargs)


def get_llm_provider() -> Optional[LLMProviderInterface]:
    """Get the configured oracle, or ``None`` when no API key is set.

    The provider and its HTTP client are created once and shared until the
    settings are reloaded.

    Returns:
        Configured LLM provider instance or None
    """
    from sidequest.core.config import get_settings

    global _provider, _provider_settings
    settings = get_settings()
    if _provider_settings is settings:
        return _provider

    if _provider is not None:
        logger.info("Settings changed; rebuilding the oracle provider")
        _close_in_background(_provider)
    _provider = _build_llm_provider(settings.llm)
    _provider_settings = settings
    return _provider


async def close_llm_provider() -> None:
    """Close the shared provider's client and forget it."""
    global _provider, _provider_settings
    provider, _provider, _provider_settings = _provider, None, None
    if provider is not None:
        await provider.aclose()
