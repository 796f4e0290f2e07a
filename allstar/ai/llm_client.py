"""
OpenAI grader - sends the cached instruction block plus one listing, returns raw text.
"""
import logging
from typing import Optional, Protocol

from openai import OpenAI, OpenAIError

from ..config import OpenAIConfig, get_config
from ..errors import ConfigurationError, GraderError


logger = logging.getLogger(__name__)


class Grader(Protocol):
    """Maps a rendered prompt to the model's raw text answer."""
    model: str

    def score(self, instructions: str, item_prompt: str) -> str: ...


class OpenAIGrader:
    """
    OpenAI chat-completions grader in JSON mode.

    The instruction block goes out as the system message on every call so the
    provider can reuse its cached prefix across a run; only the user message
    changes per listing.
    """

    def __init__(self, config: Optional[OpenAIConfig] = None, client: Optional[OpenAI] = None):
        config = config or get_config().openai
        self.model = config.model
        self.max_tokens = config.max_tokens
        self.temperature = config.temperature

        if client is not None:
            self.client = client
        elif not config.api_key:
            raise ConfigurationError("OPENAI_API_KEY must be set to grade listings")
        else:
            self.client = OpenAI(api_key=config.api_key)

    def score(self, instructions: str, item_prompt: str) -> str:
        """
        Grade one listing.

        Args:
            instructions: Rubric, feedback exemplars and output contract
            item_prompt: The listing block

        Returns:
            The model's text response, untouched

        Raises:
            GraderError: If the API call fails or returns no text
        """
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": instructions},
                    {"role": "user", "content": item_prompt},
                ],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                response_format={"type": "json_object"},
            )
        except OpenAIError as e:
            raise GraderError(f"OpenAI request failed: {e}") from e

        self._log_cache_usage(response)

        if not response.choices or not response.choices[0].message.content:
            raise GraderError("No text response from model")
        return response.choices[0].message.content

    def _log_cache_usage(self, response) -> None:
        usage = getattr(response, "usage", None)
        details = getattr(usage, "prompt_tokens_details", None)
        cached = getattr(details, "cached_tokens", None) or 0
        if cached:
            logger.debug(f"Prompt cache: read={cached}, input={usage.prompt_tokens}")
