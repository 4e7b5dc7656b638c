import logging
from typing import Dict, List, Optional

import openai
from openai import AsyncOpenAI

from . import config

logger = logging.getLogger(__name__)


class GenerationClient:
    """
    Thin wrapper around an OpenAI-compatible chat-completions endpoint.

    Never raises on backend trouble: network errors, API errors and replies
    without ``choices[0].message.content`` all come back as the fixed
    fallback message.
    """

    def __init__(
        self,
        base_url: str = None,
        api_key: str = None,
        model: str = None,
        temperature: float = None,
        max_tokens: int = None,
        timeout: float = None,
        fallback_message: str = None,
        openai_client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model or config.GENERATION_MODEL
        self.temperature = temperature if temperature is not None else config.GENERATION_TEMPERATURE
        self.max_tokens = max_tokens or config.GENERATION_MAX_TOKENS
        self.fallback_message = fallback_message or config.GENERATION_FALLBACK_MESSAGE
        self.openai_client = openai_client or AsyncOpenAI(
            base_url=base_url or config.GENERATION_API_URL,
            api_key=api_key or config.GENERATION_API_KEY,
            timeout=timeout if timeout is not None else config.GENERATION_TIMEOUT_SECONDS,
            max_retries=0,
        )

    @classmethod
    def from_settings(cls, settings: config.Settings) -> "GenerationClient":
        return cls(
            base_url=settings.generation_url,
            api_key=settings.generation_api_key,
            model=settings.generation_model,
            temperature=settings.generation_temperature,
            max_tokens=settings.generation_max_tokens,
            timeout=settings.generation_timeout,
        )

    async def aclose(self) -> None:
        await self.openai_client.close()

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        """
        Generate an answer for an ordered list of chat messages.

        Args:
            messages: ``[{"role": ..., "content": ...}, ...]`` in conversation order.

        Returns:
            The answer text, or the fallback message if the backend failed.
        """
        try:
            response = await self.openai_client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                stream=False,
            )
        except (openai.OpenAIError, ValueError) as e:
            logger.error(f"[GENERATION] Backend call failed: {type(e).__name__}: {e}")
            return self.fallback_message

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            logger.error(f"[GENERATION] Malformed completion: {type(e).__name__}: {e}")
            return self.fallback_message

        if not isinstance(content, str) or not content.strip():
            logger.error("[GENERATION] Completion has no content")
            return self.fallback_message

        answer = content.strip()
        logger.info(f"[GENERATION] Answer received: {answer[:100]}...")
        return answer
