import asyncio
import logging
from typing import Protocol

import httpx
import openai

from mealfinder.aopenai import DEFAULT_MODEL, TIMEOUT, openai_client_factory, quick_chat
from mealfinder.errors import AIUnavailableError


logger = logging.getLogger(__name__)


class TextCompleter(Protocol):
    """Given a prompt, returns text or raises."""

    async def complete_text(
        self,
        prompt: str,
        system_instruction: str,
        *,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str:
        ...


class LLMService:
    def __init__(
        self,
        openai_client: openai.AsyncClient | None = None,
        *,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        timeout: float = TIMEOUT,
    ) -> None:
        self._openai_client = openai_client
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    @property
    def openai_client(self) -> openai.AsyncClient:
        # Created on first use so a missing key surfaces as an AI failure.
        if self._openai_client is None:
            self._openai_client = openai_client_factory(
                self.api_key, timeout=self.timeout
            )
        return self._openai_client

    async def complete_text(
        self,
        prompt: str,
        system_instruction: str,
        *,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str:
        try:
            async with asyncio.timeout(self.timeout):
                text = await quick_chat(
                    prompt,
                    system=system_instruction,
                    openai_client=self.openai_client,
                    model=self.model,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
        except TimeoutError as e:
            raise AIUnavailableError(
                f"Completion timed out after {self.timeout}s."
            ) from e
        except (openai.OpenAIError, httpx.HTTPError) as e:
            raise AIUnavailableError(f"Completion failed. {e!r}") from e

        if not text:
            raise AIUnavailableError("Completion returned no text.")
        logger.debug("Completion of %d chars from %s", len(text), self.model)
        return text

    async def close(self) -> None:
        if self._openai_client is not None:
            await self._openai_client.close()
