"""Offline LLM backend.

Returns scripted or computed responses without network access. Used by the
pipeline when no provider key is configured and throughout the tests.
"""

import logging
from collections import deque
from typing import Callable, Iterable

from .base import GenerationConfig, GenerationResult, InvalidResponseError, LLMBackend

logger = logging.getLogger(__name__)

Responder = Callable[[str], str]


class MockLLMBackend(LLMBackend):
    """Deterministic backend for tests and offline runs.

    Responses come from a script (consumed in order; exceptions in the
    script are raised) or from a ``responder`` callable that maps the prompt
    to a reply. Every prompt is recorded in ``calls``.

    Example:
        >>> backend = MockLLMBackend(['{"ok": true}'])
        >>> (await backend.generate("anything")).content
        '{"ok": true}'
    """

    def __init__(
        self,
        responses: Iterable[str | BaseException] | None = None,
        *,
        responder: Responder | None = None,
        model: str = "mock",
    ):
        self._script: deque[str | BaseException] = deque(responses or [])
        self._responder = responder
        self._model = model
        self.calls: list[str] = []
        self.configs: list[GenerationConfig | None] = []

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def provider(self) -> str:
        return "mock"

    @property
    def supports_json_mode(self) -> bool:
        return True

    @property
    def context_window(self) -> int:
        return 200000

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        config: GenerationConfig | None = None,
    ) -> GenerationResult:
        self.calls.append(prompt)
        self.configs.append(config)

        if self._script:
            item = self._script.popleft()
            if isinstance(item, BaseException):
                raise item
            content = item
        elif self._responder is not None:
            content = self._responder(prompt)
        else:
            raise InvalidResponseError("Mock backend has no scripted response left")

        logger.debug(f"Mock LLM call #{len(self.calls)} -> {len(content)} chars")
        return GenerationResult(
            content=content,
            finish_reason="stop",
            usage={
                "prompt_tokens": len(prompt) // 4,
                "completion_tokens": len(content) // 4,
                "total_tokens": (len(prompt) + len(content)) // 4,
            },
            model=self._model,
        )


__all__ = ["MockLLMBackend", "Responder"]
