"""Generation collaborator: the boundary to the text-generation provider.

The orchestrator only depends on the GenerationClient protocol:

    async generate(prompt, params) -> str

Any failure is raised as GenerationError and treated as a single terminal
error for that agent's attempt. Retry and backoff are deliberately absent
from this layer.

Implementations:
- LiteLLMGenerationClient: Multi-provider client on top of litellm
- MockGenerationClient: Echo or scripted responses for tests and offline runs
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

import structlog
from litellm import acompletion
from litellm.exceptions import APIError, AuthenticationError, BadRequestError, Timeout
from pydantic import BaseModel, ConfigDict, Field

from config import settings
from errors import GenerationError
from models.schemas import OutputFormat

logger = structlog.get_logger(__name__)


class GenerationParams(BaseModel):
    """Task parameters passed with every generation call."""

    model_config = ConfigDict(frozen=True)

    max_tokens: int = Field(default=2000, gt=0)
    temperature: float = Field(default=0.7, ge=0.0, le=1.0)
    output_format: OutputFormat = OutputFormat.MARKDOWN
    model: str | None = None
    system_prompt: str | None = None


@runtime_checkable
class GenerationClient(Protocol):
    """Anything that can turn a prompt into text."""

    async def generate(self, prompt: str, params: GenerationParams) -> str: ...


class LiteLLMGenerationClient:
    """Generation client backed by litellm's async completion API.

    Attributes:
        default_model: Model used when neither params nor the document name one.
        timeout_seconds: Per-call timeout handed to the provider.
    """

    def __init__(
        self,
        default_model: str | None = None,
        timeout_seconds: int | None = None,
    ) -> None:
        self.default_model = default_model or settings.default_model
        self.timeout_seconds = timeout_seconds or settings.generation_timeout_seconds

    async def generate(self, prompt: str, params: GenerationParams) -> str:
        """Make a single completion call.

        Raises:
            GenerationError: On any provider failure or an empty completion.
        """
        model = params.model or self.default_model
        messages: list[dict[str, Any]] = []
        if params.system_prompt:
            messages.append({"role": "system", "content": params.system_prompt})
        messages.append({"role": "user", "content": prompt})

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": params.temperature,
            "max_tokens": params.max_tokens,
            "timeout": self.timeout_seconds,
        }
        if params.output_format == OutputFormat.JSON:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await acompletion(**kwargs)
        except (AuthenticationError, BadRequestError) as e:
            logger.error("generation_rejected", model=model, error=str(e))
            raise GenerationError(f"Provider rejected the request: {e}", cause=type(e).__name__) from e
        except (Timeout, APIError) as e:
            logger.warning("generation_failed", model=model, error=str(e))
            raise GenerationError(f"Generation failed: {e}", cause=type(e).__name__) from e
        except Exception as e:
            logger.exception("generation_unexpected_error", model=model)
            raise GenerationError(f"Generation failed: {e}", cause=type(e).__name__) from e

        content = response.choices[0].message.content or ""
        if not content:
            raise GenerationError("Provider returned an empty completion", cause="empty_completion")
        return content


Responder = Callable[[str, GenerationParams], str | Awaitable[str]]


class MockGenerationClient:
    """Mock generation client for testing without provider calls.

    Responses are produced, in order of precedence, from a scripted list
    (items may be exceptions to raise), a responder callable, or by echoing
    ``prefix + prompt``.

    Usage:
        >>> client = MockGenerationClient(prefix="OUT:")
        >>> await client.generate("hello", GenerationParams())
        'OUT:hello'
    """

    def __init__(
        self,
        responses: list[str | Exception] | None = None,
        responder: Responder | None = None,
        prefix: str = "",
        delay: float = 0.0,
    ) -> None:
        self.responses = list(responses) if responses else []
        self.responder = responder
        self.prefix = prefix
        self.delay = delay
        self.call_history: list[dict[str, Any]] = []
        self._response_index = 0

    @property
    def call_count(self) -> int:
        return len(self.call_history)

    async def generate(self, prompt: str, params: GenerationParams) -> str:
        """Return the next scripted response, recording the call."""
        self.call_history.append({"prompt": prompt, "params": params})

        if self.delay:
            await asyncio.sleep(self.delay)

        if self._response_index < len(self.responses):
            response = self.responses[self._response_index]
            self._response_index += 1
            if isinstance(response, Exception):
                raise response
        elif self.responder is not None:
            response = self.responder(prompt, params)
            if inspect.isawaitable(response):
                response = await response
        else:
            response = self.prefix + prompt

        logger.debug(
            "mock_generation_call",
            call_index=len(self.call_history) - 1,
            content_preview=response[:50],
        )
        return response

    def reset(self) -> None:
        """Reset the mock to start returning responses from the beginning."""
        self._response_index = 0
        self.call_history.clear()


def create_generation_client() -> GenerationClient:
    """Build the client selected by settings."""
    if settings.use_mock_llm:
        logger.info("generation_client_mock")
        return MockGenerationClient(prefix="[mock] ")
    return LiteLLMGenerationClient()
