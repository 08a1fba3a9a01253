"""
LLM provider abstraction for TaskManager.

Provides one chat interface over the supported providers with consistent
error handling:

- OpenAIProvider and AnthropicProvider use the official async SDKs
- HuggingFaceProvider calls the Inference API over httpx
- PerplexityProvider calls the OpenAI-compatible chat completions endpoint
  over httpx

Example:
    from taskmanager.core.llm_provider import ChatMessage, ChatRequest, ChatRole

    provider = create_provider(load_llm_config(taskmanager_dir))
    response = await provider.chat(ChatRequest(
        messages=[ChatMessage(role=ChatRole.USER, content="Hello!")]
    ))
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import httpx

from taskmanager.core.llm_config import LLMConfig, LLMProviderType

logger = logging.getLogger(__name__)


# =============================================================================
# Enums
# =============================================================================


class ChatRole(str, Enum):
    """Role of a message in a chat conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class FinishReason(str, Enum):
    """Why a completion ended."""

    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"
    ERROR = "error"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class ChatMessage:
    """A message in a chat conversation."""

    role: ChatRole
    content: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role.value, "content": self.content}


@dataclass
class ChatRequest:
    """One chat completion call.

    Attributes:
        messages: System and user turns, in order
        max_tokens: Completion budget
        temperature: Sampling temperature
        model: Overrides the provider's default model when set
    """

    messages: List[ChatMessage]
    max_tokens: int = 4096
    temperature: float = 0.7
    model: Optional[str] = None


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class ChatResponse:
    """Provider-neutral completion result.

    Attributes:
        content: The assistant's text
        finish_reason: Normalised stop reason
        usage: Prompt and completion token counts
        model: Model name reported by the provider
    """

    content: str
    finish_reason: FinishReason = FinishReason.STOP
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: Optional[str] = None


# =============================================================================
# Exceptions
# =============================================================================


class LLMError(Exception):
    """Raised when an AI provider call fails.

    Attributes:
        provider: Provider name (openai, anthropic, ...)
        retryable: True for transient failures (rate limits, 5xx)
        status_code: HTTP status, when one is known
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        retryable: bool = False,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.retryable = retryable
        self.status_code = status_code


class RateLimitError(LLMError):
    """HTTP 429 from the provider.

    Attributes:
        retry_after: Value of the Retry-After header, in seconds
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        provider: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, provider=provider, retryable=True, status_code=429)
        self.retry_after = retry_after


class AuthenticationError(LLMError):
    """Missing or rejected API key."""

    def __init__(self, message: str = "Authentication failed", *, provider: Optional[str] = None):
        super().__init__(message, provider=provider, retryable=False, status_code=401)


class InvalidRequestError(LLMError):
    """The provider rejected the request parameters."""

    def __init__(self, message: str, *, provider: Optional[str] = None):
        super().__init__(message, provider=provider, retryable=False, status_code=400)


class ModelNotFoundError(LLMError):
    """The configured model does not exist for this key."""

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        model: Optional[str] = None,
    ):
        super().__init__(message, provider=provider, retryable=False, status_code=404)
        self.model = model


class ResponseParseError(LLMError):
    """The provider answered, but not with the JSON that was asked for."""

    def __init__(self, message: str, *, provider: Optional[str] = None):
        super().__init__(message, provider=provider, retryable=False)


# =============================================================================
# Abstract Base Class
# =============================================================================


class LLMProvider(ABC):
    """Common interface for task-generation backends.

    Attributes:
        name: Provider name (e.g., 'openai', 'anthropic')
        default_model: Model used when the request names none
    """

    name: str = "base"
    default_model: str = ""

    @abstractmethod
    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Send the conversation and return the assistant reply.

        Raises:
            LLMError: Any provider failure, normalised
            RateLimitError: After retries are exhausted on 429
            AuthenticationError: When no usable key is configured
        """

    def validate_request(self, request: ChatRequest) -> None:
        """Raise InvalidRequestError for requests that cannot succeed."""
        if not request.messages:
            raise InvalidRequestError("Messages cannot be empty", provider=self.name)
        if request.max_tokens < 1:
            raise InvalidRequestError("max_tokens must be positive", provider=self.name)

    def get_model(self, requested: Optional[str] = None) -> str:
        return requested or self.default_model


def _split_system(messages: List[ChatMessage]) -> Tuple[Optional[str], List[ChatMessage]]:
    """Separate system instructions from the conversation turns."""
    system_parts = [m.content for m in messages if m.role == ChatRole.SYSTEM and m.content]
    rest = [m for m in messages if m.role != ChatRole.SYSTEM]
    return ("\n\n".join(system_parts) or None), rest


def _classify_sdk_error(error: Exception, provider: str) -> LLMError:
    """Map an SDK exception to the LLMError hierarchy by name and message."""
    error_str = str(error)
    error_type = type(error).__name__
    lowered = error_str.lower()

    if error_type == "RateLimitError" or "rate_limit" in lowered:
        retry_after = None
        response = getattr(error, "response", None)
        if response is not None:
            header = response.headers.get("retry-after")
            if header:
                try:
                    retry_after = float(header)
                except ValueError:
                    retry_after = None
        return RateLimitError(error_str, provider=provider, retry_after=retry_after)

    if error_type == "AuthenticationError" or "authentication" in lowered:
        return AuthenticationError(error_str, provider=provider)

    if error_type == "NotFoundError" or "not found" in lowered:
        return ModelNotFoundError(error_str, provider=provider)

    if error_type == "BadRequestError" or "invalid" in lowered:
        return InvalidRequestError(error_str, provider=provider)

    return LLMError(error_str, provider=provider, retryable=True)


# =============================================================================
# OpenAI
# =============================================================================


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions via the ``openai`` SDK.

    Example:
        provider = OpenAIProvider(api_key="sk-...")
        response = await provider.chat(ChatRequest(
            messages=[ChatMessage(role=ChatRole.USER, content="Hello!")]
        ))
    """

    name: str = "openai"
    default_model: str = "gpt-4.1"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        default_model: Optional[str] = None,
        timeout: float = 60.0,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        if default_model:
            self.default_model = default_model
        self._client: Optional[Any] = None

    def _get_client(self) -> Any:
        """Build the AsyncOpenAI client on first use."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                raise LLMError(
                    "openai package not installed. Install with: pip install openai",
                    provider=self.name,
                )

            if not self.api_key:
                raise AuthenticationError(
                    "OpenAI API key not provided. Set OPENAI_API_KEY in .taskmanager/.env",
                    provider=self.name,
                )

            kwargs: Dict[str, Any] = {"api_key": self.api_key, "timeout": self.timeout}
            if self.base_url:
                kwargs["base_url"] = self.base_url
            self._client = AsyncOpenAI(**kwargs)

        return self._client

    async def chat(self, request: ChatRequest) -> ChatResponse:
        self.validate_request(request)
        client = self._get_client()
        model = self.get_model(request.model)

        try:
            response = await client.chat.completions.create(
                model=model,
                messages=[msg.to_dict() for msg in request.messages],
                max_tokens=request.max_tokens,
                temperature=request.temperature,
            )
        except Exception as e:
            raise _classify_sdk_error(e, self.name) from e

        choice = response.choices[0]
        usage = TokenUsage(
            prompt_tokens=response.usage.prompt_tokens if response.usage else 0,
            completion_tokens=response.usage.completion_tokens if response.usage else 0,
            total_tokens=response.usage.total_tokens if response.usage else 0,
        )
        return ChatResponse(
            content=choice.message.content or "",
            finish_reason=_map_finish_reason(choice.finish_reason),
            usage=usage,
            model=response.model,
        )


def _map_finish_reason(reason: Optional[str]) -> FinishReason:
    """Map OpenAI-style finish reasons (also used by Perplexity)."""
    mapping = {
        "stop": FinishReason.STOP,
        "length": FinishReason.LENGTH,
        "content_filter": FinishReason.CONTENT_FILTER,
    }
    return mapping.get(reason or "stop", FinishReason.STOP)


# =============================================================================
# Anthropic
# =============================================================================


class AnthropicProvider(LLMProvider):
    """Anthropic messages API via the ``anthropic`` SDK.

    The system prompt is passed as the separate ``system`` parameter.
    """

    name: str = "anthropic"
    default_model: str = "claude-sonnet-4-5"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        default_model: Optional[str] = None,
        timeout: float = 60.0,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        if default_model:
            self.default_model = default_model
        self._client: Optional[Any] = None

    def _get_client(self) -> Any:
        """Build the AsyncAnthropic client on first use."""
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError:
                raise LLMError(
                    "anthropic package not installed. Install with: pip install anthropic",
                    provider=self.name,
                )

            if not self.api_key:
                raise AuthenticationError(
                    "Anthropic API key not provided. Set ANTHROPIC_API_KEY in .taskmanager/.env",
                    provider=self.name,
                )

            kwargs: Dict[str, Any] = {"api_key": self.api_key, "timeout": self.timeout}
            if self.base_url:
                kwargs["base_url"] = self.base_url
            self._client = AsyncAnthropic(**kwargs)

        return self._client

    async def chat(self, request: ChatRequest) -> ChatResponse:
        self.validate_request(request)
        client = self._get_client()
        model = self.get_model(request.model)
        system_message, messages = _split_system(request.messages)

        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": [msg.to_dict() for msg in messages],
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }
        if system_message:
            kwargs["system"] = system_message

        try:
            response = await client.messages.create(**kwargs)
        except Exception as e:
            raise _classify_sdk_error(e, self.name) from e

        text = "".join(block.text for block in response.content if block.type == "text")
        usage = TokenUsage(
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
            total_tokens=response.usage.input_tokens + response.usage.output_tokens,
        )
        finish_reason = (
            FinishReason.LENGTH if response.stop_reason == "max_tokens" else FinishReason.STOP
        )
        return ChatResponse(
            content=text,
            finish_reason=finish_reason,
            usage=usage,
            model=response.model,
        )


# =============================================================================
# HTTP providers
# =============================================================================

DEFAULT_MAX_RETRIES = 3


class HTTPChatProvider(LLMProvider):
    """Base for providers called over plain HTTP with httpx.

    Retries with exponential backoff on 429, 5xx, timeouts and connection
    errors; 401 and other 4xx fail immediately.
    """

    base_url: str = ""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        default_model: Optional[str] = None,
        timeout: float = 60.0,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        if base_url:
            self.base_url = base_url.rstrip("/")
        if default_model:
            self.default_model = default_model
        self.timeout = timeout
        self.max_retries = max(max_retries, 1)
        self.backoff = backoff
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise AuthenticationError(
                f"{self.name} API key not provided. Set "
                f"{self.name.upper()}_API_KEY in .taskmanager/.env",
                provider=self.name,
            )
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _post_with_retry(self, url: str, payload: Dict[str, Any]) -> Any:
        """POST ``payload`` and return the decoded JSON body.

        Raises:
            AuthenticationError: On 401
            RateLimitError: If still rate limited after all retries
            ModelNotFoundError: On 404
            LLMError: For other API errors or exhausted retries
        """
        headers = self._headers()
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            wait_time = self.backoff * (2**attempt)
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.post(url, json=payload, headers=headers)

                if response.status_code == 401:
                    raise AuthenticationError("Invalid API key", provider=self.name)

                if response.status_code == 429:
                    retry_after = _parse_retry_after(response)
                    if attempt < self.max_retries - 1:
                        delay = retry_after if retry_after is not None else wait_time
                        logger.warning(
                            f"{self.name} rate limit hit, waiting {delay}s "
                            f"(attempt {attempt + 1}/{self.max_retries})"
                        )
                        await asyncio.sleep(delay)
                        continue
                    raise RateLimitError(provider=self.name, retry_after=retry_after)

                if response.status_code >= 500:
                    if attempt < self.max_retries - 1:
                        logger.warning(
                            f"{self.name} server error {response.status_code}, "
                            f"retrying in {wait_time}s "
                            f"(attempt {attempt + 1}/{self.max_retries})"
                        )
                        await asyncio.sleep(wait_time)
                        continue
                    raise LLMError(
                        f"API error {response.status_code}: {_extract_error_message(response)}",
                        provider=self.name,
                        retryable=True,
                        status_code=response.status_code,
                    )

                if response.status_code == 404:
                    raise ModelNotFoundError(
                        f"API error 404: {_extract_error_message(response)}",
                        provider=self.name,
                        model=payload.get("model"),
                    )

                if response.status_code >= 400:
                    raise LLMError(
                        f"API error {response.status_code}: {_extract_error_message(response)}",
                        provider=self.name,
                        status_code=response.status_code,
                    )

                try:
                    return response.json()
                except ValueError as e:
                    raise ResponseParseError(
                        f"Response body is not JSON: {e}", provider=self.name
                    ) from e

            except httpx.TimeoutException as e:
                last_error = e
                if attempt < self.max_retries - 1:
                    logger.warning(
                        f"{self.name} request timeout, retrying in {wait_time}s "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    await asyncio.sleep(wait_time)

            except httpx.RequestError as e:
                last_error = e
                if attempt < self.max_retries - 1:
                    logger.warning(
                        f"{self.name} request error: {e}, retrying in {wait_time}s "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    await asyncio.sleep(wait_time)

        raise LLMError(
            f"Request failed after {self.max_retries} attempts: {last_error}",
            provider=self.name,
            retryable=True,
        )


def _parse_retry_after(response: httpx.Response) -> Optional[float]:
    retry_after = response.headers.get("Retry-After")
    if retry_after:
        try:
            return float(retry_after)
        except ValueError:
            pass
    return None


def _extract_error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] if response.text else "Unknown error"
    if isinstance(data, dict):
        error = data.get("error", data.get("message"))
        if isinstance(error, dict):
            error = error.get("message")
        if error:
            return str(error)
    return response.text[:200]


class PerplexityProvider(HTTPChatProvider):
    """Perplexity chat completions (OpenAI-compatible schema)."""

    name: str = "perplexity"
    default_model: str = "sonar"
    base_url: str = "https://api.perplexity.ai"

    async def chat(self, request: ChatRequest) -> ChatResponse:
        self.validate_request(request)
        model = self.get_model(request.model)
        payload = {
            "model": model,
            "messages": [msg.to_dict() for msg in request.messages],
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }
        data = await self._post_with_retry(f"{self.base_url}/chat/completions", payload)

        try:
            choice = data["choices"][0]
            content = choice["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ResponseParseError(
                f"Unexpected chat completion payload: {e}", provider=self.name
            ) from e

        raw_usage = data.get("usage") or {}
        return ChatResponse(
            content=content,
            finish_reason=_map_finish_reason(choice.get("finish_reason")),
            usage=TokenUsage(
                prompt_tokens=raw_usage.get("prompt_tokens", 0),
                completion_tokens=raw_usage.get("completion_tokens", 0),
                total_tokens=raw_usage.get("total_tokens", 0),
            ),
            model=data.get("model", model),
        )


class HuggingFaceProvider(HTTPChatProvider):
    """Hugging Face Inference API text generation.

    Chat messages are flattened into an ``[INST]`` prompt.
    """

    name: str = "huggingface"
    default_model: str = "mistralai/Mistral-7B-Instruct-v0.3"
    base_url: str = "https://api-inference.huggingface.co/models"

    @staticmethod
    def _build_prompt(messages: List[ChatMessage]) -> str:
        system_message, turns = _split_system(messages)
        body = "\n\n".join(m.content for m in turns if m.content)
        if system_message:
            body = f"{system_message}\n\n{body}"
        return f"<s>[INST] {body} [/INST]"

    async def chat(self, request: ChatRequest) -> ChatResponse:
        self.validate_request(request)
        model = self.get_model(request.model)
        payload = {
            "inputs": self._build_prompt(request.messages),
            "parameters": {
                "max_new_tokens": request.max_tokens,
                "temperature": request.temperature,
                "return_full_text": False,
            },
        }
        data = await self._post_with_retry(f"{self.base_url}/{model}", payload)

        if isinstance(data, list) and data and isinstance(data[0], dict):
            text = data[0].get("generated_text")
        elif isinstance(data, dict):
            text = data.get("generated_text")
        else:
            text = None
        if not isinstance(text, str):
            raise ResponseParseError(
                "Inference API response has no generated_text", provider=self.name
            )

        return ChatResponse(content=text, model=model)


# =============================================================================
# Factory
# =============================================================================


def create_provider(config: LLMConfig) -> LLMProvider:
    """Instantiate the provider named by ``config``.

    Raises:
        AuthenticationError: If no API key is configured for the provider
    """
    api_key = config.get_api_key()
    if not api_key:
        raise AuthenticationError(
            f"No API key configured for {config.provider.value}",
            provider=config.provider.value,
        )

    kwargs: Dict[str, Any] = {
        "api_key": api_key,
        "base_url": config.base_url,
        "default_model": config.get_model(),
        "timeout": float(config.timeout),
    }

    if config.provider == LLMProviderType.OPENAI:
        return OpenAIProvider(**kwargs)
    if config.provider == LLMProviderType.ANTHROPIC:
        return AnthropicProvider(**kwargs)
    if config.provider == LLMProviderType.HUGGINGFACE:
        return HuggingFaceProvider(**kwargs)
    if config.provider == LLMProviderType.PERPLEXITY:
        return PerplexityProvider(**kwargs)

    raise InvalidRequestError(f"Unsupported provider: {config.provider}")


__all__ = [
    "ChatRole",
    "FinishReason",
    "ChatMessage",
    "ChatRequest",
    "TokenUsage",
    "ChatResponse",
    "LLMError",
    "RateLimitError",
    "AuthenticationError",
    "InvalidRequestError",
    "ModelNotFoundError",
    "ResponseParseError",
    "LLMProvider",
    "OpenAIProvider",
    "AnthropicProvider",
    "HTTPChatProvider",
    "PerplexityProvider",
    "HuggingFaceProvider",
    "create_provider",
]
