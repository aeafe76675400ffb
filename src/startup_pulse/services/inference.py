"""Inference provider interface and HTTP adapter."""

from enum import Enum
from typing import Protocol

import httpx


class ErrorKind(str, Enum):
    """Classification set by the adapter that observed the failure."""

    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    OTHER = "other"


class InferenceError(Exception):
    """Raised when an inference call fails."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.OTHER,
        provider_id: str | None = None,
        status_code: int | None = None,
    ):
        self.kind = kind
        self.provider_id = provider_id
        self.status_code = status_code
        super().__init__(message)


def is_rate_limited(error: BaseException) -> bool:
    """True when the error signals provider throttling."""
    if isinstance(error, InferenceError):
        return error.kind == ErrorKind.RATE_LIMITED
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code == 429
    return getattr(error, "status_code", None) == 429


class InferenceProvider(Protocol):
    """Anything that turns a prompt into raw model text."""

    async def invoke(self, prompt: str, model_id: str) -> str: ...


def is_messages_model(model_id: str) -> bool:
    return model_id.startswith("anthropic.") or "claude" in model_id


class HttpInferenceProvider:
    """Invokes models through an HTTP inference gateway.

    The gateway accepts `POST {base_url}/model/{model_id}/invoke` with the
    model's native request body and returns its native response body.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 60.0,
        max_tokens: int = 4000,
        temperature: float = 0.1,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not base_url or not base_url.strip():
            raise ValueError("base_url is required")
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if max_tokens <= 0:
            raise ValueError("max_tokens must be positive")

        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._transport = transport

    def build_body(self, prompt: str, model_id: str) -> dict:
        """Request body in the model family's native format."""
        if is_messages_model(model_id):
            return {
                "anthropic_version": "bedrock-2023-05-31",
                "max_tokens": self._max_tokens,
                "temperature": self._temperature,
                "messages": [{"role": "user", "content": prompt}],
            }
        return {
            "prompt": prompt,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "top_p": 0.9,
        }

    def extract_text(self, data: dict, model_id: str) -> str:
        """Pull the generated text out of a native response body."""
        try:
            if is_messages_model(model_id):
                return data["content"][0]["text"]
            return data["outputs"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise InferenceError(
                f"Unexpected response shape from {model_id}: {e}",
                provider_id=model_id,
            ) from e

    async def invoke(self, prompt: str, model_id: str) -> str:
        """Call the gateway and return the generated text."""
        if not prompt:
            raise ValueError("prompt is required")
        if not model_id:
            raise ValueError("model_id is required")

        url = f"{self._base_url}/model/{model_id}/invoke"
        body = self.build_body(prompt, model_id)

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(url, json=body)
        except httpx.TimeoutException as e:
            raise InferenceError(
                f"Request timed out: {e}", kind=ErrorKind.TIMEOUT, provider_id=model_id
            ) from e
        except httpx.RequestError as e:
            raise InferenceError(f"Request failed: {e}", provider_id=model_id) from e

        if response.status_code == 429:
            raise InferenceError(
                f"Too many requests: {response.text}",
                kind=ErrorKind.RATE_LIMITED,
                provider_id=model_id,
                status_code=429,
            )
        if response.status_code >= 400:
            raise InferenceError(
                f"HTTP {response.status_code}: {response.text}",
                provider_id=model_id,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise InferenceError(f"Invalid response body: {e}", provider_id=model_id) from e
        return self.extract_text(data, model_id)
