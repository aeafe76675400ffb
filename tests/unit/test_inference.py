"""Unit tests for the HTTP inference provider."""

import json

import httpx
import pytest
from pytest_httpx import HTTPXMock

from startup_pulse.services.inference import (
    ErrorKind,
    HttpInferenceProvider,
    InferenceError,
    is_messages_model,
    is_rate_limited,
)

BASE_URL = "http://gateway.test"
CLAUDE = "anthropic.claude-test"
MISTRAL = "mistral.large-test"


@pytest.fixture
def provider():
    return HttpInferenceProvider(BASE_URL, timeout=5.0)


class TestHttpInferenceProviderInit:
    """Tests for HttpInferenceProvider initialization."""

    def test_base_url_required(self):
        with pytest.raises(ValueError, match="base_url is required"):
            HttpInferenceProvider("  ")

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValueError, match="timeout must be positive"):
            HttpInferenceProvider(BASE_URL, timeout=0)


class TestRequestFormats:
    """Tests for model-specific bodies."""

    def test_messages_model_detection(self):
        assert is_messages_model(CLAUDE)
        assert is_messages_model("us.claude-sonnet")
        assert not is_messages_model(MISTRAL)

    def test_messages_body(self, provider):
        body = provider.build_body("hi", CLAUDE)
        assert body["messages"] == [{"role": "user", "content": "hi"}]
        assert body["max_tokens"] == 4000
        assert body["temperature"] == 0.1

    def test_prompt_body(self, provider):
        body = provider.build_body("hi", MISTRAL)
        assert body["prompt"] == "hi"
        assert body["top_p"] == 0.9
        assert "messages" not in body

    def test_extract_text_bad_shape_raises(self, provider):
        with pytest.raises(InferenceError, match="Unexpected response shape"):
            provider.extract_text({"outputs": []}, MISTRAL)


class TestInvoke:
    """Tests for invoke against a mocked gateway."""

    @pytest.mark.asyncio
    async def test_messages_model(self, provider, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="POST",
            url=f"{BASE_URL}/model/{CLAUDE}/invoke",
            json={"content": [{"text": "claude says hi"}]},
        )

        assert await provider.invoke("hello", CLAUDE) == "claude says hi"
        sent = json.loads(httpx_mock.get_request().content)
        assert sent["messages"][0]["content"] == "hello"

    @pytest.mark.asyncio
    async def test_prompt_model(self, provider, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="POST",
            url=f"{BASE_URL}/model/{MISTRAL}/invoke",
            json={"outputs": [{"text": "mistral says hi"}]},
        )
        assert await provider.invoke("hello", MISTRAL) == "mistral says hi"

    @pytest.mark.asyncio
    async def test_429_is_rate_limited(self, provider, httpx_mock: HTTPXMock):
        httpx_mock.add_response(status_code=429, text="Too many requests")

        with pytest.raises(InferenceError) as exc:
            await provider.invoke("hello", CLAUDE)
        assert exc.value.kind == ErrorKind.RATE_LIMITED
        assert exc.value.status_code == 429
        assert exc.value.provider_id == CLAUDE
        assert is_rate_limited(exc.value)

    @pytest.mark.asyncio
    async def test_server_error_is_other(self, provider, httpx_mock: HTTPXMock):
        httpx_mock.add_response(status_code=500, text="boom")

        with pytest.raises(InferenceError, match="HTTP 500") as exc:
            await provider.invoke("hello", CLAUDE)
        assert exc.value.kind == ErrorKind.OTHER
        assert not is_rate_limited(exc.value)

    @pytest.mark.asyncio
    async def test_timeout(self, provider, httpx_mock: HTTPXMock):
        httpx_mock.add_exception(httpx.ReadTimeout("too slow"))

        with pytest.raises(InferenceError) as exc:
            await provider.invoke("hello", CLAUDE)
        assert exc.value.kind == ErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_connection_error(self, provider, httpx_mock: HTTPXMock):
        httpx_mock.add_exception(httpx.ConnectError("refused"))

        with pytest.raises(InferenceError, match="Request failed") as exc:
            await provider.invoke("hello", CLAUDE)
        assert exc.value.kind == ErrorKind.OTHER

    @pytest.mark.asyncio
    async def test_invalid_json(self, provider, httpx_mock: HTTPXMock):
        httpx_mock.add_response(text="not json")

        with pytest.raises(InferenceError, match="Invalid response body"):
            await provider.invoke("hello", CLAUDE)

    @pytest.mark.asyncio
    async def test_empty_prompt_raises(self, provider):
        with pytest.raises(ValueError, match="prompt is required"):
            await provider.invoke("", CLAUDE)


class TestIsRateLimited:
    """Tests for throttling recognition."""

    def test_http_status_error_429(self):
        request = httpx.Request("POST", BASE_URL)
        response = httpx.Response(429, request=request)
        error = httpx.HTTPStatusError("throttled", request=request, response=response)
        assert is_rate_limited(error)

    def test_plain_error(self):
        assert not is_rate_limited(RuntimeError("x"))
