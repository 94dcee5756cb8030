"""Tests for the Gemini client using httpx.MockTransport."""

import asyncio
import base64
import json

import httpx
import pytest

from studyagent.core.config import Settings
from studyagent.core.errors import UpstreamError, UpstreamPermissionDeniedError, UpstreamTimeoutError
from studyagent.features.oracle.client import GeminiOracle, load_service_account_info
from studyagent.tests.mocks import function_call_response

DECLARATIONS = [{"name": "generate_test", "description": "d", "parameters": {"type": "object", "properties": {}}}]


class FakeTokenProvider:
    project_id = "study-project"
    client_email = "router@study-project.iam.gserviceaccount.com"

    async def token(self):
        return "ya29.token"


def _settings(**overrides):
    values = dict(
        GEMINI_API_KEY=None,
        GOOGLE_SERVICE_ACCOUNT_BASE64=None,
        GOOGLE_SERVICE_ACCOUNT_FILE=None,
        GEMINI_MODEL="gemini-2.5-flash",
        VERTEX_LOCATION="us-central1",
    )
    values.update(overrides)
    return Settings(**values)


def _oracle(handler, cfg=None, token_provider=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiOracle(cfg or _settings(GEMINI_API_KEY="test-key"), http_client=client, token_provider=token_provider)


async def _generate(oracle, timeout=5.0):
    return await oracle.generate(
        "classify this", DECLARATIONS, temperature=0.1, max_output_tokens=500, timeout=timeout
    )


@pytest.mark.asyncio
async def test_api_key_request_shape():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=function_call_response("generate_test"))

    oracle = _oracle(handler)
    data = await _generate(oracle)
    await oracle.aclose()

    assert data["candidates"][0]["content"]["parts"][0]["functionCall"]["name"] == "generate_test"
    assert seen["url"] == "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash:generateContent"
    assert seen["headers"]["x-goog-api-key"] == "test-key"
    assert seen["body"]["tools"] == [{"functionDeclarations": DECLARATIONS}]
    assert seen["body"]["generationConfig"] == {"temperature": 0.1, "maxOutputTokens": 500}
    assert seen["body"]["contents"][0]["parts"][0]["text"] == "classify this"


@pytest.mark.asyncio
async def test_vertex_request_uses_bearer_token():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json=function_call_response("generate_test"))

    oracle = _oracle(handler, cfg=_settings(), token_provider=FakeTokenProvider())
    await _generate(oracle)

    assert seen["auth"] == "Bearer ya29.token"
    assert seen["url"] == (
        "https://us-central1-aiplatform.googleapis.com/v1/projects/study-project"
        "/locations/us-central1/publishers/google/models/gemini-2.5-flash:generateContent"
    )


@pytest.mark.asyncio
async def test_permission_denied_names_role():
    def handler(request):
        return httpx.Response(403, json={"error": {"status": "PERMISSION_DENIED", "message": "denied"}})

    oracle = _oracle(handler, cfg=_settings(), token_provider=FakeTokenProvider())
    with pytest.raises(UpstreamPermissionDeniedError) as exc_info:
        await _generate(oracle)
    assert "Vertex AI User" in exc_info.value.message
    assert FakeTokenProvider.client_email in exc_info.value.message


@pytest.mark.asyncio
async def test_non_success_status_is_upstream_error():
    def handler(request):
        return httpx.Response(500, json={"error": {"message": "backend exploded"}})

    with pytest.raises(UpstreamError) as exc_info:
        await _generate(_oracle(handler))
    assert "500" in exc_info.value.message
    assert not isinstance(exc_info.value, UpstreamTimeoutError)


@pytest.mark.asyncio
async def test_transport_timeout_maps_to_timeout_error():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(UpstreamTimeoutError):
        await _generate(_oracle(handler))


@pytest.mark.asyncio
async def test_overall_deadline_maps_to_timeout_error():
    async def handler(request):
        await asyncio.sleep(1)
        return httpx.Response(200, json={})

    with pytest.raises(UpstreamTimeoutError):
        await _generate(_oracle(handler), timeout=0.05)


@pytest.mark.asyncio
async def test_connect_error_is_upstream_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(UpstreamError) as exc_info:
        await _generate(_oracle(handler))
    assert exc_info.value.code == "upstream_error"


@pytest.mark.asyncio
async def test_not_configured():
    def handler(request):
        raise AssertionError("no request expected")

    oracle = _oracle(handler, cfg=_settings())
    with pytest.raises(UpstreamError) as exc_info:
        await _generate(oracle)
    assert exc_info.value.code == "oracle_not_configured"


def test_service_account_from_base64():
    info = {"project_id": "p", "client_email": "sa@p.iam.gserviceaccount.com"}
    encoded = base64.b64encode(json.dumps(info).encode()).decode()
    assert load_service_account_info(_settings(GOOGLE_SERVICE_ACCOUNT_BASE64=encoded)) == info


def test_invalid_service_account_is_not_configured():
    with pytest.raises(UpstreamError) as exc_info:
        load_service_account_info(_settings(GOOGLE_SERVICE_ACCOUNT_BASE64="%%%not-base64%%%"))
    assert exc_info.value.code == "oracle_not_configured"
