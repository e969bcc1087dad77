import json

import httpx
import pytest

from refund_agents.llm.provider import (
    GeminiProvider,
    GenerationConfig,
    InlineData,
    LLMMessage,
    LLMProviderError,
    to_gemini_schema,
)

BASE_URL = "https://llm.test/v1beta"


def _provider(handler) -> GeminiProvider:
    return GeminiProvider("secret", BASE_URL, transport=httpx.MockTransport(handler))


def _candidate(text: str, **extra) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": "STOP", **extra}]}


@pytest.mark.asyncio
async def test_request_payload_shape():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["key"] = request.headers["x-goog-api-key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_candidate('{"ok": true}'))

    schema = {"type": "object", "properties": {"amount": {"type": "string"}}, "required": ["amount"]}
    response = await _provider(handler).generate(
        [LLMMessage("user", "Extract facts", (InlineData("image/png", "aGk="),))],
        "gemini-test",
        GenerationConfig(temperature=0.1, response_schema=schema),
    )

    assert response.text == '{"ok": true}'
    assert seen["url"] == f"{BASE_URL}/models/gemini-test:generateContent"
    assert seen["key"] == "secret"
    body = seen["body"]
    assert body["contents"][0]["parts"] == [
        {"inlineData": {"mimeType": "image/png", "data": "aGk="}},
        {"text": "Extract facts"},
    ]
    assert body["generationConfig"]["temperature"] == 0.1
    assert body["generationConfig"]["responseMimeType"] == "application/json"
    assert body["generationConfig"]["responseSchema"]["properties"]["amount"]["type"] == "STRING"
    assert len(body["safetySettings"]) == 4
    assert "tools" not in body


@pytest.mark.asyncio
async def test_search_mode_returns_citations():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        grounding = {
            "groundingChunks": [
                {"web": {"uri": "https://acme.example/policy", "title": "Acme policy"}},
                {"web": {"uri": "https://no-title.example"}},
            ]
        }
        return httpx.Response(200, json=_candidate("answer", groundingMetadata=grounding))

    response = await _provider(handler).generate(
        [LLMMessage("user", "Find the policy")],
        "gemini-test",
        GenerationConfig(use_search=True, system_instruction="Be brief."),
    )

    assert seen["body"]["tools"] == [{"googleSearch": {}}]
    assert seen["body"]["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
    assert "temperature" not in seen["body"]["generationConfig"]
    assert [(c.title, c.uri) for c in response.citations] == [("Acme policy", "https://acme.example/policy")]


@pytest.mark.asyncio
async def test_thought_parts_are_skipped():
    payload = {
        "candidates": [
            {"content": {"parts": [{"text": "thinking...", "thought": True}, {"text": "final"}]}}
        ]
    }
    response = await _provider(lambda request: httpx.Response(200, json=payload)).generate(
        [LLMMessage("user", "hi")], "gemini-test", GenerationConfig()
    )
    assert response.text == "final"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, payload",
    [
        (500, {"error": "boom"}),
        (200, {"promptFeedback": {"blockReason": "SAFETY"}}),
        (200, {"candidates": []}),
        (200, {"candidates": [{"content": {"parts": []}, "finishReason": "SAFETY"}]}),
    ],
)
async def test_failures_raise_provider_error(status, payload):
    provider = _provider(lambda request: httpx.Response(status, json=payload))
    with pytest.raises(LLMProviderError):
        await provider.generate([LLMMessage("user", "hi")], "gemini-test", GenerationConfig())


@pytest.mark.asyncio
async def test_transport_error_raises_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(LLMProviderError):
        await _provider(handler).generate([LLMMessage("user", "hi")], "gemini-test", GenerationConfig())


def test_schema_conversion_drops_bounds():
    schema = {
        "type": "object",
        "properties": {
            "score": {"type": "integer", "minimum": 0, "maximum": 100, "description": "0-100"},
            "tags": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["score"],
    }
    assert to_gemini_schema(schema) == {
        "type": "OBJECT",
        "properties": {
            "score": {"type": "INTEGER", "description": "0-100"},
            "tags": {"type": "ARRAY", "items": {"type": "STRING"}},
        },
        "required": ["score"],
    }
