import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

HARM_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)


class LLMProviderError(RuntimeError):
    """Raised when the model service fails, rejects, or blocks a request."""


@dataclass(frozen=True)
class InlineData:
    mime_type: str
    data: str


@dataclass(frozen=True)
class LLMMessage:
    role: str
    content: str
    attachments: tuple[InlineData, ...] = ()


@dataclass(frozen=True)
class GenerationConfig:
    temperature: Optional[float] = None
    response_schema: Optional[Dict[str, Any]] = None
    use_search: bool = False
    system_instruction: Optional[str] = None


@dataclass(frozen=True)
class Citation:
    title: str
    uri: str


@dataclass(frozen=True)
class LLMResponse:
    text: str
    citations: List[Citation] = field(default_factory=list)
    finish_reason: Optional[str] = None


class LLMProvider(ABC):
    """Provider-agnostic LLM interface."""

    @abstractmethod
    async def generate(self, messages: List[LLMMessage], model: str, config: GenerationConfig) -> LLMResponse:
        raise NotImplementedError


def to_gemini_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a JSON schema dict to Gemini's OpenAPI subset (upper-case types, no bounds)."""
    converted: Dict[str, Any] = {}
    for key, value in schema.items():
        if key == "type":
            converted[key] = value.upper()
        elif key == "properties":
            converted[key] = {name: to_gemini_schema(prop) for name, prop in value.items()}
        elif key == "items":
            converted[key] = to_gemini_schema(value)
        elif key in ("required", "description", "enum", "format"):
            converted[key] = value
    return converted


class GeminiProvider(LLMProvider):
    """Google Gemini ``generateContent`` provider over REST."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        safety_threshold: str = "BLOCK_MEDIUM_AND_ABOVE",
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.safety_threshold = safety_threshold
        self.timeout = timeout
        self._transport = transport

    async def generate(self, messages: List[LLMMessage], model: str, config: GenerationConfig) -> LLMResponse:
        url = f"{self.base_url}/models/{model}:generateContent"
        payload = self._build_payload(messages, config)
        headers = {"x-goog-api-key": self.api_key}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Model request rejected",
                extra={"model": model, "status_code": exc.response.status_code},
            )
            raise LLMProviderError(f"Model request failed with status {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise LLMProviderError(f"Model request failed: {exc}") from exc
        except ValueError as exc:
            raise LLMProviderError("Model response was not valid JSON") from exc

        return self._parse_response(data, model)

    def _build_payload(self, messages: List[LLMMessage], config: GenerationConfig) -> Dict[str, Any]:
        contents = []
        for message in messages:
            parts: List[Dict[str, Any]] = [
                {"inlineData": {"mimeType": a.mime_type, "data": a.data}} for a in message.attachments
            ]
            if message.content:
                parts.append({"text": message.content})
            contents.append({"role": message.role, "parts": parts})

        generation_config: Dict[str, Any] = {}
        if config.temperature is not None:
            generation_config["temperature"] = config.temperature
        if config.response_schema is not None:
            generation_config["responseMimeType"] = "application/json"
            generation_config["responseSchema"] = to_gemini_schema(config.response_schema)

        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": generation_config,
            "safetySettings": [
                {"category": category, "threshold": self.safety_threshold} for category in HARM_CATEGORIES
            ],
        }
        if config.use_search:
            payload["tools"] = [{"googleSearch": {}}]
        if config.system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": config.system_instruction}]}
        return payload

    def _parse_response(self, data: Dict[str, Any], model: str) -> LLMResponse:
        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise LLMProviderError(f"Prompt blocked by safety filter: {block_reason}")

        candidates = data.get("candidates") or []
        if not candidates:
            raise LLMProviderError("Model returned no candidates")

        candidate = candidates[0]
        finish_reason = candidate.get("finishReason")
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts if not part.get("thought"))
        if not text and finish_reason in ("SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST"):
            raise LLMProviderError(f"Response blocked by safety filter: {finish_reason}")

        citations = []
        for chunk in (candidate.get("groundingMetadata") or {}).get("groundingChunks") or []:
            web = chunk.get("web") or {}
            if web.get("uri") and web.get("title"):
                citations.append(Citation(title=web["title"], uri=web["uri"]))

        logger.debug(
            "Model response received",
            extra={"model": model, "finish_reason": finish_reason, "chars": len(text)},
        )
        return LLMResponse(text=text, citations=citations, finish_reason=finish_reason)
