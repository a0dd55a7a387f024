"""Gemini provider - direct HTTP calls to the Generative Language API."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from coder_bot.exceptions import LLMAPIError, LLMError
from coder_bot.logging import get_logger

log = get_logger(__name__)


GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


@dataclass
class FunctionCall:
    """A tool-call request emitted by the model."""

    name: str
    args: dict[str, Any] = field(default_factory=dict)
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": self.name, "args": self.args}
        if self.id:
            payload["id"] = self.id
        return payload


@dataclass
class FunctionResponse:
    """The observation fed back to the model for one tool call."""

    name: str
    response: dict[str, Any]
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": self.name, "response": self.response}
        if self.id:
            payload["id"] = self.id
        return payload


@dataclass
class Part:
    """One element of a turn: text, a function call or a function response."""

    text: str | None = None
    function_call: FunctionCall | None = None
    function_response: FunctionResponse | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.function_call is not None:
            return {"functionCall": self.function_call.to_dict()}
        if self.function_response is not None:
            return {"functionResponse": self.function_response.to_dict()}
        return {"text": self.text or ""}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Part":
        call = data.get("functionCall")
        if isinstance(call, dict):
            return cls(
                function_call=FunctionCall(
                    name=str(call.get("name", "")),
                    args=dict(call.get("args") or {}),
                    id=call.get("id"),
                )
            )
        response = data.get("functionResponse")
        if isinstance(response, dict):
            return cls(
                function_response=FunctionResponse(
                    name=str(response.get("name", "")),
                    response=dict(response.get("response") or {}),
                    id=response.get("id"),
                )
            )
        text = data.get("text")
        return cls(text=text if isinstance(text, str) else None)


@dataclass
class Content:
    """A conversation entry: one role and its ordered parts."""

    role: str  # "user" or "model"
    parts: list[Part] = field(default_factory=list)

    @classmethod
    def text(cls, role: str, text: str) -> "Content":
        return cls(role=role, parts=[Part(text=text)])

    @property
    def has_function_call(self) -> bool:
        return any(part.function_call is not None for part in self.parts)

    @property
    def has_function_response(self) -> bool:
        return any(part.function_response is not None for part in self.parts)

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "parts": [part.to_dict() for part in self.parts]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Content":
        parts = data.get("parts") or []
        return cls(
            role=str(data.get("role", "model")),
            parts=[Part.from_dict(part) for part in parts if isinstance(part, dict)],
        )


@dataclass
class Candidate:
    """One response candidate."""

    content: Content | None = None
    finish_reason: str = ""


@dataclass
class LLMResponse:
    """Response from the LLM."""

    candidates: list[Candidate] = field(default_factory=list)
    model: str = ""
    usage: dict[str, int] = field(default_factory=dict)


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    async def generate(
        self,
        contents: list[Content],
        system_instruction: str | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResponse:
        pass

    async def close(self) -> None:
        """Release provider resources."""
        return None


def _normalize_schema_types(schema: Any) -> Any:
    """Upper-case JSON-Schema ``type`` names to the Gemini Schema enum."""
    if isinstance(schema, dict):
        normalized: dict[str, Any] = {}
        for key, value in schema.items():
            if key == "type" and isinstance(value, str):
                normalized[key] = value.upper()
            else:
                normalized[key] = _normalize_schema_types(value)
        return normalized
    if isinstance(schema, list):
        return [_normalize_schema_types(item) for item in schema]
    return schema


class GeminiProvider(LLMProvider):
    """Gemini ``generateContent`` provider."""

    def __init__(
        self,
        model: str = "gemini-2.0-flash",
        api_key: str = "",
        base_url: str = GEMINI_BASE_URL,
        temperature: float | None = None,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize Gemini provider.

        Args:
            model: Gemini model name (e.g., 'gemini-2.0-flash')
            api_key: Google AI Studio API key
            base_url: API base URL
            temperature: Optional sampling temperature
            timeout: Request timeout in seconds
            client: Optional preconfigured HTTP client (tests)
        """
        self.model = model
        self.api_key = api_key
        self.base_url = (base_url or GEMINI_BASE_URL).rstrip("/")
        self.temperature = temperature
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    def _convert_tools(self, tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Convert tool declarations to the Gemini ``tools`` payload."""
        declarations = []
        for tool in tools:
            name = tool.get("name")
            if not name:
                continue
            declaration: dict[str, Any] = {
                "name": name,
                "description": tool.get("description", "") or "",
            }
            parameters = tool.get("parameters") or {}
            # Gemini rejects an OBJECT schema with no properties
            if parameters.get("properties"):
                declaration["parameters"] = _normalize_schema_types(parameters)
            declarations.append(declaration)
        if not declarations:
            return []
        return [{"functionDeclarations": declarations}]

    def _build_body(
        self,
        contents: list[Content],
        system_instruction: str | None,
        tools: list[dict[str, Any]] | None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"contents": [content.to_dict() for content in contents]}
        if system_instruction:
            body["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        converted_tools = self._convert_tools(tools) if tools else []
        if converted_tools:
            body["tools"] = converted_tools
        if self.temperature is not None:
            body["generationConfig"] = {"temperature": self.temperature}
        return body

    @staticmethod
    def _parse_response(data: dict[str, Any], model: str) -> LLMResponse:
        candidates: list[Candidate] = []
        for raw in data.get("candidates") or []:
            if not isinstance(raw, dict):
                continue
            raw_content = raw.get("content")
            content = Content.from_dict(raw_content) if isinstance(raw_content, dict) else None
            candidates.append(
                Candidate(content=content, finish_reason=str(raw.get("finishReason", "") or ""))
            )

        usage_meta = data.get("usageMetadata") or {}
        usage = {
            "prompt_tokens": int(usage_meta.get("promptTokenCount", 0) or 0),
            "completion_tokens": int(usage_meta.get("candidatesTokenCount", 0) or 0),
            "total_tokens": int(usage_meta.get("totalTokenCount", 0) or 0),
        }
        return LLMResponse(candidates=candidates, model=model, usage=usage)

    async def generate(
        self,
        contents: list[Content],
        system_instruction: str | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResponse:
        """Generate the next model turn."""
        url = f"{self.base_url}/models/{self.model}:generateContent"
        body = self._build_body(contents, system_instruction, tools)
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["x-goog-api-key"] = self.api_key

        try:
            log.debug("Calling Gemini", model=self.model, content_count=len(contents))
            response = await self.client.post(url, json=body, headers=headers)
            log.debug("Gemini response status", status=response.status_code)

            if not response.is_success:
                raise LLMAPIError(
                    f"Gemini API error {response.status_code}: {response.text}",
                    status_code=response.status_code,
                )

            return self._parse_response(response.json(), self.model)
        except LLMAPIError:
            raise
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Gemini HTTP error: {e}")
        except json.JSONDecodeError as e:
            raise LLMError(f"Gemini response decode error: {e}")
        except Exception as e:
            raise LLMError(f"Gemini call failed: {e}")

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def create_provider(
    provider: str = "gemini",
    model: str = "gemini-2.0-flash",
    api_key: str | None = None,
    base_url: str | None = None,
    temperature: float | None = None,
    timeout: float = 120.0,
) -> LLMProvider:
    """Create an LLM provider.

    Args:
        provider: Provider name (gemini, google)
        model: Model name
        api_key: API key
        base_url: Optional base URL
        temperature: Optional sampling temperature
        timeout: Request timeout in seconds

    Returns:
        Configured LLMProvider instance
    """
    name = str(provider or "").strip().lower()
    if name in {"gemini", "google"}:
        return GeminiProvider(
            model=model,
            api_key=api_key or "",
            base_url=base_url or GEMINI_BASE_URL,
            temperature=temperature,
            timeout=timeout,
        )
    raise ValueError(f"Provider '{provider}' not supported. Use 'gemini'.")


# Global provider instance
_provider: LLMProvider | None = None


def get_provider() -> LLMProvider:
    """Get the global LLM provider instance."""
    global _provider
    if _provider is None:
        from coder_bot.config import get_config
        cfg = get_config()
        _provider = create_provider(
            provider=cfg.model.provider,
            model=cfg.model.model,
            api_key=cfg.model.api_key or None,
            base_url=cfg.model.base_url or None,
            temperature=cfg.model.temperature,
            timeout=cfg.model.timeout,
        )
    return _provider


def set_provider(provider: LLMProvider | None) -> None:
    """Set the global LLM provider instance."""
    global _provider
    _provider = provider
