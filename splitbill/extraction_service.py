from __future__ import annotations

import base64
import json
import logging
import re
from typing import Any, Protocol

import requests
from pydantic import ValidationError

from schemas.bill_schema import Bill
from splitbill.config import Settings

logger = logging.getLogger(__name__)


class VisionClient(Protocol):
    def extract_json(self, image_bytes: bytes, mime_type: str, model_name: str, prompt: str) -> str:
        """Return raw model text output intended to be a JSON bill."""


_STATUS_BY_CODE = {
    "empty_image": 400,
    "unsupported_type": 415,
    "missing_api_key": 500,
    "unsupported_provider": 500,
    "empty_response": 500,
    "invalid_json": 500,
    "invalid_json_shape": 500,
    "invalid_bill": 500,
    "upstream_failed": 502,
    "all_providers_failed": 502,
}

_RETRYABLE_CODES = {"invalid_json", "invalid_json_shape", "invalid_bill"}


class ExtractionError(RuntimeError):
    def __init__(self, message: str, code: str = "extraction_failed", status_code: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code if status_code is not None else _STATUS_BY_CODE.get(code, 500)


OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"

DEFAULT_MODELS = {
    "openrouter": "qwen/qwen2.5-vl-32b-instruct:free",
    "openai": "gpt-4o-mini",
    "gemini": "gemini-1.5-flash",
}

EXTRACTION_PROMPT = """
You read Indonesian restaurant receipts. List every line item on the receipt with its
name, its quantity and the total price of that line (quantity times unit price).
Also read the tax (pajak/PPN), the service charge (biaya layanan) and the grand total.
Answer with one JSON object only, numbers without currency symbols or thousands separators:
{
  "items": [{"name": "Nasi Goreng", "quantity": 2, "price": 50000}],
  "tax": 5000,
  "service_charge": 2500,
  "total": 57500
}
Use quantity 1 when no quantity is printed. Use 0 for a missing tax or service charge.
No markdown, no explanations.
""".strip()

CORRECTIVE_PROMPT = (
    "Your previous answer was not a valid bill. Return only one JSON object with the keys "
    "items, tax, service_charge and total, and nothing else."
)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL | re.IGNORECASE)


def _unwrap_fenced(raw_text: str) -> str:
    match = _FENCE_RE.search(raw_text)
    return match.group(1) if match else raw_text


def parse_bill_payload(raw_text: str) -> Bill:
    text = _unwrap_fenced(raw_text).strip()
    if not text:
        raise ExtractionError("AI model returned an empty response.", code="empty_response")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ExtractionError("Model returned invalid JSON", code="invalid_json") from exc
    if not isinstance(payload, dict):
        raise ExtractionError("Model output must be a JSON object", code="invalid_json_shape")
    try:
        return Bill.model_validate(payload)
    except ValidationError as exc:
        raise ExtractionError(f"Model output is not a valid bill: {exc.error_count()} error(s)", code="invalid_bill") from exc


def _data_uri(image_bytes: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(image_bytes).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def _chat_messages(image_bytes: bytes, mime_type: str, prompt: str) -> list[dict[str, Any]]:
    return [
        {
            "role": "user",
            "content": [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": _data_uri(image_bytes, mime_type)}},
            ],
        }
    ]


class OpenRouterVisionClient:
    provider_name = "openrouter"

    def __init__(self, api_key: str, *, timeout: float = 60, url: str = OPENROUTER_URL) -> None:
        self._api_key = api_key
        self._timeout = timeout
        self._url = url

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def extract_json(self, image_bytes: bytes, mime_type: str, model_name: str, prompt: str) -> str:
        try:
            response = requests.post(
                self._url,
                headers=self._headers(),
                json={"model": model_name, "messages": _chat_messages(image_bytes, mime_type, prompt)},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise ExtractionError(f"OpenRouter request failed: {exc}", code="upstream_failed") from exc

        if not response.ok:
            logger.error("OpenRouter API error status=%s body=%s", response.status_code, response.text[:300])
            raise ExtractionError(
                f"Failed to process receipt with AI model. Status: {response.status_code}",
                code="upstream_failed",
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ExtractionError("OpenRouter returned a non-JSON envelope", code="upstream_failed") from exc
        choices = payload.get("choices") or []
        content = choices[0].get("message", {}).get("content") if choices else None
        if not isinstance(content, str) or not content.strip():
            raise ExtractionError("AI model returned an empty response.", code="empty_response")
        return content


class OpenAIVisionClient:
    provider_name = "openai"

    def __init__(self, api_key: str, *, timeout: float = 60) -> None:
        try:
            from openai import OpenAI
        except ImportError as exc:
            raise RuntimeError("openai package is required for OpenAI extraction") from exc
        self._client = OpenAI(api_key=api_key, timeout=timeout)

    def extract_json(self, image_bytes: bytes, mime_type: str, model_name: str, prompt: str) -> str:
        try:
            response = self._client.chat.completions.create(
                model=model_name,
                response_format={"type": "json_object"},
                messages=_chat_messages(image_bytes, mime_type, prompt),
            )
        except Exception as exc:  # noqa: BLE001
            raise ExtractionError(f"OpenAI request failed: {exc}", code="upstream_failed") from exc
        text = response.choices[0].message.content
        if not text:
            raise ExtractionError("OpenAI returned empty response", code="empty_response")
        return text


class GeminiVisionClient:
    provider_name = "gemini"

    def __init__(self, api_key: str) -> None:
        try:
            from google import genai
            from google.genai import types
        except ImportError as exc:
            raise RuntimeError("google-genai package is required for Gemini extraction") from exc
        self._client = genai.Client(api_key=api_key)
        self._types = types

    def extract_json(self, image_bytes: bytes, mime_type: str, model_name: str, prompt: str) -> str:
        try:
            response = self._client.models.generate_content(
                model=model_name,
                contents=[prompt, self._types.Part.from_bytes(data=image_bytes, mime_type=mime_type)],
                config=self._types.GenerateContentConfig(temperature=0.1),
            )
        except Exception as exc:  # noqa: BLE001
            raise ExtractionError(f"Gemini request failed: {exc}", code="upstream_failed") from exc
        text = getattr(response, "text", None)
        if not text:
            raise ExtractionError("Gemini returned empty response", code="empty_response")
        return text


class MultiProviderVisionClient:
    provider_name = "auto"

    def __init__(self, providers: list[tuple[str, VisionClient, str]]) -> None:
        self._providers = providers

    def extract_json(self, image_bytes: bytes, mime_type: str, model_name: str, prompt: str) -> str:
        errors: list[str] = []
        last_error: Exception | None = None
        for provider_name, client, provider_model in self._providers:
            try:
                return client.extract_json(image_bytes, mime_type, provider_model or model_name, prompt)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Provider %s failed: %s", provider_name, exc)
                errors.append(f"{provider_name}: {exc}")
                last_error = exc
        # a lone provider keeps its own code and status
        if len(self._providers) == 1 and isinstance(last_error, ExtractionError):
            raise last_error
        raise ExtractionError(
            "All configured providers failed: " + "; ".join(errors),
            code="all_providers_failed",
        )


def _provider_model(provider: str, model_name: str) -> str:
    if model_name and model_name != "auto":
        return model_name
    return DEFAULT_MODELS.get(provider, DEFAULT_MODELS["openrouter"])


def _client_for_provider(provider: str, settings: Settings) -> VisionClient | None:
    api_key = settings.api_key_for(provider)
    if not api_key:
        return None
    if provider == "openrouter":
        return OpenRouterVisionClient(api_key, timeout=settings.extraction_timeout_seconds)
    if provider == "openai":
        return OpenAIVisionClient(api_key, timeout=settings.extraction_timeout_seconds)
    if provider == "gemini":
        return GeminiVisionClient(api_key)
    raise ExtractionError(f"Unsupported provider: {provider}", code="unsupported_provider")


def build_client(settings: Settings) -> tuple[VisionClient, str]:
    provider = settings.extraction_provider
    if provider == "auto":
        providers: list[tuple[str, VisionClient, str]] = []
        for name in ("openrouter", "openai", "gemini"):
            client = _client_for_provider(name, settings)
            if client is not None:
                providers.append((name, client, _provider_model(name, "auto")))
        if not providers:
            raise ExtractionError(
                "No provider API key found for configured fallback chain",
                code="missing_api_key",
            )
        return MultiProviderVisionClient(providers), "auto"

    client = _client_for_provider(provider, settings)
    if client is None:
        raise ExtractionError(
            f"API key for {provider} is not configured on the server.",
            code="missing_api_key",
        )
    return client, _provider_model(provider, settings.extraction_model)


def extract_bill(
    image_bytes: bytes,
    mime_type: str,
    *,
    client: VisionClient,
    model_name: str = "auto",
    allowed_mime_types: tuple[str, ...] | None = None,
) -> Bill:
    if not image_bytes:
        raise ExtractionError("No receipt image provided.", code="empty_image")
    normalized_mime = (mime_type or "").split(";")[0].strip().lower()
    if allowed_mime_types is not None and normalized_mime not in allowed_mime_types:
        raise ExtractionError(f"Unsupported image type: {mime_type or 'unknown'}", code="unsupported_type")

    first_text = client.extract_json(image_bytes, normalized_mime, model_name, EXTRACTION_PROMPT)
    try:
        return parse_bill_payload(first_text)
    except ExtractionError as exc:
        if exc.code not in _RETRYABLE_CODES:
            raise
        logger.warning("Unparseable model output (%s), retrying with corrective prompt", exc.code)

    corrective_text = client.extract_json(image_bytes, normalized_mime, model_name, CORRECTIVE_PROMPT)
    return parse_bill_payload(corrective_text)
