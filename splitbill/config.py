from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

PROVIDERS = {"openrouter", "openai", "gemini", "auto"}


def _parse_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive")
    return value


def _optional(*names: str) -> str | None:
    for name in names:
        value = os.getenv(name)
        if value is not None and value.strip():
            return value.strip()
    return None


@dataclass(frozen=True)
class Settings:
    extraction_provider: str = "openrouter"
    extraction_model: str = "auto"
    openrouter_api_key: str | None = None
    openai_api_key: str | None = None
    gemini_api_key: str | None = None
    extraction_timeout_seconds: int = 60
    allowed_mime_types: tuple[str, ...] = (
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
    )
    max_upload_bytes: int = 10 * 1024 * 1024
    log_level: str = "INFO"
    bill_store_path: str = "data/bills.jsonl"
    telemetry_path: str = "logs/telemetry.jsonl"
    service_name: str = "split-bill-app"
    service_version: str = "1.0.0"

    def api_key_for(self, provider: str) -> str | None:
        return {
            "openrouter": self.openrouter_api_key,
            "openai": self.openai_api_key,
            "gemini": self.gemini_api_key,
        }.get(provider.strip().lower())

    @property
    def has_any_api_key(self) -> bool:
        if self.extraction_provider == "auto":
            return any((self.openrouter_api_key, self.openai_api_key, self.gemini_api_key))
        return bool(self.api_key_for(self.extraction_provider))

    @classmethod
    def from_env(cls) -> "Settings":
        provider = os.getenv("EXTRACTION_PROVIDER", "openrouter").strip().lower()
        if provider not in PROVIDERS:
            raise ValueError("EXTRACTION_PROVIDER must be one of: openrouter, openai, gemini, auto")

        mime_env = os.getenv(
            "ALLOWED_MIME_TYPES",
            "image/jpeg,image/png,image/gif,image/webp",
        )
        allowed_mimes = tuple(v.strip().lower() for v in mime_env.split(",") if v.strip())
        if not allowed_mimes:
            raise ValueError("ALLOWED_MIME_TYPES must contain at least one mime type")

        return cls(
            extraction_provider=provider,
            extraction_model=os.getenv("EXTRACTION_MODEL", "auto").strip() or "auto",
            openrouter_api_key=_optional("OPENROUTER_API_KEY", "PRIVATE_OPENROUTER_API_KEY"),
            openai_api_key=_optional("OPENAI_API_KEY"),
            gemini_api_key=_optional("GEMINI_API_KEY", "GOOGLE_API_KEY"),
            extraction_timeout_seconds=_parse_int("EXTRACTION_TIMEOUT_SECONDS", 60),
            allowed_mime_types=allowed_mimes,
            max_upload_bytes=_parse_int("MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            bill_store_path=os.getenv("BILL_STORE_PATH", "data/bills.jsonl"),
            telemetry_path=os.getenv("TELEMETRY_PATH", "logs/telemetry.jsonl"),
            service_version=os.getenv("SERVICE_VERSION", "1.0.0"),
        )


def load_dotenv(path: str | Path = ".env") -> None:
    env_path = Path(path)
    if not env_path.exists():
        return
    for line in env_path.read_text(encoding="utf-8").splitlines():
        entry = line.strip()
        if not entry or entry.startswith("#") or "=" not in entry:
            continue
        key, value = entry.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        os.environ.setdefault(key, value)
