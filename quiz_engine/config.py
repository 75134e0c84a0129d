"""
Provider and generation configuration.

Environment variables are read once at import (after load_dotenv) and only
supply *defaults*: every engine call receives an explicit ProviderConfig /
GenerationSettings value, so no call ever depends on hidden module state.
"""

import os
from enum import Enum
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from quiz_engine.errors import ConfigurationError

load_dotenv()

# ── Environment defaults ───────────────────────────────────────────────────────

LLM_PROVIDER = os.getenv("LLM_PROVIDER", "gemini")

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or ""
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
GEMINI_BASE_URL = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")

AZURE_OPENAI_API_KEY = os.getenv("AZURE_OPENAI_API_KEY", "")
AZURE_OPENAI_ENDPOINT = os.getenv("AZURE_OPENAI_ENDPOINT", "")
AZURE_OPENAI_DEPLOYMENT = os.getenv("AZURE_OPENAI_DEPLOYMENT", "")
AZURE_OPENAI_MODEL = os.getenv("AZURE_OPENAI_MODEL", "gpt-4o")
AZURE_OPENAI_API_VERSION = os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview")

PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "120"))
BATCH_DELAY_SECONDS = float(os.getenv("QUIZ_BATCH_DELAY_SECONDS", "1.0"))


class ProviderKind(str, Enum):
    GEMINI = "gemini"
    AZURE_OPENAI = "azure-openai"


class ProviderConfig(BaseModel):
    """Immutable per-invocation provider settings, chosen by the caller."""
    model_config = ConfigDict(frozen=True)

    provider: ProviderKind
    api_key: str = ""
    model: str
    endpoint: Optional[str] = None           # Azure OpenAI only
    deployment_name: Optional[str] = None    # Azure OpenAI only
    api_version: str = AZURE_OPENAI_API_VERSION
    timeout_seconds: float = Field(PROVIDER_TIMEOUT_SECONDS, gt=0)

    def is_configured(self) -> bool:
        if self.provider == ProviderKind.GEMINI:
            return bool(self.api_key)
        return bool(self.api_key and self.endpoint and self.deployment_name)

    def require_configured(self) -> None:
        """Raise ConfigurationError when required credentials are missing."""
        if self.is_configured():
            return
        if self.provider == ProviderKind.GEMINI:
            missing = ["api_key"]
        else:
            missing = [
                name for name in ("api_key", "endpoint", "deployment_name")
                if not getattr(self, name)
            ]
        raise ConfigurationError(
            f"LLM configuration is incomplete for provider '{self.provider.value}': "
            f"missing {', '.join(missing)}. Please configure API keys in settings."
        )


class GenerationSettings(BaseModel):
    """Knobs for bulk generation. delay_seconds=0 lets tests run without sleeping."""
    model_config = ConfigDict(frozen=True)

    batch_size: int = Field(20, ge=1)
    fill_batch_size: int = Field(10, ge=1)
    max_retries: int = Field(3, ge=1)
    delay_seconds: float = Field(BATCH_DELAY_SECONDS, ge=0)
    max_count: int = Field(100, ge=1)


def load_provider_config(provider: Optional[str] = None) -> ProviderConfig:
    """
    Build a ProviderConfig from environment defaults.

    Args:
        provider: "gemini" | "azure-openai"; defaults to LLM_PROVIDER

    Raises:
        ConfigurationError: unknown provider name
    """
    name = (provider or LLM_PROVIDER).strip().lower()
    try:
        kind = ProviderKind(name)
    except ValueError:
        raise ConfigurationError(
            f"Unknown LLM provider '{name}'. Expected one of: "
            f"{', '.join(k.value for k in ProviderKind)}"
        )

    if kind == ProviderKind.GEMINI:
        return ProviderConfig(provider=kind, api_key=GEMINI_API_KEY, model=GEMINI_MODEL)

    return ProviderConfig(
        provider=kind,
        api_key=AZURE_OPENAI_API_KEY,
        model=AZURE_OPENAI_MODEL,
        endpoint=AZURE_OPENAI_ENDPOINT or None,
        deployment_name=AZURE_OPENAI_DEPLOYMENT or None,
        api_version=AZURE_OPENAI_API_VERSION,
    )
