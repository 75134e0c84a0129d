"""
Provider gateway — one call surface over the two model backends.

  - GeminiProvider       → native generateContent REST call (httpx)
  - AzureOpenAIProvider  → chat completions through the openai SDK

invoke() returns the raw reply text. The gateway does not parse, does not
retry and keeps no state between calls: retry policy belongs to the
orchestrator, and a fresh HTTP client is opened per call.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import httpx
import openai
from openai import AsyncAzureOpenAI
from pydantic import BaseModel, ConfigDict

from quiz_engine.config import GEMINI_BASE_URL, ProviderConfig, ProviderKind
from quiz_engine.errors import ConfigurationError, ProviderError
from quiz_engine.images import ImagePayload
from quiz_engine.schemas import ConnectionStatus

log = logging.getLogger("quiz_engine.gateway")

PROBE_PROMPT = 'Please respond with a simple JSON: {"status": "connected", "message": "LLM is working"}'


class InvocationOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    system_prompt: Optional[str] = None
    temperature: float = 0.1
    max_tokens: int = 4000
    json_mode: bool = False


# ─── Gemini ────────────────────────────────────────────────────────────────────

class GeminiProvider:
    label = "Gemini"

    def __init__(self, base_url: str = GEMINI_BASE_URL, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.transport = transport

    def _build_body(self, prompt: str, image: Optional[ImagePayload], options: InvocationOptions) -> dict:
        parts: List[dict] = [{"text": prompt}]
        if image is not None:
            parts.append({"inline_data": {"mime_type": image.mime_type, "data": image.b64()}})

        generation_config = {
            "temperature": options.temperature,
            "maxOutputTokens": options.max_tokens,
        }
        if options.json_mode:
            generation_config["responseMimeType"] = "application/json"

        body = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": generation_config,
        }
        if options.system_prompt:
            body["systemInstruction"] = {"parts": [{"text": options.system_prompt}]}
        return body

    async def complete(
        self,
        prompt: str,
        image: Optional[ImagePayload],
        config: ProviderConfig,
        options: InvocationOptions,
    ) -> str:
        url = f"{self.base_url}/models/{config.model}:generateContent"
        try:
            async with httpx.AsyncClient(timeout=config.timeout_seconds, transport=self.transport) as client:
                response = await client.post(
                    url,
                    headers={"x-goog-api-key": config.api_key, "Content-Type": "application/json"},
                    json=self._build_body(prompt, image, options),
                )
        except httpx.HTTPError as e:
            raise ProviderError(f"Gemini request failed: {e}", provider=ProviderKind.GEMINI.value) from e

        if not response.is_success:
            raise ProviderError(
                f"Gemini error: {response.status_code} - {response.text[:200]}",
                provider=ProviderKind.GEMINI.value,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                f"Gemini returned a non-JSON body: {response.text[:200]}",
                provider=ProviderKind.GEMINI.value,
                status_code=response.status_code,
            ) from e

        candidates = data.get("candidates") or []
        if not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            raise ProviderError(
                f"Gemini returned no candidates (blockReason={block_reason})",
                provider=ProviderKind.GEMINI.value,
                status_code=response.status_code,
            )

        candidate = candidates[0]
        if candidate.get("finishReason") == "MAX_TOKENS":
            log.warning("[Gemini] Response was truncated due to token limit")

        parts = (candidate.get("content") or {}).get("parts") or []
        return "".join(p.get("text", "") for p in parts)


# ─── Azure OpenAI ──────────────────────────────────────────────────────────────

def _default_azure_client(config: ProviderConfig) -> AsyncAzureOpenAI:
    # max_retries=0: the SDK must not retry behind the orchestrator's back
    return AsyncAzureOpenAI(
        api_key=config.api_key,
        azure_endpoint=config.endpoint,
        azure_deployment=config.deployment_name,
        api_version=config.api_version,
        timeout=config.timeout_seconds,
        max_retries=0,
    )


class AzureOpenAIProvider:
    label = "Azure"

    def __init__(self, client_factory: Optional[Callable[[ProviderConfig], Any]] = None):
        self.client_factory = client_factory or _default_azure_client

    def _build_messages(self, prompt: str, image: Optional[ImagePayload], options: InvocationOptions) -> List[dict]:
        messages = []
        if options.system_prompt:
            messages.append({"role": "system", "content": options.system_prompt})
        if image is None:
            messages.append({"role": "user", "content": prompt})
        else:
            messages.append({
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": image.data_url()}},
                ],
            })
        return messages

    async def complete(
        self,
        prompt: str,
        image: Optional[ImagePayload],
        config: ProviderConfig,
        options: InvocationOptions,
    ) -> str:
        request = {
            "model": config.model,
            "messages": self._build_messages(prompt, image, options),
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
        }
        if options.json_mode:
            request["response_format"] = {"type": "json_object"}

        try:
            async with self.client_factory(config) as client:
                response = await client.chat.completions.create(**request)
        except openai.APIStatusError as e:
            raise ProviderError(
                f"Azure OpenAI error: {e.status_code} - {e.message}",
                provider=ProviderKind.AZURE_OPENAI.value,
                status_code=e.status_code,
            ) from e
        except openai.APIError as e:
            raise ProviderError(
                f"Azure OpenAI request failed: {e}",
                provider=ProviderKind.AZURE_OPENAI.value,
            ) from e

        if not response.choices:
            return ""
        choice = response.choices[0]
        if choice.finish_reason == "length":
            log.warning("[Azure] Response was truncated due to token limit. May need to reduce batch size.")
        return choice.message.content or ""


# ─── Gateway ───────────────────────────────────────────────────────────────────

class ProviderGateway:
    """Dispatches a prompt (plus optional image) to the provider named in the config."""

    def __init__(self, providers: Optional[Dict[ProviderKind, Any]] = None):
        self.providers = providers or {
            ProviderKind.GEMINI: GeminiProvider(),
            ProviderKind.AZURE_OPENAI: AzureOpenAIProvider(),
        }

    async def invoke(
        self,
        prompt: str,
        image: Optional[ImagePayload],
        config: ProviderConfig,
        options: Optional[InvocationOptions] = None,
    ) -> str:
        """
        Send one request and return the raw reply text.

        Raises:
            ConfigurationError: credentials / endpoint missing (no call is made)
            ProviderError:      transport failure or non-2xx status
        """
        config.require_configured()
        provider = self.providers.get(config.provider)
        if provider is None:
            raise ConfigurationError(f"No provider registered for '{config.provider.value}'")

        options = options or InvocationOptions()
        start = time.time()
        log.info(
            f"[{provider.label}] Sending ({len(prompt)} chars"
            f"{', image ' + image.mime_type if image is not None else ''}) model={config.model}"
        )
        text = await provider.complete(prompt, image, config, options)
        log.info(f"[{provider.label}] ✓ {len(text)} chars in {time.time() - start:.1f}s")
        return text

    async def invoke_vision(
        self,
        prompt: str,
        image: ImagePayload,
        config: ProviderConfig,
        options: Optional[InvocationOptions] = None,
    ) -> str:
        return await self.invoke(prompt, image, config, options)

    async def invoke_text(
        self,
        prompt: str,
        config: ProviderConfig,
        options: Optional[InvocationOptions] = None,
    ) -> str:
        return await self.invoke(prompt, None, config, options)

    async def probe(self, config: ProviderConfig) -> ConnectionStatus:
        """Text-only connectivity check. Failures are reported, not raised."""
        log.info(f"[PROBE] Testing provider={config.provider.value} model={config.model}")
        try:
            response = await self.invoke_text(
                PROBE_PROMPT, config, InvocationOptions(max_tokens=100, temperature=0.1)
            )
        except (ConfigurationError, ProviderError) as e:
            log.warning(f"[PROBE] Failed: {e}")
            return ConnectionStatus(success=False, error=str(e))

        if "connected" in response.lower() or "status" in response:
            return ConnectionStatus(success=True, response=response)
        return ConnectionStatus(success=False, error="Unexpected response format", response=response)
