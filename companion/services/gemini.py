"""
Sage Companion — Gemini Generative Provider

Single-shot text generation through the `google-genai` async client. Maps
SDK failures onto the companion error taxonomy; retrying is the caller's
job (RetryPolicy).
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..core.config import GenerationConfig, generation_cfg, provider_cfg
from ..core.errors import ConfigurationError, TransientProviderError, ValidationError

logger = logging.getLogger("companion.gemini")


class GeminiProvider:
    """GenerativeProvider backed by Gemini."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        config: GenerationConfig = generation_cfg,
        client: Any = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else provider_cfg.gemini_api_key
        self._cfg = config
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                raise ConfigurationError("GEMINI_API_KEY is not set", provider="gemini")
            from google import genai

            self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def generate(self, prompt: str) -> str:
        client = self._get_client()
        from google.genai import errors, types

        try:
            response = await client.aio.models.generate_content(
                model=self._cfg.llm_model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    temperature=self._cfg.llm_temperature,
                    max_output_tokens=self._cfg.max_output_tokens,
                ),
            )
        except errors.APIError as e:
            raise _map_api_error(e) from e
        except Exception as e:
            raise TransientProviderError(f"Gemini request failed: {e}", provider="gemini") from e

        text = (getattr(response, "text", None) or "").strip()
        if not text:
            raise TransientProviderError("Gemini returned no text", provider="gemini")
        return text


def _map_api_error(e: Any) -> Exception:
    code = getattr(e, "code", None)
    if code in (401, 403):
        logger.error(f"Gemini rejected credentials ({code}): {e}")
        return ConfigurationError(f"Gemini credentials rejected: {e}", provider="gemini", status_code=code)
    if code == 400:
        logger.error(f"Gemini rejected request: {e}")
        return ValidationError(
            f"Gemini rejected request: {e}",
            provider="gemini",
            status_code=code,
            response=getattr(e, "details", None),
        )
    return TransientProviderError(f"Gemini error {code}: {e}", provider="gemini", status_code=code)
