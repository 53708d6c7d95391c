"""Vision/text generation capability backed by the OpenAI Responses API."""

import base64
import json
import time
from typing import Any, Dict, Optional, Protocol

import structlog
from openai import APIError, APIStatusError, APITimeoutError, AsyncOpenAI

from photoguide.core.config import Settings
from photoguide.core.errors import ModelContractViolation, UpstreamFailure, UpstreamTimeout, truncate

logger = structlog.get_logger(__name__)


class GenerationModel(Protocol):
    async def complete(
        self,
        prompt: str,
        image_bytes: Optional[bytes] = None,
        mime_type: str = "image/jpeg",
        schema: Optional[Dict[str, Any]] = None,
        schema_name: str = "answer",
    ) -> Any:
        """Return parsed JSON when ``schema`` is given, plain text otherwise."""
        ...


def to_data_url(image_bytes: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(image_bytes).decode("ascii")
    return f"data:{mime_type or 'image/jpeg'};base64,{encoded}"


class OpenAIModel:
    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4.1-mini",
        timeout: float = 45.0,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self._client = client
        if self._client is None and api_key:
            self._client = AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=1)

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAIModel":
        return cls(settings.OPENAI_API_KEY, settings.OPENAI_MODEL, settings.OPENAI_TIMEOUT_SECONDS)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()

    async def complete(
        self,
        prompt: str,
        image_bytes: Optional[bytes] = None,
        mime_type: str = "image/jpeg",
        schema: Optional[Dict[str, Any]] = None,
        schema_name: str = "answer",
    ) -> Any:
        if self._client is None:
            raise UpstreamFailure("model is not configured (OPENAI_API_KEY unset)", source="openai")

        content = [{"type": "input_text", "text": prompt}]
        if image_bytes:
            content.append({"type": "input_image", "image_url": to_data_url(image_bytes, mime_type)})

        kwargs: Dict[str, Any] = {}
        if schema is not None:
            kwargs["text"] = {
                "format": {
                    "type": "json_schema",
                    "name": schema_name,
                    "schema": schema,
                    "strict": True,
                }
            }

        started = time.perf_counter()
        try:
            response = await self._client.responses.create(
                model=self.model,
                input=[{"role": "user", "content": content}],
                **kwargs,
            )
        except APITimeoutError as e:
            raise UpstreamTimeout("model call timed out", source="openai") from e
        except APIStatusError as e:
            raise UpstreamFailure(f"model returned status {e.status_code}", source="openai") from e
        except APIError as e:
            raise UpstreamFailure(f"model call failed: {truncate(e)}", source="openai") from e

        text = response.output_text or ""
        logger.info(
            "model_call_completed",
            model=self.model,
            structured=schema is not None,
            with_image=bool(image_bytes),
            chars=len(text),
            elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        if schema is None:
            return text.strip()
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ModelContractViolation(f"model returned malformed JSON: {truncate(text, 120)}") from e
