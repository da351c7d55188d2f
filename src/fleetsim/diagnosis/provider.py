"""Enrichment provider boundary and the OpenAI-compatible implementation."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

import aiohttp
from pydantic import ValidationError

from fleetsim.config import DiagnosisConfig
from fleetsim.diagnosis.prompt import SYSTEM_PROMPT, build_prompt
from fleetsim.exceptions import DiagnosisResponseError, DiagnosisTransportError
from fleetsim.models.diagnosis import DiagnosisContext, ProviderReply

_logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})


class DiagnosisProvider(Protocol):
    """Structural interface of the external reasoning service.

    Implementations raise :class:`DiagnosisTransportError` for request
    failures and :class:`DiagnosisResponseError` for unusable answers.
    Test doubles only need this one coroutine.
    """

    async def complete(self, context: DiagnosisContext) -> ProviderReply:
        ...


def parse_completion(body: Any) -> ProviderReply:
    """Turn a ``/chat/completions`` JSON body into a :class:`ProviderReply`."""
    if not isinstance(body, dict):
        raise DiagnosisResponseError("Completion body is not a JSON object", attempts=1)

    choices = body.get("choices")
    if not isinstance(choices, list) or not choices:
        raise DiagnosisResponseError("Completion has no choices", attempts=1)
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str) or not content.strip():
        raise DiagnosisResponseError("Empty completion content", attempts=1)

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as exc:
        raise DiagnosisResponseError(f"Completion content is not JSON: {content[:64]}", attempts=1) from exc
    if not isinstance(parsed, dict):
        raise DiagnosisResponseError("Completion content is not a JSON object", attempts=1)

    usage = body.get("usage") if isinstance(body.get("usage"), dict) else {}
    input_tokens = int(usage.get("prompt_tokens") or 0)
    output_tokens = int(usage.get("completion_tokens") or 0)
    total_tokens = int(usage.get("total_tokens") or input_tokens + output_tokens)

    try:
        return ProviderReply(
            diagnosis=parsed.get("diagnosis"),
            recommendations=parsed.get("recommendations"),
            severity=parsed.get("severity"),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            tokens_used=total_tokens,
        )
    except ValidationError as exc:
        raise DiagnosisResponseError(f"Invalid diagnosis payload: {exc}", attempts=1) from exc


class OpenAIChatProvider:
    """Diagnosis provider backed by an OpenAI-compatible chat completions API.

    Usage::

        async with OpenAIChatProvider(config) as provider:
            reply = await provider.complete(context)
    """

    def __init__(
        self,
        config: DiagnosisConfig,
        *,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        if not config.api_key:
            raise DiagnosisTransportError("No API key configured for the diagnosis provider", transient=False)
        self._config = config
        self._external_session = session is not None
        self._http_session = session

    async def __aenter__(self) -> OpenAIChatProvider:
        self._require_session()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
        self._http_session = None

    def _require_session(self) -> aiohttp.ClientSession:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._config.timeout),
            )
        return self._http_session

    def _build_payload(self, context: DiagnosisContext) -> dict[str, Any]:
        return {
            "model": self._config.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(context)},
            ],
            "temperature": self._config.temperature,
            "max_tokens": self._config.max_tokens,
            "response_format": {"type": "json_object"},
        }

    async def complete(self, context: DiagnosisContext) -> ProviderReply:
        http = self._require_session()
        url = f"{self._config.base_url.rstrip('/')}/chat/completions"
        headers = {
            "authorization": f"Bearer {self._config.api_key}",
            "content-type": "application/json",
        }

        _logger.debug("POST %s model=%s vehicle=%s", url, self._config.model, context.vehicle_id)

        try:
            async with http.post(url, json=self._build_payload(context), headers=headers) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise DiagnosisTransportError(
                        f"HTTP {resp.status} from diagnosis provider: {text[:200]}",
                        transient=resp.status in TRANSIENT_STATUS_CODES,
                        status_code=resp.status,
                    )
        except DiagnosisTransportError:
            raise
        except asyncio.TimeoutError as exc:
            raise DiagnosisTransportError("Diagnosis provider request timed out") from exc
        except aiohttp.ClientError as exc:
            raise DiagnosisTransportError(f"Diagnosis provider request failed: {exc}") from exc

        try:
            body = json.loads(text)
        except json.JSONDecodeError as exc:
            raise DiagnosisResponseError(f"Invalid JSON from diagnosis provider: {text[:200]}", attempts=1) from exc

        return parse_completion(body)
