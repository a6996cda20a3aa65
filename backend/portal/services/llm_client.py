from __future__ import annotations

import json
import logging
import re
from typing import Any

import httpx

from portal.core.config import settings

log = logging.getLogger(__name__)


class LLMError(Exception):
    pass


class LLMUnavailableError(LLMError):
    """Collaborator is disabled or has no credentials."""


class LLMRequestError(LLMError):
    def __init__(self, message: str, *, status: int | None = None, body: str | None = None):
        self.status = status
        self.body = body
        super().__init__(message)


class LLMResponseError(LLMError):
    def __init__(self, message: str, *, raw: str | None = None):
        self.raw = raw
        super().__init__(message)


def extract_json(text: str) -> Any | None:
    """Pull the first JSON object or array out of a model reply."""
    if not text:
        return None

    s = text.strip()
    if s.startswith("\ufeff"):
        s = s[1:]

    fenced = re.search(r"```(?:json)?\s*([\[{][\s\S]*[\]}])\s*```", s)
    if fenced:
        s = fenced.group(1).strip()

    if (s.startswith("{") and s.endswith("}")) or (s.startswith("[") and s.endswith("]")):
        try:
            return json.loads(s)
        except ValueError:
            pass

    patterns = [r"\{[\s\S]*\}", r"\[[\s\S]*\]"]
    # Whichever bracket opens first is the outermost value.
    first_obj, first_arr = s.find("{"), s.find("[")
    if first_arr != -1 and (first_obj == -1 or first_arr < first_obj):
        patterns.reverse()

    for pattern in patterns:
        m = re.search(pattern, s)
        if not m:
            continue
        try:
            return json.loads(m.group(0))
        except ValueError:
            continue
    return None


class StructuredLLMClient:
    """Ask an OpenAI-compatible chat endpoint for JSON matching a schema."""

    def __init__(
        self,
        *,
        enabled: bool | None = None,
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        timeout_read_seconds: float | None = None,
    ):
        self.enabled = bool(settings.llm_enabled) if enabled is None else bool(enabled)
        self.base_url = ((str(base_url).strip() if base_url is not None else "") or str(settings.llm_base_url or "")).rstrip("/")
        self.api_key = (str(api_key).strip() if api_key is not None else "") or (settings.llm_api_key or "").strip()
        self.model = (str(model).strip() if model is not None else "") or str(settings.llm_model or "").strip()
        self.temperature = float(temperature) if temperature is not None else float(settings.llm_temperature)
        self.timeout_read_seconds = (
            float(timeout_read_seconds) if timeout_read_seconds is not None else float(settings.llm_timeout_read)
        )

    @property
    def configured(self) -> bool:
        return self.enabled and bool(self.api_key) and bool(self.base_url) and bool(self.model)

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Authorization": f"Bearer {self.api_key}"}
        referer = str(settings.llm_http_referer or "").strip()
        app_title = str(settings.llm_app_title or "").strip()
        if referer:
            headers["HTTP-Referer"] = referer
        if app_title:
            headers["X-Title"] = app_title
        return headers

    async def complete_json(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        schema_name: str,
        schema: dict[str, Any],
    ) -> Any:
        if not self.enabled:
            raise LLMUnavailableError("disabled")
        if not self.configured:
            raise LLMUnavailableError("missing_credentials")

        payload = {
            "model": self.model,
            "stream": False,
            "temperature": self.temperature,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": schema_name, "strict": True, "schema": schema},
            },
        }
        url = self.base_url + "/chat/completions"

        timeout = httpx.Timeout(
            connect=float(settings.llm_timeout_connect),
            read=self.timeout_read_seconds,
            write=float(settings.llm_timeout_write),
            pool=3.0,
        )
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                r = await client.post(url, json=payload, headers=self._headers())
                r.raise_for_status()
                data = r.json()
        except httpx.HTTPStatusError as e:
            status = int(e.response.status_code)
            body_snip = (e.response.text or "")[:600]
            log.warning("llm request rejected schema=%s status=%s", schema_name, status)
            raise LLMRequestError(f"request_failed:HTTP_{status}", status=status, body=body_snip) from e
        except httpx.HTTPError as e:
            log.warning("llm request failed schema=%s err=%s", schema_name, type(e).__name__)
            raise LLMRequestError(f"request_failed:{type(e).__name__}") from e
        except ValueError as e:
            raise LLMResponseError("invalid_envelope") from e

        content = None
        try:
            choices = (data or {}).get("choices") or []
            if choices:
                content = (choices[0] or {}).get("message", {}).get("content")
        except AttributeError:
            content = None

        raw = content if isinstance(content, str) else ""
        obj = extract_json(raw)
        if obj is None:
            raise LLMResponseError("invalid_json", raw=raw[:600])

        log.debug("llm reply parsed schema=%s chars=%d", schema_name, len(raw))
        return obj
