import asyncio

import httpx
import pytest

from portal.services.llm_client import (
    LLMRequestError,
    LLMResponseError,
    LLMUnavailableError,
    StructuredLLMClient,
    extract_json,
)

_SCHEMA = {"type": "object", "properties": {"ok": {"type": "boolean"}}, "required": ["ok"]}


def _reply(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class _AsyncClientOk:
    requests: list[dict] = []

    def __init__(self, *args, **kwargs):
        self.timeout = kwargs.get("timeout")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def post(self, url, json=None, headers=None):
        type(self).requests.append({"url": url, "json": json, "headers": headers})
        return httpx.Response(200, json=_reply('```json\n{"ok": true}\n```'), request=httpx.Request("POST", url))


class _AsyncClientServerError(_AsyncClientOk):
    async def post(self, url, json=None, headers=None):
        return httpx.Response(503, text="overloaded", request=httpx.Request("POST", url))


class _AsyncClientTimeout(_AsyncClientOk):
    async def post(self, url, json=None, headers=None):
        raise httpx.ReadTimeout("timed out")


class _AsyncClientNotJson(_AsyncClientOk):
    async def post(self, url, json=None, headers=None):
        return httpx.Response(200, json=_reply("sorry, I cannot help"), request=httpx.Request("POST", url))


def _client() -> StructuredLLMClient:
    return StructuredLLMClient(enabled=True, base_url="http://llm/v1/", api_key="k-test", model="test-model")


def _call(client: StructuredLLMClient):
    return asyncio.run(
        client.complete_json(system_prompt="sys", user_prompt="user", schema_name="probe", schema=_SCHEMA)
    )


def test_extract_json_variants():
    assert extract_json('{"a": 1}') == {"a": 1}
    assert extract_json("\ufeff[1, 2]") == [1, 2]
    assert extract_json('```json\n{"a": [1]}\n```') == {"a": [1]}
    assert extract_json('Here you go: {"a": 2} enjoy') == {"a": 2}
    assert extract_json('Here are the questions: [{"id": 0}] good luck') == [{"id": 0}]
    assert extract_json("no json here") is None
    assert extract_json("") is None


def test_complete_json_ok(monkeypatch):
    import portal.services.llm_client as llm_client_mod

    _AsyncClientOk.requests = []
    monkeypatch.setattr(llm_client_mod.httpx, "AsyncClient", _AsyncClientOk)

    assert _call(_client()) == {"ok": True}

    sent = _AsyncClientOk.requests[0]
    assert sent["url"] == "http://llm/v1/chat/completions"
    assert sent["headers"]["Authorization"] == "Bearer k-test"
    assert sent["json"]["model"] == "test-model"
    assert sent["json"]["response_format"]["type"] == "json_schema"
    assert sent["json"]["response_format"]["json_schema"]["schema"] == _SCHEMA


def test_complete_json_http_error(monkeypatch):
    import portal.services.llm_client as llm_client_mod

    monkeypatch.setattr(llm_client_mod.httpx, "AsyncClient", _AsyncClientServerError)

    with pytest.raises(LLMRequestError) as ei:
        _call(_client())
    assert ei.value.status == 503
    assert "HTTP_503" in str(ei.value)


def test_complete_json_timeout(monkeypatch):
    import portal.services.llm_client as llm_client_mod

    monkeypatch.setattr(llm_client_mod.httpx, "AsyncClient", _AsyncClientTimeout)

    with pytest.raises(LLMRequestError):
        _call(_client())


def test_complete_json_unparseable_reply(monkeypatch):
    import portal.services.llm_client as llm_client_mod

    monkeypatch.setattr(llm_client_mod.httpx, "AsyncClient", _AsyncClientNotJson)

    with pytest.raises(LLMResponseError) as ei:
        _call(_client())
    assert ei.value.raw == "sorry, I cannot help"


def test_complete_json_requires_configuration(monkeypatch):
    import portal.services.llm_client as llm_client_mod

    monkeypatch.setattr(llm_client_mod.httpx, "AsyncClient", _AsyncClientTimeout)

    with pytest.raises(LLMUnavailableError):
        _call(StructuredLLMClient(enabled=False, base_url="http://llm", api_key="k", model="m"))

    client = StructuredLLMClient(enabled=True, base_url="http://llm", api_key="", model="m")
    client.api_key = ""
    with pytest.raises(LLMUnavailableError):
        _call(client)
