"""Tests for the Ollama client over a mocked transport."""
import json

import httpx
import pytest

from docchat.errors import UpstreamError
from docchat.llm_client import OllamaClient


def _client(handler) -> OllamaClient:
    return OllamaClient(
        "http://ollama.local/",
        chat_model="gemma3:12b",
        embedding_model="mxbai-embed-large:latest",
        transport=httpx.MockTransport(handler),
    )


async def test_chat_sends_generation_options():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"message": {"role": "assistant", "content": "Hi"}})

    data = await _client(handler).chat(
        [{"role": "user", "content": "hello"}], temperature=0.7, max_tokens=1000
    )

    assert data["message"]["content"] == "Hi"
    assert seen["path"] == "/api/chat"
    assert seen["body"]["model"] == "gemma3:12b"
    assert seen["body"]["stream"] is False
    assert seen["body"]["options"] == {"temperature": 0.7, "num_predict": 1000}


async def test_embeddings_uses_embedding_model():
    def handler(request):
        body = json.loads(request.content)
        assert request.url.path == "/api/embeddings"
        assert body == {"model": "mxbai-embed-large:latest", "prompt": "text"}
        return httpx.Response(200, json={"embedding": [0.1, 0.2]})

    assert (await _client(handler).embeddings("text"))["embedding"] == [0.1, 0.2]


async def test_list_models():
    def handler(request):
        return httpx.Response(200, json={"models": [{"name": "gemma3:12b"}, {"name": "llama3"}]})

    assert await _client(handler).list_models() == ["gemma3:12b", "llama3"]


@pytest.mark.parametrize("call", [
    lambda c: c.chat([{"role": "user", "content": "x"}]),
    lambda c: c.embeddings("x"),
    lambda c: c.list_models(),
])
async def test_http_errors_become_upstream_errors(call):
    client = _client(lambda request: httpx.Response(503))

    with pytest.raises(UpstreamError):
        await call(client)


async def test_connection_error():
    def down(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamError, match="unreachable"):
        await _client(down).chat([{"role": "user", "content": "x"}])
