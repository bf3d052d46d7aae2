"""
Tests for the generative-text client (retry loop and OpenAI-compatible HTTP
transport).  ``requests.post`` and ``time.sleep`` are patched throughout.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from knowledge_core.llm import LLMError, OpenAIChatClient

POST = "knowledge_core.llm.openai_client.requests.post"
SLEEP = "knowledge_core.llm.base.time.sleep"


def _response(content="An answer", usage=None):
    resp = MagicMock()
    resp.raise_for_status.return_value = None
    resp.json.return_value = {
        "choices": [{"message": {"content": content}}],
        "usage": usage if usage is not None else {"prompt_tokens": 12, "completion_tokens": 5},
    }
    return resp


def _client(**kwargs):
    kwargs.setdefault("max_retries", 3)
    kwargs.setdefault("retry_delay", 1.0)
    return OpenAIChatClient("https://api.example.com/v1/", "chat-model", "sk-test", **kwargs)


class TestOpenAIChatClient:
    def test_request_shape_and_usage(self):
        client = _client()
        with patch(POST, return_value=_response("  Related because...  ")) as post:
            text = client.generate("Why?", system_message="Be brief", max_tokens=50, temperature=0.2)

        assert text == "Related because..."
        url = post.call_args.args[0]
        payload = post.call_args.kwargs["json"]
        assert url == "https://api.example.com/v1/chat/completions"
        assert post.call_args.kwargs["headers"]["Authorization"] == "Bearer sk-test"
        assert payload["model"] == "chat-model"
        assert payload["messages"][0] == {"role": "system", "content": "Be brief"}
        assert payload["max_tokens"] == 50
        assert client.usage.total_tokens == 17
        assert client.usage.call_count == 1

    def test_default_system_message_and_no_max_tokens(self):
        from knowledge_core.llm.openai_client import DEFAULT_SYSTEM_MESSAGE

        with patch(POST, return_value=_response()) as post:
            _client().generate("Why?")
        payload = post.call_args.kwargs["json"]
        assert payload["messages"][0]["content"] == DEFAULT_SYSTEM_MESSAGE
        assert "max_tokens" not in payload

    def test_from_config(self):
        from knowledge_core.config import Config

        client = OpenAIChatClient.from_config(Config({"chat_model": "small", "llm_max_retries": 5}))
        assert client.model == "small"
        assert client.max_retries == 5
        assert client.base_url == "https://api.openai.com/v1"


class TestRetry:
    def test_retries_then_succeeds(self):
        responses = [requests.ConnectionError("reset"), _response("ok")]
        with patch(POST, side_effect=responses) as post, patch(SLEEP) as sleep:
            assert _client().generate("q") == "ok"
        assert post.call_count == 2
        assert sleep.call_count == 1
        assert 1.0 <= sleep.call_args.args[0] <= 1.1

    def test_empty_response_is_retried(self):
        with patch(POST, side_effect=[_response(""), _response("filled")]), patch(SLEEP):
            assert _client().generate("q") == "filled"

    def test_rate_limit_doubles_wait(self):
        err = requests.HTTPError("429 Client Error: Too Many Requests")
        with patch(POST, side_effect=[err, _response("ok")]), patch(SLEEP) as sleep:
            _client().generate("q")
        assert 2.0 <= sleep.call_args.args[0] <= 2.2

    def test_gives_up_with_llm_error(self):
        with patch(POST, side_effect=requests.Timeout("slow")) as post, patch(SLEEP) as sleep:
            with pytest.raises(LLMError, match="after 3 retries"):
                _client().generate("q")
        assert post.call_count == 3
        assert sleep.call_count == 2
