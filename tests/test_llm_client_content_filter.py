import pytest

import llm_client
from config import config
from errors import ContentFilterError
from llm_client import chat_completion, is_available


class FakeMessage:
    def __init__(self, content, refusal=None):
        self.content = content
        self.refusal = refusal


class FakeChoice:
    def __init__(self, message):
        self.message = message
        self.finish_reason = "stop"


class FakeResp:
    def __init__(self, choices):
        self.choices = choices


class FakeClient:
    class chat:
        class completions:
            @staticmethod
            async def create(**kwargs):  # type: ignore
                # Simulate content filter error by raising OpenAIError-like object
                class DummyOpenAIError(Exception):
                    def __init__(self):
                        self.body = {
                            "error": {
                                "code": "content_filter",
                                "message": "Content filtered by Azure OpenAI",
                                "innererror": {"code": "ResponsibleAIPolicyViolation"},
                                "param": None,
                            }
                        }
                raise DummyOpenAIError()


def scripted_client(*outcomes):
    """Client whose create() walks through outcomes, raising exceptions."""
    queue = list(outcomes)

    class Completions:
        calls = 0

        @classmethod
        async def create(cls, **kwargs):
            cls.calls += 1
            outcome = queue.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

    class Chat:
        completions = Completions

    class Client:
        chat = Chat

    return Client()


@pytest.mark.asyncio
async def test_llm_client_content_filter(monkeypatch):
    with pytest.raises(ContentFilterError) as excinfo:
        await chat_completion(
            messages=[{"role": "user", "content": "test"}],
            purpose="test",
            retries=0,
            client_override=FakeClient(),
        )
    assert "Content filtered" in str(excinfo.value)
    assert excinfo.value.details.get("code") == "content_filter"
    assert excinfo.value.details.get("innererror", {}).get("code") == "ResponsibleAIPolicyViolation"


@pytest.mark.asyncio
async def test_chat_completion_returns_text():
    client = scripted_client(FakeResp([FakeChoice(FakeMessage("  A short summary.  "))]))
    result = await chat_completion([{"role": "user", "content": "x"}], purpose="test", client_override=client)
    assert result == "A short summary."


@pytest.mark.asyncio
async def test_refusal_and_empty_choices_return_none():
    refused = scripted_client(FakeResp([FakeChoice(FakeMessage("", refusal="no"))]))
    assert await chat_completion([], purpose="test", client_override=refused) is None

    empty = scripted_client(FakeResp([]))
    assert await chat_completion([], purpose="test", client_override=empty) is None


@pytest.mark.asyncio
async def test_transient_errors_are_retried_then_give_up(monkeypatch):
    async def no_sleep(delay):
        pass

    monkeypatch.setattr(llm_client, "sleep", no_sleep)
    client = scripted_client(
        RuntimeError("boom"),
        FakeResp([FakeChoice(FakeMessage("Recovered"))]),
    )
    assert await chat_completion([], purpose="test", retries=1, client_override=client) == "Recovered"

    failing = scripted_client(RuntimeError("one"), RuntimeError("two"))
    assert await chat_completion([], purpose="test", retries=1, client_override=failing) is None
    assert failing.chat.completions.calls == 2


def test_is_available_requires_full_configuration(monkeypatch):
    monkeypatch.setattr(config, "OPENAI_API_KEY", "key")
    monkeypatch.setattr(config, "AZURE_ENDPOINT", "example.openai.azure.com")
    monkeypatch.setattr(config, "OPENAI_API_VERSION", "2024-10-21")
    monkeypatch.setattr(config, "DEPLOYMENT_NAME", "gpt-4o-mini")
    assert is_available()

    monkeypatch.setattr(config, "DEPLOYMENT_NAME", None)
    assert not is_available()


@pytest.mark.asyncio
async def test_missing_configuration_skips_request(monkeypatch):
    monkeypatch.setattr(config, "OPENAI_API_KEY", None)
    monkeypatch.setattr(llm_client, "_client", None)
    assert await chat_completion([{"role": "user", "content": "x"}], purpose="test") is None
