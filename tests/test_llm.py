from types import SimpleNamespace

from fact_rag.config import LLMConfig, load_settings
from fact_rag.llm import OpenAIChatLLM


class _FakeCompletions:
    def __init__(self, content="  Paris.  ", chunks=()) -> None:
        self.content = content
        self.chunks = chunks
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        if kwargs.get("stream"):
            return iter(
                SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=c))]) for c in self.chunks
            )
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))])


def _llm(completions: _FakeCompletions, system_prompt: str = "") -> OpenAIChatLLM:
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAIChatLLM(
        base_url="http://localhost:8080/v1",
        api_key="test",
        model_name="gpt-4o-mini",
        system_prompt=system_prompt,
        client=client,
    )


def test_complete_sends_single_user_message() -> None:
    completions = _FakeCompletions()
    resp = _llm(completions).complete("prompt text")

    assert resp.text == "Paris."
    request = completions.requests[0]
    assert request["messages"] == [{"role": "user", "content": "prompt text"}]
    assert request["model"] == "gpt-4o-mini"
    assert "extra_body" not in request


def test_system_prompt_is_prepended_when_configured() -> None:
    completions = _FakeCompletions()
    _llm(completions, system_prompt="Answer briefly.").complete("q")

    roles = [m["role"] for m in completions.requests[0]["messages"]]
    assert roles == ["system", "user"]


def test_stream_complete_accumulates_deltas() -> None:
    completions = _FakeCompletions(chunks=["Par", None, "is."])
    texts = [r.text for r in _llm(completions).stream_complete("q")]

    assert texts == ["Par", "Paris."]
    assert completions.requests[0]["stream"] is True


def test_from_config() -> None:
    llm = OpenAIChatLLM.from_config(LLMConfig(model_name="qwen", max_tokens=64))
    assert llm.metadata.model_name == "openai-compat::qwen"
    assert llm.metadata.num_output == 64


def test_enable_thinking_is_sent_only_when_set() -> None:
    requests = {}
    for flag in (None, False, True):
        completions = _FakeCompletions()
        client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
        OpenAIChatLLM(base_url="", api_key="test", model_name="qwen", enable_thinking=flag, client=client).complete("q")
        requests[flag] = completions.requests[0]

    assert "extra_body" not in requests[None]
    assert requests[False]["extra_body"] == {"enable_thinking": False}
    assert requests[True]["extra_body"] == {"enable_thinking": True}


def test_enable_thinking_from_env() -> None:
    assert load_settings({}).llm.enable_thinking is None
    assert load_settings({"RAG_LLM_ENABLE_THINKING": "false"}).llm.enable_thinking is False
    assert load_settings({"RAG_LLM_ENABLE_THINKING": "1"}).llm.enable_thinking is True
