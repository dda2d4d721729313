import json
import logging
from dataclasses import replace

import pytest

from sitescout.errors import ModelOutputError
from sitescout.inference import infer_content_selectors, infer_listing_selector
from sitescout.llm import router

LOGGER = logging.getLogger("sitescout.test")


class FakeProvider:
    def __init__(self, content: str, usage: dict | None = None) -> None:
        self.content = content
        self.usage = usage or {"prompt_tokens": 900, "completion_tokens": 100}
        self.requests: list[tuple[str, str, dict, dict]] = []

    def __call__(self, method, url, headers, payload, timeout):
        self.requests.append((method, url, headers, payload))
        return {
            "choices": [{"message": {"content": self.content}}],
            "usage": self.usage,
        }


def _install(monkeypatch, content: str) -> FakeProvider:
    provider = FakeProvider(content)
    monkeypatch.setattr(router, "_http_request", provider)
    return provider


def test_listing_inference_sends_strict_schema_and_parses(monkeypatch, config):
    monkeypatch.setenv("SCOUT_LLM_API_KEY", "sk-test")
    provider = _install(
        monkeypatch,
        json.dumps({"article_links": " article.card a ", "confidence": 0.92, "reasoning": "cards"}),
    )
    proposal = infer_listing_selector("<main></main>", "https://news.example.com", config.llm, LOGGER)
    assert proposal.selector == "article.card a"
    assert proposal.confidence == 0.92
    assert proposal.rationale == "cards"

    method, url, headers, payload = provider.requests[0]
    assert method == "POST"
    assert url.endswith("/chat/completions")
    assert headers["Authorization"] == "Bearer sk-test"
    assert payload["temperature"] == 0.1
    assert payload["max_tokens"] == 1000
    assert payload["response_format"]["json_schema"]["strict"] is True
    assert "https://news.example.com" in payload["messages"][1]["content"]


def test_fenced_output_and_confidence_clamp(monkeypatch, config):
    body = json.dumps({"article_links": "li.item a", "confidence": 1.7, "reasoning": "x"})
    _install(monkeypatch, f"```json\n{body}\n```")
    proposal = infer_listing_selector("<ul></ul>", "https://e.com", config.llm, LOGGER)
    assert proposal.selector == "li.item a"
    assert proposal.confidence == 1.0


def test_malformed_output_is_model_output_error(monkeypatch, config):
    _install(monkeypatch, "I think the selector is article a")
    with pytest.raises(ModelOutputError):
        infer_listing_selector("<ul></ul>", "https://e.com", config.llm, LOGGER)

    _install(monkeypatch, json.dumps({"article_links": "a"}))
    with pytest.raises(ModelOutputError, match="schema violation"):
        infer_listing_selector("<ul></ul>", "https://e.com", config.llm, LOGGER)

    _install(monkeypatch, json.dumps({"article_links": "  ", "confidence": 0.5, "reasoning": ""}))
    with pytest.raises(ModelOutputError, match="empty listing selector"):
        infer_listing_selector("<ul></ul>", "https://e.com", config.llm, LOGGER)


def test_content_inference_requires_title_and_content(monkeypatch, config):
    answer = {
        "title_selector": "h1.headline",
        "content_selector": "div.article-body p",
        "image_selector": "figure img",
        "date_selector": "",
        "author_selector": "",
        "category_selector": "",
        "confidence": 0.8,
        "reasoning": "article layout",
    }
    provider = _install(monkeypatch, json.dumps(answer))
    proposal = infer_content_selectors("<article></article>", "https://e.com/a", config.llm, LOGGER)
    assert proposal.title_selector == "h1.headline"
    assert proposal.image_selector == "figure img"
    assert proposal.date_selector == ""
    assert provider.requests[0][3]["max_tokens"] == 1500

    _install(monkeypatch, json.dumps({**answer, "content_selector": ""}))
    with pytest.raises(ModelOutputError):
        infer_content_selectors("<article></article>", "https://e.com/a", config.llm, LOGGER)


def test_disabled_llm_never_calls_provider(monkeypatch, config):
    provider = _install(monkeypatch, "{}")
    llm = replace(config.llm, enabled=False)
    with pytest.raises(ModelOutputError, match="llm_disabled"):
        infer_listing_selector("<ul></ul>", "https://e.com", llm, LOGGER)
    assert provider.requests == []


def test_anthropic_provider_reads_text_block(monkeypatch, config):
    calls = []

    def fake(method, url, headers, payload, timeout):
        calls.append((url, headers, payload))
        return {
            "content": [
                {
                    "type": "text",
                    "text": json.dumps(
                        {"article_links": "article h2 a", "confidence": 0.7, "reasoning": "h2"}
                    ),
                }
            ],
            "usage": {"input_tokens": 10, "output_tokens": 5},
        }

    monkeypatch.setattr(router, "_http_request", fake)
    monkeypatch.setenv("SCOUT_LLM_API_KEY", "sk-ant")
    llm = replace(config.llm, provider_type="anthropic", base_url="https://api.anthropic.com/v1")
    proposal = infer_listing_selector("<ul></ul>", "https://e.com", llm, LOGGER)
    assert proposal.selector == "article h2 a"
    url, headers, payload = calls[0]
    assert url == "https://api.anthropic.com/v1/messages"
    assert headers["x-api-key"] == "sk-ant"
    assert "JSON schema" in payload["system"]
