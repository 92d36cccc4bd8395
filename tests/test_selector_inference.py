"""Tests for selector inference response handling."""

import asyncio

import pytest

from dealhunt.ai.llm_service import parse_json_object
from dealhunt.ai.prompts import SelectorInferencePrompt, describe_field
from dealhunt.ai.selector_inference import (
    LLMSelectorInference,
    Malformed,
    Repaired,
    Unavailable,
    interpret_response,
)


class FakeLLM:
    """Stand-in for LLMService."""

    def __init__(self, payload=None, error=None, delay=0.0, configured=True):
        self.payload = payload
        self.error = error
        self.delay = delay
        self.is_configured = configured
        self.prompts = []

    async def call_llm_structured(self, prompt, system_prompt="", temperature=None, timeout=None):
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.payload

    async def close(self):
        pass


def test_interpret_full_response():
    outcome = interpret_response(
        {
            "primary": "span.price-now",
            "fallback1": "div.price > span",
            "fallback2": "[data-price]",
            "explanation": "The selling price sits in span.price-now",
        }
    )

    assert outcome == Repaired(
        selectors=("span.price-now", "div.price > span", "[data-price]"),
        explanation="The selling price sits in span.price-now",
    )


def test_interpret_two_selectors_is_enough():
    outcome = interpret_response({"primary": " span.a ", "fallback1": "span.b", "fallback2": ""})

    assert isinstance(outcome, Repaired)
    assert outcome.selectors == ("span.a", "span.b")


@pytest.mark.parametrize(
    "payload",
    [
        None,
        {},
        [],
        "span.price",
        {"fallback1": "span.b"},
        {"primary": "   ", "fallback1": "span.b"},
        {"primary": "span.a"},
        {"primary": "span.a", "fallback1": "span.a", "fallback2": "span.a"},
        {"primary": 42, "fallback1": "span.b"},
    ],
)
def test_interpret_malformed(payload):
    assert isinstance(interpret_response(payload), Malformed)


def test_parse_json_object_strips_fences():
    text = '```json\n{"primary": "a", "fallback1": "b"}\n```'

    assert parse_json_object(text) == {"primary": "a", "fallback1": "b"}


def test_parse_json_object_with_prose():
    text = 'Here you go: {"primary": "a", "fallback1": "b"} Hope that helps!'

    assert parse_json_object(text)["primary"] == "a"


@pytest.mark.parametrize("text", ["", "no json here", "[1, 2]", "{broken"])
def test_parse_json_object_rejects(text):
    with pytest.raises(ValueError):
        parse_json_object(text)


def test_prompt_carries_source_field_and_snippet():
    prompt = SelectorInferencePrompt(
        source="amazon",
        field="rating",
        html_snippet="<div class='card'>...</div>",
    ).to_prompt()

    assert "amazon" in prompt
    assert "<div class='card'>...</div>" in prompt
    assert describe_field("rating") in prompt


def test_describe_unknown_field():
    assert describe_field("warranty") == "The warranty field"


@pytest.mark.asyncio
async def test_infer_repaired():
    llm = FakeLLM(payload={"primary": "span.x", "fallback1": "span.y", "explanation": "ok"})
    inference = LLMSelectorInference(llm=llm, timeout_seconds=1)

    outcome = await inference.infer("amazon", "current_price", "<div>snippet</div>")

    assert outcome == Repaired(selectors=("span.x", "span.y"), explanation="ok")
    assert "<div>snippet</div>" in llm.prompts[0]


@pytest.mark.asyncio
async def test_infer_not_configured():
    llm = FakeLLM(configured=False)
    inference = LLMSelectorInference(llm=llm)

    outcome = await inference.infer("amazon", "title", "<div/>")

    assert isinstance(outcome, Unavailable)
    assert llm.prompts == []


@pytest.mark.asyncio
async def test_infer_unparseable_response_is_malformed():
    inference = LLMSelectorInference(llm=FakeLLM(error=ValueError("No JSON object")))

    outcome = await inference.infer("amazon", "title", "<div/>")

    assert isinstance(outcome, Malformed)


@pytest.mark.asyncio
async def test_infer_transport_error_is_unavailable():
    inference = LLMSelectorInference(llm=FakeLLM(error=ConnectionError("refused")))

    outcome = await inference.infer("amazon", "title", "<div/>")

    assert isinstance(outcome, Unavailable)
    assert "ConnectionError" in outcome.reason


@pytest.mark.asyncio
async def test_infer_timeout_is_unavailable():
    inference = LLMSelectorInference(
        llm=FakeLLM(payload={"primary": "a", "fallback1": "b"}, delay=1.0),
        timeout_seconds=0.05,
    )

    outcome = await inference.infer("amazon", "title", "<div/>")

    assert isinstance(outcome, Unavailable)
