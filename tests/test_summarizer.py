import json
import logging
from types import SimpleNamespace

import pytest

from news_digest.config import Settings
from news_digest.errors import SummarizationError
from news_digest.models import CategoryCount
from news_digest.schema import SUMMARY_SCHEMA, load_schema, validate_payload
from news_digest.summarizer import CategoryReviewer, Summarizer, mentions_india


def summary_payload(**overrides):
    payload = {
        "summary": "India and the UK signed a trade agreement covering textiles and tech.",
        "tldr": [
            "India signs a trade deal with the UK.",
            "Tariffs on textiles fall.",
            "Tech workers get easier visas.",
        ],
        "faqs": [
            {"question": f"Question {i}?", "answer": f"Answer {i}."} for i in range(1, 6)
        ],
        "heading": "India Seals Landmark Trade Deal With UK",
        "category": "India Economy",
    }
    payload.update(overrides)
    return payload


class DummyResponses:
    def __init__(self, outputs):
        self.outputs = list(outputs)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        output = self.outputs.pop(0)
        if isinstance(output, str):
            return SimpleNamespace(output_text=output, status="completed", error=None)
        return output


class DummyClient:
    def __init__(self, *outputs):
        self.responses = DummyResponses(outputs)


def test_summarize_builds_result_and_request():
    client = DummyClient(json.dumps(summary_payload()))
    summarizer = Summarizer(client)

    result = summarizer.summarize("Raw article text about trade.")

    assert result.heading == "India Seals Landmark Trade Deal With UK"
    assert result.category == "India Economy"
    assert len(result.key_points) == 3
    assert len(result.faqs) == 5
    call = client.responses.calls[0]
    assert call["model"] == "gpt-4o"
    assert call["temperature"] == 0.7
    assert call["max_output_tokens"] == 2000
    assert call["text"] == {"format": {"type": "json_object"}}
    assert call["input"][0]["role"] == "system"
    assert "Raw article text about trade." in call["input"][1]["content"]


def test_summarize_rejects_four_faqs():
    payload = summary_payload()
    payload["faqs"] = payload["faqs"][:4]
    summarizer = Summarizer(DummyClient(json.dumps(payload)))
    with pytest.raises(SummarizationError, match="faqs"):
        summarizer.summarize("text")


def test_summarize_rejects_two_key_points():
    summarizer = Summarizer(DummyClient(json.dumps(summary_payload(tldr=["one", "two"]))))
    with pytest.raises(SummarizationError, match="tldr"):
        summarizer.summarize("text")


def test_summarize_rejects_blank_fields():
    summarizer = Summarizer(DummyClient(json.dumps(summary_payload(heading="   "))))
    with pytest.raises(SummarizationError):
        summarizer.summarize("text")


def test_summarize_rejects_non_json():
    summarizer = Summarizer(DummyClient("Here is your summary!"))
    with pytest.raises(SummarizationError, match="non-JSON"):
        summarizer.summarize("text")


def test_summarize_rejects_empty_output():
    summarizer = Summarizer(DummyClient(""))
    with pytest.raises(SummarizationError, match="missing output"):
        summarizer.summarize("text")


def test_summarize_reports_incomplete_response():
    incomplete = SimpleNamespace(
        output_text="",
        status="incomplete",
        incomplete_details=SimpleNamespace(reason="max_output_tokens"),
    )
    summarizer = Summarizer(DummyClient(incomplete))
    with pytest.raises(SummarizationError, match="max_output_tokens"):
        summarizer.summarize("text")


def test_summarize_warns_when_heading_lacks_india(caplog):
    payload = summary_payload(heading="Trade Deal Signed In London")
    summarizer = Summarizer(DummyClient(json.dumps(payload)))

    with caplog.at_level(logging.WARNING):
        result = summarizer.summarize("text")

    assert result.heading == "Trade Deal Signed In London"
    assert "does not mention India" in caplog.text


def test_reasoning_models_skip_temperature_and_zero_disables_cap():
    client = DummyClient(json.dumps(summary_payload()))
    Summarizer(client, model="gpt-5-mini", max_tokens=0).summarize("text")
    call = client.responses.calls[0]
    assert "temperature" not in call
    assert "max_output_tokens" not in call


def test_from_settings_requires_api_key():
    with pytest.raises(RuntimeError, match="OPENAI_API_KEY"):
        Summarizer.from_settings(Settings(_env_file=None, openai_api_key=None))


def test_from_settings_uses_injected_client():
    settings = Settings(_env_file=None, summarizer_model="gpt-4o-mini", temperature=0.2)
    client = DummyClient()
    summarizer = Summarizer.from_settings(settings, client=client)
    assert summarizer.client is client
    assert summarizer.model == "gpt-4o-mini"
    assert summarizer.temperature == 0.2


def test_mentions_india_matches_cities_and_leaders():
    assert mentions_india("Mumbai floods disrupt trains")
    assert mentions_india("Modi meets Biden")
    assert not mentions_india("Floods in Europe")


def test_summary_schema_is_packaged():
    schema = load_schema(SUMMARY_SCHEMA)
    assert schema["properties"]["faqs"]["minItems"] == 5
    assert validate_payload(summary_payload()) == summary_payload()


CATEGORIES = [
    CategoryCount(name="Cricket", count=12),
    CategoryCount(name="Cricket India", count=5),
    CategoryCount(name="india economy", count=3),
]


def test_reviewer_filters_suggestions():
    response = {
        "suggestions": [
            {
                "originalCategory": "cricket india",
                "suggestedCategory": "Cricket",
                "reason": "Same sport.",
                "confidence": "high",
            },
            {"originalCategory": "Tennis", "suggestedCategory": "Sport"},
            {"originalCategory": "Cricket", "suggestedCategory": "Cricket"},
            {"originalCategory": "Cricket India"},
            {
                "originalCategory": "india economy",
                "suggestedCategory": "India Economy",
                "confidence": "medium",
            },
        ]
    }
    client = DummyClient(json.dumps(response))
    reviewer = CategoryReviewer(Summarizer(client))

    suggestions = reviewer.suggest_merges(CATEGORIES)

    assert [(s.original_category, s.suggested_category) for s in suggestions] == [
        ("Cricket India", "Cricket"),
        ("india economy", "India Economy"),
    ]
    assert suggestions[0].article_count == 5
    assert suggestions[0].confidence == "high"
    assert suggestions[1].reason == ""
    call = client.responses.calls[0]
    assert call["temperature"] == 0.1
    assert '"Cricket India" (5 articles)' in call["input"][1]["content"]


def test_reviewer_accepts_bare_array_and_merges_key():
    bare = [{"originalCategory": "Cricket India", "suggestedCategory": "Cricket"}]
    wrapped = {"merges": bare}
    reviewer = CategoryReviewer(Summarizer(DummyClient(json.dumps(bare), json.dumps(wrapped))))

    assert len(reviewer.suggest_merges(CATEGORIES)) == 1
    assert len(reviewer.suggest_merges(CATEGORIES)) == 1


def test_reviewer_rejects_unexpected_shape():
    reviewer = CategoryReviewer(Summarizer(DummyClient(json.dumps({"result": "none"}))))
    with pytest.raises(SummarizationError):
        reviewer.suggest_merges(CATEGORIES)


def test_reviewer_skips_call_without_categories():
    client = DummyClient()
    assert CategoryReviewer(Summarizer(client)).suggest_merges([]) == []
    assert client.responses.calls == []
