import json
from types import SimpleNamespace
from unittest.mock import Mock

import httpx
import pytest
from openai import APITimeoutError, OpenAIError

from voicepins.content import OpenAIContentGenerator, build_user_prompt, parse_pin_content
from voicepins.errors import ContentGenerationError
from voicepins.geo import MAX_PIN_OFFSET_METERS, haversine_distance
from voicepins.schemas import ContentRequest, Coordinates, PreferenceContext

TRANSCRIPT = " ".join(["word"] * 45)


@pytest.fixture
def req():
    return ContentRequest(
        location=Coordinates(lat=43.65, lng=-79.38),
        area_name="43.650, -79.380",
        category="History",
        preferences=PreferenceContext(category_weights={"Food": 0.5, "History": 0.3, "Nature": 0.2}),
        existing_titles=["Old Fort"],
        pin_index=1,
        total_pins=3,
    )


def _reply(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _client(content=None, error=None):
    client = Mock()
    if error is not None:
        client.chat.completions.create.side_effect = error
    else:
        client.chat.completions.create.return_value = _reply(content)
    return client


def test_prompt_mentions_category_position_and_avoided_titles(req):
    prompt = build_user_prompt(req)
    assert "History point of interest" in prompt
    assert "pin 2 of 3" in prompt
    assert "Food, History, Nature" in prompt
    assert "- Old Fort" in prompt


def test_parse_truncates_and_keeps_category(req):
    raw = json.dumps({
        "title": "T" * 80,
        "description": "D" * 300,
        "transcript": TRANSCRIPT,
        "suggestedLatOffset": 0.0002,
        "suggestedLngOffset": -0.0001,
    })
    content = parse_pin_content(raw, req)
    assert len(content.title) == 50
    assert len(content.description) == 200
    assert content.category == "History"
    assert content.suggested_location.lat == pytest.approx(43.6502)


def test_parse_clamps_far_offsets(req):
    raw = json.dumps({"title": "a", "description": "b", "transcript": TRANSCRIPT, "suggestedLatOffset": 0.5})
    loc = parse_pin_content(raw, req).suggested_location
    assert haversine_distance(43.65, -79.38, loc.lat, loc.lng) == pytest.approx(MAX_PIN_OFFSET_METERS, rel=1e-3)


@pytest.mark.parametrize("raw", [None, "", "not json", "[1, 2]", json.dumps({"title": "only a title"})])
def test_parse_rejects_bad_replies(req, raw):
    with pytest.raises(ContentGenerationError, match="OpenAI"):
        parse_pin_content(raw, req)


def test_generate_sends_json_mode_request(settings, req):
    client = _client(json.dumps({"title": "Fort York", "description": "d", "transcript": TRANSCRIPT}))
    content = OpenAIContentGenerator(settings, client=client).generate(req)
    assert content.title == "Fort York"
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == settings.OPENAI_MODEL
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["messages"][0]["role"] == "system"


def test_generate_maps_timeout(settings, req):
    timeout = APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
    gen = OpenAIContentGenerator(settings, client=_client(error=timeout))
    with pytest.raises(ContentGenerationError, match="timed out"):
        gen.generate(req)


def test_generate_maps_api_errors(settings, req):
    gen = OpenAIContentGenerator(settings, client=_client(error=OpenAIError("quota exceeded")))
    with pytest.raises(ContentGenerationError, match="OpenAI API error: quota exceeded"):
        gen.generate(req)


def test_missing_api_key_is_a_content_error(settings, req):
    assert settings.OPENAI_API_KEY is None
    with pytest.raises(ContentGenerationError, match="OPENAI_API_KEY"):
        OpenAIContentGenerator(settings).generate(req)
