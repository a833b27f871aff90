import json
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from conftest import NOW, NY
from viewing_scheduler.core.config import settings
from viewing_scheduler.core.errors import ClassificationError
from viewing_scheduler.schemas.scheduling import ClarificationReason, IntentType
from viewing_scheduler.services.intent_extractor import OpenAIIntentExtractor


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.params = None

    def create(self, **params):
        self.params = params
        if self.error:
            raise self.error
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))])


def fake_client(payload=None, error=None, raw=None):
    content = raw if raw is not None else json.dumps(payload)
    return SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(content, error)))


def extractor(client, model="gpt-4o-mini"):
    return OpenAIIntentExtractor(
        client=client,
        model=model,
        timezone_name="America/New_York",
        confidence_threshold=0.5,
    )


BOOKING = {
    "isSchedulingRequest": True,
    "intent": "schedule_viewing",
    "hasValidDateTime": True,
    "requestedDateTime": "2026-10-16T18:00:00Z",
    "confidence": 0.92,
    "needsClarification": False,
    "clarificationReason": None,
}


def test_without_api_key_everything_is_chat(monkeypatch):
    monkeypatch.setattr(settings, "openai_api_key", None)

    result = OpenAIIntentExtractor().classify("Friday at 2?", NOW)

    assert result.is_scheduling_request is False
    assert result.intent == IntentType.NONE


def test_booking_is_parsed():
    client = fake_client(BOOKING)

    result = extractor(client).classify("Can I see it Friday at 2pm?", NOW)

    assert result.is_scheduling_request is True
    assert result.intent == IntentType.SCHEDULE_VIEWING
    assert result.has_valid_date_time is True
    assert result.requested_date_time == datetime(2026, 10, 16, 18, 0, tzinfo=timezone.utc)
    assert result.confidence == pytest.approx(0.92)


def test_request_uses_json_mode_and_landlord_timezone():
    client = fake_client(BOOKING)

    extractor(client).classify("Friday at 2?", NOW)

    params = client.chat.completions.params
    assert params["response_format"] == {"type": "json_object"}
    assert params["temperature"] == 0.1
    assert params["model"] == "gpt-4o-mini"
    user_prompt = params["messages"][1]["content"]
    assert "America/New_York" in user_prompt
    assert "2026-10-12T12:00:00-04:00" in user_prompt


def test_reasoning_models_get_no_temperature():
    client = fake_client(BOOKING)

    extractor(client, model="gpt-5-mini").classify("Friday at 2?", NOW)

    assert "temperature" not in client.chat.completions.params


def test_naive_time_is_landlord_local():
    client = fake_client({**BOOKING, "requestedDateTime": "2026-10-16T14:00:00"})

    result = extractor(client).classify("Friday at 2?", NOW)

    assert result.requested_date_time == datetime(2026, 10, 16, 14, 0, tzinfo=NY)


def test_low_confidence_date_asks_for_clarification():
    client = fake_client({**BOOKING, "confidence": 0.3})

    result = extractor(client).classify("maybe friday-ish?", NOW)

    assert result.is_scheduling_request is True
    assert result.has_valid_date_time is False
    assert result.needs_clarification is True
    assert result.clarification_reason == ClarificationReason.LOW_CONFIDENCE


def test_claimed_date_that_does_not_parse_is_ambiguous():
    client = fake_client({**BOOKING, "requestedDateTime": "next friday afternoon"})

    result = extractor(client).classify("next friday afternoon", NOW)

    assert result.has_valid_date_time is False
    assert result.clarification_reason == ClarificationReason.AMBIGUOUS


def test_vague_request_passes_through():
    client = fake_client({
        "isSchedulingRequest": True,
        "intent": "schedule_viewing",
        "hasValidDateTime": False,
        "requestedDateTime": None,
        "confidence": 0.8,
        "needsClarification": True,
        "clarificationReason": "missing_time",
    })

    result = extractor(client).classify("Can I come see it?", NOW)

    assert result.needs_clarification is True
    assert result.clarification_reason == ClarificationReason.MISSING_TIME


def test_api_failure_raises_classification_error():
    client = fake_client(error=RuntimeError("rate limited"))

    with pytest.raises(ClassificationError):
        extractor(client).classify("Friday?", NOW)


def test_invalid_json_raises_classification_error():
    client = fake_client(raw="not json at all")

    with pytest.raises(ClassificationError):
        extractor(client).classify("Friday?", NOW)


def test_unknown_intent_raises_classification_error():
    client = fake_client({**BOOKING, "intent": "buy_house"})

    with pytest.raises(ClassificationError):
        extractor(client).classify("Friday?", NOW)
