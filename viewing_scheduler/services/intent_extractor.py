"""
Intent extractor using OpenAI.

Reads one tenant chat message and returns a SchedulingIntent:
- Is this about booking, moving or cancelling a viewing?
- Which absolute instant did the tenant mean, in the landlord's timezone?
- How sure is the model?

A message the model can't read confidently is downgraded to "needs
clarification" rather than guessed at.
"""

from datetime import datetime
from typing import Any, Dict, Optional, Protocol
import json
import logging
import time

from dateutil import parser as date_parser
from dateutil import tz
from openai import OpenAI
from pydantic import ValidationError

from viewing_scheduler.core.config import settings
from viewing_scheduler.core.errors import ClassificationError
from viewing_scheduler.schemas.scheduling import ClarificationReason, SchedulingIntent

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You read chat messages that a prospective tenant sends to a landlord and decide whether the tenant wants to book, move or cancel a property viewing.

Respond with JSON only:
{
    "isSchedulingRequest": true/false,
    "intent": "schedule_viewing" | "reschedule" | "cancel" | "ask_availability" | "none",
    "hasValidDateTime": true/false,
    "requestedDateTime": "ISO 8601 string with UTC offset" or null,
    "confidence": 0.0-1.0,
    "needsClarification": true/false,
    "clarificationReason": "missing_date" | "missing_time" | "ambiguous" | null
}

Intent detection:
- "schedule_viewing": "schedule a viewing", "book", "see the place", "visit", "tour", "show me"
- "reschedule": "reschedule", "change the time", "move it to", "different time", "change my viewing"
- "cancel": "cancel", "can't make it", "no longer need", "call off the viewing"
- "ask_availability": "when are you available", "what times work", "your schedule"

Date/time handling:
- Interpret every time in the landlord's timezone given below ("10 AM" means 10:00 local time)
- Resolve relative phrases ("tomorrow", "next Monday", "Friday afternoon") against the current time given below
- Always include the UTC offset in requestedDateTime
- If a date and time are clear, set hasValidDateTime=true
- If the tenant wants a viewing but the time is vague or missing, set needsClarification=true and say why"""


class IntentExtractor(Protocol):
    def classify(self, message: str, now: datetime) -> SchedulingIntent:
        ...


class OpenAIIntentExtractor:
    """
    Intent extractor backed by an OpenAI chat completion in JSON mode.

    Without an API key every message is treated as ordinary chat.
    """

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        model: Optional[str] = None,
        timezone_name: Optional[str] = None,
        confidence_threshold: Optional[float] = None,
    ):
        if client is not None:
            self.client = client
        elif settings.openai_api_key:
            self.client = OpenAI(api_key=settings.openai_api_key, timeout=settings.intent_timeout_seconds)
        else:
            self.client = None
            logger.warning("OpenAI API key not configured - intent extraction disabled")

        self.model = model or settings.openai_model
        self.timezone_name = timezone_name or settings.landlord_timezone
        self.tzinfo = tz.gettz(self.timezone_name)
        if confidence_threshold is None:
            confidence_threshold = settings.intent_confidence_threshold
        self.confidence_threshold = confidence_threshold

    def classify(self, message: str, now: datetime) -> SchedulingIntent:
        """
        Classify one tenant message.

        Args:
            message: The raw chat text
            now: Current instant, used to resolve relative dates

        Returns:
            SchedulingIntent

        Raises:
            ClassificationError: API call failed or the reply wasn't valid
        """
        if not self.client:
            return SchedulingIntent.not_scheduling()

        local_now = now.astimezone(self.tzinfo)
        user_prompt = (
            f"Message: {json.dumps(message)}\n"
            f"Current date/time: {local_now.isoformat()} ({local_now:%A})\n"
            f"Landlord timezone: {self.timezone_name}"
        )

        request_params = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
            "response_format": {"type": "json_object"},
        }
        # Reasoning models reject a custom temperature
        if not self.model.startswith("gpt-5"):
            request_params["temperature"] = 0.1

        start_time = time.time()
        try:
            response = self.client.chat.completions.create(**request_params)
            raw = json.loads(response.choices[0].message.content)
        except Exception as e:
            logger.error(f"Intent classification failed: {e}")
            raise ClassificationError(str(e)) from e

        logger.debug(f"Intent classification took {time.time() - start_time:.2f}s: {raw}")
        return self.parse(raw)

    def parse(self, raw: Dict[str, Any]) -> SchedulingIntent:
        """
        Turn the model's JSON into a SchedulingIntent.

        Naive timestamps are read as landlord-local time. A date the model
        claims is valid but that doesn't parse, or that comes with low
        confidence, becomes a clarification request.
        """
        if not isinstance(raw, dict):
            raise ClassificationError(f"Expected a JSON object, got {type(raw).__name__}")

        data = dict(raw)
        requested = self._parse_datetime(data.pop("requestedDateTime", None))

        try:
            intent = SchedulingIntent.model_validate({**data, "requestedDateTime": requested})
        except ValidationError as e:
            raise ClassificationError(f"Malformed classifier output: {e}") from e

        if intent.has_valid_date_time and intent.requested_date_time is None:
            return intent.model_copy(update={
                "has_valid_date_time": False,
                "needs_clarification": True,
                "clarification_reason": ClarificationReason.AMBIGUOUS,
            })

        if intent.has_valid_date_time and intent.confidence < self.confidence_threshold:
            logger.info(f"Low-confidence date ({intent.confidence:.2f}), asking tenant to clarify")
            return intent.model_copy(update={
                "has_valid_date_time": False,
                "needs_clarification": True,
                "clarification_reason": ClarificationReason.LOW_CONFIDENCE,
            })

        return intent

    def _parse_datetime(self, value: Any) -> Optional[datetime]:
        if not value or not isinstance(value, str):
            return None
        try:
            parsed = date_parser.isoparse(value)
        except ValueError:
            logger.warning(f"Classifier returned an unreadable date: {value!r}")
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=self.tzinfo)
        return parsed
