"""
Response composer - phrases the landlord's chat reply.

Two kinds of replies:
- Scheduling replies, one per SchedulingOutcome action
- General replies to ordinary chat messages (landlord persona)

OpenAI writes the text when it's configured. Every scheduling action also
has a fixed fallback reply so the tenant always hears back.
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol, Sequence
import logging

from dateutil import tz
from openai import OpenAI

from viewing_scheduler.core.config import settings
from viewing_scheduler.schemas.scheduling import (
    ConversationContext,
    FailureReason,
    SchedulingOutcome,
)

logger = logging.getLogger(__name__)


STYLE_RULES = """- Don't start with your name or a formal greeting
- Keep it conversational and brief (1-2 sentences)
- Respond like you're texting in a chat app
- Never mention being an AI or assistant"""


PERSONA_PROMPT = """You are {landlord_name}, the landlord who owns "{property_title}". You are chatting with {tenant_name}, who is interested in renting your property.

Your personality:
- Friendly but selective landlord who wants to find the right tenant
- Responsive and helpful, but also business-minded
- Casual, conversational language

Guidelines:
- Keep responses short and natural (1-2 sentences, like real text messages)
- Ask one good qualifying question per reply (timeline, budget, number of people, pets)
- If you don't know something, say "let me check"
- Your viewing hours are weekdays 9-6 and Saturdays 10-4
{style_rules}"""


def format_when(moment: datetime, tzinfo) -> str:
    """'Friday, Oct 16 at 2:00 PM' in the landlord's timezone."""
    local = moment.astimezone(tzinfo)
    hour = local.hour % 12 or 12
    return f"{local:%A, %b} {local.day} at {hour}:{local:%M %p}"


def format_options(moments: Sequence[datetime], tzinfo) -> str:
    return " or ".join(format_when(m, tzinfo) for m in moments)


class ResponseComposer(Protocol):
    def compose(self, outcome: SchedulingOutcome, context: ConversationContext) -> Optional[str]:
        ...

    def compose_general_reply(self, message: str, context: ConversationContext, recent_messages: Sequence) -> Optional[str]:
        ...


class OpenAIResponseComposer:
    """
    Composer backed by OpenAI chat completions, with fixed fallbacks.
    """

    def __init__(self, client: Optional[OpenAI] = None, model: Optional[str] = None, timezone_name: Optional[str] = None):
        if client is not None:
            self.client = client
        elif settings.openai_api_key:
            self.client = OpenAI(api_key=settings.openai_api_key)
        else:
            self.client = None
            logger.warning("OpenAI API key not configured - using fallback replies")

        self.model = model or settings.openai_model
        self.tzinfo = tz.gettz(timezone_name or settings.landlord_timezone)

        self._prompts: Dict[str, Callable[[SchedulingOutcome, ConversationContext], str]] = {
            "viewing_created": self._prompt_created,
            "viewing_confirmed_verbal": self._prompt_verbal,
            "suggest_alternatives": self._prompt_alternatives,
            "clarify_datetime": self._prompt_clarify,
            "viewing_rescheduled": self._prompt_rescheduled,
            "reschedule_failed": self._prompt_reschedule_failed,
            "viewing_cancelled": self._prompt_cancelled,
            "cancel_failed": self._prompt_cancel_failed,
        }
        self._fallbacks: Dict[str, Callable[[SchedulingOutcome, ConversationContext], str]] = {
            "viewing_created": self._fallback_created,
            "viewing_confirmed_verbal": self._fallback_verbal,
            "suggest_alternatives": self._fallback_alternatives,
            "clarify_datetime": self._fallback_clarify,
            "viewing_rescheduled": self._fallback_rescheduled,
            "reschedule_failed": self._fallback_reschedule_failed,
            "viewing_cancelled": self._fallback_cancelled,
            "cancel_failed": self._fallback_cancel_failed,
        }

    @property
    def supported_actions(self) -> List[str]:
        return sorted(self._prompts)

    def compose(self, outcome: SchedulingOutcome, context: ConversationContext) -> Optional[str]:
        """
        Reply text for a scheduling outcome.

        Returns None for a non-scheduling outcome; the caller then uses
        compose_general_reply instead.
        """
        if not outcome.is_scheduling_response:
            return None

        action = outcome.scheduling_action
        fallback = self._fallbacks[action](outcome, context)
        if not self.client:
            return fallback

        prompt = self._prompts[action](outcome, context)
        reply = self._complete([{"role": "user", "content": prompt}], max_tokens=80)
        return reply or fallback

    def compose_general_reply(self, message: str, context: ConversationContext, recent_messages: Sequence = ()) -> Optional[str]:
        """
        Landlord-persona reply to ordinary chat.

        Args:
            message: The tenant's latest message
            context: Names and property title
            recent_messages: Earlier messages (objects with sender_type and content), oldest first

        Returns:
            Reply text, or None when no model is available
        """
        if not self.client:
            return None

        history = "\n".join(
            f"{context.tenant_name if _sender(m) == 'tenant' else context.landlord_name}: {m.content}"
            for m in recent_messages
        )
        user_prompt = (
            f"Recent conversation:\n{history}\n\nLatest message from {context.tenant_name}: {message}"
            if history
            else f"Message from {context.tenant_name}: {message}"
        )
        system_prompt = PERSONA_PROMPT.format(
            landlord_name=context.landlord_name,
            property_title=context.property_title,
            tenant_name=context.tenant_name,
            style_rules=STYLE_RULES,
        )
        return self._complete(
            [{"role": "system", "content": system_prompt}, {"role": "user", "content": user_prompt}],
            max_tokens=100,
        )

    def _complete(self, messages: List[dict], max_tokens: int) -> Optional[str]:
        request_params = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
        }
        if not self.model.startswith("gpt-5"):
            request_params["temperature"] = 0.8

        try:
            response = self.client.chat.completions.create(**request_params)
            content = response.choices[0].message.content
        except Exception as e:
            logger.error(f"Error generating reply: {e}")
            return None

        reply = (content or "").strip()
        return reply or None

    # ------------------------------------------------------------------
    # prompts
    # ------------------------------------------------------------------

    def _prompt_created(self, outcome, context) -> str:
        when = format_when(outcome.date_time, self.tzinfo)
        return (
            f"You are {context.landlord_name}. You just scheduled a viewing of {context.property_title} "
            f"with {context.tenant_name} on {when}. Write a friendly confirmation that shows you're looking "
            f"forward to meeting them.\n{STYLE_RULES}"
        )

    def _prompt_verbal(self, outcome, context) -> str:
        when = format_when(outcome.date_time, self.tzinfo)
        return (
            f"You are {context.landlord_name}. {context.tenant_name} asked to view {context.property_title} "
            f"on {when} and that time looks free, but it isn't booked yet. Say the time looks good and that "
            f"you'll confirm shortly. Don't say it's booked or confirmed.\n{STYLE_RULES}"
        )

    def _prompt_alternatives(self, outcome, context) -> str:
        options = format_options(outcome.alternatives, self.tzinfo)
        lines = [
            f"You are {context.landlord_name}. {context.tenant_name} asked for a viewing time that doesn't work.",
            f"Reason: {outcome.reason}",
        ]
        if options:
            lines.append(f"Alternative times available: {options}")
        lines.append("Politely explain and suggest the alternatives.")
        return "\n".join(lines) + f"\n{STYLE_RULES}"

    def _prompt_clarify(self, outcome, context) -> str:
        return (
            f"You are {context.landlord_name}. {context.tenant_name} wants to see {context.property_title} "
            f"but wasn't specific about the date or time. Ask which day and time suits them and mention you're "
            f"usually free weekdays 9-6 and Saturdays 10-4.\n{STYLE_RULES}"
        )

    def _prompt_rescheduled(self, outcome, context) -> str:
        when = format_when(outcome.date_time, self.tzinfo)
        return (
            f"You are {context.landlord_name}. {context.tenant_name} moved their viewing of "
            f"{context.property_title} to {when}. Confirm the new time warmly.\n{STYLE_RULES}"
        )

    def _prompt_reschedule_failed(self, outcome, context) -> str:
        lines = [
            f"You are {context.landlord_name}. {context.tenant_name} tried to move their viewing but it didn't work.",
            f"Problem: {_describe_failure(outcome.error, outcome.reason)}",
        ]
        if outcome.alternatives:
            lines.append(f"Alternative times available: {format_options(outcome.alternatives, self.tzinfo)}")
        lines.append("Explain kindly and offer a way forward.")
        return "\n".join(lines) + f"\n{STYLE_RULES}"

    def _prompt_cancelled(self, outcome, context) -> str:
        return (
            f"You are {context.landlord_name}. {context.tenant_name} cancelled their viewing of "
            f"{context.property_title}. Confirm without judgment and leave the door open.\n{STYLE_RULES}"
        )

    def _prompt_cancel_failed(self, outcome, context) -> str:
        return (
            f"You are {context.landlord_name}. {context.tenant_name} tried to cancel a viewing but it failed.\n"
            f"Problem: {_describe_failure(outcome.error, None)}\n"
            f"Explain kindly and offer to help.\n{STYLE_RULES}"
        )

    # ------------------------------------------------------------------
    # fallbacks
    # ------------------------------------------------------------------

    def _fallback_created(self, outcome, context) -> str:
        when = format_when(outcome.date_time, self.tzinfo)
        return f"Perfect {context.tenant_name}! I've got you down for {when}. I'll be in touch with the details soon."

    def _fallback_verbal(self, outcome, context) -> str:
        when = format_when(outcome.date_time, self.tzinfo)
        return f"{when} looks good {context.tenant_name}! Let me confirm on my end and I'll get back to you shortly."

    def _fallback_alternatives(self, outcome, context) -> str:
        if outcome.alternatives:
            options = format_options(outcome.alternatives, self.tzinfo)
            return f"Sorry {context.tenant_name}, that time doesn't work for me. How about {options}?"
        return f"Sorry {context.tenant_name}, that time doesn't work for me. Can we try a different time?"

    def _fallback_clarify(self, outcome, context) -> str:
        return (
            f"I'd love to show you the place {context.tenant_name}! What day and time works best for you? "
            f"I'm usually free weekdays 9-6 and Saturdays 10-4."
        )

    def _fallback_rescheduled(self, outcome, context) -> str:
        when = format_when(outcome.date_time, self.tzinfo)
        return f"No problem {context.tenant_name}! I've moved your viewing to {when}. See you then!"

    def _fallback_reschedule_failed(self, outcome, context) -> str:
        if outcome.error == FailureReason.NO_EXISTING_REQUEST:
            return f"I don't see an existing viewing to reschedule {context.tenant_name}. Want to book a new one instead?"
        if outcome.error == FailureReason.TIME_NOT_AVAILABLE:
            if outcome.alternatives:
                options = format_options(outcome.alternatives, self.tzinfo)
                return f"That new time doesn't work for me {context.tenant_name}. How about {options}?"
            return f"That new time doesn't work for me {context.tenant_name}. Could you suggest another?"
        return f"Sorry {context.tenant_name}, I couldn't update the viewing just now. Mind trying again in a bit?"

    def _fallback_cancelled(self, outcome, context) -> str:
        return (
            f"No worries at all {context.tenant_name}! I've cancelled your viewing. "
            f"Feel free to reach out if you want to schedule another time."
        )

    def _fallback_cancel_failed(self, outcome, context) -> str:
        if outcome.error == FailureReason.NO_EXISTING_REQUEST:
            return f"I don't see any viewing scheduled to cancel {context.tenant_name}. Maybe it was already cancelled?"
        return f"Sorry {context.tenant_name}, I couldn't cancel the viewing just now. Mind trying again in a bit?"


def _sender(message) -> str:
    sender_type = getattr(message, "sender_type", None)
    return getattr(sender_type, "value", sender_type)


def _describe_failure(error: FailureReason, reason: Optional[str]) -> str:
    if error == FailureReason.NO_EXISTING_REQUEST:
        return "there is no upcoming viewing on record"
    if error == FailureReason.TIME_NOT_AVAILABLE:
        return reason or "the new time isn't available"
    return "a technical problem on our side"
