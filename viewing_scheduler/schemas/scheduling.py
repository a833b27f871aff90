"""
Scheduling value types.

Three families of models live here:
- SchedulingIntent: what the intent extractor hands the orchestrator
- AvailabilityResult: what the availability checker answers
- SchedulingOutcome: the tagged union the orchestrator returns and the
  response composer consumes

Everything serialises to camelCase so the payloads read the same as the
JSON the classifier produces.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class IntentType(str, Enum):
    SCHEDULE_VIEWING = "schedule_viewing"
    RESCHEDULE = "reschedule"
    CANCEL = "cancel"
    ASK_AVAILABILITY = "ask_availability"
    NONE = "none"


class ClarificationReason(str, Enum):
    MISSING_DATE = "missing_date"
    MISSING_TIME = "missing_time"
    AMBIGUOUS = "ambiguous"
    LOW_CONFIDENCE = "low_confidence"


class SchedulingIntent(BaseModel):
    """
    Structured reading of one tenant message.

    requested_date_time is an absolute instant already adjusted to the
    landlord's operating timezone; it is only meaningful when
    has_valid_date_time is true.
    """

    model_config = _CAMEL

    is_scheduling_request: bool = False
    intent: IntentType = IntentType.NONE
    has_valid_date_time: bool = False
    requested_date_time: Optional[datetime] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    needs_clarification: bool = False
    clarification_reason: Optional[ClarificationReason] = None

    @classmethod
    def not_scheduling(cls) -> "SchedulingIntent":
        return cls()


class AvailabilityReason(str, Enum):
    AVAILABLE = "available"
    WEEKDAY_UNAVAILABLE = "weekday_unavailable"
    OUTSIDE_HOURS = "outside_hours"
    SLOT_CONFLICT = "slot_conflict"
    INSUFFICIENT_NOTICE = "insufficient_notice"
    CHECK_FAILED = "check_failed"


class AvailabilityResult(BaseModel):
    """
    Answer of the availability checker.

    Frozen so a cached instance can be handed out repeatedly without a
    caller mutating what the next caller sees.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    available: bool
    reason: str
    reason_code: AvailabilityReason
    alternatives: Tuple[datetime, ...] = ()


class FailureReason(str, Enum):
    NO_EXISTING_REQUEST = "no_existing_request"
    TIME_NOT_AVAILABLE = "time_not_available"
    DATABASE_ERROR = "database_error"


class _Outcome(BaseModel):
    model_config = _CAMEL

    is_scheduling_response: bool = True


class NotSchedulingOutcome(_Outcome):
    """The message isn't a booking action; the caller replies as usual."""

    is_scheduling_response: Literal[False] = False
    scheduling_action: Literal["none"] = "none"


class ViewingCreatedOutcome(_Outcome):
    scheduling_action: Literal["viewing_created"] = "viewing_created"
    viewing_request_id: int
    date_time: datetime


class ViewingConfirmedVerbalOutcome(_Outcome):
    """
    The time was available but the record could not be written.

    persisted is always False; the composer must not promise the slot is
    held.
    """

    scheduling_action: Literal["viewing_confirmed_verbal"] = "viewing_confirmed_verbal"
    date_time: datetime
    persisted: Literal[False] = False


class SuggestAlternativesOutcome(_Outcome):
    scheduling_action: Literal["suggest_alternatives"] = "suggest_alternatives"
    reason: str
    reason_code: AvailabilityReason
    alternatives: List[datetime] = Field(default_factory=list)


class ClarifyDatetimeOutcome(_Outcome):
    scheduling_action: Literal["clarify_datetime"] = "clarify_datetime"
    intent: SchedulingIntent


class ViewingRescheduledOutcome(_Outcome):
    scheduling_action: Literal["viewing_rescheduled"] = "viewing_rescheduled"
    viewing_request_id: int
    previous_date_time: datetime
    date_time: datetime


class RescheduleFailedOutcome(_Outcome):
    scheduling_action: Literal["reschedule_failed"] = "reschedule_failed"
    error: FailureReason
    reason: Optional[str] = None
    alternatives: List[datetime] = Field(default_factory=list)


class ViewingCancelledOutcome(_Outcome):
    scheduling_action: Literal["viewing_cancelled"] = "viewing_cancelled"
    viewing_request_id: int
    cancelled_date_time: datetime


class CancelFailedOutcome(_Outcome):
    scheduling_action: Literal["cancel_failed"] = "cancel_failed"
    error: FailureReason


SchedulingOutcome = Annotated[
    Union[
        NotSchedulingOutcome,
        ViewingCreatedOutcome,
        ViewingConfirmedVerbalOutcome,
        SuggestAlternativesOutcome,
        ClarifyDatetimeOutcome,
        ViewingRescheduledOutcome,
        RescheduleFailedOutcome,
        ViewingCancelledOutcome,
        CancelFailedOutcome,
    ],
    Field(discriminator="scheduling_action"),
]

# Every tag a composer has to handle
SCHEDULING_ACTIONS = (
    "viewing_created",
    "viewing_confirmed_verbal",
    "suggest_alternatives",
    "clarify_datetime",
    "viewing_rescheduled",
    "reschedule_failed",
    "viewing_cancelled",
    "cancel_failed",
)


class ConversationContext(BaseModel):
    """Human-readable context the response composer needs."""

    tenant_name: str = "there"
    landlord_name: str = "the landlord"
    property_title: str = "the property"
