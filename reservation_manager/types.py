import re
from datetime import datetime, time
from enum import StrEnum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class EmailAction(StrEnum):
    """
    Next conversational step chosen for a reservation email.
    CHECK_TIME and COUNTEROFFER only make sense around a calendar check,
    see ConversationStage.
    """
    OFFER = "OFFER"
    CHECK_TIME = "CHECK_TIME"
    CONFIRM = "CONFIRM"
    COUNTEROFFER = "COUNTEROFFER"


class ConversationStage(StrEnum):
    INITIAL = "INITIAL"
    AFTER_CHECK_TIME = "AFTER_CHECK_TIME"


# Actions the selector may pick in each stage
ALLOWED_ACTIONS = {
    ConversationStage.INITIAL: [EmailAction.OFFER, EmailAction.CHECK_TIME, EmailAction.CONFIRM],
    ConversationStage.AFTER_CHECK_TIME: [EmailAction.CONFIRM, EmailAction.COUNTEROFFER],
}


class AvailabilityStatus(StrEnum):
    AVAILABLE = "AVAILABLE"
    UNAVAILABLE = "UNAVAILABLE"
    CANNOT_VERIFY = "CANNOT_VERIFY"


def _validate_date_string(value: str) -> str:
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        raise ValueError(f"date must match YYYY-MM-DD, got {value!r}")
    datetime.strptime(value, "%Y-%m-%d")  # rejects 2025-02-30
    return value


def _validate_time_string(value: str) -> str:
    if not isinstance(value, str) or not TIME_PATTERN.match(value):
        raise ValueError(f"time must match HH:MM (24h), got {value!r}")
    return value


class TimeSlot(BaseModel):
    """A candidate meeting window on one calendar day."""
    model_config = ConfigDict(frozen=True)

    date: str        # YYYY-MM-DD
    start_time: str  # HH:MM
    end_time: str    # HH:MM

    @field_validator("date")
    @classmethod
    def _check_date(cls, value: str) -> str:
        return _validate_date_string(value)

    @field_validator("start_time", "end_time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        return _validate_time_string(value)

    @model_validator(mode="after")
    def _check_order(self) -> "TimeSlot":
        # Zero-padded HH:MM strings compare in chronological order
        if self.start_time >= self.end_time:
            raise ValueError(f"start_time {self.start_time} must be before end_time {self.end_time}")
        return self

    def start_datetime(self) -> datetime:
        return datetime.strptime(f"{self.date} {self.start_time}", "%Y-%m-%d %H:%M")

    def end_datetime(self) -> datetime:
        return datetime.strptime(f"{self.date} {self.end_time}", "%Y-%m-%d %H:%M")

    def __str__(self) -> str:
        return f"{self.date} {self.start_time}-{self.end_time}"


class BusyInterval(BaseModel):
    """Busy range on a single date. Never persisted."""
    model_config = ConfigDict(frozen=True)

    start: time
    end: time


class WorkingHours(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: str = "09:00"
    end: str = "18:00"

    @field_validator("start", "end")
    @classmethod
    def _check_time(cls, value: str) -> str:
        return _validate_time_string(value)

    @model_validator(mode="after")
    def _check_order(self) -> "WorkingHours":
        if self.start >= self.end:
            raise ValueError(f"working hours start {self.start} must be before end {self.end}")
        return self


class SchedulingRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    meeting_duration: int = Field(default=60, gt=0, description="Meeting length in minutes")
    working_hours: WorkingHours = WorkingHours()
    preferred_dates: Optional[List[str]] = None

    @field_validator("preferred_dates")
    @classmethod
    def _check_dates(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return value
        return [_validate_date_string(d) for d in value]


class AvailabilityVerdict(BaseModel):
    """
    Outcome of a point availability check.
    CANNOT_VERIFY means the calendar could not be consulted; callers must not
    read it as either free or busy.
    """
    model_config = ConfigDict(frozen=True)

    status: AvailabilityStatus
    reason: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.status == AvailabilityStatus.AVAILABLE

    @property
    def verified(self) -> bool:
        return self.status != AvailabilityStatus.CANNOT_VERIFY

    @classmethod
    def confirmed(cls, reason: Optional[str] = None) -> "AvailabilityVerdict":
        return cls(status=AvailabilityStatus.AVAILABLE, reason=reason)

    @classmethod
    def rejected(cls, reason: str) -> "AvailabilityVerdict":
        return cls(status=AvailabilityStatus.UNAVAILABLE, reason=reason)

    @classmethod
    def unverifiable(cls, reason: str) -> "AvailabilityVerdict":
        return cls(status=AvailabilityStatus.CANNOT_VERIFY, reason=reason)

    def describe(self) -> str:
        if self.status == AvailabilityStatus.AVAILABLE:
            text = "The proposed time is available in the calendar."
        elif self.status == AvailabilityStatus.UNAVAILABLE:
            text = "The proposed time is NOT available."
        else:
            text = "Availability of the proposed time could not be verified."
        return f"{text} Reason: {self.reason}" if self.reason else text


class ConversationState(BaseModel):
    """
    Where the negotiation stands for the message being handled.

    The orchestrator builds a fresh value for every selection:
        ConversationState.initial()
        ConversationState.after_check_time(slot, verdict)
    """
    model_config = ConfigDict(frozen=True)

    stage: ConversationStage = ConversationStage.INITIAL
    checked_slot: Optional[TimeSlot] = None
    verdict: Optional[AvailabilityVerdict] = None

    @model_validator(mode="after")
    def _check_payload(self) -> "ConversationState":
        if self.stage == ConversationStage.AFTER_CHECK_TIME:
            if self.checked_slot is None or self.verdict is None:
                raise ValueError("AFTER_CHECK_TIME requires the checked slot and its verdict")
        elif self.checked_slot is not None or self.verdict is not None:
            raise ValueError("INITIAL state carries no check result")
        return self

    @classmethod
    def initial(cls) -> "ConversationState":
        return cls(stage=ConversationStage.INITIAL)

    @classmethod
    def after_check_time(cls, checked_slot: TimeSlot, verdict: AvailabilityVerdict) -> "ConversationState":
        return cls(stage=ConversationStage.AFTER_CHECK_TIME, checked_slot=checked_slot, verdict=verdict)


class ActionDecision(BaseModel):
    action: EmailAction
    confidence: float = Field(ge=0, le=1)
    reasoning: str
    time_suggestions: List[TimeSlot] = []


# --- Email generation contexts, one variant per action ---

class OfferContext(BaseModel):
    action: Literal["OFFER"] = "OFFER"
    available_time_slots: List[TimeSlot]


class ConfirmContext(BaseModel):
    action: Literal["CONFIRM"] = "CONFIRM"
    confirmed_time_slot: TimeSlot


class CounterOfferContext(BaseModel):
    action: Literal["COUNTEROFFER"] = "COUNTEROFFER"
    proposed_time_slot: TimeSlot
    alternative_time_slots: List[TimeSlot]


class CheckTimeContext(BaseModel):
    action: Literal["CHECK_TIME"] = "CHECK_TIME"
    time_suggestions: List[TimeSlot] = []


EmailGenerationContext = Annotated[
    Union[OfferContext, ConfirmContext, CounterOfferContext, CheckTimeContext],
    Field(discriminator="action"),
]


class EmailGenerationRequest(BaseModel):
    action: EmailAction
    context: EmailGenerationContext
    recipient_name: Optional[str] = None
    sender_name: Optional[str] = None
    meeting_purpose: Optional[str] = None
    language: Optional[str] = None
    persona: Optional[str] = None

    @model_validator(mode="after")
    def _check_context_matches_action(self) -> "EmailGenerationRequest":
        if self.context.action != self.action:
            raise ValueError(f"{type(self.context).__name__} cannot be used for action {self.action}")
        return self


class GeneratedEmail(BaseModel):
    subject: str = Field(description="The email subject line")
    email_content: str = Field(description="The email body content")


class EmailClassification(BaseModel):
    labels: List[str] = Field(default=[], description="Labels such as SPAM or RESERVATION")
    is_spam: bool = Field(default=False, description="True for unsolicited or suspicious email")
    is_reservation: bool = Field(default=False, description="True for appointment, meeting or reservation email")


# --- Messages and people ---

class InboundMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: str
    inbox_id: str
    thread_id: Optional[str] = None
    from_: str = Field(alias="from")
    to: List[str] = []
    subject: str = ""
    text: str = ""
    timestamp: Optional[str] = None


class ThreadMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(default="Unknown", alias="from")
    timestamp: Optional[str] = None
    text: str = ""


class UserProfile(BaseModel):
    id: str
    email: str
    name: str = ""
    timezone: str
    working_hours: WorkingHours = WorkingHours()


class InboxProfile(BaseModel):
    inbox_id: str
    user_id: str
    name: str = ""
    persona: str = ""


class ReservationState(BaseModel):
    # Input, prepared by the controller
    message: InboundMessage
    thread_history: List[ThreadMessage] = []
    user: Optional[UserProfile] = None
    inbox: Optional[InboxProfile] = None
    language: Optional[str] = None  # e.g. 'en', 'fi'

    # Filled in by the workflow
    classification: Optional[EmailClassification] = None
    conversation_state: ConversationState = Field(default_factory=ConversationState.initial)
    decision: Optional[ActionDecision] = None
    reply_context: Optional[EmailGenerationContext] = None
    generated_email: Optional[GeneratedEmail] = None
    ics_content: Optional[str] = None
    error_message: Optional[str] = None
    last_updated: Optional[datetime] = None
