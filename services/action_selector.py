import logging
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

from helpers.slot_helpers import LAST_MINUTE_OF_DAY, get_timezone, minutes_to_time, time_to_minutes
from reservation_manager.types import (
    ALLOWED_ACTIONS,
    ActionDecision,
    ConversationStage,
    ConversationState,
    EmailAction,
    ThreadMessage,
    TimeSlot,
)

logger = logging.getLogger(__name__)

FALLBACK_REASONING = "Error occurred during action selection"


class ActionSelectionError(Exception):
    """The model picked an action that the current stage does not allow."""


class SuggestedTime(BaseModel):
    date: str = Field(description="Date as YYYY-MM-DD")
    start_time: str = Field(description="Start time as HH:MM, 24h clock")
    end_time: Optional[str] = Field(default=None, description="End time as HH:MM, 24h clock, if known")


class ActionSelection(BaseModel):
    """Model output for the next action on a reservation email."""
    action: EmailAction = Field(description="The selected action")
    confidence: float = Field(description="Confidence of the selection (0-1)", ge=0, le=1)
    reasoning: str = Field(description="Brief explanation of why this action was selected")
    time_suggestions: Optional[List[SuggestedTime]] = Field(
        default=None,
        description="Proposed or accepted meeting times mentioned in the email, earliest preference first"
    )


INITIAL_INSTRUCTIONS = """You are an AI secretary that analyzes reservation-related emails and selects the appropriate action.

For INITIAL emails (first contact), you can select from these actions:

1. OFFER - Use when:
   - Email expresses interest in making a reservation
   - Email has a purpose (e.g., "I'd like to make a sales call") but NO specific time suggestion
   - Sender is inquiring about availability without proposing a time
   Example: "Hi, I'd like to book a demo call sometime next week."

2. CHECK_TIME - Use when:
   - Email has both a purpose AND a specific time suggestion
   - Sender proposes a specific date/time for the reservation
   - Email contains phrases like "at 7pm", "on Friday", "next Tuesday at noon"
   Example: "Hi, I'd like to book a demo call this Friday at 7pm"

3. CONFIRM - Use when:
   - Email is accepting/confirming a previously offered or checked time
   - Earlier messages in the thread talked about that time
   - Contains acceptance language like "yes", "confirmed", "that works", "sounds good"
   Example: "Yes, that time works for me. See you then!"

Select one of ["OFFER", "CHECK_TIME", "CONFIRM"].
For CHECK_TIME and CONFIRM, put the proposed or accepted date and time in time_suggestions.
For OFFER, leave time_suggestions empty."""

AFTER_CHECK_TIME_INSTRUCTIONS = """You are an AI secretary that analyzes reservation-related emails with given time-context.

The sender proposed a time and the calendar has been checked. You can select from these actions:

1. CONFIRM - Use when:
   - The proposed time can be confirmed. If the calendar could not be checked and nothing
     in the conversation contradicts the time, it can be confirmed.

2. COUNTEROFFER - Use when:
   - The proposed time cannot be confirmed and an alternative needs to be suggested.

Select one of ["CONFIRM", "COUNTEROFFER"].
Put the time that was checked in time_suggestions."""


def format_thread_history(thread_history: List[ThreadMessage]) -> str:
    lines = []
    for index, msg in enumerate(thread_history, 1):
        lines.append(f"[{index}] From: {msg.from_} | Time: {msg.timestamp or 'Unknown time'}\n{msg.text}")
    return "\n\n---\n\n".join(lines)


def fallback_decision() -> ActionDecision:
    return ActionDecision(action=EmailAction.OFFER, confidence=0.0, reasoning=FALLBACK_REASONING, time_suggestions=[])


class ActionSelector:
    """
    Decides the next step of a reservation conversation.
    A pure function of its arguments apart from the model call.
    """

    def __init__(self, oracle, default_duration: int = 60, timezone: str = "UTC"):
        self.oracle = oracle
        self.default_duration = default_duration
        self.timezone = timezone

    def select_action(
        self,
        subject: str,
        body: str,
        state: ConversationState,
        thread_history: Optional[List[ThreadMessage]] = None,
        now: Optional[datetime] = None
    ) -> ActionDecision:
        logger.info("Selecting action for email: %s (context: %s)", subject, state.stage)
        try:
            selection = self.oracle.complete_structured(
                self._build_prompt(subject, body, state, thread_history),
                ActionSelection,
                "ActionSelection",
                system_messages=[self._build_system_message(state, now)],
                temperature=0.3,
                max_tokens=400,
            )
            allowed = ALLOWED_ACTIONS[state.stage]
            if selection.action not in allowed:
                raise ActionSelectionError(f"{selection.action} is not allowed in {state.stage}")
        except Exception as e:
            logger.error("Error selecting action: %s", e)
            return fallback_decision()

        decision = ActionDecision(
            action=selection.action,
            confidence=selection.confidence,
            reasoning=selection.reasoning,
            time_suggestions=self._to_time_slots(selection.time_suggestions or []),
        )
        logger.info("Action selected: %s (confidence: %s)", decision.action, decision.confidence)
        return decision

    def _build_system_message(self, state: ConversationState, now: Optional[datetime]) -> str:
        now = now or datetime.now(get_timezone(self.timezone))
        zone = now.strftime('%Z') or self.timezone
        instructions = INITIAL_INSTRUCTIONS if state.stage == ConversationStage.INITIAL else AFTER_CHECK_TIME_INSTRUCTIONS
        return (
            f"{instructions}\n\n"
            f"Date and time of the current moment: {now.strftime('%A, %Y-%m-%d %H:%M')} ({zone}).\n"
            f"If no end time is given, the meeting lasts {self.default_duration} minutes."
        )

    def _build_prompt(
        self,
        subject: str,
        body: str,
        state: ConversationState,
        thread_history: Optional[List[ThreadMessage]]
    ) -> str:
        parts = []
        if thread_history:
            parts.append(f"Thread History ({len(thread_history)} messages, oldest first):\n\n{format_thread_history(thread_history)}")
        if state.stage == ConversationStage.AFTER_CHECK_TIME:
            parts.append(
                f"Time context:\nProposed time: {state.checked_slot}\nCalendar check: {state.verdict.describe()}"
            )
        parts.append(f"Subject: {subject}\n\nBody: {body}")
        return "\n\n---\n\n".join(parts)

    def _to_time_slots(self, suggestions: List[SuggestedTime]) -> List[TimeSlot]:
        slots = []
        for suggestion in suggestions:
            end_time = suggestion.end_time
            try:
                if not end_time:
                    end_minutes = min(time_to_minutes(suggestion.start_time) + self.default_duration, LAST_MINUTE_OF_DAY)
                    end_time = minutes_to_time(end_minutes)
                slots.append(TimeSlot(date=suggestion.date, start_time=suggestion.start_time, end_time=end_time))
            except (ValidationError, ValueError):
                logger.warning("Dropping unusable time suggestion: %s", suggestion)
        return slots
