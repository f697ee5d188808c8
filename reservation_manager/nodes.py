import logging
import re
from datetime import datetime
from typing import List, Optional

from langchain_core.runnables import RunnableConfig

import config as app_config
from helpers.interval_helpers import build_oracle_reparser
from helpers.slot_helpers import get_timezone
from services.action_selector import ActionSelector
from services.agentmail_service import parse_address
from services.calendar_invite import CalendarEventDetails, CalendarInviteService, Participant
from services.calendar_source import CalendarSourceClient
from services.email_classifier import EmailClassifier
from services.email_response_generator import EmailResponseGenerator, UnsupportedActionError
from services.llm_service import TextOracle
from services.scheduler_service import SchedulerService

from .types import (
    AvailabilityStatus,
    ConfirmContext,
    ConversationStage,
    ConversationState,
    CounterOfferContext,
    EmailAction,
    EmailGenerationRequest,
    OfferContext,
    ReservationState,
    SchedulingRequest,
    TimeSlot,
    WorkingHours,
)

logger = logging.getLogger(__name__)

REPLY_PREFIX = re.compile(r"^\s*((re|fw|fwd|vs|aw)\s*:\s*)+", re.IGNORECASE)


class ReservationServices:
    """Collaborators used by the workflow, passed in through the run config."""

    def __init__(
        self,
        classifier: EmailClassifier,
        selector: ActionSelector,
        scheduler: SchedulerService,
        generator: EmailResponseGenerator,
        invite_service: CalendarInviteService,
        meeting_duration: int = 60
    ):
        self.classifier = classifier
        self.selector = selector
        self.scheduler = scheduler
        self.generator = generator
        self.invite_service = invite_service
        self.meeting_duration = meeting_duration

    @classmethod
    def from_config(cls, oracle: Optional[TextOracle] = None) -> "ReservationServices":
        oracle = oracle or TextOracle()
        return cls(
            classifier=EmailClassifier(oracle),
            selector=ActionSelector(
                oracle,
                default_duration=app_config.DEFAULT_MEETING_DURATION,
                timezone=app_config.DEFAULT_TIMEZONE
            ),
            scheduler=SchedulerService(
                CalendarSourceClient(),
                reparse=build_oracle_reparser(oracle),
                timezone=app_config.DEFAULT_TIMEZONE
            ),
            generator=EmailResponseGenerator(oracle),
            invite_service=CalendarInviteService(),
            meeting_duration=app_config.DEFAULT_MEETING_DURATION
        )


def get_services(config: Optional[RunnableConfig]) -> ReservationServices:
    services = ((config or {}).get("configurable") or {}).get("services")
    if services is None:
        raise ValueError("ReservationServices missing from config['configurable']['services']")
    return services


# --- State accessors ---

def _timezone_name(state: ReservationState) -> str:
    return state.user.timezone if state.user else app_config.DEFAULT_TIMEZONE


def _identity(state: ReservationState) -> str:
    return state.user.id if state.user else app_config.DEFAULT_CALENDAR_IDENTITY


def _working_hours(state: ReservationState) -> WorkingHours:
    if state.user:
        return state.user.working_hours
    return WorkingHours(start=app_config.DEFAULT_WORKING_HOURS_START, end=app_config.DEFAULT_WORKING_HOURS_END)


def scheduling_request(state: ReservationState, meeting_duration: int) -> SchedulingRequest:
    return SchedulingRequest(meeting_duration=meeting_duration, working_hours=_working_hours(state))


def meeting_purpose(subject: str) -> Optional[str]:
    """The subject without reply/forward prefixes, None when nothing is left."""
    purpose = REPLY_PREFIX.sub("", subject or "").strip()
    return purpose or None


def _first_suggestion(state: ReservationState) -> Optional[TimeSlot]:
    if state.decision and state.decision.time_suggestions:
        return state.decision.time_suggestions[0]
    return None


def _offer(state: ReservationState, services: ReservationServices, exclude: Optional[TimeSlot] = None) -> List[TimeSlot]:
    slots = services.scheduler.find_available_slots(
        scheduling_request(state, services.meeting_duration),
        _identity(state),
        timezone=_timezone_name(state)
    )
    return [slot for slot in slots if slot != exclude]


# --- Nodes ---

def classify_email_node(state: ReservationState, config: RunnableConfig) -> ReservationState:
    """Labels the inbound email as spam and/or a reservation request."""
    logger.info("---NODE: Classify Email---")
    services = get_services(config)
    state.classification = services.classifier.classify_email(state.message.subject, state.message.text)
    state.last_updated = datetime.now()
    return state


def select_action_node(state: ReservationState, config: RunnableConfig) -> ReservationState:
    """Asks the selector for the next action given the current conversation stage."""
    logger.info("---NODE: Select Action (%s)---", state.conversation_state.stage)
    services = get_services(config)
    now = datetime.now(get_timezone(_timezone_name(state)))
    state.decision = services.selector.select_action(
        state.message.subject,
        state.message.text,
        state.conversation_state,
        thread_history=state.thread_history,
        now=now
    )
    logger.info("Decision: %s (%s)", state.decision.action, state.decision.reasoning)
    return state


def check_time_node(state: ReservationState, config: RunnableConfig) -> ReservationState:
    """Checks the first proposed time against the calendar and moves to AFTER_CHECK_TIME."""
    logger.info("---NODE: Check Time---")
    services = get_services(config)
    slot = _first_suggestion(state)
    verdict = services.scheduler.is_slot_available(
        slot,
        _identity(state),
        working_hours=_working_hours(state),
        timezone=_timezone_name(state)
    )
    logger.info("Availability of %s: %s", slot, verdict.status)
    state.conversation_state = ConversationState.after_check_time(slot, verdict)
    return state


def offer_slots_node(state: ReservationState, config: RunnableConfig) -> ReservationState:
    logger.info("---NODE: Offer Slots---")
    services = get_services(config)
    state.reply_context = OfferContext(available_time_slots=_offer(state, services))
    return state


def confirm_time_node(state: ReservationState, config: RunnableConfig) -> ReservationState:
    """Confirms the agreed slot and attaches a calendar invite when one can be built."""
    logger.info("---NODE: Confirm Time---")
    services = get_services(config)
    conversation = state.conversation_state
    if conversation.stage == ConversationStage.AFTER_CHECK_TIME:
        # Only the slot that went through the calendar check is confirmed
        slot = conversation.checked_slot
    else:
        slot = _first_suggestion(state)
    state.reply_context = ConfirmContext(confirmed_time_slot=slot)

    tz = get_timezone(_timezone_name(state))
    attendee_name, attendee_email = parse_address(state.message.from_)
    organizer = Participant(
        name=(state.inbox.name if state.inbox and state.inbox.name else (state.user.name if state.user else "")),
        email=state.user.email if state.user else (state.message.to[0] if state.message.to else state.message.inbox_id)
    )
    try:
        state.ics_content = services.invite_service.generate_ics(CalendarEventDetails(
            summary=meeting_purpose(state.message.subject) or "Meeting",
            description=f"Scheduled by email: {state.message.subject}",
            start_time=tz.localize(slot.start_datetime()),
            end_time=tz.localize(slot.end_datetime()),
            organizer=organizer,
            attendees=[Participant(name=attendee_name, email=attendee_email)]
        ))
    except Exception as e:
        logger.error("Could not generate calendar invite, confirming without it: %s", e)
        state.ics_content = None
    return state


def counteroffer_slots_node(state: ReservationState, config: RunnableConfig) -> ReservationState:
    """Proposes alternatives to the checked time that turned out not to work."""
    logger.info("---NODE: Counteroffer Slots---")
    services = get_services(config)
    proposed = state.conversation_state.checked_slot
    state.reply_context = CounterOfferContext(
        proposed_time_slot=proposed,
        alternative_time_slots=_offer(state, services, exclude=proposed)
    )
    return state


def generate_reply_node(state: ReservationState, config: RunnableConfig) -> ReservationState:
    logger.info("---NODE: Generate Reply---")
    services = get_services(config)
    recipient_name, _ = parse_address(state.message.from_)
    sender_name = None
    if state.inbox and state.inbox.name:
        sender_name = state.inbox.name
    elif state.user and state.user.name:
        sender_name = state.user.name

    request = EmailGenerationRequest(
        action=state.reply_context.action,
        context=state.reply_context,
        recipient_name=recipient_name or None,
        sender_name=sender_name,
        meeting_purpose=meeting_purpose(state.message.subject),
        language=state.language,
        persona=state.inbox.persona if state.inbox and state.inbox.persona else None
    )
    state.generated_email = services.generator.generate_email(request, state.thread_history)
    return state


def end_interaction_node(state: ReservationState) -> ReservationState:
    logger.info("---NODE: End Interaction---")
    state.last_updated = datetime.now()
    if state.generated_email is None:
        logger.info("No reply generated for message %s", state.message.message_id)
    return state


# --- Routing ---

def route_after_classification(state: ReservationState) -> str:
    classification = state.classification
    if classification is None or classification.is_spam or not classification.is_reservation:
        logger.info("Decision: Not a reservation request (or spam), ending interaction.")
        return "end_interaction"
    return "select_action"


def route_after_selection(state: ReservationState) -> str:
    """
    Maps the selected action to the next node. A time check or confirmation
    without a usable time degrades to offering slots, and a confirmation of a
    time the calendar check rejected becomes a counteroffer.
    """
    action = state.decision.action
    stage = state.conversation_state.stage
    has_suggestion = _first_suggestion(state) is not None

    if action == EmailAction.OFFER:
        return "offer_slots"
    if action == EmailAction.CHECK_TIME:
        # A second check is never started from AFTER_CHECK_TIME
        if stage == ConversationStage.INITIAL and has_suggestion:
            return "check_time"
        return "offer_slots"
    if action == EmailAction.CONFIRM:
        if stage == ConversationStage.AFTER_CHECK_TIME:
            if state.conversation_state.verdict.status == AvailabilityStatus.UNAVAILABLE:
                logger.warning("CONFIRM selected for a time the calendar rejected, counteroffering instead.")
                return "counteroffer_slots"
            return "confirm_time"
        if has_suggestion:
            return "confirm_time"
        logger.warning("CONFIRM without a time to confirm, offering slots instead.")
        return "offer_slots"
    if action == EmailAction.COUNTEROFFER:
        if stage == ConversationStage.AFTER_CHECK_TIME:
            return "counteroffer_slots"
        return "offer_slots"

    logger.error("Unsupported action selected: %s", action)
    raise UnsupportedActionError(f"Unsupported action: {action}")
