import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from langdetect import DetectorFactory, LangDetectException, detect
from pydantic import ValidationError

import config
from helpers.slot_helpers import default_time_slots, today_in
from reservation_manager.graph import app as reservation_app
from reservation_manager.nodes import ReservationServices, meeting_purpose, scheduling_request
from reservation_manager.types import (
    EmailAction,
    EmailGenerationRequest,
    GeneratedEmail,
    InboundMessage,
    InboxProfile,
    OfferContext,
    ReservationState,
    ThreadMessage,
    UserProfile,
)
from repositories.user_repository import UserRepository
from services.agentmail_service import AgentMailClient, DeliveryError, parse_address
from services.delivery_manager import DeliveryManager
from services.email_response_generator import EmailResponseGenerator
from .base_controller import BaseController

logger = logging.getLogger(__name__)

# Same text, same language on every run
DetectorFactory.seed = 0


def detect_language(text: str) -> str:
    try:
        return detect(text) if text and text.strip() else "en"
    except LangDetectException:
        return "en"


class ReservationController(BaseController):
    """Controller for inbound messages arriving through the mail webhook."""

    def __init__(
        self,
        services: Optional[ReservationServices] = None,
        user_repository: Optional[UserRepository] = None,
        mail_client: Optional[AgentMailClient] = None,
        delivery_manager: Optional[DeliveryManager] = None,
        workflow=None
    ):
        self.services = services or ReservationServices.from_config()
        self.user_repository = user_repository or UserRepository()
        self.mail_client = mail_client or AgentMailClient()
        self.delivery_manager = delivery_manager or DeliveryManager(self.mail_client)
        self.workflow = workflow or reservation_app

    def process_input(self, payload: Dict[str, Any]) -> None:
        """
        Process a webhook payload of the form {"event_type": ..., "message": {...}}.
        Payloads without a usable message are logged and ignored.
        """
        raw_message = payload.get("message") if isinstance(payload, dict) else None
        if not isinstance(raw_message, dict):
            logger.warning("Ignoring webhook payload without a message")
            return

        try:
            message = InboundMessage.model_validate(raw_message)
        except ValidationError as e:
            logger.error("Invalid webhook message: %s", e)
            return

        self.handle_inbound_message(message)

    def handle_inbound_message(self, message: InboundMessage) -> Optional[ReservationState]:
        """
        Runs the reservation workflow for one message and delivers the reply.
        Returns the final workflow state, or None when the workflow failed.
        """
        logger.info("Handling message %s in inbox %s", message.message_id, message.inbox_id)
        state = self._prepare_state(message)

        try:
            final_state = self.workflow.invoke(state, config={"configurable": {"services": self.services}})
        except Exception:
            logger.exception("Reservation workflow failed for message %s, sending fallback offer", message.message_id)
            self._send_fallback_offer(state)
            return None

        # Convert AddableValuesDict back to ReservationState if needed
        if not isinstance(final_state, ReservationState):
            final_state = ReservationState(**final_state)

        if final_state.generated_email:
            self._deliver(message, final_state.generated_email, final_state.ics_content)
        return final_state

    def _prepare_state(self, message: InboundMessage) -> ReservationState:
        """Prepare the initial state for the reservation workflow."""
        inbox, user = self._resolve_owner(message.inbox_id)
        return ReservationState(
            message=message,
            thread_history=self._load_thread_history(message),
            user=user,
            inbox=inbox,
            language=detect_language(message.text),
            last_updated=datetime.now()
        )

    def _resolve_owner(self, inbox_id: str) -> Tuple[Optional[InboxProfile], UserProfile]:
        inbox, user = self.user_repository.get_user_by_inbox(inbox_id)
        if user is None:
            logger.info("No owner found for inbox %s, using default preferences", inbox_id)
            user = UserProfile(
                id=inbox.user_id if inbox else config.DEFAULT_CALENDAR_IDENTITY,
                email=inbox_id,
                name=inbox.name if inbox else "",
                timezone=config.DEFAULT_TIMEZONE,
                working_hours={"start": config.DEFAULT_WORKING_HOURS_START, "end": config.DEFAULT_WORKING_HOURS_END}
            )
        return inbox, user

    def _load_thread_history(self, message: InboundMessage) -> List[ThreadMessage]:
        if not message.thread_id:
            return []
        try:
            history = self.mail_client.get_thread(message.thread_id)
        except Exception as e:
            logger.warning("Could not load thread %s, continuing without history: %s", message.thread_id, e)
            return []
        # The inbound message itself is passed separately
        return [msg for msg in history if msg.text != message.text or msg.timestamp != message.timestamp]

    def _send_fallback_offer(self, state: ReservationState) -> None:
        """Conservative OFFER built from default slots and the plain template."""
        try:
            request = scheduling_request(state, config.DEFAULT_MEETING_DURATION)
            context = OfferContext(
                available_time_slots=default_time_slots(request, today_in(state.user.timezone if state.user else None))
            )
            recipient_name, _ = parse_address(state.message.from_)
            email = EmailResponseGenerator.template_email(EmailGenerationRequest(
                action=EmailAction.OFFER,
                context=context,
                recipient_name=recipient_name or None,
                sender_name=(state.inbox.name if state.inbox and state.inbox.name else None),
                meeting_purpose=meeting_purpose(state.message.subject),
                language=state.language
            ))
        except Exception:
            logger.exception("Could not build fallback reply for message %s", state.message.message_id)
            return
        self._deliver(state.message, email, None)

    def _deliver(self, message: InboundMessage, email: GeneratedEmail, ics_content: Optional[str]) -> None:
        try:
            self.delivery_manager.send_reply(
                message.inbox_id,
                message.message_id,
                email.email_content,
                subject=email.subject,
                ics_content=ics_content
            )
        except DeliveryError as e:
            logger.error("Reply to message %s was not delivered: %s", message.message_id, e)
