import logging
from typing import List, Optional, Tuple

from helpers.slot_helpers import format_date_for_email, format_slot_list
from reservation_manager.types import (
    CheckTimeContext,
    ConfirmContext,
    CounterOfferContext,
    EmailGenerationRequest,
    GeneratedEmail,
    OfferContext,
    ThreadMessage,
    TimeSlot,
)
from services.action_selector import format_thread_history

logger = logging.getLogger(__name__)

NO_SLOTS_DETAILS = "(no free time slots found in the coming week, ask the recipient to suggest a time)"


class UnsupportedActionError(Exception):
    """A reply was requested for an action no generator knows about."""


COMMON_RULES = """- Use appropriate greeting based on recipient name (formal if name provided, casual if not)
- Be professional and courteous
- Include appropriate closing and signature if sender name is provided
- Keep the tone warm but professional
- DO NOT use any special formatting like bold (**text**) or markdown
- If thread history is provided, reference the conversation context naturally"""

ACTION_RULES = {
    "offer": """Generate a polite and professional email to offer meeting time slots.
- Clearly present the available time slots
- Ask the recipient to choose or suggest alternatives""",
    "confirm": """Generate a polite and professional email to confirm a meeting time.
- Clearly confirm the scheduled meeting date and time
- Mention that a calendar invite is attached
- Offer flexibility for any changes if needed""",
    "counteroffer": """Generate a polite and professional email to propose alternative meeting times.
- Politely indicate that the proposed time doesn't work
- Clearly present the alternative time slots
- Ask the recipient to choose or suggest other alternatives""",
    "check_time": """Generate a polite and professional email saying the proposed meeting time is being checked.
- Restate the proposed date and time
- Say that a confirmation will follow""",
}


def _language_name(language: Optional[str]) -> str:
    return {"en": "English", "fi": "Finnish", "sv": "Swedish", "de": "German", "fr": "French", "es": "Spanish"}.get(
        (language or "en")[:2], language or "English"
    )


class EmailResponseGenerator:
    """Writes the reply for each action, with plain templates when the model is unavailable."""

    def __init__(self, oracle):
        self.oracle = oracle

    def generate_email(
        self,
        request: EmailGenerationRequest,
        thread_history: Optional[List[ThreadMessage]] = None
    ) -> GeneratedEmail:
        logger.info("Generating email for action: %s", request.action)
        kind, details, fallback = self._build(request)

        try:
            return self._generate_with_ai(kind, details, request, thread_history)
        except Exception as e:
            logger.error("Error generating %s email with AI: %s", kind, e)
            return fallback

    def _generate_with_ai(
        self,
        kind: str,
        details: str,
        request: EmailGenerationRequest,
        thread_history: Optional[List[ThreadMessage]]
    ) -> GeneratedEmail:
        system_message = f"You are a professional email assistant. {ACTION_RULES[kind]}\n\nRules:\n{COMMON_RULES}"
        if request.persona:
            system_message += f"\n\nWrite as this persona: {request.persona}"

        user_message = (
            "Generate an email with subject and body for the following information:\n\n"
            f"{'Recipient Name: ' + request.recipient_name if request.recipient_name else 'Recipient: (no specific name)'}\n"
            f"{'Sender Name: ' + request.sender_name if request.sender_name else 'Sender: (no specific name)'}\n"
            f"{'Meeting Purpose: ' + request.meeting_purpose if request.meeting_purpose else 'Meeting Purpose: (not specified)'}\n\n"
            f"{details}\n\n"
            f"Write the email in {_language_name(request.language)}. "
            "Use a concise subject line, or 'Re: <previous subject>' if in a thread."
        )
        if thread_history:
            user_message = (
                f"Thread History ({len(thread_history)} messages):\n\n{format_thread_history(thread_history)}"
                f"\n\n---\n\n{user_message}"
            )

        return self.oracle.complete_structured(
            user_message,
            GeneratedEmail,
            "email_response",
            system_messages=[system_message],
            temperature=0.7,
            max_tokens=1000,
        )

    @classmethod
    def template_email(cls, request: EmailGenerationRequest) -> GeneratedEmail:
        """The plain English reply for the request, built without the model."""
        _, _, email = cls._build(request)
        return email

    # --- Per-action details and template fallbacks ---

    @classmethod
    def _build(cls, request: EmailGenerationRequest) -> Tuple[str, str, GeneratedEmail]:
        context = request.context
        if isinstance(context, OfferContext):
            return cls._offer(context, request)
        if isinstance(context, ConfirmContext):
            return cls._confirm(context, request)
        if isinstance(context, CounterOfferContext):
            return cls._counteroffer(context, request)
        if isinstance(context, CheckTimeContext):
            return cls._check_time(context, request)
        raise UnsupportedActionError(f"Unsupported action: {request.action}")

    @classmethod
    def _offer(cls, context: OfferContext, request: EmailGenerationRequest) -> Tuple[str, str, GeneratedEmail]:
        slots = context.available_time_slots
        details = (
            "Action: Offer meeting time slots\n\nAvailable Time Slots:\n"
            f"{format_slot_list(slots, request.language) if slots else NO_SLOTS_DETAILS}"
        )
        purpose_line = f"regarding {request.meeting_purpose}" if request.meeting_purpose else "to discuss further"
        subject = f"Meeting Time Slots - {request.meeting_purpose}" if request.meeting_purpose else "Meeting Time Slots Available"
        body = (
            f"{cls._greeting(request)}\n\n"
            f"Thank you for your interest in scheduling a meeting {purpose_line}.\n\n"
            f"{cls._offer_paragraph(slots)}\n\n"
            f"I look forward to hearing from you.{cls._signature(request)}"
        )
        return "offer", details, GeneratedEmail(subject=subject, email_content=body)

    @classmethod
    def _confirm(cls, context: ConfirmContext, request: EmailGenerationRequest) -> Tuple[str, str, GeneratedEmail]:
        slot = context.confirmed_time_slot
        details = (
            "Action: Confirm meeting time\n\nConfirmed Meeting Time:\n"
            f"Date: {format_date_for_email(slot.date, request.language)}\nTime: {slot.start_time} - {slot.end_time}"
        )
        purpose_line = f" {request.meeting_purpose}" if request.meeting_purpose else ""
        subject = f"Meeting Confirmed - {request.meeting_purpose}" if request.meeting_purpose else "Meeting Confirmed"
        body = (
            f"{cls._greeting(request)}\n\n"
            f"Thank you for confirming the meeting{purpose_line}.\n\n"
            "I am pleased to confirm our meeting scheduled for:\n\n"
            f"Date: {format_date_for_email(slot.date)}\nTime: {slot.start_time} - {slot.end_time}\n\n"
            "A calendar invite is attached. If you need to make any changes, please don't hesitate to let me know."
            f"{cls._signature(request)}"
        )
        return "confirm", details, GeneratedEmail(subject=subject, email_content=body)

    @classmethod
    def _counteroffer(cls, context: CounterOfferContext, request: EmailGenerationRequest) -> Tuple[str, str, GeneratedEmail]:
        proposed = context.proposed_time_slot
        alternatives = context.alternative_time_slots
        details = (
            "Action: Counter-offer with alternative meeting times\n\n"
            "Originally Proposed Time (that doesn't work):\n"
            f"Date: {format_date_for_email(proposed.date, request.language)}\nTime: {proposed.start_time} - {proposed.end_time}\n\n"
            "Alternative Time Slots:\n"
            f"{format_slot_list(alternatives, request.language) if alternatives else NO_SLOTS_DETAILS}"
        )
        purpose_line = f" regarding {request.meeting_purpose}" if request.meeting_purpose else ""
        subject = f"Alternative Meeting Times - {request.meeting_purpose}" if request.meeting_purpose else "Alternative Meeting Times"
        body = (
            f"{cls._greeting(request)}\n\n"
            f"Thank you for your message{purpose_line}.\n\n"
            f"Unfortunately, I am not available on {format_date_for_email(proposed.date)} at "
            f"{proposed.start_time} - {proposed.end_time}. {cls._alternatives_paragraph(alternatives)}\n\n"
            f"I look forward to finding a suitable time for our meeting.{cls._signature(request)}"
        )
        return "counteroffer", details, GeneratedEmail(subject=subject, email_content=body)

    @classmethod
    def _check_time(cls, context: CheckTimeContext, request: EmailGenerationRequest) -> Tuple[str, str, GeneratedEmail]:
        if context.time_suggestions:
            slot = context.time_suggestions[0]
            when = f"{format_date_for_email(slot.date)} at {slot.start_time} - {slot.end_time}"
            details = f"Action: Check meeting time\n\nTime to Check:\nDate: {slot.date}\nTime: {slot.start_time} - {slot.end_time}"
        else:
            when = "the proposed time"
            details = "Action: Check meeting time\n\nTime to Check: (as proposed in the email)"
        purpose_line = f" regarding {request.meeting_purpose}" if request.meeting_purpose else ""
        subject = f"Check Meeting Time - {request.meeting_purpose}" if request.meeting_purpose else "Check Meeting Time"
        body = (
            f"{cls._greeting(request)}\n\n"
            f"Thank you for your message{purpose_line}.\n\n"
            f"I am checking if the meeting time is available on {when}.\n\n"
            f"I look forward to hearing from you.{cls._signature(request)}"
        )
        return "check_time", details, GeneratedEmail(subject=subject, email_content=body)

    @staticmethod
    def _offer_paragraph(slots: List[TimeSlot]) -> str:
        if not slots:
            return (
                "Unfortunately, I have no free time slots in the coming week. Please suggest a time "
                "that suits you and I will check my calendar."
            )
        return (
            "I would like to propose the following time slots for our meeting:\n\n"
            f"{format_slot_list(slots)}\n\n"
            "Please let me know which time works best for you, or feel free to suggest an alternative "
            "if none of these options are suitable."
        )

    @staticmethod
    def _alternatives_paragraph(slots: List[TimeSlot]) -> str:
        if not slots:
            return (
                "I have no other free times in the coming week either. Please feel free to suggest "
                "another time that fits your schedule."
            )
        return (
            "However, I would be happy to meet at one of the following alternative times:\n\n"
            f"{format_slot_list(slots)}\n\n"
            "Please let me know if any of these times work for you, or feel free to suggest another time "
            "that fits your schedule."
        )

    @staticmethod
    def _greeting(request: EmailGenerationRequest) -> str:
        return f"Dear {request.recipient_name}," if request.recipient_name else "Hello,"

    @staticmethod
    def _signature(request: EmailGenerationRequest) -> str:
        return f"\n\nBest regards,\n{request.sender_name}" if request.sender_name else ""
