import unittest
from unittest.mock import Mock

import pytest

from reservation_manager.graph import app
from reservation_manager.nodes import ReservationServices, meeting_purpose, route_after_selection
from reservation_manager.types import (
    ActionDecision,
    AvailabilityVerdict,
    ConversationStage,
    EmailAction,
    EmailClassification,
    GeneratedEmail,
    InboundMessage,
    InboxProfile,
    ReservationState,
    TimeSlot,
    UserProfile,
)
from services.email_response_generator import UnsupportedActionError

FRIDAY_7PM = TimeSlot(date="2025-11-14", start_time="19:00", end_time="20:00")
FRIDAY_10AM = TimeSlot(date="2025-11-14", start_time="10:00", end_time="11:00")
OFFERED = [
    TimeSlot(date="2025-11-11", start_time="09:00", end_time="10:00"),
    TimeSlot(date="2025-11-11", start_time="10:00", end_time="11:00"),
    TimeSlot(date="2025-11-11", start_time="11:00", end_time="12:00"),
]


def decision(action, suggestions=None):
    return ActionDecision(action=action, confidence=0.9, reasoning="test", time_suggestions=suggestions or [])


class TestReservationGraph(unittest.TestCase):
    def setUp(self):
        self.services = ReservationServices(
            classifier=Mock(),
            selector=Mock(),
            scheduler=Mock(),
            generator=Mock(),
            invite_service=Mock(),
            meeting_duration=60
        )
        self.services.classifier.classify_email.return_value = EmailClassification(
            labels=["RESERVATION"], is_spam=False, is_reservation=True
        )
        self.services.scheduler.find_available_slots.return_value = list(OFFERED)
        self.services.generator.generate_email.return_value = GeneratedEmail(subject="Re: Demo", email_content="Reply")
        self.services.invite_service.generate_ics.return_value = "BEGIN:VCALENDAR"

        self.state = ReservationState(
            message=InboundMessage(
                message_id="msg-1",
                inbox_id="alex@agentmail.to",
                thread_id="thread-1",
                from_="Jane Doe <jane@example.com>",
                to=["alex@agentmail.to"],
                subject="Re: Demo call",
                text="I'd like to book a demo call this Friday at 7pm"
            ),
            user=UserProfile(id="user-1", email="alex@example.com", name="Alex", timezone="Europe/Helsinki"),
            inbox=InboxProfile(inbox_id="alex@agentmail.to", user_id="user-1", name="Alex's assistant", persona="Polite"),
            language="en"
        )

    def run_graph(self) -> ReservationState:
        result = app.invoke(self.state, config={"configurable": {"services": self.services}})
        return result if isinstance(result, ReservationState) else ReservationState(**result)

    def test_spam_is_not_answered(self):
        self.services.classifier.classify_email.return_value = EmailClassification(
            labels=["SPAM"], is_spam=True, is_reservation=False
        )

        final = self.run_graph()

        self.assertIsNone(final.generated_email)
        self.services.selector.select_action.assert_not_called()
        self.services.generator.generate_email.assert_not_called()

    def test_offer(self):
        self.services.selector.select_action.return_value = decision(EmailAction.OFFER)

        final = self.run_graph()

        self.assertEqual(final.reply_context.action, EmailAction.OFFER)
        self.assertEqual(final.reply_context.available_time_slots, OFFERED)
        self.assertEqual(final.generated_email.email_content, "Reply")
        request = self.services.generator.generate_email.call_args[0][0]
        self.assertEqual(request.recipient_name, "Jane Doe")
        self.assertEqual(request.sender_name, "Alex's assistant")
        self.assertEqual(request.meeting_purpose, "Demo call")
        self.assertEqual(request.persona, "Polite")
        scheduling_request = self.services.scheduler.find_available_slots.call_args[0][0]
        self.assertEqual(scheduling_request.meeting_duration, 60)

    def test_check_time_then_counteroffer(self):
        self.services.selector.select_action.side_effect = [
            decision(EmailAction.CHECK_TIME, [FRIDAY_7PM]),
            decision(EmailAction.COUNTEROFFER, [FRIDAY_7PM]),
        ]
        self.services.scheduler.is_slot_available.return_value = AvailabilityVerdict.rejected("Outside working hours")

        final = self.run_graph()

        self.services.scheduler.is_slot_available.assert_called_once()
        self.assertEqual(self.services.scheduler.is_slot_available.call_args[0][0], FRIDAY_7PM)
        second_state = self.services.selector.select_action.call_args_list[1][0][2]
        self.assertEqual(second_state.stage, ConversationStage.AFTER_CHECK_TIME)
        self.assertEqual(second_state.checked_slot, FRIDAY_7PM)
        self.assertEqual(final.reply_context.action, EmailAction.COUNTEROFFER)
        self.assertEqual(final.reply_context.proposed_time_slot, FRIDAY_7PM)
        self.assertEqual(final.reply_context.alternative_time_slots, OFFERED)
        self.assertIsNone(final.ics_content)

    def test_check_time_then_confirm_attaches_invite(self):
        self.services.selector.select_action.side_effect = [
            decision(EmailAction.CHECK_TIME, [FRIDAY_10AM]),
            decision(EmailAction.CONFIRM, [FRIDAY_10AM]),
        ]
        self.services.scheduler.is_slot_available.return_value = AvailabilityVerdict.confirmed()

        final = self.run_graph()

        self.assertEqual(final.reply_context.action, EmailAction.CONFIRM)
        self.assertEqual(final.reply_context.confirmed_time_slot, FRIDAY_10AM)
        self.assertEqual(final.ics_content, "BEGIN:VCALENDAR")
        details = self.services.invite_service.generate_ics.call_args[0][0]
        self.assertEqual(details.attendees[0].email, "jane@example.com")
        self.assertEqual(details.organizer.email, "alex@example.com")
        self.assertEqual(details.start_time.utcoffset().total_seconds(), 2 * 3600)

    def test_confirm_after_check_uses_checked_slot(self):
        monday_3pm = TimeSlot(date="2025-11-17", start_time="15:00", end_time="16:00")
        self.services.selector.select_action.side_effect = [
            decision(EmailAction.CHECK_TIME, [FRIDAY_10AM]),
            decision(EmailAction.CONFIRM, [monday_3pm]),
        ]
        self.services.scheduler.is_slot_available.return_value = AvailabilityVerdict.confirmed()

        final = self.run_graph()

        self.assertEqual(final.reply_context.confirmed_time_slot, FRIDAY_10AM)
        details = self.services.invite_service.generate_ics.call_args[0][0]
        self.assertEqual((details.start_time.day, details.start_time.hour), (14, 10))

    def test_confirm_of_rejected_time_becomes_counteroffer(self):
        self.services.selector.select_action.side_effect = [
            decision(EmailAction.CHECK_TIME, [FRIDAY_10AM]),
            decision(EmailAction.CONFIRM, [FRIDAY_10AM]),
        ]
        self.services.scheduler.is_slot_available.return_value = AvailabilityVerdict.rejected(
            "Conflicts with existing events (10:00-11:00)."
        )

        final = self.run_graph()

        self.assertEqual(final.reply_context.action, EmailAction.COUNTEROFFER)
        self.assertEqual(final.reply_context.proposed_time_slot, FRIDAY_10AM)
        self.assertIsNone(final.ics_content)
        self.services.invite_service.generate_ics.assert_not_called()

    def test_confirm_of_unverifiable_time_is_allowed(self):
        self.services.selector.select_action.side_effect = [
            decision(EmailAction.CHECK_TIME, [FRIDAY_10AM]),
            decision(EmailAction.CONFIRM),
        ]
        self.services.scheduler.is_slot_available.return_value = AvailabilityVerdict.unverifiable("timeout")

        final = self.run_graph()

        self.assertEqual(final.reply_context.action, EmailAction.CONFIRM)
        self.assertEqual(final.reply_context.confirmed_time_slot, FRIDAY_10AM)

    def test_selector_fallback_after_check_time_offers(self):
        self.services.selector.select_action.side_effect = [
            decision(EmailAction.CHECK_TIME, [FRIDAY_7PM]),
            ActionDecision(action=EmailAction.OFFER, confidence=0.0, reasoning="Error occurred during action selection"),
        ]
        self.services.scheduler.is_slot_available.return_value = AvailabilityVerdict.unverifiable("timeout")

        final = self.run_graph()

        self.assertEqual(final.reply_context.action, EmailAction.OFFER)

    def test_check_time_without_suggestion_offers(self):
        self.services.selector.select_action.return_value = decision(EmailAction.CHECK_TIME)

        final = self.run_graph()

        self.services.scheduler.is_slot_available.assert_not_called()
        self.assertEqual(final.reply_context.action, EmailAction.OFFER)

    def test_direct_confirm(self):
        self.services.selector.select_action.return_value = decision(EmailAction.CONFIRM, [FRIDAY_10AM])

        final = self.run_graph()

        self.assertEqual(final.reply_context.action, EmailAction.CONFIRM)
        self.assertEqual(self.services.selector.select_action.call_count, 1)

    def test_invite_failure_still_confirms(self):
        self.services.selector.select_action.return_value = decision(EmailAction.CONFIRM, [FRIDAY_10AM])
        self.services.invite_service.generate_ics.side_effect = ValueError("bad address")

        final = self.run_graph()

        self.assertIsNone(final.ics_content)
        self.assertIsNotNone(final.generated_email)

    def test_missing_services_raise(self):
        with self.assertRaises(ValueError):
            app.invoke(self.state)


def test_unsupported_action_raises():
    state = ReservationState(
        message=InboundMessage(message_id="m", inbox_id="i", from_="a@example.com"),
        decision=ActionDecision.model_construct(action="RESCHEDULE", confidence=0.5, reasoning="", time_suggestions=[])
    )

    with pytest.raises(UnsupportedActionError):
        route_after_selection(state)


def test_meeting_purpose_strips_reply_prefixes():
    assert meeting_purpose("Re: RE: Fwd: Demo call") == "Demo call"
    assert meeting_purpose("Re:") is None
