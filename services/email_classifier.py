import logging

from reservation_manager.types import EmailClassification

logger = logging.getLogger(__name__)

CLASSIFICATION_INSTRUCTIONS = """You are an email classification system of secretaries. Classify emails into one or more of these categories: SPAM, RESERVATION.

Rules:
- SPAM: Unsolicited commercial emails, phishing attempts, suspicious content
- RESERVATION: Emails about appointments, reservations at businesses, meeting or conference calls.

Examples:
- Hotel booking confirmation -> labels ["RESERVATION"], is_spam false, is_reservation true
- Promotional email -> labels ["SPAM"], is_spam true, is_reservation false
- Request for a demo call next week -> labels ["RESERVATION"], is_spam false, is_reservation true"""

MAX_BODY_CHARS = 1000


class EmailClassifier:
    def __init__(self, oracle):
        self.oracle = oracle

    def classify_email(self, subject: str, text: str) -> EmailClassification:
        """
        Labels an inbound email. When the model is unavailable the email is
        treated as neither spam nor a reservation, so no reply is sent.
        """
        logger.info("Classifying email: %s", subject)
        prompt = f"Subject: {subject}\n\nBody: {(text or '')[:MAX_BODY_CHARS]}"
        try:
            result = self.oracle.complete_structured(
                prompt,
                EmailClassification,
                "EmailClassification",
                system_messages=[CLASSIFICATION_INSTRUCTIONS],
                temperature=0.3,
                max_tokens=100,
            )
        except Exception as e:
            logger.error("Error classifying email: %s", e)
            return EmailClassification(labels=[], is_spam=False, is_reservation=False)

        logger.info("Classification result: %s", result.model_dump())
        return result
