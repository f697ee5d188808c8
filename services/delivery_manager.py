import logging
from typing import Any, Dict, List, Optional

import config
from services.agentmail_service import AgentMailClient, DeliveryError

logger = logging.getLogger(__name__)


class DeliveryManager:
    def __init__(self, mail_client: Optional[AgentMailClient] = None, skip_sending: Optional[bool] = None):
        self.mail_client = mail_client or AgentMailClient()
        self.skip_sending = config.SKIP_SENDING_EMAILS if skip_sending is None else skip_sending

    def send_reply(
        self,
        inbox_id: str,
        message_id: str,
        text: str,
        subject: Optional[str] = None,
        ics_content: Optional[str] = None,
        cc: Optional[List[str]] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Sends a reply in the thread of the given message.
        Returns the message details if sent, None if there was nothing to send.

        Raises:
            DeliveryError: If the mail service rejected the reply.
        """
        if not message_id or not text:
            logger.warning("Skipping send: No message to reply to or no response generated.")
            return None

        if self.skip_sending:
            logger.info("[SKIP_SENDING_EMAILS] Would have replied to %s with subject: %s", message_id, subject)
            logger.info("[SKIP_SENDING_EMAILS] Email body: %s", text)
            if ics_content:
                logger.info("[SKIP_SENDING_EMAILS] Calendar invite attached (%d bytes)", len(ics_content))
            return {"id": "skipped", "message_id": message_id, "subject": subject}

        try:
            return self.mail_client.reply(inbox_id, message_id, text, subject=subject, ics_content=ics_content, cc=cc)
        except DeliveryError:
            logger.error("Failed to deliver reply to message %s", message_id)
            raise
