import logging
from typing import Any, Dict, Optional

import resend

logger = logging.getLogger(__name__)


class EmailDeliveryError(RuntimeError):
    pass


class Mailer:
    """Outbound email through Resend."""

    def __init__(self, api_key: str, sender: str):
        self.api_key = api_key
        self.sender = sender
        if not api_key:
            logger.warning("RESEND_API_KEY not found. Email functionality may not work.")

    def send_email(self, message: Dict[str, Any]) -> Dict[str, Any]:
        if not message.get("to"):
            raise EmailDeliveryError("Recipient email is required")
        if not message.get("subject"):
            raise EmailDeliveryError("Email subject is required")

        payload: Dict[str, Any] = {
            "from": self.sender,
            "to": [message["to"]] if isinstance(message["to"], str) else list(message["to"]),
            "subject": message["subject"],
        }
        for key in ("text", "html", "cc"):
            if message.get(key):
                payload[key] = message[key]

        resend.api_key = self.api_key
        try:
            response = resend.Emails.send(payload)
        except Exception as e:
            logger.error("Resend email error: %s", e)
            raise EmailDeliveryError(f"Email sending failed: {e}") from e

        message_id: Optional[str] = response.get("id") if isinstance(response, dict) else None
        if not message_id:
            raise EmailDeliveryError(f"Email sending failed: {response}")

        logger.info("Email sent successfully via Resend to %s", payload["to"])
        return {"success": True, "message_id": message_id}


def build_otp_message(email: str, code: str, expiry_minutes: int) -> Dict[str, Any]:
    text = (
        f"Your SM Furnishing verification code is {code}. "
        f"It expires in {expiry_minutes} minutes."
    )
    html = (
        "<div style=\"font-family:Arial,sans-serif\">"
        "<h2>Verify your email</h2>"
        f"<p>Your verification code is:</p><p style=\"font-size:28px;letter-spacing:6px\"><b>{code}</b></p>"
        f"<p>The code is valid for {expiry_minutes} minutes.</p>"
        "</div>"
    )
    return {"to": email, "subject": "Your SM Furnishing verification code", "text": text, "html": html}
