"""
EMAIL SERVICE MODULE

Invitation emails through the SendGrid v3 HTTP API.
Delivery is fire-and-forget: failures are logged and never reach the caller.
"""
import os
from typing import Optional
from urllib.parse import urlencode

import httpx

from error_handler import handle_errors
from logging_config import get_logger

logger = get_logger(__name__)

SENDGRID_API_KEY = os.getenv("SENDGRID_API_KEY")
SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"
FROM_EMAIL = os.getenv("FROM_EMAIL", "noreply@mypromises.app")
APP_URL = os.getenv("APP_URL", "http://mypromises.app")
APP_NAME = os.getenv("APP_NAME", "MyPromises")


class EmailService:
    """Sends invitation emails"""

    def __init__(
        self,
        api_key: Optional[str] = SENDGRID_API_KEY,
        from_email: str = FROM_EMAIL,
        app_url: str = APP_URL,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.app_url = app_url.rstrip("/")
        self.timeout = timeout
        self._client = client

        if not self.api_key:
            logger.warning("sendgrid_not_configured", reason="SENDGRID_API_KEY missing")

    def is_enabled(self) -> bool:
        return bool(self.api_key and self.from_email)

    def signup_url(self, to_email: str, promise_id: Optional[str] = None) -> str:
        params = {"email": to_email}
        if promise_id:
            params["promise"] = str(promise_id)
        return f"{self.app_url}/signup?{urlencode(params)}"

    def compose_invitation(
        self,
        to_email: str,
        from_name: str,
        title: str,
        description: Optional[str] = None,
        promise_id: Optional[str] = None,
        role: str = "promisee",
    ) -> tuple[str, str]:
        """Subject and plain-text body of an invitation"""
        if role == "mentor":
            subject = f"{from_name} invited you to mentor their promise: {title}"
            intro = f"{from_name} has invited you to be a mentor for their promise:"
            outro = f"Join {APP_NAME} to follow this promise and help {from_name} stay accountable."
        else:
            subject = f"{from_name} made a promise to you: {title}"
            intro = f"{from_name} has made a promise to you:"
            outro = f"Join {APP_NAME} to view and track this promise, and help {from_name} stay accountable."

        lines = [APP_NAME, "Keep your word. Build trust.", "", intro, "", title]
        if description:
            lines += ["", description]
        lines += [
            "",
            outro,
            "",
            f"Sign up here: {self.signup_url(to_email, promise_id)}",
            "",
            "If you're already a member, you can view this promise in your dashboard.",
            "",
            f"This email was sent to {to_email}.",
            "If you didn't expect this email, you can safely ignore it.",
        ]
        return subject, "\n".join(lines)

    @handle_errors(default=False, context={"component": "email_service"}, log_level="WARNING")
    async def send_invitation(
        self,
        to_email: str,
        from_name: str,
        title: str,
        description: Optional[str] = None,
        promise_id: Optional[str] = None,
        role: str = "promisee",
    ) -> bool:
        """
        Send a promise or mentorship invitation.

        Returns:
            True if SendGrid accepted the message
        """
        if not self.is_enabled():
            logger.warning("email_not_sent", to_email=to_email, reason="sendgrid_not_configured")
            return False

        subject, text = self.compose_invitation(to_email, from_name, title, description, promise_id, role)
        payload = {
            "personalizations": [{"to": [{"email": to_email}]}],
            "from": {"email": self.from_email, "name": APP_NAME},
            "subject": subject,
            "content": [{"type": "text/plain", "value": text}],
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        if self._client is not None:
            response = await self._client.post(SENDGRID_URL, json=payload, headers=headers, timeout=self.timeout)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(SENDGRID_URL, json=payload, headers=headers, timeout=self.timeout)

        if response.status_code >= 300:
            logger.warning(
                "email_rejected",
                to_email=to_email,
                status_code=response.status_code,
                body=response.text[:500],
            )
            return False

        logger.info("email_sent", to_email=to_email, role=role, promise_id=promise_id)
        return True
