"""
Emergency Alert Tool
====================

tool_alert notifies a human-operated phone number when a user expresses
clear intent to harm themselves.

Twilio API Notes:
- Uses Twilio's Messages REST endpoint via httpx (basic auth)
- The destination comes from EMERGENCY_CONTACT_NUMBER
- Delivery is at-least-once: sending twice for the same turn is harmless,
  and the completion loop already limits alerts to one per turn

A failed delivery is logged and reported back to the model, which still
owes the user a supportive answer with helpline numbers.
"""

from datetime import datetime, timezone

import httpx

from medcompanion.tools import MCPTool, ToolContext, ToolResult, ALERT_TOOL
from medcompanion.utils.logger import Logger

logger = Logger("AlertTools")

TWILIO_API = "https://api.twilio.com/2010-04-01"

ALERT_SENT_MESSAGE = "Emergency alert sent successfully."
ALERT_FAILED_MESSAGE = (
    "Emergency alert could not be delivered. Share crisis helpline numbers and "
    "urge the user to contact local emergency services right away."
)


def build_alert_body(message: str, reason: str | None = None, now: datetime | None = None) -> str:
    """Compose the SMS body: the user's words plus a UTC timestamp."""
    now = now or datetime.now(timezone.utc)
    body = (
        f'EMERGENCY ALERT: A user has sent a potentially suicidal message. '
        f'Message: "{message}". Please provide immediate assistance. '
        f'Time: {now.isoformat()}'
    )
    if reason:
        body += f" Reason: {reason}"
    return body


class EmergencyAlerter:
    """
    Sends emergency SMS notifications.

    Example:
        alerter = EmergencyAlerter(sid, token, from_number="+15550001111",
                                   default_destination="+15550002222")
        ok = await alerter.alert("I don't want to live anymore")
    """

    def __init__(
        self,
        account_sid: str | None,
        auth_token: str | None,
        from_number: str | None,
        default_destination: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 15.0
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.default_destination = default_destination
        self._http = http_client
        self._timeout = timeout

    async def _post(self, url: str, data: dict) -> httpx.Response:
        auth = (self.account_sid or "", self.auth_token or "")
        if self._http is not None:
            return await self._http.post(url, data=data, auth=auth)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(url, data=data, auth=auth)

    async def alert(
        self,
        message: str,
        destination: str | None = None,
        reason: str | None = None
    ) -> bool:
        """
        Send an alert quoting the triggering user message.

        Returns:
            True if the provider accepted the message
        """
        if not (self.account_sid and self.auth_token and self.from_number):
            logger.error("Emergency alert requested but Twilio is not configured")
            return False

        url = f"{TWILIO_API}/Accounts/{self.account_sid}/Messages.json"
        data = {
            "To": destination or self.default_destination,
            "From": self.from_number,
            "Body": build_alert_body(message, reason),
        }

        try:
            response = await self._post(url, data)
        except Exception as e:
            logger.error("Emergency alert failed", e)
            return False

        if response.status_code >= 400:
            logger.error(f"Emergency alert rejected: {response.status_code} - {response.text[:200]}")
            return False

        logger.info("Emergency alert sent successfully")
        return True


def create_alert_tool(alerter: EmergencyAlerter) -> MCPTool:
    """Wrap an alerter as the tool_alert tool."""

    async def _alert(params: dict, context: ToolContext) -> ToolResult:
        reason = params.get("reason")
        reason = reason.strip() if isinstance(reason, str) and reason.strip() else None

        if await alerter.alert(context.user_text, reason=reason):
            return ToolResult(success=True, data=ALERT_SENT_MESSAGE)
        return ToolResult(success=False, error=ALERT_FAILED_MESSAGE)

    return MCPTool(
        name=ALERT_TOOL,
        description=(
            "Send an emergency alert. ONLY use when the user expresses clear suicidal "
            "ideation, self-harm intent, or is in a life-threatening situation."
        ),
        parameters={
            "type": "object",
            "properties": {
                "reason": {
                    "type": "string",
                    "description": "Brief reason for triggering the emergency alert",
                }
            },
            "required": ["reason"],
        },
        execute=_alert,
    )
