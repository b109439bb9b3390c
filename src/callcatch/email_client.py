import asyncio
import httpx
import logging

logger = logging.getLogger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


class EmailClient:
    """Plain-text email through the SendGrid v3 mail-send API.

    ``EMAIL_TO`` may hold several comma-separated addresses.  A failed send
    is retried once after ``retry_delay`` seconds.
    """

    def __init__(
        self,
        *,
        api_key: str,
        to: str,
        sender: str,
        timeout: float = 10.0,
        retry_delay: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.recipients = [x.strip() for x in to.split(",") if x.strip()]
        self.sender = sender
        self.timeout = timeout
        self.retry_delay = retry_delay
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.recipients and self.sender)

    def _payload(self, subject: str, text: str) -> dict:
        return {
            "personalizations": [{"to": [{"email": x} for x in self.recipients]}],
            "from": {"email": self.sender},
            "subject": subject,
            "content": [{"type": "text/plain", "value": text}],
        }

    async def send(self, subject: str, text: str) -> dict:
        if not self.enabled:
            return {"success": False, "error": "email not configured"}

        payload = self._payload(subject, text)
        headers = {"Authorization": f"Bearer {self.api_key}"}
        for attempt in range(2):
            try:
                if self._client is not None:
                    resp = await self._client.post(SENDGRID_SEND_URL, json=payload, headers=headers, timeout=self.timeout)
                else:
                    async with httpx.AsyncClient(timeout=self.timeout) as client:
                        resp = await client.post(SENDGRID_SEND_URL, json=payload, headers=headers)
                if resp.status_code >= 400:
                    raise httpx.HTTPStatusError(
                        f"HTTP {resp.status_code} {resp.text[:300]}", request=resp.request, response=resp
                    )
                logger.info("Email sent: %r (HTTP %d)", subject, resp.status_code)
                return {"success": True}
            except Exception as e:
                if attempt == 0:
                    logger.warning("Email %r failed (attempt 1), retrying in %.0fs: %s", subject, self.retry_delay, e)
                    await asyncio.sleep(self.retry_delay)
                else:
                    logger.error("Email %r failed after retry: %s", subject, e)
                    return {"success": False, "error": str(e)}
        return {"success": False, "error": "unreachable"}
