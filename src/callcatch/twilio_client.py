import httpx
import logging

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class TwilioClient:
    """Outbound SMS and voice calls through the Twilio REST API.

    Every method returns a result dict instead of raising, so one failed
    channel never takes down the rest of a notification run.  SMS is not
    retried: a duplicate text is worse than a missing one.
    """

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.account_sid = account_sid
        self.from_number = from_number
        self.timeout = timeout
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=f"{TWILIO_API_BASE}/Accounts/{account_sid}",
                auth=(account_sid, auth_token),
                timeout=self.timeout,
            )

    async def close(self):
        await self._client.aclose()

    async def send_sms(self, to: str, body: str) -> dict:
        if not to:
            return {"success": False, "error": "no recipient"}
        return await self._post(
            "/Messages.json",
            {"To": to, "From": self.from_number, "Body": body},
            f"SMS to {to}",
        )

    async def place_call(self, to: str, twiml: str) -> dict:
        """Dial ``to`` and run the given TwiML when they pick up."""
        if not to:
            return {"success": False, "error": "no recipient"}
        return await self._post(
            "/Calls.json",
            {"To": to, "From": self.from_number, "Twiml": twiml},
            f"Call to {to}",
        )

    async def _post(self, path: str, data: dict, label: str) -> dict:
        try:
            resp = await self._client.post(path, data=data)
        except Exception as e:
            logger.error("%s failed: %s", label, e)
            return {"success": False, "error": str(e)}
        if resp.status_code >= 400:
            logger.error("%s failed: HTTP %d %s", label, resp.status_code, resp.text[:300])
            return {"success": False, "error": f"HTTP {resp.status_code}"}
        sid = resp.json().get("sid", "")
        logger.info("%s sent (sid=%s)", label, sid)
        return {"success": True, "sid": sid}
