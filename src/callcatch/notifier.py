"""Notification fan-out after a missed call, a finished lead or an inbound text.

Each channel is attempted on its own: a SendGrid outage must not cost the
owner their SMS, and a failed caller text must not block the urgent call.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable

from twilio.twiml.voice_response import VoiceResponse

from callcatch import prompts
from callcatch.config import Settings
from callcatch.email_client import EmailClient
from callcatch.records import LeadRecord, MissedCallEvent
from callcatch.tts import FALLBACK_VOICE
from callcatch.twilio_client import TwilioClient
from callcatch.validation import is_addressable_number

logger = logging.getLogger(__name__)


@dataclass
class NotificationReport:
    """Channel name -> whether that channel was delivered."""

    kind: str
    channels: dict[str, bool] = field(default_factory=dict)

    @property
    def all_delivered(self) -> bool:
        return all(self.channels.values())

    def __getitem__(self, channel: str) -> bool:
        return self.channels[channel]

    def __contains__(self, channel: str) -> bool:
        return channel in self.channels


class Notifier:
    def __init__(
        self,
        settings: Settings,
        twilio: TwilioClient,
        email: EmailClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.settings = settings
        self.twilio = twilio
        self.email = email if email is not None and email.enabled else None
        self._now = clock or (lambda: datetime.now(timezone.utc))

    async def notify_missed_call(self, event: MissedCallEvent) -> NotificationReport:
        report = NotificationReport("missed_call")
        s = self.settings

        await self._attempt(report, "owner_sms", lambda: self.twilio.send_sms(s.owner_number, prompts.missed_call_owner_sms(event)))

        if is_addressable_number(event.caller_id):
            await self._attempt(
                report,
                "caller_sms",
                lambda: self.twilio.send_sms(event.caller_id, prompts.missed_call_caller_sms(s.business_name)),
            )
        else:
            logger.info("Missed call from %s: no auto-reply, number not addressable", event.caller_id or "withheld")

        if self.email is not None:
            subject, text = prompts.missed_call_email(s.business_name, event, self._now(), s.timezone)
            await self._attempt(report, "email", lambda: self.email.send(subject, text))

        self._log(report, event.caller_id)
        return report

    async def notify_after_hours_lead(self, lead: LeadRecord) -> NotificationReport:
        report = NotificationReport("after_hours_lead")
        s = self.settings

        await self._attempt(report, "owner_sms", lambda: self.twilio.send_sms(s.owner_number, prompts.lead_sms(s.business_name, lead)))

        if is_addressable_number(lead.caller_id):
            await self._attempt(
                report,
                "caller_sms",
                lambda: self.twilio.send_sms(lead.caller_id, prompts.lead_caller_confirmation(s.business_name, lead.urgent)),
            )

        if self.email is not None:
            subject, text = prompts.lead_email(s.business_name, lead, s.timezone)
            await self._attempt(report, "email", lambda: self.email.send(subject, text))

        if lead.urgent:
            await self._attempt(report, "owner_call", lambda: self.twilio.place_call(s.owner_number, self._urgent_call_twiml(lead)))

        self._log(report, lead.caller_id)
        return report

    async def forward_inbound_sms(self, sender: str, body: str) -> NotificationReport:
        report = NotificationReport("inbound_sms")
        s = self.settings

        await self._attempt(report, "owner_sms", lambda: self.twilio.send_sms(s.owner_number, prompts.sms_forward(sender, body)))

        if self.email is not None:
            subject, text = prompts.sms_forward_email(s.business_name, sender, body, self._now(), s.timezone)
            await self._attempt(report, "email", lambda: self.email.send(subject, text))

        if is_addressable_number(sender):
            await self._attempt(report, "auto_reply", lambda: self.twilio.send_sms(sender, prompts.sms_auto_reply(s.business_name)))

        self._log(report, sender)
        return report

    def _urgent_call_twiml(self, lead: LeadRecord) -> str:
        response = VoiceResponse()
        message = prompts.urgent_owner_call(self.settings.business_name, lead)
        response.say(message, voice=FALLBACK_VOICE)
        response.pause(length=1)
        response.say(message, voice=FALLBACK_VOICE)
        response.hangup()
        return str(response)

    async def _attempt(self, report: NotificationReport, channel: str, send: Callable[[], Awaitable[dict]]):
        try:
            result = await send()
            delivered = bool(result.get("success"))
        except Exception:
            logger.exception("%s notification channel %s raised", report.kind, channel)
            delivered = False
        if not delivered:
            logger.error("%s notification channel %s not delivered", report.kind, channel)
        report.channels[channel] = delivered

    def _log(self, report: NotificationReport, who: str):
        logger.info(
            "Notifications for %s from %s: %s",
            report.kind,
            who or "withheld",
            ", ".join(f"{k}={'ok' if v else 'FAILED'}" for k, v in report.channels.items()) or "none",
        )
