"""Immutable records handed from the call flow to the notifier."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Mapping

from callcatch.errors import MalformedWebhook
from callcatch.validation import clean_caller_id


class DialStatus(Enum):
    COMPLETED = "completed"
    ANSWERED = "answered"
    NO_ANSWER = "no-answer"
    BUSY = "busy"
    FAILED = "failed"
    CANCELED = "canceled"


@dataclass(frozen=True)
class LeadRecord:
    caller_id: str
    name: str
    location: str
    issue: str
    urgent: bool
    location_confirmed: bool = False
    transcripts: tuple[str, ...] = ()
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class MissedCallEvent:
    caller_id: str
    dial_status: DialStatus
    dial_duration_seconds: int = 0
    answered_by: str | None = None
    call_sid: str = ""

    @classmethod
    def from_form(cls, form: Mapping[str, str]) -> "MissedCallEvent":
        """Build from a Twilio ``<Dial action>`` callback.

        Raises MalformedWebhook when DialCallStatus is missing or unknown.
        """
        raw_status = (form.get("DialCallStatus") or "").strip().lower()
        if not raw_status:
            raise MalformedWebhook("DialCallStatus missing from dial callback")
        try:
            status = DialStatus(raw_status)
        except ValueError:
            raise MalformedWebhook(f"unknown DialCallStatus {raw_status!r}") from None

        try:
            duration = int(form.get("DialCallDuration") or 0)
        except ValueError:
            duration = 0

        answered_by = (form.get("AnsweredBy") or "").strip().lower() or None
        return cls(
            caller_id=clean_caller_id(form.get("From")),
            dial_status=status,
            dial_duration_seconds=max(duration, 0),
            answered_by=answered_by,
            call_sid=(form.get("CallSid") or "").strip(),
        )
