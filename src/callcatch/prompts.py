"""Everything the caller hears and the owner reads.

Spoken lines are short: Twilio reads them one sentence at a time and the
caller is standing next to a leaking pipe.
"""

from datetime import datetime
from zoneinfo import ZoneInfo

from callcatch.records import LeadRecord, MissedCallEvent
from callcatch.states import Stage
from callcatch.validation import spoken_number

# --- Voice ---

LIVE_DIAL_HOLD = "Thanks for calling. Please hold while I connect you."

STAGE_PROMPTS = {
    Stage.AWAITING_LOCATION: "First, which suburb are you in?",
    Stage.AWAITING_ISSUE: "Thanks. What do you need help with?",
    Stage.AWAITING_URGENCY: "Got it. Is this an emergency that needs someone tonight? Please say yes or no.",
}

REPROMPT = "Sorry, I didn't catch that."
RESTART = "Sorry, let's start that again."
NO_SPEECH_FALLBACK = "Sorry, I didn't catch that. Please call again, or text this number. Goodbye."
GIVE_UP = (
    "Sorry, I'm having trouble hearing you. "
    "Please call back, or send us a text message on this number. Goodbye."
)
APOLOGY = (
    "Sorry, something went wrong on our end. "
    "Please call back, or send us a text message on this number. Goodbye."
)
CLOSING = "Thank you. We've got your details and will call you back first thing in the morning. Goodbye."
CLOSING_URGENT = (
    "Thank you. I've marked this as urgent and alerted the team now. "
    "Someone will call you back as soon as possible. Goodbye."
)
ALREADY_DONE = "Thanks, we've already got your details. Goodbye."


def greeting(business_name: str) -> str:
    return (
        f"Hi, you've reached {business_name}. We're currently closed, "
        "but I can take a few details and we'll call you back in the morning."
    )


def issue_prompt(location: str, confirmed: bool) -> str:
    if confirmed and location:
        return f"Thanks, {location}. What do you need help with?"
    return STAGE_PROMPTS[Stage.AWAITING_ISSUE]


def closing(urgent: bool) -> str:
    return CLOSING_URGENT if urgent else CLOSING


def urgent_owner_call(business_name: str, lead: LeadRecord) -> str:
    where = f" in {lead.location}" if lead.location else ""
    issue = lead.issue or "no details given"
    return (
        f"Urgent after hours job for {business_name}. "
        f"Caller {spoken_number(lead.caller_id)}{where}. "
        f"Issue: {issue}. Check your messages for details."
    )


# --- Text and email ---

def local_time(now: datetime, tz: ZoneInfo) -> str:
    return now.astimezone(tz).strftime("%a %d %b, %I:%M %p")


def lead_sms(business_name: str, lead: LeadRecord) -> str:
    header = "URGENT AFTER HOURS LEAD" if lead.urgent else "AFTER HOURS LEAD"
    location = lead.location + ("" if lead.location_confirmed or not lead.location else " (unconfirmed)")
    return (
        f"{header} ({business_name})\n"
        f"From: {lead.caller_id or 'withheld'}\n"
        f"Name: {lead.name}\n"
        f"Location: {location}\n"
        f"Issue: {lead.issue}\n"
        f"Urgent: {'YES' if lead.urgent else 'no'}"
    )


def lead_email(business_name: str, lead: LeadRecord, tz: ZoneInfo) -> tuple[str, str]:
    subject = f"{business_name} - {'URGENT ' if lead.urgent else ''}After-hours lead from {lead.caller_id or 'withheld number'}"
    said = "\n".join(f"  - {line}" for line in lead.transcripts) or "  (nothing captured)"
    body = (
        f"{lead_sms(business_name, lead)}\n"
        f"Captured at: {local_time(lead.captured_at, tz)}\n\n"
        f"Caller said:\n{said}\n"
    )
    return subject, body


def lead_caller_confirmation(business_name: str, urgent: bool) -> str:
    when = "as soon as possible" if urgent else "first thing in the morning"
    return f"Thanks for calling {business_name}. We've got your details and will call you back {when}."


def missed_call_owner_sms(event: MissedCallEvent) -> str:
    return f"Missed call from {event.caller_id or 'withheld number'} (status: {event.dial_status.value})"


def missed_call_caller_sms(business_name: str) -> str:
    return (
        f"Hi, this is {business_name}. Sorry we missed your call. "
        "Reply with your name, suburb, what the issue is, and if it's urgent."
    )


def missed_call_email(business_name: str, event: MissedCallEvent, now: datetime, tz: ZoneInfo) -> tuple[str, str]:
    subject = f"{business_name} - Missed call: {event.caller_id or 'withheld number'}"
    body = (
        "Missed call\n\n"
        f"From: {event.caller_id or 'withheld'}\n"
        f"Status: {event.dial_status.value}\n"
        f"Duration: {event.dial_duration_seconds}s\n"
        f"AnsweredBy: {event.answered_by or 'n/a'}\n"
        f"Time: {local_time(now, tz)}\n"
    )
    return subject, body


def sms_forward(sender: str, body: str) -> str:
    return f"Reply from {sender or 'unknown'}\n\n{body}"


def sms_forward_email(business_name: str, sender: str, body: str, now: datetime, tz: ZoneInfo) -> tuple[str, str]:
    subject = f"{business_name} - New SMS reply from {sender or 'unknown'}"
    text = (
        "Customer replied by text.\n\n"
        f"From: {sender or 'unknown'}\n\n"
        f"Message:\n{body}\n\n"
        f"Time: {local_time(now, tz)}\n"
    )
    return subject, text


def sms_auto_reply(business_name: str) -> str:
    return f"Thanks, we've received your message. {business_name} will contact you as soon as possible."
