from datetime import datetime
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import httpx
import pytest

from callcatch.bot import build_services, create_app
from callcatch.config import Settings
from callcatch.extraction import LeadFields
from callcatch.hours import default_schedule
from callcatch.notifier import NotificationReport, Notifier
from callcatch.session import CallSession
from callcatch.session_store import SessionStore
from callcatch.state_machine import DialogueMachine
from callcatch.tts import VoiceSynthesizer

SYDNEY = ZoneInfo("Australia/Sydney")
CALLER = "+61412345678"

# 2026-10-20 is a Tuesday
TUESDAY_10AM = datetime(2026, 10, 20, 10, 0, tzinfo=SYDNEY)
TUESDAY_10PM = datetime(2026, 10, 20, 22, 0, tzinfo=SYDNEY)


class FakeExtractor:
    """Returns canned fields, or the raw-transcript fallback when none are set."""

    def __init__(self, fields: LeadFields | None = None):
        self.fields = fields
        self.calls = []

    async def extract(self, transcript, history=()):
        self.calls.append(transcript)
        if self.fields is None:
            return LeadFields.fallback(transcript)
        return self.fields

    async def close(self):
        pass


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def settings():
    return Settings(
        twilio_account_sid="ACtest",
        twilio_auth_token="secret",
        twilio_number="+61290000000",
        owner_number="+61400000001",
        forward_to="+61400000002",
        business_name="Westside Plumbing",
        timezone=SYDNEY,
        schedule=default_schedule(7, 17),
    )


@pytest.fixture
def session():
    return CallSession(session_key="61412345678-1-abc123", caller_id=CALLER)


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def machine(extractor):
    return DialogueMachine(extractor, business_name="Westside Plumbing")


@pytest.fixture
def store():
    return SessionStore(ttl_seconds=600)


@pytest.fixture
def notifier():
    fake = AsyncMock(spec=Notifier)
    fake.notify_missed_call.return_value = NotificationReport("missed_call")
    fake.notify_after_hours_lead.return_value = NotificationReport("after_hours_lead")
    fake.forward_inbound_sms.return_value = NotificationReport("inbound_sms")
    return fake


@pytest.fixture
def clock():
    return Clock(TUESDAY_10PM)


@pytest.fixture
def services(settings, extractor, notifier, clock):
    return build_services(
        settings,
        extractor=extractor,
        notifier=notifier,
        voice=VoiceSynthesizer(),
        now=clock,
    )


@pytest.fixture
def app(services):
    return create_app(services=services)


def client_for(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")
