import xml.etree.ElementTree as ET
from urllib.parse import parse_qs, urlparse

import pytest

from callcatch import prompts
from callcatch.records import DialStatus
from callcatch.states import Stage
from conftest import CALLER, TUESDAY_10AM, client_for


def twiml(resp) -> ET.Element:
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/xml")
    return ET.fromstring(resp.content)


def said(root: ET.Element) -> list[str]:
    return [el.text for el in root.iter("Say")]


def gather_query(root: ET.Element) -> dict:
    action = root.find("Gather").get("action")
    parsed = urlparse(action)
    assert parsed.path == "/afterhours"
    return {k: v[0] for k, v in parse_qs(parsed.query).items()}


class TestLiveness:
    @pytest.mark.asyncio
    async def test_index_and_health(self, app):
        async with client_for(app) as client:
            assert (await client.get("/")).text == "OK"
            assert (await client.get("/health")).text == "ok"


class TestVoice:
    @pytest.mark.asyncio
    async def test_business_hours_dials_forward_number(self, app, clock, settings):
        clock.now = TUESDAY_10AM
        async with client_for(app) as client:
            root = twiml(await client.post("/voice", data={"From": CALLER, "To": settings.twilio_number}))

        dial = root.find("Dial")
        assert dial is not None
        assert dial.text == settings.forward_to
        assert dial.get("action") == "/post_dial"
        assert dial.get("timeout") == "20"
        assert root.find("Gather") is None

    @pytest.mark.asyncio
    async def test_after_hours_greets_and_gathers_location(self, app, services):
        async with client_for(app) as client:
            root = twiml(await client.post("/voice", data={"From": CALLER}))

        assert "Westside Plumbing" in said(root)[0]
        gather = root.find("Gather")
        assert gather.get("input") == "speech"
        assert gather.get("speechTimeout") == "auto"
        assert gather.get("actionOnEmptyResult") == "true"
        assert gather.get("language") == "en-AU"
        assert [el.text for el in gather.iter("Say")] == [prompts.STAGE_PROMPTS[Stage.AWAITING_LOCATION]]
        query = gather_query(root)
        assert query["stage"] == "awaiting_location"
        assert services.store.get(query["sid"]) is not None
        assert root.find("Hangup") is not None

    @pytest.mark.asyncio
    async def test_unexpected_error_gets_apology(self, app, services, monkeypatch):
        def explode(caller_id=""):
            raise RuntimeError("boom")

        monkeypatch.setattr(services.dialogue, "begin", explode)
        async with client_for(app) as client:
            root = twiml(await client.post("/voice", data={"From": CALLER}))
        assert said(root) == [prompts.APOLOGY]
        assert root.find("Hangup") is not None


class TestAfterHoursDialogue:
    @pytest.mark.asyncio
    async def test_location_turn_confirms_suburb(self, app):
        async with client_for(app) as client:
            root = twiml(await client.post("/voice", data={"From": CALLER}))
            action = root.find("Gather").get("action")
            root = twiml(await client.post(action, data={
                "From": CALLER,
                "SpeechResult": "I'm in Canley Vale, my hot water heater is leaking everywhere",
            }))

        assert gather_query(root)["stage"] == "awaiting_issue"
        prompt = root.find("Gather").find("Say").text
        assert "Canley Vale" in prompt

    @pytest.mark.asyncio
    async def test_full_dialogue_notifies_once(self, app, notifier):
        async with client_for(app) as client:
            root = twiml(await client.post("/voice", data={"From": CALLER}))
            for speech in ("Canley Vale", "the hot water system burst"):
                action = root.find("Gather").get("action")
                root = twiml(await client.post(action, data={"From": CALLER, "SpeechResult": speech}))

            final_action = root.find("Gather").get("action")
            root = twiml(await client.post(final_action, data={"From": CALLER, "SpeechResult": "yes"}))
            assert said(root) == [prompts.CLOSING_URGENT]
            assert root.find("Gather") is None
            assert root.find("Hangup") is not None

            replay = twiml(await client.post(final_action, data={"From": CALLER, "SpeechResult": "yes"}))
            assert said(replay) == [prompts.ALREADY_DONE]

        notifier.notify_after_hours_lead.assert_awaited_once()
        lead = notifier.notify_after_hours_lead.await_args.args[0]
        assert lead.caller_id == CALLER
        assert lead.location == "Canley Vale"
        assert lead.issue == "the hot water system burst"
        assert lead.urgent is True

    @pytest.mark.asyncio
    async def test_empty_speech_reprompts(self, app):
        async with client_for(app) as client:
            root = twiml(await client.post("/voice", data={"From": CALLER}))
            action = root.find("Gather").get("action")
            root = twiml(await client.post(action, data={"From": CALLER, "SpeechResult": ""}))

        assert said(root)[0] == prompts.REPROMPT
        assert gather_query(root)["stage"] == "awaiting_location"

    @pytest.mark.asyncio
    async def test_turn_without_session_starts_over(self, app):
        async with client_for(app) as client:
            root = twiml(await client.post("/afterhours", data={"From": CALLER, "SpeechResult": "yes"}))
        assert said(root)[0] == prompts.RESTART
        assert gather_query(root)["stage"] == "awaiting_location"


class TestDialResult:
    @pytest.mark.asyncio
    async def test_no_answer_notifies_missed_call(self, app, notifier):
        async with client_for(app) as client:
            root = twiml(await client.post("/post_dial", data={
                "From": CALLER,
                "CallSid": "CA123",
                "DialCallStatus": "no-answer",
            }))

        assert root.find("Hangup") is not None
        notifier.notify_missed_call.assert_awaited_once()
        event = notifier.notify_missed_call.await_args.args[0]
        assert event.caller_id == CALLER
        assert event.dial_status == DialStatus.NO_ANSWER

    @pytest.mark.asyncio
    async def test_missed_alias_route(self, app, notifier):
        async with client_for(app) as client:
            await client.post("/missed", data={"From": CALLER, "CallSid": "CA9", "DialCallStatus": "busy"})
        notifier.notify_missed_call.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_duplicate_callback_notifies_once(self, app, notifier):
        form = {"From": CALLER, "CallSid": "CA123", "DialCallStatus": "no-answer"}
        async with client_for(app) as client:
            await client.post("/post_dial", data=form)
            await client.post("/post_dial", data=form)
        notifier.notify_missed_call.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_answered_call_is_not_reported(self, app, notifier):
        async with client_for(app) as client:
            await client.post("/post_dial", data={
                "From": CALLER,
                "CallSid": "CA1",
                "DialCallStatus": "completed",
                "DialCallDuration": "95",
            })
        notifier.notify_missed_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_voicemail_pickup_is_missed(self, app, notifier):
        async with client_for(app) as client:
            await client.post("/post_dial", data={
                "From": CALLER,
                "CallSid": "CA2",
                "DialCallStatus": "completed",
                "DialCallDuration": "40",
                "AnsweredBy": "machine_start",
            })
        notifier.notify_missed_call.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_malformed_callback_gets_apology(self, app, notifier):
        async with client_for(app) as client:
            root = twiml(await client.post("/post_dial", data={"From": CALLER}))
        assert said(root) == [prompts.APOLOGY]
        notifier.notify_missed_call.assert_not_awaited()


class TestSms:
    @pytest.mark.asyncio
    async def test_inbound_sms_forwarded(self, app, notifier):
        async with client_for(app) as client:
            resp = await client.post("/sms", data={"From": CALLER, "To": "+61290000000", "Body": " leaking tap "})
        assert resp.status_code == 200
        assert resp.text == "OK"
        notifier.forward_inbound_sms.assert_awaited_once_with(CALLER, "leaking tap")

    @pytest.mark.asyncio
    async def test_handler_error_still_answers_ok(self, app, notifier, monkeypatch):
        def explode(value):
            raise RuntimeError("boom")

        monkeypatch.setattr("callcatch.bot.clean_caller_id", explode)
        async with client_for(app) as client:
            resp = await client.post("/sms", data={"From": CALLER, "Body": "hello"})
        assert resp.status_code == 200
        assert resp.text == "OK"
        notifier.forward_inbound_sms.assert_not_awaited()


class TestAudio:
    @pytest.mark.asyncio
    async def test_unknown_clip_404(self, app):
        async with client_for(app) as client:
            assert (await client.get("/audio/deadbeef")).status_code == 404

    @pytest.mark.asyncio
    async def test_synthesis_unavailable_503(self, app):
        async with client_for(app) as client:
            assert (await client.get("/audio", params={"text": "hello"})).status_code == 503

    @pytest.mark.asyncio
    async def test_missing_text_400(self, app):
        async with client_for(app) as client:
            assert (await client.get("/audio")).status_code == 400
