import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

import uvicorn
from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import PlainTextResponse, Response

from callcatch.classification import URGENT_KEYWORDS, CallOutcome, classify_dial_outcome
from callcatch.config import Settings, validate_config
from callcatch.dialogue import DialogueService
from callcatch.email_client import EmailClient
from callcatch.errors import MalformedWebhook
from callcatch.extraction import LeadExtractor
from callcatch.gazetteer import SUBURBS, load_gazetteer
from callcatch.hours import is_within_business_hours
from callcatch.notifier import Notifier
from callcatch.records import MissedCallEvent
from callcatch.session_store import RecentEvents, SessionStore
from callcatch.state_machine import DialogueMachine
from callcatch.states import Stage
from callcatch.tts import VoiceSynthesizer
from callcatch.twilio_client import TwilioClient
from callcatch.twiml import TwimlBuilder
from callcatch.validation import clean_caller_id

logger = logging.getLogger(__name__)

XML = "application/xml"


@dataclass
class Services:
    """Everything the webhook handlers need, built once per app."""

    settings: Settings
    store: SessionStore
    recent: RecentEvents
    dialogue: DialogueService
    notifier: Notifier
    voice: VoiceSynthesizer
    twiml: TwimlBuilder
    extractor: LeadExtractor
    twilio: TwilioClient | None = None
    now: Callable[[], datetime] = lambda: datetime.now(timezone.utc)

    async def aclose(self):
        await self.extractor.close()
        if self.twilio is not None:
            await self.twilio.close()


def build_services(
    settings: Settings,
    *,
    extractor: LeadExtractor | None = None,
    notifier: Notifier | None = None,
    voice: VoiceSynthesizer | None = None,
    now: Callable[[], datetime] | None = None,
    store: SessionStore | None = None,
) -> Services:
    gazetteer = load_gazetteer(settings.gazetteer_path) if settings.gazetteer_path else SUBURBS
    extractor = extractor or LeadExtractor(api_key=settings.openai_api_key, model=settings.openai_model)
    machine = DialogueMachine(
        extractor,
        business_name=settings.business_name,
        gazetteer=gazetteer,
        urgent_keywords=URGENT_KEYWORDS | set(settings.extra_urgent_keywords),
    )
    store = store or SessionStore(ttl_seconds=settings.session_ttl_seconds)

    twilio = None
    if notifier is None:
        twilio = TwilioClient(settings.twilio_account_sid, settings.twilio_auth_token, settings.twilio_number)
        email = None
        if settings.email_enabled:
            email = EmailClient(api_key=settings.sendgrid_api_key, to=settings.email_to, sender=settings.email_from)
        notifier = Notifier(settings, twilio, email)

    voice = voice or VoiceSynthesizer(
        api_key=settings.elevenlabs_api_key,
        voice_id=settings.elevenlabs_voice_id,
        public_base_url=settings.public_base_url,
    )
    services = Services(
        settings=settings,
        store=store,
        recent=RecentEvents(),
        dialogue=DialogueService(store, machine),
        notifier=notifier,
        voice=voice,
        twiml=TwimlBuilder(settings, voice),
        extractor=extractor,
        twilio=twilio,
    )
    if now is not None:
        services.now = now
    return services


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    if services is None:
        services = build_services(settings or validate_config())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await services.aclose()

    app = FastAPI(title="callcatch", lifespan=lifespan)
    app.state.services = services

    @app.get("/")
    async def index():
        return PlainTextResponse("OK")

    @app.get("/health")
    async def health():
        return PlainTextResponse("ok")

    @app.post("/voice")
    async def voice(request: Request):
        """Inbound call: live dial in business hours, lead capture after."""
        try:
            form = await request.form()
            caller = clean_caller_id(form.get("From"))
            services.store.sweep_expired()
            now = services.now()
            if is_within_business_hours(now, services.settings.timezone, services.settings.schedule):
                logger.info("Inbound call from %s in hours, dialling %s", caller or "withheld", services.settings.forward_to)
                xml = await services.twiml.live_dial()
            else:
                logger.info("Inbound call from %s after hours", caller or "withheld")
                result = services.dialogue.begin(caller)
                xml = await services.twiml.turn(result.action, result.session_key, result.stage)
        except Exception:
            logger.exception("/voice failed")
            xml = services.twiml.apology()
        return Response(content=xml, media_type=XML)

    async def dial_result(request: Request, background_tasks: BackgroundTasks):
        try:
            form = await request.form()
            event = MissedCallEvent.from_form(form)
            s = services.settings
            outcome = classify_dial_outcome(
                event.dial_status.value,
                event.dial_duration_seconds,
                event.answered_by,
                min_answered_seconds=s.min_answered_seconds,
            )
            logger.info(
                "Dial result from %s: status=%s duration=%ss answered_by=%s -> %s",
                event.caller_id or "withheld",
                event.dial_status.value,
                event.dial_duration_seconds,
                event.answered_by,
                outcome.value,
            )
            if outcome == CallOutcome.MISSED:
                if services.recent.seen(event.call_sid or event.caller_id or "withheld"):
                    logger.info("Duplicate dial callback for %s, not notifying again", event.call_sid or event.caller_id)
                else:
                    background_tasks.add_task(services.notifier.notify_missed_call, event)
            xml = await services.twiml.hangup()
        except MalformedWebhook as e:
            logger.error("Malformed dial callback: %s", e)
            xml = services.twiml.apology()
        except Exception:
            logger.exception("Dial callback failed")
            xml = services.twiml.apology()
        return Response(content=xml, media_type=XML)

    app.add_api_route("/post_dial", dial_result, methods=["POST"])
    app.add_api_route("/missed", dial_result, methods=["POST"])

    @app.post("/afterhours")
    async def after_hours(request: Request, background_tasks: BackgroundTasks):
        """One speech turn of the after-hours dialogue."""
        try:
            form = await request.form()
            session_key = request.query_params.get("sid", "")
            stage = Stage.parse(request.query_params.get("stage"))
            speech = (form.get("SpeechResult") or "").strip()
            caller = clean_caller_id(form.get("From"))
            logger.info(
                "After-hours turn %s stage=%s speech=%r",
                session_key or "(none)",
                stage.value if stage else None,
                speech,
            )
            services.store.sweep_expired()
            result = await services.dialogue.handle_turn(session_key, stage, speech, caller)
            if result.lead is not None:
                background_tasks.add_task(services.notifier.notify_after_hours_lead, result.lead)
            xml = await services.twiml.turn(result.action, result.session_key, result.stage)
        except Exception:
            logger.exception("/afterhours failed")
            xml = services.twiml.apology()
        return Response(content=xml, media_type=XML)

    @app.post("/sms")
    async def sms(request: Request, background_tasks: BackgroundTasks):
        try:
            form = await request.form()
            sender = clean_caller_id(form.get("From"))
            body = (form.get("Body") or "").strip()
            logger.info("Inbound SMS from %s (%d chars)", sender or "unknown", len(body))
            background_tasks.add_task(services.notifier.forward_inbound_sms, sender, body)
        except Exception:
            logger.exception("/sms failed")
        return PlainTextResponse("OK")

    @app.get("/audio/{clip_id}")
    async def cached_audio(clip_id: str):
        audio = services.voice.get_clip(clip_id)
        if audio is None:
            return PlainTextResponse("Not found", status_code=404)
        return Response(content=audio, media_type="audio/mpeg", headers={"Cache-Control": "public, max-age=86400"})

    @app.get("/audio")
    async def synthesize_audio(text: str = ""):
        if not text.strip():
            return PlainTextResponse("Missing text", status_code=400)
        audio = await services.voice.synthesize(text.strip())
        if audio is None:
            return PlainTextResponse("Voice synthesis unavailable", status_code=503)
        return Response(content=audio, media_type="audio/mpeg")

    return app


def main():
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    validate_config()
    port = int(os.getenv("PORT", "3000"))
    uvicorn.run("callcatch.bot:create_app", factory=True, host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
