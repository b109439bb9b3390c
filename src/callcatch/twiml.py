"""TwiML documents returned to Twilio's voice webhooks."""

from urllib.parse import urlencode

from twilio.twiml.voice_response import VoiceResponse

from callcatch import prompts
from callcatch.config import Settings
from callcatch.state_machine import Action
from callcatch.states import Stage
from callcatch.tts import FALLBACK_VOICE, VoiceSynthesizer

POST_DIAL_PATH = "/post_dial"
AFTER_HOURS_PATH = "/afterhours"


def turn_url(session_key: str, stage: Stage) -> str:
    """Callback URL for the next speech turn; carries the session and stage."""
    return f"{AFTER_HOURS_PATH}?{urlencode({'sid': session_key, 'stage': stage.value})}"


class TwimlBuilder:
    def __init__(self, settings: Settings, voice: VoiceSynthesizer | None = None):
        self.settings = settings
        self.voice = voice

    async def live_dial(self) -> str:
        response = VoiceResponse()
        await self._speak(response, prompts.LIVE_DIAL_HOLD)
        response.dial(
            self.settings.forward_to,
            action=POST_DIAL_PATH,
            method="POST",
            timeout=self.settings.dial_timeout_seconds,
        )
        return str(response)

    async def turn(self, action: Action, session_key: str, stage: Stage) -> str:
        """Render one dialogue Action.

        A call that continues gets a speech gather posting back to
        ``/afterhours`` with the session key and the stage being asked; if
        the gather falls through without a request, the caller hears a
        fallback and the call ends.
        """
        response = VoiceResponse()
        if action.speak:
            await self._speak(response, action.speak)
        if action.end_call:
            response.hangup()
            return str(response)

        gather = response.gather(
            input="speech",
            action=turn_url(session_key, stage),
            method="POST",
            speech_timeout="auto",
            timeout=self.settings.gather_timeout_seconds,
            action_on_empty_result="true",
            language=self.settings.speech_language,
        )
        if action.prompt:
            await self._speak(gather, action.prompt)
        await self._speak(response, prompts.NO_SPEECH_FALLBACK)
        response.hangup()
        return str(response)

    async def hangup(self, text: str = "") -> str:
        response = VoiceResponse()
        if text:
            await self._speak(response, text)
        response.hangup()
        return str(response)

    def apology(self) -> str:
        """Built-in voice only: used when something already went wrong."""
        response = VoiceResponse()
        response.say(prompts.APOLOGY, voice=FALLBACK_VOICE)
        response.hangup()
        return str(response)

    async def _speak(self, node, text: str):
        url = await self.voice.clip_url(text) if self.voice is not None else None
        if url:
            node.play(url)
        else:
            node.say(text, voice=FALLBACK_VOICE)
