"""ElevenLabs voice for spoken prompts.

Twilio can only ``<Play>`` a public URL, so synthesized clips are kept in
memory keyed by the SHA-1 of their text and served back from
``/audio/{clip_id}``.  Prompts repeat across calls, so after warm-up most
turns cost no synthesis at all.  When the voice is off, failing, or the
circuit breaker is open, callers get Twilio's built-in ``<Say>`` instead.
"""

import hashlib
import logging
from collections import OrderedDict

import httpx

from callcatch.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

ELEVENLABS_TTS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}/stream"
ELEVENLABS_MODEL = "eleven_multilingual_v2"
OUTPUT_FORMAT = "mp3_44100_128"
FALLBACK_VOICE = "alice"
MAX_CACHED_CLIPS = 256


def clip_id(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


class VoiceSynthesizer:
    def __init__(
        self,
        api_key: str = "",
        voice_id: str = "",
        public_base_url: str = "",
        timeout: float = 5.0,
        max_clips: int = MAX_CACHED_CLIPS,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.voice_id = voice_id
        self.public_base_url = public_base_url.rstrip("/")
        self.timeout = timeout
        self.max_clips = max_clips
        self._client = client
        self._clips: OrderedDict[str, bytes] = OrderedDict()
        self._circuit = CircuitBreaker(failure_threshold=3, cooldown_seconds=60.0, label="ElevenLabs TTS")

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.voice_id)

    @property
    def playable(self) -> bool:
        """Clips can only be played if Twilio can reach us to fetch them."""
        return self.enabled and bool(self.public_base_url)

    def get_clip(self, clip: str) -> bytes | None:
        audio = self._clips.get(clip)
        if audio is not None:
            self._clips.move_to_end(clip)
        return audio

    async def clip_url(self, text: str) -> str | None:
        """Public URL of a clip speaking ``text``, or None to fall back to <Say>."""
        if not self.playable or not text:
            return None
        key = clip_id(text)
        if key not in self._clips:
            audio = await self.synthesize(text)
            if audio is None:
                return None
            self._remember(key, audio)
        return f"{self.public_base_url}/audio/{key}"

    async def synthesize(self, text: str) -> bytes | None:
        """MP3 bytes for ``text``; None when disabled or on any failure."""
        if not self.enabled or not text:
            return None
        if not self._circuit.should_try():
            logger.info("TTS circuit breaker open, using built-in voice")
            return None
        try:
            audio = await self._request(text)
        except Exception as e:
            self._circuit.record_failure()
            logger.error("ElevenLabs TTS failed: %s", e)
            return None
        self._circuit.record_success()
        return audio

    async def _request(self, text: str) -> bytes:
        url = ELEVENLABS_TTS_URL.format(voice_id=self.voice_id)
        headers = {"xi-api-key": self.api_key, "Accept": "audio/mpeg"}
        payload = {
            "text": text,
            "model_id": ELEVENLABS_MODEL,
            "voice_settings": {"stability": 0.4, "similarity_boost": 0.85},
        }
        params = {"output_format": OUTPUT_FORMAT}
        if self._client is not None:
            resp = await self._client.post(url, params=params, headers=headers, json=payload, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(url, params=params, headers=headers, json=payload)
        if resp.status_code >= 400:
            raise RuntimeError(f"HTTP {resp.status_code} {resp.text[:200]}")
        if not resp.content:
            raise RuntimeError("empty audio response")
        return resp.content

    def _remember(self, key: str, audio: bytes):
        self._clips[key] = audio
        self._clips.move_to_end(key)
        while len(self._clips) > self.max_clips:
            self._clips.popitem(last=False)
