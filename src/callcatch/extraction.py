import json
import logging
from dataclasses import dataclass
from typing import Sequence

import httpx

from callcatch.circuit_breaker import CircuitBreaker
from callcatch.errors import ExtractionError

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"

EXTRACTION_PROMPT = """You are the after-hours receptionist for an Australian trades business.
Extract details from what the CALLER said. Output ONLY valid JSON with these keys:

- name: The caller's own name. Must be a real human name. Not a phone number, not a place.
- location: The suburb the caller is in, exactly as they said it.
- issue: A short description of the job or problem in the caller's words.
- emergency: "yes", "no" or "unsure", whether the caller described an emergency.

If a field is not mentioned by the caller, use empty string "".
Do not guess or fabricate values. NEVER put the suburb into the name field."""

EXTRACTION_FIELDS = ("name", "location", "issue", "emergency")


@dataclass(frozen=True)
class LeadFields:
    name: str = ""
    location: str = ""
    issue: str = ""
    emergency: str = ""

    @classmethod
    def fallback(cls, transcript: str) -> "LeadFields":
        """What the call flow gets when extraction is off or fails."""
        return cls(issue=(transcript or "").strip())

    @classmethod
    def from_dict(cls, data: dict) -> "LeadFields":
        values = {}
        for key in EXTRACTION_FIELDS:
            value = data.get(key, "")
            values[key] = value.strip() if isinstance(value, str) else ""
        values["emergency"] = values["emergency"].lower()
        return cls(**values)


def parse_extraction(text: str) -> dict:
    """First well-formed JSON object in ``text``.

    Models sometimes wrap the object in prose or code fences, so every
    ``{`` is tried as a starting point until one decodes to a dict.
    """
    if not text:
        raise ExtractionError("empty model response")
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            obj = None
        if isinstance(obj, dict):
            return obj
        start = text.find("{", start + 1)
    raise ExtractionError(f"no JSON object in model response: {text[:120]!r}")


class LeadExtractor:
    """Turns a caller's free text into name/location/issue/emergency.

    ``extract`` never raises: any failure (no key, transport error, HTTP
    error, unparseable output) returns ``LeadFields.fallback`` so the
    dialogue can still finish with the raw words as the issue.
    """

    def __init__(
        self,
        api_key: str = "",
        model: str = "gpt-4o-mini",
        timeout: float = 8.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = client
        self._circuit = CircuitBreaker(failure_threshold=3, cooldown_seconds=60.0, label="OpenAI extraction")

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def close(self):
        if self._client is not None:
            await self._client.aclose()

    async def extract(self, transcript: str, history: Sequence[dict] = ()) -> LeadFields:
        if not transcript or not transcript.strip():
            return LeadFields.fallback(transcript)
        if not self.enabled:
            return LeadFields.fallback(transcript)
        if not self._circuit.should_try():
            logger.warning("Extraction circuit breaker open, using raw transcript")
            return LeadFields.fallback(transcript)

        try:
            content = await self._request(transcript, history)
            fields = LeadFields.from_dict(parse_extraction(content))
        except Exception as e:
            self._circuit.record_failure()
            logger.error("extraction failed: %s", e)
            return LeadFields.fallback(transcript)

        self._circuit.record_success()
        if not fields.issue:
            fields = LeadFields(
                name=fields.name,
                location=fields.location,
                issue=transcript.strip(),
                emergency=fields.emergency,
            )
        return fields

    async def _request(self, transcript: str, history: Sequence[dict]) -> str:
        messages = [{"role": "system", "content": EXTRACTION_PROMPT}]
        messages.extend(m for m in list(history)[-10:] if m.get("role") == "user")
        if not messages[1:] or messages[-1].get("content") != transcript:
            messages.append({"role": "user", "content": transcript})

        payload = {
            "model": self.model,
            "temperature": 0.1,
            "response_format": {"type": "json_object"},
            "messages": messages,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if self._client is not None:
            resp = await self._client.post(OPENAI_CHAT_URL, headers=headers, json=payload, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(OPENAI_CHAT_URL, headers=headers, json=payload)
        resp.raise_for_status()
        return resp.json()["choices"][0]["message"]["content"]
