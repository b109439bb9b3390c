import re
import secrets
import time
from dataclasses import dataclass, field

from callcatch.states import Stage


def make_session_key(caller_id: str, created_at: float) -> str:
    """Per-call token: caller digits + creation time in ms + random suffix.

    The suffix keeps two calls from the same number in the same
    millisecond apart.
    """
    digits = re.sub(r"\D", "", caller_id or "") or "anon"
    return f"{digits}-{int(created_at * 1000)}-{secrets.token_hex(3)}"


@dataclass
class CallSession:
    session_key: str
    caller_id: str = ""
    stage: Stage = Stage.AWAITING_LOCATION

    # From the location turn (canonical suburb, or raw words if unconfirmed)
    location: str = ""
    location_score: float = 0.0

    # From extraction on the issue turn
    name: str = ""
    issue: str = ""
    emergency_hint: str = ""

    # From the urgency turn
    urgent: bool | None = None

    # Append-only record of what the caller said, one entry per consumed turn
    raw_transcripts: list = field(default_factory=list)

    # Metadata
    created_at: float = field(default_factory=time.time)
    turn_count: int = 0
    reprompts: int = 0

    @property
    def location_confirmed(self) -> bool:
        return self.location_score > 0.0

    def history(self) -> list[dict]:
        """Caller turns as chat messages, oldest first."""
        return [{"role": "user", "content": text} for text in self.raw_transcripts]
