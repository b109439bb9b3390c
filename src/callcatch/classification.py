"""Keyword and rule-based decisions: lead urgency and dial outcome."""

import re
from enum import Enum
from typing import Iterable, Sequence

from callcatch.validation import match_any_keyword


# --- Urgency ---

URGENT_KEYWORDS = frozenset({
    "emergency", "urgent", "urgently", "asap",
    "flood", "flooding", "flooded",
    "burst", "bursting", "burst pipe",
    "gushing", "pouring", "spraying",
    "can't stop", "cannot stop", "won't stop", "can't turn off", "won't turn off",
    "no water", "sewage", "overflowing",
})

RETRACTION_PHRASES = frozenset({
    "not urgent", "not an emergency", "no emergency", "isn't urgent",
    "isn't an emergency", "not really", "no rush", "can wait", "it can wait",
})

AFFIRMATIVE_FLAGS = frozenset({"yes", "y", "true", "urgent", "emergency"})

# Answers that open with one of these settle the question outright.
LEADING_YES = ("yes", "yeah", "yep", "yup", "definitely", "absolutely")
LEADING_NO = ("yeah nah", "no", "nope", "nah", "not really")

YES_SIGNALS = frozenset({
    "yes", "yeah", "yep", "yup", "definitely", "absolutely", "it is",
    "urgent", "emergency", "asap",
})
NEGATIONS = frozenset({
    "not urgent", "not an emergency", "no emergency", "not really", "no rush",
    "can wait", "it isn't", "it's not", "it is not",
    "tomorrow is fine", "morning is fine",
})


def _opens_with(words: list[str], phrases: Iterable[str]) -> bool:
    return any(words[:len(p.split())] == p.split() for p in phrases)


def interpret_yes_no(text: str) -> str:
    """Read a spoken answer to "is this an emergency?".

    Returns "yes", "no" or "unsure".  The opening word decides when it is a
    plain yes or no ("yes, there's no hot water" is a yes).  Otherwise an
    explicit negation such as "not urgent" wins over positive words; a bare
    "no" in the middle of a sentence counts for nothing.
    """
    words = re.findall(r"[a-z']+", (text or "").lower())
    if not words:
        return "unsure"
    if _opens_with(words, LEADING_NO):
        return "no"
    if _opens_with(words, LEADING_YES):
        return "yes"
    if match_any_keyword(text, NEGATIONS):
        return "no"
    if match_any_keyword(text, YES_SIGNALS):
        return "yes"
    return "unsure"


def is_affirmative(flag) -> bool:
    if isinstance(flag, bool):
        return flag
    if not flag:
        return False
    return str(flag).strip().lower() in AFFIRMATIVE_FLAGS


def classify_urgency(
    flag,
    transcript: str | Sequence[str],
    keywords: Iterable[str] = URGENT_KEYWORDS,
    answer: str = "",
) -> bool:
    """Urgent if the structured flag says so OR the caller's words do.

    ``flag`` is the extractor's emergency field or the caller's yes/no
    answer (bool, "yes"/"no"/"unsure", or empty).  Unsure or missing is not
    urgent on its own.  ``transcript`` is one utterance or a list of them;
    an emergency keyword counts unless the same utterance retracts it
    ("burst pipe but no rush") or ``answer``, the reply to the urgency
    question, does.
    """
    if is_affirmative(flag):
        return True
    if answer and match_any_keyword(answer, RETRACTION_PHRASES):
        return False
    utterances = [transcript] if isinstance(transcript, str) else transcript
    return any(
        match_any_keyword(u, keywords) and not match_any_keyword(u, RETRACTION_PHRASES)
        for u in utterances
    )


# --- Dial outcome ---

class CallOutcome(Enum):
    ANSWERED = "answered"
    MISSED = "missed"


ANSWERED_STATUSES = {"completed", "answered"}


def classify_dial_outcome(
    dial_status: str,
    dial_duration_seconds: int,
    answered_by: str | None,
    min_answered_seconds: int = 12,
) -> CallOutcome:
    """Decide whether a forwarded call was really picked up.

    Precedence:
      1. answered_by == "human"            -> ANSWERED
      2. answered_by is any other value     -> MISSED (voicemail, fax, unknown)
      3. no answered_by                     -> ANSWERED only for a completed
         leg lasting at least ``min_answered_seconds``; shorter completed
         legs are usually a voicemail greeting picking up.
    """
    signal = (answered_by or "").strip().lower()
    if signal:
        if signal == "human":
            return CallOutcome.ANSWERED
        return CallOutcome.MISSED

    status = (dial_status or "").strip().lower()
    if status in ANSWERED_STATUSES and (dial_duration_seconds or 0) >= min_answered_seconds:
        return CallOutcome.ANSWERED
    return CallOutcome.MISSED
