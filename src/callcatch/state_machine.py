import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from callcatch import prompts
from callcatch.classification import URGENT_KEYWORDS, classify_urgency, interpret_yes_no
from callcatch.errors import InvalidTransition
from callcatch.extraction import LeadExtractor
from callcatch.gazetteer import MATCH_THRESHOLD, SUBURBS, best_match, normalize
from callcatch.records import LeadRecord
from callcatch.session import CallSession
from callcatch.states import Stage
from callcatch.validation import validate_name

logger = logging.getLogger(__name__)

MAX_REPROMPTS = 3
MAX_TURNS_PER_CALL = 12


@dataclass
class Action:
    """What to send back to Twilio for one turn.

    ``speak`` is said first; ``prompt`` is said inside a speech gather for
    the next turn.  ``end_call`` hangs up instead of gathering.  ``lead`` is
    set on exactly one Action per session: the one that completes it.
    """

    speak: str = ""
    prompt: str = ""
    end_call: bool = False
    discard: bool = False
    lead: LeadRecord | None = None


TRANSITIONS = {
    Stage.AWAITING_LOCATION: {Stage.AWAITING_ISSUE},
    Stage.AWAITING_ISSUE: {Stage.AWAITING_URGENCY},
    Stage.AWAITING_URGENCY: {Stage.COMPLETE},
    Stage.COMPLETE: set(),
}


def _transition(session: CallSession, new_stage: Stage):
    """Move forward one stage; anything else is a bug in the caller."""
    if new_stage not in TRANSITIONS.get(session.stage, set()):
        raise InvalidTransition(f"{session.stage.value} -> {new_stage.value}")
    session.stage = new_stage
    session.reprompts = 0


class DialogueMachine:
    """After-hours lead capture: suburb, then issue, then urgency.

    Operates on a CallSession handed in by the caller; holds no per-call
    state of its own, so one instance serves every call.
    """

    def __init__(
        self,
        extractor: LeadExtractor,
        business_name: str = "us",
        gazetteer: Sequence[str] = SUBURBS,
        urgent_keywords: Iterable[str] = URGENT_KEYWORDS,
        threshold: float = MATCH_THRESHOLD,
        max_reprompts: int = MAX_REPROMPTS,
        max_turns: int = MAX_TURNS_PER_CALL,
    ):
        self.extractor = extractor
        self.business_name = business_name
        self.gazetteer = tuple(gazetteer)
        self.urgent_keywords = frozenset(urgent_keywords)
        self.threshold = threshold
        self.max_reprompts = max_reprompts
        self.max_turns = max_turns

    def start(self, session: CallSession) -> Action:
        return Action(
            speak=prompts.greeting(self.business_name),
            prompt=prompts.STAGE_PROMPTS[Stage.AWAITING_LOCATION],
        )

    def resume(self, session: CallSession, restarted: bool = False) -> Action:
        """Ask the current stage's question again without consuming a turn."""
        if session.stage.is_terminal:
            return Action(speak=prompts.ALREADY_DONE, end_call=True)
        return Action(speak=prompts.RESTART if restarted else "", prompt=self._prompt_for(session))

    async def process(self, session: CallSession, speech: str) -> Action:
        if session.stage.is_terminal:
            return Action(speak=prompts.ALREADY_DONE, end_call=True)

        session.turn_count += 1
        if session.turn_count > self.max_turns:
            logger.warning("Per-call turn limit exceeded for %s, giving up", session.session_key)
            return Action(speak=prompts.GIVE_UP, end_call=True, discard=True)

        text = (speech or "").strip()
        if not text:
            session.reprompts += 1
            if session.reprompts > self.max_reprompts:
                logger.info(
                    "No speech after %d re-prompts in %s for %s, giving up",
                    self.max_reprompts,
                    session.stage.value,
                    session.session_key,
                )
                return Action(speak=prompts.GIVE_UP, end_call=True, discard=True)
            return Action(speak=prompts.REPROMPT, prompt=self._prompt_for(session))

        handler = getattr(self, f"_handle_{session.stage.value}")
        return await handler(session, text)

    # ── Stage handlers ──

    async def _handle_awaiting_location(self, session: CallSession, text: str) -> Action:
        session.raw_transcripts.append(text)
        match = best_match(text, self.gazetteer, self.threshold)
        if match:
            session.location = match.name
            session.location_score = match.score
        else:
            session.location = text
            session.location_score = 0.0
        logger.info(
            "Location for %s: %r (%s)",
            session.session_key,
            session.location,
            f"matched {session.location_score:.2f}" if match else "unconfirmed",
        )
        _transition(session, Stage.AWAITING_ISSUE)
        return Action(prompt=self._prompt_for(session))

    async def _handle_awaiting_issue(self, session: CallSession, text: str) -> Action:
        session.raw_transcripts.append(text)
        fields = await self.extractor.extract(text, session.history())

        session.issue = fields.issue or text
        session.name = validate_name(fields.name) or session.name
        session.emergency_hint = fields.emergency
        self._refine_location(session, fields.location)

        _transition(session, Stage.AWAITING_URGENCY)
        return Action(prompt=self._prompt_for(session))

    async def _handle_awaiting_urgency(self, session: CallSession, text: str) -> Action:
        session.raw_transcripts.append(text)
        answer = interpret_yes_no(text)
        flag = answer if answer != "unsure" else session.emergency_hint
        session.urgent = classify_urgency(flag, session.raw_transcripts, self.urgent_keywords, answer=text)

        _transition(session, Stage.COMPLETE)
        lead = LeadRecord(
            caller_id=session.caller_id,
            name=session.name,
            location=session.location,
            issue=session.issue,
            urgent=session.urgent,
            location_confirmed=session.location_confirmed,
            transcripts=tuple(session.raw_transcripts),
        )
        logger.info(
            "Lead complete for %s: location=%r urgent=%s",
            session.session_key,
            lead.location,
            lead.urgent,
        )
        return Action(speak=prompts.closing(lead.urgent), end_call=True, lead=lead)

    # ── Helpers ──

    def _refine_location(self, session: CallSession, guess: str):
        """Take the extractor's suburb only if it matches better than what we have."""
        if not guess or normalize(guess) == normalize(session.location):
            return
        match = best_match(guess, self.gazetteer, self.threshold)
        if match and match.score > session.location_score:
            logger.info("Location for %s refined %r -> %r", session.session_key, session.location, match.name)
            session.location = match.name
            session.location_score = match.score

    def _prompt_for(self, session: CallSession) -> str:
        if session.stage == Stage.AWAITING_ISSUE:
            return prompts.issue_prompt(session.location, session.location_confirmed)
        return prompts.STAGE_PROMPTS.get(session.stage, "")
