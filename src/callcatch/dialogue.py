import logging
from dataclasses import dataclass

from callcatch import prompts
from callcatch.records import LeadRecord
from callcatch.session_store import SessionStore
from callcatch.state_machine import Action, DialogueMachine
from callcatch.states import Stage

logger = logging.getLogger(__name__)


@dataclass
class TurnResult:
    action: Action
    session_key: str
    stage: Stage
    lead: LeadRecord | None = None


class DialogueService:
    """Runs after-hours turns against the session store.

    Twilio delivers webhooks at least once, so a turn may arrive twice, late
    or concurrently with its duplicate.  Each turn runs under the session's
    lock; the ``stage`` echoed back in the callback URL tells a fresh answer
    apart from a replay, and a completed key is remembered so the final turn
    yields its lead exactly once.
    """

    def __init__(self, store: SessionStore, machine: DialogueMachine):
        self.store = store
        self.machine = machine

    def begin(self, caller_id: str = "") -> TurnResult:
        session = self.store.create(caller_id)
        logger.info("After-hours dialogue started: %s from %s", session.session_key, caller_id or "withheld")
        return TurnResult(self.machine.start(session), session.session_key, session.stage)

    async def handle_turn(
        self,
        session_key: str,
        stage: Stage | None,
        speech: str,
        caller_id: str = "",
    ) -> TurnResult:
        if not session_key:
            logger.warning("After-hours turn without a session key, starting over")
            result = self.begin(caller_id)
            result.action.speak = prompts.RESTART
            return result

        async with self.store.locked(session_key):
            if self.store.is_completed(session_key):
                logger.info("Duplicate delivery for completed session %s", session_key)
                return TurnResult(Action(speak=prompts.ALREADY_DONE, end_call=True), session_key, Stage.COMPLETE)

            session = self.store.get(session_key)
            restarted = session is None
            if restarted:
                logger.info("Session %s unknown or expired, starting over", session_key)
                session = self.store.create(caller_id, key=session_key)

            if stage != session.stage:
                logger.info(
                    "Stale delivery for %s (got stage=%s, at %s), re-asking",
                    session_key,
                    stage.value if stage else None,
                    session.stage.value,
                )
                return TurnResult(self.machine.resume(session, restarted), session_key, session.stage)

            action = await self.machine.process(session, speech)

            if action.lead is not None:
                self.store.complete(session_key)
            elif action.discard:
                self.store.delete(session_key)
            else:
                self.store.put(session)

            return TurnResult(action, session_key, session.stage, lead=action.lead)
