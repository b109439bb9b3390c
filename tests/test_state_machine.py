import random

import pytest

from callcatch import prompts
from callcatch.errors import InvalidTransition
from callcatch.extraction import LeadFields
from callcatch.state_machine import MAX_REPROMPTS, DialogueMachine, _transition
from callcatch.states import Stage


async def run_to_urgency(machine, session, location="Canley Vale", issue="hot water heater leaking"):
    await machine.process(session, location)
    await machine.process(session, issue)
    assert session.stage == Stage.AWAITING_URGENCY


class TestStart:
    def test_greets_and_asks_location(self, machine, session):
        action = machine.start(session)
        assert "Westside Plumbing" in action.speak
        assert action.prompt == prompts.STAGE_PROMPTS[Stage.AWAITING_LOCATION]
        assert not action.end_call


class TestLocationTurn:
    @pytest.mark.asyncio
    async def test_gazetteer_match_is_canonical(self, machine, session):
        action = await machine.process(session, "I'm in Canley Vale, my hot water heater is leaking everywhere")
        assert session.stage == Stage.AWAITING_ISSUE
        assert session.location == "Canley Vale"
        assert session.location_confirmed
        assert "Canley Vale" in action.prompt

    @pytest.mark.asyncio
    async def test_unmatched_location_kept_raw(self, machine, session):
        action = await machine.process(session, "out past the big roundabout")
        assert session.stage == Stage.AWAITING_ISSUE
        assert session.location == "out past the big roundabout"
        assert not session.location_confirmed
        assert action.prompt == prompts.STAGE_PROMPTS[Stage.AWAITING_ISSUE]

    @pytest.mark.asyncio
    async def test_transcript_recorded(self, machine, session):
        await machine.process(session, "Fairfield")
        assert session.raw_transcripts == ["Fairfield"]


class TestIssueTurn:
    @pytest.mark.asyncio
    async def test_extractor_fallback_uses_raw_text(self, machine, session, extractor):
        await machine.process(session, "Fairfield")
        await machine.process(session, "the toilet is blocked")
        assert session.issue == "the toilet is blocked"
        assert session.name == ""
        assert session.location == "Fairfield"
        assert extractor.calls == ["the toilet is blocked"]

    @pytest.mark.asyncio
    async def test_extractor_fields_merged(self, machine, session, extractor):
        extractor.fields = LeadFields(name="Jonas", location="", issue="blocked toilet", emergency="no")
        await machine.process(session, "Fairfield")
        await machine.process(session, "it's Jonas, the toilet is blocked")
        assert session.name == "Jonas"
        assert session.issue == "blocked toilet"
        assert session.emergency_hint == "no"

    @pytest.mark.asyncio
    async def test_sentinel_name_rejected(self, machine, session, extractor):
        extractor.fields = LeadFields(name="unknown", issue="leak")
        await machine.process(session, "Fairfield")
        await machine.process(session, "leak")
        assert session.name == ""

    @pytest.mark.asyncio
    async def test_extractor_location_refines_raw_text(self, machine, session, extractor):
        extractor.fields = LeadFields(location="Cabramatta", issue="leak")
        await machine.process(session, "near the station")
        assert not session.location_confirmed
        await machine.process(session, "I'm in Cabramatta and there's a leak")
        assert session.location == "Cabramatta"
        assert session.location_confirmed

    @pytest.mark.asyncio
    async def test_weaker_location_never_replaces_confirmed(self, machine, session, extractor):
        extractor.fields = LeadFields(location="Fairfield", issue="leak")
        await machine.process(session, "Canley Vale")
        await machine.process(session, "leak near fairfield")
        assert session.location == "Canley Vale"

    @pytest.mark.asyncio
    async def test_unmatchable_extractor_location_ignored(self, machine, session, extractor):
        extractor.fields = LeadFields(location="the moon", issue="leak")
        await machine.process(session, "Canley Vale")
        await machine.process(session, "leak")
        assert session.location == "Canley Vale"


class TestUrgencyTurn:
    @pytest.mark.asyncio
    async def test_yes_completes_urgent_lead(self, machine, session):
        await run_to_urgency(machine, session)
        action = await machine.process(session, "yes, please hurry")
        assert session.stage == Stage.COMPLETE
        assert action.end_call
        assert action.speak == prompts.CLOSING_URGENT
        lead = action.lead
        assert lead.urgent is True
        assert lead.location == "Canley Vale"
        assert lead.location_confirmed
        assert lead.issue == "hot water heater leaking"
        assert lead.caller_id == "+61412345678"
        assert lead.transcripts == ("Canley Vale", "hot water heater leaking", "yes, please hurry")

    @pytest.mark.asyncio
    async def test_no_completes_routine_lead(self, machine, session):
        await run_to_urgency(machine, session)
        action = await machine.process(session, "no, the morning is fine")
        assert action.lead.urgent is False
        assert action.speak == prompts.CLOSING

    @pytest.mark.asyncio
    async def test_unsure_answer_falls_back_to_extractor_hint(self, machine, session, extractor):
        extractor.fields = LeadFields(issue="water everywhere", emergency="yes")
        await run_to_urgency(machine, session)
        action = await machine.process(session, "hmm I'm not sure")
        assert action.lead.urgent is True

    @pytest.mark.asyncio
    async def test_keywords_in_earlier_turns_count(self, machine, session):
        await run_to_urgency(machine, session, issue="a pipe has burst in the kitchen")
        action = await machine.process(session, "I don't know")
        assert action.lead.urgent is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("answer", [
        "yes, there's no hot water at all",
        "yes, no doubt about it",
        "absolutely, the shower has no pressure",
    ])
    async def test_opening_yes_survives_later_no(self, machine, session, answer):
        await run_to_urgency(machine, session, issue="the hot water system died")
        action = await machine.process(session, answer)
        assert action.lead.urgent is True
        assert action.speak == prompts.CLOSING_URGENT

    @pytest.mark.asyncio
    async def test_hedge_in_other_turn_keeps_keywords(self, machine, session):
        await run_to_urgency(
            machine, session,
            location="not really sure, near Fairfield",
            issue="a pipe burst and the kitchen is flooding",
        )
        action = await machine.process(session, "I don't know")
        assert action.lead.urgent is True

    @pytest.mark.asyncio
    async def test_retraction_in_answer_cancels_keywords(self, machine, session):
        await run_to_urgency(machine, session, issue="a pipe has burst under the house")
        action = await machine.process(session, "it can wait till the morning")
        assert action.lead.urgent is False

    @pytest.mark.asyncio
    async def test_complete_session_emits_no_second_lead(self, machine, session):
        await run_to_urgency(machine, session)
        first = await machine.process(session, "yes")
        again = await machine.process(session, "yes")
        assert first.lead is not None
        assert again.lead is None
        assert again.end_call


class TestEmptySpeech:
    @pytest.mark.asyncio
    async def test_reprompts_same_stage(self, machine, session):
        action = await machine.process(session, "")
        assert session.stage == Stage.AWAITING_LOCATION
        assert action.speak == prompts.REPROMPT
        assert action.prompt == prompts.STAGE_PROMPTS[Stage.AWAITING_LOCATION]
        assert not action.end_call

    @pytest.mark.asyncio
    async def test_gives_up_after_max_reprompts(self, machine, session):
        for _ in range(MAX_REPROMPTS):
            action = await machine.process(session, "   ")
            assert not action.end_call
        action = await machine.process(session, "")
        assert action.end_call
        assert action.discard
        assert action.lead is None
        assert action.speak == prompts.GIVE_UP

    @pytest.mark.asyncio
    async def test_reprompt_count_resets_on_progress(self, machine, session):
        for _ in range(MAX_REPROMPTS):
            await machine.process(session, "")
        await machine.process(session, "Fairfield")
        action = await machine.process(session, "")
        assert not action.end_call
        assert session.reprompts == 1


class TestTurnCap:
    @pytest.mark.asyncio
    async def test_gives_up_past_turn_limit(self, extractor, session):
        machine = DialogueMachine(extractor, max_turns=2, max_reprompts=10)
        await machine.process(session, "")
        await machine.process(session, "")
        action = await machine.process(session, "Fairfield")
        assert action.end_call
        assert action.discard
        assert session.stage == Stage.AWAITING_LOCATION


class TestTransitions:
    def test_skipping_a_stage_raises(self, session):
        with pytest.raises(InvalidTransition):
            _transition(session, Stage.AWAITING_URGENCY)

    def test_going_back_raises(self, session):
        session.stage = Stage.AWAITING_URGENCY
        with pytest.raises(InvalidTransition):
            _transition(session, Stage.AWAITING_ISSUE)

    def test_leaving_complete_raises(self, session):
        session.stage = Stage.COMPLETE
        with pytest.raises(InvalidTransition):
            _transition(session, Stage.AWAITING_LOCATION)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", range(20))
    async def test_stage_never_moves_backwards(self, machine, session, seed):
        rng = random.Random(seed)
        utterances = ["", "Fairfield", "leaking tap", "yes", "no", "   ", "the moon"]
        last_rank = session.stage.rank
        for _ in range(15):
            action = await machine.process(session, rng.choice(utterances))
            assert session.stage.rank >= last_rank
            last_rank = session.stage.rank
            if action.end_call:
                break
