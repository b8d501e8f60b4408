"""
Tests for the conversational form.

The transition function is pure, so most behaviour is checked by feeding
events and inspecting (state, effects). ChatSession tests run whole
conversations against a real DocumentService in a temp directory.
"""

from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from chat_flow import (
    FLOWS,
    START_REPLIES,
    ChatSession,
    ChatState,
    DraftReady,
    Export,
    Finish,
    ItemsListed,
    LinkCandidate,
    ListItems,
    Offer,
    Save,
    SaveFailed,
    Say,
    UserText,
    classify_intent,
    start,
    summarize,
    transition,
)
from document_service import DocumentService
from errors import UpstreamServiceError
from record_store import StoreSet


@pytest.fixture
def service(tmp_path) -> DocumentService:
    return DocumentService(StoreSet.from_directory(tmp_path))


def _texts(effects) -> str:
    return "\n".join(e.text for e in effects if isinstance(e, Say))


def _offers(effects) -> tuple:
    offers = [e.replies for e in effects if isinstance(e, Offer)]
    return offers[-1] if offers else ()


# ── Intent classification ─────────────────────────────────────────────────────

class TestClassifyIntent:
    @pytest.mark.parametrize("text, intent", [
        ("Create new", "create"),
        ("Criar nova", "create"),
        ("Use AI Tool 🤖", "use_ai"),
        ("View existing", "view"),
        ("Yes, save it", "yes"),
        ("Yes, link norm", "yes"),
        ("Sim, salvar", "yes"),
        ("No, skip", "no"),
        ("Não", "no"),
        ("Export as Excel", "excel"),
        ("Export as PDF", "pdf"),
        ("Create another DVP", "create"),
        ("Outro", "another"),
        ("Go back to home", "home"),
        ("what?", "unknown"),
    ])
    def test_intents(self, text, intent):
        assert classify_intent(text) == intent

    def test_norm_is_not_no(self):
        assert classify_intent("norm") == "unknown"


# ── Pure transitions ──────────────────────────────────────────────────────────

class TestTransition:
    def test_start(self):
        state, effects = start("dfmea")
        assert state.step == "initial"
        assert _offers(effects) == START_REPLIES

    def test_create_asks_first_field(self):
        state, effects = transition(ChatState("edps"), UserText("Create new"))
        assert state.step == "field"
        assert state.field_index == 0
        assert FLOWS["edps"][0].prompt in _texts(effects)

    def test_state_is_not_mutated(self):
        state = ChatState("edps", step="field", field_index=0)
        new_state, _ = transition(state, UserText("NP-001"))
        assert state.form == {}
        assert new_state.form == {"normNumber": "NP-001"}

    def test_required_field_cannot_be_empty(self):
        state = ChatState("dfmea", step="field", field_index=0)
        new_state, effects = transition(state, UserText("   "))
        assert new_state == state
        assert "required" in _texts(effects)

    def test_text_field_can_be_skipped(self):
        state = ChatState("dfmea", step="field", field_index=2, form={"genericFailure": "A", "failureMode": "B"})
        new_state, _ = transition(state, UserText("Skip"))
        assert new_state.form["cause"] == ""
        assert new_state.field_index == 3

    @pytest.mark.parametrize("text", ["0", "11", "seven", "7.5", ""])
    def test_invalid_rating_repeats_question(self, text):
        state = ChatState("dfmea", step="field", field_index=5)
        new_state, effects = transition(state, UserText(text))
        assert new_state == state
        assert "1 to 10" in _texts(effects)

    def test_valid_rating(self):
        state = ChatState("dfmea", step="field", field_index=5)
        new_state, _ = transition(state, UserText("10"))
        assert new_state.form["severity"] == 10
        assert new_state.field_index == 6

    def test_link_yes_requests_listing(self):
        state = ChatState("dfmea", step="field", field_index=3)
        _, effects = transition(state, UserText("Yes, link norm"))
        assert effects == [ListItems("edps")]

    def test_link_listing_moves_to_selection(self):
        state = ChatState("dfmea", step="field", field_index=3)
        items = (LinkCandidate("n-1", "NP-001", "Torque"),)
        new_state, effects = transition(state, ItemsListed(items))
        assert new_state.step == "selectLink"
        assert "NP-001" in _texts(effects)

    def test_link_selection_stores_typed_link(self):
        items = (LinkCandidate("n-1", "NP-001", "Torque"),)
        state = ChatState("dfmea", step="selectLink", field_index=3, candidates=items)
        new_state, _ = transition(state, UserText("np-001 please".upper()))
        assert new_state.form["preventionControl"] == {"type": "EDPS", "edpsId": "n-1", "description": "Torque"}
        assert new_state.step == "field"
        assert new_state.field_index == 4

    def test_unknown_link_code(self):
        items = (LinkCandidate("n-1", "NP-001", "Torque"),)
        state = ChatState("dfmea", step="selectLink", field_index=3, candidates=items)
        new_state, effects = transition(state, UserText("NP-999"))
        assert new_state == state
        assert "Could not find" in _texts(effects)

    def test_no_documents_skips_link(self):
        state = ChatState("dfmea", step="field", field_index=4)
        new_state, effects = transition(state, ItemsListed(()))
        assert new_state.field_index == 5
        assert "skipping this link" in _texts(effects)

    def test_confirm_emits_save(self):
        form = {"normNumber": "NP-001", "title": "Torque"}
        state = ChatState("edps", step="confirm", field_index=5, form=form)
        new_state, effects = transition(state, UserText("Yes, save it"))
        assert new_state.step == "saving"
        assert effects == [Save("edps", form)]

    def test_cancel_restarts(self):
        state = ChatState("edps", step="confirm", field_index=5, form={"normNumber": "NP-001"})
        new_state, effects = transition(state, UserText("No, cancel"))
        assert new_state == ChatState("edps")
        assert "cancelled" in _texts(effects)

    def test_save_failure_restarts(self):
        state = ChatState("dfmea", step="saving")
        new_state, effects = transition(state, SaveFailed("EDPS norm with ID x not found"))
        assert new_state.step == "initial"
        assert "x not found" in _texts(effects)

    def test_draft_missing_required_field_asks_for_it(self):
        state = ChatState("dfmea", step="generating")
        new_state, effects = transition(state, DraftReady({"genericFailure": "Brake"}, ("failureMode",)))
        assert new_state.step == "field"
        assert FLOWS["dfmea"][new_state.field_index].name == "failureMode"
        assert "failureMode" in _texts(effects)

    def test_finished_state_ignores_events(self):
        state = ChatState("dfmea", step="finished")
        assert transition(state, UserText("hello")) == (state, [])

    def test_summary_includes_rpn(self):
        text = summarize("dfmea", {"severity": 7, "occurrence": 3, "detection": 4})
        assert "**RPN:** 84" in text
        assert "Not linked" in text


# ── ChatSession (full conversations) ──────────────────────────────────────────

class TestChatSession:
    def test_full_dfmea_conversation(self, service):
        norm = service.create_norm({"normNumber": "NP-001", "title": "Caliper Bolt Torque Spec"})
        on_export = MagicMock()
        session = ChatSession("dfmea", service, on_export=on_export)
        assert _offers(session.greeting()) == START_REPLIES

        session.send("Create new")
        session.send("Brake Caliper")
        session.send("Mounting bolt loosening")
        session.send("Insufficient clamp load")

        effects = session.send("Yes, link norm")
        assert "NP-001" in _texts(effects)
        assert session.state.step == "selectLink"

        session.send("NP-001")
        session.send("No, skip")
        session.send("7")
        assert "1 to 10" in _texts(session.send("eleven"))
        session.send("3")

        effects = session.send("4")
        assert session.state.step == "confirm"
        assert "**RPN:** 84" in _texts(effects)

        effects = session.send("Yes, save it")
        assert session.state.step == "export"
        assert "Export as Excel" in _offers(effects)

        effects = session.send("Export as Excel")
        document_id = session.state.document_id
        on_export.assert_called_once_with("dfmea", document_id, "xlsx")
        assert Export("dfmea", document_id, "xlsx") in effects

        effects = session.send("Go back to home")
        assert Finish() in effects
        assert session.finished

        stored = service.get_failure_analysis(document_id)
        assert stored.rpn == 84
        assert stored.prevention_control.edps_data.norm_number == "NP-001"
        assert stored.detection_control is None

    def test_edps_conversation_offers_no_export(self, service):
        session = ChatSession("edps", service)
        session.send("Create new")
        for answer in ("NP-010", "Seal material", "Skip", "Skip", "Brake Caliper"):
            session.send(answer)
        effects = session.send("Yes, save it")
        assert session.state.step == "complete"
        assert "Create another EDPS" in _offers(effects)
        assert service.list_norms()[0].car_part == "Brake Caliper"

        session.send("Create another EDPS")
        assert session.state == ChatState("edps")

    def test_view_existing(self, service):
        service.create_test_procedure({"procedureId": "3.42", "testName": "Endurance"})
        session = ChatSession("dvp", service)
        effects = session.send("View existing")
        assert "3.42" in _texts(effects)
        assert session.state.step == "initial"

    def test_view_existing_empty(self, service):
        effects = ChatSession("dfmea", service).send("View existing")
        assert "No existing" in _texts(effects)

    def test_ai_draft_then_save(self, service):
        generator = MagicMock()
        generator.execute.return_value = {
            "Generic_failure": "Brake Disc",
            "Potencial_failure_modes": "Brake fade",
            "severity": 5,
            "occurrence": 5,
            "detection": 5,
        }
        session = ChatSession("dfmea", service, generator=generator)
        session.send("Use AI Tool 🤖")
        effects = session.send("brake fade on long descents")

        generator.execute.assert_called_once_with("dfmea", "brake fade on long descents")
        assert session.state.step == "confirm"
        assert "Not found in the AI response: cause" in _texts(effects)

        session.send("Yes")
        assert service.list_failure_analyses()[0].rpn == 125

    def test_ai_failure_returns_to_start(self, service):
        generator = MagicMock()
        generator.execute.side_effect = UpstreamServiceError("Invalid API key", status_code=401)
        session = ChatSession("edps", service, generator=generator)
        session.send("Use AI Tool 🤖")
        effects = session.send("bolt torque norm")
        assert "Invalid API key" in _texts(effects)
        assert session.state.step == "initial"

    def test_ai_unavailable(self, service):
        session = ChatSession("dvp", service)
        session.send("Use AI Tool 🤖")
        effects = session.send("pedal force test")
        assert "not available" in _texts(effects)
        assert _offers(effects) == START_REPLIES
