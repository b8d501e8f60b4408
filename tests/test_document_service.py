"""
Tests for the record store, the risk engine and the document service.

Every test gets a fresh data directory (tmp_path), so the JSON files are
real but isolated.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from document_service import DocumentService
from errors import LinkTargetNotFound, MissingRequiredField, NotFound, PersistenceFault
from record_store import RecordStore, StoreSet
from risk_engine import RiskEngine


@pytest.fixture
def stores(tmp_path) -> StoreSet:
    return StoreSet.from_directory(tmp_path)


@pytest.fixture
def service(stores) -> DocumentService:
    return DocumentService(stores)


@pytest.fixture
def norm(service):
    return service.create_norm({
        "normNumber": "NP-001",
        "title": "Caliper Bolt Torque Spec",
        "description": "M12 bolts at 110 Nm",
        "carPart": "Brake Caliper",
    })


@pytest.fixture
def procedure(service):
    return service.create_test_procedure({
        "procedureId": "3.42",
        "testName": "Caliper Bolt Vibration Endurance",
        "acceptanceCriteria": "Residual torque between 90 Nm e 120 Nm",
    })


# ── RecordStore ───────────────────────────────────────────────────────────────

class TestRecordStore:
    def test_missing_file_is_initialized_empty(self, tmp_path):
        store = RecordStore(tmp_path / "nested" / "edps.json")
        assert store.list() == []
        assert json.loads((tmp_path / "nested" / "edps.json").read_text()) == []

    def test_loads_lazily(self, tmp_path):
        store = RecordStore(tmp_path / "dvp.json")
        assert not store.loaded
        store.list()
        assert store.loaded

    def test_create_persists_to_disk(self, tmp_path):
        path = tmp_path / "dfmea.json"
        RecordStore(path).create({"id": "a", "name": "first"})
        assert RecordStore(path).get_by_id("a") == {"id": "a", "name": "first"}

    def test_file_is_pretty_printed_utf8(self, tmp_path):
        path = tmp_path / "edps.json"
        RecordStore(path).create({"id": "a", "title": "Freio dianteiro ±10 Nm"})
        text = path.read_text(encoding="utf-8")
        assert "±10 Nm" in text
        assert "\n  " in text

    def test_update_merges_and_stamps(self, tmp_path):
        store = RecordStore(tmp_path / "edps.json")
        store.create({"id": "a", "title": "old", "target": "keep"})
        updated = store.update("a", {"title": "new"})
        assert updated["title"] == "new"
        assert updated["target"] == "keep"
        assert "updatedAt" in updated

    def test_update_unknown_returns_none(self, tmp_path):
        store = RecordStore(tmp_path / "edps.json")
        assert store.update("missing", {"title": "x"}) is None

    def test_delete_is_idempotent_in_effect(self, tmp_path):
        store = RecordStore(tmp_path / "edps.json")
        store.create({"id": "a"})
        assert store.delete("a") is True
        assert store.delete("a") is False
        assert store.list() == []

    def test_corrupt_file_raises_persistence_fault(self, tmp_path):
        path = tmp_path / "edps.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(PersistenceFault):
            RecordStore(path).list()

    def test_non_array_file_raises_persistence_fault(self, tmp_path):
        path = tmp_path / "edps.json"
        path.write_text('{"id": "a"}', encoding="utf-8")
        with pytest.raises(PersistenceFault, match="JSON array"):
            RecordStore(path).list()

    def test_store_set_file_names(self, tmp_path):
        stores = StoreSet.from_directory(tmp_path)
        assert stores.norms.path.name == "edps.json"
        assert stores.test_procedures.path.name == "dvp.json"
        assert stores.failure_analyses.path.name == "dfmea.json"

    def test_list_returns_a_copy(self, tmp_path):
        store = RecordStore(tmp_path / "edps.json")
        store.create({"id": "a", "title": "first"})
        store.list().append({"id": "b"})
        store.get_by_id("a")["title"] = "changed"
        assert store.list() == [{"id": "a", "title": "first"}]

    def test_failed_create_leaves_cache_untouched(self, tmp_path):
        store = RecordStore(tmp_path / "edps.json")
        store.create({"id": "a"})
        with patch.object(store, "_save", side_effect=PersistenceFault("disk full")):
            with pytest.raises(PersistenceFault):
                store.create({"id": "b"})
        assert store.get_by_id("b") is None
        assert store.list() == [{"id": "a"}]

    def test_failed_update_leaves_cache_untouched(self, tmp_path):
        store = RecordStore(tmp_path / "edps.json")
        store.create({"id": "a", "title": "old"})
        with patch.object(store, "_save", side_effect=PersistenceFault("disk full")):
            with pytest.raises(PersistenceFault):
                store.update("a", {"title": "new"})
        assert store.get_by_id("a") == {"id": "a", "title": "old"}

    def test_failed_delete_leaves_cache_untouched(self, tmp_path):
        store = RecordStore(tmp_path / "edps.json")
        store.create({"id": "a"})
        with patch.object(store, "_save", side_effect=PersistenceFault("disk full")):
            with pytest.raises(PersistenceFault):
                store.delete("a")
        assert store.list() == [{"id": "a"}]

    def test_unwritable_directory_keeps_previous_state(self, tmp_path):
        store = RecordStore(tmp_path / "edps.json")
        store.create({"id": "a"})
        with patch("builtins.open", side_effect=PermissionError("read-only")):
            with pytest.raises(PersistenceFault, match="Failed to write"):
                store.create({"id": "b"})
        assert [r["id"] for r in store.list()] == ["a"]
        assert json.loads((tmp_path / "edps.json").read_text()) == [{"id": "a"}]


# ── RiskEngine ────────────────────────────────────────────────────────────────

class TestRiskEngine:
    def test_recompute_untouched_ratings(self):
        assert RiskEngine.recompute_rpn({"severity": 5, "occurrence": 5, "detection": 5}, {"cause": "x"}) is None

    def test_recompute_merges_with_existing(self):
        existing = {"severity": 5, "occurrence": 5, "detection": 5}
        assert RiskEngine.recompute_rpn(existing, {"severity": 10}) == 250

    def test_recompute_with_cleared_rating(self):
        existing = {"severity": 5, "occurrence": 5, "detection": 5}
        assert RiskEngine.recompute_rpn(existing, {"detection": None}) == 0

    def test_link_validation_names_missing_id(self, stores):
        from doc_schema import DetectionControl

        engine = RiskEngine(stores.norms, stores.test_procedures)
        with pytest.raises(LinkTargetNotFound) as exc:
            engine.validate_link_targets(None, DetectionControl(dvp_id="ghost"))
        assert exc.value.missing_id == "ghost"
        assert "DVP" in exc.value.message


# ── Norms & test procedures ───────────────────────────────────────────────────

class TestNormsAndProcedures:
    def test_create_norm_defaults(self, norm):
        assert norm.status == "active"
        assert norm.images == []
        assert norm.created_at == norm.updated_at

    def test_create_norm_requires_number_and_title(self, service):
        with pytest.raises(MissingRequiredField) as exc:
            service.create_norm({"description": "no identifiers"})
        assert exc.value.message == "normNumber and title are required"

    def test_empty_string_counts_as_missing(self, service):
        with pytest.raises(MissingRequiredField, match="title is required"):
            service.create_norm({"normNumber": "NP-002", "title": ""})

    def test_get_unknown_norm(self, service):
        with pytest.raises(NotFound):
            service.get_norm("does-not-exist")

    def test_update_norm_partial(self, service, norm):
        updated = service.update_norm(norm.id, {"title": "Revised torque"})
        assert updated.title == "Revised torque"
        assert updated.norm_number == "NP-001"
        assert updated.created_at == norm.created_at

    def test_update_unknown_norm(self, service):
        with pytest.raises(NotFound):
            service.update_norm("ghost", {"title": "x"})

    def test_delete_norm_twice(self, service, norm):
        service.delete_norm(norm.id)
        with pytest.raises(NotFound):
            service.delete_norm(norm.id)

    def test_procedure_type_default(self, procedure):
        assert procedure.procedure_type == "FUNCIONAL"

    def test_create_procedure_requires_fields(self, service):
        with pytest.raises(MissingRequiredField, match="testName is required"):
            service.create_test_procedure({"procedureId": "1.1"})

    def test_documents_survive_restart(self, tmp_path, norm, procedure):
        reopened = DocumentService(StoreSet.from_directory(tmp_path))
        assert reopened.get_norm(norm.id).norm_number == "NP-001"
        assert reopened.get_test_procedure(procedure.id).test_name == procedure.test_name

    def test_null_title_is_rejected_and_norm_still_reads(self, service, norm):
        with pytest.raises(ValidationError):
            service.update_norm(norm.id, {"title": None})
        assert service.get_norm(norm.id).title == "Caliper Bolt Torque Spec"
        assert [n.id for n in service.list_norms()] == [norm.id]

    def test_null_procedure_field_is_rejected(self, service, procedure):
        with pytest.raises(ValidationError):
            service.update_test_procedure(procedure.id, {"acceptanceCriteria": None})
        assert service.get_test_procedure(procedure.id).acceptance_criteria == procedure.acceptance_criteria


# ── DFMEA failure analyses ────────────────────────────────────────────────────

class TestFailureAnalyses:
    def test_rpn_computed_on_create(self, service):
        entry = service.create_failure_analysis({
            "genericFailure": "Brake", "failureMode": "Fade", "severity": 5, "occurrence": 5, "detection": 5,
        })
        assert entry.rpn == 125

    def test_unrated_entry_has_zero_rpn(self, service):
        entry = service.create_failure_analysis({"genericFailure": "Brake", "failureMode": "Fade"})
        assert entry.rpn == 0
        assert entry.risk_level == "none"

    def test_rpn_recomputed_on_update(self, service):
        entry = service.create_failure_analysis({
            "genericFailure": "Brake", "failureMode": "Fade", "severity": 5, "occurrence": 5, "detection": 5,
        })
        updated = service.update_failure_analysis(entry.id, {"severity": 10})
        assert updated.rpn == 250
        assert service.get_failure_analysis(entry.id).rpn == 250

    def test_update_without_ratings_keeps_rpn(self, service):
        entry = service.create_failure_analysis({
            "genericFailure": "Brake", "failureMode": "Fade", "severity": 2, "occurrence": 3, "detection": 4,
        })
        updated = service.update_failure_analysis(entry.id, {"cause": "Overheating"})
        assert updated.rpn == 24
        assert updated.cause == "Overheating"

    def test_null_cause_is_rejected_and_list_still_reads(self, service):
        entry = service.create_failure_analysis({"genericFailure": "Brake", "failureMode": "Fade", "cause": "Heat"})
        with pytest.raises(ValidationError):
            service.update_failure_analysis(entry.id, {"cause": None})
        assert service.list_failure_analyses()[0].cause == "Heat"

    def test_clearing_a_rating_and_a_link_is_allowed(self, service, norm):
        entry = service.create_failure_analysis({
            "genericFailure": "Brake", "failureMode": "Fade", "severity": 5, "occurrence": 5, "detection": 5,
            "preventionControl": {"type": "EDPS", "edpsId": norm.id, "description": norm.title},
        })
        updated = service.update_failure_analysis(entry.id, {"severity": None, "preventionControl": None})
        assert updated.rpn == 0
        assert updated.prevention_control is None

    def test_out_of_range_rating_rejected(self, service):
        with pytest.raises(ValidationError):
            service.create_failure_analysis({
                "genericFailure": "Brake", "failureMode": "Fade", "severity": 11,
            })

    def test_missing_link_target_rejected_and_nothing_stored(self, service):
        with pytest.raises(LinkTargetNotFound) as exc:
            service.create_failure_analysis({
                "genericFailure": "Brake",
                "failureMode": "Fade",
                "preventionControl": {"type": "EDPS", "edpsId": "nonexistent", "description": ""},
            })
        assert exc.value.missing_id == "nonexistent"
        assert service.list_failure_analyses() == []

    def test_links_resolved_on_read(self, service, norm, procedure):
        entry = service.create_failure_analysis({
            "genericFailure": "Brake Caliper",
            "failureMode": "Mounting bolt loosening",
            "preventionControl": {"type": "EDPS", "edpsId": norm.id, "description": norm.title},
            "detectionControl": {"type": "DVP", "dvpId": procedure.id, "description": procedure.test_name},
            "severity": 7,
            "occurrence": 3,
            "detection": 4,
        })
        assert entry.rpn == 84

        record = service.get_failure_analysis(entry.id).to_record()
        assert record["preventionControl"]["edpsData"]["normNumber"] == "NP-001"
        assert record["detectionControl"]["dvpData"]["procedureId"] == "3.42"

    def test_stored_record_does_not_embed_links(self, stores, service, norm):
        entry = service.create_failure_analysis({
            "genericFailure": "Brake",
            "failureMode": "Fade",
            "preventionControl": {"edpsId": norm.id},
        })
        service.get_failure_analysis(entry.id)
        raw = stores.failure_analyses.get_by_id(entry.id)
        assert "edpsData" not in raw["preventionControl"]

    def test_dangling_link_after_norm_delete(self, service, norm):
        entry = service.create_failure_analysis({
            "genericFailure": "Brake",
            "failureMode": "Fade",
            "preventionControl": {"type": "EDPS", "edpsId": norm.id, "description": ""},
        })
        service.delete_norm(norm.id)

        record = service.get_failure_analysis(entry.id).to_record()
        assert record["preventionControl"]["edpsId"] == norm.id
        assert "edpsData" not in record["preventionControl"]

    def test_update_unknown_analysis(self, service):
        with pytest.raises(NotFound):
            service.update_failure_analysis("ghost", {"severity": 3})

    def test_summary(self, service):
        service.create_failure_analysis({
            "genericFailure": "A", "failureMode": "a", "severity": 10, "occurrence": 10, "detection": 5,
        })
        service.create_failure_analysis({"genericFailure": "B", "failureMode": "b"})
        summary = service.failure_analysis_summary()
        assert summary.total_entries == 2
        assert summary.critical_count == 1
        assert summary.unrated_count == 1
        assert summary.max_rpn == 500


# ── Search ────────────────────────────────────────────────────────────────────

class TestSearch:
    def test_search_across_kinds(self, service, norm, procedure):
        service.create_failure_analysis({"genericFailure": "Caliper", "failureMode": "Bolt loosening"})
        results = service.search("caliper")
        assert {r.type for r in results} == {"edps", "dvp", "dfmea"}

    def test_search_scope(self, service, norm, procedure):
        results = service.search("", "dvp")
        assert [r.id for r in results] == [procedure.id]
        assert results[0].title == "3.42 - Caliper Bolt Vibration Endurance"

    def test_search_no_match(self, service, norm):
        assert service.search("windshield") == []
